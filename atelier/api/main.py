"""
atelier.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn atelier.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from atelier import __version__  # noqa: E402
from atelier.api.deps import get_engine  # noqa: E402
from atelier.api.routes.crucibles import router as crucibles_router  # noqa: E402
from atelier.api.routes.jobs import router as jobs_router  # noqa: E402
from atelier.api.routes.mod import router as mod_router  # noqa: E402
from atelier.api.routes.strikes import router as strikes_router  # noqa: E402
from atelier.errors import AtelierError  # noqa: E402
from atelier.services.log_buffer import install_handler  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Uvicorn reconfigures logging on startup, so the buffer handler is
    # attached here rather than at import time.
    install_handler()
    engine = get_engine()
    logger.info("Atelier API started (%s)", engine.url.database)
    yield
    logger.info("Atelier API shutting down")


app = FastAPI(
    title="Atelier API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AtelierError)
async def atelier_error_handler(request: Request, exc: AtelierError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


app.include_router(strikes_router, prefix="/api")
app.include_router(crucibles_router, prefix="/api")
app.include_router(mod_router, prefix="/api")
app.include_router(jobs_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
