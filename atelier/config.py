"""
atelier.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for **infrastructure-only** settings (environment and
job-lock cadence).  Secrets and connection
strings (``DATABASE_URL``, ``REDIS_URL``, ``MEILI_HOST``, ``JWT_SECRET``,
``WEBHOOK_TOKEN``) come from the environment via ``.env``.

Usage::

    from atelier.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.platform_name)     # "Atelier Dev"
    print(cfg.is_production)     # False
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(frozen=True, slots=True)
class AtelierConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    platform_name: str
    api_port: int

    # "production" enables Redis job locks; anything else runs jobs unlocked.
    environment: str = "development"

    # Job locks
    job_lock_refresh_seconds: int = 8
    job_lock_buffer_seconds: int = 2

    # Users allowed to call moderator endpoints even without the JWT claim
    moderator_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_config(path: str | Path = "config.yaml") -> AtelierConfig:
    """Read *path* and return an :class:`AtelierConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return AtelierConfig(
        platform_name=raw["platform_name"],
        api_port=int(raw["api_port"]),
        environment=str(raw.get("environment", "development")),
        job_lock_refresh_seconds=int(raw.get("job_lock_refresh_seconds", 8)),
        job_lock_buffer_seconds=int(raw.get("job_lock_buffer_seconds", 2)),
        moderator_ids=tuple(int(x) for x in raw.get("moderator_ids") or ()),
    )
