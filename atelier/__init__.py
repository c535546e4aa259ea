"""
Atelier — Platform Core for a Creator Content Site
===================================================
Server-side moderation, contest judging, scheduled jobs and search-index
synchronization for a content platform where members publish models,
images and articles and spend the Buzz virtual currency.

Package layout::

    atelier/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Thresholds, key namespaces, shared helpers
    ├── errors.py          # Service-level exceptions (→ HTTP 400/404)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── redis_client.py  # redis-py client factory
    ├── engine/
    │   ├── elo.py         # Pure ELO math
    │   ├── matchmaking.py # Judging-pair selection
    │   ├── standings.py   # Final ranking + prize split
    │   └── task_queue.py  # Pull/transform/push task queue + workers
    ├── jobs/
    │   ├── job.py         # Job, JobContext, job dates
    │   ├── lock.py        # Refreshing Redis job lock + runner
    │   └── registry.py    # Named job table
    ├── search_index/
    │   ├── queue.py       # Redis-backed update/delete queues
    │   ├── meili.py       # Meilisearch helpers
    │   ├── base.py        # Generic index processor
    │   └── articles.py    # Articles index
    ├── services/
    │   ├── strike_service.py
    │   ├── crucible_service.py
    │   ├── elo_store.py
    │   ├── notification_service.py
    │   ├── session_service.py
    │   └── log_buffer.py
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine/Redis/JWT dependencies
        └── routes/        # Strikes, crucibles, jobs webhook, mod tools
"""

__version__ = "0.1.0"
