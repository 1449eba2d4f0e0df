"""
api.deps
========

FastAPI dependency providers.

`get_engine` returns a process‑wide :class:`~taxdesk.engine.FilingEngine`
wired to the SQL stores, so every request talks to the persistent
database.  Tests swap it out through ``app.dependency_overrides``.
"""

from functools import lru_cache

from taxdesk.db import create_all
from taxdesk.engine import FilingEngine
from taxdesk.settings import settings
from taxdesk.store_db import DBClientDirectory, DBFilingStore, DBProfessionalDirectory


@lru_cache
def get_settings():
    """Return application settings."""
    return settings


@lru_cache
def get_engine() -> FilingEngine:
    """Singleton DB‑backed filing engine (tables are created on first use)."""
    create_all()
    return FilingEngine(
        DBFilingStore(),
        DBClientDirectory(),
        DBProfessionalDirectory(),
        settings=get_settings(),
    )
