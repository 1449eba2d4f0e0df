"""
Pytest configuration: make sure `import taxdesk` and `import api` work
regardless of where pytest is invoked, and provide engines wired to the
in‑memory and the SQLite collaborators.
"""

import sys
from pathlib import Path

import pytest

# /path/to/project/tests -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sqlmodel import Session  # noqa: E402

from taxdesk.db import create_all, make_engine, upsert_client, upsert_user  # noqa: E402
from taxdesk.engine import FilingEngine  # noqa: E402
from taxdesk.models import ClientRef, Professional, Role  # noqa: E402
from taxdesk.settings import Settings  # noqa: E402
from taxdesk.store import (  # noqa: E402
    MemoryClientDirectory,
    MemoryFilingStore,
    MemoryProfessionalDirectory,
)
from taxdesk.store_db import (  # noqa: E402
    DBClientDirectory,
    DBFilingStore,
    DBProfessionalDirectory,
)

CLIENTS = [
    ClientRef(id=5, full_name="Priya Nair", pan_number="ABCPN1234K"),
    ClientRef(id=6, default_ca_id=9, full_name="Rahul Mehta"),
]

USERS = [
    Professional(id=1, role=Role.ADMIN, full_name="Admin"),
    Professional(id=9, role=Role.CA, full_name="Anita Rao"),
    Professional(id=11, role=Role.CA, full_name="Vikram Shah"),
    Professional(id=12, role=Role.CA, is_active=False, full_name="Retired CA"),
    Professional(id=20, role=Role.CUSTOMER, full_name="Priya Nair"),
]


@pytest.fixture
def test_settings():
    return Settings(deadline_window_days=30, default_page_size=10, max_page_size=100)


@pytest.fixture
def memory_engine(test_settings):
    """FilingEngine over the dictionary‑backed collaborators."""
    clients = MemoryClientDirectory(list(CLIENTS))
    professionals = MemoryProfessionalDirectory(list(USERS))
    return FilingEngine(
        MemoryFilingStore(clients, professionals),
        clients,
        professionals,
        settings=test_settings,
    )


@pytest.fixture
def sql_engine():
    """A fresh in‑memory SQLite database with the sample clients and users."""
    eng = make_engine("sqlite://")
    create_all(eng)
    with Session(eng) as s:
        for user in USERS:
            upsert_user(s, user)
        for client in CLIENTS:
            upsert_client(s, client)
    yield eng
    eng.dispose()


@pytest.fixture
def db_engine(sql_engine, test_settings):
    """FilingEngine over the SQL‑backed collaborators."""
    return FilingEngine(
        DBFilingStore(sql_engine),
        DBClientDirectory(sql_engine),
        DBProfessionalDirectory(sql_engine),
        settings=test_settings,
    )
