"""
taxdesk.db
==========

SQLite persistence layer for taxdesk.

This module exposes:

* ``engine`` – a global SQLModel engine pointing at *taxdesk.db*
* ``make_engine()`` – build an engine for another URL (tests use ``sqlite://``)
* ``SessionLocal`` – a session factory used via ``with SessionLocal() as s:``
* ``create_all()`` – helper to create tables at first run
* ORM tables for filings, clients and users
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

from taxdesk.models import (
    ClientRef,
    Filing,
    FilingStatus,
    FilingType,
    Priority,
    Professional,
    Role,
)
from taxdesk.settings import DB_ECHO, DB_TIMEOUT, DB_URL


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
def make_engine(url: str = DB_URL, echo: bool = DB_ECHO) -> Engine:
    """
    Create an engine for *url*.

    SQLite connections get a busy timeout so a locked database surfaces as
    an ``OperationalError`` instead of blocking forever; the in‑memory URL
    shares one connection across threads so every session sees the same
    tables.
    """
    if url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {
            "connect_args": {"check_same_thread": False, "timeout": DB_TIMEOUT},
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_timeout=DB_TIMEOUT)


engine = make_engine()


# ---------------------------------------------------------------------------
# Session factory
# ---------------------------------------------------------------------------
def SessionLocal(bind: Optional[Engine] = None) -> Session:  # noqa: N802 (factory camel‑case for consistency with FastAPI docs)
    """Return a new Session bound to *bind* (default: the global engine)."""
    return Session(bind or engine)


# ---------------------------------------------------------------------------
# ORM models
# ---------------------------------------------------------------------------
class FilingDB(SQLModel, table=True):
    """
    Table‑backed representation of a :class:`taxdesk.models.Filing`.

    The ``unique_client_tax_year_type`` constraint is the authority for
    "one filing per client, tax year and filing type"; the engine's own
    pre‑check only produces a friendlier error.
    """

    __tablename__ = "filings"
    __table_args__ = (
        UniqueConstraint("client_id", "tax_year", "filing_type", name="unique_client_tax_year_type"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: int = Field(index=True)
    ca_id: Optional[int] = Field(default=None, index=True)
    tax_year: str = Field(max_length=9, index=True)
    filing_type: str = Field(index=True)
    status: str = Field(default=FilingStatus.DRAFT.value, index=True)
    priority: str = Field(default=Priority.MEDIUM.value, index=True)
    income_sources: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    deductions: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    summary: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    notes: Optional[str] = None
    # timestamps are naive local time
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    due_date: Optional[date] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.now,
                                 sa_column=Column(DateTime, index=True, nullable=False))
    updated_at: datetime = Field(default_factory=datetime.now,
                                 sa_column=Column(DateTime, nullable=False))

    # ---------------------------------------------------------------------
    # Converters
    # ---------------------------------------------------------------------
    @classmethod
    def from_filing(cls, f: Filing) -> "FilingDB":
        """Create a DB row from an in‑memory filing."""
        return cls(
            id=f.id,
            client_id=f.client_id,
            ca_id=f.ca_id,
            tax_year=f.tax_year,
            filing_type=FilingType(f.filing_type).value,
            status=FilingStatus(f.status).value,
            priority=Priority(f.priority).value,
            income_sources=f.income_sources,
            deductions=f.deductions,
            summary=f.summary,
            notes=f.notes,
            started_at=f.started_at,
            completed_at=f.completed_at,
            due_date=f.due_date,
            created_at=f.created_at,
            updated_at=f.updated_at,
        )

    def to_filing(self) -> Filing:
        """Convert the DB row back into a plain Filing."""
        return Filing(
            id=self.id,
            client_id=self.client_id,
            ca_id=self.ca_id,
            tax_year=self.tax_year,
            filing_type=FilingType(self.filing_type),
            status=FilingStatus(self.status),
            priority=Priority(self.priority),
            income_sources=self.income_sources,
            deductions=self.deductions,
            summary=self.summary,
            notes=self.notes,
            started_at=self.started_at,
            completed_at=self.completed_at,
            due_date=self.due_date,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ClientDB(SQLModel, table=True):
    """Client profile; ``ca_id`` is the default CA for new filings."""

    __tablename__ = "clients"

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: Optional[str] = None
    pan_number: Optional[str] = Field(default=None, max_length=10)
    ca_id: Optional[int] = Field(default=None, index=True)

    def to_client(self) -> ClientRef:
        return ClientRef(id=self.id, default_ca_id=self.ca_id,
                         full_name=self.full_name, pan_number=self.pan_number)


class UserDB(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: Optional[str] = None
    email: Optional[str] = Field(default=None, index=True)
    role: str = Field(default=Role.CUSTOMER.value)
    is_active: bool = True

    def to_professional(self) -> Professional:
        return Professional(id=self.id, role=Role(self.role), is_active=self.is_active,
                            full_name=self.full_name, email=self.email)


# ---------------------------------------------------------------------------
# Convenience helpers for the directories (seeding, tests)
# ---------------------------------------------------------------------------
def upsert_client(s: Session, client: ClientRef) -> None:
    """Insert or update a client row."""
    s.merge(ClientDB(id=client.id, full_name=client.full_name,
                     pan_number=client.pan_number, ca_id=client.default_ca_id))
    s.commit()


def upsert_user(s: Session, user: Professional) -> None:
    """Insert or update a user row."""
    s.merge(UserDB(id=user.id, full_name=user.full_name, email=user.email,
                   role=Role(user.role).value, is_active=user.is_active))
    s.commit()


# ---------------------------------------------------------------------------
# Utility: create tables
# ---------------------------------------------------------------------------
def create_all(bind: Optional[Engine] = None) -> None:
    """Create all tables for imported SQLModel subclasses."""
    SQLModel.metadata.create_all(bind or engine)


# ---------------------------------------------------------------------------
# Lightweight CLI
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    """
    Quick bootstrap helper.

    Examples
    --------
    $ python -m taxdesk.db --create        # first‑time table creation
    """
    import argparse

    parser = argparse.ArgumentParser(prog="python -m taxdesk.db",
                                     description="taxdesk DB utilities")
    parser.add_argument("--create", action="store_true", help="create tables")
    args = parser.parse_args()

    if args.create:
        create_all()
        print(f"✅ {DB_URL} schema initialised")
