"""
taxdesk.store_db
================

SQL‑backed implementation of the filing store and both directories.

These adapters wrap the tables in :pymod:`taxdesk.db` so the engine can
switch from the in‑memory collaborators in :pymod:`taxdesk.store` to a
persistent database without changing its calls.

Writes that must be race‑safe are issued as single conditional
statements: ``UPDATE … WHERE id = ? AND status = ?`` for status changes
and ``DELETE … WHERE id = ? AND status = 'draft'`` for deletion.  The
database's unique index is what rejects a duplicate filing.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import case, delete, func, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlmodel import select

from taxdesk.db import ClientDB, FilingDB, SessionLocal, UserDB
from taxdesk.db import engine as default_engine
from taxdesk.errors import Conflict, Unavailable
from taxdesk.models import ClientRef, Filing, FilingFilters, FilingStatus, Professional
from taxdesk.store import PRIORITY_RANK, SORTABLE

logger = logging.getLogger(__name__)

_table = FilingDB.__table__
_clients = ClientDB.__table__
_users = UserDB.__table__
# filings with their client and assigned CA, for name search and name sorts
_joined = (
    _table.outerjoin(_clients, _clients.c.id == _table.c.client_id)
    .outerjoin(_users, _users.c.id == _table.c.ca_id)
)
_priority_rank = case(
    {p.value: rank for p, rank in PRIORITY_RANK.items()}, value=_table.c.priority
)
_SORT_COLUMNS = {
    "priority": _priority_rank,
    "client_name": _clients.c.full_name,
    "ca_name": _users.c.full_name,
}


@contextmanager
def _store_errors(op: str) -> Iterator[None]:
    """Translate driver failures into :class:`Unavailable`."""
    try:
        yield
    except (OperationalError, PoolTimeoutError) as e:
        logger.error(f"Filing store {op} failed: {e}")
        raise Unavailable(f"Filing store unavailable during {op}") from e


def _plain(value):
    return value.value if isinstance(value, Enum) else value


def _conditions(flt: FilingFilters) -> list:
    c = _table.c
    conds = []
    if flt.client_id is not None:
        conds.append(c.client_id == flt.client_id)
    if flt.ca_id is not None:
        conds.append(c.ca_id == flt.ca_id)
    if flt.status is not None:
        conds.append(c.status == _plain(flt.status))
    if flt.filing_type is not None:
        conds.append(c.filing_type == _plain(flt.filing_type))
    if flt.priority is not None:
        conds.append(c.priority == _plain(flt.priority))
    if flt.tax_year is not None:
        conds.append(c.tax_year == flt.tax_year)
    if flt.due_date_from is not None:
        conds.append(c.due_date >= flt.due_date_from)
    if flt.due_date_to is not None:
        conds.append(c.due_date <= flt.due_date_to)
    if flt.search:
        conds.append(or_(*(
            col.contains(flt.search, autoescape=True)
            for col in (c.tax_year, c.notes, _clients.c.full_name,
                        _clients.c.pan_number, _users.c.full_name)
        )))
    return conds


class DBFilingStore:
    """
    Filing store backed by the ``filings`` table.

    Methods mirror :class:`taxdesk.store.MemoryFilingStore`.
    """

    def __init__(self, engine: Optional[Engine] = None) -> None:
        self.engine: Engine = engine or default_engine

    # ------------------------------------------------------------------ reads
    def get(self, filing_id: int) -> Optional[Filing]:
        with _store_errors("get"), SessionLocal(self.engine) as s:
            row = s.get(FilingDB, filing_id)
            return row.to_filing() if row else None

    def find(self, filters: FilingFilters, sort_by: str = "created_at",
             sort_order: str = "desc", limit: Optional[int] = None,
             offset: int = 0) -> Tuple[List[Filing], int]:
        conds = _conditions(filters)
        field = sort_by if sort_by in SORTABLE else "created_at"
        column = _SORT_COLUMNS.get(field)
        if column is None:
            column = getattr(_table.c, field)
        if sort_order == "desc":
            order = (column.desc().nulls_last(), _table.c.id.desc())
        else:
            order = (column.asc().nulls_last(), _table.c.id.asc())

        stmt = select(FilingDB).select_from(_joined).where(*conds).order_by(*order).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        count_stmt = select(func.count(_table.c.id)).select_from(_joined).where(*conds)

        with _store_errors("find"), SessionLocal(self.engine) as s:
            rows = s.exec(stmt).all()
            total = s.exec(count_stmt).one()
            return [row.to_filing() for row in rows], int(total)

    def count_by_status(self, client_id: Optional[int] = None, ca_id: Optional[int] = None,
                        tax_year: Optional[str] = None) -> Dict[FilingStatus, int]:
        conds = _conditions(FilingFilters(client_id=client_id, ca_id=ca_id, tax_year=tax_year))
        stmt = (
            select(_table.c.status, func.count(_table.c.id))
            .where(*conds)
            .group_by(_table.c.status)
        )
        with _store_errors("count_by_status"), SessionLocal(self.engine) as s:
            return {FilingStatus(status): int(n) for status, n in s.exec(stmt).all()}

    # ----------------------------------------------------------------- writes
    def create(self, filing: Filing) -> Filing:
        row = FilingDB.from_filing(filing)
        row.id = None
        row.created_at = row.updated_at = datetime.now()
        with _store_errors("create"), SessionLocal(self.engine) as s:
            s.add(row)
            try:
                s.commit()
            except IntegrityError as e:
                s.rollback()
                raise Conflict(
                    "Filing already exists for this client, tax year, and filing type"
                ) from e
            s.refresh(row)
            return row.to_filing()

    def update_fields(self, filing_id: int, fields: dict,
                      expected_status: Optional[FilingStatus] = None) -> int:
        values = {name: _plain(value) for name, value in fields.items()}
        values.setdefault("updated_at", datetime.now())
        stmt = update(_table).where(_table.c.id == filing_id)
        if expected_status is not None:
            stmt = stmt.where(_table.c.status == _plain(expected_status))
        stmt = stmt.values(**values)
        with _store_errors("update"), self.engine.begin() as conn:
            return conn.execute(stmt).rowcount

    def delete(self, filing_id: int, expected_status: Optional[FilingStatus] = None) -> int:
        stmt = delete(_table).where(_table.c.id == filing_id)
        if expected_status is not None:
            stmt = stmt.where(_table.c.status == _plain(expected_status))
        with _store_errors("delete"), self.engine.begin() as conn:
            return conn.execute(stmt).rowcount

    # ------------------------------------------------------ dunder helpers
    def __iter__(self) -> Iterator[Filing]:
        rows, _ = self.find(FilingFilters(), sort_order="asc")
        yield from rows

    def __len__(self) -> int:
        return self.find(FilingFilters(), limit=0)[1]


class DBClientDirectory:
    """Read‑only view of the ``clients`` table."""

    def __init__(self, engine: Optional[Engine] = None) -> None:
        self.engine: Engine = engine or default_engine

    def get(self, client_id: int) -> Optional[ClientRef]:
        with _store_errors("client lookup"), SessionLocal(self.engine) as s:
            row = s.get(ClientDB, client_id)
            return row.to_client() if row else None


class DBProfessionalDirectory:
    """Read‑only view of the ``users`` table."""

    def __init__(self, engine: Optional[Engine] = None) -> None:
        self.engine: Engine = engine or default_engine

    def get(self, user_id: int) -> Optional[Professional]:
        with _store_errors("user lookup"), SessionLocal(self.engine) as s:
            row = s.get(UserDB, user_id)
            return row.to_professional() if row else None
