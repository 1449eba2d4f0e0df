"""
taxdesk.store
=============

In‑memory implementations of the three collaborators the lifecycle
engine talks to:

* :class:`MemoryFilingStore`          – filings keyed by integer id
* :class:`MemoryClientDirectory`      – client profiles
* :class:`MemoryProfessionalDirectory` – users with role / active flags

Only the standard library is used so the engine can be unit‑tested
without a database.  The filing store mirrors what the SQL store gets from
the database: a unique (client, tax year, type) key and conditional
updates, both applied under a single lock.
"""

from __future__ import annotations

import copy
import itertools
import threading
from dataclasses import fields as dc_fields
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import Conflict
from .models import ClientRef, Filing, FilingFilters, FilingStatus, Priority, Professional

SORTABLE = ("created_at", "updated_at", "due_date", "priority", "status", "tax_year", "id",
            "client_name", "ca_name")
# priority sorts by severity, not alphabetically
PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2, Priority.URGENT: 3}
_FILING_FIELDS = {f.name for f in dc_fields(Filing)}


def _key(f: Filing) -> Tuple[int, str, str]:
    return (f.client_id, f.tax_year, str(f.filing_type))


def matches(f: Filing, flt: FilingFilters, names: Iterable[Optional[str]] = ()) -> bool:
    """
    True if *f* satisfies every non‑empty filter in *flt*.

    *names* are extra strings the free‑text search looks at (client name,
    PAN, CA name).
    """
    if flt.client_id is not None and f.client_id != flt.client_id:
        return False
    if flt.ca_id is not None and f.ca_id != flt.ca_id:
        return False
    if flt.status is not None and f.status != flt.status:
        return False
    if flt.filing_type is not None and f.filing_type != flt.filing_type:
        return False
    if flt.priority is not None and f.priority != flt.priority:
        return False
    if flt.tax_year is not None and f.tax_year != flt.tax_year:
        return False
    if flt.due_date_from is not None and (f.due_date is None or f.due_date < flt.due_date_from):
        return False
    if flt.due_date_to is not None and (f.due_date is None or f.due_date > flt.due_date_to):
        return False
    if flt.search:
        needle = flt.search.lower()
        haystack = "\n".join([f.tax_year, f.notes or ""] + [n or "" for n in names]).lower()
        if needle not in haystack:
            return False
    return True


class MemoryFilingStore:
    """
    Dictionary‑backed filing store.

    Example
    -------
    >>> from taxdesk.models import Filing, FilingType
    >>> store = MemoryFilingStore()
    >>> f = store.create(Filing(5, "2023-2024", FilingType.INDIVIDUAL))
    >>> store.get(f.id).status
    <FilingStatus.DRAFT: 'draft'>
    """

    def __init__(self, clients: Optional["MemoryClientDirectory"] = None,
                 professionals: Optional["MemoryProfessionalDirectory"] = None) -> None:
        self._rows: Dict[int, Filing] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        # directories resolve client / CA names for search and name sorts
        self.clients = clients
        self.professionals = professionals

    def _names(self, f: Filing) -> Dict[str, Optional[str]]:
        client = self.clients.get(f.client_id) if self.clients else None
        ca = self.professionals.get(f.ca_id) if self.professionals and f.ca_id else None
        return {
            "client_name": client.full_name if client else None,
            "pan_number": client.pan_number if client else None,
            "ca_name": ca.full_name if ca else None,
        }

    # ------------------------------------------------------------------ CRUD
    def get(self, filing_id: int) -> Optional[Filing]:
        with self._lock:
            row = self._rows.get(filing_id)
            return copy.deepcopy(row) if row else None

    def find(self, filters: FilingFilters, sort_by: str = "created_at",
             sort_order: str = "desc", limit: Optional[int] = None,
             offset: int = 0) -> Tuple[List[Filing], int]:
        with self._lock:
            rows = [copy.deepcopy(f) for f in self._rows.values()]
        names = {f.id: self._names(f) for f in rows}
        hits = [f for f in rows if matches(f, filters, names[f.id].values())]
        field = sort_by if sort_by in SORTABLE else "created_at"

        def value_of(f: Filing):
            if field in ("client_name", "ca_name"):
                return names[f.id][field]
            value = getattr(f, field)
            if value is None:
                return None
            if field == "priority":
                return PRIORITY_RANK[Priority(value)]
            return str(value) if field == "status" else value

        # rows without a value sort last in either direction
        present = [f for f in hits if value_of(f) is not None]
        missing = [f for f in hits if value_of(f) is None]
        present.sort(key=lambda f: (value_of(f), f.id), reverse=(sort_order == "desc"))
        missing.sort(key=lambda f: f.id, reverse=(sort_order == "desc"))
        hits = present + missing
        total = len(hits)
        page = hits[offset:] if limit is None else hits[offset:offset + limit]
        return page, total

    def create(self, filing: Filing) -> Filing:
        with self._lock:
            if any(_key(f) == _key(filing) for f in self._rows.values()):
                raise Conflict("Filing already exists for this client, tax year, and filing type")
            row = copy.deepcopy(filing)
            row.id = next(self._ids)
            now = datetime.now()
            row.created_at = row.updated_at = now
            self._rows[row.id] = row
            return copy.deepcopy(row)

    def update_fields(self, filing_id: int, fields: dict,
                      expected_status: Optional[FilingStatus] = None) -> int:
        unknown = set(fields) - _FILING_FIELDS
        if unknown:
            raise KeyError(f"unknown filing fields: {sorted(unknown)}")
        with self._lock:
            row = self._rows.get(filing_id)
            if row is None:
                return 0
            if expected_status is not None and row.status != expected_status:
                return 0
            for name, value in fields.items():
                setattr(row, name, copy.deepcopy(value))
            if "updated_at" not in fields:
                row.updated_at = datetime.now()
            return 1

    def delete(self, filing_id: int, expected_status: Optional[FilingStatus] = None) -> int:
        with self._lock:
            row = self._rows.get(filing_id)
            if row is None:
                return 0
            if expected_status is not None and row.status != expected_status:
                return 0
            del self._rows[filing_id]
            return 1

    def count_by_status(self, client_id: Optional[int] = None, ca_id: Optional[int] = None,
                        tax_year: Optional[str] = None) -> Dict[FilingStatus, int]:
        flt = FilingFilters(client_id=client_id, ca_id=ca_id, tax_year=tax_year)
        counts: Dict[FilingStatus, int] = {}
        with self._lock:
            for f in self._rows.values():
                if matches(f, flt):
                    counts[f.status] = counts.get(f.status, 0) + 1
        return counts

    # ------------------------------------------------------ dunder helpers
    def __iter__(self) -> Iterator[Filing]:
        with self._lock:
            rows = [copy.deepcopy(f) for f in self._rows.values()]
        return iter(rows)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


class MemoryClientDirectory:
    """Client profiles keyed by id."""

    def __init__(self, clients: Optional[List[ClientRef]] = None) -> None:
        self._clients: Dict[int, ClientRef] = {c.id: c for c in clients or []}

    def add(self, client: ClientRef) -> None:
        self._clients[client.id] = client

    def get(self, client_id: int) -> Optional[ClientRef]:
        return self._clients.get(client_id)


class MemoryProfessionalDirectory:
    """User records keyed by id."""

    def __init__(self, users: Optional[List[Professional]] = None) -> None:
        self._users: Dict[int, Professional] = {u.id: u for u in users or []}

    def add(self, user: Professional) -> None:
        self._users[user.id] = user

    def get(self, user_id: int) -> Optional[Professional]:
        return self._users.get(user_id)
