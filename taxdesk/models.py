"""
taxdesk.models
==============

Dataclasses and enums describing a tax filing and the read‑only records
(clients, professionals) the lifecycle engine consults.  Like the rest of
the core, these objects carry **no** external‑library dependencies so the
engine can be exercised without a database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class FilingStatus(str, Enum):
    """Life‑cycle states of a filing."""
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    COMPLETED = "completed"
    REJECTED = "rejected"

    def __str__(self) -> str:        # nicer REPL display
        return self.value


class FilingType(str, Enum):
    INDIVIDUAL = "individual"
    BUSINESS = "business"
    CAPITAL_GAINS = "capital_gains"

    def __str__(self) -> str:
        return self.value


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    def __str__(self) -> str:
        return self.value


class Role(str, Enum):
    """User roles known to the professional directory."""
    ADMIN = "admin"
    CA = "ca"
    CUSTOMER = "customer"

    def __str__(self) -> str:
        return self.value


@dataclass
class Filing:
    """
    One tax‑filing case for one client, tax year and filing type.

    Parameters
    ----------
    client_id : int
        Owning client (immutable).
    tax_year : str
        Fiscal year pair such as ``"2023-2024"`` (immutable).
    filing_type : FilingType
        individual / business / capital_gains (immutable).
    status : FilingStatus, default=DRAFT
        Current life‑cycle phase; only :pymod:`taxdesk.engine` changes it.
    priority : Priority, default=MEDIUM
    ca_id : int | None
        Assigned chartered accountant, if any.
    due_date : datetime.date | None
    income_sources, deductions, summary : dict | None
        Opaque structured payloads.
    notes : str | None
        Free text; status changes append to it.
    id : int | None
        Store‑assigned identifier (``None`` until persisted).
    """
    client_id: int
    tax_year: str
    filing_type: FilingType
    status: FilingStatus = FilingStatus.DRAFT
    priority: Priority = Priority.MEDIUM
    ca_id: Optional[int] = None
    due_date: Optional[date] = None
    income_sources: Optional[Dict[str, Any]] = None
    deductions: Optional[Dict[str, Any]] = None
    summary: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    # Convenience helpers -------------------------------------------------
    def is_overdue(self, today: Optional[date] = None) -> bool:
        """True when the due date has passed and the filing is not completed."""
        if self.due_date is None:
            return False
        today = today or date.today()
        return today > self.due_date and self.status is not FilingStatus.COMPLETED

    def days_until_due(self, today: Optional[date] = None) -> Optional[int]:
        """Days left until the due date (negative once overdue)."""
        if self.due_date is None:
            return None
        today = today or date.today()
        return (self.due_date - today).days

    def can_be_modified(self) -> bool:
        return self.status in (FilingStatus.DRAFT, FilingStatus.IN_PROGRESS)


@dataclass
class ClientRef:
    """Client profile as seen by the engine (read‑only)."""
    id: int
    default_ca_id: Optional[int] = None
    full_name: Optional[str] = None
    pan_number: Optional[str] = None


@dataclass
class Professional:
    """A user record consulted for CA eligibility (read‑only)."""
    id: int
    role: Role
    is_active: bool = True
    full_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_assignable(self) -> bool:
        return self.role == Role.CA and self.is_active


@dataclass
class FilingFilters:
    """
    Filter / sort / pagination options accepted by the listing query.

    Every filter is optional; ``None`` means "do not filter on this".
    """
    client_id: Optional[int] = None
    ca_id: Optional[int] = None
    status: Optional[FilingStatus] = None
    filing_type: Optional[FilingType] = None
    priority: Optional[Priority] = None
    tax_year: Optional[str] = None
    search: Optional[str] = None
    due_date_from: Optional[date] = None
    due_date_to: Optional[date] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 10


@dataclass
class FilingPage:
    """One page of a filtered listing plus the total match count."""
    items: List[Filing]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return -(-self.total // self.limit)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def pagination(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


@dataclass
class FilingStats:
    """Count of filings per status for some scope."""
    total: int = 0
    draft: int = 0
    in_progress: int = 0
    under_review: int = 0
    completed: int = 0
    rejected: int = 0

    @classmethod
    def from_counts(cls, counts: Dict[FilingStatus, int]) -> "FilingStats":
        stats = cls()
        for status, n in counts.items():
            setattr(stats, FilingStatus(status).value, n)
            stats.total += n
        return stats
