"""
taxdesk.engine
==============

Filing lifecycle & assignment engine.

:class:`FilingEngine` is the only component allowed to write a filing's
``status`` and ``ca_id``.  It is stateless between calls: every operation
reads through the filing store, validates against the rules in
:pymod:`taxdesk.lifecycle`, and writes back with a conditional update so
a concurrent writer can never be silently overwritten.

Collaborators are duck‑typed; see :pymod:`taxdesk.store` (in memory) and
:pymod:`taxdesk.store_db` (SQL) for the two shipped implementations.

Failures are raised as the typed exceptions in :pymod:`taxdesk.errors`.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from .errors import (
    Conflict,
    IllegalState,
    InvalidAssignee,
    NoAssignment,
    NotFound,
    ValidationError,
)
from .lifecycle import check_transition, milestone_fields, parse_status
from .models import (
    Filing,
    FilingFilters,
    FilingPage,
    FilingStats,
    FilingStatus,
    FilingType,
    Priority,
    Role,
)
from .settings import settings as default_settings
from .store import SORTABLE

logger = logging.getLogger(__name__)

TAX_YEAR_RE = re.compile(r"([0-9]{4})-([0-9]{4})")
# Statuses that no longer count towards an upcoming deadline.
CLOSED = (FilingStatus.COMPLETED, FilingStatus.REJECTED)
# A lost compare‑and‑swap is retried this many times before Conflict.
CAS_RETRIES = 1


def validate_tax_year(tax_year: str) -> str:
    """
    Return *tax_year* if it is ``YYYY-YYYY`` with consecutive years.

    >>> validate_tax_year("2023-2024")
    '2023-2024'
    """
    m = TAX_YEAR_RE.fullmatch(tax_year or "")
    if not m:
        raise ValidationError("Invalid tax year format. Use YYYY-YYYY format")
    start, end = int(m.group(1)), int(m.group(2))
    if end != start + 1:
        raise ValidationError("Invalid tax year. End year must be start year + 1")
    return tax_year


def _require_id(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Invalid {label}")
    return value


def _enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {label} {value!r}; expected one of: {allowed}") from None


def _append_note(existing: Optional[str], note: Optional[str]) -> Optional[str]:
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


class FilingEngine:
    """
    Orchestrates filing creation, status transitions, CA assignment,
    deletion and the read‑only queries.

    Parameters
    ----------
    filings
        Filing store (``get`` / ``find`` / ``create`` / ``update_fields`` /
        ``delete`` / ``count_by_status``).
    clients
        Client directory (``get(client_id) -> ClientRef | None``).
    professionals
        Professional directory (``get(user_id) -> Professional | None``).
    settings
        :class:`taxdesk.settings.Settings` instance; page sizes and the
        default deadline window come from here.
    """

    def __init__(self, filings, clients, professionals, settings=None) -> None:
        self.filings = filings
        self.clients = clients
        self.professionals = professionals
        self.settings = settings or default_settings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load(self, filing_id: int) -> Filing:
        _require_id(filing_id, "filing ID")
        filing = self.filings.get(filing_id)
        if filing is None:
            raise NotFound(f"Filing {filing_id} not found")
        return filing

    def _reload(self, filing_id: int) -> Filing:
        filing = self.filings.get(filing_id)
        if filing is None:
            raise NotFound(f"Filing {filing_id} not found")
        return filing

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_filing(self, client_id: int, tax_year: str,
                      filing_type: Union[str, FilingType],
                      priority: Union[str, Priority, None] = None,
                      due_date: Optional[date] = None,
                      notes: Optional[str] = None) -> Filing:
        """
        Open a new ``draft`` filing for *client_id*.

        The client's default CA, if any, is copied onto the new filing.
        Raises ValidationError, NotFound (unknown client) or Conflict
        (a filing already exists for the same client, tax year and type).
        """
        if not client_id or not tax_year or not filing_type:
            raise ValidationError("Client ID, tax year, and filing type are required")
        _require_id(client_id, "client ID")
        validate_tax_year(tax_year)
        ftype = _enum(FilingType, filing_type, "filing type")
        prio = _enum(Priority, priority, "priority") if priority else Priority.MEDIUM
        if due_date is not None and not isinstance(due_date, date):
            raise ValidationError("Invalid due date")

        client = self.clients.get(client_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found")

        _, total = self.filings.find(
            FilingFilters(client_id=client_id, tax_year=tax_year, filing_type=ftype), limit=1
        )
        if total:
            raise Conflict("Filing already exists for this client, tax year, and filing type")

        draft = Filing(
            client_id=client_id,
            tax_year=tax_year,
            filing_type=ftype,
            status=FilingStatus.DRAFT,
            priority=prio,
            ca_id=client.default_ca_id,
            due_date=due_date,
            notes=notes,
        )
        # The store's unique key settles a race the pre‑check above missed.
        filing = self.filings.create(draft)
        logger.info(f"Filing created: {filing.id} for client {client_id}")
        return filing

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------
    def transition(self, filing_id: int, requested: Union[str, FilingStatus],
                   note: Optional[str] = None) -> Filing:
        """
        Move a filing to *requested* if the lifecycle table allows it.

        The write is conditioned on the status read at the start of the
        attempt.  If another writer got there first the filing is re‑read
        and re‑validated once; a second lost race raises Conflict.
        """
        target = parse_status(requested)
        filing = self._load(filing_id)
        for attempt in range(CAS_RETRIES + 1):
            if attempt:
                filing = self._reload(filing_id)
            check_transition(filing.status, target)

            now = datetime.now()
            fields: Dict[str, Any] = {"status": target, "updated_at": now}
            fields.update(milestone_fields(filing, target, now))
            if note:
                fields["notes"] = _append_note(filing.notes, note)

            if self.filings.update_fields(filing_id, fields, expected_status=filing.status):
                logger.info(f"Filing status updated: {filing_id} from {filing.status} to {target}")
                return self._reload(filing_id)
            logger.warning(
                f"Filing {filing_id} changed while moving {filing.status} → {target} "
                f"(attempt {attempt + 1})"
            )
        raise Conflict(f"Filing {filing_id} was modified concurrently; status not changed")

    def submit(self, filing_id: int, note: Optional[str] = None) -> Filing:
        """Send a filing for review (``in_progress → under_review``)."""
        return self.transition(filing_id, FilingStatus.UNDER_REVIEW,
                               note or "Filing submitted for review")

    def approve(self, filing_id: int, note: Optional[str] = None) -> Filing:
        return self.transition(filing_id, FilingStatus.COMPLETED,
                               note or "Filing approved and completed")

    def reject(self, filing_id: int, reason: str) -> Filing:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        return self.transition(filing_id, FilingStatus.REJECTED, reason)

    # ------------------------------------------------------------------
    # Field updates
    # ------------------------------------------------------------------
    def update_filing(self, filing_id: int, *,
                      status: Union[str, FilingStatus, None] = None,
                      priority: Union[str, Priority, None] = None,
                      income_sources: Optional[Dict[str, Any]] = None,
                      deductions: Optional[Dict[str, Any]] = None,
                      summary: Optional[Dict[str, Any]] = None,
                      notes: Optional[str] = None,
                      due_date: Optional[date] = None) -> Filing:
        """
        Update the mutable working fields of a filing.

        A *status* is routed through :meth:`transition`; client, tax year,
        filing type and assignment are never written here.
        """
        self._load(filing_id)
        fields: Dict[str, Any] = {}
        if priority is not None:
            fields["priority"] = _enum(Priority, priority, "priority")
        if income_sources is not None:
            fields["income_sources"] = income_sources
        if deductions is not None:
            fields["deductions"] = deductions
        if summary is not None:
            fields["summary"] = summary
        if notes is not None:
            fields["notes"] = notes
        if due_date is not None:
            if not isinstance(due_date, date):
                raise ValidationError("Invalid due date")
            fields["due_date"] = due_date

        if status is not None:
            self.transition(filing_id, status)
        if fields:
            if not self.filings.update_fields(filing_id, fields):
                raise NotFound(f"Filing {filing_id} not found")
            logger.info(f"Filing updated: {filing_id} fields {sorted(fields)}")
        return self._reload(filing_id)

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------
    def assign_ca(self, filing_id: int, ca_id: int) -> Filing:
        """
        Assign (or reassign) an active CA to a filing.

        Any previous assignment is replaced regardless of filing status.
        """
        _require_id(filing_id, "filing ID")
        _require_id(ca_id, "CA ID")
        self._load(filing_id)

        ca = self.professionals.get(ca_id)
        if ca is None:
            raise NotFound(f"CA {ca_id} not found")
        if not ca.is_assignable:
            if ca.role != Role.CA:
                raise InvalidAssignee(f"User {ca_id} is not a CA")
            raise InvalidAssignee(f"CA {ca_id} is not active")

        if not self.filings.update_fields(filing_id, {"ca_id": ca_id}):
            raise NotFound(f"Filing {filing_id} not found")
        logger.info(f"CA {ca_id} assigned to filing {filing_id}")
        return self._reload(filing_id)

    def unassign_ca(self, filing_id: int) -> Filing:
        filing = self._load(filing_id)
        if filing.ca_id is None:
            raise NoAssignment(f"No CA assigned to filing {filing_id}")
        if not self.filings.update_fields(filing_id, {"ca_id": None}):
            raise NotFound(f"Filing {filing_id} not found")
        logger.info(f"CA {filing.ca_id} unassigned from filing {filing_id}")
        return self._reload(filing_id)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------
    def delete_filing(self, filing_id: int) -> bool:
        """
        Remove a filing; only ``draft`` filings may be deleted.

        The delete itself is conditioned on the row still being ``draft``,
        so a transition that lands between the check and the write wins.
        """
        filing = self._load(filing_id)
        if filing.status is not FilingStatus.DRAFT:
            raise IllegalState("Only draft filings can be deleted")

        if not self.filings.delete(filing_id, expected_status=FilingStatus.DRAFT):
            current = self.filings.get(filing_id)
            if current is None:
                raise NotFound(f"Filing {filing_id} not found")
            raise IllegalState(
                f"Only draft filings can be deleted (filing {filing_id} is now {current.status})"
            )
        logger.info(f"Filing deleted: {filing_id}")
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_filing(self, filing_id: int) -> Filing:
        return self._load(filing_id)

    def list_filings(self, filters: Optional[FilingFilters] = None) -> FilingPage:
        """Filtered, sorted, paginated listing with the total match count."""
        flt = filters or FilingFilters(limit=self.settings.default_page_size)
        if flt.page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= flt.limit <= self.settings.max_page_size:
            raise ValidationError(f"limit must be between 1 and {self.settings.max_page_size}")
        if flt.sort_by not in SORTABLE:
            raise ValidationError(f"Cannot sort by {flt.sort_by!r}")
        if flt.sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'")
        if flt.tax_year is not None:
            validate_tax_year(flt.tax_year)

        items, total = self.filings.find(
            flt,
            sort_by=flt.sort_by,
            sort_order=flt.sort_order,
            limit=flt.limit,
            offset=(flt.page - 1) * flt.limit,
        )
        return FilingPage(items=items, total=total, page=flt.page, limit=flt.limit)

    def filings_for_client(self, client_id: int, status: Optional[FilingStatus] = None,
                           limit: Optional[int] = None) -> List[Filing]:
        _require_id(client_id, "client ID")
        if self.clients.get(client_id) is None:
            raise NotFound(f"Client {client_id} not found")
        rows, _ = self.filings.find(FilingFilters(client_id=client_id, status=status), limit=limit)
        return rows

    def filings_for_ca(self, ca_id: int, status: Optional[FilingStatus] = None,
                       limit: Optional[int] = None) -> List[Filing]:
        _require_id(ca_id, "CA ID")
        ca = self.professionals.get(ca_id)
        if ca is None:
            raise NotFound(f"CA {ca_id} not found")
        if ca.role != Role.CA:
            raise ValidationError(f"User {ca_id} is not a CA")
        rows, _ = self.filings.find(FilingFilters(ca_id=ca_id, status=status), limit=limit)
        return rows

    def get_stats(self, client_id: Optional[int] = None, ca_id: Optional[int] = None,
                  tax_year: Optional[str] = None) -> FilingStats:
        """Count filings per status within an optional client / CA / tax‑year scope."""
        counts = self.filings.count_by_status(client_id=client_id, ca_id=ca_id, tax_year=tax_year)
        return FilingStats.from_counts(counts)

    def upcoming_deadlines(self, days: Optional[int] = None, ca_id: Optional[int] = None,
                           client_id: Optional[int] = None,
                           today: Optional[date] = None) -> List[Filing]:
        """
        Open filings due between *today* and *today + days*, soonest first.

        Completed and rejected filings are left out.
        """
        days = self.settings.deadline_window_days if days is None else days
        if days < 0:
            raise ValidationError("days must be >= 0")
        today = today or date.today()
        flt = FilingFilters(
            client_id=client_id,
            ca_id=ca_id,
            due_date_from=today,
            due_date_to=today + timedelta(days=days),
        )
        rows, _ = self.filings.find(flt, sort_by="due_date", sort_order="asc")
        return [f for f in rows if f.status not in CLOSED]
