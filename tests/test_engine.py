"""
tests/test_engine.py
====================

Behavioural tests for taxdesk.engine.FilingEngine.

Most tests run against both the in‑memory and the SQLite collaborators
through the parametrised ``engine`` fixture; the race tests use small
store subclasses that interleave a competing write.
"""

import threading
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from taxdesk.engine import FilingEngine, validate_tax_year
from taxdesk.errors import (
    Conflict,
    IllegalState,
    InvalidAssignee,
    InvalidTransition,
    NoAssignment,
    NotFound,
    Unavailable,
    ValidationError,
)
from taxdesk.lifecycle import is_valid_walk
from taxdesk.models import FilingFilters, FilingStatus as S, FilingType, Priority
from taxdesk.store import MemoryClientDirectory, MemoryFilingStore, MemoryProfessionalDirectory

from conftest import CLIENTS, USERS


@pytest.fixture(params=["memory", "db"])
def engine(request):
    return request.getfixturevalue(f"{request.param}_engine")


def _new(engine, client_id=5, tax_year="2023-2024", ftype="individual", **kw):
    return engine.create_filing(client_id, tax_year, ftype, **kw)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
def test_create_defaults(engine):
    f = _new(engine, notes="first contact")
    assert f.id is not None
    assert f.status is S.DRAFT
    assert f.priority is Priority.MEDIUM
    assert f.ca_id is None
    assert f.notes == "first contact"


def test_create_seeds_client_default_ca(engine):
    f = _new(engine, client_id=6, priority="urgent", due_date=date(2024, 7, 31))
    assert f.ca_id == 9
    assert f.priority is Priority.URGENT
    assert f.due_date == date(2024, 7, 31)


@pytest.mark.parametrize("tax_year,ok", [
    ("2023-2024", True),
    ("1999-2000", True),
    ("2023-2025", False),
    ("2024-2023", False),
    ("2023", False),
    ("23-24", False),
    ("2023-2024 ", False),
    ("2023-2024\n", False),
    ("٢٠٢٣-٢٠٢٤", False),
    ("abcd-efgh", False),
])
def test_tax_year_rule(memory_engine, tax_year, ok):
    if ok:
        assert _new(memory_engine, tax_year=tax_year).tax_year == tax_year
        assert validate_tax_year(tax_year) == tax_year
    else:
        with pytest.raises(ValidationError):
            _new(memory_engine, tax_year=tax_year)


@pytest.mark.parametrize("kwargs", [
    {"client_id": None},
    {"tax_year": ""},
    {"ftype": None},
    {"ftype": "partnership"},
    {"priority": "whenever"},
])
def test_create_validation_errors(memory_engine, kwargs):
    with pytest.raises(ValidationError):
        _new(memory_engine, **kwargs)


def test_create_unknown_client(engine):
    with pytest.raises(NotFound):
        _new(engine, client_id=404)


def test_create_duplicate_conflicts(engine):
    _new(engine)
    with pytest.raises(Conflict):
        _new(engine)
    # a different type or year is a different key
    _new(engine, ftype=FilingType.BUSINESS)
    _new(engine, tax_year="2024-2025")


def test_store_uniqueness_backs_up_precheck(db_engine):
    """Scenario B (SQL): a racer that slipped past the pre‑check still loses."""
    _new(db_engine)
    with patch.object(db_engine.filings, "find", return_value=([], 0)):
        with pytest.raises(Conflict):
            _new(db_engine)


class _BarrierStore(MemoryFilingStore):
    """Holds every caller after its pre‑check until all callers have done theirs."""

    def __init__(self, parties):
        super().__init__()
        self.barrier = threading.Barrier(parties)

    def find(self, *args, **kwargs):
        result = super().find(*args, **kwargs)
        self.barrier.wait(timeout=5)
        return result


def test_concurrent_creation_exactly_one_wins(test_settings):
    """Scenario B: two simultaneous creations, one success and one Conflict."""
    store = _BarrierStore(2)
    eng = FilingEngine(store, MemoryClientDirectory(list(CLIENTS)),
                       MemoryProfessionalDirectory(list(USERS)), settings=test_settings)
    outcomes = []

    def worker():
        try:
            outcomes.append(_new(eng))
        except Conflict as e:
            outcomes.append(e)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(outcomes) == 2
    assert sum(isinstance(o, Conflict) for o in outcomes) == 1
    assert len(store) == 1


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
def test_scenario_a(engine):
    f = _new(engine)
    assert f.status is S.DRAFT
    f = engine.transition(f.id, S.IN_PROGRESS)
    assert f.started_at is not None
    f = engine.transition(f.id, "under_review", "ready for review")
    assert f.status is S.UNDER_REVIEW
    with pytest.raises(InvalidTransition):
        engine.transition(f.id, S.DRAFT)
    # the table does allow sending it back to in_progress
    assert engine.transition(f.id, S.IN_PROGRESS).status is S.IN_PROGRESS


def test_completed_is_terminal(engine):
    f = _new(engine)
    for status in (S.IN_PROGRESS, S.UNDER_REVIEW, S.COMPLETED):
        f = engine.transition(f.id, status)
    assert f.completed_at is not None
    for status in S:
        with pytest.raises(InvalidTransition):
            engine.transition(f.id, status)
    assert engine.get_filing(f.id).status is S.COMPLETED


def test_unknown_status_and_missing_filing(engine):
    f = _new(engine)
    with pytest.raises(InvalidTransition):
        engine.transition(f.id, "archived")
    with pytest.raises(NotFound):
        engine.transition(404, S.IN_PROGRESS)
    with pytest.raises(ValidationError):
        engine.transition(0, S.IN_PROGRESS)


def test_notes_are_appended(engine):
    f = _new(engine, notes="created")
    engine.transition(f.id, S.IN_PROGRESS, "picked up")
    f = engine.reject(f.id, "Form 16 missing")
    assert f.notes == "created\npicked up\nForm 16 missing"


def test_submit_approve_reject(engine):
    f = _new(engine)
    with pytest.raises(InvalidTransition):
        engine.submit(f.id)
    engine.transition(f.id, S.IN_PROGRESS)
    f = engine.submit(f.id)
    assert f.status is S.UNDER_REVIEW
    assert f.notes.endswith("Filing submitted for review")
    f = engine.approve(f.id)
    assert f.status is S.COMPLETED
    with pytest.raises(ValidationError):
        engine.reject(f.id, "  ")


def test_observed_statuses_form_a_valid_walk(memory_engine):
    f = _new(memory_engine)
    seen = [f.status]
    attempts = [S.UNDER_REVIEW, S.IN_PROGRESS, S.COMPLETED, S.UNDER_REVIEW,
                S.DRAFT, S.REJECTED, S.IN_PROGRESS, S.UNDER_REVIEW, S.COMPLETED, S.DRAFT]
    for status in attempts:
        try:
            seen.append(memory_engine.transition(f.id, status).status)
        except InvalidTransition:
            pass
    assert is_valid_walk(seen)
    assert seen[-1] is S.COMPLETED


class _RacingStore(MemoryFilingStore):
    """Applies ``racer`` status changes just before the engine's conditional writes."""

    def __init__(self):
        super().__init__()
        self.racer = []

    def update_fields(self, filing_id, fields, expected_status=None):
        if expected_status is not None and self.racer:
            super().update_fields(filing_id, {"status": self.racer.pop(0)})
        return super().update_fields(filing_id, fields, expected_status)


@pytest.fixture
def racing(test_settings):
    store = _RacingStore()
    eng = FilingEngine(store, MemoryClientDirectory(list(CLIENTS)),
                       MemoryProfessionalDirectory(list(USERS)), settings=test_settings)
    return eng, store


def test_lost_race_is_retried_against_fresh_status(racing):
    eng, store = racing
    f = _new(eng)
    store.racer = [S.IN_PROGRESS]
    # draft → rejected loses to draft → in_progress; in_progress → rejected is still legal
    assert eng.transition(f.id, S.REJECTED).status is S.REJECTED


def test_lost_race_never_applies_stale_transition(racing):
    eng, store = racing
    f = _new(eng)
    store.racer = [S.IN_PROGRESS]
    with pytest.raises(InvalidTransition):
        eng.transition(f.id, S.IN_PROGRESS)
    assert store.get(f.id).status is S.IN_PROGRESS


def test_second_lost_race_is_conflict(racing):
    eng, store = racing
    f = _new(eng)
    store.racer = [S.IN_PROGRESS, S.DRAFT]
    with pytest.raises(Conflict):
        eng.transition(f.id, S.REJECTED)
    assert store.get(f.id).status is S.DRAFT


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------
def test_scenario_c(engine):
    f = _new(engine)
    assert engine.assign_ca(f.id, 9).ca_id == 9
    assert engine.assign_ca(f.id, 11).ca_id == 11
    assert engine.unassign_ca(f.id).ca_id is None
    with pytest.raises(NoAssignment):
        engine.unassign_ca(f.id)


@pytest.mark.parametrize("user_id,error", [
    (12, InvalidAssignee),   # inactive CA
    (20, InvalidAssignee),   # customer
    (1, InvalidAssignee),    # admin
    (404, NotFound),
    (0, ValidationError),
])
def test_assign_rejects_ineligible_users(engine, user_id, error):
    f = _new(engine)
    with pytest.raises(error):
        engine.assign_ca(f.id, user_id)
    assert engine.get_filing(f.id).ca_id is None


def test_assign_messages_name_the_reason(memory_engine):
    f = _new(memory_engine)
    with pytest.raises(InvalidAssignee, match="is not a CA"):
        memory_engine.assign_ca(f.id, 20)
    with pytest.raises(InvalidAssignee, match="is not active"):
        memory_engine.assign_ca(f.id, 12)


def test_assign_allowed_in_any_status(engine):
    f = _new(engine)
    for status in (S.IN_PROGRESS, S.UNDER_REVIEW, S.COMPLETED):
        engine.transition(f.id, status)
    assert engine.assign_ca(f.id, 11).ca_id == 11


def test_assign_missing_filing(engine):
    with pytest.raises(NotFound):
        engine.assign_ca(404, 9)
    with pytest.raises(NotFound):
        engine.unassign_ca(404)


def test_assign_after_concurrent_delete_is_not_found(memory_engine):
    f = _new(memory_engine)
    store = memory_engine.filings
    real_update = store.update_fields

    def delete_first(filing_id, fields, expected_status=None):
        store.delete(filing_id)
        return real_update(filing_id, fields, expected_status)

    with patch.object(store, "update_fields", side_effect=delete_first):
        with pytest.raises(NotFound):
            memory_engine.assign_ca(f.id, 9)


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------
def test_delete_only_drafts(engine):
    f = _new(engine)
    g = _new(engine, ftype="business")
    engine.transition(g.id, S.IN_PROGRESS)

    with pytest.raises(IllegalState):
        engine.delete_filing(g.id)
    assert engine.delete_filing(f.id) is True
    with pytest.raises(NotFound):
        engine.delete_filing(f.id)


@pytest.mark.parametrize("path", [
    [S.REJECTED],
    [S.IN_PROGRESS, S.UNDER_REVIEW],
    [S.IN_PROGRESS, S.UNDER_REVIEW, S.COMPLETED],
])
def test_delete_non_draft_is_illegal(engine, path):
    f = _new(engine)
    for status in path:
        engine.transition(f.id, status)
    with pytest.raises(IllegalState):
        engine.delete_filing(f.id)


def test_delete_rechecks_status_at_write_time(memory_engine):
    f = _new(memory_engine)
    store = memory_engine.filings
    real_delete = store.delete

    def transition_first(filing_id, expected_status=None):
        store.update_fields(filing_id, {"status": S.IN_PROGRESS})
        return real_delete(filing_id, expected_status)

    with patch.object(store, "delete", side_effect=transition_first):
        with pytest.raises(IllegalState):
            memory_engine.delete_filing(f.id)
    assert store.get(f.id) is not None


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------
def test_update_filing_fields_and_status(engine):
    f = _new(engine)
    f = engine.update_filing(f.id, status="in_progress", priority="high",
                             deductions={"80C": 150000}, due_date=date(2024, 7, 31))
    assert f.status is S.IN_PROGRESS
    assert f.priority is Priority.HIGH
    assert f.deductions == {"80C": 150000}
    with pytest.raises(InvalidTransition):
        engine.update_filing(f.id, status="completed")
    with pytest.raises(ValidationError):
        engine.update_filing(f.id, priority="asap")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _populate(engine):
    a = _new(engine, due_date=date.today() + timedelta(days=3))
    b = _new(engine, ftype="capital_gains", due_date=date.today() + timedelta(days=40))
    c = _new(engine, client_id=6, notes="GST turnover", due_date=date.today() + timedelta(days=10))
    d = _new(engine, client_id=6, ftype="business", due_date=date.today() + timedelta(days=1))
    engine.transition(d.id, S.REJECTED, "duplicate")
    return a, b, c, d


def test_list_filings(engine):
    a, b, c, d = _populate(engine)
    page = engine.list_filings(FilingFilters(limit=2))
    assert page.total == 4
    assert len(page.items) == 2 and page.has_next
    # newest first
    assert [f.id for f in page.items] == [d.id, c.id]

    page = engine.list_filings(FilingFilters(ca_id=9))
    assert {f.id for f in page.items} == {c.id, d.id}

    page = engine.list_filings(FilingFilters(search="GST"))
    assert [f.id for f in page.items] == [c.id]

    page = engine.list_filings(FilingFilters(status=S.REJECTED))
    assert [f.id for f in page.items] == [d.id]


def test_list_filings_by_names(engine):
    a, b, c, d = _populate(engine)
    assert engine.list_filings(FilingFilters(search="_")).total == 0
    page = engine.list_filings(FilingFilters(search="rahul"))
    assert {f.id for f in page.items} == {c.id, d.id}
    page = engine.list_filings(FilingFilters(search="anita rao"))
    assert {f.id for f in page.items} == {c.id, d.id}

    page = engine.list_filings(FilingFilters(sort_by="client_name", sort_order="asc"))
    assert [f.id for f in page.items] == [a.id, b.id, c.id, d.id]
    page = engine.list_filings(FilingFilters(sort_by="ca_name", sort_order="desc"))
    assert [f.id for f in page.items] == [d.id, c.id, b.id, a.id]


@pytest.mark.parametrize("filters", [
    FilingFilters(page=0),
    FilingFilters(limit=0),
    FilingFilters(limit=1000),
    FilingFilters(sort_by="password"),
    FilingFilters(sort_order="sideways"),
    FilingFilters(tax_year="2023-2025"),
])
def test_list_filings_rejects_bad_options(memory_engine, filters):
    with pytest.raises(ValidationError):
        memory_engine.list_filings(filters)


def test_filings_for_client_and_ca(engine):
    a, b, c, d = _populate(engine)
    assert {f.id for f in engine.filings_for_client(5)} == {a.id, b.id}
    assert [f.id for f in engine.filings_for_client(6, status=S.DRAFT)] == [c.id]
    assert {f.id for f in engine.filings_for_ca(9)} == {c.id, d.id}
    with pytest.raises(NotFound):
        engine.filings_for_client(404)
    with pytest.raises(ValidationError):
        engine.filings_for_ca(20)
    with pytest.raises(NotFound):
        engine.filings_for_ca(404)


def test_stats(engine):
    _populate(engine)
    stats = engine.get_stats()
    assert stats.total == 4 and stats.draft == 3 and stats.rejected == 1
    assert engine.get_stats(client_id=6).total == 2
    assert engine.get_stats(ca_id=9, tax_year="2023-2024").rejected == 1
    assert engine.get_stats(tax_year="1999-2000").total == 0


def test_upcoming_deadlines(engine):
    a, b, c, d = _populate(engine)
    # d is rejected, b falls outside the default 30‑day window
    assert [f.id for f in engine.upcoming_deadlines()] == [a.id, c.id]
    assert [f.id for f in engine.upcoming_deadlines(days=60)] == [a.id, c.id, b.id]
    assert [f.id for f in engine.upcoming_deadlines(days=60, client_id=5)] == [a.id, b.id]
    assert [f.id for f in engine.upcoming_deadlines(ca_id=9)] == [c.id]
    later = date.today() + timedelta(days=5)
    assert [f.id for f in engine.upcoming_deadlines(days=10, today=later)] == [c.id]
    with pytest.raises(ValidationError):
        engine.upcoming_deadlines(days=-1)


def test_store_failure_propagates_as_unavailable(memory_engine):
    with patch.object(memory_engine.filings, "get", side_effect=Unavailable("db down")):
        with pytest.raises(Unavailable):
            memory_engine.transition(1, S.IN_PROGRESS)
