"""
taxdesk.lifecycle
=================

State‑transition guard for a :class:`taxdesk.models.Filing`.

A small finite‑state‑machine describes which statuses are legal
successors of each status.  :pyfunc:`check_transition` validates a
requested move and :pyfunc:`milestone_fields` lists the timestamps the
move stamps on a filing; persistence is the engine's job.
"""

from __future__ import annotations

from datetime import datetime
from typing import FrozenSet, Iterable, Union

import networkx as nx

from .errors import InvalidTransition
from .models import Filing, FilingStatus

# ---------------------------------------------------------------------
# Allowed transitions: source status → set[valid target statuses]
# ---------------------------------------------------------------------
RULES = {
    FilingStatus.DRAFT:        frozenset({FilingStatus.IN_PROGRESS, FilingStatus.REJECTED}),
    FilingStatus.IN_PROGRESS:  frozenset({FilingStatus.UNDER_REVIEW, FilingStatus.DRAFT,
                                          FilingStatus.REJECTED}),
    FilingStatus.UNDER_REVIEW: frozenset({FilingStatus.COMPLETED, FilingStatus.IN_PROGRESS,
                                          FilingStatus.REJECTED}),
    FilingStatus.COMPLETED:    frozenset(),
    FilingStatus.REJECTED:     frozenset({FilingStatus.DRAFT, FilingStatus.IN_PROGRESS}),
}

INITIAL = FilingStatus.DRAFT
TERMINAL = frozenset(s for s, nxt in RULES.items() if not nxt)


def parse_status(value: Union[str, FilingStatus]) -> FilingStatus:
    """Coerce *value* to a :class:`FilingStatus` or raise InvalidTransition."""
    try:
        return FilingStatus(value)
    except ValueError:
        raise InvalidTransition(f"unknown status {value!r}") from None


def allowed_next(current: Union[str, FilingStatus]) -> FrozenSet[FilingStatus]:
    """Return the statuses reachable in one step from *current*."""
    return RULES.get(FilingStatus(current), frozenset())


def check_transition(current: Union[str, FilingStatus],
                     requested: Union[str, FilingStatus]) -> FilingStatus:
    """
    Validate ``current → requested`` against :data:`RULES`.

    Returns the requested status as an enum member, otherwise raises
    :class:`~taxdesk.errors.InvalidTransition`.

    Examples
    --------
    >>> check_transition("draft", "in_progress")
    <FilingStatus.IN_PROGRESS: 'in_progress'>
    >>> check_transition("completed", "draft")
    Traceback (most recent call last):
        ...
    taxdesk.errors.InvalidTransition: Invalid status transition from completed to draft
    """
    source = parse_status(current)
    target = parse_status(requested)
    if target not in RULES[source]:
        raise InvalidTransition(f"Invalid status transition from {source} to {target}")
    return target


def milestone_fields(filing: Filing, target: FilingStatus, now: datetime) -> dict:
    """Timestamp fields that entering *target* sets on *filing*."""
    fields = {}
    if target is FilingStatus.IN_PROGRESS and filing.started_at is None:
        fields["started_at"] = now
    elif target is FilingStatus.COMPLETED and filing.completed_at is None:
        fields["completed_at"] = now
    return fields


def is_valid_walk(statuses: Iterable[Union[str, FilingStatus]]) -> bool:
    """
    True if *statuses* starts at ``draft`` and every consecutive pair is an
    allowed transition.  An empty sequence is not a walk.
    """
    seq = [FilingStatus(s) for s in statuses]
    if not seq or seq[0] is not INITIAL:
        return False
    return all(b in RULES[a] for a, b in zip(seq, seq[1:]))


# ---------------------------------------------------------------------
# Graph view of the table (used by viz and for reachability audits)
# ---------------------------------------------------------------------
def transition_graph() -> nx.DiGraph:
    """Return :data:`RULES` as a directed graph of status values."""
    g = nx.DiGraph()
    g.add_nodes_from(s.value for s in FilingStatus)
    for source, targets in RULES.items():
        for target in targets:
            g.add_edge(source.value, target.value)
    return g


def reachable_from(status: Union[str, FilingStatus]) -> FrozenSet[FilingStatus]:
    """Every status reachable from *status* in one or more steps."""
    g = transition_graph()
    return frozenset(FilingStatus(s) for s in nx.descendants(g, FilingStatus(status).value))
