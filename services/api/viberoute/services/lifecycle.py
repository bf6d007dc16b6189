"""Itinerary status state machine.

    pending ──► running ──► completed
       │           │ └────► failed
       └───────────┴──────► cancelled

Terminal states have no outgoing edges.
"""

from datetime import datetime, timezone

from ..exceptions import InvalidTransition
from ..models import Itinerary

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

STATUSES = (PENDING, RUNNING, COMPLETED, FAILED, CANCELLED)

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({RUNNING, CANCELLED}),
    RUNNING: frozenset({COMPLETED, FAILED, CANCELLED}),
    COMPLETED: frozenset(),
    FAILED: frozenset(),
    CANCELLED: frozenset(),
}


def is_terminal(status: str) -> bool:
    return status in (COMPLETED, FAILED, CANCELLED)


def is_cancellable(status: str) -> bool:
    return status in (PENDING, RUNNING)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def transition(itinerary: Itinerary, target: str) -> Itinerary:
    """Move an itinerary to `target`, raising InvalidTransition on an illegal edge.

    Does not flush or commit; the caller owns the transaction.
    """
    if not can_transition(itinerary.status, target):
        raise InvalidTransition(itinerary.status, target)

    itinerary.status = target
    itinerary.updated_at = datetime.now(timezone.utc)
    if target == CANCELLED:
        itinerary.cancelled_at = itinerary.updated_at
    return itinerary
