"""Generation orchestrator and itinerary queries.

start_generation() is the only writer of new rows. Concurrency is settled by
the database, not by locks held here:
- (user_id, request_id) unique makes a replayed request return the original row
- the partial unique index on running rows lets at most one generation per user run
- (note_id, version) unique catches two attempts allocating the same version

The plan client is called outside any transaction. Every terminal write is a
compare-and-set on status = 'running', so a cancel that lands while the client
is working always wins and the late result is dropped.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..exceptions import (
    CannotCancel,
    CannotDelete,
    ConversionError,
    DataQualityError,
    ExportValidationError,
    GenerationInProgress,
    ItineraryNotFound,
    NoteNotFound,
    PreferencesMissing,
    VersionConflict,
)
from ..models import Itinerary, Note
from ..schemas import ItineraryStatusOut, ResolvedPreferences
from .canonicalizer import canonicalize, route_summary
from .export_validator import assert_valid_export, assert_valid_route
from .exporters import FORMATS, render_export
from .lifecycle import (
    CANCELLED,
    COMPLETED,
    FAILED,
    PENDING,
    RUNNING,
    can_transition,
    is_cancellable,
    is_terminal,
    transition,
)
from .plan_client import PlanProducingClient, PlanRequest, get_plan_client
from .plan_parser import Malformed, PlanDraft, Truncated, WellFormed, enforce_quality, parse_plan
from .spend import check_spend_cap, record_usage

logger = logging.getLogger("viberoute.itineraries")

MAX_VERSION_ATTEMPTS = 3
MAX_LIST_LIMIT = 100

TRUNCATED_MESSAGE = (
    "AI response was incomplete. Please try again with a shorter trip or fewer days."
)

Dispatch = Callable[[str, PlanRequest], None]


# --- Lookups ---

def get_owned_note(db: Session, user_id: str, note_id: str) -> Note:
    note = db.execute(
        select(Note).where(
            Note.id == note_id,
            Note.user_id == user_id,
            Note.deleted_at.is_(None),
        )
    ).scalar_one_or_none()
    if note is None:
        raise NoteNotFound(f"Note {note_id} not found")
    return note


def _get_owned_itinerary(db: Session, user_id: str, itinerary_id: str) -> Itinerary:
    itinerary = db.execute(
        select(Itinerary).where(
            Itinerary.id == itinerary_id,
            Itinerary.user_id == user_id,
            Itinerary.deleted_at.is_(None),
        )
    ).scalar_one_or_none()
    if itinerary is None:
        raise ItineraryNotFound(f"Itinerary {itinerary_id} not found")
    return itinerary


def _find_by_request(db: Session, user_id: str, request_id: str) -> Optional[Itinerary]:
    return db.execute(
        select(Itinerary).where(
            Itinerary.user_id == user_id,
            Itinerary.request_id == request_id,
        )
    ).scalar_one_or_none()


def _find_running(db: Session, user_id: str) -> Optional[Itinerary]:
    return db.execute(
        select(Itinerary).where(
            Itinerary.user_id == user_id,
            Itinerary.status == RUNNING,
        )
    ).scalars().first()


def _reload(db: Session, itinerary_id: str) -> Itinerary:
    return db.execute(
        select(Itinerary)
        .where(Itinerary.id == itinerary_id)
        .execution_options(populate_existing=True)
    ).scalar_one()


# --- Start ---

def _next_version(db: Session, note_id: str) -> int:
    current = db.execute(
        select(func.max(Itinerary.version)).where(Itinerary.note_id == note_id)
    ).scalar()
    return (current or 0) + 1


def _insert_running(db: Session, user_id: str, note_id: str, request_id: str) -> Itinerary:
    """Insert the attempt and move it to running in one transaction.

    Either both land or neither does, so a lost race leaves no row behind.
    """
    itinerary = Itinerary(
        note_id=note_id,
        user_id=user_id,
        version=_next_version(db, note_id),
        status=PENDING,
        request_id=request_id,
    )
    db.add(itinerary)
    db.flush()

    transition(itinerary, RUNNING)
    itinerary.progress = 0
    itinerary.message = "Generating route"
    db.commit()
    db.refresh(itinerary)
    return itinerary


def start_generation(
    db: Session,
    user_id: str,
    note_id: str,
    request_id: str,
    preferences: Optional[ResolvedPreferences],
    client: Optional[PlanProducingClient] = None,
    dispatch: Optional[Dispatch] = None,
) -> Itinerary:
    """Accept a generation request and hand the attempt to `dispatch`.

    Replays return the row created by the first request with the same
    request_id, whatever its status. Without `dispatch` the attempt runs inline.
    """
    note = get_owned_note(db, user_id, note_id)
    if preferences is None:
        raise PreferencesMissing("Resolved preferences are required to generate a route")

    existing = _find_by_request(db, user_id, request_id)
    if existing is not None:
        logger.info(f"Replaying request {request_id}: itinerary {existing.id} is {existing.status}")
        return existing

    # Advisory only; the running index is authoritative
    active = _find_running(db, user_id)
    if active is not None:
        raise GenerationInProgress(active.request_id)

    check_spend_cap(db, user_id)

    plan_request = PlanRequest(
        trip_title=note.title,
        trip_text=note.note_text,
        preferences=preferences,
    )

    itinerary = None
    for attempt in range(1, MAX_VERSION_ATTEMPTS + 1):
        try:
            itinerary = _insert_running(db, user_id, note_id, request_id)
            break
        except IntegrityError:
            db.rollback()

        existing = _find_by_request(db, user_id, request_id)
        if existing is not None:
            logger.info(f"Request {request_id} lost a race to its own replay; returning {existing.id}")
            return existing
        active = _find_running(db, user_id)
        if active is not None:
            logger.info(f"User {user_id} already has generation {active.request_id} running")
            raise GenerationInProgress(active.request_id)
        logger.warning(f"Version collision on note {note_id} (attempt {attempt}/{MAX_VERSION_ATTEMPTS})")

    if itinerary is None:
        raise VersionConflict(f"Could not allocate a version for note {note_id}; please retry")

    logger.info(f"Started itinerary {itinerary.id} v{itinerary.version} for note {note_id}")

    if dispatch is None:
        return run_generation(db, itinerary.id, plan_request, client=client)
    dispatch(itinerary.id, plan_request)
    return itinerary


# --- Run ---

def _compare_and_set(db: Session, itinerary_id: str, target: str, **values) -> Itinerary:
    """Write `target` only if the row is still running; otherwise keep what is stored."""
    current = _reload(db, itinerary_id)
    if not can_transition(current.status, target):
        logger.info(f"Discarding {target} for itinerary {itinerary_id}: status is {current.status}")
        return current

    now = datetime.now(timezone.utc)
    result = db.execute(
        update(Itinerary)
        .where(Itinerary.id == itinerary_id, Itinerary.status == RUNNING)
        .values(status=target, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        logger.info(f"Discarding {target} for itinerary {itinerary_id}: changed concurrently")
    else:
        db.commit()
    return _reload(db, itinerary_id)


def _update_progress(db: Session, itinerary_id: str, progress: int, message: str) -> None:
    db.execute(
        update(Itinerary)
        .where(Itinerary.id == itinerary_id, Itinerary.status == RUNNING)
        .values(progress=progress, message=message, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _fail(db: Session, itinerary_id: str, error_code: str, message: str) -> Itinerary:
    logger.warning(f"Itinerary {itinerary_id} failed ({error_code}): {message}")
    return _compare_and_set(
        db, itinerary_id, FAILED, error_code=error_code, message=message, progress=None
    )


def build_route(plan: PlanDraft) -> dict:
    """Quality gate, canonicalize, then validate the route and every export format.

    Raises DataQualityError, ConversionError or ExportValidationError.
    """
    repaired = enforce_quality(plan)
    route = canonicalize(repaired)
    assert_valid_route(route)
    for fmt in FORMATS:
        document = render_export(route, fmt)
        assert_valid_export(document.content, fmt)
    return route


def run_generation(
    db: Session,
    itinerary_id: str,
    plan_request: PlanRequest,
    client: Optional[PlanProducingClient] = None,
) -> Itinerary:
    """Drive one running attempt to a terminal state.

    Pipeline failures are recorded on the row and never raised.
    """
    itinerary = db.get(Itinerary, itinerary_id)
    if itinerary is None:
        raise ItineraryNotFound(f"Itinerary {itinerary_id} not found")
    if itinerary.status != RUNNING:
        logger.info(f"Itinerary {itinerary_id} is {itinerary.status}; nothing to run")
        return itinerary
    user_id = itinerary.user_id

    client = client or get_plan_client()
    try:
        result = client.produce(plan_request)
    except Exception as e:
        return _fail(db, itinerary_id, "client_error", f"Route generation failed: {e}")

    record_usage(db, user_id, result.usage, itinerary_id=itinerary_id, model=result.model)
    db.commit()
    _update_progress(db, itinerary_id, 60, "Building route")

    parsed = parse_plan(result)
    if isinstance(parsed, Truncated):
        return _fail(db, itinerary_id, "truncated", TRUNCATED_MESSAGE)
    if isinstance(parsed, Malformed):
        return _fail(db, itinerary_id, "data_quality", f"AI response could not be used: {parsed.reason}")
    if not isinstance(parsed, WellFormed):
        raise TypeError(f"Unexpected parse result {type(parsed).__name__}")

    try:
        route = build_route(parsed.plan)
    except DataQualityError as e:
        return _fail(db, itinerary_id, "data_quality", e.message)
    except (ConversionError, ExportValidationError) as e:
        return _fail(db, itinerary_id, "validation_error", e.message)
    except Exception as e:
        logger.exception(f"Route build crashed for itinerary {itinerary_id}: {e}")
        return _fail(db, itinerary_id, "internal_error", "Route generation failed unexpectedly")

    summary = route_summary(route)
    itinerary = _compare_and_set(
        db,
        itinerary_id,
        COMPLETED,
        route_geojson=route,
        title=summary["title"],
        total_distance_km=summary["total_distance_km"],
        total_duration_h=summary["total_duration_h"],
        progress=100,
        message=None,
        error_code=None,
    )
    if itinerary.status == COMPLETED:
        logger.info(f"Itinerary {itinerary_id} completed: {summary['total_distance_km']} km")
    return itinerary


def run_generation_in_new_session(itinerary_id: str, plan_request: PlanRequest) -> None:
    """Background-task entry point; owns its session."""
    db = SessionLocal()()
    try:
        run_generation(db, itinerary_id, plan_request)
    except ItineraryNotFound:
        logger.warning(f"Itinerary {itinerary_id} disappeared before generation ran")
    except Exception as e:
        db.rollback()
        logger.exception(f"Generation crashed for itinerary {itinerary_id}: {e}")
        _fail(db, itinerary_id, "internal_error", "Route generation failed unexpectedly")
    finally:
        db.close()


# --- Cancel / status ---

def cancel_generation(db: Session, user_id: str, itinerary_id: str) -> Itinerary:
    itinerary = _get_owned_itinerary(db, user_id, itinerary_id)
    if not is_cancellable(itinerary.status):
        raise CannotCancel(f"Itinerary is {itinerary.status} and can no longer be cancelled")

    now = datetime.now(timezone.utc)
    result = db.execute(
        update(Itinerary)
        .where(Itinerary.id == itinerary_id, Itinerary.status.in_((PENDING, RUNNING)))
        .values(
            status=CANCELLED,
            cancelled_at=now,
            updated_at=now,
            progress=None,
            message="Cancelled by user",
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        current = _reload(db, itinerary_id)
        raise CannotCancel(f"Itinerary is {current.status} and can no longer be cancelled")
    db.commit()
    logger.info(f"Itinerary {itinerary_id} cancelled")
    return _reload(db, itinerary_id)


def get_status(db: Session, user_id: str, itinerary_id: str) -> ItineraryStatusOut:
    itinerary = _get_owned_itinerary(db, user_id, itinerary_id)
    out = ItineraryStatusOut(itinerary_id=itinerary.id, status=itinerary.status)

    if itinerary.status in (PENDING, RUNNING):
        out.progress = itinerary.progress
        out.message = itinerary.message
    elif itinerary.status == COMPLETED:
        out.route_geojson = itinerary.route_geojson
    elif itinerary.status == FAILED:
        out.error = itinerary.message
    elif itinerary.status == CANCELLED:
        out.cancelled_at = itinerary.cancelled_at
    return out


# --- Queries / delete ---

def get_itinerary(db: Session, user_id: str, itinerary_id: str) -> Itinerary:
    return _get_owned_itinerary(db, user_id, itinerary_id)


def list_by_note(
    db: Session,
    user_id: str,
    note_id: str,
    status: Optional[str] = None,
    limit: int = 20,
) -> List[Itinerary]:
    """Newest version first."""
    get_owned_note(db, user_id, note_id)
    limit = max(1, min(limit, MAX_LIST_LIMIT))

    stmt = select(Itinerary).where(
        Itinerary.note_id == note_id,
        Itinerary.user_id == user_id,
        Itinerary.deleted_at.is_(None),
    )
    if status is not None:
        stmt = stmt.where(Itinerary.status == status)
    stmt = stmt.order_by(Itinerary.version.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def soft_delete(db: Session, user_id: str, itinerary_id: str) -> Itinerary:
    itinerary = _get_owned_itinerary(db, user_id, itinerary_id)
    if not is_terminal(itinerary.status):
        raise CannotDelete(
            f"Itinerary is {itinerary.status}; cancel it or wait for it to finish before deleting"
        )
    itinerary.deleted_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(itinerary)
    logger.info(f"Itinerary {itinerary_id} deleted")
    return itinerary
