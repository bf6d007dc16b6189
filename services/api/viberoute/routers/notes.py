from typing import Optional, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user_id
from ..limiter import limiter
from ..schemas import (
    GenerateItineraryOut,
    GenerateItineraryRequest,
    ItinerariesListOut,
    ItineraryListItemOut,
)
from ..services import itinerary_service
from ..settings import settings

router = APIRouter()


@router.post(
    "/notes/{note_id}/itineraries",
    response_model=GenerateItineraryOut,
    status_code=202,
)
@limiter.limit(settings.generate_rate_limit)
def generate_itinerary(
    request: Request,
    note_id: str,
    payload: GenerateItineraryRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Start (or replay) a route generation for a note.

    Returns immediately; poll /itineraries/{id}/status for the outcome.
    """
    def dispatch(itinerary_id, plan_request):
        background_tasks.add_task(
            itinerary_service.run_generation_in_new_session, itinerary_id, plan_request
        )

    itinerary = itinerary_service.start_generation(
        db,
        user_id=user_id,
        note_id=note_id,
        request_id=payload.request_id,
        preferences=payload.preferences,
        dispatch=dispatch,
    )
    return GenerateItineraryOut.model_validate(itinerary)


@router.get("/notes/{note_id}/itineraries", response_model=ItinerariesListOut)
def list_itineraries(
    note_id: str,
    status: Optional[Literal["pending", "running", "completed", "failed", "cancelled"]] = None,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    rows = itinerary_service.list_by_note(db, user_id, note_id, status=status, limit=limit)
    return ItinerariesListOut(data=[ItineraryListItemOut.model_validate(r) for r in rows])
