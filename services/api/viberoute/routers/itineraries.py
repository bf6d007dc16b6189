import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user_id
from ..exceptions import AcknowledgmentRequired, ItineraryNotCompleted
from ..models import Itinerary
from ..schemas import (
    CancelItineraryOut,
    DeleteItineraryOut,
    ItineraryOut,
    ItineraryStatusOut,
    MapLinkOut,
)
from ..services import itinerary_service
from ..services.export_validator import assert_valid_export
from ..services.exporters import export_filename, render_export
from ..services.lifecycle import COMPLETED
from ..services.map_links import build_google_maps_link, build_mapy_link

logger = logging.getLogger("viberoute.api")

router = APIRouter()

Transport = Literal["car", "bike", "foot"]


def _completed_route(itinerary: Itinerary) -> dict:
    if itinerary.status != COMPLETED or not itinerary.route_geojson:
        raise ItineraryNotCompleted(
            f"Itinerary is {itinerary.status}; only completed itineraries can be exported"
        )
    return itinerary.route_geojson


@router.get("/itineraries/{itinerary_id}", response_model=ItineraryOut)
def get_itinerary(
    itinerary_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    itinerary = itinerary_service.get_itinerary(db, user_id, itinerary_id)
    return ItineraryOut.model_validate(itinerary)


@router.delete("/itineraries/{itinerary_id}", response_model=DeleteItineraryOut)
def delete_itinerary(
    itinerary_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    itinerary = itinerary_service.soft_delete(db, user_id, itinerary_id)
    return DeleteItineraryOut(itinerary_id=itinerary.id, deleted_at=itinerary.deleted_at)


@router.get("/itineraries/{itinerary_id}/status", response_model=ItineraryStatusOut)
def get_itinerary_status(
    itinerary_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return itinerary_service.get_status(db, user_id, itinerary_id)


@router.post("/itineraries/{itinerary_id}/cancel", response_model=CancelItineraryOut)
def cancel_itinerary(
    itinerary_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    itinerary = itinerary_service.cancel_generation(db, user_id, itinerary_id)
    return CancelItineraryOut(itinerary_id=itinerary.id, cancelled_at=itinerary.cancelled_at)


@router.get("/itineraries/{itinerary_id}/download")
def download_itinerary(
    itinerary_id: str,
    format: Literal["gpx", "kml", "geojson"] = Query("gpx"),
    acknowledged: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Download the route as a navigation file.

    The rider must acknowledge that AI-generated routes are unverified
    (acknowledged=true). The file is re-validated before it is served.
    """
    if not acknowledged:
        raise AcknowledgmentRequired(
            "Please acknowledge that this route was generated by AI and must be verified before riding"
        )

    itinerary = itinerary_service.get_itinerary(db, user_id, itinerary_id)
    route = _completed_route(itinerary)

    document = render_export(route, format)
    result = assert_valid_export(document.content, format)
    if result.warnings:
        logger.info(f"{format} export for {itinerary_id} has warnings: {result.warnings}")

    filename = export_filename(itinerary.title or "", itinerary.id, document.extension)
    return Response(
        content=document.content,
        media_type=document.media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/itineraries/{itinerary_id}/google", response_model=MapLinkOut)
def google_maps_link(
    itinerary_id: str,
    transport: Transport = Query("car"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    itinerary = itinerary_service.get_itinerary(db, user_id, itinerary_id)
    link = build_google_maps_link(_completed_route(itinerary), transport)
    return MapLinkOut(**link._asdict())


@router.get("/itineraries/{itinerary_id}/mapy", response_model=MapLinkOut)
def mapy_link(
    itinerary_id: str,
    transport: Transport = Query("car"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    itinerary = itinerary_service.get_itinerary(db, user_id, itinerary_id)
    link = build_mapy_link(_completed_route(itinerary), transport)
    return MapLinkOut(**link._asdict())
