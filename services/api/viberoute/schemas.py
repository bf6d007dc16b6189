"""Pydantic schemas for the route generation API.

Request/response models for:
- Resolved rider preferences
- Itinerary generation, listing, status polling and cancellation
- Preview links
"""

from datetime import datetime
from typing import Optional, Literal

from pydantic import BaseModel, Field


# --- Preferences ---

class ResolvedPreferences(BaseModel):
    """Preference set after trip overrides have been merged over user defaults."""
    terrain: Literal["paved", "gravel", "mixed"] = "paved"
    road_type: Literal["scenic", "twisty", "highway"] = "scenic"
    duration_h: float = Field(..., gt=0, le=200)
    distance_km: float = Field(..., gt=0, le=10000)


# --- Generation ---

class GenerateItineraryRequest(BaseModel):
    request_id: str = Field(..., min_length=8, max_length=64)
    preferences: Optional[ResolvedPreferences] = None


class GenerateItineraryOut(BaseModel):
    itinerary_id: str = Field(validation_alias="id")
    note_id: str
    version: int
    status: str
    request_id: str
    created_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


# --- Itinerary ---

class ItineraryListItemOut(BaseModel):
    itinerary_id: str = Field(validation_alias="id")
    note_id: str
    version: int
    status: str
    title: Optional[str] = None
    total_distance_km: Optional[float] = None
    total_duration_h: Optional[float] = None
    request_id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class ItineraryOut(ItineraryListItemOut):
    route_geojson: Optional[dict] = None
    message: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class ItinerariesListOut(BaseModel):
    data: list[ItineraryListItemOut]


# --- Status polling ---

class ItineraryStatusOut(BaseModel):
    """Status-specific projection. Only the fields relevant to `status` are set."""
    itinerary_id: str
    status: Literal["pending", "running", "completed", "failed", "cancelled"]
    progress: Optional[int] = Field(None, ge=0, le=100)
    message: Optional[str] = None
    route_geojson: Optional[dict] = None
    error: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class CancelItineraryOut(BaseModel):
    itinerary_id: str
    status: Literal["cancelled"] = "cancelled"
    cancelled_at: datetime


class DeleteItineraryOut(BaseModel):
    success: bool = True
    itinerary_id: str
    deleted_at: datetime


# --- Links ---

class MapLinkOut(BaseModel):
    url: str
    service: Literal["google", "mapy"]
    transport: str
    point_count: int


# --- Errors ---

class ErrorOut(BaseModel):
    error: str
    message: str
    details: Optional[dict] = None
