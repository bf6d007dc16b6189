"""Typed errors raised by the route generation core.

Each class carries the HTTP status and machine code used by the API layer;
nothing below the routers knows about HTTP beyond these two attributes.
"""

from typing import Optional


class RouteServiceError(Exception):
    http_status: int = 500
    code: str = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# --- NotFound ---

class NotFoundError(RouteServiceError):
    http_status = 404
    code = "not_found"


class NoteNotFound(NotFoundError):
    code = "note_not_found"


class ItineraryNotFound(NotFoundError):
    code = "itinerary_not_found"


# --- PreconditionFailed ---

class PreconditionFailed(RouteServiceError):
    http_status = 412
    code = "precondition_failed"


class PreferencesMissing(PreconditionFailed):
    code = "preferences_missing"


class CannotCancel(PreconditionFailed):
    http_status = 400
    code = "cannot_cancel"


class CannotDelete(PreconditionFailed):
    http_status = 400
    code = "cannot_delete"


class AcknowledgmentRequired(PreconditionFailed):
    http_status = 400
    code = "acknowledgment_required"


class ItineraryNotCompleted(PreconditionFailed):
    http_status = 422
    code = "itinerary_not_completed"


class InvalidTransition(PreconditionFailed):
    http_status = 409
    code = "invalid_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move itinerary from '{current}' to '{target}'")
        self.current = current
        self.target = target


# --- Conflict ---

class GenerationInProgress(RouteServiceError):
    http_status = 409
    code = "generation_in_progress"

    def __init__(self, active_request_id: Optional[str] = None):
        super().__init__("Another itinerary generation is already in progress")
        self.active_request_id = active_request_id


class VersionConflict(RouteServiceError):
    http_status = 409
    code = "version_conflict"


# --- RateLimited ---

class SpendCapExceeded(RouteServiceError):
    http_status = 429
    code = "service_limit_reached"


# --- Pipeline ---

class DataQualityError(RouteServiceError):
    http_status = 422
    code = "data_quality"


class ConversionError(RouteServiceError):
    code = "conversion_error"


class ExportValidationError(RouteServiceError):
    code = "validation_error"

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


# --- Preview links ---

class TooManyPoints(RouteServiceError):
    http_status = 422
    code = "too_many_points"

    def __init__(self, service: str, point_count: int, limit: int):
        super().__init__(
            f"Route has {point_count} points, exceeds {service} limit of {limit}. "
            "Download the GPX file instead."
        )
        self.service = service
        self.point_count = point_count
        self.limit = limit


class LinkGenerationError(RouteServiceError):
    http_status = 422
    code = "link_generation_error"
