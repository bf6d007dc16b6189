# VibeRoute API Main Entry Point
import logging
import sys
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .exceptions import (
    ExportValidationError,
    GenerationInProgress,
    RouteServiceError,
    TooManyPoints,
)
from .limiter import limiter
from .schemas import ErrorOut
from .settings import settings
from .routers.ready import router as ready_router
from .routers.notes import router as notes_router
from .routers.itineraries import router as itineraries_router

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("viberoute")

app = FastAPI(title="VibeRoute API", version="0.1.0")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RouteServiceError)
async def route_service_error_handler(request: Request, exc: RouteServiceError):
    details = None
    if isinstance(exc, GenerationInProgress):
        details = {"active_request_id": exc.active_request_id}
    elif isinstance(exc, TooManyPoints):
        details = {"service": exc.service, "point_count": exc.point_count, "limit": exc.limit}
    elif isinstance(exc, ExportValidationError):
        details = {"errors": exc.errors}

    if exc.http_status >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    body = ErrorOut(error=exc.code, message=exc.message, details=details)
    return JSONResponse(status_code=exc.http_status, content=body.model_dump())


app.include_router(ready_router, prefix="/api", tags=["ready"])
app.include_router(notes_router, prefix="/api", tags=["notes"])
app.include_router(itineraries_router, prefix="/api", tags=["itineraries"])
