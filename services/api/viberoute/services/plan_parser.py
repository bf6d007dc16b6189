"""Strict parsing of plan completions and the coordinate data-quality gate.

A completion is parsed exactly once into one of three shapes:

    WellFormed(plan)   JSON matched the plan schema
    Truncated(...)     the model stopped for any reason other than "stop"
    Malformed(reason)  not JSON, or JSON of the wrong shape

Callers branch on the type; nothing downstream re-checks field presence.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..core.ai_client import CompletionResult
from ..exceptions import DataQualityError
from ..settings import settings

logger = logging.getLogger("viberoute.plan")

NORMAL_FINISH_REASONS = frozenset({"stop"})

MAX_MISSING_FRACTION = 0.5
MAX_INVALID_FRACTION = 0.3


# --- Plan schema (sent to the model as the response schema) ---

class PlanLocation(BaseModel):
    name: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None


class PlanSegment(BaseModel):
    name: str = "Segment"
    description: str = ""
    start: Optional[PlanLocation] = None
    end: Optional[PlanLocation] = None
    distance_km: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    duration_h: Optional[float] = Field(None, ge=0, allow_inf_nan=False)


class PlanDay(BaseModel):
    day: int = Field(..., ge=1)
    segments: List[PlanSegment] = []


class PlanDraft(BaseModel):
    title: str = ""
    total_distance_km: Optional[float] = Field(None, allow_inf_nan=False)
    total_duration_h: Optional[float] = Field(None, allow_inf_nan=False)
    highlights: List[str] = []
    days: List[PlanDay] = []

    def iter_segments(self):
        for day in sorted(self.days, key=lambda d: d.day):
            for index, segment in enumerate(day.segments, start=1):
                yield day.day, index, segment


# --- Parse result ---

@dataclass(frozen=True)
class WellFormed:
    plan: PlanDraft


@dataclass(frozen=True)
class Truncated:
    finish_reason: Optional[str]
    content_length: int


@dataclass(frozen=True)
class Malformed:
    reason: str


ParsedPlan = Union[WellFormed, Truncated, Malformed]


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_plan(result: CompletionResult) -> ParsedPlan:
    """Classify a completion. Never raises."""
    if result.finish_reason not in NORMAL_FINISH_REASONS:
        logger.warning(
            f"Plan completion truncated: finish_reason={result.finish_reason} "
            f"chars={len(result.content or '')}"
        )
        return Truncated(finish_reason=result.finish_reason, content_length=len(result.content or ""))

    text = _strip_code_fence(result.content or "")
    if not text:
        return Malformed("empty response")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return Malformed(f"not valid JSON ({e.msg} at char {e.pos})")

    if not isinstance(data, dict):
        return Malformed("top-level JSON value must be an object")

    try:
        plan = PlanDraft.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        return Malformed(f"plan does not match schema at '{location}': {first.get('msg')}")

    if not any(day.segments for day in plan.days):
        return Malformed("plan contains no segments")

    return WellFormed(plan)


# --- Data quality ---

def _is_missing(location: Optional[PlanLocation]) -> bool:
    return location is None or location.lat is None or location.lon is None


def _is_valid(location: PlanLocation) -> bool:
    lat, lon = location.lat, location.lon
    return (
        math.isfinite(lat) and math.isfinite(lon)
        and -90 <= lat <= 90 and -180 <= lon <= 180
    )


@dataclass
class QualityReport:
    total_segments: int
    missing_segments: int
    invalid_segments: int

    @property
    def missing_fraction(self) -> float:
        return self.missing_segments / self.total_segments if self.total_segments else 1.0

    @property
    def invalid_fraction(self) -> float:
        return self.invalid_segments / self.total_segments if self.total_segments else 0.0


def assess_quality(plan: PlanDraft) -> QualityReport:
    """Count segments with a missing coordinate field and with an out-of-range one.

    A segment that is missing a field is not also counted as invalid.
    """
    total = missing = invalid = 0
    for _, _, segment in plan.iter_segments():
        total += 1
        if _is_missing(segment.start) or _is_missing(segment.end):
            missing += 1
        elif not (_is_valid(segment.start) and _is_valid(segment.end)):
            invalid += 1
    return QualityReport(total_segments=total, missing_segments=missing, invalid_segments=invalid)


def enforce_quality(plan: PlanDraft) -> PlanDraft:
    """Reject a plan beyond the thresholds, otherwise return a copy with placeholders.

    Each missing or out-of-range endpoint takes the nearest usable endpoint earlier
    in riding order, else the nearest later one, else the configured fallback.
    """
    report = assess_quality(plan)
    if report.total_segments == 0:
        raise DataQualityError("Plan contains no route segments")
    if report.missing_fraction > MAX_MISSING_FRACTION:
        raise DataQualityError(
            f"{report.missing_segments} of {report.total_segments} segments are missing coordinates"
        )
    if report.invalid_fraction > MAX_INVALID_FRACTION:
        raise DataQualityError(
            f"{report.invalid_segments} of {report.total_segments} segments have out-of-range coordinates"
        )

    repaired = plan.model_copy(deep=True)
    endpoints: List[PlanLocation] = []
    for _, _, segment in repaired.iter_segments():
        if segment.start is None:
            segment.start = PlanLocation()
        if segment.end is None:
            segment.end = PlanLocation()
        endpoints.extend([segment.start, segment.end])

    usable = [not _is_missing(p) and _is_valid(p) for p in endpoints]
    replaced = 0
    for i, point in enumerate(endpoints):
        if usable[i]:
            continue
        donor = next((endpoints[j] for j in range(i - 1, -1, -1) if usable[j]), None)
        if donor is None:
            donor = next((endpoints[j] for j in range(i + 1, len(endpoints)) if usable[j]), None)
        if donor is not None:
            point.lat, point.lon = donor.lat, donor.lon
        else:
            point.lat, point.lon = settings.placeholder_lat, settings.placeholder_lon
        replaced += 1

    if replaced:
        logger.info(
            f"Substituted placeholders for {replaced} endpoints "
            f"(missing={report.missing_segments}, invalid={report.invalid_segments})"
        )
    return repaired
