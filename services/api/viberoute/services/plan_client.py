import json
import logging
import math
from dataclasses import dataclass, field
from typing import Protocol

from ..core.ai_client import AIClient, CompletionResult, CompletionUsage, ai_client
from ..schemas import ResolvedPreferences
from ..settings import settings
from .plan_parser import PlanDraft

logger = logging.getLogger("viberoute.ai")

SYSTEM_INSTRUCTION = """Return VALID JSON only. No markdown. No extra keys.

You are a motorcycle touring planner. Turn the rider's trip note into a
multi-day riding route made of segments between real, named places.

Rules:
1. Every segment has a start and end location with name, lat and lon (decimal degrees, WGS84).
2. Consecutive segments connect: a segment starts where the previous one ended.
3. Respect the limits: at most {max_days} days, at most {max_segments_per_day} segments per day.
4. Match the rider's preferences for terrain and road type; stay close to the requested
   total distance and riding time.
5. "distance_km" and "duration_h" are per segment; totals are for the whole trip.
6. "title" is short (max 60 chars). "highlights" lists up to 5 notable sights or roads.
7. Keep descriptions to one sentence.
"""


@dataclass
class PlanRequest:
    trip_title: str
    trip_text: str
    preferences: ResolvedPreferences
    max_segments_per_day: int = field(default_factory=lambda: settings.max_segments_per_day)
    max_days: int = field(default_factory=lambda: settings.max_days)


class PlanProducingClient(Protocol):
    def produce(self, request: PlanRequest) -> CompletionResult:
        ...


def build_prompt(request: PlanRequest) -> str:
    prefs = request.preferences
    return f"""
Trip: {request.trip_title}

Note:
{request.trip_text}

Preferences:
- terrain: {prefs.terrain}
- road type: {prefs.road_type}
- total riding time: {prefs.duration_h} h
- total distance: {prefs.distance_km} km

Limits: max {request.max_days} days, max {request.max_segments_per_day} segments per day.
"""


class GeminiPlanClient:
    """Plan producer backed by Gemini JSON mode."""

    def __init__(self, client: AIClient = ai_client):
        self.client = client

    def produce(self, request: PlanRequest) -> CompletionResult:
        system_instruction = SYSTEM_INSTRUCTION.format(
            max_days=request.max_days,
            max_segments_per_day=request.max_segments_per_day,
        )
        return self.client.generate_json(
            prompt=build_prompt(request),
            response_schema=PlanDraft,
            system_instruction=system_instruction,
        )


class MockPlanClient:
    """Deterministic plan for development: a chain of segments heading east.

    The start point depends only on the trip text, so the same note
    always yields the same route.
    """

    BASE_LAT = 49.5
    BASE_LON = 19.0
    SEGMENTS_PER_DAY = 2

    def produce(self, request: PlanRequest) -> CompletionResult:
        prefs = request.preferences
        days = max(1, min(request.max_days, math.ceil(prefs.duration_h / 8)))
        per_day = max(1, min(request.max_segments_per_day, self.SEGMENTS_PER_DAY))
        count = days * per_day
        seg_km = round(prefs.distance_km / count, 1)
        seg_h = round(prefs.duration_h / count, 2)

        offset = (sum(ord(c) for c in request.trip_text) % 100) / 100
        lat = self.BASE_LAT + offset
        lon = self.BASE_LON + offset
        dlon = seg_km / (111.32 * math.cos(math.radians(lat)))

        plan_days = []
        stop = 1
        for day in range(1, days + 1):
            segments = []
            for index in range(1, per_day + 1):
                start = {"name": f"Stop {stop}", "lat": round(lat, 6), "lon": round(lon, 6)}
                lon = min(180.0, lon + dlon)
                stop += 1
                end = {"name": f"Stop {stop}", "lat": round(lat, 6), "lon": round(lon, 6)}
                segments.append({
                    "name": f"Day {day} leg {index}",
                    "description": f"{prefs.road_type.capitalize()} {prefs.terrain} roads.",
                    "start": start,
                    "end": end,
                    "distance_km": seg_km,
                    "duration_h": seg_h,
                })
            plan_days.append({"day": day, "segments": segments})

        plan = {
            "title": (request.trip_title or "Mock route")[:60],
            "total_distance_km": round(seg_km * count, 1),
            "total_duration_h": round(seg_h * count, 2),
            "highlights": [f"{prefs.road_type} riding", f"{prefs.terrain} surface"],
            "days": plan_days,
        }
        content = json.dumps(plan)
        usage = CompletionUsage(
            prompt_tokens=len(build_prompt(request)) // 4,
            completion_tokens=len(content) // 4,
        )
        return CompletionResult(content=content, finish_reason="stop", usage=usage, model="mock")


def get_plan_client() -> PlanProducingClient:
    if settings.ai_mode == "gemini":
        return GeminiPlanClient()
    logger.info("AI_MODE is not 'gemini'; using mock plan client")
    return MockPlanClient()
