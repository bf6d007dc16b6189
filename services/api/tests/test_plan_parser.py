import json

import pytest

from viberoute.core.ai_client import CompletionResult
from viberoute.exceptions import DataQualityError
from viberoute.services.plan_parser import (
    Malformed,
    PlanDraft,
    Truncated,
    WellFormed,
    assess_quality,
    enforce_quality,
    parse_plan,
)


def completion(content, finish_reason="stop"):
    return CompletionResult(content=content, finish_reason=finish_reason)


def chain(count, overrides=None):
    """Plan with `count` connected segments, one degree of longitude apart."""
    segments = []
    for i in range(count):
        segment = {
            "name": f"Leg {i + 1}",
            "start": {"name": f"P{i}", "lat": 49.0, "lon": 19.0 + i},
            "end": {"name": f"P{i + 1}", "lat": 49.0, "lon": 20.0 + i},
            "distance_km": 70,
        }
        segment.update((overrides or {}).get(i, {}))
        segments.append(segment)
    return PlanDraft.model_validate({"title": "Chain", "days": [{"day": 1, "segments": segments}]})


# --- Parse ---

def test_well_formed(sample_plan):
    parsed = parse_plan(completion(json.dumps(sample_plan)))
    assert isinstance(parsed, WellFormed)
    assert parsed.plan.title == "Tatra loop"
    assert len(list(parsed.plan.iter_segments())) == 3


def test_code_fence_is_stripped(sample_plan):
    content = "```json\n" + json.dumps(sample_plan) + "\n```"
    assert isinstance(parse_plan(completion(content)), WellFormed)


@pytest.mark.parametrize("reason", ["length", "max_tokens", "content_filter", None])
def test_abnormal_finish_is_truncated(sample_plan, reason):
    parsed = parse_plan(completion(json.dumps(sample_plan), finish_reason=reason))
    assert isinstance(parsed, Truncated)
    assert parsed.finish_reason == reason


def test_truncation_wins_over_broken_json():
    parsed = parse_plan(completion('{"title": "Cut off", "days": [{"day": 1, "segm', finish_reason="length"))
    assert isinstance(parsed, Truncated)


@pytest.mark.parametrize(
    "content",
    [
        "",
        "Sure! Here is your route.",
        "[1, 2, 3]",
        '{"title": "x", "days": "tomorrow"}',
        '{"title": "x", "days": [{"day": 0, "segments": []}]}',
        '{"title": "x", "days": [{"day": 1, "segments": []}]}',
        '{"title": "x", "days": [{"day": 1, "segments": [{"distance_km": 1e400}]}]}',
        '{"title": "x", "total_duration_h": NaN, "days": [{"day": 1, "segments": [{}]}]}',
    ],
)
def test_malformed(content):
    assert isinstance(parse_plan(completion(content)), Malformed)


# --- Quality gate ---

def test_assess_quality_counts_missing_and_invalid():
    plan = chain(4, {
        0: {"start": {"name": "nowhere"}},
        1: {"end": {"name": "far", "lat": 91.0, "lon": 20.0}},
    })
    report = assess_quality(plan)
    assert report.total_segments == 4
    assert report.missing_segments == 1
    assert report.invalid_segments == 1


def test_missing_half_is_tolerated_with_placeholders():
    plan = chain(2, {1: {"end": None}})

    repaired = enforce_quality(plan)

    segment = list(repaired.iter_segments())[1][2]
    # nearest earlier usable endpoint is this segment's own start
    assert (segment.end.lat, segment.end.lon) == (49.0, 20.0)
    # input is untouched
    assert list(plan.iter_segments())[1][2].end is None


def test_first_endpoint_takes_later_donor():
    plan = chain(3, {0: {"start": {"name": "unknown", "lat": None, "lon": None}}})

    repaired = enforce_quality(plan)

    start = list(repaired.iter_segments())[0][2].start
    assert (start.lat, start.lon) == (49.0, 20.0)
    assert start.name == "unknown"


def test_too_many_missing_rejected():
    plan = chain(3, {0: {"start": None}, 2: {"end": {"lat": 49.0}}})
    with pytest.raises(DataQualityError):
        enforce_quality(plan)


def test_too_many_invalid_rejected():
    plan = chain(3, {1: {"end": {"name": "x", "lat": 49.0, "lon": 181.0}}})
    # 1 of 3 is above the 30% threshold
    with pytest.raises(DataQualityError):
        enforce_quality(plan)


def test_invalid_under_threshold_replaced():
    plan = chain(4, {2: {"end": {"name": "x", "lat": -95.0, "lon": 21.0}}})

    repaired = enforce_quality(plan)

    end = list(repaired.iter_segments())[2][2].end
    assert (end.lat, end.lon) == (49.0, 21.0)
