"""Token usage accounting and the rolling spend cap."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.ai_client import CompletionUsage
from ..exceptions import SpendCapExceeded
from ..models import GenerationUsage
from ..settings import settings

logger = logging.getLogger("viberoute.spend")


def estimate_cost(usage: CompletionUsage) -> float:
    return (
        usage.prompt_tokens * settings.prompt_token_price_usd
        + usage.completion_tokens * settings.completion_token_price_usd
    )


def record_usage(
    db: Session,
    user_id: str,
    usage: CompletionUsage,
    itinerary_id: Optional[str] = None,
    model: Optional[str] = None,
) -> GenerationUsage:
    """Add a usage row. The caller commits."""
    entry = GenerationUsage(
        user_id=user_id,
        itinerary_id=itinerary_id,
        model=model,
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        estimated_cost_usd=estimate_cost(usage),
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    return entry


def rolling_spend(db: Session, user_id: str, now: Optional[datetime] = None) -> float:
    since = (now or datetime.now(timezone.utc)) - timedelta(days=settings.spend_window_days)
    total = db.execute(
        select(func.coalesce(func.sum(GenerationUsage.estimated_cost_usd), 0.0))
        .where(GenerationUsage.user_id == user_id, GenerationUsage.created_at >= since)
    ).scalar_one()
    return float(total)


def check_spend_cap(db: Session, user_id: str) -> None:
    cap = settings.monthly_spend_cap_usd
    if cap is None:
        return
    spent = rolling_spend(db, user_id)
    if spent > cap:
        logger.warning(f"Spend cap exceeded for user {user_id}: ${spent:.4f} > ${cap:.2f}")
        raise SpendCapExceeded(
            "Route generation is temporarily unavailable: usage limit reached. Please try again later."
        )
