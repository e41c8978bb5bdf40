"""
Best send-time suggestions from the open rates of past sends.
"""
from collections import defaultdict
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.database_models import Newsletter, NewsletterStatus
from app.utils.helpers import as_utc

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

MIN_HISTORY = 3
HISTORY_LIMIT = 50

DEFAULT_SLOTS: List[Dict[str, Any]] = [
    {"day": 2, "day_name": "Tuesday", "hour": 10, "confidence": 0.6,
     "reason": "Industry standard: high open rates on Tuesday morning"},
    {"day": 4, "day_name": "Thursday", "hour": 14, "confidence": 0.55,
     "reason": "Industry standard: strong Thursday afternoon engagement"},
    {"day": 3, "day_name": "Wednesday", "hour": 9, "confidence": 0.5,
     "reason": "Industry standard: mid-week morning performs well"},
]


def rank_slots(sends: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Group sends by UTC (weekday, hour) and return the three best slots.

    Each send is ``{"sent_at": datetime, "open_rate": float}``. Days are
    numbered from Sunday = 0.
    """
    buckets: Dict[tuple, List[float]] = defaultdict(list)
    for send in sends:
        sent_at = as_utc(send["sent_at"])
        day = (sent_at.weekday() + 1) % 7
        buckets[(day, sent_at.hour)].append(send.get("open_rate") or 0.0)

    scored = []
    for (day, hour), rates in buckets.items():
        count = len(rates)
        avg_open_rate = sum(rates) / count
        scored.append({
            "day": day,
            "day_name": DAY_NAMES[day],
            "hour": hour,
            "avg_open_rate": round(avg_open_rate, 1),
            "confidence": round(min(0.95, 0.4 + count * 0.1), 2),
            "reason": (
                f"Your newsletters sent on {DAY_NAMES[day]} at {hour}:00 averaged "
                f"{avg_open_rate:.1f}% opens across {count} send{'s' if count > 1 else ''}"
            ),
        })

    scored.sort(key=lambda s: s["avg_open_rate"], reverse=True)
    return scored[:3]


async def suggest_send_time(db: AsyncSession, tenant_id: int) -> Dict[str, Any]:
    stmt = (
        select(Newsletter)
        .where(
            Newsletter.tenant_id == tenant_id,
            Newsletter.status == NewsletterStatus.SENT,
            Newsletter.sent_at.is_not(None),
        )
        .options(selectinload(Newsletter.stats))
        .order_by(Newsletter.sent_at.desc())
        .limit(HISTORY_LIMIT)
    )
    newsletters = (await db.execute(stmt)).scalars().all()

    if len(newsletters) < MIN_HISTORY:
        return {
            "recommended_slots": [dict(slot) for slot in DEFAULT_SLOTS],
            "based_on_data": False,
            "sample_size": len(newsletters),
        }

    sends = [
        {"sent_at": nl.sent_at, "open_rate": nl.stats.open_rate if nl.stats else 0.0}
        for nl in newsletters
    ]
    return {
        "recommended_slots": rank_slots(sends),
        "based_on_data": True,
        "sample_size": len(newsletters),
    }
