"""
Analytics aggregation: computed on demand from current store rows.

Nothing here mutates or caches; calling twice with no writes in between gives
the same answer. Rates are percentages rounded to 2 decimals.
"""

import datetime
from collections import Counter
from typing import Iterable, Sequence

from app.models.tables import Campaign, Subscriber, Website

BREAKDOWN_FIELDS = ("platform", "browser", "country", "city")
TRUNCATED_FIELDS = {"country": 10, "city": 10}


def ctr(clicked: int, delivered: int) -> float:
    """Click-through rate. 0 when nothing was delivered."""
    if delivered <= 0:
        return 0.0
    return round(clicked / delivered * 100, 2)


def delivery_rate(delivered: int, sent: int) -> float:
    """Nothing attempted counts as a perfect rate, not an undefined one."""
    if sent <= 0:
        return 100.0
    return round(delivered / sent * 100, 2)


def campaign_totals(campaigns: Iterable[Campaign]) -> dict:
    totals = {"sent": 0, "delivered": 0, "clicked": 0, "failed": 0}
    for c in campaigns:
        totals["sent"] += c.sent or 0
        totals["delivered"] += c.delivered or 0
        totals["clicked"] += c.clicked or 0
        totals["failed"] += c.failed or 0
    return totals


def overview(campaigns: Sequence[Campaign], website_count: int = 0, subscriber_count: int = 0) -> dict:
    totals = campaign_totals(campaigns)
    top = sorted(
        (c for c in campaigns if c.status == "sent"),
        key=lambda c: (ctr(c.clicked, c.delivered), c.delivered),
        reverse=True,
    )[:5]
    return {
        "total_sent": totals["sent"],
        "total_delivered": totals["delivered"],
        "total_clicked": totals["clicked"],
        "total_failed": totals["failed"],
        "avg_ctr": ctr(totals["clicked"], totals["delivered"]),
        "delivery_rate": delivery_rate(totals["delivered"], totals["sent"]),
        "total_websites": website_count,
        "total_subscribers": subscriber_count,
        "total_campaigns": len(campaigns),
        "top_campaigns": [
            {
                "campaign_id": str(c.id),
                "name": c.name,
                "ctr": ctr(c.clicked, c.delivered),
                "clicked": c.clicked,
                "delivered": c.delivered,
            }
            for c in top
        ],
    }


def default_range(today: datetime.date, days: int = 7) -> tuple[datetime.date, datetime.date]:
    """Trailing `days` days, today included."""
    return today - datetime.timedelta(days=days - 1), today


def subscriber_growth(
    subscribers: Iterable[Subscriber],
    start: datetime.date,
    end: datetime.date,
) -> list[dict]:
    """New subscribers per calendar day over [start, end], zero days included.

    A subscriber lands on the date of its created_at as stored; no timezone
    conversion happens here.
    """
    per_day = Counter(s.created_at.date() for s in subscribers)
    days = (end - start).days + 1
    series = []
    for offset in range(max(days, 0)):
        day = start + datetime.timedelta(days=offset)
        series.append({"date": day.isoformat(), "count": per_day.get(day, 0)})
    return series


def breakdown(subscribers: Sequence[Subscriber], field: str, limit: int | None = None) -> list[dict]:
    """Group by the field's current value, biggest group first."""
    total = len(subscribers)
    counts = Counter((getattr(s, field, None) or "Unknown") for s in subscribers)
    groups = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        groups = groups[:limit]
    return [
        {
            "name": name,
            "count": count,
            "percentage": round(count / total * 100, 1) if total else 0.0,
        }
        for name, count in groups
    ]


def website_summaries(
    websites: Sequence[Website],
    subscribers: Sequence[Subscriber],
    today: datetime.date,
) -> list[dict]:
    """Subscriber total and last-7-days growth per website."""
    since = today - datetime.timedelta(days=6)
    totals: Counter = Counter()
    recent: Counter = Counter()
    for s in subscribers:
        totals[s.website_id] += 1
        if since <= s.created_at.date() <= today:
            recent[s.website_id] += 1
    return [
        {
            "website_id": str(w.id),
            "domain": w.domain,
            "subscribers": totals.get(w.id, 0),
            "growth_7d": recent.get(w.id, 0),
        }
        for w in websites
    ]


def subscriber_breakdown(
    websites: Sequence[Website],
    subscribers: Sequence[Subscriber],
    today: datetime.date,
) -> dict:
    result = {"total": len(subscribers)}
    plural = {"platform": "platforms", "browser": "browsers", "country": "countries", "city": "cities"}
    for field in BREAKDOWN_FIELDS:
        result[plural[field]] = breakdown(subscribers, field, TRUNCATED_FIELDS.get(field))
    result["websites"] = website_summaries(websites, subscribers, today)
    return result
