"""
Analytics API: read-only, scoped to the caller's websites.
Every number is computed from the store at request time.
"""

import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core import analytics, errors
from app.middleware.auth import AccountContext, require_account
from app.middleware.rate_limit import rate_limit_api_key
from app.models.store import EntityStore, get_store

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

MAX_GROWTH_DAYS = 366


def _today() -> datetime.date:
    return datetime.datetime.now(datetime.timezone.utc).date()


@router.get("/overview")
async def analytics_overview(
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    """Sent / delivered / clicked / failed totals, average CTR, delivery rate."""
    rate_limit_api_key(str(auth.account_id))
    websites = await store.list_websites(auth.account_id)
    website_ids = [w.id for w in websites]
    campaigns = await store.list_campaigns(website_ids)
    counts = await store.subscriber_counts(website_ids)

    return {
        "success": True,
        "analytics": analytics.overview(
            campaigns,
            website_count=len(websites),
            subscriber_count=sum(counts.values()),
        ),
    }


@router.get("/growth")
async def analytics_growth(
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
    start: Optional[datetime.date] = Query(None),
    end: Optional[datetime.date] = Query(None),
):
    """New subscribers per day. Defaults to the last 7 days, today included."""
    rate_limit_api_key(str(auth.account_id))
    default_start, default_end = analytics.default_range(_today())
    end = end or default_end
    start = start or (end - (default_end - default_start))
    if start > end:
        raise errors.ValidationError("start must not be after end")
    if (end - start).days + 1 > MAX_GROWTH_DAYS:
        raise errors.ValidationError(f"Range too long (max {MAX_GROWTH_DAYS} days)")

    websites = await store.list_websites(auth.account_id)
    subscribers = await store.list_subscribers([w.id for w in websites])

    return {
        "success": True,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "growth": analytics.subscriber_growth(subscribers, start, end),
    }


@router.get("/breakdown")
async def analytics_breakdown(
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    """Subscribers by platform, browser, country, city, plus per-website totals."""
    rate_limit_api_key(str(auth.account_id))
    websites = await store.list_websites(auth.account_id)
    subscribers = await store.list_subscribers([w.id for w in websites])

    return {
        "success": True,
        "breakdown": analytics.subscriber_breakdown(websites, subscribers, _today()),
    }
