"""
Subscriber intake: called by the embeddable SDK on the customer's site.

Security:
  - Requires the SITE key (pw_site_...); the subscriber lands on that website
  - Rate limited per client IP
  - The push subscription is stored as-is; only the transport looks inside

Metadata is optional. Missing platform/browser/language are filled from the
request headers, missing country/city from the (optional) geo lookup, and the
rest get defaults. See app/core/client_hints.py.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.core import errors
from app.core.client_hints import fill_metadata
from app.core.geo import geo_lookup
from app.core.vapid import get_vapid_keys
from app.middleware.auth import (
    AccountContext,
    SiteContext,
    authorize_website,
    require_account,
    require_site,
)
from app.middleware.rate_limit import get_real_ip, rate_limit_api_key, rate_limit_ip
from app.models.store import EntityStore, get_store

import structlog

logger = structlog.get_logger()
router = APIRouter(tags=["subscribers"])


class SubscriberMetadata(BaseModel):
    platform: str | None = None
    browser: str | None = None
    country: str | None = None
    city: str | None = None
    language: str | None = None
    timezone: str | None = None


class SubscribeRequest(BaseModel):
    subscription: dict
    metadata: SubscriberMetadata | None = None


def _validate_subscription(subscription: dict) -> dict:
    endpoint = subscription.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint.startswith("https://"):
        raise errors.ValidationError("subscription.endpoint must be an https:// URL")
    return subscription


@router.get("/api/vapid-public-key")
async def vapid_public_key():
    return {"success": True, "public_key": get_vapid_keys().public_key}


@router.post("/api/subscribe")
async def subscribe(
    req: SubscribeRequest,
    request: Request,
    site: SiteContext = Depends(require_site),
    store: EntityStore = Depends(get_store),
):
    rate_limit_ip(request)
    push_handle = _validate_subscription(req.subscription)
    supplied = req.metadata.model_dump(exclude_none=True) if req.metadata else {}

    geo = {}
    if not (supplied.get("country") and supplied.get("city")):
        geo = await geo_lookup(get_real_ip(request))

    user_agent = request.headers.get("user-agent")
    attributes = fill_metadata(
        supplied,
        user_agent=user_agent,
        accept_language=request.headers.get("accept-language"),
        geo=geo,
    )
    subscriber = await store.add_subscriber(
        site.website_id,
        push_handle,
        user_agent=user_agent,
        **attributes,
    )

    logger.info("subscriber_registered", website_id=str(site.website_id),
                subscriber_id=str(subscriber.id), platform=subscriber.platform)

    return {"success": True, "subscriber_id": str(subscriber.id)}


@router.get("/api/websites/{website_id}/subscribers")
async def list_subscribers(
    website_id: UUID,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    await authorize_website(store, auth, website_id)
    subscribers = await store.list_subscribers([website_id])

    return {
        "success": True,
        "count": len(subscribers),
        "subscribers": [
            {
                "subscriber_id": str(s.id),
                "metadata": s.attributes(),
                "created_at": s.created_at.isoformat() if s.created_at else None,
            }
            for s in subscribers
        ],
    }
