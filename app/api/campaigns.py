"""
Campaign API: create, list, send, delete, and click reports.

Security:
  - Everything except /click requires the account key and is scoped to it
  - /click is unauthenticated (it comes from the service worker on the
    subscriber's device) and rate limited per IP

A campaign starts as "draft", or "scheduled" when scheduled_at is in the
future. Sending moves it to "sent" and never goes back. Sending it again is
allowed and adds to its stats.
"""

import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.core import errors
from app.core.analytics import ctr
from app.core.dispatcher import CampaignDispatcher
from app.core.transport import PushTransport, get_transport
from app.middleware.auth import (
    AccountContext,
    authorize_campaign,
    authorize_website,
    require_account,
)
from app.middleware.rate_limit import rate_limit_api_key, rate_limit_ip
from app.models.store import EntityStore, get_store
from app.models.tables import Campaign

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])


class NotificationAction(BaseModel):
    action: str
    title: str
    icon: str | None = None


class CreateCampaignRequest(BaseModel):
    website_id: UUID
    title: str
    body: str
    name: str | None = None
    icon: str | None = None
    image: str | None = None
    url: str | None = None
    actions: list[NotificationAction] | None = None
    segment_id: UUID | None = None
    scheduled_at: datetime.datetime | None = None


class ClickRequest(BaseModel):
    subscriber_id: str | None = None


def campaign_row(c: Campaign) -> dict:
    return {
        "campaign_id": str(c.id),
        "website_id": str(c.website_id),
        "segment_id": str(c.segment_id) if c.segment_id else None,
        "name": c.name,
        "title": c.title,
        "body": c.body,
        "icon": c.icon,
        "image": c.image,
        "url": c.click_url,
        "actions": c.actions or [],
        "status": c.status,
        "stats": {
            "sent": c.sent,
            "delivered": c.delivered,
            "clicked": c.clicked,
            "failed": c.failed,
        },
        "ctr": ctr(c.clicked, c.delivered),
        "scheduled_at": c.scheduled_at.isoformat() if c.scheduled_at else None,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "sent_at": c.sent_at.isoformat() if c.sent_at else None,
    }


def _initial_status(scheduled_at: datetime.datetime | None) -> str:
    if scheduled_at is None:
        return "draft"
    if scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=datetime.timezone.utc)
    return "scheduled" if scheduled_at > datetime.datetime.now(datetime.timezone.utc) else "draft"


def get_dispatcher(
    store: EntityStore = Depends(get_store),
    transport: PushTransport = Depends(get_transport),
) -> CampaignDispatcher:
    return CampaignDispatcher(store, transport)


@router.post("/create")
async def create_campaign(
    req: CreateCampaignRequest,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    title = req.title.strip()
    body = req.body.strip()
    if not title or not body:
        raise errors.ValidationError("Title and body required")

    await authorize_website(store, auth, req.website_id)

    if req.segment_id is not None:
        segment = await store.get_segment(req.segment_id)
        if segment is None:
            raise errors.NotFound("Segment not found")
        if segment.website_id != req.website_id:
            raise errors.ValidationError("Segment belongs to a different website")

    campaign = await store.create_campaign(
        req.website_id,
        name=(req.name or "").strip() or title,
        title=title,
        body=body,
        icon=req.icon,
        image=req.image,
        click_url=req.url,
        actions=[a.model_dump(exclude_none=True) for a in req.actions] if req.actions else None,
        segment_id=req.segment_id,
        status=_initial_status(req.scheduled_at),
        scheduled_at=req.scheduled_at,
    )

    logger.info("campaign_created", campaign_id=str(campaign.id), status=campaign.status)

    return {"success": True, "campaign": campaign_row(campaign)}


@router.get("/all/list")
async def list_all_campaigns(
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    websites = await store.list_websites(auth.account_id)
    campaigns = await store.list_campaigns([w.id for w in websites])
    return {"success": True, "campaigns": [campaign_row(c) for c in campaigns]}


@router.get("/{website_id}/list")
async def list_website_campaigns(
    website_id: UUID,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    await authorize_website(store, auth, website_id)
    campaigns = await store.list_campaigns([website_id])
    return {"success": True, "campaigns": [campaign_row(c) for c in campaigns]}


@router.post("/{campaign_id}/send")
async def send_campaign(
    campaign_id: UUID,
    auth: AccountContext = Depends(require_account),
    dispatcher: CampaignDispatcher = Depends(get_dispatcher),
):
    rate_limit_api_key(str(auth.account_id))
    result = await dispatcher.send(campaign_id, auth)
    return {
        "success": True,
        "sent": result.sent,
        "delivered": result.delivered,
        "failed": result.failed,
        "pruned": result.pruned,
        "campaign": campaign_row(result.campaign) if result.campaign else None,
    }


@router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: UUID,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    await authorize_campaign(store, auth, campaign_id)
    if not await store.delete_campaign(campaign_id):
        raise errors.NotFound("Campaign not found")
    return {"success": True}


@router.post("/{campaign_id}/click")
async def report_click(
    campaign_id: str,
    request: Request,
    req: ClickRequest | None = None,
    store: EntityStore = Depends(get_store),
):
    """Unauthenticated. The service worker calls this when a notification is clicked."""
    rate_limit_ip(request)
    try:
        parsed_id = UUID(campaign_id)
    except ValueError:
        # Whatever the device sent, it doesn't name a campaign we have
        raise errors.NotFound("Campaign not found")
    subscriber_id = (req.subscriber_id or "").strip()[:64] if req else ""
    click = await store.record_click(parsed_id, subscriber_id or None)

    logger.info("click_recorded", campaign_id=str(campaign_id), subscriber_id=click.subscriber_id)

    return {"success": True}
