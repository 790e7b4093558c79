"""
Website management API.

Security:
  - Requires the account key (pw_live_...)
  - All queries scoped to the key's account
  - No account_id in request bodies, derived from the API key
  - Domains are normalized before the uniqueness check, so
    "https://a.com/" and "a.com" are the same website
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core import errors
from app.middleware.auth import (
    AccountContext,
    authorize_website,
    display_prefix,
    generate_api_key,
    require_account,
)
from app.middleware.rate_limit import rate_limit_api_key
from app.models.store import EntityStore, get_store

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/websites", tags=["websites"])


class AddWebsiteRequest(BaseModel):
    domain: str


@router.get("")
async def list_websites(
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    websites = await store.list_websites(auth.account_id)
    website_ids = [w.id for w in websites]
    subscribers = await store.subscriber_counts(website_ids)
    campaigns = await store.campaign_counts(website_ids)

    return {
        "success": True,
        "websites": [
            {
                "website_id": str(w.id),
                "domain": w.domain,
                "site_key_prefix": w.key_prefix,
                "subscribers": subscribers.get(w.id, 0),
                "campaigns": campaigns.get(w.id, 0),
                "created_at": w.created_at.isoformat() if w.created_at else None,
            }
            for w in websites
        ],
    }


@router.post("/add")
async def add_website(
    req: AddWebsiteRequest,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    raw_key, key_hash = generate_api_key("site")
    website = await store.add_website(auth.account_id, req.domain, key_hash, display_prefix(raw_key))

    logger.info("website_added", website_id=str(website.id), domain=website.domain)

    return {
        "success": True,
        "website_id": str(website.id),
        "domain": website.domain,
        "site_key": raw_key,
    }


@router.delete("/{website_id}")
async def delete_website(
    website_id: UUID,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    """Deletes the website with all of its subscribers, segments and campaigns."""
    rate_limit_api_key(str(auth.account_id))
    await authorize_website(store, auth, website_id)
    if not await store.delete_website(website_id):
        raise errors.NotFound("Website not found")
    return {"success": True}
