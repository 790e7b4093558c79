"""
Account API: registration and "who am I".

Registration is open: an email in, a master API key out. The key is shown
once; only its hash is stored.
"""

import re

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core import errors
from app.core.analytics import campaign_totals, ctr
from app.core.vapid import get_vapid_keys
from app.middleware.auth import AccountContext, display_prefix, generate_api_key, require_account
from app.middleware.rate_limit import rate_limit_api_key
from app.models.store import EntityStore, get_store

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/users", tags=["accounts"])

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class RegisterRequest(BaseModel):
    email: str


def _validate_email(email: str) -> str:
    email = (email or "").strip()
    if not email:
        raise errors.ValidationError("Email required")
    if len(email) > 255 or not _EMAIL_RE.match(email):
        raise errors.ValidationError("Invalid email address")
    return email


@router.post("/register")
async def register(req: RegisterRequest, store: EntityStore = Depends(get_store)):
    email = _validate_email(req.email)
    raw_key, key_hash = generate_api_key("account")
    account = await store.create_account(email, key_hash, display_prefix(raw_key))

    logger.info("account_registered", account_id=str(account.id))

    return {
        "success": True,
        "account_id": str(account.id),
        "email": account.email,
        "api_key": raw_key,
        "vapid_public_key": get_vapid_keys().public_key,
        "message": "Save this API key. It won't be shown again.",
    }


@router.get("/info")
async def info(
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    """Account summary: websites, subscriber and campaign totals, overall CTR."""
    rate_limit_api_key(str(auth.account_id))
    websites = await store.list_websites(auth.account_id)
    website_ids = [w.id for w in websites]
    counts = await store.subscriber_counts(website_ids)
    campaigns = await store.list_campaigns(website_ids)
    totals = campaign_totals(campaigns)

    return {
        "success": True,
        "account_id": str(auth.account_id),
        "email": auth.email,
        "websites": [
            {"website_id": str(w.id), "domain": w.domain, "subscribers": counts.get(w.id, 0)}
            for w in websites
        ],
        "total_subscribers": sum(counts.values()),
        "total_campaigns": len(campaigns),
        "click_rate": ctr(totals["clicked"], totals["delivered"]),
    }
