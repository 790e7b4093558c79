"""
API key authentication + ownership guard.

Two kinds of keys:
  - An account key (pw_live_...) is the master credential, full access to the
    account's websites, segments, campaigns and analytics
  - A site key (pw_site_...) is embedded in the website's snippet, can ONLY
    register subscribers for that one website

Key rules:
  - Keys are hashed (SHA-256) in the database; we never store plaintext
  - The raw key is shown once, at creation
  - Missing or unknown key → 401, the same for every endpoint
  - Valid key, target owned by someone else → 403; target missing → 404

Every endpoint goes through require_account / require_site and, for a
specific target, one of the authorize_* helpers. Nothing else decides access.
"""

import hashlib
import secrets
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader

from app.core import errors
from app.models.store import EntityStore, get_store
from app.models.tables import Campaign, Segment, Website

import structlog

logger = structlog.get_logger()

ACCOUNT_KEY_PREFIX = "pw_live_"
SITE_KEY_PREFIX = "pw_site_"


# ─── Key generation ────────────────────────────────────────────────

def _hash_key(raw_key: str) -> str:
    """SHA-256 hash of the raw API key."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def generate_api_key(key_type: str = "account") -> tuple[str, str]:
    """Generate a new API key.

    Returns (raw_key, key_hash).
    The raw_key is shown to the user ONCE. We only store the hash.
    """
    prefix = SITE_KEY_PREFIX if key_type == "site" else ACCOUNT_KEY_PREFIX
    token = secrets.token_urlsafe(32)
    raw_key = f"{prefix}{token}"
    return raw_key, _hash_key(raw_key)


def display_prefix(raw_key: str) -> str:
    """First 12 chars, enough to tell keys apart in a listing."""
    return raw_key[:12]


# ─── Auth dependencies ─────────────────────────────────────────────

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass
class AccountContext:
    """Resolved account for the current request."""
    account_id: UUID
    email: str


@dataclass
class SiteContext:
    """Resolved website for a site-key request."""
    website_id: UUID
    account_id: UUID
    domain: str


def _raw_key(request: Request, api_key: str | None) -> str:
    # Query param fallback for snippets that can't set headers
    raw = api_key or request.query_params.get("key")
    if not raw:
        raise errors.Unauthorized("API key required. Include X-API-Key header.")
    return raw


async def resolve_account(raw_key: str | None, store: EntityStore) -> AccountContext:
    """Credential → exactly one account, or Unauthorized."""
    if not raw_key:
        raise errors.Unauthorized("API key required. Include X-API-Key header.")
    account = await store.get_account_by_key_hash(_hash_key(raw_key))
    if account is None:
        raise errors.Unauthorized("Invalid API key")
    return AccountContext(account_id=account.id, email=account.email)


async def resolve_site(raw_key: str | None, store: EntityStore) -> SiteContext:
    if not raw_key:
        raise errors.Unauthorized("API key required. Include X-API-Key header.")
    website = await store.get_website_by_key_hash(_hash_key(raw_key))
    if website is None:
        raise errors.Unauthorized("Invalid API key")
    return SiteContext(website_id=website.id, account_id=website.account_id, domain=website.domain)


async def require_account(
    request: Request,
    api_key: str | None = Security(api_key_header),
    store: EntityStore = Depends(get_store),
) -> AccountContext:
    """Require a valid account key."""
    return await resolve_account(_raw_key(request, api_key), store)


async def require_site(
    request: Request,
    api_key: str | None = Security(api_key_header),
    store: EntityStore = Depends(get_store),
) -> SiteContext:
    """Require a valid site key. Used by the subscription producer."""
    return await resolve_site(_raw_key(request, api_key), store)


# ─── Ownership checks ──────────────────────────────────────────────

async def authorize_website(store: EntityStore, auth: AccountContext, website_id: UUID) -> Website:
    website = await store.get_website(website_id)
    if website is None:
        raise errors.NotFound("Website not found")
    if website.account_id != auth.account_id:
        logger.warning("ownership_denied", kind="website", target=str(website_id),
                       account_id=str(auth.account_id))
        raise errors.Forbidden("API key does not have access to this website")
    return website


async def authorize_campaign(
    store: EntityStore, auth: AccountContext, campaign_id: UUID
) -> tuple[Campaign, Website]:
    campaign = await store.get_campaign(campaign_id)
    if campaign is None:
        raise errors.NotFound("Campaign not found")
    website = await store.get_website(campaign.website_id)
    if website is None:
        # Website deleted between the two reads; the cascade took the campaign too
        raise errors.NotFound("Campaign not found")
    if website.account_id != auth.account_id:
        logger.warning("ownership_denied", kind="campaign", target=str(campaign_id),
                       account_id=str(auth.account_id))
        raise errors.Forbidden("API key does not have access to this campaign")
    return campaign, website


async def authorize_segment(
    store: EntityStore, auth: AccountContext, segment_id: UUID
) -> tuple[Segment, Website]:
    segment = await store.get_segment(segment_id)
    if segment is None:
        raise errors.NotFound("Segment not found")
    website = await store.get_website(segment.website_id)
    if website is None:
        raise errors.NotFound("Segment not found")
    if website.account_id != auth.account_id:
        logger.warning("ownership_denied", kind="segment", target=str(segment_id),
                       account_id=str(auth.account_id))
        raise errors.Forbidden("API key does not have access to this segment")
    return segment, website
