"""
Segment API: named, rule-based audience filters scoped to a website.

Rules are AND-ed. Listing shows each segment's audience size as of now;
it is recomputed on every call, like the audience of a send.
"""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core import errors
from app.core.segments import resolve_audience
from app.middleware.auth import (
    AccountContext,
    authorize_segment,
    authorize_website,
    require_account,
)
from app.middleware.rate_limit import rate_limit_api_key
from app.models.store import EntityStore, get_store

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/segments", tags=["segments"])


class SegmentRule(BaseModel):
    field: str
    operator: Literal["is", "is_not", "contains", "not_contains"]
    value: str = ""


class CreateSegmentRequest(BaseModel):
    website_id: UUID
    name: str
    rules: list[SegmentRule] = []


def _segment_row(segment, audience_size: int | None = None) -> dict:
    row = {
        "segment_id": str(segment.id),
        "website_id": str(segment.website_id),
        "name": segment.name,
        "rules": segment.rules,
        "created_at": segment.created_at.isoformat() if segment.created_at else None,
    }
    if audience_size is not None:
        row["audience_size"] = audience_size
    return row


@router.post("/create")
async def create_segment(
    req: CreateSegmentRequest,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    name = req.name.strip()
    if not name:
        raise errors.ValidationError("Segment name required")
    for rule in req.rules:
        if not rule.field.strip():
            raise errors.ValidationError("Every rule needs a field")

    await authorize_website(store, auth, req.website_id)
    segment = await store.create_segment(
        req.website_id,
        name,
        [{"field": r.field.strip(), "operator": r.operator, "value": r.value} for r in req.rules],
    )

    logger.info("segment_created", segment_id=str(segment.id), rules=len(segment.rules))

    return {"success": True, "segment": _segment_row(segment)}


@router.get("/{website_id}")
async def list_segments(
    website_id: UUID,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    rate_limit_api_key(str(auth.account_id))
    await authorize_website(store, auth, website_id)
    segments = await store.list_segments(website_id)
    subscribers = await store.list_subscribers([website_id])

    return {
        "success": True,
        "segments": [
            _segment_row(s, len(resolve_audience(subscribers, s.rules)))
            for s in segments
        ],
    }


@router.delete("/{segment_id}")
async def delete_segment(
    segment_id: UUID,
    auth: AccountContext = Depends(require_account),
    store: EntityStore = Depends(get_store),
):
    """Campaigns that used the segment keep their stats; re-sending them fails with 404."""
    rate_limit_api_key(str(auth.account_id))
    await authorize_segment(store, auth, segment_id)
    if not await store.delete_segment(segment_id):
        raise errors.NotFound("Segment not found")
    return {"success": True}
