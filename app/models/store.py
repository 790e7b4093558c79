"""
EntityStore: the only code that reads or writes tables.

Every public method is one transaction (see session_scope), so multi-row
changes are visible to other requests all at once or not at all:
  - website delete removes the website with every subscriber, segment,
    campaign and campaign record under it
  - dispatch commit writes delivery records, prunes expired subscribers
    and folds counters in one go
  - a click record and its counter increment land together

Returned rows are detached (expire_on_commit=False); treat them as snapshots.
"""

import datetime
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from app.core import errors
from app.models.database import session_scope
from app.models.tables import (
    Account,
    Campaign,
    ClickRecord,
    DeliveryRecord,
    Segment,
    Subscriber,
    Website,
    utcnow,
)

import structlog

logger = structlog.get_logger()


def normalize_domain(raw: str) -> str:
    """'https://Example.com/' → 'example.com'. Scheme and trailing slashes go."""
    domain = (raw or "").strip()
    if "://" in domain:
        domain = domain.split("://", 1)[1]
    return domain.rstrip("/").lower()


class EntityStore:

    # --- Accounts ---------------------------------------------------------

    async def create_account(self, email: str, key_hash: str, key_prefix: str) -> Account:
        email = email.strip().lower()
        try:
            async with session_scope() as db:
                existing = await db.execute(select(Account.id).where(Account.email == email))
                if existing.scalar_one_or_none() is not None:
                    raise errors.Conflict("Email already registered")
                account = Account(email=email, key_hash=key_hash, key_prefix=key_prefix)
                db.add(account)
                await db.flush()
        except IntegrityError:
            raise errors.Conflict("Email already registered")
        return account

    async def get_account(self, account_id: UUID) -> Account | None:
        async with session_scope() as db:
            return await db.get(Account, account_id)

    async def get_account_by_key_hash(self, key_hash: str) -> Account | None:
        async with session_scope() as db:
            result = await db.execute(select(Account).where(Account.key_hash == key_hash))
            return result.scalar_one_or_none()

    # --- Websites ---------------------------------------------------------

    async def add_website(
        self, account_id: UUID, domain: str, key_hash: str, key_prefix: str
    ) -> Website:
        domain = normalize_domain(domain)
        if not domain:
            raise errors.ValidationError("Domain required")
        try:
            async with session_scope() as db:
                existing = await db.execute(
                    select(Website.id).where(
                        Website.account_id == account_id,
                        Website.domain == domain,
                    )
                )
                if existing.scalar_one_or_none() is not None:
                    raise errors.Conflict(f"Website {domain} already registered")
                website = Website(
                    account_id=account_id,
                    domain=domain,
                    key_hash=key_hash,
                    key_prefix=key_prefix,
                )
                db.add(website)
                await db.flush()
        except IntegrityError:
            raise errors.Conflict(f"Website {domain} already registered")
        return website

    async def get_website(self, website_id: UUID) -> Website | None:
        async with session_scope() as db:
            return await db.get(Website, website_id)

    async def get_website_by_key_hash(self, key_hash: str) -> Website | None:
        async with session_scope() as db:
            result = await db.execute(select(Website).where(Website.key_hash == key_hash))
            return result.scalar_one_or_none()

    async def list_websites(self, account_id: UUID) -> list[Website]:
        async with session_scope() as db:
            result = await db.execute(
                select(Website)
                .where(Website.account_id == account_id)
                .order_by(Website.created_at)
            )
            return list(result.scalars().all())

    async def delete_website(self, website_id: UUID) -> bool:
        """Cascade: campaign records, campaigns, segments, subscribers, website."""
        async with session_scope() as db:
            website = await db.get(Website, website_id)
            if website is None:
                return False
            campaign_ids = select(Campaign.id).where(Campaign.website_id == website_id)
            await db.execute(delete(DeliveryRecord).where(DeliveryRecord.campaign_id.in_(campaign_ids)))
            await db.execute(delete(ClickRecord).where(ClickRecord.campaign_id.in_(campaign_ids)))
            await db.execute(delete(Campaign).where(Campaign.website_id == website_id))
            await db.execute(delete(Segment).where(Segment.website_id == website_id))
            pruned = await db.execute(delete(Subscriber).where(Subscriber.website_id == website_id))
            await db.delete(website)
        logger.info("website_deleted", website_id=str(website_id), subscribers_removed=pruned.rowcount)
        return True

    async def subscriber_counts(self, website_ids: Sequence[UUID]) -> dict[UUID, int]:
        if not website_ids:
            return {}
        async with session_scope() as db:
            result = await db.execute(
                select(Subscriber.website_id, func.count(Subscriber.id))
                .where(Subscriber.website_id.in_(website_ids))
                .group_by(Subscriber.website_id)
            )
            counts = {row[0]: row[1] for row in result.all()}
        return {wid: counts.get(wid, 0) for wid in website_ids}

    async def campaign_counts(self, website_ids: Sequence[UUID]) -> dict[UUID, int]:
        if not website_ids:
            return {}
        async with session_scope() as db:
            result = await db.execute(
                select(Campaign.website_id, func.count(Campaign.id))
                .where(Campaign.website_id.in_(website_ids))
                .group_by(Campaign.website_id)
            )
            counts = {row[0]: row[1] for row in result.all()}
        return {wid: counts.get(wid, 0) for wid in website_ids}

    # --- Subscribers ------------------------------------------------------

    async def add_subscriber(self, website_id: UUID, push_handle: dict, **attributes) -> Subscriber:
        async with session_scope() as db:
            # The website may have been deleted since the site key was resolved.
            if await db.get(Website, website_id) is None:
                raise errors.NotFound("Website not found")
            subscriber = Subscriber(website_id=website_id, push_handle=push_handle, **attributes)
            db.add(subscriber)
            await db.flush()
        return subscriber

    async def get_subscriber(self, subscriber_id: UUID) -> Subscriber | None:
        async with session_scope() as db:
            return await db.get(Subscriber, subscriber_id)

    async def list_subscribers(self, website_ids: Sequence[UUID]) -> list[Subscriber]:
        if not website_ids:
            return []
        async with session_scope() as db:
            result = await db.execute(
                select(Subscriber)
                .where(Subscriber.website_id.in_(website_ids))
                .order_by(Subscriber.created_at, Subscriber.id)
            )
            return list(result.scalars().all())

    async def remove_subscribers(self, website_id: UUID, subscriber_ids: Iterable[UUID]) -> int:
        ids = list(subscriber_ids)
        if not ids:
            return 0
        async with session_scope() as db:
            result = await db.execute(
                delete(Subscriber).where(
                    Subscriber.website_id == website_id,
                    Subscriber.id.in_(ids),
                )
            )
        return result.rowcount

    # --- Segments ---------------------------------------------------------

    async def create_segment(self, website_id: UUID, name: str, rules: list[dict]) -> Segment:
        async with session_scope() as db:
            if await db.get(Website, website_id) is None:
                raise errors.NotFound("Website not found")
            segment = Segment(website_id=website_id, name=name, rules=rules)
            db.add(segment)
            await db.flush()
        return segment

    async def get_segment(self, segment_id: UUID) -> Segment | None:
        async with session_scope() as db:
            return await db.get(Segment, segment_id)

    async def list_segments(self, website_id: UUID) -> list[Segment]:
        async with session_scope() as db:
            result = await db.execute(
                select(Segment)
                .where(Segment.website_id == website_id)
                .order_by(Segment.created_at.desc())
            )
            return list(result.scalars().all())

    async def delete_segment(self, segment_id: UUID) -> bool:
        async with session_scope() as db:
            result = await db.execute(delete(Segment).where(Segment.id == segment_id))
        return result.rowcount > 0

    # --- Campaigns --------------------------------------------------------

    async def create_campaign(self, website_id: UUID, **fields) -> Campaign:
        async with session_scope() as db:
            if await db.get(Website, website_id) is None:
                raise errors.NotFound("Website not found")
            campaign = Campaign(
                website_id=website_id,
                sent=0,
                delivered=0,
                clicked=0,
                failed=0,
                **fields,
            )
            db.add(campaign)
            await db.flush()
        return campaign

    async def get_campaign(self, campaign_id: UUID) -> Campaign | None:
        async with session_scope() as db:
            return await db.get(Campaign, campaign_id)

    async def list_campaigns(self, website_ids: Sequence[UUID]) -> list[Campaign]:
        if not website_ids:
            return []
        async with session_scope() as db:
            result = await db.execute(
                select(Campaign)
                .where(Campaign.website_id.in_(website_ids))
                .order_by(Campaign.created_at.desc())
            )
            return list(result.scalars().all())

    async def delete_campaign(self, campaign_id: UUID) -> bool:
        async with session_scope() as db:
            await db.execute(delete(DeliveryRecord).where(DeliveryRecord.campaign_id == campaign_id))
            await db.execute(delete(ClickRecord).where(ClickRecord.campaign_id == campaign_id))
            result = await db.execute(delete(Campaign).where(Campaign.id == campaign_id))
        return result.rowcount > 0

    async def commit_dispatch(
        self,
        campaign_id: UUID,
        website_id: UUID,
        delivered_ids: Sequence[UUID],
        expired_ids: Sequence[UUID],
        failed: int,
        sent_at: datetime.datetime | None = None,
    ) -> tuple[Campaign | None, int]:
        """Fold one send's outcome into the store.

        Counters accumulate across sends of the same campaign.
        Returns (campaign, pruned_count); campaign is None if it was deleted
        while the send was in flight, in which case nothing is written.
        """
        async with session_scope() as db:
            campaign = await db.get(Campaign, campaign_id)
            if campaign is None:
                return None, 0

            now = sent_at or utcnow()
            for subscriber_id in delivered_ids:
                db.add(DeliveryRecord(
                    campaign_id=campaign_id,
                    subscriber_id=subscriber_id,
                    delivered_at=now,
                ))

            pruned = 0
            if expired_ids:
                result = await db.execute(
                    delete(Subscriber).where(
                        Subscriber.website_id == website_id,
                        Subscriber.id.in_(list(expired_ids)),
                    )
                )
                pruned = result.rowcount

            # Increment in SQL so concurrent sends of one campaign don't lose updates
            await db.execute(
                update(Campaign)
                .where(Campaign.id == campaign_id)
                .values(
                    sent=Campaign.sent + len(delivered_ids),
                    delivered=Campaign.delivered + len(delivered_ids),
                    failed=Campaign.failed + failed,
                    status="sent",
                    sent_at=now,
                )
            )
            await db.refresh(campaign)
        return campaign, pruned

    async def record_click(self, campaign_id: UUID, subscriber_id: str | None = None) -> ClickRecord:
        async with session_scope() as db:
            exists = await db.execute(select(Campaign.id).where(Campaign.id == campaign_id))
            if exists.scalar_one_or_none() is None:
                raise errors.NotFound("Campaign not found")
            click = ClickRecord(campaign_id=campaign_id, subscriber_id=subscriber_id or "unknown")
            db.add(click)
            await db.execute(
                update(Campaign)
                .where(Campaign.id == campaign_id)
                .values(clicked=Campaign.clicked + 1)
            )
            await db.flush()
        return click

    async def list_clicks(self, campaign_id: UUID) -> list[ClickRecord]:
        async with session_scope() as db:
            result = await db.execute(
                select(ClickRecord)
                .where(ClickRecord.campaign_id == campaign_id)
                .order_by(ClickRecord.clicked_at)
            )
            return list(result.scalars().all())

    async def list_deliveries(self, campaign_id: UUID) -> list[DeliveryRecord]:
        async with session_scope() as db:
            result = await db.execute(
                select(DeliveryRecord)
                .where(DeliveryRecord.campaign_id == campaign_id)
                .order_by(DeliveryRecord.delivered_at)
            )
            return list(result.scalars().all())


def get_store() -> EntityStore:
    """FastAPI dependency."""
    return EntityStore()
