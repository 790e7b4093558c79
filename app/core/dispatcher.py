"""
Campaign dispatch: one send of one campaign.

Flow:
  1. Guard: caller must own the campaign's website (404 / 403 otherwise)
  2. Audience: the website's subscribers *right now*, narrowed by the segment
  3. Payload: campaign content + campaign_id (so clicks can be reported back)
  4. Fan-out: every recipient attempted independently and concurrently,
     bounded by a semaphore and a per-attempt timeout
       delivered            → sent+1, delivered+1, DeliveryRecord
       SubscriptionExpired  → failed+1, subscriber pruned
       anything else        → failed+1, subscriber kept
  5. Commit: one store transaction folds every outcome in

Attempts never touch shared state; they only return an outcome. Step 5 is the
single synchronization point, so the fan-out can be as parallel as we like.

Partial failure is never an error. Only guard / not-found failures abort, and
they do so before anything is delivered.

Known race (accepted): deleting the website while a send is in flight. The
deliveries already made stay made; the commit finds the campaign gone and
writes nothing.
"""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from app.config import get_settings
from app.core import errors
from app.core.segments import resolve_audience
from app.core.transport import PushTransport, SubscriptionExpired, TransportError
from app.middleware.auth import AccountContext, authorize_campaign
from app.models.store import EntityStore
from app.models.tables import Campaign

import structlog

logger = structlog.get_logger()


class Outcome(str, Enum):
    DELIVERED = "delivered"
    EXPIRED = "expired"
    FAILED = "failed"


@dataclass(frozen=True)
class Recipient:
    subscriber_id: UUID
    push_handle: dict


@dataclass
class DispatchResult:
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    pruned: int = 0
    campaign: Campaign | None = field(default=None, repr=False)


def build_payload(campaign: Campaign) -> str:
    """JSON the service worker turns into a notification."""
    settings = get_settings()
    return json.dumps({
        "title": campaign.title,
        "body": campaign.body,
        "icon": campaign.icon or settings.default_icon,
        "image": campaign.image,
        "url": campaign.click_url or settings.default_click_url,
        "actions": campaign.actions or [],
        "campaign_id": str(campaign.id),
    })


class CampaignDispatcher:

    def __init__(
        self,
        store: EntityStore,
        transport: PushTransport,
        attempt_timeout: float | None = None,
        concurrency: int | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.transport = transport
        self.attempt_timeout = attempt_timeout or settings.delivery_timeout_seconds
        concurrency = concurrency or settings.delivery_concurrency
        # Never admit more attempts than the transport can run at once, or
        # queued attempts would spend their timeout waiting for a worker.
        pool = getattr(transport, "max_workers", None)
        if pool:
            concurrency = min(concurrency, pool)
        self.concurrency = max(1, concurrency)

    async def resolve_recipients(self, campaign: Campaign) -> list[Recipient]:
        subscribers = await self.store.list_subscribers([campaign.website_id])
        if campaign.segment_id is not None:
            segment = await self.store.get_segment(campaign.segment_id)
            if segment is None or segment.website_id != campaign.website_id:
                raise errors.NotFound("Campaign segment no longer exists")
            subscribers = resolve_audience(subscribers, segment.rules)
        return [Recipient(s.id, s.push_handle) for s in subscribers]

    async def _attempt(self, semaphore: asyncio.Semaphore, recipient: Recipient, payload: str) -> Outcome:
        async with semaphore:
            try:
                await asyncio.wait_for(
                    self.transport.deliver(recipient.push_handle, payload),
                    timeout=self.attempt_timeout,
                )
            except SubscriptionExpired:
                return Outcome.EXPIRED
            except asyncio.TimeoutError:
                logger.warning("push_delivery_failed", subscriber_id=str(recipient.subscriber_id),
                               reason="timeout")
                return Outcome.FAILED
            except TransportError as exc:
                logger.warning("push_delivery_failed", subscriber_id=str(recipient.subscriber_id),
                               reason=str(exc))
                return Outcome.FAILED
            except Exception as exc:
                # A misbehaving transport must not take the rest of the send down
                logger.error("push_delivery_error", subscriber_id=str(recipient.subscriber_id),
                             error=f"{type(exc).__name__}: {exc}")
                return Outcome.FAILED
        return Outcome.DELIVERED

    async def fan_out(self, recipients: list[Recipient], payload: str) -> list[Outcome]:
        semaphore = asyncio.Semaphore(self.concurrency)
        return await asyncio.gather(
            *(self._attempt(semaphore, recipient, payload) for recipient in recipients)
        )

    async def send(self, campaign_id: UUID, auth: AccountContext) -> DispatchResult:
        campaign, website = await authorize_campaign(self.store, auth, campaign_id)
        recipients = await self.resolve_recipients(campaign)
        payload = build_payload(campaign)

        logger.info("campaign_dispatch_started", campaign_id=str(campaign_id),
                    website_id=str(website.id), recipients=len(recipients))

        outcomes = await self.fan_out(recipients, payload)

        delivered_ids = [r.subscriber_id for r, o in zip(recipients, outcomes) if o is Outcome.DELIVERED]
        expired_ids = [r.subscriber_id for r, o in zip(recipients, outcomes) if o is Outcome.EXPIRED]
        failed = len(recipients) - len(delivered_ids)

        updated, pruned = await self.store.commit_dispatch(
            campaign_id=campaign.id,
            website_id=website.id,
            delivered_ids=delivered_ids,
            expired_ids=expired_ids,
            failed=failed,
        )
        if updated is None:
            logger.warning("campaign_vanished_during_send", campaign_id=str(campaign_id),
                           delivered=len(delivered_ids), failed=failed)
        if pruned:
            logger.info("subscriber_pruned", website_id=str(website.id), count=pruned)

        logger.info("campaign_sent", campaign_id=str(campaign_id), sent=len(delivered_ids),
                    delivered=len(delivered_ids), failed=failed, pruned=pruned)

        return DispatchResult(
            sent=len(delivered_ids),
            delivered=len(delivered_ids),
            failed=failed,
            pruned=pruned,
            campaign=updated,
        )
