"""
Push transport: the one collaborator that actually reaches devices.

The engine only needs:

    await transport.deliver(push_handle, payload)   → delivered
                                                    → raises SubscriptionExpired
                                                    → raises TransientDeliveryError

SubscriptionExpired means the push service says the subscription is gone for
good (HTTP 404/410); the dispatcher prunes the subscriber. Everything else is
treated as possibly transient and the subscriber is kept.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Protocol

from pywebpush import WebPushException, webpush

from app.config import get_settings
from app.core.vapid import VapidKeys, get_vapid_keys

import structlog

logger = structlog.get_logger()

GONE_STATUS_CODES = frozenset({404, 410})


class TransportError(Exception):
    pass


class SubscriptionExpired(TransportError):
    """The push service reports the subscription permanently gone."""


class TransientDeliveryError(TransportError):
    """Any other delivery failure. Retrying later may succeed."""


class PushTransport(Protocol):
    """Anything with an async deliver(). max_workers, when present, caps how
    many deliveries the dispatcher keeps in flight at once."""

    async def deliver(self, push_handle: dict, payload: str) -> None:
        ...


class WebPushTransport:
    """Web Push (RFC 8030) with VAPID, via pywebpush.

    pywebpush is blocking, so each delivery runs in a thread of the
    transport's own pool. The pool is as wide as the dispatcher's fan-out:
    an attempt gets a thread as soon as it starts, so its timeout only ever
    covers the push request itself.
    """

    def __init__(self, vapid: VapidKeys, subject: str, ttl: int, timeout: float, max_workers: int):
        self._vapid = vapid
        self._subject = subject
        self._ttl = ttl
        self._timeout = timeout
        self.max_workers = max(1, max_workers)
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="webpush")

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _send(self, push_handle: dict, payload: str):
        return webpush(
            subscription_info=push_handle,
            data=payload,
            vapid_private_key=self._vapid.signer,
            # pywebpush adds aud/exp to the claims dict, so never share one
            vapid_claims={"sub": self._subject},
            ttl=self._ttl,
            timeout=self._timeout,
        )

    async def deliver(self, push_handle: dict, payload: str) -> None:
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(self._executor, self._send, push_handle, payload)
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            if status in GONE_STATUS_CODES:
                raise SubscriptionExpired(f"Push service returned {status}") from exc
            raise TransientDeliveryError(f"Push failed with status {status}: {exc}") from exc
        except Exception as exc:
            # Network errors, malformed handles, encryption errors
            raise TransientDeliveryError(f"{type(exc).__name__}: {exc}") from exc


@lru_cache
def get_transport() -> PushTransport:
    """FastAPI dependency. Tests override this with a scripted fake."""
    settings = get_settings()
    return WebPushTransport(
        vapid=get_vapid_keys(),
        subject=settings.vapid_subject,
        ttl=settings.push_ttl_seconds,
        timeout=settings.delivery_timeout_seconds,
        max_workers=settings.delivery_concurrency,
    )
