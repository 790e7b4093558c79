"""
VAPID key material.

The public key is handed to the subscription producer (applicationServerKey);
the private key signs every push request. Configure both via PW_VAPID_*.
Without a configured private key an ephemeral pair is generated. Fine for
development, but every subscription made against it dies with the process.
"""

import base64
from dataclasses import dataclass
from functools import lru_cache

from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid

from app.config import get_settings

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class VapidKeys:
    public_key: str  # base64url, uncompressed P-256 point
    signer: Vapid


def _encode_public_key(vapid: Vapid) -> str:
    raw = vapid.public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


@lru_cache
def get_vapid_keys() -> VapidKeys:
    settings = get_settings()
    if settings.vapid_private_key:
        vapid = Vapid.from_string(private_key=settings.vapid_private_key)
    else:
        vapid = Vapid()
        vapid.generate_keys()
        logger.warning("vapid_keys_generated", reason="PW_VAPID_PRIVATE_KEY not set")
    public_key = settings.vapid_public_key or _encode_public_key(vapid)
    return VapidKeys(public_key=public_key, signer=vapid)
