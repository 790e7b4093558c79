"""
Database models: the entity store.

Design principles:
  - Everything is referenced by generated UUID, never by object
  - Ownership chain: accounts → websites → subscribers / segments / campaigns
  - Deleting a website is the only cascading delete (handled in EntityStore)
  - Delivery and click records are append-only
  - campaigns.segment_id has no FK: deleting a segment never touches
    a past campaign's stats
"""

import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------

class Account(Base):
    __tablename__ = "accounts"

    id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    key_hash = Column(String(64), nullable=False, unique=True, index=True)  # SHA-256 hex
    key_prefix = Column(String(16), nullable=False)  # e.g. "pw_live_a3f8" for identification
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Website(Base):
    __tablename__ = "websites"

    id = Column(Uuid, primary_key=True, default=uuid4)
    account_id = Column(Uuid, ForeignKey("accounts.id"), nullable=False, index=True)
    domain = Column(String(255), nullable=False)  # normalized, see normalize_domain()
    key_hash = Column(String(64), nullable=False, unique=True, index=True)
    key_prefix = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", "domain", name="uq_websites_account_domain"),
    )


# ---------------------------------------------------------------------------
# Audience
# ---------------------------------------------------------------------------

SUBSCRIBER_FIELDS = ("platform", "browser", "country", "city", "language", "timezone")


class Subscriber(Base):
    """One push-capable browser/device registered against a website."""
    __tablename__ = "subscribers"

    id = Column(Uuid, primary_key=True, default=uuid4)
    website_id = Column(Uuid, ForeignKey("websites.id"), nullable=False, index=True)

    # The browser's PushSubscription JSON ({endpoint, keys: {p256dh, auth}}).
    # Opaque to everything except the push transport.
    push_handle = Column(JSON, nullable=False)

    platform = Column(String(100), nullable=False, default="Unknown")
    browser = Column(String(100), nullable=False, default="Unknown")
    country = Column(String(100), nullable=False, default="Unknown")
    city = Column(String(100), nullable=False, default="Unknown")
    language = Column(String(35), nullable=False, default="Unknown")
    timezone = Column(String(64), nullable=False, default="UTC")
    user_agent = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def attributes(self) -> dict:
        """Metadata map used for segment matching and breakdowns."""
        return {name: getattr(self, name) for name in SUBSCRIBER_FIELDS}


class Segment(Base):
    __tablename__ = "segments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    website_id = Column(Uuid, ForeignKey("websites.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    rules = Column(JSON, nullable=False, default=list)  # [{field, operator, value}, ...], AND-ed
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------

CAMPAIGN_STATUSES = ("draft", "scheduled", "sent")


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Uuid, primary_key=True, default=uuid4)
    website_id = Column(Uuid, ForeignKey("websites.id"), nullable=False, index=True)
    segment_id = Column(Uuid, nullable=True)
    name = Column(String(255), nullable=False)

    # Content
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    icon = Column(Text, nullable=True)
    image = Column(Text, nullable=True)
    click_url = Column(Text, nullable=True)
    actions = Column(JSON, nullable=True)  # [{action, title, icon?}, ...]

    status = Column(String(20), nullable=False, default="draft")

    # Stats: folded in by the dispatcher; clicked grows on click reports
    sent = Column(Integer, nullable=False, default=0)
    delivered = Column(Integer, nullable=False, default=0)
    clicked = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)

    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Event tables (append-only)
# ---------------------------------------------------------------------------

class DeliveryRecord(Base):
    """One row per successful transport delivery."""
    __tablename__ = "delivery_records"

    id = Column(Uuid, primary_key=True, default=uuid4)
    campaign_id = Column(Uuid, ForeignKey("campaigns.id"), nullable=False, index=True)
    subscriber_id = Column(Uuid, nullable=False)  # no FK: subscriber may be pruned later
    delivered_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class ClickRecord(Base):
    """One row per click report. subscriber_id is "unknown" when untraceable."""
    __tablename__ = "click_records"

    id = Column(Uuid, primary_key=True, default=uuid4)
    campaign_id = Column(Uuid, ForeignKey("campaigns.id"), nullable=False, index=True)
    subscriber_id = Column(String(64), nullable=False, default="unknown")
    clicked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
