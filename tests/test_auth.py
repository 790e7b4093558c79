"""Tests for API key handling, the ownership guard and rate limiting."""

import time
from collections import deque
from types import SimpleNamespace
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from fastapi import HTTPException

from app.core import errors
from app.middleware.auth import (
    ACCOUNT_KEY_PREFIX,
    SITE_KEY_PREFIX,
    _hash_key,
    authorize_segment,
    authorize_website,
    display_prefix,
    generate_api_key,
    resolve_account,
    resolve_site,
)
from app.middleware import rate_limit
from app.middleware.rate_limit import check_rate_limit, get_real_ip


class TestKeys:
    def test_account_key_prefix_and_hash(self):
        raw, key_hash = generate_api_key()
        assert raw.startswith(ACCOUNT_KEY_PREFIX)
        assert key_hash == _hash_key(raw)
        assert raw not in key_hash
        assert len(key_hash) == 64

    def test_site_key_prefix(self):
        raw, _ = generate_api_key("site")
        assert raw.startswith(SITE_KEY_PREFIX)

    def test_keys_are_unique(self):
        assert len({generate_api_key()[0] for _ in range(50)}) == 50

    def test_display_prefix(self):
        raw, _ = generate_api_key()
        assert display_prefix(raw) == raw[:12]


class TestResolve:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [None, "", "pw_live_nope"])
    async def test_unknown_account_key_unauthorized(self, store, raw):
        with pytest.raises(errors.Unauthorized):
            await resolve_account(raw, store)

    @pytest.mark.asyncio
    async def test_account_key_is_not_a_site_key(self, store):
        raw, key_hash = generate_api_key()
        await store.create_account("a@example.com", key_hash, display_prefix(raw))
        assert (await resolve_account(raw, store)).email == "a@example.com"
        with pytest.raises(errors.Unauthorized):
            await resolve_site(raw, store)

    @pytest.mark.asyncio
    async def test_site_key_resolves_website(self, store):
        _, account_hash = generate_api_key()
        account = await store.create_account("a@example.com", account_hash, "pw_live_x")
        raw, key_hash = generate_api_key("site")
        website = await store.add_website(account.id, "a.com", key_hash, display_prefix(raw))
        site = await resolve_site(raw, store)
        assert site.website_id == website.id
        assert site.account_id == account.id
        assert site.domain == "a.com"


class TestOwnership:
    @pytest.mark.asyncio
    async def test_not_found_before_forbidden(self, store):
        auth = SimpleNamespace(account_id=uuid4())
        with pytest.raises(errors.NotFound):
            await authorize_website(store, auth, uuid4())
        with pytest.raises(errors.NotFound):
            await authorize_segment(store, auth, uuid4())

    @pytest.mark.asyncio
    async def test_foreign_website_and_segment_forbidden(self, store):
        _, key_hash = generate_api_key()
        owner = await store.create_account("owner@example.com", key_hash, "pw_live_x")
        website = await store.add_website(owner.id, "a.com", generate_api_key("site")[1], "pw_site_x")
        segment = await store.create_segment(website.id, "all", [])
        intruder = SimpleNamespace(account_id=uuid4())

        with pytest.raises(errors.Forbidden):
            await authorize_website(store, intruder, website.id)
        with pytest.raises(errors.Forbidden):
            await authorize_segment(store, intruder, segment.id)

        mine = SimpleNamespace(account_id=owner.id)
        assert (await authorize_website(store, mine, website.id)).id == website.id
        found, parent = await authorize_segment(store, mine, segment.id)
        assert (found.id, parent.id) == (segment.id, website.id)


class TestRateLimit:
    def test_limit_enforced(self):
        for _ in range(3):
            check_rate_limit("test:key", 3)
        with pytest.raises(HTTPException) as exc_info:
            check_rate_limit("test:key", 3)
        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == "60"

    def test_keys_are_independent(self):
        check_rate_limit("test:a", 1)
        assert check_rate_limit("test:b", 1) == 0

    def test_idle_buckets_swept_when_map_is_full(self):
        stale = time.monotonic() - 120
        rate_limit._buckets["ip:198.51.100.1"] = deque([stale])
        rate_limit._buckets["ip:198.51.100.2"] = deque()
        check_rate_limit("ip:198.51.100.3", 5)

        with patch("app.middleware.rate_limit.MAX_BUCKETS", 3):
            check_rate_limit("ip:198.51.100.4", 5)

        assert set(rate_limit._buckets) == {"ip:198.51.100.3", "ip:198.51.100.4"}

    def test_no_sweep_below_threshold(self):
        rate_limit._buckets["ip:198.51.100.1"] = deque([time.monotonic() - 120])
        check_rate_limit("ip:198.51.100.2", 5)
        assert "ip:198.51.100.1" in rate_limit._buckets

    @pytest.mark.parametrize("forwarded,expected", [
        ("203.0.113.7", "203.0.113.7"),
        ("10.0.0.1, 203.0.113.7", "203.0.113.7"),
        ("10.0.0.1, 192.168.1.1", "10.0.0.1"),
    ])
    def test_real_ip_from_forwarded_for(self, forwarded, expected):
        request = MagicMock()
        request.headers = {"x-forwarded-for": forwarded}
        assert get_real_ip(request) == expected

    def test_real_ip_falls_back_to_peer(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "198.51.100.4"
        assert get_real_ip(request) == "198.51.100.4"
