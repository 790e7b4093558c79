"""Tests for analytics aggregation (pure functions)."""

import datetime
from types import SimpleNamespace
from uuid import uuid4

import pytest
from app.core import analytics


def _campaign(sent=0, delivered=0, clicked=0, failed=0, status="sent", name="c"):
    return SimpleNamespace(id=uuid4(), name=name, status=status,
                           sent=sent, delivered=delivered, clicked=clicked, failed=failed)


def _subscriber(day: datetime.date, website_id=None, hour=12, **attrs):
    created = datetime.datetime.combine(day, datetime.time(hour=hour), tzinfo=datetime.timezone.utc)
    return SimpleNamespace(id=uuid4(), website_id=website_id, created_at=created, **attrs)


class TestRates:
    def test_ctr_zero_when_nothing_delivered(self):
        assert analytics.ctr(0, 0) == 0.0

    def test_ctr_with_untraced_clicks_can_exceed_100(self):
        assert analytics.ctr(3, 2) == 150.0

    def test_ctr_rounds(self):
        assert analytics.ctr(1, 3) == 33.33

    def test_delivery_rate_perfect_when_nothing_sent(self):
        assert analytics.delivery_rate(0, 0) == 100.0

    def test_delivery_rate(self):
        assert analytics.delivery_rate(3, 4) == 75.0


class TestOverview:
    def test_scenario_no_deliveries_no_division_error(self):
        result = analytics.overview([_campaign(status="draft")])
        assert result["avg_ctr"] == 0.0
        assert result["delivery_rate"] == 100.0
        assert result["total_campaigns"] == 1

    def test_sums_across_campaigns(self):
        campaigns = [
            _campaign(sent=10, delivered=10, clicked=2, failed=1),
            _campaign(sent=5, delivered=5, clicked=3, failed=4),
        ]
        result = analytics.overview(campaigns, website_count=2, subscriber_count=20)
        assert result["total_sent"] == 15
        assert result["total_delivered"] == 15
        assert result["total_clicked"] == 5
        assert result["total_failed"] == 5
        assert result["avg_ctr"] == 33.33
        assert result["total_websites"] == 2
        assert result["total_subscribers"] == 20

    def test_top_campaigns_sorted_by_ctr(self):
        low = _campaign(delivered=10, clicked=1, name="low")
        high = _campaign(delivered=10, clicked=5, name="high")
        draft = _campaign(status="draft", name="draft")
        names = [c["name"] for c in analytics.overview([low, draft, high])["top_campaigns"]]
        assert names == ["high", "low"]

    def test_idempotent(self):
        campaigns = [_campaign(sent=4, delivered=4, clicked=1, failed=2)]
        assert analytics.overview(campaigns) == analytics.overview(campaigns)


class TestGrowth:
    def test_scenario_three_day_buckets(self):
        day1 = datetime.date(2026, 3, 1)
        day3 = datetime.date(2026, 3, 3)
        subscribers = [_subscriber(day1), _subscriber(day1, hour=23), _subscriber(day3, hour=0)]
        growth = analytics.subscriber_growth(subscribers, day1, day3)
        assert growth == [
            {"date": "2026-03-01", "count": 2},
            {"date": "2026-03-02", "count": 0},
            {"date": "2026-03-03", "count": 1},
        ]

    def test_outside_range_ignored(self):
        start = datetime.date(2026, 3, 10)
        subscribers = [_subscriber(datetime.date(2026, 3, 9)), _subscriber(datetime.date(2026, 3, 12))]
        growth = analytics.subscriber_growth(subscribers, start, start + datetime.timedelta(days=1))
        assert [g["count"] for g in growth] == [0, 0]

    def test_naive_timestamps_bucket_on_their_own_date(self):
        naive = SimpleNamespace(created_at=datetime.datetime(2026, 3, 1, 23, 59))
        growth = analytics.subscriber_growth([naive], datetime.date(2026, 3, 1), datetime.date(2026, 3, 1))
        assert growth == [{"date": "2026-03-01", "count": 1}]

    def test_default_range_is_trailing_week(self):
        today = datetime.date(2026, 10, 18)
        start, end = analytics.default_range(today)
        assert end == today
        assert (end - start).days == 6


class TestBreakdown:
    def test_groups_sorted_with_percentages(self):
        day = datetime.date(2026, 3, 1)
        subscribers = [
            _subscriber(day, platform="ios"),
            _subscriber(day, platform="android"),
            _subscriber(day, platform="ios"),
            _subscriber(day, platform=None),
        ]
        rows = analytics.breakdown(subscribers, "platform")
        assert rows[0] == {"name": "ios", "count": 2, "percentage": 50.0}
        assert {r["name"] for r in rows[1:]} == {"android", "Unknown"}
        assert sum(r["count"] for r in rows) == 4

    def test_country_truncated_to_top_ten(self):
        day = datetime.date(2026, 3, 1)
        subscribers = []
        for i in range(12):
            subscribers += [_subscriber(day, platform="ios", browser="Safari", city="X",
                                        country=f"Country {i:02d}")] * (i + 1)
        result = analytics.subscriber_breakdown([], subscribers, day)
        assert len(result["countries"]) == 10
        assert result["countries"][0]["name"] == "Country 11"
        assert result["total"] == len(subscribers)

    def test_empty(self):
        assert analytics.breakdown([], "platform") == []

    def test_website_summaries(self):
        today = datetime.date(2026, 3, 20)
        site_a, site_b = uuid4(), uuid4()
        websites = [SimpleNamespace(id=site_a, domain="a.com"), SimpleNamespace(id=site_b, domain="b.com")]
        subscribers = [
            _subscriber(today, website_id=site_a),
            _subscriber(today - datetime.timedelta(days=6), website_id=site_a),
            _subscriber(today - datetime.timedelta(days=30), website_id=site_a),
        ]
        rows = analytics.website_summaries(websites, subscribers, today)
        assert rows[0] == {"website_id": str(site_a), "domain": "a.com", "subscribers": 3, "growth_7d": 2}
        assert rows[1]["subscribers"] == 0
