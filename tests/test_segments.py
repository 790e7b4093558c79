"""Tests for segment rule matching and audience resolution."""

import pytest
from app.core.segments import resolve_audience, rule_matches


IOS = {"platform": "ios", "browser": "Safari", "country": "Canada", "city": "Toronto"}
ANDROID = {"platform": "android", "browser": "Chrome Mobile", "country": "Germany", "city": "Berlin"}
IOS_2 = {"platform": "ios", "browser": "Chrome Mobile iOS", "country": "Canada", "city": "Montreal"}
BARE = {}

AUDIENCE = [IOS, ANDROID, IOS_2, BARE]


class TestEmptyRules:
    def test_no_rules_returns_everyone(self):
        assert resolve_audience(AUDIENCE, []) == AUDIENCE

    def test_none_rules_returns_everyone(self):
        assert resolve_audience(AUDIENCE, None) == AUDIENCE


class TestIsOperators:
    def test_scenario_platform_is_ios(self):
        rules = [{"field": "platform", "operator": "is", "value": "ios"}]
        assert resolve_audience([IOS, ANDROID, IOS_2], rules) == [IOS, IOS_2]

    def test_is_is_case_sensitive(self):
        rules = [{"field": "platform", "operator": "is", "value": "iOS"}]
        assert resolve_audience(AUDIENCE, rules) == []

    @pytest.mark.parametrize("value", ["ios", "android", "Unknown", "windows"])
    def test_is_not_is_exact_complement(self, value):
        is_rule = [{"field": "platform", "operator": "is", "value": value}]
        is_not_rule = [{"field": "platform", "operator": "is_not", "value": value}]
        matched = resolve_audience(AUDIENCE, is_rule)
        excluded = resolve_audience(AUDIENCE, is_not_rule)
        assert len(matched) + len(excluded) == len(AUDIENCE)
        assert all(s not in excluded for s in matched)

    def test_missing_field_compares_as_unknown(self):
        assert rule_matches(BARE, {"field": "platform", "operator": "is", "value": "Unknown"})
        assert not rule_matches(BARE, {"field": "platform", "operator": "is_not", "value": "Unknown"})

    def test_unknown_field_uses_default(self):
        rule = {"field": "favourite_colour", "operator": "is", "value": "Unknown"}
        assert resolve_audience(AUDIENCE, [rule]) == AUDIENCE


class TestContainsOperators:
    def test_contains_is_case_insensitive(self):
        rules = [{"field": "browser", "operator": "contains", "value": "CHROME"}]
        assert resolve_audience(AUDIENCE, rules) == [ANDROID, IOS_2]

    def test_not_contains(self):
        rules = [{"field": "browser", "operator": "not_contains", "value": "chrome"}]
        assert resolve_audience(AUDIENCE, rules) == [IOS, BARE]

    def test_missing_field_is_empty_for_contains(self):
        assert not rule_matches(BARE, {"field": "city", "operator": "contains", "value": "Unknown"})
        assert rule_matches(BARE, {"field": "city", "operator": "not_contains", "value": "x"})


class TestRuleCombination:
    def test_rules_are_anded(self):
        rules = [
            {"field": "country", "operator": "is", "value": "Canada"},
            {"field": "browser", "operator": "contains", "value": "chrome"},
        ]
        assert resolve_audience(AUDIENCE, rules) == [IOS_2]

    @pytest.mark.parametrize("rules", [
        [{"field": "platform", "operator": "is", "value": "ios"}],
        [{"field": "city", "operator": "not_contains", "value": "o"}],
        [{"field": "country", "operator": "is_not", "value": "Canada"},
         {"field": "platform", "operator": "contains", "value": "and"}],
    ])
    def test_result_is_subset_of_input(self, rules):
        result = resolve_audience(AUDIENCE, rules)
        assert all(s in AUDIENCE for s in result)
        assert len(result) <= len(AUDIENCE)

    def test_resolution_follows_current_metadata(self):
        subscriber = dict(IOS)
        rules = [{"field": "platform", "operator": "is", "value": "ios"}]
        assert resolve_audience([subscriber], rules) == [subscriber]
        subscriber["platform"] = "android"
        assert resolve_audience([subscriber], rules) == []

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            rule_matches(IOS, {"field": "platform", "operator": "matches", "value": "ios"})
