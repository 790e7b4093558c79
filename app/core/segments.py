"""
Segment resolution: which subscribers does a rule list target?

Rules are {field, operator, value} and are AND-ed; there is no OR or grouping.

  is / is_not              exact, case-sensitive. Missing field → "Unknown"
  contains / not_contains  case-insensitive substring. Missing field → ""

A subscriber without some metadata is never excluded just for that: absence
is a value like any other. Resolution reads the subscribers' metadata as it is
right now; segments are not snapshotted.
"""

from typing import Any, Iterable, Mapping, Sequence, TypeVar

OPERATORS = ("is", "is_not", "contains", "not_contains")
DEFAULT_VALUE = "Unknown"

T = TypeVar("T")


def _attributes_of(subscriber: Any) -> Mapping[str, Any]:
    if isinstance(subscriber, Mapping):
        return subscriber
    attributes = getattr(subscriber, "attributes", None)
    if callable(attributes):
        return attributes() or {}
    return {}


def rule_matches(attributes: Mapping[str, Any] | None, rule: Mapping[str, Any]) -> bool:
    """Evaluate one rule against one subscriber's metadata."""
    attributes = attributes or {}
    field = rule.get("field")
    operator = rule.get("operator")
    expected = "" if rule.get("value") is None else str(rule.get("value"))
    raw = attributes.get(field) if field else None

    if operator == "is":
        actual = DEFAULT_VALUE if raw is None else str(raw)
        return actual == expected
    if operator == "is_not":
        actual = DEFAULT_VALUE if raw is None else str(raw)
        return actual != expected

    actual = "" if raw is None else str(raw)
    if operator == "contains":
        return expected.lower() in actual.lower()
    if operator == "not_contains":
        return expected.lower() not in actual.lower()

    raise ValueError(f"Unknown segment operator: {operator!r}")


def subscriber_matches(subscriber: Any, rules: Sequence[Mapping[str, Any]]) -> bool:
    attributes = _attributes_of(subscriber)
    return all(rule_matches(attributes, rule) for rule in rules)


def resolve_audience(subscribers: Iterable[T], rules: Sequence[Mapping[str, Any]] | None) -> list[T]:
    """Subset of `subscribers` (input order kept) matching every rule.

    Accepts Subscriber rows or plain metadata mappings. No rules → everyone.
    """
    subscribers = list(subscribers)
    if not rules:
        return subscribers
    return [s for s in subscribers if subscriber_matches(s, rules)]
