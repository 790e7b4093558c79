"""
Fill subscriber metadata the client didn't send, from request headers.

Client-supplied values always win. Derived values only fill gaps:
  platform, browser ← User-Agent (user-agents)
  language          ← primary Accept-Language tag
Whatever is still missing gets the documented default.
"""

from user_agents import parse as parse_ua

DEFAULTS = {
    "platform": "Unknown",
    "browser": "Unknown",
    "country": "Unknown",
    "city": "Unknown",
    "language": "Unknown",
    "timezone": "UTC",
}


def _parse_device_from_ua(ua_string: str | None) -> dict:
    if not ua_string:
        return {}
    parsed = parse_ua(ua_string)
    hints = {}
    if parsed.os.family and parsed.os.family != "Other":
        hints["platform"] = parsed.os.family
    if parsed.browser.family and parsed.browser.family != "Other":
        hints["browser"] = parsed.browser.family
    return hints


def _primary_language(accept_language: str | None) -> str | None:
    """'en-US,en;q=0.9' → 'en-US'."""
    if not accept_language:
        return None
    first = accept_language.split(",")[0].split(";")[0].strip()
    return first or None


def fill_metadata(
    supplied: dict | None,
    user_agent: str | None = None,
    accept_language: str | None = None,
    geo: dict | None = None,
) -> dict:
    """Merge client metadata, header-derived hints, geo and defaults."""
    supplied = {k: v.strip() for k, v in (supplied or {}).items() if isinstance(v, str) and v.strip()}
    derived = _parse_device_from_ua(user_agent)
    language = _primary_language(accept_language)
    if language:
        derived["language"] = language
    derived.update(geo or {})

    return {
        name: supplied.get(name) or derived.get(name) or default
        for name, default in DEFAULTS.items()
    }
