"""
IP → country/city, best effort.

Disabled unless PW_GEO_LOOKUP_URL is set. Expects an ipapi-style endpoint:
GET {url}/{ip}/json → {"country_name": ..., "city": ...} (also accepts
"country"). Any failure returns {} and the subscriber is registered without geo.
It never blocks registration.
"""

import httpx

from app.config import get_settings

import structlog

logger = structlog.get_logger()

_PRIVATE_PREFIXES = ("10.", "192.168.", "127.", "::1", "169.254.") + tuple(
    f"172.{n}." for n in range(16, 32)
)


async def geo_lookup(ip: str | None, client: httpx.AsyncClient | None = None) -> dict:
    settings = get_settings()
    if not settings.geo_lookup_url or not ip or ip == "unknown" or ip.startswith(_PRIVATE_PREFIXES):
        return {}

    url = f"{settings.geo_lookup_url.rstrip('/')}/{ip}/json"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.geo_lookup_timeout_seconds) as own_client:
                resp = await own_client.get(url)
        else:
            resp = await client.get(url, timeout=settings.geo_lookup_timeout_seconds)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("geo_lookup_failed", ip=ip, error=str(exc))
        return {}

    if not isinstance(data, dict):
        return {}
    geo = {}
    country = data.get("country_name") or data.get("country")
    city = data.get("city")
    if isinstance(country, str) and country:
        geo["country"] = country
    if isinstance(city, str) and city:
        geo["city"] = city
    return geo
