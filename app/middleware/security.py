"""Response headers for every route.

/api/ responses carry API keys and per-account data, so they are never
cached. The click endpoint is hit by service workers on subscriber devices
and must not leak the notification URL as a referrer.
"""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

NO_STORE = "no-store, no-cache, must-revalidate, private"

BASE_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Permissions-Policy": "geolocation=(), camera=(), microphone=()",
}


def _is_click_report(path: str) -> bool:
    return path.startswith("/api/campaigns/") and path.endswith("/click")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        path = request.url.path

        if "server" in response.headers:
            del response.headers["server"]

        if path.startswith("/api/"):
            response.headers["Cache-Control"] = NO_STORE
            response.headers["Pragma"] = "no-cache"

        response.headers["Referrer-Policy"] = (
            "no-referrer" if _is_click_report(path) else "strict-origin-when-cross-origin"
        )
        for name, value in BASE_HEADERS.items():
            # /docs serves its own scripts
            if name == "Content-Security-Policy" and not path.startswith("/api/"):
                continue
            response.headers[name] = value

        return response
