"""
Pushwire: push notification campaigns for websites.
Main application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.accounts import router as accounts_router
from app.api.analytics import router as analytics_router
from app.api.campaigns import router as campaigns_router
from app.api.segments import router as segments_router
from app.api.subscribers import router as subscribers_router
from app.api.websites import router as websites_router
from app.core.errors import EngineError
from app.core.transport import get_transport
from app.middleware.security import SecurityHeadersMiddleware
from app.models.database import dispose_engine, init_models
from app.config import get_settings

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info("pushwire_starting", base_url=get_settings().base_url)
    yield
    logger.info("pushwire_shutting_down")
    if get_transport.cache_info().currsize:
        get_transport().close()
        get_transport.cache_clear()
    await dispose_engine()


app = FastAPI(
    title="Pushwire",
    description="Web push campaigns for websites.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

# Security headers on every response
app.add_middleware(SecurityHeadersMiddleware)

# CORS: the SDK calls /api/subscribe and /click from customer domains
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["X-API-Key", "Content-Type"],
)


# --- Uniform {"success": false, "error": ...} envelope ---

@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"{location}: {message}" if location else message},
    )


# --- Routes ---
app.include_router(accounts_router)
app.include_router(websites_router)
app.include_router(subscribers_router)
app.include_router(segments_router)
app.include_router(campaigns_router)
app.include_router(analytics_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "pushwire", "version": "0.1.0"}
