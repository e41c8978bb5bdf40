"""
Main FastAPI application for the Newsletter Wizard backend.
Handles CORS, security headers, request logging middleware, lifespan events, and router registration.
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.routers import (
    api_keys,
    audit,
    health,
    newsletters,
    search,
    social,
    sources,
    team,
    tenant_settings,
    v1,
    voice_profiles,
    webhooks,
    workspace,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


def _check_providers() -> dict:
    """
    Report which provider keys are configured in the environment.
    Tenants can still bring their own keys, so missing keys only warn.
    """
    result = {
        "anthropic": bool(settings.ANTHROPIC_API_KEY),
        "openai": bool(settings.OPENAI_API_KEY),
        "sendgrid": bool(settings.SENDGRID_API_KEY),
        "resend": bool(settings.RESEND_API_KEY),
    }
    if result["anthropic"] or result["openai"]:
        logger.info("✓ LLM provider keys: anthropic=%s openai=%s", result["anthropic"], result["openai"])
    else:
        logger.warning("⚠ No ANTHROPIC_API_KEY or OPENAI_API_KEY set; generation uses templates")
    if not result["openai"]:
        logger.warning("⚠ No OPENAI_API_KEY set; sources are stored without embeddings")
    if not settings.INTERNAL_API_KEY:
        logger.warning("⚠ INTERNAL_API_KEY not set; /api/webhooks/trigger will reject every call")
    return result


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Newsletter Wizard backend …")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await _check_database()

    # 2. Provider keys (optional; logs warnings but continues)
    _check_providers()

    # 3. Upload directory
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    logger.info("✓ Upload directory: %s", os.path.abspath(settings.UPLOAD_DIR))

    logger.info("=" * 60)
    logger.info("  Newsletter Wizard backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down Newsletter Wizard backend …")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Newsletter Wizard API",
    description=(
        "**Newsletter Wizard**: multi-tenant newsletter creation backend.\n\n"
        "Ingest knowledge sources, generate newsletters grounded in them, "
        "repurpose them for social media and send them through your ESP.\n\n"
        "Key endpoints:\n"
        "- `POST /api/sources/upload`: upload and process a document\n"
        "- `POST /api/search/rag`: semantic search over your knowledge base\n"
        "- `POST /api/newsletters/generate`: AI newsletter draft\n"
        "- `POST /api/newsletters/{id}/send`: send via SendGrid, Mailchimp or ConvertKit\n"
        "- `POST /api/v1/search`: external API (X-API-Key)\n"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches ``X-Process-Time`` (milliseconds) and the security headers to
    every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling from the frontend
    if request.url.path not in ("/api/health", "/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    for header, value in SECURITY_HEADERS.items():
        response.headers[header] = value
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,            prefix="/api/health",         tags=["Health"])
app.include_router(workspace.router,         prefix="/api",                tags=["Workspace"])
app.include_router(tenant_settings.router,   prefix="/api/settings",       tags=["Settings"])
app.include_router(sources.router,           prefix="/api/sources",        tags=["Sources"])
app.include_router(search.router,            prefix="/api/search",         tags=["Search"])
app.include_router(newsletters.router,       prefix="/api/newsletters",    tags=["Newsletters"])
app.include_router(voice_profiles.router,    prefix="/api/voice-profiles", tags=["Voice Profiles"])
app.include_router(social.router,            prefix="/api/social",         tags=["Social"])
app.include_router(api_keys.router,          prefix="/api/api-keys",       tags=["API Keys"])
app.include_router(webhooks.router,          prefix="/api/webhooks",       tags=["Webhooks"])
app.include_router(team.router,              prefix="/api/team",           tags=["Team"])
app.include_router(team.invitations_router,  prefix="/api/invitations",    tags=["Team"])
app.include_router(audit.router,             prefix="/api/audit",          tags=["Audit"])
app.include_router(v1.router,                prefix="/api/v1",             tags=["External API"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root: returns basic service info."""
    return {
        "name": "Newsletter Wizard API",
        "version": "1.0.0",
        "description": "Multi-tenant newsletter creation backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "workspace": "/api/workspace",
            "sources": "/api/sources",
            "search": "/api/search",
            "newsletters": "/api/newsletters",
            "social": "/api/social",
            "api_keys": "/api/api-keys",
            "webhooks": "/api/webhooks",
            "team": "/api/team",
            "external": "/api/v1",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
