"""
notebridge API
FastAPI application that turns helpdesk outbound-email webhooks into
contact notes in the student-management directory.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from notebridge.config import get_settings
from notebridge.routers import webhooks

# Configure logging to output to console
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="notebridge API",
    description="Helpdesk webhook to directory contact-note bridge",
    version="0.1.0",
)

# Permissive CORS: every response is readable from any origin, and OPTIONS
# is answered directly with 204.
_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}


@app.middleware("http")
async def permissive_cors(request: Request, call_next):
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=_CORS_HEADERS)
    response = await call_next(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render every HTTP error as {"error": ..., <diagnostic fields>}."""
    if isinstance(exc.detail, dict):
        content = dict(exc.detail)
        content.setdefault("error", "Request failed")
    else:
        content = {"error": str(exc.detail)}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
        headers={"Access-Control-Allow-Origin": "*"},
    )


# Include routers
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])


@app.on_event("startup")
async def log_startup_configuration() -> None:
    """Log which safety switches are active so misconfiguration is visible."""
    settings = get_settings()
    missing = settings.missing_directory_settings()
    if missing:
        logger.warning(f"Directory settings missing: {missing}; webhooks will answer 500")
    if not settings.webhook_secret:
        logger.warning("HELPDESK_WEBHOOK_SECRET not set; webhook signatures are NOT verified")
    elif settings.allow_unverified:
        logger.warning("ALLOW_UNVERIFIED_WEBHOOKS is on; webhook signatures are NOT verified")
    if settings.loose_signature_match:
        logger.warning("LOOSE_SIGNATURE_MATCH is on; substring signature matching enabled")


@app.get("/")
async def root():
    return {"message": "notebridge API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}
