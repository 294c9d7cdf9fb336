# catsof/transport/http_app.py
"""
HTTP surface for cat submissions and the approved-cats gallery feed.

Public endpoints:
- POST /api/submit-cat   (multipart, urlencoded or JSON)
- GET  /api/cats         (approved records, newest first)
- GET  /health
Other methods on /api/submit-cat get 405; everything else is a generic 404.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.middleware.cors import CORSMiddleware

from catsof.config import settings
from catsof.core.domain import AirtableCredentials, Credentials
from catsof.core.errors import SubmissionError
from catsof.core.use_cases import CatSubmissionService
from catsof.infra.airtable_store import AirtableRecordStore
from catsof.infra.cloudinary_uploader import CloudinaryUploader
from catsof.infra.http_client import close_all_sessions
from catsof.infra.logging_config import setup_logging, get_logger
from catsof.infra.metrics import IngestionMetrics
from catsof.infra.remote_fetcher import RemoteImageFetcher
from catsof.transport.forms import parse_submission_form
from catsof.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
    SecurityHeadersMiddleware,
)
from catsof.transport.security import (
    GENERIC_ERROR_MESSAGE,
    accepts_json,
    render_error,
    submission_error_response,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_submission_service(request: Request) -> CatSubmissionService:
    """Get submission service from app state"""
    return request.app.state.submission_service


def get_record_store(request: Request) -> AirtableRecordStore:
    """Get record store from app state"""
    return request.app.state.record_store


def get_credentials() -> Credentials:
    """Missing Airtable → ConfigurationError (500); Cloudinary is checked after the form"""
    return settings.submission_credentials()


def get_gallery_credentials() -> AirtableCredentials | None:
    """Gallery reads degrade to an empty list when Airtable is not configured"""
    if not settings.airtable_enabled:
        return None
    return settings.airtable_credentials()


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(f"Starting application: env={settings.app_env}")

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

        if settings.log_level.upper() == "DEBUG":
            logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
            raise RuntimeError("LOG_LEVEL=DEBUG in production")

    limits = settings.ingestion_limits()
    store = AirtableRecordStore()

    fastapi_app.state.record_store = store
    fastapi_app.state.submission_service = CatSubmissionService(
        store=store,
        uploader=CloudinaryUploader(),
        limits=limits,
        fetcher=RemoteImageFetcher(limits),
    )
    logger.info(
        f"Ingestion limits: max={limits.max_image_mb}MB, "
        f"timeout={limits.fetch_timeout_seconds}s, redirects={limits.max_redirects}"
    )

    yield

    # SHUTDOWN
    logger.info("Shutting down application")
    await close_all_sessions()
    logger.info("HTTP sessions closed")


# ============================================================================
# APP CONFIGURATION
# ============================================================================

app = FastAPI(
    title="Cats of Devs",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Accept"],
    )
else:
    # More permissive in dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Add security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Add custom middleware
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(SubmissionError)
async def submission_exception_handler(request: Request, exc: SubmissionError):
    """Map the ingestion error taxonomy onto status codes"""
    return submission_error_response(request, exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    response = render_error(request, exc.status_code, str(exc.detail))
    for key, value in (exc.headers or {}).items():
        response.headers[key] = value
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
    return render_error(request, 500, GENERIC_ERROR_MESSAGE)


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """
    Basic health check - PUBLIC endpoint.
    Used by load balancers, monitoring, etc.
    """
    return {"status": "healthy"}


@app.post("/api/submit-cat")
async def submit_cat(
    request: Request,
    service: CatSubmissionService = Depends(get_submission_service),
    credentials: Credentials = Depends(get_credentials),
):
    """
    Accept a cat submission.

    Success: JSON ``{"ok": true, "photoUrl": ...}`` when the client accepts JSON,
    otherwise a 303 redirect to the thank-you page. Honeypot hits always get
    the redirect and are never stored.
    """
    request_id = getattr(request.state, "request_id", None)

    try:
        form = await parse_submission_form(request, service.limits.max_image_bytes)
        outcome = await service.submit(form, credentials, request_id=request_id)
    except SubmissionError:
        IngestionMetrics.submission("rejected")
        raise

    if outcome.skipped or not accepts_json(request):
        return RedirectResponse(settings.thanks_url, status_code=303)

    return JSONResponse({"ok": True, "photoUrl": outcome.photo_url})


@app.api_route("/api/submit-cat", methods=["GET", "PUT", "DELETE", "PATCH"])
async def submit_cat_wrong_method():
    """Only POST submits; other methods must not fall through to the 404"""
    raise HTTPException(status_code=405, detail="Method Not Allowed", headers={"Allow": "POST"})


@app.get("/api/cats")
async def list_cats(
    store: AirtableRecordStore = Depends(get_record_store),
    credentials: AirtableCredentials | None = Depends(get_gallery_credentials),
):
    """Approved cats, newest first; empty when the store is unavailable"""
    records = await store.list_approved(credentials)
    return {"cats": [record.to_dict() for record in records]}


# ============================================================================
# CATCH-ALL (Return 404 for unknown routes)
# ============================================================================

@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
async def catch_all(path: str):
    """
    Catch-all route for undefined endpoints.
    Returns generic 404 without revealing information.
    """
    logger.warning(f"404 - Unknown route accessed: {path}")
    raise HTTPException(status_code=404, detail="Not found")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "catsof.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # Disable in prod (use middleware logging)
        server_header=False,
        date_header=False,
    )
