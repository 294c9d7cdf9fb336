# catsof/transport/security.py
"""
Response hardening and client-safe error rendering.

- OWASP security headers on every response
- SubmissionError → status code + message from the error taxonomy
- Anything else → generic 500 (details stay in the logs)
"""
from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from catsof.config import settings
from catsof.core.errors import SubmissionError
from catsof.infra.logging_config import get_logger

logger = get_logger(__name__)

GENERIC_ERROR_MESSAGE = "Could not process submission."


class SecurityHeaders:
    """
    Adds security headers to responses.
    Implements OWASP recommended security headers.
    """

    @staticmethod
    def add_security_headers(response):
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Referrer policy - don't leak URLs to third parties
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Content Security Policy (API responses never load anything)
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"

        if settings.is_production or settings.is_staging:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


def accepts_json(request: Request) -> bool:
    """True when the caller asked for a JSON answer (fetch/XHR clients)"""
    return "application/json" in request.headers.get("accept", "").lower()


def render_error(request: Request, status_code: int, message: str) -> Response:
    """JSON for API callers, plain text for HTML form posts"""
    if accepts_json(request):
        return JSONResponse(status_code=status_code, content={"ok": False, "error": message})
    return PlainTextResponse(message, status_code=status_code)


def submission_error_response(request: Request, exc: SubmissionError) -> Response:
    request_id = getattr(request.state, "request_id", None)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Submission rejected: {exc.__class__.__name__} ({exc.status_code}): {exc.message}",
        extra={"request_id": request_id} if request_id else {},
    )
    return render_error(request, exc.status_code, exc.message)
