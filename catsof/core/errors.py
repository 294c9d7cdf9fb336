# catsof/core/errors.py
"""
Submission error taxonomy.

Every failure in the ingestion pipeline is a ``SubmissionError`` carrying the
HTTP status the request boundary should answer with and a message that is
safe to show to the submitter. Nothing here is retried; errors propagate to
the transport layer unchanged.
"""
from __future__ import annotations


class SubmissionError(Exception):
    """
    Base error for cat submissions.

    Attributes:
        status_code: HTTP status returned to the caller.
        message: Human-readable, client-safe description.
    """

    status_code: int = 400
    default_message: str = "Submission rejected."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


# ============================================================================
# URL / HOST VALIDATION (400)
# ============================================================================

class UrlValidationError(SubmissionError):
    """photoUrl cannot be fetched safely"""


class MalformedUrlError(UrlValidationError):
    default_message = "photoUrl must be a valid absolute http:// or https:// URL."


class UnsafeHostError(UrlValidationError):
    default_message = "photoUrl cannot target local/internal hosts."


class UnresolvableHostError(UrlValidationError):
    default_message = "photoUrl host could not be resolved."


# ============================================================================
# REMOTE FETCH (400)
# ============================================================================

class RemoteFetchError(SubmissionError):
    """Remote image retrieval failed"""


class FetchTimeoutError(RemoteFetchError):
    default_message = "Timed out while fetching photoUrl."


class FetchError(RemoteFetchError):
    default_message = "Could not fetch photoUrl."


class UpstreamStatusError(RemoteFetchError):
    """Origin answered with a non-2xx, non-3xx status"""

    def __init__(self, status: int):
        self.status = status
        super().__init__(f"photoUrl returned HTTP {status}.")


class MissingRedirectLocationError(RemoteFetchError):
    default_message = "photoUrl redirect is missing location."


class TooManyRedirectsError(RemoteFetchError):
    default_message = "photoUrl has too many redirects."


# ============================================================================
# IMAGE POLICY
# ============================================================================

class ImageValidationError(SubmissionError):
    """Image bytes or declared type violate policy"""


class ImageTooLargeError(ImageValidationError):
    status_code = 413
    default_message = "Image is too large."


class UnsupportedMediaTypeError(ImageValidationError):
    status_code = 415
    default_message = "Only JPEG, PNG, WEBP, GIF, and AVIF images are allowed."


class EmptyImageError(ImageValidationError):
    default_message = "Image is empty."


# ============================================================================
# SUBMISSION INPUT (400)
# ============================================================================

class MissingPhotoSourceError(SubmissionError):
    default_message = "Provide either photoFile or photoUrl."


class InvalidSubmissionError(SubmissionError):
    default_message = "Invalid form payload."


# ============================================================================
# UPLOAD (502)
# ============================================================================

class UploadError(SubmissionError):
    status_code = 502
    default_message = "Image upload failed."


class UploadRejectedError(UploadError):
    """Hosting service answered with a non-2xx status"""

    def __init__(self, status: int):
        self.status = status
        super().__init__("Image upload was rejected by the hosting service.")


class UploadResponseMalformedError(UploadError):
    default_message = "Image hosting response is missing the public URL."


class UploadTransportError(UploadError):
    default_message = "Could not reach the image hosting service."


# ============================================================================
# SERVER SIDE (500)
# ============================================================================

class ConfigurationError(SubmissionError):
    status_code = 500
    default_message = "Service is not configured."


class RecordStoreError(SubmissionError):
    status_code = 500
    default_message = "Could not save submission."
