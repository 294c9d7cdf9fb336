# catsof/infra/image_resolver.py
"""
Turn a submission's photo source into a ValidatedImage.

Exactly one path runs per submission:
- UploadedFile with bytes → size + declared type checks, filename cleanup,
  no network trip
- RemoteUrl → RemoteImageFetcher (which applies the same type policy to the
  response Content-Type)
"""
from __future__ import annotations

from catsof.core.domain import (
    CandidateSource,
    IngestionLimits,
    RemoteUrl,
    UploadedFile,
    ValidatedImage,
)
from catsof.core.errors import EmptyImageError, ImageTooLargeError, MissingPhotoSourceError
from catsof.infra.logging_config import get_logger
from catsof.infra.mime_policy import extension_for_mime, safe_filename, sanitize_mime_type
from catsof.infra.remote_fetcher import RemoteImageFetcher

logger = get_logger(__name__)


def validate_uploaded_file(upload: UploadedFile, limits: IngestionLimits) -> ValidatedImage:
    """
    Validate an uploaded file against size and type policy.

    The declared size and the received byte count are both checked.
    """
    size = max(upload.size, len(upload.data))
    if size > limits.max_image_bytes:
        raise ImageTooLargeError(f"Uploaded image is too large (max {limits.max_image_mb}MB).")
    if not upload.data:
        raise EmptyImageError("Uploaded image is empty.")

    mime_type = sanitize_mime_type(upload.declared_mime_type)
    filename = safe_filename(
        upload.declared_filename,
        fallback=f"upload.{extension_for_mime(mime_type)}",
    )

    logger.info(f"Uploaded image accepted: {len(upload.data) / 1024:.0f}KB, type={mime_type}")
    return ValidatedImage(data=upload.data, mime_type=mime_type, filename=filename)


async def resolve_canonical_image(
    source: CandidateSource,
    limits: IngestionLimits | None = None,
    fetcher: RemoteImageFetcher | None = None,
) -> ValidatedImage:
    """
    Resolve the submission's photo source.

    Args:
        source: UploadedFile or RemoteUrl
        limits: Size/timeout/redirect bounds
        fetcher: Remote fetcher (built from ``limits`` if omitted)

    Raises:
        MissingPhotoSourceError: empty upload and empty URL
        SubmissionError: any validation or fetch failure
    """
    limits = limits or IngestionLimits()

    if isinstance(source, UploadedFile):
        if source.data:
            return validate_uploaded_file(source, limits)
        raise MissingPhotoSourceError()

    if isinstance(source, RemoteUrl):
        if not source.url.strip():
            raise MissingPhotoSourceError()
        fetcher = fetcher or RemoteImageFetcher(limits)
        return await fetcher.fetch(source.url)

    raise TypeError(f"Unsupported photo source: {type(source).__name__}")
