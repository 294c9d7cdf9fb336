# catsof/infra/mime_policy.py
"""
Image media-type policy.

One allowlist, used for both uploaded files (declared part type) and remote
responses (Content-Type header). Content is never sniffed or transcoded here;
only the declared type is checked.
"""
from __future__ import annotations

import re

from catsof.core.errors import UnsupportedMediaTypeError

# Canonical extension per allowed type
ALLOWED_IMAGE_MIME_TYPES: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/avif": "avif",
}

DEFAULT_EXTENSION = "jpg"
DEFAULT_FILENAME_STEM = "cat-image"

_DISALLOWED_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_mime_type(raw_content_type: str | None) -> str:
    """
    Normalize a declared content type and check it against the allowlist.

    ``"Image/PNG; charset=binary"`` → ``"image/png"``

    Raises:
        UnsupportedMediaTypeError: type (without parameters) is not allowlisted
    """
    normalized = (raw_content_type or "").split(";", 1)[0].strip().lower()
    if normalized not in ALLOWED_IMAGE_MIME_TYPES:
        raise UnsupportedMediaTypeError()
    return normalized


def extension_for_mime(mime_type: str | None) -> str:
    return ALLOWED_IMAGE_MIME_TYPES.get((mime_type or "").lower(), DEFAULT_EXTENSION)


def safe_filename(filename: str | None, fallback: str = DEFAULT_FILENAME_STEM) -> str:
    """
    Reduce a client-controlled name to ``[A-Za-z0-9._-]``.

    Directory components (``/`` or ``\\``) are dropped and leading dots are
    stripped so the result can never be hidden, ``.`` or ``..``.
    """
    base = re.split(r"[\\/]", filename or "")[-1]
    normalized = _DISALLOWED_FILENAME_CHARS.sub("_", base).lstrip(".")
    return normalized or fallback


def filename_with_extension(filename: str, mime_type: str) -> str:
    """Append the canonical extension when the name has none"""
    if "." in filename:
        return filename
    return f"{filename}.{extension_for_mime(mime_type)}"
