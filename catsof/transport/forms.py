# catsof/transport/forms.py
"""
Request body → SubmissionForm.

Accepts multipart/form-data (with an optional ``photoFile`` part),
application/x-www-form-urlencoded and application/json. Anything else is
read as a urlencoded body.
"""
from __future__ import annotations

import json
from urllib.parse import parse_qsl

from fastapi import Request
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from catsof.core.domain import CatSubmission, SubmissionForm, UploadedFile
from catsof.core.errors import ImageTooLargeError, InvalidSubmissionError
from catsof.infra.logging_config import get_logger

logger = get_logger(__name__)

PHOTO_FILE_FIELD = "photoFile"

# Room for the text fields and multipart framing around the image part
FORM_OVERHEAD_BYTES = 64 * 1024


async def read_upload(upload: StarletteUploadFile, max_bytes: int) -> UploadedFile | None:
    """
    Read an uploaded part, at most ``max_bytes + 1`` bytes.

    The extra byte lets the resolver detect oversize uploads without
    buffering an arbitrarily large part. Empty parts (no file chosen) → None.
    """
    data = await upload.read(max_bytes + 1)
    if not data:
        return None

    size = upload.size if upload.size is not None else len(data)
    return UploadedFile(
        data=data,
        declared_mime_type=upload.content_type or "",
        declared_filename=upload.filename or "",
        size=max(size, len(data)),
    )


async def _parse_form(request: Request, max_bytes: int) -> SubmissionForm:
    try:
        form = await request.form()
    except (MultiPartException, StarletteHTTPException, ValueError) as e:
        logger.warning(f"Unreadable form body: {e}")
        raise InvalidSubmissionError() from e

    try:
        fields: dict[str, str] = {}
        photo_file: UploadedFile | None = None

        for key, value in form.multi_items():
            if isinstance(value, StarletteUploadFile):
                if key == PHOTO_FILE_FIELD and photo_file is None:
                    photo_file = await read_upload(value, max_bytes)
                continue
            fields[key] = value

        return SubmissionForm(CatSubmission.from_fields(fields), photo_file)
    finally:
        await form.close()


async def _parse_json(request: Request) -> SubmissionForm:
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidSubmissionError() from e

    if not isinstance(payload, dict):
        raise InvalidSubmissionError()
    return SubmissionForm(CatSubmission.from_fields(payload))


async def _parse_urlencoded_body(request: Request) -> SubmissionForm:
    body = await request.body()
    fields = dict(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))
    return SubmissionForm(CatSubmission.from_fields(fields))


def _body_too_large(limit: int) -> ImageTooLargeError:
    max_mb = max(1, (limit - FORM_OVERHEAD_BYTES) // (1024 * 1024))
    return ImageTooLargeError(f"Image is too large (max {max_mb}MB).")


def _declared_body_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        length = int(raw)
    except ValueError as e:
        raise InvalidSubmissionError() from e
    if length < 0:
        raise InvalidSubmissionError()
    return length


def bounded_request(request: Request, limit: int) -> Request:
    """
    Wrap ``request`` so its body can't be read past ``limit`` bytes.

    Form parsing spools file parts to disk as they arrive; counting at the
    ASGI receive channel stops a chunked or understated body mid-stream.
    """
    received = 0
    receive = request.receive

    async def limited_receive():
        nonlocal received
        message = await receive()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > limit:
                logger.warning(f"Request body exceeded {limit} bytes, aborting parse")
                raise _body_too_large(limit)
        return message

    return Request(request.scope, limited_receive)


async def parse_submission_form(request: Request, max_image_bytes: int) -> SubmissionForm:
    """
    Parse a submission body by its Content-Type.

    The whole body is capped at ``max_image_bytes + FORM_OVERHEAD_BYTES``:
    a larger declared Content-Length is refused before any byte is read.

    Raises:
        ImageTooLargeError: body larger than the cap
        InvalidSubmissionError: body can't be parsed for its declared type
    """
    limit = max_image_bytes + FORM_OVERHEAD_BYTES
    declared = _declared_body_length(request)
    if declared is not None and declared > limit:
        logger.warning(f"Declared Content-Length {declared} exceeds {limit}")
        raise _body_too_large(limit)
    request = bounded_request(request, limit)

    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith("multipart/form-data") or content_type.startswith(
        "application/x-www-form-urlencoded"
    ):
        return await _parse_form(request, max_image_bytes)
    if content_type.startswith("application/json"):
        return await _parse_json(request)
    return await _parse_urlencoded_body(request)
