# catsof/infra/cloudinary_uploader.py
"""
Signed uploads to the Cloudinary image hosting API.

Request signing
~~~~~~~~~~~~~~~
The API secret never travels over the wire. Parameters other than ``file``,
``api_key`` and ``signature`` are sorted by key, joined as
``key=value&key=value`` and suffixed with the secret; the SHA-1 hex digest of
that string is sent as ``signature``:

    sha1("folder=catsof-dev&timestamp=1699999999" + api_secret)

API endpoint:
    POST https://api.cloudinary.com/v1_1/{cloud_name}/image/upload
    →  { "secure_url": "https://res.cloudinary.com/...", ... }
"""
from __future__ import annotations

import asyncio
import hashlib
import time
from typing import Callable

import aiohttp

from catsof.core.domain import CloudinaryCredentials, ValidatedImage
from catsof.core.errors import (
    UploadRejectedError,
    UploadResponseMalformedError,
    UploadTransportError,
)
from catsof.infra.http_client import get_default_session
from catsof.infra.logging_config import get_logger
from catsof.infra.metrics import IngestionMetrics

logger = get_logger(__name__)

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"


def build_signed_params(credentials: CloudinaryCredentials, timestamp: int) -> dict[str, str]:
    """Parameters covered by the signature"""
    params = {"timestamp": str(timestamp)}
    if credentials.folder:
        params["folder"] = credentials.folder
    return params


def compute_upload_signature(params: dict[str, str], api_secret: str) -> str:
    """
    Sign upload parameters.

    Returns:
        Hex-encoded SHA-1 of the sorted ``key=value`` string plus the secret
    """
    signing_string = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha1(f"{signing_string}{api_secret}".encode()).hexdigest()


class CloudinaryUploader:
    """
    Uploads ValidatedImage payloads and returns their canonical public URL.

    Credentials are passed per call; the uploader holds no secrets.
    """

    def __init__(
        self,
        session_getter: Callable[[], aiohttp.ClientSession] = get_default_session,
        clock: Callable[[], float] = time.time,
    ):
        self._session_getter = session_getter
        self._clock = clock

    @staticmethod
    def upload_url(credentials: CloudinaryCredentials) -> str:
        return f"{CLOUDINARY_API_BASE}/{credentials.cloud_name}/image/upload"

    def build_form(self, image: ValidatedImage, credentials: CloudinaryCredentials) -> aiohttp.FormData:
        params = build_signed_params(credentials, int(self._clock()))
        signature = compute_upload_signature(params, credentials.api_secret)

        form = aiohttp.FormData()
        form.add_field("file", image.data, filename=image.filename, content_type=image.mime_type)
        form.add_field("api_key", credentials.api_key)
        form.add_field("timestamp", params["timestamp"])
        if "folder" in params:
            form.add_field("folder", params["folder"])
        form.add_field("signature", signature)
        return form

    async def upload(self, image: ValidatedImage, credentials: CloudinaryCredentials) -> str:
        """
        Upload an image.

        Returns:
            Canonical public URL (``secure_url``)

        Raises:
            UploadRejectedError: non-2xx response
            UploadResponseMalformedError: success without ``secure_url``
            UploadTransportError: network failure or timeout
        """
        session = self._session_getter()
        form = self.build_form(image, credentials)

        try:
            async with session.post(self.upload_url(credentials), data=form) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text(errors="replace")
                    logger.error(
                        f"Cloudinary upload failed: status={resp.status}, body={text[:500]}"
                    )
                    IngestionMetrics.upload("rejected")
                    raise UploadRejectedError(resp.status)

                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    IngestionMetrics.upload("malformed")
                    raise UploadResponseMalformedError() from e

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Cloudinary upload transport error: {e.__class__.__name__}: {e}")
            IngestionMetrics.upload("transport_error")
            raise UploadTransportError() from e

        secure_url = data.get("secure_url") if isinstance(data, dict) else None
        if not secure_url or not isinstance(secure_url, str):
            logger.error("Cloudinary response missing secure_url")
            IngestionMetrics.upload("malformed")
            raise UploadResponseMalformedError()

        IngestionMetrics.upload("success")
        logger.info(
            f"Image uploaded to Cloudinary: size={image.size_bytes}, "
            f"type={image.mime_type}, folder={credentials.folder or '-'}"
        )
        return secure_url
