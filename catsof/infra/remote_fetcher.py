# catsof/infra/remote_fetcher.py
"""
Remote image fetcher for user-supplied photo URLs.

Security:
- Host safety re-validated on EVERY hop (hop 0 included): each redirect
  target is attacker-influenced
- Redirects followed manually (transport never follows them)
- Validated addresses pinned for the connect call (no second DNS lookup)
- Hop budget, per-hop wall-clock timeout, declared AND actual size ceilings
- Content-Type checked against the image allowlist before the body is read
- No retries: a stalled or hostile origin fails the submission
"""
from __future__ import annotations

import asyncio
import posixpath
from typing import Callable
from urllib.parse import unquote, urljoin, urlsplit

import aiohttp

from catsof.core.domain import FetchAttempt, IngestionLimits, ValidatedImage
from catsof.core.errors import (
    EmptyImageError,
    FetchError,
    FetchTimeoutError,
    ImageTooLargeError,
    MissingPhotoSourceError,
    MissingRedirectLocationError,
    TooManyRedirectsError,
    UpstreamStatusError,
)
from catsof.infra.bounded_reader import read_bounded
from catsof.infra.host_safety import Resolver, validate_public_target
from catsof.infra.http_client import PinnedResolver, create_fetch_session
from catsof.infra.logging_config import get_logger, mask_url
from catsof.infra.metrics import IngestionMetrics
from catsof.infra.mime_policy import filename_with_extension, safe_filename, sanitize_mime_type

logger = get_logger(__name__)

FETCH_HEADERS = {
    "Accept": "image/*",
    "Accept-Encoding": "identity",  # sessions do not decompress; byte ceiling applies to wire bytes
}

SessionFactory = Callable[[PinnedResolver, float], aiohttp.ClientSession]


def _declared_length(header_value: str | None) -> int | None:
    """Parse Content-Length; malformed values are treated as absent"""
    if not header_value:
        return None
    try:
        value = int(header_value)
    except ValueError:
        return None
    return value if value >= 0 else None


def filename_from_url(url: str, mime_type: str) -> str:
    """
    Derive an upload filename from the last path segment of ``url``.

    ``https://x.test/cats/tom%20cat.png`` → ``tom_cat.png``;
    ``https://x.test/`` + image/webp → ``cat-image.webp``
    """
    path = unquote(urlsplit(url).path or "")
    return filename_with_extension(safe_filename(posixpath.basename(path)), mime_type)


class RemoteImageFetcher:
    """
    Fetches one remote image per call.

    Each call opens its own session whose resolver only knows the addresses
    validated during that call, and closes it before returning.
    """

    def __init__(
        self,
        limits: IngestionLimits | None = None,
        resolve: Resolver | None = None,
        session_factory: SessionFactory = create_fetch_session,
    ):
        self._limits = limits or IngestionLimits()
        self._resolve = resolve
        self._session_factory = session_factory

    async def fetch(self, url_string: str) -> ValidatedImage:
        """
        Download and validate the image behind ``url_string``.

        Raises:
            MissingPhotoSourceError: empty URL
            UrlValidationError: unsafe/malformed/unresolvable URL on any hop
            RemoteFetchError: timeout, transport failure, bad status, redirect problems
            ImageValidationError: too large, disallowed type, empty body
        """
        current_url = (url_string or "").strip()
        if not current_url:
            raise MissingPhotoSourceError("photoUrl is required when no file is uploaded.")

        timeout = self._limits.fetch_timeout_seconds
        resolver = PinnedResolver()

        async with self._session_factory(resolver, timeout) as session:
            for hop in range(self._limits.max_redirects + 1):
                try:
                    next_url, image = await asyncio.wait_for(
                        self._hop(session, resolver, current_url, hop),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError as e:
                    logger.warning(
                        f"Fetch timed out after {timeout}s",
                        extra={"hop": hop, "host": mask_url(current_url)},
                    )
                    raise FetchTimeoutError() from e

                if image is not None:
                    return image

                IngestionMetrics.redirect_followed()
                current_url = next_url

        logger.warning(f"Redirect budget exhausted (max {self._limits.max_redirects})")
        raise TooManyRedirectsError()

    async def _hop(
        self,
        session: aiohttp.ClientSession,
        resolver: PinnedResolver,
        url: str,
        hop: int,
    ) -> tuple[str | None, ValidatedImage | None]:
        """Validate, request and interpret one hop; returns (redirect_url, image)"""
        target = await validate_public_target(url, self._resolve)
        resolver.pin(target.hostname, target.addresses)
        attempt = FetchAttempt(url=target.url, hop_index=hop)

        logger.debug(f"Fetch hop {hop}: {mask_url(attempt.url)}", extra={"hop": hop})

        try:
            async with session.get(
                attempt.url,
                headers=FETCH_HEADERS,
                allow_redirects=False,
            ) as response:
                if 300 <= response.status < 400:
                    return self._redirect_target(attempt, response), None

                if not 200 <= response.status < 300:
                    logger.info(f"Origin answered HTTP {response.status}", extra={"hop": hop})
                    raise UpstreamStatusError(response.status)

                return None, await self._read_image(attempt, response)

        except asyncio.TimeoutError as e:
            raise FetchTimeoutError() from e
        except aiohttp.ClientError as e:
            logger.warning(
                f"Fetch failed: {e.__class__.__name__}",
                extra={"hop": hop, "host": mask_url(attempt.url)},
            )
            raise FetchError() from e

    @staticmethod
    def _redirect_target(attempt: FetchAttempt, response) -> str:
        location = response.headers.get("Location")
        if not location:
            raise MissingRedirectLocationError()

        next_url = urljoin(attempt.url, location.strip())
        logger.debug(
            f"Redirect hop {attempt.hop_index + 1}: {response.status} "
            f"{mask_url(attempt.url)} → {mask_url(next_url)}"
        )
        return next_url

    async def _read_image(self, attempt: FetchAttempt, response) -> ValidatedImage:
        max_bytes = self._limits.max_image_bytes

        declared = _declared_length(response.headers.get("Content-Length"))
        if declared is not None and declared > max_bytes:
            logger.warning(f"Declared Content-Length {declared} exceeds {max_bytes}")
            raise ImageTooLargeError(f"Image is too large (max {self._limits.max_image_mb}MB).")

        mime_type = sanitize_mime_type(response.headers.get("Content-Type"))
        data = await read_bounded(response, max_bytes)
        if not data:
            raise EmptyImageError("Fetched image is empty.")

        IngestionMetrics.bytes_fetched(len(data))
        filename = filename_from_url(attempt.url, mime_type)

        logger.info(
            f"Remote image fetched: {len(data) / 1024:.0f}KB, type={mime_type}, "
            f"hops={attempt.hop_index}"
        )
        return ValidatedImage(data=data, mime_type=mime_type, filename=filename)


async def fetch_remote_image(
    url_string: str,
    limits: IngestionLimits | None = None,
    resolve: Resolver | None = None,
) -> ValidatedImage:
    """Convenience wrapper around ``RemoteImageFetcher.fetch``"""
    return await RemoteImageFetcher(limits, resolve).fetch(url_string)
