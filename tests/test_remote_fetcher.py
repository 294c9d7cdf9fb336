# tests/test_remote_fetcher.py
"""
Tests for the redirect-following remote image fetcher.

The session and DNS are doubles (see conftest); nothing leaves the process.
"""
from __future__ import annotations

import aiohttp
import pytest
from yarl import URL

from catsof.core.domain import IngestionLimits
from catsof.core.errors import (
    EmptyImageError,
    FetchError,
    FetchTimeoutError,
    ImageTooLargeError,
    MissingPhotoSourceError,
    MissingRedirectLocationError,
    TooManyRedirectsError,
    UnsafeHostError,
    UnsupportedMediaTypeError,
    UpstreamStatusError,
)
from catsof.infra.metrics import get_metrics_collector
from catsof.infra.remote_fetcher import RemoteImageFetcher, filename_from_url

PNG = {"Content-Type": "image/png"}
CHUNK = b"\x89PNG" + b"\x00" * (64 * 1024 - 4)


def _fetcher(limits, resolve, session):
    return RemoteImageFetcher(limits, resolve=resolve, session_factory=session.factory)


def _redirect(response, location, status=302):
    return response(status, {"Location": location} if location is not None else {})


# ============================================================================
# Success paths
# ============================================================================

class TestFetchSuccess:
    @pytest.mark.asyncio
    async def test_direct_image(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/mochi.png"] = response(200, PNG, [b"abc", b"def"])

        image = await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/mochi.png")

        assert image.data == b"abcdef"
        assert image.mime_type == "image/png"
        assert image.filename == "mochi.png"
        assert fetch_session.closed is True

    @pytest.mark.asyncio
    async def test_request_shape(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a.png"] = response(200, PNG, [b"x"])

        await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        request = fetch_session.requests[0]
        assert request["allow_redirects"] is False
        assert request["headers"]["Accept"] == "image/*"
        assert fetch_session.timeout == limits.fetch_timeout_seconds

    @pytest.mark.asyncio
    async def test_validated_addresses_pinned_before_request(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cdn.example/a.png"] = response(200, PNG, [b"x"])

        await _fetcher(limits, public_dns, fetch_session).fetch("https://cdn.example/a.png")

        assert fetch_session.requests[0]["pinned"] == [
            "93.184.216.35",
            "2606:2800:220:1:248:1893:25c8:1946",
        ]

    @pytest.mark.asyncio
    async def test_internationalized_host_connectable(self, limits, dns, fetch_session, response):
        resolve = dns({"xn--bcher-kva.example": ["93.184.216.34"]})
        fetch_session.routes["https://xn--bcher-kva.example/katze.png"] = response(200, PNG, [b"x"])

        image = await _fetcher(limits, resolve, fetch_session).fetch("https://bücher.example/katze.png")

        assert image.filename == "katze.png"
        requested = URL(fetch_session.requests[0]["url"])
        answers = await fetch_session.resolver.resolve(requested.raw_host, 443, 0)
        assert [a["host"] for a in answers] == ["93.184.216.34"]

    @pytest.mark.asyncio
    async def test_content_type_parameters_ignored(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a"] = response(
            200, {"Content-Type": "Image/JPEG; charset=binary"}, [b"x"]
        )

        image = await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a")

        assert image.mime_type == "image/jpeg"
        assert image.filename == "a.jpg"

    @pytest.mark.asyncio
    async def test_bytes_counted(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a.png"] = response(200, PNG, [b"12345"])

        await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert get_metrics_collector().get_counter("fetch_bytes_total") == 5


# ============================================================================
# Redirects
# ============================================================================

class TestRedirects:
    @pytest.mark.asyncio
    async def test_four_redirects_then_image_succeeds(self, limits, public_dns, fetch_session, response):
        for i in range(4):
            fetch_session.routes[f"https://cats.example/r{i}"] = _redirect(
                response, f"https://cats.example/r{i + 1}"
            )
        fetch_session.routes["https://cats.example/r4"] = response(200, PNG, [b"ok"])

        image = await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/r0")

        assert image.data == b"ok"
        assert len(fetch_session.requests) == 5
        assert get_metrics_collector().get_counter("fetch_redirects_total") == 4

    @pytest.mark.asyncio
    async def test_five_redirects_fail(self, limits, public_dns, fetch_session, response):
        for i in range(5):
            fetch_session.routes[f"https://cats.example/r{i}"] = _redirect(
                response, f"https://cats.example/r{i + 1}"
            )
        fetch_session.routes["https://cats.example/r5"] = response(200, PNG, [b"ok"])

        with pytest.raises(TooManyRedirectsError) as exc_info:
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/r0")

        assert exc_info.value.message == "photoUrl has too many redirects."
        assert "https://cats.example/r5" not in fetch_session.requested_urls

    @pytest.mark.asyncio
    async def test_redirect_to_private_literal_blocked(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a.png"] = _redirect(response, "http://169.254.169.254/latest/meta-data/")

        with pytest.raises(UnsafeHostError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert fetch_session.requested_urls == ["https://cats.example/a.png"]

    @pytest.mark.asyncio
    async def test_redirect_to_privately_resolving_host_blocked(
        self, limits, public_dns, fetch_session, response
    ):
        fetch_session.routes["https://cats.example/a.png"] = _redirect(response, "http://internal.example/admin")

        with pytest.raises(UnsafeHostError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert len(fetch_session.requests) == 1

    @pytest.mark.asyncio
    async def test_relative_redirect_resolved_against_current_url(
        self, limits, public_dns, fetch_session, response
    ):
        fetch_session.routes["https://cats.example/old/a.png"] = _redirect(response, "../new/b.png", status=301)
        fetch_session.routes["https://cats.example/new/b.png"] = response(200, PNG, [b"x"])

        image = await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/old/a.png")

        assert fetch_session.requested_urls[-1] == "https://cats.example/new/b.png"
        assert image.filename == "b.png"

    @pytest.mark.asyncio
    async def test_redirect_without_location(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a.png"] = _redirect(response, None)

        with pytest.raises(MissingRedirectLocationError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

    @pytest.mark.asyncio
    async def test_zero_redirect_budget(self, public_dns, fetch_session, response):
        limits = IngestionLimits(max_redirects=0)
        fetch_session.routes["https://cats.example/a.png"] = _redirect(response, "https://cats.example/b.png")

        with pytest.raises(TooManyRedirectsError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert len(fetch_session.requests) == 1


# ============================================================================
# Size ceiling
# ============================================================================

class TestSizeCeiling:
    @pytest.mark.asyncio
    async def test_declared_length_over_limit_rejected_before_body(
        self, limits, public_dns, fetch_session, response
    ):
        resp = response(200, {**PNG, "Content-Length": str(limits.max_image_bytes + 1)}, [b"x"])
        fetch_session.routes["https://cats.example/a.png"] = resp

        with pytest.raises(ImageTooLargeError) as exc_info:
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert exc_info.value.status_code == 413
        assert resp.content.delivered == 0

    @pytest.mark.asyncio
    async def test_stream_without_length_aborted(self, limits, public_dns, fetch_session, response):
        resp = response(200, PNG, endless_chunk=CHUNK)
        fetch_session.routes["https://cats.example/a.png"] = resp

        with pytest.raises(ImageTooLargeError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert resp.closed is True
        assert resp.content.delivered * len(CHUNK) <= limits.max_image_bytes + len(CHUNK)

    @pytest.mark.asyncio
    async def test_understated_length_aborted(self, limits, public_dns, fetch_session, response):
        resp = response(200, {**PNG, "Content-Length": "100"}, endless_chunk=CHUNK)
        fetch_session.routes["https://cats.example/a.png"] = resp

        with pytest.raises(ImageTooLargeError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert resp.closed is True

    @pytest.mark.asyncio
    async def test_malformed_length_ignored(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a.png"] = response(
            200, {**PNG, "Content-Length": "lots"}, [b"abc"]
        )

        image = await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")
        assert image.data == b"abc"

    @pytest.mark.asyncio
    async def test_empty_body_rejected(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a.png"] = response(200, PNG, [])

        with pytest.raises(EmptyImageError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")


# ============================================================================
# Origin failures
# ============================================================================

class TestOriginFailures:
    @pytest.mark.asyncio
    async def test_error_status(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a.png"] = response(404, PNG, [b"nope"])

        with pytest.raises(UpstreamStatusError) as exc_info:
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert exc_info.value.status == 404
        assert exc_info.value.message == "photoUrl returned HTTP 404."

    @pytest.mark.asyncio
    async def test_html_rejected(self, limits, public_dns, fetch_session, response):
        resp = response(200, {"Content-Type": "text/html"}, [b"<html>"])
        fetch_session.routes["https://cats.example/a.png"] = resp

        with pytest.raises(UnsupportedMediaTypeError) as exc_info:
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert exc_info.value.status_code == 415
        assert resp.content.delivered == 0

    @pytest.mark.asyncio
    async def test_missing_content_type_rejected(self, limits, public_dns, fetch_session, response):
        fetch_session.routes["https://cats.example/a.png"] = response(200, {}, [b"x"])

        with pytest.raises(UnsupportedMediaTypeError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

    @pytest.mark.asyncio
    async def test_connection_error(self, limits, public_dns, fetch_session):
        fetch_session.routes["https://cats.example/a.png"] = aiohttp.ClientConnectionError("refused")

        with pytest.raises(FetchError) as exc_info:
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert exc_info.value.message == "Could not fetch photoUrl."

    @pytest.mark.asyncio
    async def test_slow_body_times_out(self, public_dns, fetch_session, response):
        limits = IngestionLimits(fetch_timeout_seconds=0.05)
        fetch_session.routes["https://cats.example/a.png"] = response(200, PNG, [b"x", b"y"], delay=1.0)

        with pytest.raises(FetchTimeoutError) as exc_info:
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

        assert exc_info.value.message == "Timed out while fetching photoUrl."
        assert fetch_session.closed is True

    @pytest.mark.asyncio
    async def test_transport_timeout(self, limits, public_dns, fetch_session):
        fetch_session.routes["https://cats.example/a.png"] = aiohttp.ServerTimeoutError("read timeout")

        with pytest.raises(FetchTimeoutError):
            await _fetcher(limits, public_dns, fetch_session).fetch("https://cats.example/a.png")

    @pytest.mark.asyncio
    async def test_unsafe_initial_url_never_requested(self, limits, public_dns, fetch_session):
        with pytest.raises(UnsafeHostError):
            await _fetcher(limits, public_dns, fetch_session).fetch("http://rebind.example/a.png")

        assert fetch_session.requests == []

    @pytest.mark.asyncio
    async def test_empty_url(self, limits, public_dns, fetch_session):
        with pytest.raises(MissingPhotoSourceError):
            await _fetcher(limits, public_dns, fetch_session).fetch("  ")


# ============================================================================
# Filenames
# ============================================================================

class TestFilenameFromUrl:
    def test_percent_encoded_name(self):
        assert filename_from_url("https://x.example/cats/tom%20cat.png", "image/png") == "tom_cat.png"

    def test_no_path_uses_default_stem(self):
        assert filename_from_url("https://x.example/", "image/webp") == "cat-image.webp"

    def test_name_without_extension(self):
        assert filename_from_url("https://x.example/photo?id=3", "image/gif") == "photo.gif"

    def test_encoded_traversal_flattened(self):
        assert filename_from_url("https://x.example/a/..%2F..%2Fetc%2Fpasswd", "image/png") == "passwd.png"
