# tests/conftest.py
"""Pytest configuration and fixtures"""
import asyncio
import pytest
import sys
from pathlib import Path
from urllib.parse import urlsplit

from multidict import CIMultiDict

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from catsof.core.domain import (  # noqa: E402
    AirtableCredentials,
    CatSubmission,
    CloudinaryCredentials,
    Credentials,
    IngestionLimits,
)
from catsof.core.errors import UnresolvableHostError  # noqa: E402
from catsof.infra.host_safety import classify_address  # noqa: E402
from catsof.infra.metrics import get_metrics_collector  # noqa: E402


# ============================================================================
# FAKE HTTP (remote fetch)
# ============================================================================

class FakeContent:
    """``response.content`` stand-in; counts delivered chunks"""

    def __init__(self, response, chunks=(), endless_chunk=None, delay=0.0):
        self._response = response
        self._chunks = list(chunks)
        self._endless_chunk = endless_chunk
        self._delay = delay
        self.delivered = 0

    async def iter_chunked(self, n):
        for chunk in self._chunks:
            if self._delay:
                await asyncio.sleep(self._delay)
            self.delivered += 1
            yield chunk
        while self._endless_chunk is not None and not self._response.closed:
            self.delivered += 1
            yield self._endless_chunk


class FakeResponse:
    """Minimal ``aiohttp.ClientResponse`` with explicit close tracking"""

    def __init__(self, status=200, headers=None, chunks=(), endless_chunk=None, delay=0.0):
        self.status = status
        self.headers = CIMultiDict(headers or {})
        self.content = FakeContent(self, chunks, endless_chunk, delay)
        self.closed = False

    def close(self):
        self.closed = True

    async def read(self):
        return b"".join(self.content._chunks)


class _RequestContext:
    def __init__(self, outcome):
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *exc):
        return False


class FakeFetchSession:
    """
    Session double for RemoteImageFetcher.

    ``routes`` maps absolute URL → FakeResponse or exception. Every request
    records the URL, headers, redirect flag and the addresses pinned for the
    host at request time.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []
        self.resolver = None
        self.timeout = None
        self.closed = False

    def factory(self, resolver, timeout_seconds):
        self.resolver = resolver
        self.timeout = timeout_seconds
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def get(self, url, headers=None, allow_redirects=True):
        host = urlsplit(url).hostname or ""
        pinned = self.resolver.pinned(host) if self.resolver else ()
        self.requests.append({
            "url": url,
            "headers": dict(headers or {}),
            "allow_redirects": allow_redirects,
            "pinned": [a.address for a in pinned],
        })
        if url not in self.routes:
            return _RequestContext(FakeResponse(status=404))
        return _RequestContext(self.routes[url])

    @property
    def requested_urls(self):
        return [r["url"] for r in self.requests]


def make_resolver(table):
    """DNS double: hostname → list of address strings; unknown names fail"""
    calls = []

    async def resolve(hostname, port):
        calls.append(hostname)
        if hostname not in table:
            raise UnresolvableHostError()
        return [classify_address(address) for address in table[hostname]]

    resolve.calls = calls
    return resolve


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def reset_metrics():
    """Counters are process-global"""
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def fetch_session():
    return FakeFetchSession()


@pytest.fixture
def public_dns():
    """Resolver with a handful of public and private names"""
    return make_resolver({
        "cats.example": ["93.184.216.34"],
        "cdn.example": ["93.184.216.35", "2606:2800:220:1:248:1893:25c8:1946"],
        "internal.example": ["10.0.0.5"],
        "rebind.example": ["93.184.216.34", "127.0.0.1"],
    })


@pytest.fixture
def limits():
    """1 MiB ceiling keeps test payloads small"""
    return IngestionLimits(max_image_bytes=1024 * 1024, fetch_timeout_seconds=2.0, max_redirects=4)


@pytest.fixture
def airtable_credentials():
    return AirtableCredentials(token="pat_test", base_id="appTEST123", table_name="Cats", view="Approved")


@pytest.fixture
def cloudinary_credentials():
    return CloudinaryCredentials(
        cloud_name="demo-cloud",
        api_key="123456",
        api_secret="s3cr3t",
        folder="catsof-dev",
    )


@pytest.fixture
def credentials(airtable_credentials, cloudinary_credentials):
    return Credentials(airtable=airtable_credentials, cloudinary=cloudinary_credentials)


@pytest.fixture
def submission():
    return CatSubmission(
        cat_name="Mochi",
        human_name="Ada",
        developer_url="https://github.com/ada",
        story="Sits on the keyboard during code review.",
    )


@pytest.fixture
def jpeg_bytes():
    """Small JPEG-looking payload (content is never sniffed)"""
    return b"\xff\xd8\xff\xe0" + b"\x00" * 2048 + b"\xff\xd9"


@pytest.fixture
def dns():
    """Build a resolver double from a hostname → addresses table"""
    return make_resolver


@pytest.fixture
def response():
    """Build a FakeResponse: ``response(200, {"Content-Type": "image/png"}, [b"..."])``"""
    return FakeResponse
