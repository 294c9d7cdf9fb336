# catsof/infra/http_client.py
"""
HTTP client sessions for the application.

Session profiles
~~~~~~~~~~~~~~~~
- **default** – trusted API calls (record store, image hosting):
  shared, lazily created, total=30 s, connect=5 s, pool limit=10
- **fetch**   – untrusted remote images: one short-lived session per fetch,
  no connection reuse, DNS answers pinned to addresses that already passed
  host validation (see ``PinnedResolver``)

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import socket

import aiohttp
from aiohttp.abc import AbstractResolver

from catsof.core.domain import ResolvedHost
from catsof.infra.logging_config import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Shared sessions (trusted endpoints)
# ---------------------------------------------------------------------------

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_default_session() -> aiohttp.ClientSession:
    """Session for record store and image hosting API calls."""
    return _get_or_create(
        "default",
        aiohttp.ClientTimeout(total=30, connect=5),
        limit=10,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)


# ---------------------------------------------------------------------------
# Untrusted fetches
# ---------------------------------------------------------------------------

class PinnedResolver(AbstractResolver):
    """
    Resolver that only answers with addresses pinned by host validation.

    The connector never performs its own DNS lookup, so the address a socket
    connects to is exactly one that was classified as public. Unknown
    hostnames fail to resolve.
    """

    def __init__(self):
        self._pins: dict[str, tuple[ResolvedHost, ...]] = {}

    def pin(self, hostname: str, addresses: tuple[ResolvedHost, ...]) -> None:
        self._pins[hostname.lower().rstrip(".")] = addresses

    def pinned(self, hostname: str) -> tuple[ResolvedHost, ...]:
        return self._pins.get(hostname.lower().rstrip("."), ())

    async def resolve(self, host: str, port: int = 0, family: int = socket.AF_INET):
        addresses = [
            a for a in self.pinned(host)
            if not a.is_private and (not family or a.address_family == family)
        ]
        if not addresses:
            raise OSError(f"Host {host} was not validated for this fetch")

        return [
            {
                "hostname": host,
                "host": a.address,
                "port": port,
                "family": a.address_family,
                "proto": 0,
                "flags": socket.AI_NUMERICHOST,
            }
            for a in addresses
        ]

    async def close(self) -> None:
        self._pins.clear()


def create_fetch_session(
    resolver: PinnedResolver,
    timeout_seconds: float,
) -> aiohttp.ClientSession:
    """
    Build a single-use session for fetching an untrusted URL.

    The caller owns the session and must close it (``async with``).
    """
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout_seconds, connect=min(timeout_seconds, 5)),
        connector=aiohttp.TCPConnector(
            resolver=resolver,
            use_dns_cache=False,
            force_close=True,
            limit=1,
        ),
        auto_decompress=False,
    )
