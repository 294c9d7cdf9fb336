# catsof/infra/host_safety.py
"""
SSRF guard for user-supplied URLs.

Security:
- Only absolute http/https URLs
- localhost / *.local / *.localhost rejected without a DNS lookup
- Literal IPs classified directly
- Hostnames resolved to ALL addresses; any private address rejects the host
  (a mixed public/private answer is a DNS rebinding setup)
- Resolution failure is a rejection, never a pass
"""
from __future__ import annotations

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable
from urllib.parse import urlsplit, urlunsplit

from yarl import URL

from catsof.core.domain import ResolvedHost
from catsof.core.errors import MalformedUrlError, UnresolvableHostError, UnsafeHostError
from catsof.infra.logging_config import get_logger
from catsof.infra.metrics import IngestionMetrics

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")

LOCAL_HOSTNAMES = ("localhost",)
LOCAL_SUFFIXES = (".local", ".localhost")

PRIVATE_IPV4_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
    )
]

PRIVATE_IPV6_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "::1/128",    # loopback
        "::/128",     # unspecified
        "fc00::/7",   # unique local
        "fe80::/10",  # link local
    )
]

Resolver = Callable[[str, int], Awaitable[list[ResolvedHost]]]


@dataclass(frozen=True)
class PublicTarget:
    """A URL that passed host validation, with the addresses it was checked against"""
    url: str
    hostname: str
    port: int
    addresses: tuple[ResolvedHost, ...]


def is_private_address(address: str) -> bool:
    """
    Classify a literal IP address.

    Unparseable input counts as private. IPv4-mapped IPv6 addresses
    (``::ffff:127.0.0.1``) are classified by the embedded IPv4 address.
    """
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    networks = PRIVATE_IPV4_NETWORKS if ip.version == 4 else PRIVATE_IPV6_NETWORKS
    return any(ip in network for network in networks)


def classify_address(address: str) -> ResolvedHost:
    try:
        version = ipaddress.ip_address(address.split("%", 1)[0]).version
    except ValueError:
        version = 4
    family = socket.AF_INET if version == 4 else socket.AF_INET6
    return ResolvedHost(
        address_family=family,
        address=address,
        is_private=is_private_address(address),
    )


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
        return True
    except ValueError:
        return False


def _ascii_hostname(hostname: str) -> str:
    """IDNA form of a hostname, the name aiohttp resolves (``URL.raw_host``)"""
    if hostname.isascii():
        return hostname
    try:
        return URL.build(scheme="http", host=hostname).raw_host
    except ValueError as e:
        raise MalformedUrlError() from e


def _is_local_hostname(hostname: str) -> bool:
    hostname = hostname.rstrip(".")
    return hostname in LOCAL_HOSTNAMES or hostname.endswith(LOCAL_SUFFIXES)


async def resolve_host(hostname: str, port: int) -> list[ResolvedHost]:
    """
    Resolve a hostname to every address the system resolver returns.

    Raises:
        UnresolvableHostError: resolver error or empty answer
    """
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError) as e:
        logger.info(f"DNS resolution failed for {hostname}: {e}")
        raise UnresolvableHostError() from e

    addresses: list[ResolvedHost] = []
    seen: set[str] = set()
    for _family, _type, _proto, _canon, sockaddr in infos:
        address = sockaddr[0]
        if address in seen:
            continue
        seen.add(address)
        addresses.append(classify_address(address))

    if not addresses:
        raise UnresolvableHostError()
    return addresses


def _parse_url(url_string: str):
    try:
        parts = urlsplit((url_string or "").strip())
        port = parts.port
    except ValueError as e:
        raise MalformedUrlError() from e

    if parts.scheme.lower() not in ALLOWED_SCHEMES or not parts.hostname:
        raise MalformedUrlError()
    return parts, port


def _normalize(parts, hostname: str, port: int | None) -> str:
    host = f"[{hostname}]" if ":" in hostname else hostname
    netloc = host if port is None else f"{host}:{port}"
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit((parts.scheme.lower(), netloc, parts.path or "/", parts.query, ""))


async def validate_public_target(
    url_string: str,
    resolve: Resolver | None = None,
) -> PublicTarget:
    """
    Validate that a URL may be fetched from the server.

    Args:
        url_string: Absolute URL supplied by (or redirected to by) a client
        resolve: DNS resolver, defaults to the system resolver

    Returns:
        PublicTarget with the normalized URL and every validated address

    Raises:
        MalformedUrlError: not an absolute http(s) URL
        UnsafeHostError: local hostname, or a private address literal / answer
        UnresolvableHostError: hostname does not resolve
    """
    parts, port = _parse_url(url_string)
    hostname = _ascii_hostname(parts.hostname.lower())
    effective_port = port or (443 if parts.scheme.lower() == "https" else 80)
    normalized = _normalize(parts, hostname, port)

    if _is_local_hostname(hostname):
        logger.warning(f"Blocked local hostname: {hostname}")
        IngestionMetrics.host_rejected("local_name")
        raise UnsafeHostError()

    if _is_ip_literal(hostname):
        verdict = classify_address(hostname)
        if verdict.is_private:
            logger.warning(f"Blocked private address literal: {hostname}")
            IngestionMetrics.host_rejected("private_literal")
            raise UnsafeHostError()
        return PublicTarget(normalized, hostname, effective_port, (verdict,))

    addresses = await (resolve or resolve_host)(hostname, effective_port)
    if not addresses:
        raise UnresolvableHostError()

    private = [a.address for a in addresses if a.is_private]
    if private:
        logger.warning(
            f"Blocked host {hostname}: resolves to private address(es) {private} "
            f"among {len(addresses)} answer(s)"
        )
        IngestionMetrics.host_rejected("private_resolution")
        raise UnsafeHostError()

    return PublicTarget(normalized, hostname, effective_port, tuple(addresses))


async def assert_public_host(url_string: str, resolve: Resolver | None = None) -> str:
    """Validate a URL for server-side fetching and return it normalized"""
    target = await validate_public_target(url_string, resolve)
    return target.url
