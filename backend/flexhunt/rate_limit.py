"""Per-client rate limits for the checkout and assessment endpoints.

The bucket key is the client IP. ``X-Forwarded-For`` is read only when the
direct peer is one of ``Settings.trusted_proxy_cidrs`` (Render's edge in
production), otherwise a caller could spread requests over invented IPs.
"""

import ipaddress
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from .config import get_settings
from .logging_config import get_logger

logger = get_logger("flexhunt.rate_limit")

# Checkout: money moves, keep these tight
CREATE_PAYMENT_LIMIT = "10/minute"
CAPTURE_PAYMENT_LIMIT = "20/minute"
RELEASE_ESCROW_LIMIT = "10/minute"
DISPUTE_PAYMENT_LIMIT = "5/minute"

# Assessments
AUTHORING_LIMIT = "30/minute"
LISTING_LIMIT = "60/minute"
TAKE_LIMIT = "30/minute"
SUBMIT_LIMIT = "10/minute"
VIOLATION_LIMIT = "120/minute"  # browsers report every focus loss

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_cidrs(raw: str) -> tuple[Network, ...]:
    """Parse a comma-separated CIDR list, skipping (and logging) bad entries."""
    networks = []
    for cidr in (s.strip() for s in raw.split(",")):
        if not cidr:
            continue
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr!r}")
    return tuple(networks)


@lru_cache
def trusted_networks() -> tuple[Network, ...]:
    return parse_cidrs(get_settings().trusted_proxy_cidrs)


def is_trusted_proxy(ip_str: str, networks: tuple[Network, ...] | None = None) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    if networks is None:
        networks = trusted_networks()
    return any(addr in network for network in networks)


def get_client_ip(request: Request) -> str:
    """Rate-limit key: the original client behind a trusted proxy, else the peer."""
    peer = get_remote_address(request)
    if not is_trusted_proxy(peer):
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    client_ip = forwarded.split(",")[0].strip()
    return client_ip or peer


limiter = Limiter(key_func=get_client_ip)
