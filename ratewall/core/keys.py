"""Bucket key derivation.

A bucket key identifies one rate-limited dimension: the route path and,
optionally, the caller address. Keys are not normalized or hashed; only ":"
and "%" in the route are escaped when an address is appended. Callers must
keep route casing and formatting consistent upstream.
"""

from __future__ import annotations

import hashlib

from fastapi import Request

KEY_DELIMITER = ":"
UNKNOWN_ADDRESS = "unknown"


def _escape_route(route_identity: str) -> str:
    return route_identity.replace("%", "%25").replace(KEY_DELIMITER, "%3A")


def derive_bucket_key(
    route_identity: str,
    *,
    use_origin_address: bool,
    address: str | None = None,
) -> str:
    """Build the bucket key for a request.

    Args:
        route_identity: Request path without query string, already carrying
            any per-resource identifier (e.g. ``/v1/apis/42``).
        use_origin_address: Whether to scope the key to the caller.
        address: Resolved caller address; ignored when use_origin_address
            is False.

    Returns:
        ``route_identity`` or ``escaped_route:address``. With an address, "%"
        and ":" in the route are percent-encoded so the first ":" always
        separates route from address (IPv6 addresses contain colons).

    Examples:
        >>> derive_bucket_key("/orders", use_origin_address=False)
        '/orders'
        >>> derive_bucket_key("/orders", use_origin_address=True, address="10.0.0.1")
        '/orders:10.0.0.1'
        >>> derive_bucket_key("/items:batchGet", use_origin_address=True, address="::1")
        '/items%3AbatchGet:::1'
    """

    if not use_origin_address:
        return route_identity
    return f"{_escape_route(route_identity)}{KEY_DELIMITER}{address or UNKNOWN_ADDRESS}"


def resolve_client_address(request: Request, *, trust_forwarded_headers: bool = False) -> str:
    """Resolve the caller's network address.

    When forwarded headers are trusted (service behind a proxy that sets
    them), the first X-Forwarded-For hop wins, then X-Real-IP. Otherwise the
    socket peer is used.

    Args:
        request: Incoming request.
        trust_forwarded_headers: Honour proxy-provided address headers.

    Returns:
        Address string, or "unknown" when no peer information exists.
    """

    if trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_ADDRESS


def hash_bucket_key(key: str) -> str:
    """Hash a bucket key for logging without exposing caller addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]
