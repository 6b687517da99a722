"""Client identifier resolution for admission control.

The identifier is the bucket a request is counted against. Precedence,
first non-empty value wins:

1. First address of the ``X-Forwarded-For`` chain (trimmed)
2. ``X-Real-IP`` header (trimmed)
3. Transport-level peer address
4. The literal ``"unknown"``

Every unidentifiable request shares the ``"unknown"`` bucket.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping

from fastapi import Request

UNKNOWN_CLIENT = "unknown"

FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette headers are not.
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value


def resolve_client_identifier(
    headers: Mapping[str, str],
    peer_host: str | None,
) -> str:
    """Resolve the rate limit identifier for a request.

    Args:
        headers: Request headers (any mapping; lookup is case-insensitive).
        peer_host: Address of the transport peer, if known.

    Returns:
        Non-empty identifier string.

    Examples:
        >>> resolve_client_identifier({"X-Forwarded-For": " 1.2.3.4 , 10.0.0.1"}, "10.0.0.2")
        '1.2.3.4'
        >>> resolve_client_identifier({"X-Real-IP": "5.6.7.8"}, None)
        '5.6.7.8'
        >>> resolve_client_identifier({}, None)
        'unknown'
    """

    forwarded = _header(headers, FORWARDED_FOR_HEADER)
    if forwarded:
        first_hop = forwarded.split(",", 1)[0].strip()
        if first_hop:
            return first_hop

    real_ip = _header(headers, REAL_IP_HEADER)
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if peer_host:
        return peer_host

    return UNKNOWN_CLIENT


def client_identifier_from_request(request: Request) -> str:
    """Resolve the identifier from a FastAPI/Starlette request."""

    peer_host = request.client.host if request.client else None
    return resolve_client_identifier(request.headers, peer_host)


def hash_identifier(identifier: str) -> str:
    """Hash a client identifier for logging without exposing addresses."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]
