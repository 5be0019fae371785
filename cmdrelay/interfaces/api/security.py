# cmdrelay/interfaces/api/security.py
"""API security: event signature verification, API key auth and rate limiting."""

import hashlib
import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address

from cmdrelay.config import settings

TIMESTAMP_HEADER = "X-Lark-Request-Timestamp"
NONCE_HEADER = "X-Lark-Request-Nonce"
SIGNATURE_HEADER = "X-Lark-Signature"

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

limiter = Limiter(key_func=get_remote_address)


def compute_event_signature(timestamp: str, nonce: str, secret: str, body: bytes) -> str:
    """Hex SHA-256 of timestamp + nonce + secret + raw body."""
    digest = hashlib.sha256()
    digest.update((timestamp + nonce + secret).encode("utf-8"))
    digest.update(body)
    return digest.hexdigest()


def verify_event_signature(
    timestamp: str | None,
    nonce: str | None,
    signature: str | None,
    body: bytes,
    secret: str,
) -> bool:
    """Verify the platform's request signature.

    Args:
        timestamp: X-Lark-Request-Timestamp header value.
        nonce: X-Lark-Request-Nonce header value.
        signature: X-Lark-Signature header value.
        body: Raw request body, exactly as received.
        secret: Shared verification token. Empty disables verification.

    Returns:
        True if the signature matches (or verification is disabled).
    """
    if not secret:
        return True

    if not timestamp or not nonce or not signature:
        return False

    expected = compute_event_signature(timestamp, nonce, secret, body)
    return secrets.compare_digest(
        expected.encode("ascii"), signature.encode("utf-8", "surrogateescape")
    )


def verify_api_key(api_key: Annotated[str | None, Depends(api_key_header)]) -> str:
    """Guard the local endpoints (/status, /notify) with X-API-Key.

    The events route is authenticated by signature instead. With no
    API_AUTH_KEY configured the check is skipped.

    Raises:
        HTTPException: 401 when the header is absent, 403 when it does not match.
    """
    expected = settings.api_auth_key
    if not expected:
        return "auth_disabled"

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Include X-API-Key header.",
        )
    if not secrets.compare_digest(api_key.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key.")
    return api_key


def get_rate_limit_string() -> str:
    """Rate limit string for slowapi, e.g. "60/minute"."""
    return f"{settings.api_rate_limit}/minute"
