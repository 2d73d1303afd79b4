"""HMAC request signing shared by outbound commands and inbound verification."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Dict, Mapping, Optional

from ..constants import (
    HEADER_API_KEY,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    HEADER_TOKEN,
)


def canonical_json(payload: Mapping[str, Any]) -> bytes:
    """Serialize ``payload`` deterministically.

    The bytes returned here are exactly what goes on the wire and what gets
    signed; receivers must verify the received bytes, never a re-encoding.
    """
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=str
    ).encode("utf-8")


def sign(body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signature_matches(body: bytes, secret: str, signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign(body, secret), signature)


def timestamp_ms(now: Optional[float] = None) -> str:
    """Milliseconds since the epoch as sent in ``X-Timestamp``."""
    seconds = time.time() if now is None else now
    return str(int(seconds * 1000))


def signed_headers(
    body: bytes,
    *,
    api_key: str,
    token: str,
    secret: str,
    timestamp: Optional[str] = None,
) -> Dict[str, str]:
    """Build the four authentication headers for ``body``."""
    return {
        "Content-Type": "application/json",
        HEADER_API_KEY: api_key,
        HEADER_TOKEN: token,
        HEADER_TIMESTAMP: timestamp or timestamp_ms(),
        HEADER_SIGNATURE: sign(body, secret),
    }
