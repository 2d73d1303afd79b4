"""Authentication primitives: signing, process tokens, API keys, sessions."""

from .keys import ApiKeyAuthority
from .session import SessionCodec
from .signing import canonical_json, sign, signature_matches, signed_headers, timestamp_ms
from .tokens import IssuedToken, TokenAuthority

__all__ = [
    "ApiKeyAuthority",
    "IssuedToken",
    "SessionCodec",
    "TokenAuthority",
    "canonical_json",
    "sign",
    "signature_matches",
    "signed_headers",
    "timestamp_ms",
]
