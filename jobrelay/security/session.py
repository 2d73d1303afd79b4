"""Client session tokens (JWT bearer) carrying the user id and role."""

from __future__ import annotations

import time
from typing import Optional

import jwt

from ..contracts import Principal, Role
from ..errors import AuthError


class SessionCodec:
    """Encodes and validates the bearer tokens presented by web clients."""

    def __init__(self, secret: str, algorithm: str = "HS256", leeway: int = 30) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.leeway = leeway

    def encode(self, principal: Principal, ttl_seconds: int = 3600) -> str:
        now = int(time.time())
        claims = {
            "sub": principal.user_id,
            "role": principal.role.value,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def decode(self, token: Optional[str]) -> Principal:
        if not token:
            raise AuthError("Unauthorized: Authentication required")
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                leeway=self.leeway,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Session expired") from None
        except jwt.InvalidTokenError as e:
            raise AuthError(f"Invalid session token: {e}") from None

        try:
            role = Role(claims.get("role", Role.MANAGEMENT.value))
        except ValueError:
            raise AuthError("Invalid session role") from None
        return Principal(user_id=str(claims["sub"]), role=role)

    def from_authorization(self, header: Optional[str]) -> Principal:
        """Parse ``Authorization: Bearer <token>``."""
        parts = (header or "").split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise AuthError("Unauthorized: Authentication required")
        return self.decode(parts[1])
