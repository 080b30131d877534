"""Issuing and validating the service's signed access and refresh tokens."""

from __future__ import annotations

import hashlib
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import jwt

from ..config import Settings, get_settings


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass(frozen=True, slots=True)
class TokenPayload:
    """Claims recovered from a verified token."""

    subject: str
    email: str
    kind: TokenKind
    issued_at: int
    expires_at: int
    token_id: str


class TokenCodec:
    """Signs and verifies JWTs without touching any store.

    Access and refresh tokens are signed with separate secrets, so a key
    leaked for one kind cannot be used to forge the other.
    """

    algorithm = "HS256"

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock

    def ttl_seconds(self, kind: TokenKind) -> int:
        if kind is TokenKind.access:
            return self._settings.access_ttl_seconds
        return self._settings.refresh_ttl_seconds

    def _secret(self, kind: TokenKind) -> str:
        if kind is TokenKind.access:
            return self._settings.jwt_access_secret
        return self._settings.jwt_refresh_secret

    def issue(self, kind: TokenKind, *, subject: str, email: str) -> str:
        """Create a signed token of ``kind`` for an account.

        Parameters
        ----------
        kind:
            Whether the token is an access or a refresh token; selects secret and TTL.
        subject:
            Account identifier embedded in the ``sub`` claim.
        email:
            Identity claim copied into the token for downstream consumers.

        Returns
        -------
        str
            The encoded JWT. Each call embeds a fresh ``jti`` so two tokens are
            never byte-identical even when minted in the same second.
        """
        now = int(self._clock())
        payload: dict[str, Any] = {
            "iss": self._settings.jwt_issuer,
            "sub": subject,
            "email": email,
            "type": kind.value,
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + self.ttl_seconds(kind),
        }
        return jwt.encode(payload, self._secret(kind), algorithm=self.algorithm)

    def verify(self, token: str, expected_kind: TokenKind) -> TokenPayload | None:
        """Return the token's claims, or ``None`` if it is unusable as ``expected_kind``.

        Invalid tokens are an ordinary input here, so signature, expiry,
        issuer and kind failures all collapse into ``None`` instead of raising.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret(expected_kind),
                algorithms=[self.algorithm],
                issuer=self._settings.jwt_issuer,
                # time claims are checked below against the injected clock
                options={
                    "require": ["exp", "iat", "sub", "type"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.PyJWTError:
            return None

        if claims.get("type") != expected_kind.value:
            return None
        expires_at = int(claims["exp"])
        if expires_at <= int(self._clock()):
            return None
        return TokenPayload(
            subject=str(claims["sub"]),
            email=str(claims.get("email", "")),
            kind=expected_kind,
            issued_at=int(claims["iat"]),
            expires_at=expires_at,
            token_id=str(claims.get("jti", "")),
        )


def hash_refresh_token(token: str) -> str:
    """Return the SHA-256 hex digest under which a refresh token is stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
