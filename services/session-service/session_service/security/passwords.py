"""Argon2 password hashing."""

from __future__ import annotations

import logging

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

logger = logging.getLogger(__name__)


class CredentialVerifier:
    """Hashes passwords and checks candidates against stored hashes.

    Comparison always goes through argon2's own verify routine, which is
    constant-time with respect to the stored digest.
    """

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def compare(self, plaintext: str, password_hash: str | None) -> bool:
        """Return ``True`` only when ``plaintext`` matches ``password_hash``; never raises on mismatch."""
        if not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, plaintext)
        except VerificationError:
            return False
        except InvalidHashError:
            logger.warning("stored password hash is not a valid argon2 hash")
            return False
