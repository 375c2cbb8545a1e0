"""Password verifier helpers for the credential store."""
from __future__ import annotations

from typing import Sequence

from passlib.context import CryptContext

DEFAULT_SCHEMES = ("pbkdf2_sha256",)


class PasswordHasher:
    """Derive and check password verifiers using a salted one-way hash.

    The scheme list is handed straight to :class:`passlib.context.CryptContext`,
    so callers can swap in any scheme passlib supports. The first scheme is used
    for new verifiers; the others are accepted when checking existing ones.
    """

    def __init__(self, schemes: Sequence[str] = DEFAULT_SCHEMES) -> None:
        if not schemes:
            raise ValueError("At least one password hashing scheme must be provided")
        self._context = CryptContext(schemes=list(schemes), deprecated="auto")

    def hash(self, password: str) -> str:
        if not password:
            raise ValueError("Password must not be empty")
        return self._context.hash(password)

    def verify(self, password: str, verifier: str) -> bool:
        if not password or not verifier:
            return False
        try:
            return self._context.verify(password, verifier)
        except ValueError:
            # Verifier was not produced by any configured scheme.
            return False


__all__ = ["DEFAULT_SCHEMES", "PasswordHasher"]
