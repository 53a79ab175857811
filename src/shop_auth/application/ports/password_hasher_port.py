"""Port for one-way password hashing."""

from __future__ import annotations

from typing import Protocol


class PasswordHasherPort(Protocol):
    """Salted password hashing and verification contract."""

    def hash_password(self, password: str) -> str:
        """Hash one plaintext password for storage; output differs per call."""

    def verify_password(self, *, password: str, password_hash: str) -> bool:
        """Return whether plaintext matches one stored hash."""
