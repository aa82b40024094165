"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection feeds bcrypt a password longer than 72 bytes, which bcrypt 4.x+
rejects. Direct usage has no compatibility shim to maintain.

The cost factor is configurable (BCRYPT_ROUNDS, default 10). bcrypt's work
factor and its constant-time checkpw() mean verify() needs no separate
timing-safe comparison.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger("authgate.auth")

# bcrypt only looks at the first 72 bytes; newer releases reject longer input.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Salted one-way hashing and verification of local passwords."""

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash("authgate_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext password (60 chars, salt embedded)."""
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the hash.

        Never raises. A stored value that is not a bcrypt hash (a provider
        marker such as "google-oauth") or an over-long password yields False
        and a warning in the log. The user only ever sees a generic rejection.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError) as exc:
            logger.warning("Password comparison failed: %s", exc)
            return False

    def dummy_verify(self, plain: str) -> None:
        """Burn one bcrypt verification so unknown emails cost as much as known ones."""
        self.verify(plain, self._dummy_hash)
