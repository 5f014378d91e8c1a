"""
auth/hashing.py -- One-way password hashing with bcrypt.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug detection
feeds bcrypt a password longer than 72 bytes, which bcrypt 4.x rejects.

bcrypt only reads the first 72 bytes of its input and recent releases raise
ValueError beyond that. accepts() is the length rule callers check before
hash(); a UTF-8 password of 72 characters can be up to 288 bytes.

The cost factor is a constructor argument sourced from Settings.bcrypt_rounds.
Tests pass rounds=4 to keep the suite fast.

verify() never raises. An empty password, a missing hash, or a hash that is
not a bcrypt string all compare as non-matching.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import HashingFailure

logger = logging.getLogger("identity.auth.hashing")

MAX_SECRET_BYTES = 72


class CredentialHasher:
    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization [C1]: login always runs one bcrypt check, even
        # when the identifier matches no account. Computed once per instance
        # at the configured cost so both paths take the same time.
        self._dummy_hash = self.hash("identity_timing_dummy")

    @staticmethod
    def accepts(plaintext: str) -> bool:
        """True if bcrypt can hash plaintext without truncating or refusing it."""
        return len(plaintext.encode("utf-8")) <= MAX_SECRET_BYTES

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt hash. Two calls on the same input differ."""
        try:
            salt = bcrypt.gensalt(rounds=self.rounds)
            return bcrypt.hashpw(plaintext.encode("utf-8"), salt).decode("utf-8")
        except (ValueError, TypeError) as exc:
            logger.error("bcrypt hashing failed: %s", type(exc).__name__)
            raise HashingFailure() from exc

    def verify(self, plaintext: str | None, hashed: str | None) -> bool:
        """Return True only if plaintext matches the bcrypt hash."""
        if not plaintext or not hashed:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, plaintext: str | None) -> bool:
        """Burn one verification's worth of time. Always False."""
        self.verify(plaintext or "x", self._dummy_hash)
        return False
