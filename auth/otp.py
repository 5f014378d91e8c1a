"""
auth/otp.py -- Numeric one-time passcodes with a fixed validity window.

Codes come from the secrets module, uniform over [10**(digits-1), 10**digits),
so every code is exactly `digits` characters with no leading zero.

validate() is a pure function of (challenge, submitted code, clock). It never
clears the challenge; consuming the code is done by the store's conditional
update in the same write that changes the account's status.
"""

from __future__ import annotations

import hmac
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import OTPChallenge


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OTPGenerator:
    def __init__(
        self,
        digits: int = 6,
        expire_seconds: int = 600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.digits = digits
        self.window = timedelta(seconds=expire_seconds)
        self._clock = clock
        self._low = 10 ** (digits - 1)
        self._span = 10**digits - self._low

    def generate(self) -> OTPChallenge:
        code = str(self._low + secrets.randbelow(self._span))
        return OTPChallenge(code=code, expires_at=self._clock() + self.window)

    def validate(self, challenge: OTPChallenge | None, submitted: str | None) -> bool:
        """Return True only for an open, unexpired challenge whose code matches exactly.

        String comparison, not numeric: "0123" never matches "123".
        """
        if challenge is None or not challenge.code or challenge.expires_at is None:
            return False
        if not submitted:
            return False
        if self._clock() > challenge.expires_at:
            return False
        return hmac.compare_digest(challenge.code.encode("utf-8"), submitted.encode("utf-8"))
