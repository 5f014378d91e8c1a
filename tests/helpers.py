"""
tests/helpers.py -- Test doubles and builders shared by the fixtures in conftest.py.

Kept out of conftest.py so test modules can import them directly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.hashing import CredentialHasher
from auth.otp import OTPGenerator
from auth.service import IdentityService
from auth.state import AccountStateMachine
from auth.store import AccountStore
from auth.tokens import TokenManager

ACCESS_SECRET = "a" * 32 + "-access"
REFRESH_SECRET = "r" * 32 + "-refresh"


class FakeClock:
    """Callable clock frozen at construction; advance() moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDelivery:
    """Delivery double that keeps every message and can be told to fail."""

    def __init__(self) -> None:
        self.codes: list[tuple[str, str]] = []
        self.welcomes: list[str] = []
        self.fail_codes = False
        self.fail_welcome = False

    def send_verification_code(self, destination: str, code: str) -> bool:
        if self.fail_codes:
            return False
        self.codes.append((destination, code))
        return True

    def send_welcome(self, destination: str) -> bool:
        if self.fail_welcome:
            return False
        self.welcomes.append(destination)
        return True

    def last_code_for(self, destination: str) -> str:
        return [code for dest, code in self.codes if dest == destination][-1]


def make_tokens(**kwargs) -> TokenManager:
    return TokenManager(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, **kwargs)


def build_service(store: AccountStore, clock: FakeClock, delivery: RecordingDelivery) -> IdentityService:
    """Service with fast bcrypt, a 3-strike lockout, and OTP time driven by `clock`."""
    return IdentityService(
        store=store,
        hasher=CredentialHasher(rounds=4),
        otp=OTPGenerator(digits=6, expire_seconds=600, clock=clock),
        tokens=make_tokens(),
        states=AccountStateMachine(lockout_seconds=900, max_failed_attempts=3),
        delivery=delivery,
        clock=clock,
    )
