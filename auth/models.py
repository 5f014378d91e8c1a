"""
auth/models.py -- Domain dataclasses and enums for identity entities.

Pattern: Data class (pure data container, no persistence logic). The store maps
rows to these records; the service and state machine do the work. Password
comparison and OTP generation live in auth/hashing.py and auth/otp.py, not on
the record.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SignupMethod(str, Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    EXTERNAL = "EXTERNAL"


class AccountStatus(str, Enum):
    NEEDS_EMAIL_VERIFICATION = "NEEDS_EMAIL_VERIFICATION"
    NEEDS_PHONE_VERIFICATION = "NEEDS_PHONE_VERIFICATION"
    NEEDS_PASSWORD_RESET = "NEEDS_PASSWORD_RESET"
    TEMPORARILY_BLOCKED = "TEMPORARILY_BLOCKED"
    BLOCKED = "BLOCKED"
    ACTIVE = "ACTIVE"


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    DEVELOPER = "DEVELOPER"


@dataclass(frozen=True)
class OTPChallenge:
    """An open verification challenge: the code and the instant it stops being valid."""

    code: str
    expires_at: datetime


@dataclass
class Account:
    """A person's identity record.

    Exactly one identifier is populated, matching signup_method: email for
    EMAIL, phone for PHONE, (external_provider, external_subject) for EXTERNAL.

    credential_hash is None for PHONE and EXTERNAL accounts -- they have no
    local password. otp is None whenever no challenge is open.

    failed_attempts counts consecutive bad passwords since the last success;
    blocked_at records when the last block transition happened so the
    temporary lockout can expire on its own.
    """

    signup_method: SignupMethod
    status: AccountStatus
    first_name: str = ""
    last_name: str = ""
    id: int | None = None
    email: str | None = None
    phone: str | None = None
    external_provider: str | None = None  # "google", "github", ...
    external_subject: str | None = None  # provider's stable user ID
    credential_hash: str | None = None  # None = no local password
    otp: OTPChallenge | None = None
    role: Role = Role.USER
    failed_attempts: int = 0
    blocked_at: datetime | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def identifier(self) -> str | None:
        """The address a challenge is delivered to (email or phone), if any."""
        if self.signup_method is SignupMethod.EMAIL:
            return self.email
        if self.signup_method is SignupMethod.PHONE:
            return self.phone
        return None

    def public_view(self) -> dict:
        """Caller-safe projection. Never includes credential_hash or otp."""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "external_provider": self.external_provider,
            "signup_method": self.signup_method.value,
            "status": self.status.value,
            "role": self.role.value,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Claims:
    """Verified (or, from peek(), unverified) contents of a signed token."""

    subject_id: str
    role: str
    issued_at: datetime
    expires_at: datetime
    issuer: str
    audience: str
    token_type: str  # "access" or "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


@dataclass(frozen=True)
class SignupOutcome:
    """What signup hands back: where the challenge went, and the account's state."""

    account_id: int
    pending_identifier: str | None
    status: AccountStatus


@dataclass(frozen=True)
class VerifiedSession:
    account: Account
    tokens: TokenPair


@dataclass(frozen=True)
class SignupFields:
    """Already shape-validated signup input (the API layer runs pydantic first)."""

    signup_method: SignupMethod
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    password: str | None = None
    external_provider: str | None = None
    external_subject: str | None = None
    role: Role = Role.USER
