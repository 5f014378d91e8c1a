"""
auth/errors.py -- Failure taxonomy for the identity core.

Every failure carries a stable machine code, a message that is safe to show to
the caller, and an HTTP status hint the transport layer may use. Internal
detail (library exceptions, identifiers) goes to the log, never into message.

IdentityService recovers every IdentityError except HashingFailure into a
Result. HashingFailure means the bcrypt library or the entropy source broke;
it propagates to the generic 500 handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class IdentityError(Exception):
    code: str = "identity_error"
    message: str = "The request could not be completed."
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class DuplicateAccount(IdentityError):
    code = "duplicate_account"
    message = "An account with this identifier already exists."
    status_code = 409


class AccountNotFound(IdentityError):
    code = "account_not_found"
    message = "Account not found."
    status_code = 404


class InvalidCredentials(IdentityError):
    # Same message for unknown account, wrong password, and non-ACTIVE status.
    code = "invalid_credentials"
    message = "Invalid credentials."
    status_code = 401


class OTPInvalidOrExpired(IdentityError):
    code = "otp_invalid_or_expired"
    message = "The verification code is invalid or has expired."
    status_code = 400


class DeliveryFailed(IdentityError):
    code = "delivery_failed"
    message = "The verification code could not be delivered. Request a new code."
    status_code = 503
    retryable = True


class SignupFailed(IdentityError):
    code = "signup_failed"
    message = "Signup failed."
    status_code = 400


class PasswordRejected(IdentityError):
    code = "password_rejected"
    message = "Password must be at most 72 bytes."
    status_code = 400


class IllegalTransition(IdentityError):
    code = "illegal_transition"
    message = "The account is not in a state that allows this action."
    status_code = 409


class TokenExpired(IdentityError):
    code = "token_expired"
    message = "Token has expired. Please log in again."
    status_code = 401


class TokenInvalid(IdentityError):
    code = "token_invalid"
    message = "Token is not valid for this service."
    status_code = 401


class TokenMalformed(IdentityError):
    code = "token_malformed"
    message = "Token could not be parsed."
    status_code = 401


class HashingFailure(IdentityError):
    code = "hashing_failure"
    message = "An unexpected error occurred."
    status_code = 500


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an IdentityService operation: a value or a typed error, never both."""

    value: T | None = None
    error: IdentityError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: IdentityError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value
