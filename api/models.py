"""
API request and response models for the identity REST endpoints.

These Pydantic v2 models are the HTTP contract and the input-shape validator:
a request that reaches IdentityService has already passed them. They are
separate from the dataclasses in auth/models.py, which own the domain shape.
Route handlers map between the two.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.hashing import MAX_SECRET_BYTES, CredentialHasher
from auth.models import Account, SignupFields, SignupMethod

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
PHONE_PATTERN = r"^\+[1-9]\d{1,14}$"  # E.164
CODE_PATTERN = r"^\d{4,10}$"


def _fits_bcrypt(value: Optional[str]) -> Optional[str]:
    # max_length counts characters; bcrypt counts UTF-8 bytes.
    if value is not None and not CredentialHasher.accepts(value):
        raise ValueError(f"must be at most {MAX_SECRET_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SelfServiceMethod(str, Enum):
    """Signup methods open to anonymous callers. EXTERNAL is created by the federation callback only."""

    EMAIL = "EMAIL"
    PHONE = "PHONE"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    EMAIL signup needs email + password and no phone; PHONE signup needs phone
    and nothing else. The model_validator enforces the "one identifier" rule
    before the service sees the request.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    signup_method: SelfServiceMethod = SelfServiceMethod.EMAIL
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    password: Optional[str] = Field(default=None, min_length=6, max_length=72)

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: Optional[str]) -> Optional[str]:
        return _fits_bcrypt(value)

    @model_validator(mode="after")
    def check_method_fields(self) -> "SignupRequest":
        if self.signup_method is SelfServiceMethod.EMAIL:
            if not self.email or not self.password:
                raise ValueError("email and password are required for EMAIL signup")
            if self.phone:
                raise ValueError("EMAIL signup takes no phone")
        else:
            if not self.phone:
                raise ValueError("phone is required for PHONE signup")
            if self.email or self.password:
                raise ValueError("PHONE signup takes no email or password")
        return self

    def to_fields(self) -> SignupFields:
        return SignupFields(
            signup_method=SignupMethod(self.signup_method.value),
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            phone=self.phone,
            password=self.password,
        )


class VerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=3, max_length=255)
    code: str = Field(pattern=CODE_PATTERN)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=3, max_length=255)
    # Short passwords are wrong passwords here, not a 422.
    password: str = Field(min_length=1, max_length=72)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class IdentifierRequest(BaseModel):
    """Body for POST /auth/resend-code and POST /auth/password-reset/request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=3, max_length=255)


class PasswordResetConfirm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=3, max_length=255)
    code: str = Field(pattern=CODE_PATTERN)
    new_password: str = Field(min_length=6, max_length=72)

    @field_validator("new_password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _fits_bcrypt(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Caller-safe account view. Built from Account.public_view(); no hash, no OTP."""

    model_config = ConfigDict(frozen=True)

    id: int
    first_name: str
    last_name: str
    email: Optional[str]
    phone: Optional[str]
    external_provider: Optional[str]
    signup_method: str
    status: str
    role: str
    created_at: Optional[str]

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(**account.public_view())


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    pending_identifier: Optional[str]
    status: str
    message: str


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class AccessTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class VerifyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    tokens: TokenPairResponse


class ChallengeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    expires_at: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    token_expires_at: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    retryable: bool = False


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
