"""
api/routes/v1/auth.py -- Identity REST endpoints.

Routes:
  POST /api/v1/auth/signup                     -- create an EMAIL or PHONE account; sends a code
  POST /api/v1/auth/verify                     -- submit the code; returns account + token pair
  POST /api/v1/auth/login                      -- password login; returns token pair
  POST /api/v1/auth/refresh                    -- exchange a refresh token for a new access token
  POST /api/v1/auth/resend-code                -- re-issue the verification code
  POST /api/v1/auth/password-reset/request     -- email a reset code (same answer for unknown identifiers)
  POST /api/v1/auth/password-reset/confirm     -- submit reset code + new password
  GET  /api/v1/auth/me                         -- current account (requires access token)
  POST /api/v1/auth/accounts/{id}/block        -- admin only
  POST /api/v1/auth/accounts/{id}/unblock      -- admin only
  POST /api/v1/auth/accounts/{id}/require-password-reset -- admin only

Security:
  [H2] Credential endpoints are rate-limited per IP (Settings.login_rate_limit).
  [M5] Cache-Control: no-store on every response that carries a token.
  Handlers that hash passwords are plain `def` so FastAPI runs them in its
  thread pool; bcrypt never blocks the event loop.

Every IdentityService failure leaves here as HTTPException(detail=ErrorDetail)
and the app-level handler wraps it in the shared ErrorResponse envelope.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import CREDENTIAL_LIMIT, limiter
from api.models import (
    AccessTokenResponse,
    AccountResponse,
    ChallengeResponse,
    IdentifierRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    PasswordResetConfirm,
    RefreshRequest,
    SignupRequest,
    SignupResponse,
    TokenPairResponse,
    VerifyRequest,
    VerifyResponse,
)
from auth.dependencies import get_current_claims, require_role
from auth.errors import IdentityError, Result
from auth.models import Claims, Role, TokenPair
from auth.service import IdentityService

# Auth policy:
# - signup / verify / login / refresh / resend-code / password-reset/*: public
# - GET  /auth/me:                    requires access token (get_current_claims)
# - POST /auth/accounts/{id}/*:       requires ADMIN role (require_role)
router = APIRouter()

_require_admin = require_role(Role.ADMIN)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> IdentityService:
    return request.app.state.identity


def _raise_for(error: IdentityError) -> None:
    raise HTTPException(
        status_code=error.status_code,
        detail={"code": error.code, "message": error.message, "retryable": error.retryable},
    )


def _unwrap(result: Result):
    try:
        return result.unwrap()
    except IdentityError as exc:
        _raise_for(exc)


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _pair_response(service: IdentityService, pair: TokenPair) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=int(service.tokens.access_ttl.total_seconds()),
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(CREDENTIAL_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account in its pending state and send the verification code.

    409 duplicate_account if the email/phone is taken. 503 delivery_failed
    (retryable) if the account was created but the code could not be sent --
    the client should call /auth/resend-code rather than sign up again.
    """
    outcome = _unwrap(_service(request).signup(body.to_fields()))
    return _no_store(
        SignupResponse(
            account_id=outcome.account_id,
            pending_identifier=outcome.pending_identifier,
            status=outcome.status.value,
            message="Verification code sent.",
        ).model_dump(),
        status_code=201,
    )


@limiter.limit(CREDENTIAL_LIMIT)
@router.post("/auth/verify", response_model=VerifyResponse)
def verify(request: Request, body: VerifyRequest) -> JSONResponse:
    """Consume the verification code, activate the account, and return a token pair."""
    service = _service(request)
    session = _unwrap(service.verify(body.identifier, body.code))
    return _no_store(
        VerifyResponse(
            account=AccountResponse.from_account(session.account),
            tokens=_pair_response(service, session.tokens),
        ).model_dump()
    )


@limiter.limit(CREDENTIAL_LIMIT)
@router.post("/auth/login", response_model=TokenPairResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with identifier and password.

    Unknown identifier, wrong password, and any non-ACTIVE account all return
    the same 401 invalid_credentials.
    """
    service = _service(request)
    pair = _unwrap(service.login(body.identifier, body.password))
    return _no_store(_pair_response(service, pair).model_dump())


@router.post("/auth/refresh", response_model=AccessTokenResponse)
async def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Mint a new access token. 401 token_expired means the user must log in again."""
    service = _service(request)
    access_token = _unwrap(service.refresh(body.refresh_token))
    return _no_store(
        AccessTokenResponse(
            access_token=access_token,
            expires_in=int(service.tokens.access_ttl.total_seconds()),
        ).model_dump()
    )


@limiter.limit(CREDENTIAL_LIMIT)
@router.post("/auth/resend-code", response_model=ChallengeResponse)
def resend_code(request: Request, body: IdentifierRequest) -> ChallengeResponse:
    """Replace the open verification code with a new one and send it."""
    expires_at = _unwrap(_service(request).reissue_challenge(body.identifier))
    return ChallengeResponse(message="Verification code sent.", expires_at=expires_at.isoformat())


@limiter.limit(CREDENTIAL_LIMIT)
@router.post("/auth/password-reset/request", response_model=MessageResponse)
def request_password_reset(request: Request, body: IdentifierRequest) -> MessageResponse:
    _unwrap(_service(request).request_password_reset(body.identifier))
    return MessageResponse(message="If the account exists, a reset code has been sent.")


@limiter.limit(CREDENTIAL_LIMIT)
@router.post("/auth/password-reset/confirm", response_model=MessageResponse)
def confirm_password_reset(request: Request, body: PasswordResetConfirm) -> MessageResponse:
    _unwrap(_service(request).reset_password(body.identifier, body.code, body.new_password))
    return MessageResponse(message="Password updated.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(request: Request, claims: Claims = Depends(get_current_claims)) -> MeResponse:
    """Return the account behind the access token."""
    account = _unwrap(_service(request).get_account(int(claims.subject_id)))
    return MeResponse(
        account=AccountResponse.from_account(account),
        token_expires_at=claims.expires_at.isoformat(),
    )


# ---------------------------------------------------------------------------
# Administrative transitions (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/accounts/{account_id}/block", response_model=AccountResponse)
async def block_account(request: Request, account_id: int, claims: Claims = Depends(_require_admin)) -> AccountResponse:
    """Move an account to BLOCKED. There is no self-service way back."""
    return AccountResponse.from_account(_unwrap(_service(request).block(account_id)))


@router.post("/auth/accounts/{account_id}/unblock", response_model=AccountResponse)
async def unblock_account(
    request: Request, account_id: int, claims: Claims = Depends(_require_admin)
) -> AccountResponse:
    """Lift a TEMPORARILY_BLOCKED account before its cool-down ends."""
    return AccountResponse.from_account(_unwrap(_service(request).unblock(account_id)))


@router.post("/auth/accounts/{account_id}/require-password-reset", response_model=AccountResponse)
async def force_password_reset(
    request: Request, account_id: int, claims: Claims = Depends(_require_admin)
) -> AccountResponse:
    return AccountResponse.from_account(_unwrap(_service(request).require_password_reset(account_id)))
