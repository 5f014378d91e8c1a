"""
auth/tokens.py -- Signed access/refresh token pairs (python-jose, HS256).

Security design decisions:
  Two secrets: access and refresh tokens are signed with different keys, so
       a refresh token never verifies as an access token (and vice versa) even
       before the "type" claim is checked.

  iss / aud: every token carries a fixed issuer and audience and verification
       requires both to match. A token minted by an unrelated service that
       happens to share a signing key is rejected as TokenInvalid.

  Three failure kinds stay distinct for callers:
       TokenMalformed -- not a JWT at all (cannot parse header or payload)
       TokenExpired   -- signature fine, exp in the past
       TokenInvalid   -- bad signature, wrong iss/aud/type, missing claims
       The signature is checked before exp, so a tampered expired token is
       TokenInvalid, while an expired refresh token is always TokenExpired.

  Stateless: there is no server-side revocation list. A leaked refresh token
       stays usable until its own exp. Accepted tradeoff; shorten
       REFRESH_TOKEN_EXPIRE_SECONDS or rotate REFRESH_TOKEN_SECRET to contain
       a compromise.

TokenManager holds only immutable configuration and is safe to share across
concurrent requests without locking.

Layer rule: no imports from api/ or core/. Configuration arrives through the
constructor.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import TokenExpired, TokenInvalid, TokenMalformed
from auth.models import Claims, TokenPair

logger = logging.getLogger("identity.auth.tokens")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _claims_from_payload(payload: dict) -> Claims:
    """Map a decoded JWT payload to Claims. Raises KeyError/TypeError/ValueError on missing fields."""
    return Claims(
        subject_id=str(payload["sub"]),
        role=str(payload["role"]),
        issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        issuer=str(payload["iss"]),
        audience=str(payload["aud"]),
        token_type=str(payload["type"]),
    )


class TokenManager:
    """Issue and verify access/refresh JWTs.

    Usage:
        tokens = TokenManager(access_secret, refresh_secret)
        pair = tokens.issue_pair("42", "USER")
        claims = tokens.verify_access(pair.access_token)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        issuer: str = "identity-backend",
        audience: str = "identity-frontend",
        access_expire_seconds: int = 7 * 24 * 3600,
        refresh_expire_seconds: int = 30 * 24 * 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = timedelta(seconds=access_expire_seconds)
        self.refresh_ttl = timedelta(seconds=refresh_expire_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _encode(self, subject_id: str, role: str, token_type: str) -> str:
        if token_type == _ACCESS:
            secret, ttl = self._access_secret, self.access_ttl
        else:
            secret, ttl = self._refresh_secret, self.refresh_ttl
        now = self._clock()
        payload = {
            "sub": str(subject_id),
            "role": role,
            "type": token_type,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def issue_access(self, subject_id: str, role: str) -> str:
        return self._encode(subject_id, role, _ACCESS)

    def issue_pair(self, subject_id: str, role: str) -> TokenPair:
        pair = TokenPair(
            access_token=self._encode(subject_id, role, _ACCESS),
            refresh_token=self._encode(subject_id, role, _REFRESH),
        )
        logger.debug("Token pair issued for subject %s", subject_id)
        return pair

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _verify(self, token: str, token_type: str) -> Claims:
        secret = self._access_secret if token_type == _ACCESS else self._refresh_secret
        if not token or not isinstance(token, str):
            raise TokenMalformed()
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTClaimsError as exc:
            raise TokenInvalid() from exc
        except JWTError as exc:
            raise TokenInvalid() from exc
        try:
            claims = _claims_from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc
        if claims.token_type != token_type:
            raise TokenInvalid()
        return claims

    def verify_access(self, token: str) -> Claims:
        return self._verify(token, _ACCESS)

    def verify_refresh(self, token: str) -> Claims:
        return self._verify(token, _REFRESH)

    def refresh_access(self, refresh_token: str) -> str:
        """Mint a new access token from a valid refresh token.

        Subject and role come from the refresh token's own claims and nowhere
        else: in this stateless design the refresh token is the only proof of
        continued authorization. Verification failures propagate unchanged.
        """
        claims = self.verify_refresh(refresh_token)
        return self.issue_access(claims.subject_id, claims.role)

    # ------------------------------------------------------------------
    # Introspection (never use to authorize)
    # ------------------------------------------------------------------

    def peek(self, token: str) -> Claims | None:
        """Decode WITHOUT verifying signature or expiry. For logging and display only."""
        try:
            return _claims_from_payload(jwt.get_unverified_claims(token))
        except (JWTError, KeyError, TypeError, ValueError, AttributeError):
            return None

    def expires_at(self, token: str) -> datetime | None:
        """Unverified expiry of a token, or None if it cannot be read."""
        claims = self.peek(token)
        return claims.expires_at if claims else None

    def is_expired(self, token: str) -> bool:
        """Unverified expiry check. Unreadable tokens count as expired."""
        exp = self.expires_at(token)
        return exp is None or exp < self._clock()
