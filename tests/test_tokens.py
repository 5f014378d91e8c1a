"""Unit tests for auth/tokens.py -- TokenManager.

Covers:
- Round trip: verify_access(issue_pair(id, role).access_token) keeps subject and role
- Claims carry issuer, audience, type, and the configured lifetimes
- Expired vs tampered vs garbage map to TokenExpired / TokenInvalid / TokenMalformed
- Issuer / audience mismatch is TokenInvalid
- Access and refresh tokens are not interchangeable
- refresh_access() copies subject/role from the refresh token and propagates failures
- peek() / is_expired() / expires_at() decode without verification
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import TokenExpired, TokenInvalid, TokenMalformed
from auth.tokens import TokenManager
from tests.helpers import ACCESS_SECRET, REFRESH_SECRET, make_tokens


@pytest.fixture
def tokens() -> TokenManager:
    return make_tokens(access_expire_seconds=3600, refresh_expire_seconds=30 * 24 * 3600)


def _issued_in_past(days: int, **kwargs) -> TokenManager:
    """A manager whose clock is `days` in the past, so its tokens are already expired on arrival."""
    past = datetime.now(timezone.utc) - timedelta(days=days)
    return make_tokens(clock=lambda: past, **kwargs)


class TestRoundTrip:
    def test_access_claims_keep_subject_and_role(self, tokens: TokenManager) -> None:
        pair = tokens.issue_pair("42", "USER")
        claims = tokens.verify_access(pair.access_token)
        assert claims.subject_id == "42"
        assert claims.role == "USER"
        assert claims.token_type == "access"

    def test_refresh_claims_keep_subject_and_role(self, tokens: TokenManager) -> None:
        pair = tokens.issue_pair("7", "ADMIN")
        claims = tokens.verify_refresh(pair.refresh_token)
        assert (claims.subject_id, claims.role, claims.token_type) == ("7", "ADMIN", "refresh")

    def test_issuer_audience_and_lifetimes(self, tokens: TokenManager) -> None:
        pair = tokens.issue_pair("1", "USER")
        access = tokens.verify_access(pair.access_token)
        refresh = tokens.verify_refresh(pair.refresh_token)
        assert access.issuer == "identity-backend"
        assert access.audience == "identity-frontend"
        assert access.expires_at - access.issued_at == timedelta(hours=1)
        assert refresh.expires_at - refresh.issued_at == timedelta(days=30)

    def test_pair_tokens_differ(self, tokens: TokenManager) -> None:
        pair = tokens.issue_pair("1", "USER")
        assert pair.access_token != pair.refresh_token
        assert pair.token_type == "bearer"


class TestFailureKinds:
    def test_expired_access_token(self) -> None:
        old = _issued_in_past(days=2, access_expire_seconds=3600)
        token = old.issue_pair("1", "USER").access_token
        with pytest.raises(TokenExpired):
            make_tokens().verify_access(token)

    def test_tampered_signature_is_invalid(self, tokens: TokenManager) -> None:
        token = tokens.issue_pair("1", "USER").access_token
        header, payload, signature = token.split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        with pytest.raises(TokenInvalid):
            tokens.verify_access(f"{header}.{payload}.{flipped}")

    def test_other_secret_is_invalid(self, tokens: TokenManager) -> None:
        foreign = TokenManager(access_secret="x" * 40, refresh_secret="y" * 40)
        with pytest.raises(TokenInvalid):
            tokens.verify_access(foreign.issue_pair("1", "USER").access_token)

    @pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b", "a.b.c", "....", "null"])
    def test_garbage_is_malformed(self, tokens: TokenManager, garbage: str) -> None:
        with pytest.raises(TokenMalformed):
            tokens.verify_access(garbage)

    def test_wrong_issuer_is_invalid(self, tokens: TokenManager) -> None:
        other = TokenManager(ACCESS_SECRET, REFRESH_SECRET, issuer="some-other-service")
        with pytest.raises(TokenInvalid):
            tokens.verify_access(other.issue_pair("1", "USER").access_token)

    def test_wrong_audience_is_invalid(self, tokens: TokenManager) -> None:
        other = TokenManager(ACCESS_SECRET, REFRESH_SECRET, audience="some-other-frontend")
        with pytest.raises(TokenInvalid):
            tokens.verify_access(other.issue_pair("1", "USER").access_token)

    def test_refresh_token_rejected_as_access(self, tokens: TokenManager) -> None:
        pair = tokens.issue_pair("1", "USER")
        with pytest.raises(TokenInvalid):
            tokens.verify_access(pair.refresh_token)

    def test_access_token_rejected_as_refresh(self, tokens: TokenManager) -> None:
        pair = tokens.issue_pair("1", "USER")
        with pytest.raises(TokenInvalid):
            tokens.verify_refresh(pair.access_token)


class TestRefreshAccess:
    def test_new_access_token_carries_refresh_claims(self, tokens: TokenManager) -> None:
        pair = tokens.issue_pair("99", "DEVELOPER")
        new_access = tokens.refresh_access(pair.refresh_token)
        claims = tokens.verify_access(new_access)
        assert claims.subject_id == "99"
        assert claims.role == "DEVELOPER"

    def test_expired_refresh_is_expired_never_invalid(self) -> None:
        old = _issued_in_past(days=40, refresh_expire_seconds=30 * 24 * 3600)
        token = old.issue_pair("1", "USER").refresh_token
        with pytest.raises(TokenExpired):
            make_tokens().refresh_access(token)

    def test_malformed_refresh_propagates(self, tokens: TokenManager) -> None:
        with pytest.raises(TokenMalformed):
            tokens.refresh_access("garbage")


class TestIntrospection:
    def test_peek_reads_claims_without_secret(self, tokens: TokenManager) -> None:
        token = tokens.issue_pair("5", "USER").access_token
        reader = TokenManager(access_secret="z" * 40, refresh_secret="w" * 40)
        claims = reader.peek(token)
        assert claims is not None
        assert claims.subject_id == "5"

    def test_peek_returns_none_for_garbage(self, tokens: TokenManager) -> None:
        assert tokens.peek("garbage") is None

    def test_peek_reads_expired_tokens(self) -> None:
        token = _issued_in_past(days=2, access_expire_seconds=60).issue_pair("5", "USER").access_token
        tokens = make_tokens()
        assert tokens.peek(token) is not None
        assert tokens.is_expired(token) is True

    def test_fresh_token_not_expired(self, tokens: TokenManager) -> None:
        token = tokens.issue_pair("5", "USER").access_token
        assert tokens.is_expired(token) is False
        assert tokens.expires_at(token) > datetime.now(timezone.utc)

    def test_unreadable_token_counts_as_expired(self, tokens: TokenManager) -> None:
        assert tokens.is_expired("garbage") is True
        assert tokens.expires_at("garbage") is None
