"""
auth/service.py -- IdentityService: signup, verification, login and token refresh.

This is the only identity component the HTTP layer calls. It holds no mutable
state between calls; everything it knows lives in the store, and every status
change is a conditional update on the account row (AccountStore.compare_and_set).

Error contract:
  Every public method returns a Result. IdentityError subclasses raised inside
  are recovered into Result.error, except HashingFailure, which signals a
  broken bcrypt/entropy source and propagates to the generic error handler.

Security notes:
  [C1] login() runs bcrypt exactly once on every path, against a dummy hash
       when no account or no password exists, so response time does not
       reveal whether the identifier is registered.
  [C2] login() returns the same InvalidCredentials for unknown identifier,
       wrong password, unverified, reset-pending and blocked accounts.
       Telling "not verified yet" apart would confirm the account exists.
  [C3] OTP consumption and the status change are one UPDATE. A code that two
       requests submit at once activates the account once; only the winner
       sends the welcome message.
  [C4] Refresh tokens are stateless bearer credentials. There is no
       revocation list, so a stolen refresh token works until it expires.

Layer rule: no imports from api/. core/ is used only by from_settings().
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.delivery import Delivery, LoggingDelivery
from auth.errors import (
    AccountNotFound,
    DeliveryFailed,
    DuplicateAccount,
    HashingFailure,
    IdentityError,
    IllegalTransition,
    InvalidCredentials,
    OTPInvalidOrExpired,
    PasswordRejected,
    Result,
    SignupFailed,
)
from auth.hashing import CredentialHasher
from auth.models import (
    Account,
    AccountStatus,
    OTPChallenge,
    SignupFields,
    SignupMethod,
    SignupOutcome,
    TokenPair,
    VerifiedSession,
)
from auth.otp import OTPGenerator
from auth.state import AccountStateMachine, Event
from auth.store import AccountStore, normalize_email
from auth.tokens import TokenManager

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("identity.auth.service")

_RESETTABLE = (AccountStatus.ACTIVE, AccountStatus.NEEDS_PASSWORD_RESET)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityService:
    def __init__(
        self,
        store: AccountStore,
        hasher: CredentialHasher,
        otp: OTPGenerator,
        tokens: TokenManager,
        states: AccountStateMachine,
        delivery: Delivery,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.otp = otp
        self.tokens = tokens
        self.states = states
        self.delivery = delivery
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: AccountStore | None = None,
        delivery: Delivery | None = None,
    ) -> "IdentityService":
        """Wire every component from one Settings instance."""
        return cls(
            store=store or AccountStore(settings.database_url),
            hasher=CredentialHasher(rounds=settings.bcrypt_rounds),
            otp=OTPGenerator(digits=settings.otp_digits, expire_seconds=settings.otp_expire_seconds),
            tokens=TokenManager(
                access_secret=settings.access_token_secret,
                refresh_secret=settings.refresh_token_secret,
                issuer=settings.token_issuer,
                audience=settings.token_audience,
                access_expire_seconds=settings.access_token_expire_seconds,
                refresh_expire_seconds=settings.refresh_token_expire_seconds,
            ),
            states=AccountStateMachine(
                lockout_seconds=settings.lockout_seconds,
                max_failed_attempts=settings.max_login_attempts,
            ),
            delivery=delivery or LoggingDelivery(),
        )

    # ------------------------------------------------------------------
    # Result boundary
    # ------------------------------------------------------------------

    @staticmethod
    def _recover(operation: str, fn: Callable, *args) -> Result:
        try:
            return Result.success(fn(*args))
        except HashingFailure:
            raise
        except IdentityError as exc:
            logger.info("%s rejected: %s", operation, exc.code)
            return Result.failure(exc)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def signup(self, fields: SignupFields) -> Result[SignupOutcome]:
        return self._recover("signup", self._signup, fields)

    def verify(self, identifier: str, code: str) -> Result[VerifiedSession]:
        return self._recover("verify", self._verify, identifier, code)

    def login(self, identifier: str, password: str) -> Result[TokenPair]:
        return self._recover("login", self._login, identifier, password)

    def refresh(self, refresh_token: str) -> Result[str]:
        return self._recover("refresh", self.tokens.refresh_access, refresh_token)

    def reissue_challenge(self, identifier: str) -> Result[datetime]:
        return self._recover("reissue_challenge", self._reissue_challenge, identifier)

    def request_password_reset(self, identifier: str) -> Result[None]:
        return self._recover("request_password_reset", self._request_password_reset, identifier)

    def reset_password(self, identifier: str, code: str, new_password: str) -> Result[None]:
        return self._recover("reset_password", self._reset_password, identifier, code, new_password)

    def authenticate_external(
        self, provider: str, subject: str, first_name: str = "", last_name: str = ""
    ) -> Result[VerifiedSession]:
        return self._recover(
            "authenticate_external", self._authenticate_external, provider, subject, first_name, last_name
        )

    def get_account(self, account_id: int) -> Result[Account]:
        return self._recover("get_account", self._require_account, account_id)

    def block(self, account_id: int) -> Result[Account]:
        return self._recover("block", self._admin_transition, account_id, Event.BLOCK)

    def unblock(self, account_id: int) -> Result[Account]:
        return self._recover("unblock", self._admin_transition, account_id, Event.UNBLOCK)

    def require_password_reset(self, account_id: int) -> Result[Account]:
        return self._recover("require_password_reset", self._admin_transition, account_id, Event.REQUIRE_PASSWORD_RESET)

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def _signup(self, fields: SignupFields) -> SignupOutcome:
        account = self._build_account(fields)
        if self._find_existing(account) is not None:
            raise DuplicateAccount()

        # Explicit hashing step -- there are no persistence hooks.
        if account.signup_method is SignupMethod.EMAIL:
            account.credential_hash = self.hasher.hash(fields.password)
        if account.status in self.states.pending_statuses():
            account.otp = self.otp.generate()

        try:
            account.id = self.store.create(account)
        except IntegrityError:
            # A concurrent signup claimed the identifier between our check and insert.
            raise DuplicateAccount() from None
        logger.info(
            "Account %s created via %s signup (%s)", account.id, account.signup_method.value, account.status.value
        )

        # The account now exists; a failed send must not look like a failed signup.
        if account.otp is not None:
            self._deliver_code(account.identifier, account.otp)
        return SignupOutcome(account_id=account.id, pending_identifier=account.identifier, status=account.status)

    def _build_account(self, fields: SignupFields) -> Account:
        method = fields.signup_method
        given = [
            name
            for name, value in (
                ("email", fields.email),
                ("phone", fields.phone),
                ("external", fields.external_subject),
            )
            if value
        ]
        if len(given) > 1:
            raise SignupFailed("Provide exactly one of email, phone, or external identity.")

        account = Account(
            signup_method=method,
            status=self.states.initial_status(method),
            first_name=fields.first_name.strip(),
            last_name=fields.last_name.strip(),
            role=fields.role,
        )
        if method is SignupMethod.EMAIL:
            if not fields.email or not fields.password:
                raise SignupFailed("Email and password are required for email signup.")
            if not self.hasher.accepts(fields.password):
                raise SignupFailed(PasswordRejected.message)
            account.email = normalize_email(fields.email)
        elif method is SignupMethod.PHONE:
            if not fields.phone:
                raise SignupFailed("Phone is required for phone signup.")
            account.phone = fields.phone.strip()
        else:
            if not fields.external_provider or not fields.external_subject:
                raise SignupFailed("Provider and subject are required for external signup.")
            account.external_provider = fields.external_provider
            account.external_subject = fields.external_subject
        return account

    def _find_existing(self, account: Account) -> Account | None:
        if account.email:
            return self.store.find_by_email(account.email)
        if account.phone:
            return self.store.find_by_phone(account.phone)
        return self.store.find_by_external(account.external_provider, account.external_subject)

    def _deliver_code(self, destination: str, challenge: OTPChallenge) -> None:
        try:
            sent = self.delivery.send_verification_code(destination, challenge.code)
        except Exception as exc:
            logger.warning("Verification code delivery raised %s", type(exc).__name__, exc_info=True)
            raise DeliveryFailed() from exc
        if not sent:
            raise DeliveryFailed()

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _verify(self, identifier: str, code: str) -> VerifiedSession:
        account = self.store.find_by_identifier(identifier)
        if account is None:
            raise AccountNotFound()
        # Already-verified accounts fall through here: a replayed code is just invalid.
        if account.status not in self.states.pending_statuses():
            raise OTPInvalidOrExpired()
        if not self.otp.validate(account.otp, code):
            raise OTPInvalidOrExpired()

        new_status = self.states.transition(account.status, Event.VERIFY)
        won = self.store.compare_and_set(
            account.id,
            {"status": account.status, "otp_code": account.otp.code},
            status=new_status,
            otp_code=None,
            otp_expires_at=None,
        )
        if not won:
            raise OTPInvalidOrExpired()
        logger.info("Account %s verified", account.id)

        account = self._require_account(account.id)
        self._send_welcome(account)
        return VerifiedSession(account=account, tokens=self.tokens.issue_pair(str(account.id), account.role.value))

    def _send_welcome(self, account: Account) -> None:
        # Best effort: the account is already ACTIVE, a lost welcome message changes nothing.
        if not account.identifier:
            return
        try:
            sent = self.delivery.send_welcome(account.identifier)
        except Exception:
            logger.warning("Welcome message for account %s raised", account.id, exc_info=True)
            return
        if not sent:
            logger.warning("Welcome message for account %s was not delivered", account.id)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def _login(self, identifier: str, password: str) -> TokenPair:
        account = self.store.find_by_identifier(identifier)
        if account is None or account.credential_hash is None:
            self.hasher.verify_dummy(password)  # [C1]
            raise InvalidCredentials()

        if account.status is AccountStatus.TEMPORARILY_BLOCKED:
            account = self._lift_expired_block(account)

        if not self.hasher.verify(password, account.credential_hash):
            if account.status is AccountStatus.ACTIVE:
                self._record_failure(account)
            raise InvalidCredentials()
        if not self.states.can_authenticate(account.status):
            raise InvalidCredentials()  # [C2]

        if account.failed_attempts:
            self.store.compare_and_set(account.id, {"status": AccountStatus.ACTIVE}, failed_attempts=0)
        return self.tokens.issue_pair(str(account.id), account.role.value)

    def _lift_expired_block(self, account: Account) -> Account:
        if not self.states.cooldown_elapsed(account.blocked_at, self._clock()):
            return account
        self.store.compare_and_set(
            account.id,
            {"status": AccountStatus.TEMPORARILY_BLOCKED},
            status=self.states.transition(account.status, Event.UNBLOCK),
            failed_attempts=0,
            blocked_at=None,
        )
        logger.info("Temporary block on account %s expired", account.id)
        # Re-read whether or not we won; a concurrent request may have lifted it first.
        return self._require_account(account.id)

    def _record_failure(self, account: Account) -> None:
        count = self.store.record_failed_attempt(account.id, AccountStatus.ACTIVE)
        if count is None or not self.states.should_lock(count):
            return
        locked = self.store.compare_and_set(
            account.id,
            {"status": AccountStatus.ACTIVE},
            status=self.states.transition(AccountStatus.ACTIVE, Event.TEMPORARY_BLOCK),
            blocked_at=self._clock(),
        )
        if locked:
            logger.warning("Account %s temporarily blocked after %d failed logins", account.id, count)

    # ------------------------------------------------------------------
    # Challenges and password reset
    # ------------------------------------------------------------------

    def _reissue_challenge(self, identifier: str) -> datetime:
        account = self.store.find_by_identifier(identifier)
        if account is None:
            raise AccountNotFound()
        if not self.states.can_reissue(account.status) or not account.identifier:
            raise IllegalTransition()
        challenge = self._open_challenge(account)
        self._deliver_code(account.identifier, challenge)
        return challenge.expires_at

    def _open_challenge(self, account: Account) -> OTPChallenge:
        """Replace any open challenge with a fresh one, provided the status has not moved."""
        challenge = self.otp.generate()
        won = self.store.compare_and_set(
            account.id,
            {"status": account.status},
            otp_code=challenge.code,
            otp_expires_at=challenge.expires_at,
        )
        if not won:
            raise IllegalTransition()
        return challenge

    def _request_password_reset(self, identifier: str) -> None:
        account = self.store.find_by_identifier(identifier)
        if account is None or account.signup_method is not SignupMethod.EMAIL or account.status not in _RESETTABLE:
            # Same outward answer as success; nothing to send.
            logger.info("Password reset requested for an ineligible identifier")
            return None
        challenge = self._open_challenge(account)
        try:
            self._deliver_code(account.identifier, challenge)
        except DeliveryFailed:
            # A 503 here would tell the caller the account exists.
            logger.warning("Password reset code for account %s was not delivered", account.id)
            return None
        logger.info("Password reset challenge opened for account %s", account.id)
        return None

    def _reset_password(self, identifier: str, code: str, new_password: str) -> None:
        if not new_password or not self.hasher.accepts(new_password):
            raise PasswordRejected()
        account = self.store.find_by_identifier(identifier)
        if account is None or account.signup_method is not SignupMethod.EMAIL or account.status not in _RESETTABLE:
            raise OTPInvalidOrExpired()
        if not self.otp.validate(account.otp, code):
            raise OTPInvalidOrExpired()
        new_status = self.states.transition(account.status, Event.COMPLETE_PASSWORD_RESET)
        new_hash = self.hasher.hash(new_password)
        won = self.store.compare_and_set(
            account.id,
            {"status": account.status, "otp_code": account.otp.code},
            status=new_status,
            credential_hash=new_hash,
            otp_code=None,
            otp_expires_at=None,
            failed_attempts=0,
        )
        if not won:
            raise OTPInvalidOrExpired()
        logger.info("Password reset completed for account %s", account.id)
        return None

    # ------------------------------------------------------------------
    # Federated identities
    # ------------------------------------------------------------------

    def _authenticate_external(self, provider: str, subject: str, first_name: str, last_name: str) -> VerifiedSession:
        """Second half of a federated login: the provider has already vouched for (provider, subject)."""
        account = self.store.find_by_external(provider, subject)
        if account is None:
            outcome = self._signup(
                SignupFields(
                    signup_method=SignupMethod.EXTERNAL,
                    first_name=first_name,
                    last_name=last_name,
                    external_provider=provider,
                    external_subject=subject,
                )
            )
            account = self._require_account(outcome.account_id)
        if not self.states.can_authenticate(account.status):
            raise InvalidCredentials()
        return VerifiedSession(account=account, tokens=self.tokens.issue_pair(str(account.id), account.role.value))

    # ------------------------------------------------------------------
    # Administrative transitions
    # ------------------------------------------------------------------

    def _require_account(self, account_id: int) -> Account:
        account = self.store.get_by_id(account_id)
        if account is None:
            raise AccountNotFound()
        return account

    def _admin_transition(self, account_id: int, event: Event) -> Account:
        account = self._require_account(account_id)
        values: dict = {"status": self.states.transition(account.status, event)}
        if event is Event.BLOCK:
            values["blocked_at"] = self._clock()
        elif event is Event.UNBLOCK:
            values.update(failed_attempts=0, blocked_at=None)
        if not self.store.compare_and_set(account.id, {"status": account.status}, **values):
            raise IllegalTransition()
        logger.warning("Account %s: %s -> %s", account.id, account.status.value, values["status"].value)
        return self._require_account(account.id)
