"""
auth/state.py -- Account lifecycle: statuses, events, and the legal transitions between them.

Pattern: table-driven state machine. _TRANSITIONS maps (event, from-status) to
the resulting status; anything not in the table is illegal. The machine is
stateless -- the current status lives on the Account record and the store's
conditional update makes each transition atomic.

    EMAIL signup    -> NEEDS_EMAIL_VERIFICATION --verify--> ACTIVE
    PHONE signup    -> NEEDS_PHONE_VERIFICATION --verify--> ACTIVE
    EXTERNAL signup -> ACTIVE
    ACTIVE --temporary_block--> TEMPORARILY_BLOCKED --unblock--> ACTIVE
    ACTIVE --require_password_reset--> NEEDS_PASSWORD_RESET --complete_password_reset--> ACTIVE
    any non-BLOCKED --block--> BLOCKED (terminal for self-service)

A failed verification is not an event: the account stays where it is and keeps
its challenge until it expires or is re-issued.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from auth.errors import IllegalTransition
from auth.models import AccountStatus, SignupMethod


class Event(str, Enum):
    VERIFY = "verify"
    COMPLETE_PASSWORD_RESET = "complete_password_reset"
    REQUIRE_PASSWORD_RESET = "require_password_reset"
    TEMPORARY_BLOCK = "temporary_block"
    UNBLOCK = "unblock"
    BLOCK = "block"
    REISSUE_CHALLENGE = "reissue_challenge"


_S = AccountStatus

_PENDING = frozenset({_S.NEEDS_EMAIL_VERIFICATION, _S.NEEDS_PHONE_VERIFICATION})

_TRANSITIONS: dict[tuple[Event, AccountStatus], AccountStatus] = {
    (Event.VERIFY, _S.NEEDS_EMAIL_VERIFICATION): _S.ACTIVE,
    (Event.VERIFY, _S.NEEDS_PHONE_VERIFICATION): _S.ACTIVE,
    (Event.COMPLETE_PASSWORD_RESET, _S.NEEDS_PASSWORD_RESET): _S.ACTIVE,
    (Event.COMPLETE_PASSWORD_RESET, _S.ACTIVE): _S.ACTIVE,
    (Event.REQUIRE_PASSWORD_RESET, _S.ACTIVE): _S.NEEDS_PASSWORD_RESET,
    (Event.TEMPORARY_BLOCK, _S.ACTIVE): _S.TEMPORARILY_BLOCKED,
    (Event.UNBLOCK, _S.TEMPORARILY_BLOCKED): _S.ACTIVE,
}
# Administrative block is reachable from every status except itself.
for _status in _S:
    if _status is not _S.BLOCKED:
        _TRANSITIONS[(Event.BLOCK, _status)] = _S.BLOCKED
    # Re-issue keeps the status; allowed anywhere but ACTIVE and BLOCKED.
    if _status not in (_S.ACTIVE, _S.BLOCKED):
        _TRANSITIONS[(Event.REISSUE_CHALLENGE, _status)] = _status

_INITIAL = {
    SignupMethod.EMAIL: _S.NEEDS_EMAIL_VERIFICATION,
    SignupMethod.PHONE: _S.NEEDS_PHONE_VERIFICATION,
    SignupMethod.EXTERNAL: _S.ACTIVE,
}


class AccountStateMachine:
    """Answers "may this account do X" and "what status follows event E"."""

    def __init__(self, lockout_seconds: int = 900, max_failed_attempts: int = 5) -> None:
        self.lockout = timedelta(seconds=lockout_seconds)
        self.max_failed_attempts = max_failed_attempts

    @staticmethod
    def initial_status(method: SignupMethod) -> AccountStatus:
        return _INITIAL[method]

    @staticmethod
    def pending_statuses() -> frozenset[AccountStatus]:
        return _PENDING

    @staticmethod
    def can_transition(status: AccountStatus, event: Event) -> bool:
        return (event, status) in _TRANSITIONS

    @staticmethod
    def transition(status: AccountStatus, event: Event) -> AccountStatus:
        """Return the status that follows `event`, or raise IllegalTransition."""
        try:
            return _TRANSITIONS[(event, status)]
        except KeyError:
            raise IllegalTransition() from None

    @staticmethod
    def can_authenticate(status: AccountStatus) -> bool:
        return status is AccountStatus.ACTIVE

    @staticmethod
    def can_reissue(status: AccountStatus) -> bool:
        return (Event.REISSUE_CHALLENGE, status) in _TRANSITIONS

    @staticmethod
    def is_terminal(status: AccountStatus) -> bool:
        return status is AccountStatus.BLOCKED

    # ------------------------------------------------------------------
    # Lockout policy
    # ------------------------------------------------------------------

    def should_lock(self, failed_attempts: int) -> bool:
        """True once the consecutive failure count reaches the threshold."""
        return failed_attempts >= self.max_failed_attempts

    def cooldown_elapsed(self, blocked_at: datetime | None, now: datetime) -> bool:
        # A temporary block with no timestamp never lifts on its own.
        if blocked_at is None:
            return False
        return now >= blocked_at + self.lockout
