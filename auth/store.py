"""
auth/store.py -- SQLAlchemy Core persistence layer for Account records.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Service code never touches SQL directly.

Atomicity:
  Every state change goes through compare_and_set(), a single
  UPDATE ... WHERE id = :id AND <expected columns> statement. rowcount tells
  the caller whether it won. Two concurrent verifications of the same code
  both read the open challenge, but only the first UPDATE still matches
  (status, otp_code); the second sees rowcount 0.

Uniqueness:
  email, phone and (external_provider, external_subject) carry UNIQUE
  constraints. SQL treats NULLs as distinct, which is exactly the
  "unique among non-null values" rule we want. create() lets
  sqlalchemy.exc.IntegrityError propagate so the service can report
  DuplicateAccount when a concurrent signup wins the race.

Timestamps are stored as ISO 8601 text in UTC.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Account, AccountStatus, OTPChallenge, Role, SignupMethod


_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(50), nullable=False, server_default=""),
    Column("last_name", String(50), nullable=False, server_default=""),
    Column("email", String(255), unique=True),  # lower-cased
    Column("phone", String(20), unique=True),  # E.164
    Column("external_provider", String(30)),
    Column("external_subject", Text),
    Column("signup_method", String(10), nullable=False),
    Column("credential_hash", Text),  # NULL unless signup_method = EMAIL
    Column("status", String(30), nullable=False),
    Column("otp_code", String(10)),
    Column("otp_expires_at", String(32)),
    Column("role", String(10), nullable=False, server_default="USER"),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("blocked_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("external_provider", "external_subject", name="uq_accounts_external"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(value):
    """Convert domain values (enums, datetimes) to their column representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def looks_like_email(identifier: str) -> bool:
    return bool(_EMAIL_RE.match(identifier))


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account_id = store.create(Account(signup_method=SignupMethod.EMAIL, ...))
        account = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, account: Account) -> int:
        """Insert a new account and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email, phone or external
        identity is already taken.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    first_name=account.first_name,
                    last_name=account.last_name,
                    email=normalize_email(account.email) if account.email else None,
                    phone=account.phone,
                    external_provider=account.external_provider,
                    external_subject=account.external_subject,
                    signup_method=account.signup_method.value,
                    credential_hash=account.credential_hash,
                    status=account.status.value,
                    otp_code=account.otp.code if account.otp else None,
                    otp_expires_at=account.otp.expires_at.isoformat() if account.otp else None,
                    role=account.role.value,
                    failed_attempts=account.failed_attempts,
                    blocked_at=_to_db(account.blocked_at),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def compare_and_set(self, account_id: int, expected: dict, **values) -> bool:
        """Apply `values` only if every column in `expected` still holds its expected value.

        expected maps column name to value; None means IS NULL. Returns True if
        the row was updated (this caller won), False otherwise.

        Column names come from our own code, never from request input.
        """
        clause = _accounts.c.id == account_id
        for column, value in expected.items():
            col = _accounts.c[column]
            clause = clause & (col.is_(None) if value is None else col == _to_db(value))
        params = {k: _to_db(v) for k, v in values.items()}
        params["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(clause).values(**params))
            conn.commit()
        return result.rowcount == 1

    def record_failed_attempt(self, account_id: int, expected_status: AccountStatus) -> int | None:
        """Atomically bump failed_attempts and return the new count.

        Returns None if the account is no longer in expected_status.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.status == expected_status.value))
                .values(failed_attempts=_accounts.c.failed_attempts + 1, updated_at=_now_iso())
            )
            if result.rowcount != 1:
                return None
            return conn.execute(
                select(_accounts.c.failed_attempts).where(_accounts.c.id == account_id)
            ).scalar()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _fetch_one(self, clause) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(clause)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        return self._fetch_one(_accounts.c.id == account_id)

    def find_by_email(self, email: str) -> Account | None:
        """Look up by email (case-insensitive: emails are stored lower-cased)."""
        return self._fetch_one(_accounts.c.email == normalize_email(email))

    def find_by_phone(self, phone: str) -> Account | None:
        return self._fetch_one(_accounts.c.phone == phone.strip())

    def find_by_identifier(self, identifier: str) -> Account | None:
        """Route an email-shaped identifier to the email column, anything else to phone."""
        if looks_like_email(identifier.strip()):
            return self.find_by_email(identifier)
        return self.find_by_phone(identifier)

    def find_by_external(self, provider: str, subject: str) -> Account | None:
        return self._fetch_one((_accounts.c.external_provider == provider) & (_accounts.c.external_subject == subject))

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT COUNT(*) FROM accounts")).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    otp = None
    if row.otp_code and row.otp_expires_at:
        otp = OTPChallenge(code=row.otp_code, expires_at=_parse_dt(row.otp_expires_at))
    return Account(
        id=row.id,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        email=row.email,
        phone=row.phone,
        external_provider=row.external_provider,
        external_subject=row.external_subject,
        signup_method=SignupMethod(row.signup_method),
        credential_hash=row.credential_hash,
        status=AccountStatus(row.status),
        otp=otp,
        role=Role(row.role),
        failed_attempts=row.failed_attempts or 0,
        blocked_at=_parse_dt(row.blocked_at),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
