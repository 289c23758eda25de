"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

OTP writes are conditional UPDATEs (compare-and-swap):
  - issue_otp() only overwrites a code that is missing or already expired, so
    two concurrent resend requests converge on the same code.
  - consume_otp() / reset_password_with_otp() only clear a code that still
    matches and has not expired, so two concurrent verifications cannot both
    succeed.
  The caller learns about a lost race from the return value and re-reads.

Timestamps are stored as ISO 8601 UTC strings. All writers use the same
"+00:00" offset so string comparison in SQL orders them correctly.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import Account

_DEFAULT_DB_URL = "sqlite:///authcore.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for federated-only accounts
    Column("full_name", String(255)),
    Column("phone", String(20)),
    Column("gender", String(10)),
    Column("address", Text),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("is_email_verified", Boolean, nullable=False, server_default="0"),
    Column("otp", String(12)),
    Column("otp_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore("sqlite:///authcore.db")
        account = store.create_account(Account(email="a@x.com", hashed_password=h))
        store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email (case-preserved). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: str) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        """Insert a new account and return it as stored.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers racing on a first signup should treat that as "someone else
        created it" and re-read.
        """
        if (account.otp is None) != (account.otp_expires_at is None):
            raise ValueError("otp and otp_expires_at must be set together")
        now = _now_iso()
        account_id = account.id or uuid.uuid4().hex
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=account.email,
                    hashed_password=account.hashed_password,
                    full_name=account.full_name,
                    phone=account.phone,
                    gender=account.gender,
                    address=account.address,
                    is_active=account.is_active,
                    is_email_verified=account.is_email_verified,
                    otp=account.otp,
                    otp_expires_at=_iso(account.otp_expires_at) if account.otp_expires_at else None,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        created = self.get_by_id(account_id)
        if created is None:
            raise RuntimeError(f"Account {account_id} missing after insert")
        return created

    def issue_otp(self, account_id: str, code: str, expires_at: datetime, now: datetime) -> bool:
        """Store a new OTP unless an unexpired one is already present.

        Returns True if this call wrote the code, False if another writer got
        there first (the caller should re-read and reuse the stored code).
        """
        now_iso = _iso(now)
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & (
                        _accounts.c.otp.is_(None)
                        | _accounts.c.otp_expires_at.is_(None)
                        | (_accounts.c.otp_expires_at <= now_iso)
                    )
                )
                .values(otp=code, otp_expires_at=_iso(expires_at), updated_at=now_iso)
            )
            conn.commit()
        return result.rowcount > 0

    def consume_otp(self, account_id: str, code: str, now: datetime) -> bool:
        """Clear a matching unexpired OTP and mark the email verified in one UPDATE."""
        now_iso = _iso(now)
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & (_accounts.c.otp == code)
                    & (_accounts.c.otp_expires_at > now_iso)
                )
                .values(otp=None, otp_expires_at=None, is_email_verified=True, updated_at=now_iso)
            )
            conn.commit()
        return result.rowcount > 0

    def reset_password_with_otp(self, account_id: str, code: str, hashed_password: str, now: datetime) -> bool:
        """Set a new password hash, clear the OTP and force verification in one UPDATE.

        Same compare-and-swap guard as consume_otp().
        """
        now_iso = _iso(now)
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & (_accounts.c.otp == code)
                    & (_accounts.c.otp_expires_at > now_iso)
                )
                .values(
                    hashed_password=hashed_password,
                    otp=None,
                    otp_expires_at=None,
                    is_email_verified=True,
                    updated_at=now_iso,
                )
            )
            conn.commit()
        return result.rowcount > 0

    def mark_verified(self, account_id: str) -> bool:
        """Flip is_email_verified to True (federated proof). Never flips it back."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(is_email_verified=True, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def set_active(self, account_id: str, is_active: bool) -> bool:
        """Operator kill switch. The auth core only ever reads is_active."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(is_active=is_active, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Cheap liveness probe used by the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(_accounts.select().limit(1)).fetchall()
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        full_name=row.full_name,
        phone=row.phone,
        gender=row.gender,
        address=row.address,
        is_active=bool(row.is_active),
        is_email_verified=bool(row.is_email_verified),
        otp=row.otp,
        otp_expires_at=_parse_iso(row.otp_expires_at),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
