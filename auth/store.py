"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_account / _row_to_token / _row_to_audit are the mappers. The
orchestrator and its components never touch SQL directly.

Atomicity:
  Every method that must be race-free is a single conditional statement or a
  single engine.begin() transaction:

  consume_token()        UPDATE ... WHERE used = 0 AND expires_at > :now.
                         Two concurrent redemptions of the same token both run
                         the UPDATE; exactly one sees rowcount == 1.
  record_login_failure() counter increment and lock window written in one
                         UPDATE using column arithmetic, so concurrent bad
                         passwords cannot under-count.
  apply_password_reset() password change, reset-record deletion and refresh
                         revocation commit together or not at all.

  Single-row writes commit immediately. A client that disconnects after a
  failed login still leaves the failure counted.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness applies to live accounts only: a partial unique index
  WHERE deleted_at IS NULL lets a soft-deleted email be registered again.

Timestamps are ISO-8601 UTC strings with fixed microsecond precision, so
string comparison in SQL orders them chronologically.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import (
    Account,
    AccountStatus,
    AuditEvent,
    AuditOutcome,
    Role,
    TokenKind,
    TokenRecord,
)
from core.config import get_settings

logger = logging.getLogger("setuauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("full_name", String(100), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), nullable=False),
    Column("status", String(40), nullable=False),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("deleted_at", String(32)),
)

Index(
    "uq_accounts_email_live",
    _accounts.c.email,
    unique=True,
    sqlite_where=_accounts.c.deleted_at.is_(None),
    postgresql_where=_accounts.c.deleted_at.is_(None),
)

_auth_tokens = Table(
    "auth_tokens",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("account_id", String(32), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("kind", String(20), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("used_at", String(32)),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(32)),
    Column("action", String(50), nullable=False),
    Column("resource", String(50), nullable=False),
    Column("status", String(10), nullable=False),
    Column("details", Text),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
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


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for Account, TokenRecord and AuditEvent entities.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        account_id = store.create_account(account)
        account = store.get_account_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(text("SELECT 1")).scalar() == 1
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account, now: datetime | None = None) -> str:
        """Insert a new account and return its id.

        Raises sqlalchemy.exc.IntegrityError if a live account already uses
        the email. Callers check first and treat IntegrityError as the signal
        that a concurrent signup won the race.
        """
        stamp = _iso(now or _now())
        account_id = account.id or new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=account.email,
                    full_name=account.full_name,
                    password_hash=account.password_hash,
                    role=Role(account.role).value,
                    status=AccountStatus(account.status).value,
                    email_verified=1 if account.email_verified else 0,
                    login_attempts=0,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return account_id

    def get_account(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_email(self, email: str) -> Account | None:
        """Look up the live (not soft-deleted) account for an already-normalized email."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c.email == email) & _accounts.c.deleted_at.is_(None))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def record_login_failure(
        self, account_id: str, threshold: int, lock_until: datetime, now: datetime
    ) -> Account | None:
        """Atomically count one failed login and start a lockout at the threshold.

        The SET clause reads the pre-update counter, so the CASE compares the
        incremented value without a separate read. The counter is left as is
        when the lock starts.
        """
        next_count = _accounts.c.login_attempts + 1
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    login_attempts=next_count,
                    locked_until=case(
                        (next_count >= threshold, _iso(lock_until)),
                        else_=_accounts.c.locked_until,
                    ),
                    updated_at=_iso(now),
                )
            )
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def record_login_success(self, account_id: str, now: datetime) -> Account | None:
        """Reset the failure counter, clear any lock, and stamp last_login."""
        stamp = _iso(now)
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(login_attempts=0, locked_until=None, last_login=stamp, updated_at=stamp)
            )
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_status(self, account_id: str, status: AccountStatus, now: datetime | None = None) -> bool:
        """Change an account's status. DELETED also stamps deleted_at (soft delete).

        Returns True if a row was updated, False if account_id was not found.
        """
        stamp = _iso(now or _now())
        values: dict = {"status": AccountStatus(status).value, "updated_at": stamp}
        if status is AccountStatus.DELETED:
            values["deleted_at"] = stamp
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Opaque token records
    # ------------------------------------------------------------------

    def insert_token(self, record: TokenRecord, now: datetime | None = None) -> str:
        """Insert a token record and return its id. The record carries only the hash."""
        record_id = record.id or new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _auth_tokens.insert().values(
                    id=record_id,
                    account_id=record.account_id,
                    token_hash=record.token_hash,
                    kind=TokenKind(record.kind).value,
                    expires_at=_iso(record.expires_at),
                    used=0,
                    ip_address=record.ip_address,
                    user_agent=record.user_agent,
                    created_at=_iso(now or _now()),
                )
            )
            conn.commit()
        return record_id

    def get_token_by_hash(self, token_hash: str, kind: TokenKind) -> TokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _auth_tokens.select().where(
                    (_auth_tokens.c.token_hash == token_hash) & (_auth_tokens.c.kind == TokenKind(kind).value)
                )
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def get_token(self, record_id: str) -> TokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_auth_tokens.select().where(_auth_tokens.c.id == record_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def consume_token(self, token_hash: str, kind: TokenKind, now: datetime) -> TokenRecord | None:
        """Check-and-set: flip an unused, unexpired record to used in one statement.

        Returns the consumed record, or None if nothing matched (unknown,
        already used, or expired). The caller classifies None by reading
        the record back with get_token_by_hash().
        """
        stamp = _iso(now)
        with self.engine.begin() as conn:
            result = conn.execute(
                _auth_tokens.update()
                .where(
                    (_auth_tokens.c.token_hash == token_hash)
                    & (_auth_tokens.c.kind == TokenKind(kind).value)
                    & (_auth_tokens.c.used == 0)
                    & (_auth_tokens.c.expires_at > stamp)
                )
                .values(used=1, used_at=stamp)
            )
            if result.rowcount != 1:
                return None
            row = conn.execute(_auth_tokens.select().where(_auth_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_token(row)

    def mark_token_used(self, record_id: str, now: datetime) -> bool:
        """Flip one record to used. Returns False if it was already used (or absent)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _auth_tokens.update()
                .where((_auth_tokens.c.id == record_id) & (_auth_tokens.c.used == 0))
                .values(used=1, used_at=_iso(now))
            )
            conn.commit()
        return result.rowcount == 1

    def revoke_tokens(self, account_id: str, kind: TokenKind, now: datetime) -> int:
        """Mark every unused record of one kind for an account as used. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _auth_tokens.update()
                .where(
                    (_auth_tokens.c.account_id == account_id)
                    & (_auth_tokens.c.kind == TokenKind(kind).value)
                    & (_auth_tokens.c.used == 0)
                )
                .values(used=1, used_at=_iso(now))
            )
            conn.commit()
        return result.rowcount

    def list_tokens(self, account_id: str, kind: TokenKind | None = None) -> list[TokenRecord]:
        """Return an account's token records, oldest first."""
        stmt = _auth_tokens.select().where(_auth_tokens.c.account_id == account_id)
        if kind is not None:
            stmt = stmt.where(_auth_tokens.c.kind == TokenKind(kind).value)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_auth_tokens.c.created_at)).fetchall()
        return [_row_to_token(r) for r in rows]

    def apply_password_reset(
        self, account_id: str, password_hash: str, reset_record_id: str, now: datetime
    ) -> None:
        """Change the password, drop the consumed reset record, revoke all refresh tokens.

        One transaction: a crash part-way leaves the old password and the old
        refresh tokens exactly as they were.
        """
        stamp = _iso(now)
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(password_hash=password_hash, updated_at=stamp)
            )
            conn.execute(_auth_tokens.delete().where(_auth_tokens.c.id == reset_record_id))
            conn.execute(
                _auth_tokens.update()
                .where(
                    (_auth_tokens.c.account_id == account_id)
                    & (_auth_tokens.c.kind == TokenKind.REFRESH.value)
                    & (_auth_tokens.c.used == 0)
                )
                .values(used=1, used_at=stamp)
            )

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def append_audit(self, audit_event: AuditEvent) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _audit_logs.insert().values(
                    account_id=audit_event.account_id,
                    action=audit_event.action,
                    resource=audit_event.resource,
                    status=AuditOutcome(audit_event.outcome).value,
                    details=audit_event.details,
                    ip_address=audit_event.ip_address,
                    user_agent=audit_event.user_agent,
                    created_at=_iso(audit_event.created_at or _now()),
                )
            )
            conn.commit()

    def list_audit(self, account_id: str | None = None) -> list[AuditEvent]:
        """Return audit events in insertion order, optionally for one account."""
        stmt = _audit_logs.select()
        if account_id is not None:
            stmt = stmt.where(_audit_logs.c.account_id == account_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_audit_logs.c.id)).fetchall()
        return [_row_to_audit(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        password_hash=row.password_hash,
        role=Role(row.role),
        status=AccountStatus(row.status),
        email_verified=bool(row.email_verified),
        login_attempts=row.login_attempts,
        locked_until=_parse(row.locked_until),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
        last_login=_parse(row.last_login),
        deleted_at=_parse(row.deleted_at),
    )


def _row_to_token(row) -> TokenRecord:
    return TokenRecord(
        id=row.id,
        account_id=row.account_id,
        token_hash=row.token_hash,
        kind=TokenKind(row.kind),
        expires_at=_parse(row.expires_at),
        used=bool(row.used),
        used_at=_parse(row.used_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=_parse(row.created_at),
    )


def _row_to_audit(row) -> AuditEvent:
    return AuditEvent(
        account_id=row.account_id,
        action=row.action,
        resource=row.resource,
        outcome=AuditOutcome(row.status),
        details=row.details,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=_parse(row.created_at),
    )
