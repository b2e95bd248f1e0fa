"""
auth/store.py -- SQLAlchemy Core persistence layer for sign-in accounts.

Pattern: Repository + Data Mapper (same as rbac/store.py).
AccountStore is the repository; _row_to_account is the mapper.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are stored lower-cased so lookups are case-insensitive without a
  functional index.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Account

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'brsadmin_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("auth_id", String(64), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", Text),  # ISO 8601 timestamp of last successful sign-in
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore()
        auth_id = store.create_account(Account(email="a@b.pg", hashed_password=hash_password("secret")))
        account = store.get_by_email("a@b.pg")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def has_accounts(self) -> bool:
        """Return True if at least one account exists.

        Used by the setup redirect middleware and POST /setup to detect
        first-run state.
        """
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (result or 0) > 0

    def create_account(self, account: Account) -> str:
        """Insert a new account and return its auth_id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers (e.g. POST /setup) should catch IntegrityError as a signal
        that a concurrent request already created the record.
        """
        auth_id = account.auth_id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    auth_id=auth_id,
                    email=account.email.strip().lower(),
                    hashed_password=account.hashed_password,
                    is_active=1 if account.is_active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return auth_id

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email.strip().lower())).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_auth_id(self, auth_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.auth_id == auth_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def set_active(self, auth_id: str, is_active: bool) -> bool:
        """Enable or disable sign-in. Returns False if auth_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.auth_id == auth_id).values(is_active=1 if is_active else 0)
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, auth_id: str) -> None:
        """Stamp the current UTC timestamp as last_login after a successful sign-in."""
        with self.engine.connect() as conn:
            conn.execute(_accounts.update().where(_accounts.c.auth_id == auth_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        auth_id=row.auth_id,
        email=row.email,
        hashed_password=row.hashed_password,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login,
    )
