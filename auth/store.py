"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper.
UserStore and SessionStore are the repositories; _row_to_user /
_row_to_session are the mappers. Gateway and route code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is a UNIQUE constraint on users.email. The constraint, not
  an application-level lookup, decides which of two concurrent creates wins;
  the loser gets IntegrityError, surfaced as DuplicateEmail.

  The sessions table stores HMAC-SHA256(SECRET_KEY, token), never the token.

Failure mapping:
  IntegrityError on users insert        -> DuplicateEmail
  OperationalError / pool TimeoutError  -> StoreUnavailable (logged)

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import DuplicateEmail, StoreUnavailable
from auth.models import SessionRecord, User

logger = logging.getLogger("authgate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash or provider marker
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,  # ids are never reused, even after the newest row is gone
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("issued_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
    Column("revoked_at", Float),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str, pool_timeout: float = 10.0) -> Engine:
    """Create the engine shared by UserStore and SessionStore and ensure the schema.

    pool_timeout bounds how long a request waits for a connection. On SQLite
    there is no real pool to wait on, so the same bound becomes the driver's
    busy timeout (how long a writer waits for the database lock).
    """
    connect_args: dict = {}
    engine_kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = pool_timeout
    else:
        engine_kwargs["pool_timeout"] = pool_timeout
        engine_kwargs["pool_pre_ping"] = True
    engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    try:
        _metadata.create_all(engine)
    except (OperationalError, PoolTimeoutError) as exc:
        logger.error("Could not initialise schema at %s", engine.url.render_as_string(hide_password=True))
        raise StoreUnavailable("Database unavailable.") from exc
    return engine


@contextmanager
def _connect(engine: Engine) -> Iterator[Connection]:
    """Yield a connection, translating connectivity failures into StoreUnavailable."""
    try:
        with engine.connect() as conn:
            yield conn
    except (OperationalError, PoolTimeoutError) as exc:
        logger.error("Database error: %s", exc.__class__.__name__)
        raise StoreUnavailable("Database unavailable.") from exc


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User identities.

    Usage:
        engine = create_store_engine("sqlite:///authgate.db")
        store = UserStore(engine)
        user = store.create("Ada", "ada@example.com", hasher.hash("secret123"))
        store.find_by_email("ada@example.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with _connect(self.engine) as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with _connect(self.engine) as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def create(self, name: str, email: str, credential: str) -> User:
        """Insert a new user and return it with its assigned ID.

        Raises DuplicateEmail if the email already exists. When two requests
        race for the same email, the UNIQUE constraint lets exactly one insert
        commit; the other lands here.
        """
        created_at = _now_iso()
        try:
            with _connect(self.engine) as conn:
                result = conn.execute(
                    _users.insert().values(name=name, email=email, password=credential, created_at=created_at)
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail(email) from exc
        user_id = result.inserted_primary_key[0]
        logger.info("Created user id=%d", user_id)
        return User(id=user_id, name=name, email=email, password=credential, created_at=created_at)

    def count(self) -> int:
        """Return the number of user records."""
        with _connect(self.engine) as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0


class SessionStore:
    """Repository for server-side session rows, keyed by token hash."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def insert(self, record: SessionRecord) -> None:
        with _connect(self.engine) as conn:
            conn.execute(
                _sessions.insert().values(
                    token_hash=record.token_hash,
                    user_id=record.user_id,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                    revoked_at=record.revoked_at,
                )
            )
            conn.commit()

    def get(self, token_hash: str) -> SessionRecord | None:
        with _connect(self.engine) as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def revoke(self, token_hash: str, revoked_at: float) -> bool:
        """Stamp revoked_at on an active session.

        Returns True if a row changed. Revoking an already-revoked or unknown
        session is a no-op that returns False.
        """
        with _connect(self.engine) as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.token_hash == token_hash) & (_sessions.c.revoked_at.is_(None)))
                .values(revoked_at=revoked_at)
            )
            conn.commit()
        return result.rowcount > 0

    def purge(self, now: float) -> int:
        """Delete expired and revoked sessions. Returns number of rows removed."""
        with _connect(self.engine) as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.expires_at <= now) | (_sessions.c.revoked_at.is_not(None)))
            )
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password=row.password,
        created_at=row.created_at,
    )


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        token_hash=row.token_hash,
        user_id=row.user_id,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
    )
