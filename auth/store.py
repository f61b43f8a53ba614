"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and RefreshTokenStore are the repositories; _row_to_user /
_row_to_refresh_token are the mappers. Route and session code never touches
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Refresh token values are never persisted -- only their HMAC (see
  auth.tokens.hash_refresh_token). The UNIQUE index on token_hash is a
  backstop; uniqueness itself comes from the 384-bit random value.

Atomicity:
  The refresh_tokens table is the only mutable shared state in the system.
  Every mutation goes through create / revoke / revoke_all / rotate /
  purge_expired below. rotate() runs "revoke old, create new" inside one
  transaction, and the revoke is a conditional UPDATE (revoked_at IS NULL)
  whose rowcount decides the winner. Within one process the write lock also
  serializes writers so SQLite never sees two competing write transactions.

Revocation is a soft delete (revoked_at timestamp). find_valid() treats a
revoked or past-expiry row exactly like an absent one, except that the
raised exception says which it was (for audit logging).

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
string comparison in SQL orders them correctly.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, MetaData, String, Table, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import (
    EmailAlreadyRegistered,
    RefreshTokenAlreadyRotated,
    RefreshTokenExpired,
    RefreshTokenNotFound,
    RefreshTokenRevoked,
)
from auth.models import RefreshToken, User
from auth.tokens import generate_refresh_token, hash_refresh_token

logger = logging.getLogger("sessionguard.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("email", String(320), nullable=False, unique=True),  # normalized
    Column("hashed_password", String(60), nullable=False),  # bcrypt
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked_at", String(32)),  # NULL = live
    Column("replaced_by", String(32)),  # successor id when revoked by rotation
    Index("ix_refresh_tokens_user_id", "user_id"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(db_url: str) -> Engine:
    """Create the engine shared by UserStore and RefreshTokenStore and ensure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Identity repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_store_engine("sqlite:///auth.db")
        users = UserStore(engine)
        user_id = users.create_user(User(email="a@x.com", hashed_password=..., first_name="A", last_name="B"))
        user = users.get_by_email("A@X.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises EmailAlreadyRegistered when the normalized email is taken. The
        UNIQUE constraint decides, so two concurrent registrations for the same
        address cannot both succeed.
        """
        user_id = uuid4().hex
        email = normalize_email(user.email)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=email,
                        hashed_password=user.hashed_password,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        created_at=_iso(_utcnow()),
                    )
                )
        except IntegrityError as exc:
            raise EmailAlreadyRegistered(email) from exc
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive via normalization). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1


# ---------------------------------------------------------------------------
# Credential repository
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for refresh credentials.

    Methods that take a raw token value hash it before touching SQL. The raw
    value is returned from create() and rotate() only.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._write_lock = threading.Lock()

    def create(self, user_id: str, ttl_seconds: int) -> tuple[str, RefreshToken]:
        """Issue a new refresh credential for user_id. Returns (raw_value, record)."""
        with self._write_lock, self.engine.begin() as conn:
            raw_token, record = self._insert(conn, user_id, ttl_seconds, _utcnow())
        logger.info("Refresh token %s issued for user %s", record.id, user_id)
        return raw_token, record

    def find_valid(self, raw_token: str) -> RefreshToken:
        """Return the live record for raw_token.

        Raises:
            RefreshTokenNotFound:       no record for this value.
            RefreshTokenAlreadyRotated: value was exchanged by a previous refresh.
            RefreshTokenRevoked:        value was revoked by logout / logout-all.
            RefreshTokenExpired:        expires_at has passed.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_hash == hash_refresh_token(raw_token))
            ).fetchone()
        return _ensure_usable(row, _utcnow())

    def revoke(self, raw_token: str) -> None:
        """Revoke one live credential.

        Unknown, already-revoked and expired values all raise
        RefreshTokenNotFound -- a second revoke of the same value is a
        NotFound, never a silent success.
        """
        now = _iso(_utcnow())
        with self._write_lock, self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.token_hash == hash_refresh_token(raw_token))
                    & _refresh_tokens.c.revoked_at.is_(None)
                    & (_refresh_tokens.c.expires_at > now)
                )
                .values(revoked_at=now)
            )
        if result.rowcount == 0:
            raise RefreshTokenNotFound()

    def revoke_all(self, user_id: str) -> int:
        """Revoke every live credential owned by user_id. Returns how many were revoked."""
        now = _iso(_utcnow())
        with self._write_lock, self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & _refresh_tokens.c.revoked_at.is_(None)
                    & (_refresh_tokens.c.expires_at > now)
                )
                .values(revoked_at=now)
            )
        return result.rowcount

    def rotate(self, raw_token: str, ttl_seconds: int) -> tuple[RefreshToken, str, RefreshToken]:
        """Atomically supersede raw_token with a fresh credential for the same user.

        Returns (old_record, new_raw_value, new_record). Raises the same
        exceptions as find_valid(). When two callers race on one value, the
        conditional UPDATE lets exactly one claim it; the other gets
        RefreshTokenAlreadyRotated and the whole transaction rolls back.
        """
        now = _utcnow()
        now_iso = _iso(now)
        with self._write_lock, self.engine.begin() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_hash == hash_refresh_token(raw_token))
            ).fetchone()
            old = _ensure_usable(row, now)

            successor_id = uuid4().hex
            claimed = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.id == old.id)
                    & _refresh_tokens.c.revoked_at.is_(None)
                    & (_refresh_tokens.c.expires_at > now_iso)
                )
                .values(revoked_at=now_iso, replaced_by=successor_id)
            )
            if claimed.rowcount != 1:
                raise RefreshTokenAlreadyRotated()
            new_raw, new = self._insert(conn, old.user_id, ttl_seconds, now, token_id=successor_id)

        old.revoked_at = now_iso
        old.replaced_by = successor_id
        logger.info("Refresh token %s rotated to %s for user %s", old.id, new.id, old.user_id)
        return old, new_raw, new

    def list_active(self, user_id: str) -> list[RefreshToken]:
        """Return live credentials for user_id, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_refresh_tokens)
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & _refresh_tokens.c.revoked_at.is_(None)
                    & (_refresh_tokens.c.expires_at > _iso(_utcnow()))
                )
                .order_by(_refresh_tokens.c.issued_at.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def purge_expired(self, grace_seconds: int = 0) -> int:
        """Delete rows that expired or were revoked more than grace_seconds ago.

        Maintenance only -- validity never depends on this running, because
        lookups already treat such rows as invalid. Purging a rotated row means
        a later replay of it reports NotFound instead of AlreadyRotated.
        """
        cutoff = _iso(_utcnow() - timedelta(seconds=grace_seconds))
        with self._write_lock, self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.expires_at < cutoff) | (_refresh_tokens.c.revoked_at < cutoff)
                )
            )
        return result.rowcount

    def _insert(
        self,
        conn,
        user_id: str,
        ttl_seconds: int,
        now: datetime,
        token_id: str | None = None,
    ) -> tuple[str, RefreshToken]:
        raw_token = generate_refresh_token()
        record = RefreshToken(
            id=token_id or uuid4().hex,
            user_id=user_id,
            token_hash=hash_refresh_token(raw_token),
            issued_at=_iso(now),
            expires_at=_iso(now + timedelta(seconds=ttl_seconds)),
        )
        conn.execute(
            _refresh_tokens.insert().values(
                id=record.id,
                user_id=record.user_id,
                token_hash=record.token_hash,
                issued_at=record.issued_at,
                expires_at=record.expires_at,
            )
        )
        return raw_token, record


def _ensure_usable(row, now: datetime) -> RefreshToken:
    if row is None:
        raise RefreshTokenNotFound()
    token = _row_to_refresh_token(row)
    if token.is_rotated:
        raise RefreshTokenAlreadyRotated()
    if token.is_revoked:
        raise RefreshTokenRevoked()
    if token.expires_at <= _iso(now):
        raise RefreshTokenExpired()
    return token


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
        replaced_by=row.replaced_by,
    )
