"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials and roles.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_credential is the mapper.
The auth service never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(username) and UNIQUE(email) are the authoritative guard against
  duplicate accounts. The service's pre-insert lookup is an optimisation;
  two concurrent registrations that both pass it still collide here and
  insert_user() raises IntegrityError for the loser.

  increment_failed_attempts() is a single UPDATE ... SET n = n + 1, so
  concurrent wrong-password attempts never lose an increment.

Timeouts: SQLite connections wait at most db_timeout seconds on a locked
database before raising OperationalError; other backends bound pool checkout
by the same value.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import Role, UserCredential
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("role_id", Integer, primary_key=True),
    Column("role_name", String(50), nullable=False, unique=True),
)

_users = Table(
    "users",
    _metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("full_name", String(255)),
    Column("phone_number", String(32)),
    Column("role_id", Integer, nullable=False, server_default="1"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("last_login", String(32)),  # ISO 8601 timestamp of last successful login
    Column("created_at", String(32), nullable=False),
)

# Reference roles every deployment needs. Seeded on startup if missing.
_SEED_ROLES: tuple[Role, ...] = (Role(id=1, name="user"), Role(id=2, name="admin"))


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases silently keep "memory".
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_engine(db_url: str, timeout: float) -> Engine:
    """Create an engine with a bounded wait on locks / pool checkout."""
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": timeout})
        event.listen(engine, "connect", _set_wal_mode)
        return engine
    return create_engine(db_url, pool_timeout=timeout, pool_pre_ping=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _user_with_role():
    """SELECT users.*, roles.role_name FROM users LEFT JOIN roles."""
    return select(_users, _roles.c.role_name).select_from(
        _users.outerjoin(_roles, _users.c.role_id == _roles.c.role_id)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for UserCredential and Role records.

    Usage:
        store = CredentialStore()
        user_id = store.insert_user(UserCredential(username="alice", email="a@example.com",
                                                   password_hash=hash_password("secret")))
        user = store.find_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str | None = None, timeout: float | None = None) -> None:
        settings = get_settings()
        self.engine: Engine = build_engine(
            db_url or settings.database_url,
            timeout if timeout is not None else settings.db_timeout_seconds,
        )
        _metadata.create_all(self.engine)
        self._ensure_roles()

    def _ensure_roles(self) -> None:
        """Insert any missing reference roles. Idempotent -- safe on every startup."""
        with self.engine.connect() as conn:
            existing = set(conn.execute(select(_roles.c.role_id)).scalars())
            missing = [r for r in _SEED_ROLES if r.id not in existing]
            if missing:
                conn.execute(_roles.insert(), [{"role_id": r.id, "role_name": r.name} for r in missing])
                conn.commit()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> UserCredential | None:
        """Look up a user by exact username (case-sensitive), role name joined.

        Returns None if not found.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_user_with_role().where(_users.c.username == username)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def find_by_id(self, user_id: int) -> UserCredential | None:
        """Look up a user by primary key, role name joined. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_with_role().where(_users.c.user_id == user_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def find_by_username_or_email(self, username: str, email: str) -> list[UserCredential]:
        """Return every user whose username OR email matches -- at most two rows.

        One query answers both uniqueness questions for registration. The
        caller decides precedence between the two kinds of collision.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                _user_with_role().where(or_(_users.c.username == username, _users.c.email == email)).limit(2)
            ).fetchall()
        return [_row_to_credential(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_user(self, user: UserCredential) -> int:
        """Insert a new user and return its generated user_id.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. The auth service treats that as a registration conflict.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    password_hash=user.password_hash,
                    full_name=user.full_name,
                    phone_number=user.phone_number,
                    role_id=user.role_id if user.role_id is not None else get_settings().default_role_id,
                    is_active=1 if user.is_active else 0,
                    failed_login_attempts=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def increment_failed_attempts(self, user_id: int) -> None:
        """Add one to the failed-login counter in a single atomic UPDATE."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.user_id == user_id)
                .values(failed_login_attempts=_users.c.failed_login_attempts + 1)
            )
            conn.commit()

    def record_successful_login(self, user_id: int) -> None:
        """Reset the failed-login counter and stamp last_login with the current UTC time."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.user_id == user_id)
                .values(failed_login_attempts=0, last_login=_now_iso())
            )
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> UserCredential:
    return UserCredential(
        id=row.user_id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        role_id=row.role_id,
        role_name=row.role_name,
        full_name=row.full_name,
        phone_number=row.phone_number,
        is_active=bool(row.is_active),
        failed_login_attempts=row.failed_login_attempts or 0,
        last_login=row.last_login,
        created_at=row.created_at,
    )
