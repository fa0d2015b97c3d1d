"""
auth/store.py -- SQLAlchemy Core persistence layer for users and profiles.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_profile are the mappers.
Route and dependency code never touches SQL directly.

Invariants:
  Exactly one profile per user. create_user() inserts the user row and its
  empty profile row inside one transaction (engine.begin()), so a failure on
  either insert leaves neither behind. profiles.user_id is UNIQUE.

  users.email and users.username are UNIQUE. create_user() lets the
  IntegrityError propagate; the route layer turns it into 409.

Security:
  All queries use bound parameters. Column names passed to update_user() and
  update_profile() are checked against a whitelist before any SQL is built.

Layer rule: no imports from api/, web/, core/, or cache/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Profile, User

logger = logging.getLogger("weighttracker.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(30), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("bio", Text),
    Column("avatar_url", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_profiles = Table(
    "profiles",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False, unique=True),
    Column("current_weight", Float),
    Column("goal_weight", Float),
    Column("height", Float),
    Column("activity_level", String(20)),
    Column("gender", String(20)),
    Column("preferred_units", String(10), nullable=False, server_default="metric"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Profile columns are selected alongside the user under a "profile_" prefix so
# one LEFT OUTER JOIN returns the whole aggregate.
_PROFILE_PREFIX = "profile_"

_USER_UPDATABLE: frozenset[str] = frozenset({"username", "bio", "avatar_url", "email_verified"})
_PROFILE_UPDATABLE: frozenset[str] = frozenset(
    {"current_weight", "goal_weight", "height", "activity_level", "gender", "preferred_units"}
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _user_select():
    profile_cols = [c.label(f"{_PROFILE_PREFIX}{c.name}") for c in _profiles.c]
    return select(_users, *profile_cols).select_from(
        _users.outerjoin(_profiles, _profiles.c.user_id == _users.c.id)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Profile entities.

    Usage:
        store = UserStore("sqlite:///weight_tracker.db")
        user = store.create_user(User(email="a@b.co", username="alice", password_hash=hash_password("secret")))
        same = store.get_by_email("a@b.co")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a user and its empty profile in one transaction.

        Returns the stored aggregate (with generated id and timestamps).
        Raises sqlalchemy.exc.IntegrityError if the email or username already
        exists; nothing is written in that case.
        """
        user_id = _new_id()
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    username=user.username,
                    password_hash=user.password_hash,
                    email_verified=user.email_verified,
                    bio=user.bio,
                    avatar_url=user.avatar_url,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.execute(
                _profiles.insert().values(
                    id=_new_id(),
                    user_id=user_id,
                    preferred_units="metric",
                    created_at=now,
                    updated_at=now,
                )
            )
        created = self.get_by_id(user_id)
        if created is None:
            raise RuntimeError(f"User {user_id} missing after insert")
        return created

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable account fields (username, bio, avatar_url, email_verified).

        Unknown field names raise ValueError. Returns True if a row was
        updated, False if user_id was not found. Raises IntegrityError on a
        username collision.
        """
        unknown = set(fields) - _USER_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    def update_profile(self, user_id: str, **fields) -> bool:
        """Update profile attributes for the given user.

        Unknown field names raise ValueError. Returns True if the profile row
        was updated, False if the user has no profile (user not found).
        """
        unknown = set(fields) - _PROFILE_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        with self.engine.begin() as conn:
            result = conn.execute(
                _profiles.update().where(_profiles.c.user_id == user_id).values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user (with profile) by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user (with profile) by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user (with profile) by exact username. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_conflict(self, email: str, username: str) -> User | None:
        """Return any user holding the given email OR username, else None.

        Registration pre-check. The UNIQUE constraints remain the real guard
        against concurrent duplicates.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _user_select().where(or_(_users.c.email == email, _users.c.username == username)).limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_profile(mapping) -> Profile | None:
    if mapping.get(f"{_PROFILE_PREFIX}id") is None:
        return None
    return Profile(
        id=mapping[f"{_PROFILE_PREFIX}id"],
        user_id=mapping[f"{_PROFILE_PREFIX}user_id"],
        current_weight=mapping[f"{_PROFILE_PREFIX}current_weight"],
        goal_weight=mapping[f"{_PROFILE_PREFIX}goal_weight"],
        height=mapping[f"{_PROFILE_PREFIX}height"],
        activity_level=mapping[f"{_PROFILE_PREFIX}activity_level"],
        gender=mapping[f"{_PROFILE_PREFIX}gender"],
        preferred_units=mapping[f"{_PROFILE_PREFIX}preferred_units"],
        created_at=mapping[f"{_PROFILE_PREFIX}created_at"],
        updated_at=mapping[f"{_PROFILE_PREFIX}updated_at"],
    )


def _row_to_user(row) -> User:
    mapping = row._mapping
    return User(
        id=mapping["id"],
        email=mapping["email"],
        username=mapping["username"],
        password_hash=mapping["password_hash"],
        email_verified=bool(mapping["email_verified"]),
        bio=mapping["bio"],
        avatar_url=mapping["avatar_url"],
        created_at=mapping["created_at"],
        updated_at=mapping["updated_at"],
        profile=_row_to_profile(mapping),
    )
