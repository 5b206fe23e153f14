"""
auth/store.py -- SQLAlchemy Core persistence layer for user credential records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and dependency code never touches SQL directly.

Index consistency:
  The id index is the primary key and the email index is a UNIQUE column on
  the same row. An email change is therefore one UPDATE statement: any reader
  sees either the old row or the new row, never a state where the id lookup
  and the email lookup disagree. Every mutation runs inside engine.begin() and
  is committed before the method returns.

  Emails are normalized (stripped, lowercased) on write and on lookup.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only bcrypt hashes are stored -- never plaintext passwords.

DB path: auth/passgate_auth.db unless AUTH_DB_URL is set.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, exists, func, literal, select
from sqlalchemy.engine import Engine

from auth.models import User

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'passgate_auth.db'}"

# Fields update() accepts. Anything else is a programming error.
_MUTABLE_FIELDS = frozenset({"email", "name", "role", "password_hash", "permissions"})

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("password_hash", Text, nullable=False),
    Column("permissions", Text),  # JSON array, NULL when unset
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers (shared with auth/sessions.py and auth/otp.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed without blocking during writes. Set
    per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_engine(db_url: str) -> Engine:
    """Create an Engine, enabling WAL and cross-thread use for SQLite URLs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records, indexed by id and by email.

    Usage:
        store = UserStore()
        store.create(User(id="", email="a@x.com", name="A", role="admin", password_hash=hash_password("s")))
        user = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        self.engine: Engine = build_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, user: User) -> User:
        """Insert a new user and return the stored record.

        An empty user.id gets a random UUID. Raises
        sqlalchemy.exc.IntegrityError if the id or email is already taken;
        callers (registration, setup, admin create) map that to 409.
        """
        now = _now_iso()
        user_id = user.id or uuid.uuid4().hex
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    name=user.name,
                    role=user.role,
                    password_hash=user.password_hash,
                    permissions=_dump_permissions(user.permissions),
                    created_at=now,
                    updated_at=now,
                )
            )
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def create_first_admin(self, user: User) -> User | None:
        """Insert user as an admin only if no admin exists yet.

        The existence check and the insert are a single INSERT ... SELECT
        WHERE NOT EXISTS statement, so two concurrent setup requests cannot
        both succeed. Returns None when an admin already exists. Raises
        IntegrityError if the email is taken by a non-admin.
        """
        now = _now_iso()
        user_id = user.id or uuid.uuid4().hex
        values = {
            "id": user_id,
            "email": normalize_email(user.email),
            "name": user.name,
            "role": "admin",
            "password_hash": user.password_hash,
            "permissions": _dump_permissions(user.permissions),
            "created_at": now,
            "updated_at": now,
        }
        source = select(*[literal(v, type_=_users.c[k].type) for k, v in values.items()]).where(
            ~exists().where(_users.c.role == "admin")
        )
        with self.engine.begin() as conn:
            result = conn.execute(_users.insert().from_select(list(values), source))
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def update(self, user_id: str, **fields) -> User | None:
        """Apply a partial update and return the new record, or None if absent.

        Accepted fields: email, name, role, password_hash, permissions.
        An email change raises sqlalchemy.exc.IntegrityError when the new
        address belongs to another user; the row is left untouched.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = dict(fields)
        if "email" in values:
            values["email"] = normalize_email(values["email"])
        if "permissions" in values:
            values["permissions"] = _dump_permissions(values["permissions"])
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def delete(self, user_id: str) -> bool:
        """Permanently delete a user. Returns True if a row was removed.

        Callers must check last-admin invariants before calling this method.
        Live sessions are the caller's concern (SessionRegistry.destroy_user_sessions).
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def has_admin(self) -> bool:
        """Return True if at least one admin record exists.

        Drives first-run setup: POST /auth/setup is only allowed while this is False.
        """
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.role == "admin").limit(1)).fetchone()
        return row is not None

    def count_admins(self) -> int:
        """Used by DELETE/PATCH /auth/users/{id} to protect the last admin."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users).where(_users.c.role == "admin")).scalar()
        return result or 0

    def list_all(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _dump_permissions(permissions: list[str] | None) -> str | None:
    return json.dumps(sorted(set(permissions))) if permissions is not None else None


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        role=row.role,
        password_hash=row.password_hash,
        permissions=json.loads(row.permissions) if row.permissions is not None else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
