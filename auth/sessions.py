"""
auth/sessions.py -- Server-side session registry.

A session records who logged in from which browser and when. It is a
display/audit cache: authorization always re-verifies the access token, and
session presence alone never grants anything. Session lifetime is
independent of token lifetime.

Lifecycle:
  create_session()  -- login/registration; expires_at = now + ttl (24h)
  get_session()     -- returns None once now > expires_at and deletes the row;
                       otherwise stamps last_accessed
  update_session()  -- refresh re-snapshots the user
  extend_session()  -- refresh pushes expires_at to now + ttl
  destroy_session() -- logout

Expired rows are never returned as valid, whatever the sweep timing. The
sweep (purge_expired) only reclaims space; api/main.py runs it periodically.

Many sessions per user are allowed (one per device). Destroying one session
touches only that row.

Timestamps are POSIX seconds, stored as REAL, compared against an injected
clock so tests can pin time.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy import Column, Float, Index, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import Session, UserSnapshot
from auth.store import DEFAULT_DB_URL, build_engine

logger = logging.getLogger("passgate.auth.sessions")

DEFAULT_SESSION_TTL = timedelta(hours=24)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(128), primary_key=True),
    Column("user_id", String(64), nullable=False),
    Column("email", String(255), nullable=False),
    Column("name", String(255), nullable=False, server_default=""),
    Column("role", String(30), nullable=False),
    Column("created_at", Float, nullable=False),
    Column("last_accessed", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
    Index("ix_sessions_user_id", "user_id"),
)


class SessionRegistry:
    """Repository for Session records keyed by session id.

    Usage:
        registry = SessionRegistry()
        registry.create_session(generate_session_id(), UserSnapshot.from_user(user))
        session = registry.get_session(session_id)   # None once expired
        registry.destroy_session(session_id)
    """

    def __init__(
        self,
        db_url: str = DEFAULT_DB_URL,
        *,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self.engine: Engine = build_engine(db_url)
        _metadata.create_all(self.engine)

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def create_session(self, session_id: str, user: UserSnapshot) -> Session:
        """Insert a session for user, replacing any row with the same id."""
        now = self._clock()
        session = Session(
            id=session_id,
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            created_at=now,
            last_accessed=now,
            expires_at=now + self.ttl.total_seconds(),
        )
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    email=session.email,
                    name=session.name,
                    role=session.role,
                    created_at=session.created_at,
                    last_accessed=session.last_accessed,
                    expires_at=session.expires_at,
                )
            )
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Return the live session, or None if absent or expired.

        An expired row is deleted on the spot. A live row has last_accessed
        stamped; the stamp is guarded on expires_at so a concurrent expiry
        deletion is not resurrected.
        """
        now = self._clock()
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        if row is None:
            return None
        if now > row.expires_at:
            self._delete_if_expired(session_id, now)
            return None
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.expires_at >= now))
                .values(last_accessed=now)
            )
        session = _row_to_session(row)
        session.last_accessed = now
        return session

    def update_session(self, session_id: str, user: UserSnapshot) -> bool:
        """Refresh the embedded snapshot of the session's own user.

        False if the session is absent, expired, or belongs to another user.
        """
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.id == session_id)
                    & (_sessions.c.user_id == user.id)
                    & (_sessions.c.expires_at >= now)
                )
                .values(
                    user_id=user.id,
                    email=user.email,
                    name=user.name,
                    role=user.role,
                    last_accessed=now,
                )
            )
        return result.rowcount > 0

    def extend_session(self, session_id: str) -> bool:
        """Push expires_at to now + ttl. False if absent or already expired.

        An expired session is never revived.
        """
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.expires_at >= now))
                .values(expires_at=now + self.ttl.total_seconds(), last_accessed=now)
            )
        return result.rowcount > 0

    def destroy_session(self, session_id: str) -> bool:
        """Delete one session. Returns True if a row was removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
        return result.rowcount > 0

    def destroy_user_sessions(self, user_id: str) -> int:
        """Delete every session belonging to user_id. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def list_user_sessions(self, user_id: str) -> list[Session]:
        """Return the user's live sessions, newest first."""
        now = self._clock()
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at >= now))
                .order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_expired(self) -> int:
        """Delete every expired session. Returns the number of rows removed."""
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < now))
        if result.rowcount:
            logger.info("Purged %d expired sessions", result.rowcount)
        return result.rowcount

    def _delete_if_expired(self, session_id: str, now: float) -> None:
        # Guarded on expires_at: a concurrent extend must win over this delete.
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where((_sessions.c.id == session_id) & (_sessions.c.expires_at < now)))

    def close(self) -> None:
        self.engine.dispose()


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        email=row.email,
        name=row.name,
        role=row.role,
        created_at=row.created_at,
        last_accessed=row.last_accessed,
        expires_at=row.expires_at,
    )
