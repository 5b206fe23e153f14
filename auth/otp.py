"""
auth/otp.py -- One-time passcode ledger with attempt limiting and expiry.

State machine per phone number:

  absent  --store(code, expires_at)-->  pending(attempts=0)
  pending --verify, now > expiry------>  deleted    EXPIRED   (checked first)
  pending --verify, code matches------>  deleted    VERIFIED
  pending --verify, mismatch---------->  pending(attempts + 1)  INVALID
  pending --verify, mismatch at limit->  deleted    TOO_MANY_ATTEMPTS
  absent  --verify-------------------->  NOT_FOUND

store() on a phone with a pending record replaces it (no queueing). With the
default limit of 3 an attacker gets at most 3 guesses per issued code.

Concurrency:
  Every store() stamps a random issue_id. Each transition is one conditional
  statement guarded on (phone_number, issue_id[, attempts]) as read, so two
  racing verifications cannot both consume a code and cannot lose an attempt
  increment. The loser re-reads the row and re-evaluates. A consumed record
  is deleted in the same statement that decides success -- it is never left
  behind in a "verified" state.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from collections.abc import Callable
from enum import Enum

from sqlalchemy import Boolean, Column, Float, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import OtpRecord
from auth.store import DEFAULT_DB_URL, build_engine

logger = logging.getLogger("passgate.auth.otp")

DEFAULT_MAX_ATTEMPTS = 3

# Re-reads allowed after losing a conditional write to a concurrent request.
_RACE_RETRIES = 5

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_otps = Table(
    "otps",
    _metadata,
    Column("phone_number", String(32), primary_key=True),
    Column("issue_id", String(32), nullable=False),
    Column("code", String(32), nullable=False),
    Column("expires_at", Float, nullable=False),
    Column("created_at", Float, nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("verified", Boolean, nullable=False, server_default="0"),
)


class OtpOutcome(str, Enum):
    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    INVALID = "invalid"


class OtpLedger:
    """Repository for pending OTP records keyed by phone number.

    Usage:
        ledger = OtpLedger()
        ledger.store("+911234567890", "1234", time.time() + 300)
        outcome = ledger.verify("+911234567890", "1234")   # OtpOutcome.VERIFIED
    """

    def __init__(
        self,
        db_url: str = DEFAULT_DB_URL,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._clock = clock
        self.engine: Engine = build_engine(db_url)
        _metadata.create_all(self.engine)

    def store(self, phone_number: str, code: str, expires_at: float) -> OtpRecord:
        """Record a new pending code, overwriting any existing one for the phone."""
        now = self._clock()
        record = OtpRecord(phone_number=phone_number, code=code, expires_at=expires_at, created_at=now)
        with self.engine.begin() as conn:
            conn.execute(_otps.delete().where(_otps.c.phone_number == phone_number))
            conn.execute(
                _otps.insert().values(
                    phone_number=phone_number,
                    issue_id=secrets.token_hex(16),
                    code=code,
                    expires_at=expires_at,
                    created_at=now,
                    attempts=0,
                    verified=False,
                )
            )
        return record

    def get(self, phone_number: str) -> OtpRecord | None:
        """Return the pending record, or None if absent or expired (expired rows are deleted)."""
        row = self._read(phone_number)
        if row is None:
            return None
        if self._clock() > row.expires_at:
            self._delete_issue(phone_number, row.issue_id)
            return None
        return _row_to_record(row)

    def verify(self, phone_number: str, code: str) -> OtpOutcome:
        """Advance the state machine for one verification attempt."""
        for _ in range(_RACE_RETRIES):
            row = self._read(phone_number)
            if row is None:
                return OtpOutcome.NOT_FOUND

            if self._clock() > row.expires_at:
                if self._delete_issue(phone_number, row.issue_id):
                    return OtpOutcome.EXPIRED
                continue

            if hmac.compare_digest(row.code.encode("utf-8"), code.encode("utf-8")):
                if self._delete_issue(phone_number, row.issue_id):
                    return OtpOutcome.VERIFIED
                continue

            attempts = row.attempts + 1
            guard = (
                (_otps.c.phone_number == phone_number)
                & (_otps.c.issue_id == row.issue_id)
                & (_otps.c.attempts == row.attempts)
            )
            with self.engine.begin() as conn:
                if attempts >= self.max_attempts:
                    result = conn.execute(_otps.delete().where(guard))
                else:
                    result = conn.execute(_otps.update().where(guard).values(attempts=attempts))
            if result.rowcount == 0:
                continue
            if attempts >= self.max_attempts:
                logger.warning("OTP locked out after %d failed attempts", attempts)
                return OtpOutcome.TOO_MANY_ATTEMPTS
            return OtpOutcome.INVALID

        # Every read lost a race to a concurrent request. The record this
        # caller saw no longer exists in that form.
        return OtpOutcome.NOT_FOUND

    def purge_expired(self) -> int:
        """Delete every expired OTP record. Returns the number of rows removed."""
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(_otps.delete().where(_otps.c.expires_at < now))
        if result.rowcount:
            logger.info("Purged %d expired OTP records", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()

    def _read(self, phone_number: str):
        with self.engine.connect() as conn:
            return conn.execute(_otps.select().where(_otps.c.phone_number == phone_number)).fetchone()

    def _delete_issue(self, phone_number: str, issue_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _otps.delete().where((_otps.c.phone_number == phone_number) & (_otps.c.issue_id == issue_id))
            )
        return result.rowcount > 0


def _row_to_record(row) -> OtpRecord:
    return OtpRecord(
        phone_number=row.phone_number,
        code=row.code,
        expires_at=row.expires_at,
        created_at=row.created_at,
        attempts=row.attempts,
        verified=bool(row.verified),
    )
