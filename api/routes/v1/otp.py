"""
api/routes/v1/otp.py -- One-time passcode endpoints.

Routes:
  POST /api/v1/otp/store    -- record a code for a phone number (replaces any pending one)
  POST /api/v1/otp/verify   -- check a code; success consumes the record

Outcome mapping for /otp/verify:
  VERIFIED           -> 200
  NOT_FOUND          -> 404 not_found
  EXPIRED            -> 400 otp_expired            (record deleted)
  TOO_MANY_ATTEMPTS  -> 400 otp_attempts_exceeded  (record deleted)
  INVALID            -> 400 otp_invalid            (attempt counted)

Both routes are rate-limited by OTP_RATE_LIMIT per IP on top of the
per-code attempt limit enforced by OtpLedger.

Codes are never logged.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from api.limiter import limiter, otp_limit
from api.models import MessageResponse, OtpStoreRequest, OtpVerifyRequest
from auth.errors import AttemptLimitError, NotFoundError, ValidationError
from auth.otp import OtpLedger, OtpOutcome

logger = logging.getLogger("passgate.api.otp")

router = APIRouter()


@limiter.limit(otp_limit)
@router.post("/otp/store", response_model=MessageResponse)
def store_otp(request: Request, body: OtpStoreRequest) -> MessageResponse:
    """Store a code with its absolute expiry time."""
    ledger: OtpLedger = request.app.state.otp_ledger
    ledger.store(body.phone_number, body.otp, body.expiry_timestamp())
    return MessageResponse(message="OTP stored.")


@limiter.limit(otp_limit)
@router.post("/otp/verify", response_model=MessageResponse)
def verify_otp(request: Request, body: OtpVerifyRequest) -> MessageResponse:
    """Verify a code. Expiry is checked before the code is compared."""
    ledger: OtpLedger = request.app.state.otp_ledger
    outcome = ledger.verify(body.phone_number, body.otp)

    if outcome is OtpOutcome.VERIFIED:
        return MessageResponse(message="OTP verified.")
    if outcome is OtpOutcome.NOT_FOUND:
        raise NotFoundError("No OTP found for this phone number.")
    if outcome is OtpOutcome.EXPIRED:
        raise ValidationError("OTP has expired.", code="otp_expired")
    if outcome is OtpOutcome.TOO_MANY_ATTEMPTS:
        raise AttemptLimitError("Too many failed attempts. Request a new OTP.")
    raise ValidationError("Invalid OTP.", code="otp_invalid")
