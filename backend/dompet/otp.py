"""One-time passcode issuance and verification."""

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .clock import Clock, as_utc, utcnow
from .config import Settings
from .db import SessionLocal
from .errors import RecordStoreError
from .models import OtpCodeModel
from .rate_limit import Denied, RateLimiter, RateLimitPolicy

logger = logging.getLogger(__name__)


def generate_code() -> str:
    return str(secrets.randbelow(9000) + 1000)


@dataclass(frozen=True, slots=True)
class OtpIssued:
    code: str
    expires_at: datetime
    is_existing: bool
    remaining_daily: int


@dataclass(frozen=True, slots=True)
class RateLimited:
    denial: Denied

    @property
    def retry_after_seconds(self) -> int | None:
        return self.denial.retry_after_seconds

    @property
    def remaining_daily(self) -> int:
        return self.denial.remaining_daily


class OtpFailure(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    WRONG_CODE = "wrong_code"
    TOO_MANY_ATTEMPTS = "too_many_attempts"


@dataclass(frozen=True, slots=True)
class OtpValid:
    identity: str


@dataclass(frozen=True, slots=True)
class OtpInvalid:
    reason: OtpFailure
    attempts_left: int | None = None


class OtpAuthority:
    """Issues 4-digit codes behind the rate limiter and verifies them once.

    Records are kept in ``otp_codes``, one row per identity. A row is removed on
    successful verification, on expiry and when the attempt budget runs out.
    Starting a session after :class:`OtpValid` is left to the caller.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] = SessionLocal,
        clock: Clock = utcnow,
        rate_limiter: RateLimiter | None = None,
        ttl: timedelta = timedelta(minutes=5),
        max_attempts: int = 3,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._rate_limiter = rate_limiter or RateLimiter()
        self._ttl = ttl
        self._max_attempts = max_attempts
        self._code_factory = code_factory

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: sessionmaker[Session] = SessionLocal,
        clock: Clock = utcnow,
    ) -> "OtpAuthority":
        return cls(
            session_factory=session_factory,
            clock=clock,
            rate_limiter=RateLimiter(RateLimitPolicy.from_settings(settings)),
            ttl=settings.otp_ttl,
            max_attempts=settings.otp_max_attempts,
        )

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, identity: str) -> OtpIssued | RateLimited:
        now = self._clock()
        try:
            with self._session_factory() as db:
                decision = self._rate_limiter.check_and_reserve(db, identity, now)
                if isinstance(decision, Denied):
                    db.rollback()
                    return RateLimited(decision)

                record = db.get(OtpCodeModel, identity)
                if record is not None and now < as_utc(record.expires_at):
                    db.commit()
                    return OtpIssued(
                        code=record.code,
                        expires_at=as_utc(record.expires_at),
                        is_existing=True,
                        remaining_daily=decision.remaining_daily,
                    )

                if record is None:
                    record = OtpCodeModel(identity=identity)
                    db.add(record)
                record.code = self._code_factory()
                record.created_at = now
                record.expires_at = now + self._ttl
                record.attempts = 0
                record.last_attempt_at = None
                db.commit()
                logger.info("Issued OTP for %s", identity)
                return OtpIssued(
                    code=record.code,
                    expires_at=now + self._ttl,
                    is_existing=False,
                    remaining_daily=decision.remaining_daily,
                )
        except SQLAlchemyError as exc:
            logger.exception("Failed to issue OTP for %s", identity)
            raise RecordStoreError("could not issue OTP") from exc

    def verify(self, identity: str, submitted: str) -> OtpValid | OtpInvalid:
        now = self._clock()
        try:
            with self._session_factory() as db:
                record = db.get(OtpCodeModel, identity)
                if record is None:
                    return OtpInvalid(OtpFailure.NOT_FOUND)

                if now >= as_utc(record.expires_at):
                    db.delete(record)
                    db.commit()
                    return OtpInvalid(OtpFailure.EXPIRED)

                if record.attempts >= self._max_attempts:
                    db.delete(record)
                    db.commit()
                    return OtpInvalid(OtpFailure.TOO_MANY_ATTEMPTS, attempts_left=0)

                if not hmac.compare_digest(record.code.encode(), submitted.strip().encode()):
                    record.attempts += 1
                    record.last_attempt_at = now
                    if record.attempts >= self._max_attempts:
                        db.delete(record)
                        db.commit()
                        logger.warning("OTP for %s burned after %s wrong attempts", identity, self._max_attempts)
                        return OtpInvalid(OtpFailure.TOO_MANY_ATTEMPTS, attempts_left=0)
                    db.commit()
                    logger.warning("Wrong OTP for %s (attempt %s)", identity, record.attempts)
                    return OtpInvalid(
                        OtpFailure.WRONG_CODE,
                        attempts_left=self._max_attempts - record.attempts,
                    )

                db.delete(record)
                db.commit()
                logger.info("OTP verified for %s", identity)
                return OtpValid(identity)
        except SQLAlchemyError as exc:
            logger.exception("Failed to verify OTP for %s", identity)
            raise RecordStoreError("could not verify OTP") from exc
