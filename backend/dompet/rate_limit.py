"""Burst and daily caps on OTP issuance.

Counters live in ``otp_rate_limits`` and roll over lazily: every check first
computes the rolled-over counters from the stored row and the current time,
then decides. Nothing runs in the background.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum

from sqlalchemy.orm import Session

from .clock import as_utc, reference_zone
from .config import Settings
from .models import OtpRateLimitModel

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    DAILY_CAP = "daily_cap"
    BURST_CAP = "burst_cap"


@dataclass(frozen=True, slots=True)
class Allowed:
    remaining_daily: int


@dataclass(frozen=True, slots=True)
class Denied:
    reason: DenialReason
    retry_after_seconds: int | None
    remaining_daily: int


@dataclass(frozen=True, slots=True)
class RateLimitPolicy:
    window: timedelta = timedelta(minutes=15)
    window_limit: int = 3
    daily_limit: int = 10
    timezone: str = "Asia/Jakarta"

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitPolicy":
        return cls(
            window=settings.otp_window,
            window_limit=settings.otp_window_limit,
            daily_limit=settings.otp_daily_limit,
            timezone=settings.reference_timezone,
        )


@dataclass(frozen=True, slots=True)
class Counters:
    window_count: int
    window_start: datetime
    daily_count: int
    daily_reset_date: str


def reference_day(now: datetime, tz_name: str) -> date:
    return now.astimezone(reference_zone(tz_name)).date()


def seconds_until_next_day(now: datetime, tz_name: str) -> int:
    zone = reference_zone(tz_name)
    local = now.astimezone(zone)
    midnight = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=zone)
    return max(1, math.ceil((midnight - local).total_seconds()))


def rollover(counters: Counters, now: datetime, policy: RateLimitPolicy) -> Counters:
    """Return ``counters`` as they stand at ``now``.

    The burst window restarts once it is ``policy.window`` old; the daily count
    restarts when the reference-timezone calendar day differs from the stored one.
    The two rollovers are independent.
    """
    rolled = counters
    if now - as_utc(counters.window_start) >= policy.window:
        rolled = replace(rolled, window_count=0, window_start=now)
    today = reference_day(now, policy.timezone).isoformat()
    if counters.daily_reset_date != today:
        rolled = replace(rolled, daily_count=0, daily_reset_date=today)
    return rolled


def decide(counters: Counters, now: datetime, policy: RateLimitPolicy) -> Allowed | Denied:
    """Pure decision over already rolled-over counters."""
    if counters.daily_count >= policy.daily_limit:
        return Denied(
            reason=DenialReason.DAILY_CAP,
            retry_after_seconds=seconds_until_next_day(now, policy.timezone),
            remaining_daily=0,
        )
    remaining = policy.daily_limit - counters.daily_count
    if counters.window_count >= policy.window_limit:
        reopens_at = as_utc(counters.window_start) + policy.window
        return Denied(
            reason=DenialReason.BURST_CAP,
            retry_after_seconds=max(1, math.ceil((reopens_at - now).total_seconds())),
            remaining_daily=remaining,
        )
    # The request being admitted is counted against the daily quota.
    return Allowed(remaining_daily=remaining - 1)


@dataclass
class RateLimiter:
    policy: RateLimitPolicy = field(default_factory=RateLimitPolicy)

    def check_and_reserve(self, db: Session, identity: str, now: datetime) -> Allowed | Denied:
        """Decide and, when allowed, bump both counters inside ``db``.

        The caller owns the transaction: the reservation is flushed but not
        committed, so it lands together with the OTP write or not at all.
        """
        record = db.get(OtpRateLimitModel, identity)
        if record is None:
            stored = Counters(0, now, 0, reference_day(now, self.policy.timezone).isoformat())
        else:
            stored = Counters(
                window_count=record.window_count,
                window_start=as_utc(record.window_start),
                daily_count=record.daily_count,
                daily_reset_date=record.daily_reset_date,
            )

        current = rollover(stored, now, self.policy)
        decision = decide(current, now, self.policy)
        if isinstance(decision, Denied):
            logger.warning(
                "OTP issuance denied for %s (%s, retry in %ss)",
                identity,
                decision.reason.value,
                decision.retry_after_seconds,
            )
            return decision

        if record is None:
            record = OtpRateLimitModel(identity=identity)
            db.add(record)
        record.window_count = current.window_count + 1
        record.window_start = current.window_start
        record.daily_count = current.daily_count + 1
        record.daily_reset_date = current.daily_reset_date
        db.flush()
        return decision
