from datetime import datetime, timedelta, timezone

from dompet.models import OtpRateLimitModel
from dompet.rate_limit import (
    Allowed,
    Counters,
    Denied,
    DenialReason,
    RateLimiter,
    RateLimitPolicy,
    decide,
    reference_day,
    rollover,
    seconds_until_next_day,
)

NOW = datetime(2025, 3, 10, 3, 0, tzinfo=timezone.utc)  # 10:00 WIB
POLICY = RateLimitPolicy()


def counters(window_count=0, window_start=NOW, daily_count=0, day="2025-03-10"):
    return Counters(window_count, window_start, daily_count, day)


def test_decide_allows_and_reports_remaining_after_reservation():
    assert decide(counters(), NOW, POLICY) == Allowed(remaining_daily=9)


def test_decide_burst_cap_retry_after_is_time_left_in_window():
    decision = decide(counters(window_count=3, window_start=NOW - timedelta(minutes=5), daily_count=3), NOW, POLICY)
    assert decision == Denied(DenialReason.BURST_CAP, retry_after_seconds=600, remaining_daily=7)


def test_decide_daily_cap_waits_until_local_midnight():
    decision = decide(counters(daily_count=10), NOW, POLICY)
    assert isinstance(decision, Denied)
    assert decision.reason == DenialReason.DAILY_CAP
    assert decision.remaining_daily == 0
    assert decision.retry_after_seconds == 14 * 3600


def test_daily_cap_checked_before_burst_cap():
    decision = decide(counters(window_count=3, daily_count=10), NOW, POLICY)
    assert decision.reason == DenialReason.DAILY_CAP


def test_rollover_restarts_window_once_it_is_old_enough():
    rolled = rollover(counters(window_count=3, window_start=NOW - timedelta(minutes=15), daily_count=3), NOW, POLICY)
    assert rolled.window_count == 0
    assert rolled.window_start == NOW
    assert rolled.daily_count == 3


def test_rollover_keeps_window_inside_period():
    start = NOW - timedelta(minutes=14, seconds=59)
    rolled = rollover(counters(window_count=2, window_start=start), NOW, POLICY)
    assert rolled.window_count == 2
    assert rolled.window_start == start


def test_rollover_resets_daily_count_on_new_local_day():
    rolled = rollover(counters(daily_count=10, day="2025-03-09"), NOW, POLICY)
    assert rolled.daily_count == 0
    assert rolled.daily_reset_date == "2025-03-10"


def test_reference_day_uses_reference_timezone():
    late_utc = datetime(2025, 3, 10, 17, 30, tzinfo=timezone.utc)  # 00:30 WIB next day
    assert reference_day(late_utc, "Asia/Jakarta").isoformat() == "2025-03-11"
    assert seconds_until_next_day(late_utc, "Asia/Jakarta") == 23 * 3600 + 30 * 60


def test_check_and_reserve_burst_then_window_reopens(session_factory):
    limiter = RateLimiter()
    now = NOW
    with session_factory() as db:
        results = [limiter.check_and_reserve(db, "42", now) for _ in range(4)]
        db.commit()
    assert [type(result) for result in results] == [Allowed, Allowed, Allowed, Denied]
    assert [result.remaining_daily for result in results] == [9, 8, 7, 7]
    assert results[3].reason == DenialReason.BURST_CAP

    with session_factory() as db:
        record = db.get(OtpRateLimitModel, "42")
        assert record.window_count == 3
        assert record.daily_count == 3

    with session_factory() as db:
        later = limiter.check_and_reserve(db, "42", now + timedelta(minutes=15))
        db.commit()
    assert later == Allowed(remaining_daily=6)


def test_check_and_reserve_daily_cap(session_factory):
    limiter = RateLimiter()
    outcomes = []
    with session_factory() as db:
        for window in range(4):
            moment = NOW + timedelta(minutes=15 * window)
            for _ in range(3):
                outcomes.append(limiter.check_and_reserve(db, "42", moment))
        db.commit()

    allowed = [outcome for outcome in outcomes if isinstance(outcome, Allowed)]
    assert len(allowed) == 10
    last = outcomes[-1]
    assert isinstance(last, Denied)
    assert last.reason == DenialReason.DAILY_CAP
    assert last.remaining_daily == 0

    with session_factory() as db:
        next_day = limiter.check_and_reserve(db, "42", NOW + timedelta(days=1))
        db.commit()
    assert next_day == Allowed(remaining_daily=9)


def test_identities_are_counted_separately(session_factory):
    limiter = RateLimiter()
    with session_factory() as db:
        for _ in range(3):
            limiter.check_and_reserve(db, "a", NOW)
        assert isinstance(limiter.check_and_reserve(db, "b", NOW), Allowed)
        db.commit()
