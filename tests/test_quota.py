import threading
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from fastapi import HTTPException

from qrguard.domains.alerts.quota import (
    ResetPolicy,
    bulk_reset,
    release_call,
    reserve_call,
    snapshot,
)
from qrguard.domains.alerts.service import initiate_alert
from qrguard.utils.telephony import DispatchError, DispatchResult


IST = ZoneInfo("Asia/Kolkata")
POLICY = ResetPolicy(tz=IST, hour=1, minute=45)


def ist(*args) -> datetime:
    return datetime(*args, tzinfo=IST)


def test_next_reset_just_before_reset_is_today():
    assert POLICY.next_reset_time(ist(2025, 3, 10, 1, 44, 59)) == ist(2025, 3, 10, 1, 45)


def test_next_reset_just_after_reset_is_tomorrow():
    assert POLICY.next_reset_time(ist(2025, 3, 10, 1, 45, 1)) == ist(2025, 3, 11, 1, 45)


def test_next_reset_exactly_at_reset_rolls_forward():
    assert POLICY.next_reset_time(ist(2025, 3, 10, 1, 45)) == ist(2025, 3, 11, 1, 45)


def test_next_reset_accepts_utc_input():
    # 20:00 UTC is 01:30 IST the next day
    now = datetime(2025, 3, 9, 20, 0, tzinfo=timezone.utc)
    assert POLICY.next_reset_time(now) == ist(2025, 3, 10, 1, 45)


def test_next_reset_is_where_the_quota_day_changes():
    now = ist(2025, 3, 10, 23, 0)
    nxt = POLICY.next_reset_time(now)
    assert POLICY.quota_day(nxt) == POLICY.quota_day(now) + timedelta(days=1)
    assert POLICY.quota_day(nxt - timedelta(microseconds=1)) == POLICY.quota_day(now)


def test_is_new_day():
    assert not POLICY.is_new_day(None, ist(2025, 3, 10, 12, 0))
    # both before the reset time belong to the previous quota day
    assert not POLICY.is_new_day(ist(2025, 3, 9, 22, 0), ist(2025, 3, 10, 1, 30))
    assert POLICY.is_new_day(ist(2025, 3, 9, 22, 0), ist(2025, 3, 10, 1, 45))
    # not a rolling 24h window
    assert POLICY.is_new_day(ist(2025, 3, 10, 1, 0), ist(2025, 3, 10, 2, 0))
    assert not POLICY.is_new_day(ist(2025, 3, 10, 2, 0), ist(2025, 3, 11, 1, 0))


def test_consume_until_exhausted(db, make_vehicle):
    make_vehicle("V1", call_limit=2)
    now = ist(2025, 3, 10, 12, 0)

    assert reserve_call(db, "V1", now, POLICY).calls_left == 1
    assert reserve_call(db, "V1", now + timedelta(minutes=1), POLICY).calls_left == 0

    with pytest.raises(HTTPException) as exc:
        reserve_call(db, "V1", now + timedelta(minutes=2), POLICY)
    assert exc.value.status_code == 429
    assert exc.value.detail["code"] == "QUOTA_EXCEEDED"
    assert exc.value.detail["nextReset"] == ist(2025, 3, 11, 1, 45).isoformat()

    snap = snapshot(db, "V1")
    assert snap.calls_left == 0
    assert snap.last_call_time == (now + timedelta(minutes=1)).astimezone(timezone.utc)


def test_unknown_vehicle(db):
    with pytest.raises(HTTPException) as exc:
        reserve_call(db, "NOPE", ist(2025, 3, 10, 12, 0), POLICY)
    assert exc.value.status_code == 404


def test_new_day_replenishes_before_consuming(db, make_vehicle):
    make_vehicle("V1", call_limit=2)
    day1 = ist(2025, 3, 10, 12, 0)
    reserve_call(db, "V1", day1, POLICY)
    reserve_call(db, "V1", day1, POLICY)

    # still the same quota day just before the reset time
    with pytest.raises(HTTPException):
        reserve_call(db, "V1", ist(2025, 3, 11, 1, 44), POLICY)

    reservation = reserve_call(db, "V1", ist(2025, 3, 11, 1, 46), POLICY)
    assert reservation.calls_left == 1


def test_bulk_reset_is_idempotent(db, make_vehicle):
    make_vehicle("V1", call_limit=2)
    make_vehicle("V2", call_limit=1)
    make_vehicle("V3", call_limit=3)
    now = ist(2025, 3, 10, 12, 0)
    reserve_call(db, "V1", now, POLICY)
    reserve_call(db, "V2", now, POLICY)

    assert bulk_reset(db, now) == 2
    assert bulk_reset(db, now) == 0
    assert [snapshot(db, v).calls_left for v in ("V1", "V2", "V3")] == [2, 1, 3]


def test_lazy_and_bulk_reset_agree(db, make_vehicle):
    make_vehicle("LAZY", call_limit=2)
    make_vehicle("BULK", call_limit=2)
    day1 = ist(2025, 3, 10, 12, 0)
    day2 = ist(2025, 3, 11, 12, 0)
    for vid in ("LAZY", "BULK"):
        reserve_call(db, vid, day1, POLICY)
        reserve_call(db, vid, day1, POLICY)

    bulk_reset(db, day2)
    assert reserve_call(db, "BULK", day2, POLICY).calls_left == 1
    assert reserve_call(db, "LAZY", day2, POLICY).calls_left == 1


def test_release_restores_quota_and_last_call(db, make_vehicle):
    make_vehicle("V1", call_limit=1)
    first = ist(2025, 3, 10, 9, 0)
    reserve_call(db, "V1", first, POLICY)
    bulk_reset(db, first)

    reservation = reserve_call(db, "V1", ist(2025, 3, 10, 10, 0), POLICY)
    assert reservation.calls_left == 0
    release_call(db, reservation)

    snap = snapshot(db, "V1")
    assert snap.calls_left == 1
    assert snap.last_call_time == first.astimezone(timezone.utc)


def test_release_never_exceeds_limit(db, make_vehicle):
    make_vehicle("V1", call_limit=1)
    reservation = reserve_call(db, "V1", ist(2025, 3, 10, 10, 0), POLICY)
    bulk_reset(db)
    release_call(db, reservation)

    snap = snapshot(db, "V1")
    assert snap.calls_left == 1
    assert snap.last_call_time is None


def test_concurrent_reservations_on_last_call(session_factory, make_vehicle):
    make_vehicle("V1", call_limit=1)
    now = ist(2025, 3, 10, 12, 0)
    workers = 4
    barrier = threading.Barrier(workers)
    outcomes: list[object] = []
    lock = threading.Lock()

    def attempt():
        session = session_factory()
        try:
            barrier.wait()
            try:
                result = reserve_call(session, "V1", now, POLICY)
            except HTTPException as e:
                result = e.status_code
            with lock:
                outcomes.append(result)
        finally:
            session.close()

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    successes = [o for o in outcomes if not isinstance(o, int)]
    assert len(outcomes) == workers
    assert len(successes) == 1
    assert outcomes.count(429) == workers - 1

    verify = session_factory()
    try:
        assert snapshot(verify, "V1").calls_left == 0
    finally:
        verify.close()


class FlakyDispatcher:
    """Fails every other call; safe to share between threads."""

    channel = "voice"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.attempts = 0

    def dispatch(self, phone: str, message: str) -> DispatchResult:
        with self._lock:
            self.attempts += 1
            n = self.attempts
        if n % 2 == 0:
            raise DispatchError("vendor unavailable", channel=self.channel)
        return DispatchResult(channel=self.channel, call_id=f"call-{n}")


def _alert_concurrently(session_factory, vehicle_id, times, dispatcher) -> list[int]:
    barrier = threading.Barrier(len(times))
    outcomes: list[int] = []
    lock = threading.Lock()

    def attempt(now):
        session = session_factory()
        try:
            barrier.wait()
            try:
                initiate_alert(session, vehicle_id=vehicle_id, now=now, dispatcher=dispatcher, policy=POLICY)
                code = 200
            except HTTPException as e:
                code = e.status_code
            with lock:
                outcomes.append(code)
        finally:
            session.close()

    threads = [threading.Thread(target=attempt, args=(now,)) for now in times]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def _calls_left(session_factory, vehicle_id) -> int:
    verify = session_factory()
    try:
        return snapshot(verify, vehicle_id).calls_left
    finally:
        verify.close()


def test_concurrent_alerts_with_quota_left_never_conflict(session_factory, make_vehicle, dispatcher):
    make_vehicle("V1", call_limit=8)
    base = ist(2025, 3, 10, 12, 0)
    times = [base + timedelta(seconds=i) for i in range(16)]

    outcomes = _alert_concurrently(session_factory, "V1", times, dispatcher)

    assert len(outcomes) == 16
    assert set(outcomes) <= {200, 429}
    assert outcomes.count(200) == 8
    assert _calls_left(session_factory, "V1") == 0


def test_concurrent_alerts_on_a_new_day_use_the_fresh_quota(session_factory, make_vehicle, db, dispatcher):
    make_vehicle("V1", call_limit=3)
    for minute in range(3):
        reserve_call(db, "V1", ist(2025, 3, 9, 12, minute), POLICY)
    assert snapshot(db, "V1").calls_left == 0

    base = ist(2025, 3, 10, 12, 0)
    times = [base + timedelta(milliseconds=250 * i) for i in range(10)]
    outcomes = _alert_concurrently(session_factory, "V1", times, dispatcher)

    assert set(outcomes) <= {200, 429}
    assert outcomes.count(200) == 3
    assert _calls_left(session_factory, "V1") == 0


def test_concurrent_alerts_with_failing_dispatch_keep_quota_in_range(session_factory, make_vehicle):
    make_vehicle("V1", call_limit=5)
    base = ist(2025, 3, 10, 12, 0)
    times = [base + timedelta(seconds=i) for i in range(12)]

    outcomes = _alert_concurrently(session_factory, "V1", times, FlakyDispatcher())

    assert len(outcomes) == 12
    assert set(outcomes) <= {200, 429, 502}
    assert 502 in outcomes
    left = _calls_left(session_factory, "V1")
    assert 0 <= left <= 5
    assert left == 5 - outcomes.count(200)
