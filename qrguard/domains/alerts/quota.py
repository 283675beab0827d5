"""
Daily call quota per vehicle.

A "quota day" starts at the configured reset time (hour:minute) in the
reference timezone. Quotas replenish either lazily, when an alert is
requested for a record whose last call was in an earlier quota day, or
eagerly through `bulk_reset`. Both paths share `is_new_day` and
`replenish`, so they always agree.

All writes are single conditional UPDATE statements, which keeps each
record's read-modify-write atomic without holding locks across the
vendor call.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy import case, literal, null, select, update
from sqlalchemy.orm import Session

from qrguard.core.config import settings
from qrguard.core.db import UTCDateTime, utcnow
from qrguard.domains.registry.models import VehicleRecord
from qrguard.domains.registry.service import not_found


logger = logging.getLogger(__name__)


def _aware(t: datetime) -> datetime:
    return t if t.tzinfo is not None else t.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ResetPolicy:
    tz: tzinfo
    hour: int = 0
    minute: int = 0

    @classmethod
    def from_settings(cls) -> "ResetPolicy":
        return cls(
            tz=ZoneInfo(settings.quota_timezone),
            hour=settings.quota_reset_hour,
            minute=settings.quota_reset_minute,
        )

    @property
    def offset(self) -> timedelta:
        return timedelta(hours=self.hour, minutes=self.minute)

    def quota_day(self, t: datetime) -> date:
        return (_aware(t).astimezone(self.tz) - self.offset).date()

    def is_new_day(self, last_call_time: datetime | None, now: datetime) -> bool:
        # A record that was never called has nothing to replenish.
        if last_call_time is None:
            return False
        return self.quota_day(last_call_time) < self.quota_day(now)

    def next_reset_time(self, now: datetime) -> datetime:
        now = _aware(now)
        today = now.astimezone(self.tz).date()
        at = time(self.hour, self.minute)
        candidate = datetime.combine(today, at, tzinfo=self.tz)
        if candidate <= now:
            candidate = datetime.combine(today + timedelta(days=1), at, tzinfo=self.tz)
        return candidate


def default_policy() -> ResetPolicy:
    return ResetPolicy.from_settings()


def quota_exceeded(next_reset: datetime) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "code": "QUOTA_EXCEEDED",
            "message": "Daily call limit reached for this vehicle",
            "nextReset": next_reset.isoformat(),
        },
    )


@dataclass(frozen=True)
class QuotaSnapshot:
    driver_no: str
    calls_left: int
    last_call_time: datetime | None


@dataclass(frozen=True)
class Reservation:
    vehicle_id: str
    reserved_at: datetime
    restore_last_call_time: datetime | None
    calls_left: int


def snapshot(db: Session, vehicle_id: str) -> QuotaSnapshot:
    row = db.execute(
        select(
            VehicleRecord.driver_no,
            VehicleRecord.calls_left,
            VehicleRecord.last_call_time,
        ).where(VehicleRecord.vehicle_id == vehicle_id)
    ).one_or_none()
    if row is None:
        raise not_found(vehicle_id)
    return QuotaSnapshot(
        driver_no=row.driver_no,
        calls_left=row.calls_left,
        last_call_time=row.last_call_time,
    )


def _last_call_is(observed: datetime | None):
    if observed is None:
        return VehicleRecord.last_call_time.is_(None)
    return VehicleRecord.last_call_time == observed


def replenish(db: Session, *criteria) -> int:
    """Set calls_left := call_limit on matching records; returns rows actually changed."""
    stmt = (
        update(VehicleRecord)
        .where(VehicleRecord.calls_left != VehicleRecord.call_limit, *criteria)
        .values(calls_left=VehicleRecord.call_limit)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount or 0


def bulk_reset(db: Session, now: datetime | None = None) -> int:
    modified = replenish(db)
    logger.info("Bulk quota reset at %s: %s record(s) replenished", (now or utcnow()).isoformat(), modified)
    return modified


def reserve_call(db: Session, vehicle_id: str, now: datetime, policy: ResetPolicy) -> Reservation:
    """
    Take one call off the record's quota, replenishing first if the last call
    was in an earlier quota day. Raises 404 / 429.
    """
    now = _aware(now).astimezone(timezone.utc)
    while True:
        snap = snapshot(db, vehicle_id)
        new_day = policy.is_new_day(snap.last_call_time, now)
        if new_day:
            # Guarded on last_call_time so a concurrent call made today is never undone.
            if replenish(db, VehicleRecord.vehicle_id == vehicle_id, _last_call_is(snap.last_call_time)):
                logger.info("Quota for %s replenished (new day)", vehicle_id)
            snap = snapshot(db, vehicle_id)
            new_day = policy.is_new_day(snap.last_call_time, now)

        if snap.calls_left <= 0:
            raise quota_exceeded(policy.next_reset_time(now))

        # calls_left > 0 alone keeps concurrent reservations from overdrawing.
        row = db.execute(
            update(VehicleRecord)
            .where(VehicleRecord.vehicle_id == vehicle_id, VehicleRecord.calls_left > 0)
            .values(calls_left=VehicleRecord.calls_left - 1, last_call_time=now)
            .returning(VehicleRecord.calls_left)
            .execution_options(synchronize_session=False)
        ).first()
        db.commit()
        if row is not None:
            # A last call from an earlier quota day is never restored on release:
            # that would replenish again and hand back calls made today.
            return Reservation(
                vehicle_id=vehicle_id,
                reserved_at=now,
                restore_last_call_time=now if new_day else snap.last_call_time,
                calls_left=row[0],
            )
        # Quota hit 0 between the read and the update; re-read to report it.
        logger.debug("Quota reservation for %s raced with another request; re-reading", vehicle_id)


def release_call(db: Session, reservation: Reservation) -> None:
    """Undo a reservation whose alert could not be delivered."""
    previous = reservation.restore_last_call_time
    restored = literal(previous, UTCDateTime()) if previous is not None else null()
    db.execute(
        update(VehicleRecord)
        .where(VehicleRecord.vehicle_id == reservation.vehicle_id)
        .values(
            calls_left=case(
                (VehicleRecord.calls_left + 1 > VehicleRecord.call_limit, VehicleRecord.call_limit),
                else_=VehicleRecord.calls_left + 1,
            ),
            last_call_time=case(
                (VehicleRecord.last_call_time == reservation.reserved_at, restored),
                else_=VehicleRecord.last_call_time,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("Released quota reservation for %s", reservation.vehicle_id)
