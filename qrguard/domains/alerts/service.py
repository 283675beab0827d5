import logging
import re
from dataclasses import dataclass
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from qrguard.core.config import settings
from qrguard.domains.alerts.quota import (
    Reservation,
    ResetPolicy,
    default_policy,
    release_call,
    reserve_call,
    snapshot,
)
from qrguard.utils.telephony import AlertDispatcher, DispatchError


logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^\d{10}$")


@dataclass(frozen=True)
class AlertOutcome:
    calls_left: int
    next_reset: datetime
    channel: str
    call_id: str | None


def _release(db: Session, reservation: Reservation) -> None:
    # Never masks the error that triggered the release.
    try:
        release_call(db, reservation)
    except Exception:
        db.rollback()
        logger.exception("Could not release quota reservation for %s", reservation.vehicle_id)


def initiate_alert(
    db: Session,
    *,
    vehicle_id: str,
    now: datetime,
    dispatcher: AlertDispatcher,
    policy: ResetPolicy | None = None,
) -> AlertOutcome:
    """
    Alert the driver of `vehicle_id`. One call is reserved from the daily
    quota before dispatching and given back if the vendor rejects it, so a
    failed delivery never costs quota.
    """
    policy = policy or default_policy()

    snap = snapshot(db, vehicle_id)
    if not _PHONE_RE.match(snap.driver_no or ""):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "VALIDATION_ERROR", "message": "Phone number should be 10 digits"},
        )

    reservation = reserve_call(db, vehicle_id, now, policy)
    try:
        result = dispatcher.dispatch(snap.driver_no, settings.alert_message)
    except DispatchError as e:
        _release(db, reservation)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "DISPATCH_FAILURE", "message": str(e), "channel": e.channel},
        ) from e
    except Exception:
        _release(db, reservation)
        raise

    logger.info(
        "Alert sent for %s via %s (call_id=%s, calls_left=%s)",
        vehicle_id,
        result.channel,
        result.call_id,
        reservation.calls_left,
    )
    return AlertOutcome(
        calls_left=reservation.calls_left,
        next_reset=policy.next_reset_time(now),
        channel=result.channel,
        call_id=result.call_id,
    )
