from datetime import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from qrguard.core.deps import get_db, get_dispatcher, get_now
from qrguard.domains.alerts.quota import bulk_reset, default_policy
from qrguard.domains.alerts.schemas import AlertOut, CallOwnerIn, QuotaResetOut
from qrguard.domains.alerts.service import AlertOutcome, initiate_alert
from qrguard.utils.telephony import AlertDispatcher, exotel_say_xml


router = APIRouter(prefix="/api")


def _alert_out(outcome: AlertOutcome) -> AlertOut:
    label = "Call initiated" if outcome.channel == "voice" else "SMS sent"
    return AlertOut(
        message=label,
        calls_left=outcome.calls_left,
        next_reset=outcome.next_reset,
        channel=outcome.channel,
        call_id=outcome.call_id,
    )


@router.post("/call-owner", response_model=AlertOut)
def call_owner(
    payload: CallOwnerIn,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
) -> AlertOut:
    outcome = initiate_alert(db, vehicle_id=payload.vehicle_id, now=now, dispatcher=dispatcher)
    return _alert_out(outcome)


@router.get("/initiate-call/{vehicle_id}", response_model=AlertOut)
def initiate_call(
    vehicle_id: str,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
) -> AlertOut:
    """Target of the QR sticker on the vehicle."""
    outcome = initiate_alert(db, vehicle_id=vehicle_id, now=now, dispatcher=dispatcher)
    return _alert_out(outcome)


@router.api_route("/reset-calls", methods=["GET", "POST"], response_model=QuotaResetOut)
def reset_calls(db: Session = Depends(get_db), now: datetime = Depends(get_now)) -> QuotaResetOut:
    modified = bulk_reset(db, now)
    return QuotaResetOut(modified_count=modified, next_reset=default_policy().next_reset_time(now))


@router.get("/exotel-say")
def exotel_say(msg: str = Query(default="कोई संदेश नहीं मिला।")) -> Response:
    return Response(content=exotel_say_xml(msg), media_type="application/xml")
