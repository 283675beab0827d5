import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from qrguard.core.config import settings
from qrguard.domains.registry.models import VehicleRecord


logger = logging.getLogger(__name__)

# Checked in this order; the first collision is reported.
UNIQUE_FIELDS = (
    ("vehicle_id", "vehicleId"),
    ("mobile_no", "mobileNo"),
    ("driver_no", "driverNo"),
)


def not_found(vehicle_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "NOT_FOUND", "message": "Vehicle not found", "vehicleId": vehicle_id},
    )


def _conflict(field: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"code": "CONFLICT", "message": f"{field} already exists", "conflictField": field},
    )


def _find_conflict(db: Session, values: dict) -> str | None:
    for attr, wire_name in UNIQUE_FIELDS:
        column = getattr(VehicleRecord, attr)
        hit = db.query(VehicleRecord.id).filter(column == values[attr]).first()
        if hit is not None:
            return wire_name
    return None


def create_vehicle(
    db: Session,
    *,
    vehicle_id: str,
    name: str,
    mobile_no: str,
    driver_name: str,
    driver_no: str,
    vehicle_no: str,
    model: str,
    email: str | None = None,
    call_limit: int | None = None,
) -> VehicleRecord:
    values = {"vehicle_id": vehicle_id, "mobile_no": mobile_no, "driver_no": driver_no}
    field = _find_conflict(db, values)
    if field:
        raise _conflict(field)

    limit = call_limit or settings.default_call_limit
    record = VehicleRecord(
        vehicle_id=vehicle_id,
        name=name,
        mobile_no=mobile_no,
        driver_name=driver_name,
        driver_no=driver_no,
        vehicle_no=vehicle_no,
        model=model,
        email=email,
        call_limit=limit,
        calls_left=limit,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent insert; report whichever field now collides.
        db.rollback()
        raise _conflict(_find_conflict(db, values) or "vehicleId")
    db.refresh(record)
    logger.info("Registered vehicle %s (call_limit=%s)", record.vehicle_id, limit)
    return record


def get_vehicle(db: Session, vehicle_id: str) -> VehicleRecord:
    record = db.query(VehicleRecord).filter(VehicleRecord.vehicle_id == vehicle_id).one_or_none()
    if record is None:
        raise not_found(vehicle_id)
    return record


def list_vehicles(db: Session) -> list[VehicleRecord]:
    return db.query(VehicleRecord).order_by(VehicleRecord.created_at.asc()).all()


def delete_vehicle(db: Session, vehicle_id: str) -> None:
    record = get_vehicle(db, vehicle_id)
    db.delete(record)
    db.commit()
    logger.info("Deleted vehicle %s", vehicle_id)
