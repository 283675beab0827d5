from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from qrguard.core.deps import get_db
from qrguard.domains.registry.schemas import (
    VehicleCreateIn,
    VehicleCreateOut,
    VehicleDeleteOut,
    VehicleOut,
    VehicleQrOut,
)
from qrguard.domains.registry.service import create_vehicle, delete_vehicle, get_vehicle, list_vehicles
from qrguard.utils.qr import alert_url, qr_png_base64


router = APIRouter(prefix="/api/users")


@router.post("", response_model=VehicleCreateOut, status_code=status.HTTP_201_CREATED)
def add_user(payload: VehicleCreateIn, db: Session = Depends(get_db)) -> VehicleCreateOut:
    record = create_vehicle(db, **payload.model_dump())
    return VehicleCreateOut(vehicle_id=record.vehicle_id, calls_left=record.calls_left)


@router.get("", response_model=list[VehicleOut])
def all_users(db: Session = Depends(get_db)) -> list[VehicleOut]:
    return [VehicleOut.model_validate(r) for r in list_vehicles(db)]


@router.get("/{vehicle_id}", response_model=VehicleOut)
def find_user(vehicle_id: str, db: Session = Depends(get_db)) -> VehicleOut:
    return VehicleOut.model_validate(get_vehicle(db, vehicle_id))


@router.delete("/{vehicle_id}", response_model=VehicleDeleteOut)
def remove_user(vehicle_id: str, db: Session = Depends(get_db)) -> VehicleDeleteOut:
    delete_vehicle(db, vehicle_id)
    return VehicleDeleteOut(vehicle_id=vehicle_id)


@router.get("/{vehicle_id}/qr", response_model=VehicleQrOut)
def user_qr(vehicle_id: str, db: Session = Depends(get_db)) -> VehicleQrOut:
    """QR sticker for the vehicle; encodes the public alert URL."""
    record = get_vehicle(db, vehicle_id)
    url = alert_url(record.vehicle_id)
    return VehicleQrOut(vehicle_id=record.vehicle_id, url=url, qr_png_base64=qr_png_base64(url))
