from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


PHONE_PATTERN = r"^\d{10}$"


class CamelModel(BaseModel):
    # The admin panel speaks camelCase (vehicleId, callsLeft, ...).
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VehicleCreateIn(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    vehicle_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=128)
    mobile_no: str = Field(pattern=PHONE_PATTERN)
    driver_name: str = Field(min_length=1, max_length=128)
    driver_no: str = Field(pattern=PHONE_PATTERN)
    vehicle_no: str = Field(min_length=1, max_length=32)
    model: str = Field(min_length=1, max_length=128)
    email: str | None = Field(default=None, max_length=254)
    # Falls back to settings.default_call_limit.
    call_limit: int | None = Field(default=None, ge=1)


class VehicleCreateOut(CamelModel):
    vehicle_id: str
    calls_left: int
    message: str = "User added successfully"


class VehicleOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    vehicle_id: str
    name: str
    mobile_no: str
    driver_name: str
    driver_no: str
    vehicle_no: str
    model: str
    email: str | None = None
    call_limit: int
    calls_left: int
    last_call_time: datetime | None = None


class VehicleDeleteOut(CamelModel):
    deleted: bool = True
    vehicle_id: str


class VehicleQrOut(CamelModel):
    vehicle_id: str
    url: str
    qr_png_base64: str
