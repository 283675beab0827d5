from datetime import datetime

from pydantic import Field

from qrguard.domains.registry.schemas import CamelModel


class CallOwnerIn(CamelModel):
    vehicle_id: str = Field(min_length=1, max_length=64)


class AlertOut(CamelModel):
    success: bool = True
    message: str
    calls_left: int
    next_reset: datetime
    channel: str
    call_id: str | None = None


class QuotaResetOut(CamelModel):
    modified_count: int
    next_reset: datetime


class HealthOut(CamelModel):
    status: str
    service: str
    next_reset: datetime
    dispatch_channels: dict
