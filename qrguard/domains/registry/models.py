import uuid
from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from qrguard.core.db import Base, UTCDateTime, utcnow


class VehicleRecord(Base):
    __tablename__ = "vehicles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    vehicle_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    mobile_no: Mapped[str] = mapped_column(String, unique=True, index=True)
    driver_no: Mapped[str] = mapped_column(String, unique=True, index=True)

    name: Mapped[str] = mapped_column(String)
    driver_name: Mapped[str] = mapped_column(String)
    vehicle_no: Mapped[str] = mapped_column(String)
    model: Mapped[str] = mapped_column(String)
    email: Mapped[str | None] = mapped_column(String, nullable=True)

    # Quota state: 0 <= calls_left <= call_limit
    call_limit: Mapped[int] = mapped_column(Integer, default=1)
    calls_left: Mapped[int] = mapped_column(Integer, default=1)
    last_call_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
