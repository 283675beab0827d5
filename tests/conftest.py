import os

# Settings are read at import time.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("QUOTA_SCHEDULER_ENABLED", "false")
os.environ.setdefault("ALERT_DEV_MODE", "true")
os.environ.setdefault("QUOTA_TIMEZONE", "Asia/Kolkata")
os.environ.setdefault("QUOTA_RESET_HOUR", "0")
os.environ.setdefault("QUOTA_RESET_MINUTE", "0")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from qrguard.core.db import init_db, make_engine
from qrguard.core.deps import get_db, get_dispatcher, get_now
from qrguard.domains.registry.service import create_vehicle
from qrguard.main import app
from qrguard.utils.telephony import DispatchError, DispatchResult


class FakeDispatcher:
    channel = "voice"

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.error: Exception | None = None

    def dispatch(self, phone: str, message: str) -> DispatchResult:
        self.calls.append((phone, message))
        if self.error is not None:
            raise self.error
        return DispatchResult(channel=self.channel, call_id=f"call-{len(self.calls)}")

    def fail_with(self, message: str = "vendor unavailable") -> None:
        self.error = DispatchError(message, channel=self.channel)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'qrguard-test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def clock() -> Clock:
    # 12:00 IST
    return Clock(datetime(2025, 3, 10, 6, 30, tzinfo=timezone.utc))


@pytest.fixture
def client(session_factory, dispatcher, clock):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_now] = clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def vehicle_payload():
    def _payload(**overrides) -> dict:
        data = {
            "vehicleId": "MH12-QR-0001",
            "name": "Asha Patil",
            "mobileNo": "9876543210",
            "driverName": "Ravi Kumar",
            "driverNo": "9123456780",
            "vehicleNo": "MH12AB1234",
            "model": "Tata Ace",
            "email": "asha@example.com",
        }
        data.update(overrides)
        return data

    return _payload


@pytest.fixture
def make_vehicle(db):
    counter = {"n": 0}

    def _make(vehicle_id: str | None = None, *, call_limit: int | None = None, driver_no: str | None = None):
        counter["n"] += 1
        n = counter["n"]
        return create_vehicle(
            db,
            vehicle_id=vehicle_id or f"VEH-{n:04d}",
            name=f"Owner {n}",
            mobile_no=f"90000{n:05d}",
            driver_name=f"Driver {n}",
            driver_no=driver_no or f"80000{n:05d}",
            vehicle_no=f"KA01AA{n:04d}",
            model="Bajaj RE",
            call_limit=call_limit,
        )

    return _make
