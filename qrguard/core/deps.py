from datetime import datetime

from qrguard.core.db import SessionLocal, utcnow
from qrguard.utils.telephony import AlertDispatcher, build_dispatcher


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_now() -> datetime:
    return utcnow()


def get_dispatcher() -> AlertDispatcher:
    return build_dispatcher()
