import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from qrguard.core.db import SessionLocal, utcnow
from qrguard.domains.alerts.quota import ResetPolicy, bulk_reset


logger = logging.getLogger(__name__)

JOB_ID = "daily-quota-reset"


def run_quota_reset() -> int:
    now = utcnow()
    db = SessionLocal()
    try:
        return bulk_reset(db, now)
    except Exception:
        logger.exception("Scheduled quota reset failed")
        raise
    finally:
        db.close()


def build_scheduler(policy: ResetPolicy) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone=policy.tz)
    scheduler.add_job(
        run_quota_reset,
        CronTrigger(hour=policy.hour, minute=policy.minute, timezone=policy.tz),
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60 * 60,
    )
    return scheduler
