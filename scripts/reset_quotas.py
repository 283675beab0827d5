#!/usr/bin/env python3
"""
Replenish every vehicle's daily call quota once.
Use this from an external cron when the in-process scheduler is disabled
(QUOTA_SCHEDULER_ENABLED=false), e.g. with several API workers.
"""

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from qrguard.core.db import SessionLocal, init_db
from qrguard.domains.alerts.quota import bulk_reset, default_policy


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--init-db", action="store_true", help="create tables before resetting")
    args = parser.parse_args(argv)

    if args.init_db:
        init_db()

    now = datetime.now(timezone.utc)
    db = SessionLocal()
    try:
        modified = bulk_reset(db, now)
    finally:
        db.close()

    print(f"Replenished {modified} vehicle(s)")
    print(f"Next scheduled reset: {default_policy().next_reset_time(now).isoformat()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
