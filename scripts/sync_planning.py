"""
Run the planning -> timesheet synchronizer from the command line.

Usage:
    python scripts/sync_planning.py [--week 2025-S10] [--tenant UUID] [--respect-hour] [--triggered-by ID]

Runs in manual mode and ignores the scheduler hour unless --respect-hour is given.
Prints the run report as JSON and exits with status 1 when the run fails.
"""
import sys
import os
import json
import uuid
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from crewhub.db import SessionLocal
from crewhub.logging import setup_logging
from crewhub.services.planning_sync import PlanningSyncError, run_planning_sync


def sync_planning(week=None, tenant=None, respect_hour=False, triggered_by=None) -> int:
    db = SessionLocal()
    try:
        outcome = run_planning_sync(
            db,
            execution_mode="manual",
            triggered_by=triggered_by or "cli",
            force=not respect_hour,
            week_override=week,
            tenant_id=tenant,
        )
    except PlanningSyncError as e:
        print(json.dumps({"error": str(e), "run_id": str(e.run_id) if e.run_id else None}))
        return 1
    finally:
        db.close()

    if outcome.skipped:
        print(json.dumps({"message": "Not target hour", "skipped": True}))
        return 0
    print(json.dumps({
        "success": True,
        "semaine": outcome.week_id,
        "stats": outcome.stats.as_dict(),
        "duration_ms": outcome.duration_ms,
        "skipped_tenants": outcome.skipped_tenants,
        "results": outcome.report.results_as_dicts(),
    }, indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(description="Synchronize validated weekly plans into timesheets")
    parser.add_argument("--week", help="Week to synchronize (YYYY-Sww), defaults to the current Paris week")
    parser.add_argument("--tenant", type=uuid.UUID, help="Only this tenant, even if its plan is not validated")
    parser.add_argument("--respect-hour", action="store_true", help="Skip unless it is the scheduler target hour")
    parser.add_argument("--triggered-by", help="Recorded in the run history")

    args = parser.parse_args()
    setup_logging()

    sys.exit(sync_planning(
        week=args.week,
        tenant=args.tenant,
        respect_hour=args.respect_hour,
        triggered_by=args.triggered_by,
    ))


if __name__ == "__main__":
    main()
