"""
Ghost timesheets for workers on long-term absence.

A ghost timesheet has no job site and is created already sent to HR so payroll
sees the absence without any crew validation step.
"""
from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import date
from typing import Dict, List

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.models import LongTermAbsence, Worker, STATUS_SENT_TO_HR
from .sync_report import SyncReport, ACTION_CREATED
from .timesheets import get_or_create_timesheet, get_site_timesheet, upsert_timesheet_day
from .weeks import week_bounds, working_days

logger = structlog.get_logger(__name__)


def absent_days_by_worker(db: Session, tenant_id: uuid.UUID, week_id: str) -> Dict[uuid.UUID, Dict[date, str]]:
    """Working days of the week covered by a long-term absence, per worker, with the absence type."""
    monday, friday = week_bounds(week_id)
    absences = (
        db.query(LongTermAbsence)
        .filter(
            LongTermAbsence.tenant_id == tenant_id,
            LongTermAbsence.start_date <= friday,
            or_(LongTermAbsence.end_date.is_(None), LongTermAbsence.end_date >= monday),
        )
        .order_by(LongTermAbsence.start_date)
        .all()
    )
    covered: Dict[uuid.UUID, Dict[date, str]] = defaultdict(dict)
    week_days = working_days(week_id)
    for absence in absences:
        for day in week_days:
            if day < absence.start_date:
                continue
            if absence.end_date is not None and day > absence.end_date:
                continue
            # First absence starting on a day keeps it
            covered[absence.worker_id].setdefault(day, absence.absence_type)
    return dict(covered)


def create_absence_timesheets(db: Session, tenant_id: uuid.UUID, week_id: str, report: SyncReport) -> List[uuid.UUID]:
    """
    Create the ghost timesheet of every worker on long-term absence this week.
    Existing ghosts are left as they are.

    Returns:
        Ids of the created timesheets
    """
    created_ids = []
    covered = absent_days_by_worker(db, tenant_id, week_id)
    if not covered:
        return created_ids

    workers = {w.id: w for w in db.query(Worker).filter(Worker.id.in_(list(covered)))}
    for worker_id in sorted(covered, key=str):
        if get_site_timesheet(db, worker_id, None, week_id) is not None:
            continue
        days = covered[worker_id]
        sheet, _ = get_or_create_timesheet(
            db, tenant_id, worker_id, None, week_id, supervisor_id=None, status=STATUS_SENT_TO_HR,
        )
        for day, absence_type in sorted(days.items()):
            upsert_timesheet_day(db, sheet.id, day, {
                "hours": 0.0,
                "normal_hours": 0.0,
                "day_total": 0.0,
                "absence_type": absence_type,
                "travel_count": 0,
                "meal_allowance": False,
            })
        db.commit()
        created_ids.append(sheet.id)

        worker = workers.get(worker_id)
        name = worker.display_name if worker else str(worker_id)
        types = ", ".join(sorted(set(days.values())))
        report.record(worker_id, name, ACTION_CREATED, f"long-term absence ({types}): {len(days)} day(s) sent to HR")
        logger.info("absence_timesheet_created", worker_id=str(worker_id), week_id=week_id, days=len(days))
    return created_ids
