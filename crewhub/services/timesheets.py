"""
Timesheet persistence helpers shared by the synchronizer and the timesheet routes.
All writes are natural-key upserts that compare before writing.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.models import Timesheet, TimesheetDay, STATUS_DRAFT


class TimesheetProtectedError(Exception):
    """Write attempted on a timesheet that is past crew validation."""

    def __init__(self, timesheet: Timesheet):
        self.timesheet_id = timesheet.id
        self.status = timesheet.status
        super().__init__(f"Timesheet {timesheet.id} is {timesheet.status} and cannot be modified")


def get_site_timesheet(
    db: Session,
    worker_id: uuid.UUID,
    job_site_id: Optional[uuid.UUID],
    week_id: str,
) -> Optional[Timesheet]:
    """Fresh read of the timesheet for (worker, site, week); site None is the absence ghost."""
    db.flush()
    query = db.query(Timesheet).filter(
        Timesheet.worker_id == worker_id,
        Timesheet.week_id == week_id,
    )
    if job_site_id is None:
        query = query.filter(Timesheet.job_site_id.is_(None))
    else:
        query = query.filter(Timesheet.job_site_id == job_site_id)
    # Status may have been changed by a user since this session last loaded it
    return query.execution_options(populate_existing=True).first()


def get_or_create_timesheet(
    db: Session,
    tenant_id: uuid.UUID,
    worker_id: uuid.UUID,
    job_site_id: Optional[uuid.UUID],
    week_id: str,
    supervisor_id: Optional[uuid.UUID],
    existing: Optional[Timesheet] = None,
    status: str = STATUS_DRAFT,
) -> Tuple[Timesheet, bool]:
    """
    Return the timesheet of (worker, site, week), creating it when missing.

    Returns:
        (timesheet, created). An existing editable timesheet gets its supervisor re-keyed.
    """
    sheet = existing or get_site_timesheet(db, worker_id, job_site_id, week_id)
    if sheet is None:
        sheet = Timesheet(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            worker_id=worker_id,
            job_site_id=job_site_id,
            week_id=week_id,
            supervisor_id=supervisor_id,
            status=status,
            total_hours=0.0,
        )
        db.add(sheet)
        db.flush()
        return sheet, True
    if sheet.supervisor_id != supervisor_id:
        sheet.supervisor_id = supervisor_id
        sheet.updated_at = datetime.utcnow()
    return sheet, False


def timesheet_days(db: Session, timesheet_id: uuid.UUID) -> Dict[date, TimesheetDay]:
    rows = db.query(TimesheetDay).filter(TimesheetDay.timesheet_id == timesheet_id).all()
    return {row.day: row for row in rows}


def upsert_timesheet_day(
    db: Session,
    timesheet_id: uuid.UUID,
    day: date,
    values: Dict[str, Any],
    existing: Optional[TimesheetDay] = None,
) -> bool:
    """Insert or update the (timesheet, day) row; returns True when a value changed."""
    row = existing
    if row is None:
        row = db.query(TimesheetDay).filter(
            TimesheetDay.timesheet_id == timesheet_id,
            TimesheetDay.day == day,
        ).first()
    if row is None:
        db.add(TimesheetDay(id=uuid.uuid4(), timesheet_id=timesheet_id, day=day, **values))
        db.flush()
        return True
    changed = False
    for field, value in values.items():
        if getattr(row, field) != value:
            setattr(row, field, value)
            changed = True
    return changed


def delete_days_outside(db: Session, timesheet_id: uuid.UUID, keep_days: Iterable[date]) -> List[date]:
    """Delete day rows whose date is not in keep_days; returns the deleted dates."""
    keep = set(keep_days)
    removed = []
    for day, row in sorted(timesheet_days(db, timesheet_id).items()):
        if day not in keep:
            db.delete(row)
            removed.append(day)
    if removed:
        db.flush()
    return removed


def recompute_total(db: Session, sheet: Timesheet) -> bool:
    """Set total_hours to the sum of the day rows; returns True when it changed."""
    db.flush()
    total = db.query(func.coalesce(func.sum(TimesheetDay.hours), 0.0)).filter(
        TimesheetDay.timesheet_id == sheet.id
    ).scalar()
    total = round(float(total or 0.0), 2)
    if (sheet.total_hours or 0.0) != total:
        sheet.total_hours = total
        sheet.updated_at = datetime.utcnow()
        return True
    return False


def delete_timesheet(db: Session, sheet: Timesheet) -> None:
    if sheet.is_protected:
        raise TimesheetProtectedError(sheet)
    # Day rows go with the timesheet through the relationship cascade
    db.delete(sheet)
    db.flush()


def remove_timesheet_days(db: Session, sheet: Timesheet, dates: Iterable[date]) -> Dict[str, Any]:
    """
    Delete the given day rows of an editable timesheet and recompute its total.

    Raises:
        TimesheetProtectedError: when the timesheet is past crew validation
    """
    if sheet.is_protected:
        raise TimesheetProtectedError(sheet)
    targets = set(dates)
    days = timesheet_days(db, sheet.id)
    deleted = sorted(d for d in days if d in targets)
    for day in deleted:
        db.delete(days[day])
    recompute_total(db, sheet)
    db.commit()
    return {
        "deleted_count": len(deleted),
        "deleted_dates": deleted,
        "new_total_hours": sheet.total_hours,
    }
