"""
Per (worker, job site) timesheet materialization for a synchronized week.

Each planned pair ends up with exactly one timesheet whose day rows match the
plan dates, unless the timesheet is already validated, in which case only the
routing rows are refreshed.
"""
from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Optional, Sequence, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Timesheet
from .day_assignments import sync_pair_day_assignments
from .lead_resolution import SiteOwnership
from .plan_snapshot import SiteInfo, WorkerInfo
from .sync_report import SyncReport, ACTION_COPIED, ACTION_CREATED, ACTION_SKIPPED
from .timesheets import (
    delete_days_outside,
    get_or_create_timesheet,
    get_site_timesheet,
    recompute_total,
    timesheet_days,
    upsert_timesheet_day,
)
from .weeks import week_day_offset

logger = structlog.get_logger(__name__)

# Recorded values carried over when copying a week forward; never signatures or comments
COPIED_DAY_FIELDS = (
    "hours",
    "normal_hours",
    "weather_hours",
    "travel_count",
    "travel_code",
    "meal_allowance",
    "meal_type",
    "start_time",
    "end_time",
    "break_minutes",
    "day_total",
    "absence_type",
    "site_code",
    "site_city",
)


@dataclass(frozen=True)
class PairPlan:
    tenant_id: uuid.UUID
    week_id: str
    previous_week_id: str
    worker: WorkerInfo
    site: SiteInfo
    ownership: SiteOwnership
    plan_days: Tuple[date, ...]
    previous_days: Tuple[date, ...] = ()
    # Routing rows of guarded leads are written by the lead guard pass
    guarded: bool = False

    @property
    def zeroes_hours(self) -> bool:
        """Lead planned away from their primary site: hours count on the primary site only."""
        primary = self.worker.primary_job_site_id
        return self.worker.is_lead and primary is not None and primary != self.site.id

    @property
    def supervisor_id(self) -> Optional[uuid.UUID]:
        if self.worker.is_lead:
            return self.worker.id
        return self.ownership.supervisor_id

    @property
    def matches_previous_week(self) -> bool:
        if not self.previous_days:
            return False
        offset = timedelta(days=week_day_offset(self.previous_week_id, self.week_id))
        shifted = Counter(d + offset for d in self.previous_days)
        return shifted == Counter(self.plan_days)


@dataclass(frozen=True)
class Outcome:
    action: str
    details: str


def default_day_values(day: date, site: SiteInfo) -> Dict[str, Any]:
    hours = float(settings.sync_default_hours.get(day.isoweekday(), settings.sync_fallback_day_hours))
    return {
        "hours": hours,
        "normal_hours": hours,
        "day_total": hours,
        "weather_hours": 0.0,
        "travel_count": 1,
        "travel_code": settings.sync_placeholder_travel_code,
        "meal_allowance": True,
        "break_minutes": 0,
        "site_code": site.site_code,
        "site_city": site.city,
    }


def zeroed_day_values(site: SiteInfo) -> Dict[str, Any]:
    return {
        "hours": 0.0,
        "normal_hours": 0.0,
        "day_total": 0.0,
        "weather_hours": 0.0,
        "travel_count": 0,
        "travel_code": None,
        "meal_allowance": False,
        "meal_type": None,
        "break_minutes": 0,
        "site_code": site.site_code,
        "site_city": site.city,
    }


def _hours_label(hours: Optional[float]) -> str:
    hours = float(hours or 0.0)
    return f"{hours:g}h"


def materialize_pair(db: Session, pair: PairPlan, report: SyncReport) -> Outcome:
    """
    Bring the timesheet of one planned pair in line with the plan.

    Re-reads the timesheet status right before deciding, so a timesheet validated
    by a user since the run started is never overwritten.
    """
    sheet = get_site_timesheet(db, pair.worker.id, pair.site.id, pair.week_id)

    if sheet is not None and sheet.is_protected:
        outcome = Outcome(ACTION_SKIPPED, f"protected timesheet ({sheet.status}), hours left untouched")
        protected = True
    else:
        protected = False
        if pair.zeroes_hours:
            outcome = _write_zeroed(db, pair, sheet)
        elif pair.matches_previous_week:
            outcome = _copy_forward(db, pair, sheet)
        else:
            outcome = _create_fresh(db, pair, sheet)

    if not pair.guarded:
        sync_pair_day_assignments(
            db, pair.tenant_id, pair.week_id, pair.worker.id, pair.ownership, pair.plan_days,
        )
    db.commit()

    report.record(
        pair.worker.id,
        pair.worker.name,
        outcome.action,
        outcome.details,
        job_site_id=pair.site.id,
        protected=protected,
    )
    logger.debug(
        "pair_materialized",
        worker_id=str(pair.worker.id),
        job_site_id=str(pair.site.id),
        action=outcome.action,
        details=outcome.details,
    )
    return outcome


def _write_days(db: Session, sheet: Timesheet, values_by_day: Dict[date, Dict[str, Any]]) -> bool:
    existing = timesheet_days(db, sheet.id)
    changed = False
    for day, values in sorted(values_by_day.items()):
        changed |= upsert_timesheet_day(db, sheet.id, day, values, existing=existing.get(day))
    changed |= bool(delete_days_outside(db, sheet.id, values_by_day))
    changed |= recompute_total(db, sheet)
    return changed


def _write_zeroed(db: Session, pair: PairPlan, sheet: Optional[Timesheet]) -> Outcome:
    supervisor_before = sheet.supervisor_id if sheet is not None else None
    sheet, created = get_or_create_timesheet(
        db, pair.tenant_id, pair.worker.id, pair.site.id, pair.week_id, pair.supervisor_id, existing=sheet,
    )
    values = zeroed_day_values(pair.site)
    changed = _write_days(db, sheet, {day: values for day in pair.plan_days})
    changed |= supervisor_before != sheet.supervisor_id
    if created or changed:
        return Outcome(
            ACTION_CREATED,
            f"secondary site: {len(pair.plan_days)} day(s) at 0h (hours counted on primary site {pair.worker.primary_job_site_id})",
        )
    return Outcome(ACTION_SKIPPED, "secondary site already zeroed")


def _reconcile_existing(db: Session, pair: PairPlan, sheet: Timesheet) -> Tuple[int, int]:
    """
    Keep recorded days of a timesheet that already carries hours; add defaults for
    plan days it lacks and drop days outside the plan.

    Returns:
        (days added, phantom days removed)
    """
    existing = timesheet_days(db, sheet.id)
    added = 0
    for day in pair.plan_days:
        if day not in existing:
            upsert_timesheet_day(db, sheet.id, day, default_day_values(day, pair.site))
            added += 1
    removed = len(delete_days_outside(db, sheet.id, pair.plan_days))
    recompute_total(db, sheet)
    return added, removed


def _repair_note(added: int, removed: int) -> str:
    notes = []
    if added:
        notes.append(f"{added} missing day(s) added")
    if removed:
        notes.append(f"{removed} phantom day(s) removed")
    return ", ".join(notes)


def _copy_forward(db: Session, pair: PairPlan, sheet: Optional[Timesheet]) -> Outcome:
    if sheet is not None and (sheet.total_hours or 0) > 0:
        get_or_create_timesheet(
            db, pair.tenant_id, pair.worker.id, pair.site.id, pair.week_id, pair.supervisor_id, existing=sheet,
        )
        added, removed = _reconcile_existing(db, pair, sheet)
        details = f"existing timesheet with {_hours_label(sheet.total_hours)} kept"
        note = _repair_note(added, removed)
        return Outcome(ACTION_SKIPPED, f"{details} ({note})" if note else details)

    previous = get_site_timesheet(db, pair.worker.id, pair.site.id, pair.previous_week_id)
    offset = timedelta(days=week_day_offset(pair.previous_week_id, pair.week_id))
    plan_days = set(pair.plan_days)
    source_days = {}
    if previous is not None:
        for day, row in timesheet_days(db, previous.id).items():
            if day + offset in plan_days:
                source_days[day + offset] = row
    if not source_days:
        return _create_fresh(db, pair, sheet, reason=f"nothing to copy from {pair.previous_week_id}")

    sheet, created = get_or_create_timesheet(
        db, pair.tenant_id, pair.worker.id, pair.site.id, pair.week_id, pair.supervisor_id, existing=sheet,
    )
    values_by_day = {}
    for day in pair.plan_days:
        source = source_days.get(day)
        if source is None:
            values_by_day[day] = default_day_values(day, pair.site)
        else:
            values_by_day[day] = {field: getattr(source, field) for field in COPIED_DAY_FIELDS}
    changed = _write_days(db, sheet, values_by_day)
    if created or changed:
        return Outcome(ACTION_COPIED, f"{_hours_label(sheet.total_hours)} copied from {pair.previous_week_id}")
    return Outcome(ACTION_SKIPPED, "copy already up to date")


def _create_fresh(
    db: Session,
    pair: PairPlan,
    sheet: Optional[Timesheet],
    reason: Optional[str] = None,
) -> Outcome:
    if sheet is not None and (sheet.total_hours or 0) > 0:
        supervisor_before = sheet.supervisor_id
        get_or_create_timesheet(
            db, pair.tenant_id, pair.worker.id, pair.site.id, pair.week_id, pair.supervisor_id, existing=sheet,
        )
        added, removed = _reconcile_existing(db, pair, sheet)
        note = _repair_note(added, removed)
        if note or supervisor_before != sheet.supervisor_id:
            return Outcome(ACTION_CREATED, f"timesheet refreshed to {_hours_label(sheet.total_hours)} ({note or 'supervisor updated'})")
        return Outcome(ACTION_SKIPPED, f"existing timesheet with {_hours_label(sheet.total_hours)} kept")

    supervisor_before = sheet.supervisor_id if sheet is not None else None
    sheet, created = get_or_create_timesheet(
        db, pair.tenant_id, pair.worker.id, pair.site.id, pair.week_id, pair.supervisor_id, existing=sheet,
    )
    changed = _write_days(db, sheet, {day: default_day_values(day, pair.site) for day in pair.plan_days})
    changed |= supervisor_before != sheet.supervisor_id
    if created or changed:
        details = f"new timesheet with {_hours_label(sheet.total_hours)}"
        return Outcome(ACTION_CREATED, f"{details} ({reason})" if reason else details)
    return Outcome(ACTION_SKIPPED, "timesheet already up to date")


def planned_pair(
    tenant_id: uuid.UUID,
    week_id: str,
    previous_week_id: str,
    worker: WorkerInfo,
    site: SiteInfo,
    ownership: SiteOwnership,
    plan_days: Sequence[date],
    previous_days: Sequence[date] = (),
    guarded: bool = False,
) -> PairPlan:
    return PairPlan(
        tenant_id=tenant_id,
        week_id=week_id,
        previous_week_id=previous_week_id,
        worker=worker,
        site=site,
        ownership=ownership,
        plan_days=tuple(sorted(plan_days)),
        previous_days=tuple(sorted(previous_days)),
        guarded=guarded,
    )
