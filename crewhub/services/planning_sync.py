"""
Weekly planning -> timesheet synchronizer.

Turns each validated tenant's plan for a week into per-(worker, job site)
timesheets, per-day routing rows and long-term absence timesheets, without
ever touching a timesheet that is past crew validation.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import PlanAssignment, PlanValidation
from .audit import record_job_run
from .day_assignments import week_assignment_days
from .lead_resolution import (
    build_site_ownership,
    guarded_leads,
    migrate_ownership,
    persist_site_leads,
    resolve_site_leads,
)
from .long_term_absences import create_absence_timesheets
from .plan_snapshot import load_plan_snapshot, week_plan_days
from .sync_cleanup import guard_primary_sites, remove_orphans, repair_cross_table
from .sync_report import SyncReport, SyncStats
from .time_rules import is_target_paris_hour, paris_today
from .timesheet_materializer import materialize_pair, planned_pair
from .weeks import parse_week_id, previous_week_id, week_id_for

logger = structlog.get_logger(__name__)

RUN_TYPE = "sync_planning_teams"


class PlanningSyncError(Exception):
    """Synchronizer run aborted; the failure has been recorded in the job run history."""

    def __init__(self, message: str, run_id: Optional[uuid.UUID] = None):
        super().__init__(message)
        self.run_id = run_id


@dataclass
class SyncOutcome:
    skipped: bool = False
    week_id: Optional[str] = None
    previous_week_id: Optional[str] = None
    tenants: List[str] = field(default_factory=list)
    skipped_tenants: List[str] = field(default_factory=list)
    report: SyncReport = field(default_factory=SyncReport)
    duration_ms: int = 0
    run_id: Optional[uuid.UUID] = None

    @property
    def stats(self) -> SyncStats:
        return self.report.stats


def select_tenants(db: Session, week_id: str, tenant_id: Optional[uuid.UUID] = None):
    """
    Tenants to synchronize for a week.

    Returns:
        (tenants to run, tenants with a plan but no validation)
    """
    if tenant_id is not None:
        return [tenant_id], []
    planned = {t for (t,) in db.query(PlanAssignment.tenant_id).filter(PlanAssignment.week_id == week_id).distinct()}
    if not planned:
        return [], []
    validated = {
        t for (t,) in db.query(PlanValidation.tenant_id).filter(
            PlanValidation.week_id == week_id,
            PlanValidation.tenant_id.in_(planned),
        )
    }
    return sorted(planned & validated, key=str), sorted(planned - validated, key=str)


def sync_tenant(db: Session, tenant_id: uuid.UUID, week_id: str, prev_week_id: str) -> SyncReport:
    """Run every synchronizer stage for one tenant, in order."""
    log = logger.bind(tenant_id=str(tenant_id), week_id=week_id)
    report = SyncReport()

    snapshot = load_plan_snapshot(db, tenant_id, week_id)
    log.info("plan_loaded", pairs=len(snapshot.pairs), sites=len(snapshot.site_ids))

    resolved = resolve_site_leads(snapshot)
    changes = persist_site_leads(db, snapshot, resolved)
    ownership = build_site_ownership(snapshot, resolved)
    if changes:
        migrate_ownership(db, snapshot, ownership, changes)
    guarded = guarded_leads(snapshot, resolved)

    previous_days = week_assignment_days(db, tenant_id, prev_week_id)
    # Guarded leads' routing rows span the whole week; compare their plan instead
    previous_days.update(week_plan_days(db, tenant_id, prev_week_id, guarded))
    for worker_id, site_id in snapshot.sorted_pairs():
        pair = planned_pair(
            tenant_id=tenant_id,
            week_id=week_id,
            previous_week_id=prev_week_id,
            worker=snapshot.workers[worker_id],
            site=snapshot.sites[site_id],
            ownership=ownership[site_id],
            plan_days=snapshot.days_for(worker_id, site_id),
            previous_days=previous_days.get((worker_id, site_id), ()),
            guarded=worker_id in guarded,
        )
        materialize_pair(db, pair, report)

    guard_primary_sites(db, snapshot, ownership, guarded)
    touched = remove_orphans(db, snapshot, report)
    repair_cross_table(db, tenant_id, week_id, set(snapshot.site_ids) | touched)
    create_absence_timesheets(db, tenant_id, week_id, report)

    log.info("tenant_synced", **report.stats.as_dict())
    return report


def run_planning_sync(
    db: Session,
    execution_mode: str = "cron",
    triggered_by: Optional[str] = None,
    force: bool = False,
    week_override: Optional[str] = None,
    tenant_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> SyncOutcome:
    """
    Synchronize the week's validated plans into timesheets.

    Args:
        execution_mode: cron|manual, recorded in the run history
        force: Run whatever the current hour
        week_override: Week id (YYYY-Sww) to synchronize instead of the current Paris week
        tenant_id: Synchronize only this tenant, without requiring a plan validation
        now: Reference instant (defaults to the system clock)

    Raises:
        PlanningSyncError: the run failed and was recorded as such
    """
    if not force and not is_target_paris_hour(settings.sync_target_hour, now):
        logger.info("sync_skipped_not_target_hour", target_hour=settings.sync_target_hour)
        return SyncOutcome(skipped=True)

    started = time.monotonic()
    outcome = SyncOutcome()
    try:
        if week_override:
            parse_week_id(week_override)
        outcome.week_id = week_override or week_id_for(paris_today(now))
        outcome.previous_week_id = previous_week_id(outcome.week_id)
        logger.info(
            "sync_started",
            week_id=outcome.week_id,
            previous_week_id=outcome.previous_week_id,
            execution_mode=execution_mode,
            triggered_by=triggered_by,
            tenant_id=str(tenant_id) if tenant_id else None,
        )

        tenants, skipped = select_tenants(db, outcome.week_id, tenant_id)
        outcome.tenants = [str(t) for t in tenants]
        outcome.skipped_tenants = [str(t) for t in skipped]
        for tenant in skipped:
            logger.info("tenant_skipped_not_validated", tenant_id=str(tenant), week_id=outcome.week_id)

        for tenant in tenants:
            outcome.report.extend(sync_tenant(db, tenant, outcome.week_id, outcome.previous_week_id))

        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        stats = outcome.stats
        run = record_job_run(
            db,
            run_type=RUN_TYPE,
            execution_mode=execution_mode,
            triggered_by=triggered_by,
            recipients_count=len(outcome.report.results),
            success_count=stats.copied + stats.created,
            failure_count=0,
            duration_ms=outcome.duration_ms,
            details=_run_details(outcome),
        )
        outcome.run_id = run.id
    except Exception as exc:
        logger.exception("sync_failed", week_id=outcome.week_id, error=str(exc))
        db.rollback()
        duration_ms = int((time.monotonic() - started) * 1000)
        run_id = None
        try:
            run = record_job_run(
                db,
                run_type=RUN_TYPE,
                execution_mode=execution_mode,
                triggered_by=triggered_by,
                failure_count=1,
                duration_ms=duration_ms,
                details={"week": outcome.week_id, "previous_week": outcome.previous_week_id},
                error_message=str(exc),
            )
            run_id = run.id
        except Exception as record_exc:
            db.rollback()
            logger.error("sync_failure_not_recorded", error=str(record_exc))
        raise PlanningSyncError(str(exc), run_id=run_id) from exc

    logger.info(
        "sync_completed",
        week_id=outcome.week_id,
        duration_ms=outcome.duration_ms,
        **outcome.stats.as_dict(),
    )
    return outcome


def _run_details(outcome: SyncOutcome) -> Dict[str, Any]:
    return {
        "week": outcome.week_id,
        "previous_week": outcome.previous_week_id,
        "tenants": outcome.tenants,
        "skipped_tenants": outcome.skipped_tenants,
        "stats": outcome.stats.as_dict(),
        "results": outcome.report.results_as_dicts(settings.sync_history_results_limit),
    }
