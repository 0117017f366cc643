"""
Post-materialization passes of the planning synchronizer: lead guard,
orphan removal and cross-table repair of day assignments.
"""
from __future__ import annotations

import uuid
from typing import Dict, Iterable, Optional, Set

import structlog
from sqlalchemy.orm import Session

from ..models.models import (
    CrewDayAssignment, FinisherDayAssignment, JobSite, Timesheet, Worker,
)
from .audit import create_audit_log
from .day_assignments import (
    delete_pair_day_assignments,
    delete_site_rows,
    delete_worker_rows_off_site,
    sync_pair_day_assignments,
    week_assignment_pairs,
)
from .lead_resolution import SiteOwnership
from .plan_snapshot import Pair, PlanSnapshot
from .sync_report import SyncReport, ACTION_DELETED, ACTION_SKIPPED
from .timesheets import delete_timesheet
from .weeks import working_days

logger = structlog.get_logger(__name__)


def guard_primary_sites(
    db: Session,
    snapshot: PlanSnapshot,
    ownership: Dict[uuid.UUID, SiteOwnership],
    guarded: Iterable[uuid.UUID],
) -> int:
    """
    Keep each guarded lead visible on their primary site for the whole working week,
    and nowhere else.

    Returns:
        Number of leads whose rows were rewritten
    """
    rewritten = 0
    week_days = working_days(snapshot.week_id)
    for lead_id in sorted(guarded, key=str):
        primary = snapshot.workers[lead_id].primary_job_site_id
        owner = ownership.get(primary)
        if owner is None:
            continue
        days = set(week_days) | set(snapshot.days_for(lead_id, primary))
        changed = sync_pair_day_assignments(
            db, snapshot.tenant_id, snapshot.week_id, lead_id, owner, days, prune=True,
        )
        removed = delete_worker_rows_off_site(db, snapshot.tenant_id, snapshot.week_id, lead_id, primary)
        if changed or removed:
            rewritten += 1
            logger.info(
                "lead_pinned_to_primary_site",
                worker_id=str(lead_id),
                job_site_id=str(primary),
                removed_rows=removed,
            )
    db.commit()
    return rewritten


def _site_timesheet_pairs(db: Session, tenant_id: uuid.UUID, week_id: str) -> Set[Pair]:
    rows = db.query(Timesheet.worker_id, Timesheet.job_site_id).filter(
        Timesheet.tenant_id == tenant_id,
        Timesheet.week_id == week_id,
        Timesheet.job_site_id.isnot(None),
    )
    return {(worker_id, site_id) for worker_id, site_id in rows}


def _worker_names(db: Session, worker_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, str]:
    ids = set(worker_ids)
    if not ids:
        return {}
    return {w.id: w.display_name for w in db.query(Worker).filter(Worker.id.in_(ids))}


def remove_orphans(db: Session, snapshot: PlanSnapshot, report: SyncReport) -> Set[uuid.UUID]:
    """
    Delete timesheets and day assignments of (worker, site) pairs no longer planned.

    A protected timesheet is kept; only its pair's day assignments are removed.

    Returns:
        Job sites whose rows were touched
    """
    tenant_id, week_id = snapshot.tenant_id, snapshot.week_id
    candidates = (week_assignment_pairs(db, tenant_id, week_id) | _site_timesheet_pairs(db, tenant_id, week_id)) - snapshot.pairs
    if not candidates:
        return set()

    names = _worker_names(db, (w for w, _ in candidates))
    touched: Set[uuid.UUID] = set()
    for worker_id, site_id in sorted(candidates, key=lambda p: (str(p[0]), str(p[1]))):
        name = names.get(worker_id, str(worker_id))
        sheet = db.query(Timesheet).filter(
            Timesheet.worker_id == worker_id,
            Timesheet.job_site_id == site_id,
            Timesheet.week_id == week_id,
        ).execution_options(populate_existing=True).first()

        rows = delete_pair_day_assignments(db, tenant_id, week_id, worker_id, site_id)
        if rows:
            touched.add(site_id)

        if sheet is not None and sheet.is_protected:
            db.commit()
            report.record(
                worker_id, name, ACTION_SKIPPED,
                f"protected timesheet ({sheet.status}) no longer planned, not deleted ({rows} day assignment(s) removed)",
                job_site_id=site_id, protected=True,
            )
            continue

        details = f"no longer planned: {rows} day assignment(s) removed"
        if sheet is not None:
            create_audit_log(
                db=db,
                entity_type="timesheet",
                entity_id=sheet.id,
                action="DELETE",
                actor_id="system",
                actor_role="system",
                source="sync",
                changes_json={"status": sheet.status, "total_hours": sheet.total_hours},
                context={"tenant_id": tenant_id, "week_id": week_id, "worker_id": worker_id, "job_site_id": site_id},
                commit=False,
            )
            delete_timesheet(db, sheet)
            details = f"no longer planned: timesheet with {float(sheet.total_hours or 0):g}h deleted"
        db.commit()

        touched.add(site_id)
        report.record(worker_id, name, ACTION_DELETED, details, job_site_id=site_id)
        logger.info("orphan_removed", worker_id=str(worker_id), job_site_id=str(site_id), week_id=week_id)
    return touched


def repair_cross_table(
    db: Session,
    tenant_id: uuid.UUID,
    week_id: str,
    site_ids: Iterable[uuid.UUID],
) -> int:
    """
    Remove day assignments filed in the wrong table: a site with a lead must have
    no operations manager rows, a site without one no crew lead rows.
    """
    removed = 0
    for site_id in sorted(set(site_ids), key=str):
        lead_id: Optional[uuid.UUID] = db.query(JobSite.lead_worker_id).filter(JobSite.id == site_id).scalar()
        wrong_model = FinisherDayAssignment if lead_id is not None else CrewDayAssignment
        count = delete_site_rows(db, wrong_model, tenant_id, week_id, site_id)
        if count:
            removed += count
            logger.info(
                "cross_table_rows_removed",
                job_site_id=str(site_id),
                table=wrong_model.__tablename__,
                count=count,
            )
    db.commit()
    return removed
