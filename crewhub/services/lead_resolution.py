"""
Job-site lead ownership: which crew lead runs each planned site this week,
and the ownership side effects when that changes.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Set

import structlog
from sqlalchemy.orm import Session

from ..models.models import (
    CrewDayAssignment, JobSite, Timesheet, Worker, EDITABLE_STATUSES, ROLE_LEAD,
)
from .audit import create_audit_log, compute_diff
from .plan_snapshot import PlanSnapshot

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LeadChange:
    job_site_id: uuid.UUID
    previous_lead_id: Optional[uuid.UUID]
    new_lead_id: Optional[uuid.UUID]


@dataclass(frozen=True)
class SiteOwnership:
    job_site_id: uuid.UUID
    lead_id: Optional[uuid.UUID]
    manager_id: Optional[uuid.UUID]

    @property
    def supervisor_id(self) -> Optional[uuid.UUID]:
        """Crew lead when the site has one, otherwise the operations manager."""
        return self.lead_id or self.manager_id

    @property
    def lead_run(self) -> bool:
        return self.lead_id is not None


def pick_site_lead(snapshot: PlanSnapshot, site_id: uuid.UUID) -> Optional[uuid.UUID]:
    """
    Resolve the owning lead of one planned site.

    A lone planned lead always wins. With several, a lead flagged responsible
    wins, otherwise the one with the most planned days. Remaining ties go to
    the lead whose primary site this is, then to the lowest worker id.
    """
    candidates = snapshot.leads_on_site(site_id)
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    flagged = [w for w in candidates if (w, site_id) in snapshot.responsible_pairs]
    pool = flagged or candidates

    def rank(worker_id: uuid.UUID):
        days = len(snapshot.days_for(worker_id, site_id))
        on_primary = snapshot.workers[worker_id].primary_job_site_id == site_id
        return (-days, not on_primary, str(worker_id))

    return min(pool, key=rank)


def resolve_site_leads(snapshot: PlanSnapshot) -> Dict[uuid.UUID, Optional[uuid.UUID]]:
    return {site_id: pick_site_lead(snapshot, site_id) for site_id in sorted(snapshot.site_ids, key=str)}


def persist_site_leads(
    db: Session,
    snapshot: PlanSnapshot,
    resolved: Dict[uuid.UUID, Optional[uuid.UUID]],
) -> List[LeadChange]:
    """Write resolved leads to job sites; returns the sites whose lead changed."""
    changes: List[LeadChange] = []
    for site_id, new_lead in resolved.items():
        site = db.query(JobSite).filter(JobSite.id == site_id).first()
        if site is None or site.lead_worker_id == new_lead:
            continue
        previous = site.lead_worker_id
        site.lead_worker_id = new_lead
        site.updated_at = datetime.utcnow()
        create_audit_log(
            db=db,
            entity_type="job_site",
            entity_id=site.id,
            action="UPDATE_LEAD",
            actor_id="system",
            actor_role="system",
            source="sync",
            changes_json=compute_diff({"lead_worker_id": previous}, {"lead_worker_id": new_lead}),
            context={"tenant_id": snapshot.tenant_id, "week_id": snapshot.week_id},
            commit=False,
        )
        changes.append(LeadChange(job_site_id=site_id, previous_lead_id=previous, new_lead_id=new_lead))
        logger.info(
            "site_lead_changed",
            job_site_id=str(site_id),
            previous_lead_id=str(previous) if previous else None,
            new_lead_id=str(new_lead) if new_lead else None,
        )
    db.commit()
    return changes


def build_site_ownership(
    snapshot: PlanSnapshot,
    resolved: Dict[uuid.UUID, Optional[uuid.UUID]],
) -> Dict[uuid.UUID, SiteOwnership]:
    ownership = {}
    for site_id, lead_id in resolved.items():
        site = snapshot.sites.get(site_id)
        ownership[site_id] = SiteOwnership(
            job_site_id=site_id,
            lead_id=lead_id,
            manager_id=site.operations_manager_id if site else None,
        )
    return ownership


def migrate_ownership(
    db: Session,
    snapshot: PlanSnapshot,
    ownership: Dict[uuid.UUID, SiteOwnership],
    changes: List[LeadChange],
) -> Dict[str, int]:
    """
    Re-key editable timesheets and crew day assignments of sites whose lead changed.

    Lead workers keep owning their own timesheets and are never re-keyed.

    Returns:
        Counts of migrated timesheets and crew rows
    """
    migrated = {"timesheets": 0, "crew_rows": 0}
    for change in changes:
        owner = ownership[change.job_site_id]
        supervisor_id = owner.supervisor_id
        if supervisor_id is None:
            continue

        sheets = (
            db.query(Timesheet, Worker.role)
            .join(Worker, Worker.id == Timesheet.worker_id)
            .filter(
                Timesheet.tenant_id == snapshot.tenant_id,
                Timesheet.week_id == snapshot.week_id,
                Timesheet.job_site_id == change.job_site_id,
                Timesheet.status.in_(EDITABLE_STATUSES),
            )
            .all()
        )
        for sheet, role in sheets:
            if role == ROLE_LEAD or sheet.supervisor_id == supervisor_id:
                continue
            sheet.supervisor_id = supervisor_id
            sheet.updated_at = datetime.utcnow()
            migrated["timesheets"] += 1

        if owner.lead_id is not None:
            rows = (
                db.query(CrewDayAssignment, Worker.role)
                .join(Worker, Worker.id == CrewDayAssignment.worker_id)
                .filter(
                    CrewDayAssignment.tenant_id == snapshot.tenant_id,
                    CrewDayAssignment.week_id == snapshot.week_id,
                    CrewDayAssignment.job_site_id == change.job_site_id,
                )
                .all()
            )
            for row, role in rows:
                if role == ROLE_LEAD or row.lead_id == owner.lead_id:
                    continue
                row.lead_id = owner.lead_id
                row.updated_at = datetime.utcnow()
                migrated["crew_rows"] += 1
        db.commit()

    if migrated["timesheets"] or migrated["crew_rows"]:
        logger.info("ownership_migrated", tenant_id=str(snapshot.tenant_id), **migrated)
    return migrated


def guarded_leads(
    snapshot: PlanSnapshot,
    resolved: Dict[uuid.UUID, Optional[uuid.UUID]],
) -> Set[uuid.UUID]:
    """Resolved owning leads planned on their own primary site this week."""
    guarded = set()
    for lead_id in {w for w in resolved.values() if w is not None}:
        worker = snapshot.workers.get(lead_id)
        if worker is None or not worker.is_lead or worker.primary_job_site_id is None:
            continue
        if (lead_id, worker.primary_job_site_id) in snapshot.pairs:
            guarded.add(lead_id)
    return guarded
