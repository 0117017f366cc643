"""
Immutable view of one tenant's weekly plan, read once per synchronizer run.
"""
from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.models import JobSite, PlanAssignment, Worker, ROLE_LEAD

Pair = Tuple[uuid.UUID, uuid.UUID]  # (worker_id, job_site_id)


@dataclass(frozen=True)
class WorkerInfo:
    id: uuid.UUID
    name: str
    role: Optional[str]
    primary_job_site_id: Optional[uuid.UUID]

    @property
    def is_lead(self) -> bool:
        return self.role == ROLE_LEAD


@dataclass(frozen=True)
class SiteInfo:
    id: uuid.UUID
    lead_worker_id: Optional[uuid.UUID]
    operations_manager_id: Optional[uuid.UUID]
    site_code: Optional[str]
    city: Optional[str]


@dataclass(frozen=True)
class PlanEntry:
    worker_id: uuid.UUID
    job_site_id: uuid.UUID
    day: date
    is_responsible_lead: bool = False


@dataclass(frozen=True)
class PlanSnapshot:
    tenant_id: uuid.UUID
    week_id: str
    workers: Dict[uuid.UUID, WorkerInfo]
    sites: Dict[uuid.UUID, SiteInfo]
    days_by_pair: Dict[Pair, Tuple[date, ...]]
    responsible_pairs: FrozenSet[Pair]

    @property
    def pairs(self) -> FrozenSet[Pair]:
        return frozenset(self.days_by_pair)

    @property
    def site_ids(self) -> FrozenSet[uuid.UUID]:
        return frozenset(site_id for _, site_id in self.days_by_pair)

    @property
    def worker_ids(self) -> FrozenSet[uuid.UUID]:
        return frozenset(worker_id for worker_id, _ in self.days_by_pair)

    def sorted_pairs(self) -> List[Pair]:
        # Stable processing order: worker name, then ids
        return sorted(
            self.days_by_pair,
            key=lambda p: (self.workers[p[0]].name.lower(), str(p[0]), str(p[1])),
        )

    def leads_on_site(self, site_id: uuid.UUID) -> List[uuid.UUID]:
        return sorted(
            (w for (w, s) in self.days_by_pair if s == site_id and self.workers[w].is_lead),
            key=str,
        )

    def days_for(self, worker_id: uuid.UUID, site_id: uuid.UUID) -> Tuple[date, ...]:
        return self.days_by_pair.get((worker_id, site_id), ())


def build_plan_snapshot(
    tenant_id: uuid.UUID,
    week_id: str,
    entries: Iterable[PlanEntry],
    workers: Iterable[WorkerInfo],
    sites: Iterable[SiteInfo],
) -> PlanSnapshot:
    grouped: Dict[Pair, set] = defaultdict(set)
    responsible = set()
    for entry in entries:
        pair = (entry.worker_id, entry.job_site_id)
        grouped[pair].add(entry.day)
        if entry.is_responsible_lead:
            responsible.add(pair)
    return PlanSnapshot(
        tenant_id=tenant_id,
        week_id=week_id,
        workers={w.id: w for w in workers},
        sites={s.id: s for s in sites},
        days_by_pair={pair: tuple(sorted(days)) for pair, days in grouped.items()},
        responsible_pairs=frozenset(responsible),
    )


def worker_info(worker: Worker) -> WorkerInfo:
    return WorkerInfo(
        id=worker.id,
        name=worker.display_name,
        role=worker.role,
        primary_job_site_id=worker.primary_job_site_id,
    )


def site_info(site: JobSite) -> SiteInfo:
    return SiteInfo(
        id=site.id,
        lead_worker_id=site.lead_worker_id,
        operations_manager_id=site.operations_manager_id,
        site_code=site.site_code,
        city=site.city,
    )


def load_plan_snapshot(db: Session, tenant_id: uuid.UUID, week_id: str) -> PlanSnapshot:
    """Read the plan of (tenant, week) with each worker's role and the planned job sites."""
    rows = (
        db.query(PlanAssignment, Worker)
        .join(Worker, Worker.id == PlanAssignment.worker_id)
        .filter(
            PlanAssignment.tenant_id == tenant_id,
            PlanAssignment.week_id == week_id,
        )
        .all()
    )
    entries = []
    workers: Dict[uuid.UUID, WorkerInfo] = {}
    for assignment, worker in rows:
        entries.append(PlanEntry(
            worker_id=assignment.worker_id,
            job_site_id=assignment.job_site_id,
            day=assignment.day,
            is_responsible_lead=bool(assignment.is_responsible_lead),
        ))
        workers.setdefault(worker.id, worker_info(worker))

    site_ids = {e.job_site_id for e in entries}
    sites = db.query(JobSite).filter(JobSite.id.in_(site_ids)).all() if site_ids else []
    return build_plan_snapshot(tenant_id, week_id, entries, workers.values(), [site_info(s) for s in sites])


def week_plan_days(
    db: Session,
    tenant_id: uuid.UUID,
    week_id: str,
    worker_ids: Iterable[uuid.UUID],
) -> Dict[Pair, List[date]]:
    """Planned days of the given workers during a week, per (worker, site) pair."""
    ids = set(worker_ids)
    if not ids:
        return {}
    days: Dict[Pair, List[date]] = defaultdict(list)
    rows = db.query(PlanAssignment.worker_id, PlanAssignment.job_site_id, PlanAssignment.day).filter(
        PlanAssignment.tenant_id == tenant_id,
        PlanAssignment.week_id == week_id,
        PlanAssignment.worker_id.in_(ids),
    )
    for worker_id, site_id, day in rows:
        days[(worker_id, site_id)].append(day)
    return dict(days)
