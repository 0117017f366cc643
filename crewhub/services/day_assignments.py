"""
Per-day routing rows that decide which daily view shows a worker:
crew lead view (CrewDayAssignment) on lead-run sites, operations manager view
(FinisherDayAssignment) on sites without a lead.
"""
from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

import structlog
from sqlalchemy.orm import Session

from ..models.models import CrewDayAssignment, FinisherDayAssignment
from .lead_resolution import SiteOwnership
from .plan_snapshot import Pair

logger = structlog.get_logger(__name__)

ASSIGNMENT_MODELS = (CrewDayAssignment, FinisherDayAssignment)


def _target(ownership: SiteOwnership) -> Optional[Tuple[type, str, uuid.UUID]]:
    if ownership.lead_id is not None:
        return CrewDayAssignment, "lead_id", ownership.lead_id
    if ownership.manager_id is not None:
        return FinisherDayAssignment, "manager_id", ownership.manager_id
    return None


def sync_pair_day_assignments(
    db: Session,
    tenant_id: uuid.UUID,
    week_id: str,
    worker_id: uuid.UUID,
    ownership: SiteOwnership,
    days: Iterable[date],
    prune: bool = True,
) -> bool:
    """
    Upsert one row per day for (worker, site) in the table the site routes to.

    Args:
        days: Days the worker must appear on the site
        prune: Also delete the pair's rows on other days of the week

    Returns:
        True if anything was written
    """
    target = _target(ownership)
    if target is None:
        logger.warning(
            "site_without_supervisor",
            job_site_id=str(ownership.job_site_id),
            worker_id=str(worker_id),
        )
        return False
    model, supervisor_attr, supervisor_id = target
    wanted = set(days)

    existing = {
        row.day: row
        for row in db.query(model).filter(
            model.worker_id == worker_id,
            model.job_site_id == ownership.job_site_id,
            model.week_id == week_id,
        )
    }
    changed = False
    for day in sorted(wanted):
        row = existing.get(day)
        if row is None:
            # Natural key (worker, site, day) may hold a row filed under another week id
            row = db.query(model).filter(
                model.worker_id == worker_id,
                model.job_site_id == ownership.job_site_id,
                model.day == day,
            ).first()
        if row is None:
            db.add(model(
                tenant_id=tenant_id,
                week_id=week_id,
                worker_id=worker_id,
                job_site_id=ownership.job_site_id,
                day=day,
                **{supervisor_attr: supervisor_id},
            ))
            changed = True
        elif getattr(row, supervisor_attr) != supervisor_id or row.week_id != week_id or row.tenant_id != tenant_id:
            setattr(row, supervisor_attr, supervisor_id)
            row.week_id = week_id
            row.tenant_id = tenant_id
            row.updated_at = datetime.utcnow()
            changed = True

    if prune:
        for day, row in existing.items():
            if day not in wanted:
                db.delete(row)
                changed = True
    if changed:
        db.flush()
    return changed


def delete_pair_day_assignments(
    db: Session,
    tenant_id: uuid.UUID,
    week_id: str,
    worker_id: uuid.UUID,
    job_site_id: uuid.UUID,
) -> int:
    deleted = 0
    for model in ASSIGNMENT_MODELS:
        deleted += db.query(model).filter(
            model.tenant_id == tenant_id,
            model.week_id == week_id,
            model.worker_id == worker_id,
            model.job_site_id == job_site_id,
        ).delete(synchronize_session=False)
    return deleted


def delete_worker_rows_off_site(
    db: Session,
    tenant_id: uuid.UUID,
    week_id: str,
    worker_id: uuid.UUID,
    keep_job_site_id: uuid.UUID,
) -> int:
    """Delete a worker's rows of the week on every site but one."""
    deleted = 0
    for model in ASSIGNMENT_MODELS:
        deleted += db.query(model).filter(
            model.tenant_id == tenant_id,
            model.week_id == week_id,
            model.worker_id == worker_id,
            model.job_site_id != keep_job_site_id,
        ).delete(synchronize_session=False)
    return deleted


def delete_site_rows(db: Session, model: type, tenant_id: uuid.UUID, week_id: str, job_site_id: uuid.UUID) -> int:
    return db.query(model).filter(
        model.tenant_id == tenant_id,
        model.week_id == week_id,
        model.job_site_id == job_site_id,
    ).delete(synchronize_session=False)


def week_assignment_pairs(db: Session, tenant_id: uuid.UUID, week_id: str) -> Set[Pair]:
    pairs: Set[Pair] = set()
    for model in ASSIGNMENT_MODELS:
        rows = db.query(model.worker_id, model.job_site_id).filter(
            model.tenant_id == tenant_id,
            model.week_id == week_id,
        ).distinct()
        pairs.update((worker_id, site_id) for worker_id, site_id in rows)
    return pairs


def week_assignment_days(db: Session, tenant_id: uuid.UUID, week_id: str) -> Dict[Pair, List[date]]:
    """Days each (worker, site) pair was routed on during a week, across both tables."""
    days: Dict[Pair, List[date]] = defaultdict(list)
    for model in ASSIGNMENT_MODELS:
        rows = db.query(model.worker_id, model.job_site_id, model.day).filter(
            model.tenant_id == tenant_id,
            model.week_id == week_id,
        )
        for worker_id, site_id, day in rows:
            days[(worker_id, site_id)].append(day)
    return dict(days)
