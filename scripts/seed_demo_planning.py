"""
Seed the local database with a demo tenant: two job sites, a crew and a validated
plan for the current week.

Usage:
  python scripts/seed_demo_planning.py

This script is idempotent: job sites are matched on site code, workers on name,
plan rows on (worker, site, day).
"""
import sys
import os
import uuid

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from crewhub.db import SessionLocal, Base, engine
from crewhub.models.models import (
    JobSite,
    PlanAssignment,
    PlanValidation,
    Worker,
    ROLE_FINISHER,
    ROLE_LEAD,
    ROLE_MASON,
    ROLE_OPERATIONS_MANAGER,
)
from crewhub.services.time_rules import paris_today
from crewhub.services.weeks import week_id_for, working_days

DEMO_TENANT_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")


def ensure_worker(session, first_name: str, last_name: str, role: str) -> Worker:
    worker = session.query(Worker).filter(
        Worker.tenant_id == DEMO_TENANT_ID,
        Worker.first_name == first_name,
        Worker.last_name == last_name,
    ).first()
    if worker:
        if worker.role != role:
            worker.role = role
        return worker
    worker = Worker(tenant_id=DEMO_TENANT_ID, first_name=first_name, last_name=last_name, role=role)
    session.add(worker)
    session.flush()
    return worker


def ensure_site(session, code: str, name: str, city: str, manager: Worker) -> JobSite:
    site = session.query(JobSite).filter(JobSite.tenant_id == DEMO_TENANT_ID, JobSite.site_code == code).first()
    if site:
        site.operations_manager_id = manager.id
        return site
    site = JobSite(tenant_id=DEMO_TENANT_ID, site_code=code, name=name, city=city, operations_manager_id=manager.id)
    session.add(site)
    session.flush()
    return site


def ensure_plan(session, week_id: str, worker: Worker, site: JobSite, days, responsible: bool = False) -> int:
    added = 0
    for day in days:
        row = session.query(PlanAssignment).filter(
            PlanAssignment.worker_id == worker.id,
            PlanAssignment.job_site_id == site.id,
            PlanAssignment.day == day,
        ).first()
        if row:
            continue
        session.add(PlanAssignment(
            tenant_id=DEMO_TENANT_ID,
            week_id=week_id,
            worker_id=worker.id,
            job_site_id=site.id,
            day=day,
            is_responsible_lead=responsible,
        ))
        added += 1
    return added


def main() -> None:
    # Ensure tables exist (safe for SQLite dev)
    Base.metadata.create_all(bind=engine)

    week_id = week_id_for(paris_today())
    days = working_days(week_id)

    session = SessionLocal()
    try:
        manager = ensure_worker(session, "Claire", "Martin", ROLE_OPERATIONS_MANAGER)
        lead = ensure_worker(session, "Paul", "Bernard", ROLE_LEAD)
        mason = ensure_worker(session, "Luc", "Petit", ROLE_MASON)
        finisher = ensure_worker(session, "Sofia", "Moreau", ROLE_FINISHER)

        school = ensure_site(session, "CH-101", "Groupe scolaire", "Lyon", manager)
        housing = ensure_site(session, "CH-102", "Résidence Les Tilleuls", "Villeurbanne", manager)
        lead.primary_job_site_id = school.id

        added = 0
        added += ensure_plan(session, week_id, lead, school, days[:4], responsible=True)
        added += ensure_plan(session, week_id, lead, housing, days[4:])
        added += ensure_plan(session, week_id, mason, school, days)
        added += ensure_plan(session, week_id, finisher, housing, days[:3])

        if not session.query(PlanValidation).filter(
            PlanValidation.tenant_id == DEMO_TENANT_ID,
            PlanValidation.week_id == week_id,
        ).first():
            session.add(PlanValidation(tenant_id=DEMO_TENANT_ID, week_id=week_id, validated_by=manager.id))

        session.commit()
        print(f"Seeded demo tenant {DEMO_TENANT_ID} for {week_id}: {added} new plan row(s)")
    finally:
        session.close()


if __name__ == "__main__":
    main()
