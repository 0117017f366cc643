import uuid
from datetime import date, timedelta

from crewhub.models.models import (
    CrewDayAssignment,
    FinisherDayAssignment,
    JobSite,
    LongTermAbsence,
    PlanAssignment,
    PlanValidation,
    Timesheet,
    TimesheetDay,
    Worker,
    ROLE_MASON,
    ROLE_OPERATIONS_MANAGER,
    STATUS_DRAFT,
)

WEEK = "2025-S10"
PREVIOUS_WEEK = "2025-S09"
MONDAY = date(2025, 3, 3)
PREVIOUS_MONDAY = date(2025, 2, 24)


def week_days(monday=MONDAY, count=5):
    return [monday + timedelta(days=i) for i in range(count)]


def make_worker(db, tenant_id, first_name, last_name="Test", role=ROLE_MASON, primary_site=None):
    worker = Worker(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        first_name=first_name,
        last_name=last_name,
        role=role,
        primary_job_site_id=primary_site.id if primary_site else None,
    )
    db.add(worker)
    db.flush()
    return worker


def make_manager(db, tenant_id, first_name="Claire"):
    return make_worker(db, tenant_id, first_name, "Manager", role=ROLE_OPERATIONS_MANAGER)


def make_site(db, tenant_id, code, manager=None, lead=None, city="Lyon"):
    site = JobSite(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        name=f"Site {code}",
        site_code=code,
        city=city,
        operations_manager_id=manager.id if manager else None,
        lead_worker_id=lead.id if lead else None,
    )
    db.add(site)
    db.flush()
    return site


def plan(db, tenant_id, worker, site, days, week_id=WEEK, responsible=False):
    for day in days:
        db.add(PlanAssignment(
            tenant_id=tenant_id,
            week_id=week_id,
            worker_id=worker.id,
            job_site_id=site.id,
            day=day,
            is_responsible_lead=responsible,
        ))
    db.flush()


def validate(db, tenant_id, week_id=WEEK):
    db.add(PlanValidation(tenant_id=tenant_id, week_id=week_id))
    db.flush()


def make_timesheet(db, tenant_id, worker, site, hours_by_day, week_id=WEEK, status=STATUS_DRAFT, supervisor=None, **day_values):
    sheet = Timesheet(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        worker_id=worker.id,
        job_site_id=site.id if site else None,
        week_id=week_id,
        supervisor_id=supervisor.id if supervisor else None,
        status=status,
        total_hours=float(sum(hours_by_day.values())),
    )
    db.add(sheet)
    db.flush()
    for day, hours in hours_by_day.items():
        db.add(TimesheetDay(
            id=uuid.uuid4(),
            timesheet_id=sheet.id,
            day=day,
            hours=hours,
            normal_hours=hours,
            day_total=hours,
            **day_values,
        ))
    db.flush()
    return sheet


def finisher_rows(db, tenant_id, worker, site, manager, days, week_id=WEEK):
    for day in days:
        db.add(FinisherDayAssignment(
            tenant_id=tenant_id,
            week_id=week_id,
            worker_id=worker.id,
            manager_id=manager.id,
            job_site_id=site.id,
            day=day,
        ))
    db.flush()


def crew_rows(db, tenant_id, worker, site, lead, days, week_id=WEEK):
    for day in days:
        db.add(CrewDayAssignment(
            tenant_id=tenant_id,
            week_id=week_id,
            worker_id=worker.id,
            lead_id=lead.id,
            job_site_id=site.id,
            day=day,
        ))
    db.flush()


def absence(db, tenant_id, worker, absence_type, start, end=None):
    db.add(LongTermAbsence(
        tenant_id=tenant_id,
        worker_id=worker.id,
        absence_type=absence_type,
        start_date=start,
        end_date=end,
    ))
    db.flush()
