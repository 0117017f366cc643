import uuid
from datetime import datetime, time, timezone

import pytest

from crewhub.models.models import (
    AuditLog,
    CrewDayAssignment,
    FinisherDayAssignment,
    JobRunHistory,
    JobSite,
    Timesheet,
    TimesheetDay,
    ROLE_LEAD,
    STATUS_CREW_VALIDATED,
    STATUS_SENT_TO_HR,
    STATUS_SUPERVISOR_VALIDATED,
)
from crewhub.services import planning_sync
from crewhub.services.audit import get_audit_logs
from crewhub.services.planning_sync import RUN_TYPE, PlanningSyncError, run_planning_sync

from .factories import (
    PREVIOUS_MONDAY,
    PREVIOUS_WEEK,
    WEEK,
    absence,
    crew_rows,
    finisher_rows,
    make_manager,
    make_site,
    make_timesheet,
    make_worker,
    plan,
    validate,
    week_days,
)


def _sync(db, **kwargs):
    kwargs.setdefault("force", True)
    kwargs.setdefault("week_override", WEEK)
    return run_planning_sync(db, execution_mode="manual", triggered_by="tests", **kwargs)


def _sheet(db, worker, site, week_id=WEEK):
    query = db.query(Timesheet).filter(Timesheet.worker_id == worker.id, Timesheet.week_id == week_id)
    if site is None:
        return query.filter(Timesheet.job_site_id.is_(None)).first()
    return query.filter(Timesheet.job_site_id == site.id).first()


def _hours(db, sheet):
    rows = db.query(TimesheetDay).filter(TimesheetDay.timesheet_id == sheet.id).order_by(TimesheetDay.day).all()
    return [row.hours for row in rows]


@pytest.fixture
def tenant():
    return uuid.uuid4()


@pytest.fixture
def manager(db, tenant):
    return make_manager(db, tenant)


def test_fresh_week_creates_39h_timesheet_and_finisher_rows(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager, city="Lyon")
    mason = make_worker(db, tenant, "Luc")
    plan(db, tenant, mason, site, week_days())
    validate(db, tenant)
    db.commit()

    outcome = _sync(db)

    assert outcome.week_id == WEEK
    assert outcome.previous_week_id == PREVIOUS_WEEK
    assert outcome.stats.as_dict() == {"copied": 0, "created": 1, "deleted": 0, "protected": 0}
    sheet = _sheet(db, mason, site)
    assert sheet.total_hours == 39.0
    assert sheet.supervisor_id == manager.id
    assert _hours(db, sheet) == [8.0, 8.0, 8.0, 8.0, 7.0]
    day = db.query(TimesheetDay).filter(TimesheetDay.timesheet_id == sheet.id).first()
    assert day.travel_code == "A_COMPLETER"
    assert day.travel_count == 1
    assert day.meal_allowance is True
    assert day.site_code == "CH-1"
    assert day.site_city == "Lyon"

    rows = db.query(FinisherDayAssignment).filter(FinisherDayAssignment.worker_id == mason.id).all()
    assert sorted(r.day for r in rows) == week_days()
    assert {r.manager_id for r in rows} == {manager.id}
    assert db.query(CrewDayAssignment).count() == 0

    run = db.query(JobRunHistory).one()
    assert run.run_type == RUN_TYPE
    assert run.execution_mode == "manual"
    assert run.success_count == 1
    assert run.failure_count == 0
    assert run.details["week"] == WEEK
    assert run.details["results"][0]["action"] == "created"


def test_identical_week_is_copied_forward(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    mason = make_worker(db, tenant, "Luc")
    previous_days = week_days(PREVIOUS_MONDAY)
    finisher_rows(db, tenant, mason, site, manager, previous_days, week_id=PREVIOUS_WEEK)
    make_timesheet(
        db, tenant, mason, site,
        dict(zip(previous_days, [7.0, 8.0, 8.0, 8.0, 6.0])),
        week_id=PREVIOUS_WEEK,
        status=STATUS_SENT_TO_HR,
        travel_code="T3",
        meal_type="PANIER",
        start_time=time(7, 30),
        signature_data="signed",
        comment="left early",
    )
    plan(db, tenant, mason, site, week_days())
    validate(db, tenant)
    db.commit()

    outcome = _sync(db)

    assert outcome.stats.copied == 1
    assert outcome.stats.created == 0
    sheet = _sheet(db, mason, site)
    assert sheet.total_hours == 37.0
    days = db.query(TimesheetDay).filter(TimesheetDay.timesheet_id == sheet.id).order_by(TimesheetDay.day).all()
    assert [d.day for d in days] == week_days()
    assert [d.hours for d in days] == [7.0, 8.0, 8.0, 8.0, 6.0]
    assert {d.travel_code for d in days} == {"T3"}
    assert {d.meal_type for d in days} == {"PANIER"}
    assert days[0].start_time == time(7, 30)
    assert all(d.signature_data is None and d.comment is None for d in days)


def test_changed_schedule_gets_fresh_defaults(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    mason = make_worker(db, tenant, "Luc")
    previous_days = week_days(PREVIOUS_MONDAY, 4)
    finisher_rows(db, tenant, mason, site, manager, previous_days, week_id=PREVIOUS_WEEK)
    make_timesheet(db, tenant, mason, site, {d: 9.0 for d in previous_days}, week_id=PREVIOUS_WEEK)
    plan(db, tenant, mason, site, week_days())
    validate(db, tenant)
    db.commit()

    outcome = _sync(db)

    assert outcome.stats.copied == 0
    assert outcome.stats.created == 1
    assert _sheet(db, mason, site).total_hours == 39.0


def test_second_run_writes_nothing(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    mason = make_worker(db, tenant, "Luc")
    finisher = make_worker(db, tenant, "Sofia")
    plan(db, tenant, mason, site, week_days())
    plan(db, tenant, finisher, site, week_days()[:3])
    validate(db, tenant)
    db.commit()

    first = _sync(db)
    assert first.stats.created == 2

    second = _sync(db)
    assert second.stats.as_dict() == {"copied": 0, "created": 0, "deleted": 0, "protected": 0}
    assert {r.action for r in second.report.results} == {"skipped"}
    assert db.query(Timesheet).count() == 2
    assert db.query(TimesheetDay).count() == 8
    assert db.query(FinisherDayAssignment).count() == 8
    assert db.query(JobRunHistory).count() == 2


def test_protected_timesheet_hours_are_untouched(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    mason = make_worker(db, tenant, "Luc")
    make_timesheet(db, tenant, mason, site, {d: 5.0 for d in week_days()[:2]}, status=STATUS_CREW_VALIDATED)
    plan(db, tenant, mason, site, week_days())
    validate(db, tenant)
    db.commit()

    outcome = _sync(db)

    assert outcome.stats.protected == 1
    assert outcome.stats.created == 0
    sheet = _sheet(db, mason, site)
    assert sheet.status == STATUS_CREW_VALIDATED
    assert sheet.total_hours == 10.0
    assert _hours(db, sheet) == [5.0, 5.0]
    # Routing rows are still refreshed
    assert db.query(FinisherDayAssignment).filter(FinisherDayAssignment.worker_id == mason.id).count() == 5
    assert outcome.report.results[0].action == "skipped"


def test_lead_secondary_site_is_zeroed_and_guarded(db, tenant, manager):
    primary = make_site(db, tenant, "CH-1", manager=manager)
    secondary = make_site(db, tenant, "CH-2", manager=manager, city="Bron")
    lead = make_worker(db, tenant, "Paul", role=ROLE_LEAD, primary_site=primary)
    days = week_days()
    plan(db, tenant, lead, primary, days[:4])
    plan(db, tenant, lead, secondary, days[4:])
    validate(db, tenant)
    db.commit()

    outcome = _sync(db)

    assert outcome.stats.created == 2
    main_sheet = _sheet(db, lead, primary)
    assert main_sheet.total_hours == 32.0
    assert main_sheet.supervisor_id == lead.id
    zero_sheet = _sheet(db, lead, secondary)
    assert zero_sheet.total_hours == 0.0
    zero_day = db.query(TimesheetDay).filter(TimesheetDay.timesheet_id == zero_sheet.id).one()
    assert zero_day.day == days[4]
    assert zero_day.hours == 0.0
    assert zero_day.travel_count == 0
    assert zero_day.travel_code is None
    assert zero_day.meal_allowance is False
    assert zero_day.site_code == "CH-2"

    db.expire_all()
    assert db.get(JobSite, primary.id).lead_worker_id == lead.id
    # Lead shows on the primary site every working day, nowhere else
    rows = db.query(CrewDayAssignment).filter(CrewDayAssignment.worker_id == lead.id).all()
    assert {r.job_site_id for r in rows} == {primary.id}
    assert sorted(r.day for r in rows) == days
    assert db.query(FinisherDayAssignment).count() == 0


def test_lead_change_migrates_ownership(db, tenant, manager):
    old_lead = make_worker(db, tenant, "Old", role=ROLE_LEAD)
    new_lead = make_worker(db, tenant, "New", role=ROLE_LEAD)
    site = make_site(db, tenant, "CH-1", manager=manager, lead=old_lead)
    mason = make_worker(db, tenant, "Luc")
    make_timesheet(db, tenant, mason, site, {d: 8.0 for d in week_days()}, supervisor=old_lead)
    crew_rows(db, tenant, mason, site, old_lead, week_days())
    plan(db, tenant, new_lead, site, week_days())
    plan(db, tenant, mason, site, week_days())
    validate(db, tenant)
    db.commit()

    _sync(db)

    db.expire_all()
    assert db.get(JobSite, site.id).lead_worker_id == new_lead.id
    assert _sheet(db, mason, site).supervisor_id == new_lead.id
    assert _sheet(db, mason, site).total_hours == 40.0
    rows = db.query(CrewDayAssignment).filter(CrewDayAssignment.worker_id == mason.id).all()
    assert len(rows) == 5
    assert {r.lead_id for r in rows} == {new_lead.id}
    (audit,) = get_audit_logs(db, entity_type="job_site", entity_id=site.id)
    assert audit.action == "UPDATE_LEAD"
    assert audit.changes_json["lead_worker_id"]["after"] == str(new_lead.id)
    assert audit.integrity_hash


def test_lead_partial_week_repeated_is_copied_forward(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    lead = make_worker(db, tenant, "Paul", role=ROLE_LEAD, primary_site=site)
    plan(db, tenant, lead, site, week_days(PREVIOUS_MONDAY, 4), week_id=PREVIOUS_WEEK)
    validate(db, tenant, week_id=PREVIOUS_WEEK)
    plan(db, tenant, lead, site, week_days(count=4))
    validate(db, tenant)
    db.commit()

    _sync(db, week_override=PREVIOUS_WEEK)
    previous = _sheet(db, lead, site, week_id=PREVIOUS_WEEK)
    # The routing rows of the previous week cover the whole week
    assert db.query(CrewDayAssignment).filter(CrewDayAssignment.week_id == PREVIOUS_WEEK).count() == 5
    db.query(TimesheetDay).filter(TimesheetDay.timesheet_id == previous.id).update(
        {"hours": 9.0, "normal_hours": 9.0, "day_total": 9.0}
    )
    previous.total_hours = 36.0
    db.commit()

    outcome = _sync(db)

    assert outcome.stats.copied == 1
    assert outcome.stats.created == 0
    sheet = _sheet(db, lead, site)
    assert sheet.total_hours == 36.0
    assert _hours(db, sheet) == [9.0, 9.0, 9.0, 9.0]


def test_site_without_planned_lead_returns_to_manager(db, tenant, manager):
    old_lead = make_worker(db, tenant, "Old", role=ROLE_LEAD)
    site = make_site(db, tenant, "CH-1", manager=manager, lead=old_lead)
    mason = make_worker(db, tenant, "Luc")
    make_timesheet(db, tenant, mason, site, {d: 8.0 for d in week_days()}, supervisor=old_lead)
    crew_rows(db, tenant, mason, site, old_lead, week_days())
    plan(db, tenant, mason, site, week_days())
    validate(db, tenant)
    db.commit()

    _sync(db)

    db.expire_all()
    assert db.get(JobSite, site.id).lead_worker_id is None
    assert _sheet(db, mason, site).supervisor_id == manager.id
    assert db.query(CrewDayAssignment).count() == 0
    rows = db.query(FinisherDayAssignment).filter(FinisherDayAssignment.worker_id == mason.id).all()
    assert len(rows) == 5
    assert {r.manager_id for r in rows} == {manager.id}


def test_unplanned_pairs_are_deleted_unless_protected(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    gone = make_worker(db, tenant, "Gone")
    kept = make_worker(db, tenant, "Kept")
    days = week_days()[:2]
    gone_sheet = make_timesheet(db, tenant, gone, site, {d: 8.0 for d in days})
    finisher_rows(db, tenant, gone, site, manager, days)
    make_timesheet(db, tenant, kept, site, {d: 8.0 for d in days}, status=STATUS_SUPERVISOR_VALIDATED)
    finisher_rows(db, tenant, kept, site, manager, days)
    db.commit()
    gone_sheet_id = gone_sheet.id

    outcome = _sync(db, tenant_id=tenant)

    assert outcome.stats.deleted == 1
    assert outcome.stats.protected == 1
    db.expire_all()
    assert _sheet(db, gone, site) is None
    assert db.query(TimesheetDay).filter(TimesheetDay.timesheet_id == gone_sheet_id).count() == 0
    assert db.query(FinisherDayAssignment).filter(FinisherDayAssignment.worker_id == gone.id).count() == 0
    assert _sheet(db, kept, site).status == STATUS_SUPERVISOR_VALIDATED
    assert db.query(FinisherDayAssignment).filter(FinisherDayAssignment.worker_id == kept.id).count() == 0
    assert db.query(AuditLog).filter(AuditLog.entity_id == gone_sheet_id, AuditLog.action == "DELETE").count() == 1


def test_phantom_days_are_removed_and_recorded_hours_kept(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    mason = make_worker(db, tenant, "Luc")
    make_timesheet(db, tenant, mason, site, {d: 9.0 for d in week_days()}, supervisor=manager)
    plan(db, tenant, mason, site, week_days()[:3])
    validate(db, tenant)
    db.commit()

    outcome = _sync(db)

    sheet = _sheet(db, mason, site)
    assert _hours(db, sheet) == [9.0, 9.0, 9.0]
    assert sheet.total_hours == 27.0
    assert outcome.stats.created == 1
    assert "phantom" in outcome.report.results[0].details


def test_missing_plan_days_are_added_to_recorded_timesheet(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    mason = make_worker(db, tenant, "Luc")
    days = week_days()
    make_timesheet(db, tenant, mason, site, {days[0]: 6.0}, supervisor=manager)
    plan(db, tenant, mason, site, days[:2])
    validate(db, tenant)
    db.commit()

    _sync(db)

    sheet = _sheet(db, mason, site)
    assert _hours(db, sheet) == [6.0, 8.0]
    assert sheet.total_hours == 14.0


def test_cross_table_rows_are_repaired(db, tenant, manager):
    lead = make_worker(db, tenant, "Paul", role=ROLE_LEAD)
    site = make_site(db, tenant, "CH-1", manager=manager)
    mason = make_worker(db, tenant, "Luc")
    finisher_rows(db, tenant, mason, site, manager, week_days())
    plan(db, tenant, lead, site, week_days())
    plan(db, tenant, mason, site, week_days())
    validate(db, tenant)
    db.commit()

    _sync(db)

    assert db.query(FinisherDayAssignment).count() == 0
    rows = db.query(CrewDayAssignment).filter(CrewDayAssignment.worker_id == mason.id).all()
    assert {r.lead_id for r in rows} == {lead.id}
    assert len(rows) == 5


def test_long_term_absence_creates_one_ghost_timesheet(db, tenant, manager):
    sick = make_worker(db, tenant, "Marc")
    back = make_worker(db, tenant, "Anne")
    absence(db, tenant, sick, "AM", start=week_days()[2])
    absence(db, tenant, back, "CP", start=PREVIOUS_MONDAY, end=week_days(PREVIOUS_MONDAY)[-1])
    db.commit()

    outcome = _sync(db, tenant_id=tenant)

    assert outcome.stats.created == 1
    ghost = _sheet(db, sick, None)
    assert ghost.status == STATUS_SENT_TO_HR
    assert ghost.total_hours == 0.0
    assert ghost.supervisor_id is None
    days = db.query(TimesheetDay).filter(TimesheetDay.timesheet_id == ghost.id).order_by(TimesheetDay.day).all()
    assert [d.day for d in days] == week_days()[2:]
    assert {d.absence_type for d in days} == {"AM"}
    assert {d.hours for d in days} == {0.0}
    assert _sheet(db, back, None) is None

    again = _sync(db, tenant_id=tenant)
    assert again.stats.created == 0
    assert db.query(Timesheet).filter(Timesheet.job_site_id.is_(None)).count() == 1


def test_unvalidated_tenants_are_skipped(db, tenant, manager):
    site = make_site(db, tenant, "CH-1", manager=manager)
    mason = make_worker(db, tenant, "Luc")
    plan(db, tenant, mason, site, week_days())
    db.commit()

    outcome = _sync(db)

    assert outcome.tenants == []
    assert outcome.skipped_tenants == [str(tenant)]
    assert db.query(Timesheet).count() == 0

    # An explicit tenant bypasses validation
    outcome = _sync(db, tenant_id=tenant)
    assert outcome.stats.created == 1


def test_hour_gate_skips_without_writing(db):
    outcome = run_planning_sync(db, now=datetime(2025, 3, 3, 3, 0, tzinfo=timezone.utc))
    assert outcome.skipped
    assert db.query(JobRunHistory).count() == 0

    # 05:00 in Paris is 04:00 UTC in winter
    outcome = run_planning_sync(db, now=datetime(2025, 3, 3, 4, 0, tzinfo=timezone.utc))
    assert not outcome.skipped
    assert outcome.week_id == WEEK
    assert db.query(JobRunHistory).count() == 1


def test_failure_is_recorded_and_raised(db, tenant, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(planning_sync, "sync_tenant", boom)

    with pytest.raises(PlanningSyncError) as excinfo:
        _sync(db, tenant_id=tenant)

    assert str(excinfo.value) == "boom"
    run = db.query(JobRunHistory).one()
    assert excinfo.value.run_id == run.id
    assert run.failure_count == 1
    assert run.success_count == 0
    assert run.error_message == "boom"
