import uuid
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Time,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Worker roles
ROLE_LEAD = "lead"
ROLE_MASON = "mason"
ROLE_FINISHER = "finisher"
ROLE_CRANE_OPERATOR = "crane_operator"
ROLE_OPERATIONS_MANAGER = "operations_manager"

# Timesheet statuses, in workflow order
STATUS_DRAFT = "DRAFT"
STATUS_IN_SIGNATURE = "IN_SIGNATURE"
STATUS_CREW_VALIDATED = "CREW_VALIDATED"
STATUS_SUPERVISOR_VALIDATED = "SUPERVISOR_VALIDATED"
STATUS_SENT_TO_HR = "SENT_TO_HR"
STATUS_AUTO_VALIDATED = "AUTO_VALIDATED"
STATUS_CLOSED = "CLOSED"

EDITABLE_STATUSES = frozenset({STATUS_DRAFT, STATUS_IN_SIGNATURE})
PROTECTED_STATUSES = frozenset({
    STATUS_CREW_VALIDATED,
    STATUS_SUPERVISOR_VALIDATED,
    STATUS_SENT_TO_HR,
    STATUS_AUTO_VALIDATED,
    STATUS_CLOSED,
})


class Worker(Base):
    """Employee that can be planned on job sites"""
    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    role: Mapped[Optional[str]] = mapped_column(String(50))  # lead|mason|finisher|crane_operator|operations_manager
    # Site a multi-site lead's own hours are counted on
    primary_job_site_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("job_sites.id", ondelete="SET NULL", use_alter=True)
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or str(self.id)


class JobSite(Base):
    __tablename__ = "job_sites"

    id: Mapped[uuid.UUID] = uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    site_code: Mapped[Optional[str]] = mapped_column(String(50))
    city: Mapped[Optional[str]] = mapped_column(String(255))
    # Rewritten by the planning synchronizer every run
    lead_worker_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"))
    operations_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"))
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class PlanAssignment(Base):
    """Supervisor-authored plan: worker on job site on a given day"""
    __tablename__ = "plan_assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    week_id: Mapped[str] = mapped_column(String(8), nullable=False)  # YYYY-Sww
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    job_site_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("job_sites.id", ondelete="CASCADE"), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    is_responsible_lead: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    worker = relationship("Worker")

    __table_args__ = (
        UniqueConstraint("worker_id", "job_site_id", "day", name="uq_plan_worker_site_day"),
        Index("idx_plan_tenant_week", "tenant_id", "week_id"),
    )


class PlanValidation(Base):
    """A tenant's plan for a week is final and may be synchronized"""
    __tablename__ = "plan_validations"

    id: Mapped[uuid.UUID] = uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    week_id: Mapped[str] = mapped_column(String(8), nullable=False)
    validated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    validated_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    __table_args__ = (
        UniqueConstraint("tenant_id", "week_id", name="uq_plan_validation_tenant_week"),
    )


class Timesheet(Base):
    """Weekly hours of one worker on one job site (no site = long-term absence)"""
    __tablename__ = "timesheets"

    id: Mapped[uuid.UUID] = uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    job_site_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("job_sites.id", ondelete="CASCADE"))
    week_id: Mapped[str] = mapped_column(String(8), nullable=False)
    supervisor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"))
    status: Mapped[str] = mapped_column(String(30), default=STATUS_DRAFT, nullable=False)
    total_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    days = relationship("TimesheetDay", back_populates="timesheet", cascade="all, delete-orphan", order_by="TimesheetDay.day")

    __table_args__ = (
        UniqueConstraint("worker_id", "job_site_id", "week_id", name="uq_timesheet_worker_site_week"),
        Index("idx_timesheets_tenant_week", "tenant_id", "week_id"),
    )

    @property
    def is_protected(self) -> bool:
        return self.status in PROTECTED_STATUSES


class TimesheetDay(Base):
    __tablename__ = "timesheet_days"

    id: Mapped[uuid.UUID] = uuid_pk()
    timesheet_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    normal_hours: Mapped[Optional[float]] = mapped_column(Float)
    weather_hours: Mapped[Optional[float]] = mapped_column(Float)  # Hours lost to bad weather
    travel_count: Mapped[Optional[int]] = mapped_column(Integer)
    travel_code: Mapped[Optional[str]] = mapped_column(String(20))  # T1..T17|T_PERSO|GD|A_COMPLETER
    meal_allowance: Mapped[Optional[bool]] = mapped_column(Boolean)
    meal_type: Mapped[Optional[str]] = mapped_column(String(20))  # PANIER|RESTO
    start_time: Mapped[Optional[time]] = mapped_column(Time(timezone=False))
    end_time: Mapped[Optional[time]] = mapped_column(Time(timezone=False))
    break_minutes: Mapped[int] = mapped_column(Integer, default=0)
    day_total: Mapped[Optional[float]] = mapped_column(Float)
    absence_type: Mapped[Optional[str]] = mapped_column(String(30))  # CP|RTT|AM|MP|AT|...
    site_code: Mapped[Optional[str]] = mapped_column(String(50))  # Snapshot of the job site code
    site_city: Mapped[Optional[str]] = mapped_column(String(255))
    comment: Mapped[Optional[str]] = mapped_column(Text)
    signature_data: Mapped[Optional[str]] = mapped_column(Text)

    timesheet = relationship("Timesheet", back_populates="days")

    __table_args__ = (
        UniqueConstraint("timesheet_id", "day", name="uq_timesheet_day"),
    )


class CrewDayAssignment(Base):
    """Shows a worker in a crew lead's daily view"""
    __tablename__ = "crew_day_assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    week_id: Mapped[str] = mapped_column(String(8), nullable=False)
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    lead_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    job_site_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("job_sites.id", ondelete="CASCADE"), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("worker_id", "job_site_id", "day", name="uq_crew_day_worker_site_day"),
        Index("idx_crew_day_tenant_week", "tenant_id", "week_id"),
    )


class FinisherDayAssignment(Base):
    """Shows a worker in an operations manager's daily view"""
    __tablename__ = "finisher_day_assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    week_id: Mapped[str] = mapped_column(String(8), nullable=False)
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    manager_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    job_site_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("job_sites.id", ondelete="CASCADE"), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("worker_id", "job_site_id", "day", name="uq_finisher_day_worker_site_day"),
        Index("idx_finisher_day_tenant_week", "tenant_id", "week_id"),
    )


class LongTermAbsence(Base):
    __tablename__ = "long_term_absences"

    id: Mapped[uuid.UUID] = uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    absence_type: Mapped[str] = mapped_column(String(30), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)  # None = open-ended
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class JobRunHistory(Base):
    """One row per scheduled/manual job execution"""
    __tablename__ = "job_run_history"

    id: Mapped[uuid.UUID] = uuid_pk()
    run_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # sync_planning_teams
    execution_mode: Mapped[str] = mapped_column(String(20), nullable=False)  # cron|manual
    triggered_by: Mapped[Optional[str]] = mapped_column(String(100))
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    recipients_count: Mapped[int] = mapped_column(Integer, default=0)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    error_message: Mapped[Optional[str]] = mapped_column(Text)


class AuditLog(Base):
    """Append-only audit log for synchronizer mutations"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # job_site|timesheet
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # UPDATE_LEAD|DELETE
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))  # system|admin|...
    source: Mapped[Optional[str]] = mapped_column(String(50))  # sync|api
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)  # {tenant_id, week_id, worker_id, ...}
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
