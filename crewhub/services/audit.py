"""
Audit logging service.
Append-only audit log with integrity hashing, and the job run history
written once per synchronizer execution.
"""
import hashlib
import json
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from ..models.models import AuditLog, JobRunHistory
from ..config import settings


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
    commit: bool = True,
) -> AuditLog:
    """
    Create an append-only audit log entry.

    Args:
        db: Database session
        entity_type: Type of entity (job_site|timesheet)
        entity_id: Entity ID
        action: Action performed (UPDATE_LEAD|DELETE)
        actor_id: Who performed the action (user id, or "system")
        actor_role: Role of the actor (admin|service_role|system)
        source: Source of the action (sync|api)
        changes_json: Before/after diff
        context: Additional context (tenant_id, week_id, worker_id, ...)
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)
        commit: Commit immediately; pass False to batch with the caller's writes

    Returns:
        Created AuditLog object
    """
    timestamp_utc = datetime.utcnow().replace(tzinfo=None)

    integrity_hash = None
    if integrity_secret is None:
        integrity_secret = settings.jwt_secret

    if integrity_secret:
        canonical_data = {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": str(actor_id) if actor_id else None,
            "actor_role": actor_role,
            "source": source,
            "timestamp_utc": timestamp_utc.isoformat(),
            "changes": changes_json,
            "context": context,
        }

        # Remove None values and sort keys for consistency
        canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
        canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)

        hash_input = f"{canonical_json}:{integrity_secret}"
        integrity_hash = hashlib.sha256(hash_input.encode()).hexdigest()

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=str(actor_id) if actor_id else None,
        actor_role=actor_role,
        source=source or "system",
        changes_json=_jsonable(changes_json),
        timestamp_utc=timestamp_utc,
        context=_jsonable(context),
        integrity_hash=integrity_hash,
    )

    db.add(audit_log)
    if commit:
        db.commit()
        db.refresh(audit_log)

    return audit_log


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    limit: int = 100,
    offset: int = 0
) -> List[AuditLog]:
    query = db.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)

    query = query.order_by(AuditLog.timestamp_utc.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff


def record_job_run(
    db: Session,
    run_type: str,
    execution_mode: str,
    triggered_by: Optional[str] = None,
    recipients_count: int = 0,
    success_count: int = 0,
    failure_count: int = 0,
    duration_ms: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
) -> JobRunHistory:
    """Persist one execution of a scheduled job (synchronizer, reminders) to the history table."""
    run = JobRunHistory(
        run_type=run_type,
        execution_mode=execution_mode,
        triggered_by=triggered_by,
        executed_at=datetime.utcnow(),
        recipients_count=recipients_count,
        success_count=success_count,
        failure_count=failure_count,
        duration_ms=duration_ms,
        details=_jsonable(details),
        error_message=error_message,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def list_job_runs(db: Session, run_type: str, limit: int = 20) -> List[JobRunHistory]:
    return (
        db.query(JobRunHistory)
        .filter(JobRunHistory.run_type == run_type)
        .order_by(JobRunHistory.executed_at.desc())
        .limit(limit)
        .all()
    )


def _jsonable(value: Optional[Dict]) -> Optional[Dict]:
    # JSON columns reject UUID/date values
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))
