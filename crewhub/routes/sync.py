"""
Planning synchronizer API routes.
Called hourly by the scheduler, or manually from the admin screen.
"""
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..auth.security import require_sync_caller
from ..config import settings
from ..db import get_db
from ..schemas.sync import JobRunOut, SyncRequest
from ..services.audit import get_audit_logs, list_job_runs
from ..services.planning_sync import RUN_TYPE, PlanningSyncError, run_planning_sync

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/functions", tags=["sync"])


@router.post("/sync-planning-to-teams")
def sync_planning_to_teams(
    payload: Optional[SyncRequest] = Body(default=None),
    db: Session = Depends(get_db),
    caller: Optional[dict] = Depends(require_sync_caller),
):
    payload = payload or SyncRequest()
    triggered_by = payload.triggered_by or (caller or {}).get("sub")
    try:
        outcome = run_planning_sync(
            db,
            execution_mode=payload.execution_mode.value,
            triggered_by=triggered_by,
            force=payload.force,
            week_override=payload.week_override,
            tenant_id=payload.tenant_id,
        )
    except PlanningSyncError as exc:
        return JSONResponse(status_code=500, content={"error": str(exc)})

    if outcome.skipped:
        return {"message": "Not target hour", "skipped": True}
    return {
        "success": True,
        "semaine": outcome.week_id,
        "stats": outcome.stats.as_dict(),
        "duration_ms": outcome.duration_ms,
        "run_id": str(outcome.run_id) if outcome.run_id else None,
        "tenants": outcome.tenants,
        "skipped_tenants": outcome.skipped_tenants,
        "results": outcome.report.results_as_dicts(settings.sync_history_results_limit),
    }


@router.get("/sync-planning-to-teams/history")
def sync_history(
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    _caller: Optional[dict] = Depends(require_sync_caller),
):
    runs = list_job_runs(db, RUN_TYPE, limit=limit)
    return [JobRunOut.model_validate(r).model_dump(mode="json") for r in runs]


@router.get("/sync-planning-to-teams/audit")
def sync_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _caller: Optional[dict] = Depends(require_sync_caller),
):
    """Audit trail of lead changes, deleted timesheets and removed days."""
    logs = get_audit_logs(db, entity_type, entity_id, limit, offset)
    return [
        {
            "id": str(log.id),
            "entity_type": log.entity_type,
            "entity_id": str(log.entity_id),
            "action": log.action,
            "actor_id": log.actor_id,
            "actor_role": log.actor_role,
            "source": log.source,
            "changes_json": log.changes_json,
            "timestamp_utc": log.timestamp_utc.isoformat() if log.timestamp_utc else None,
            "context": log.context,
            "integrity_hash": log.integrity_hash,
        }
        for log in logs
    ]
