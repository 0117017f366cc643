"""
Timesheet maintenance routes.
"""
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import require_sync_caller
from ..db import get_db
from ..models.models import Timesheet
from ..schemas.sync import RemoveDaysIn
from ..services.audit import create_audit_log
from ..services.timesheets import TimesheetProtectedError, remove_timesheet_days

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/timesheets", tags=["timesheets"])


@router.post("/{timesheet_id}/remove-days")
def remove_days(
    timesheet_id: uuid.UUID,
    payload: RemoveDaysIn,
    db: Session = Depends(get_db),
    caller: Optional[dict] = Depends(require_sync_caller),
):
    """Delete duplicate or stray day rows of an editable timesheet."""
    sheet = db.query(Timesheet).filter(Timesheet.id == timesheet_id).first()
    if sheet is None:
        raise HTTPException(status_code=404, detail="Timesheet not found")
    previous_total = sheet.total_hours
    try:
        result = remove_timesheet_days(db, sheet, payload.dates)
    except TimesheetProtectedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    if result["deleted_count"]:
        create_audit_log(
            db=db,
            entity_type="timesheet",
            entity_id=sheet.id,
            action="REMOVE_DAYS",
            actor_id=(caller or {}).get("sub"),
            actor_role="api",
            source="api",
            changes_json={"total_hours": {"before": previous_total, "after": result["new_total_hours"]}},
            context={"deleted_dates": result["deleted_dates"]},
        )
        logger.info("timesheet_days_removed", timesheet_id=str(sheet.id), count=result["deleted_count"])
    return {
        "success": True,
        "deleted_count": result["deleted_count"],
        "deleted_dates": [d.isoformat() for d in result["deleted_dates"]],
        "new_total_hours": result["new_total_hours"],
    }
