"""
Plan validation routes: a tenant's week is synchronized only once validated.
"""
import uuid
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth.security import require_sync_caller
from ..db import get_db
from ..models.models import PlanValidation
from ..schemas.sync import PlanValidationIn
from ..services.weeks import parse_week_id

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/planning", tags=["planning"])


def _validation_out(v: PlanValidation) -> dict:
    return {
        "id": str(v.id),
        "entreprise_id": str(v.tenant_id),
        "semaine": v.week_id,
        "validated_at": v.validated_at.isoformat() if v.validated_at else None,
        "validated_by": str(v.validated_by) if v.validated_by else None,
    }


def _week_param(semaine: str) -> str:
    try:
        parse_week_id(semaine)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return semaine


@router.post("/validations")
def validate_week(
    payload: PlanValidationIn,
    db: Session = Depends(get_db),
    _caller: Optional[dict] = Depends(require_sync_caller),
):
    validation = db.query(PlanValidation).filter(
        PlanValidation.tenant_id == payload.tenant_id,
        PlanValidation.week_id == payload.week_id,
    ).first()
    if validation is None:
        validation = PlanValidation(
            tenant_id=payload.tenant_id,
            week_id=payload.week_id,
            validated_by=payload.validated_by,
            validated_at=datetime.utcnow(),
        )
        db.add(validation)
        db.commit()
        db.refresh(validation)
        logger.info("plan_validated", tenant_id=str(payload.tenant_id), week_id=payload.week_id)
    return _validation_out(validation)


@router.delete("/validations")
def withdraw_validation(
    entreprise_id: uuid.UUID = Query(...),
    semaine: str = Query(...),
    db: Session = Depends(get_db),
    _caller: Optional[dict] = Depends(require_sync_caller),
):
    week_id = _week_param(semaine)
    deleted = db.query(PlanValidation).filter(
        PlanValidation.tenant_id == entreprise_id,
        PlanValidation.week_id == week_id,
    ).delete(synchronize_session=False)
    db.commit()
    if not deleted:
        raise HTTPException(status_code=404, detail="Validation not found")
    logger.info("plan_validation_withdrawn", tenant_id=str(entreprise_id), week_id=week_id)
    return {"status": "ok"}


@router.get("/validations")
def list_validations(
    semaine: str = Query(...),
    db: Session = Depends(get_db),
    _caller: Optional[dict] = Depends(require_sync_caller),
):
    week_id = _week_param(semaine)
    rows = (
        db.query(PlanValidation)
        .filter(PlanValidation.week_id == week_id)
        .order_by(PlanValidation.validated_at.desc())
        .all()
    )
    return [_validation_out(v) for v in rows]
