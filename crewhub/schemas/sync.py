import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..services.weeks import parse_week_id


class ExecutionMode(str, Enum):
    cron = "cron"
    manual = "manual"


def _check_week_id(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    parse_week_id(v)
    return v


class SyncRequest(BaseModel):
    execution_mode: ExecutionMode = ExecutionMode.cron
    triggered_by: Optional[str] = None
    force: bool = False
    week_override: Optional[str] = Field(default=None, alias="semaine")
    tenant_id: Optional[uuid.UUID] = Field(default=None, alias="entreprise_id")

    class Config:
        populate_by_name = True

    @field_validator("execution_mode", mode="before")
    @classmethod
    def _default_mode(cls, v):
        return ExecutionMode.cron if v in (None, "") else v

    @field_validator("force", mode="before")
    @classmethod
    def _default_force(cls, v):
        return False if v is None else v

    @field_validator("week_override")
    @classmethod
    def _validate_week(cls, v):
        return _check_week_id(v)


class JobRunOut(BaseModel):
    id: uuid.UUID
    run_type: str
    execution_mode: str
    triggered_by: Optional[str] = None
    executed_at: datetime
    recipients_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    duration_ms: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


class PlanValidationIn(BaseModel):
    tenant_id: uuid.UUID = Field(alias="entreprise_id")
    week_id: str = Field(alias="semaine")
    validated_by: Optional[uuid.UUID] = None

    class Config:
        populate_by_name = True

    @field_validator("week_id")
    @classmethod
    def _validate_week(cls, v):
        return _check_week_id(v)


class RemoveDaysIn(BaseModel):
    dates: List[date]

    @field_validator("dates")
    @classmethod
    def _not_empty(cls, v):
        if not v:
            raise ValueError("dates must not be empty")
        return v
