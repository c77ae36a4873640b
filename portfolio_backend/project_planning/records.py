"""
Portfolio Planner - Entity Records
==================================

Pydantic models for the raw records served by the persistence layer's read
endpoints (camelCase field names, as the REST API returns them).

The schedule engine only reads these; it writes back dates through an
`EntityStore`.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .schedule_model import AnchorPoint, DependencyType, EntityKind


def coerce_date(value: Any) -> Optional[date]:
    """
    Parse anything date-like (ISO string, datetime, Timestamp) to a date.

    Empty values and unparseable strings become None.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if not isinstance(value, str) and pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, date):
        return value if type(value) is date else value.date()
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ═══════════════════════════════════════════════════════════════════════════════
# PROJECTS & MILESTONES
# ═══════════════════════════════════════════════════════════════════════════════

class ProjectRecord(_Record):
    """Project row. Committed dates win over desired dates."""
    id: int
    name: str = ""
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    desired_start_date: Optional[date] = Field(None, alias="desiredStartDate")
    desired_completion_date: Optional[date] = Field(None, alias="desiredCompletionDate")

    @field_validator(
        "start_date", "end_date", "desired_start_date", "desired_completion_date",
        mode="before",
    )
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[date]:
        return coerce_date(value)

    @property
    def resolved_start(self) -> Optional[date]:
        return self.start_date or self.desired_start_date

    @property
    def resolved_end(self) -> Optional[date]:
        return self.end_date or self.desired_completion_date


class MilestoneRecord(_Record):
    """Milestone row. Planned dates drive scheduling; actual dates drive violation checks."""
    id: int
    project_id: Optional[int] = Field(None, alias="projectId")
    name: str = ""
    planned_start_date: Optional[date] = Field(None, alias="plannedStartDate")
    planned_end_date: Optional[date] = Field(None, alias="plannedEndDate")
    actual_start_date: Optional[date] = Field(None, alias="actualStartDate")
    actual_end_date: Optional[date] = Field(None, alias="actualEndDate")

    @field_validator(
        "planned_start_date", "planned_end_date", "actual_start_date", "actual_end_date",
        mode="before",
    )
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[date]:
        return coerce_date(value)

    @property
    def resolved_end(self) -> Optional[date]:
        return self.planned_end_date or self.actual_end_date


# ═══════════════════════════════════════════════════════════════════════════════
# DEPENDENCIES
# ═══════════════════════════════════════════════════════════════════════════════

class DependencyRecord(_Record):
    """Dependency row. Missing points/type/lag take the dialog defaults."""
    id: int
    predecessor_type: EntityKind = Field(..., alias="predecessorType")
    predecessor_id: int = Field(..., alias="predecessorId")
    predecessor_point: AnchorPoint = Field(AnchorPoint.END, alias="predecessorPoint")
    successor_type: EntityKind = Field(..., alias="successorType")
    successor_id: int = Field(..., alias="successorId")
    successor_point: AnchorPoint = Field(AnchorPoint.START, alias="successorPoint")
    dependency_type: DependencyType = Field(DependencyType.FS, alias="dependencyType")
    lag_days: int = Field(0, alias="lagDays")
    is_active: bool = Field(True, alias="isActive")

    @field_validator("predecessor_type", "successor_type", "predecessor_point", "successor_point", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("dependency_type", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("lag_days", mode="before")
    @classmethod
    def _default_lag(cls, value: Any) -> Any:
        if value is None or (isinstance(value, float) and pd.isna(value)):
            return 0
        return value

    @field_validator("is_active", mode="before")
    @classmethod
    def _default_active(cls, value: Any) -> Any:
        return True if value is None else value
