from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


TreeStatus = Literal["PLANTED", "GROWING", "MATURE", "HARVESTED"]


class OperatorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str | None


class LotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: str
    lot_code: str
    lot_name: str
    capacity: int
    planted_count: int
    location: str | None
    gps_center: str | None
    assigned_operator_id: UUID | None
    assigned_operator: OperatorRead | None = None
    row_version: int
    created_at: datetime
    updated_at: datetime


class LotSummaryRead(LotRead):
    tree_count: int


class LotTreeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tree_code: str
    status: TreeStatus


class LotDetailRead(LotSummaryRead):
    trees: list[LotTreeRead] = Field(default_factory=list)


class TreeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workspace_id: str
    tree_code: str
    status: TreeStatus
    tree_lot_id: UUID | None
    tree_lot: LotRead | None = None
    updated_at: datetime


class AssignOperatorRequest(BaseModel):
    operator_id: UUID


class ReassignTreeRequest(BaseModel):
    lot_id: UUID


class LotNotificationSummary(BaseModel):
    lot_id: UUID
    lot_name: str
    lot_code: str
    capacity: int
    occupancy: int


class PlantedCountCorrection(BaseModel):
    lot_id: UUID
    lot_code: str
    previous: int
    current: int
    over_capacity: bool


class ReconcileResponse(BaseModel):
    checked: int
    corrections: list[PlantedCountCorrection]
