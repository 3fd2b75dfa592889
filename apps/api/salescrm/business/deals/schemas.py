from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


DealStageName = Literal["QUALIFICATION", "NEEDS_ANALYSIS", "PROPOSAL", "NEGOTIATION", "CLOSED_WON", "CLOSED_LOST"]


class DealCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    value: Decimal = Field(ge=Decimal("0"))
    stage: DealStageName = "QUALIFICATION"
    probability: int | None = Field(default=None, ge=0, le=100)
    description: str | None = None
    expected_close_date: datetime | None = None
    customer_id: UUID | None = None
    lead_id: UUID | None = None
    owner_id: UUID | None = None


class DealUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    value: Decimal | None = Field(default=None, ge=Decimal("0"))
    stage: DealStageName | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    description: str | None = None
    expected_close_date: datetime | None = None
    customer_id: UUID | None = None
    lead_id: UUID | None = None


class DealStageUpdate(BaseModel):
    stage: DealStageName


class DealOwnerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    value: Decimal
    stage: DealStageName | str
    probability: int
    owner_id: UUID
    customer_id: UUID | None
    lead_id: UUID | None
    expected_close_date: datetime | None
    actual_close_date: datetime | None
    created_at: datetime
    updated_at: datetime
    owner: DealOwnerRead | None = None


class StageBucket(BaseModel):
    count: int = 0
    value: Decimal = Decimal("0")


class DealStatsRead(BaseModel):
    total_deals: int
    total_value: Decimal
    won_deals: int
    won_value: Decimal
    by_stage: dict[str, StageBucket]
