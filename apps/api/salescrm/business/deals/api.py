from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from salescrm.business.deals.schemas import (
    DealCreate,
    DealRead,
    DealStageName,
    DealStageUpdate,
    DealStatsRead,
    DealUpdate,
)
from salescrm.business.deals.service import deals_service
from salescrm.core.auth import get_auth_context
from salescrm.core.database import get_db
from salescrm.core.rbac import require_roles
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext


router = APIRouter(prefix="/api/deals", tags=["deals"])


@router.post("", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal(
    payload: DealCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DealRead:
    return deals_service.create_deal(db, ctx, payload)


@router.post("/from-lead/{lead_id}", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal_from_lead(
    lead_id: uuid.UUID,
    payload: DealCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DealRead:
    return deals_service.create_from_lead(db, ctx, lead_id, payload)


@router.get("", response_model=list[DealRead])
def list_deals(
    stage: DealStageName | None = Query(default=None),
    owner_id: uuid.UUID | None = Query(default=None),
    customer_id: uuid.UUID | None = Query(default=None),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[DealRead]:
    return deals_service.list_deals(db, ctx, stage=stage, owner_id=owner_id, customer_id=customer_id, search=search)


@router.get("/stats", response_model=DealStatsRead)
def deal_stats(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DealStatsRead:
    return deals_service.deal_stats(db, ctx)


@router.get("/pipeline", response_model=dict[str, list[DealRead]])
def pipeline(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> dict[str, list[DealRead]]:
    return deals_service.pipeline(db, ctx)


@router.get("/{deal_id}", response_model=DealRead)
def get_deal(
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DealRead:
    return deals_service.get_deal(db, ctx, deal_id)


@router.patch("/{deal_id}", response_model=DealRead)
def update_deal(
    deal_id: uuid.UUID,
    payload: DealUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DealRead:
    return deals_service.update_deal(db, ctx, deal_id, payload)


@router.patch("/{deal_id}/stage", response_model=DealRead)
def update_deal_stage(
    deal_id: uuid.UUID,
    payload: DealStageUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DealRead:
    return deals_service.update_stage(db, ctx, deal_id, payload.stage)


@router.delete("/{deal_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_deal(
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER)),
) -> None:
    deals_service.delete_deal(db, ctx, deal_id)
