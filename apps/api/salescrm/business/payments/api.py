from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from salescrm.business.payments.schemas import (
    PaymentCreate,
    PaymentMethodName,
    PaymentRead,
    PaymentStatsRead,
    PaymentUpdate,
    ReferenceTypeName,
)
from salescrm.business.payments.service import payments_service
from salescrm.core.database import get_db
from salescrm.core.rbac import require_roles
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext


router = APIRouter(prefix="/api/payments", tags=["payments"])

_super_admin_only = require_roles(Role.SUPER_ADMIN)


@router.post("", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
def create_payment(
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> PaymentRead:
    return payments_service.create_payment(db, ctx, payload)


@router.get("", response_model=list[PaymentRead])
def list_payments(
    customer_id: uuid.UUID | None = Query(default=None),
    reference_type: ReferenceTypeName | None = Query(default=None),
    payment_method: PaymentMethodName | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> list[PaymentRead]:
    return payments_service.list_payments(
        db,
        ctx,
        customer_id=customer_id,
        reference_type=reference_type,
        payment_method=payment_method,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )


@router.get("/stats", response_model=PaymentStatsRead)
def payment_stats(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> PaymentStatsRead:
    return payments_service.payment_stats(db, ctx)


@router.get("/{payment_id}", response_model=PaymentRead)
def get_payment(
    payment_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> PaymentRead:
    return payments_service.get_payment(db, ctx, payment_id)


@router.patch("/{payment_id}", response_model=PaymentRead)
def update_payment(
    payment_id: uuid.UUID,
    payload: PaymentUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> PaymentRead:
    return payments_service.update_payment(db, ctx, payment_id, payload)


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> None:
    payments_service.delete_payment(db, ctx, payment_id)
