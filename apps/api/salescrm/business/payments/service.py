from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from salescrm import audit, events
from salescrm.business.payments.gst import compute_gst
from salescrm.business.payments.models import Payment
from salescrm.business.payments.numbering import next_payment_number
from salescrm.business.payments.repository import PaymentRepository
from salescrm.business.payments.schemas import (
    GstBucket,
    MethodBucket,
    PaymentCreate,
    PaymentRead,
    PaymentStatsRead,
    PaymentUpdate,
)
from salescrm.business.reporting.periods import DateRange, day_bounds, ensure_utc, utcnow
from salescrm.business.reporting.rates import money
from salescrm.core.config import get_settings
from salescrm.crm.enums import GstType, PaymentMethod, ReferenceType
from salescrm.crm.models import Customer, Invoice
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import NotFoundError, ValidationError


logger = logging.getLogger("salescrm.payments")

_GST_FIELDS = {"amount", "gst_type", "gst_percentage"}


@dataclass(slots=True)
class PaymentsService:
    payment_repository: PaymentRepository = PaymentRepository()

    def create_payment(self, session: Session, ctx: AuthContext, payload: PaymentCreate) -> PaymentRead:
        data = payload.model_dump(mode="python")
        self._validate_reference(data["reference_type"], data.get("customer_id"), data.get("customer_name"))
        self._ensure_references(session, customer_id=data.get("customer_id"), invoice_id=data.get("invoice_id"))

        percentage = data.get("gst_percentage")
        if percentage is None:
            percentage = get_settings().default_gst_percentage
        breakdown = compute_gst(data["amount"], data["gst_type"], percentage)
        data.update(
            amount=money(data["amount"]),
            gst_percentage=breakdown.gst_percentage,
            gst_amount=breakdown.gst_amount,
            total_amount=breakdown.total_amount,
            payment_date=ensure_utc(data["payment_date"]) if data.get("payment_date") else utcnow(),
        )

        data["payment_number"] = next_payment_number(session)
        payment = Payment(**data, created_by_id=ctx.user_id)
        session.add(payment)
        session.commit()
        session.refresh(payment)

        self._record(ctx, payment, "payments.payment.created", before=None)
        logger.info(
            "payment.created",
            extra={
                "actor_id": str(ctx.user_id),
                "entity_id": str(payment.id),
                "payment_number": payment.payment_number,
            },
        )
        return PaymentRead.model_validate(payment)

    def list_payments(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        customer_id: uuid.UUID | None = None,
        reference_type: ReferenceType | str | None = None,
        payment_method: PaymentMethod | str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
    ) -> list[PaymentRead]:
        stmt: Select[tuple[Payment]] = select(Payment)
        if customer_id is not None:
            stmt = stmt.where(Payment.customer_id == customer_id)
        if reference_type is not None:
            stmt = stmt.where(Payment.reference_type == ReferenceType(reference_type).value)
        if payment_method is not None:
            stmt = stmt.where(Payment.payment_method == PaymentMethod(payment_method).value)
        stmt = DateRange.from_dates(start_date, end_date).apply(stmt, Payment.payment_date)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Payment.payment_number.ilike(pattern),
                    Payment.customer_name.ilike(pattern),
                    Payment.company_name.ilike(pattern),
                    Payment.reference_number.ilike(pattern),
                )
            )

        rows = session.scalars(stmt.order_by(Payment.payment_date.desc(), Payment.payment_number.desc())).all()
        return [PaymentRead.model_validate(row) for row in rows]

    def get_payment(self, session: Session, ctx: AuthContext, payment_id: uuid.UUID) -> PaymentRead:
        return PaymentRead.model_validate(self.payment_repository.get(session, payment_id))

    def update_payment(
        self,
        session: Session,
        ctx: AuthContext,
        payment_id: uuid.UUID,
        payload: PaymentUpdate,
    ) -> PaymentRead:
        payment = self.payment_repository.get(session, payment_id)
        changes = payload.model_dump(exclude_unset=True, mode="python")

        merged_reference = changes.get("reference_type") or payment.reference_type
        merged_customer = changes["customer_id"] if "customer_id" in changes else payment.customer_id
        merged_name = changes["customer_name"] if "customer_name" in changes else payment.customer_name
        if {"reference_type", "customer_id", "customer_name"} & changes.keys():
            self._validate_reference(merged_reference, merged_customer, merged_name)
        self._ensure_references(session, customer_id=changes.get("customer_id"), invoice_id=changes.get("invoice_id"))

        before = self._snapshot(payment)
        if any(changes.get(key) is not None for key in _GST_FIELDS):
            amount = changes.get("amount") or payment.amount
            gst_type = changes.get("gst_type") or payment.gst_type
            percentage = changes.get("gst_percentage")
            if percentage is None:
                percentage = payment.gst_percentage
            breakdown = compute_gst(amount, gst_type, percentage)
            changes.update(
                amount=money(amount),
                gst_type=gst_type,
                gst_percentage=breakdown.gst_percentage,
                gst_amount=breakdown.gst_amount,
                total_amount=breakdown.total_amount,
            )

        if changes.get("payment_date") is not None:
            changes["payment_date"] = ensure_utc(changes["payment_date"])

        for key, value in changes.items():
            if value is None and key in {"reference_type", "amount", "gst_type", "gst_percentage", "payment_date", "payment_method"}:
                continue
            setattr(payment, key, value)

        session.add(payment)
        session.commit()
        session.refresh(payment)

        self._record(ctx, payment, "payments.payment.updated", before=before)
        return PaymentRead.model_validate(payment)

    def delete_payment(self, session: Session, ctx: AuthContext, payment_id: uuid.UUID) -> None:
        payment = self.payment_repository.get(session, payment_id)
        before = self._snapshot(payment)
        session.delete(payment)
        session.commit()

        audit.record(
            actor_user_id=str(ctx.user_id),
            entity_type="payments.payment",
            entity_id=str(payment_id),
            action="payments.payment.deleted",
            before=before,
            after=None,
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            {
                "event_type": "payments.payment.deleted",
                "payment_id": str(payment_id),
                "payment_number": before["payment_number"],
                "correlation_id": ctx.correlation_id,
            }
        )
        logger.info(
            "payment.deleted",
            extra={"actor_id": str(ctx.user_id), "entity_id": str(payment_id), "payment_number": before["payment_number"]},
        )

    def payment_stats(self, session: Session, ctx: AuthContext, *, now: datetime | None = None) -> PaymentStatsRead:
        day_start, day_end = day_bounds(now or utcnow())

        total_payments, total_amount = session.execute(
            select(func.count(Payment.id), func.sum(Payment.total_amount))
        ).one()
        today_payments, today_amount = session.execute(
            select(func.count(Payment.id), func.sum(Payment.total_amount)).where(
                Payment.payment_date >= day_start,
                Payment.payment_date < day_end,
            )
        ).one()

        by_method = {method.value: MethodBucket() for method in PaymentMethod}
        for method, count, amount in session.execute(
            select(Payment.payment_method, func.count(Payment.id), func.sum(Payment.total_amount)).group_by(
                Payment.payment_method
            )
        ).all():
            by_method[method] = MethodBucket(count=int(count), total_amount=money(amount))

        by_gst_type = {gst_type.value: GstBucket() for gst_type in GstType}
        for gst_type, count, amount, gst_amount in session.execute(
            select(
                Payment.gst_type,
                func.count(Payment.id),
                func.sum(Payment.total_amount),
                func.sum(Payment.gst_amount),
            ).group_by(Payment.gst_type)
        ).all():
            by_gst_type[gst_type] = GstBucket(count=int(count), total_amount=money(amount), gst_amount=money(gst_amount))

        return PaymentStatsRead(
            total_payments=int(total_payments or 0),
            total_amount=money(total_amount),
            today_payments=int(today_payments or 0),
            today_amount=money(today_amount),
            by_method=by_method,
            by_gst_type=by_gst_type,
        )

    @staticmethod
    def _validate_reference(
        reference_type: ReferenceType | str,
        customer_id: uuid.UUID | None,
        customer_name: str | None,
    ) -> None:
        kind = ReferenceType(reference_type)
        if kind == ReferenceType.INTERNAL and customer_id is None:
            raise ValidationError("Customer ID is required for internal reference type")
        if kind == ReferenceType.EXTERNAL and not (customer_name or "").strip():
            raise ValidationError("Customer name is required for external reference type")

    @staticmethod
    def _ensure_references(session: Session, *, customer_id: uuid.UUID | None, invoice_id: uuid.UUID | None) -> None:
        if customer_id is not None and session.get(Customer, customer_id) is None:
            raise NotFoundError("crm.customer", customer_id)
        if invoice_id is not None and session.get(Invoice, invoice_id) is None:
            raise NotFoundError("crm.invoice", invoice_id)

    @staticmethod
    def _snapshot(payment: Payment) -> dict[str, Any]:
        return {
            "payment_number": payment.payment_number,
            "reference_type": payment.reference_type,
            "customer_id": str(payment.customer_id) if payment.customer_id else None,
            "customer_name": payment.customer_name,
            "amount": str(payment.amount),
            "gst_type": payment.gst_type,
            "gst_percentage": str(payment.gst_percentage),
            "gst_amount": str(payment.gst_amount),
            "total_amount": str(payment.total_amount),
            "payment_method": payment.payment_method,
            "invoice_id": str(payment.invoice_id) if payment.invoice_id else None,
        }

    def _record(self, ctx: AuthContext, payment: Payment, action: str, *, before: dict[str, Any] | None) -> None:
        audit.record(
            actor_user_id=str(ctx.user_id),
            entity_type="payments.payment",
            entity_id=str(payment.id),
            action=action,
            before=before,
            after=self._snapshot(payment),
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            {
                "event_type": action,
                "payment_id": str(payment.id),
                "payment_number": payment.payment_number,
                "total_amount": str(payment.total_amount),
                "correlation_id": ctx.correlation_id,
            }
        )


payments_service = PaymentsService()
