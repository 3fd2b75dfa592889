from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ReferenceTypeName = Literal["INTERNAL", "EXTERNAL"]
GstTypeName = Literal["WITH_GST", "WITHOUT_GST"]
PaymentMethodName = Literal["CASH", "BANK_TRANSFER", "CHEQUE", "UPI", "CARD", "OTHER"]


class PaymentCreate(BaseModel):
    reference_type: ReferenceTypeName
    customer_id: UUID | None = None
    customer_name: str | None = Field(default=None, max_length=255)
    company_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    amount: Decimal = Field(gt=Decimal("0"))
    gst_type: GstTypeName = "WITH_GST"
    gst_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    payment_date: datetime | None = None
    payment_method: PaymentMethodName
    reference_number: str | None = Field(default=None, max_length=128)
    notes: str | None = None
    invoice_id: UUID | None = None


class PaymentUpdate(BaseModel):
    reference_type: ReferenceTypeName | None = None
    customer_id: UUID | None = None
    customer_name: str | None = Field(default=None, max_length=255)
    company_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    amount: Decimal | None = Field(default=None, gt=Decimal("0"))
    gst_type: GstTypeName | None = None
    gst_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    payment_date: datetime | None = None
    payment_method: PaymentMethodName | None = None
    reference_number: str | None = Field(default=None, max_length=128)
    notes: str | None = None
    invoice_id: UUID | None = None


class PaymentCreatorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payment_number: str
    reference_type: ReferenceTypeName | str
    customer_id: UUID | None
    customer_name: str | None
    company_name: str | None
    phone: str | None
    amount: Decimal
    gst_type: GstTypeName | str
    gst_percentage: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    payment_date: datetime
    payment_method: PaymentMethodName | str
    reference_number: str | None
    notes: str | None
    invoice_id: UUID | None
    created_by_id: UUID
    created_at: datetime
    updated_at: datetime
    created_by: PaymentCreatorRead | None = None


class MethodBucket(BaseModel):
    count: int = 0
    total_amount: Decimal = Decimal("0.00")


class GstBucket(BaseModel):
    count: int = 0
    total_amount: Decimal = Decimal("0.00")
    gst_amount: Decimal = Decimal("0.00")


class PaymentStatsRead(BaseModel):
    total_payments: int
    total_amount: Decimal
    today_payments: int
    today_amount: Decimal
    by_method: dict[str, MethodBucket]
    by_gst_type: dict[str, GstBucket]
