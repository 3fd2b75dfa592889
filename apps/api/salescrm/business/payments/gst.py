from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal

from salescrm.crm.enums import GstType
from salescrm.platform.security.errors import ValidationError


CENT = Decimal("0.01")
DEFAULT_GST_PERCENTAGE = Decimal("18")


@dataclass(frozen=True, slots=True)
class GstBreakdown:
    gst_amount: Decimal
    total_amount: Decimal
    gst_percentage: Decimal


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def compute_gst(
    amount: Decimal | int | str,
    gst_type: GstType | str,
    gst_percentage: Decimal | int | str | None = DEFAULT_GST_PERCENTAGE,
) -> GstBreakdown:
    """Split a base amount into GST and total.

    Amounts are kept as ``Decimal`` and the tax is rounded to the cent with
    banker's rounding, so ``total_amount == amount + gst_amount`` always holds.
    """

    base = Decimal(str(amount))
    percentage = DEFAULT_GST_PERCENTAGE if gst_percentage is None else Decimal(str(gst_percentage))
    if base < 0:
        raise ValidationError("amount must not be negative", {"amount": str(base)})
    if percentage < 0:
        raise ValidationError("gst_percentage must not be negative", {"gst_percentage": str(percentage)})

    base = _money(base)
    if GstType(gst_type) == GstType.WITHOUT_GST:
        return GstBreakdown(gst_amount=_money(Decimal("0")), total_amount=base, gst_percentage=percentage)

    gst_amount = _money(base * percentage / Decimal("100"))
    return GstBreakdown(gst_amount=gst_amount, total_amount=base + gst_amount, gst_percentage=percentage)
