from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def percentage(numerator: int | Decimal, denominator: int | Decimal) -> int:
    """Integer percentage rounded half up; 0 when there is nothing to divide by."""

    if not denominator:
        return 0
    ratio = Decimal(numerator) * 100 / Decimal(denominator)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def money(value: Decimal | int | float | str | None) -> Decimal:
    """Normalize an aggregate result to a two decimal ``Decimal`` (``None`` is zero)."""

    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
