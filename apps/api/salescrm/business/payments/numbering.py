from __future__ import annotations

import logging
import re

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salescrm.business.payments.models import Payment, PaymentSequence
from salescrm.core.config import get_settings
from salescrm.metrics import observe_payment_number_allocated, observe_payment_number_retry
from salescrm.platform.security.errors import ConflictError


logger = logging.getLogger("salescrm.payments.numbering")

SEQUENCE_NAME = "payment_number"
_TRAILING_DIGITS = re.compile(r"(\d+)$")


def format_payment_number(value: int) -> str:
    settings = get_settings()
    return f"{settings.payment_number_prefix}{value:0{settings.payment_number_width}d}"


def parse_payment_number(payment_number: str) -> int | None:
    match = _TRAILING_DIGITS.search(payment_number or "")
    return int(match.group(1)) if match else None


def _highest_existing_number(session: Session) -> int:
    highest = 0
    for payment_number in session.scalars(select(Payment.payment_number)):
        parsed = parse_payment_number(payment_number)
        if parsed is not None and parsed > highest:
            highest = parsed
    return highest


def next_payment_number(session: Session) -> str:
    """Allocate the next payment number from the counter row.

    The increment holds a row lock until the surrounding transaction commits,
    so it has to be the first write of the unit of work: a conflicting insert
    of the counter row rolls the session back before retrying.
    """

    settings = get_settings()
    for attempt in range(1, settings.payment_number_max_attempts + 1):
        result = session.execute(
            update(PaymentSequence)
            .where(PaymentSequence.name == SEQUENCE_NAME)
            .values(last_value=PaymentSequence.last_value + 1)
        )
        if result.rowcount:
            value = session.scalar(select(PaymentSequence.last_value).where(PaymentSequence.name == SEQUENCE_NAME))
        else:
            value = _highest_existing_number(session) + 1
            session.add(PaymentSequence(name=SEQUENCE_NAME, last_value=value))
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                observe_payment_number_retry()
                logger.info("payment.number_retry", extra={"attempt": attempt})
                continue

        observe_payment_number_allocated()
        return format_payment_number(int(value))

    raise ConflictError("could not allocate a payment number", {"attempts": settings.payment_number_max_attempts})
