from __future__ import annotations

from salescrm.business.payments.models import Payment
from salescrm.platform.security.repository import BaseRepository


class PaymentRepository(BaseRepository):
    resource = "payments.payment"
    model = Payment
