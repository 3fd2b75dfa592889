from __future__ import annotations

from salescrm.business.deals.models import Deal
from salescrm.platform.security.repository import BaseRepository


class DealRepository(BaseRepository):
    resource = "deals.deal"
    model = Deal
    owner_attribute = "owner_id"
