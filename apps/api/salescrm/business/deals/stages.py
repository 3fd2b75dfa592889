from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from salescrm.crm.enums import DealStage


STAGE_PROBABILITY: dict[DealStage, int] = {
    DealStage.QUALIFICATION: 10,
    DealStage.NEEDS_ANALYSIS: 25,
    DealStage.PROPOSAL: 50,
    DealStage.NEGOTIATION: 75,
    DealStage.CLOSED_WON: 100,
    DealStage.CLOSED_LOST: 0,
}

CLOSED_STAGES = frozenset({DealStage.CLOSED_WON, DealStage.CLOSED_LOST})
OPEN_STAGES = tuple(stage for stage in DealStage if stage not in CLOSED_STAGES)


def probability_for(stage: DealStage | str) -> int:
    return STAGE_PROBABILITY[DealStage(stage)]


def is_closed(stage: DealStage | str) -> bool:
    return DealStage(stage) in CLOSED_STAGES


def apply_stage_transition(
    deal: Any,
    new_stage: DealStage | str,
    *,
    now: datetime | None = None,
    probability: int | None = None,
) -> bool:
    """Move ``deal`` to ``new_stage``; returns whether the stage changed.

    Probability comes from the stage table unless an explicit value is given.
    Entering a closed stage stamps ``actual_close_date``; reopening clears it.
    """

    target = DealStage(new_stage)
    previous = DealStage(deal.stage) if deal.stage is not None else None
    changed = previous != target

    deal.stage = target.value
    deal.probability = STAGE_PROBABILITY[target] if probability is None else probability

    if target in CLOSED_STAGES:
        if changed or deal.actual_close_date is None:
            deal.actual_close_date = now or datetime.now(timezone.utc)
    elif previous in CLOSED_STAGES:
        deal.actual_close_date = None
    return changed
