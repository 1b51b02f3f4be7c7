"""Petty-cash boxes ("cajas").

    ABIERTA -> CERRADA

A box is closed once, with a physical count. The difference against the
expected balance is recorded as is; a shortfall stays negative.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from treasury.core.errors import InvalidTransition
from treasury.models.cash_box import CashBox, CashBoxIn
from treasury.models.constants import CashBoxStatus
from treasury.services import policy
from treasury.services.money import round2
from treasury.services.policy import Actor


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def open_box(
    payload: CashBoxIn, actor: Actor, box_id: str, now: Optional[datetime] = None
) -> CashBox:
    policy.require("manage_treasury", actor)
    ts = _now(now)
    opening = round2(payload.opening_balance)
    return CashBox(
        id=box_id,
        code=payload.code,
        name=payload.name,
        company=payload.company,
        branch=payload.branch,
        responsible=payload.responsible,
        currency=payload.currency,
        opening_balance=opening,
        expected_balance=opening,
        observations=payload.observations,
        opened_at=ts,
        created_by=actor.user_id,
        created_at=ts,
        updated_at=ts,
    )


def close_box(
    box: CashBox,
    actor: Actor,
    physical_balance: Decimal,
    observations: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CashBox:
    if box.status != CashBoxStatus.OPEN:
        raise InvalidTransition("cash box", "close", box.status.value, [CashBoxStatus.OPEN.value])
    if actor.user_id != box.responsible:
        policy.require("manage_treasury", actor)
    ts = _now(now)
    physical = round2(physical_balance)
    update = {
        "status": CashBoxStatus.CLOSED,
        "physical_balance": physical,
        "difference": round2(physical - box.expected_balance),
        "closed_by": actor.user_id,
        "closed_at": ts,
        "updated_at": ts,
    }
    if observations and observations.strip():
        update["observations"] = observations.strip()
    return box.model_copy(update=update)
