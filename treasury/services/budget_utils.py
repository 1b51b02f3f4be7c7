"""Cost center budget helpers.

Augments cost centers with available amount, percent used and threshold
flags, and guards budget edits against dropping below what is already
consumed.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from treasury.core.errors import ValidationError
from treasury.models.cost_center import CostCenter
from treasury.services.money import format_amount, round2


def budget_status(cc: CostCenter, warn_pct: int, danger_pct: int) -> Dict[str, Any]:
    assigned = cc.assigned_budget or Decimal("0")
    consumed = cc.consumed_budget or Decimal("0")
    percent_used = Decimal("0.00")
    if assigned > 0:
        percent_used = round2(consumed / assigned * 100)
    return {
        "id": cc.id,
        "code": cc.code,
        "name": cc.name,
        "assigned_budget": round2(assigned),
        "consumed_budget": round2(consumed),
        "available": round2(assigned - consumed),
        "percent_used": percent_used,
        "warn": percent_used >= warn_pct if assigned > 0 else False,
        "danger": percent_used >= danger_pct if assigned > 0 else False,
        "over_budget": consumed > assigned,
        "warn_threshold": warn_pct,
        "danger_threshold": danger_pct,
    }


def list_budget_statuses(
    centers: List[CostCenter], warn_pct: int, danger_pct: int
) -> List[Dict[str, Any]]:
    return [budget_status(c, warn_pct, danger_pct) for c in centers]


def validate_assigned_budget(cc: CostCenter, new_assigned: Decimal) -> Decimal:
    """Reject a new assigned budget below the consumed amount."""
    new_assigned = round2(new_assigned)
    if new_assigned < 0:
        raise ValidationError.single("assigned_budget", "budget cannot be negative")
    if new_assigned < cc.consumed_budget:
        raise ValidationError.single(
            "assigned_budget",
            f"cannot be less than consumed ({format_amount(cc.consumed_budget)})",
        )
    return new_assigned
