"""Fund assignment reconciliation ("rendición").

    ASIGNADO -> POR_RENDIR -> RENDIDO
    {ASIGNADO, POR_RENDIR} -> ANULADO

Rendering is a single terminal operation: the selected expenses are summed
once (each converted with its own exchange rate, then into the assignment's
currency) and the assignment becomes immutable. Every input problem is
raised before anything is computed, so a failed render leaves no trace.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence

from treasury.core.errors import EmptySelection, ForeignExpense, InvalidTransition, ValidationError
from treasury.models.constants import BASE_CURRENCY, ExpenseStatus, FundStatus
from treasury.models.expense import Expense
from treasury.models.fund import FundAssignment, FundAssignmentIn
from treasury.services import policy
from treasury.services.money import from_base, round2, to_base
from treasury.services.policy import Actor

F = FundStatus

ALLOWED_FROM: Dict[str, FrozenSet[FundStatus]] = {
    "mark_for_rendering": frozenset({F.ASSIGNED}),
    "render": frozenset({F.ASSIGNED, F.TO_RENDER}),
    "annul": frozenset({F.ASSIGNED, F.TO_RENDER}),
}

RENDERABLE_EXPENSE_STATUSES: FrozenSet[ExpenseStatus] = frozenset(
    {ExpenseStatus.APPROVED, ExpenseStatus.PAID}
)


@dataclass(frozen=True)
class RenderSummary:
    rendered_amount: Decimal
    pending_balance: Decimal
    expense_count: int

    @property
    def overspent(self) -> bool:
        return self.pending_balance < 0


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _ensure_status(assignment: FundAssignment, action: str) -> None:
    allowed = ALLOWED_FROM[action]
    if assignment.status not in allowed:
        raise InvalidTransition(
            "fund assignment", action, assignment.status.value, [s.value for s in allowed]
        )


def new_assignment(
    payload: FundAssignmentIn, actor: Actor, fund_id: str, now: Optional[datetime] = None
) -> FundAssignment:
    policy.require("manage_treasury", actor)
    if payload.currency.value != BASE_CURRENCY and payload.exchange_rate is None:
        raise ValidationError.single(
            "exchange_rate", f"exchange rate is required for {payload.currency.value}"
        )
    ts = _now(now)
    return FundAssignment(
        id=fund_id,
        created_by=actor.user_id,
        created_at=ts,
        updated_at=ts,
        **payload.model_dump(),
    )


def mark_for_rendering(
    assignment: FundAssignment, actor: Actor, now: Optional[datetime] = None
) -> FundAssignment:
    _ensure_status(assignment, "mark_for_rendering")
    if actor.user_id != assignment.responsible:
        policy.require("manage_treasury", actor)
    return assignment.model_copy(update={"status": F.TO_RENDER, "updated_at": _now(now)})


def normalized_total(assignment: FundAssignment, expenses: Sequence[Expense]) -> Decimal:
    """Sum of expense amounts expressed in the assignment's currency.

    Each expense is converted to base with its own rate first; mixed currencies
    are never added raw.
    """
    total_base = sum(
        (
            to_base(e.amount or Decimal("0"), e.currency, e.exchange_rate, ref=e.id)
            for e in expenses
        ),
        Decimal("0"),
    )
    return from_base(total_base, assignment.currency, assignment.exchange_rate, ref=assignment.id)


def render(
    assignment: FundAssignment,
    expenses: Mapping[str, Expense],
    expense_ids: Sequence[str],
    actor: Actor,
    observations: Optional[str] = None,
    now: Optional[datetime] = None,
) -> FundAssignment:
    """Render the assignment against `expense_ids`.

    `expenses` holds whatever the caller could load for those ids; ids it
    cannot resolve are treated as foreign.
    """
    _ensure_status(assignment, "render")
    if actor.user_id != assignment.responsible:
        policy.require("manage_treasury", actor)
    ids = list(dict.fromkeys(expense_ids))
    if not ids:
        raise EmptySelection(assignment.id)

    foreign = [i for i in ids if i not in expenses or expenses[i].fund_id != assignment.id]
    if foreign:
        raise ForeignExpense(assignment.id, foreign)

    selected: List[Expense] = [expenses[i] for i in ids]
    not_renderable = [e for e in selected if e.status not in RENDERABLE_EXPENSE_STATUSES]
    if not_renderable:
        raise ValidationError(
            [
                {
                    "field": "expense_ids",
                    "message": f"expense '{e.id}' is {e.status.value}; only approved or paid expenses can be rendered",
                }
                for e in not_renderable
            ]
        )

    rendered = normalized_total(assignment, selected)
    pending = round2(assignment.assigned_amount - rendered)
    ts = _now(now)
    update = {
        "status": F.RENDERED,
        "rendered_amount": rendered,
        "pending_balance": pending,
        "rendered_expense_ids": ids,
        "rendered_by": actor.user_id,
        "rendered_at": ts,
        "updated_at": ts,
    }
    if observations:
        update["observations"] = observations
    return assignment.model_copy(update=update)


def summarize(assignment: FundAssignment) -> RenderSummary:
    rendered = assignment.rendered_amount or Decimal("0.00")
    return RenderSummary(
        rendered_amount=rendered,
        pending_balance=round2(assignment.assigned_amount - rendered),
        expense_count=len(assignment.rendered_expense_ids),
    )


def annul(
    assignment: FundAssignment,
    actor: Actor,
    motivo: Optional[str] = None,
    now: Optional[datetime] = None,
) -> FundAssignment:
    """Annul a non-terminal assignment. Attached expenses are left untouched."""
    _ensure_status(assignment, "annul")
    policy.require("manage_treasury", actor)
    ts = _now(now)
    return assignment.model_copy(
        update={
            "status": F.ANNULLED,
            "annulled_by": actor.user_id,
            "annulled_at": ts,
            "annulment_reason": (motivo or "").strip() or None,
            "updated_at": ts,
        }
    )
