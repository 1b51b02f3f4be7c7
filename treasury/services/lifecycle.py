"""Expense state machine.

    borrador -> pendiente -> {aprobado, rechazado}
    aprobado -> pagado
    {borrador, pendiente, aprobado} -> anulado

Every function is pure: it receives the last-read expense and returns a
`Transition` describing the new state plus the cost-center budget delta the
caller must persist together with it. Checks run in a fixed order: status
(`InvalidTransition`), then roles (`Unauthorized`), then input
(`ValidationError`).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from treasury.core.errors import InvalidTransition, MissingExchangeRate, NotFound, ValidationError
from treasury.models.concept import ExpenseConcept
from treasury.models.constants import BASE_CURRENCY, ExpenseStatus, HistoryAction
from treasury.models.expense import Expense, ExpenseIn
from treasury.services import policy
from treasury.services.money import to_base
from treasury.services.policy import Actor

S = ExpenseStatus

ALLOWED_FROM: Dict[str, FrozenSet[ExpenseStatus]] = {
    "edit": frozenset({S.DRAFT}),
    "submit": frozenset({S.DRAFT}),
    "approve": frozenset({S.PENDING}),
    "reject": frozenset({S.PENDING}),
    "mark_paid": frozenset({S.APPROVED}),
    "annul": frozenset({S.DRAFT, S.PENDING, S.APPROVED}),
    "delete": frozenset({S.DRAFT}),
}

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class Transition:
    expense: Expense
    previous_status: Optional[ExpenseStatus]
    action: HistoryAction
    budget_delta: Decimal = ZERO
    comment: Optional[str] = None

    @property
    def cost_center_id(self) -> Optional[str]:
        return self.expense.cost_center_id if self.budget_delta != ZERO else None


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _ensure_status(expense: Expense, action: str) -> None:
    allowed = ALLOWED_FROM[action]
    if expense.status not in allowed:
        raise InvalidTransition("expense", action, expense.status.value, [s.value for s in allowed])


def _require_reason(motivo: Optional[str]) -> str:
    reason = (motivo or "").strip()
    if not reason:
        raise ValidationError.single("motivo", "a non-empty reason is required")
    return reason


def base_amount(expense: Expense) -> Decimal:
    """Amount in the base currency using the expense's own exchange rate."""
    return to_base(expense.amount or ZERO, expense.currency, expense.exchange_rate, ref=expense.id)


def new_draft(
    payload: ExpenseIn,
    actor: Actor,
    code: str,
    concept: Optional[ExpenseConcept] = None,
    now: Optional[datetime] = None,
) -> Transition:
    policy.require("create", actor)
    ts = _now(now)
    data = payload.model_dump()
    if data.get("cost_center_id") is None and concept is not None:
        data["cost_center_id"] = concept.cost_center_id
    expense = Expense(
        id=str(uuid.uuid4()),
        code=code,
        created_by=actor.user_id,
        created_at=ts,
        updated_at=ts,
        requires_approval=concept.requires_approval if concept is not None else True,
        **data,
    )
    return Transition(expense=expense, previous_status=None, action=HistoryAction.CREATED)


def update_draft(
    expense: Expense, changes: Dict[str, Any], actor: Actor, now: Optional[datetime] = None
) -> Transition:
    _ensure_status(expense, "edit")
    policy.require("edit", actor, owner=expense.created_by)
    updated = expense.model_copy(update={**changes, "updated_at": _now(now)})
    # Re-run model validation on the merged state.
    try:
        updated = Expense.model_validate(updated.model_dump())
    except PydanticValidationError as exc:
        raise ValidationError(
            [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
        ) from exc
    return Transition(
        expense=updated,
        previous_status=expense.status,
        action=HistoryAction.MODIFIED,
        comment=", ".join(sorted(changes)),
    )


def submission_errors(
    expense: Expense,
    concept: Optional[ExpenseConcept],
    today: Optional[date] = None,
    missing_documents: Sequence[str] = (),
) -> List[Dict[str, str]]:
    """Every missing/invalid field, not just the first."""
    today = today or date.today()
    errors: List[Dict[str, str]] = []
    if not expense.concept_id or concept is None:
        errors.append({"field": "concept_id", "message": "an expense concept is required"})
    elif not concept.active:
        errors.append({"field": "concept_id", "message": "the expense concept is inactive"})
    if not expense.description or not expense.description.strip():
        errors.append({"field": "description", "message": "description is required"})
    if expense.amount is None or expense.amount <= 0:
        errors.append({"field": "amount", "message": "amount must be greater than 0"})
    if expense.expense_date is None:
        errors.append({"field": "expense_date", "message": "expense date is required"})
    elif expense.expense_date > today:
        errors.append({"field": "expense_date", "message": "expense date cannot be in the future"})
    if expense.currency.value != BASE_CURRENCY and (
        expense.exchange_rate is None or expense.exchange_rate <= 0
    ):
        errors.append(
            {
                "field": "exchange_rate",
                "message": f"exchange rate is required for {expense.currency.value}",
            }
        )
    for name in missing_documents:
        errors.append({"field": "documents", "message": f"missing required document '{name}'"})
    return errors


def requires_approval(expense: Expense, concept: ExpenseConcept) -> bool:
    """Concept flag, or the concept limit exceeded in base currency."""
    if concept.requires_approval:
        return True
    if concept.max_amount is not None:
        return base_amount(expense) > concept.max_amount
    return False


def submit(
    expense: Expense,
    concept: Optional[ExpenseConcept],
    actor: Actor,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
    missing_documents: Sequence[str] = (),
) -> Transition:
    _ensure_status(expense, "submit")
    policy.require("submit", actor, owner=expense.created_by)
    errors = submission_errors(expense, concept, today=today, missing_documents=missing_documents)
    if errors:
        raise ValidationError(errors)
    if concept is None:
        raise NotFound("expense concept", expense.concept_id)
    ts = _now(now)
    needs_approval = requires_approval(expense, concept)
    update: Dict[str, Any] = {"requires_approval": needs_approval, "updated_at": ts}
    delta = ZERO
    if needs_approval:
        update["status"] = S.PENDING
    else:
        update["status"] = S.APPROVED
        update["approved_at"] = ts
        if expense.cost_center_id:
            consumed = base_amount(expense)
            update["consumed_amount"] = consumed
            delta = consumed
    return Transition(
        expense=expense.model_copy(update=update),
        previous_status=expense.status,
        action=HistoryAction.SUBMITTED,
        budget_delta=delta,
        comment=None if needs_approval else "approved automatically",
    )


def approve(
    expense: Expense,
    approver: Actor,
    observations: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    _ensure_status(expense, "approve")
    policy.require("approve", approver)
    ts = _now(now)
    update: Dict[str, Any] = {
        "status": S.APPROVED,
        "approved_by": approver.user_id,
        "approved_at": ts,
        "updated_at": ts,
    }
    if observations:
        update["observations"] = observations
    delta = ZERO
    if expense.cost_center_id:
        try:
            consumed = base_amount(expense)
        except MissingExchangeRate:
            raise ValidationError.single(
                "exchange_rate", f"exchange rate is required for {expense.currency.value}"
            )
        update["consumed_amount"] = consumed
        delta = consumed
    return Transition(
        expense=expense.model_copy(update=update),
        previous_status=expense.status,
        action=HistoryAction.APPROVED,
        budget_delta=delta,
        comment=observations,
    )


def reject(
    expense: Expense, approver: Actor, motivo: Optional[str], now: Optional[datetime] = None
) -> Transition:
    _ensure_status(expense, "reject")
    policy.require("reject", approver)
    reason = _require_reason(motivo)
    ts = _now(now)
    return Transition(
        expense=expense.model_copy(
            update={
                "status": S.REJECTED,
                "rejected_by": approver.user_id,
                "rejected_at": ts,
                "rejection_reason": reason,
                "updated_at": ts,
            }
        ),
        previous_status=expense.status,
        action=HistoryAction.REJECTED,
        comment=reason,
    )


def mark_paid(
    expense: Expense,
    payer: Actor,
    payment_method: Optional[str] = None,
    operation_number: Optional[str] = None,
    observations: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    _ensure_status(expense, "mark_paid")
    policy.require("mark_paid", payer)
    ts = _now(now)
    update: Dict[str, Any] = {
        "status": S.PAID,
        "paid_by": payer.user_id,
        "paid_at": ts,
        "updated_at": ts,
        "payment_method": payment_method or expense.payment_method,
        "operation_number": operation_number or expense.operation_number,
    }
    if observations:
        update["observations"] = observations
    return Transition(
        expense=expense.model_copy(update=update),
        previous_status=expense.status,
        action=HistoryAction.PAID,
        comment=observations,
    )


def annul(
    expense: Expense, actor: Actor, motivo: Optional[str], now: Optional[datetime] = None
) -> Transition:
    _ensure_status(expense, "annul")
    policy.require("annul", actor, owner=expense.created_by)
    reason = _require_reason(motivo)
    ts = _now(now)
    delta = ZERO
    update: Dict[str, Any] = {
        "status": S.ANNULLED,
        "annulled_by": actor.user_id,
        "annulled_at": ts,
        "annulment_reason": reason,
        "updated_at": ts,
    }
    # Only an approved expense has charged its cost center.
    if expense.status == S.APPROVED and expense.consumed_amount and expense.cost_center_id:
        delta = -expense.consumed_amount
        update["consumed_amount"] = None
    return Transition(
        expense=expense.model_copy(update=update),
        previous_status=expense.status,
        action=HistoryAction.ANNULLED,
        budget_delta=delta,
        comment=reason,
    )


def check_delete(expense: Expense, actor: Actor) -> None:
    _ensure_status(expense, "delete")
    policy.require("delete", actor)
