"""Workflow orchestration.

Loads entities from the repository, runs the policy and the state machines,
and persists the result (with the cost-center effect and a history entry)
in one repository call. Routers call these functions; nothing here knows
about HTTP.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence

from treasury.core.errors import NotFound, TreasuryError, ValidationError
from treasury.db.base import CashBoxFilters, ExpenseFilters, FundFilters, Repository
from treasury.models.cash_box import CashBox, CashBoxIn
from treasury.models.concept import (
    ChecklistResult,
    ExpenseConcept,
    ExpenseConceptIn,
    RequiredDocument,
    RequiredDocumentIn,
)
from treasury.models.constants import OPEN_FUND_STATUSES, CashBoxStatus
from treasury.models.cost_center import BudgetUpdateIn, CostCenter, CostCenterIn
from treasury.models.expense import Expense, ExpenseIn, ExpenseUpdateIn, HistoryEntry
from treasury.models.fund import FundAssignment, FundAssignmentIn
from treasury.services import cash_boxes, checklist, lifecycle, policy, reconciliation
from treasury.services.budget_utils import validate_assigned_budget
from treasury.services.lifecycle import Transition
from treasury.services.policy import Actor

logger = logging.getLogger("treasury.workflow")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _logged(entity: str, entity_id: Optional[str], action: str) -> Iterator[None]:
    """Log refused actions at WARNING, then let the error propagate."""
    try:
        yield
    except TreasuryError as exc:
        logger.warning(
            "%s %s refused: %s",
            entity,
            action,
            exc.message,
            extra={"entity": entity, "entity_id": entity_id, "action": action},
        )
        raise


def _log_transition(entity: str, entity_id: str, action: str, from_status: Any, to_status: Any) -> None:
    logger.info(
        "%s %s: %s -> %s",
        entity,
        action,
        getattr(from_status, "value", from_status),
        getattr(to_status, "value", to_status),
        extra={
            "entity": entity,
            "entity_id": entity_id,
            "action": action,
            "from_status": getattr(from_status, "value", from_status),
            "to_status": getattr(to_status, "value", to_status),
        },
    )


# Lookups ----------------------------------------------------------


def get_expense(repo: Repository, expense_id: str) -> Expense:
    expense = repo.get_expense(expense_id)
    if expense is None:
        raise NotFound("expense", expense_id)
    return expense


def get_fund(repo: Repository, fund_id: str) -> FundAssignment:
    fund = repo.get_fund(fund_id)
    if fund is None:
        raise NotFound("fund assignment", fund_id)
    return fund


def get_cost_center(repo: Repository, cc_id: str) -> CostCenter:
    cc = repo.get_cost_center(cc_id)
    if cc is None:
        raise NotFound("cost center", cc_id)
    return cc


def get_concept(repo: Repository, concept_id: str) -> ExpenseConcept:
    concept = repo.get_concept(concept_id)
    if concept is None:
        raise NotFound("expense concept", concept_id)
    return concept


def attached_document_types(repo: Repository, expense_id: str) -> List[str]:
    return [ev.document_type for ev in repo.list_evidence(expense_id) if ev.document_type]


def _check_references(
    repo: Repository,
    concept_id: Optional[str] = None,
    cost_center_id: Optional[str] = None,
    fund_id: Optional[str] = None,
) -> None:
    errors: List[Dict[str, str]] = []
    if concept_id is not None and repo.get_concept(concept_id) is None:
        errors.append({"field": "concept_id", "message": f"unknown expense concept '{concept_id}'"})
    if cost_center_id is not None and repo.get_cost_center(cost_center_id) is None:
        errors.append({"field": "cost_center_id", "message": f"unknown cost center '{cost_center_id}'"})
    if fund_id is not None:
        fund = repo.get_fund(fund_id)
        if fund is None:
            errors.append({"field": "fund_id", "message": f"unknown fund assignment '{fund_id}'"})
        elif fund.status not in OPEN_FUND_STATUSES:
            errors.append({"field": "fund_id", "message": f"fund assignment is {fund.status.value}"})
    if errors:
        raise ValidationError(errors)


# Expenses ---------------------------------------------------------


def _persist(
    repo: Repository, t: Transition, actor: Actor, expected_version: Optional[int], read_version: int
) -> Expense:
    history = HistoryEntry(
        id=str(uuid.uuid4()),
        expense_id=t.expense.id,
        action=t.action,
        previous_status=t.previous_status,
        new_status=t.expense.status,
        actor=actor.user_id,
        comment=t.comment,
        created_at=t.expense.updated_at,
    )
    version = expected_version if expected_version is not None else read_version
    saved = repo.apply_transition(
        t.expense,
        version,
        history,
        budget_delta=t.budget_delta,
        cost_center_id=t.cost_center_id,
    )
    _log_transition("expense", saved.id, t.action.value, t.previous_status, saved.status)
    return saved


def create_expense(
    repo: Repository, payload: ExpenseIn, actor: Actor, now: Optional[datetime] = None
) -> Expense:
    with _logged("expense", None, "create"):
        policy.require("create", actor)
        _check_references(repo, payload.concept_id, payload.cost_center_id, payload.fund_id)
        concept = repo.get_concept(payload.concept_id)
        t = lifecycle.new_draft(payload, actor, repo.next_expense_code(), concept=concept, now=now)
        history = HistoryEntry(
            id=str(uuid.uuid4()),
            expense_id=t.expense.id,
            action=t.action,
            previous_status=None,
            new_status=t.expense.status,
            actor=actor.user_id,
            created_at=t.expense.created_at,
        )
        saved = repo.insert_expense(t.expense, history)
    _log_transition("expense", saved.id, t.action.value, None, saved.status)
    return saved


def list_expenses(repo: Repository, filters: Optional[ExpenseFilters] = None) -> List[Expense]:
    return repo.list_expenses(filters)


def update_expense(
    repo: Repository, expense_id: str, payload: ExpenseUpdateIn, actor: Actor
) -> Expense:
    expense = get_expense(repo, expense_id)
    changes = payload.changes()
    with _logged("expense", expense_id, "edit"):
        _check_references(
            repo,
            changes.get("concept_id"),
            changes.get("cost_center_id"),
            changes.get("fund_id"),
        )
        t = lifecycle.update_draft(expense, changes, actor)
        return _persist(repo, t, actor, payload.expected_version, expense.version)


def delete_expense(
    repo: Repository, expense_id: str, actor: Actor, expected_version: Optional[int] = None
) -> None:
    expense = get_expense(repo, expense_id)
    with _logged("expense", expense_id, "delete"):
        lifecycle.check_delete(expense, actor)
        repo.delete_expense(
            expense_id, expected_version if expected_version is not None else expense.version
        )
    logger.info(
        "expense %s deleted",
        expense.code,
        extra={"entity": "expense", "entity_id": expense_id, "action": "delete"},
    )


def list_history(repo: Repository, expense_id: str) -> List[HistoryEntry]:
    get_expense(repo, expense_id)
    return repo.list_history(expense_id)


def submit_expense(
    repo: Repository,
    expense_id: str,
    actor: Actor,
    checklist_enforced: bool = False,
    expected_version: Optional[int] = None,
    today: Optional[date] = None,
) -> Expense:
    expense = get_expense(repo, expense_id)
    concept = repo.get_concept(expense.concept_id)
    missing: Sequence[str] = ()
    if checklist_enforced and concept is not None:
        missing = checklist.missing(repo, concept.id, attached_document_types(repo, expense_id))
    with _logged("expense", expense_id, "submit"):
        t = lifecycle.submit(expense, concept, actor, today=today, missing_documents=missing)
        return _persist(repo, t, actor, expected_version, expense.version)


def approve_expense(
    repo: Repository,
    expense_id: str,
    actor: Actor,
    observations: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Expense:
    expense = get_expense(repo, expense_id)
    with _logged("expense", expense_id, "approve"):
        t = lifecycle.approve(expense, actor, observations)
        return _persist(repo, t, actor, expected_version, expense.version)


def reject_expense(
    repo: Repository,
    expense_id: str,
    actor: Actor,
    motivo: Optional[str],
    expected_version: Optional[int] = None,
) -> Expense:
    expense = get_expense(repo, expense_id)
    with _logged("expense", expense_id, "reject"):
        t = lifecycle.reject(expense, actor, motivo)
        return _persist(repo, t, actor, expected_version, expense.version)


def pay_expense(
    repo: Repository,
    expense_id: str,
    actor: Actor,
    payment_method: Optional[str] = None,
    operation_number: Optional[str] = None,
    observations: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Expense:
    expense = get_expense(repo, expense_id)
    with _logged("expense", expense_id, "mark_paid"):
        t = lifecycle.mark_paid(expense, actor, payment_method, operation_number, observations)
        return _persist(repo, t, actor, expected_version, expense.version)


def annul_expense(
    repo: Repository,
    expense_id: str,
    actor: Actor,
    motivo: Optional[str],
    expected_version: Optional[int] = None,
) -> Expense:
    expense = get_expense(repo, expense_id)
    with _logged("expense", expense_id, "annul"):
        t = lifecycle.annul(expense, actor, motivo)
        return _persist(repo, t, actor, expected_version, expense.version)


# Fund assignments -------------------------------------------------


def create_fund(repo: Repository, payload: FundAssignmentIn, actor: Actor) -> FundAssignment:
    with _logged("fund assignment", None, "create"):
        fund = reconciliation.new_assignment(payload, actor, str(uuid.uuid4()))
        saved = repo.insert_fund(fund)
    _log_transition("fund assignment", saved.id, "create", None, saved.status)
    return saved


def _save_fund(
    repo: Repository,
    before: FundAssignment,
    after: FundAssignment,
    action: str,
    expected_version: Optional[int],
) -> FundAssignment:
    version = expected_version if expected_version is not None else before.version
    saved = repo.save_fund(after, version)
    _log_transition("fund assignment", saved.id, action, before.status, saved.status)
    return saved


def mark_fund_for_rendering(
    repo: Repository, fund_id: str, actor: Actor, expected_version: Optional[int] = None
) -> FundAssignment:
    fund = get_fund(repo, fund_id)
    with _logged("fund assignment", fund_id, "mark_for_rendering"):
        updated = reconciliation.mark_for_rendering(fund, actor)
        return _save_fund(repo, fund, updated, "mark_for_rendering", expected_version)


def render_fund(
    repo: Repository,
    fund_id: str,
    actor: Actor,
    expense_ids: Sequence[str],
    observations: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> FundAssignment:
    fund = get_fund(repo, fund_id)
    with _logged("fund assignment", fund_id, "render"):
        expenses = repo.get_expenses(expense_ids)
        updated = reconciliation.render(fund, expenses, expense_ids, actor, observations)
        return _save_fund(repo, fund, updated, "render", expected_version)


def annul_fund(
    repo: Repository,
    fund_id: str,
    actor: Actor,
    motivo: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> FundAssignment:
    fund = get_fund(repo, fund_id)
    with _logged("fund assignment", fund_id, "annul"):
        updated = reconciliation.annul(fund, actor, motivo)
        return _save_fund(repo, fund, updated, "annul", expected_version)


def list_pending_funds(repo: Repository, responsible: Optional[str] = None) -> List[FundAssignment]:
    return repo.list_funds(FundFilters(statuses=tuple(OPEN_FUND_STATUSES), responsible=responsible))


def list_overdue_funds(
    repo: Repository, as_of: Optional[date] = None, responsible: Optional[str] = None
) -> List[FundAssignment]:
    as_of = as_of or date.today()
    return [f for f in list_pending_funds(repo, responsible) if f.is_overdue(as_of)]


def validate_responsible(
    repo: Repository, responsible: str, as_of: Optional[date] = None
) -> Dict[str, Any]:
    """Whether `responsible` may be handed a new fund: no overdue open assignments."""
    open_funds = list_pending_funds(repo, responsible)
    overdue = [f for f in open_funds if f.is_overdue(as_of)]
    can_receive = not overdue
    if can_receive:
        message = "responsible has no overdue fund assignments"
    else:
        message = f"responsible has {len(overdue)} overdue fund assignment(s) to render"
    return {
        "responsible": responsible,
        "can_receive_fund": can_receive,
        "open_assignments": len(open_funds),
        "overdue_assignment_ids": [f.id for f in overdue],
        "message": message,
    }


# Cash boxes -------------------------------------------------------


def get_cash_box(repo: Repository, box_id: str) -> CashBox:
    box = repo.get_cash_box(box_id)
    if box is None:
        raise NotFound("cash box", box_id)
    return box


def current_cash_box(repo: Repository, code: str) -> CashBox:
    """The open box registered under `code`."""
    boxes = repo.list_cash_boxes(CashBoxFilters(statuses=(CashBoxStatus.OPEN,), code=code))
    if not boxes:
        raise NotFound("open cash box", code)
    return boxes[0]


def list_cash_boxes(
    repo: Repository, branch: Optional[str] = None, status: Optional[CashBoxStatus] = None
) -> List[CashBox]:
    statuses = (status,) if status is not None else ()
    return repo.list_cash_boxes(CashBoxFilters(statuses=statuses, branch=branch))


def open_cash_box(repo: Repository, payload: CashBoxIn, actor: Actor) -> CashBox:
    with _logged("cash box", None, "open"):
        box = cash_boxes.open_box(payload, actor, str(uuid.uuid4()))
        if repo.list_cash_boxes(CashBoxFilters(statuses=(CashBoxStatus.OPEN,), code=payload.code)):
            raise ValidationError.single("code", f"cash box '{payload.code}' is already open")
        saved = repo.insert_cash_box(box)
    _log_transition("cash box", saved.id, "open", None, saved.status)
    return saved


def close_cash_box(
    repo: Repository,
    box_id: str,
    actor: Actor,
    physical_balance: Decimal,
    observations: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> CashBox:
    box = get_cash_box(repo, box_id)
    with _logged("cash box", box_id, "close"):
        closed = cash_boxes.close_box(box, actor, physical_balance, observations)
        version = expected_version if expected_version is not None else box.version
        saved = repo.save_cash_box(closed, version)
    _log_transition("cash box", saved.id, "close", box.status, saved.status)
    return saved


# Cost centers -----------------------------------------------------


def create_cost_center(repo: Repository, payload: CostCenterIn, actor: Actor) -> CostCenter:
    with _logged("cost center", None, "create"):
        policy.require("manage_treasury", actor)
        if any(c.code == payload.code for c in repo.list_cost_centers()):
            raise ValidationError.single("code", f"cost center code '{payload.code}' already exists")
        ts = _utcnow()
        cc = CostCenter(id=str(uuid.uuid4()), created_at=ts, updated_at=ts, **payload.model_dump())
        return repo.insert_cost_center(cc)


def update_budget(
    repo: Repository, cc_id: str, payload: BudgetUpdateIn, actor: Actor
) -> CostCenter:
    cc = get_cost_center(repo, cc_id)
    with _logged("cost center", cc_id, "update_budget"):
        policy.require("manage_treasury", actor)
        assigned = validate_assigned_budget(cc, payload.assigned_budget)
        version = payload.expected_version if payload.expected_version is not None else cc.version
        saved = repo.save_cost_center(
            cc.model_copy(update={"assigned_budget": assigned, "updated_at": _utcnow()}), version
        )
    logger.info(
        "cost center %s budget set to %s",
        cc.code,
        assigned,
        extra={"entity": "cost center", "entity_id": cc_id, "action": "update_budget"},
    )
    return saved


# Concepts & checklist ---------------------------------------------


def _check_concept_code(repo: Repository, code: str, own_id: Optional[str] = None) -> None:
    if any(c.code == code and c.id != own_id for c in repo.list_concepts()):
        raise ValidationError.single("code", f"expense concept code '{code}' already exists")


def create_concept(repo: Repository, payload: ExpenseConceptIn, actor: Actor) -> ExpenseConcept:
    with _logged("expense concept", None, "create"):
        policy.require("manage_treasury", actor)
        _check_concept_code(repo, payload.code)
        _check_references(repo, cost_center_id=payload.cost_center_id)
        ts = _utcnow()
        concept = ExpenseConcept(
            id=str(uuid.uuid4()), created_at=ts, updated_at=ts, **payload.model_dump()
        )
        return repo.save_concept(concept)


def update_concept(
    repo: Repository, concept_id: str, payload: ExpenseConceptIn, actor: Actor
) -> ExpenseConcept:
    current = get_concept(repo, concept_id)
    with _logged("expense concept", concept_id, "edit"):
        policy.require("manage_treasury", actor)
        _check_concept_code(repo, payload.code, own_id=concept_id)
        _check_references(repo, cost_center_id=payload.cost_center_id)
        concept = ExpenseConcept(
            id=current.id,
            created_at=current.created_at,
            updated_at=_utcnow(),
            **payload.model_dump(),
        )
        return repo.save_concept(concept)


def add_required_document(
    repo: Repository, concept_id: str, payload: RequiredDocumentIn, actor: Actor
) -> RequiredDocument:
    get_concept(repo, concept_id)
    with _logged("expense concept", concept_id, "add_document"):
        policy.require("manage_treasury", actor)
        doc = RequiredDocument(id=str(uuid.uuid4()), concept_id=concept_id, **payload.model_dump())
        return repo.add_required_document(doc)


def delete_required_document(
    repo: Repository, concept_id: str, doc_id: str, actor: Actor
) -> None:
    get_concept(repo, concept_id)
    with _logged("expense concept", concept_id, "delete_document"):
        policy.require("manage_treasury", actor)
        if not repo.delete_required_document(concept_id, doc_id):
            raise NotFound("required document", doc_id)


def evaluate_checklist(
    repo: Repository, concept_id: str, document_types: Sequence[str]
) -> ChecklistResult:
    get_concept(repo, concept_id)
    return checklist.evaluate(repo, concept_id, document_types)
