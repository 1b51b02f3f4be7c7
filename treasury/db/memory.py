"""Process-local repository used for tests and demos.

Same semantics as the SQLite DAL, including version checks. Models are
copied on the way in and out so callers never share state with the store.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional

from treasury.core.errors import NotFound, VersionConflict
from treasury.models.cash_box import CashBox
from treasury.models.concept import ExpenseConcept, RequiredDocument
from treasury.models.cost_center import CostCenter
from treasury.models.expense import Evidence, Expense, HistoryEntry
from treasury.models.fund import FundAssignment
from treasury.services.money import round2

from .base import CashBoxFilters, ExpenseFilters, FundFilters, Repository, RetryingTransitionMixin


def _copy(model):
    return model.model_copy(deep=True)


class InMemoryRepository(RetryingTransitionMixin, Repository):
    def __init__(self, reconciliation_retries: int = 2):
        super().__init__(reconciliation_retries)
        self._concepts: Dict[str, ExpenseConcept] = {}
        self._documents: Dict[str, RequiredDocument] = {}
        self._cost_centers: Dict[str, CostCenter] = {}
        self._expenses: Dict[str, Expense] = {}
        self._history: List[HistoryEntry] = []
        self._funds: Dict[str, FundAssignment] = {}
        self._evidence: List[Evidence] = []
        self._cash_boxes: Dict[str, CashBox] = {}
        self._expense_seq = 0

    # Concepts & checklist ---------------------------------------------
    def save_concept(self, concept: ExpenseConcept) -> ExpenseConcept:
        self._concepts[concept.id] = _copy(concept)
        return _copy(concept)

    def get_concept(self, concept_id: str) -> Optional[ExpenseConcept]:
        c = self._concepts.get(concept_id)
        return _copy(c) if c else None

    def list_concepts(self, active_only: bool = False) -> List[ExpenseConcept]:
        items = [c for c in self._concepts.values() if c.active or not active_only]
        return [_copy(c) for c in sorted(items, key=lambda c: c.code)]

    def add_required_document(self, doc: RequiredDocument) -> RequiredDocument:
        self._documents[doc.id] = _copy(doc)
        return _copy(doc)

    def list_required_documents(self, concept_id: str) -> List[RequiredDocument]:
        return [_copy(d) for d in self._documents.values() if d.concept_id == concept_id]

    def delete_required_document(self, concept_id: str, doc_id: str) -> bool:
        doc = self._documents.get(doc_id)
        if doc is None or doc.concept_id != concept_id:
            return False
        del self._documents[doc_id]
        return True

    # Cost centers -----------------------------------------------------
    def insert_cost_center(self, cc: CostCenter) -> CostCenter:
        self._cost_centers[cc.id] = _copy(cc)
        return _copy(cc)

    def get_cost_center(self, cc_id: str) -> Optional[CostCenter]:
        cc = self._cost_centers.get(cc_id)
        return _copy(cc) if cc else None

    def list_cost_centers(self, company: Optional[str] = None) -> List[CostCenter]:
        items = [c for c in self._cost_centers.values() if company is None or c.company == company]
        return [_copy(c) for c in sorted(items, key=lambda c: c.code)]

    def save_cost_center(self, cc: CostCenter, expected_version: int) -> CostCenter:
        current = self._cost_centers.get(cc.id)
        if current is None:
            raise NotFound("cost center", cc.id)
        if current.version != expected_version:
            raise VersionConflict("cost center", cc.id, expected_version, current.version)
        stored = cc.model_copy(update={"version": expected_version + 1}, deep=True)
        self._cost_centers[cc.id] = stored
        return _copy(stored)

    def _adjust_consumed(self, cc_id: str, delta: Decimal) -> CostCenter:
        current = self._cost_centers.get(cc_id)
        if current is None:
            raise NotFound("cost center", cc_id)
        stored = current.model_copy(
            update={
                "consumed_budget": round2(current.consumed_budget + delta),
                "version": current.version + 1,
            }
        )
        self._cost_centers[cc_id] = stored
        return _copy(stored)

    # Expenses ---------------------------------------------------------
    def next_expense_code(self) -> str:
        self._expense_seq += 1
        return f"GST-{self._expense_seq:06d}"

    def insert_expense(self, expense: Expense, history: HistoryEntry) -> Expense:
        self._expenses[expense.id] = _copy(expense)
        self._write_history(history)
        return _copy(expense)

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        e = self._expenses.get(expense_id)
        return _copy(e) if e else None

    def list_expenses(self, filters: Optional[ExpenseFilters] = None) -> List[Expense]:
        filters = filters or ExpenseFilters()
        items = [e for e in self._expenses.values() if filters.matches(e)]
        items.sort(key=lambda e: (e.created_at, e.code), reverse=True)
        return [_copy(e) for e in items]

    def delete_expense(self, expense_id: str, expected_version: int) -> None:
        current = self._expenses.get(expense_id)
        if current is None:
            raise NotFound("expense", expense_id)
        if current.version != expected_version:
            raise VersionConflict("expense", expense_id, expected_version, current.version)
        del self._expenses[expense_id]
        self._history = [h for h in self._history if h.expense_id != expense_id]
        self._evidence = [ev for ev in self._evidence if ev.expense_id != expense_id]

    def list_history(self, expense_id: str) -> List[HistoryEntry]:
        return [_copy(h) for h in self._history if h.expense_id == expense_id]

    def _write_expense(self, expense: Expense, expected_version: int) -> Expense:
        current = self._expenses.get(expense.id)
        if current is None:
            raise NotFound("expense", expense.id)
        if current.version != expected_version:
            raise VersionConflict("expense", expense.id, expected_version, current.version)
        stored = expense.model_copy(update={"version": expected_version + 1}, deep=True)
        self._expenses[expense.id] = stored
        return _copy(stored)

    def _restore_expense(self, expense: Expense) -> None:
        self._expenses[expense.id] = _copy(expense)

    def _write_history(self, history: HistoryEntry) -> None:
        self._history.append(_copy(history))

    # Funds ------------------------------------------------------------
    def insert_fund(self, fund: FundAssignment) -> FundAssignment:
        self._funds[fund.id] = _copy(fund)
        return _copy(fund)

    def get_fund(self, fund_id: str) -> Optional[FundAssignment]:
        f = self._funds.get(fund_id)
        return _copy(f) if f else None

    def list_funds(self, filters: Optional[FundFilters] = None) -> List[FundAssignment]:
        filters = filters or FundFilters()
        items = [f for f in self._funds.values() if filters.matches(f)]
        items.sort(key=lambda f: (f.assigned_on, f.created_at), reverse=True)
        return [_copy(f) for f in items]

    def save_fund(self, fund: FundAssignment, expected_version: int) -> FundAssignment:
        current = self._funds.get(fund.id)
        if current is None:
            raise NotFound("fund assignment", fund.id)
        if current.version != expected_version:
            raise VersionConflict("fund assignment", fund.id, expected_version, current.version)
        stored = fund.model_copy(update={"version": expected_version + 1}, deep=True)
        self._funds[fund.id] = stored
        return _copy(stored)

    # Evidence ---------------------------------------------------------
    def add_evidence(self, evidence: Evidence) -> Evidence:
        self._evidence.append(_copy(evidence))
        return _copy(evidence)

    def list_evidence(self, expense_id: str) -> List[Evidence]:
        return [_copy(ev) for ev in self._evidence if ev.expense_id == expense_id]

    def delete_evidence(self, expense_id: str, evidence_id: str) -> Optional[Evidence]:
        for i, ev in enumerate(self._evidence):
            if ev.id == evidence_id and ev.expense_id == expense_id:
                del self._evidence[i]
                return _copy(ev)
        return None

    # Cash boxes -------------------------------------------------------
    def insert_cash_box(self, box: CashBox) -> CashBox:
        self._cash_boxes[box.id] = _copy(box)
        return _copy(box)

    def get_cash_box(self, box_id: str) -> Optional[CashBox]:
        box = self._cash_boxes.get(box_id)
        return _copy(box) if box else None

    def list_cash_boxes(self, filters: Optional[CashBoxFilters] = None) -> List[CashBox]:
        filters = filters or CashBoxFilters()
        items = [b for b in self._cash_boxes.values() if filters.matches(b)]
        items.sort(key=lambda b: (b.opened_at, b.code), reverse=True)
        return [_copy(b) for b in items]

    def save_cash_box(self, box: CashBox, expected_version: int) -> CashBox:
        current = self._cash_boxes.get(box.id)
        if current is None:
            raise NotFound("cash box", box.id)
        if current.version != expected_version:
            raise VersionConflict("cash box", box.id, expected_version, current.version)
        stored = box.model_copy(update={"version": expected_version + 1}, deep=True)
        self._cash_boxes[box.id] = stored
        return _copy(stored)
