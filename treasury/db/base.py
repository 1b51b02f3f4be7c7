"""Repository abstraction shared by the SQLite DAL and the in-memory store.

Business logic only ever talks to `Repository`; which implementation backs it
is chosen by `Settings.persistence_backend` through `make_repository`.

Writes are version checked: callers pass the version they last read and the
repository bumps it, raising `VersionConflict` when someone else got there
first.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from treasury.core.errors import NotFound, PersistenceError, ReconciliationError
from treasury.models.cash_box import CashBox
from treasury.models.concept import ExpenseConcept, RequiredDocument
from treasury.models.constants import CashBoxStatus, ExpenseStatus, FundStatus
from treasury.models.cost_center import CostCenter
from treasury.models.expense import Evidence, Expense, HistoryEntry
from treasury.models.fund import FundAssignment

logger = logging.getLogger("treasury.db")

ZERO = Decimal("0.00")


@dataclass
class ExpenseFilters:
    statuses: Sequence[ExpenseStatus] = field(default_factory=tuple)
    concept_id: Optional[str] = None
    cost_center_id: Optional[str] = None
    fund_id: Optional[str] = None
    created_by: Optional[str] = None
    currency: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None

    def matches(self, e: Expense) -> bool:
        if self.statuses and e.status not in self.statuses:
            return False
        for attr in ("concept_id", "cost_center_id", "fund_id", "created_by"):
            wanted = getattr(self, attr)
            if wanted is not None and getattr(e, attr) != wanted:
                return False
        if self.currency and e.currency.value != self.currency:
            return False
        if self.date_from and (e.expense_date is None or e.expense_date < self.date_from):
            return False
        if self.date_to and (e.expense_date is None or e.expense_date > self.date_to):
            return False
        if self.search:
            needle = self.search.lower()
            haystack = " ".join(
                v for v in (e.description, e.code, e.beneficiary_name) if v
            ).lower()
            if needle not in haystack:
                return False
        return True


@dataclass
class FundFilters:
    statuses: Sequence[FundStatus] = field(default_factory=tuple)
    company: Optional[str] = None
    branch: Optional[str] = None
    responsible: Optional[str] = None
    fund_type: Optional[str] = None

    def matches(self, f: FundAssignment) -> bool:
        if self.statuses and f.status not in self.statuses:
            return False
        for attr in ("company", "branch", "responsible", "fund_type"):
            wanted = getattr(self, attr)
            if wanted is not None and getattr(f, attr) != wanted:
                return False
        return True


@dataclass
class CashBoxFilters:
    statuses: Sequence[CashBoxStatus] = field(default_factory=tuple)
    company: Optional[str] = None
    branch: Optional[str] = None
    code: Optional[str] = None

    def matches(self, box: CashBox) -> bool:
        if self.statuses and box.status not in self.statuses:
            return False
        for attr in ("company", "branch", "code"):
            wanted = getattr(self, attr)
            if wanted is not None and getattr(box, attr) != wanted:
                return False
        return True


class Repository(ABC):
    """Persistence capability set required by the workflow layer."""

    def __init__(self, reconciliation_retries: int = 2):
        self.reconciliation_retries = reconciliation_retries

    # Concepts & checklist ---------------------------------------------
    @abstractmethod
    def save_concept(self, concept: ExpenseConcept) -> ExpenseConcept: ...

    @abstractmethod
    def get_concept(self, concept_id: str) -> Optional[ExpenseConcept]: ...

    @abstractmethod
    def list_concepts(self, active_only: bool = False) -> List[ExpenseConcept]: ...

    @abstractmethod
    def add_required_document(self, doc: RequiredDocument) -> RequiredDocument: ...

    @abstractmethod
    def list_required_documents(self, concept_id: str) -> List[RequiredDocument]: ...

    @abstractmethod
    def delete_required_document(self, concept_id: str, doc_id: str) -> bool: ...

    # Cost centers -----------------------------------------------------
    @abstractmethod
    def insert_cost_center(self, cc: CostCenter) -> CostCenter: ...

    @abstractmethod
    def get_cost_center(self, cc_id: str) -> Optional[CostCenter]: ...

    @abstractmethod
    def list_cost_centers(self, company: Optional[str] = None) -> List[CostCenter]: ...

    @abstractmethod
    def save_cost_center(self, cc: CostCenter, expected_version: int) -> CostCenter: ...

    # Expenses ---------------------------------------------------------
    @abstractmethod
    def next_expense_code(self) -> str: ...

    @abstractmethod
    def insert_expense(self, expense: Expense, history: HistoryEntry) -> Expense: ...

    @abstractmethod
    def get_expense(self, expense_id: str) -> Optional[Expense]: ...

    @abstractmethod
    def list_expenses(self, filters: Optional[ExpenseFilters] = None) -> List[Expense]: ...

    @abstractmethod
    def delete_expense(self, expense_id: str, expected_version: int) -> None: ...

    @abstractmethod
    def list_history(self, expense_id: str) -> List[HistoryEntry]: ...

    def get_expenses(self, expense_ids: Iterable[str]) -> Dict[str, Expense]:
        found: Dict[str, Expense] = {}
        for eid in expense_ids:
            e = self.get_expense(eid)
            if e is not None:
                found[eid] = e
        return found

    @abstractmethod
    def apply_transition(
        self,
        expense: Expense,
        expected_version: int,
        history: HistoryEntry,
        budget_delta: Decimal = ZERO,
        cost_center_id: Optional[str] = None,
    ) -> Expense:
        """Persist a status transition and its cost-center effect together."""

    # Funds ------------------------------------------------------------
    @abstractmethod
    def insert_fund(self, fund: FundAssignment) -> FundAssignment: ...

    @abstractmethod
    def get_fund(self, fund_id: str) -> Optional[FundAssignment]: ...

    @abstractmethod
    def list_funds(self, filters: Optional[FundFilters] = None) -> List[FundAssignment]: ...

    @abstractmethod
    def save_fund(self, fund: FundAssignment, expected_version: int) -> FundAssignment: ...

    # Evidence ---------------------------------------------------------
    @abstractmethod
    def add_evidence(self, evidence: Evidence) -> Evidence: ...

    @abstractmethod
    def list_evidence(self, expense_id: str) -> List[Evidence]: ...

    @abstractmethod
    def delete_evidence(self, expense_id: str, evidence_id: str) -> Optional[Evidence]:
        """Remove an evidence record; returns it, or None when it is not there."""

    # Cash boxes -------------------------------------------------------
    @abstractmethod
    def insert_cash_box(self, box: CashBox) -> CashBox: ...

    @abstractmethod
    def get_cash_box(self, box_id: str) -> Optional[CashBox]: ...

    @abstractmethod
    def list_cash_boxes(self, filters: Optional[CashBoxFilters] = None) -> List[CashBox]: ...

    @abstractmethod
    def save_cash_box(self, box: CashBox, expected_version: int) -> CashBox: ...


class RetryingTransitionMixin:
    """`apply_transition` for stores without multi-entity transactions.

    The expense is written first and the budget write is retried. If it still
    fails the expense is put back and `ReconciliationError` is raised.
    Mix in ahead of `Repository`.
    """

    reconciliation_retries: int

    @abstractmethod
    def _write_expense(self, expense: Expense, expected_version: int) -> Expense: ...

    @abstractmethod
    def _restore_expense(self, expense: Expense) -> None: ...

    @abstractmethod
    def _adjust_consumed(self, cc_id: str, delta: Decimal) -> CostCenter: ...

    @abstractmethod
    def _write_history(self, history: HistoryEntry) -> None: ...

    def apply_transition(
        self,
        expense: Expense,
        expected_version: int,
        history: HistoryEntry,
        budget_delta: Decimal = ZERO,
        cost_center_id: Optional[str] = None,
    ) -> Expense:
        previous = self.get_expense(expense.id)  # type: ignore[attr-defined]
        if previous is None:
            raise NotFound("expense", expense.id)
        saved = self._write_expense(expense, expected_version)
        if cost_center_id and budget_delta != ZERO:
            attempts = self.reconciliation_retries + 1
            for attempt in range(1, attempts + 1):
                try:
                    self._adjust_consumed(cost_center_id, budget_delta)
                    break
                except (NotFound, PersistenceError) as exc:
                    logger.warning(
                        "cost center update failed (attempt %s/%s): %s",
                        attempt,
                        attempts,
                        exc,
                        extra={"entity": "cost_center", "entity_id": cost_center_id},
                    )
                    last_error = exc
            else:
                self._restore_expense(previous)
                raise ReconciliationError(
                    "expense status and cost center budget could not be updated together",
                    expense_id=expense.id,
                    cost_center_id=cost_center_id,
                    budget_delta=str(budget_delta),
                    cause=str(last_error),
                )
        self._write_history(history)
        return saved
