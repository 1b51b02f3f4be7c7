"""Expense statistics for the treasury dashboard.

All amounts are in the base currency. Expenses whose base amount cannot be
computed yet (drafts without amount, or foreign drafts without a rate) are
counted but contribute nothing to the totals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from treasury.db.base import ExpenseFilters, Repository
from treasury.models.constants import BASE_CURRENCY, EXPENSE_STATUS_CODES, ExpenseStatus
from treasury.models.expense import Expense
from treasury.services.money import round2, to_base
from treasury.services.workflow import list_pending_funds

ZERO = Decimal("0.00")
# Statuses whose amounts count as spent for the month.
SPENT_STATUSES = (ExpenseStatus.APPROVED, ExpenseStatus.PAID)


@dataclass(frozen=True)
class StatusTotal:
    status: ExpenseStatus
    status_code: int
    count: int
    total: Decimal


@dataclass(frozen=True)
class ConceptTotal:
    concept_id: str
    concept_name: Optional[str]
    count: int
    total: Decimal


@dataclass(frozen=True)
class ExpenseStatistics:
    total_count: int
    by_status: List[StatusTotal]
    pending_approval_total: Decimal
    current_month_total: Decimal
    pending_funds: int
    by_concept: List[ConceptTotal] = field(default_factory=list)


def base_amount_or_none(e: Expense) -> Optional[Decimal]:
    if e.consumed_amount is not None:
        return e.consumed_amount
    if e.amount is None:
        return None
    if e.currency.value != BASE_CURRENCY and e.exchange_rate is None:
        return None
    return to_base(e.amount, e.currency, e.exchange_rate, ref=e.id)


def compute_statistics(
    repo: Repository, filters: Optional[ExpenseFilters] = None, as_of: Optional[date] = None
) -> ExpenseStatistics:
    as_of = as_of or date.today()
    expenses = repo.list_expenses(filters)

    counts: Dict[ExpenseStatus, int] = {s: 0 for s in ExpenseStatus}
    totals: Dict[ExpenseStatus, Decimal] = {s: ZERO for s in ExpenseStatus}
    concept_counts: Dict[str, int] = {}
    concept_totals: Dict[str, Decimal] = {}
    month_total = ZERO

    for e in expenses:
        amount = base_amount_or_none(e) or ZERO
        counts[e.status] += 1
        totals[e.status] += amount
        if e.status in (ExpenseStatus.ANNULLED, ExpenseStatus.REJECTED):
            continue
        concept_counts[e.concept_id] = concept_counts.get(e.concept_id, 0) + 1
        concept_totals[e.concept_id] = concept_totals.get(e.concept_id, ZERO) + amount
        if (
            e.status in SPENT_STATUSES
            and e.expense_date is not None
            and (e.expense_date.year, e.expense_date.month) == (as_of.year, as_of.month)
        ):
            month_total += amount

    by_concept = []
    for concept_id, total in sorted(concept_totals.items(), key=lambda kv: kv[1], reverse=True):
        concept = repo.get_concept(concept_id)
        by_concept.append(
            ConceptTotal(
                concept_id=concept_id,
                concept_name=concept.name if concept else None,
                count=concept_counts[concept_id],
                total=round2(total),
            )
        )

    return ExpenseStatistics(
        total_count=len(expenses),
        by_status=[
            StatusTotal(
                status=s,
                status_code=EXPENSE_STATUS_CODES[s],
                count=counts[s],
                total=round2(totals[s]),
            )
            for s in ExpenseStatus
        ],
        pending_approval_total=round2(totals[ExpenseStatus.PENDING]),
        current_month_total=round2(month_total),
        pending_funds=len(list_pending_funds(repo)),
        by_concept=by_concept,
    )
