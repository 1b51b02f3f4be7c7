from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from treasury.core.errors import (
    EmptySelection,
    ForeignExpense,
    InvalidTransition,
    MissingExchangeRate,
    Unauthorized,
    ValidationError,
)
from treasury.models.constants import Currency, ExpenseStatus, FundStatus
from treasury.models.expense import Expense
from treasury.models.fund import FundAssignment, FundAssignmentIn
from treasury.services import reconciliation
from treasury.services.policy import Actor

NOW = datetime(2025, 3, 20, 15, 0, tzinfo=timezone.utc)
ADMIN = Actor.of("admin-1", "admin")
HOLDER = Actor.of("resp-1", "colaborador")


def make_fund(**kw) -> FundAssignment:
    data = dict(
        id="f-1",
        company="ACME",
        branch="Lima",
        responsible="resp-1",
        fund_type="caja_chica",
        assigned_amount=Decimal("500.00"),
        assigned_on=date(2025, 3, 1),
        created_by="admin-1",
        created_at=NOW,
        updated_at=NOW,
    )
    data.update(kw)
    return FundAssignment(**data)


def make_expense(eid, amount, fund_id="f-1", status=ExpenseStatus.APPROVED, **kw) -> Expense:
    return Expense(
        id=eid,
        code=f"GST-{eid}",
        concept_id="c-1",
        fund_id=fund_id,
        description="compra",
        expense_date=date(2025, 3, 5),
        amount=Decimal(amount),
        status=status,
        created_by="resp-1",
        created_at=NOW,
        updated_at=NOW,
        **kw,
    )


def by_id(*expenses):
    return {e.id: e for e in expenses}


def test_render_sums_selected_expenses():
    fund = make_fund()
    expenses = by_id(
        make_expense("e1", "120.00"),
        make_expense("e2", "80.30", status=ExpenseStatus.PAID),
    )
    rendered = reconciliation.render(fund, expenses, ["e1", "e2"], HOLDER, now=NOW)
    assert rendered.status == FundStatus.RENDERED
    assert rendered.rendered_amount == Decimal("200.30")
    assert rendered.pending_balance == Decimal("299.70")
    assert rendered.rendered_expense_ids == ["e1", "e2"]
    assert rendered.rendered_by == "resp-1"
    assert rendered.status_code == 3


def test_render_rejects_foreign_expense_without_mutation():
    fund = make_fund()
    expenses = by_id(make_expense("e1", "120.00"), make_expense("e9", "10.00", fund_id="f-2"))
    with pytest.raises(ForeignExpense) as exc:
        reconciliation.render(fund, expenses, ["e1", "e9"], HOLDER)
    assert exc.value.detail["expense_ids"] == ["e9"]
    assert fund.status == FundStatus.ASSIGNED
    assert fund.rendered_amount is None


def test_unknown_ids_count_as_foreign():
    with pytest.raises(ForeignExpense):
        reconciliation.render(make_fund(), {}, ["missing"], HOLDER)


def test_empty_selection():
    with pytest.raises(EmptySelection):
        reconciliation.render(make_fund(), {}, [], HOLDER)


def test_only_approved_or_paid_expenses_render():
    expenses = by_id(make_expense("e1", "20.00", status=ExpenseStatus.PENDING))
    with pytest.raises(ValidationError) as exc:
        reconciliation.render(make_fund(), expenses, ["e1"], HOLDER)
    assert exc.value.fields == ["expense_ids"]


def test_mixed_currencies_are_normalized_per_expense():
    expenses = by_id(
        make_expense("e1", "40.00", currency=Currency.USD, exchange_rate=Decimal("3.75")),
        make_expense("e2", "50.00"),
    )
    rendered = reconciliation.render(make_fund(), expenses, ["e1", "e2"], HOLDER)
    assert rendered.rendered_amount == Decimal("200.00")
    assert rendered.pending_balance == Decimal("300.00")


def test_foreign_assignment_is_rendered_in_its_own_currency():
    fund = make_fund(
        currency=Currency.USD, exchange_rate=Decimal("3.75"), assigned_amount=Decimal("100.00")
    )
    expenses = by_id(
        make_expense("e1", "75.00"),
        make_expense("e2", "20.00", currency=Currency.USD, exchange_rate=Decimal("3.70")),
    )
    rendered = reconciliation.render(fund, expenses, ["e1", "e2"], HOLDER)
    # (75.00 + 74.00) PEN / 3.75
    assert rendered.rendered_amount == Decimal("39.73")
    assert rendered.pending_balance == Decimal("60.27")


def test_missing_rate_on_foreign_expense():
    expenses = by_id(make_expense("e1", "20.00", currency=Currency.EUR))
    with pytest.raises(MissingExchangeRate):
        reconciliation.render(make_fund(), expenses, ["e1"], HOLDER)


def test_overspend_leaves_negative_balance():
    fund = make_fund(assigned_amount=Decimal("100.00"))
    rendered = reconciliation.render(fund, by_id(make_expense("e1", "120.00")), ["e1"], HOLDER)
    assert rendered.pending_balance == Decimal("-20.00")
    summary = reconciliation.summarize(rendered)
    assert summary.overspent
    assert summary.expense_count == 1


def test_rendered_assignment_is_immutable():
    rendered = make_fund(status=FundStatus.RENDERED)
    with pytest.raises(InvalidTransition):
        reconciliation.annul(rendered, ADMIN, "cierre")
    with pytest.raises(InvalidTransition):
        reconciliation.render(rendered, by_id(make_expense("e1", "1.00")), ["e1"], ADMIN)
    with pytest.raises(InvalidTransition):
        reconciliation.mark_for_rendering(rendered, ADMIN)


def test_annul_open_assignment():
    annulled = reconciliation.annul(make_fund(status=FundStatus.TO_RENDER), ADMIN, now=NOW)
    assert annulled.status == FundStatus.ANNULLED
    assert annulled.annulment_reason is None
    assert annulled.annulled_by == "admin-1"
    with pytest.raises(Unauthorized):
        reconciliation.annul(make_fund(), HOLDER, "no")


def test_mark_for_rendering_by_holder_or_manager():
    fund = make_fund()
    assert reconciliation.mark_for_rendering(fund, HOLDER).status == FundStatus.TO_RENDER
    assert reconciliation.mark_for_rendering(fund, ADMIN).status == FundStatus.TO_RENDER
    with pytest.raises(Unauthorized):
        reconciliation.mark_for_rendering(fund, Actor.of("someone", "colaborador"))


def test_new_assignment_requires_treasury_role_and_rate():
    payload = FundAssignmentIn(
        company="ACME", branch="Lima", responsible="resp-1", assigned_amount=Decimal("300.00")
    )
    with pytest.raises(Unauthorized):
        reconciliation.new_assignment(payload, HOLDER, "f-9")
    fund = reconciliation.new_assignment(payload, ADMIN, "f-9", now=NOW)
    assert fund.status == FundStatus.ASSIGNED
    assert fund.created_by == "admin-1"

    usd = payload.model_copy(update={"currency": Currency.USD})
    with pytest.raises(ValidationError) as exc:
        reconciliation.new_assignment(usd, ADMIN, "f-10")
    assert exc.value.fields == ["exchange_rate"]
