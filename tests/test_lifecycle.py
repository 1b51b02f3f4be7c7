from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from treasury.core.errors import InvalidTransition, Unauthorized, ValidationError
from treasury.models.concept import ExpenseConcept
from treasury.models.constants import Currency, ExpenseStatus as S, HistoryAction
from treasury.models.expense import Expense
from treasury.services import lifecycle
from treasury.services.policy import Actor

NOW = datetime(2025, 3, 12, 9, 0, tzinfo=timezone.utc)
TODAY = date(2025, 3, 12)

ADMIN = Actor.of("admin-1", "admin")
COLLAB = Actor.of("colab-1", "colaborador")
APPROVER = Actor.of("aprob-1", "aprobador")


def make_expense(**kw) -> Expense:
    data = dict(
        id="e-1",
        code="GST-000001",
        concept_id="c-1",
        cost_center_id="cc-1",
        description="Almuerzo con cliente",
        expense_date=date(2025, 3, 10),
        amount=Decimal("100.00"),
        created_by="colab-1",
        created_at=NOW,
        updated_at=NOW,
    )
    data.update(kw)
    return Expense(**data)


def make_concept(**kw) -> ExpenseConcept:
    data = dict(
        id="c-1", code="ALM", name="Alimentacion", category="viaticos", created_at=NOW, updated_at=NOW
    )
    data.update(kw)
    return ExpenseConcept(**data)


def test_scenario_submit_then_approve_consumes_budget():
    draft = make_expense()
    submitted = lifecycle.submit(draft, make_concept(), COLLAB, today=TODAY, now=NOW)
    assert submitted.expense.status == S.PENDING
    assert submitted.budget_delta == Decimal("0.00")
    assert submitted.action == HistoryAction.SUBMITTED

    approved = lifecycle.approve(submitted.expense, APPROVER, now=NOW)
    assert approved.expense.status == S.APPROVED
    assert approved.expense.approved_by == "aprob-1"
    assert approved.expense.approved_at == NOW
    assert approved.budget_delta == Decimal("100.00")
    assert approved.cost_center_id == "cc-1"


def test_foreign_currency_consumes_base_amount():
    pending = make_expense(
        status=S.PENDING, amount=Decimal("40.00"), currency=Currency.USD, exchange_rate=Decimal("3.75")
    )
    t = lifecycle.approve(pending, APPROVER)
    assert t.budget_delta == Decimal("150.00")
    assert t.expense.consumed_amount == Decimal("150.00")


def test_submit_without_approval_goes_straight_to_approved():
    t = lifecycle.submit(
        make_expense(), make_concept(requires_approval=False), COLLAB, today=TODAY, now=NOW
    )
    assert t.expense.status == S.APPROVED
    assert t.expense.approved_by is None
    assert t.expense.requires_approval is False
    assert t.budget_delta == Decimal("100.00")


def test_concept_limit_forces_approval():
    concept = make_concept(requires_approval=False, max_amount=Decimal("50.00"))
    t = lifecycle.submit(make_expense(), concept, COLLAB, today=TODAY)
    assert t.expense.status == S.PENDING
    assert t.expense.requires_approval is True


def test_submit_lists_every_problem():
    incomplete = make_expense(
        description="  ", amount=None, expense_date=None, currency=Currency.USD, exchange_rate=None
    )
    with pytest.raises(ValidationError) as exc:
        lifecycle.submit(incomplete, make_concept(), COLLAB, today=TODAY)
    assert set(exc.value.fields) == {"description", "amount", "expense_date", "exchange_rate"}


def test_submit_rejects_future_date_and_missing_concept():
    future = make_expense(expense_date=TODAY + timedelta(days=1))
    with pytest.raises(ValidationError) as exc:
        lifecycle.submit(future, None, COLLAB, today=TODAY)
    assert set(exc.value.fields) == {"concept_id", "expense_date"}


def test_submit_without_concept_reports_only_the_concept():
    with pytest.raises(ValidationError) as exc:
        lifecycle.submit(make_expense(), None, COLLAB, today=TODAY)
    assert exc.value.fields == ["concept_id"]


def test_submit_reports_missing_documents():
    with pytest.raises(ValidationError) as exc:
        lifecycle.submit(
            make_expense(), make_concept(), COLLAB, today=TODAY, missing_documents=["Factura"]
        )
    assert exc.value.fields == ["documents"]


def _all_actions(expense):
    concept = make_concept()
    return [
        lambda: lifecycle.submit(expense, concept, ADMIN, today=TODAY),
        lambda: lifecycle.approve(expense, ADMIN),
        lambda: lifecycle.reject(expense, ADMIN, "fuera de politica"),
        lambda: lifecycle.mark_paid(expense, ADMIN),
        lambda: lifecycle.annul(expense, ADMIN, "duplicado"),
        lambda: lifecycle.update_draft(expense, {"description": "otro"}, ADMIN),
        lambda: lifecycle.check_delete(expense, ADMIN),
    ]


@pytest.mark.parametrize("status", [S.PAID, S.REJECTED, S.ANNULLED])
def test_terminal_statuses_are_fixed_points(status):
    expense = make_expense(status=status)
    for action in _all_actions(expense):
        with pytest.raises(InvalidTransition):
            action()


def test_status_is_checked_before_role():
    paid = make_expense(status=S.PAID)
    with pytest.raises(InvalidTransition):
        lifecycle.approve(paid, COLLAB)


@pytest.mark.parametrize("motivo", ["", "   ", None])
def test_reject_requires_reason(motivo):
    with pytest.raises(ValidationError) as exc:
        lifecycle.reject(make_expense(status=S.PENDING), APPROVER, motivo)
    assert exc.value.fields == ["motivo"]


@pytest.mark.parametrize("motivo", ["", "\t "])
def test_annul_requires_reason(motivo):
    with pytest.raises(ValidationError):
        lifecycle.annul(make_expense(status=S.PENDING), ADMIN, motivo)


def test_reject_records_reason():
    t = lifecycle.reject(make_expense(status=S.PENDING), APPROVER, "  sin sustento ", now=NOW)
    assert t.expense.status == S.REJECTED
    assert t.expense.rejection_reason == "sin sustento"
    assert t.expense.rejected_by == "aprob-1"


@pytest.mark.parametrize(
    "status,action",
    [
        (S.PENDING, lambda e: lifecycle.approve(e, COLLAB)),
        (S.PENDING, lambda e: lifecycle.reject(e, COLLAB, "no")),
        (S.APPROVED, lambda e: lifecycle.mark_paid(e, COLLAB)),
    ],
)
def test_collaborator_cannot_decide_or_pay(status, action):
    with pytest.raises(Unauthorized):
        action(make_expense(status=status))


def test_responsable_approves_own_expense():
    holder = Actor.of("resp-9", "responsable")
    own = make_expense(status=S.PENDING, created_by="resp-9")
    t = lifecycle.approve(own, holder, now=NOW)
    assert t.expense.status == S.APPROVED
    assert t.expense.approved_by == "resp-9"
    assert t.budget_delta == Decimal("100.00")


def test_annul_approved_reverses_consumed_amount():
    approved = make_expense(status=S.APPROVED, consumed_amount=Decimal("150.00"))
    t = lifecycle.annul(approved, ADMIN, "duplicado", now=NOW)
    assert t.expense.status == S.ANNULLED
    assert t.budget_delta == Decimal("-150.00")
    assert t.expense.consumed_amount is None
    assert t.expense.annulment_reason == "duplicado"


def test_annul_pending_has_no_budget_effect():
    t = lifecycle.annul(make_expense(status=S.PENDING), COLLAB, "error de registro")
    assert t.budget_delta == Decimal("0.00")
    assert t.cost_center_id is None


def test_collaborator_cannot_annul_someone_elses_expense():
    with pytest.raises(Unauthorized):
        lifecycle.annul(make_expense(created_by="colab-2"), COLLAB, "no es mio")


def test_mark_paid_records_payment():
    t = lifecycle.mark_paid(
        make_expense(status=S.APPROVED), APPROVER, "transferencia", "OP-991", now=NOW
    )
    assert t.expense.status == S.PAID
    assert t.expense.payment_method == "transferencia"
    assert t.expense.operation_number == "OP-991"
    assert t.expense.paid_at == NOW


def test_update_draft_revalidates_merged_state():
    t = lifecycle.update_draft(make_expense(), {"description": "Taxi"}, COLLAB, now=NOW)
    assert t.expense.description == "Taxi"
    assert t.action == HistoryAction.MODIFIED
    with pytest.raises(ValidationError):
        lifecycle.update_draft(make_expense(), {"currency": None}, COLLAB)


def test_status_codes_follow_treasury_api():
    assert make_expense().status_code == 1
    assert make_expense(status=S.PAID).status_code == 4
    assert make_expense(status=S.ANNULLED).status_code == 9
