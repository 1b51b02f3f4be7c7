from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from conftest import ADMIN, APPROVER, COLLAB, OTHER_COLLAB, RESPONSIBLE
from treasury.core.errors import (
    ForeignExpense,
    InvalidTransition,
    NotFound,
    PersistenceError,
    ReconciliationError,
    Unauthorized,
    ValidationError,
    VersionConflict,
)
from treasury.db.base import ExpenseFilters
from treasury.db.memory import InMemoryRepository
from treasury.models.concept import ExpenseConceptIn, RequiredDocumentIn
from treasury.models.constants import ExpenseStatus, FundStatus, HistoryAction
from treasury.models.cost_center import BudgetUpdateIn, CostCenterIn
from treasury.models.expense import Evidence, ExpenseIn, ExpenseUpdateIn
from treasury.models.fund import FundAssignmentIn
from treasury.services import workflow
from treasury.services.statistics import compute_statistics


def consumed(repo, cc_id):
    return repo.get_cost_center(cc_id).consumed_budget


def test_codes_are_sequential(make_draft):
    assert make_draft().code == "GST-000001"
    assert make_draft().code == "GST-000002"


def test_draft_takes_concept_cost_center(make_draft, cost_center):
    draft = make_draft()
    assert draft.status == ExpenseStatus.DRAFT
    assert draft.cost_center_id == cost_center.id
    assert draft.created_by == "colab-1"


def test_unknown_concept_is_rejected(repo):
    with pytest.raises(ValidationError) as exc:
        workflow.create_expense(repo, ExpenseIn(concept_id="nope"), COLLAB)
    assert exc.value.fields == ["concept_id"]


def test_approve_then_annul_restores_budget(repo, make_draft, cost_center):
    draft = make_draft()
    workflow.submit_expense(repo, draft.id, COLLAB)
    approved = workflow.approve_expense(repo, draft.id, APPROVER, "ok")
    assert approved.status == ExpenseStatus.APPROVED
    assert consumed(repo, cost_center.id) == Decimal("100.00")

    annulled = workflow.annul_expense(repo, draft.id, RESPONSIBLE, "registro duplicado")
    assert annulled.status == ExpenseStatus.ANNULLED
    assert annulled.consumed_amount is None
    assert consumed(repo, cost_center.id) == Decimal("0.00")

    actions = [h.action for h in workflow.list_history(repo, draft.id)]
    assert actions == [
        HistoryAction.CREATED,
        HistoryAction.SUBMITTED,
        HistoryAction.APPROVED,
        HistoryAction.ANNULLED,
    ]
    assert annulled.version == 4


def test_responsable_approves_own_expense(repo, make_draft, cost_center):
    holder = RESPONSIBLE
    draft = make_draft(actor=holder)
    workflow.submit_expense(repo, draft.id, holder)
    approved = workflow.approve_expense(repo, draft.id, holder)
    assert approved.status == ExpenseStatus.APPROVED
    assert approved.approved_by == holder.user_id
    assert consumed(repo, cost_center.id) == Decimal("100.00")


def test_auto_approval_charges_cost_center_on_submit(repo, cost_center):
    concept = workflow.create_concept(
        repo,
        ExpenseConceptIn(
            code="UTL",
            name="Utiles",
            category="oficina",
            cost_center_id=cost_center.id,
            requires_approval=False,
        ),
        ADMIN,
    )
    draft = workflow.create_expense(
        repo,
        ExpenseIn(
            concept_id=concept.id,
            description="Papel",
            expense_date=date(2025, 3, 1),
            amount=Decimal("35.50"),
        ),
        COLLAB,
    )
    submitted = workflow.submit_expense(repo, draft.id, COLLAB)
    assert submitted.status == ExpenseStatus.APPROVED
    assert consumed(repo, cost_center.id) == Decimal("35.50")


def test_paid_expense_cannot_be_annulled(repo, make_draft):
    draft = make_draft()
    workflow.submit_expense(repo, draft.id, COLLAB)
    workflow.approve_expense(repo, draft.id, APPROVER)
    paid = workflow.pay_expense(repo, draft.id, APPROVER, payment_method="efectivo")
    assert paid.status == ExpenseStatus.PAID
    with pytest.raises(InvalidTransition):
        workflow.annul_expense(repo, draft.id, ADMIN, "tarde")


def test_stale_version_is_a_conflict(repo, make_draft):
    draft = make_draft()
    workflow.submit_expense(repo, draft.id, COLLAB, expected_version=1)
    with pytest.raises(VersionConflict) as exc:
        workflow.approve_expense(repo, draft.id, APPROVER, expected_version=1)
    assert exc.value.detail["actual_version"] == 2
    assert workflow.get_expense(repo, draft.id).status == ExpenseStatus.PENDING


def test_edit_and_delete_drafts(repo, make_draft):
    draft = make_draft()
    edited = workflow.update_expense(
        repo, draft.id, ExpenseUpdateIn(description="Taxi a oficina", amount=Decimal("42.00")), COLLAB
    )
    assert edited.description == "Taxi a oficina"
    assert edited.amount == Decimal("42.00")
    with pytest.raises(Unauthorized):
        workflow.update_expense(repo, draft.id, ExpenseUpdateIn(description="x"), OTHER_COLLAB)
    with pytest.raises(Unauthorized):
        workflow.delete_expense(repo, draft.id, COLLAB)
    workflow.delete_expense(repo, draft.id, RESPONSIBLE)
    with pytest.raises(NotFound):
        workflow.get_expense(repo, draft.id)


def test_pending_expense_is_frozen(repo, make_draft):
    draft = make_draft()
    workflow.submit_expense(repo, draft.id, COLLAB)
    with pytest.raises(InvalidTransition):
        workflow.update_expense(repo, draft.id, ExpenseUpdateIn(amount=Decimal("1.00")), COLLAB)


def test_enforced_checklist_blocks_submit(repo, concept, make_draft):
    workflow.add_required_document(
        repo, concept.id, RequiredDocumentIn(name="Boleta", document_type="boleta"), ADMIN
    )
    draft = make_draft()
    with pytest.raises(ValidationError) as exc:
        workflow.submit_expense(repo, draft.id, COLLAB, checklist_enforced=True)
    assert exc.value.fields == ["documents"]

    repo.add_evidence(
        Evidence(
            id="ev-1",
            expense_id=draft.id,
            file_name="boleta.pdf",
            content_type="application/pdf",
            size=10,
            storage_path="/tmp/boleta.pdf",
            document_type="boleta",
            created_by="colab-1",
            created_at=datetime.now(timezone.utc),
        )
    )
    submitted = workflow.submit_expense(repo, draft.id, COLLAB, checklist_enforced=True)
    assert submitted.status == ExpenseStatus.PENDING


def test_advisory_checklist_does_not_block(repo, concept, make_draft):
    workflow.add_required_document(
        repo, concept.id, RequiredDocumentIn(name="Boleta", document_type="boleta"), ADMIN
    )
    draft = make_draft()
    assert workflow.submit_expense(repo, draft.id, COLLAB).status == ExpenseStatus.PENDING


def test_budget_cannot_drop_below_consumed(repo, make_draft, cost_center):
    draft = make_draft(amount=Decimal("950.00"))
    workflow.submit_expense(repo, draft.id, COLLAB)
    workflow.approve_expense(repo, draft.id, APPROVER)
    with pytest.raises(ValidationError) as exc:
        workflow.update_budget(
            repo, cost_center.id, BudgetUpdateIn(assigned_budget=Decimal("900.00")), ADMIN
        )
    assert "cannot be less than consumed" in exc.value.errors[0]["message"]
    updated = workflow.update_budget(
        repo, cost_center.id, BudgetUpdateIn(assigned_budget=Decimal("950.00")), ADMIN
    )
    assert updated.available == Decimal("0.00")


def test_duplicate_cost_center_code(repo, cost_center):
    with pytest.raises(ValidationError):
        workflow.create_cost_center(
            repo, CostCenterIn(code=cost_center.code, name="Otro", company="ACME"), ADMIN
        )


class FlakyRepository(InMemoryRepository):
    """Cost-center writes fail a configurable number of times."""

    def __init__(self, failures, **kw):
        super().__init__(**kw)
        self.failures = failures
        self.calls = 0

    def _adjust_consumed(self, cc_id, delta):
        self.calls += 1
        if self.calls <= self.failures:
            raise PersistenceError("cost center store unavailable")
        return super()._adjust_consumed(cc_id, delta)


def _pending_expense(repo):
    cc = workflow.create_cost_center(
        repo, CostCenterIn(code="CC-1", name="Ventas", company="ACME", assigned_budget=500), ADMIN
    )
    concept = workflow.create_concept(
        repo, ExpenseConceptIn(code="C", name="Varios", category="otros", cost_center_id=cc.id), ADMIN
    )
    draft = workflow.create_expense(
        repo,
        ExpenseIn(
            concept_id=concept.id,
            description="Courier",
            expense_date=date(2025, 2, 1),
            amount=Decimal("60.00"),
        ),
        COLLAB,
    )
    workflow.submit_expense(repo, draft.id, COLLAB)
    return cc, draft


def test_failed_budget_write_restores_expense():
    repo = FlakyRepository(failures=10, reconciliation_retries=2)
    cc, draft = _pending_expense(repo)
    with pytest.raises(ReconciliationError):
        workflow.approve_expense(repo, draft.id, APPROVER)
    assert repo.calls == 3
    current = workflow.get_expense(repo, draft.id)
    assert current.status == ExpenseStatus.PENDING
    assert current.version == 2
    assert consumed(repo, cc.id) == Decimal("0")
    assert HistoryAction.APPROVED not in [h.action for h in repo.list_history(draft.id)]


def test_budget_write_is_retried():
    repo = FlakyRepository(failures=1, reconciliation_retries=2)
    cc, draft = _pending_expense(repo)
    assert workflow.approve_expense(repo, draft.id, APPROVER).status == ExpenseStatus.APPROVED
    assert consumed(repo, cc.id) == Decimal("60.00")


def _fund(repo, **kw):
    data = dict(company="ACME", branch="Lima", responsible="resp-1", assigned_amount=Decimal("500.00"))
    data.update(kw)
    return workflow.create_fund(repo, FundAssignmentIn(**data), ADMIN)


def test_fund_render_flow(repo, make_draft):
    fund = _fund(repo)
    ids = []
    for amount in ("120.00", "80.30"):
        e = make_draft(actor=COLLAB, amount=Decimal(amount), fund_id=fund.id)
        workflow.submit_expense(repo, e.id, COLLAB)
        workflow.approve_expense(repo, e.id, APPROVER)
        ids.append(e.id)
    workflow.mark_fund_for_rendering(repo, fund.id, RESPONSIBLE)
    rendered = workflow.render_fund(repo, fund.id, RESPONSIBLE, ids, "rendicion marzo")
    assert rendered.status == FundStatus.RENDERED
    assert rendered.rendered_amount == Decimal("200.30")
    assert rendered.pending_balance == Decimal("299.70")
    assert rendered.version == 3


def test_foreign_expense_leaves_fund_untouched(repo, make_draft):
    fund = _fund(repo)
    other = _fund(repo, responsible="resp-2")
    e = make_draft(fund_id=other.id)
    workflow.submit_expense(repo, e.id, COLLAB)
    workflow.approve_expense(repo, e.id, APPROVER)
    with pytest.raises(ForeignExpense):
        workflow.render_fund(repo, fund.id, RESPONSIBLE, [e.id])
    stored = workflow.get_fund(repo, fund.id)
    assert stored.status == FundStatus.ASSIGNED
    assert stored.version == 1


def test_closed_fund_cannot_take_expenses(repo, make_draft):
    fund = _fund(repo)
    workflow.annul_fund(repo, fund.id, ADMIN, "cancelado")
    with pytest.raises(ValidationError) as exc:
        make_draft(fund_id=fund.id)
    assert exc.value.fields == ["fund_id"]


def test_overdue_funds_block_new_assignments(repo):
    _fund(repo, assigned_on=date(2025, 1, 1), due_date=date(2025, 1, 31))
    _fund(repo, responsible="resp-2", assigned_on=date(2025, 1, 1))
    as_of = date(2025, 2, 15)
    overdue = workflow.list_overdue_funds(repo, as_of)
    assert [f.responsible for f in overdue] == ["resp-1"]

    verdict = workflow.validate_responsible(repo, "resp-1", as_of)
    assert verdict["can_receive_fund"] is False
    assert verdict["open_assignments"] == 1
    assert workflow.validate_responsible(repo, "resp-2", as_of)["can_receive_fund"] is True


def test_search_filter(repo, make_draft):
    make_draft(description="Taxi al aeropuerto")
    make_draft(description="Almuerzo de equipo", beneficiary_name="Restaurante Lima")
    found = workflow.list_expenses(repo, ExpenseFilters(search="lima"))
    assert [e.description for e in found] == ["Almuerzo de equipo"]


def test_statistics(repo, make_draft, concept):
    today = date.today()
    a = make_draft(expense_date=today)
    workflow.submit_expense(repo, a.id, COLLAB)
    workflow.approve_expense(repo, a.id, APPROVER)
    b = make_draft(amount=Decimal("40.00"))
    workflow.submit_expense(repo, b.id, COLLAB)
    make_draft(amount=None)
    _fund(repo)

    stats = compute_statistics(repo, as_of=today)
    by_status = {s.status: s for s in stats.by_status}
    assert stats.total_count == 3
    assert by_status[ExpenseStatus.APPROVED].total == Decimal("100.00")
    assert by_status[ExpenseStatus.DRAFT].count == 1
    assert stats.pending_approval_total == Decimal("40.00")
    assert stats.current_month_total == Decimal("100.00")
    assert stats.pending_funds == 1
    assert stats.by_concept[0].concept_name == "Movilidad"
    assert stats.by_concept[0].total == Decimal("140.00")
