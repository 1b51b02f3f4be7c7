from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, ConfigDict

from treasury.core.config import Settings
from treasury.core.errors import ValidationError
from treasury.db.base import ExpenseFilters, Repository
from treasury.models.constants import EXPENSE_STATUS_CODES, Currency, ExpenseStatus
from treasury.models.expense import (
    AnnulIn,
    ApproveIn,
    Evidence,
    Expense,
    ExpenseIn,
    ExpenseUpdateIn,
    HistoryEntry,
    PayIn,
    RejectIn,
    SubmitIn,
)
from treasury.services import evidence as evidence_service
from treasury.services import workflow
from treasury.services.policy import Actor
from treasury.services.statistics import compute_statistics

from .deps import get_actor, get_app_settings, get_repository, ok

router = APIRouter(prefix="/expenses", tags=["expenses"])

_STATUS_BY_CODE = {str(code): s for s, code in EXPENSE_STATUS_CODES.items()}


# Response models --------------------------------------------------
class StatusTotalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: ExpenseStatus
    status_code: int
    count: int
    total: Decimal


class ConceptTotalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    concept_id: str
    concept_name: Optional[str] = None
    count: int
    total: Decimal


class StatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_count: int
    by_status: List[StatusTotalOut]
    pending_approval_total: Decimal
    current_month_total: Decimal
    pending_funds: int
    by_concept: List[ConceptTotalOut]


# Helpers ----------------------------------------------------------


def _parse_statuses(values: Optional[List[str]]) -> List[ExpenseStatus]:
    """Accept status names (`aprobado`) or treasury numeric codes (`3`)."""
    statuses: List[ExpenseStatus] = []
    for raw in values or []:
        for token in raw.split(","):
            token = token.strip().lower()
            if not token:
                continue
            if token in _STATUS_BY_CODE:
                statuses.append(_STATUS_BY_CODE[token])
                continue
            try:
                statuses.append(ExpenseStatus(token))
            except ValueError:
                raise ValidationError.single("status", f"unknown expense status '{token}'")
    return statuses


def _filters(
    status: Optional[List[str]] = Query(None, description="Status name or code; repeatable"),
    concept_id: Optional[str] = Query(None),
    cost_center_id: Optional[str] = Query(None),
    fund_id: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None, description="Expense date, inclusive"),
    date_to: Optional[date] = Query(None, description="Expense date, inclusive"),
    currency: Optional[Currency] = Query(None),
    search: Optional[str] = Query(None, description="Matches description, code or beneficiary"),
) -> ExpenseFilters:
    if date_from and date_to and date_from > date_to:
        raise ValidationError.single("date_from", "date_from cannot be after date_to")
    return ExpenseFilters(
        statuses=tuple(_parse_statuses(status)),
        concept_id=concept_id,
        cost_center_id=cost_center_id,
        fund_id=fund_id,
        created_by=created_by,
        currency=currency.value if currency else None,
        date_from=date_from,
        date_to=date_to,
        search=search.strip() if search and search.strip() else None,
    )


# Routes -----------------------------------------------------------
@router.post("/", status_code=201, summary="Create a draft expense")
async def create_expense(
    payload: ExpenseIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    expense = workflow.create_expense(repo, payload, actor)
    return ok(expense, f"expense {expense.code} created")


@router.get("/", response_model=List[Expense], summary="List expenses with optional filters")
async def list_expenses(
    filters: ExpenseFilters = Depends(_filters),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    repo: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    items = workflow.list_expenses(repo, filters)
    size = limit or settings.default_page_size
    return items[offset : offset + size]


@router.get("/statistics", response_model=StatisticsOut, summary="Dashboard statistics")
async def statistics(
    filters: ExpenseFilters = Depends(_filters),
    repo: Repository = Depends(get_repository),
):
    return compute_statistics(repo, filters)


@router.get("/{expense_id}", response_model=Expense, summary="Get an expense")
async def get_expense(expense_id: str, repo: Repository = Depends(get_repository)):
    return workflow.get_expense(repo, expense_id)


@router.patch("/{expense_id}", summary="Edit a draft expense (partial)")
async def patch_expense(
    expense_id: str,
    payload: ExpenseUpdateIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    expense = workflow.update_expense(repo, expense_id, payload, actor)
    return ok(expense, f"expense {expense.code} updated")


@router.delete("/{expense_id}", summary="Delete a draft expense")
async def delete_expense(
    expense_id: str,
    expected_version: Optional[int] = Query(None),
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    workflow.delete_expense(repo, expense_id, actor, expected_version)
    return ok({"id": expense_id}, "expense deleted")


# Actions ----------------------------------------------------------
@router.post("/{expense_id}/submit/", summary="Submit a draft for approval")
async def submit_expense(
    expense_id: str,
    payload: Optional[SubmitIn] = None,
    repo: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
    actor: Actor = Depends(get_actor),
):
    payload = payload or SubmitIn()
    expense = workflow.submit_expense(
        repo,
        expense_id,
        actor,
        checklist_enforced=settings.checklist_enforced,
        expected_version=payload.expected_version,
    )
    return ok(expense, f"expense {expense.code} is {expense.status.value}")


@router.post("/{expense_id}/approve/", summary="Approve a pending expense")
async def approve_expense(
    expense_id: str,
    payload: Optional[ApproveIn] = None,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    payload = payload or ApproveIn()
    expense = workflow.approve_expense(
        repo, expense_id, actor, payload.observations, payload.expected_version
    )
    return ok(expense, f"expense {expense.code} approved")


@router.post("/{expense_id}/reject/", summary="Reject a pending expense")
async def reject_expense(
    expense_id: str,
    payload: Optional[RejectIn] = None,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    payload = payload or RejectIn()
    expense = workflow.reject_expense(repo, expense_id, actor, payload.motivo, payload.expected_version)
    return ok(expense, f"expense {expense.code} rejected")


@router.post("/{expense_id}/pay/", summary="Mark an approved expense as paid")
async def pay_expense(
    expense_id: str,
    payload: Optional[PayIn] = None,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    payload = payload or PayIn()
    expense = workflow.pay_expense(
        repo,
        expense_id,
        actor,
        payment_method=payload.payment_method,
        operation_number=payload.operation_number,
        observations=payload.observations,
        expected_version=payload.expected_version,
    )
    return ok(expense, f"expense {expense.code} paid")


@router.post("/{expense_id}/annul/", summary="Annul an expense")
async def annul_expense(
    expense_id: str,
    payload: Optional[AnnulIn] = None,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    payload = payload or AnnulIn()
    expense = workflow.annul_expense(repo, expense_id, actor, payload.motivo, payload.expected_version)
    return ok(expense, f"expense {expense.code} annulled")


@router.get(
    "/{expense_id}/history", response_model=List[HistoryEntry], summary="Audit trail of an expense"
)
async def expense_history(expense_id: str, repo: Repository = Depends(get_repository)):
    return workflow.list_history(repo, expense_id)


# Evidence ---------------------------------------------------------
@router.get("/{expense_id}/evidence", response_model=List[Evidence], summary="List evidence files")
async def list_evidence(expense_id: str, repo: Repository = Depends(get_repository)):
    return evidence_service.list_evidence(repo, expense_id)


@router.post("/{expense_id}/evidence", status_code=201, summary="Upload an evidence file")
async def upload_evidence(
    expense_id: str,
    file: UploadFile = File(...),
    document_type: Optional[str] = Form(None),
    repo: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
    actor: Actor = Depends(get_actor),
):
    # One byte past the limit is enough to know it is too large.
    data = await file.read(settings.max_upload_bytes + 1)
    evidence = evidence_service.store_evidence(
        repo,
        settings.evidence_dir,  # type: ignore[arg-type]
        expense_id,
        actor,
        file_name=file.filename or "upload",
        content_type=file.content_type,
        data=data,
        allowed_types=settings.allowed_upload_types,
        max_bytes=settings.max_upload_bytes,
        document_type=document_type or None,
    )
    return ok(evidence, "evidence stored")


@router.delete("/{expense_id}/evidence/{evidence_id}", summary="Delete an evidence file")
async def delete_evidence(
    expense_id: str,
    evidence_id: str,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    removed = evidence_service.delete_evidence(repo, expense_id, evidence_id, actor)
    return ok({"id": removed.id}, "evidence deleted")
