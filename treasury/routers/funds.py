from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from treasury.core.errors import ValidationError
from treasury.db.base import FundFilters, Repository
from treasury.models.constants import FUND_STATUS_CODES, FundStatus
from treasury.models.fund import (
    FundActionIn,
    FundAssignment,
    FundAssignmentIn,
    RenderIn,
    ValidateResponsibleIn,
)
from treasury.services import reconciliation, workflow
from treasury.services.policy import Actor

from .deps import get_actor, get_repository, ok

router = APIRouter(prefix="/funds", tags=["funds"])

_STATUS_BY_CODE = {str(code): s for s, code in FUND_STATUS_CODES.items()}


def _parse_status(raw: Optional[str]) -> List[FundStatus]:
    if not raw:
        return []
    token = raw.strip().upper()
    if token in _STATUS_BY_CODE:
        return [_STATUS_BY_CODE[token]]
    try:
        return [FundStatus(token)]
    except ValueError:
        raise ValidationError.single("status", f"unknown fund status '{raw}'")


@router.get("/", response_model=List[FundAssignment], summary="List fund assignments")
async def list_funds(
    status: Optional[str] = Query(None, description="Status name or code"),
    company: Optional[str] = Query(None),
    branch: Optional[str] = Query(None),
    responsible: Optional[str] = Query(None),
    fund_type: Optional[str] = Query(None),
    repo: Repository = Depends(get_repository),
):
    filters = FundFilters(
        statuses=tuple(_parse_status(status)),
        company=company,
        branch=branch,
        responsible=responsible,
        fund_type=fund_type,
    )
    return repo.list_funds(filters)


@router.post("/", status_code=201, summary="Assign a fund to a responsible party")
async def create_fund(
    payload: FundAssignmentIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    fund = workflow.create_fund(repo, payload, actor)
    return ok(fund, "fund assigned")


@router.get(
    "/pending", response_model=List[FundAssignment], summary="Open assignments awaiting rendering"
)
async def pending_funds(
    responsible: Optional[str] = Query(None),
    repo: Repository = Depends(get_repository),
):
    return workflow.list_pending_funds(repo, responsible)


@router.get("/overdue", response_model=List[FundAssignment], summary="Open assignments past due")
async def overdue_funds(
    as_of: Optional[date] = Query(None, description="Reference date (defaults to today)"),
    responsible: Optional[str] = Query(None),
    repo: Repository = Depends(get_repository),
):
    return workflow.list_overdue_funds(repo, as_of, responsible)


@router.post("/validate-responsible", summary="Can this responsible receive a new fund?")
async def validate_responsible(
    payload: ValidateResponsibleIn,
    repo: Repository = Depends(get_repository),
):
    return workflow.validate_responsible(repo, payload.responsible)


@router.get("/{fund_id}", summary="Get a fund assignment with its rendering summary")
async def get_fund(fund_id: str, repo: Repository = Depends(get_repository)):
    fund = workflow.get_fund(repo, fund_id)
    summary = reconciliation.summarize(fund)
    return {
        **fund.model_dump(mode="json"),
        "summary": {
            "rendered_amount": str(summary.rendered_amount),
            "pending_balance": str(summary.pending_balance),
            "expense_count": summary.expense_count,
            "overspent": summary.overspent,
        },
    }


@router.post("/{fund_id}/mark-for-rendering/", summary="Move an assignment to POR_RENDIR")
async def mark_for_rendering(
    fund_id: str,
    payload: Optional[FundActionIn] = None,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    payload = payload or FundActionIn()
    fund = workflow.mark_fund_for_rendering(repo, fund_id, actor, payload.expected_version)
    return ok(fund, "fund assignment ready for rendering")


@router.post("/{fund_id}/render/", summary="Render expenses against an assignment")
async def render_fund(
    fund_id: str,
    payload: RenderIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    fund = workflow.render_fund(
        repo, fund_id, actor, payload.expense_ids, payload.observations, payload.expected_version
    )
    return ok(fund, "fund assignment rendered")


@router.post("/{fund_id}/annul/", summary="Annul a non-rendered assignment")
async def annul_fund(
    fund_id: str,
    payload: Optional[FundActionIn] = None,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    payload = payload or FundActionIn()
    fund = workflow.annul_fund(repo, fund_id, actor, payload.motivo, payload.expected_version)
    return ok(fund, "fund assignment annulled")
