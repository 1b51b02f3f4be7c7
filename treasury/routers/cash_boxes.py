from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from treasury.core.errors import ValidationError
from treasury.db.base import Repository
from treasury.models.cash_box import CashBox, CashBoxCloseIn, CashBoxIn
from treasury.models.constants import CASH_BOX_STATUS_CODES, CashBoxStatus
from treasury.services import workflow
from treasury.services.policy import Actor

from .deps import get_actor, get_repository, ok

router = APIRouter(prefix="/cash-boxes", tags=["cash-boxes"])

_STATUS_BY_CODE = {str(code): s for s, code in CASH_BOX_STATUS_CODES.items()}


def _parse_status(raw: Optional[str]) -> Optional[CashBoxStatus]:
    if not raw:
        return None
    token = raw.strip().upper()
    if token in _STATUS_BY_CODE:
        return _STATUS_BY_CODE[token]
    try:
        return CashBoxStatus(token)
    except ValueError:
        raise ValidationError.single("status", f"unknown cash box status '{raw}'")


@router.get("/", response_model=List[CashBox], summary="List cash boxes")
async def list_cash_boxes(
    branch: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="Status name or code"),
    repo: Repository = Depends(get_repository),
):
    return workflow.list_cash_boxes(repo, branch, _parse_status(status))


@router.post("/", status_code=201, summary="Open a cash box")
async def open_cash_box(
    payload: CashBoxIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    box = workflow.open_cash_box(repo, payload, actor)
    return ok(box, f"cash box {box.code} opened")


@router.get("/by-branch/{branch}", response_model=List[CashBox], summary="Cash boxes of a branch")
async def cash_boxes_by_branch(branch: str, repo: Repository = Depends(get_repository)):
    return workflow.list_cash_boxes(repo, branch)


@router.get("/current/{code}", response_model=CashBox, summary="The open box for a code")
async def current_cash_box(code: str, repo: Repository = Depends(get_repository)):
    return workflow.current_cash_box(repo, code)


@router.get("/{box_id}", response_model=CashBox, summary="Get a cash box")
async def get_cash_box(box_id: str, repo: Repository = Depends(get_repository)):
    return workflow.get_cash_box(repo, box_id)


@router.post("/{box_id}/close/", summary="Close a cash box with its physical count")
async def close_cash_box(
    box_id: str,
    payload: CashBoxCloseIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    box = workflow.close_cash_box(
        repo,
        box_id,
        actor,
        payload.physical_balance,
        payload.observations,
        payload.expected_version,
    )
    return ok(box, f"cash box {box.code} closed")
