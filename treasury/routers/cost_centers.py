from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from treasury.core.config import Settings
from treasury.db.base import Repository
from treasury.models.cost_center import BudgetUpdateIn, CostCenterIn
from treasury.services import workflow
from treasury.services.budget_utils import budget_status, list_budget_statuses
from treasury.services.policy import Actor

from .deps import get_actor, get_app_settings, get_repository, ok

router = APIRouter(prefix="/cost-centers", tags=["cost-centers"])


class CostCenterStatus(BaseModel):
    id: str
    code: str
    name: str
    assigned_budget: Decimal
    consumed_budget: Decimal
    available: Decimal
    percent_used: Decimal
    warn: bool
    danger: bool
    over_budget: bool
    warn_threshold: int
    danger_threshold: int


@router.get("/", response_model=List[CostCenterStatus], summary="Cost centers with budget status")
async def list_cost_centers(
    company: Optional[str] = Query(None, description="Filter by company"),
    repo: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    centers = repo.list_cost_centers(company=company)
    return list_budget_statuses(centers, settings.budget_warn_pct, settings.budget_danger_pct)


@router.post("/", status_code=201, summary="Create a cost center")
async def create_cost_center(
    payload: CostCenterIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    cc = workflow.create_cost_center(repo, payload, actor)
    return ok(cc, "cost center created")


@router.get("/{cc_id}", summary="Cost center with budget status")
async def get_cost_center(
    cc_id: str,
    repo: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    cc = workflow.get_cost_center(repo, cc_id)
    status = CostCenterStatus(**budget_status(cc, settings.budget_warn_pct, settings.budget_danger_pct))
    return {**cc.model_dump(mode="json"), "budget": status.model_dump(mode="json")}


@router.put("/{cc_id}/budget", summary="Set the assigned budget of a cost center")
async def update_budget(
    cc_id: str,
    payload: BudgetUpdateIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    cc = workflow.update_budget(repo, cc_id, payload, actor)
    return ok(cc, "budget updated")
