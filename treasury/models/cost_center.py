from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class CostCenterIn(BaseModel):
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    company: str = Field(..., min_length=1)
    responsible: Optional[str] = None
    assigned_budget: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)


class CostCenter(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: str
    description: Optional[str] = None
    company: str
    responsible: Optional[str] = None
    assigned_budget: Decimal = Decimal("0")
    consumed_budget: Decimal = Decimal("0")
    created_at: datetime
    updated_at: datetime
    version: int = 1

    @computed_field  # type: ignore[misc]
    @property
    def available(self) -> Decimal:
        return self.assigned_budget - self.consumed_budget


class BudgetUpdateIn(BaseModel):
    assigned_budget: Decimal = Field(
        ..., ge=0, decimal_places=2, description="New assigned budget"
    )
    expected_version: Optional[int] = None
