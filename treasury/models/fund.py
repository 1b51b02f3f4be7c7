from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from .constants import FUND_STATUS_CODES, FUND_TYPES, Currency, FundStatus


class FundAssignmentIn(BaseModel):
    company: str = Field(..., min_length=1)
    branch: str = Field(..., min_length=1)
    responsible: str = Field(..., min_length=1)
    fund_type: str = "caja_chica"
    assigned_amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency: Currency = Currency.PEN
    exchange_rate: Optional[Decimal] = Field(None, gt=0)
    assigned_on: date = Field(default_factory=date.today)
    due_date: Optional[date] = None
    observations: Optional[str] = None

    @field_validator("fund_type")
    @classmethod
    def valid_fund_type(cls, v: str) -> str:
        if v not in FUND_TYPES:
            raise ValueError("unsupported fund type")
        return v

    @model_validator(mode="after")
    def cross_field_rules(self) -> "FundAssignmentIn":
        if self.due_date is not None and self.due_date < self.assigned_on:
            raise ValueError("due_date cannot be before assigned_on")
        return self


class FundAssignment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company: str
    branch: str
    responsible: str
    fund_type: str = "caja_chica"
    assigned_amount: Decimal
    currency: Currency = Currency.PEN
    exchange_rate: Optional[Decimal] = None
    rendered_amount: Optional[Decimal] = None
    pending_balance: Optional[Decimal] = None
    rendered_expense_ids: List[str] = Field(default_factory=list)
    status: FundStatus = FundStatus.ASSIGNED
    assigned_on: date
    due_date: Optional[date] = None
    observations: Optional[str] = None
    rendered_by: Optional[str] = None
    rendered_at: Optional[datetime] = None
    annulled_by: Optional[str] = None
    annulled_at: Optional[datetime] = None
    annulment_reason: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: datetime
    version: int = 1

    @computed_field  # type: ignore[misc]
    @property
    def status_code(self) -> int:
        return FUND_STATUS_CODES[self.status]

    def is_overdue(self, as_of: date | None = None) -> bool:
        as_of = as_of or date.today()
        return (
            self.status in (FundStatus.ASSIGNED, FundStatus.TO_RENDER)
            and self.due_date is not None
            and self.due_date < as_of
        )


class RenderIn(BaseModel):
    expense_ids: List[str] = Field(default_factory=list)
    observations: Optional[str] = None
    expected_version: Optional[int] = None


class FundActionIn(BaseModel):
    motivo: Optional[str] = None
    expected_version: Optional[int] = None


class ValidateResponsibleIn(BaseModel):
    responsible: str = Field(..., min_length=1)
