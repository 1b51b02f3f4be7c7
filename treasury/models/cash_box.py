from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .constants import CASH_BOX_STATUS_CODES, CashBoxStatus, Currency


class CashBoxIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)
    name: str = Field(..., min_length=1)
    company: str = Field(..., min_length=1)
    branch: str = Field(..., min_length=1)
    responsible: str = Field(..., min_length=1)
    currency: Currency = Currency.PEN
    opening_balance: Decimal = Field(..., ge=0, decimal_places=2)
    observations: Optional[str] = None


class CashBox(BaseModel):
    """A petty-cash box from opening to its closing count."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: str
    company: str
    branch: str
    responsible: str
    currency: Currency = Currency.PEN
    opening_balance: Decimal
    expected_balance: Decimal
    physical_balance: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    status: CashBoxStatus = CashBoxStatus.OPEN
    opened_at: datetime
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    observations: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: datetime
    version: int = 1

    @computed_field  # type: ignore[misc]
    @property
    def status_code(self) -> int:
        return CASH_BOX_STATUS_CODES[self.status]


class CashBoxCloseIn(BaseModel):
    physical_balance: Decimal = Field(..., ge=0, decimal_places=2)
    observations: Optional[str] = None
    expected_version: Optional[int] = None
