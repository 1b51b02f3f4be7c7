from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from .constants import (
    BENEFICIARY_TYPES,
    DOCUMENT_TYPES,
    EXPENSE_STATUS_CODES,
    PAYMENT_METHODS,
    Currency,
    ExpenseStatus,
    HistoryAction,
)


def _check_choice(v: Optional[str], choices: set, label: str) -> Optional[str]:
    if v is not None and v not in choices:
        raise ValueError(f"unsupported {label}")
    return v


class ExpenseIn(BaseModel):
    """Draft payload. Drafts may be incomplete; `submit` checks completeness."""

    concept_id: str = Field(..., min_length=1)
    cost_center_id: Optional[str] = None
    fund_id: Optional[str] = None
    description: str = ""
    expense_date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    currency: Currency = Currency.PEN
    exchange_rate: Optional[Decimal] = Field(None, gt=0)
    beneficiary_type: Optional[str] = None
    beneficiary_document: Optional[str] = None
    beneficiary_name: Optional[str] = None
    observations: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("beneficiary_type")
    @classmethod
    def valid_beneficiary_type(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, BENEFICIARY_TYPES, "beneficiary type")


class ExpenseUpdateIn(BaseModel):
    """Partial update of a draft. All fields optional; at least one required."""

    concept_id: Optional[str] = None
    cost_center_id: Optional[str] = None
    fund_id: Optional[str] = None
    description: Optional[str] = None
    expense_date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    currency: Optional[Currency] = None
    exchange_rate: Optional[Decimal] = Field(None, gt=0)
    beneficiary_type: Optional[str] = None
    beneficiary_document: Optional[str] = None
    beneficiary_name: Optional[str] = None
    observations: Optional[str] = None
    tags: Optional[List[str]] = None
    expected_version: Optional[int] = None

    @field_validator("beneficiary_type")
    @classmethod
    def valid_beneficiary_type(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, BENEFICIARY_TYPES, "beneficiary type")

    @model_validator(mode="after")
    def at_least_one(self) -> "ExpenseUpdateIn":
        if not self.changes():
            raise ValueError("at least one field must be provided for update")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"expected_version"})


class Expense(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    concept_id: str
    cost_center_id: Optional[str] = None
    fund_id: Optional[str] = None
    description: str = ""
    expense_date: Optional[date] = None
    amount: Optional[Decimal] = None
    currency: Currency = Currency.PEN
    exchange_rate: Optional[Decimal] = None
    status: ExpenseStatus = ExpenseStatus.DRAFT
    requires_approval: bool = True
    beneficiary_type: Optional[str] = None
    beneficiary_document: Optional[str] = None
    beneficiary_name: Optional[str] = None
    payment_method: Optional[str] = None
    operation_number: Optional[str] = None
    observations: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    created_by: str
    created_at: datetime
    updated_at: datetime
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    paid_by: Optional[str] = None
    paid_at: Optional[datetime] = None
    annulled_by: Optional[str] = None
    annulled_at: Optional[datetime] = None
    annulment_reason: Optional[str] = None
    # Base currency amount charged to the cost center when approved.
    consumed_amount: Optional[Decimal] = None
    version: int = 1

    @computed_field  # type: ignore[misc]
    @property
    def status_code(self) -> int:
        return EXPENSE_STATUS_CODES[self.status]


class ApproveIn(BaseModel):
    observations: Optional[str] = None
    expected_version: Optional[int] = None


class RejectIn(BaseModel):
    motivo: str = ""
    expected_version: Optional[int] = None


class PayIn(BaseModel):
    payment_method: Optional[str] = None
    operation_number: Optional[str] = None
    observations: Optional[str] = None
    expected_version: Optional[int] = None

    @field_validator("payment_method")
    @classmethod
    def valid_payment_method(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, PAYMENT_METHODS, "payment method")


class AnnulIn(BaseModel):
    motivo: str = ""
    expected_version: Optional[int] = None


class SubmitIn(BaseModel):
    expected_version: Optional[int] = None


class HistoryEntry(BaseModel):
    id: str
    expense_id: str
    action: HistoryAction
    previous_status: Optional[ExpenseStatus] = None
    new_status: Optional[ExpenseStatus] = None
    actor: str
    comment: Optional[str] = None
    created_at: datetime


class Evidence(BaseModel):
    id: str
    expense_id: str
    file_name: str
    content_type: str
    size: int
    storage_path: str
    document_type: Optional[str] = None
    created_by: str
    created_at: datetime

    @field_validator("document_type")
    @classmethod
    def valid_document_type(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, DOCUMENT_TYPES, "document type")
