from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DOCUMENT_TYPES


class ExpenseConceptIn(BaseModel):
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    description: Optional[str] = None
    cost_center_id: Optional[str] = None
    max_amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    requires_approval: bool = True
    active: bool = True


class ExpenseConcept(ExpenseConceptIn):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime
    updated_at: datetime


class RequiredDocumentIn(BaseModel):
    name: str = Field(..., min_length=1)
    document_type: str = "otro"
    mandatory: bool = True
    order: int = 0
    description: Optional[str] = None

    @field_validator("document_type")
    @classmethod
    def valid_document_type(cls, v: str) -> str:
        if v not in DOCUMENT_TYPES:
            raise ValueError("unsupported document type")
        return v


class RequiredDocument(RequiredDocumentIn):
    id: str
    concept_id: str


class ChecklistIn(BaseModel):
    document_types: List[str] = Field(default_factory=list)


class ChecklistResult(BaseModel):
    concept_id: str
    complete: bool
    missing: List[str]
    required: List[RequiredDocument]
