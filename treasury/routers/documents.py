from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from treasury.services.ocr_fields import extract_fields

router = APIRouter(prefix="/documents", tags=["documents"])


class ExtractIn(BaseModel):
    text: str = Field(..., description="Text already recognized from the receipt image")


class ExtractedFieldsOut(BaseModel):
    issuer_ruc: Optional[str] = None
    customer_dni: Optional[str] = None
    document_type: Optional[str] = None
    document_number: Optional[str] = None
    issue_date: Optional[date] = None
    issuer_name: Optional[str] = None
    issuer_email: Optional[str] = None
    subtotal: Optional[Decimal] = None
    igv: Optional[Decimal] = None
    total: Optional[Decimal] = None
    confidence: float
    requires_validation: bool


@router.post(
    "/extract",
    response_model=ExtractedFieldsOut,
    summary="Pull RUC, series-number, dates and amounts out of receipt text",
)
async def extract(payload: ExtractIn):
    return ExtractedFieldsOut(**extract_fields(payload.text).as_dict())
