"""Structured field extraction from already-recognized receipt text.

Text recognition happens outside this service; this module only pattern
matches Peruvian document fields (RUC, DNI, series-number, dates, amounts)
in the text it is given. Results are best effort and always flagged as
needing human confirmation.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

RUC_RE = re.compile(r"\b\d{11}\b")
DNI_RE = re.compile(r"(?<!\d)\d{8}(?!\d)")
DOCUMENT_NUMBER_RE = re.compile(r"\b[FB]\d{3}-\d{5,8}\b", re.IGNORECASE)
DATE_RE = re.compile(r"\b(\d{1,2})[/-](\d{1,2})[/-](\d{4})\b")
AMOUNT = r"(\d{1,3}(?:,\d{3})+(?:\.\d{2})?|\d+(?:\.\d{2})?)"
SUBTOTAL_RE = re.compile(
    r"(?:SUB\s*TOTAL|BASE\s*IMPONIBLE|OP\.?\s*GRAVADA)\s*:?\s*(?:S/\.?)?\s*" + AMOUNT,
    re.IGNORECASE,
)
IGV_RE = re.compile(
    r"(?:I\.?G\.?V\.?)\s*(?:\(?18\s*%\)?)?\s*:?\s*(?:S/\.?)?\s*" + AMOUNT, re.IGNORECASE
)
# Negative lookbehind keeps "SUBTOTAL" from matching as a total.
TOTAL_RE = re.compile(
    r"(?<![A-Z])(?:IMPORTE\s*TOTAL|TOTAL\s*A\s*PAGAR|TOTAL)\s*:?\s*(?:S/\.?)?\s*" + AMOUNT,
    re.IGNORECASE,
)
BUSINESS_NAME_RE = re.compile(
    r"([A-ZÁÉÍÓÚÑ][A-ZÁÉÍÓÚÑ& ]{2,}?) +(S\.?A\.?C\.?|S\.?R\.?L\.?|E\.?I\.?R\.?L\.?|S\.?A\.?)(?![A-Z])"
)
EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

# Fields counted towards the confidence score.
SCORED_FIELDS = (
    "issuer_ruc",
    "document_number",
    "issue_date",
    "total",
    "issuer_name",
)


@dataclass
class ExtractedFields:
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
    confidence: float = 0.0
    requires_validation: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def clean_amount(raw: str) -> Optional[Decimal]:
    try:
        return Decimal(raw.replace("S/", "").replace(",", "").strip())
    except InvalidOperation:
        return None


def _first_amount(pattern: re.Pattern, text: str) -> Optional[Decimal]:
    m = pattern.search(text)
    return clean_amount(m.group(1)) if m else None


def extract_date(text: str) -> Optional[date]:
    for m in DATE_RE.finditer(text):
        day, month, year = (int(g) for g in m.groups())
        try:
            return date(year, month, day)
        except ValueError:
            continue
    return None


def extract_fields(text: str) -> ExtractedFields:
    fields = ExtractedFields()
    if not text or not text.strip():
        return fields

    ruc = RUC_RE.search(text)
    if ruc:
        fields.issuer_ruc = ruc.group(0)
    # Mask RUCs and series numbers so their digits are not read as a DNI.
    dni = DNI_RE.search(DOCUMENT_NUMBER_RE.sub(" ", RUC_RE.sub(" ", text)))
    if dni:
        fields.customer_dni = dni.group(0)

    number = DOCUMENT_NUMBER_RE.search(text)
    if number:
        fields.document_number = number.group(0).upper()
        fields.document_type = "factura" if fields.document_number[0] == "F" else "boleta"

    fields.issue_date = extract_date(text)
    fields.subtotal = _first_amount(SUBTOTAL_RE, text)
    fields.igv = _first_amount(IGV_RE, text)
    fields.total = _first_amount(TOTAL_RE, text)
    if fields.total is None and fields.subtotal is not None and fields.igv is not None:
        fields.total = fields.subtotal + fields.igv

    name = BUSINESS_NAME_RE.search(text)
    if name:
        fields.issuer_name = " ".join(name.group(0).split())
    email = EMAIL_RE.search(text)
    if email:
        fields.issuer_email = email.group(0).lower()

    found = sum(1 for f in SCORED_FIELDS if getattr(fields, f) is not None)
    fields.confidence = round(found / len(SCORED_FIELDS), 2)
    return fields
