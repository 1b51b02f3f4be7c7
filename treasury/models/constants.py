"""Domain constants and enumerations for validation.

Statuses are string enums used everywhere inside the service. The treasury
REST API speaks numeric status codes; `*_CODES` maps translate at that
boundary only.
"""

from enum import Enum
from typing import Dict, FrozenSet, Set

BASE_CURRENCY = "PEN"


class Currency(str, Enum):
    PEN = "PEN"
    USD = "USD"
    EUR = "EUR"


CURRENCY_SYMBOLS: Dict[str, str] = {"PEN": "S/", "USD": "$", "EUR": "€"}


class ExpenseStatus(str, Enum):
    DRAFT = "borrador"
    PENDING = "pendiente"
    APPROVED = "aprobado"
    REJECTED = "rechazado"
    PAID = "pagado"
    ANNULLED = "anulado"


EXPENSE_STATUS_CODES: Dict[ExpenseStatus, int] = {
    ExpenseStatus.DRAFT: 1,
    ExpenseStatus.PENDING: 2,
    ExpenseStatus.APPROVED: 3,
    ExpenseStatus.PAID: 4,
    ExpenseStatus.REJECTED: 5,
    ExpenseStatus.ANNULLED: 9,
}


class FundStatus(str, Enum):
    ASSIGNED = "ASIGNADO"
    TO_RENDER = "POR_RENDIR"
    RENDERED = "RENDIDO"
    ANNULLED = "ANULADO"


FUND_STATUS_CODES: Dict[FundStatus, int] = {
    FundStatus.ASSIGNED: 1,
    FundStatus.TO_RENDER: 2,
    FundStatus.RENDERED: 3,
    FundStatus.ANNULLED: 9,
}

OPEN_FUND_STATUSES: FrozenSet[FundStatus] = frozenset(
    {FundStatus.ASSIGNED, FundStatus.TO_RENDER}
)


class CashBoxStatus(str, Enum):
    OPEN = "ABIERTA"
    CLOSED = "CERRADA"


CASH_BOX_STATUS_CODES: Dict[CashBoxStatus, int] = {
    CashBoxStatus.OPEN: 1,
    CashBoxStatus.CLOSED: 2,
}


class Role(str, Enum):
    COLLABORATOR = "colaborador"
    APPROVER = "aprobador"
    RESPONSIBLE = "responsable"
    ADMIN = "admin"


class HistoryAction(str, Enum):
    CREATED = "creado"
    MODIFIED = "modificado"
    SUBMITTED = "enviado"
    APPROVED = "aprobado"
    REJECTED = "rechazado"
    PAID = "pagado"
    ANNULLED = "anulado"


BENEFICIARY_TYPES: Set[str] = {"proveedor", "empleado", "otro"}
PAYMENT_METHODS: Set[str] = {"efectivo", "tarjeta", "transferencia", "cheque", "otro"}
FUND_TYPES: Set[str] = {"caja_chica", "entrega_a_rendir", "viaticos", "otro"}
DOCUMENT_TYPES: Set[str] = {
    "factura",
    "boleta",
    "recibo",
    "comprobante",
    "ticket",
    "otro",
}
