"""Pydantic domain models for the treasury expense service."""

from .constants import (
    BASE_CURRENCY,
    CashBoxStatus,
    Currency,
    ExpenseStatus,
    FundStatus,
    HistoryAction,
    Role,
)  # re-export
from .cash_box import CashBox, CashBoxCloseIn, CashBoxIn
from .concept import ExpenseConcept, ExpenseConceptIn, RequiredDocument, RequiredDocumentIn
from .cost_center import CostCenter, CostCenterIn
from .expense import Evidence, Expense, ExpenseIn, ExpenseUpdateIn, HistoryEntry
from .fund import FundAssignment, FundAssignmentIn

__all__ = [
    "BASE_CURRENCY",
    "CashBoxStatus",
    "Currency",
    "ExpenseStatus",
    "FundStatus",
    "HistoryAction",
    "Role",
    "ExpenseConcept",
    "ExpenseConceptIn",
    "RequiredDocument",
    "RequiredDocumentIn",
    "CostCenter",
    "CostCenterIn",
    "Evidence",
    "Expense",
    "ExpenseIn",
    "ExpenseUpdateIn",
    "HistoryEntry",
    "FundAssignment",
    "FundAssignmentIn",
    "CashBox",
    "CashBoxIn",
    "CashBoxCloseIn",
]
