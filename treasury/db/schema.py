"""Database schema DDL definitions and initialization utilities.

Tables:
  - cost_centers: budgets consumed by approved expenses
  - expense_concepts: expense categories with approval configuration
  - required_documents: per-concept document checklist
  - expenses: individual expense records with workflow status
  - expense_history: audit trail of every expense action
  - funds: fund assignments and their reconciliation result
  - evidence: uploaded supporting files per expense
  - cash_boxes: petty-cash boxes and their closing count
  - metadata: key/value store (schema version, code sequences)

Monetary columns are TEXT holding exact decimal strings.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Sequence

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"
SCHEMA_VERSION = 1

COST_CENTERS_DDL = """
CREATE TABLE IF NOT EXISTS cost_centers (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    description TEXT,
    company TEXT NOT NULL,
    responsible TEXT,
    assigned_budget TEXT NOT NULL DEFAULT '0.00',
    consumed_budget TEXT NOT NULL DEFAULT '0.00',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1
);
"""

EXPENSE_CONCEPTS_DDL = """
CREATE TABLE IF NOT EXISTS expense_concepts (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    description TEXT,
    cost_center_id TEXT,
    max_amount TEXT,
    requires_approval INTEGER NOT NULL DEFAULT 1,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (cost_center_id) REFERENCES cost_centers(id)
);
"""

REQUIRED_DOCUMENTS_DDL = """
CREATE TABLE IF NOT EXISTS required_documents (
    id TEXT PRIMARY KEY,
    concept_id TEXT NOT NULL,
    name TEXT NOT NULL,
    document_type TEXT NOT NULL DEFAULT 'otro'
        CHECK (document_type IN ('factura','boleta','recibo','comprobante','ticket','otro')),
    mandatory INTEGER NOT NULL DEFAULT 1,
    "order" INTEGER NOT NULL DEFAULT 0,
    description TEXT,
    FOREIGN KEY (concept_id) REFERENCES expense_concepts(id) ON DELETE CASCADE
);
"""

EXPENSES_DDL = """
CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    concept_id TEXT NOT NULL,
    cost_center_id TEXT,
    fund_id TEXT,
    description TEXT NOT NULL DEFAULT '',
    expense_date TEXT,
    amount TEXT,
    currency TEXT NOT NULL CHECK (currency IN ('PEN','USD','EUR')),
    exchange_rate TEXT,
    status TEXT NOT NULL DEFAULT 'borrador'
        CHECK (status IN ('borrador','pendiente','aprobado','rechazado','pagado','anulado')),
    requires_approval INTEGER NOT NULL DEFAULT 1,
    beneficiary_type TEXT,
    beneficiary_document TEXT,
    beneficiary_name TEXT,
    payment_method TEXT,
    operation_number TEXT,
    observations TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    approved_by TEXT,
    approved_at TEXT,
    rejected_by TEXT,
    rejected_at TEXT,
    rejection_reason TEXT,
    paid_by TEXT,
    paid_at TEXT,
    annulled_by TEXT,
    annulled_at TEXT,
    annulment_reason TEXT,
    consumed_amount TEXT,
    version INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY (concept_id) REFERENCES expense_concepts(id)
);
"""

EXPENSE_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS expense_history (
    id TEXT PRIMARY KEY,
    expense_id TEXT NOT NULL,
    action TEXT NOT NULL,
    previous_status TEXT,
    new_status TEXT,
    actor TEXT NOT NULL,
    comment TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (expense_id) REFERENCES expenses(id) ON DELETE CASCADE
);
"""

FUNDS_DDL = """
CREATE TABLE IF NOT EXISTS funds (
    id TEXT PRIMARY KEY,
    company TEXT NOT NULL,
    branch TEXT NOT NULL,
    responsible TEXT NOT NULL,
    fund_type TEXT NOT NULL,
    assigned_amount TEXT NOT NULL,
    currency TEXT NOT NULL DEFAULT 'PEN',
    exchange_rate TEXT,
    rendered_amount TEXT,
    pending_balance TEXT,
    rendered_expense_ids TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'ASIGNADO'
        CHECK (status IN ('ASIGNADO','POR_RENDIR','RENDIDO','ANULADO')),
    assigned_on TEXT NOT NULL,
    due_date TEXT,
    observations TEXT,
    rendered_by TEXT,
    rendered_at TEXT,
    annulled_by TEXT,
    annulled_at TEXT,
    annulment_reason TEXT,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1
);
"""

EVIDENCE_DDL = """
CREATE TABLE IF NOT EXISTS evidence (
    id TEXT PRIMARY KEY,
    expense_id TEXT NOT NULL,
    file_name TEXT NOT NULL,
    content_type TEXT NOT NULL,
    size INTEGER NOT NULL,
    storage_path TEXT NOT NULL,
    document_type TEXT,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (expense_id) REFERENCES expenses(id) ON DELETE CASCADE
);
"""

CASH_BOXES_DDL = """
CREATE TABLE IF NOT EXISTS cash_boxes (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL,
    name TEXT NOT NULL,
    company TEXT NOT NULL,
    branch TEXT NOT NULL,
    responsible TEXT NOT NULL,
    currency TEXT NOT NULL DEFAULT 'PEN',
    opening_balance TEXT NOT NULL,
    expected_balance TEXT NOT NULL,
    physical_balance TEXT,
    difference TEXT,
    status TEXT NOT NULL DEFAULT 'ABIERTA' CHECK (status IN ('ABIERTA','CERRADA')),
    opened_at TEXT NOT NULL,
    closed_at TEXT,
    closed_by TEXT,
    observations TEXT,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

INDEXES_DDL: Sequence[str] = (
    "CREATE INDEX IF NOT EXISTS idx_expenses_status ON expenses(status);",
    "CREATE INDEX IF NOT EXISTS idx_expenses_fund ON expenses(fund_id);",
    "CREATE INDEX IF NOT EXISTS idx_expenses_cost_center ON expenses(cost_center_id);",
    "CREATE INDEX IF NOT EXISTS idx_history_expense ON expense_history(expense_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_funds_status ON funds(status);",
    "CREATE INDEX IF NOT EXISTS idx_required_documents_concept ON required_documents(concept_id);",
    "CREATE INDEX IF NOT EXISTS idx_cash_boxes_branch ON cash_boxes(branch, status);",
)

ALL_DDL: Sequence[str] = (
    COST_CENTERS_DDL,
    EXPENSE_CONCEPTS_DDL,
    REQUIRED_DOCUMENTS_DDL,
    EXPENSES_DDL,
    EXPENSE_HISTORY_DDL,
    FUNDS_DDL,
    EVIDENCE_DDL,
    CASH_BOXES_DDL,
    METADATA_DDL,
    *INDEXES_DDL,
)


def init_db(db_path: Path) -> None:
    """Create tables if they do not exist and record the schema version."""
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        for ddl in ALL_DDL:
            cur.executescript(ddl)
        cur.execute(
            "INSERT INTO metadata (key, value) VALUES ('schema_version', ?) "
            "ON CONFLICT(key) DO NOTHING",
            (str(SCHEMA_VERSION),),
        )
        conn.commit()
    finally:
        conn.close()
