"""SQLite data access layer.

Responsibilities
----------------
- CRUD helpers for concepts, checklists, cost centers, expenses, funds,
  evidence and cash boxes, mapping rows to and from the pydantic models.
- Version-checked updates (`WHERE id = ? AND version = ?`).
- One transaction per expense transition covering the expense row, the cost
  center budget and the history entry.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel

from treasury.core.errors import NotFound, PersistenceError, ReconciliationError, VersionConflict
from treasury.models.cash_box import CashBox
from treasury.models.concept import ExpenseConcept, RequiredDocument
from treasury.models.cost_center import CostCenter
from treasury.models.expense import Evidence, Expense, HistoryEntry
from treasury.models.fund import FundAssignment
from treasury.services.money import round2

from .base import ZERO, CashBoxFilters, ExpenseFilters, FundFilters, Repository
from .schema import BASIC_UTC_NOW, init_db

M = TypeVar("M", bound=BaseModel)

# Columns holding JSON encoded lists.
JSON_COLUMNS = {"tags", "rendered_expense_ids"}


def _to_row(model: BaseModel) -> Dict[str, Any]:
    data = model.model_dump(mode="json")
    row = {k: data[k] for k in type(model).model_fields}
    for key in JSON_COLUMNS & row.keys():
        row[key] = json.dumps(row[key])
    return row


def _from_row(cls: Type[M], row: sqlite3.Row) -> M:
    data = dict(row)
    for key in JSON_COLUMNS & data.keys():
        data[key] = json.loads(data[key] or "[]")
    return cls.model_validate(data)


def _insert_sql(table: str, row: Dict[str, Any]) -> str:
    cols = ", ".join(f'"{c}"' for c in row)
    marks = ", ".join("?" for _ in row)
    return f"INSERT INTO {table} ({cols}) VALUES ({marks})"


def _update_sql(table: str, row: Dict[str, Any]) -> str:
    sets = ", ".join(f'"{c}" = ?' for c in row if c != "id")
    return f"UPDATE {table} SET {sets} WHERE id = ? AND version = ?"


class Database(Repository):
    def __init__(self, db_path: Path, reconciliation_retries: int = 2):
        super().__init__(reconciliation_retries)
        self.db_path = db_path
        init_db(db_path)

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Cursor]:
        """Cursor inside one transaction: commit on success, rollback on error."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot open database: {exc}") from exc
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"database error: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _insert(self, table: str, model: BaseModel) -> None:
        row = _to_row(model)
        with self._tx() as cur:
            cur.execute(_insert_sql(table, row), list(row.values()))

    def _get(self, cls: Type[M], table: str, entity_id: str) -> Optional[M]:
        with self._tx() as cur:
            cur.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,))
            row = cur.fetchone()
            return _from_row(cls, row) if row else None

    def _versioned_update(
        self,
        cur: sqlite3.Cursor,
        table: str,
        entity: str,
        model: BaseModel,
        expected_version: int,
    ) -> Dict[str, Any]:
        row = _to_row(model)
        row["version"] = expected_version + 1
        params = [v for k, v in row.items() if k != "id"] + [row["id"], expected_version]
        cur.execute(_update_sql(table, row), params)
        if cur.rowcount == 0:
            cur.execute(f"SELECT version FROM {table} WHERE id = ?", (row["id"],))
            current = cur.fetchone()
            if current is None:
                raise NotFound(entity, row["id"])
            raise VersionConflict(entity, row["id"], expected_version, int(current[0]))
        return row

    # ------------------------------------------------------------------
    # Concepts & checklist
    def save_concept(self, concept: ExpenseConcept) -> ExpenseConcept:
        row = _to_row(concept)
        cols = ", ".join(f'"{c}"' for c in row)
        marks = ", ".join("?" for _ in row)
        updates = ", ".join(f'"{c}" = excluded."{c}"' for c in row if c not in ("id", "created_at"))
        with self._tx() as cur:
            cur.execute(
                f"INSERT INTO expense_concepts ({cols}) VALUES ({marks}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                list(row.values()),
            )
        return concept

    def get_concept(self, concept_id: str) -> Optional[ExpenseConcept]:
        return self._get(ExpenseConcept, "expense_concepts", concept_id)

    def list_concepts(self, active_only: bool = False) -> List[ExpenseConcept]:
        sql = "SELECT * FROM expense_concepts"
        if active_only:
            sql += " WHERE active = 1"
        sql += " ORDER BY code"
        with self._tx() as cur:
            cur.execute(sql)
            return [_from_row(ExpenseConcept, r) for r in cur.fetchall()]

    def add_required_document(self, doc: RequiredDocument) -> RequiredDocument:
        self._insert("required_documents", doc)
        return doc

    def list_required_documents(self, concept_id: str) -> List[RequiredDocument]:
        with self._tx() as cur:
            cur.execute(
                'SELECT * FROM required_documents WHERE concept_id = ? ORDER BY "order", name',
                (concept_id,),
            )
            return [_from_row(RequiredDocument, r) for r in cur.fetchall()]

    def delete_required_document(self, concept_id: str, doc_id: str) -> bool:
        with self._tx() as cur:
            cur.execute(
                "DELETE FROM required_documents WHERE id = ? AND concept_id = ?",
                (doc_id, concept_id),
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Cost centers
    def insert_cost_center(self, cc: CostCenter) -> CostCenter:
        self._insert("cost_centers", cc)
        return cc

    def get_cost_center(self, cc_id: str) -> Optional[CostCenter]:
        return self._get(CostCenter, "cost_centers", cc_id)

    def list_cost_centers(self, company: Optional[str] = None) -> List[CostCenter]:
        sql = "SELECT * FROM cost_centers"
        params: List[Any] = []
        if company is not None:
            sql += " WHERE company = ?"
            params.append(company)
        sql += " ORDER BY code"
        with self._tx() as cur:
            cur.execute(sql, params)
            return [_from_row(CostCenter, r) for r in cur.fetchall()]

    def save_cost_center(self, cc: CostCenter, expected_version: int) -> CostCenter:
        with self._tx() as cur:
            self._versioned_update(cur, "cost_centers", "cost center", cc, expected_version)
        return cc.model_copy(update={"version": expected_version + 1})

    def _adjust_consumed_in(self, cur: sqlite3.Cursor, cc_id: str, delta: Decimal) -> None:
        cur.execute("SELECT consumed_budget FROM cost_centers WHERE id = ?", (cc_id,))
        row = cur.fetchone()
        if row is None:
            raise NotFound("cost center", cc_id)
        consumed = round2(Decimal(row[0]) + delta)
        cur.execute(
            f"UPDATE cost_centers SET consumed_budget = ?, version = version + 1, "
            f"updated_at = ({BASIC_UTC_NOW}) WHERE id = ?",
            (str(consumed), cc_id),
        )

    # ------------------------------------------------------------------
    # Expenses
    def next_expense_code(self) -> str:
        with self._tx() as cur:
            cur.execute(
                f"""
                INSERT INTO metadata (key, value) VALUES ('expense_seq', '1')
                ON CONFLICT(key) DO UPDATE SET
                    value = CAST(value AS INTEGER) + 1,
                    updated_at = ({BASIC_UTC_NOW})
                """
            )
            cur.execute("SELECT value FROM metadata WHERE key = 'expense_seq'")
            seq = int(cur.fetchone()[0])
        return f"GST-{seq:06d}"

    def insert_expense(self, expense: Expense, history: HistoryEntry) -> Expense:
        row = _to_row(expense)
        hrow = _to_row(history)
        with self._tx() as cur:
            cur.execute(_insert_sql("expenses", row), list(row.values()))
            cur.execute(_insert_sql("expense_history", hrow), list(hrow.values()))
        return expense

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        return self._get(Expense, "expenses", expense_id)

    def get_expenses(self, expense_ids) -> Dict[str, Expense]:
        ids = list(expense_ids)
        if not ids:
            return {}
        marks = ", ".join("?" for _ in ids)
        with self._tx() as cur:
            cur.execute(f"SELECT * FROM expenses WHERE id IN ({marks})", ids)
            return {r["id"]: _from_row(Expense, r) for r in cur.fetchall()}

    def list_expenses(self, filters: Optional[ExpenseFilters] = None) -> List[Expense]:
        filters = filters or ExpenseFilters()
        clauses: List[str] = []
        params: List[Any] = []
        if filters.statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in filters.statuses)})")
            params.extend(s.value for s in filters.statuses)
        for column in ("concept_id", "cost_center_id", "fund_id", "created_by", "currency"):
            value = getattr(filters, column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if filters.date_from:
            clauses.append("expense_date >= ?")
            params.append(filters.date_from.isoformat())
        if filters.date_to:
            clauses.append("expense_date <= ?")
            params.append(filters.date_to.isoformat())
        if filters.search:
            clauses.append(
                "(LOWER(description) LIKE ? OR LOWER(code) LIKE ? OR LOWER(COALESCE(beneficiary_name, '')) LIKE ?)"
            )
            needle = f"%{filters.search.lower()}%"
            params.extend([needle, needle, needle])
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        sql = f"SELECT * FROM expenses{where} ORDER BY created_at DESC, code DESC"
        with self._tx() as cur:
            cur.execute(sql, params)
            return [_from_row(Expense, r) for r in cur.fetchall()]

    def delete_expense(self, expense_id: str, expected_version: int) -> None:
        with self._tx() as cur:
            cur.execute(
                "DELETE FROM expenses WHERE id = ? AND version = ?", (expense_id, expected_version)
            )
            if cur.rowcount == 0:
                cur.execute("SELECT version FROM expenses WHERE id = ?", (expense_id,))
                current = cur.fetchone()
                if current is None:
                    raise NotFound("expense", expense_id)
                raise VersionConflict("expense", expense_id, expected_version, int(current[0]))
            cur.execute("DELETE FROM expense_history WHERE expense_id = ?", (expense_id,))
            cur.execute("DELETE FROM evidence WHERE expense_id = ?", (expense_id,))

    def list_history(self, expense_id: str) -> List[HistoryEntry]:
        with self._tx() as cur:
            cur.execute(
                "SELECT * FROM expense_history WHERE expense_id = ? ORDER BY created_at, rowid",
                (expense_id,),
            )
            return [_from_row(HistoryEntry, r) for r in cur.fetchall()]

    def apply_transition(
        self,
        expense: Expense,
        expected_version: int,
        history: HistoryEntry,
        budget_delta: Decimal = ZERO,
        cost_center_id: Optional[str] = None,
    ) -> Expense:
        """Expense row, budget and history in a single SQLite transaction."""
        hrow = _to_row(history)
        try:
            with self._tx() as cur:
                self._versioned_update(cur, "expenses", "expense", expense, expected_version)
                if cost_center_id and budget_delta != ZERO:
                    try:
                        self._adjust_consumed_in(cur, cost_center_id, budget_delta)
                    except NotFound as exc:
                        raise ReconciliationError(
                            "expense status and cost center budget could not be updated together",
                            expense_id=expense.id,
                            cost_center_id=cost_center_id,
                            budget_delta=str(budget_delta),
                            cause=exc.message,
                        ) from exc
                cur.execute(_insert_sql("expense_history", hrow), list(hrow.values()))
        except PersistenceError as exc:
            if cost_center_id and budget_delta != ZERO:
                raise ReconciliationError(
                    "expense transition rolled back",
                    expense_id=expense.id,
                    cost_center_id=cost_center_id,
                    cause=exc.message,
                ) from exc
            raise
        return expense.model_copy(update={"version": expected_version + 1})

    # ------------------------------------------------------------------
    # Funds
    def insert_fund(self, fund: FundAssignment) -> FundAssignment:
        self._insert("funds", fund)
        return fund

    def get_fund(self, fund_id: str) -> Optional[FundAssignment]:
        return self._get(FundAssignment, "funds", fund_id)

    def list_funds(self, filters: Optional[FundFilters] = None) -> List[FundAssignment]:
        filters = filters or FundFilters()
        clauses: List[str] = []
        params: List[Any] = []
        if filters.statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in filters.statuses)})")
            params.extend(s.value for s in filters.statuses)
        for column in ("company", "branch", "responsible", "fund_type"):
            value = getattr(filters, column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._tx() as cur:
            cur.execute(
                f"SELECT * FROM funds{where} ORDER BY assigned_on DESC, created_at DESC", params
            )
            return [_from_row(FundAssignment, r) for r in cur.fetchall()]

    def save_fund(self, fund: FundAssignment, expected_version: int) -> FundAssignment:
        with self._tx() as cur:
            self._versioned_update(cur, "funds", "fund assignment", fund, expected_version)
        return fund.model_copy(update={"version": expected_version + 1})

    # ------------------------------------------------------------------
    # Evidence
    def add_evidence(self, evidence: Evidence) -> Evidence:
        self._insert("evidence", evidence)
        return evidence

    def list_evidence(self, expense_id: str) -> List[Evidence]:
        with self._tx() as cur:
            cur.execute(
                "SELECT * FROM evidence WHERE expense_id = ? ORDER BY created_at", (expense_id,)
            )
            return [_from_row(Evidence, r) for r in cur.fetchall()]

    def delete_evidence(self, expense_id: str, evidence_id: str) -> Optional[Evidence]:
        with self._tx() as cur:
            cur.execute(
                "SELECT * FROM evidence WHERE id = ? AND expense_id = ?", (evidence_id, expense_id)
            )
            row = cur.fetchone()
            if row is None:
                return None
            cur.execute("DELETE FROM evidence WHERE id = ?", (evidence_id,))
            return _from_row(Evidence, row)

    # ------------------------------------------------------------------
    # Cash boxes
    def insert_cash_box(self, box: CashBox) -> CashBox:
        self._insert("cash_boxes", box)
        return box

    def get_cash_box(self, box_id: str) -> Optional[CashBox]:
        return self._get(CashBox, "cash_boxes", box_id)

    def list_cash_boxes(self, filters: Optional[CashBoxFilters] = None) -> List[CashBox]:
        filters = filters or CashBoxFilters()
        clauses: List[str] = []
        params: List[Any] = []
        if filters.statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in filters.statuses)})")
            params.extend(s.value for s in filters.statuses)
        for column in ("company", "branch", "code"):
            value = getattr(filters, column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._tx() as cur:
            cur.execute(f"SELECT * FROM cash_boxes{where} ORDER BY opened_at DESC, code DESC", params)
            return [_from_row(CashBox, r) for r in cur.fetchall()]

    def save_cash_box(self, box: CashBox, expected_version: int) -> CashBox:
        with self._tx() as cur:
            self._versioned_update(cur, "cash_boxes", "cash box", box, expected_version)
        return box.model_copy(update={"version": expected_version + 1})


def count_rows(db: Database, table: str) -> int:
    """Row count helper used by health checks."""
    with db._tx() as cur:
        cur.execute(f"SELECT COUNT(*) FROM {table}")
        row = cur.fetchone()
        return int(row[0] if row and row[0] is not None else 0)


__all__: Sequence[str] = ("Database", "count_rows")
