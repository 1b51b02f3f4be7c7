"""Evidence (receipt scan) storage.

Uploads are checked for type and size first; bytes hit the disk only after
every check passed, and the file is removed again if the row cannot be
recorded.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from treasury.core.errors import InvalidTransition, NotFound, ValidationError
from treasury.db.base import Repository
from treasury.models.constants import DOCUMENT_TYPES
from treasury.models.expense import Evidence, Expense
from treasury.services import policy
from treasury.services.policy import RULES, Actor
from treasury.services.workflow import get_expense

logger = logging.getLogger("treasury.evidence")

_SUFFIXES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}


def _check_attachable(expense: Expense, actor: Actor, action: str) -> None:
    allowed_statuses = RULES["attach_evidence"].statuses or frozenset()
    if expense.status not in allowed_statuses:
        raise InvalidTransition(
            "expense", action, expense.status.value, [s.value for s in allowed_statuses]
        )
    policy.require("attach_evidence", actor, owner=expense.created_by)


def validate_upload(
    content_type: Optional[str],
    size: int,
    allowed_types: Iterable[str],
    max_bytes: int,
    document_type: Optional[str] = None,
) -> None:
    errors = []
    allowed = set(allowed_types)
    if not content_type or content_type.lower() not in allowed:
        errors.append(
            {
                "field": "file",
                "message": f"unsupported file type '{content_type}'; allowed: {sorted(allowed)}",
            }
        )
    if size <= 0:
        errors.append({"field": "file", "message": "file is empty"})
    elif size > max_bytes:
        errors.append(
            {"field": "file", "message": f"file exceeds {max_bytes // (1024 * 1024)} MB limit"}
        )
    if document_type is not None and document_type not in DOCUMENT_TYPES:
        errors.append({"field": "document_type", "message": "unsupported document type"})
    if errors:
        raise ValidationError(errors)


def store_evidence(
    repo: Repository,
    evidence_dir: Path,
    expense_id: str,
    actor: Actor,
    file_name: str,
    content_type: Optional[str],
    data: bytes,
    allowed_types: Iterable[str],
    max_bytes: int,
    document_type: Optional[str] = None,
) -> Evidence:
    expense = get_expense(repo, expense_id)
    _check_attachable(expense, actor, "attach_evidence")
    validate_upload(content_type, len(data), allowed_types, max_bytes, document_type)

    evidence_id = str(uuid.uuid4())
    ctype = (content_type or "").lower()
    target = Path(evidence_dir) / expense_id / f"{evidence_id}{_SUFFIXES.get(ctype, '')}"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    evidence = Evidence(
        id=evidence_id,
        expense_id=expense_id,
        file_name=Path(file_name or "upload").name,
        content_type=ctype,
        size=len(data),
        storage_path=str(target),
        document_type=document_type,
        created_by=actor.user_id,
        created_at=datetime.now(timezone.utc),
    )
    try:
        saved = repo.add_evidence(evidence)
    except Exception:
        target.unlink(missing_ok=True)
        raise
    logger.info(
        "evidence %s stored for expense %s (%s bytes)",
        evidence_id,
        expense.code,
        len(data),
        extra={"entity": "expense", "entity_id": expense_id, "action": "attach_evidence"},
    )
    return saved


def list_evidence(repo: Repository, expense_id: str):
    get_expense(repo, expense_id)
    return repo.list_evidence(expense_id)


def delete_evidence(repo: Repository, expense_id: str, evidence_id: str, actor: Actor) -> Evidence:
    expense = get_expense(repo, expense_id)
    _check_attachable(expense, actor, "delete_evidence")
    removed = repo.delete_evidence(expense_id, evidence_id)
    if removed is None:
        raise NotFound("evidence", evidence_id)
    Path(removed.storage_path).unlink(missing_ok=True)
    logger.info(
        "evidence %s removed from expense %s",
        evidence_id,
        expense.code,
        extra={"entity": "expense", "entity_id": expense_id, "action": "delete_evidence"},
    )
    return removed
