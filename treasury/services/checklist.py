"""Per-concept required document checklist.

A read-through projection over the repository. Completeness is advisory
unless `checklist_enforced` is set, in which case the workflow turns missing
mandatory documents into submission errors.
"""

from __future__ import annotations

from typing import Iterable, List, TYPE_CHECKING

from treasury.models.concept import ChecklistResult, RequiredDocument

if TYPE_CHECKING:  # pragma: no cover
    from treasury.db.base import Repository


def list_required(repo: "Repository", concept_id: str) -> List[RequiredDocument]:
    docs = repo.list_required_documents(concept_id)
    return sorted(docs, key=lambda d: (d.order, d.name))


def missing(repo: "Repository", concept_id: str, attached_types: Iterable[str]) -> List[str]:
    present = {t.lower() for t in attached_types if t}
    return [
        d.name
        for d in list_required(repo, concept_id)
        if d.mandatory and d.document_type.lower() not in present
    ]


def is_complete(repo: "Repository", concept_id: str, attached_types: Iterable[str]) -> bool:
    return not missing(repo, concept_id, attached_types)


def evaluate(repo: "Repository", concept_id: str, attached_types: Iterable[str]) -> ChecklistResult:
    types = list(attached_types)
    return ChecklistResult(
        concept_id=concept_id,
        complete=is_complete(repo, concept_id, types),
        missing=missing(repo, concept_id, types),
        required=list_required(repo, concept_id),
    )
