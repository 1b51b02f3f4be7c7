from typing import List

from fastapi import APIRouter, Depends, Query

from treasury.db.base import Repository
from treasury.models.concept import (
    ChecklistIn,
    ChecklistResult,
    ExpenseConcept,
    ExpenseConceptIn,
    RequiredDocument,
    RequiredDocumentIn,
)
from treasury.services import checklist, workflow
from treasury.services.policy import Actor

from .deps import get_actor, get_repository, ok

router = APIRouter(prefix="/concepts", tags=["concepts"])


@router.get("/", response_model=List[ExpenseConcept], summary="List expense concepts")
async def list_concepts(
    active_only: bool = Query(False, description="Only active concepts"),
    repo: Repository = Depends(get_repository),
):
    return repo.list_concepts(active_only=active_only)


@router.post("/", status_code=201, summary="Create an expense concept")
async def create_concept(
    payload: ExpenseConceptIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    concept = workflow.create_concept(repo, payload, actor)
    return ok(concept, "expense concept created")


@router.get("/{concept_id}", response_model=ExpenseConcept, summary="Get an expense concept")
async def get_concept(concept_id: str, repo: Repository = Depends(get_repository)):
    return workflow.get_concept(repo, concept_id)


@router.put("/{concept_id}", summary="Replace an expense concept")
async def update_concept(
    concept_id: str,
    payload: ExpenseConceptIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    concept = workflow.update_concept(repo, concept_id, payload, actor)
    return ok(concept, "expense concept updated")


# Checklist --------------------------------------------------------


@router.get(
    "/{concept_id}/documents",
    response_model=List[RequiredDocument],
    summary="Required documents of a concept, in checklist order",
)
async def list_documents(concept_id: str, repo: Repository = Depends(get_repository)):
    workflow.get_concept(repo, concept_id)
    return checklist.list_required(repo, concept_id)


@router.post("/{concept_id}/documents", status_code=201, summary="Add a required document")
async def add_document(
    concept_id: str,
    payload: RequiredDocumentIn,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    doc = workflow.add_required_document(repo, concept_id, payload, actor)
    return ok(doc, "required document added")


@router.delete("/{concept_id}/documents/{doc_id}", summary="Remove a required document")
async def delete_document(
    concept_id: str,
    doc_id: str,
    repo: Repository = Depends(get_repository),
    actor: Actor = Depends(get_actor),
):
    workflow.delete_required_document(repo, concept_id, doc_id, actor)
    return ok({"id": doc_id}, "required document removed")


@router.post(
    "/{concept_id}/checklist",
    response_model=ChecklistResult,
    summary="Check attached document types against the concept checklist",
)
async def evaluate_checklist(
    concept_id: str,
    payload: ChecklistIn,
    repo: Repository = Depends(get_repository),
):
    return workflow.evaluate_checklist(repo, concept_id, payload.document_types)
