import pytest

from conftest import ADMIN, COLLAB
from treasury.core.errors import NotFound, Unauthorized
from treasury.models.concept import RequiredDocumentIn
from treasury.services import checklist, workflow


@pytest.fixture
def documents(repo, concept):
    specs = [
        RequiredDocumentIn(name="Ticket de taxi", document_type="ticket", mandatory=False, order=2),
        RequiredDocumentIn(name="Recibo", document_type="recibo", order=1),
        RequiredDocumentIn(name="Boleta", document_type="boleta", order=1),
    ]
    return [workflow.add_required_document(repo, concept.id, s, ADMIN) for s in specs]


def test_list_required_orders_by_order_then_name(repo, concept, documents):
    names = [d.name for d in checklist.list_required(repo, concept.id)]
    assert names == ["Boleta", "Recibo", "Ticket de taxi"]


def test_missing_only_counts_mandatory_documents(repo, concept, documents):
    assert checklist.missing(repo, concept.id, []) == ["Boleta", "Recibo"]
    assert checklist.missing(repo, concept.id, ["BOLETA"]) == ["Recibo"]
    assert checklist.is_complete(repo, concept.id, ["boleta", "recibo"])


def test_concept_without_requirements_is_complete(repo, concept):
    result = workflow.evaluate_checklist(repo, concept.id, [])
    assert result.complete
    assert result.required == []


def test_evaluate_reports_missing(repo, concept, documents):
    result = workflow.evaluate_checklist(repo, concept.id, ["recibo"])
    assert not result.complete
    assert result.missing == ["Boleta"]
    assert len(result.required) == 3


def test_checklist_management_requires_treasury_role(repo, concept, documents):
    with pytest.raises(Unauthorized):
        workflow.add_required_document(repo, concept.id, RequiredDocumentIn(name="Factura"), COLLAB)
    with pytest.raises(NotFound):
        workflow.delete_required_document(repo, concept.id, "nope", ADMIN)
    workflow.delete_required_document(repo, concept.id, documents[0].id, ADMIN)
    assert len(checklist.list_required(repo, concept.id)) == 2
