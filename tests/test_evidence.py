from pathlib import Path

import pytest

from conftest import APPROVER, COLLAB, OTHER_COLLAB
from treasury.core.errors import InvalidTransition, NotFound, Unauthorized
from treasury.services import evidence, workflow

PDF = b"%PDF-1.4 boleta"
ALLOWED = {"application/pdf", "image/png"}


def _store(repo, tmp_path, expense_id, actor=COLLAB):
    return evidence.store_evidence(
        repo,
        tmp_path,
        expense_id,
        actor,
        file_name="boleta.pdf",
        content_type="application/pdf",
        data=PDF,
        allowed_types=ALLOWED,
        max_bytes=1024,
        document_type="boleta",
    )


def test_delete_removes_record_and_file(repo, make_draft, tmp_path):
    draft = make_draft()
    stored = _store(repo, tmp_path, draft.id)
    assert Path(stored.storage_path).read_bytes() == PDF

    removed = evidence.delete_evidence(repo, draft.id, stored.id, COLLAB)
    assert removed.id == stored.id
    assert not Path(stored.storage_path).exists()
    assert evidence.list_evidence(repo, draft.id) == []


def test_delete_unknown_evidence(repo, make_draft):
    draft = make_draft()
    with pytest.raises(NotFound):
        evidence.delete_evidence(repo, draft.id, "missing", COLLAB)


def test_delete_follows_attach_rules(repo, make_draft, tmp_path):
    draft = make_draft()
    stored = _store(repo, tmp_path, draft.id)
    with pytest.raises(Unauthorized):
        evidence.delete_evidence(repo, draft.id, stored.id, OTHER_COLLAB)

    workflow.submit_expense(repo, draft.id, COLLAB)
    workflow.reject_expense(repo, draft.id, APPROVER, "sin sustento")
    with pytest.raises(InvalidTransition):
        evidence.delete_evidence(repo, draft.id, stored.id, COLLAB)
    assert [e.id for e in evidence.list_evidence(repo, draft.id)] == [stored.id]
    assert Path(stored.storage_path).exists()


def test_rejected_upload_writes_nothing(repo, make_draft, tmp_path):
    draft = make_draft()
    with pytest.raises(Unauthorized):
        _store(repo, tmp_path, draft.id, actor=OTHER_COLLAB)
    assert not (tmp_path / draft.id).exists()
