from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from treasury.core.config import Settings
from treasury.db.memory import InMemoryRepository
from treasury.main import create_app
from treasury.models.concept import ExpenseConceptIn
from treasury.models.cost_center import CostCenterIn
from treasury.models.expense import ExpenseIn
from treasury.services import workflow
from treasury.services.policy import Actor

ADMIN = Actor.of("admin-1", "admin")
COLLAB = Actor.of("colab-1", "colaborador")
OTHER_COLLAB = Actor.of("colab-2", "colaborador")
APPROVER = Actor.of("aprob-1", "aprobador")
RESPONSIBLE = Actor.of("resp-1", "responsable")


def headers(user_id: str, *roles: str) -> dict:
    return {"X-User-Id": user_id, "X-User-Roles": ",".join(roles)}


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def cost_center(repo):
    return workflow.create_cost_center(
        repo,
        CostCenterIn(
            code="CC-OPS",
            name="Operaciones",
            company="ACME",
            assigned_budget=Decimal("1000.00"),
        ),
        ADMIN,
    )


@pytest.fixture
def concept(repo, cost_center):
    return workflow.create_concept(
        repo,
        ExpenseConceptIn(
            code="MOV",
            name="Movilidad",
            category="transporte",
            cost_center_id=cost_center.id,
        ),
        ADMIN,
    )


@pytest.fixture
def make_draft(repo, concept):
    def _make(actor=COLLAB, **overrides):
        data = {
            "concept_id": concept.id,
            "description": "Taxi al aeropuerto",
            "expense_date": date(2025, 3, 10),
            "amount": Decimal("100.00"),
        }
        data.update(overrides)
        return workflow.create_expense(repo, ExpenseIn(**data), actor)

    return _make


@pytest.fixture
def settings(tmp_path):
    s = Settings(data_dir=tmp_path, persistence_backend="sqlite")
    s.init_post_load()
    return s


@pytest.fixture
def client(settings):
    app = create_app(settings_override=settings)
    return TestClient(app)
