import pytest

from treasury.core.config import Settings
from treasury.db import factory
from treasury.db.dal import Database
from treasury.db.factory import make_repository
from treasury.db.memory import InMemoryRepository
from treasury.services import statistics


def test_derived_paths(tmp_path):
    settings = Settings(data_dir=tmp_path)
    settings.init_post_load()
    assert settings.db_path == tmp_path / "treasury.sqlite3"
    assert settings.evidence_dir == tmp_path / "evidence"
    assert settings.checklist_enforced is False
    assert settings.max_upload_bytes == 10 * 1024 * 1024


@pytest.mark.parametrize(
    "overrides",
    [
        {"persistence_backend": "postgres"},
        {"budget_warn_pct": 95, "budget_danger_pct": 90},
        {"reconciliation_retries": -1},
    ],
)
def test_invalid_settings(tmp_path, overrides):
    settings = Settings(data_dir=tmp_path, **overrides)
    with pytest.raises(ValueError):
        settings.init_post_load()


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("CHECKLIST_ENFORCED", "true")
    monkeypatch.setenv("PERSISTENCE_BACKEND", "memory")
    settings = Settings(data_dir=tmp_path)
    assert settings.checklist_enforced is True
    assert settings.persistence_backend == "memory"


@pytest.mark.parametrize(
    "backend, expected",
    [("sqlite", Database), ("memory", InMemoryRepository)],
)
def test_factory_builds_configured_backend(tmp_path, backend, expected):
    settings = Settings(data_dir=tmp_path, persistence_backend=backend)
    settings.init_post_load()
    assert isinstance(make_repository(settings), expected)


@pytest.mark.parametrize("module", [factory, statistics])
def test_module_docstring(module):
    assert module.__doc__
    assert module.__doc__.split("\n", 1)[0].endswith(".")
