"""Repository factory.

`PERSISTENCE_BACKEND` selects the implementation; both share the
`Repository` contract so the workflow layer never knows which one it got.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict

from treasury.core.config import Settings

from .base import Repository
from .dal import Database
from .memory import InMemoryRepository


def _sqlite(settings: Settings) -> Repository:
    return Database(Path(settings.db_path), reconciliation_retries=settings.reconciliation_retries)  # type: ignore[arg-type]


def _memory(settings: Settings) -> Repository:
    return InMemoryRepository(reconciliation_retries=settings.reconciliation_retries)


_BACKEND_REGISTRY: Dict[str, Callable[[Settings], Repository]] = {
    "sqlite": _sqlite,
    "memory": _memory,
}


def make_repository(settings: Settings) -> Repository:
    builder = _BACKEND_REGISTRY.get(settings.persistence_backend)
    if not builder:
        raise ValueError(f"Unknown persistence backend '{settings.persistence_backend}'")
    return builder(settings)
