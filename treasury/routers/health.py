from fastapi import APIRouter, Depends

from treasury.core.config import Settings
from treasury.db.base import Repository
from treasury.db.dal import Database, count_rows

from .deps import get_app_settings, get_repository

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness and storage check")
async def health(
    settings: Settings = Depends(get_app_settings),
    repo: Repository = Depends(get_repository),
):
    body = {
        "status": "ok",
        "app": settings.app_name,
        "version": settings.version,
        "backend": settings.persistence_backend,
    }
    if isinstance(repo, Database):
        body["expenses"] = count_rows(repo, "expenses")
    return body
