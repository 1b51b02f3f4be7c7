from typing import Any, Optional

from fastapi import Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from treasury.core.config import Settings
from treasury.db.base import Repository
from treasury.models.constants import Role
from treasury.services.policy import Actor

# Dependencies -----------------------------------------------------


def get_repository(request: Request) -> Repository:
    return request.app.state.repository


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_actor(
    x_user_id: Optional[str] = Header(None, description="Caller identity"),
    x_user_roles: Optional[str] = Header(
        None, description="Comma separated roles", examples=["colaborador,aprobador"]
    ),
) -> Actor:
    """Identity comes from the upstream auth layer; we only parse it."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="missing X-User-Id header")
    names = [r.strip().lower() for r in (x_user_roles or "").split(",") if r.strip()]
    if not names:
        raise HTTPException(status_code=401, detail="missing X-User-Roles header")
    try:
        roles = frozenset(Role(n) for n in names)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"unknown role in {names}")
    return Actor(user_id=x_user_id.strip(), roles=roles)


# Response envelope ------------------------------------------------


def ok(data: Any, message: str) -> dict:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return {"success": True, "message": message, "data": jsonable_encoder(data)}
