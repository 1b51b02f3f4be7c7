"""Domain error taxonomy and the HTTP handlers that render it.

Every domain error carries a machine readable `code` plus a `detail` payload
with enough structure (field, expected vs actual status, required roles) for
a caller to build an actionable message. Handlers below turn them into the
JSON envelope `{success: false, error, detail}`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger("treasury.errors")


class TreasuryError(Exception):
    code = "treasury_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, **self.detail}


class ValidationError(TreasuryError):
    """One or more fields are missing or invalid; no transition attempted."""

    code = "validation_error"
    http_status = 422

    def __init__(self, errors: Sequence[Dict[str, str]], message: str | None = None):
        self.errors: List[Dict[str, str]] = list(errors)
        if message is None:
            message = "; ".join(f"{e['field']}: {e['message']}" for e in self.errors)
        super().__init__(message, errors=self.errors)

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])

    @property
    def fields(self) -> List[str]:
        return [e["field"] for e in self.errors]


class InvalidTransition(TreasuryError):
    code = "invalid_transition"
    http_status = status.HTTP_409_CONFLICT

    def __init__(
        self, entity: str, action: str, current: str, allowed: Iterable[str]
    ):
        allowed_list = sorted(allowed)
        super().__init__(
            f"cannot {action} {entity} in status '{current}'",
            entity=entity,
            action=action,
            current_status=current,
            allowed_statuses=allowed_list,
        )
        self.current = current


class Unauthorized(TreasuryError):
    code = "unauthorized"
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, action: str, required_roles: Iterable[str], reason: str | None = None):
        roles = sorted(required_roles)
        message = reason or f"action '{action}' requires one of roles {roles}"
        super().__init__(message, action=action, required_roles=roles)


class NotFound(TreasuryError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} '{entity_id}' not found", entity=entity, id=str(entity_id))


class VersionConflict(TreasuryError):
    code = "version_conflict"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, entity: str, entity_id: Any, expected: int, actual: Optional[int]):
        super().__init__(
            f"{entity} '{entity_id}' was modified concurrently",
            entity=entity,
            id=str(entity_id),
            expected_version=expected,
            actual_version=actual,
        )


class MissingExchangeRate(TreasuryError):
    code = "missing_exchange_rate"
    http_status = 422

    def __init__(self, entity_id: Any, currency: str):
        super().__init__(
            f"'{entity_id}' is in {currency} but has no exchange rate",
            id=str(entity_id),
            currency=currency,
        )


class ForeignExpense(TreasuryError):
    code = "foreign_expense"
    http_status = 422

    def __init__(self, fund_id: Any, expense_ids: Sequence[str]):
        super().__init__(
            f"expenses {list(expense_ids)} do not belong to fund '{fund_id}'",
            fund_id=str(fund_id),
            expense_ids=list(expense_ids),
        )


class EmptySelection(TreasuryError):
    code = "empty_selection"
    http_status = 422

    def __init__(self, fund_id: Any):
        super().__init__(
            "at least one expense must be selected to render a fund",
            fund_id=str(fund_id),
        )


class ReconciliationError(TreasuryError):
    """Status change and its cross-entity effect could not be kept in step."""

    code = "reconciliation_error"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class PersistenceError(TreasuryError):
    code = "persistence_error"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


# Handlers ---------------------------------------------------------


def _envelope(error: str, detail: Any) -> Dict[str, Any]:
    return {"success": False, "error": error, "detail": detail}


def treasury_error_handler(request: Request, exc: TreasuryError):  # type: ignore
    level = logging.ERROR if exc.http_status >= 500 else logging.WARNING
    logger.log(level, "%s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content=_envelope(exc.code, exc.to_dict()),
    )


def http_error_handler(request: Request, exc):  # type: ignore
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        detail = f"No route for {request.method} {request.url.path}"
        error = "not_found"
    else:
        detail = exc.detail
        error = "http_error"
    return JSONResponse(status_code=exc.status_code, content=_envelope(error, detail))


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", "invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=_envelope("validation_error", {"errors": errors}),
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope("internal_error", "An unexpected error occurred."),
    )
