"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://leave.gov.gh/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Leave engine error kinds ────────────────────────────────────────

class InvalidRange(AppException):
    """422 — start date after end date."""

    def __init__(self, start: Any, end: Any) -> None:
        super().__init__(
            status_code=422,
            error_type="invalid-range",
            title="Invalid Date Range",
            detail=f"Start date {start} is after end date {end}.",
            errors={"dates": ["start_date must be on or before end_date."]},
        )


class InsufficientBalance(AppException):
    """422 — requested days exceed the available balance."""

    def __init__(self, leave_type: Any, available: Decimal, requested: Decimal) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient {getattr(leave_type, 'value', leave_type)} balance. "
                f"Available: {available}, Requested: {requested}."
            ),
        )


class OverlappingRequest(AppException):
    """409 — another pending/approved request covers some of these dates."""

    def __init__(self, start: Any, end: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="overlapping-request",
            title="Overlapping Request",
            detail=(
                f"A pending or approved leave request already overlaps "
                f"{start} to {end}."
            ),
        )


class OutOfOrder(AppException):
    """409 — the acting role is not the one the current step waits for."""

    def __init__(self, expected: Any, acting: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="out-of-order",
            title="Out Of Order",
            detail=(
                f"The current approval step requires "
                f"'{getattr(expected, 'value', expected)}', not "
                f"'{getattr(acting, 'value', acting)}'."
            ),
        )


class NotAuthorized(AppException):
    """403 — actor is not entitled to act on this request."""

    def __init__(
        self,
        detail: str = "You are not entitled to act on this leave request.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="not-authorized",
            title="Not Authorized",
            detail=detail,
        )


class RequestAlreadyFinalized(AppException):
    """409 — the request is approved, rejected or cancelled."""

    def __init__(self, request_id: Any, status: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="request-already-finalized",
            title="Request Already Finalized",
            detail=(
                f"Leave request '{request_id}' is already "
                f"{getattr(status, 'value', status)}."
            ),
        )


class ConcurrentModification(AppException):
    """409 — a concurrent writer won the version check."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="concurrent-modification",
            title="Concurrent Modification",
            detail=f"{entity_type} '{entity_id}' was modified concurrently; reload and retry.",
        )


class CorruptBalance(AppException):
    """500 — ledger arithmetic went negative; needs an operator."""

    def __init__(self, balance_id: Any, detail: str) -> None:
        self.balance_id = balance_id
        super().__init__(
            status_code=500,
            error_type="corrupt-balance",
            title="Corrupt Balance",
            detail=f"Leave balance '{balance_id}': {detail}",
        )


class AlreadyProcessed(AppException):
    """409 — rollover for this (staff, period) already ran."""

    def __init__(self, staff_id: Any, period: int) -> None:
        self.staff_id = staff_id
        self.period = period
        super().__init__(
            status_code=409,
            error_type="already-processed",
            title="Already Processed",
            detail=f"Period {period} is already closed for staff '{staff_id}'.",
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
