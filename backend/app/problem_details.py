"""RFC 7807 Problem Details helpers."""
from __future__ import annotations

import logging
import traceback
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import settings
from .domain_errors import DomainError, MissingParameterError

logger = logging.getLogger(__name__)


def _problem_payload(*, code: str, http_status: int, detail: str) -> dict[str, object]:
    try:
        title = HTTPStatus(http_status).phrase
    except ValueError:
        title = "Domain Error"

    return {
        "type": f"https://api.production-orders.local/problems/{code.lower()}",
        "title": title,
        "status": http_status,
        "detail": detail,
        "code": code,
    }


def _problem_response(payload: dict[str, object], http_status: int) -> JSONResponse:
    return JSONResponse(
        status_code=http_status,
        content=payload,
        media_type="application/problem+json",
    )


def build_problem_details_response(exc: DomainError) -> JSONResponse:
    """Render DomainError as RFC 7807 payload with stable domain code."""
    payload = _problem_payload(code=exc.code, http_status=exc.http_status, detail=exc.message)
    if exc.details is not None:
        payload["details"] = exc.details
    return _problem_response(payload, exc.http_status)


def build_request_validation_response(exc: RequestValidationError, *, include_diagnostics: bool) -> JSONResponse:
    """Missing fields map to PARAMETER_MISSING, anything else to VALIDATION_ERROR."""
    errors = exc.errors()
    missing = [err for err in errors if err.get("type") == "missing"]
    if missing and len(missing) == len(errors):
        param = ".".join(str(part) for part in missing[0].get("loc", ()) if part != "body") or "body"
        return build_problem_details_response(MissingParameterError(param))

    payload = _problem_payload(code="VALIDATION_ERROR", http_status=422, detail="Validation failed")
    payload["errors"] = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in errors
    ]
    if include_diagnostics:
        payload["details"] = {"raw": [{k: str(v) for k, v in err.items()} for err in errors]}
    return _problem_response(payload, 422)


def build_internal_error_response(exc: Exception, *, include_diagnostics: bool) -> JSONResponse:
    """Generic 500; class and a short traceback only outside production."""
    if include_diagnostics:
        payload = _problem_payload(code="INTERNAL_ERROR", http_status=500, detail=str(exc) or exc.__class__.__name__)
        payload["details"] = {
            "class": exc.__class__.__name__,
            "backtrace": traceback.format_exception(type(exc), exc, exc.__traceback__)[-10:],
        }
    else:
        payload = _problem_payload(
            code="INTERNAL_ERROR",
            http_status=500,
            detail="An internal server error occurred",
        )
    return _problem_response(payload, 500)


def register_exception_handlers(app: FastAPI) -> None:
    """Translate domain and unexpected errors to problem+json responses."""

    @app.exception_handler(DomainError)
    async def _handle_domain_error(_: Request, exc: DomainError):
        return build_problem_details_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _handle_request_validation(_: Request, exc: RequestValidationError):
        return build_request_validation_response(exc, include_diagnostics=not settings.is_production)

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return build_internal_error_response(exc, include_diagnostics=not settings.is_production)
