from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from app.domain_errors import DomainError, MissingParameterError, NotFoundError, ValidationError
from app.problem_details import build_problem_details_response, register_exception_handlers


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        DomainError(
            code="PROBE_ERROR",
            http_status=409,
            message="probe failed",
            details={"probe": True},
        )
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.production-orders.local/problems/probe_error"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"probe failed"' in body
    assert '"code":"PROBE_ERROR"' in body
    assert '"details":{"probe":true}' in body


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(NotFoundError("Production order not found", code="ORDER_NOT_FOUND"))

    body = response.body.decode("utf-8")
    assert response.status_code == 404
    assert '"code":"ORDER_NOT_FOUND"' in body
    assert '"details"' not in body


def test_validation_error_lists_field_errors() -> None:
    response = build_problem_details_response(ValidationError.single("deadline", "can't be blank"))

    body = response.body.decode("utf-8")
    assert response.status_code == 422
    assert '"code":"VALIDATION_ERROR"' in body
    assert '"errors":[{"field":"deadline","message":"can\'t be blank"}]' in body


def test_missing_parameter_maps_to_400() -> None:
    response = build_problem_details_response(MissingParameterError("email"))

    assert response.status_code == 400
    assert '"code":"PARAMETER_MISSING"' in response.body.decode("utf-8")


class _Probe(BaseModel):
    name: str
    count: int


def _app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    def _boom():
        raise DomainError(
            code="ROUTE_PROBLEM",
            http_status=409,
            message="route failed",
            details={"source": "test"},
        )

    @app.get("/crash")
    def _crash():
        raise RuntimeError("kaboom")

    @app.post("/probe")
    def _probe(payload: _Probe):
        return payload

    return app


def test_registered_handler_maps_domain_error_to_problem_details() -> None:
    client = TestClient(_app())
    response = client.get("/boom")

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "ROUTE_PROBLEM"
    assert payload["detail"] == "route failed"


def test_request_validation_distinguishes_missing_from_invalid() -> None:
    client = TestClient(_app())

    missing = client.post("/probe", json={"count": 1})
    invalid = client.post("/probe", json={"name": "x", "count": "many"})

    assert missing.status_code == 400
    assert missing.json()["code"] == "PARAMETER_MISSING"
    assert missing.json()["details"] == {"param": "name"}
    assert invalid.status_code == 422
    assert invalid.json()["errors"][0]["field"] == "count"


def test_unexpected_errors_become_internal_error() -> None:
    client = TestClient(_app(), raise_server_exceptions=False)

    response = client.get("/crash")

    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"
