from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from segheria.domain_errors import DomainError, not_found, store_failure
from segheria.problem_details import build_problem_details_response, domain_error_handler


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        DomainError(
            code="LINE_CONFLICT",
            http_status=409,
            message="carico in conflitto",
            details={"line_id": 7},
        )
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.segheria.local/problems/line_conflict"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"carico in conflitto"' in body
    assert '"code":"LINE_CONFLICT"' in body
    assert '"details":{"line_id":7}' in body


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(
        DomainError(
            code="NO_DETAILS",
            http_status=422,
            message="validation failed",
            details=None,
        )
    )

    body = response.body.decode("utf-8")
    assert response.status_code == 422
    assert '"code":"NO_DETAILS"' in body
    assert '"details"' not in body


def test_error_helpers_map_to_http_status() -> None:
    missing = not_found("LINE_NOT_FOUND", "Carico non trovato", line_id=3)
    failed = store_failure("LINE_UPDATE_FAILED", "Impossibile aggiornare")

    assert (missing.http_status, missing.details) == (404, {"line_id": 3})
    assert (failed.http_status, failed.details) == (500, None)
    assert str(missing) == "Carico non trovato"


def test_fastapi_exception_handler_maps_domain_error_to_problem_details() -> None:
    app = FastAPI()
    app.add_exception_handler(DomainError, domain_error_handler)

    @app.get("/boom")
    def _boom():
        raise DomainError(
            code="GROUP_UPDATE_FAILED",
            http_status=500,
            message="Impossibile raggruppare i carichi",
            details={"line_ids": [1, 2]},
        )

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "GROUP_UPDATE_FAILED"
    assert payload["detail"] == "Impossibile raggruppare i carichi"
    assert payload["details"] == {"line_ids": [1, 2]}
