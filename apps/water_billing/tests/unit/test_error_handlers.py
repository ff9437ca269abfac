from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from water_billing.api.error_handlers import register_error_handlers
from water_billing.domain.errors import (
    BatchConflictError,
    LedgerServerError,
    LedgerTimeoutError,
)


def test_domain_error_handler_returns_contract_shape() -> None:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/boom")
    def boom() -> None:
        raise BatchConflictError(message="Region A is busy")

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 409
    assert response.json() == {
        "code": "BATCH_CONFLICT",
        "message": "Region A is busy",
    }


def test_ledger_timeout_maps_to_gateway_timeout() -> None:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/slow")
    def slow() -> None:
        raise LedgerTimeoutError(details={"path": "v2/wrls/bill-runs"})

    client = TestClient(app)
    response = client.get("/slow")

    assert response.status_code == 504
    payload = response.json()
    assert payload["code"] == "LEDGER_TIMEOUT"
    assert payload["details"] == {"path": "v2/wrls/bill-runs"}


def test_unexpected_error_is_hidden_behind_internal_error() -> None:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/crash")
    def crash() -> None:
        raise RuntimeError("database password in message")

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/crash")

    assert response.status_code == 500
    payload = response.json()
    assert payload["code"] == "INTERNAL_SERVER_ERROR"
    assert payload["details"] == {"error_type": "RuntimeError"}
    assert "password" not in payload["message"]


def test_ledger_outage_asks_clients_to_retry_later() -> None:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/ledger")
    def ledger() -> None:
        raise LedgerServerError()

    client = TestClient(app)
    response = client.get("/ledger")

    assert response.status_code == 502
    assert response.headers["retry-after"] == "30"
    assert response.json()["code"] == "LEDGER_SERVER_ERROR"
    assert "details" not in response.json()
