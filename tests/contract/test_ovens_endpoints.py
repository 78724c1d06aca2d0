"""
Contract tests for the /ovens endpoints.

Start and stop return a CommandResult body; rejected commands carry the
error code with a matching HTTP status.
"""

import asyncio
from datetime import datetime

import pytest


START_BODY = {"order_number": "ORD-1", "operation": "Colle Blanche", "quantity": 12}


@pytest.mark.contract
def test_state_of_idle_oven(client):
    response = client.get("/ovens/oven1/state")

    assert response.status_code == 200
    assert response.json() == {"status": "idle", "temperature": None}


@pytest.mark.contract
def test_state_reflects_live_temperature(client, api_controller):
    api_controller.handle_line('{"temp1": 181.25, "temp2": 99}')

    assert client.get("/ovens/oven1/state").json()["temperature"] == 181.25
    assert client.get("/ovens/oven2/temperature").json() == {"oven_id": "oven2", "temperature": 99.0}


@pytest.mark.contract
def test_unknown_oven(client):
    assert client.get("/ovens/oven3/state").status_code == 422
    assert client.post("/ovens/oven3/start", json=START_BODY).status_code == 422


@pytest.mark.contract
def test_start_returns_command_result(client):
    response = client.post("/ovens/oven1/start", json=START_BODY)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "error": None}
    assert client.get("/ovens/oven1/state").json()["status"] == "running"
    assert client.get("/ovens/oven2/state").json()["status"] == "idle"


@pytest.mark.contract
def test_start_twice_conflicts(client):
    client.post("/ovens/oven1/start", json=START_BODY)

    response = client.post("/ovens/oven1/start", json={**START_BODY, "order_number": "ORD-2"})

    assert response.status_code == 409
    assert response.json() == {"ok": False, "error": "already_running"}


@pytest.mark.contract
@pytest.mark.parametrize("body", [
    {**START_BODY, "order_number": "   "},
    {**START_BODY, "operation": ""},
    {**START_BODY, "quantity": -1},
    {"order_number": "ORD-1", "operation": "Colle Blanche"},
    {**START_BODY, "quantity": "lots"},
])
def test_start_rejects_invalid_body(client, body):
    response = client.post("/ovens/oven2/start", json=body)

    assert response.status_code == 422
    assert client.get("/ovens/oven2/state").json()["status"] == "idle"


@pytest.mark.contract
def test_stop_idle_conflicts(client):
    response = client.post("/ovens/oven2/stop")

    assert response.status_code == 409
    assert response.json() == {"ok": False, "error": "not_running"}


@pytest.mark.contract
def test_stop_writes_final_record(client, api_controller):
    client.post("/ovens/oven1/start", json=START_BODY)
    api_controller.handle_line('{"temp1": 60}')
    api_controller.handle_line('{"temp1": 62}')

    response = client.post("/ovens/oven1/stop")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "error": None}

    records = client.get("/products/ORD-1/temperatures").json()
    assert len(records) == 1
    assert records[0]["oven_id"] == "oven1"
    assert records[0]["temperature"] == 61.0


@pytest.mark.contract
def test_active_session_view(client, api_controller):
    idle = client.get("/ovens/oven2/session").json()
    assert idle["is_running"] is False
    assert idle["product_id"] is None

    client.post("/ovens/oven2/start", json={**START_BODY, "order_number": "ORD-77", "quantity": 3})
    api_controller.handle_line('{"temp2": 140.5}')

    session = client.get("/ovens/oven2/session").json()
    assert session["is_running"] is True
    assert session["product_id"] == "ORD-77"
    assert session["operation"] == "Colle Blanche"
    assert session["quantity"] == 3
    assert session["temperature"] == 140.5
    datetime.fromisoformat(session["start_time"].replace("Z", "+00:00"))


@pytest.mark.contract
def test_storage_unavailable(client, api_store):
    asyncio.run(api_store.close())

    response = client.post("/ovens/oven1/start", json=START_BODY)

    assert response.status_code == 503
    assert response.json() == {"ok": False, "error": "storage_unavailable"}
    assert client.get("/ovens/oven1/state").json()["status"] == "idle"


@pytest.mark.contract
def test_every_error_code_has_http_status():
    from oven_monitor.lib.api_server import ERROR_STATUS
    from oven_monitor.models import ErrorCode

    assert set(ERROR_STATUS) == set(ErrorCode)
    assert ERROR_STATUS[ErrorCode.INVALID_REQUEST] == 400
