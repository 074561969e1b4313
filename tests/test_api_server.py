import sys
import runpy

import pytest

from circuiter import api_server
from circuiter.network_optimizer import OptimizationResult, STATUS_CANCELLED


@pytest.fixture
def client():
    api_server.app.config["TESTING"] = True
    with api_server.app.test_client() as client:
        yield client


def _payload():
    devices = [{"id": f"L2-{i}", "level": "Level 2", "currentA": 0.3, "x": i} for i in range(10)]
    devices += [{"id": f"V-{i}", "level": "Villa 1", "currentA": 0.2} for i in range(2)]
    return {"devices": devices, "auxiliaryLoads": [{"currentA": 0.5, "blocksRequired": 1}]}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


def test_optimize(client):
    response = client.post("/api/optimize", json=_payload())

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["metadata"]["total_devices"] == 12
    assert body["metadata"]["devices_allocated"] == 10
    assert body["metadata"]["branches_created"] == 2
    assert body["data"]["cabinet"]["amplifier_blocks"] == 1
    assert len(body["data"]["branches"]) == 2


def test_optimize_without_body(client):
    response = client.post("/api/optimize")
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_optimize_missing_devices(client):
    response = client.post("/api/optimize", json={"policy": {"currentLimitA": 3.0}})

    assert response.status_code == 400
    body = response.get_json()
    assert body["error_type"] == "ValidationError"
    assert "devices" in body["error"]


def test_optimize_bad_policy(client):
    payload = _payload()
    payload["policy"] = {"spareFraction": 2}

    response = client.post("/api/optimize", json=payload)

    assert response.status_code == 400


def test_cancelled_run_is_a_conflict(client, monkeypatch):
    class CancelledOptimizer:
        def __init__(self, *args, **kwargs):
            pass

        def optimize(self):
            return OptimizationResult(status=STATUS_CANCELLED)

    monkeypatch.setattr(api_server, "NotificationNetworkOptimizer", CancelledOptimizer)

    response = client.post("/api/optimize", json=_payload())

    assert response.status_code == 409
    assert response.get_json()["error_type"] == "Cancelled"


def test_unexpected_error_is_a_server_error(client, monkeypatch):
    class BrokenOptimizer:
        def __init__(self, *args, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr(api_server, "NotificationNetworkOptimizer", BrokenOptimizer)

    response = client.post("/api/optimize", json=_payload())

    assert response.status_code == 500
    body = response.get_json()
    assert body["error_type"] == "ServerError"
    assert "traceback" in body


def test_validate(client):
    response = client.post("/api/validate", json=_payload())

    assert response.status_code == 200
    validation = response.get_json()["validation"]
    assert validation["total_devices"] == 12
    assert validation["excluded_devices"] == 2
    assert validation["estimated_idnacs"] == 2
    assert validation["level_analysis"]["Level 2"]["idnacs_required"] == 2


def test_server_module_runs_by_module_name(monkeypatch):
    # Same loader as "python -m circuiter.api_server", without starting the server
    monkeypatch.delitem(sys.modules, "circuiter.api_server")
    namespace = runpy.run_module("circuiter.api_server", run_name="circuiter_api_server")

    app = namespace["app"]
    assert {rule.rule for rule in app.url_map.iter_rules()} >= {"/health", "/api/optimize", "/api/validate"}
