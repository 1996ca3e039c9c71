from __future__ import annotations


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_healthz_reports_sweep_state(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    # the background sweep is disabled for the test run
    assert response.json() == {"status": "ok", "notification_sweep": False}


def test_metrics_endpoint(client):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
