import httpx
from fastapi.testclient import TestClient

from app.core.config import settings
from app.lib.brokers.capital import CapitalComGateway
from app.lib.brokers.factory import build_gateways
from main import app
from tests.conftest import bearer


def test_root_and_health(client):
    assert client.get("/").json()["message"] == "Forex Trading Gateway is running"

    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Process-Time" in response.headers


def test_unknown_route_uses_error_shape(client):
    response = client.get("/api/v1/nowhere")

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Resource not found"}


def test_malformed_json_is_400(client, capital_api):
    response = client.post(
        "/api/v1/capital/login", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["message"] == "Validation error"
    assert capital_api.requests == []


def test_wrongly_typed_field_is_400(client, capital_token):
    response = client.post(
        "/api/v1/capital/trade",
        json={"symbol": "EURUSD", "type": "buy", "volume": "a lot"},
        headers=bearer(capital_token),
    )

    assert response.status_code == 400
    assert any("volume" in e for e in response.json()["details"])


def test_build_gateways_without_metaapi_token_skips_mt5(monkeypatch):
    monkeypatch.setattr(settings, "METAAPI_TOKEN", None)

    gateways = build_gateways(settings, httpx.AsyncClient())

    assert list(gateways) == ["capital.com"]
    assert isinstance(gateways["capital.com"], CapitalComGateway)
    assert gateways["capital.com"].base_url == settings.capital_com_base_url.rstrip("/")


def test_lifespan_wires_gateways_and_reports_unconfigured_platform(monkeypatch):
    monkeypatch.setattr(settings, "METAAPI_TOKEN", None)

    with TestClient(app) as client:
        health = client.get("/health").json()
        assert health["gateways"] == {"capital.com": 0}

        response = client.post("/api/v1/mt5/login", json={"login": 1, "server": "s", "password": "p"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "mt5 gateway is not configured"}

    del app.state.gateways
