import pytest
from fastapi.testclient import TestClient

from wagateway.config import Settings
from wagateway.core.manager import ProviderManager
from wagateway.domain.models import ProviderConfig
from wagateway.providers.evolution import EvolutionProvider
from wagateway.server.app import create_app

from conftest import make_vendor

HEADERS = {"x-api-key": "k1"}


@pytest.fixture
def gateway():
    vendor = make_vendor()
    provider = EvolutionProvider(vendor, ProviderConfig(name="evolution"))
    manager = ProviderManager(health_check_interval=0)
    manager.register(provider)
    settings = Settings(_env_file=None, client_api_keys=["k1"], json_logs=False)
    # no context manager: startup would call out to the vendor health check
    client = TestClient(create_app(settings, manager))
    return client, vendor, provider


def test_healthz(gateway):
    client, _, _ = gateway
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_instance_routes_require_api_key(gateway):
    client, _, _ = gateway
    assert client.get("/instances").status_code == 401
    assert client.get("/instances", headers={"x-api-key": "wrong"}).status_code == 401
    assert client.get("/instances", headers=HEADERS).json() == {"instances": []}


def test_connect_send_and_status(gateway):
    client, vendor, _ = gateway
    r = client.post("/instances/inst-1/connect", json={"business_id": "biz-1"}, headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["kind"] == "status"
    assert r.json()["status"]["state"] == "connected"

    r = client.post("/instances/inst-1/messages", json={"to": "5511999", "text": "hi"}, headers=HEADERS)
    assert r.json()["result"]["status"] == "sent"
    assert r.json()["result"]["id"] == "wamid-text"

    r = client.get("/instances/inst-1/status", headers=HEADERS)
    assert r.json()["status"]["state"] == "connected"
    assert client.get("/instances/ghost/status", headers=HEADERS).status_code == 404


def test_connect_new_instance_returns_qrcode(gateway):
    client, _, _ = gateway
    r = client.post("/instances/inst-2/connect", json={"business_id": "biz-1"}, headers=HEADERS)
    assert r.json()["kind"] == "qrcode"
    assert r.json()["qrcode"]["url"] == "data:image/png;base64,UVJDT0RF"


def test_connect_failure_maps_to_503(gateway):
    client, vendor, _ = gateway
    vendor.fetch_instances.side_effect = RuntimeError("down")
    r = client.post("/instances/inst-1/connect", json={"business_id": "biz-1"}, headers=HEADERS)
    assert r.status_code == 503
    assert r.json()["ok"] is False


def test_webhook_delivers_to_registered_handler(gateway):
    client, _, provider = gateway
    got = []
    provider.on_message("inst-1", got.append)
    payload = {"event": "MESSAGES_UPSERT", "data": {"messages": [
        {"id": "m1", "remoteJid": "5511999@s.whatsapp.net", "conversation": "hi"},
    ]}}
    r = client.post("/webhook/whatsapp/inst-1", json=payload)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "delivered": True}
    assert got[0].body == "hi"


def test_webhook_event_taken_from_path(gateway):
    client, _, provider = gateway
    got = []
    provider.on_status_change("inst-1", got.append)
    r = client.post("/webhook/whatsapp/inst-1/connection-update", json={"data": {"state": "open"}})
    assert r.json()["delivered"] is True
    assert got[0].is_connected


@pytest.mark.parametrize("body", [b"not json", b"[]", b'{"event": "PRESENCE_UPDATE"}', b""])
def test_webhook_always_acknowledges(gateway, body):
    client, _, _ = gateway
    r = client.post("/webhook/whatsapp/inst-1", content=body)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "delivered": False}


def test_entry_point_runs_uvicorn_from_settings(monkeypatch):
    from wagateway import __main__ as entry

    calls = {}
    settings = Settings(_env_file=None, port=9911, json_logs=False, health_check_interval_s=0)
    monkeypatch.setattr(entry, "load_settings", lambda: settings)
    monkeypatch.setattr(entry.uvicorn, "run", lambda app, **kw: calls.update(kw, app=app))
    entry.main()
    assert calls["port"] == 9911
    assert calls["access_log"] is False
    assert calls["app"].state.manager.providers()[0].name == "evolution"


def test_connected_instance_state_follows_webhook_pushes(gateway):
    client, _, _ = gateway
    client.post("/instances/inst-1/connect", json={"business_id": "biz-1"}, headers=HEADERS)
    r = client.post("/webhook/whatsapp/inst-1", json={"event": "CONNECTION_UPDATE", "data": {"state": "close"}})
    assert r.json() == {"ok": True, "delivered": True}
    listed = client.get("/instances", headers=HEADERS).json()["instances"]
    assert listed[0]["status"]["state"] == "disconnected"
