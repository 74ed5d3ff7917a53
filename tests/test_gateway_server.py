"""Tests for the REST API, settings and metrics."""

import json

import pytest
from fastapi.testclient import TestClient

from device_registry import DeviceRegistry
from gateway_models import InvalidArgumentError
from gateway_server import Metrics, Settings, create_app, load_settings_file, paginate, parse_args, resolve_page

API = "/api/v1"


@pytest.fixture
def client(registry: DeviceRegistry):
    app = create_app(Settings(), registry)
    with TestClient(app) as c:
        yield c


def _put_device(client: TestClient, device_id: str, **body) -> dict:
    r = client.put(f"{API}/devices/{device_id}", json=body)
    assert r.status_code == 200, r.text
    return r.json()["device"]


def _post_fault(client: TestClient, fault_id: str, **body) -> dict:
    body.setdefault("device_id", "d1")
    r = client.post(f"{API}/faults", json={"id": fault_id, **body})
    assert r.status_code == 200, r.text
    return r.json()["fault"]


def test_healthz_and_api_health(client: TestClient) -> None:
    assert client.get("/healthz").json()["ok"] is True

    _put_device(client, "d1")
    body = client.get(f"{API}/health").json()
    assert body == {"ok": True, "devices": 1, "faults": 0, "acs": "degraded"}


def test_device_crud(client: TestClient, registry: DeviceRegistry) -> None:
    device = _put_device(
        client, "d1", manufacturer="Acme", serial_number="SN1", tags=["lab"],
        parameters={"Device.DeviceInfo.UpTime": {"value": 12, "type": "xsd:unsignedInt"}},
    )
    assert device["tags"] == ["lab"]
    assert device["parameters"]["Device.DeviceInfo.UpTime"]["type"] == "xsd:unsignedInt"
    assert registry.get_device("d1").identity.serial_number == "SN1"

    got = client.get(f"{API}/devices/d1").json()
    assert got["device"]["manufacturer"] == "Acme"
    assert got["faults"] == []

    assert client.delete(f"{API}/devices/d1").json() == {"success": True}
    assert client.delete(f"{API}/devices/d1").status_code == 200
    assert client.get(f"{API}/devices/d1").status_code == 404


def test_list_devices_filters_and_pagination(client: TestClient) -> None:
    for i in range(1, 6):
        _put_device(client, f"d{i}", manufacturer="Acme" if i <= 3 else "Globex",
                    ip_address=f"10.0.0.{i}", online=i % 2 == 1)

    body = client.get(f"{API}/devices", params={"manufacturer": "Acme", "sort_by": "id", "sort_dir": "asc"}).json()
    assert [d["id"] for d in body["devices"]] == ["d1", "d2", "d3"]
    assert body["total"] == 3
    assert "parameters" not in body["devices"][0]

    body = client.get(f"{API}/devices", params={"online": "true", "sort_by": "id", "sort_dir": "asc"}).json()
    assert [d["id"] for d in body["devices"]] == ["d1", "d3", "d5"]

    body = client.get(f"{API}/devices", params={"start_ip": "10.0.0.2", "end_ip": "10.0.0.4",
                                                 "sort_by": "id", "sort_dir": "asc"}).json()
    assert [d["id"] for d in body["devices"]] == ["d2", "d3", "d4"]

    body = client.get(f"{API}/devices", params={"page": 2, "page_size": 2, "sort_by": "id", "sort_dir": "asc"}).json()
    assert [d["id"] for d in body["devices"]] == ["d3", "d4"]
    assert body["total"] == 5
    assert (body["page"], body["page_size"]) == (2, 2)


def test_list_devices_bad_input(client: TestClient) -> None:
    assert client.get(f"{API}/devices", params={"sort_by": "color"}).status_code == 400
    r = client.get(f"{API}/devices", params={"start_ip": "10.0.0.9", "end_ip": "10.0.0.1"})
    assert r.status_code == 400
    assert "error" in r.json()
    assert client.get(f"{API}/devices", params={"network": "nonsense"}).status_code == 400


def test_list_devices_rejects_partial_ip_range(client: TestClient) -> None:
    _put_device(client, "d1", ip_address="10.0.0.1")

    for params in (
        {"start_ip": "10.0.0.1"},
        {"end_ip": "10.0.0.9"},
        {"network": "10.0.0.0/24", "start_ip": "10.0.0.1"},
        {"network": "10.0.0.0/24", "start_ip": "10.0.0.1", "end_ip": "10.0.0.9"},
    ):
        r = client.get(f"{API}/devices", params=params)
        assert r.status_code == 400, params
        assert "error" in r.json()


def test_naive_timestamps_are_stored_as_utc(client: TestClient) -> None:
    """Timestamps without an offset are read as UTC; others are converted."""
    _put_device(client, "d1", manufacturer="Acme", model_name="X1", last_seen="2026-10-01T12:00:00")
    _put_device(client, "d2", manufacturer="Acme", model_name="X1",
                last_seen="2026-10-01T12:00:00+07:00", last_inform="2026-10-01T11:00:00")
    _post_fault(client, "f1", timestamp="2026-10-01T12:00:00")

    r = client.get(f"{API}/stats/devices")
    assert r.status_code == 200
    assert r.json()["summary"]["total"] == 2

    assert client.get(f"{API}/devices/d1").json()["device"]["last_seen"] == "2026-10-01T12:00:00+00:00"
    d2 = client.get(f"{API}/devices/d2").json()["device"]
    assert d2["last_seen"] == "2026-10-01T05:00:00+00:00"
    assert d2["last_inform"] == "2026-10-01T11:00:00+00:00"
    assert client.get(f"{API}/faults/f1").json()["fault"]["timestamp"] == "2026-10-01T12:00:00+00:00"

    assert client.get(f"{API}/devices", params={"sort_by": "last_seen"}).status_code == 200
    assert "2026-10-01T12:00:00+00:00" in client.get(f"{API}/export/devices").text


def test_device_online_and_tags(client: TestClient) -> None:
    _put_device(client, "d1", tags=["a"])

    r = client.put(f"{API}/devices/d1/online", json={"online": True})
    assert r.json() == {"device_id": "d1", "online": True}
    assert client.get(f"{API}/devices/d1").json()["device"]["connection_status"] == "connected"
    assert client.put(f"{API}/devices/ghost/online", json={"online": True}).status_code == 404

    r = client.put(f"{API}/devices/d1/tags", json={"tags": ["b"], "operation": "add"})
    assert r.json()["tags"] == ["a", "b"]
    r = client.put(f"{API}/devices/d1/tags", json={"tags": ["z"]})
    assert r.json()["tags"] == ["z"]
    assert client.put(f"{API}/devices/d1/tags", json={"tags": ["z"], "operation": "merge"}).status_code == 400
    assert client.put(f"{API}/devices/ghost/tags", json={"tags": ["z"]}).status_code == 404


def test_bulk_tags_status_codes(client: TestClient) -> None:
    _put_device(client, "d1")
    _put_device(client, "d2")

    r = client.put(f"{API}/bulk/devices/tags", json={"device_ids": ["d1", "d2"], "tags": ["x"]})
    assert r.status_code == 200
    assert r.json()["successful"] == 2

    r = client.put(f"{API}/bulk/devices/tags", json={"device_ids": ["d1", "ghost"], "tags": ["y"]})
    assert r.status_code == 206
    assert r.json()["failed"] == 1
    assert r.json()["errors"] == ["ghost: device not found"]

    r = client.put(f"{API}/bulk/devices/tags", json={"device_ids": ["ghost"], "tags": ["y"]})
    assert r.status_code == 404

    r = client.put(f"{API}/bulk/devices/tags", json={"device_ids": ["d1"], "tags": ["y"], "operation": "merge"})
    assert r.status_code == 400

    assert client.get(f"{API}/devices/d1").json()["device"]["tags"] == ["x", "y"]


def test_fault_lifecycle_over_http(client: TestClient) -> None:
    fault = _post_fault(client, "f1", code="9012", message="auth failure")
    assert fault["severity"] == "critical"
    assert fault["status"] == "active"

    r = client.put(f"{API}/faults/missing/acknowledge", json={"acknowledged_by": "bob"})
    assert r.status_code == 404

    r = client.put(f"{API}/faults/f1/acknowledge", json={"acknowledged_by": "bob"})
    assert r.status_code == 200
    assert r.json()["fault"]["acknowledged"]["actor"] == "bob"

    r = client.put(f"{API}/faults/f1/acknowledge", json={"acknowledged_by": "carol"})
    assert r.status_code == 409

    r = client.put(f"{API}/faults/f1/resolve", json={"resolved_by": "alice"})
    assert r.status_code == 200
    assert r.json()["fault"]["status"] == "resolved"

    assert client.put(f"{API}/faults/f1/resolve", json={"resolved_by": "alice"}).status_code == 409
    assert client.put(f"{API}/faults/f1/acknowledge", json={"acknowledged_by": ""}).status_code == 422


def test_fault_get_and_list(client: TestClient) -> None:
    _put_device(client, "d1", serial_number="SN1", model_name="X1", manufacturer="Acme")
    _post_fault(client, "f1", severity="minor", channel="cwmp")
    _post_fault(client, "f2", device_id="d2", severity="major")

    got = client.get(f"{API}/faults/f1").json()
    assert got["fault"]["severity"] == "minor"
    assert got["device"] == {"id": "d1", "serial_number": "SN1", "model_name": "X1", "manufacturer": "Acme"}
    assert "device" not in client.get(f"{API}/faults/f2").json()
    assert client.get(f"{API}/faults/f9").status_code == 404

    body = client.get(f"{API}/faults", params={"severity": "major"}).json()
    assert [f["id"] for f in body["faults"]] == ["f2"]
    assert client.get(f"{API}/devices/d1/faults").json()["total"] == 1


def test_fault_post_rejects_unknown_severity(client: TestClient) -> None:
    r = client.post(f"{API}/faults", json={"id": "f1", "severity": "apocalyptic"})
    assert r.status_code == 400


def test_delete_fault_requires_force_when_active(client: TestClient) -> None:
    _post_fault(client, "f1")
    _post_fault(client, "f2")
    client.put(f"{API}/faults/f2/acknowledge", json={"acknowledged_by": "bob"})

    assert client.delete(f"{API}/faults/f1").status_code == 400
    assert client.delete(f"{API}/faults/f1", params={"force": "true"}).status_code == 200
    assert client.get(f"{API}/faults/f1").json()["fault"]["status"] == "expired"

    assert client.delete(f"{API}/faults/f2").status_code == 200
    assert client.delete(f"{API}/faults/f2").status_code == 409
    assert client.delete(f"{API}/faults/ghost").status_code == 404


def test_stats_endpoints(client: TestClient) -> None:
    _put_device(client, "d1", manufacturer="Acme", model_name="X1", online=True)
    _put_device(client, "d2", manufacturer="Acme", model_name="X2")
    _put_device(client, "d3", manufacturer="Globex", model_name="G1")
    _post_fault(client, "f1", severity="critical")
    _post_fault(client, "f2", severity="minor", status="resolved")

    overview = client.get(f"{API}/stats/overview").json()
    assert overview["devices"]["total"] == 3
    assert overview["devices"]["online"] == 1
    assert overview["devices"]["by_vendor"] == {"Acme": 2, "Globex": 1}
    assert overview["faults"]["total"] == 1
    assert overview["faults"]["critical"] == 1
    assert overview["faults"]["minor"] == 0

    devices = client.get(f"{API}/stats/devices").json()
    assert devices["summary"] == {"total": 3, "online": 1, "offline": 2}
    assert devices["top_vendors"][0] == {"name": "Acme", "count": 2}
    assert devices["vendor_models"]["Acme"] == {"X1": 1, "X2": 1}

    faults = client.get(f"{API}/stats/faults").json()
    assert faults["total"] == 1
    assert faults["recent"][0]["id"] == "f1"


def test_stats_reflect_mutations_immediately(client: TestClient) -> None:
    _put_device(client, "d1")
    assert client.get(f"{API}/stats/overview").json()["devices"]["total"] == 1
    _put_device(client, "d2")
    assert client.get(f"{API}/stats/overview").json()["devices"]["total"] == 2


def test_system_status_roundtrip(client: TestClient) -> None:
    assert client.get(f"{API}/system/status").json()["status"] == "degraded"

    r = client.put(f"{API}/system/status", json={"cwmp_connected": True, "nbi_connected": True})
    assert r.status_code == 200
    assert r.json()["last_check"] is not None

    status = client.get(f"{API}/system/status").json()
    assert status["status"] == "operational"
    assert status["services"]["fs"] == {"connected": False}
    assert "last_error" not in status

    client.put(f"{API}/system/status", json={"nbi_connected": True, "last_error": "cwmp unreachable"})
    status = client.get(f"{API}/system/status").json()
    assert status["status"] == "degraded"
    assert status["last_error"] == "cwmp unreachable"


def test_system_config_hides_credentials(registry: DeviceRegistry) -> None:
    settings = Settings(acs_username="admin", acs_password="secret")
    with TestClient(create_app(settings, registry)) as c:
        body = c.get(f"{API}/system/config").json()
    assert "acs_password" not in body
    assert "acs_username" not in body
    assert body["stats_ttl_seconds"] == 60.0
    assert "secret" not in json.dumps(body)


def test_export_csv(client: TestClient) -> None:
    _put_device(client, "d1", serial_number="SN1", tags=["b", "a"], online=True)
    _post_fault(client, "f1", code="9002", message="internal, error")
    _post_fault(client, "f2", status="resolved")

    r = client.get(f"{API}/export/devices")
    assert r.headers["content-type"].startswith("text/csv")
    assert "devices.csv" in r.headers["content-disposition"]
    lines = r.text.splitlines()
    assert lines[0].startswith("ID,Serial Number,Manufacturer")
    assert lines[1].startswith("d1,SN1,")
    assert lines[1].endswith("a;b")

    lines = client.get(f"{API}/export/faults").text.splitlines()
    assert len(lines) == 2
    assert '"internal, error"' in lines[1]


def test_metrics_counts_requests(client: TestClient) -> None:
    _put_device(client, "d1")
    client.get(f"{API}/devices/ghost")

    text = client.get("/metrics").text
    assert "device_upserts_total 1" in text
    assert "responses_4xx_total 1" in text
    assert "# TYPE http_requests_total counter" in text


def test_metrics_disabled(registry: DeviceRegistry) -> None:
    with TestClient(create_app(Settings(enable_metrics=False), registry)) as c:
        assert c.get("/metrics").status_code == 404


def test_custom_api_prefix(registry: DeviceRegistry) -> None:
    with TestClient(create_app(Settings(api_prefix="/gw"), registry)) as c:
        assert c.get("/gw/health").status_code == 200
        assert c.get(f"{API}/health").status_code == 404


def test_metrics_class() -> None:
    m = Metrics()
    m.inc("fault_resolved_total")
    m.inc("fault_resolved_total", 2)
    m.inc("not_a_counter")
    assert m.get_all()["fault_resolved_total"] == 3
    assert "not_a_counter" not in m.get_all()


def test_resolve_page_falls_back_to_defaults() -> None:
    settings = Settings()
    assert resolve_page(None, None, settings) == (1, 20)
    assert resolve_page(0, -5, settings) == (1, 20)
    assert resolve_page(3, 100, settings) == (3, 100)
    assert resolve_page(3, 101, settings) == (3, 20)


def test_paginate_past_end_is_empty() -> None:
    items = list(range(5))
    assert paginate(items, 1, 2) == [0, 1]
    assert paginate(items, 3, 2) == [4]
    assert paginate(items, 4, 2) == []


def test_parse_args_defaults() -> None:
    settings = parse_args([])
    assert settings.port == 8080
    assert settings.api_prefix == "/api/v1"
    assert settings.stats_ttl_seconds == 60.0
    assert settings.enable_metrics is True


def test_parse_args_config_file_and_override(tmp_path) -> None:
    cfg = tmp_path / "gateway.json"
    cfg.write_text(json.dumps({"port": 9000, "stats_ttl_seconds": 5, "enable_metrics": False}))

    settings = parse_args(["--config", str(cfg)])
    assert settings.port == 9000
    assert settings.stats_ttl_seconds == 5
    assert settings.enable_metrics is False

    settings = parse_args(["--config", str(cfg), "--port", "9100"])
    assert settings.port == 9100


def test_parse_args_rejects_bad_values(tmp_path) -> None:
    with pytest.raises(SystemExit):
        parse_args(["--default-page-size", "500"])

    cfg = tmp_path / "bad.json"
    cfg.write_text(json.dumps({"colour": "blue"}))
    with pytest.raises(SystemExit):
        parse_args(["--config", str(cfg)])


def test_load_settings_file_errors(tmp_path) -> None:
    not_object = tmp_path / "list.json"
    not_object.write_text("[1, 2]")
    with pytest.raises(InvalidArgumentError):
        load_settings_file(str(not_object))

    unknown = tmp_path / "unknown.json"
    unknown.write_text(json.dumps({"port": 1, "bogus": True}))
    with pytest.raises(InvalidArgumentError, match="bogus"):
        load_settings_file(str(unknown))
