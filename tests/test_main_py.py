import base64
import importlib.util
import os

import pytest
from fastapi.testclient import TestClient

from sgr import db
from sgr.firewall import SqliteFirewall
from sgr.settings import load_settings


def _import_main_module(project_root):
    """Import main.py as a module without requiring it to be installed as a package."""
    main_path = os.path.join(project_root, "main.py")
    spec = importlib.util.spec_from_file_location("sgr_main", main_path)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # type: ignore[attr-defined]
    return mod


def _basic_auth(user: str, password: str) -> dict:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def main(monkeypatch, node_env):
    # Drive the reconciler through the API only; no background loop.
    monkeypatch.setenv("SGR_ENABLE_SCHEDULER", "false")
    monkeypatch.setenv("SGR_ADMIN_PASSWORD", "s3cret")
    project_root = os.path.dirname(os.path.dirname(__file__))
    mod = _import_main_module(project_root)
    monkeypatch.setattr(mod, "settings", load_settings())
    return mod


@pytest.fixture
def auth():
    return _basic_auth("admin", "s3cret")


def test_health_and_self_registration(main):
    with TestClient(main.app) as client:
        assert client.get("/health").json() == {"status": "healthy"}

        members = client.get("/members").json()
        assert members == [
            {
                "instance_id": "i-local",
                "app_id": "cass_cluster",
                "region": "us-east-1",
                "hostname": "10.0.0.1",
                "host_ip": "1.2.3.4",
            }
        ]


def test_mutating_routes_require_basic_auth(main, auth):
    payload = {"instance_id": "i-2", "region": "us-west-2", "hostname": "10.0.0.2", "host_ip": "5.6.7.8"}
    with TestClient(main.app) as client:
        assert client.post("/members", json=payload).status_code == 401
        assert client.post("/members", json=payload, headers=_basic_auth("admin", "wrong")).status_code == 401
        assert client.post("/reconcile", headers=_basic_auth("admin", "wrong")).status_code == 401

        r = client.post("/members", json=payload, headers=auth)
        assert r.status_code == 201
        assert r.json()["app_id"] == "cass_cluster"


def test_register_validates_addresses(main, auth):
    with TestClient(main.app) as client:
        bad_ip = {"instance_id": "i-2", "region": "us-west-2", "hostname": "10.0.0.2", "host_ip": "not-an-ip"}
        assert client.post("/members", json=bad_ip, headers=auth).status_code == 422
        bad_host = {"instance_id": "i-2", "region": "us-west-2", "hostname": "bad host!", "host_ip": "5.6.7.8"}
        assert client.post("/members", json=bad_host, headers=auth).status_code == 422


def test_reconcile_then_shutdown_evicts_own_ranges(main, auth):
    far = {"instance_id": "i-2", "region": "us-west-2", "hostname": "10.0.0.2", "host_ip": "5.6.7.8"}
    with TestClient(main.app) as client:
        client.post("/members", json=far, headers=auth)

        r = client.post("/reconcile", headers=auth)
        assert r.status_code == 200
        body = r.json()
        assert body["added"] == ["1.2.3.4/32", "10.0.0.1/32", "5.6.7.8/32"]
        assert body["removed"] == []
        assert body["bootstrapped"] is True

        acl = client.get("/acl").json()
        assert acl == {"from_port": 7000, "to_port": 7001, "ranges": ["1.2.3.4/32", "10.0.0.1/32", "5.6.7.8/32"]}

        assert client.post("/reconcile", headers=auth).json()["added"] == []

        (job,) = client.get("/jobs").json()
        assert job["name"] == "update-security-group"
        assert job["runs"] == 2
        assert job["periodic"] is False

    assert SqliteFirewall().list_acl(7000, 7001) == {"5.6.7.8/32"}
    assert [m.instance_id for m in main.registry.list_members("cass_cluster")] == ["i-2"]


def test_departed_member_is_revoked_through_api(main, auth):
    far = {"instance_id": "i-2", "region": "us-west-2", "hostname": "10.0.0.2", "host_ip": "5.6.7.8"}
    with TestClient(main.app) as client:
        client.post("/members", json=far, headers=auth)
        client.post("/reconcile", headers=auth)

        assert client.delete("/members/i-2", headers=auth).status_code == 200
        assert client.delete("/members/i-2", headers=auth).status_code == 404

        body = client.post("/reconcile", headers=auth).json()
        assert body["removed"] == ["5.6.7.8/32"]


def test_reconcile_route_never_evicts_a_live_node(main, auth):
    with TestClient(main.app) as client:
        client.post("/reconcile", headers=auth)
        # Extra body fields are ignored; the route always reconciles as RUNNING.
        body = client.post("/reconcile", json={"stopping": True}, headers=auth).json()
        assert body["removed"] == []
        for _ in range(3):
            client.post("/reconcile", headers=auth)
        assert client.get("/acl").json()["ranges"] == ["1.2.3.4/32", "10.0.0.1/32"]

    assert SqliteFirewall().list_acl(7000, 7001) == set()


def test_value_errors_map_to_bad_request(main, auth, monkeypatch):
    def broken(*args, **kwargs):
        raise ValueError("bad port interval")

    with TestClient(main.app) as client:
        monkeypatch.setattr(main.firewall, "list_acl", broken)
        r = client.get("/acl")
        assert r.status_code == 400
        assert r.json()["detail"] == "bad port interval"
        assert client.post("/reconcile", headers=auth).status_code == 400


def test_shutdown_closes_the_firewall_client(main, monkeypatch):
    closed = []
    monkeypatch.setattr(main.firewall, "close", lambda: closed.append(True))
    with TestClient(main.app):
        assert closed == []
    assert closed == [True]


def test_properties_show_up_in_config(main, auth):
    with TestClient(main.app) as client:
        r = client.put("/properties", json={"property": "acl_interval_s", "value": "300"}, headers=auth)
        assert r.status_code == 200
        assert r.json()["app_id"] == "cass_cluster"

        cfg = client.get("/config").json()
        assert cfg["node"]["acl_interval_s"] == "300"
        assert cfg["node"]["region"] == "us-east-1"
        assert "admin_password" not in cfg["node"]
        assert cfg["sources"][0].startswith("EnvConfigSource")


def test_events_endpoint(main, auth):
    with TestClient(main.app) as client:
        client.post("/reconcile", headers=auth)
        events = client.get("/events", params={"limit": 5}).json()
        assert 0 < len(events) <= 5
        assert any(e["job"] == "update-security-group" for e in events)


def test_events_are_written_to_the_isolated_db(main, sgr_db):
    with TestClient(main.app):
        pass
    assert os.path.exists(sgr_db)
    assert any(e["message"].startswith("Registered i-local") for e in db.latest_events(50))
