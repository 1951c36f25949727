"""
End-to-end tests for /api/data through the FastAPI app and the in-memory store.
"""

import re

import pytest

from conftest import ALLOWED_ORIGINS, API_KEYS, FIXED_NOW

ID_PATTERN = re.compile(r"^\d+-[0-9a-z]+$")


def auth(role):
    return {"x-api-key": API_KEYS[role]}


@pytest.mark.integration
class TestRecordLifecycle:

    def test_post_then_get_round_trip(self, client):
        posted = {"name": "loc1", "utility": "PSEG", "annualKwh": 120000}
        resp = client.post("/api/data/energy-profiles.json", json=posted, headers=auth("ae"))
        assert resp.status_code == 201
        record = resp.json()["record"]

        fetched = client.get(f"/api/data/energy-profiles.json/{record['id']}", headers=auth("ae"))
        assert fetched.status_code == 200
        assert fetched.json() == {**posted, "id": record["id"], "createdAt": FIXED_NOW, "createdBy": "ae"}

    def test_post_creates_one_element_array(self, client, store):
        resp = client.post("/api/data/energy-profiles.json", json={"name": "loc1"}, headers=auth("ae"))
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert ID_PATTERN.match(body["record"]["id"])
        assert store.get("energy-profiles.json") == [body["record"]]

    def test_empty_update_touches_only_update_audit(self, client, store):
        store.put("energy-profiles.json", [
            {"id": "p1", "name": "loc1", "createdAt": "2024-01-01T00:00:00.000Z", "createdBy": "admin"},
        ])
        resp = client.put("/api/data/energy-profiles.json/p1", json={}, headers=auth("widget"))
        assert resp.status_code == 200
        assert resp.json()["record"] == {
            "id": "p1", "name": "loc1",
            "createdAt": "2024-01-01T00:00:00.000Z", "createdBy": "admin",
            "updatedAt": FIXED_NOW, "updatedBy": "widget",
        }

    def test_patch_record(self, client, store):
        store.put("usage-profiles.json", [{"_id": "u1", "kwh": 10}])
        resp = client.patch("/api/data/usage-profiles.json/u1", json={"kwh": 12}, headers=auth("ae"))
        assert resp.status_code == 200
        assert store.get("usage-profiles.json")[0]["kwh"] == 12

    def test_delete_is_monotonic(self, client, store):
        store.put("energy-profiles.json", [{"id": "p1"}, {"id": "p2"}])
        url = "/api/data/energy-profiles.json/p1"

        assert client.delete(url, headers=auth("ae")).status_code == 200
        assert client.get(url, headers=auth("ae")).status_code == 404
        assert client.delete(url, headers=auth("ae")).status_code == 404
        assert store.get("energy-profiles.json") == [{"id": "p2"}]

    def test_whole_document_replace_and_delete(self, client, store):
        database = {"data": {"PJM": []}, "meta": {"version": "3.1"}}
        resp = client.put("/api/data/lmp-database.json", json=database, headers=auth("workflow"))
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "File replaced", "filename": "lmp-database.json"}
        assert client.get("/api/data/lmp-database.json", headers=auth("readonly")).json() == database

        assert client.delete("/api/data/lmp-database.json", headers=auth("workflow")).status_code == 403
        store.put("tickets.json", [])
        assert client.delete("/api/data/tickets.json", headers=auth("admin")).status_code == 200
        missing = client.delete("/api/data/tickets.json", headers=auth("admin"))
        assert missing.status_code == 404
        assert missing.json()["error"] == "Not Found"


@pytest.mark.integration
class TestAccessControl:

    def test_ae_reads_clients_but_cannot_delete(self, client, store):
        store.put("clients.json", [{"id": "c1", "name": "Acme"}])
        assert client.get("/api/data/clients.json", headers=auth("ae")).status_code == 200

        resp = client.delete("/api/data/clients.json", headers=auth("ae"))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Forbidden"
        assert store.get("clients.json") == [{"id": "c1", "name": "Acme"}]

    @pytest.mark.parametrize("method", ["get", "post", "put", "patch", "delete"])
    @pytest.mark.parametrize("path", [
        "/api/data/clients.json", "/api/data/lmp-database.json", "/api/data/tickets.json/t1",
    ])
    def test_malformed_key_is_always_401(self, client, method, path):
        kwargs = {"headers": {"x-api-key": "badkey"}}
        if method in ("post", "put", "patch"):
            kwargs["json"] = {"x": 1}
        resp = getattr(client, method)(path, **kwargs)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized", "message": "Valid API key required."}

    def test_missing_key(self, client):
        assert client.get("/api/data/clients.json").status_code == 401

    def test_missing_filename(self, client):
        resp = client.get("/api/data", headers=auth("admin"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Bad Request"

    def test_invalid_json_body(self, client):
        resp = client.post(
            "/api/data/energy-profiles.json",
            content=b"{not json",
            headers={**auth("ae"), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400

    def test_nan_body_rejected_as_json_400(self, client, store):
        resp = client.post(
            "/api/data/energy-profiles.json",
            content=b'{"name": "loc1", "kwh": NaN}',
            headers={**auth("ae"), "Content-Type": "application/json", "Origin": ALLOWED_ORIGINS[0]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Bad Request"
        assert resp.headers["access-control-allow-origin"] == ALLOWED_ORIGINS[0]
        assert store.get("energy-profiles.json") is None

    def test_false_body_does_not_replace_document(self, client, store):
        store.put("tickets.json", [{"id": "t1"}])
        resp = client.post("/api/data/tickets.json", content=b"false", headers=auth("admin"))
        assert resp.status_code == 400
        assert store.get("tickets.json") == [{"id": "t1"}]

    def test_invalid_json_from_stranger_is_401(self, client):
        resp = client.post("/api/data/energy-profiles.json", content=b"{not json",
                           headers={"x-api-key": "ses-ae-stranger"})
        assert resp.status_code == 401


@pytest.mark.integration
class TestCorsAndHealth:

    def test_preflight_needs_no_key(self, client):
        resp = client.options("/api/data/clients.json", headers={"Origin": ALLOWED_ORIGINS[1]})
        assert resp.status_code == 204
        assert resp.headers["access-control-allow-origin"] == ALLOWED_ORIGINS[1]
        assert "x-api-key" in resp.headers["access-control-allow-headers"].lower()
        assert resp.content == b""

    def test_unknown_origin_falls_back_to_first(self, client):
        resp = client.get("/api/data/clients.json", headers={"Origin": "https://evil.example.com"})
        assert resp.status_code == 401
        assert resp.headers["access-control-allow-origin"] == ALLOWED_ORIGINS[0]

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["backend"] == "memory"
