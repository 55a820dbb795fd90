from conftest import DummyResponse, feed_record
from juice_finder.core.config import settings
from juice_finder.db.models import Establishment
from juice_finder.services.ingestion import delete_nameless, reset_store


# ── API key ─────────────────────────────────────────────────────────────


def test_admin_routes_require_api_key(client):
    for method, path in [
        ("post", "/api/restaurants/update"),
        ("post", "/api/restaurants/test-update"),
        ("post", "/api/restaurants/import-json"),
        ("post", "/api/restaurants/cleanup"),
        ("get", "/api/restaurants/debug"),
        ("delete", "/api/restaurants/debug"),
    ]:
        resp = getattr(client, method)(path, headers={"X-API-Key": "wrong"})
        assert resp.status_code == 403, path


# ── Ingestion endpoints ─────────────────────────────────────────────────


def test_import_json_endpoint(client, admin_headers, patch_session):
    patch_session.export = DummyResponse(payload=[
        feed_record("node/1", "Chez Paul"),
        feed_record("node/2", "Le Fort", meta_name_reg="Martinique"),
    ])
    resp = client.post("/api/restaurants/import-json", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["stats"] == {
        "fetched": 2, "valid": 1, "inserted": 1, "updated": 0, "errors": 0, "total": 1,
    }


def test_update_endpoint_reports_upstream_failure(client, admin_headers, patch_session):
    patch_session.pages = {0: DummyResponse(status_code=503, payload={})}
    resp = client.post("/api/restaurants/update", headers=admin_headers)
    assert resp.status_code == 502
    body = resp.json()
    assert body["error"] == "Erreur lors de la récupération des données externes"
    assert "details" in body
    assert body["stats"]["fetched"] == 0


def test_update_endpoint_refreshes_lookups(client, admin_headers, patch_session):
    assert client.get("/api/cities").json()["count"] == 0
    patch_session.pages = {0: DummyResponse(payload={
        "total_count": 1,
        "results": [feed_record("node/1", "Bouchon", meta_name_com="Lyon")],
    })}
    resp = client.post("/api/restaurants/update", headers=admin_headers)
    assert resp.status_code == 200
    assert client.get("/api/cities").json()["cities"] == ["Lyon"]


def test_trial_update_endpoint(client, admin_headers, patch_session, monkeypatch):
    monkeypatch.setattr(settings, "trial_sync_size", 1)
    patch_session.pages = {0: DummyResponse(payload={
        "total_count": 3,
        "results": [
            feed_record("node/1", "Sans contact", phone=None),
            feed_record("node/2", "Bouchon", meta_name_com="Lyon"),
            feed_record("node/3", "Brasserie", meta_name_com="Nantes"),
        ],
    })}
    resp = client.post("/api/restaurants/test-update", headers=admin_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Test réussi (1/3 avec contact)"
    assert body["stats"]["inserted"] == 1
    assert client.get("/api/cities").json()["cities"] == ["Lyon"]


# ── Maintenance ─────────────────────────────────────────────────────────


def test_delete_nameless(db, make_restaurant):
    make_restaurant("Named")
    make_restaurant(None)
    make_restaurant("  ")
    assert delete_nameless(db) == {"deleted": 2, "remaining": 1}


def test_cleanup_endpoint(client, admin_headers, make_restaurant):
    make_restaurant("Named")
    make_restaurant("")
    resp = client.post("/api/restaurants/cleanup", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["deleted"] == 1
    assert body["remaining"] == 1
    assert body["success"] is True


def test_reset_removes_everything(db, make_restaurant):
    make_restaurant("One")
    make_restaurant("Two")
    assert reset_store(db) == 2
    assert db.query(Establishment).count() == 0


def test_debug_endpoints(client, admin_headers, make_restaurant):
    for i in range(3):
        make_restaurant(f"Resto {i}")

    body = client.get("/api/restaurants/debug", headers=admin_headers).json()
    assert body["total"] == 3
    assert body["showing"] == 3
    assert {r["name"] for r in body["restaurants"]} == {"Resto 0", "Resto 1", "Resto 2"}

    resp = client.delete("/api/restaurants/debug", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert client.get("/api/restaurants/debug", headers=admin_headers).json()["total"] == 0
