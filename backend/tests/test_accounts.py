import pytest

from juice_finder.core.exceptions import AuthenticationError, ConflictError, ValidationError
from juice_finder.db.repositories import SavedRestaurantRepository, UserRepository
from juice_finder.services.accounts import (
    AccountService,
    SavedRestaurantService,
    hash_password,
    parse_id,
    verify_password,
)


def _create_user(client, username="alice", password=None):
    resp = client.post("/api/auth/users", json={"username": username, "password": password})
    assert resp.status_code == 201
    return resp.json()


# ── Users / login ───────────────────────────────────────────────────────


def test_password_hashing_roundtrip():
    hashed = hash_password("s3cret")
    assert hashed != "s3cret"
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)


def test_parse_id():
    assert parse_id(" 12 ", "restaurant") == 12
    with pytest.raises(ValidationError):
        parse_id(None, "restaurant")
    with pytest.raises(ValidationError):
        parse_id("abc", "restaurant")


def test_create_and_list_users(client):
    _create_user(client, "alice")
    _create_user(client, "bob", password="pw")

    users = client.get("/api/auth/users").json()
    assert [u["username"] for u in users] == ["alice", "bob"]
    assert [u["hasPassword"] for u in users] == [False, True]
    assert all("password" not in u for u in users)


def test_create_user_validation(client):
    assert client.post("/api/auth/users", json={"username": "  "}).status_code == 400
    _create_user(client, "alice")
    resp = client.post("/api/auth/users", json={"username": "alice"})
    assert resp.status_code == 409


def test_login_without_password(client):
    user = _create_user(client, "alice")
    resp = client.post("/api/auth/login", json={"userId": user["id"]})
    assert resp.status_code == 200
    assert resp.json() == {"userId": user["id"], "username": "alice"}


def test_login_with_password(client):
    user = _create_user(client, "bob", password="pw")

    missing = client.post("/api/auth/login", json={"userId": user["id"]})
    assert missing.status_code == 401
    assert missing.json()["requiresPassword"] is True

    wrong = client.post("/api/auth/login", json={"userId": user["id"], "password": "nope"})
    assert wrong.status_code == 401

    ok = client.post("/api/auth/login", json={"userId": str(user["id"]), "password": "pw"})
    assert ok.status_code == 200


def test_login_errors(client):
    assert client.post("/api/auth/login", json={}).status_code == 400
    assert client.post("/api/auth/login", json={"userId": 999}).status_code == 404


# ── Bookmarks / archive ─────────────────────────────────────────────────


@pytest.mark.parametrize("path", ["/api/bookmarks", "/api/archived"])
def test_saved_list_lifecycle(client, make_restaurant, path):
    user = _create_user(client)
    restaurant = make_restaurant("Chez Paul")
    headers = {"X-User-Id": str(user["id"])}

    added = client.post(path, json={"restaurantId": restaurant.id}, headers=headers)
    assert added.status_code == 201
    assert added.json()["restaurant"]["name"] == "Chez Paul"

    duplicate = client.post(path, json={"restaurantId": restaurant.id}, headers=headers)
    assert duplicate.status_code == 409

    entries = client.get(path, headers=headers).json()
    assert [e["restaurantId"] for e in entries] == [restaurant.id]
    assert entries[0]["restaurant"]["id"] == str(restaurant.id)

    removed = client.delete(path, params={"restaurantId": restaurant.id}, headers=headers)
    assert removed.status_code == 200
    assert client.get(path, headers=headers).json() == []

    again = client.delete(path, params={"restaurantId": restaurant.id}, headers=headers)
    assert again.status_code == 404


@pytest.mark.parametrize("path", ["/api/bookmarks", "/api/archived"])
def test_saved_list_errors(client, make_restaurant, path):
    user = _create_user(client)
    headers = {"X-User-Id": str(user["id"])}

    assert client.get(path).status_code == 401
    assert client.get(path, headers={"X-User-Id": "999"}).status_code == 404
    assert client.post(path, json={}, headers=headers).status_code == 400
    assert client.post(path, json={"restaurantId": 12345}, headers=headers).status_code == 404
    assert client.delete(path, headers=headers).status_code == 400


def test_bookmarks_and_archive_are_independent(client, make_restaurant):
    user = _create_user(client)
    restaurant = make_restaurant()
    headers = {"X-User-Id": str(user["id"])}

    client.post("/api/bookmarks", json={"restaurantId": restaurant.id}, headers=headers)
    assert client.get("/api/archived", headers=headers).json() == []
    resp = client.post("/api/archived", json={"restaurantId": restaurant.id}, headers=headers)
    assert resp.status_code == 201


def test_saved_entries_follow_restaurant_deletion(client, admin_headers, make_restaurant):
    user = _create_user(client)
    restaurant = make_restaurant()
    headers = {"X-User-Id": str(user["id"])}
    client.post("/api/bookmarks", json={"restaurantId": restaurant.id}, headers=headers)

    client.delete("/api/restaurants/debug", headers=admin_headers)
    assert client.get("/api/bookmarks", headers=headers).json() == []


# ── Error rendering / health ────────────────────────────────────────────


def test_error_payload_shape():
    err = AuthenticationError(error="Mot de passe requis", extra={"requiresPassword": True})
    assert err.status_code == 401
    assert err.to_dict() == {"error": "Mot de passe requis", "requiresPassword": True}


def test_health_probes(client, make_restaurant):
    make_restaurant()
    health = client.get("/api/health").json()
    assert health["status"] == "healthy"
    assert health["restaurants"] == 1
    assert client.get("/api/health/ready").json()["ready"] is True
    assert client.get("/api/health/live").json()["alive"] is True


# ── Concurrent duplicates ───────────────────────────────────────────────


def test_duplicate_username_past_check_is_conflict(db, monkeypatch):
    service = AccountService(db)
    service.create_user("alice")
    # Second request passes the existence check before the first commits
    monkeypatch.setattr(UserRepository, "get_by_username", lambda self, username: None)

    with pytest.raises(ConflictError):
        service.create_user("alice")
    assert [u["username"] for u in service.list_users()] == ["alice"]


def test_duplicate_bookmark_past_check_is_conflict(db, make_restaurant, monkeypatch):
    user = AccountService(db).create_user("alice")
    restaurant = make_restaurant()
    service = SavedRestaurantService(db, "bookmark")
    service.add(str(user["id"]), restaurant.id)
    monkeypatch.setattr(SavedRestaurantRepository, "get", lambda self, user_id, restaurant_id: None)

    with pytest.raises(ConflictError):
        service.add(str(user["id"]), restaurant.id)
    assert len(service.list_entries(str(user["id"]))) == 1
