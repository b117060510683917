from bson import ObjectId

from helpers import bearer, login, register


def test_register_returns_user_without_password_and_sets_cookie(client, db):
    resp = client.post(
        "/api/auth/register",
        json={"name": "Alice", "email": "Alice@X.com", "password": "secret1", "location": "Kigali"},
    )
    assert resp.status_code == 201
    user = resp.json()["user"]
    assert user["email"] == "alice@x.com"
    assert user["role"] == "buyer"
    assert user["isActive"] is True
    assert "password" not in user and "password_hash" not in user
    assert resp.cookies.get("token")
    assert "httponly" in resp.headers["set-cookie"].lower()
    assert "samesite=lax" in resp.headers["set-cookie"].lower()

    stored = db["user"].find_one({"email": "alice@x.com"})
    assert stored["password_hash"] != "secret1"


def test_register_as_seller(client):
    user, _ = register(client, "seller@x.com", role="seller")
    assert user["role"] == "seller"


def test_self_registration_can_never_create_admin(client, db):
    resp = client.post(
        "/api/auth/register",
        json={"name": "Mallory", "email": "m@x.com", "password": "secret1", "role": "admin"},
    )
    assert resp.status_code == 400
    assert "errors" in resp.json()
    assert db["user"].find_one({"email": "m@x.com"}) is None
    assert db["user"].count_documents({"role": "admin", "email": {"$ne": "admin@shop.io"}}) == 0


def test_register_validation_errors(client):
    resp = client.post("/api/auth/register", json={"name": "", "email": "nope", "password": "123"})
    assert resp.status_code == 400
    fields = {err["field"] for err in resp.json()["errors"]}
    assert {"name", "email", "password"} <= fields


def test_duplicate_email_is_conflict_case_insensitively(client):
    register(client, "dup@x.com")
    resp = client.post("/api/auth/register", json={"name": "Again", "email": "DUP@x.com", "password": "secret1"})
    assert resp.status_code == 409
    assert resp.json() == {"message": "Email already in use"}


def test_login_does_not_reveal_which_part_was_wrong(client):
    register(client, "known@x.com", password="secret1")
    wrong_password = login(client, "known@x.com", "wrongpass")
    unknown_email = login(client, "ghost@x.com", "secret1")
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"message": "Invalid credentials"}


def test_deactivated_account_cannot_log_in(client, db):
    register(client, "sleepy@x.com")
    db["user"].update_one({"email": "sleepy@x.com"}, {"$set": {"isActive": False}})
    resp = login(client, "sleepy@x.com", "secret1")
    assert resp.status_code == 403
    assert resp.json() == {"message": "Account deactivated"}


def test_me_requires_token(client):
    assert client.get("/api/auth/me").status_code == 401
    resp = client.get("/api/auth/me", headers=bearer("garbage"))
    assert resp.status_code == 401
    assert resp.json() == {"message": "Invalid token"}


def test_me_for_deleted_user_is_not_found(client, app):
    token = app.state.tokens.issue(str(ObjectId()), "buyer")
    resp = client.get("/api/auth/me", headers=bearer(token))
    assert resp.status_code == 404
    assert resp.json() == {"message": "User not found"}


def test_cookie_session_works_without_header(client):
    resp = client.post("/api/auth/register", json={"name": "Cookie", "email": "c@x.com", "password": "secret1"})
    assert resp.status_code == 201
    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "c@x.com"


def test_register_login_me_logout_scenario(client):
    resp = client.post("/api/auth/register", json={"name": "A", "email": "a@x.com", "password": "secret1"})
    assert resp.status_code == 201

    resp = client.post("/api/auth/login", json={"email": "a@x.com", "password": "secret1"})
    assert resp.status_code == 200
    token = resp.json()["token"]
    assert resp.cookies.get("token") == token

    me = client.get("/api/auth/me", headers=bearer(token))
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "a@x.com"

    out = client.post("/api/auth/logout")
    assert out.status_code == 200
    assert out.json() == {"message": "Logged out"}
    assert "token" not in client.cookies

    # logout only drops the cookie; the bearer token stays valid until it expires
    still = client.get("/api/auth/me", headers=bearer(token))
    assert still.status_code == 200
    assert still.json()["user"]["email"] == "a@x.com"
