from conftest import PASSWORD, run


def register(client, **overrides):
    payload = {"name": "Ada Lovelace", "email": "ada@example.com", "password": "secret123", **overrides}
    return client.post("/auth/register", json=payload)


def test_register_returns_token_without_credentials(client):
    response = register(client)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert body["user"]["email"] == "ada@example.com"
    assert body["user"]["role"] == "student"
    assert "password_hash" not in body["user"]


def test_register_normalizes_email_and_rejects_duplicates(client):
    assert register(client, email="Ada@Example.com").status_code == 201
    response = register(client, email="ada@example.com")
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "User already exists with this email"}


def test_register_cannot_self_assign_admin(client):
    response = register(client, role="admin")
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_register_validation_errors_use_envelope(client):
    response = register(client, email="not-an-email", password="123")
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    assert body["errors"]


def test_login_and_me(client, student):
    response = client.post("/auth/login", json={"email": student["email"], "password": PASSWORD})
    assert response.status_code == 200
    token = response.json()["token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["user_id"] == student["user_id"]
    assert "password_hash" not in me.json()["user"]


def test_login_wrong_password(client, student):
    response = client.post("/auth/login", json={"email": student["email"], "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"


def test_login_starts_streak_for_students(client, db, student):
    client.post("/auth/login", json={"email": student["email"], "password": PASSWORD})
    stats = run(db.student_stats.find_one({"user_id": student["user_id"]}))
    assert stats["current_streak"] == 1
    activity = run(db.student_activities.find_one({"user_id": student["user_id"]}))
    assert activity["activity_type"] == "login"


def test_deactivated_account_is_locked_out(client, db, student):
    run(db.users.update_one({"user_id": student["user_id"]}, {"$set": {"is_active": False}}))

    login = client.post("/auth/login", json={"email": student["email"], "password": PASSWORD})
    assert login.status_code == 401
    assert client.get("/auth/me", headers=student["headers"]).status_code == 401


def test_me_requires_token(client):
    response = client.get("/auth/me")
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Not authorized, no token"}


def test_invalid_token_rejected(client):
    response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_update_profile(client, student):
    response = client.put("/auth/profile", json={"bio": "Learning Python"}, headers=student["headers"])
    assert response.status_code == 200
    assert response.json()["user"]["bio"] == "Learning Python"

    empty = client.put("/auth/profile", json={}, headers=student["headers"])
    assert empty.status_code == 400


def test_change_password(client, student):
    wrong = client.put(
        "/auth/password",
        json={"current_password": "nope", "new_password": "newsecret"},
        headers=student["headers"]
    )
    assert wrong.status_code == 401

    ok = client.put(
        "/auth/password",
        json={"current_password": PASSWORD, "new_password": "newsecret"},
        headers=student["headers"]
    )
    assert ok.status_code == 200
    login = client.post("/auth/login", json={"email": student["email"], "password": "newsecret"})
    assert login.status_code == 200
