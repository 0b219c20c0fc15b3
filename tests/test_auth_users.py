from models import User


def register(client, username="walker", email=None, password="supersecret1"):
    return client.post("/api/auth/register", json={
        "email": email or f"{username}@example.com",
        "username": username,
        "password": password,
        "firstName": "Wal",
    })


# ── Auth ──

def test_register_returns_token_and_user(client):
    resp = register(client)

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["timestamp"].endswith("Z")
    assert body["data"]["token"]
    assert body["data"]["tokenType"] == "bearer"
    assert body["data"]["user"]["username"] == "walker"
    assert body["data"]["user"]["firstName"] == "Wal"
    assert body["data"]["user"]["role"] == "USER"
    assert body["data"]["user"]["level"] == 1
    assert "passwordHash" not in body["data"]["user"]


def test_register_twice_is_a_conflict(client):
    register(client)
    resp = register(client, username="another", email="walker@example.com")

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONFLICT_ERROR"


def test_register_validates_the_body(client):
    resp = register(client, username="no spaces allowed", password="short")

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "username" in error["message"]
    assert "password" in error["message"]


def test_login_and_me(client):
    register(client)
    resp = client.post("/api/auth/login", json={"email": "walker@example.com", "password": "supersecret1"})
    assert resp.status_code == 200

    token = resp.json()["data"]["token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["data"]["email"] == "walker@example.com"


def test_wrong_password_is_unauthorized(client):
    register(client)
    resp = client.post("/api/auth/login", json={"email": "walker@example.com", "password": "wrongwrong"})

    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Invalid email or password"


def test_me_requires_a_token(client):
    assert client.get("/api/auth/me").status_code in (401, 403)


def test_garbage_token_is_unauthorized(client):
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


# ── Profile & preferences ──

def test_profile_includes_default_preferences(client, make_user):
    user = make_user()
    data = client.get("/api/users/profile", headers=user["headers"]).json()["data"]

    assert data["preferences"]["profileVisibility"] == "public"
    assert data["preferences"]["timeAvailablePerDay"] == 30


def test_partial_profile_update(client, make_user):
    user = make_user()
    resp = client.put("/api/users/profile", headers=user["headers"], json={"bio": "I like long walks"})

    assert resp.status_code == 200
    assert resp.json()["data"]["bio"] == "I like long walks"
    assert resp.json()["data"]["username"] == "player"


def test_update_preferences(client, make_user):
    user = make_user()
    resp = client.put("/api/users/preferences", headers=user["headers"], json={
        "showStreak": False,
        "preferredDifficulty": ["EASY", "HARD"],
    })

    data = resp.json()["data"]
    assert data["showStreak"] is False
    assert data["preferredDifficulty"] == ["EASY", "HARD"]
    assert data["showBadges"] is True


def test_change_password(client, make_user):
    user = make_user()
    wrong = client.put("/api/users/password", headers=user["headers"], json={
        "currentPassword": "nope-nope", "newPassword": "brandnewpass",
    })
    assert wrong.status_code == 401

    ok = client.put("/api/users/password", headers=user["headers"], json={
        "currentPassword": "supersecret1", "newPassword": "brandnewpass",
    })
    assert ok.status_code == 200

    login = client.post("/api/auth/login", json={"email": "player@example.com", "password": "brandnewpass"})
    assert login.status_code == 200


def test_deleted_account_is_soft_deleted(client, make_user, db):
    user = make_user()
    assert client.delete("/api/users/account", headers=user["headers"]).status_code == 200

    stored = db.query(User).filter(User.id == user["id"]).first()
    assert stored.is_active is False
    assert stored.deleted_at is not None
    assert client.get("/api/auth/me", headers=user["headers"]).status_code == 401


def test_user_stats_count_submissions_by_status(client, make_user):
    user = make_user()
    data = client.get("/api/users/stats", headers=user["headers"]).json()["data"]

    assert data["submissions"] == {"PENDING": 0, "APPROVED": 0, "REJECTED": 0}
    assert data["questsCompleted"] == 0


# ── Public profile ──

def test_public_profile_honours_show_streak(client, make_user):
    user = make_user()
    client.put("/api/users/preferences", headers=user["headers"], json={"showStreak": False})

    data = client.get("/api/users/profile/player").json()["data"]
    assert data["currentStreak"] is None
    assert data["badges"] == []
    assert data["completedQuests"] == 0
    assert "email" not in data


def test_private_profile_is_forbidden(client, make_user):
    user = make_user()
    client.put("/api/users/preferences", headers=user["headers"], json={"profileVisibility": "private"})

    assert client.get("/api/users/profile/player").status_code == 403


def test_unknown_profile_is_not_found(client):
    resp = client.get("/api/users/profile/ghost")

    assert resp.status_code == 404
    assert resp.json()["error"]["message"] == "User not found"
