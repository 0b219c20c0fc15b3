from models import Badge, UserRole, XpLog


def test_levels_are_public(client):
    levels = client.get("/api/gamification/levels").json()["data"]

    assert len(levels) == 10
    assert levels[0] == {"level": 1, "name": "Novice", "minXp": 0, "nextLevelXp": 100}
    assert levels[-1]["nextLevelXp"] is None

    assert client.get("/api/gamification/level/3").json()["data"]["name"] == "Adventurer"
    assert client.get("/api/gamification/level/11").status_code == 404


def test_my_level_and_progress(client, make_user):
    user = make_user()

    assert client.get("/api/gamification/level", headers=user["headers"]).json()["data"]["name"] == "Novice"
    progress = client.get("/api/gamification/level/progress", headers=user["headers"]).json()["data"]
    assert progress["xpToNextLevel"] == 100
    assert progress["progress"] == 0.0


def test_admin_grant_levels_up_and_is_logged(client, make_user, db):
    admin = make_user("boss", UserRole.ADMIN)
    player = make_user()

    resp = client.post("/api/gamification/xp", headers=admin["headers"], json={
        "userId": player["id"], "amount": 350, "description": "Event winner",
    })
    data = resp.json()["data"]
    assert data["newLevel"] == 3
    assert data["badgesUnlocked"] == []

    log = client.get("/api/gamification/xp-log", headers=player["headers"]).json()
    assert log["pagination"]["total"] == 1
    assert log["data"][0]["source"] == "admin_grant"
    assert log["data"][0]["description"] == "Event winner"


def test_only_admins_grant_xp(client, make_user):
    mod = make_user("mod", UserRole.MODERATOR)
    resp = client.post("/api/gamification/xp", headers=mod["headers"], json={"userId": mod["id"], "amount": 10})
    assert resp.status_code == 403


def test_badges_listing_and_filters(client, make_user):
    user = make_user()
    badges = client.get("/api/gamification/badges", headers=user["headers"]).json()["data"]

    assert len(badges) == 5
    assert all(b["earned"] is False for b in badges)
    first = next(b for b in badges if b["name"] == "First Quest")
    assert first["requirements"] == [{"type": "QUEST_COUNT", "value": 1, "category": None}]

    streak = client.get("/api/gamification/badges/type/streak").json()["data"]
    assert [b["name"] for b in streak] == ["Week Warrior"]
    legendary = client.get("/api/gamification/badges/rarity/legendary").json()["data"]
    assert [b["name"] for b in legendary] == ["Legend"]
    assert client.get("/api/gamification/badges/type/unknown").status_code == 400


def test_manual_badge_award(client, make_user, db):
    admin = make_user("boss", UserRole.ADMIN)
    player = make_user()
    legend = db.query(Badge).filter(Badge.name == "Legend").first()
    body = {"userId": player["id"], "badgeId": legend.id}

    resp = client.post("/api/gamification/badges/award", headers=admin["headers"], json=body)
    assert resp.json()["data"]["badge"]["name"] == "Legend"
    assert db.query(XpLog).filter(XpLog.user_id == player["id"], XpLog.source == "badge_earned").count() == 1

    again = client.post("/api/gamification/badges/award", headers=admin["headers"], json=body)
    assert again.status_code == 409

    progress = client.get(f"/api/gamification/badges/{legend.id}/progress", headers=player["headers"]).json()["data"]
    assert progress["earned"] is True
    assert progress["eligible"] is False


def test_leaderboard_orders_by_xp(client, make_user):
    admin = make_user("boss", UserRole.ADMIN)
    low = make_user("low")
    high = make_user("high")
    client.post("/api/gamification/xp", headers=admin["headers"], json={"userId": low["id"], "amount": 20})
    client.post("/api/gamification/xp", headers=admin["headers"], json={"userId": high["id"], "amount": 120})

    board = client.get("/api/gamification/leaderboard?limit=2").json()["data"]
    assert [(e["rank"], e["username"]) for e in board] == [(1, "high"), (2, "low")]
    assert board[0]["levelName"] == "Explorer"

    assert client.get("/api/gamification/leaderboard?limit=101").status_code == 400


def test_stats(client, make_user):
    user = make_user()
    data = client.get("/api/gamification/stats", headers=user["headers"]).json()["data"]

    assert data["questsCompleted"] == 0
    assert data["badgesAvailable"] == 5
    assert data["level"]["name"] == "Novice"
