from datetime import datetime, timedelta, timezone

import pytest

from models import Badge, UserRole


def iso(delta):
    return (datetime.now(timezone.utc) + delta).isoformat()


@pytest.fixture
def challenge_body(make_quest, db):
    quest = make_quest(title="Challenge Walk", points=100)
    badge = db.query(Badge).filter(Badge.name == "Week Warrior").first()
    return {
        "title": "Spring Steps",
        "description": "Walk as much as you can this spring.",
        "theme": "spring",
        "startDate": iso(timedelta(hours=-1)),
        "endDate": iso(timedelta(days=7)),
        "quests": [{"questId": quest.id, "pointMultiplier": 2.0}],
        "rewards": [{"badgeId": badge.id, "requirement": "top_3"}],
    }


def create(client, staff, body):
    return client.post("/api/challenges", headers=staff["headers"], json=body)


def test_staff_creates_an_active_challenge(client, make_user, challenge_body):
    mod = make_user("mod", UserRole.MODERATOR)
    resp = create(client, mod, challenge_body)

    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["status"] == "ACTIVE"
    assert data["quests"][0]["pointMultiplier"] == 2.0
    assert data["rewards"][0]["requirement"] == "top_3"
    assert data["currentParticipants"] == 0


def test_future_challenge_is_upcoming(client, make_user, challenge_body):
    mod = make_user("mod", UserRole.MODERATOR)
    challenge_body.update(startDate=iso(timedelta(days=1)), endDate=iso(timedelta(days=2)))

    assert create(client, mod, challenge_body).json()["data"]["status"] == "UPCOMING"
    listed = client.get("/api/challenges?status=UPCOMING").json()["data"]
    assert [c["title"] for c in listed] == ["Spring Steps"]


def test_invalid_challenges(client, make_user, challenge_body):
    mod = make_user("mod", UserRole.MODERATOR)
    player = make_user()

    assert create(client, player, challenge_body).status_code == 403

    backwards = dict(challenge_body, endDate=iso(timedelta(days=-2)))
    resp = create(client, mod, backwards)
    assert resp.json()["error"]["message"] == "End date must be after start date"

    bad_quest = dict(challenge_body, quests=[{"questId": 999}])
    assert create(client, mod, bad_quest).json()["error"]["message"] == "Invalid quest ID: 999"


def test_join_rules(client, make_user, challenge_body, db):
    mod = make_user("mod", UserRole.MODERATOR)
    alice = make_user("alice")
    bob = make_user("bob")
    challenge = create(client, mod, dict(challenge_body, maxParticipants=1)).json()["data"]
    url = f"/api/challenges/{challenge['id']}/join"

    joined = client.post(url, headers=alice["headers"])
    assert joined.status_code == 200
    assert joined.json()["data"]["currentParticipants"] == 1

    again = client.post(url, headers=alice["headers"])
    assert again.status_code == 409
    assert again.json()["error"]["message"] == "You have already joined this challenge"

    full = client.post(url, headers=bob["headers"])
    assert full.status_code == 409
    assert full.json()["error"]["message"] == "Challenge is full"


def test_approved_quest_climbs_the_leaderboard(client, make_user, challenge_body):
    mod = make_user("mod", UserRole.MODERATOR)
    alice = make_user("alice")
    bob = make_user("bob")
    challenge = create(client, mod, challenge_body).json()["data"]
    quest_id = challenge["quests"][0]["questId"]

    client.post(f"/api/challenges/{challenge['id']}/join", headers=alice["headers"])
    client.post(f"/api/challenges/{challenge['id']}/join", headers=bob["headers"])

    submission = client.post(
        f"/api/quests/{quest_id}/submissions", headers=bob["headers"],
        json={"caption": "walked every street in the old town"},
    ).json()["data"]
    rewards = client.put(
        f"/api/submissions/{submission['id']}/review", headers=mod["headers"], json={"decision": "APPROVED"}
    ).json()["data"]["rewards"]

    assert rewards["challenges"][0]["scoreGained"] == 200

    board = client.get(f"/api/challenges/{challenge['id']}/leaderboard").json()["data"]
    assert [(e["username"], e["rank"], e["score"]) for e in board] == [("bob", 1, 200), ("alice", 2, 0)]
    assert board[0]["completedQuests"] == 1


def test_missing_challenge(client):
    assert client.get("/api/challenges/77").status_code == 404
