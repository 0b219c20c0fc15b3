import pytest

from models import QuestCategory, QuestStatus, UserRole


@pytest.fixture
def fitness_id(db):
    return db.query(QuestCategory).filter(QuestCategory.name == "Fitness").first().id


def quest_body(category_id, **overrides):
    body = {
        "title": "Lunch Break Stairs",
        "description": "Take the stairs up and down five times during lunch.",
        "shortDescription": "Stairs at lunch",
        "categoryId": category_id,
        "difficulty": "MEDIUM",
        "tags": ["stairs", "office"],
        "requirements": ["Photo of the staircase", "Count of floors"],
        "points": 120,
        "estimatedTime": 15,
        "submissionTypes": ["PHOTO", "TEXT"],
    }
    body.update(overrides)
    return body


# ── Create & validation ──

def test_title_at_the_limit_is_accepted(client, make_user, fitness_id):
    user = make_user()
    resp = client.post("/api/quests", headers=user["headers"], json=quest_body(fitness_id, title="a" * 100))
    assert resp.status_code == 201


def test_title_over_the_limit_names_the_field(client, make_user, fitness_id):
    user = make_user()
    resp = client.post("/api/quests", headers=user["headers"], json=quest_body(fitness_id, title="a" * 101))

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["data"] is None
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert "title" in body["error"]["message"]


def test_every_violation_is_reported(client, make_user, fitness_id):
    user = make_user()
    resp = client.post("/api/quests", headers=user["headers"], json=quest_body(
        fitness_id, title="ab", points=5, submissionTypes=[]
    ))

    message = resp.json()["error"]["message"]
    assert message.startswith("Validation failed: ")
    for field in ("title", "points", "submissionTypes"):
        assert field in message


def test_regular_user_gets_a_draft_even_with_auto_publish(client, make_user, fitness_id):
    user = make_user()
    resp = client.post("/api/quests", headers=user["headers"], json=quest_body(fitness_id, autoPublish=True))

    data = resp.json()["data"]
    assert data["status"] == "DRAFT"
    assert data["publishedAt"] is None
    assert data["createdBy"] == user["id"]


def test_moderator_can_publish_and_lists_round_trip(client, make_user, fitness_id):
    mod = make_user("mod", UserRole.MODERATOR)
    created = client.post("/api/quests", headers=mod["headers"], json=quest_body(
        fitness_id, autoPublish=True, difficulty="EPIC"
    )).json()["data"]

    assert created["status"] == "AVAILABLE"
    assert created["isEpic"] is True

    fetched = client.get(f"/api/quests/{created['id']}").json()["data"]
    assert fetched["tags"] == ["stairs", "office"]
    assert fetched["requirements"] == ["Photo of the staircase", "Count of floors"]
    assert fetched["submissionTypes"] == ["PHOTO", "TEXT"]
    assert fetched["category"]["name"] == "Fitness"


def test_unknown_category_is_invalid(client, make_user):
    user = make_user()
    resp = client.post("/api/quests", headers=user["headers"], json=quest_body(9999))

    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Invalid category ID"


def test_creating_requires_authentication(client, fitness_id):
    assert client.post("/api/quests", json=quest_body(fitness_id)).status_code in (401, 403)


# ── Listing ──

def test_list_only_shows_available_with_pagination(client, make_quest):
    for i in range(3):
        make_quest(title=f"Walk number {i}")
    make_quest(title="Hidden draft", status=QuestStatus.DRAFT)

    body = client.get("/api/quests?limit=2").json()

    assert len(body["data"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert "Hidden draft" not in [q["title"] for q in body["data"]]


def test_filters(client, make_quest):
    make_quest(title="Park Run", difficulty="HARD", tags=["run", "park"])
    make_quest(title="Read a Chapter", category="Learning", tags=["reading"])
    make_quest(title="Kind Note", category="Kindness")

    by_difficulty = client.get("/api/quests?difficulty=HARD").json()["data"]
    assert [q["title"] for q in by_difficulty] == ["Park Run"]

    by_category = client.get("/api/quests?category=learn").json()["data"]
    assert [q["title"] for q in by_category] == ["Read a Chapter"]

    by_tags = client.get("/api/quests?tags=reading,park").json()["data"]
    assert sorted(q["title"] for q in by_tags) == ["Park Run", "Read a Chapter"]

    by_search = client.get("/api/quests?search=chapter").json()["data"]
    assert [q["title"] for q in by_search] == ["Read a Chapter"]


def test_search_needs_two_characters(client):
    resp = client.get("/api/quests?search=a")
    assert resp.status_code == 400
    assert "search" in resp.json()["error"]["message"]


def test_sorting(client, make_quest):
    make_quest(title="Cheap", points=10)
    make_quest(title="Pricey", points=500, difficulty="EPIC")
    make_quest(title="Middle", points=200, difficulty="MEDIUM")

    by_points = client.get("/api/quests?sort=points&order=asc").json()["data"]
    assert [q["title"] for q in by_points] == ["Cheap", "Middle", "Pricey"]

    by_difficulty = client.get("/api/quests?sort=difficulty&order=desc").json()["data"]
    assert [q["title"] for q in by_difficulty] == ["Pricey", "Middle", "Cheap"]


def test_featured(client, make_quest):
    make_quest(title="Star Quest", is_featured=True)
    make_quest(title="Plain Quest")

    data = client.get("/api/quests/featured").json()["data"]
    assert [q["title"] for q in data] == ["Star Quest"]


def test_missing_quest_is_not_found(client):
    resp = client.get("/api/quests/4242")

    assert resp.status_code == 404
    assert resp.json()["error"] == {"message": "Quest not found", "code": "NOT_FOUND"}


# ── Update & delete ──

def test_only_the_creator_or_staff_can_edit(client, make_user, fitness_id):
    owner = make_user("owner")
    other = make_user("other")
    quest = client.post("/api/quests", headers=owner["headers"], json=quest_body(fitness_id)).json()["data"]

    assert client.put(f"/api/quests/{quest['id']}", headers=other["headers"], json={"points": 50}).status_code == 403

    resp = client.put(f"/api/quests/{quest['id']}", headers=owner["headers"], json={"points": 50})
    assert resp.json()["data"]["points"] == 50


def test_owner_cannot_publish_but_moderator_can(client, make_user, fitness_id):
    owner = make_user("owner")
    mod = make_user("mod", UserRole.MODERATOR)
    quest = client.post("/api/quests", headers=owner["headers"], json=quest_body(fitness_id)).json()["data"]

    denied = client.put(f"/api/quests/{quest['id']}", headers=owner["headers"], json={"status": "AVAILABLE"})
    assert denied.status_code == 403

    published = client.put(f"/api/quests/{quest['id']}", headers=mod["headers"], json={"status": "AVAILABLE"})
    assert published.json()["data"]["status"] == "AVAILABLE"
    assert published.json()["data"]["publishedAt"] is not None


@pytest.mark.parametrize("field", ["submissionTypes", "title", "requirements", "points"])
def test_null_for_a_required_field_is_refused(client, make_user, fitness_id, field):
    owner = make_user("owner")
    quest = client.post("/api/quests", headers=owner["headers"], json=quest_body(fitness_id)).json()["data"]

    resp = client.put(f"/api/quests/{quest['id']}", headers=owner["headers"], json={field: None})
    assert resp.status_code == 400
    assert "cannot be null" in resp.json()["error"]["message"]

    after = client.get(f"/api/quests/{quest['id']}")
    assert after.status_code == 200
    assert after.json()["data"]["title"] == "Lunch Break Stairs"
    assert after.json()["data"]["submissionTypes"] == ["PHOTO", "TEXT"]


def test_null_clears_an_optional_field(client, make_user, fitness_id):
    owner = make_user("owner")
    quest = client.post("/api/quests", headers=owner["headers"], json=quest_body(
        fitness_id, instructions="Use the back staircase",
    )).json()["data"]

    resp = client.put(f"/api/quests/{quest['id']}", headers=owner["headers"], json={"instructions": None})
    assert resp.status_code == 200
    assert resp.json()["data"]["instructions"] is None


def test_delete_archives_the_quest(client, make_user, fitness_id):
    owner = make_user("owner")
    quest = client.post("/api/quests", headers=owner["headers"], json=quest_body(fitness_id)).json()["data"]

    assert client.delete(f"/api/quests/{quest['id']}", headers=owner["headers"]).status_code == 200
    assert client.get(f"/api/quests/{quest['id']}").json()["data"]["status"] == "ARCHIVED"
