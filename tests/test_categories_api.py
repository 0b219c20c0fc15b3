from models import QuestCategory, QuestStatus, UserRole


def category_id(db, name):
    return db.query(QuestCategory).filter(QuestCategory.name == name).first().id


def test_seeded_categories_with_quest_counts(client, make_quest):
    make_quest()
    make_quest(title="Evening Walk")
    make_quest(title="Draft Walk", status=QuestStatus.DRAFT)

    data = client.get("/api/categories").json()["data"]
    counts = {c["name"]: c["questCount"] for c in data}

    assert len(data) == 8
    assert data[0]["name"] == "Kindness"
    assert counts["Fitness"] == 2
    assert counts["Learning"] == 0


def test_get_single_category(client, db):
    resp = client.get(f"/api/categories/{category_id(db, 'Learning')}")
    assert resp.json()["data"]["icon"] == "📚"

    assert client.get("/api/categories/999").status_code == 404


def test_only_staff_can_create(client, make_user):
    user = make_user()
    mod = make_user("mod", UserRole.MODERATOR)
    body = {"name": "Cooking", "description": "Kitchen adventures", "color": "#FFAA00"}

    assert client.post("/api/categories", headers=user["headers"], json=body).status_code == 403

    resp = client.post("/api/categories", headers=mod["headers"], json=body)
    assert resp.status_code == 201
    assert resp.json()["data"]["name"] == "Cooking"
    assert resp.json()["data"]["questCount"] == 0


def test_duplicate_name_is_rejected(client, make_user):
    mod = make_user("mod", UserRole.MODERATOR)
    resp = client.post("/api/categories", headers=mod["headers"], json={"name": "Fitness"})

    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "A category with this name already exists"


def test_bad_color_is_a_validation_error(client, make_user):
    mod = make_user("mod", UserRole.MODERATOR)
    resp = client.post("/api/categories", headers=mod["headers"], json={"name": "Music", "color": "red"})

    assert resp.status_code == 400
    assert "color" in resp.json()["error"]["message"]


def test_update_category(client, make_user, db):
    mod = make_user("mod", UserRole.MODERATOR)
    resp = client.put(
        f"/api/categories/{category_id(db, 'Social')}",
        headers=mod["headers"], json={"description": "Meet people"},
    )
    assert resp.json()["data"]["description"] == "Meet people"


def test_category_name_cannot_be_nulled(client, make_user, db):
    mod = make_user("mod", UserRole.MODERATOR)
    social = category_id(db, "Social")

    resp = client.put(f"/api/categories/{social}", headers=mod["headers"], json={"name": None})
    assert resp.status_code == 400
    assert "cannot be null" in resp.json()["error"]["message"]
    assert client.get(f"/api/categories/{social}").json()["data"]["name"] == "Social"


def test_delete_is_refused_while_quests_use_it(client, make_user, make_quest, db):
    admin = make_user("boss", UserRole.ADMIN)
    make_quest()

    resp = client.delete(f"/api/categories/{category_id(db, 'Fitness')}", headers=admin["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Cannot delete category with active quests"


def test_delete_is_a_soft_delete(client, make_user, db):
    admin = make_user("boss", UserRole.ADMIN)
    mod = make_user("mod", UserRole.MODERATOR)
    adventure = category_id(db, "Adventure")

    assert client.delete(f"/api/categories/{adventure}", headers=mod["headers"]).status_code == 403
    assert client.delete(f"/api/categories/{adventure}", headers=admin["headers"]).status_code == 200

    names = [c["name"] for c in client.get("/api/categories").json()["data"]]
    assert "Adventure" not in names
    assert db.query(QuestCategory).filter(QuestCategory.id == adventure).first().is_active is False
