import pytest

from errors import NotFoundError, ValidationError
from models import QuestCategory, QuestDifficulty, QuestStatus, SubmissionType, User, UserRole
from quest_normalizer import infer_submission_types, normalize_quest, save_quest
from schemas import AIQuestOutput


def ai_output(**overrides):
    data = {
        "title": "Evening Walk Around the Block",
        "shortDescription": "A relaxed walk after dinner.",
        "category": "fitness",
        "difficulty": "medium",
        "duration_min": 27,
        "description": "Walk around your block three times at a comfortable pace.",
        "safety_notes": "Wear something reflective",
        "proof": ["Photo of the street", "Short text summary"],
        "xp": 100,
    }
    data.update(overrides)
    return AIQuestOutput.model_validate(data)


def make_user(db, role=UserRole.USER, username="maker"):
    user = User(email=f"{username}@example.com", username=username, password_hash="x", role=role.value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


# ── Submission types from proof hints ──

@pytest.mark.parametrize("proof, expected", [
    (["Photo of the view"], [SubmissionType.PHOTO]),
    (["Video of the last lap"], [SubmissionType.VIDEO]),
    (["Video clip of one round"], [SubmissionType.PHOTO, SubmissionType.VIDEO]),
    (["Text summary", "List of exercises"], [SubmissionType.TEXT]),
    (["Photo of notes", "Text summary"], [SubmissionType.PHOTO, SubmissionType.TEXT]),
    (["Voice recording"], [SubmissionType.TEXT]),
])
def test_infer_submission_types(proof, expected):
    assert infer_submission_types(proof) == expected


# ── Normalization ──

def test_normalize_maps_every_field(db):
    quest = normalize_quest(db, ai_output(), template="walk")
    fitness = db.query(QuestCategory).filter(QuestCategory.name == "Fitness").first()

    assert quest.category_id == fitness.id
    assert quest.difficulty == QuestDifficulty.MEDIUM
    assert quest.instructions == "Safety Notes: Wear something reflective"
    assert quest.requirements == ["Photo of the street", "Short text summary"]
    assert quest.tags == ["fitness", "medium", "walk", "ai-generated"]
    assert quest.points == 100
    assert quest.estimated_time == 27
    assert quest.allow_sharing is True
    assert quest.encourage_sharing is False


def test_running_and_walking_require_an_outdoor_location(db):
    walk = normalize_quest(db, ai_output())
    circuit = normalize_quest(db, ai_output(title="Living Room Circuit"))

    assert walk.location_required is True
    assert walk.location_type == "outdoor"
    assert circuit.location_required is False
    assert circuit.location_type is None


def test_learning_quest_named_walkthrough_stays_indoor(db):
    quest = normalize_quest(db, ai_output(category="learning", title="Walkthrough of Python sets", safety_notes=""))

    assert quest.location_required is False
    assert quest.instructions == ""


def test_missing_category_row_is_not_found(db):
    db.query(QuestCategory).filter(QuestCategory.name == "Learning").delete()
    db.commit()

    with pytest.raises(NotFoundError) as exc:
        normalize_quest(db, ai_output(category="learning"))
    assert exc.value.message == "Category not found"


# ── Publish gate ──

def test_regular_user_always_gets_a_draft(db):
    user = make_user(db)
    quest = save_quest(db, normalize_quest(db, ai_output()), user, auto_publish=True)

    assert quest.status == QuestStatus.DRAFT.value
    assert quest.published_at is None
    assert quest.created_by == user.id


def test_staff_can_auto_publish(db):
    moderator = make_user(db, UserRole.MODERATOR, "mod")
    quest = save_quest(db, normalize_quest(db, ai_output(difficulty="epic", xp=250)), moderator, auto_publish=True)

    assert quest.status == QuestStatus.AVAILABLE.value
    assert quest.published_at is not None
    assert quest.is_epic is True


def test_staff_without_auto_publish_gets_a_draft(db):
    admin = make_user(db, UserRole.ADMIN, "boss")
    quest = save_quest(db, normalize_quest(db, ai_output()), admin)
    assert quest.status == QuestStatus.DRAFT.value


def test_saved_json_fields_round_trip(db):
    user = make_user(db)
    data = normalize_quest(db, ai_output(), template="walk")
    quest = save_quest(db, data, user)
    db.expire_all()

    stored = db.get(type(quest), quest.id)
    assert stored.tags == ["fitness", "medium", "walk", "ai-generated"]
    assert stored.requirements == ["Photo of the street", "Short text summary"]
    assert stored.submission_types == ["PHOTO", "TEXT"]


def test_unknown_category_id_is_invalid(db):
    user = make_user(db)
    data = normalize_quest(db, ai_output()).model_copy(update={"category_id": 9999})

    with pytest.raises(ValidationError) as exc:
        save_quest(db, data, user)
    assert exc.value.message == "Invalid category ID"
