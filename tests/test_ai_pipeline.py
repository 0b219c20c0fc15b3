import json
import random

import pytest
from openai import OpenAIError

import ai_quests
from ai_quests import AIQuestService, quest_from_idea
from errors import GenerationError, NotFoundError
from llm_client import QuestTextGenerator, parse_ai_output
from models import QuestCategory, QuestDifficulty
from quest_generator import QuestPrompts, TemplateSelector
from schemas import SAFETY_NOTES_MAX, QuestIdeaRequest

from conftest import FakeOpenAI

GOOD_ANSWER = {
    "title": "Riverside Interval Run",
    "shortDescription": "Three easy intervals along the river.",
    "category": "fitness",
    "difficulty": "easy",
    "duration_min": 15,
    "description": "Jog along the river in three intervals with a short walk in between.",
    "safety_notes": "Stay hydrated",
    "proof": ["Photo of the river", "Text summary of your time"],
    "xp": 50,
}


def make_service(fake=None, enabled=True):
    selector = TemplateSelector("learning", rng=random.Random(1))
    generator = QuestTextGenerator(api_key="sk-test" if fake else "")
    if fake:
        generator._client = fake
    return AIQuestService(selector, generator, enabled=enabled)


# ── Parsing ──

def test_parse_accepts_json_wrapped_in_prose():
    text = "Here is your quest:\n```json\n" + json.dumps(GOOD_ANSWER) + "\n```"
    output = parse_ai_output(text)
    assert output.title == "Riverside Interval Run"
    assert output.short_description == "Three easy intervals along the river."


@pytest.mark.parametrize("text", [
    "no json here",
    "{not valid json}",
    json.dumps({**GOOD_ANSWER, "xp": 75}),
    json.dumps({k: v for k, v in GOOD_ANSWER.items() if k != "proof"}),
])
def test_parse_rejects_bad_answers(text):
    with pytest.raises(GenerationError):
        parse_ai_output(text)


def test_generator_without_key_fails_fast():
    generator = QuestTextGenerator(api_key="")
    with pytest.raises(GenerationError):
        generator.complete(QuestPrompts(system="s", user="u"))


def test_generator_sends_both_prompts():
    fake = FakeOpenAI(answer=json.dumps(GOOD_ANSWER))
    generator = QuestTextGenerator(api_key="sk-test", model="gpt-test")
    generator._client = fake

    generator.complete(QuestPrompts(system="system text", user="user text"))

    call = fake.calls[0]
    assert call["model"] == "gpt-test"
    assert [m["role"] for m in call["messages"]] == ["system", "user"]


def test_empty_answer_is_a_generation_error():
    generator = QuestTextGenerator(api_key="sk-test")
    generator._client = FakeOpenAI(answer="   ")
    with pytest.raises(GenerationError):
        generator.complete(QuestPrompts(system="s", user="u"))


# ── Pipeline with its single fallback ──

def test_good_answer_is_used(db):
    fake = FakeOpenAI(answer=json.dumps(GOOD_ANSWER))
    generated = make_service(fake).generate(db, "quick", "easy")

    assert generated.source == "ai"
    assert generated.quest.title == "Riverside Interval Run"
    assert len(fake.calls) == 1


def test_provider_failure_falls_back_to_mock_once(db):
    fake = FakeOpenAI(error=OpenAIError("service unavailable"))
    generated = make_service(fake).generate(db, "quick", "easy")

    assert generated.source == "mock"
    assert len(fake.calls) == 1
    assert generated.quest.points == 50


def test_garbage_answer_falls_back_to_mock(db):
    fake = FakeOpenAI(answer="Sorry, I cannot help with that.")
    generated = make_service(fake).generate(db, "custom", "hard", category="learning")

    assert generated.source == "mock"
    assert generated.selection.category == "learning"
    assert generated.quest.points == 150


def test_answer_for_the_wrong_category_falls_back_to_mock(db):
    wrong = {**GOOD_ANSWER, "category": "learning"}
    generated = make_service(FakeOpenAI(answer=json.dumps(wrong))).generate(db, "quick", "easy")

    assert generated.source == "mock"
    assert generated.selection.category == "fitness"


def test_longest_safety_notes_still_fit_the_instructions(db):
    notes = "n" * SAFETY_NOTES_MAX
    fake = FakeOpenAI(answer=json.dumps({**GOOD_ANSWER, "safety_notes": notes}))
    generated = make_service(fake).generate(db, "custom", "easy", category="fitness")

    assert generated.source == "ai"
    assert len(generated.quest.instructions) == 1000


def test_oversized_safety_notes_fall_back_to_mock(db):
    notes = "n" * 995
    fake = FakeOpenAI(answer=json.dumps({**GOOD_ANSWER, "safety_notes": notes}))
    generated = make_service(fake).generate(db, "custom", "easy", category="fitness")

    assert generated.source == "mock"
    assert len(fake.calls) == 1


def test_normalization_failure_on_the_ai_answer_falls_back_to_mock(db, monkeypatch):
    real = ai_quests.normalize_quest
    calls = []

    def flaky(db, output, template=None):
        calls.append(output.title)
        if len(calls) == 1:
            raise ValueError("cannot store this quest")
        return real(db, output, template)

    monkeypatch.setattr(ai_quests, "normalize_quest", flaky)
    fake = FakeOpenAI(answer=json.dumps(GOOD_ANSWER))
    generated = make_service(fake).generate(db, "quick", "easy")

    assert generated.source == "mock"
    assert calls[0] == "Riverside Interval Run"
    assert len(calls) == 2


def test_missing_category_row_is_not_hidden_by_the_fallback(db):
    db.query(QuestCategory).filter(QuestCategory.name == "Fitness").delete()
    db.commit()
    fake = FakeOpenAI(answer=json.dumps(GOOD_ANSWER))

    with pytest.raises(NotFoundError):
        make_service(fake).generate(db, "custom", "easy", category="fitness")
    assert len(fake.calls) == 1


def test_disabled_service_never_calls_the_provider(db):
    fake = FakeOpenAI(answer=json.dumps(GOOD_ANSWER))
    generated = make_service(fake, enabled=False).generate(db, "quick", "easy")

    assert generated.source == "mock"
    assert fake.calls == []


def test_batch_alternates_categories(db):
    results = make_service(enabled=False).generate_many(db, 4, "quick", "medium")
    assert [g.selection.category for g in results] == ["fitness", "learning", "fitness", "learning"]


def test_metadata_describes_the_origin(db):
    generated = make_service(enabled=False).generate(db, "quick", "easy")
    meta = generated.metadata()

    assert meta["source"] == "mock"
    assert meta["category"] == "fitness"
    assert meta["template"] == generated.selection.template.key
    assert meta["generatedAt"].endswith("Z")


# ── From idea ──

def test_from_idea_for_advanced_users(db):
    idea = QuestIdeaRequest(
        theme="Morning fitness",
        description="I want to move more before work starts",
        target_audience="advanced",
        include_location=True,
    )
    generated = quest_from_idea(make_service(enabled=False), db, idea)
    quest = generated.quest

    assert generated.selection.category == "fitness"
    assert quest.difficulty == QuestDifficulty.MEDIUM
    assert quest.points == 75
    assert quest.title.startswith("Morning fitness: ")
    assert quest.short_description == "Morning fitness"
    assert quest.location_required is True
    assert quest.description.startswith("I want to move more before work starts ")


def test_from_idea_for_beginners_is_always_easy(db):
    idea = QuestIdeaRequest(
        theme="Deep study",
        description="A long session on learning statistics",
        difficulty_preference="hard",
        target_audience="beginners",
    )
    quest = quest_from_idea(make_service(enabled=False), db, idea).quest

    assert quest.difficulty == QuestDifficulty.EASY
    assert quest.points == 105
