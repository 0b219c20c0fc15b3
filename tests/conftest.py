"""
Shared fixtures: in-memory SQLite, the app with get_db overridden,
deterministic services (no network, AI quests on the mock path) and
helpers to create users and quests.
"""

import os

# Before importing the app: no file DB, no scheduler, no OpenAI
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["ENABLE_AI_QUESTS"] = "false"
os.environ["OPENAI_API_KEY"] = ""

import random

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ai_quests import AIQuestService
from database import Base, get_db
from gamification import seed_badges, seed_categories
from llm_client import QuestTextGenerator
from main import app, Services
from models import Quest, QuestCategory, QuestStatus, User, UserRole
from moderation import ContentModerator, TextClassifier
from quest_generator import TemplateSelector

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeMessage:
    def __init__(self, content):
        self.content = content


class FakeChoice:
    def __init__(self, content):
        self.message = FakeMessage(content)


class FakeResponse:
    def __init__(self, content):
        self.choices = [FakeChoice(content)]


class FakeOpenAI:
    """Stands in for openai.OpenAI: records the calls, answers or raises"""

    def __init__(self, answer=None, error=None):
        self.answer = answer
        self.error = error
        self.calls = []
        self.chat = self
        self.completions = self

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.answer)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    seed_categories(session)
    seed_badges(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def services():
    selector = TemplateSelector("learning", rng=random.Random(7))
    generator = QuestTextGenerator(api_key="")
    return Services(
        selector=selector,
        generator=generator,
        ai=AIQuestService(selector, generator, enabled=False),
        moderator=ContentModerator(text=TextClassifier(api_key=""), enabled=True),
    )


@pytest.fixture
def client(db, services):
    def override_get_db():
        yield db

    original = app.state.services
    app.dependency_overrides[get_db] = override_get_db
    app.state.services = services
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.services = original


@pytest.fixture
def make_user(client, db):
    """Registers a user through the API, optionally promoting its role"""
    def _make(username="player", role=UserRole.USER):
        resp = client.post("/api/auth/register", json={
            "email": f"{username}@example.com",
            "username": username,
            "password": "supersecret1",
        })
        assert resp.status_code == 201, resp.text
        data = resp.json()["data"]
        if role != UserRole.USER:
            user = db.query(User).filter(User.id == data["user"]["id"]).first()
            user.role = role.value
            db.commit()
        return {
            "id": data["user"]["id"],
            "headers": {"Authorization": f"Bearer {data['token']}"},
        }
    return _make


@pytest.fixture
def make_quest(db):
    def _make(title="Sunrise Walk", category="Fitness", difficulty="EASY",
              status=QuestStatus.AVAILABLE, points=100, **extra):
        cat = db.query(QuestCategory).filter(QuestCategory.name == category).first()
        fields = {
            "title": title,
            "description": "Walk around your neighbourhood at sunrise.",
            "short_description": "A calm morning walk",
            "category_id": cat.id,
            "difficulty": difficulty,
            "tags": ["walk", "morning"],
            "requirements": ["Photo of the sunrise"],
            "points": points,
            "estimated_time": 20,
            "submission_types": ["PHOTO"],
            "status": status.value,
        }
        fields.update(extra)
        quest = Quest(**fields)
        db.add(quest)
        db.commit()
        db.refresh(quest)
        return quest
    return _make
