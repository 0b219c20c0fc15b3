"""
=============================================================================
QUEST_GENERATOR.PY — Templates, Difficulty Table and Prompts
=============================================================================
Everything needed to turn "give me a medium quest" into a concrete quest
idea, BEFORE any external service is called:

  1. DIFFICULTY TABLE   → tier → XP, minutes, repetitions, distance
  2. TEMPLATE SELECTOR  → picks category + template (quick / custom mode)
  3. PROMPT BUILDER     → system prompt + user prompt for the text model
  4. MOCK GENERATOR     → local quest built from the same table, used
                          whenever the text model is off or fails

Quick mode alternates fitness ↔ learning between consecutive calls so
users don't get the same kind of quest twice in a row. It is a soft
heuristic: the caller can pass the previous category explicitly, and
the process-wide memory is only a fallback.
"""

import random
import threading
from dataclasses import dataclass
from typing import Optional

from config import settings
from errors import ValidationError
from schemas import AIQuestOutput


# =============================================================================
# ===================== DIFFICULTY TABLE ======================================
# =============================================================================

MODES = ("quick", "custom")
DIFFICULTIES = ("easy", "medium", "hard", "epic")
CATEGORIES = ("fitness", "learning")

DIFFICULTY_XP = {
    "easy": 50,
    "medium": 100,
    "hard": 150,
    "epic": 250,
}

# (min, max) ranges per category and tier.
# minutes → how long the quest takes
# reps    → intervals / rounds (fitness), focus blocks / concepts (learning)
# km      → distance, fitness only
DIFFICULTY_TABLE = {
    "fitness": {
        "easy":   {"minutes": (10, 20),  "reps": (2, 3), "km": (1, 2)},
        "medium": {"minutes": (20, 35),  "reps": (3, 4), "km": (2, 4)},
        "hard":   {"minutes": (35, 60),  "reps": (4, 6), "km": (5, 8)},
        "epic":   {"minutes": (60, 120), "reps": (6, 8), "km": (10, 15)},
    },
    "learning": {
        "easy":   {"minutes": (10, 20),  "reps": (1, 1)},
        "medium": {"minutes": (20, 40),  "reps": (2, 2)},
        "hard":   {"minutes": (40, 75),  "reps": (3, 3)},
        "epic":   {"minutes": (75, 150), "reps": (4, 4)},
    },
}


def quest_parameters(category: str, difficulty: str) -> dict:
    """
    Concrete numbers for one (category, tier) pair. Deterministic:
      minutes = midpoint of the range (rounded down)
      reps    = minimum of the range
      km      = minimum of the range (None for learning)
    """
    if category not in DIFFICULTY_TABLE:
        raise ValidationError(f"Unknown category: {category}")
    if difficulty not in DIFFICULTY_XP:
        raise ValidationError(f"Unknown difficulty: {difficulty}")

    row = DIFFICULTY_TABLE[category][difficulty]
    low, high = row["minutes"]
    return {
        "minutes": (low + high) // 2,
        "reps": row["reps"][0],
        "km": row["km"][0] if "km" in row else None,
        "xp": DIFFICULTY_XP[difficulty],
    }


# =============================================================================
# ===================== TEMPLATES =============================================
# =============================================================================

@dataclass(frozen=True)
class QuestTemplate:
    key: str
    category: str
    name: str
    summary: str


TEMPLATES = {
    "fitness": (
        QuestTemplate("run", "fitness", "Run",
                      "An outdoor run split into intervals, scaled by distance and time"),
        QuestTemplate("walk", "fitness", "Walk",
                      "A brisk exploratory walk with a distance target"),
        QuestTemplate("circuit", "fitness", "Circuit",
                      "Bodyweight circuit repeated for a number of rounds, no equipment"),
    ),
    "learning": (
        QuestTemplate("study-sprint", "learning", "Study Sprint",
                      "Focused study blocks on one topic with a written recap"),
        QuestTemplate("micro-lesson", "learning", "Micro-Lesson",
                      "Learn a handful of small concepts and explain them back"),
    ),
}


def template_by_key(key: str) -> QuestTemplate:
    for templates in TEMPLATES.values():
        for template in templates:
            if template.key == key:
                return template
    raise ValidationError(f"Unknown template: {key}")


# =============================================================================
# ===================== TEMPLATE SELECTOR =====================================
# =============================================================================

@dataclass(frozen=True)
class Selection:
    """One concrete quest plan: what to generate and with which numbers"""
    mode: str
    category: str
    difficulty: str
    template: QuestTemplate
    minutes: int
    reps: int
    km: Optional[int]
    xp: int


def _other_category(category: str) -> str:
    return "learning" if category == "fitness" else "fitness"


class TemplateSelector:
    """
    Chooses the category and template of the next quest.

    The "last category" cell is shared by every request of the process,
    so it is guarded by a lock. Built once at startup and injected.
    """

    def __init__(self, initial_category: Optional[str] = None, rng: Optional[random.Random] = None):
        initial = (initial_category or settings.quick_mode_initial_category).lower()
        if initial not in CATEGORIES:
            raise ValidationError(f"Unknown category: {initial}")
        self._last_category = initial
        self._lock = threading.Lock()
        self._rng = rng or random.Random()

    @property
    def last_category(self) -> str:
        with self._lock:
            return self._last_category

    def select(
        self,
        mode: str,
        difficulty: str,
        category: Optional[str] = None,
        previous_category: Optional[str] = None,
    ) -> Selection:
        mode = (mode or "").lower()
        difficulty = (difficulty or "").lower()
        category = category.lower() if category else None
        previous_category = previous_category.lower() if previous_category else None

        if mode not in MODES:
            raise ValidationError(f"Unknown mode: {mode}")
        if difficulty not in DIFFICULTIES:
            raise ValidationError(f"Unknown difficulty: {difficulty}")
        for value in (category, previous_category):
            if value is not None and value not in CATEGORIES:
                raise ValidationError(f"Unknown category: {value}")

        with self._lock:
            if category:
                chosen = category
            elif mode == "quick":
                chosen = _other_category(previous_category or self._last_category)
            else:
                chosen = self._rng.choice(CATEGORIES)
            template = self._rng.choice(TEMPLATES[chosen])
            self._last_category = chosen

        params = quest_parameters(chosen, difficulty)
        return Selection(
            mode=mode,
            category=chosen,
            difficulty=difficulty,
            template=template,
            minutes=params["minutes"],
            reps=params["reps"],
            km=params["km"],
            xp=params["xp"],
        )


# =============================================================================
# ===================== PROMPT BUILDER ========================================
# =============================================================================

@dataclass(frozen=True)
class QuestPrompts:
    system: str
    user: str


OUTPUT_SHAPE = """{
  "title": "string, max 60 characters",
  "shortDescription": "string, max 120 characters",
  "category": "fitness" | "learning",
  "difficulty": "easy" | "medium" | "hard" | "epic",
  "duration_min": integer (minutes),
  "description": "string, what to do step by step",
  "safety_notes": "string, empty if none",
  "proof": ["string", ...] (how the user proves completion: photo, video clip, text summary, list),
  "xp": 50 | 100 | 150 | 250
}"""


def _render_duration_table() -> str:
    lines = []
    for category, tiers in DIFFICULTY_TABLE.items():
        for difficulty, row in tiers.items():
            parts = [f"{row['minutes'][0]}-{row['minutes'][1]} min"]
            parts.append(f"{row['reps'][0]}-{row['reps'][1]} reps")
            if "km" in row:
                parts.append(f"{row['km'][0]}-{row['km'][1]} km")
            lines.append(
                f"- {category}/{difficulty}: {', '.join(parts)}, xp {DIFFICULTY_XP[difficulty]}"
            )
    return "\n".join(lines)


def _render_template_catalogue() -> str:
    lines = []
    for category, templates in TEMPLATES.items():
        for template in templates:
            lines.append(f"- {template.key} ({category}): {template.summary}")
    return "\n".join(lines)


def build_system_prompt() -> str:
    return f"""You are the quest designer of SideQuest, an app that turns everyday life into small real-world challenges.
You write ONE quest at a time for the category, difficulty and template you are given.

Rules:
1. The quest must be safe, legal and doable alone, without special equipment.
2. Use the exact duration, repetitions and distance you are given.
3. The title must be catchy and at most 60 characters.
4. The shortDescription must be one sentence of at most 120 characters.
5. "proof" lists how the user proves completion (photo, video clip, text summary, list).
6. "xp" must be exactly the value you are given.
7. Answer with the JSON object only, no markdown and no commentary.

Duration scaling by difficulty:
{_render_duration_table()}

Templates:
{_render_template_catalogue()}

Output shape:
{OUTPUT_SHAPE}"""


def build_user_prompt(selection: Selection, idea: Optional[str] = None, context: Optional[dict] = None) -> str:
    lines = [
        f"Mode: {selection.mode}",
        f"Category: {selection.category}",
        f"Difficulty: {selection.difficulty}",
        f"Template: {selection.template.key}",
        f"Duration: {selection.minutes} minutes",
        f"Repetitions: {selection.reps}",
    ]
    if selection.km is not None:
        lines.append(f"Distance: {selection.km} km")
    lines.append(f"XP: {selection.xp}")

    if idea:
        lines.append(f"User idea: {idea}")

    context = context or {}
    if context.get("time_of_day"):
        lines.append(f"Time of day: {context['time_of_day']}")
    if context.get("location"):
        lines.append(f"Location: {context['location']}")
    if context.get("interests"):
        lines.append(f"Interests: {', '.join(context['interests'])}")

    return "\n".join(lines)


def build_prompts(selection: Selection, idea: Optional[str] = None, context: Optional[dict] = None) -> QuestPrompts:
    """Pure: same selection + idea + context → same two strings"""
    return QuestPrompts(
        system=build_system_prompt(),
        user=build_user_prompt(selection, idea, context),
    )


# =============================================================================
# ===================== MOCK GENERATOR ========================================
# =============================================================================

def _mock_run(s: Selection) -> dict:
    return {
        "title": f"{s.km} km Interval Run",
        "shortDescription": f"Run {s.km} km in about {s.minutes} minutes, split into {s.reps} intervals.",
        "description": (
            f"Pick a safe outdoor route and run at least {s.km} km. Split the run into "
            f"{s.reps} intervals with a one-minute walk between each, and aim to finish "
            f"in about {s.minutes} minutes including a short warm-up and cool-down."
        ),
        "safety_notes": "Warm up first, stay hydrated and choose a well-lit route with little traffic.",
        "proof": ["Photo of your route or finish spot", "Short text summary of distance and time"],
    }


def _mock_walk(s: Selection) -> dict:
    return {
        "title": f"{s.km} km Discovery Walk",
        "shortDescription": f"Walk {s.km} km through a part of town you rarely visit.",
        "description": (
            f"Go for a brisk {s.minutes}-minute walk covering at least {s.km} km. Choose streets "
            f"or paths you have never taken and stop {s.reps} times to notice something new."
        ),
        "safety_notes": "Wear comfortable shoes and keep an eye on traffic.",
        "proof": [f"Photo of {s.reps} things you discovered", "Short text summary of the route"],
    }


def _mock_circuit(s: Selection) -> dict:
    return {
        "title": f"{s.reps}-Round Bodyweight Circuit",
        "shortDescription": f"Squats, push-ups and planks for {s.reps} rounds, about {s.minutes} minutes.",
        "description": (
            f"Complete {s.reps} rounds of 10 squats, 8 push-ups and a 30-second plank. "
            f"Rest one minute between rounds and keep the whole session around {s.minutes} minutes."
        ),
        "safety_notes": "Stop if you feel pain and adapt the push-ups on your knees if needed.",
        "proof": ["Video clip of one round", "List of the exercises completed"],
    }


def _mock_study_sprint(s: Selection) -> dict:
    blocks = "one focus block" if s.reps == 1 else f"{s.reps} focus blocks"
    return {
        "title": f"{s.minutes}-Minute Study Sprint",
        "shortDescription": f"Study one topic for {s.minutes} minutes in {blocks}.",
        "description": (
            f"Pick one topic you want to get better at and study it for {s.minutes} minutes, "
            f"split into {blocks} with your phone out of reach. Finish by writing down the "
            f"three most useful things you learned."
        ),
        "safety_notes": "",
        "proof": ["Text summary of what you learned"],
    }


def _mock_micro_lesson(s: Selection) -> dict:
    concepts = "one new concept" if s.reps == 1 else f"{s.reps} new concepts"
    return {
        "title": f"Micro-Lesson: Learn {concepts.capitalize()}",
        "shortDescription": f"Learn {concepts} and explain them in your own words.",
        "description": (
            f"Spend about {s.minutes} minutes learning {concepts} in a subject you are curious "
            f"about. Then explain each one in two sentences as if teaching a friend."
        ),
        "safety_notes": "",
        "proof": ["Photo of your notes", "Text summary of each concept"],
    }


MOCK_BUILDERS = {
    "run": _mock_run,
    "walk": _mock_walk,
    "circuit": _mock_circuit,
    "study-sprint": _mock_study_sprint,
    "micro-lesson": _mock_micro_lesson,
}


def mock_quest(selection: Selection, idea: Optional[str] = None) -> AIQuestOutput:
    """
    Local quest built from the template and the difficulty table.
    Validated through AIQuestOutput like a real model answer.
    """
    data = MOCK_BUILDERS[selection.template.key](selection)
    if idea:
        data["description"] = f"{data['description']} Inspired by: {idea.strip()}"
    data.update(
        category=selection.category,
        difficulty=selection.difficulty,
        duration_min=selection.minutes,
        xp=selection.xp,
    )
    return AIQuestOutput.model_validate(data)
