"""
=============================================================================
AI_QUESTS.PY — Quest Generation Service
=============================================================================
Glues the pipeline together:

  selector → prompts → text model → parse → normalize
                 ↘ (any failure) → mock quest, exactly once

Also holds the read-only helpers behind /api/ai-quests:
  - quest_from_idea()      → a quest shaped around the user's own idea
  - generation_stats()     → what the user created and completed
  - personalized_suggestions() → what to try next
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from config import settings
from errors import GenerationError, NotFoundError
from llm_client import QuestTextGenerator, parse_ai_output
from models import Quest, QuestCategory, QuestDifficulty, QuestStatus, Submission, SubmissionStatus, User
from quest_generator import (
    CATEGORIES, Selection, TemplateSelector, build_prompts, mock_quest
)
from quest_normalizer import normalize_quest
from schemas import AIQuestOutput, QuestCreate, QuestIdeaRequest

logger = logging.getLogger("sidequest.ai")


@dataclass
class GeneratedQuest:
    """A normalized quest plus where it came from"""
    selection: Selection
    output: AIQuestOutput
    quest: QuestCreate
    source: str  # "ai" | "mock"
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def metadata(self) -> dict:
        return {
            "source": self.source,
            "template": self.selection.template.key,
            "category": self.selection.category,
            "mode": self.selection.mode,
            "generatedAt": self.generated_at.isoformat() + "Z",
        }


# =============================================================================
# ===================== GENERATION SERVICE ====================================
# =============================================================================

class AIQuestService:
    """Built once at startup (see main.py) and injected into the endpoints"""

    def __init__(
        self,
        selector: TemplateSelector,
        generator: QuestTextGenerator,
        enabled: Optional[bool] = None,
    ):
        self.selector = selector
        self.generator = generator
        self.enabled = settings.enable_ai_quests if enabled is None else enabled

    def _ask_model(self, selection: Selection, idea: Optional[str], context: Optional[dict]) -> AIQuestOutput:
        prompts = build_prompts(selection, idea, context)
        output = parse_ai_output(self.generator.complete(prompts))
        if output.category != selection.category or output.difficulty != selection.difficulty:
            raise GenerationError(
                f"Generated quest is {output.category}/{output.difficulty}, "
                f"expected {selection.category}/{selection.difficulty}"
            )
        return output

    def generate(
        self,
        db: Session,
        mode: str,
        difficulty: str,
        category: Optional[str] = None,
        previous_category: Optional[str] = None,
        idea: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> GeneratedQuest:
        """
        One selection, at most one provider call, at most one mock.
        A missing category row is not a generation failure: it propagates.
        """
        selection = self.selector.select(mode, difficulty, category, previous_category)
        template = selection.template.key

        if self.enabled:
            try:
                output = self._ask_model(selection, idea, context)
                quest = normalize_quest(db, output, template)
                return self._done(selection, output, quest, "ai")
            except NotFoundError:
                raise
            except Exception as e:
                logger.warning(
                    f"⚠️ Text generation failed for {selection.category}/{selection.difficulty}, "
                    f"using mock quest: {e}"
                )

        output = mock_quest(selection, idea)
        quest = normalize_quest(db, output, template)
        return self._done(selection, output, quest, "mock")

    def _done(self, selection: Selection, output: AIQuestOutput, quest: QuestCreate, source: str) -> GeneratedQuest:
        logger.info(f"🎲 Generated {source} quest '{output.title}' ({selection.category}/{selection.difficulty})")
        return GeneratedQuest(selection=selection, output=output, quest=quest, source=source)

    def generate_many(self, db: Session, count: int, mode: str, difficulty: str, **kwargs) -> list[GeneratedQuest]:
        """
        Several quests in a row. In quick mode each one alternates
        from the previous one of the same batch.
        """
        results = []
        previous = kwargs.pop("previous_category", None)
        for _ in range(count):
            generated = self.generate(db, mode, difficulty, previous_category=previous, **kwargs)
            results.append(generated)
            previous = generated.selection.category
        return results


# =============================================================================
# ===================== FROM IDEA =============================================
# =============================================================================

def _pick_idea_category(idea: QuestIdeaRequest) -> Optional[str]:
    if idea.category_preference:
        return idea.category_preference
    text = f"{idea.theme} {idea.description}".lower()
    for category in CATEGORIES:
        if category in text:
            return category
    return None


def enhance_title(title: str, theme: str) -> str:
    if theme.lower() in title.lower():
        return title[:100]
    return f"{theme}: {title}"[:100]


def quest_from_idea(service: AIQuestService, db: Session, idea: QuestIdeaRequest) -> GeneratedQuest:
    """
    Generates a quest and bends it towards the user's idea.

    beginners → always EASY, 70% of the points
    advanced  → EASY becomes MEDIUM, 150% of the points
    """
    category = _pick_idea_category(idea)
    generated = service.generate(
        db,
        mode="custom" if category else "quick",
        difficulty=idea.difficulty_preference or "easy",
        category=category,
        idea=f"{idea.theme}: {idea.description}",
    )

    base = generated.quest
    update = {
        "title": enhance_title(base.title, idea.theme),
        "description": f"{idea.description} {base.description}".strip()[:2000],
        "short_description": idea.theme,
        "location_required": idea.include_location or base.location_required,
    }

    if idea.target_audience == "beginners" and base.difficulty != QuestDifficulty.EASY:
        update["difficulty"] = QuestDifficulty.EASY
        update["points"] = round(base.points * 0.7)
    elif idea.target_audience == "advanced" and base.difficulty == QuestDifficulty.EASY:
        update["difficulty"] = QuestDifficulty.MEDIUM
        update["points"] = round(base.points * 1.5)

    # Not re-validated: a short theme is a valid idea even if it is too short
    # for a stored quest, POST /api/ai-quests/save validates again
    generated.quest = base.model_copy(update=update)
    return generated


# =============================================================================
# ===================== STATS =================================================
# =============================================================================

def _recommendations(quests: list[Quest], completed: int) -> list[dict]:
    recommendations = []

    if not quests:
        recommendations.append({
            "type": "getting_started",
            "message": "Try generating your first quest! Start with an easy difficulty to get familiar with the system.",
            "action": "generate_easy_quest",
        })

    if completed < 3:
        recommendations.append({
            "type": "complete_quests",
            "message": "Complete a few quests to unlock better personalization and quest generation.",
            "action": "browse_quests",
        })

    by_difficulty = Counter(q.difficulty for q in quests)
    if by_difficulty["EASY"] > 5 and by_difficulty["MEDIUM"] == 0:
        recommendations.append({
            "type": "try_medium",
            "message": "You've mastered easy quests! Try generating a medium difficulty quest for a new challenge.",
            "action": "generate_medium_quest",
        })

    return recommendations


def generation_stats(db: Session, user: User) -> dict:
    quests = db.query(Quest).filter(Quest.created_by == user.id).all()
    completed = db.query(Submission).filter(
        Submission.user_id == user.id,
        Submission.status == SubmissionStatus.APPROVED.value
    ).count()

    total = len(quests)
    published = sum(1 for q in quests if q.status == QuestStatus.AVAILABLE.value)
    completions = sum(q.completion_count or 0 for q in quests)
    since = datetime.utcnow() - timedelta(days=30)

    return {
        "questCreation": {
            "totalCreated": total,
            "publishedQuests": published,
            "draftQuests": total - published,
            "totalCompletions": completions,
            "averageCompletionsPerQuest": round(completions / total, 1) if total else 0,
            "recentActivity": sum(1 for q in quests if q.created_at and q.created_at > since),
        },
        "questCompletion": {
            "totalCompleted": completed,
            "completionRate": round(completed / total * 100, 1) if total else 0,
        },
        "distributions": {
            "difficulty": dict(Counter(q.difficulty for q in quests)),
            "category": dict(Counter(q.category.name for q in quests if q.category)),
        },
        "recommendations": _recommendations(quests, completed),
    }


# =============================================================================
# ===================== SUGGESTIONS ===========================================
# =============================================================================

SEASONS = {
    "winter": (12, 1, 2),
    "spring": (3, 4, 5),
    "summer": (6, 7, 8),
    "fall": (9, 10, 11),
}

SEASONAL_QUESTS = {
    "winter": ["Indoor creativity", "Cozy social gatherings", "Learning new skills"],
    "spring": ["Outdoor exploration", "Garden projects", "Fresh start challenges"],
    "summer": ["Adventure quests", "Photography expeditions", "Community events"],
    "fall": ["Harvest activities", "Preparation challenges", "Gratitude practices"],
}


def season_for(day: date) -> str:
    for season, months in SEASONS.items():
        if day.month in months:
            return season
    return "spring"


def suggest_next_difficulty(difficulties: list[str]) -> dict:
    if not difficulties:
        return {"suggested": "EASY", "reason": "Start with easy quests to build confidence"}

    counts = Counter(difficulties)
    if counts["EASY"] >= 3 and counts["MEDIUM"] == 0:
        return {"suggested": "MEDIUM", "reason": "Ready for medium difficulty challenges"}
    if counts["MEDIUM"] >= 3 and counts["HARD"] == 0:
        return {"suggested": "HARD", "reason": "Time for harder challenges"}
    if counts["HARD"] >= 2:
        return {"suggested": "EPIC", "reason": "Ready for epic adventures"}
    return {"suggested": "EASY", "reason": "Continue building experience"}


def streak_suggestion(streak: int) -> dict:
    if streak == 0:
        return {
            "message": "Start a quest streak! Complete quests on consecutive days.",
            "suggestion": "Try an easy daily quest to begin your streak",
        }
    if streak < 7:
        return {
            "message": f"Great start! You're on a {streak}-day streak.",
            "suggestion": "Keep it going with consistent daily quests",
        }
    return {
        "message": f"Amazing! {streak} days strong!",
        "suggestion": "Consider an epic quest to celebrate your dedication",
    }


def personalized_suggestions(db: Session, user: User, today: Optional[date] = None) -> dict:
    recent = (
        db.query(Submission)
        .filter(Submission.user_id == user.id, Submission.status == SubmissionStatus.APPROVED.value)
        .order_by(Submission.submitted_at.desc())
        .limit(10)
        .all()
    )
    recent_categories = [s.quest.category.name for s in recent]
    favorites = [name for name, _ in Counter(recent_categories).most_common(3)]

    categories = (
        db.query(QuestCategory)
        .filter(QuestCategory.is_active == True)
        .order_by(QuestCategory.sort_order, QuestCategory.name)
        .all()
    )
    unexplored = [c for c in categories if c.name not in favorites][:3]

    activity = []
    last_three = recent_categories[:3]
    if "Fitness" in last_three:
        activity.append({
            "theme": "Mindfulness Recovery",
            "reason": "Balance your fitness activities with mindful recovery",
        })
    if "Social" in last_three:
        activity.append({
            "theme": "Personal Reflection",
            "reason": "Complement social activities with personal growth",
        })

    season = season_for(today or date.today())
    return {
        "exploreNewCategories": [
            {
                "category": c.name,
                "reason": f"Explore {(c.description or 'this category').lower()}",
                "icon": c.icon,
            }
            for c in unexplored
        ],
        "nextDifficultyLevel": suggest_next_difficulty([s.quest.difficulty for s in recent]),
        "basedOnRecentActivity": activity,
        "seasonalSuggestions": {"season": season, "suggestions": SEASONAL_QUESTS[season]},
        "streakMaintenance": streak_suggestion(user.current_streak or 0),
    }
