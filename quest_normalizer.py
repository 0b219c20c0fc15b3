"""
=============================================================================
QUEST_NORMALIZER.PY — From Generated Quest to Stored Quest
=============================================================================
Two steps between "the model wrote a quest" and "a row in quests":

  1. normalize_quest()  → AIQuestOutput → QuestCreate
       - category looked up by its capitalized name ("fitness" → "Fitness")
       - difficulty uppercased, proof hints → submission types
       - running/walking fitness quests require an outdoor location
  2. save_quest()       → QuestCreate + caller → Quest (publish gate)
       - AVAILABLE only for ADMIN/MODERATOR asking for autoPublish
       - everyone else gets a DRAFT

The same save_quest() stores hand-written quests from POST /api/quests.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from auth import is_staff
from errors import NotFoundError, ValidationError
from models import Quest, QuestCategory, QuestDifficulty, QuestStatus, SubmissionType, User
from schemas import SAFETY_NOTES_PREFIX, AIQuestOutput, QuestCreate, to_naive_utc

logger = logging.getLogger("sidequest.quests")

# proof keyword → submission type. "clip" counts as both photo and video.
PROOF_KEYWORDS = {
    SubmissionType.PHOTO: ("photo", "clip"),
    SubmissionType.VIDEO: ("video", "clip"),
    SubmissionType.TEXT: ("text", "summary", "list"),
}

OUTDOOR_TITLE_WORDS = ("run", "walk")


# =============================================================================
# ===================== NORMALIZATION =========================================
# =============================================================================

def infer_submission_types(proof: list[str]) -> list[SubmissionType]:
    """
    Keyword heuristic over the free-text proof hints.
    Anything unrecognized ("Voice recording") falls back to TEXT.
    """
    hints = [p.lower() for p in proof]
    found = [
        sub_type for sub_type, words in PROOF_KEYWORDS.items()
        if any(word in hint for hint in hints for word in words)
    ]
    return found or [SubmissionType.TEXT]


def find_category(db: Session, category: str) -> QuestCategory:
    row = db.query(QuestCategory).filter(QuestCategory.name == category.capitalize()).first()
    if row is None:
        raise NotFoundError("Category")
    return row


def normalize_quest(db: Session, output: AIQuestOutput, template: Optional[str] = None) -> QuestCreate:
    """Maps the generated JSON shape onto the stored quest shape"""
    category = find_category(db, output.category)

    title_lower = output.title.lower()
    outdoor = output.category == "fitness" and any(w in title_lower for w in OUTDOOR_TITLE_WORDS)

    tags = [output.category, output.difficulty]
    if template:
        tags.append(template)
    tags.append("ai-generated")

    return QuestCreate(
        title=output.title,
        description=output.description,
        short_description=output.short_description,
        instructions=SAFETY_NOTES_PREFIX + output.safety_notes if output.safety_notes else "",
        category_id=category.id,
        difficulty=output.difficulty.upper(),
        tags=tags,
        requirements=list(output.proof),
        points=output.xp,
        estimated_time=output.duration_min,
        submission_types=infer_submission_types(output.proof),
        location_required=outdoor,
        location_type="outdoor" if outdoor else None,
        allow_sharing=True,
        encourage_sharing=False,
    )


# =============================================================================
# ===================== PUBLISH GATE ==========================================
# =============================================================================

def publish_status(user: User, auto_publish: bool) -> str:
    if auto_publish and is_staff(user):
        return QuestStatus.AVAILABLE.value
    return QuestStatus.DRAFT.value


def ensure_category_exists(db: Session, category_id: int):
    if db.query(QuestCategory).filter(QuestCategory.id == category_id).first() is None:
        raise ValidationError("Invalid category ID")


def quest_columns(data: QuestCreate) -> dict:
    """QuestCreate → keyword arguments for the Quest model"""
    values = data.model_dump(mode="json", exclude={"auto_publish", "expires_at"})
    values["expires_at"] = to_naive_utc(data.expires_at)
    return values


def save_quest(db: Session, data: QuestCreate, user: User, auto_publish: bool = False) -> Quest:
    ensure_category_exists(db, data.category_id)

    status = publish_status(user, auto_publish)
    quest = Quest(
        **quest_columns(data),
        status=status,
        created_by=user.id,
        is_epic=data.difficulty == QuestDifficulty.EPIC,
        is_featured=False,
        published_at=datetime.utcnow() if status == QuestStatus.AVAILABLE.value else None,
    )
    db.add(quest)
    db.commit()
    db.refresh(quest)

    logger.info(f"📝 Quest {quest.id} '{quest.title}' saved as {status} by user {user.id}")
    return quest
