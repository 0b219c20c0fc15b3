"""
=============================================================================
GAMIFICATION.PY — XP, Levels, Streaks, Badges and Challenges
=============================================================================
Handles:
  - XP (every change is written to xp_logs)
  - Levels (Novice → Divine, fixed XP thresholds)
  - Streaks (consecutive days with an approved quest)
  - Badges (unlocked when ALL their requirements are met)
  - Challenge scores and leaderboards
  - Quest progress (started, submitted, completed, abandoned)
  - Notifications for everything above
  - Seed data: quest categories and badges

Everything is triggered by ONE event: a moderator approves a submission
(see on_submission_approved).
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from errors import ConflictError, NotFoundError, ValidationError
from models import (
    User, Quest, QuestCategory, QuestStatus, Submission, SubmissionStatus,
    UserQuestProgress, ProgressStatus,
    Badge, BadgeRequirement, UserBadge, XpLog, RequirementType,
    Challenge, ChallengeStatus, ChallengeParticipant, ChallengeQuest, ChallengeLeaderboard,
    Notification, NotificationType
)

logger = logging.getLogger("sidequest.gamification")


# =============================================================================
# ===================== LEVELS ================================================
# =============================================================================
# (level, name, XP needed to reach it)

LEVELS = [
    (1, "Novice", 0),
    (2, "Explorer", 100),
    (3, "Adventurer", 300),
    (4, "Hero", 600),
    (5, "Champion", 1000),
    (6, "Master", 1500),
    (7, "Legend", 2200),
    (8, "Mythic", 3000),
    (9, "Transcendent", 4000),
    (10, "Divine", 5000),
]

MAX_LEVEL = LEVELS[-1][0]


def level_definition(level: int) -> dict:
    for lvl, name, min_xp in LEVELS:
        if lvl == level:
            next_xp = LEVELS[lvl][2] if lvl < MAX_LEVEL else None
            return {"level": lvl, "name": name, "minXp": min_xp, "nextLevelXp": next_xp}
    raise NotFoundError("Level")


def get_level_title(level: int) -> str:
    title = LEVELS[0][1]
    for lvl, name, _ in LEVELS:
        if level >= lvl:
            title = name
    return title


def calculate_level(total_xp: int) -> int:
    """Highest level whose threshold is reached"""
    level = 1
    for lvl, _, min_xp in LEVELS:
        if total_xp >= min_xp:
            level = lvl
    return level


def get_level_info(user: User) -> dict:
    """Where the user stands inside the current level"""
    current = level_definition(user.level)
    if user.level >= MAX_LEVEL:
        return {
            "level": user.level,
            "name": current["name"],
            "xp": user.xp,
            "currentLevelXp": current["minXp"],
            "nextLevelXp": None,
            "xpToNextLevel": 0,
            "progress": 100.0,
            "isMaxLevel": True,
        }

    span = current["nextLevelXp"] - current["minXp"]
    into = user.xp - current["minXp"]
    return {
        "level": user.level,
        "name": current["name"],
        "xp": user.xp,
        "currentLevelXp": current["minXp"],
        "nextLevelXp": current["nextLevelXp"],
        "xpToNextLevel": current["nextLevelXp"] - user.xp,
        "progress": round(into / span * 100, 1) if span > 0 else 100.0,
        "isMaxLevel": False,
    }


def all_levels() -> list[dict]:
    return [level_definition(lvl) for lvl, _, _ in LEVELS]


# =============================================================================
# ===================== NOTIFICATIONS =========================================
# =============================================================================

def notify(
    db: Session,
    user_id: int,
    type: NotificationType,
    title: str,
    message: str,
    action_url: Optional[str] = None,
    extra: Optional[dict] = None,
    expires_in_days: Optional[int] = 30,
) -> Notification:
    """Queues a notification on the session (the caller commits)"""
    notification = Notification(
        user_id=user_id,
        type=type.value,
        title=title,
        message=message,
        action_url=action_url,
        extra=extra,
        expires_at=datetime.utcnow() + timedelta(days=expires_in_days) if expires_in_days else None,
    )
    db.add(notification)
    return notification


# =============================================================================
# ===================== XP ====================================================
# =============================================================================

# XP for an approved quest = BASE × multiplier of the quest difficulty
QUEST_COMPLETION_BASE_XP = 100
DIFFICULTY_MULTIPLIERS = {
    "EASY": 1.0,
    "MEDIUM": 1.5,
    "HARD": 2.0,
    "EPIC": 3.0,
}

BADGE_XP_REWARD = 50


def quest_completion_xp(difficulty: str) -> int:
    return round(QUEST_COMPLETION_BASE_XP * DIFFICULTY_MULTIPLIERS.get(difficulty, 1.0))


def award_xp(
    db: Session,
    user: User,
    amount: int,
    source: str,
    source_id: Optional[str] = None,
    description: Optional[str] = None,
) -> dict:
    """
    Adds (or removes) XP, logs it and recalculates the level.

    Returns:
      {"xpAwarded": 150, "totalXp": 420, "leveledUp": True,
       "oldLevel": 2, "newLevel": 3, "newTitle": "Adventurer"}
    """
    old_level = user.level
    user.xp = max((user.xp or 0) + amount, 0)

    db.add(XpLog(
        user_id=user.id,
        amount=amount,
        source=source,
        source_id=str(source_id) if source_id is not None else None,
        description=description or f"{source.replace('_', ' ').capitalize()} ({amount:+d} XP)",
    ))

    new_level = calculate_level(user.xp)
    user.level = new_level
    leveled_up = new_level > old_level

    if leveled_up:
        title = get_level_title(new_level)
        notify(
            db, user.id, NotificationType.LEVEL_UP,
            title=f"Level up! You are now a {title}",
            message=f"You reached level {new_level} ({title}). Keep questing!",
            extra={"oldLevel": old_level, "newLevel": new_level},
        )
        logger.info(f"⬆️ User {user.id} reached level {new_level} ({title})")

    db.commit()

    result = {
        "xpAwarded": amount,
        "totalXp": user.xp,
        "leveledUp": leveled_up,
        "oldLevel": old_level,
        "newLevel": new_level,
    }
    if leveled_up:
        result["newTitle"] = get_level_title(new_level)
    return result


# =============================================================================
# ===================== STREAKS ===============================================
# =============================================================================

def update_streak(user: User, completed_at: datetime):
    """
    Logic:
      - previous approved completion yesterday → streak +1
      - previous completion today              → unchanged
      - anything else                          → streak = 1
    """
    today = completed_at.date()
    last = user.last_completion_at.date() if user.last_completion_at else None

    if last == today:
        pass
    elif last == today - timedelta(days=1):
        user.current_streak = (user.current_streak or 0) + 1
    else:
        user.current_streak = 1

    if user.current_streak > (user.longest_streak or 0):
        user.longest_streak = user.current_streak
    user.last_completion_at = completed_at


# =============================================================================
# ===================== BADGES ================================================
# =============================================================================

BADGE_DEFINITIONS = [
    {
        "name": "First Quest", "icon": "🏆", "type": "completion", "rarity": "common",
        "description": "Complete your very first quest",
        "requirements": [("QUEST_COUNT", 1, None)],
    },
    {
        "name": "Week Warrior", "icon": "🔥", "type": "streak", "rarity": "rare",
        "description": "Complete quests 7 days in a row",
        "requirements": [("STREAK_LENGTH", 7, None)],
    },
    {
        "name": "Social Butterfly", "icon": "🦋", "type": "social", "rarity": "epic",
        "description": "Share 10 completed quests publicly",
        "requirements": [("SOCIAL_ACTIVITY", 10, None)],
    },
    {
        "name": "Legend", "icon": "👑", "type": "special", "rarity": "legendary",
        "description": "Reach the highest level",
        "requirements": [("LEVEL_REACHED", MAX_LEVEL, None)],
    },
    {
        "name": "Kindness Champion", "icon": "💝", "type": "completion", "rarity": "epic",
        "description": "Complete 25 kindness quests",
        "requirements": [("QUEST_COUNT", 25, "Kindness")],
    },
]


def seed_badges(db: Session):
    """Inserts the default badges if they don't exist (runs at startup)"""
    for definition in BADGE_DEFINITIONS:
        existing = db.query(Badge).filter(Badge.name == definition["name"]).first()
        if existing:
            continue
        badge = Badge(
            name=definition["name"],
            description=definition["description"],
            icon=definition["icon"],
            type=definition["type"],
            rarity=definition["rarity"],
        )
        for req_type, value, category in definition["requirements"]:
            badge.requirements.append(BadgeRequirement(type=req_type, value=value, category=category))
        db.add(badge)
    db.commit()
    logger.info(f"✅ {len(BADGE_DEFINITIONS)} badges verified in DB")


def requirement_current(db: Session, user: User, requirement: BadgeRequirement) -> int:
    """The user's current value for one badge requirement"""
    if requirement.type == RequirementType.QUEST_COUNT.value:
        query = db.query(Submission).filter(
            Submission.user_id == user.id,
            Submission.status == SubmissionStatus.APPROVED.value
        )
        if requirement.category:
            query = query.join(Quest, Submission.quest_id == Quest.id).join(
                QuestCategory, Quest.category_id == QuestCategory.id
            ).filter(QuestCategory.name == requirement.category)
        return query.count()

    if requirement.type == RequirementType.STREAK_LENGTH.value:
        return user.current_streak or 0

    if requirement.type == RequirementType.XP_TOTAL.value:
        return user.xp or 0

    if requirement.type == RequirementType.LEVEL_REACHED.value:
        return user.level or 1

    if requirement.type == RequirementType.SOCIAL_ACTIVITY.value:
        return db.query(Submission).filter(
            Submission.user_id == user.id,
            Submission.status == SubmissionStatus.APPROVED.value,
            Submission.privacy == "public"
        ).count()

    return 0


def badge_progress(db: Session, user: User, badge: Badge) -> dict:
    """Progress = average of min(current / target × 100, 100) over the requirements"""
    rows = []
    for req in badge.requirements:
        current = requirement_current(db, user, req)
        pct = min(current / req.value * 100, 100.0) if req.value > 0 else 100.0
        rows.append({
            "type": req.type,
            "target": req.value,
            "category": req.category,
            "current": current,
            "progress": round(pct, 1),
            "met": current >= req.value,
        })

    progress = sum(r["progress"] for r in rows) / len(rows) if rows else 0.0
    earned = db.query(UserBadge).filter(
        UserBadge.user_id == user.id, UserBadge.badge_id == badge.id
    ).first() is not None

    return {
        "badgeId": badge.id,
        "name": badge.name,
        "earned": earned,
        "eligible": bool(rows) and all(r["met"] for r in rows),
        "progress": round(progress, 1),
        "requirements": rows,
    }


def _unlock(db: Session, user: User, badge: Badge, progress: Optional[dict] = None) -> UserBadge:
    user_badge = UserBadge(user_id=user.id, badge_id=badge.id, progress=progress)
    db.add(user_badge)
    badge.unlocked_count = (badge.unlocked_count or 0) + 1

    notify(
        db, user.id, NotificationType.BADGE_EARNED,
        title=f"Badge unlocked: {badge.name} {badge.icon}",
        message=badge.description,
        action_url="/badges",
        extra={"badgeId": badge.id},
    )
    logger.info(f"🏆 User {user.id} unlocked: {badge.name}")

    award_xp(db, user, BADGE_XP_REWARD, "badge_earned", badge.id, f"Earned badge {badge.name} (+{BADGE_XP_REWARD} XP)")
    return user_badge


def check_and_unlock_badges(db: Session, user: User) -> list[Badge]:
    """Unlocks every active badge whose requirements are all met"""
    owned = {
        ub.badge_id for ub in db.query(UserBadge).filter(UserBadge.user_id == user.id).all()
    }
    unlocked = []
    for badge in db.query(Badge).filter(Badge.is_active == True).all():
        if badge.id in owned or not badge.requirements:
            continue
        progress = badge_progress(db, user, badge)
        if progress["eligible"]:
            _unlock(db, user, badge, {"requirements": progress["requirements"]})
            unlocked.append(badge)
    return unlocked


def award_badge(db: Session, user: User, badge: Badge) -> UserBadge:
    """Manual award by an admin, requirements are not checked"""
    existing = db.query(UserBadge).filter(
        UserBadge.user_id == user.id, UserBadge.badge_id == badge.id
    ).first()
    if existing:
        raise ConflictError("User already has this badge")
    return _unlock(db, user, badge, {"manual": True})


# =============================================================================
# ===================== CHALLENGES ============================================
# =============================================================================

def rebuild_leaderboard(db: Session, challenge: Challenge):
    """Ranks participants by score (desc), ties broken by who joined first"""
    participants = sorted(
        challenge.participants,
        key=lambda p: (-(p.score or 0), p.joined_at or datetime.min)
    )
    quest_ids = [cq.quest_id for cq in challenge.quests]

    db.query(ChallengeLeaderboard).filter(
        ChallengeLeaderboard.challenge_id == challenge.id
    ).delete(synchronize_session=False)

    for rank, participant in enumerate(participants, start=1):
        completed = 0
        if quest_ids:
            completed = db.query(Submission).filter(
                Submission.user_id == participant.user_id,
                Submission.quest_id.in_(quest_ids),
                Submission.status == SubmissionStatus.APPROVED.value
            ).count()
        db.add(ChallengeLeaderboard(
            challenge_id=challenge.id,
            user_id=participant.user_id,
            rank=rank,
            score=participant.score or 0,
            completed_quests=completed,
        ))
    db.expire(challenge, ["leaderboard"])


def add_challenge_score(db: Session, user: User, quest: Quest) -> list[dict]:
    """Adds the quest points (× multiplier) to every ACTIVE challenge the user joined"""
    links = (
        db.query(ChallengeQuest)
        .join(Challenge, ChallengeQuest.challenge_id == Challenge.id)
        .filter(
            ChallengeQuest.quest_id == quest.id,
            Challenge.status == ChallengeStatus.ACTIVE.value
        )
        .all()
    )

    updates = []
    for link in links:
        participant = db.query(ChallengeParticipant).filter(
            ChallengeParticipant.challenge_id == link.challenge_id,
            ChallengeParticipant.user_id == user.id
        ).first()
        if participant is None:
            continue
        gained = round(quest.points * link.point_multiplier)
        participant.score = (participant.score or 0) + gained
        db.flush()
        rebuild_leaderboard(db, link.challenge)
        updates.append({"challengeId": link.challenge_id, "scoreGained": gained, "score": participant.score})

    db.commit()
    return updates


# =============================================================================
# ===================== QUEST PROGRESS ========================================
# =============================================================================
# A player can start a quest before sending anything. Submissions and
# reviews then move the same row forward:
#   start → IN_PROGRESS → submission → SUBMITTED → approved → COMPLETED
#                                                 → rejected → IN_PROGRESS

RESTARTABLE = (ProgressStatus.NOT_STARTED.value, ProgressStatus.ABANDONED.value)


def get_progress(db: Session, user_id: int, quest_id: int) -> Optional[UserQuestProgress]:
    return db.query(UserQuestProgress).filter(
        UserQuestProgress.user_id == user_id,
        UserQuestProgress.quest_id == quest_id
    ).first()


def start_quest(db: Session, user: User, quest: Quest) -> UserQuestProgress:
    if quest.status != QuestStatus.AVAILABLE.value:
        raise ValidationError("Quest is not available")

    progress = get_progress(db, user.id, quest.id)
    if progress and progress.status not in RESTARTABLE:
        raise ValidationError("Quest already started or completed")

    if progress is None:
        progress = UserQuestProgress(user_id=user.id, quest_id=quest.id, total_steps=1)
        db.add(progress)

    progress.status = ProgressStatus.IN_PROGRESS.value
    progress.started_at = datetime.utcnow()
    progress.current_step = 0
    progress.abandoned_at = None
    db.commit()
    db.refresh(progress)

    logger.info(f"🚀 User {user.id} started quest {quest.id}")
    return progress


def abandon_quest(db: Session, user: User, quest_id: int) -> UserQuestProgress:
    progress = get_progress(db, user.id, quest_id)
    if progress is None:
        raise NotFoundError("Quest progress")
    if progress.status != ProgressStatus.IN_PROGRESS.value:
        raise ValidationError("Can only abandon quests in progress")

    progress.status = ProgressStatus.ABANDONED.value
    progress.abandoned_at = datetime.utcnow()
    db.commit()
    db.refresh(progress)

    logger.info(f"🏳️ User {user.id} abandoned quest {quest_id}")
    return progress


def track_submission(db: Session, user_id: int, quest_id: int):
    """A pending submission moves the progress to SUBMITTED, starting it if needed"""
    now = datetime.utcnow()
    progress = get_progress(db, user_id, quest_id)
    if progress is None:
        progress = UserQuestProgress(user_id=user_id, quest_id=quest_id, started_at=now, total_steps=1)
        db.add(progress)
    progress.status = ProgressStatus.SUBMITTED.value
    progress.submitted_at = now
    progress.abandoned_at = None


def reopen_progress(db: Session, user_id: int, quest_id: int):
    """The submission is gone (rejected or withdrawn): back to IN_PROGRESS"""
    progress = get_progress(db, user_id, quest_id)
    if progress and progress.status == ProgressStatus.SUBMITTED.value:
        progress.status = ProgressStatus.IN_PROGRESS.value


def complete_progress(db: Session, user_id: int, quest_id: int, xp: int):
    now = datetime.utcnow()
    progress = get_progress(db, user_id, quest_id)
    if progress is None:
        progress = UserQuestProgress(user_id=user_id, quest_id=quest_id, started_at=now, total_steps=1)
        db.add(progress)
    progress.status = ProgressStatus.COMPLETED.value
    progress.current_step = progress.total_steps
    progress.completed_at = now
    progress.xp_earned = xp


# =============================================================================
# ===================== SUBMISSION APPROVED ===================================
# =============================================================================

def on_submission_approved(db: Session, user: User, quest: Quest, submission: Submission) -> dict:
    """
    Everything a completed quest triggers, in order:
      XP → streak → quest progress → challenge scores → badges → notification
    """
    xp = quest_completion_xp(quest.difficulty)
    xp_result = award_xp(
        db, user, xp, "quest_completion", quest.id,
        f"Completed quest {quest.title} (+{xp} XP)"
    )

    update_streak(user, submission.approved_at or datetime.utcnow())
    user.total_points = (user.total_points or 0) + quest.points
    complete_progress(db, user.id, quest.id, xp)
    db.commit()

    challenges = add_challenge_score(db, user, quest)
    badges = check_and_unlock_badges(db, user)

    notify(
        db, user.id, NotificationType.SUBMISSION_APPROVED,
        title="Quest completed! ✅",
        message=f"Your submission for '{quest.title}' was approved. +{xp} XP",
        action_url=f"/quests/{quest.id}",
        extra={"submissionId": submission.id, "questId": quest.id},
    )
    db.commit()

    return {
        "xp": xp_result,
        "streak": user.current_streak,
        "challenges": challenges,
        "badgesUnlocked": [b.name for b in badges],
    }


def on_submission_rejected(db: Session, submission: Submission, quest: Quest, reason: Optional[str]):
    reopen_progress(db, submission.user_id, quest.id)
    notify(
        db, submission.user_id, NotificationType.SUBMISSION_REJECTED,
        title="Submission not approved",
        message=f"Your submission for '{quest.title}' was rejected" + (f": {reason}" if reason else "."),
        action_url=f"/quests/{quest.id}",
        extra={"submissionId": submission.id, "questId": quest.id},
    )
    db.commit()


# =============================================================================
# ===================== STATS & LEADERBOARD ===================================
# =============================================================================

def user_stats(db: Session, user: User) -> dict:
    approved = db.query(Submission).filter(
        Submission.user_id == user.id,
        Submission.status == SubmissionStatus.APPROVED.value
    ).count()
    badges = db.query(UserBadge).filter(UserBadge.user_id == user.id).count()
    total_badges = db.query(Badge).filter(Badge.is_active == True).count()

    return {
        "level": get_level_info(user),
        "totalPoints": user.total_points,
        "questsCompleted": approved,
        "currentStreak": user.current_streak,
        "longestStreak": user.longest_streak,
        "badgesEarned": badges,
        "badgesAvailable": total_badges,
    }


def leaderboard(db: Session, limit: int = 10) -> list[dict]:
    users = (
        db.query(User)
        .filter(User.is_active == True)
        .order_by(User.xp.desc(), User.created_at.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "rank": i,
            "userId": u.id,
            "username": u.username,
            "avatar": u.avatar,
            "level": u.level,
            "levelName": get_level_title(u.level),
            "xp": u.xp,
            "currentStreak": u.current_streak,
        }
        for i, u in enumerate(users, start=1)
    ]


# =============================================================================
# ===================== SEED CATEGORIES =======================================
# =============================================================================

DEFAULT_CATEGORIES = [
    ("Kindness", "Acts of kindness and compassion", "❤️", "#FF6B6B"),
    ("Fitness", "Physical health and exercise", "💪", "#4ECDC4"),
    ("Creativity", "Creative expression and art", "🎨", "#45B7D1"),
    ("Mindfulness", "Mental health and awareness", "🧘", "#96CEB4"),
    ("Photography", "Capturing beautiful moments", "📸", "#FFEAA7"),
    ("Learning", "Education and skill development", "📚", "#DDA0DD"),
    ("Social", "Building connections with others", "👥", "#98D8C8"),
    ("Adventure", "Exploring and trying new things", "🌍", "#F7DC6F"),
]


def seed_categories(db: Session):
    """
    Inserts the default quest categories if they don't exist.
    The generated quests need "Fitness" and "Learning" to be here.
    """
    for order, (name, description, icon, color) in enumerate(DEFAULT_CATEGORIES):
        if db.query(QuestCategory).filter(QuestCategory.name == name).first():
            continue
        db.add(QuestCategory(
            name=name, description=description, icon=icon, color=color, sort_order=order
        ))
    db.commit()
    logger.info(f"✅ {len(DEFAULT_CATEGORIES)} categories verified in DB")
