"""
=============================================================================
MODELS.PY — Every Database Model (Table)
=============================================================================
Each class here = one table. Each attribute = one column.

RELATIONSHIPS:
  USER
  ├── preferences (1:1)
  ├── submissions[] ──→ quest
  ├── user_badges[] ──→ badge ──→ requirements[]
  ├── xp_logs[]
  ├── notifications[]
  ├── challenge_participations[] ──→ challenge
  ├── quest_progress[] ──→ quest (one row per user and quest)
  └── created_quests[] (SET NULL if the user goes away)

  QUEST_CATEGORY ──→ quests[]
  CHALLENGE ──→ participants[], quests[], rewards[], leaderboard[]

Array/object fields (quest tags, requirements, submission types, media
URLs...) are JSON columns: SQLAlchemy stores the Python list and gives the
same list back, no manual json.dumps/json.loads anywhere.
"""

from datetime import datetime
import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, Float, Text, DateTime, ForeignKey,
    JSON, UniqueConstraint, Index, text
)
from sqlalchemy.orm import relationship

from database import Base


# =============================================================================
# ===================== ENUMS =================================================
# =============================================================================

class UserRole(str, enum.Enum):
    USER = "USER"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"


class QuestDifficulty(str, enum.Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"
    EPIC = "EPIC"


class QuestStatus(str, enum.Enum):
    """Lifecycle: DRAFT → AVAILABLE → ACTIVE → COMPLETED/EXPIRED → ARCHIVED"""
    DRAFT = "DRAFT"
    AVAILABLE = "AVAILABLE"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    ARCHIVED = "ARCHIVED"


class SubmissionType(str, enum.Enum):
    PHOTO = "PHOTO"
    VIDEO = "VIDEO"
    TEXT = "TEXT"
    CHECKLIST = "CHECKLIST"


class SubmissionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class BadgeType(str, enum.Enum):
    streak = "streak"
    completion = "completion"
    social = "social"
    special = "special"
    achievement = "achievement"


class BadgeRarity(str, enum.Enum):
    common = "common"
    uncommon = "uncommon"
    rare = "rare"
    epic = "epic"
    legendary = "legendary"


class RequirementType(str, enum.Enum):
    """What a badge requirement counts"""
    QUEST_COUNT = "QUEST_COUNT"          # approved submissions
    STREAK_LENGTH = "STREAK_LENGTH"      # current streak (days)
    XP_TOTAL = "XP_TOTAL"                # total XP
    LEVEL_REACHED = "LEVEL_REACHED"      # current level
    SOCIAL_ACTIVITY = "SOCIAL_ACTIVITY"  # approved public submissions


class ProgressStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class ChallengeStatus(str, enum.Enum):
    UPCOMING = "UPCOMING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class NotificationType(str, enum.Enum):
    LEVEL_UP = "LEVEL_UP"
    BADGE_EARNED = "BADGE_EARNED"
    SUBMISSION_APPROVED = "SUBMISSION_APPROVED"
    SUBMISSION_REJECTED = "SUBMISSION_REJECTED"
    CHALLENGE_JOINED = "CHALLENGE_JOINED"
    SYSTEM = "SYSTEM"


# =============================================================================
# ===================== TABLE 1: USERS ========================================
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # ── Account ──
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(30), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)

    # ── Profile ──
    first_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=True)
    avatar = Column(String(500), nullable=True)
    bio = Column(Text, nullable=True)
    location = Column(String(100), nullable=True)
    timezone = Column(String(50), nullable=True)

    # ── Gamification ──
    level = Column(Integer, nullable=False, default=1)
    xp = Column(Integer, nullable=False, default=0)
    total_points = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_completion_at = Column(DateTime, nullable=True)
    # last_completion_at → last APPROVED submission, drives the streak

    # ── Soft delete ──
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime, nullable=True)

    # ── Timestamps ──
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_active_at = Column(DateTime, default=datetime.utcnow)

    # ── Relationships ──
    preferences = relationship(
        "UserPreferences", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    submissions = relationship(
        "Submission", back_populates="user", cascade="all, delete-orphan",
        foreign_keys="Submission.user_id"
    )
    user_badges = relationship("UserBadge", back_populates="user", cascade="all, delete-orphan")
    xp_logs = relationship("XpLog", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    quest_progress = relationship("UserQuestProgress", back_populates="user", cascade="all, delete-orphan")
    challenge_participations = relationship(
        "ChallengeParticipant", back_populates="user", cascade="all, delete-orphan"
    )
    created_quests = relationship("Quest", back_populates="creator", foreign_keys="Quest.created_by")
    # NO cascade here: a quest outlives its creator (created_by → NULL)


# =============================================================================
# ===================== TABLE 2: USER_PREFERENCES =============================
# =============================================================================

class UserPreferences(Base):
    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    # ── Notifications ──
    email_notifications = Column(Boolean, default=True)
    push_notifications = Column(Boolean, default=True)
    streak_reminders = Column(Boolean, default=True)
    new_quest_notifications = Column(Boolean, default=True)
    challenge_notifications = Column(Boolean, default=True)
    badge_notifications = Column(Boolean, default=True)
    social_notifications = Column(Boolean, default=True)

    # ── Privacy ──
    profile_visibility = Column(String(20), default="public")
    # profile_visibility → "public", "friends", "private"
    share_completions = Column(Boolean, default=True)
    show_location = Column(Boolean, default=False)
    show_streak = Column(Boolean, default=True)
    show_badges = Column(Boolean, default=True)

    # ── Quest preferences ──
    preferred_categories = Column(JSON, nullable=False, default=list)
    preferred_difficulty = Column(JSON, nullable=False, default=list)
    time_available_per_day = Column(Integer, default=30)
    # minutes per day the user wants to spend on quests

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="preferences")


# =============================================================================
# ===================== TABLE 3: QUEST_CATEGORIES =============================
# =============================================================================
# Never hard-deleted while quests still point at them: is_active = False.

class QuestCategory(Base):
    __tablename__ = "quest_categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), unique=True, nullable=False)
    description = Column(String(200), nullable=True)
    icon = Column(String(10), nullable=True)
    color = Column(String(7), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    quests = relationship("Quest", back_populates="category")


# =============================================================================
# ===================== TABLE 4: QUESTS =======================================
# =============================================================================

class Quest(Base):
    __tablename__ = "quests"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # ── Content ──
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    short_description = Column(String(200), nullable=False)
    instructions = Column(Text, nullable=True)
    category_id = Column(Integer, ForeignKey("quest_categories.id"), nullable=False)
    difficulty = Column(String(10), nullable=False)

    tags = Column(JSON, nullable=False, default=list)
    # tags → ["fitness", "easy", "run", "ai-generated"]
    requirements = Column(JSON, nullable=False, default=list)
    # requirements → ordered list, shown as the proof checklist
    submission_types = Column(JSON, nullable=False, default=list)
    # submission_types → ["PHOTO", "TEXT"] (never empty)

    points = Column(Integer, nullable=False)
    estimated_time = Column(Integer, nullable=False)
    # estimated_time → minutes

    # ── State ──
    status = Column(String(20), nullable=False, default=QuestStatus.DRAFT.value)
    is_featured = Column(Boolean, nullable=False, default=False)
    is_epic = Column(Boolean, nullable=False, default=False)

    # ── Location ──
    location_required = Column(Boolean, nullable=False, default=False)
    location_type = Column(String(20), nullable=True)
    # location_type → "indoor", "outdoor", "specific"
    specific_location = Column(String(200), nullable=True)

    # ── Sharing / media ──
    allow_sharing = Column(Boolean, nullable=False, default=True)
    encourage_sharing = Column(Boolean, nullable=False, default=False)
    image_url = Column(String(500), nullable=True)
    video_url = Column(String(500), nullable=True)

    # ── Ownership & moderation ──
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    moderated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    moderated_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # ── Stats ──
    completion_count = Column(Integer, nullable=False, default=0)
    average_rating = Column(Float, nullable=True)
    rating_count = Column(Integer, nullable=False, default=0)

    # ── Timestamps ──
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    published_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    category = relationship("QuestCategory", back_populates="quests")
    creator = relationship("User", back_populates="created_quests", foreign_keys=[created_by])
    submissions = relationship("Submission", back_populates="quest")


# =============================================================================
# ===================== TABLE 5: SUBMISSIONS ==================================
# =============================================================================
# A user can hold at most ONE PENDING-or-APPROVED submission per quest.
# The endpoint checks first (nice error message), and the partial unique
# index below closes the gap between "check" and "insert".

class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    quest_id = Column(Integer, ForeignKey("quests.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=SubmissionStatus.PENDING.value)

    # ── Content ──
    caption = Column(String(500), nullable=False)
    text_content = Column(Text, nullable=True)
    media_urls = Column(JSON, nullable=True)
    checklist_data = Column(JSON, nullable=True)
    # checklist_data → {"Warm up": true, "Run 3 km": true}

    # ── Location ──
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address = Column(String(200), nullable=True)

    privacy = Column(String(20), nullable=False, default="public")

    # ── Review / moderation ──
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    moderation_flags = Column(JSON, nullable=True)
    # moderation_flags → {"status": "FLAGGED", "categories": [...], "confidence": 0.7}
    flagged_at = Column(DateTime, nullable=True)

    submitted_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index(
            "uq_submission_active_per_user_quest", "user_id", "quest_id",
            unique=True,
            sqlite_where=text("status IN ('PENDING', 'APPROVED')"),
            postgresql_where=text("status IN ('PENDING', 'APPROVED')"),
        ),
    )

    quest = relationship("Quest", back_populates="submissions")
    user = relationship("User", back_populates="submissions", foreign_keys=[user_id])


# =============================================================================
# ===================== TABLE 6: BADGES =======================================
# =============================================================================

class Badge(Base):
    __tablename__ = "badges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=False)
    icon = Column(String(10), nullable=False)
    type = Column(String(20), nullable=False)
    rarity = Column(String(20), nullable=False)
    unlocked_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    requirements = relationship("BadgeRequirement", back_populates="badge", cascade="all, delete-orphan")


class BadgeRequirement(Base):
    __tablename__ = "badge_requirements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    badge_id = Column(Integer, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(30), nullable=False)
    value = Column(Integer, nullable=False)
    # value → the target: 10 quests, 7 streak days, 1000 XP...
    category = Column(String(50), nullable=True)

    badge = relationship("Badge", back_populates="requirements")


class UserBadge(Base):
    __tablename__ = "user_badges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_id = Column(Integer, ForeignKey("badges.id"), nullable=False)
    unlocked_at = Column(DateTime, default=datetime.utcnow)
    progress = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )

    user = relationship("User", back_populates="user_badges")
    badge = relationship("Badge")


# =============================================================================
# ===================== TABLE 7: XP_LOGS ======================================
# =============================================================================
# Every XP change is written down here: user.xp is the sum of this table.

class XpLog(Base):
    __tablename__ = "xp_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    source = Column(String(50), nullable=False)
    # source → "quest_completion", "badge_earned", "admin_grant"...
    source_id = Column(String(50), nullable=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="xp_logs")


# =============================================================================
# ===================== TABLE 8: CHALLENGES ===================================
# =============================================================================
# Time-boxed group competitions that bundle quests and badge rewards.

class Challenge(Base):
    __tablename__ = "challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    theme = Column(String(100), nullable=False)
    rules = Column(Text, nullable=True)
    prizes_description = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=ChallengeStatus.UPCOMING.value)
    max_participants = Column(Integer, nullable=True)
    current_participants = Column(Integer, nullable=False, default=0)
    image_url = Column(String(500), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    participants = relationship("ChallengeParticipant", back_populates="challenge", cascade="all, delete-orphan")
    quests = relationship("ChallengeQuest", back_populates="challenge", cascade="all, delete-orphan")
    rewards = relationship("ChallengeReward", back_populates="challenge", cascade="all, delete-orphan")
    leaderboard = relationship(
        "ChallengeLeaderboard", back_populates="challenge", cascade="all, delete-orphan",
        order_by="ChallengeLeaderboard.rank"
    )


class ChallengeParticipant(Base):
    __tablename__ = "challenge_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challenge_id = Column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    score = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_challenge_participant"),
    )

    challenge = relationship("Challenge", back_populates="participants")
    user = relationship("User", back_populates="challenge_participations")


class ChallengeQuest(Base):
    __tablename__ = "challenge_quests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challenge_id = Column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    quest_id = Column(Integer, ForeignKey("quests.id"), nullable=False)
    point_multiplier = Column(Float, nullable=False, default=1.0)
    is_required = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("challenge_id", "quest_id", name="uq_challenge_quest"),
    )

    challenge = relationship("Challenge", back_populates="quests")
    quest = relationship("Quest")


class ChallengeReward(Base):
    __tablename__ = "challenge_rewards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challenge_id = Column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    badge_id = Column(Integer, ForeignKey("badges.id"), nullable=False)
    requirement = Column(String(200), nullable=False)
    # requirement → "top_3", "complete_all"... free text shown to players

    challenge = relationship("Challenge", back_populates="rewards")
    badge = relationship("Badge")


class ChallengeLeaderboard(Base):
    __tablename__ = "challenge_leaderboard"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challenge_id = Column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rank = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False)
    completed_quests = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    challenge = relationship("Challenge", back_populates="leaderboard")
    user = relationship("User")


# =============================================================================
# ===================== TABLE 9: NOTIFICATIONS ================================
# =============================================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(30), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String(500), nullable=True)
    extra = Column("metadata", JSON, nullable=True)
    # "metadata" is reserved by SQLAlchemy's declarative Base, hence `extra`
    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)
    # expired notifications are purged by the scheduler

    user = relationship("User", back_populates="notifications")


# =============================================================================
# ===================== TABLE 10: USER_QUEST_PROGRESS =========================
# =============================================================================
# The player's own track of a quest, separate from the submissions:
#   start → IN_PROGRESS → (submission) SUBMITTED → (approval) COMPLETED
#   IN_PROGRESS → ABANDONED → start again → IN_PROGRESS

class UserQuestProgress(Base):
    __tablename__ = "user_quest_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quest_id = Column(Integer, ForeignKey("quests.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default=ProgressStatus.IN_PROGRESS.value)

    current_step = Column(Integer, nullable=False, default=0)
    total_steps = Column(Integer, nullable=False, default=1)
    xp_earned = Column(Integer, nullable=False, default=0)

    # ── Timeline ──
    started_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    abandoned_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "quest_id", name="uq_user_quest_progress"),
    )

    user = relationship("User", back_populates="quest_progress")
    quest = relationship("Quest")
