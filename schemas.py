"""
=============================================================================
SCHEMAS.PY — Validation Schemas (Pydantic)
=============================================================================
Models (SQLAlchemy) define the TABLES.
Schemas (Pydantic) define what DATA the API accepts and returns.

The JSON contract of the API is camelCase ("shortDescription",
"estimatedTime"), the Python side stays snake_case. The alias generator
does the translation both ways; `populate_by_name` lets the code build
schemas with snake_case keyword arguments too.

Naming convention:
  XxxCreate   → body of a POST
  XxxUpdate   → body of a PUT (every field optional)
  XxxResponse → what the API returns

Every endpoint answers with the same envelope:
  {"success": true, "data": ..., "pagination"?: {...}, "timestamp": "..."}
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, EmailStr, HttpUrl, field_validator
from pydantic.alias_generators import to_camel

from models import (
    QuestDifficulty, QuestStatus, SubmissionType, SubmissionStatus,
    BadgeType, BadgeRarity, RequirementType, UserRole
)


class CamelModel(BaseModel):
    """Base for every API schema: camelCase on the wire, ORM-friendly"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def dump(schema: type[BaseModel], obj: Any) -> dict:
    """ORM object (or dict) → JSON-ready dict with camelCase keys"""
    return schema.model_validate(obj).model_dump(mode="json", by_alias=True)


def dump_list(schema: type[BaseModel], objs) -> list[dict]:
    return [dump(schema, o) for o in objs]


# =============================================================================
# ===================== RESPONSE ENVELOPE =====================================
# =============================================================================

class PaginationInfo(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class ApiError(CamelModel):
    message: str
    code: str


class ApiResponse(CamelModel):
    """Documented shape of every answer (built by `envelope`)"""
    success: bool
    data: Any = None
    error: Optional[ApiError] = None
    pagination: Optional[PaginationInfo] = None
    timestamp: str


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """The DB stores naive UTC: "2025-06-01T10:00:00+02:00" → 08:00 without tzinfo"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def reject_null(value, info):
    """Partial updates: a field may be left out, but not sent as null"""
    if value is None:
        raise ValueError(f"{info.field_name} cannot be null")
    return value


def paginate(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def envelope(data: Any = None, pagination: Optional[dict] = None) -> dict:
    """Wraps a successful result in the uniform API envelope"""
    body = {"success": True, "data": data, "timestamp": utc_timestamp()}
    if pagination is not None:
        body["pagination"] = pagination
    return body


# =============================================================================
# ===================== AUTH ==================================================
# =============================================================================

USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"


class UserRegister(CamelModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=128)
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)


class UserLogin(CamelModel):
    email: EmailStr
    password: str


class PreferencesResponse(CamelModel):
    email_notifications: bool
    push_notifications: bool
    streak_reminders: bool
    new_quest_notifications: bool
    challenge_notifications: bool
    badge_notifications: bool
    social_notifications: bool
    profile_visibility: str
    share_completions: bool
    show_location: bool
    show_streak: bool
    show_badges: bool
    preferred_categories: list[str]
    preferred_difficulty: list[str]
    time_available_per_day: int


class UserResponse(CamelModel):
    id: int
    email: str
    username: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    timezone: Optional[str] = None
    level: int
    xp: int
    total_points: int
    current_streak: int
    longest_streak: int
    created_at: datetime
    last_active_at: Optional[datetime] = None


class UserProfileResponse(UserResponse):
    preferences: Optional[PreferencesResponse] = None


class TokenResponse(CamelModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse


# =============================================================================
# ===================== USERS =================================================
# =============================================================================

class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    bio: Optional[str] = Field(default=None, max_length=500)
    location: Optional[str] = Field(default=None, max_length=100)
    avatar: Optional[HttpUrl] = None
    timezone: Optional[str] = Field(default=None, max_length=50)


class PreferencesUpdate(CamelModel):
    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None
    streak_reminders: Optional[bool] = None
    new_quest_notifications: Optional[bool] = None
    challenge_notifications: Optional[bool] = None
    badge_notifications: Optional[bool] = None
    social_notifications: Optional[bool] = None
    profile_visibility: Optional[Literal["public", "friends", "private"]] = None
    share_completions: Optional[bool] = None
    show_location: Optional[bool] = None
    show_streak: Optional[bool] = None
    show_badges: Optional[bool] = None
    preferred_categories: Optional[list[str]] = None
    preferred_difficulty: Optional[list[QuestDifficulty]] = None
    time_available_per_day: Optional[int] = Field(default=None, ge=5, le=480)


class PasswordChange(CamelModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)


class PublicProfileResponse(CamelModel):
    id: int
    username: str
    avatar: Optional[str] = None
    bio: Optional[str] = None
    level: int
    xp: int
    current_streak: Optional[int] = None
    badges: Optional[list[dict]] = None
    completed_quests: int
    created_at: datetime


# =============================================================================
# ===================== CATEGORIES ============================================
# =============================================================================

HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"


class CategoryCreate(CamelModel):
    name: str = Field(min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    icon: Optional[str] = Field(default=None, max_length=10)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    sort_order: int = 0


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    icon: Optional[str] = Field(default=None, max_length=10)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("name", "sort_order", "is_active")
    @classmethod
    def not_null(cls, value, info):
        return reject_null(value, info)


class CategoryResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    is_active: bool
    sort_order: int
    quest_count: int = 0


class CategorySummary(CamelModel):
    id: int
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None


# =============================================================================
# ===================== QUESTS ================================================
# =============================================================================

class QuestCreate(CamelModel):
    title: str = Field(min_length=3, max_length=100)
    description: str = Field(min_length=10, max_length=2000)
    short_description: str = Field(min_length=5, max_length=200)
    instructions: Optional[str] = Field(default=None, max_length=1000)
    category_id: int
    difficulty: QuestDifficulty
    tags: list[str] = Field(default_factory=list, max_length=10)
    requirements: list[str] = Field(min_length=1, max_length=10)
    points: int = Field(ge=10, le=10000)
    estimated_time: int = Field(ge=0, le=1440)
    submission_types: list[SubmissionType] = Field(min_length=1)
    location_required: bool = False
    location_type: Optional[Literal["indoor", "outdoor", "specific"]] = None
    specific_location: Optional[str] = Field(default=None, max_length=200)
    allow_sharing: bool = True
    encourage_sharing: bool = False
    image_url: Optional[HttpUrl] = None
    video_url: Optional[HttpUrl] = None
    expires_at: Optional[datetime] = None


class QuestUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=2000)
    short_description: Optional[str] = Field(default=None, min_length=5, max_length=200)
    instructions: Optional[str] = Field(default=None, max_length=1000)
    category_id: Optional[int] = None
    difficulty: Optional[QuestDifficulty] = None
    tags: Optional[list[str]] = Field(default=None, max_length=10)
    requirements: Optional[list[str]] = Field(default=None, min_length=1, max_length=10)
    points: Optional[int] = Field(default=None, ge=10, le=10000)
    estimated_time: Optional[int] = Field(default=None, ge=0, le=1440)
    submission_types: Optional[list[SubmissionType]] = Field(default=None, min_length=1)
    location_required: Optional[bool] = None
    location_type: Optional[Literal["indoor", "outdoor", "specific"]] = None
    specific_location: Optional[str] = Field(default=None, max_length=200)
    allow_sharing: Optional[bool] = None
    encourage_sharing: Optional[bool] = None
    image_url: Optional[HttpUrl] = None
    video_url: Optional[HttpUrl] = None
    expires_at: Optional[datetime] = None
    status: Optional[QuestStatus] = None
    is_featured: Optional[bool] = None

    # omitted means "leave as is", an explicit null is refused for NOT NULL columns
    @field_validator(
        "title", "description", "short_description", "category_id", "difficulty",
        "tags", "requirements", "points", "estimated_time", "submission_types",
        "location_required", "allow_sharing", "encourage_sharing", "status", "is_featured",
    )
    @classmethod
    def not_null(cls, value, info):
        return reject_null(value, info)


class QuestCreateRequest(QuestCreate):
    """POST /api/quests body: a quest plus the optional publish request"""
    auto_publish: bool = False


class QuestResponse(CamelModel):
    id: int
    title: str
    description: str
    short_description: str
    instructions: Optional[str] = None
    category_id: int
    category: Optional[CategorySummary] = None
    difficulty: str
    tags: list[str]
    requirements: list[str]
    points: int
    estimated_time: int
    submission_types: list[str]
    status: str
    is_featured: bool
    is_epic: bool
    location_required: bool
    location_type: Optional[str] = None
    specific_location: Optional[str] = None
    allow_sharing: bool
    encourage_sharing: bool
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    created_by: Optional[int] = None
    completion_count: int
    average_rating: Optional[float] = None
    rating_count: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


SORT_FIELDS = Literal["created", "updated", "points", "difficulty", "popularity", "title"]


# =============================================================================
# ===================== SUBMISSIONS ===========================================
# =============================================================================

class SubmissionCreate(CamelModel):
    caption: str = Field(min_length=1, max_length=500)
    text_content: Optional[str] = Field(default=None, max_length=2000)
    media_urls: Optional[list[HttpUrl]] = Field(default=None, max_length=5)
    checklist_data: Optional[dict[str, bool]] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=200)
    privacy: Literal["public", "friends", "private"] = "public"


class SubmissionReview(CamelModel):
    decision: Literal["APPROVED", "REJECTED"]
    reason: Optional[str] = Field(default=None, max_length=500)


class SubmissionResponse(CamelModel):
    id: int
    quest_id: int
    user_id: int
    type: str
    status: str
    caption: str
    text_content: Optional[str] = None
    media_urls: Optional[list[str]] = None
    checklist_data: Optional[dict[str, bool]] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    privacy: str
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    moderation_flags: Optional[dict] = None
    flagged_at: Optional[datetime] = None
    submitted_at: datetime


# =============================================================================
# ===================== QUEST PROGRESS ========================================
# =============================================================================

class StartQuestRequest(CamelModel):
    quest_id: int


class QuestProgressResponse(CamelModel):
    id: int
    user_id: int
    quest_id: int
    status: str
    current_step: int
    total_steps: int
    xp_earned: int
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None
    quest: Optional[QuestResponse] = None


# =============================================================================
# ===================== AI QUESTS =============================================
# =============================================================================

GenerationCategory = Literal["fitness", "learning"]
GenerationDifficulty = Literal["easy", "medium", "hard", "epic"]
ALLOWED_XP = (50, 100, 150, 250)

# stored as "Safety Notes: ..." inside the 1000 character instructions
SAFETY_NOTES_PREFIX = "Safety Notes: "
SAFETY_NOTES_MAX = 1000 - len(SAFETY_NOTES_PREFIX)


class AIQuestOutput(BaseModel):
    """
    The exact JSON shape the text generator must answer with.
    The mock generator produces the same shape, so both paths meet
    the same validation before normalization.
    """
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=3, max_length=60)
    short_description: str = Field(alias="shortDescription", min_length=5, max_length=120)
    category: GenerationCategory
    difficulty: GenerationDifficulty
    duration_min: int = Field(ge=1, le=1440)
    description: str = Field(min_length=10, max_length=2000)
    safety_notes: str = Field(default="", max_length=SAFETY_NOTES_MAX)
    proof: list[str] = Field(min_length=1, max_length=10)
    xp: Literal[50, 100, 150, 250]

    @field_validator("category", "difficulty", mode="before")
    @classmethod
    def lowercase(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("safety_notes", mode="before")
    @classmethod
    def none_to_empty(cls, value):
        return "" if value is None else value


class GenerationContext(CamelModel):
    time_of_day: Optional[Literal["morning", "afternoon", "evening", "night"]] = None
    location: Optional[str] = Field(default=None, max_length=100)
    interests: Optional[list[str]] = Field(default=None, max_length=10)


class GenerateQuestRequest(CamelModel):
    mode: Literal["quick", "custom"] = "quick"
    difficulty: GenerationDifficulty = "easy"
    category: Optional[GenerationCategory] = None
    previous_category: Optional[GenerationCategory] = None
    idea: Optional[str] = Field(default=None, max_length=500)
    count: int = Field(default=1, ge=1, le=5)
    context: Optional[GenerationContext] = None
    save: bool = False
    auto_publish: bool = False

    @field_validator("difficulty", "category", "previous_category", mode="before")
    @classmethod
    def lowercase(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class SaveGeneratedQuestRequest(CamelModel):
    quest_data: QuestCreate
    auto_publish: bool = False


class QuestIdeaRequest(CamelModel):
    theme: str = Field(min_length=3, max_length=50)
    description: str = Field(min_length=10, max_length=500)
    category_preference: Optional[GenerationCategory] = None
    difficulty_preference: Optional[GenerationDifficulty] = None
    include_location: bool = False
    target_audience: Literal["beginners", "intermediate", "advanced", "everyone"] = "everyone"

    @field_validator("category_preference", "difficulty_preference", mode="before")
    @classmethod
    def lowercase(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


# =============================================================================
# ===================== MODERATION ============================================
# =============================================================================

class ModerationRequest(CamelModel):
    content_type: Literal["TEXT", "IMAGE", "VIDEO"]
    content: str = Field(min_length=1, max_length=10000)
    content_id: Optional[str] = None


# =============================================================================
# ===================== GAMIFICATION ==========================================
# =============================================================================

class XpGrant(CamelModel):
    user_id: int
    amount: int = Field(ge=-10000, le=10000)
    description: Optional[str] = Field(default=None, max_length=255)


class BadgeAward(CamelModel):
    user_id: int
    badge_id: int


class BadgeRequirementResponse(CamelModel):
    type: RequirementType
    value: int
    category: Optional[str] = None


class BadgeResponse(CamelModel):
    id: int
    name: str
    description: str
    icon: str
    type: BadgeType
    rarity: BadgeRarity
    unlocked_count: int
    is_active: bool
    requirements: list[BadgeRequirementResponse] = []


class UserBadgeResponse(CamelModel):
    id: int
    badge_id: int
    unlocked_at: datetime
    badge: BadgeResponse


class XpLogResponse(CamelModel):
    id: int
    amount: int
    source: str
    source_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


# =============================================================================
# ===================== CHALLENGES ============================================
# =============================================================================

class ChallengeQuestIn(CamelModel):
    quest_id: int
    point_multiplier: float = Field(default=1.0, gt=0, le=10)
    is_required: bool = False


class ChallengeRewardIn(CamelModel):
    badge_id: int
    requirement: str = Field(min_length=1, max_length=200)


class ChallengeCreate(CamelModel):
    title: str = Field(min_length=3, max_length=200)
    description: str = Field(min_length=10, max_length=2000)
    theme: str = Field(min_length=2, max_length=100)
    rules: Optional[str] = Field(default=None, max_length=2000)
    prizes_description: Optional[str] = Field(default=None, max_length=1000)
    start_date: datetime
    end_date: datetime
    max_participants: Optional[int] = Field(default=None, ge=1)
    image_url: Optional[HttpUrl] = None
    quests: list[ChallengeQuestIn] = Field(default_factory=list)
    rewards: list[ChallengeRewardIn] = Field(default_factory=list)


class ChallengeQuestResponse(CamelModel):
    quest_id: int
    point_multiplier: float
    is_required: bool


class ChallengeRewardResponse(CamelModel):
    badge_id: int
    requirement: str


class ChallengeResponse(CamelModel):
    id: int
    title: str
    description: str
    theme: str
    rules: Optional[str] = None
    prizes_description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    status: str
    max_participants: Optional[int] = None
    current_participants: int
    image_url: Optional[str] = None
    created_by: Optional[int] = None
    quests: list[ChallengeQuestResponse] = []
    rewards: list[ChallengeRewardResponse] = []


class LeaderboardEntryResponse(CamelModel):
    user_id: int
    rank: int
    score: int
    completed_quests: int


# =============================================================================
# ===================== NOTIFICATIONS =========================================
# =============================================================================

class NotificationResponse(CamelModel):
    id: int
    type: str
    title: str
    message: str
    action_url: Optional[str] = None
    extra: Optional[dict] = Field(default=None, serialization_alias="metadata")
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
    expires_at: Optional[datetime] = None


def is_video_url(url: str) -> bool:
    """Cheap media-type sniffing for submission URLs"""
    return re.search(r"\.(mp4|mov|webm|avi|mkv)(\?|$)", url, re.IGNORECASE) is not None


ROLE_VALUES = [r.value for r in UserRole]
SUBMISSION_STATUS_VALUES = [s.value for s in SubmissionStatus]
