"""
=============================================================================
MAIN.PY — The SideQuest API
=============================================================================
Every REST endpoint of the API lives in this file.

Sections:
  1. AUTH          → Register, login, current user
  2. USERS         → Profile, preferences, password, account, stats
  3. CATEGORIES    → Quest categories (CRUD, soft delete)
  4. QUESTS        → Quests (filters, sort, pagination, CRUD)
  5. SUBMISSIONS   → Proof of completion + moderator review
  6. AI QUESTS     → Generation pipeline, save, from-idea, stats, suggestions
  7. MODERATION    → Moderate content, review queue, stats
  8. GAMIFICATION  → Levels, XP log, badges, leaderboard
  9. CHALLENGES    → Time-boxed competitions
  10. NOTIFICATIONS → In-app notifications
  11. QUEST PROGRESS → Start, abandon and track quests

Every answer uses the same envelope (see schemas.envelope):
  {"success": true, "data": ..., "pagination"?: {...}, "timestamp": "..."}
and every error goes through the handlers in errors.py.
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import case, cast, func, or_, String
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from database import get_db, init_db, SessionLocal
from errors import (
    AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError,
    register_error_handlers
)
from models import *
from schemas import *
from auth import (
    hash_password, verify_password, create_access_token,
    get_current_user, require_roles, is_staff
)
from ai_quests import AIQuestService, quest_from_idea, generation_stats, personalized_suggestions
from llm_client import QuestTextGenerator
from moderation import ContentModerator, ModerationStatus
from quest_generator import TemplateSelector
from quest_normalizer import save_quest, ensure_category_exists
from gamification import (
    seed_categories, seed_badges, award_xp, award_badge, check_and_unlock_badges,
    get_level_info, level_definition, all_levels, badge_progress, user_stats,
    leaderboard, notify, on_submission_approved, on_submission_rejected, rebuild_leaderboard,
    get_progress, start_quest, abandon_quest, track_submission, reopen_progress
)

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("sidequest.api")

# ─────────────────────────────────────────────────────────────────────────────
# EARLY DB INITIALIZATION
# ─────────────────────────────────────────────────────────────────────────────
# Tables and seeds are created here, BEFORE the lifespan, so they exist even
# when the app is served without running the lifespan.

try:
    init_db()
    logger.info("✅ Database initialized (startup)")
except Exception as e:
    logger.error(f"❌ Error initializing database: {e}")

try:
    _db = SessionLocal()
    seed_categories(_db)
    seed_badges(_db)
    _db.close()
    logger.info("✅ Seeds completed (startup)")
except Exception as e:
    logger.error(f"❌ Error in seeds: {e}")


# ─────────────────────────────────────────────────────────────────────────────
# SERVICES
# ─────────────────────────────────────────────────────────────────────────────
# Built ONCE and stored on app.state. Endpoints get them through Depends,
# tests swap them by assigning app.state.services.

@dataclass
class Services:
    selector: TemplateSelector
    generator: QuestTextGenerator
    ai: AIQuestService
    moderator: ContentModerator


def build_services() -> Services:
    selector = TemplateSelector(settings.quick_mode_initial_category)
    generator = QuestTextGenerator()
    return Services(
        selector=selector,
        generator=generator,
        ai=AIQuestService(selector, generator),
        moderator=ContentModerator(),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ai_service(services: Services = Depends(get_services)) -> AIQuestService:
    return services.ai


def get_moderator(services: Services = Depends(get_services)) -> ContentModerator:
    return services.moderator


STAFF = (UserRole.ADMIN.value, UserRole.MODERATOR.value)
ADMIN = (UserRole.ADMIN.value,)


# ─────────────────────────────────────────────────────────────────────────────
# LIFESPAN (startup and shutdown)
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Create tables
      2. Seed categories and badges
      3. Start the housekeeping scheduler (if enabled)

    Shutdown:
      - Stop the scheduler cleanly
    """
    logger.info(f"🚀 Starting {settings.app_name} {settings.version}...")

    init_db()
    db = SessionLocal()
    try:
        seed_categories(db)
        seed_badges(db)
    finally:
        db.close()

    scheduler_started = False
    if settings.enable_scheduler:
        try:
            from scheduler import start_scheduler
            start_scheduler()
            scheduler_started = True
        except Exception as e:
            logger.error(f"❌ Error starting scheduler: {e}")
    else:
        logger.info("⏸️ Scheduler disabled (ENABLE_SCHEDULER=false)")

    services = app.state.services
    logger.info(
        f"🎲 AI quests: {'on' if services.ai.enabled else 'off'} "
        f"(OpenAI {'configured' if services.generator.configured else 'not configured, mock only'})"
    )
    logger.info("🎉 SideQuest API ready")

    yield

    logger.info("🛑 Shutting down...")
    if scheduler_started:
        from scheduler import stop_scheduler
        stop_scheduler()
    logger.info("👋 Shutdown complete")


# ─────────────────────────────────────────────────────────────────────────────
# FASTAPI APP
# ─────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.app_name,
    description="Gamified real-life quests: quests, submissions, XP, badges, challenges and AI-generated quests",
    version=settings.version,
    lifespan=lifespan,
)
app.state.services = build_services()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app, settings.debug_mode)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info(f"{request.method} {request.url.path} → {response.status_code} ({elapsed:.0f} ms)")
    return response


def _utcnow() -> datetime:
    return datetime.utcnow()


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

def _health() -> dict:
    return envelope({
        "status": "ok",
        "app": settings.app_name,
        "version": settings.version,
        "timestamp": utc_timestamp(),
    })


@app.get("/", tags=["Health"])
def root():
    return _health()


@app.get("/api/health", tags=["Health"])
def health_check():
    """Checks that the API is alive"""
    return _health()


# =============================================================================
# ===================== SECTION 1: AUTH =======================================
# =============================================================================

@app.post("/api/auth/register", status_code=201, tags=["Auth"])
def register(data: UserRegister, db: Session = Depends(get_db)):
    """
    Registers a new user.

    Flow:
      1. Email and username must be free
      2. Hash the password
      3. Create the user (role USER) and its default preferences
      4. Return a JWT
    """
    if db.query(User).filter(User.email == data.email).first():
        raise ConflictError("An account with this email already exists")
    if db.query(User).filter(User.username == data.username).first():
        raise ConflictError("This username is already taken")

    user = User(
        email=data.email,
        username=data.username,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        role=UserRole.USER.value,
    )
    user.preferences = UserPreferences()
    db.add(user)
    db.commit()
    db.refresh(user)

    token = create_access_token(user.id, user.email, user.role)
    logger.info(f"👤 New user registered: {user.username} ({user.email})")

    return envelope(dump(TokenResponse, {"token": token, "user": user}))


@app.post("/api/auth/login", tags=["Auth"])
def login(data: UserLogin, db: Session = Depends(get_db)):
    """Logs in with email and password"""
    user = db.query(User).filter(User.email == data.email).first()

    if not user or not verify_password(data.password, user.password_hash):
        raise AuthenticationError("Invalid email or password")
    if not user.is_active or user.deleted_at is not None:
        raise AuthenticationError("Account is deactivated")

    user.last_active_at = _utcnow()
    db.commit()
    db.refresh(user)

    token = create_access_token(user.id, user.email, user.role)
    return envelope(dump(TokenResponse, {"token": token, "user": user}))


@app.get("/api/auth/me", tags=["Auth"])
def get_me(user: User = Depends(get_current_user)):
    """Returns the authenticated user"""
    return envelope(dump(UserResponse, user))


# =============================================================================
# ===================== SECTION 2: USERS ======================================
# =============================================================================

def _ensure_preferences(db: Session, user: User) -> UserPreferences:
    if user.preferences is None:
        user.preferences = UserPreferences()
        db.commit()
        db.refresh(user)
    return user.preferences


@app.get("/api/users/profile", tags=["Users"])
def get_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _ensure_preferences(db, user)
    return envelope(dump(UserProfileResponse, user))


@app.put("/api/users/profile", tags=["Users"])
def update_profile(data: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Partial update: only the fields sent are changed"""
    for key, value in data.model_dump(mode="json", exclude_unset=True).items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return envelope(dump(UserProfileResponse, user))


@app.put("/api/users/preferences", tags=["Users"])
def update_preferences(data: PreferencesUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    preferences = _ensure_preferences(db, user)
    for key, value in data.model_dump(mode="json", exclude_unset=True).items():
        setattr(preferences, key, value)
    db.commit()
    db.refresh(preferences)
    return envelope(dump(PreferencesResponse, preferences))


@app.put("/api/users/password", tags=["Users"])
def change_password(data: PasswordChange, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not verify_password(data.current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    user.password_hash = hash_password(data.new_password)
    db.commit()
    logger.info(f"🔑 Password changed: user {user.id}")
    return envelope({"message": "Password updated successfully"})


@app.delete("/api/users/account", tags=["Users"])
def delete_account(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Soft delete: the account is deactivated, the data stays"""
    user.is_active = False
    user.deleted_at = _utcnow()
    db.commit()
    logger.info(f"🗑️ Account deactivated: {user.email}")
    return envelope({"message": "Account deleted successfully"})


@app.get("/api/users/stats", tags=["Users"])
def get_user_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = db.query(Submission.status, func.count(Submission.id)).filter(
        Submission.user_id == user.id
    ).group_by(Submission.status).all()
    by_status = {s: 0 for s in SUBMISSION_STATUS_VALUES}
    by_status.update({status: count for status, count in rows})

    return envelope({
        "submissions": by_status,
        "questsCompleted": by_status[SubmissionStatus.APPROVED.value],
        "xp": user.xp,
        "level": user.level,
        "currentStreak": user.current_streak,
        "longestStreak": user.longest_streak,
        "badges": db.query(UserBadge).filter(UserBadge.user_id == user.id).count(),
    })


@app.get("/api/users/profile/{username}", tags=["Users"])
def get_public_profile(username: str, db: Session = Depends(get_db)):
    """Public profile, honouring the user's privacy preferences"""
    user = db.query(User).filter(
        User.username == username,
        User.is_active == True,
        User.deleted_at == None
    ).first()
    if not user:
        raise NotFoundError("User")

    prefs = user.preferences
    if prefs and prefs.profile_visibility == "private":
        raise AuthorizationError("This profile is private")

    completed = db.query(Submission).filter(
        Submission.user_id == user.id,
        Submission.status == SubmissionStatus.APPROVED.value
    ).count()

    badges = None
    if prefs is None or prefs.show_badges:
        badges = [
            {"name": ub.badge.name, "icon": ub.badge.icon, "rarity": ub.badge.rarity,
             "unlockedAt": ub.unlocked_at.isoformat() if ub.unlocked_at else None}
            for ub in user.user_badges
        ]

    return envelope(dump(PublicProfileResponse, {
        "id": user.id,
        "username": user.username,
        "avatar": user.avatar,
        "bio": user.bio,
        "level": user.level,
        "xp": user.xp,
        "current_streak": user.current_streak if (prefs is None or prefs.show_streak) else None,
        "badges": badges,
        "completed_quests": completed,
        "created_at": user.created_at,
    }))


# =============================================================================
# ===================== SECTION 3: CATEGORIES =================================
# =============================================================================

def _available_counts(db: Session) -> dict:
    rows = db.query(Quest.category_id, func.count(Quest.id)).filter(
        Quest.status == QuestStatus.AVAILABLE.value
    ).group_by(Quest.category_id).all()
    return dict(rows)


def _category_out(category: QuestCategory, counts: dict) -> dict:
    data = dump(CategoryResponse, category)
    data["questCount"] = counts.get(category.id, 0)
    return data


def _get_category(db: Session, category_id: int) -> QuestCategory:
    category = db.query(QuestCategory).filter(QuestCategory.id == category_id).first()
    if not category:
        raise NotFoundError("Category")
    return category


@app.get("/api/categories", tags=["Categories"])
def list_categories(db: Session = Depends(get_db)):
    categories = db.query(QuestCategory).filter(
        QuestCategory.is_active == True
    ).order_by(QuestCategory.sort_order, QuestCategory.name).all()
    counts = _available_counts(db)
    return envelope([_category_out(c, counts) for c in categories])


@app.get("/api/categories/{category_id}", tags=["Categories"])
def get_category(category_id: int, db: Session = Depends(get_db)):
    category = _get_category(db, category_id)
    return envelope(_category_out(category, _available_counts(db)))


@app.post("/api/categories", status_code=201, tags=["Categories"])
def create_category(
    data: CategoryCreate,
    user: User = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db)
):
    if db.query(QuestCategory).filter(QuestCategory.name == data.name).first():
        raise ValidationError("A category with this name already exists")

    category = QuestCategory(**data.model_dump())
    db.add(category)
    db.commit()
    db.refresh(category)

    logger.info(f"🏷️ Category created: {category.name} (by user {user.id})")
    return envelope(_category_out(category, {}))


@app.put("/api/categories/{category_id}", tags=["Categories"])
def update_category(
    category_id: int,
    data: CategoryUpdate,
    user: User = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db)
):
    category = _get_category(db, category_id)
    values = data.model_dump(exclude_unset=True)

    if "name" in values:
        clash = db.query(QuestCategory).filter(
            QuestCategory.name == values["name"], QuestCategory.id != category.id
        ).first()
        if clash:
            raise ValidationError("A category with this name already exists")

    for key, value in values.items():
        setattr(category, key, value)
    db.commit()
    db.refresh(category)
    return envelope(_category_out(category, _available_counts(db)))


@app.delete("/api/categories/{category_id}", tags=["Categories"])
def delete_category(
    category_id: int,
    user: User = Depends(require_roles(*ADMIN)),
    db: Session = Depends(get_db)
):
    """Soft delete (is_active = False). Refused while live quests use it."""
    category = _get_category(db, category_id)

    in_use = db.query(Quest).filter(
        Quest.category_id == category.id,
        Quest.status.in_([QuestStatus.AVAILABLE.value, QuestStatus.COMPLETED.value])
    ).count()
    if in_use:
        raise ValidationError("Cannot delete category with active quests")

    category.is_active = False
    db.commit()
    logger.info(f"🗑️ Category deactivated: {category.name}")
    return envelope({"message": "Category deleted successfully"})


# =============================================================================
# ===================== SECTION 4: QUESTS =====================================
# =============================================================================

SORT_COLUMNS = {
    "created": Quest.created_at,
    "updated": Quest.updated_at,
    "points": Quest.points,
    "popularity": Quest.completion_count,
    "title": Quest.title,
    "difficulty": case(
        {"EASY": 1, "MEDIUM": 2, "HARD": 3, "EPIC": 4},
        value=Quest.difficulty,
    ),
}


def _get_quest(db: Session, quest_id: int) -> Quest:
    quest = db.query(Quest).filter(Quest.id == quest_id).first()
    if not quest:
        raise NotFoundError("Quest")
    return quest


@app.get("/api/quests", tags=["Quests"])
def list_quests(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    difficulty: Optional[QuestDifficulty] = None,
    tags: Optional[str] = Query(None, description="Comma separated, any match"),
    featured: Optional[bool] = None,
    status: QuestStatus = QuestStatus.AVAILABLE,
    search: Optional[str] = Query(None, min_length=2),
    sort: SORT_FIELDS = "created",
    order: Literal["asc", "desc"] = "desc",
    db: Session = Depends(get_db)
):
    query = db.query(Quest).filter(Quest.status == status.value)

    if category:
        query = query.join(QuestCategory, Quest.category_id == QuestCategory.id).filter(
            QuestCategory.name.ilike(f"%{category}%")
        )
    if difficulty:
        query = query.filter(Quest.difficulty == difficulty.value)
    if featured is not None:
        query = query.filter(Quest.is_featured == featured)
    if tags:
        wanted = [t.strip() for t in tags.split(",") if t.strip()]
        if wanted:
            # tags is a JSON array: match the quoted element in its text form
            query = query.filter(or_(*[cast(Quest.tags, String).ilike(f'%"{t}"%') for t in wanted]))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Quest.title.ilike(pattern),
            Quest.description.ilike(pattern),
            Quest.short_description.ilike(pattern),
        ))

    total = query.count()
    column = SORT_COLUMNS[sort]
    query = query.order_by(column.asc() if order == "asc" else column.desc(), Quest.id)
    quests = query.offset((page - 1) * limit).limit(limit).all()

    return envelope(dump_list(QuestResponse, quests), paginate(page, limit, total))


@app.get("/api/quests/featured", tags=["Quests"])
def featured_quests(db: Session = Depends(get_db)):
    quests = db.query(Quest).filter(
        Quest.status == QuestStatus.AVAILABLE.value,
        Quest.is_featured == True
    ).order_by(Quest.created_at.desc()).limit(10).all()
    return envelope(dump_list(QuestResponse, quests))


@app.get("/api/quests/{quest_id}", tags=["Quests"])
def get_quest(quest_id: int, db: Session = Depends(get_db)):
    return envelope(dump(QuestResponse, _get_quest(db, quest_id)))


@app.post("/api/quests", status_code=201, tags=["Quests"])
def create_quest(data: QuestCreateRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Creates a quest.
    Regular users always get a DRAFT, staff may ask for autoPublish.
    """
    quest = save_quest(db, data, user, data.auto_publish)
    return envelope(dump(QuestResponse, quest))


@app.put("/api/quests/{quest_id}", tags=["Quests"])
def update_quest(
    quest_id: int,
    data: QuestUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    quest = _get_quest(db, quest_id)
    if quest.created_by != user.id and not is_staff(user):
        raise AuthorizationError("You can only edit your own quests")

    values = data.model_dump(mode="json", exclude_unset=True)
    if ("status" in values or "is_featured" in values) and not is_staff(user):
        raise AuthorizationError("Only moderators can publish or feature quests")
    if "category_id" in values:
        ensure_category_exists(db, values["category_id"])
    if "expires_at" in values:
        values["expires_at"] = to_naive_utc(data.expires_at)

    for key, value in values.items():
        setattr(quest, key, value)

    quest.is_epic = quest.difficulty == QuestDifficulty.EPIC.value
    if quest.status == QuestStatus.AVAILABLE.value and quest.published_at is None:
        quest.published_at = _utcnow()

    db.commit()
    db.refresh(quest)
    logger.info(f"✏️ Quest {quest.id} updated by user {user.id}")
    return envelope(dump(QuestResponse, quest))


@app.delete("/api/quests/{quest_id}", tags=["Quests"])
def delete_quest(quest_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Soft delete: the quest is ARCHIVED, its submissions stay"""
    quest = _get_quest(db, quest_id)
    if quest.created_by != user.id and user.role != UserRole.ADMIN.value:
        raise AuthorizationError("You can only delete your own quests")

    quest.status = QuestStatus.ARCHIVED.value
    db.commit()
    logger.info(f"🗄️ Quest {quest.id} archived by user {user.id}")
    return envelope({"message": "Quest deleted successfully"})


# =============================================================================
# ===================== SECTION 5: SUBMISSIONS ================================
# =============================================================================

ALREADY_SUBMITTED = "You have already submitted this quest"


def submission_type(data: SubmissionCreate) -> SubmissionType:
    urls = [str(u) for u in (data.media_urls or [])]
    if any(is_video_url(u) for u in urls):
        return SubmissionType.VIDEO
    if urls:
        return SubmissionType.PHOTO
    if data.checklist_data:
        return SubmissionType.CHECKLIST
    return SubmissionType.TEXT


def _get_submission(db: Session, submission_id: int) -> Submission:
    submission = db.query(Submission).filter(Submission.id == submission_id).first()
    if not submission:
        raise NotFoundError("Submission")
    return submission


def _active_submission(db: Session, user_id: int, quest_id: int) -> Optional[Submission]:
    return db.query(Submission).filter(
        Submission.user_id == user_id,
        Submission.quest_id == quest_id,
        Submission.status.in_([SubmissionStatus.PENDING.value, SubmissionStatus.APPROVED.value])
    ).first()


@app.post("/api/quests/{quest_id}/submissions", status_code=201, tags=["Submissions"])
def create_submission(
    quest_id: int,
    data: SubmissionCreate,
    user: User = Depends(get_current_user),
    moderator: ContentModerator = Depends(get_moderator),
    db: Session = Depends(get_db)
):
    """
    Rules, in order:
      1. The quest exists and is AVAILABLE
      2. No PENDING/APPROVED submission of this user for this quest yet
      3. Type inferred from the content (VIDEO > PHOTO > CHECKLIST > TEXT)
      4. Caption + text go through moderation (REJECTED / FLAGGED)
      5. A pending submission moves the quest progress to SUBMITTED
    """
    quest = _get_quest(db, quest_id)
    if quest.status != QuestStatus.AVAILABLE.value:
        raise ValidationError("Quest is not available for submission")

    if _active_submission(db, user.id, quest.id):
        raise ValidationError(ALREADY_SUBMITTED)

    submission = Submission(
        quest_id=quest.id,
        user_id=user.id,
        type=submission_type(data).value,
        status=SubmissionStatus.PENDING.value,
        caption=data.caption,
        text_content=data.text_content,
        media_urls=[str(u) for u in data.media_urls] if data.media_urls else None,
        checklist_data=data.checklist_data,
        latitude=data.latitude,
        longitude=data.longitude,
        address=data.address,
        privacy=data.privacy,
    )

    if moderator.enabled:
        text = "\n".join(t for t in (data.caption, data.text_content) if t)
        result = moderator.moderate("TEXT", text)
        if result.status == ModerationStatus.REJECTED:
            submission.status = SubmissionStatus.REJECTED.value
            submission.rejection_reason = result.reason
            submission.moderation_flags = result.to_dict()
        elif result.status == ModerationStatus.FLAGGED:
            submission.moderation_flags = result.to_dict()
            submission.flagged_at = _utcnow()

    if submission.status == SubmissionStatus.PENDING.value:
        track_submission(db, user.id, quest.id)
    db.add(submission)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request got in between the check and the insert
        db.rollback()
        raise ValidationError(ALREADY_SUBMITTED)
    db.refresh(submission)

    logger.info(f"📸 Submission {submission.id} for quest {quest.id} by user {user.id}: {submission.status}")
    return envelope(dump(SubmissionResponse, submission))


@app.get("/api/quests/{quest_id}/submissions", tags=["Submissions"])
def list_quest_submissions(quest_id: int, db: Session = Depends(get_db)):
    """The latest 20 public approved submissions of a quest"""
    quest = _get_quest(db, quest_id)
    submissions = db.query(Submission).filter(
        Submission.quest_id == quest.id,
        Submission.status == SubmissionStatus.APPROVED.value,
        Submission.privacy == "public"
    ).order_by(Submission.submitted_at.desc()).limit(20).all()
    return envelope(dump_list(SubmissionResponse, submissions))


@app.get("/api/submissions/{submission_id}", tags=["Submissions"])
def get_submission(submission_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    submission = _get_submission(db, submission_id)
    visible = (
        submission.user_id == user.id
        or is_staff(user)
        or (submission.privacy == "public" and submission.status == SubmissionStatus.APPROVED.value)
    )
    if not visible:
        raise AuthorizationError("You cannot view this submission")
    return envelope(dump(SubmissionResponse, submission))


@app.delete("/api/submissions/{submission_id}", tags=["Submissions"])
def delete_submission(submission_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    submission = _get_submission(db, submission_id)
    if submission.user_id != user.id:
        raise AuthorizationError("You can only delete your own submissions")
    if submission.status != SubmissionStatus.PENDING.value:
        raise ValidationError("Only pending submissions can be deleted")

    db.delete(submission)
    reopen_progress(db, user.id, submission.quest_id)
    db.commit()
    return envelope({"message": "Submission deleted successfully"})


@app.put("/api/submissions/{submission_id}/review", tags=["Submissions"])
def review_submission(
    submission_id: int,
    data: SubmissionReview,
    reviewer: User = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db)
):
    """
    APPROVED → XP, streak, challenge score, badges, notification
    REJECTED → reason stored, notification
    """
    submission = _get_submission(db, submission_id)
    if submission.status != SubmissionStatus.PENDING.value:
        raise ValidationError("Only pending submissions can be reviewed")

    quest = submission.quest
    owner = submission.user
    rewards = None

    if data.decision == SubmissionStatus.APPROVED.value:
        submission.status = SubmissionStatus.APPROVED.value
        submission.approved_by = reviewer.id
        submission.approved_at = _utcnow()
        quest.completion_count = (quest.completion_count or 0) + 1
        db.commit()
        rewards = on_submission_approved(db, owner, quest, submission)
        logger.info(f"✅ Submission {submission.id} approved by {reviewer.id}")
    else:
        submission.status = SubmissionStatus.REJECTED.value
        submission.rejection_reason = data.reason
        db.commit()
        on_submission_rejected(db, submission, quest, data.reason)
        logger.info(f"🚫 Submission {submission.id} rejected by {reviewer.id}")

    db.refresh(submission)
    return envelope({"submission": dump(SubmissionResponse, submission), "rewards": rewards})


# =============================================================================
# ===================== SECTION 6: AI QUESTS ==================================
# =============================================================================

def _generated_out(generated) -> dict:
    return {
        "quest": generated.quest.model_dump(mode="json", by_alias=True),
        "metadata": generated.metadata(),
    }


@app.post("/api/ai-quests/generate", tags=["AI Quests"])
def generate_quests(
    data: GenerateQuestRequest,
    user: User = Depends(get_current_user),
    service: AIQuestService = Depends(get_ai_service),
    db: Session = Depends(get_db)
):
    """
    Runs the generation pipeline `count` times.
    With `save`, every quest also goes through the publish gate.
    """
    context = data.context.model_dump(exclude_none=True) if data.context else None
    generated = service.generate_many(
        db, data.count, data.mode, data.difficulty,
        category=data.category,
        previous_category=data.previous_category,
        idea=data.idea,
        context=context,
    )

    results = []
    for g in generated:
        item = _generated_out(g)
        if data.save:
            quest = save_quest(db, g.quest, user, data.auto_publish)
            item["saved"] = dump(QuestResponse, quest)
        results.append(item)

    return envelope(results)


@app.post("/api/ai-quests/save", status_code=201, tags=["AI Quests"])
def save_generated_quest(
    data: SaveGeneratedQuestRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    quest = save_quest(db, data.quest_data, user, data.auto_publish)
    return envelope(dump(QuestResponse, quest))


@app.post("/api/ai-quests/from-idea", tags=["AI Quests"])
def quest_from_user_idea(
    data: QuestIdeaRequest,
    user: User = Depends(get_current_user),
    service: AIQuestService = Depends(get_ai_service),
    db: Session = Depends(get_db)
):
    generated = quest_from_idea(service, db, data)
    return envelope(_generated_out(generated))


@app.get("/api/ai-quests/stats", tags=["AI Quests"])
def ai_quest_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope(generation_stats(db, user))


@app.get("/api/ai-quests/suggestions", tags=["AI Quests"])
def ai_quest_suggestions(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope(personalized_suggestions(db, user))


# =============================================================================
# ===================== SECTION 7: MODERATION =================================
# =============================================================================

@app.post("/api/moderation/moderate", tags=["Moderation"])
def moderate_content(
    data: ModerationRequest,
    user: User = Depends(get_current_user),
    moderator: ContentModerator = Depends(get_moderator)
):
    result = moderator.moderate(data.content_type, data.content, data.content_id)
    return envelope(result.to_dict())


@app.get("/api/moderation/queue", tags=["Moderation"])
def moderation_queue(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db)
):
    """PENDING submissions, flagged ones first, oldest first"""
    query = db.query(Submission).filter(Submission.status == SubmissionStatus.PENDING.value)
    total = query.count()
    submissions = query.order_by(
        Submission.flagged_at.is_(None), Submission.submitted_at.asc(), Submission.id
    ).offset((page - 1) * limit).limit(limit).all()
    return envelope(dump_list(SubmissionResponse, submissions), paginate(page, limit, total))


@app.get("/api/moderation/stats", tags=["Moderation"])
def moderation_stats(user: User = Depends(require_roles(*STAFF)), db: Session = Depends(get_db)):
    rows = db.query(Submission.status, func.count(Submission.id)).group_by(Submission.status).all()
    by_status = {s: 0 for s in SUBMISSION_STATUS_VALUES}
    by_status.update(dict(rows))
    flagged = db.query(Submission).filter(
        Submission.status == SubmissionStatus.PENDING.value,
        Submission.flagged_at != None
    ).count()
    return envelope({"submissions": by_status, "flagged": flagged, "total": sum(by_status.values())})


@app.get("/api/moderation/health", tags=["Moderation"])
def moderation_health(moderator: ContentModerator = Depends(get_moderator)):
    return envelope(moderator.health())


# =============================================================================
# ===================== SECTION 8: GAMIFICATION ===============================
# =============================================================================

def _get_badge(db: Session, badge_id: int) -> Badge:
    badge = db.query(Badge).filter(Badge.id == badge_id).first()
    if not badge:
        raise NotFoundError("Badge")
    return badge


@app.get("/api/gamification/stats", tags=["Gamification"])
def gamification_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope(user_stats(db, user))


@app.get("/api/gamification/level", tags=["Gamification"])
def my_level(user: User = Depends(get_current_user)):
    return envelope(level_definition(user.level))


@app.get("/api/gamification/level/progress", tags=["Gamification"])
def my_level_progress(user: User = Depends(get_current_user)):
    return envelope(get_level_info(user))


@app.get("/api/gamification/levels", tags=["Gamification"])
def list_levels():
    return envelope(all_levels())


@app.get("/api/gamification/level/{level_number}", tags=["Gamification"])
def get_level(level_number: int):
    return envelope(level_definition(level_number))


@app.get("/api/gamification/badges", tags=["Gamification"])
def list_badges(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    badges = db.query(Badge).filter(Badge.is_active == True).order_by(Badge.id).all()
    owned = {ub.badge_id for ub in user.user_badges}
    data = []
    for badge in badges:
        item = dump(BadgeResponse, badge)
        item["earned"] = badge.id in owned
        data.append(item)
    return envelope(data)


@app.get("/api/gamification/badges/user", tags=["Gamification"])
def my_badges(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user_badges = db.query(UserBadge).filter(
        UserBadge.user_id == user.id
    ).order_by(UserBadge.unlocked_at.desc()).all()
    return envelope(dump_list(UserBadgeResponse, user_badges))


@app.get("/api/gamification/badges/type/{badge_type}", tags=["Gamification"])
def badges_by_type(badge_type: BadgeType, db: Session = Depends(get_db)):
    badges = db.query(Badge).filter(Badge.type == badge_type.value, Badge.is_active == True).all()
    return envelope(dump_list(BadgeResponse, badges))


@app.get("/api/gamification/badges/rarity/{rarity}", tags=["Gamification"])
def badges_by_rarity(rarity: BadgeRarity, db: Session = Depends(get_db)):
    badges = db.query(Badge).filter(Badge.rarity == rarity.value, Badge.is_active == True).all()
    return envelope(dump_list(BadgeResponse, badges))


@app.get("/api/gamification/badges/{badge_id}/progress", tags=["Gamification"])
def my_badge_progress(badge_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope(badge_progress(db, user, _get_badge(db, badge_id)))


@app.get("/api/gamification/xp-log", tags=["Gamification"])
def xp_log(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(XpLog).filter(XpLog.user_id == user.id)
    total = query.count()
    logs = query.order_by(XpLog.created_at.desc(), XpLog.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return envelope(dump_list(XpLogResponse, logs), paginate(page, limit, total))


@app.get("/api/gamification/leaderboard", tags=["Gamification"])
def xp_leaderboard(limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    return envelope(leaderboard(db, limit))


@app.post("/api/gamification/xp", tags=["Gamification"])
def grant_xp(data: XpGrant, admin: User = Depends(require_roles(*ADMIN)), db: Session = Depends(get_db)):
    """Manual XP grant (or penalty, with a negative amount)"""
    target = db.query(User).filter(User.id == data.user_id).first()
    if not target:
        raise NotFoundError("User")

    result = award_xp(db, target, data.amount, "admin_grant", admin.id, data.description)
    unlocked = check_and_unlock_badges(db, target)
    result["badgesUnlocked"] = [b.name for b in unlocked]
    logger.info(f"🎁 Admin {admin.id} granted {data.amount:+d} XP to user {target.id}")
    return envelope(result)


@app.post("/api/gamification/badges/award", tags=["Gamification"])
def grant_badge(data: BadgeAward, admin: User = Depends(require_roles(*ADMIN)), db: Session = Depends(get_db)):
    target = db.query(User).filter(User.id == data.user_id).first()
    if not target:
        raise NotFoundError("User")
    badge = _get_badge(db, data.badge_id)

    user_badge = award_badge(db, target, badge)
    db.refresh(user_badge)
    return envelope(dump(UserBadgeResponse, user_badge))


# =============================================================================
# ===================== SECTION 9: CHALLENGES =================================
# =============================================================================

def _get_challenge(db: Session, challenge_id: int) -> Challenge:
    challenge = db.query(Challenge).filter(Challenge.id == challenge_id).first()
    if not challenge:
        raise NotFoundError("Challenge")
    return challenge


@app.get("/api/challenges", tags=["Challenges"])
def list_challenges(status: Optional[ChallengeStatus] = None, db: Session = Depends(get_db)):
    query = db.query(Challenge)
    if status:
        query = query.filter(Challenge.status == status.value)
    challenges = query.order_by(Challenge.start_date.desc()).all()
    return envelope(dump_list(ChallengeResponse, challenges))


@app.get("/api/challenges/{challenge_id}", tags=["Challenges"])
def get_challenge(challenge_id: int, db: Session = Depends(get_db)):
    return envelope(dump(ChallengeResponse, _get_challenge(db, challenge_id)))


@app.post("/api/challenges", status_code=201, tags=["Challenges"])
def create_challenge(
    data: ChallengeCreate,
    user: User = Depends(require_roles(*STAFF)),
    db: Session = Depends(get_db)
):
    start = to_naive_utc(data.start_date)
    end = to_naive_utc(data.end_date)
    if end <= start:
        raise ValidationError("End date must be after start date")

    for item in data.quests:
        if not db.query(Quest).filter(Quest.id == item.quest_id).first():
            raise ValidationError(f"Invalid quest ID: {item.quest_id}")
    for reward in data.rewards:
        if not db.query(Badge).filter(Badge.id == reward.badge_id).first():
            raise ValidationError(f"Invalid badge ID: {reward.badge_id}")

    now = _utcnow()
    challenge = Challenge(
        title=data.title,
        description=data.description,
        theme=data.theme,
        rules=data.rules,
        prizes_description=data.prizes_description,
        start_date=start,
        end_date=end,
        status=ChallengeStatus.ACTIVE.value if start <= now else ChallengeStatus.UPCOMING.value,
        max_participants=data.max_participants,
        image_url=str(data.image_url) if data.image_url else None,
        created_by=user.id,
    )
    for item in data.quests:
        challenge.quests.append(ChallengeQuest(
            quest_id=item.quest_id, point_multiplier=item.point_multiplier, is_required=item.is_required
        ))
    for reward in data.rewards:
        challenge.rewards.append(ChallengeReward(badge_id=reward.badge_id, requirement=reward.requirement))

    db.add(challenge)
    db.commit()
    db.refresh(challenge)

    logger.info(f"🚩 Challenge {challenge.id} '{challenge.title}' created ({challenge.status})")
    return envelope(dump(ChallengeResponse, challenge))


@app.post("/api/challenges/{challenge_id}/join", tags=["Challenges"])
def join_challenge(challenge_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    challenge = _get_challenge(db, challenge_id)
    if challenge.status not in (ChallengeStatus.UPCOMING.value, ChallengeStatus.ACTIVE.value):
        raise ValidationError("Challenge is not open for joining")

    already = db.query(ChallengeParticipant).filter(
        ChallengeParticipant.challenge_id == challenge.id,
        ChallengeParticipant.user_id == user.id
    ).first()
    if already:
        raise ConflictError("You have already joined this challenge")
    if challenge.max_participants and challenge.current_participants >= challenge.max_participants:
        raise ConflictError("Challenge is full")

    db.add(ChallengeParticipant(challenge_id=challenge.id, user_id=user.id, joined_at=_utcnow()))
    challenge.current_participants = (challenge.current_participants or 0) + 1
    db.flush()
    db.refresh(challenge)
    rebuild_leaderboard(db, challenge)

    notify(
        db, user.id, NotificationType.CHALLENGE_JOINED,
        title=f"You joined {challenge.title}",
        message="Complete the challenge quests to climb the leaderboard!",
        action_url=f"/challenges/{challenge.id}",
        extra={"challengeId": challenge.id},
    )
    db.commit()
    db.refresh(challenge)

    logger.info(f"🤝 User {user.id} joined challenge {challenge.id}")
    return envelope(dump(ChallengeResponse, challenge))


@app.get("/api/challenges/{challenge_id}/leaderboard", tags=["Challenges"])
def challenge_leaderboard(challenge_id: int, db: Session = Depends(get_db)):
    challenge = _get_challenge(db, challenge_id)
    entries = db.query(ChallengeLeaderboard).filter(
        ChallengeLeaderboard.challenge_id == challenge.id
    ).order_by(ChallengeLeaderboard.rank).all()

    data = []
    for entry in entries:
        item = dump(LeaderboardEntryResponse, entry)
        item["username"] = entry.user.username if entry.user else None
        data.append(item)
    return envelope(data)


# =============================================================================
# ===================== SECTION 10: NOTIFICATIONS =============================
# =============================================================================

def _live_notifications(db: Session, user: User):
    now = _utcnow()
    return db.query(Notification).filter(
        Notification.user_id == user.id,
        or_(Notification.expires_at == None, Notification.expires_at > now)
    )


def _get_notification(db: Session, user: User, notification_id: int) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user.id
    ).first()
    if not notification:
        raise NotFoundError("Notification")
    return notification


@app.get("/api/notifications", tags=["Notifications"])
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False, alias="unreadOnly"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = _live_notifications(db, user)
    if unread_only:
        query = query.filter(Notification.read == False)
    total = query.count()
    notifications = query.order_by(
        Notification.created_at.desc(), Notification.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()
    return envelope(dump_list(NotificationResponse, notifications), paginate(page, limit, total))


@app.get("/api/notifications/unread-count", tags=["Notifications"])
def unread_count(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    count = _live_notifications(db, user).filter(Notification.read == False).count()
    return envelope({"count": count})


@app.put("/api/notifications/read-all", tags=["Notifications"])
def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    now = _utcnow()
    updated = db.query(Notification).filter(
        Notification.user_id == user.id,
        Notification.read == False
    ).update({"read": True, "read_at": now}, synchronize_session=False)
    db.commit()
    return envelope({"updated": updated})


@app.put("/api/notifications/{notification_id}/read", tags=["Notifications"])
def mark_read(notification_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = _get_notification(db, user, notification_id)
    if not notification.read:
        notification.read = True
        notification.read_at = _utcnow()
        db.commit()
        db.refresh(notification)
    return envelope(dump(NotificationResponse, notification))


@app.delete("/api/notifications/{notification_id}", tags=["Notifications"])
def delete_notification(notification_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = _get_notification(db, user, notification_id)
    db.delete(notification)
    db.commit()
    return envelope({"message": "Notification deleted successfully"})


# =============================================================================
# ===================== SECTION 11: QUEST PROGRESS ============================
# =============================================================================

PROGRESS_STATUSES = [s.value for s in ProgressStatus]


def _progress_out(progress: UserQuestProgress) -> dict:
    return dump(QuestProgressResponse, progress)


@app.post("/api/quest-progress/start", tags=["Quest Progress"])
def start_quest_progress(
    data: StartQuestRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Starts (or restarts, after abandoning) an AVAILABLE quest"""
    quest = _get_quest(db, data.quest_id)
    return envelope(_progress_out(start_quest(db, user, quest)))


@app.get("/api/quest-progress/user", tags=["Quest Progress"])
def list_my_quests(
    status: str = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(UserQuestProgress).filter(UserQuestProgress.user_id == user.id)
    if status != "all":
        if status not in PROGRESS_STATUSES:
            raise ValidationError(f"Invalid status. Use one of: all, {', '.join(PROGRESS_STATUSES)}")
        query = query.filter(UserQuestProgress.status == status)

    total = query.count()
    rows = query.order_by(
        UserQuestProgress.status.asc(), UserQuestProgress.updated_at.desc(), UserQuestProgress.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()
    return envelope([_progress_out(p) for p in rows], paginate(page, limit, total))


@app.get("/api/quest-progress/{quest_id}", tags=["Quest Progress"])
def get_quest_progress(quest_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Never started → {"status": "NOT_STARTED", "quest": {...}}"""
    progress = get_progress(db, user.id, quest_id)
    if progress is None:
        quest = _get_quest(db, quest_id)
        return envelope({"status": ProgressStatus.NOT_STARTED.value, "quest": dump(QuestResponse, quest)})
    return envelope(_progress_out(progress))


@app.post("/api/quest-progress/{quest_id}/abandon", tags=["Quest Progress"])
def abandon_quest_progress(quest_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return envelope(_progress_out(abandon_quest(db, user, quest_id)))
