"""
=============================================================================
SCHEDULER.PY — Background Housekeeping
=============================================================================
Things nobody asks for but that must happen anyway:

  1. Challenges move UPCOMING → ACTIVE → COMPLETED on their dates
  2. Expired notifications are purged
  3. Broken streaks are reset just after midnight

Uses APScheduler (AsyncIOScheduler) so the jobs run inside the same event
loop as FastAPI. Each job opens its own DB session and always closes it.

The actual work lives in plain functions taking a Session
(advance_challenges, purge_expired_notifications, reset_broken_streaks)
so it can be tested without the scheduler.
"""

import logging
from datetime import datetime, date, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
import pytz
from sqlalchemy.orm import Session

from database import SessionLocal
from gamification import notify, rebuild_leaderboard
from models import Challenge, ChallengeStatus, Notification, NotificationType, User

logger = logging.getLogger("sidequest.scheduler")

scheduler: Optional[AsyncIOScheduler] = None


# =============================================================================
# ===================== CHALLENGE LIFECYCLE ===================================
# =============================================================================

def advance_challenges(db: Session, now: Optional[datetime] = None) -> dict:
    """
    UPCOMING → ACTIVE     once start_date has passed
    ACTIVE   → COMPLETED  once end_date has passed (participants get completed_at)
    """
    now = now or datetime.utcnow()
    started = db.query(Challenge).filter(
        Challenge.status == ChallengeStatus.UPCOMING.value,
        Challenge.start_date <= now
    ).all()
    activated = 0
    for challenge in started:
        # A challenge created late may already be over
        if challenge.end_date <= now:
            continue
        challenge.status = ChallengeStatus.ACTIVE.value
        activated += 1
        logger.info(f"🚩 Challenge {challenge.id} '{challenge.title}' is now ACTIVE")

    finished = db.query(Challenge).filter(
        Challenge.status.in_([ChallengeStatus.UPCOMING.value, ChallengeStatus.ACTIVE.value]),
        Challenge.end_date <= now
    ).all()
    for challenge in finished:
        challenge.status = ChallengeStatus.COMPLETED.value
        rebuild_leaderboard(db, challenge)
        for participant in challenge.participants:
            participant.completed_at = participant.completed_at or now
            notify(
                db, participant.user_id, NotificationType.SYSTEM,
                title=f"Challenge finished: {challenge.title}",
                message=f"The challenge is over. Your final score: {participant.score}",
                action_url=f"/challenges/{challenge.id}",
                extra={"challengeId": challenge.id},
            )
        logger.info(f"🏁 Challenge {challenge.id} '{challenge.title}' COMPLETED")

    db.commit()
    return {"activated": activated, "completed": len(finished)}


# =============================================================================
# ===================== NOTIFICATIONS =========================================
# =============================================================================

def purge_expired_notifications(db: Session, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    deleted = db.query(Notification).filter(
        Notification.expires_at != None,
        Notification.expires_at < now
    ).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"🧹 {deleted} expired notifications purged")
    return deleted


# =============================================================================
# ===================== STREAKS ===============================================
# =============================================================================

def reset_broken_streaks(db: Session, today: Optional[date] = None) -> int:
    """
    A streak survives while the last approved completion is today or
    yesterday. Anything older → streak back to 0 (longest_streak stays).
    """
    today = today or datetime.utcnow().date()
    cutoff = datetime.combine(today - timedelta(days=1), datetime.min.time())

    users = db.query(User).filter(
        User.current_streak > 0,
        User.last_completion_at < cutoff
    ).all()
    for user in users:
        logger.info(f"💔 Streak broken: user {user.id} ({user.current_streak} days)")
        user.current_streak = 0
    db.commit()
    return len(users)


# =============================================================================
# ===================== JOBS ==================================================
# =============================================================================

async def challenge_job():
    db = SessionLocal()
    try:
        advance_challenges(db)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error advancing challenges: {e}")
    finally:
        db.close()


async def notification_cleanup_job():
    db = SessionLocal()
    try:
        purge_expired_notifications(db)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error purging notifications: {e}")
    finally:
        db.close()


async def midnight_job():
    db = SessionLocal()
    try:
        reset_broken_streaks(db)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error in midnight streak check: {e}")
    finally:
        db.close()


# =============================================================================
# ===================== START / STOP ==========================================
# =============================================================================

def create_scheduler() -> AsyncIOScheduler:
    """
    Jobs:
      - every 5 minutes: challenge status transitions
      - every hour: purge expired notifications
      - 00:05 UTC: reset broken streaks
    """
    global scheduler
    scheduler = AsyncIOScheduler(timezone=pytz.utc)

    scheduler.add_job(
        challenge_job,
        IntervalTrigger(minutes=5),
        id="advance_challenges",
        name="Challenge status transitions",
        replace_existing=True
    )

    scheduler.add_job(
        notification_cleanup_job,
        IntervalTrigger(hours=1),
        id="purge_notifications",
        name="Purge expired notifications",
        replace_existing=True
    )

    scheduler.add_job(
        midnight_job,
        CronTrigger(hour=0, minute=5, timezone=pytz.utc),
        id="midnight_streaks",
        name="Reset broken streaks",
        replace_existing=True
    )

    logger.info("⏰ Scheduler configured: challenges every 5 min, notifications hourly, streaks at 00:05")
    return scheduler


def start_scheduler():
    global scheduler
    if scheduler is None:
        create_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info("⏰ Scheduler started")


def stop_scheduler():
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("⏰ Scheduler stopped")
