"""
=============================================================================
DATABASE.PY — Database Setup
=============================================================================
Configures the connection to the database.

In DEVELOPMENT: SQLite (a local sidequest.db file)
In PRODUCTION: PostgreSQL, when DATABASE_URL points to one

SQLAlchemy lets us talk to the database in Python instead of raw SQL.
The URL itself is resolved in config.py.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import settings

# ─────────────────────────────────────────────────────────────────────────────
# ENGINE
# ─────────────────────────────────────────────────────────────────────────────
# check_same_thread=False → only for SQLite, which by default refuses to be
# used from more than one thread (FastAPI runs sync endpoints in a pool).

DATABASE_URL = settings.database_url

engine_args = {}
if DATABASE_URL.startswith("sqlite"):
    engine_args["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # In-memory SQLite lives inside ONE connection: share it
        engine_args["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, echo=False, **engine_args)

# ─────────────────────────────────────────────────────────────────────────────
# SESSION
# ─────────────────────────────────────────────────────────────────────────────

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ─────────────────────────────────────────────────────────────────────────────
# BASE
# ─────────────────────────────────────────────────────────────────────────────
# Every model (User, Quest, Submission...) inherits from this class.

Base = declarative_base()


def get_db():
    """
    Yields a DB session and closes it when the request is done.

    Used as a FastAPI dependency:
      @app.get("/api/quests")
      def list_quests(db: Session = Depends(get_db)):
          ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Creates every table that does not exist yet (called at startup)"""
    import models  # noqa: F401  (registers the tables on Base.metadata)
    Base.metadata.create_all(bind=engine)
