"""
=============================================================================
CONFIG.PY — SideQuest Settings
=============================================================================
Every setting comes from an environment variable, with a sane default for
local development.

In DEVELOPMENT (your machine): nothing to set, SQLite + mock AI quests.
In PRODUCTION: set DATABASE_URL, SECRET_KEY and OPENAI_API_KEY at least.

Settings are read ONCE, when this module is imported. The rest of the
code imports `settings` from here instead of calling os.getenv itself.
"""

import os
from dataclasses import dataclass, field


def _flag(name: str, default: str = "true") -> bool:
    """Reads a boolean env var ("true", "1", "yes" → True)"""
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite:///./sidequest.db")
    # Hosting providers hand out "postgres://", SQLAlchemy + psycopg v3
    # needs "postgresql+psycopg://"
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


# ─────────────────────────────────────────────────────────────────────────────
# SETTINGS
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Settings:
    """All runtime settings of the API"""
    # ── App ──
    app_name: str = "SideQuest API"
    version: str = "1.0.0"
    debug_mode: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # ── Database ──
    database_url: str = "sqlite:///./sidequest.db"

    # ── Auth ──
    secret_key: str = "sidequest-dev-secret-key-change-in-production"
    access_token_expire_days: int = 7

    # ── OpenAI ──
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.8
    openai_max_tokens: int = 1500
    openai_timeout: float = 30.0

    # ── Feature flags ──
    enable_ai_quests: bool = True
    enable_moderation: bool = True
    enable_scheduler: bool = True

    # ── Quest generation ──
    quick_mode_initial_category: str = "learning"
    # The quick-mode alternation starts from this category, so the
    # first quick quest after boot is the OTHER one (fitness by default)


def load_settings() -> Settings:
    """Builds the Settings from the environment"""
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        app_name=os.getenv("APP_NAME", "SideQuest API"),
        version=os.getenv("APP_VERSION", "1.0.0"),
        debug_mode=_flag("DEBUG_MODE", "false"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        database_url=_database_url(),
        secret_key=os.getenv("SECRET_KEY", "sidequest-dev-secret-key-change-in-production"),
        access_token_expire_days=int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "7")),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_temperature=float(os.getenv("OPENAI_TEMPERATURE", "0.8")),
        openai_max_tokens=int(os.getenv("OPENAI_MAX_TOKENS", "1500")),
        openai_timeout=float(os.getenv("OPENAI_TIMEOUT", "30")),
        enable_ai_quests=_flag("ENABLE_AI_QUESTS"),
        enable_moderation=_flag("ENABLE_MODERATION"),
        enable_scheduler=_flag("ENABLE_SCHEDULER"),
        quick_mode_initial_category=os.getenv("QUICK_MODE_INITIAL_CATEGORY", "learning").lower(),
    )


settings = load_settings()
