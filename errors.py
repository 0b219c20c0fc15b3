"""
=============================================================================
ERRORS.PY — Error Types and Handlers
=============================================================================
Every "expected" failure of the API is one of these exceptions.

The endpoints just `raise NotFoundError("Quest")` and forget about it:
the handlers registered in main.py turn the exception into the uniform
JSON envelope:

  {
    "success": false,
    "data": null,
    "error": {"message": "Quest not found", "code": "NOT_FOUND"},
    "timestamp": "2025-01-01T12:00:00Z"
  }
"""

import logging
import traceback
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("sidequest.api")


# =============================================================================
# ===================== ERROR CLASSES =========================================
# =============================================================================

class AppError(Exception):
    """Base error: a message, an HTTP status and a machine-readable code"""

    def __init__(self, message: str, status_code: int = 500, code: str = "INTERNAL_ERROR"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class ValidationError(AppError):
    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, 400, "VALIDATION_ERROR")


class AuthenticationError(AppError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, 401, "AUTHENTICATION_ERROR")


class AuthorizationError(AppError):
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, 403, "AUTHORIZATION_ERROR")


class NotFoundError(AppError):
    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found", 404, "NOT_FOUND")


class ConflictError(AppError):
    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, 409, "CONFLICT_ERROR")


class RateLimitError(AppError):
    def __init__(self, message: str = "Too many requests"):
        super().__init__(message, 429, "RATE_LIMIT_ERROR")


class GenerationError(AppError):
    """The external text-generation provider failed or answered garbage"""

    def __init__(self, message: str = "Quest generation failed"):
        super().__init__(message, 502, "GENERATION_ERROR")


class ModerationError(AppError):
    def __init__(self, message: str = "Moderation failed"):
        super().__init__(message, 502, "MODERATION_ERROR")


# =============================================================================
# ===================== VALIDATION MESSAGES ===================================
# =============================================================================

# Location prefixes that say WHERE the field came from, not WHICH field it is
_LOCATION_PREFIXES = ("body", "query", "path", "header", "cookie")


def format_validation_errors(errors: list[dict]) -> str:
    """
    Joins every violated rule into ONE message, naming each field:
      "Validation failed: title: String should have at most 100 characters, points: ..."
    """
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ())]
        if loc and loc[0] in _LOCATION_PREFIXES:
            loc = loc[1:]
        field = ".".join(loc) or "request"
        parts.append(f"{field}: {err.get('msg', 'invalid value')}")
    return "Validation failed: " + ", ".join(parts)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_body(message: str, code: str) -> dict:
    return {
        "success": False,
        "data": None,
        "error": {"message": message, "code": code},
        "timestamp": _utc_now_iso(),
    }


# =============================================================================
# ===================== HANDLERS ==============================================
# =============================================================================

def register_error_handlers(app: FastAPI, debug_mode: bool = False):
    """Hooks every handler into the FastAPI app"""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"❌ {exc.code} on {request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"⚠️ {exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        message = format_validation_errors(exc.errors())
        return JSONResponse(status_code=400, content=error_body(message, "VALIDATION_ERROR"))

    @app.exception_handler(PydanticValidationError)
    async def pydantic_validation_handler(request: Request, exc: PydanticValidationError):
        # Raised when we validate data ourselves (e.g. a normalized AI quest)
        message = format_validation_errors(exc.errors())
        return JSONResponse(status_code=400, content=error_body(message, "VALIDATION_ERROR"))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # e.g. HTTPBearer without an Authorization header, unknown routes
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), "HTTP_ERROR"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catches anything unhandled and logs the full traceback"""
        error_trace = traceback.format_exc()
        logger.error(f"❌ Unhandled error on {request.url}: {exc}\n{error_trace}")
        message = str(exc) if debug_mode else "Internal server error"
        return JSONResponse(status_code=500, content=error_body(message, "INTERNAL_ERROR"))
