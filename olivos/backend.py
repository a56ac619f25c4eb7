"""Helpers every service uses to reach Supabase (or notice it is switched off)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from extensions import db
from olivos.errors import BackendError, ConflictError

UNIQUE_VIOLATION = "23505"


def get_supabase_client():
    """Return the configured Supabase client, or None when the SQL fallback is active."""
    if not has_app_context():
        return None
    if not current_app.config.get("USE_SUPABASE"):
        return None
    client = current_app.config.get("SUPABASE_CLIENT")
    return client if client else None


def image_bucket() -> str:
    return current_app.config.get("SUPABASE_IMAGE_BUCKET", "poke-stamp-images")


def is_conflict(exc: BaseException) -> bool:
    """True for unique-constraint violations, whichever backend raised them."""
    if isinstance(exc, ConflictError):
        return True
    if isinstance(exc, IntegrityError):
        # Only the driver error counts; str(exc) also carries the SQL and its parameters.
        orig = getattr(exc, "orig", None)
        sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if sqlstate:
            return sqlstate == UNIQUE_VIOLATION
        return str(orig).upper().startswith("UNIQUE CONSTRAINT FAILED")
    if str(getattr(exc, "code", "") or "") == UNIQUE_VIOLATION:
        return True
    message = str(exc).lower()
    return "duplicate key value" in message or "unique constraint" in message


def error_message(exc: BaseException) -> str:
    """Best human-readable text for a backend exception (PostgREST errors carry `.message`)."""
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message.strip():
        return message
    return str(exc) or exc.__class__.__name__


def run_query(query, action: str, *, conflict_message: Optional[str] = None):
    """
    Execute a PostgREST query builder and translate failures.

    Unique violations become ConflictError(conflict_message); anything else
    becomes BackendError carrying the backend's own message.
    """
    try:
        return query.execute()
    except Exception as exc:
        if is_conflict(exc):
            raise ConflictError(conflict_message or error_message(exc)) from exc
        log_backend_warning(action, exc)
        raise BackendError(error_message(exc)) from exc


def rows(response) -> list:
    return list(getattr(response, "data", None) or [])


def log_backend_warning(action: str, exc: BaseException) -> None:
    if not has_app_context():
        return
    logger = getattr(current_app, "logger", None)
    if logger:
        logger.warning("Supabase error while %s: %s", action, exc)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def clean_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def commit_session(action: str, *, conflict_message: Optional[str] = None) -> None:
    """Commit the SQL fallback session, mapping integrity failures like run_query does."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if is_conflict(exc):
            raise ConflictError(conflict_message or "That record already exists.") from exc
        current_app.logger.error("Database error while %s: %s", action, exc)
        raise BackendError("Could not save your changes. Please try again.") from exc
