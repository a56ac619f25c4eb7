"""
Account flows: sign in, sign up, password recovery and self-service profile edits.

With Supabase enabled the credentials live in Supabase Auth. Auth calls go
through a short-lived client built from the anon key so a trainer's session
never leaks into the shared service client. Without Supabase the local
`profiles` table stores a werkzeug password hash instead.
"""

from __future__ import annotations

from typing import Optional

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db
from models import ROLE_USER, Profile
from olivos.backend import commit_session, error_message, get_supabase_client, rows, run_query
from olivos.errors import AuthorizationError, BackendError, ValidationError
from olivos.trainer_code import normalize_trainer_code

PROFILE_COLUMNS = "id, trainer_name, trainer_code, role, active"
MIN_PASSWORD_LENGTH = 6
RESET_TOKEN_SALT = "pokeolivos-password-reset"
RESET_TOKEN_MAX_AGE = 3600

PROFILE_MISSING_MESSAGE = "We could not load your profile. Contact an administrator."
ACCOUNT_DISABLED_MESSAGE = "Your account is disabled."
CODE_IN_USE_MESSAGE = "That trainer code is already in use."


def fetch_profile(user_id: Optional[str]) -> Optional[dict]:
    if not user_id:
        return None
    client = get_supabase_client()
    if client:
        resp = run_query(
            client.table("profiles").select(PROFILE_COLUMNS).eq("id", user_id).limit(1),
            "loading a profile",
        )
        data = rows(resp)
        return data[0] if data else None

    profile = db.session.get(Profile, user_id)
    return profile.to_dict() if profile else None


def sign_in(email: str, password: str) -> dict:
    """Check credentials and return the active profile; raise AuthorizationError otherwise."""
    email = (email or "").strip()
    if not email or not password:
        raise ValidationError("Enter your email and password.")

    client = get_supabase_client()
    if client:
        try:
            response = _auth_client().auth.sign_in_with_password({"email": email, "password": password})
        except Exception as exc:
            raise AuthorizationError(error_message(exc), status_code=401) from exc
        user = getattr(response, "user", None)
        user_id = getattr(user, "id", None)
        if not user_id:
            raise AuthorizationError(PROFILE_MISSING_MESSAGE)
        profile = fetch_profile(str(user_id))
    else:
        record = Profile.query.filter(func.lower(Profile.email) == email.lower()).first()
        if not record or not record.password_hash or not check_password_hash(record.password_hash, password):
            raise AuthorizationError("Invalid login credentials.", status_code=401)
        profile = record.to_dict()

    if not profile:
        raise AuthorizationError(PROFILE_MISSING_MESSAGE)
    if not profile.get("active"):
        raise AuthorizationError(ACCOUNT_DISABLED_MESSAGE)
    return profile


def sign_up(email: str, password: str, trainer_name: str, trainer_code: str) -> dict:
    """Create the auth user plus an inactive `user` profile awaiting staff approval."""
    email = (email or "").strip()
    trainer_name = (trainer_name or "").strip()
    if not email or not password or not trainer_name:
        raise ValidationError("All fields are required.")
    _validate_password(password)
    code = normalize_trainer_code(trainer_code)

    client = get_supabase_client()
    if client:
        try:
            response = _auth_client().auth.sign_up({"email": email, "password": password})
        except Exception as exc:
            raise ValidationError(error_message(exc)) from exc
        user_id = getattr(getattr(response, "user", None), "id", None)
        if not user_id:
            raise BackendError("We could not create the account.")
        payload = {
            "id": str(user_id),
            "trainer_name": trainer_name,
            "trainer_code": code,
            "role": ROLE_USER,
            "active": False,
        }
        try:
            run_query(client.table("profiles").insert(payload), "creating a profile", conflict_message=CODE_IN_USE_MESSAGE)
        except BackendError:
            _discard_orphan_auth_user(client, str(user_id))
            raise
        return payload

    if Profile.query.filter(func.lower(Profile.email) == email.lower()).first():
        raise ValidationError("An account with that email already exists.")
    profile = Profile(
        email=email,
        password_hash=generate_password_hash(password),
        trainer_name=trainer_name,
        trainer_code=code,
        role=ROLE_USER,
        active=False,
    )
    db.session.add(profile)
    commit_session("creating a profile", conflict_message=CODE_IN_USE_MESSAGE)
    return profile.to_dict()


def request_password_reset(email: str, redirect_to: str) -> None:
    email = (email or "").strip()
    if not email:
        raise ValidationError("Enter your email.")

    client = get_supabase_client()
    if client:
        try:
            _auth_client().auth.reset_password_for_email(email, {"redirect_to": redirect_to})
        except Exception as exc:
            raise BackendError(error_message(exc)) from exc
        return

    profile = Profile.query.filter(func.lower(Profile.email) == email.lower()).first()
    if not profile:
        return
    token = _reset_serializer().dumps(profile.id)
    # No mail delivery without Supabase; operators copy the link from the log.
    current_app.logger.info("Password reset link for %s: %s?token_hash=%s", email, redirect_to, token)


def verify_recovery_token(token_hash: str) -> str:
    """Return the user id a recovery link was issued for."""
    token_hash = (token_hash or "").strip()
    if not token_hash:
        raise ValidationError("This recovery link is invalid or has expired.")

    client = get_supabase_client()
    if client:
        try:
            response = _auth_client().auth.verify_otp({"token_hash": token_hash, "type": "recovery"})
        except Exception as exc:
            raise ValidationError("This recovery link is invalid or has expired.") from exc
        user_id = getattr(getattr(response, "user", None), "id", None)
        if not user_id:
            raise ValidationError("This recovery link is invalid or has expired.")
        return str(user_id)

    try:
        return _reset_serializer().loads(token_hash, max_age=RESET_TOKEN_MAX_AGE)
    except (BadSignature, SignatureExpired) as exc:
        raise ValidationError("This recovery link is invalid or has expired.") from exc


def update_password(user_id: str, password: str, confirm: str) -> None:
    if password != confirm:
        raise ValidationError("Passwords do not match.")
    _validate_password(password)

    client = get_supabase_client()
    if client:
        try:
            client.auth.admin.update_user_by_id(user_id, {"password": password})
        except Exception as exc:
            raise BackendError(error_message(exc)) from exc
        return

    profile = db.session.get(Profile, user_id)
    if not profile:
        raise AuthorizationError(PROFILE_MISSING_MESSAGE)
    profile.password_hash = generate_password_hash(password)
    commit_session("updating a password")


def update_own_profile(user_id: str, trainer_name: str, trainer_code: str) -> dict:
    trainer_name = (trainer_name or "").strip()
    if not trainer_name:
        raise ValidationError("Enter a trainer name and a valid 12-digit trainer code.")
    code = normalize_trainer_code(trainer_code)

    client = get_supabase_client()
    if client:
        run_query(
            client.table("profiles").update({"trainer_name": trainer_name, "trainer_code": code}).eq("id", user_id),
            "updating a profile",
            conflict_message=CODE_IN_USE_MESSAGE,
        )
        return {"id": user_id, "trainer_name": trainer_name, "trainer_code": code}

    profile = db.session.get(Profile, user_id)
    if not profile:
        raise AuthorizationError(PROFILE_MISSING_MESSAGE)
    profile.trainer_name = trainer_name
    profile.trainer_code = code
    commit_session("updating a profile", conflict_message=CODE_IN_USE_MESSAGE)
    return profile.to_dict()


def _validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Passwords need at least {MIN_PASSWORD_LENGTH} characters.")


def _auth_client():
    factory = current_app.config.get("SUPABASE_AUTH_CLIENT_FACTORY")
    if not callable(factory):
        raise BackendError("Supabase auth is not configured.", status_code=503)
    return factory()


def _discard_orphan_auth_user(client, user_id: str) -> None:
    try:
        client.auth.admin.delete_user(user_id)
    except Exception as exc:
        current_app.logger.warning("Could not remove auth user %s after a failed sign-up: %s", user_id, exc)


def _reset_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.secret_key, salt=RESET_TOKEN_SALT)

