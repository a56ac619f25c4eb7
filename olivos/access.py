"""
Who is looking at the page, which navigation links they get, and the single
guard every protected view goes through.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Iterable, List, Optional

from flask import flash, g, jsonify, redirect, render_template, request, session, url_for

from models import STAFF_ROLES
from olivos.auth import ACCOUNT_DISABLED_MESSAGE, PROFILE_MISSING_MESSAGE, fetch_profile
from olivos.errors import BackendError

SESSION_USER_KEY = "user_id"
USER_ALBUM_PATH = "/user"
ADMIN_PATH = "/admin"


@dataclass(frozen=True)
class Viewer:
    user_id: Optional[str]
    trainer_name: Optional[str] = None
    trainer_code: Optional[str] = None
    role: Optional[str] = None
    active: bool = False
    profile_found: bool = False

    @property
    def signed_in(self) -> bool:
        return bool(self.user_id)

    @property
    def is_staff(self) -> bool:
        return self.profile_found and self.active and self.role in STAFF_ROLES

    @property
    def effective_role(self) -> Optional[str]:
        """Role used for authorization; an inactive account has none."""
        if not self.profile_found or not self.active:
            return None
        return self.role


ANONYMOUS = Viewer(user_id=None)


@dataclass(frozen=True)
class NavLink:
    label: str
    path: str


def resolve_viewer() -> Viewer:
    """Load the signed-in trainer's profile once per request."""
    cached = g.get("viewer")
    if cached is not None:
        return cached

    user_id = session.get(SESSION_USER_KEY)
    if not user_id:
        viewer = ANONYMOUS
    else:
        try:
            profile = fetch_profile(user_id)
        except BackendError:
            profile = None
        if profile:
            viewer = Viewer(
                user_id=str(user_id),
                trainer_name=profile.get("trainer_name"),
                trainer_code=profile.get("trainer_code"),
                role=profile.get("role"),
                active=bool(profile.get("active")),
                profile_found=True,
            )
        else:
            viewer = Viewer(user_id=str(user_id))
    g.viewer = viewer
    return viewer


def _normalize_path(path: Optional[str]) -> str:
    cleaned = (path or "/").rstrip("/")
    return cleaned or "/"


def nav_links(viewer: Viewer, path: Optional[str]) -> List[NavLink]:
    """Links for the top bar. Advisory only; views still go through viewer_required."""
    if not viewer.is_staff:
        return []
    current = _normalize_path(path)
    links = []
    if current != USER_ALBUM_PATH:
        links.append(NavLink("My album", USER_ALBUM_PATH))
    if current != ADMIN_PATH:
        links.append(NavLink("Admin", ADMIN_PATH))
    return links


def landing_endpoint(role: Optional[str]) -> str:
    return "admin_catalog.dashboard" if role in STAFF_ROLES else "user_album"


def wants_json() -> bool:
    accepts = request.accept_mimetypes
    return (
        request.headers.get("X-Requested-With") == "XMLHttpRequest"
        or accepts["application/json"] > accepts["text/html"]
    )


def viewer_required(roles: Optional[Iterable[str]] = None):
    """
    Gate a view on a signed-in, active profile (and optionally a role).

    Not signed in goes to the sign-in page, a missing or disabled profile gets
    a blocking page, and a role mismatch is sent to the trainer's own album.
    """
    allowed = tuple(roles) if roles else None

    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            viewer = resolve_viewer()
            json_mode = wants_json()

            if not viewer.signed_in:
                if json_mode:
                    return jsonify({"success": False, "message": "Please sign in first."}), 401
                flash("Please sign in first.", "warning")
                return redirect(url_for("home"))

            if not viewer.profile_found or not viewer.active:
                message = PROFILE_MISSING_MESSAGE if not viewer.profile_found else ACCOUNT_DISABLED_MESSAGE
                if json_mode:
                    return jsonify({"success": False, "message": message}), 403
                return render_template("blocked.html", message=message), 403

            if allowed and viewer.role not in allowed:
                if json_mode:
                    return jsonify({"success": False, "message": "You do not have access to that page."}), 403
                flash("You do not have access to that page.", "error")
                return redirect(url_for("user_album"))

            return f(*args, **kwargs)
        return wrapper
    return decorator


staff_required = viewer_required(STAFF_ROLES)
trainer_required = viewer_required()
