import os
import io
import base64
from datetime import timedelta
from pathlib import Path
from typing import Optional

import bleach
import qrcode
from bleach.linkifier import DEFAULT_CALLBACKS
from dateutil import parser
from flask import Flask, flash, jsonify, redirect, render_template, request, send_from_directory, session, url_for
from markupsafe import Markup
from supabase import Client, ClientOptions, create_client
from werkzeug.exceptions import NotFound
from werkzeug.middleware.dispatcher import DispatcherMiddleware

from extensions import db
from awards import create_awards_blueprint
from catalog import create_catalog_admin_blueprint
from catalog.service import load_personal_rows
from olivos import auth
from olivos.access import (
    SESSION_USER_KEY,
    landing_endpoint,
    nav_links,
    resolve_viewer,
    staff_required,
    trainer_required,
    wants_json,
)
from olivos.album import build_album, summarize_progress
from olivos.errors import PokeOlivosError
from olivos.search import album_haystack, filter_items
from olivos.trainer_code import format_trainer_code

# ====== Feature toggle ======
def _env_flag(name: str, default: bool) -> bool:
    """Parse truthy feature-toggle values from the environment."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


USE_SUPABASE = _env_flag("USE_SUPABASE", True)  # ✅ Supabase for auth, catalog and storage
SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", False)

RECOVERY_SESSION_KEY = "recovery_user_id"
CLAIM_QR_COLOR = "#1d3c78"


def _base_path() -> str:
    """Sub-path the app is mounted under (APP_BASE_PATH, or the repo name on CI builds)."""
    value = os.environ.get("APP_BASE_PATH")
    if value is None and _env_flag("GITHUB_ACTIONS", False):
        value = (os.environ.get("GITHUB_REPOSITORY") or "").split("/")[-1]
    value = (value or "").strip().strip("/")
    return f"/{value}" if value else ""


APP_BASE_PATH = _base_path()

# ====== Flask setup ======
app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY") or os.urandom(24)
app.permanent_session_lifetime = timedelta(days=30)
app.config.setdefault("USE_SUPABASE", USE_SUPABASE)
app.config["SESSION_COOKIE_SECURE"] = SESSION_COOKIE_SECURE
app.config["APP_BASE_PATH"] = APP_BASE_PATH

DATA_DIR = Path(app.root_path) / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)

SQLITE_PATH = DATA_DIR / "pokeolivos.db"
app.config.setdefault("SQLALCHEMY_DATABASE_URI", os.environ.get("DATABASE_URL") or f"sqlite:///{SQLITE_PATH}")
app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
db.init_app(app)

UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER") or str(DATA_DIR / "uploads")
os.makedirs(UPLOAD_FOLDER, exist_ok=True)
app.config["UPLOAD_FOLDER"] = UPLOAD_FOLDER

# ====== Supabase setup ======
SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_KEY")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY") or SUPABASE_KEY
app.config["SUPABASE_IMAGE_BUCKET"] = os.environ.get("SUPABASE_IMAGE_BUCKET", "poke-stamp-images")

supabase: Optional[Client] = None
if USE_SUPABASE and SUPABASE_URL and SUPABASE_KEY:
    try:
        supabase = create_client(SUPABASE_URL, SUPABASE_KEY)
    except Exception as e:
        app.logger.warning("⚠️ Could not init Supabase client: %s", e)
        supabase = None
app.config["SUPABASE_CLIENT"] = supabase


def _supabase_auth_client() -> Client:
    # Sign-in swaps the client's auth header, so trainer sessions get their own client.
    return create_client(
        SUPABASE_URL,
        SUPABASE_ANON_KEY,
        options=ClientOptions(persist_session=False, auto_refresh_token=False),
    )


app.config["SUPABASE_AUTH_CLIENT_FACTORY"] = _supabase_auth_client if supabase else None

if APP_BASE_PATH:
    app.wsgi_app = DispatcherMiddleware(NotFound(), {APP_BASE_PATH: app.wsgi_app})


# ====== Errors ======
@app.errorhandler(404)
@app.errorhandler(500)
def show_custom_error_page(err):
    status_code = getattr(err, "code", 500) or 500
    return render_template("error.html", status_code=status_code), status_code


@app.errorhandler(PokeOlivosError)
def show_pokeolivos_error(err):
    if wants_json():
        return jsonify({"success": False, **err.payload}), err.status_code
    return render_template("error.html", status_code=err.status_code, message=err.message), err.status_code


# ====== Template helpers ======
ALLOWED_TEXT_TAGS = {"a", "br", "strong", "em", "b", "i", "u", "p", "ul", "ol", "li"}
ALLOWED_TEXT_ATTRS = {
    "a": ["href", "title", "target", "rel"],
}


def _linkify_target_blank(attrs, new=False):
    href = attrs.get((None, "href"))
    if not href:
        return attrs
    attrs[(None, "target")] = "_blank"
    attrs[(None, "rel")] = "noopener noreferrer"
    return attrs


LINKIFY_CALLBACKS = list(DEFAULT_CALLBACKS) + [_linkify_target_blank]


@app.template_filter("nl2br")
def nl2br(text):
    if text is None:
        return Markup("")

    cleaned = bleach.clean(
        text,
        tags=ALLOWED_TEXT_TAGS,
        attributes=ALLOWED_TEXT_ATTRS,
        strip=True,
    )
    cleaned = cleaned.replace("\r\n", "\n").replace("\n", "<br>")
    linked = bleach.linkify(
        cleaned,
        callbacks=LINKIFY_CALLBACKS,
        skip_tags=["a", "code"],
    )
    return Markup(linked)


@app.template_filter("to_date")
def to_date_filter(value):
    """Format ISO date/time strings like '2025-09-23T17:00:00+00:00' into '23 Sep 2025'."""
    if not value:
        return ""
    try:
        return parser.isoparse(str(value)).strftime("%d %b %Y")
    except (ValueError, OverflowError):
        return value


@app.template_filter("to_datetime")
def to_datetime_filter(value):
    if not value:
        return ""
    try:
        return parser.isoparse(str(value)).strftime("%d %b %Y %H:%M")
    except (ValueError, OverflowError):
        return value


@app.template_filter("trainer_code")
def trainer_code_filter(value):
    return format_trainer_code(value)


@app.template_filter("claim_qr")
def claim_qr_filter(claim_code):
    """PNG data URL of a claim code, rendered next to each owned stamp."""
    if not claim_code:
        return ""
    qr = qrcode.QRCode(border=1, box_size=6)
    qr.add_data(str(claim_code))
    qr.make(fit=True)
    image = qr.make_image(fill_color=CLAIM_QR_COLOR, back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


@app.context_processor
def inject_navigation():
    viewer = resolve_viewer()
    return {"viewer": viewer, "nav_links": nav_links(viewer, request.path)}


# ====== Auth pages ======
def _start_session(profile: dict) -> None:
    session.clear()
    session.permanent = True
    session[SESSION_USER_KEY] = profile["id"]


@app.route("/", methods=["GET", "POST"])
def home():
    viewer = resolve_viewer()
    if request.method == "GET" and viewer.signed_in and viewer.active:
        return redirect(url_for(landing_endpoint(viewer.role)))

    email = ""
    if request.method == "POST":
        email = request.form.get("email", "").strip()
        try:
            profile = auth.sign_in(email, request.form.get("password", ""))
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            return render_template("login.html", email=email), exc.status_code
        _start_session(profile)
        flash(f"Welcome back, {profile.get('trainer_name') or 'Trainer'}!", "success")
        return redirect(url_for(landing_endpoint(profile.get("role"))))

    return render_template("login.html", email=email)


@app.route("/signup", methods=["GET", "POST"])
def signup():
    form_values = {"email": "", "trainer_name": "", "trainer_code": ""}
    if request.method == "POST":
        form_values = {key: request.form.get(key, "").strip() for key in form_values}
        try:
            auth.sign_up(
                form_values["email"],
                request.form.get("password", ""),
                form_values["trainer_name"],
                form_values["trainer_code"],
            )
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            return render_template("signup.html", form_values=form_values), exc.status_code
        app.logger.info("New trainer sign-up awaiting approval: %s", form_values["trainer_name"])
        flash("Request sent. An admin must authorize your access.", "success")
        return redirect(url_for("home"))
    return render_template("signup.html", form_values=form_values)


@app.route("/logout", methods=["GET", "POST"])
def logout():
    session.clear()
    flash("Signed out.", "info")
    return redirect(url_for("home"))


@app.route("/reset-password", methods=["GET", "POST"])
def reset_password():
    if request.method == "POST":
        email = request.form.get("email", "").strip()
        try:
            auth.request_password_reset(email, url_for("update_password", _external=True))
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            return render_template("reset_password.html", email=email), exc.status_code
        flash("If that email has an account, a reset link is on its way.", "success")
        return redirect(url_for("reset_password"))
    return render_template("reset_password.html", email="")


@app.route("/update-password", methods=["GET", "POST"])
def update_password():
    token_hash = request.args.get("token_hash")
    if token_hash:
        try:
            session[RECOVERY_SESSION_KEY] = auth.verify_recovery_token(token_hash)
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            return redirect(url_for("update_password"))
        return redirect(url_for("update_password"))

    viewer = resolve_viewer()
    user_id = session.get(RECOVERY_SESSION_KEY) or viewer.user_id

    if request.method == "POST":
        if not user_id:
            flash("Open this page from the link in your email.", "error")
            return redirect(url_for("reset_password"))
        try:
            auth.update_password(user_id, request.form.get("password", ""), request.form.get("confirm_password", ""))
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            return render_template("update_password.html", ready=True), exc.status_code
        session.pop(RECOVERY_SESSION_KEY, None)
        return render_template("update_password.html", ready=True, done=True)

    return render_template("update_password.html", ready=bool(user_id))


@app.route("/profile", methods=["GET", "POST"])
@trainer_required
def profile():
    viewer = resolve_viewer()
    form_values = {"trainer_name": viewer.trainer_name or "", "trainer_code": viewer.trainer_code or ""}
    if request.method == "POST":
        form_values = {key: request.form.get(key, "").strip() for key in form_values}
        try:
            auth.update_own_profile(viewer.user_id, form_values["trainer_name"], form_values["trainer_code"])
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            return render_template("profile.html", form_values=form_values), exc.status_code
        flash("Profile updated.", "success")
        return redirect(url_for("profile"))
    return render_template("profile.html", form_values=form_values)


# ====== Personal album ======
@app.route("/user", strict_slashes=False)
@trainer_required
def user_album():
    viewer = resolve_viewer()
    data = load_personal_rows(viewer.user_id)
    album = build_album(
        data["events"],
        data["collections"],
        data["stamps"],
        data["event_collections"],
        data["collection_stamps"],
        awards=data["awards"],
        personal=True,
    )
    query = request.args.get("q", "")
    return render_template(
        "user_album.html",
        album=filter_items(album, query, album_haystack),
        progress=summarize_progress(album),
        query=query,
    )


# ====== Media (local gallery backend) ======
@app.route("/media/<path:path>")
def media_file(path):
    return send_from_directory(app.config["UPLOAD_FOLDER"], path)


# ====== Blueprints ======
app.register_blueprint(create_catalog_admin_blueprint(staff_required, resolve_viewer))
app.register_blueprint(create_awards_blueprint(staff_required, resolve_viewer))

with app.app_context():
    db.create_all()

# ====== Entrypoint ======
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 8080)), debug=_env_flag("FLASK_DEBUG", False))
