"""Staff blueprint for the catalog tabs: events, collections, stamps, albums, gallery and users."""

from __future__ import annotations

from typing import Callable, Optional

from flask import Blueprint, flash, jsonify, redirect, render_template, request, url_for

from olivos.access import Viewer, wants_json
from olivos.album import CatalogSnapshot, build_album
from olivos.errors import PokeOlivosError
from olivos.search import (
    album_haystack,
    collection_haystack,
    event_haystack,
    filter_items,
    image_haystack,
    normalize_query,
    stamp_haystack,
    user_haystack,
)

from . import media, service

ViewerProvider = Callable[[], Viewer]
Guard = Callable[[Callable], Callable]

TABS = [
    ("events", "Events"),
    ("collections", "Collections"),
    ("stamps", "Stamps"),
    ("albums", "Albums"),
    ("gallery", "Gallery"),
    ("users", "Users"),
    ("logs", "Logs"),
]
TAB_KEYS = {key for key, _ in TABS}
DEFAULT_TAB = "events"

_KIND_TABS = {"event": "events", "collection": "collections", "stamp": "stamps"}


def create_catalog_admin_blueprint(staff_required: Guard, viewer_provider: ViewerProvider) -> Blueprint:
    """Factory so the app hands in its guard and the signed-in viewer."""

    bp = Blueprint("admin_catalog", __name__, url_prefix="/admin")

    @bp.route("", methods=["GET"], strict_slashes=False)
    @staff_required
    def dashboard():
        tab = _normalize_tab(request.args.get("tab"))
        if tab == "logs":
            args = request.args.to_dict()
            args.pop("tab", None)
            return redirect(url_for("admin_awards.logs", **args))

        try:
            snapshot = service.load_snapshot(include_images=True)
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            snapshot = CatalogSnapshot()
        for warning in snapshot.warnings:
            flash(warning, "warning")

        query = request.args.get("q", "")
        focus_id = _clean(request.args.get("id"))
        event_scope = _clean(request.args.get("event_id"))
        collection_scope = _clean(request.args.get("collection_id"))
        edit_id = _clean(request.args.get("edit"))

        context = {
            "tabs": TABS,
            "tab": tab,
            "query": query,
            "query_active": bool(normalize_query(query)),
            "focus_id": focus_id,
            "event_scope": event_scope,
            "collection_scope": collection_scope,
            "snapshot": snapshot,
            "editing": snapshot.find(_edit_kind(tab), edit_id) if edit_id else None,
        }
        context.update(_tab_items(tab, snapshot, query, focus_id, event_scope, collection_scope))
        return render_template("admin/dashboard.html", **context)

    @bp.post("/events")
    @staff_required
    def save_event():
        form = request.form
        try:
            event_id = service.save_event(
                viewer_provider().user_id,
                name=form.get("name", ""),
                starts_at=form.get("starts_at", ""),
                ends_at=form.get("ends_at"),
                description=form.get("description"),
                image_url=form.get("image_url"),
                collection_ids=form.getlist("collection_ids"),
                event_id=_clean(form.get("id")),
            )
        except PokeOlivosError as exc:
            return _finish("events", exc.message, ok=False, status=exc.status_code)
        return _finish(
            "events",
            "Event updated." if form.get("id") else "Event created.",
            item_id=event_id,
        )

    @bp.post("/collections")
    @staff_required
    def save_collection():
        form = request.form
        try:
            collection_id = service.save_collection(
                viewer_provider().user_id,
                name=form.get("name", ""),
                description=form.get("description"),
                image_url=form.get("image_url"),
                event_ids=form.getlist("event_ids"),
                stamp_ids=form.getlist("stamp_ids"),
                collection_id=_clean(form.get("id")),
            )
        except PokeOlivosError as exc:
            return _finish("collections", exc.message, ok=False, status=exc.status_code)
        return _finish(
            "collections",
            "Collection updated." if form.get("id") else "Collection created.",
            item_id=collection_id,
        )

    @bp.post("/stamps")
    @staff_required
    def save_stamp():
        form = request.form
        try:
            stamp_id = service.save_stamp(
                viewer_provider().user_id,
                name=form.get("name", ""),
                description=form.get("description"),
                image_url=form.get("image_url"),
                stamp_id=_clean(form.get("id")),
            )
        except PokeOlivosError as exc:
            return _finish("stamps", exc.message, ok=False, status=exc.status_code)
        return _finish(
            "stamps",
            "Stamp updated." if form.get("id") else "Stamp created.",
            item_id=stamp_id,
        )

    @bp.post("/items/<kind>/<item_id>/delete")
    @staff_required
    def delete_item(kind: str, item_id: str):
        tab = _KIND_TABS.get(kind, DEFAULT_TAB)
        try:
            service.delete_item(kind, item_id, actor_id=viewer_provider().user_id)
        except PokeOlivosError as exc:
            return _finish(tab, exc.message, ok=False, status=exc.status_code)
        return _finish(tab, "Item deleted.")

    @bp.post("/users/<user_id>")
    @staff_required
    def update_user(user_id: str):
        form = request.form
        try:
            service.update_user(
                user_id,
                trainer_name=form.get("trainer_name", ""),
                trainer_code=form.get("trainer_code", ""),
                role=form.get("role", ""),
                active=form.get("active") in {"1", "true", "on", "yes"},
                actor_id=viewer_provider().user_id,
            )
        except PokeOlivosError as exc:
            return _finish("users", exc.message, ok=False, status=exc.status_code, item_id=user_id)
        return _finish("users", "Trainer updated.", item_id=user_id)

    @bp.post("/users/<user_id>/approve")
    @staff_required
    def approve_user(user_id: str):
        try:
            service.approve_user(user_id, actor_id=viewer_provider().user_id)
        except PokeOlivosError as exc:
            return _finish("users", exc.message, ok=False, status=exc.status_code)
        return _finish("users", "Trainer authorized.")

    @bp.post("/users/<user_id>/delete")
    @staff_required
    def delete_user(user_id: str):
        try:
            service.delete_user(user_id, actor_id=viewer_provider().user_id)
        except PokeOlivosError as exc:
            return _finish("users", exc.message, ok=False, status=exc.status_code)
        return _finish("users", "Item deleted.")

    @bp.post("/gallery")
    @staff_required
    def upload_image():
        try:
            image = media.upload_image(request.files.get("image"))
        except PokeOlivosError as exc:
            return _finish("gallery", exc.message, ok=False, status=exc.status_code)
        return _finish("gallery", "Image uploaded.", extra={"path": image.path, "url": image.url})

    @bp.post("/gallery/delete")
    @staff_required
    def delete_image():
        try:
            media.delete_image(request.form.get("path", ""))
        except PokeOlivosError as exc:
            return _finish("gallery", exc.message, ok=False, status=exc.status_code)
        return _finish("gallery", "Item deleted.")

    return bp


def _tab_items(
    tab: str,
    snapshot: CatalogSnapshot,
    query: str,
    focus_id: Optional[str],
    event_scope: Optional[str],
    collection_scope: Optional[str],
) -> dict:
    """Rows for the active tab after scoping, focusing and the free-text filter."""
    if tab == "events":
        items = filter_items(snapshot.events, query, event_haystack)
        return {"items": _focus(items, focus_id)}

    if tab == "collections":
        collections = list(snapshot.collections)
        if event_scope:
            linked = set(snapshot.collection_ids_for_event(event_scope))
            collections = [row for row in collections if str(row["id"]) in linked]
        items = filter_items(
            collections,
            query,
            lambda row: collection_haystack(
                row, snapshot.names("event", snapshot.event_ids_for_collection(row["id"]))
            ),
        )
        return {"items": _focus(items, focus_id), "scope_event": snapshot.find("event", event_scope)}

    if tab == "stamps":
        stamps = list(snapshot.stamps)
        if collection_scope:
            linked = set(snapshot.stamp_ids_for_collection(collection_scope))
            stamps = [row for row in stamps if str(row["id"]) in linked]
        items = filter_items(
            stamps,
            query,
            lambda row: stamp_haystack(
                row, snapshot.names("collection", snapshot.collection_ids_for_stamp(row["id"]))
            ),
        )
        return {
            "items": _focus(items, focus_id),
            "scope_collection": snapshot.find("collection", collection_scope),
            "scope_event": snapshot.find("event", event_scope),
        }

    if tab == "albums":
        album = build_album(
            snapshot.events,
            snapshot.collections,
            snapshot.stamps,
            snapshot.event_collections,
            snapshot.collection_stamps,
            personal=False,
        )
        items = filter_items(album, query, album_haystack)
        if focus_id:
            items = [event for event in items if event.id == focus_id]
        return {"items": items}

    if tab == "gallery":
        return {"items": filter_items(snapshot.images, query, image_haystack)}

    items = filter_items(snapshot.users, query, user_haystack)
    return {
        "items": _focus(items, focus_id),
        "pending_count": sum(1 for row in snapshot.users if not row.get("active")),
    }


def _focus(items: list, focus_id: Optional[str]) -> list:
    if not focus_id:
        return items
    return [row for row in items if str(row.get("id")) == focus_id]


def _normalize_tab(value: Optional[str]) -> str:
    value = (value or "").strip().lower()
    return value if value in TAB_KEYS else DEFAULT_TAB


def _edit_kind(tab: str) -> str:
    return {"events": "event", "collections": "collection", "stamps": "stamp", "users": "user"}.get(tab, "")


def _clean(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned or None


def _finish(tab: str, message: str, ok: bool = True, status: int = 200, item_id=None, extra=None):
    """JSON for fetch callers, flash + redirect back to the tab for forms."""
    if wants_json():
        payload = {"success": ok, "message": message}
        if item_id:
            payload["id"] = item_id
        if extra:
            payload.update(extra)
        return jsonify(payload), (status if not ok else 200)
    flash(message, "success" if ok else "error")
    args = {"tab": tab}
    if not ok and item_id:
        args["edit"] = item_id
    return redirect(url_for(".dashboard", **args))
