"""
Catalog reads and writes for the admin page: events, collections, stamps,
their link tables and trainer profiles.

Every mutation is acknowledged before the caller reloads a fresh
`CatalogSnapshot` with `load_snapshot()`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from flask import current_app

from extensions import db
from models import (
    ROLE_ADMIN,
    ROLE_MOD,
    ROLE_USER,
    Collection,
    CollectionStamp,
    Event,
    EventCollection,
    Profile,
    Stamp,
    UserStamp,
)
from olivos.album import CatalogSnapshot
from olivos.auth import CODE_IN_USE_MESSAGE, PROFILE_COLUMNS
from olivos.backend import clean_or_none, commit_session, get_supabase_client, rows, run_query
from olivos.errors import AuthorizationError, BackendError, ValidationError
from olivos.trainer_code import normalize_trainer_code

from .media import list_images

ASSIGNABLE_ROLES = (ROLE_USER, ROLE_MOD)

EVENT_COLUMNS = "id, name, starts_at, ends_at, description, image_url"
ITEM_COLUMNS = "id, name, description, image_url"


@dataclass(frozen=True)
class LinkDiff:
    added: Tuple[str, ...]
    removed: Tuple[str, ...]

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


def plan_link_diff(current: Iterable[str], requested: Iterable[str]) -> LinkDiff:
    """Links to create and links to drop; requested order is kept for the inserts."""
    current_ids = {str(value) for value in current if value}
    seen = set()
    wanted: List[str] = []
    for value in requested:
        if not value:
            continue
        key = str(value)
        if key not in seen:
            seen.add(key)
            wanted.append(key)
    added = tuple(value for value in wanted if value not in current_ids)
    removed = tuple(sorted(current_ids - seen))
    return LinkDiff(added=added, removed=removed)


# Link tables: (table, owner column, other column, model)
_EVENT_COLLECTIONS = ("event_collections", "event_id", "collection_id", EventCollection)
_COLLECTION_EVENTS = ("event_collections", "collection_id", "event_id", EventCollection)
_COLLECTION_STAMPS = ("collection_stamps", "collection_id", "stamp_id", CollectionStamp)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

def load_snapshot(include_images: bool = True) -> CatalogSnapshot:
    client = get_supabase_client()
    if client:
        data = _load_rows_supabase(client)
    else:
        data = _load_rows_sql()

    images: Sequence = ()
    warnings: List[str] = []
    if include_images:
        images, warnings = list_images()
    return CatalogSnapshot(images=tuple(images), warnings=tuple(warnings), **data)


def _load_rows_supabase(client) -> dict:
    def _select(table: str, columns: str, order: Optional[str] = None, desc: bool = False) -> tuple:
        query = client.table(table).select(columns)
        if order:
            query = query.order(order, desc=desc)
        return tuple(rows(run_query(query, f"loading {table}")))

    return {
        "events": _select("events", EVENT_COLUMNS, "created_at", desc=True),
        "collections": _select("collections", ITEM_COLUMNS, "created_at", desc=True),
        "stamps": _select("stamps", ITEM_COLUMNS, "created_at", desc=True),
        "event_collections": _select("event_collections", "event_id, collection_id"),
        "collection_stamps": _select("collection_stamps", "collection_id, stamp_id"),
        "users": _select("profiles", PROFILE_COLUMNS, "trainer_name"),
    }


def _load_rows_sql() -> dict:
    def _newest_first(model) -> tuple:
        records = model.query.order_by(model.created_at.desc(), model.name.asc()).all()
        return tuple(record.to_dict() for record in records)

    return {
        "events": _newest_first(Event),
        "collections": _newest_first(Collection),
        "stamps": _newest_first(Stamp),
        "event_collections": tuple(link.to_dict() for link in EventCollection.query.all()),
        "collection_stamps": tuple(link.to_dict() for link in CollectionStamp.query.all()),
        "users": tuple(
            profile.to_dict() for profile in Profile.query.order_by(Profile.trainer_name.asc()).all()
        ),
    }


def load_personal_rows(user_id: str) -> dict:
    """Catalog rows plus the viewer's own awards, for the personal album."""
    client = get_supabase_client()
    if client:
        data = _load_rows_supabase(client)
        data.pop("users", None)
        data["awards"] = tuple(
            rows(
                run_query(
                    client.table("user_stamps")
                    .select("stamp_id, collection_id, event_id, claim_code, awarded_at")
                    .eq("user_id", user_id),
                    "loading your stamps",
                )
            )
        )
        return data

    data = _load_rows_sql()
    data.pop("users", None)
    data["awards"] = tuple(award.to_dict() for award in UserStamp.query.filter_by(user_id=user_id).all())
    return data


# ---------------------------------------------------------------------------
# Events, collections, stamps
# ---------------------------------------------------------------------------

def save_event(
    actor_id: Optional[str],
    name: str,
    starts_at: str,
    ends_at: Optional[str] = None,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    collection_ids: Sequence[str] = (),
    event_id: Optional[str] = None,
) -> str:
    name = (name or "").strip()
    starts_at = (starts_at or "").strip()
    if not name or not starts_at:
        raise ValidationError("Enter a name and a start date.")
    payload = {
        "name": name,
        "starts_at": starts_at,
        "ends_at": clean_or_none(ends_at),
        "description": clean_or_none(description),
        "image_url": clean_or_none(image_url),
        "created_by": actor_id,
    }

    client = get_supabase_client()
    if client:
        event_id = _save_row_supabase(client, "events", payload, event_id, "saving an event")
        _sync_links_supabase(client, _EVENT_COLLECTIONS, event_id, collection_ids, actor_id)
    else:
        event = _save_row_sql(Event, payload, event_id)
        event_id = event.id
        _sync_links_sql(_EVENT_COLLECTIONS, event_id, collection_ids, actor_id)
        commit_session("saving an event")

    current_app.logger.info("Event %s saved by %s", event_id, actor_id)
    return event_id


def save_collection(
    actor_id: Optional[str],
    name: str,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    event_ids: Sequence[str] = (),
    stamp_ids: Sequence[str] = (),
    collection_id: Optional[str] = None,
) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Enter the collection name.")
    payload = {
        "name": name,
        "description": clean_or_none(description),
        "image_url": clean_or_none(image_url),
        "created_by": actor_id,
    }

    client = get_supabase_client()
    if client:
        collection_id = _save_row_supabase(client, "collections", payload, collection_id, "saving a collection")
        _sync_links_supabase(client, _COLLECTION_EVENTS, collection_id, event_ids, actor_id)
        _sync_links_supabase(client, _COLLECTION_STAMPS, collection_id, stamp_ids, actor_id)
    else:
        collection = _save_row_sql(Collection, payload, collection_id)
        collection_id = collection.id
        _sync_links_sql(_COLLECTION_EVENTS, collection_id, event_ids, actor_id)
        _sync_links_sql(_COLLECTION_STAMPS, collection_id, stamp_ids, actor_id)
        commit_session("saving a collection")

    current_app.logger.info("Collection %s saved by %s", collection_id, actor_id)
    return collection_id


def save_stamp(
    actor_id: Optional[str],
    name: str,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    stamp_id: Optional[str] = None,
) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Enter the stamp name.")
    payload = {
        "name": name,
        "description": clean_or_none(description),
        "image_url": clean_or_none(image_url),
        "created_by": actor_id,
    }

    client = get_supabase_client()
    if client:
        stamp_id = _save_row_supabase(client, "stamps", payload, stamp_id, "saving a stamp")
    else:
        stamp = _save_row_sql(Stamp, payload, stamp_id)
        commit_session("saving a stamp")
        stamp_id = stamp.id

    current_app.logger.info("Stamp %s saved by %s", stamp_id, actor_id)
    return stamp_id


_DELETABLE = {
    "event": ("events", Event),
    "collection": ("collections", Collection),
    "stamp": ("stamps", Stamp),
}


def delete_item(kind: str, item_id: str, actor_id: Optional[str] = None) -> None:
    """Delete an event, collection or stamp; link rows and awards cascade."""
    if kind not in _DELETABLE:
        raise ValidationError("Unknown item type.")
    if not item_id:
        raise ValidationError("Nothing selected to delete.")
    table, model = _DELETABLE[kind]

    client = get_supabase_client()
    if client:
        run_query(client.table(table).delete().eq("id", item_id), f"deleting a {kind}")
    else:
        record = db.session.get(model, item_id)
        if not record:
            raise ValidationError("That item no longer exists.", status_code=404)
        db.session.delete(record)
        commit_session(f"deleting a {kind}")
    current_app.logger.info("Deleted %s %s (by %s)", kind, item_id, actor_id)


def _save_row_supabase(client, table: str, payload: dict, row_id: Optional[str], action: str) -> str:
    if row_id:
        run_query(client.table(table).update(payload).eq("id", row_id), action)
        return row_id
    data = rows(run_query(client.table(table).insert(payload), action))
    if not data or not data[0].get("id"):
        raise BackendError("The new item did not come back from the server.")
    return str(data[0]["id"])


def _save_row_sql(model, payload: dict, row_id: Optional[str]):
    if row_id:
        record = db.session.get(model, row_id)
        if not record:
            raise ValidationError("That item no longer exists.", status_code=404)
        for key, value in payload.items():
            if key == "created_by" and record.created_by:
                continue
            setattr(record, key, value)
    else:
        record = model(**payload)
        db.session.add(record)
    db.session.flush()
    return record


# ---------------------------------------------------------------------------
# Relation sync
# ---------------------------------------------------------------------------

def _sync_links_supabase(client, link, owner_id: str, requested: Sequence[str], actor_id: Optional[str]) -> LinkDiff:
    """
    Bring one owner's links in line with `requested`.

    New links go in first (duplicates ignored), then only the dropped links are
    deleted. If the second step fails the owner keeps extra links, never none.
    """
    table, owner_column, other_column, _ = link
    current = rows(
        run_query(
            client.table(table).select(other_column).eq(owner_column, owner_id),
            f"loading {table}",
        )
    )
    diff = plan_link_diff((row.get(other_column) for row in current), requested)
    if diff.added:
        run_query(
            client.table(table).upsert(
                [
                    {owner_column: owner_id, other_column: other_id, "created_by": actor_id}
                    for other_id in diff.added
                ],
                on_conflict=f"{owner_column},{other_column}",
                ignore_duplicates=True,
            ),
            f"linking {table}",
        )
    if diff.removed:
        run_query(
            client.table(table).delete().eq(owner_column, owner_id).in_(other_column, list(diff.removed)),
            f"unlinking {table}",
        )
    return diff


def _sync_links_sql(link, owner_id: str, requested: Sequence[str], actor_id: Optional[str]) -> LinkDiff:
    """Same diff as the Supabase path, staged in the caller's transaction."""
    _, owner_column, other_column, model = link
    owner_attr = getattr(model, owner_column)
    other_attr = getattr(model, other_column)
    current = [row[0] for row in db.session.query(other_attr).filter(owner_attr == owner_id).all()]
    diff = plan_link_diff(current, requested)
    for other_id in diff.added:
        db.session.add(model(**{owner_column: owner_id, other_column: other_id, "created_by": actor_id}))
    if diff.removed:
        model.query.filter(owner_attr == owner_id, other_attr.in_(diff.removed)).delete(synchronize_session=False)
    return diff


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

ADMIN_PROTECTED_MESSAGE = "Admin accounts cannot be changed from the admin page."


def _manageable_profile(client, user_id: str) -> Optional[Profile]:
    """Load the target's role and refuse admins; returns the SQL row when there is one."""
    if client:
        found = rows(
            run_query(
                client.table("profiles").select("id, role").eq("id", user_id).limit(1),
                "loading a trainer",
            )
        )
        if not found:
            raise ValidationError("That trainer no longer exists.", status_code=404)
        role, profile = found[0].get("role"), None
    else:
        profile = db.session.get(Profile, user_id)
        if not profile:
            raise ValidationError("That trainer no longer exists.", status_code=404)
        role = profile.role
    if role == ROLE_ADMIN:
        raise AuthorizationError(ADMIN_PROTECTED_MESSAGE)
    return profile


def update_user(
    user_id: str,
    trainer_name: str,
    trainer_code: str,
    role: str,
    active: bool,
    actor_id: Optional[str] = None,
) -> dict:
    trainer_name = (trainer_name or "").strip()
    if not user_id or not trainer_name or not (trainer_code or "").strip():
        raise ValidationError("Enter the trainer name and trainer code.")
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError("Only the user or mod roles can be assigned.")
    code = normalize_trainer_code(trainer_code)
    payload = {"trainer_name": trainer_name, "trainer_code": code, "role": role, "active": bool(active)}

    client = get_supabase_client()
    profile = _manageable_profile(client, user_id)
    if client:
        run_query(
            client.table("profiles").update(payload).eq("id", user_id),
            "updating a trainer",
            conflict_message=CODE_IN_USE_MESSAGE,
        )
        result = {"id": user_id, **payload}
    else:
        for key, value in payload.items():
            setattr(profile, key, value)
        commit_session("updating a trainer", conflict_message=CODE_IN_USE_MESSAGE)
        result = profile.to_dict()

    current_app.logger.info("Trainer %s updated by %s (role=%s active=%s)", user_id, actor_id, role, bool(active))
    return result


def approve_user(user_id: str, actor_id: Optional[str] = None) -> None:
    if not user_id:
        raise ValidationError("Nothing selected to approve.")
    client = get_supabase_client()
    profile = _manageable_profile(client, user_id)
    if client:
        run_query(client.table("profiles").update({"active": True}).eq("id", user_id), "approving a trainer")
    else:
        profile.active = True
        commit_session("approving a trainer")
    current_app.logger.info("Trainer %s approved by %s", user_id, actor_id)


def delete_user(user_id: str, actor_id: Optional[str] = None) -> None:
    """Remove an account; Supabase needs the privileged admin_delete_user procedure."""
    if not user_id:
        raise ValidationError("Nothing selected to delete.")
    if actor_id and user_id == actor_id:
        raise ValidationError("You cannot delete your own account.")
    client = get_supabase_client()
    profile = _manageable_profile(client, user_id)
    if client:
        run_query(client.rpc("admin_delete_user", {"target_user_id": user_id}), "deleting a trainer")
    else:
        db.session.delete(profile)
        commit_session("deleting a trainer")
    current_app.logger.info("Trainer %s deleted by %s", user_id, actor_id)
