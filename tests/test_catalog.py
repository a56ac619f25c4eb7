import io
import os

import pytest
from PIL import Image
from werkzeug.datastructures import FileStorage

from catalog import media, service
from catalog.service import plan_link_diff
from extensions import db
from models import CollectionStamp, EventCollection, Profile, UserStamp
from olivos.errors import AuthorizationError, BackendError, ConflictError, InvalidCodeFormat, ValidationError
from tests.conftest import add_profile, login
from tests.fakes import FakeResponse


def _image_bytes(fmt="PNG", size=(8, 8)):
    buffer = io.BytesIO()
    Image.new("RGB", size, (29, 60, 120)).save(buffer, format=fmt)
    return buffer.getvalue()


def _upload(data, filename="ghost.png"):
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type="application/octet-stream")


# ---------------------------------------------------------------------------
# Relation sync
# ---------------------------------------------------------------------------

def test_plan_link_diff():
    diff = plan_link_diff(["a", "b", "c"], ["c", "d", "d", "", "e"])
    assert diff.added == ("d", "e")
    assert diff.removed == ("a", "b")
    assert plan_link_diff(["a"], ["a"]).is_empty


def test_sql_sync_only_touches_changed_links(ctx, admin, catalog):
    collection_id = catalog["collection_id"]
    before = CollectionStamp.query.filter_by(stamp_id=catalog["stamp_id"]).one()
    before_creator = before.created_by

    new_stamp = service.save_stamp(admin["id"], "Banette")
    service.save_collection(
        admin["id"],
        "Ghost Week",
        event_ids=[catalog["event_id"]],
        stamp_ids=[catalog["stamp_id"], new_stamp],
        collection_id=collection_id,
    )

    links = {row.stamp_id: row for row in CollectionStamp.query.filter_by(collection_id=collection_id)}
    assert set(links) == {catalog["stamp_id"], new_stamp}
    # The untouched link is the same row, not a re-insert.
    assert links[catalog["stamp_id"]].created_by == before_creator
    assert links[new_stamp].created_by == admin["id"]
    assert EventCollection.query.filter_by(collection_id=collection_id).count() == 1


def test_supabase_sync_inserts_before_deleting(ctx, fake_supabase):
    def event_collections(query):
        if query.operation == "select":
            return FakeResponse([{"collection_id": "c1"}, {"collection_id": "c2"}])
        return FakeResponse([])

    fake_supabase.on("events", lambda query: FakeResponse([{"id": "e1"}]))
    fake_supabase.on("event_collections", event_collections)

    event_id = service.save_event("admin", "Fall Fest", "2025-10-01", collection_ids=["c2", "c3"])
    assert event_id == "e1"

    link_queries = fake_supabase.queries("event_collections")
    assert [query.operation for query in link_queries] == ["select", "upsert", "delete"]
    upsert, delete = link_queries[1], link_queries[2]
    rows, options = upsert.called("upsert")[0]
    assert rows[0] == [{"event_id": "e1", "collection_id": "c3", "created_by": "admin"}]
    assert options == {"on_conflict": "event_id,collection_id", "ignore_duplicates": True}
    assert delete.called("in_") == [(("collection_id", ["c1"]), {})]


def test_supabase_insert_without_a_row_fails(ctx, fake_supabase):
    fake_supabase.on("stamps", lambda query: FakeResponse([]))
    with pytest.raises(BackendError):
        service.save_stamp("admin", "Gengar")


def test_required_fields(ctx):
    with pytest.raises(ValidationError):
        service.save_event("admin", "Fall Fest", "")
    with pytest.raises(ValidationError):
        service.save_collection("admin", "  ")
    with pytest.raises(ValidationError):
        service.save_stamp("admin", "")
    with pytest.raises(ValidationError):
        service.delete_item("badge", "x")


def test_delete_event_cascades_awards(ctx, admin, trainer, catalog):
    db.session.add(
        UserStamp(
            user_id=trainer["id"],
            stamp_id=catalog["stamp_id"],
            collection_id=catalog["collection_id"],
            event_id=catalog["event_id"],
            awarded_by=admin["id"],
        )
    )
    db.session.commit()

    service.delete_item("event", catalog["event_id"], admin["id"])

    assert UserStamp.query.count() == 0
    assert EventCollection.query.count() == 0
    assert CollectionStamp.query.count() == 2


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def test_update_user_rules(ctx, app, admin, trainer):
    with pytest.raises(ValidationError):
        service.update_user(trainer["id"], "Vicky", "123456789012", "admin", True, admin["id"])
    with pytest.raises(InvalidCodeFormat):
        service.update_user(trainer["id"], "Vicky", "1234", "user", True, admin["id"])

    updated = service.update_user(trainer["id"], " Vicky V ", "trainer: 2222 3333 4444", "mod", False, admin["id"])
    assert updated["trainer_code"] == "222233334444"
    assert updated["role"] == "mod"
    assert updated["active"] is False

    other = add_profile(app, "Copycat", "555566667777")
    with pytest.raises(ConflictError) as excinfo:
        service.update_user(other["id"], "Copycat", "2222 3333 4444", "user", True, admin["id"])
    assert excinfo.value.message == "That trainer code is already in use."


def test_approve_and_delete_user(ctx, admin, trainer, catalog):
    with pytest.raises(ValidationError):
        service.delete_user(admin["id"], actor_id=admin["id"])

    service.approve_user(trainer["id"], admin["id"])
    db.session.add(
        UserStamp(
            user_id=trainer["id"],
            stamp_id=catalog["stamp_id"],
            collection_id=catalog["collection_id"],
            event_id=catalog["event_id"],
        )
    )
    db.session.commit()

    service.delete_user(trainer["id"], actor_id=admin["id"])
    assert db.session.get(Profile, trainer["id"]) is None
    assert UserStamp.query.count() == 0


def test_supabase_delete_user_uses_rpc(ctx, fake_supabase):
    fake_supabase.on("profiles", lambda query: FakeResponse([{"id": "u1", "role": "user"}]))
    service.delete_user("u1", actor_id="admin")
    rpc = fake_supabase.queries("rpc:admin_delete_user")[0]
    assert rpc.called("rpc") == [(("admin_delete_user", {"target_user_id": "u1"}), {})]


def test_admin_profiles_cannot_be_managed(ctx, admin, mod):
    with pytest.raises(AuthorizationError):
        service.update_user(admin["id"], "Olivia", "111122223333", "user", True, mod["id"])
    with pytest.raises(AuthorizationError):
        service.approve_user(admin["id"], mod["id"])
    with pytest.raises(AuthorizationError):
        service.delete_user(admin["id"], actor_id=mod["id"])

    profile = db.session.get(Profile, admin["id"])
    assert profile is not None
    assert profile.role == "admin"


def test_supabase_refuses_admin_targets(ctx, fake_supabase):
    fake_supabase.on("profiles", lambda query: FakeResponse([{"id": "a1", "role": "admin"}]))
    with pytest.raises(AuthorizationError):
        service.delete_user("a1", actor_id="m1")
    with pytest.raises(AuthorizationError):
        service.update_user("a1", "Olivia", "111122223333", "mod", True, "m1")
    assert fake_supabase.queries("rpc:admin_delete_user") == []
    assert fake_supabase.queries("profiles", "update") == []


# ---------------------------------------------------------------------------
# Gallery
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("fmt, content_type", [("PNG", "image/png"), ("JPEG", "image/jpeg"), ("WEBP", "image/webp")])
def test_validate_accepts_allowed_formats(fmt, content_type):
    data, detected = media.validate_image(_upload(_image_bytes(fmt)))
    assert detected == content_type
    assert data


def test_validate_rejects_bad_uploads():
    with pytest.raises(ValidationError, match="Choose an image"):
        media.validate_image(None)
    with pytest.raises(ValidationError, match="larger than 300KB"):
        media.validate_image(_upload(b"\0" * (media.MAX_IMAGE_SIZE_BYTES + 1)))
    with pytest.raises(ValidationError, match="Format not allowed"):
        media.validate_image(_upload(_image_bytes("GIF"), "ghost.gif"))
    with pytest.raises(ValidationError, match="Format not allowed"):
        media.validate_image(_upload(b"definitely not an image", "ghost.png"))


def test_gallery_object_path():
    assert media.gallery_object_path("My Ghost!.png", now_ms=1700000000000) == "gallery/1700000000000-My_Ghost.png"
    assert media.gallery_object_path("", now_ms=5) == "gallery/5-image"


def test_local_upload_list_and_delete(ctx, app):
    image = media.upload_image(_upload(_image_bytes(), "gengar.png"))
    assert image.path.startswith("gallery/") and image.path.endswith("-gengar.png")
    assert os.path.isfile(os.path.join(app.config["UPLOAD_FOLDER"], *image.path.split("/")))

    images, warnings = media.list_images()
    assert warnings == []
    assert image.path in {option.path for option in images}

    with pytest.raises(ValidationError):
        media.delete_image("gallery/../../etc/passwd")
    with pytest.raises(ValidationError):
        media.delete_image("secrets/key.png")

    media.delete_image(image.path)
    assert image.path not in {option.path for option in media.list_images()[0]}


def test_supabase_upload_uses_storage(ctx, fake_supabase):
    uploads = []

    class Bucket:
        def list(self, folder, options):
            return [{"name": ".emptyFolderPlaceholder"}, {"name": "pumpkaboo.png"}]

        def upload(self, path, data, options):
            uploads.append((path, options))

        def get_public_url(self, path):
            return f"https://cdn.example.test/{path}"

    class Storage:
        def from_(self, bucket):
            assert bucket == "poke-stamp-images"
            return Bucket()

    fake_supabase.storage = Storage()

    image = media.upload_image(_upload(_image_bytes(), "pumpkaboo.png"))
    assert image.url == f"https://cdn.example.test/{image.path}"
    assert uploads == [(image.path, {"content-type": "image/png", "upsert": "false"})]

    images, warnings = media.list_images()
    assert warnings == []
    assert [option.path for option in images] == [f"{folder}/pumpkaboo.png" for folder in media.IMAGE_FOLDERS]


# ---------------------------------------------------------------------------
# Admin pages
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("tab", ["events", "collections", "stamps", "albums", "gallery", "users"])
def test_every_tab_renders(client, admin, catalog, tab):
    login(client, admin["id"])
    response = client.get(f"/admin?tab={tab}")
    assert response.status_code == 200
    assert b"Fall Fest" in response.data or tab in {"stamps", "gallery", "users"}


def test_edit_forms_render(client, admin, trainer, catalog):
    login(client, admin["id"])
    response = client.get(f"/admin?tab=collections&edit={catalog['collection_id']}")
    assert b"Edit collection" in response.data
    response = client.get(f"/admin?tab=users&edit={trainer['id']}")
    assert b"Edit trainer" in response.data
    response = client.get(
        f"/admin?tab=stamps&collection_id={catalog['collection_id']}&event_id={catalog['event_id']}"
    )
    assert b"/admin/awards/new?" in response.data


def test_logs_tab_redirects(client, admin):
    login(client, admin["id"])
    response = client.get("/admin?tab=logs&stamp_name=gengar")
    assert response.status_code == 302
    assert "/admin/awards/logs?stamp_name=gengar" in response.headers["Location"]


def test_create_event_with_links(app, client, admin, catalog):
    login(client, admin["id"])
    response = client.post(
        "/admin/events",
        data={"name": "Winter Cup", "starts_at": "2025-12-20", "collection_ids": [catalog["collection_id"]]},
        headers={"Accept": "application/json"},
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True and body["message"] == "Event created."
    with app.app_context():
        assert EventCollection.query.filter_by(event_id=body["id"]).count() == 1


def test_invalid_form_flashes_and_returns_to_tab(client, admin):
    login(client, admin["id"])
    response = client.post("/admin/stamps", data={"name": ""}, follow_redirects=True)
    assert response.status_code == 200
    assert b"Enter the stamp name." in response.data


def test_approve_route(app, client, admin):
    pending = add_profile(app, "Newbie", "777766665555", active=False)
    login(client, admin["id"])
    response = client.post(f"/admin/users/{pending['id']}/approve", headers={"Accept": "application/json"})
    assert response.get_json() == {"success": True, "message": "Trainer authorized."}
    with app.app_context():
        assert db.session.get(Profile, pending["id"]).active is True


def test_gallery_upload_route(client, admin):
    login(client, admin["id"])
    response = client.post(
        "/admin/gallery",
        data={"image": (io.BytesIO(_image_bytes()), "litwick.png")},
        content_type="multipart/form-data",
        headers={"Accept": "application/json"},
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["path"].endswith("-litwick.png")
    assert client.get(body["url"]).status_code == 200


def test_mods_cannot_demote_or_delete_admins(app, client, admin, mod):
    login(client, mod["id"])
    response = client.post(
        f"/admin/users/{admin['id']}",
        data={"trainer_name": "Olivia", "trainer_code": "111122223333", "role": "user", "active": "1"},
        headers={"Accept": "application/json"},
    )
    assert response.status_code == 403
    assert response.get_json()["success"] is False

    response = client.post(f"/admin/users/{admin['id']}/delete", headers={"Accept": "application/json"})
    assert response.status_code == 403

    with app.app_context():
        profile = db.session.get(Profile, admin["id"])
        assert profile is not None
        assert profile.role == "admin"


def test_admin_rows_have_no_edit_or_delete(client, admin, mod):
    login(client, mod["id"])
    page = client.get("/admin?tab=users").data.decode()
    assert f"/admin/users/{admin['id']}/delete" not in page
    assert f"edit={admin['id']}" not in page
    assert b"Edit trainer" not in client.get(f"/admin?tab=users&edit={admin['id']}").data
