import os
import tempfile

os.environ["USE_SUPABASE"] = "0"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_FOLDER"] = tempfile.mkdtemp(prefix="pokeolivos-uploads-")
os.environ["SECRET_KEY"] = "test-secret"
os.environ.pop("APP_BASE_PATH", None)
os.environ.pop("GITHUB_ACTIONS", None)

import pytest  # noqa: E402
from werkzeug.security import generate_password_hash  # noqa: E402

from app import app as flask_app  # noqa: E402
from extensions import db  # noqa: E402
from models import (  # noqa: E402
    Collection,
    CollectionStamp,
    Event,
    EventCollection,
    Profile,
    Stamp,
)
from tests.fakes import FakeSupabase  # noqa: E402

PASSWORD = "pikachu1"


@pytest.fixture
def app():
    flask_app.config.update(
        TESTING=True,
        USE_SUPABASE=False,
        SUPABASE_CLIENT=None,
        SUPABASE_AUTH_CLIENT_FACTORY=None,
    )
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    """Request context for calling services directly (url_for needs one)."""
    with app.test_request_context():
        yield
        db.session.remove()


@pytest.fixture
def fake_supabase(app):
    fake = FakeSupabase()
    app.config.update(USE_SUPABASE=True, SUPABASE_CLIENT=fake)
    yield fake
    app.config.update(USE_SUPABASE=False, SUPABASE_CLIENT=None)


def add_profile(app, trainer_name, trainer_code, role="user", active=True, email=None, password=PASSWORD):
    with app.app_context():
        profile = Profile(
            email=email or f"{trainer_name.lower()}@example.com",
            password_hash=generate_password_hash(password),
            trainer_name=trainer_name,
            trainer_code=trainer_code,
            role=role,
            active=active,
        )
        db.session.add(profile)
        db.session.commit()
        return profile.to_dict()


def login(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id


@pytest.fixture
def admin(app):
    return add_profile(app, "Olivia", "111122223333", role="admin")


@pytest.fixture
def mod(app):
    return add_profile(app, "Marco", "444455556666", role="mod")


@pytest.fixture
def trainer(app):
    return add_profile(app, "Vicky", "123456789012")


@pytest.fixture
def catalog(app, admin):
    """One event -> one collection -> two stamps, all linked."""
    with app.app_context():
        event = Event(name="Fall Fest", starts_at="2025-10-01", created_by=admin["id"])
        collection = Collection(name="Ghost Week", created_by=admin["id"])
        gengar = Stamp(name="Gengar", created_by=admin["id"])
        mimikyu = Stamp(name="Mimikyu", created_by=admin["id"])
        db.session.add_all([event, collection, gengar, mimikyu])
        db.session.flush()
        db.session.add_all(
            [
                EventCollection(event_id=event.id, collection_id=collection.id),
                CollectionStamp(collection_id=collection.id, stamp_id=gengar.id),
                CollectionStamp(collection_id=collection.id, stamp_id=mimikyu.id),
            ]
        )
        db.session.commit()
        return {
            "event_id": event.id,
            "collection_id": collection.id,
            "stamp_id": gengar.id,
            "other_stamp_id": mimikyu.id,
        }
