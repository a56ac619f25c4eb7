import pytest

from olivos.access import ANONYMOUS, NavLink, Viewer, landing_endpoint, nav_links
from tests.conftest import add_profile, login


def _viewer(role="admin", active=True, found=True):
    return Viewer(user_id="u1", trainer_name="Olivia", role=role, active=active, profile_found=found)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/admin", [NavLink("My album", "/user")]),
        ("/admin/", [NavLink("My album", "/user")]),
        ("/user", [NavLink("Admin", "/admin")]),
        ("/user/", [NavLink("Admin", "/admin")]),
        ("/profile", [NavLink("My album", "/user"), NavLink("Admin", "/admin")]),
    ],
)
def test_staff_links_hide_the_current_section(path, expected):
    assert nav_links(_viewer("mod"), path) == expected


def test_links_need_an_active_staff_profile():
    assert nav_links(ANONYMOUS, "/") == []
    assert nav_links(_viewer("user"), "/user") == []
    assert nav_links(_viewer("admin", active=False), "/user") == []
    assert nav_links(_viewer("admin", found=False), "/user") == []


def test_effective_role_and_landing():
    assert _viewer("mod").effective_role == "mod"
    assert _viewer("mod", active=False).effective_role is None
    assert landing_endpoint("admin") == "admin_catalog.dashboard"
    assert landing_endpoint("mod") == "admin_catalog.dashboard"
    assert landing_endpoint("user") == "user_album"
    assert landing_endpoint(None) == "user_album"


def test_anonymous_visitors_are_sent_to_sign_in(client):
    response = client.get("/user")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/")

    response = client.get("/admin/awards/lookup?code=123456789012", headers={"Accept": "application/json"})
    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_disabled_account_sees_blocking_page(app, client):
    pending = add_profile(app, "Pending", "999988887777", active=False)
    login(client, pending["id"])
    response = client.get("/user")
    assert response.status_code == 403
    assert b"Your account is disabled." in response.data


def test_missing_profile_sees_blocking_page(client):
    login(client, "no-such-user")
    response = client.get("/admin")
    assert response.status_code == 403
    assert b"We could not load your profile" in response.data


def test_trainers_cannot_open_admin(client, trainer):
    login(client, trainer["id"])
    response = client.get("/admin")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/user")

    response = client.get("/admin?tab=users", headers={"Accept": "application/json"})
    assert response.status_code == 403


def test_staff_reach_both_sections(client, mod):
    login(client, mod["id"])
    assert client.get("/admin").status_code == 200
    album = client.get("/user")
    assert album.status_code == 200
    assert b'href="/admin"' in album.data


def test_sections_answer_with_or_without_trailing_slash(client, mod):
    login(client, mod["id"])
    for path in ("/admin", "/admin/", "/user", "/user/"):
        assert client.get(path).status_code == 200
