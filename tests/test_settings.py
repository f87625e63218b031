"""
tests/test_settings.py
"""
from promptshelf.directory import (
    PAGE_DEFAULT,
    Role,
    _create_user,
    _user_id,
    app,
    get_db,
    get_setting,
)

CSRF = "test-token"


def _login(client, role: Role = Role.SUPERADMIN) -> int:
    username = f"settings-{role.value}"
    with app.app_context():
        db = get_db()
        uid = _user_id(db, username)
        if uid is None:
            uid, _ = _create_user(db, username=username, role=role)
    with client.session_transaction() as s:
        s["logged_in"] = True
        s["user_id"] = uid
        s["csrf"] = CSRF
    return uid


def _form(**over):
    data = {
        "site_name": "PyTest Shelf",
        "site_description": "for tests",
        "theme": "dark",
        "primary_color": "#3B82F6",
        "page_size": str(PAGE_DEFAULT),
        "timezone": "Europe/Madrid",
        "csrf": CSRF,
    }
    data.update(over)
    return data


# ────────────────────────────────────────────────────────────────
def test_settings_requires_login(client):
    rv = client.get("/admin/settings")
    assert rv.status_code == 302


def test_settings_get_ok(client):
    _login(client)
    rv = client.get("/admin/settings")
    assert rv.status_code == 200
    assert b'name="csrf"' in rv.data  # token present in form


def test_settings_csrf_rejects(client):
    _login(client)
    rv = client.post("/admin/settings", data={}, follow_redirects=False)
    assert rv.status_code == 403  # missing token → blocked


def test_settings_update_site_name(client):
    _login(client)
    rv = client.post(
        "/admin/settings",
        data=_form(site_name="PyTest Blog", theme="light"),
        follow_redirects=True,
    )
    assert rv.status_code == 200
    assert b"Settings saved." in rv.data
    assert get_setting("site_name") == "PyTest Blog"
    assert get_setting("theme") == "light"
    # the new name shows up on public pages
    assert b"PyTest Blog" in client.get("/").data
    client.post("/admin/settings", data=_form())


def test_invalid_color_rejected(client):
    """
    A colour that is *not* a 6-digit hex should:
      • leave the setting unchanged
      • flash an error (we just grep the response-HTML)
    """
    _login(client)
    prev = get_setting("primary_color")

    html = client.post(
        "/admin/settings",
        data=_form(primary_color="magenta"),
        follow_redirects=True,
    ).data.decode()

    assert "Invalid color" in html
    assert get_setting("primary_color") == prev  # unchanged


def test_color_without_hash_is_accepted(client):
    _login(client)
    client.post("/admin/settings", data=_form(primary_color="aabbcc"))
    assert get_setting("primary_color") == "#aabbcc"
    client.post("/admin/settings", data=_form())


def test_bad_theme_and_short_name_rejected(client):
    _login(client)
    html = client.post(
        "/admin/settings", data=_form(theme="neon", site_name="x")
    ).data.decode()
    assert "Invalid theme." in html
    assert "Site name must be at least 2 characters." in html


def test_page_size_coercion(client):
    """
    page_size is coerced with `max(1,int(x)) if x.isdigit() else DEFAULT`.
    We feed:
        • a digit   → stored verbatim
        • garbage   → falls back to PAGE_DEFAULT
    """
    _login(client)

    client.post("/admin/settings", data=_form(page_size="42"))
    assert int(get_setting("page_size")) == 42

    client.post("/admin/settings", data=_form(page_size="not-a-number"))
    assert int(get_setting("page_size")) == PAGE_DEFAULT

    client.post("/admin/settings", data=_form(page_size="42"))
    rv = client.post("/admin/settings", data=_form(page_size="²"))
    assert rv.status_code == 302
    assert int(get_setting("page_size")) == PAGE_DEFAULT
