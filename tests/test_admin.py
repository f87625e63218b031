"""
tests/test_admin.py
"""
from __future__ import annotations

import pytest

from promptshelf.directory import Role, _create_user, _user_id, app, get_db

CSRF = "test-token"


def _login(client, role: Role = Role.ADMIN) -> int:
    username = f"admin-suite-{role.value}"
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


# ───────────────────────── role gating ────────────────────────────────
@pytest.mark.parametrize(
    "path",
    ["/admin", "/admin/entries", "/admin/categories", "/admin/sections", "/admin/tags"],
)
def test_anonymous_goes_to_login(client, path):
    rv = client.get(path)
    assert rv.status_code == 302
    assert rv.headers["Location"].endswith("/login")


def test_viewer_goes_home(client):
    _login(client, Role.VIEWER)
    rv = client.get("/admin")
    assert rv.status_code == 302
    assert rv.headers["Location"].endswith("/")


@pytest.mark.parametrize("path", ["/admin/legal", "/admin/users", "/admin/settings"])
def test_admin_cannot_reach_superadmin_pages(client, path):
    _login(client, Role.ADMIN)
    rv = client.get(path)
    assert rv.status_code == 302
    assert rv.headers["Location"].endswith("/admin")


def test_csrf_required_for_writes(client):
    _login(client)
    rv = client.post("/admin/tags", data={"name": "nope"})
    assert rv.status_code == 403


def test_dashboard_counts(client, catalog):
    _login(client)
    cid = catalog.category()
    catalog.section(cid, name="freshest-section")
    rv = client.get("/admin")
    assert rv.status_code == 200
    assert b'data-stat="entries"' in rv.data
    assert b"freshest-section" in rv.data


# ───────────────────────── categories ─────────────────────────────────
def test_create_category(client):
    _login(client)
    rv = client.post(
        "/admin/categories",
        data={"name": "Coding Tools", "color": "#112233", "is_active": "1", "csrf": CSRF},
        follow_redirects=True,
    )
    assert b"Category created." in rv.data
    row = get_db().execute("SELECT * FROM category WHERE name='Coding Tools'").fetchone()
    assert row["slug"] == "coding-tools"
    assert row["is_active"] == 1


@pytest.mark.parametrize(
    "data, message",
    [
        ({"name": "x"}, b"Name must be at least 2 characters."),
        ({"name": "Okay", "color": "blue"}, b"Color must be a hex code"),
        ({"name": "Okay", "icon": "i" * 51}, b"Icon is too long"),
    ],
)
def test_category_validation(client, data, message):
    _login(client)
    before = get_db().execute("SELECT COUNT(*) FROM category").fetchone()[0]
    rv = client.post("/admin/categories", data={**data, "csrf": CSRF})
    assert rv.status_code == 200
    assert message in rv.data
    assert get_db().execute("SELECT COUNT(*) FROM category").fetchone()[0] == before


def test_duplicate_category_slug(client, catalog):
    _login(client)
    client.post("/admin/categories", data={"name": "Twin", "slug": "twin-slug", "csrf": CSRF})
    rv = client.post("/admin/categories", data={"name": "Twin 2", "slug": "twin-slug", "csrf": CSRF})
    assert b"Slug already in use." in rv.data


def test_edit_category(client, catalog):
    _login(client)
    cid = catalog.category()
    rv = client.post(
        f"/admin/categories/{cid}/edit",
        data={"name": "Renamed", "slug": f"renamed-{cid[:8]}", "color": "#000000",
              "order_index": "7", "csrf": CSRF},
        follow_redirects=True,
    )
    assert b"Category updated." in rv.data
    row = get_db().execute("SELECT * FROM category WHERE id=?", (cid,)).fetchone()
    assert (row["name"], row["order_index"], row["is_active"]) == ("Renamed", 7, 0)


def test_delete_category_cascades_sections(client, catalog):
    _login(client)
    cid = catalog.category()
    sid = catalog.section(cid)
    assert client.get(f"/admin/categories/{cid}/delete").status_code == 200
    client.post(f"/admin/categories/{cid}/delete", data={"csrf": CSRF})
    db = get_db()
    assert db.execute("SELECT 1 FROM category WHERE id=?", (cid,)).fetchone() is None
    assert db.execute("SELECT 1 FROM section WHERE id=?", (sid,)).fetchone() is None


def test_delete_category_with_entries_is_refused(client, catalog):
    _login(client)
    cid = catalog.category()
    catalog.entry(cid)
    rv = client.post(
        f"/admin/categories/{cid}/delete", data={"csrf": CSRF}, follow_redirects=True
    )
    assert b"still has entries" in rv.data
    assert get_db().execute("SELECT 1 FROM category WHERE id=?", (cid,)).fetchone()


# ───────────────────────── sections ───────────────────────────────────
def test_create_section_requires_category(client, catalog):
    _login(client)
    rv = client.post("/admin/sections", data={"name": "Lonely", "csrf": CSRF})
    assert b"Pick a valid category." in rv.data

    cid = catalog.category()
    rv = client.post(
        "/admin/sections",
        data={"name": "Agents", "category_id": cid, "is_active": "1", "csrf": CSRF},
        follow_redirects=True,
    )
    assert b"Section created." in rv.data
    row = get_db().execute(
        "SELECT * FROM section WHERE category_id=?", (cid,)
    ).fetchone()
    assert row["slug"] == "agents"


def test_delete_section_keeps_entries(client, catalog):
    _login(client)
    cid = catalog.category()
    sid = catalog.section(cid)
    eid = catalog.entry(cid, section_id=sid)
    client.post(f"/admin/sections/{sid}/delete", data={"csrf": CSRF})
    row = get_db().execute("SELECT section_id FROM entry WHERE id=?", (eid,)).fetchone()
    assert row["section_id"] is None


# ───────────────────────── tags ───────────────────────────────────────
def test_tag_crud(client):
    _login(client)
    rv = client.post(
        "/admin/tags",
        data={"name": "Deep Research", "color": "#abcdef", "csrf": CSRF},
        follow_redirects=True,
    )
    assert b"Tag created." in rv.data
    row = get_db().execute("SELECT * FROM tag WHERE name='Deep Research'").fetchone()
    assert row["slug"] == "deep-research"

    rv = client.post(
        "/admin/tags",
        data={"name": "Deep Research", "color": "#abcdef", "csrf": CSRF},
    )
    assert b"already exists" in rv.data

    client.post(
        f"/admin/tags/{row['id']}/edit",
        data={"name": "Research", "slug": "research", "color": "#000000", "csrf": CSRF},
    )
    assert get_db().execute("SELECT name FROM tag WHERE id=?", (row["id"],)).fetchone()[0] == "Research"

    client.post(f"/admin/tags/{row['id']}/delete", data={"csrf": CSRF})
    assert get_db().execute("SELECT 1 FROM tag WHERE id=?", (row["id"],)).fetchone() is None


# ───────────────────────── entries ────────────────────────────────────
def _entry_form(cid, **over):
    data = {
        "title": "A fine prompt",
        "description": "short",
        "category_id": cid,
        "content_type": "prompt",
        "content_format": "markdown",
        "status": "published",
        "content": "Write **well**.",
        "rating": "4",
        "csrf": CSRF,
    }
    data.update(over)
    return data


def test_create_entry_with_tags(client, catalog):
    _login(client)
    cid = catalog.category()
    sid = catalog.section(cid)
    tid = catalog.tag()
    rv = client.post(
        "/admin/entries/new",
        data=_entry_form(cid, section_id=sid, tags=[tid], new_tag="Brand New Tag",
                         is_favorite="1", title="Tagged entry"),
        follow_redirects=True,
    )
    assert b"Entry created." in rv.data
    db = get_db()
    e = db.execute("SELECT * FROM entry WHERE title='Tagged entry'").fetchone()
    assert (e["section_id"], e["rating"], e["is_favorite"]) == (sid, 4, 1)
    names = {
        r["name"]: r
        for r in db.execute(
            "SELECT t.* FROM tag t JOIN entry_tag et ON et.tag_id=t.id WHERE et.entry_id=?",
            (e["id"],),
        )
    }
    assert len(names) == 2
    new = names["Brand New Tag"]
    assert (new["slug"], new["color"]) == ("brand-new-tag", "#3B82F6")


def test_foreign_section_is_dropped(client, catalog):
    _login(client)
    cid = catalog.category()
    other = catalog.category()
    foreign = catalog.section(other)
    client.post(
        "/admin/entries/new",
        data=_entry_form(cid, section_id=foreign, title="Cross wired"),
    )
    row = get_db().execute("SELECT section_id FROM entry WHERE title='Cross wired'").fetchone()
    assert row["section_id"] is None


@pytest.mark.parametrize(
    "over, message",
    [
        ({"title": "ab"}, b"Title must be at least 3 characters."),
        ({"description": "d" * 501}, b"Description is too long"),
        ({"rating": "9"}, b"Rating must be between 1 and 5."),
        ({"rating": "²"}, b"Rating must be between 1 and 5."),
        ({"content": "   "}, b"Content cannot be empty."),
        ({"content_type": "video"}, b"Invalid content type."),
    ],
)
def test_entry_validation(client, catalog, over, message):
    _login(client)
    cid = catalog.category()
    rv = client.post("/admin/entries/new", data=_entry_form(cid, **over))
    assert rv.status_code == 200
    assert message in rv.data


def test_edit_and_delete_entry(client, catalog):
    _login(client)
    cid = catalog.category()
    eid = catalog.entry(cid, status="draft")

    rv = client.get(f"/admin/entries/{eid}/edit")
    assert rv.status_code == 200

    client.post(f"/admin/entries/{eid}/edit", data=_entry_form(cid, title="Edited title"))
    row = get_db().execute("SELECT title, status FROM entry WHERE id=?", (eid,)).fetchone()
    assert (row["title"], row["status"]) == ("Edited title", "published")

    client.post(f"/admin/entries/{eid}/delete", data={"csrf": CSRF})
    assert get_db().execute("SELECT 1 FROM entry WHERE id=?", (eid,)).fetchone() is None


def test_admin_sees_draft_detail(client, catalog):
    _login(client)
    cid = catalog.category()
    eid = catalog.entry(cid, status="draft", title="Secret draft")
    rv = client.get(f"/entries/{eid}")
    assert rv.status_code == 200
    assert b"Secret draft" in rv.data


def test_entry_list_search(client, catalog):
    _login(client)
    cid = catalog.category()
    catalog.entry(cid, title="Findable needle")
    catalog.entry(cid, title="Haystack")
    rv = client.get("/admin/entries", query_string={"q": "NEEDLE"})
    assert b"Findable needle" in rv.data
    assert b"Haystack" not in rv.data


def test_missing_rows_404(client):
    _login(client)
    assert client.get("/admin/entries/nope/edit").status_code == 404
    assert client.get("/admin/categories/nope/edit").status_code == 404
    assert client.get("/admin/sections/nope/delete").status_code == 404
    assert client.get("/admin/tags/nope/edit").status_code == 404


def test_short_new_tag_blocks_the_save(client, catalog):
    _login(client)
    cid = catalog.category()
    rv = client.post(
        "/admin/entries/new",
        data=_entry_form(cid, title="Held back by its tag", new_tag="x"),
    )
    assert rv.status_code == 200
    assert b"Tag name must be at least 2 characters." in rv.data
    db = get_db()
    assert db.execute("SELECT 1 FROM entry WHERE title='Held back by its tag'").fetchone() is None
    assert db.execute("SELECT 1 FROM tag WHERE name='x'").fetchone() is None
