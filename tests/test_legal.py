"""
tests/test_legal.py
"""
import pytest

from promptshelf.directory import Role, _create_user, _user_id, app, get_db

CSRF = "test-token"


def _login(client):
    with app.app_context():
        db = get_db()
        uid = _user_id(db, "legal-boss")
        if uid is None:
            uid, _ = _create_user(db, username="legal-boss", role=Role.SUPERADMIN)
    with client.session_transaction() as s:
        s["logged_in"] = True
        s["user_id"] = uid
        s["csrf"] = CSRF


def test_three_pages_are_seeded(client):
    rows = get_db().execute("SELECT page_type FROM legal_page ORDER BY page_type").fetchall()
    assert [r[0] for r in rows] == ["cookie_policy", "legal_notice", "privacy_policy"]


@pytest.mark.parametrize(
    "slug, title",
    [
        ("legal-notice", b"Legal Notice"),
        ("privacy-policy", b"Privacy Policy"),
        ("cookie-policy", b"Cookie Policy"),
    ],
)
def test_public_legal_pages(client, slug, title):
    rv = client.get(f"/legal/{slug}")
    assert rv.status_code == 200
    assert title in rv.data


def test_footer_links_legal_pages(client):
    page = client.get("/").data
    assert b'href="/legal/legal-notice"' in page
    assert b'href="/legal/cookie-policy"' in page


def test_unknown_legal_slug_404(client):
    assert client.get("/legal/terms").status_code == 404


def test_edit_privacy_policy(client):
    _login(client)
    rv = client.post(
        "/admin/legal",
        data={
            "page": "privacy_policy",
            "title": "Privacy",
            "content": "We keep **nothing**.",
            "csrf": CSRF,
        },
        follow_redirects=True,
    )
    assert b"Changes saved." in rv.data

    rv = client.get("/legal/privacy-policy")
    assert b"<strong>nothing</strong>" in rv.data
    assert b"Privacy" in rv.data


def test_empty_title_is_rejected(client):
    _login(client)
    rv = client.post(
        "/admin/legal",
        data={"page": "cookie_policy", "title": " ", "content": "x", "csrf": CSRF},
    )
    assert b"Title is required." in rv.data
