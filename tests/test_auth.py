"""
tests/test_auth.py
"""
from __future__ import annotations

import itertools
import time
from contextlib import contextmanager
from typing import Iterator

from flask.testing import FlaskClient

from promptshelf.directory import (
    ANONYMOUS,
    Role,
    SessionContext,
    _create_user,
    _issue_token,
    _user_id,
    app,
    get_db,
    signer,
    utc_now,
)


# ───────────────────────── helpers ────────────────────────────────────
def _fresh_token(username: str = "auth-tester", role: Role = Role.ADMIN) -> str:
    """Return a valid one-time login token, creating the user if needed."""
    with app.app_context():
        db = get_db()
        uid = _user_id(db, username)
        if uid is None:
            return _create_user(db, username=username, role=role)[1]
        return _issue_token(db, uid)


_ip_counter = itertools.count(1)


@contextmanager
def _new_client() -> Iterator[FlaskClient]:
    """
    Yield a brand-new Flask test-client whose REMOTE_ADDR is unique
    for every call, so the rate-limit (keyed by IP) never bleeds
    between tests unless we stay inside the same `with`-block.
    """
    ip = f"127.0.1.{next(_ip_counter)}"
    with app.test_client() as c, app.app_context():
        c.environ_base["REMOTE_ADDR"] = ip
        yield c


def _login(client, token: str, follow=True):
    """POST /login with the given token and return the response."""
    return client.post(
        "/login",
        data={"token": token},
        follow_redirects=follow,
    )


# ───────────────────────── tests ──────────────────────────────────────
def test_successful_login():
    token = _fresh_token()
    with _new_client() as c:
        rv = _login(c, token, follow=False)
        assert rv.status_code == 302
        assert rv.headers["Location"].endswith("/admin")
        with c.session_transaction() as sess:
            assert sess["logged_in"] is True
            assert sess["csrf"]


def test_viewer_lands_on_home():
    token = _fresh_token("auth-viewer", Role.VIEWER)
    with _new_client() as c:
        rv = _login(c, token, follow=False)
        assert rv.status_code == 302
        assert rv.headers["Location"].endswith("/")


def test_token_expired(monkeypatch):
    tok = _fresh_token()

    # jump 70 s into the future (signer max_age = 60 s)
    monkeypatch.setattr(time, "time", lambda: int(utc_now().timestamp()) + 70)

    with _new_client() as c:
        rv = _login(c, tok, follow=False)
        assert rv.status_code == 200
        assert b"Invalid or expired token" in rv.data
        with c.session_transaction() as sess:
            assert "logged_in" not in sess


def test_token_forged():
    bad = signer.sign("1:evil-payload").decode()[:-1] + "x"  # break the sig

    with _new_client() as c:
        rv = _login(c, bad, follow=False)
        assert rv.status_code == 200
        with c.session_transaction() as sess:
            assert "logged_in" not in sess


def test_signed_but_unknown_handle():
    with app.app_context():
        uid = _user_id(get_db(), "auth-tester") or 1
    tok = signer.sign(f"{uid}:not-the-handle").decode()
    with _new_client() as c:
        _login(c, tok, follow=False)
        with c.session_transaction() as sess:
            assert "logged_in" not in sess


def test_token_is_burned_after_login():
    tok = _fresh_token()

    # first client logs in           → OK
    with _new_client() as c1:
        assert _login(c1, tok).status_code == 200

    # second client re-uses same tok → rejected (back on login page)
    with _new_client() as c2:
        rv2 = _login(c2, tok, follow=False)
        assert rv2.status_code == 200
        with c2.session_transaction() as sess:
            assert "logged_in" not in sess


def test_rotate_token_invalidates_old_one():
    old = _fresh_token()
    new = _fresh_token()

    with _new_client() as c:
        _login(c, old, follow=False)
        with c.session_transaction() as sess:
            assert "logged_in" not in sess

    with _new_client() as c:
        _login(c, new)
        with c.session_transaction() as sess:
            assert sess.get("logged_in") is True


def test_login_rate_limit(monkeypatch):
    forged = signer.sign("nope").decode()[:-1] + "x"

    with _new_client() as c:
        # 5 bogus attempts are allowed
        for _ in range(5):
            assert _login(c, forged, follow=False).status_code == 200

        # 6th → 429 Too Many Requests
        resp = _login(c, forged, follow=False)
        assert resp.status_code == 429
        assert b"Too many requests" in resp.data
        assert "Retry-After" in resp.headers


def test_logout_clears_session():
    tok = _fresh_token()
    with _new_client() as c:
        _login(c, tok)
        c.get("/logout")
        with c.session_transaction() as sess:
            assert "logged_in" not in sess


def test_session_context_flags():
    assert not ANONYMOUS.is_admin and not ANONYMOUS.is_super_admin
    assert not ANONYMOUS.logged_in

    viewer = SessionContext(user_id=3, username="v", role=Role.VIEWER)
    admin = SessionContext(user_id=2, username="a", role=Role.ADMIN)
    boss = SessionContext(user_id=1, username="s", role=Role.SUPERADMIN)
    assert (viewer.is_admin, viewer.is_super_admin) == (False, False)
    assert (admin.is_admin, admin.is_super_admin) == (True, False)
    assert (boss.is_admin, boss.is_super_admin) == (True, True)


def test_deleted_user_session_is_dropped():
    with app.app_context():
        db = get_db()
        uid, _ = _create_user(db, username="auth-ghost", role=Role.ADMIN)
        db.execute("DELETE FROM user WHERE id=?", (uid,))
        db.commit()

    with _new_client() as c:
        with c.session_transaction() as s:
            s["logged_in"] = True
            s["user_id"] = uid
        rv = c.get("/admin")
        assert rv.status_code == 302
        assert "/login" in rv.headers["Location"]


def test_signed_token_with_odd_user_id():
    tok = signer.sign("²:some-handle").decode()
    with _new_client() as c:
        rv = _login(c, tok, follow=False)
        assert rv.status_code == 200
        with c.session_transaction() as sess:
            assert "logged_in" not in sess
