"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
import uuid
from pathlib import Path
from typing import Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

# The single-file app lives here:
from promptshelf.directory import app, get_db, init_db, new_id, now_iso


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the whole test session (faster than per-test)."""
    db_file = tmp_path_factory.mktemp("data") / "test.sqlite3"
    return db_file


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path) -> None:
    """
    Configure the Flask app *once* before the first test is collected.
    """
    app.config.update(
        TESTING=True,
        DATABASE=str(_tmp_db_path),
    )
    with app.app_context():
        init_db()


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an isolated application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture(autouse=True, scope="session")
def _fast_clock():
    """
    Patch promptshelf.directory.utc_now for the whole test session so every
    call returns an ever-increasing timestamp.  Rows created one after the
    other therefore always sort in creation order.
    """
    from promptshelf import directory  # import here to avoid early import

    counter = itertools.count()  # 0, 1, 2, …

    base = _dt.datetime(2099, 1, 1, tzinfo=_dt.timezone.utc)

    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(directory, "utc_now", _fake_now)

    yield  # tests run here

    mp.undo()  # clean up at session end


class Catalog:
    """Tiny row factory for tests; every insert is committed right away."""

    def __init__(self, db):
        self.db = db

    @staticmethod
    def unique(prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:8]}"

    def category(self, name=None, *, order_index=0, is_active=True, color="#3B82F6"):
        cid = new_id()
        name = name or self.unique("cat")
        self.db.execute(
            "INSERT INTO category (id, name, slug, color, order_index, is_active, created_at) "
            "VALUES (?,?,?,?,?,?,?)",
            (cid, name, self.unique("slug"), color, order_index, int(is_active), now_iso()),
        )
        self.db.commit()
        return cid

    def section(self, category_id, name=None, *, order_index=0, is_active=True):
        sid = new_id()
        name = name or self.unique("sec")
        self.db.execute(
            "INSERT INTO section (id, category_id, name, slug, order_index, is_active, created_at) "
            "VALUES (?,?,?,?,?,?,?)",
            (sid, category_id, name, self.unique("slug"), order_index, int(is_active), now_iso()),
        )
        self.db.commit()
        return sid

    def entry(
        self,
        category_id,
        title=None,
        *,
        section_id=None,
        description=None,
        content="body",
        content_type="prompt",
        content_format="plaintext",
        status="published",
        is_favorite=False,
        rating=None,
    ):
        eid = new_id()
        now = now_iso()
        self.db.execute(
            """INSERT INTO entry (id, title, description, category_id, section_id,
                                  content_type, content, content_format, status,
                                  is_favorite, rating, created_at, updated_at)
                    VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)""",
            (
                eid,
                title or self.unique("entry"),
                description,
                category_id,
                section_id,
                content_type,
                content,
                content_format,
                status,
                int(is_favorite),
                rating,
                now,
                now,
            ),
        )
        self.db.commit()
        return eid

    def tag(self, name=None, *, color="#3B82F6"):
        tid = new_id()
        name = name or self.unique("tag")
        self.db.execute(
            "INSERT INTO tag (id, name, slug, color, created_at) VALUES (?,?,?,?,?)",
            (tid, name, self.unique("tag-slug"), color, now_iso()),
        )
        self.db.commit()
        return tid


@pytest.fixture
def catalog(client) -> Catalog:
    """Row factory bound to the same connection the requests use."""
    return Catalog(get_db())
