#!/usr/bin/env python3
"""
A single-file personal content directory.
"""

import re
import secrets
import sqlite3
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from time import time
from typing import DefaultDict
from zoneinfo import ZoneInfo, available_timezones

import click
import markdown
from flask import (
    Flask,
    Response,
    abort,
    flash,
    g,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from itsdangerous import BadSignature, SignatureExpired, TimestampSigner
from markupsafe import Markup, escape
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.security import check_password_hash as verify_token
from werkzeug.security import generate_password_hash as hash_token

from promptshelf.taxonomy import (
    BrowseModel,
    Category,
    ContentFormat,
    ContentType,
    Entry,
    EntryStatus,
    LoadFailure,
    Section,
    Tag,
    TaxonomyTree,
    load_entries,
)

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = ROOT / "directory.sqlite3"

SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = (
    SECRET_FILE.read_text().strip() if SECRET_FILE.exists() else secrets.token_hex(32)
)
SECRET_FILE.write_text(SECRET_KEY)
TOKEN_LEN = 48
signer = TimestampSigner(SECRET_KEY, salt="login-token")

PAGE_DEFAULT = 50
SITE_NAME_DFLT = "promptshelf"
TZ_DFLT = "Europe/Madrid"
COLOR_DFLT = "#3B82F6"
THEMES = ("dark", "light")
HEX_COLOR_RE = re.compile(r"#[0-9A-Fa-f]{6}")
SLUG_RE = re.compile(r"[^a-z0-9]+")
SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}

# page_type → public slug + labels
LEGAL_PAGES = {
    "legal_notice": {
        "slug": "legal-notice",
        "title": "Legal Notice",
        "description": "Legal information, terms of use and liability",
    },
    "privacy_policy": {
        "slug": "privacy-policy",
        "title": "Privacy Policy",
        "description": "How personal data is protected and handled",
    },
    "cookie_policy": {
        "slug": "cookie-policy",
        "title": "Cookie Policy",
        "description": "Use of cookies and tracking tools",
    },
}
LEGAL_BY_SLUG = {v["slug"]: k for k, v in LEGAL_PAGES.items()}

SETTING_DEFAULTS = {
    "site_name": SITE_NAME_DFLT,
    "site_description": "",
    "theme": "dark",
    "primary_color": COLOR_DFLT,
    "page_size": str(PAGE_DEFAULT),
    "timezone": TZ_DFLT,
}

try:
    __version__ = version("promptshelf")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE))
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SECURE=True,
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

MD_EXTENSION_CONFIGS = {
    "pymdownx.highlight": {
        "guess_lang": True,
        "noclasses": True,
        "pygments_style": "nord",
    },
}
MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.mark",
    "pymdownx.superfences",
    "pymdownx.highlight",
    "pymdownx.betterem",
    "pymdownx.saneheaders",
]


def render_markdown_html(text: str | None) -> str:
    if not text:
        return ""
    return markdown.markdown(
        text.replace("\r\n", "\n"),
        extensions=MD_EXTENSIONS,
        extension_configs=MD_EXTENSION_CONFIGS,
    )


def render_content(text: str | None, fmt: str | ContentFormat) -> Markup:
    """
    Markdown-ish formats go through Markdown, the rest is shown verbatim.
    Entry bodies are admin-authored, so raw HTML in them is passed
    through unsanitized.
    """
    fmt = ContentFormat(fmt)
    if fmt in (ContentFormat.MARKDOWN, ContentFormat.RICHTEXT, ContentFormat.HTML):
        return Markup(render_markdown_html(text))
    lang = {ContentFormat.JSON: "json", ContentFormat.CODE: "code"}.get(fmt, "text")
    return Markup(
        f'<pre class="content-{lang}"><code>{escape(text or "")}</code></pre>'
    )


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    return Markup(render_markdown_html(text))


@app.template_filter("ts")
def ts_filter(iso: str | None) -> str:
    if not iso:
        return ""
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        return iso
    return dt.astimezone(ZoneInfo(tz_name())).strftime("%Y.%m.%d %H:%M")


###############################################################################
# Database helpers
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        ------------------------------------------------------------
        -- 1.  Accounts
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS user (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            username    TEXT UNIQUE NOT NULL,
            role        TEXT NOT NULL DEFAULT 'viewer'
                        CHECK (role IN ('superadmin','admin','viewer')),
            token_hash  TEXT NOT NULL,
            created_at  TEXT NOT NULL
        );

        ------------------------------------------------------------
        -- 2.  Site-wide key/value settings
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS settings (
            key   TEXT PRIMARY KEY,
            value TEXT
        );

        ------------------------------------------------------------
        -- 3.  Taxonomy: category → section
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS category (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            slug        TEXT UNIQUE NOT NULL,
            description TEXT,
            icon        TEXT,
            color       TEXT NOT NULL DEFAULT '#3B82F6',
            order_index INTEGER NOT NULL DEFAULT 0,
            is_active   INTEGER NOT NULL DEFAULT 1,
            created_at  TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS section (
            id          TEXT PRIMARY KEY,
            category_id TEXT NOT NULL,
            name        TEXT NOT NULL,
            slug        TEXT NOT NULL,
            description TEXT,
            order_index INTEGER NOT NULL DEFAULT 0,
            is_active   INTEGER NOT NULL DEFAULT 1,
            created_at  TEXT NOT NULL,
            UNIQUE (category_id, slug),
            FOREIGN KEY (category_id) REFERENCES category(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_section_category
            ON section(category_id, order_index);

        ------------------------------------------------------------
        -- 4.  Entries
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS entry (
            id             TEXT PRIMARY KEY,
            title          TEXT NOT NULL,
            description    TEXT,
            category_id    TEXT NOT NULL,
            section_id     TEXT,
            content_type   TEXT NOT NULL,      -- prompt | tool | workflow | resource
            content        TEXT NOT NULL,
            content_format TEXT NOT NULL DEFAULT 'plaintext',
            status         TEXT NOT NULL DEFAULT 'draft',
            is_favorite    INTEGER NOT NULL DEFAULT 0,
            rating         INTEGER,            -- 1–5
            notes          TEXT,
            created_at     TEXT NOT NULL,
            updated_at     TEXT,
            FOREIGN KEY (category_id) REFERENCES category(id),
            FOREIGN KEY (section_id)  REFERENCES section(id) ON DELETE SET NULL
        );

        CREATE INDEX IF NOT EXISTS idx_entry_status_created
            ON entry(status, created_at);

        ------------------------------------------------------------
        -- 5.  Tags
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS tag (
            id         TEXT PRIMARY KEY,
            name       TEXT UNIQUE NOT NULL,
            slug       TEXT UNIQUE NOT NULL,
            color      TEXT NOT NULL DEFAULT '#3B82F6',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS entry_tag (
            entry_id TEXT NOT NULL,
            tag_id   TEXT NOT NULL,
            PRIMARY KEY (entry_id, tag_id),
            FOREIGN KEY (entry_id) REFERENCES entry(id) ON DELETE CASCADE,
            FOREIGN KEY (tag_id)   REFERENCES tag(id)   ON DELETE CASCADE
        );

        ------------------------------------------------------------
        -- 6.  Legal pages (fixed set, edited by the superadmin)
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS legal_page (
            page_type  TEXT PRIMARY KEY,
            title      TEXT NOT NULL,
            content    TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )
    db.executemany(
        "INSERT OR IGNORE INTO settings (key, value) VALUES (?,?)",
        SETTING_DEFAULTS.items(),
    )
    now = utc_now().isoformat(timespec="seconds")
    db.executemany(
        "INSERT OR IGNORE INTO legal_page (page_type, title, content, created_at, updated_at) "
        "VALUES (?,?,?,?,?)",
        [(k, v["title"], "", now, now) for k, v in LEGAL_PAGES.items()],
    )
    db.commit()


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat(timespec="seconds")


def new_id() -> str:
    return str(uuid.uuid4())


###############################################################################
# Roles + per-request session context
###############################################################################
class Role(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    VIEWER = "viewer"

    @property
    def can_administer(self) -> bool:
        return self in (Role.ADMIN, Role.SUPERADMIN)


@dataclass(frozen=True)
class SessionContext:
    """
    Who is asking.  Built once per request from the session cookie; the
    capability flags are fixed at construction.
    """

    user_id: int | None = None
    username: str = ""
    role: Role | None = None
    is_admin: bool = field(init=False)
    is_super_admin: bool = field(init=False)

    def __post_init__(self):
        object.__setattr__(
            self, "is_admin", self.role is not None and self.role.can_administer
        )
        object.__setattr__(self, "is_super_admin", self.role is Role.SUPERADMIN)

    @property
    def logged_in(self) -> bool:
        return self.user_id is not None


ANONYMOUS = SessionContext()


def load_session_context(db) -> SessionContext:
    uid = session.get("user_id")
    if not session.get("logged_in") or uid is None:
        return ANONYMOUS
    row = db.execute("SELECT id, username, role FROM user WHERE id=?", (uid,)).fetchone()
    if not row:
        session.clear()  # account deleted under us
        return ANONYMOUS
    return SessionContext(user_id=row["id"], username=row["username"], role=Role(row["role"]))


def current_session() -> SessionContext:
    return g.get("auth", ANONYMOUS)


@app.before_request
def attach_session():
    g.auth = load_session_context(get_db())


@app.context_processor
def inject_session():
    return {"auth": current_session()}


###############################################################################
# CLI – create users + tokens
###############################################################################
def _issue_token(db, user_id: int) -> str:
    """Store a *new* one-time token for *user_id*, return it for display."""
    handle = secrets.token_urlsafe(TOKEN_LEN)
    db.execute(
        "UPDATE user SET token_hash=? WHERE id=?", (hash_token(handle), user_id)
    )
    db.commit()
    return signer.sign(f"{user_id}:{handle}").decode()


def _create_user(db, *, username: str, role: Role) -> tuple[int, str]:
    cur = db.execute(
        "INSERT INTO user (username, role, token_hash, created_at) VALUES (?,?,?,?)",
        (username, role.value, hash_token(secrets.token_hex(16)), now_iso()),
    )
    user_id = cur.lastrowid
    return user_id, _issue_token(db, user_id)


def _user_id(db, username: str | None) -> int | None:
    if username:
        row = db.execute("SELECT id FROM user WHERE username=?", (username,)).fetchone()
    else:
        row = db.execute(
            "SELECT id FROM user WHERE role='superadmin' ORDER BY id LIMIT 1"
        ).fetchone()
    return row["id"] if row else None


@app.cli.command("init")
@click.option(
    "--username", prompt=True, help="Superadmin username (created on first run)"
)
def cli_init(username: str):
    """Initialise DB *and* create the first superadmin account."""
    init_db()  # no-op if already there
    db = get_db()
    username = username.strip()
    if _user_id(db, username) is not None:
        raise click.ClickException(f"User {username!r} already exists.")
    _, token = _create_user(db, username=username, role=Role.SUPERADMIN)

    click.secho("\n✅  Superadmin created.", fg="green")
    click.echo(f"\nOne-time login token:\n\n{token}\n")
    click.echo("Paste it into the login form at /login within 1 minute.")


@app.cli.command("token")
@click.option("--username", default=None, help="Account to rotate (default: superadmin)")
def cli_token(username: str | None):
    """Rotate a user's one-time login token."""
    db = get_db()
    uid = _user_id(db, username)
    if uid is None:
        raise click.ClickException("No such user – run `flask init` first.")
    token = _issue_token(db, uid)

    click.secho("\n🔑  Fresh login token generated.\n", fg="yellow")
    click.echo(f"{token}\n")
    click.echo("Paste it into the login form at /login within 1 minute.")


@app.cli.command("add-user")
@click.option("--username", prompt=True)
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role]),
    default=Role.ADMIN.value,
    show_default=True,
)
def cli_add_user(username: str, role: str):
    """Create another account and print its one-time token."""
    db = get_db()
    username = username.strip()
    if _user_id(db, username) is not None:
        raise click.ClickException(f"User {username!r} already exists.")
    _, token = _create_user(db, username=username, role=Role(role))
    click.secho(f"\n✅  {role} {username} created.", fg="green")
    click.echo(f"\n{token}\n")


###############################################################################
# Content helpers
###############################################################################
def get_setting(key, default=None):
    row = get_db().execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    return row["value"] if row else default


def set_setting(key, value):
    db = get_db()
    db.execute(
        "INSERT INTO settings (key,value) VALUES (?,?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )
    db.commit()


def site_name() -> str:
    return get_setting("site_name", SITE_NAME_DFLT) or SITE_NAME_DFLT


def primary_color() -> str:
    return get_setting("primary_color", COLOR_DFLT) or COLOR_DFLT


def theme() -> str:
    t = get_setting("theme", "dark")
    return t if t in THEMES else "dark"


def tz_name() -> str:
    tz = get_setting("timezone", TZ_DFLT)
    return tz if tz in available_timezones() else TZ_DFLT


# Pagination helpers
def page_size() -> int:
    try:
        return int(get_setting("page_size", PAGE_DEFAULT))
    except (TypeError, ValueError):
        return PAGE_DEFAULT


def paginate(base_sql: str, params: tuple, *, page: int, per_page: int, db):
    total = db.execute(f"SELECT COUNT(*) FROM ({base_sql})", params).fetchone()[0]
    pages = (total + per_page - 1) // per_page
    rows = db.execute(
        f"{base_sql} LIMIT ? OFFSET ?", params + (per_page, (page - 1) * per_page)
    ).fetchall()
    return rows, pages


def slugify(text: str | None) -> str:
    return SLUG_RE.sub("-", (text or "").strip().lower()).strip("-")


def tag_slug(name: str) -> str:
    """Tags keep their wording: lower-case, whitespace → '-'."""
    return re.sub(r"\s+", "-", name.strip().lower())


def _length_error(label: str, value: str, lo: int, hi: int) -> str | None:
    if len(value) < lo:
        return f"{label} must be at least {lo} characters."
    if len(value) > hi:
        return f"{label} is too long (max {hi})."
    return None


def _color_error(value: str) -> str | None:
    if not HEX_COLOR_RE.fullmatch(value or ""):
        return "Color must be a hex code (#RRGGBB)."
    return None


def validate_entry(data: dict, *, db) -> list[str]:
    errors = [
        _length_error("Title", data["title"], 3, 200),
        (
            "Description is too long (max 500)."
            if len(data["description"]) > 500
            else None
        ),
    ]
    if not data["category_id"] or not db.execute(
        "SELECT 1 FROM category WHERE id=?", (data["category_id"],)
    ).fetchone():
        errors.append("Pick a valid category.")
    if data["content_type"] not in {c.value for c in ContentType}:
        errors.append("Invalid content type.")
    if data["content_format"] not in {f.value for f in ContentFormat}:
        errors.append("Invalid content format.")
    if data["status"] not in {s.value for s in EntryStatus}:
        errors.append("Invalid status.")
    if not data["content"].strip():
        errors.append("Content cannot be empty.")
    rating = data["rating"]
    if rating and not (re.fullmatch(r"\d+", rating) and 1 <= int(rating) <= 5):
        errors.append("Rating must be between 1 and 5.")
    if data.get("new_tag"):
        errors.append(_length_error("Tag name", data["new_tag"], 2, 50))
    return [e for e in errors if e]


def validate_category(data: dict) -> list[str]:
    errors = [
        _length_error("Name", data["name"], 2, 100),
        _length_error("Slug", data["slug"], 2, 100),
        _color_error(data["color"]),
    ]
    if len(data["description"]) > 500:
        errors.append("Description is too long (max 500).")
    if len(data["icon"]) > 50:
        errors.append("Icon is too long (max 50).")
    return [e for e in errors if e]


def validate_section(data: dict, *, db) -> list[str]:
    errors = [
        _length_error("Name", data["name"], 2, 100),
        _length_error("Slug", data["slug"], 2, 100),
    ]
    if not data["category_id"] or not db.execute(
        "SELECT 1 FROM category WHERE id=?", (data["category_id"],)
    ).fetchone():
        errors.append("Pick a valid category.")
    if len(data["description"]) > 500:
        errors.append("Description is too long (max 500).")
    return [e for e in errors if e]


def validate_tag(data: dict) -> list[str]:
    errors = [
        _length_error("Name", data["name"], 2, 50),
        _length_error("Slug", data["slug"], 2, 50),
        _color_error(data["color"]),
    ]
    return [e for e in errors if e]


def _int_or(raw: str | None, default: int = 0) -> int:
    raw = (raw or "").strip()
    return int(raw) if re.fullmatch(r"-?\d+", raw) else default


###############################################################################
# Read service
###############################################################################
def category_from_row(r) -> Category:
    return Category(
        id=r["id"],
        name=r["name"],
        order_index=r["order_index"],
        is_active=bool(r["is_active"]),
        color=r["color"],
        slug=r["slug"],
        description=r["description"],
        icon=r["icon"],
    )


def section_from_row(r) -> Section:
    return Section(
        id=r["id"],
        category_id=r["category_id"],
        name=r["name"],
        order_index=r["order_index"],
        is_active=bool(r["is_active"]),
        slug=r["slug"],
        description=r["description"],
    )


def entry_from_row(r) -> Entry:
    return Entry(
        id=r["id"],
        title=r["title"],
        category_id=r["category_id"],
        content=r["content"],
        description=r["description"],
        section_id=r["section_id"],
        content_type=ContentType(r["content_type"]),
        content_format=ContentFormat(r["content_format"]),
        status=EntryStatus(r["status"]),
        is_favorite=bool(r["is_favorite"]),
        rating=r["rating"],
        created_at=r["created_at"],
    )


def tag_from_row(r) -> Tag:
    return Tag(id=r["id"], name=r["name"], slug=r["slug"], color=r["color"])


class DirectoryStore:
    """
    The three reads the public pages need.  Any storage or decoding
    problem comes out as :class:`LoadFailure`.
    """

    def __init__(self, db):
        self.db = db

    def _read(self, sql: str, params: tuple, convert) -> list:
        try:
            return [convert(r) for r in self.db.execute(sql, params).fetchall()]
        except (sqlite3.Error, ValueError, KeyError, IndexError) as exc:
            raise LoadFailure(str(exc)) from exc

    def fetch_categories(self, *, active: bool = True) -> list[Category]:
        where = "WHERE is_active=1" if active else ""
        return self._read(
            f"SELECT * FROM category {where} ORDER BY order_index, created_at",
            (),
            category_from_row,
        )

    def fetch_sections(self, category_id: str, *, active: bool = True) -> list[Section]:
        where = "AND is_active=1" if active else ""
        return self._read(
            f"SELECT * FROM section WHERE category_id=? {where} "
            "ORDER BY order_index, created_at",
            (category_id,),
            section_from_row,
        )

    def fetch_entries(
        self, *, status: str = EntryStatus.PUBLISHED.value, limit: int = PAGE_DEFAULT
    ) -> list[Entry]:
        return self._read(
            "SELECT * FROM entry WHERE status=? ORDER BY created_at DESC LIMIT ?",
            (status, limit),
            entry_from_row,
        )


def entry_tags(entry_id: str, *, db) -> list[Tag]:
    rows = db.execute(
        "SELECT t.* FROM tag t JOIN entry_tag et ON et.tag_id=t.id "
        "WHERE et.entry_id=? ORDER BY LOWER(t.name)",
        (entry_id,),
    )
    return [tag_from_row(r) for r in rows]


def sync_entry_tags(entry_id: str, tag_ids: set[str], *, db) -> None:
    """Make `entry_tag` for *entry_id* exactly *tag_ids* (unknown ids dropped)."""
    known = {r["id"] for r in db.execute("SELECT id FROM tag")}
    db.execute("DELETE FROM entry_tag WHERE entry_id=?", (entry_id,))
    db.executemany(
        "INSERT OR IGNORE INTO entry_tag (entry_id, tag_id) VALUES (?,?)",
        [(entry_id, t) for t in sorted(tag_ids & known)],
    )


def get_or_create_tag(name: str, *, db) -> str | None:
    """Return the id of tag *name*, creating it with the default color."""
    name = name.strip()
    if not name:
        return None
    row = db.execute(
        "SELECT id FROM tag WHERE LOWER(name)=LOWER(?) OR slug=?",
        (name, tag_slug(name)),
    ).fetchone()
    if row:
        return row["id"]
    tag_id = new_id()
    db.execute(
        "INSERT INTO tag (id, name, slug, color, created_at) VALUES (?,?,?,?,?)",
        (tag_id, name, tag_slug(name), COLOR_DFLT, now_iso()),
    )
    return tag_id


def _csrf_token() -> str:
    """One token per session (rotates when the cookie does)."""
    return session.get("csrf", "")


def legal_links() -> list[dict]:
    return [
        {"href": url_for("legal_page", slug=v["slug"]), "title": v["title"]}
        for v in LEGAL_PAGES.values()
    ]


# Expose helpers to templates
app.jinja_env.globals.update(
    get_setting=get_setting,
    site_name=site_name,
    primary_color=primary_color,
    theme=theme,
    tz_name=tz_name,
    csrf_token=_csrf_token,
    legal_links=legal_links,
    version=__version__,
    content_types=[c.value for c in ContentType],
    content_formats=[f.value for f in ContentFormat],
    statuses=[s.value for s in EntryStatus],
    roles=[r.value for r in Role],
)


###############################################################################
# Templates + Views
###############################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{{ title or site_name() }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<meta name="description" content="{{ get_setting('site_description', '') }}">
<style>
:root{--accent:{{ primary_color() }};
{% if theme() == 'light' %}--bg:#f8f8f6;--fg:#222;--muted:#666;--card:#fff;--line:#ddd;
{% else %}--bg:#1e1e1e;--fg:#d6d6d6;--muted:#8c8c8c;--card:#2a2a2a;--line:#444;{% endif %}}
html{font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Helvetica Neue",Arial,sans-serif}
body{margin:0;background:var(--bg);color:var(--fg);line-height:1.5}
a{color:inherit;text-decoration:none}a:hover{color:var(--accent)}
.container{max-width:78rem;margin:0 auto;padding:1.5rem}
header.top{display:flex;align-items:center;justify-content:space-between;gap:1rem;border-bottom:1px solid var(--line);padding-bottom:.75rem;margin-bottom:1.5rem}
header.top h1{margin:0;font-size:1.5rem}header.top h1 a{color:var(--accent)}
header.top nav{display:flex;gap:1rem;font-size:.9rem}
.layout{display:grid;grid-template-columns:16rem 1fr;gap:2rem}
@media (max-width:760px){.layout{grid-template-columns:1fr}}
.tree .node{display:flex;align-items:center;gap:.5rem;padding:.35rem .6rem;border-radius:6px;font-size:.9rem}
.tree .node.active{background:var(--accent);color:#fff}
.tree .node-row{display:flex;align-items:center}
.tree .chevron{display:inline-block;width:1.4rem;text-align:center;color:var(--muted)}
.tree .sections{margin-left:1.6rem}
.tree small{margin-left:auto;color:var(--muted)}
.swatch{display:inline-block;width:.7rem;height:.7rem;border-radius:2px}
.grid{display:grid;grid-template-columns:repeat(auto-fill,minmax(16rem,1fr));gap:1rem}
.card{background:var(--card);border:1px solid var(--line);border-radius:8px;padding:1rem}
.card h3{margin:0 0 .5rem 0;font-size:1.05rem}
.card p{color:var(--muted);font-size:.9rem;margin:.25rem 0 .75rem 0}
.pill{display:inline-block;padding:.1em .6em;border-radius:1em;font-size:.75rem;background:var(--line)}
.pill-prompt{background:#1e3a8a;color:#bfdbfe}.pill-tool{background:#14532d;color:#bbf7d0}
.pill-workflow{background:#581c87;color:#e9d5ff}.pill-resource{background:#7c2d12;color:#fed7aa}
.stars{color:#eab308;font-size:.8rem;margin-left:.4rem}
input,select,textarea{font:inherit;color:var(--fg);background:var(--card);border:1px solid var(--line);border-radius:6px;padding:.45rem .6rem;box-sizing:border-box}
textarea{width:100%}
label{display:block;margin:.6rem 0}label>span{display:block;font-size:.8rem;color:var(--muted)}
button,.button{font:inherit;cursor:pointer;background:var(--accent);color:#fff;border:0;border-radius:6px;padding:.45rem .9rem}
.danger{background:#b91c1c}
table{width:100%;border-collapse:collapse}td,th{padding:.45rem;border-bottom:1px solid var(--line);text-align:left;font-size:.9rem}
.admin-nav{display:flex;flex-wrap:wrap;gap:1rem;margin-bottom:1.5rem;font-size:.9rem}
.admin-nav a[aria-current=page]{color:var(--accent)}
.stat{display:inline-block;min-width:9rem;margin:0 1rem 1rem 0;padding:1rem;background:var(--card);border:1px solid var(--line);border-radius:8px}
.stat b{display:block;font-size:1.6rem}
.toast{position:fixed;top:1rem;right:1rem;background:#323232;color:#fff;padding:.75rem 1rem;border-radius:.4rem;font-size:.9rem;max-width:24rem;z-index:999}
pre{background:var(--card);border:1px solid var(--line);padding:1rem;overflow-x:auto;white-space:pre-wrap}
footer{margin-top:3rem;padding-top:1rem;border-top:1px solid var(--line);font-size:.8rem;color:var(--muted);display:flex;justify-content:space-between}
footer nav{display:flex;gap:1rem}
</style>
<body>
<div class="container">
    <header class="top">
        <h1><a href="{{ url_for('index') }}">{{ site_name() }}</a></h1>
        <nav aria-label="Primary">
            {% if auth.is_admin %}
                <a href="{{ url_for('admin_dashboard') }}">Admin</a>
            {% endif %}
            {% if auth.logged_in %}
                <span style="color:var(--muted)">{{ auth.username }} · {{ auth.role.value }}</span>
                <a href="{{ url_for('logout') }}">Log out</a>
            {% else %}
                <a href="{{ url_for('login') }}">Login</a>
            {% endif %}
        </nav>
    </header>
    {% with msgs = get_flashed_messages() %}
    {% if msgs %}
        <div class="toast" role="status" aria-live="polite">
        {% for m in msgs %}{{ m }}{% if not loop.last %}<br>{% endif %}{% endfor %}
        </div>
    {% endif %}
    {% endwith %}
    <main id="main-content" role="main">
"""

TEMPL_EPILOG = """
    </main>
    <footer>
        <span>{{ site_name() }} · v{{ version }}</span>
        <nav aria-label="Legal">
            {% for link in legal_links() %}
                <a href="{{ link.href }}">{{ link.title }}</a>
            {% endfor %}
        </nav>
    </footer>
</div>
</body>
</html>
"""

TEMPL_ADMIN_NAV = """
<nav class="admin-nav" aria-label="Admin">
    {% for ep, label in [('admin_dashboard','Dashboard'), ('admin_entries','Entries'),
                         ('admin_categories','Categories'), ('admin_sections','Sections'),
                         ('admin_tags','Tags')] %}
        <a href="{{ url_for(ep) }}" {% if request.endpoint == ep %}aria-current="page"{% endif %}>{{ label }}</a>
    {% endfor %}
    {% if auth.is_super_admin %}
        {% for ep, label in [('admin_legal','Legal pages'), ('admin_users','Users'),
                             ('admin_settings','Settings')] %}
            <a href="{{ url_for(ep) }}" {% if request.endpoint == ep %}aria-current="page"{% endif %}>{{ label }}</a>
        {% endfor %}
    {% endif %}
    <a href="{{ url_for('index') }}">View site</a>
</nav>
"""

CSRF_FIELD = """
{% if csrf_token() %}<input type="hidden" name="csrf" value="{{ csrf_token() }}">{% endif %}
"""


def admin_wrap(body: str) -> str:
    return wrap(TEMPL_ADMIN_NAV + body)


###############################################################################
# Authentication
###############################################################################
def validate_token(token: str, max_age: int = 60) -> int | None:
    """
    • Unsigned  age-check in *one* step (`max_age` seconds).
    • The payload is ``<user id>:<handle>``; the handle is compared
      against that user's hashed copy.
    Returns the user id on success.
    """
    try:
        payload = signer.unsign(token, max_age=max_age).decode()
    except SignatureExpired:
        return None  # too old ➜ invalid
    except BadSignature:
        return None  # forged ➜ invalid

    uid, _, handle = payload.partition(":")
    if not re.fullmatch(r"\d+", uid) or not handle:
        return None
    row = (
        get_db().execute("SELECT token_hash FROM user WHERE id=?", (int(uid),)).fetchone()
    )
    if row and verify_token(row["token_hash"], handle):
        return int(uid)
    return None


def require_admin(auth: SessionContext) -> None:
    if not auth.logged_in:
        abort(redirect(url_for("login")))
    if not auth.is_admin:
        abort(redirect(url_for("index")))


def require_superadmin(auth: SessionContext) -> None:
    require_admin(auth)
    if not auth.is_super_admin:
        abort(redirect(url_for("admin_dashboard")))


def rate_limit(max_requests: int, window: int = 60):
    hits: DefaultDict[str, deque] = defaultdict(deque)

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            now = time()
            # left-most entry after ProxyFix = real client
            ip = (
                request.access_route[0] if request.access_route else request.remote_addr
            ) or "unknown"

            dq = hits[ip]
            while dq and now - dq[0] > window:
                dq.popleft()

            if len(dq) >= max_requests:
                retry_after = int(window - (now - dq[0]))
                return Response(
                    "Too many requests – try again later.",
                    status=429,
                    headers={"Retry-After": str(retry_after)},
                )

            dq.append(now)
            return view(*args, **kwargs)

        return wrapped

    return decorator


@app.route("/login", methods=["GET", "POST"])
@rate_limit(max_requests=5, window=60)
def login():
    token = request.form.get("token", "").strip()

    if request.method == "POST" and token:
        user_id = validate_token(token)
        if user_id is not None:
            # ── token matched → burn it right away ─────────────────
            db = get_db()
            db.execute(
                "UPDATE user SET token_hash=? WHERE id=?",
                (hash_token(secrets.token_hex(16)), user_id),
            )
            db.commit()

            session.clear()
            session.permanent = True
            session["logged_in"] = True
            session["user_id"] = user_id
            session["csrf"] = secrets.token_hex(16)
            role = db.execute("SELECT role FROM user WHERE id=?", (user_id,)).fetchone()
            if role and Role(role["role"]).can_administer:
                return redirect(url_for("admin_dashboard"))
            return redirect(url_for("index"))
        flash("Invalid or expired token.")

    return render_template_string(TEMPL_LOGIN, title=site_name())


TEMPL_LOGIN = wrap("""
{% block body %}
<form method="post" id="token-form" style="max-width:28rem">
  """ + CSRF_FIELD + """
  <label for="token"><span>One-time token</span>
      <input id="token" name="token" type="password" autocomplete="current-password"
             style="width:100%">
  </label>
  <button type="submit">Sign in with token</button>
  <p style="font-size:.8rem;color:var(--muted)">
      Tokens are printed by <code>flask token</code> or issued by a superadmin and expire after one minute.
  </p>
</form>
{% endblock %}
""")


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("index"))


###############################################################################
# Resources
###############################################################################
@app.route("/robots.txt")
def robots():
    lines = ["User-agent: *", "Disallow: /admin", "Disallow: /login", ""]
    return Response("\n".join(lines), mimetype="text/plain")


@app.before_request
def csrf_protect():
    # ➊ read-only verbs ⇒ always allowed
    if request.method in SAFE_METHODS:
        return

    # ➋ no logged-in flag yet ⇒ allow (covers /login POST)
    if not session.get("logged_in"):
        return

    # ➌ for authenticated users we REQUIRE a valid token
    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


###############################################################################
# Home: category tree + search + entry grid
###############################################################################
def browse_href(browse: BrowseModel, action: str, *args) -> str:
    """URL of the state that *action* would produce, like a click would."""
    nxt = browse.copy()
    getattr(nxt, action)(*args)
    return url_for("index", **nxt.to_params())


@app.route("/")
def index():
    store = DirectoryStore(get_db())
    tree = TaxonomyTree(store)
    browse = BrowseModel.from_params(tree, request.args)
    try:
        tree.load()
        if tree.diagnostic:
            app.logger.warning(tree.diagnostic)
        entries, diagnostic = load_entries(store, limit=page_size())
        if diagnostic:
            app.logger.warning(diagnostic)

        visible = browse.visible(entries)
        return render_template_string(
            TEMPL_INDEX,
            title=site_name(),
            tree=tree,
            browse=browse,
            visible=visible,
            query=browse.query.strip(),
            href=lambda action, *args: browse_href(browse, action, *args),
        )
    finally:
        tree.close()


TEMPL_INDEX = wrap("""
{% block body %}
<div class="layout">
  <aside class="tree" aria-label="Categories">
    <h3 style="margin-top:0">Categories &amp; sections</h3>
    <a class="node {% if browse.selection.is_empty %}active{% endif %}"
       href="{{ href('show_all') }}" data-all="all">All categories</a>

    {% for node in tree.nodes %}
      <div class="node-row">
        {% if node.has_sections %}
          <a class="chevron" href="{{ href('toggle_expanded', node.id) }}"
             data-toggle="{{ node.id }}"
             aria-label="{{ 'Collapse' if tree.is_expanded(node.id) else 'Expand' }} {{ node.category.name }}"
             aria-expanded="{{ 'true' if tree.is_expanded(node.id) else 'false' }}">
             {{ '▾' if tree.is_expanded(node.id) else '▸' }}</a>
        {% else %}
          <span class="chevron"></span>
        {% endif %}
        <a class="node {% if browse.selection.category_id == node.id %}active{% endif %}"
           style="flex:1" href="{{ href('select_category', node.id) }}"
           data-category="{{ node.id }}">
          <span class="swatch" style="background:{{ node.category.color }}"></span>
          {{ node.category.name }}
          {% if node.has_sections %}<small>{{ node.sections|length }}</small>{% endif %}
        </a>
      </div>
      {% if tree.shows_sections(node) %}
        <div class="sections">
          {% for s in node.sections %}
            <a class="node {% if browse.selection.section_id == s.id %}active{% endif %}"
               href="{{ href('select_section', s.id, node.id) }}"
               data-section="{{ s.id }}">{{ s.name }}</a>
          {% endfor %}
        </div>
      {% endif %}
    {% endfor %}

    {% if auth.is_admin %}
      <a class="node" href="{{ url_for('admin_dashboard') }}" style="margin-top:.5rem">Admin panel</a>
    {% endif %}
    <p><small>{{ tree.nodes|length }} categories</small></p>
  </aside>

  <section aria-label="Entries">
    <form method="get" action="{{ url_for('index') }}" role="search" style="display:flex;gap:.5rem;margin-bottom:1rem">
      {% for k, v in browse.to_params().items() if k != 'q' %}
        <input type="hidden" name="{{ k }}" value="{{ v }}">
      {% endfor %}
      <input type="search" name="q" value="{{ browse.query }}" style="flex:1"
             placeholder="Search tools, prompts, workflows…" aria-label="Search entries">
      {% if query %}<a class="button" href="{{ href('set_search_query', '') }}" aria-label="Clear search">✕</a>{% endif %}
    </form>

    {% if query %}
      <p style="color:var(--muted)">{{ visible|length }} result{{ '' if visible|length == 1 else 's' }} for “{{ query }}”</p>
    {% endif %}

    <div class="grid">
      {% for e in visible %}
        <article class="card" data-entry="{{ e.id }}">
          <h3>
            <a href="{{ url_for('entry_detail', entry_id=e.id) }}">{{ e.title }}</a>
            {% if e.is_favorite %}<span class="stars" title="Favorite">★</span>{% endif %}
          </h3>
          {% if e.description %}<p>{{ e.description }}</p>{% endif %}
          <span class="pill pill-{{ e.content_type.value }}">{{ e.content_type.value }}</span>
          {% if e.rating %}<span class="stars" aria-label="{{ e.rating }} of 5">{{ '★' * e.rating }}</span>{% endif %}
        </article>
      {% endfor %}
    </div>

    {% if not visible %}
      <p style="text-align:center;color:var(--muted);padding:3rem 0">
        {% if query %}No results for “{{ query }}”.{% else %}No entries in this category yet.{% endif %}
      </p>
    {% endif %}
  </section>
</div>
{% endblock %}
""")


@app.route("/entries/<entry_id>")
def entry_detail(entry_id):
    auth = current_session()
    db = get_db()
    row = db.execute(
        """
        SELECT e.*, c.name AS category_name, s.name AS section_name
          FROM entry e
          JOIN category c     ON c.id = e.category_id
          LEFT JOIN section s ON s.id = e.section_id
         WHERE e.id=?
        """,
        (entry_id,),
    ).fetchone()
    if not row:
        abort(404)
    if row["status"] != EntryStatus.PUBLISHED.value and not auth.is_admin:
        abort(404)

    return render_template_string(
        TEMPL_ENTRY,
        title=f"{row['title']} – {site_name()}",
        e=row,
        body=render_content(row["content"], row["content_format"]),
        tags=entry_tags(row["id"], db=db),
    )


TEMPL_ENTRY = wrap("""
{% block body %}
<article style="max-width:52rem">
  <p style="font-size:.85rem;color:var(--muted)">
    {{ e['category_name'] }}{% if e['section_name'] %} › {{ e['section_name'] }}{% endif %}
    · <span class="pill pill-{{ e['content_type'] }}">{{ e['content_type'] }}</span>
    {% if e['status'] != 'published' %}· <strong>{{ e['status'] }}</strong>{% endif %}
  </p>
  <h2 style="margin-top:0">{{ e['title'] }}{% if e['is_favorite'] %} <span class="stars">★</span>{% endif %}</h2>
  {% if e['description'] %}<p style="color:var(--muted)">{{ e['description'] }}</p>{% endif %}
  {% if e['rating'] %}<p class="stars">{{ '★' * e['rating'] }}</p>{% endif %}
  <div id="entry-content" class="e-content">{{ body }}</div>
  <p><button type="button" id="copy-btn">Copy content</button></p>
  <textarea id="entry-raw" hidden>{{ e['content'] }}</textarea>
  {% if tags %}
    <p>{% for t in tags %}<span class="pill" style="background:{{ t.color }};color:#fff">#{{ t.name }}</span> {% endfor %}</p>
  {% endif %}
  {% if auth.is_admin and e['notes'] %}
    <details><summary>Notes</summary>{{ e['notes']|md }}</details>
  {% endif %}
  <small style="color:var(--muted)">{{ e['created_at']|ts }}</small>
  {% if auth.is_admin %}
    · <a href="{{ url_for('admin_entry_edit', entry_id=e['id']) }}">Edit</a>
  {% endif %}
</article>
<script>
document.getElementById('copy-btn')?.addEventListener('click', () => {
  const raw = document.getElementById('entry-raw');
  if (raw && navigator.clipboard) navigator.clipboard.writeText(raw.value);
});
</script>
{% endblock %}
""")


@app.route("/legal/<slug>")
def legal_page(slug):
    page_type = LEGAL_BY_SLUG.get(slug)
    if page_type is None:
        abort(404)
    row = get_db().execute(
        "SELECT * FROM legal_page WHERE page_type=?", (page_type,)
    ).fetchone()
    if not row:
        abort(404)
    return render_template_string(
        TEMPL_LEGAL,
        title=f"{row['title']} – {site_name()}",
        page=row,
        info=LEGAL_PAGES[page_type],
    )


TEMPL_LEGAL = wrap("""
{% block body %}
<article style="max-width:52rem">
  <p><a href="{{ url_for('index') }}">← Back</a></p>
  <h2>{{ page['title'] }}</h2>
  <p style="color:var(--muted);font-size:.85rem">{{ info.description }} · updated {{ page['updated_at']|ts }}</p>
  {% if page['content'] %}
    <div class="e-content">{{ page['content']|md }}</div>
  {% else %}
    <p style="color:var(--muted)">This page has no content yet.</p>
  {% endif %}
</article>
{% endblock %}
""")


###############################################################################
# Admin: dashboard
###############################################################################
@app.route("/admin")
def admin_dashboard():
    auth = current_session()
    require_admin(auth)
    db = get_db()

    def count(sql: str, params: tuple = ()) -> int:
        return db.execute(sql, params).fetchone()[0]

    stats = [
        ("Entries", count("SELECT COUNT(*) FROM entry")),
        (
            "Published",
            count(
                "SELECT COUNT(*) FROM entry WHERE status=?",
                (EntryStatus.PUBLISHED.value,),
            ),
        ),
        ("Categories", count("SELECT COUNT(*) FROM category")),
        ("Sections", count("SELECT COUNT(*) FROM section")),
        ("Tags", count("SELECT COUNT(*) FROM tag")),
    ]
    categories = db.execute(
        "SELECT * FROM category ORDER BY order_index, created_at LIMIT 6"
    ).fetchall()
    recent_sections = db.execute(
        """
        SELECT s.*, c.name AS category_name
          FROM section s
          LEFT JOIN category c ON c.id = s.category_id
         ORDER BY s.created_at DESC
         LIMIT 8
        """
    ).fetchall()
    return render_template_string(
        TEMPL_DASHBOARD,
        title=f"Admin – {site_name()}",
        stats=stats,
        categories=categories,
        recent_sections=recent_sections,
    )


TEMPL_DASHBOARD = admin_wrap("""
{% block body %}
<h2>Dashboard</h2>
<div>
  {% for label, value in stats %}
    <div class="stat" data-stat="{{ label|lower }}"><b>{{ value }}</b>{{ label }}</div>
  {% endfor %}
</div>
<div style="display:grid;grid-template-columns:1fr 1fr;gap:2rem">
  <div>
    <h3>Categories</h3>
    {% for c in categories %}
      <p><span class="swatch" style="background:{{ c['color'] }}"></span>
         {{ c['icon'] or c['name'][:1] }} <strong>{{ c['name'] }}</strong>
         <small style="color:var(--muted)">{{ c['slug'] }}</small></p>
    {% else %}
      <p style="color:var(--muted)">No categories yet.</p>
    {% endfor %}
  </div>
  <div>
    <h3>Recent sections</h3>
    {% for s in recent_sections %}
      <p><strong>{{ s['name'] }}</strong>
         <small style="color:var(--muted)">{{ s['category_name'] or 'No category' }}</small></p>
    {% else %}
      <p style="color:var(--muted)">No sections yet.</p>
    {% endfor %}
  </div>
</div>
<p><a class="button" href="{{ url_for('admin_entry_new') }}">New entry</a></p>
{% endblock %}
""")


TEMPL_CONFIRM_DELETE = admin_wrap("""
{% block body %}
<h2>Delete {{ kind }}?</h2>
<p style="border-left:3px solid #b91c1c;padding-left:1rem"><strong>{{ label }}</strong></p>
{% if warning %}<p style="color:var(--muted)">{{ warning }}</p>{% endif %}
<form method="post">
  """ + CSRF_FIELD + """
  <button class="danger">Yes – delete it</button>
  <a href="{{ cancel }}" style="margin-left:1rem">Cancel</a>
</form>
{% endblock %}
""")


###############################################################################
# Admin: entries
###############################################################################
ENTRY_FIELDS = (
    "title",
    "description",
    "category_id",
    "section_id",
    "content_type",
    "content",
    "content_format",
    "status",
    "rating",
    "notes",
)


def _entry_form_data(form) -> dict:
    data = {k: (form.get(k) or "").strip() for k in ENTRY_FIELDS}
    data["content"] = (form.get("content") or "").replace("\r\n", "\n")
    data["content_type"] = data["content_type"] or ContentType.PROMPT.value
    data["content_format"] = data["content_format"] or ContentFormat.PLAINTEXT.value
    data["status"] = data["status"] or EntryStatus.DRAFT.value
    data["is_favorite"] = bool(form.get("is_favorite"))
    data["new_tag"] = (form.get("new_tag") or "").strip()
    return data


def _entry_form_context(db, data: dict, selected_tags: set[str]) -> dict:
    return {
        "f": data,
        "categories": db.execute(
            "SELECT * FROM category ORDER BY order_index, name"
        ).fetchall(),
        "sections": db.execute(
            "SELECT * FROM section ORDER BY order_index, name"
        ).fetchall(),
        "all_tags": db.execute("SELECT * FROM tag ORDER BY LOWER(name)").fetchall(),
        "selected_tags": selected_tags,
    }


def _save_entry(db, data: dict, entry_id: str | None) -> str:
    # a section outside the chosen category is dropped, not rejected
    section_id = data["section_id"] or None
    if section_id and not db.execute(
        "SELECT 1 FROM section WHERE id=? AND category_id=?",
        (section_id, data["category_id"]),
    ).fetchone():
        section_id = None

    values = (
        data["title"],
        data["description"] or None,
        data["category_id"],
        section_id,
        data["content_type"],
        data["content"],
        data["content_format"],
        data["status"],
        int(data["is_favorite"]),
        int(data["rating"]) if data["rating"] else None,
        data["notes"] or None,
    )
    if entry_id:
        db.execute(
            """UPDATE entry SET title=?, description=?, category_id=?, section_id=?,
                      content_type=?, content=?, content_format=?, status=?,
                      is_favorite=?, rating=?, notes=?, updated_at=?
                WHERE id=?""",
            values + (now_iso(), entry_id),
        )
        return entry_id

    entry_id = new_id()
    now = now_iso()
    db.execute(
        """INSERT INTO entry (title, description, category_id, section_id,
                              content_type, content, content_format, status,
                              is_favorite, rating, notes, created_at, updated_at, id)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
        values + (now, now, entry_id),
    )
    return entry_id


def _entry_form(entry_id: str | None):
    auth = current_session()
    require_admin(auth)
    db = get_db()

    row = None
    if entry_id:
        row = db.execute("SELECT * FROM entry WHERE id=?", (entry_id,)).fetchone()
        if not row:
            abort(404)

    if request.method == "POST":
        data = _entry_form_data(request.form)
        selected = set(request.form.getlist("tags"))
        errors = validate_entry(data, db=db)
        if errors:
            for err in errors:
                flash(err)
        else:
            if data["new_tag"]:
                selected.add(get_or_create_tag(data["new_tag"], db=db))
            saved_id = _save_entry(db, data, entry_id)
            sync_entry_tags(saved_id, selected, db=db)
            db.commit()
            flash("Entry updated." if entry_id else "Entry created.")
            return redirect(url_for("admin_entries"))
    elif row:
        data = {k: ("" if row[k] is None else str(row[k])) for k in ENTRY_FIELDS}
        data["content"] = row["content"]
        data["is_favorite"] = bool(row["is_favorite"])
        data["new_tag"] = ""
        selected = {t.id for t in entry_tags(entry_id, db=db)}
    else:
        data = _entry_form_data({})
        selected = set()

    return render_template_string(
        TEMPL_ENTRY_FORM,
        title=f"{'Edit' if entry_id else 'New'} entry – {site_name()}",
        entry_id=entry_id,
        **_entry_form_context(db, data, selected),
    )


@app.route("/admin/entries")
def admin_entries():
    auth = current_session()
    require_admin(auth)
    db = get_db()

    term = request.args.get("q", "").strip()
    page = max(_int_or(request.args.get("page"), 1), 1)
    base_sql = """
        SELECT e.*, c.name AS category_name
          FROM entry e
          LEFT JOIN category c ON c.id = e.category_id
    """
    params: tuple = ()
    if term:
        base_sql += (
            " WHERE LOWER(e.title) LIKE ? ESCAPE '\\'"
            " OR LOWER(COALESCE(e.description,'')) LIKE ? ESCAPE '\\'"
        )
        like = "%" + re.sub(r"([\\%_])", r"\\\1", term.lower()) + "%"
        params = (like, like)
    base_sql += " ORDER BY e.created_at DESC"
    rows, total_pages = paginate(
        base_sql, params, page=page, per_page=max(page_size(), 1), db=db
    )
    return render_template_string(
        TEMPL_ADMIN_ENTRIES,
        title=f"Entries – {site_name()}",
        rows=rows,
        term=term,
        page=page,
        pages=list(range(1, total_pages + 1)),
    )


TEMPL_ADMIN_ENTRIES = admin_wrap("""
{% block body %}
<div style="display:flex;justify-content:space-between;align-items:center">
  <h2>Entries</h2>
  <a class="button" href="{{ url_for('admin_entry_new') }}">New entry</a>
</div>
<form method="get" style="margin-bottom:1rem">
  <input type="search" name="q" value="{{ term }}" placeholder="Search title or description" style="width:100%">
</form>
<table>
  <tr><th>Title</th><th>Category</th><th>Type</th><th>Status</th><th>Created</th><th></th></tr>
  {% for e in rows %}
    <tr data-entry="{{ e['id'] }}">
      <td>{{ e['title'] }}{% if e['is_favorite'] %} <span class="stars">★</span>{% endif %}</td>
      <td>{{ e['category_name'] or 'No category' }}</td>
      <td>{{ e['content_type'] }}</td>
      <td>{{ e['status'] }}</td>
      <td>{{ e['created_at']|ts }}</td>
      <td>
        <a href="{{ url_for('admin_entry_edit', entry_id=e['id']) }}">Edit</a> ·
        <a href="{{ url_for('admin_entry_delete', entry_id=e['id']) }}">Delete</a>
      </td>
    </tr>
  {% else %}
    <tr><td colspan="6" style="color:var(--muted)">No entries found.</td></tr>
  {% endfor %}
</table>
{% if pages|length > 1 %}
  <p>{% for p in pages %}
    {% if p == page %}<strong>{{ p }}</strong>{% else %}<a href="{{ url_for('admin_entries', page=p, q=term or None) }}">{{ p }}</a>{% endif %}
  {% endfor %}</p>
{% endif %}
{% endblock %}
""")


@app.route("/admin/entries/new", methods=["GET", "POST"])
def admin_entry_new():
    return _entry_form(None)


@app.route("/admin/entries/<entry_id>/edit", methods=["GET", "POST"])
def admin_entry_edit(entry_id):
    return _entry_form(entry_id)


TEMPL_ENTRY_FORM = admin_wrap("""
{% block body %}
<h2>{{ 'Edit entry' if entry_id else 'New entry' }}</h2>
<form method="post" style="max-width:52rem">
  """ + CSRF_FIELD + """
  <label><span>Title *</span>
    <input name="title" value="{{ f.title }}" style="width:100%" required></label>
  <label><span>Description</span>
    <textarea name="description" rows="3">{{ f.description }}</textarea></label>
  <div style="display:grid;grid-template-columns:1fr 1fr;gap:1rem">
    <label><span>Category *</span>
      <select name="category_id" required>
        <option value="">Select a category</option>
        {% for c in categories %}
          <option value="{{ c['id'] }}" {% if c['id'] == f.category_id %}selected{% endif %}>{{ c['name'] }}</option>
        {% endfor %}
      </select></label>
    <label><span>Section</span>
      <select name="section_id">
        <option value="">No section</option>
        {% for s in sections %}
          <option value="{{ s['id'] }}" data-category="{{ s['category_id'] }}"
                  {% if s['id'] == f.section_id %}selected{% endif %}>{{ s['name'] }}</option>
        {% endfor %}
      </select></label>
    <label><span>Content type</span>
      <select name="content_type">
        {% for v in content_types %}<option {% if v == f.content_type %}selected{% endif %}>{{ v }}</option>{% endfor %}
      </select></label>
    <label><span>Format</span>
      <select name="content_format">
        {% for v in content_formats %}<option {% if v == f.content_format %}selected{% endif %}>{{ v }}</option>{% endfor %}
      </select></label>
    <label><span>Status</span>
      <select name="status">
        {% for v in statuses %}<option {% if v == f.status %}selected{% endif %}>{{ v }}</option>{% endfor %}
      </select></label>
    <label><span>Rating</span>
      <select name="rating">
        <option value="">No rating</option>
        {% for n in range(1, 6) %}<option value="{{ n }}" {% if f.rating == n|string %}selected{% endif %}>{{ '★' * n }}</option>{% endfor %}
      </select></label>
  </div>
  <label style="display:flex;gap:.5rem;align-items:center">
    <input type="checkbox" name="is_favorite" value="1" {% if f.is_favorite %}checked{% endif %}> Favorite</label>
  <label><span>Content *</span>
    <textarea name="content" rows="14" style="font-family:monospace">{{ f.content }}</textarea></label>
  <fieldset style="border:0;padding:0">
    <legend style="font-size:.8rem;color:var(--muted)">Tags</legend>
    {% for t in all_tags %}
      <label style="display:inline-flex;gap:.3rem;margin-right:1rem">
        <input type="checkbox" name="tags" value="{{ t['id'] }}" {% if t['id'] in selected_tags %}checked{% endif %}>
        <span class="swatch" style="background:{{ t['color'] }}"></span>{{ t['name'] }}</label>
    {% endfor %}
    <label><span>New tag</span><input name="new_tag" value="{{ f.new_tag }}" placeholder="Create and attach a tag"></label>
  </fieldset>
  <label><span>Notes (admin only)</span>
    <textarea name="notes" rows="3">{{ f.notes }}</textarea></label>
  <button type="submit">Save</button>
  <a href="{{ url_for('admin_entries') }}" style="margin-left:1rem">Cancel</a>
</form>
<script>
(() => {
  const cat = document.querySelector('select[name="category_id"]');
  const sec = document.querySelector('select[name="section_id"]');
  if (!cat || !sec) return;
  const sync = () => {
    sec.querySelectorAll('option[data-category]').forEach(o => {
      o.hidden = o.dataset.category !== cat.value;
      if (o.hidden && o.selected) sec.value = '';
    });
  };
  cat.addEventListener('change', sync);
  sync();
})();
</script>
{% endblock %}
""")


@app.route("/admin/entries/<entry_id>/delete", methods=["GET", "POST"])
def admin_entry_delete(entry_id):
    auth = current_session()
    require_admin(auth)
    db = get_db()
    row = db.execute("SELECT * FROM entry WHERE id=?", (entry_id,)).fetchone()
    if not row:
        abort(404)

    if request.method == "POST":
        db.execute("DELETE FROM entry WHERE id=?", (entry_id,))
        db.commit()
        flash("Entry deleted.")
        return redirect(url_for("admin_entries"))

    return render_template_string(
        TEMPL_CONFIRM_DELETE,
        title=site_name(),
        kind="entry",
        label=row["title"],
        warning="",
        cancel=url_for("admin_entries"),
    )


###############################################################################
# Admin: categories
###############################################################################
def _category_form_data(form) -> dict:
    data = {
        k: (form.get(k) or "").strip() for k in ("name", "slug", "description", "icon")
    }
    data["slug"] = data["slug"] or slugify(data["name"])
    data["color"] = (form.get("color") or COLOR_DFLT).strip()
    data["order_index"] = _int_or(form.get("order_index"))
    data["is_active"] = bool(form.get("is_active"))
    return data


def _save_category(db, data: dict, category_id: str | None) -> str | None:
    """Insert or update; returns None (after flashing) on a duplicate slug."""
    values = (
        data["name"],
        data["slug"],
        data["description"] or None,
        data["icon"] or None,
        data["color"],
        data["order_index"],
        int(data["is_active"]),
    )
    try:
        if category_id:
            db.execute(
                """UPDATE category SET name=?, slug=?, description=?, icon=?, color=?,
                          order_index=?, is_active=? WHERE id=?""",
                values + (category_id,),
            )
        else:
            category_id = new_id()
            db.execute(
                """INSERT INTO category (name, slug, description, icon, color,
                                        order_index, is_active, id, created_at)
                        VALUES (?,?,?,?,?,?,?,?,?)""",
                values + (category_id, now_iso()),
            )
        db.commit()
    except sqlite3.IntegrityError:
        db.rollback()
        flash("Slug already in use.")
        return None
    return category_id


@app.route("/admin/categories", methods=["GET", "POST"])
def admin_categories():
    auth = current_session()
    require_admin(auth)
    db = get_db()

    data = _category_form_data({"is_active": "1"})
    if request.method == "POST":
        data = _category_form_data(request.form)
        errors = validate_category(data)
        for err in errors:
            flash(err)
        if not errors and _save_category(db, data, None):
            flash("Category created.")
            return redirect(url_for("admin_categories"))

    rows = db.execute(
        """
        SELECT c.*,
               (SELECT COUNT(*) FROM section s WHERE s.category_id=c.id) AS n_sections,
               (SELECT COUNT(*) FROM entry e   WHERE e.category_id=c.id) AS n_entries
          FROM category c
         ORDER BY c.order_index, c.created_at
        """
    ).fetchall()
    return render_template_string(
        TEMPL_ADMIN_CATEGORIES,
        title=f"Categories – {site_name()}",
        rows=rows,
        f=data,
        editing=None,
    )


@app.route("/admin/categories/<category_id>/edit", methods=["GET", "POST"])
def admin_category_edit(category_id):
    auth = current_session()
    require_admin(auth)
    db = get_db()
    row = db.execute("SELECT * FROM category WHERE id=?", (category_id,)).fetchone()
    if not row:
        abort(404)

    if request.method == "POST":
        data = _category_form_data(request.form)
        errors = validate_category(data)
        for err in errors:
            flash(err)
        if not errors and _save_category(db, data, category_id):
            flash("Category updated.")
            return redirect(url_for("admin_categories"))
    else:
        data = dict(row)
        data = {k: ("" if v is None else v) for k, v in data.items()}

    return render_template_string(
        TEMPL_ADMIN_CATEGORIES,
        title=f"Edit category – {site_name()}",
        rows=[],
        f=data,
        editing=category_id,
    )


TEMPL_ADMIN_CATEGORIES = admin_wrap("""
{% block body %}
<h2>{{ 'Edit category' if editing else 'Categories' }}</h2>
<form method="post" style="max-width:40rem">
  """ + CSRF_FIELD + """
  <div style="display:grid;grid-template-columns:1fr 1fr;gap:1rem">
    <label><span>Name *</span><input name="name" value="{{ f.name }}" required></label>
    <label><span>Slug</span><input name="slug" value="{{ f.slug }}" placeholder="from name"></label>
    <label><span>Icon</span><input name="icon" value="{{ f.icon }}"></label>
    <label><span>Color</span><input name="color" value="{{ f.color }}" placeholder="#3B82F6"></label>
    <label><span>Order</span><input name="order_index" type="number" value="{{ f.order_index }}"></label>
    <label style="display:flex;gap:.5rem;align-items:center">
      <input type="checkbox" name="is_active" value="1" {% if f.is_active %}checked{% endif %}> Active</label>
  </div>
  <label><span>Description</span><textarea name="description" rows="2">{{ f.description }}</textarea></label>
  <button type="submit">{{ 'Save' if editing else 'Create category' }}</button>
  {% if editing %}<a href="{{ url_for('admin_categories') }}" style="margin-left:1rem">Cancel</a>{% endif %}
</form>
{% if not editing %}
<table style="margin-top:2rem">
  <tr><th>Order</th><th>Name</th><th>Slug</th><th>Sections</th><th>Entries</th><th>Active</th><th></th></tr>
  {% for c in rows %}
    <tr data-category="{{ c['id'] }}">
      <td>{{ c['order_index'] }}</td>
      <td><span class="swatch" style="background:{{ c['color'] }}"></span> {{ c['name'] }}</td>
      <td>{{ c['slug'] }}</td>
      <td>{{ c['n_sections'] }}</td>
      <td>{{ c['n_entries'] }}</td>
      <td>{{ 'yes' if c['is_active'] else 'no' }}</td>
      <td>
        <a href="{{ url_for('admin_category_edit', category_id=c['id']) }}">Edit</a> ·
        <a href="{{ url_for('admin_category_delete', category_id=c['id']) }}">Delete</a>
      </td>
    </tr>
  {% else %}
    <tr><td colspan="7" style="color:var(--muted)">No categories yet.</td></tr>
  {% endfor %}
</table>
{% endif %}
{% endblock %}
""")


@app.route("/admin/categories/<category_id>/delete", methods=["GET", "POST"])
def admin_category_delete(category_id):
    auth = current_session()
    require_admin(auth)
    db = get_db()
    row = db.execute("SELECT * FROM category WHERE id=?", (category_id,)).fetchone()
    if not row:
        abort(404)

    if request.method == "POST":
        try:
            db.execute("DELETE FROM category WHERE id=?", (category_id,))
            db.commit()
        except sqlite3.IntegrityError:
            db.rollback()
            flash("Category still has entries – move or delete them first.")
            return redirect(url_for("admin_categories"))
        flash("Category deleted.")
        return redirect(url_for("admin_categories"))

    return render_template_string(
        TEMPL_CONFIRM_DELETE,
        title=site_name(),
        kind="category",
        label=row["name"],
        warning="Its sections are deleted too.",
        cancel=url_for("admin_categories"),
    )


###############################################################################
# Admin: sections
###############################################################################
def _section_form_data(form) -> dict:
    data = {
        k: (form.get(k) or "").strip()
        for k in ("name", "slug", "description", "category_id")
    }
    data["slug"] = data["slug"] or slugify(data["name"])
    data["order_index"] = _int_or(form.get("order_index"))
    data["is_active"] = bool(form.get("is_active"))
    return data


def _save_section(db, data: dict, section_id: str | None) -> str | None:
    values = (
        data["category_id"],
        data["name"],
        data["slug"],
        data["description"] or None,
        data["order_index"],
        int(data["is_active"]),
    )
    try:
        if section_id:
            db.execute(
                """UPDATE section SET category_id=?, name=?, slug=?, description=?,
                          order_index=?, is_active=? WHERE id=?""",
                values + (section_id,),
            )
        else:
            section_id = new_id()
            db.execute(
                """INSERT INTO section (category_id, name, slug, description,
                                       order_index, is_active, id, created_at)
                        VALUES (?,?,?,?,?,?,?,?)""",
                values + (section_id, now_iso()),
            )
        db.commit()
    except sqlite3.IntegrityError:
        db.rollback()
        flash("Slug already in use in this category.")
        return None
    return section_id


def _section_page(section_id: str | None):
    auth = current_session()
    require_admin(auth)
    db = get_db()

    if section_id:
        row = db.execute("SELECT * FROM section WHERE id=?", (section_id,)).fetchone()
        if not row:
            abort(404)
        data = {k: ("" if v is None else v) for k, v in dict(row).items()}
    else:
        data = _section_form_data(
            {"is_active": "1", "category_id": request.args.get("category", "")}
        )

    if request.method == "POST":
        data = _section_form_data(request.form)
        errors = validate_section(data, db=db)
        for err in errors:
            flash(err)
        if not errors and _save_section(db, data, section_id):
            flash("Section updated." if section_id else "Section created.")
            return redirect(url_for("admin_sections"))

    rows = []
    if not section_id:
        rows = db.execute(
            """
            SELECT s.*, c.name AS category_name,
                   (SELECT COUNT(*) FROM entry e WHERE e.section_id=s.id) AS n_entries
              FROM section s
              JOIN category c ON c.id = s.category_id
             ORDER BY c.order_index, c.created_at, s.order_index, s.created_at
            """
        ).fetchall()
    return render_template_string(
        TEMPL_ADMIN_SECTIONS,
        title=f"Sections – {site_name()}",
        rows=rows,
        f=data,
        editing=section_id,
        categories=db.execute(
            "SELECT id, name FROM category ORDER BY order_index, name"
        ).fetchall(),
    )


@app.route("/admin/sections", methods=["GET", "POST"])
def admin_sections():
    return _section_page(None)


@app.route("/admin/sections/<section_id>/edit", methods=["GET", "POST"])
def admin_section_edit(section_id):
    return _section_page(section_id)


TEMPL_ADMIN_SECTIONS = admin_wrap("""
{% block body %}
<h2>{{ 'Edit section' if editing else 'Sections' }}</h2>
<form method="post" style="max-width:40rem">
  """ + CSRF_FIELD + """
  <div style="display:grid;grid-template-columns:1fr 1fr;gap:1rem">
    <label><span>Name *</span><input name="name" value="{{ f.name }}" required></label>
    <label><span>Slug</span><input name="slug" value="{{ f.slug }}" placeholder="from name"></label>
    <label><span>Category *</span>
      <select name="category_id" required>
        <option value="">Select a category</option>
        {% for c in categories %}
          <option value="{{ c['id'] }}" {% if c['id'] == f.category_id %}selected{% endif %}>{{ c['name'] }}</option>
        {% endfor %}
      </select></label>
    <label><span>Order</span><input name="order_index" type="number" value="{{ f.order_index }}"></label>
    <label style="display:flex;gap:.5rem;align-items:center">
      <input type="checkbox" name="is_active" value="1" {% if f.is_active %}checked{% endif %}> Active</label>
  </div>
  <label><span>Description</span><textarea name="description" rows="2">{{ f.description }}</textarea></label>
  <button type="submit">{{ 'Save' if editing else 'Create section' }}</button>
  {% if editing %}<a href="{{ url_for('admin_sections') }}" style="margin-left:1rem">Cancel</a>{% endif %}
</form>
{% if not editing %}
<table style="margin-top:2rem">
  <tr><th>Category</th><th>Order</th><th>Name</th><th>Slug</th><th>Entries</th><th>Active</th><th></th></tr>
  {% for s in rows %}
    <tr data-section="{{ s['id'] }}">
      <td>{{ s['category_name'] }}</td>
      <td>{{ s['order_index'] }}</td>
      <td>{{ s['name'] }}</td>
      <td>{{ s['slug'] }}</td>
      <td>{{ s['n_entries'] }}</td>
      <td>{{ 'yes' if s['is_active'] else 'no' }}</td>
      <td>
        <a href="{{ url_for('admin_section_edit', section_id=s['id']) }}">Edit</a> ·
        <a href="{{ url_for('admin_section_delete', section_id=s['id']) }}">Delete</a>
      </td>
    </tr>
  {% else %}
    <tr><td colspan="7" style="color:var(--muted)">No sections yet.</td></tr>
  {% endfor %}
</table>
{% endif %}
{% endblock %}
""")


@app.route("/admin/sections/<section_id>/delete", methods=["GET", "POST"])
def admin_section_delete(section_id):
    auth = current_session()
    require_admin(auth)
    db = get_db()
    row = db.execute("SELECT * FROM section WHERE id=?", (section_id,)).fetchone()
    if not row:
        abort(404)

    if request.method == "POST":
        db.execute("DELETE FROM section WHERE id=?", (section_id,))
        db.commit()
        flash("Section deleted.")
        return redirect(url_for("admin_sections"))

    return render_template_string(
        TEMPL_CONFIRM_DELETE,
        title=site_name(),
        kind="section",
        label=row["name"],
        warning="Its entries stay in the category without a section.",
        cancel=url_for("admin_sections"),
    )


###############################################################################
# Admin: tags
###############################################################################
def _tag_form_data(form) -> dict:
    name = (form.get("name") or "").strip()
    return {
        "name": name,
        "slug": (form.get("slug") or "").strip() or tag_slug(name),
        "color": (form.get("color") or COLOR_DFLT).strip(),
    }


def _tag_page(tag_id: str | None):
    auth = current_session()
    require_admin(auth)
    db = get_db()

    if tag_id:
        row = db.execute("SELECT * FROM tag WHERE id=?", (tag_id,)).fetchone()
        if not row:
            abort(404)
        data = {"name": row["name"], "slug": row["slug"], "color": row["color"]}
    else:
        data = _tag_form_data({})

    if request.method == "POST":
        data = _tag_form_data(request.form)
        errors = validate_tag(data)
        for err in errors:
            flash(err)
        if not errors:
            try:
                if tag_id:
                    db.execute(
                        "UPDATE tag SET name=?, slug=?, color=? WHERE id=?",
                        (data["name"], data["slug"], data["color"], tag_id),
                    )
                else:
                    db.execute(
                        "INSERT INTO tag (id, name, slug, color, created_at) "
                        "VALUES (?,?,?,?,?)",
                        (new_id(), data["name"], data["slug"], data["color"], now_iso()),
                    )
                db.commit()
            except sqlite3.IntegrityError:
                db.rollback()
                flash("A tag with that name or slug already exists.")
            else:
                flash("Tag updated." if tag_id else "Tag created.")
                return redirect(url_for("admin_tags"))

    rows = []
    if not tag_id:
        rows = db.execute(
            """SELECT t.*, COUNT(et.entry_id) AS cnt
                 FROM tag t
                 LEFT JOIN entry_tag et ON et.tag_id = t.id
                GROUP BY t.id
                ORDER BY LOWER(t.name)"""
        ).fetchall()
    return render_template_string(
        TEMPL_ADMIN_TAGS,
        title=f"Tags – {site_name()}",
        rows=rows,
        f=data,
        editing=tag_id,
    )


@app.route("/admin/tags", methods=["GET", "POST"])
def admin_tags():
    return _tag_page(None)


@app.route("/admin/tags/<tag_id>/edit", methods=["GET", "POST"])
def admin_tag_edit(tag_id):
    return _tag_page(tag_id)


TEMPL_ADMIN_TAGS = admin_wrap("""
{% block body %}
<h2>{{ 'Edit tag' if editing else 'Tags' }}</h2>
<form method="post" style="max-width:40rem;display:flex;gap:1rem;align-items:flex-end;flex-wrap:wrap">
  """ + CSRF_FIELD + """
  <label><span>Name *</span><input name="name" value="{{ f.name }}" required></label>
  <label><span>Slug</span><input name="slug" value="{{ f.slug }}" placeholder="from name"></label>
  <label><span>Color</span><input name="color" value="{{ f.color }}"></label>
  <button type="submit">{{ 'Save' if editing else 'Create tag' }}</button>
  {% if editing %}<a href="{{ url_for('admin_tags') }}">Cancel</a>{% endif %}
</form>
{% if not editing %}
<table style="margin-top:2rem">
  <tr><th>Name</th><th>Slug</th><th>Entries</th><th></th></tr>
  {% for t in rows %}
    <tr data-tag="{{ t['id'] }}">
      <td><span class="swatch" style="background:{{ t['color'] }}"></span> {{ t['name'] }}</td>
      <td>{{ t['slug'] }}</td>
      <td>{{ t['cnt'] }}</td>
      <td>
        <a href="{{ url_for('admin_tag_edit', tag_id=t['id']) }}">Edit</a> ·
        <a href="{{ url_for('admin_tag_delete', tag_id=t['id']) }}">Delete</a>
      </td>
    </tr>
  {% else %}
    <tr><td colspan="4" style="color:var(--muted)">No tags yet.</td></tr>
  {% endfor %}
</table>
{% endif %}
{% endblock %}
""")


@app.route("/admin/tags/<tag_id>/delete", methods=["GET", "POST"])
def admin_tag_delete(tag_id):
    auth = current_session()
    require_admin(auth)
    db = get_db()
    row = db.execute("SELECT * FROM tag WHERE id=?", (tag_id,)).fetchone()
    if not row:
        abort(404)

    if request.method == "POST":
        db.execute("DELETE FROM tag WHERE id=?", (tag_id,))
        db.commit()
        flash("Tag deleted.")
        return redirect(url_for("admin_tags"))

    return render_template_string(
        TEMPL_CONFIRM_DELETE,
        title=site_name(),
        kind="tag",
        label=row["name"],
        warning="It will be unlinked from every entry.",
        cancel=url_for("admin_tags"),
    )


###############################################################################
# Admin: legal pages (superadmin)
###############################################################################
@app.route("/admin/legal", methods=["GET", "POST"])
def admin_legal():
    auth = current_session()
    require_superadmin(auth)
    db = get_db()

    active = request.values.get("page", "legal_notice")
    if active not in LEGAL_PAGES:
        active = "legal_notice"

    if request.method == "POST":
        title = request.form.get("title", "").strip()
        content = request.form.get("content", "").replace("\r\n", "\n")
        if not title:
            flash("Title is required.")
        else:
            db.execute(
                "UPDATE legal_page SET title=?, content=?, updated_at=? WHERE page_type=?",
                (title, content, now_iso(), active),
            )
            db.commit()
            flash("Changes saved.")
            return redirect(url_for("admin_legal", page=active))

    pages = {
        r["page_type"]: r
        for r in db.execute("SELECT * FROM legal_page ORDER BY page_type")
    }
    return render_template_string(
        TEMPL_ADMIN_LEGAL,
        title=f"Legal pages – {site_name()}",
        pages=pages,
        info=LEGAL_PAGES,
        active=active,
    )


TEMPL_ADMIN_LEGAL = admin_wrap("""
{% block body %}
<h2>Legal pages</h2>
<nav style="display:flex;gap:1rem;margin-bottom:1rem">
  {% for key, meta in info.items() %}
    <a href="{{ url_for('admin_legal', page=key) }}" {% if key == active %}aria-current="page" style="color:var(--accent)"{% endif %}>{{ meta.title }}</a>
  {% endfor %}
</nav>
{% set p = pages.get(active) %}
<p style="color:var(--muted);font-size:.85rem">
  {{ info[active].description }}
  {% if p %}· last updated {{ p['updated_at']|ts }}{% endif %}
  · <a href="{{ url_for('legal_page', slug=info[active].slug) }}">View</a>
</p>
<form method="post" style="max-width:52rem">
  """ + CSRF_FIELD + """
  <input type="hidden" name="page" value="{{ active }}">
  <label><span>Title</span><input name="title" value="{{ p['title'] if p else info[active].title }}" style="width:100%"></label>
  <label><span>Content (Markdown or HTML)</span>
    <textarea name="content" rows="20" style="font-family:monospace">{{ p['content'] if p else '' }}</textarea></label>
  <button type="submit">Save</button>
</form>
{% endblock %}
""")


###############################################################################
# Admin: users (superadmin)
###############################################################################
@app.route("/admin/users", methods=["GET", "POST"])
def admin_users():
    auth = current_session()
    require_superadmin(auth)
    db = get_db()

    if request.method == "POST":
        username = request.form.get("username", "").strip()
        raw_role = request.form.get("role", Role.VIEWER.value)
        if raw_role not in {r.value for r in Role}:
            flash("Invalid role.")
        elif err := _length_error("Username", username, 2, 50):
            flash(err)
        elif _user_id(db, username) is not None:
            flash("That username is taken.")
        else:
            _, token = _create_user(db, username=username, role=Role(raw_role))
            session["one_time_token"] = {"username": username, "token": token}
            return redirect(url_for("admin_users") + "#new-token", code=303)

    new_token = session.pop("one_time_token", None)  # use-and-forget
    rows = db.execute(
        "SELECT id, username, role, created_at FROM user ORDER BY id"
    ).fetchall()
    return render_template_string(
        TEMPL_ADMIN_USERS,
        title=f"Users – {site_name()}",
        rows=rows,
        new_token=new_token,
    )


def _other_user(auth: SessionContext, user_id: int):
    """Row for *user_id*; the caller's own account is off limits here."""
    row = get_db().execute("SELECT * FROM user WHERE id=?", (user_id,)).fetchone()
    if not row:
        abort(404)
    if row["id"] == auth.user_id:
        flash("You cannot change your own account here.")
        abort(redirect(url_for("admin_users")))
    return row


@app.route("/admin/users/<int:user_id>/role", methods=["POST"])
def admin_user_role(user_id):
    auth = current_session()
    require_superadmin(auth)
    row = _other_user(auth, user_id)
    raw_role = request.form.get("role", "")
    if raw_role not in {r.value for r in Role}:
        flash("Invalid role.")
    else:
        db = get_db()
        db.execute("UPDATE user SET role=? WHERE id=?", (raw_role, row["id"]))
        db.commit()
        flash(f"{row['username']} is now {raw_role}.")
    return redirect(url_for("admin_users"))


@app.route("/admin/users/<int:user_id>/token", methods=["POST"])
def admin_user_token(user_id):
    auth = current_session()
    require_superadmin(auth)
    db = get_db()
    row = db.execute("SELECT * FROM user WHERE id=?", (user_id,)).fetchone()
    if not row:
        abort(404)
    session["one_time_token"] = {
        "username": row["username"],
        "token": _issue_token(db, row["id"]),
    }
    return redirect(url_for("admin_users") + "#new-token", code=303)


@app.route("/admin/users/<int:user_id>/delete", methods=["POST"])
def admin_user_delete(user_id):
    auth = current_session()
    require_superadmin(auth)
    row = _other_user(auth, user_id)
    db = get_db()
    db.execute("DELETE FROM user WHERE id=?", (row["id"],))
    db.commit()
    flash(f"Deleted {row['username']}.")
    return redirect(url_for("admin_users"))


TEMPL_ADMIN_USERS = admin_wrap("""
{% block body %}
<h2>Users</h2>
{% if new_token %}
  <div id="new-token" style="border:1px solid var(--accent);padding:1rem;border-radius:8px;margin-bottom:1rem">
    <p>One-time token for <strong>{{ new_token.username }}</strong> (valid for one minute, shown once):</p>
    <pre><code>{{ new_token.token }}</code></pre>
  </div>
{% endif %}
<table>
  <tr><th>Username</th><th>Role</th><th>Created</th><th></th></tr>
  {% for u in rows %}
    <tr data-user="{{ u['id'] }}">
      <td>{{ u['username'] }}</td>
      <td>
        {% if u['id'] == auth.user_id %}
          {{ u['role'] }} (you)
        {% else %}
          <form method="post" action="{{ url_for('admin_user_role', user_id=u['id']) }}" style="display:flex;gap:.5rem">
            """ + CSRF_FIELD + """
            <select name="role">
              {% for r in roles %}<option {% if r == u['role'] %}selected{% endif %}>{{ r }}</option>{% endfor %}
            </select>
            <button type="submit">Set</button>
          </form>
        {% endif %}
      </td>
      <td>{{ u['created_at']|ts }}</td>
      <td style="display:flex;gap:.5rem">
        <form method="post" action="{{ url_for('admin_user_token', user_id=u['id']) }}">
          """ + CSRF_FIELD + """
          <button type="submit">New token</button>
        </form>
        {% if u['id'] != auth.user_id %}
          <form method="post" action="{{ url_for('admin_user_delete', user_id=u['id']) }}">
            """ + CSRF_FIELD + """
            <button type="submit" class="danger">Delete</button>
          </form>
        {% endif %}
      </td>
    </tr>
  {% endfor %}
</table>
<h3>Add user</h3>
<form method="post" style="display:flex;gap:1rem;align-items:flex-end">
  """ + CSRF_FIELD + """
  <label><span>Username</span><input name="username" required></label>
  <label><span>Role</span>
    <select name="role">{% for r in roles %}<option {% if r == 'admin' %}selected{% endif %}>{{ r }}</option>{% endfor %}</select></label>
  <button type="submit">Create</button>
</form>
{% endblock %}
""")


###############################################################################
# Admin: settings (superadmin)
###############################################################################
@app.route("/admin/settings", methods=["GET", "POST"])
def admin_settings():
    auth = current_session()
    require_superadmin(auth)

    if request.method == "POST":
        name = request.form.get("site_name", "").strip()
        description = request.form.get("site_description", "").strip()
        chosen_theme = request.form.get("theme", "").strip()
        col = request.form.get("primary_color", "").strip()
        tz = request.form.get("timezone", "").strip()

        errors = [
            _length_error("Site name", name, 2, 100),
            (
                "Site description is too long (max 500)."
                if len(description) > 500
                else None
            ),
            None if chosen_theme in THEMES else "Invalid theme.",
        ]
        if col and not col.startswith("#"):
            col = "#" + col
        if not HEX_COLOR_RE.fullmatch(col):
            errors.append("Invalid color – please use 6-digit hex.")
        errors = [e for e in errors if e]

        if errors:
            for err in errors:
                flash(err)
        else:
            set_setting("site_name", name)
            set_setting("site_description", description)
            set_setting("theme", chosen_theme)
            set_setting("primary_color", col)
            if tz in available_timezones():
                set_setting("timezone", tz)
            raw = request.form.get("page_size", "").strip()
            size = max(1, int(raw)) if re.fullmatch(r"\d+", raw) else PAGE_DEFAULT
            set_setting("page_size", size)
            flash("Settings saved.")
            return redirect(url_for("admin_settings"))

    return render_template_string(
        TEMPL_ADMIN_SETTINGS,
        title=f"Settings – {site_name()}",
        themes=THEMES,
        page_size=page_size(),
    )


TEMPL_ADMIN_SETTINGS = admin_wrap("""
{% block body %}
<h2>Site settings</h2>
<form method="post" style="max-width:40rem">
  """ + CSRF_FIELD + """
  <label><span>Site name</span><input name="site_name" value="{{ site_name() }}" style="width:100%"></label>
  <label><span>Site description</span>
    <textarea name="site_description" rows="3">{{ get_setting('site_description', '') }}</textarea></label>
  <div style="display:grid;grid-template-columns:1fr 1fr;gap:1rem">
    <label><span>Theme</span>
      <select name="theme">{% for t in themes %}<option {% if t == theme() %}selected{% endif %}>{{ t }}</option>{% endfor %}</select></label>
    <label><span>Primary color</span>
      <input name="primary_color" value="{{ primary_color() }}" placeholder="#3B82F6"></label>
    <label><span>Entries on the home page</span>
      <input name="page_size" type="number" min="1" value="{{ page_size }}"></label>
    <label><span>Timezone</span><input name="timezone" value="{{ tz_name() }}"></label>
  </div>
  <button type="submit">Save</button>
</form>
{% endblock %}
""")


###############################################################################
# Error pages
###############################################################################
@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return render_template_string(TEMPL_404, title=site_name()), 404


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 page for production.
    • In debug mode Flask bypasses this handler and shows the traceback.
    """
    app.logger.exception("unhandled error: %s", exc)
    return render_template_string(TEMPL_500, title=site_name()), 500


TEMPL_404 = wrap("""
{% block body %}
  <h2 style="margin-top:0">Page not found</h2>
  <p>The URL you asked for does not exist.
     <a href="{{ url_for('index') }}" style="color:var(--accent)">Back to the directory</a>.</p>
{% endblock %}
""")

TEMPL_500 = wrap("""
{% block body %}
  <h2 style="margin-top:0">Internal Server Error</h2>
  <p>Our fault, not yours. Please try again in a minute.</p>
{% endblock %}
""")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    app.run(debug=True)
