"""
Category → section navigation and the entry filter behind the home grid.

Nothing in here knows about SQL or Flask: the tree talks to anything that
exposes ``fetch_categories`` / ``fetch_sections`` and the filter works on
plain lists of :class:`Entry`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Mapping, Protocol

log = logging.getLogger(__name__)


################################################################################
# Data model
################################################################################
class ContentType(str, Enum):
    PROMPT = "prompt"
    TOOL = "tool"
    WORKFLOW = "workflow"
    RESOURCE = "resource"


class ContentFormat(str, Enum):
    PLAINTEXT = "plaintext"
    MARKDOWN = "markdown"
    HTML = "html"
    JSON = "json"
    CODE = "code"
    RICHTEXT = "richtext"


class EntryStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    order_index: int = 0
    is_active: bool = True
    color: str = "#3B82F6"
    slug: str = ""
    description: str | None = None
    icon: str | None = None


@dataclass(frozen=True)
class Section:
    id: str
    category_id: str
    name: str
    order_index: int = 0
    is_active: bool = True
    slug: str = ""
    description: str | None = None


@dataclass(frozen=True)
class Tag:
    id: str
    name: str
    slug: str
    color: str = "#3B82F6"


@dataclass(frozen=True)
class Entry:
    id: str
    title: str
    category_id: str
    content: str = ""
    description: str | None = None
    section_id: str | None = None
    content_type: ContentType = ContentType.PROMPT
    content_format: ContentFormat = ContentFormat.PLAINTEXT
    status: EntryStatus = EntryStatus.PUBLISHED
    is_favorite: bool = False
    rating: int | None = None
    created_at: str = ""


class LoadFailure(Exception):
    """The taxonomy or entry read failed (I/O, permissions, bad rows …)."""


class CatalogReader(Protocol):
    def fetch_categories(self, *, active: bool = True) -> list[Category]: ...

    def fetch_sections(
        self, category_id: str, *, active: bool = True
    ) -> list[Section]: ...

    def fetch_entries(
        self, *, status: str = "published", limit: int = 50
    ) -> list[Entry]: ...


def load_entries(reader: CatalogReader, *, limit: int) -> tuple[list[Entry], str]:
    """
    Published entries, newest first.  Returns ``(entries, diagnostic)``;
    on failure the list is empty and the diagnostic says why.
    """
    try:
        return list(reader.fetch_entries(status="published", limit=limit)), ""
    except Exception as exc:  # any reader failure degrades to empty
        log.warning("entry load failed: %s", exc, exc_info=True)
        return [], f"Could not load entries: {exc}"


################################################################################
# Taxonomy tree
################################################################################
class ExpandedIds:
    """Immutable set of expanded category ids."""

    __slots__ = ("_ids",)

    def __init__(self, ids: Iterable[str] = ()):
        self._ids = frozenset(i for i in ids if i)

    def add(self, category_id: str) -> "ExpandedIds":
        return ExpandedIds(self._ids | {category_id})

    def remove(self, category_id: str) -> "ExpandedIds":
        return ExpandedIds(self._ids - {category_id})

    def toggle(self, category_id: str) -> "ExpandedIds":
        if category_id in self._ids:
            return self.remove(category_id)
        return self.add(category_id)

    def contains(self, category_id: str) -> bool:
        return category_id in self._ids

    __contains__ = contains

    def __iter__(self):
        return iter(sorted(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def __eq__(self, other) -> bool:
        return isinstance(other, ExpandedIds) and self._ids == other._ids

    def __hash__(self) -> int:
        return hash(self._ids)

    def __repr__(self) -> str:
        return f"ExpandedIds({sorted(self._ids)!r})"

    def to_param(self) -> str:
        return ",".join(self)

    @classmethod
    def from_param(cls, raw: str | None) -> "ExpandedIds":
        return cls(p.strip() for p in (raw or "").split(","))


@dataclass(frozen=True)
class CategoryNode:
    category: Category
    sections: tuple[Section, ...] = ()

    @property
    def id(self) -> str:
        return self.category.id

    @property
    def has_sections(self) -> bool:
        return bool(self.sections)


class TaxonomyTree:
    """
    Ordered forest of active categories with their active sections,
    plus the set of categories the visitor has opened.

    ``load()`` never raises for read failures: the tree stays empty and
    ``diagnostic`` carries the reason.
    """

    def __init__(self, reader: CatalogReader, expanded: ExpandedIds | None = None):
        self.reader = reader
        self.nodes: list[CategoryNode] = []
        self.expanded = expanded or ExpandedIds()
        self.diagnostic = ""
        self.alive = True

    def load(self) -> list[CategoryNode]:
        try:
            nodes = [
                CategoryNode(
                    category=cat,
                    sections=tuple(self.reader.fetch_sections(cat.id, active=True)),
                )
                for cat in self.reader.fetch_categories(active=True)
            ]
            diagnostic = ""
        except Exception as exc:  # any reader failure degrades to empty
            log.warning("taxonomy load failed: %s", exc, exc_info=True)
            nodes, diagnostic = [], f"Could not load categories: {exc}"

        if not self.alive:
            # closed while the reads were in flight
            log.debug("discarding taxonomy load for a closed tree")
            return self.nodes

        self.nodes, self.diagnostic = nodes, diagnostic
        return self.nodes

    def close(self) -> None:
        self.alive = False

    def toggle_expanded(self, category_id: str) -> None:
        self.expanded = self.expanded.toggle(category_id)

    def expand(self, category_id: str) -> None:
        self.expanded = self.expanded.add(category_id)

    def is_expanded(self, category_id: str) -> bool:
        return category_id in self.expanded

    def shows_sections(self, node: CategoryNode) -> bool:
        """A category without sections always renders as a collapsed leaf."""
        return node.has_sections and self.is_expanded(node.id)

    def section_parent(self, section_id: str) -> str | None:
        for node in self.nodes:
            if any(s.id == section_id for s in node.sections):
                return node.id
        return None


################################################################################
# Selection + filter
################################################################################
@dataclass(frozen=True)
class Selection:
    category_id: str | None = None
    section_id: str | None = None

    def choose_category(self, category_id: str) -> "Selection":
        if category_id == self.category_id:
            return Selection()
        return Selection(category_id=category_id)

    def choose_section(self, section_id: str) -> "Selection":
        if section_id == self.section_id:
            return Selection()
        return Selection(section_id=section_id)

    def cleared(self) -> "Selection":
        return Selection()

    @property
    def is_empty(self) -> bool:
        return self.category_id is None and self.section_id is None


def matches_search(entry: Entry, query: str) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True
    haystacks = (entry.title, entry.description, entry.content)
    return any(needle in h.lower() for h in haystacks if h)


def in_scope(entry: Entry, selection: Selection) -> bool:
    if selection.section_id is not None:
        return entry.section_id == selection.section_id
    if selection.category_id is not None:
        return entry.category_id == selection.category_id
    return True


def filter_entries(
    entries: Iterable[Entry], selection: Selection, query: str = ""
) -> list[Entry]:
    """Scope filter AND search filter, keeping the input order."""
    return [e for e in entries if in_scope(e, selection) and matches_search(e, query)]


@dataclass
class BrowseModel:
    """What the visitor is looking at: selection, search text, open nodes."""

    tree: TaxonomyTree
    selection: Selection = field(default_factory=Selection)
    query: str = ""

    def select_category(self, category_id: str) -> None:
        self.selection = self.selection.choose_category(category_id)
        if self.selection.category_id is not None:
            self.tree.expand(category_id)

    def select_section(
        self, section_id: str, parent_category_id: str | None = None
    ) -> None:
        # the parent is known to the caller but the selection only keeps the section
        self.selection = self.selection.choose_section(section_id)

    def show_all(self) -> None:
        self.selection = self.selection.cleared()

    def set_search_query(self, text: str) -> None:
        self.query = text or ""

    def toggle_expanded(self, category_id: str) -> None:
        self.tree.toggle_expanded(category_id)

    def visible(self, entries: Iterable[Entry]) -> list[Entry]:
        return filter_entries(entries, self.selection, self.query)

    def copy(self) -> "BrowseModel":
        tree = TaxonomyTree(self.tree.reader, expanded=self.tree.expanded)
        tree.nodes = self.tree.nodes
        tree.diagnostic = self.tree.diagnostic
        return replace(self, tree=tree)

    # ── query-string round trip ───────────────────────────────────────
    def to_params(self) -> dict[str, str]:
        params = {
            "cat": self.selection.category_id or "",
            "sec": self.selection.section_id or "",
            "q": self.query.strip(),
            "open": self.tree.expanded.to_param(),
        }
        return {k: v for k, v in params.items() if v}

    @classmethod
    def from_params(cls, tree: TaxonomyTree, args: Mapping[str, str]) -> "BrowseModel":
        tree.expanded = ExpandedIds.from_param(args.get("open"))
        section_id = (args.get("sec") or "").strip() or None
        category_id = (args.get("cat") or "").strip() or None
        if section_id:
            selection = Selection(section_id=section_id)
        elif category_id:
            selection = Selection(category_id=category_id)
        else:
            selection = Selection()
        return cls(tree=tree, selection=selection, query=args.get("q", "") or "")
