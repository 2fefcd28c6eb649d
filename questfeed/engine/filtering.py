"""
questfeed.engine.filtering — Content Filter Pipeline
=====================================================

Pure pipeline turning an unfiltered collection of posts or adventures
into the ordered subset the current user may see.

Pipeline stages (fixed order, each one narrows the previous result):
  Policy → Free-text → Tag → Status → Adventure scope → Sort

Ordering: active before inactive, then ``createdAt`` descending, ties in
input order (``sorted`` is stable).  Inputs are never mutated; every
stage returns a new list.
"""

from __future__ import annotations

import enum
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from questfeed.config import DEFAULT_SEARCH_FIELDS
from questfeed.database.models import AdventureStatus
from questfeed.engine.documents import (
    adventure_ids_of,
    created_at_of,
    doc_get,
    doc_id,
    has_malformed_scope,
)
from questfeed.engine.identity import UserIdentity
from questfeed.engine.membership import MembershipIndex
from questfeed.engine.policy import can_view_adventure, can_view_post, is_admin

__all__ = [
    "EmptyState",
    "FeedQuery",
    "ItemKind",
    "adventure_options",
    "apply_policy",
    "empty_state",
    "filter_and_sort",
    "filter_by_adventure",
    "filter_by_search",
    "filter_by_status",
    "filter_by_tag",
    "filtering_stats",
    "group_posts_by_adventure",
    "has_active_filters",
    "normalize_text",
    "post_visibility_stats",
    "sort_items",
    "visible_posts",
]

_STATUS_ALL = "all"


class ItemKind(enum.StrEnum):
    POST = "post"
    ADVENTURE = "adventure"


@dataclass(frozen=True, slots=True)
class FeedQuery:
    """Refinements layered on top of the policy filter."""

    search: str = ""
    search_fields: tuple[str, ...] = DEFAULT_SEARCH_FIELDS
    tag: str = ""
    status: str = _STATUS_ALL
    adventure_id: str | None = None
    kind: ItemKind | None = None


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------
def normalize_text(text: str) -> str:
    """Decompose (NFD), drop combining marks, casefold.

    ``normalize_text("Dragão")`` → ``"dragao"``
    """
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def _field_matches(value: Any, needle: str) -> bool:
    if isinstance(value, str):
        return needle in normalize_text(value)
    if isinstance(value, (list, tuple)):
        return any(isinstance(v, str) and needle in normalize_text(v) for v in value)
    return False


def _detect_kind(item: Any) -> ItemKind:
    """Adventures carry ``status``/``isPublic``; anything else is a post."""
    for key in ("adventures", "creator", "captions"):
        if doc_get(item, key) is not None:
            return ItemKind.POST
    for key in ("status", "isPublic"):
        if doc_get(item, key) is not None:
            return ItemKind.ADVENTURE
    return ItemKind.POST


# ---------------------------------------------------------------------------
# Stage 1: Policy
# ---------------------------------------------------------------------------
def apply_policy(
    items: Iterable[Any],
    user: UserIdentity,
    membership: MembershipIndex,
    kind: ItemKind | None = None,
) -> list[Any]:
    """Drop every item the policy engine rejects for *user*."""
    kept: list[Any] = []
    for item in items:
        item_kind = kind or _detect_kind(item)
        if item_kind is ItemKind.POST:
            decision = can_view_post(
                user,
                item,
                membership.user_adventure_ids,
                membership.public_adventure_ids,
            )
        else:
            decision = can_view_adventure(user, item, membership.user_adventure_ids)
        if decision.can_view:
            kept.append(item)
    return kept


# ---------------------------------------------------------------------------
# Stages 2–5: refinements
# ---------------------------------------------------------------------------
def filter_by_search(
    items: Iterable[Any],
    search: str,
    fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
) -> list[Any]:
    if not search or not search.strip():
        return list(items)
    needle = normalize_text(search.strip())
    return [
        item for item in items
        if any(_field_matches(doc_get(item, f), needle) for f in fields)
    ]


def filter_by_tag(items: Iterable[Any], tag: str) -> list[Any]:
    if not tag or not tag.strip():
        return list(items)
    needle = normalize_text(tag.strip())
    return [item for item in items if _field_matches(doc_get(item, "tags"), needle)]


def filter_by_status(
    items: Iterable[Any], status: str | None, user: UserIdentity
) -> list[Any]:
    """Exact status match; only honoured for admins."""
    if not status or status == _STATUS_ALL or not is_admin(user):
        return list(items)
    return [item for item in items if doc_get(item, "status") == status]


def filter_by_adventure(items: Iterable[Any], adventure_id: str | None) -> list[Any]:
    if not adventure_id:
        return list(items)
    return [item for item in items if adventure_id in adventure_ids_of(item)]


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------
def _sort_key(item: Any) -> tuple[int, int, float]:
    status_rank = 0 if doc_get(item, "status") == AdventureStatus.ACTIVE else 1
    created = created_at_of(item)
    if created is None:
        return (status_rank, 1, 0.0)
    return (status_rank, 0, -created.timestamp())


def sort_items(items: Iterable[Any]) -> list[Any]:
    """Active first, newest first, missing ``createdAt`` last; stable."""
    return sorted(items, key=_sort_key)


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------
def filter_and_sort(
    items: Iterable[Any] | None,
    user: UserIdentity,
    membership: MembershipIndex,
    query: FeedQuery | None = None,
) -> list[Any]:
    """Run every stage in order and return a new, sorted list."""
    query = query or FeedQuery()
    result = apply_policy(items or (), user, membership, query.kind)
    result = filter_by_search(result, query.search, query.search_fields)
    result = filter_by_tag(result, query.tag)
    result = filter_by_status(result, query.status, user)
    result = filter_by_adventure(result, query.adventure_id)
    return sort_items(result)


def visible_posts(
    posts: Iterable[Any] | None,
    user: UserIdentity,
    membership: MembershipIndex,
) -> list[Any]:
    """Public posts ∪ posts in accessible adventures, deduplicated, sorted.

    *posts* may concatenate several fetches (e.g. public + per-adventure);
    the first occurrence of each post ID wins.  Admins get the whole
    collection, still deduplicated and sorted.
    """
    accessible = membership.accessible_adventure_ids
    admin = is_admin(user)
    seen: set[str] = set()
    result: list[Any] = []
    for post in posts or ():
        post_id = doc_id(post)
        if post_id:
            if post_id in seen:
                continue
            seen.add(post_id)
        if admin:
            result.append(post)
            continue
        if has_malformed_scope(post):
            continue
        scope = adventure_ids_of(post)
        if not scope or any(a in accessible for a in scope):
            result.append(post)
    return sort_items(result)


# ---------------------------------------------------------------------------
# Reporting helpers
# ---------------------------------------------------------------------------
def filtering_stats(original: Sequence[Any], filtered: Sequence[Any]) -> dict[str, int]:
    total = len(original)
    visible = len(filtered)
    return {
        "total": total,
        "visible": visible,
        "hidden": total - visible,
        "percentage": round(visible / total * 100) if total else 0,
    }


def post_visibility_stats(
    posts: Sequence[Any], membership: MembershipIndex
) -> dict[str, int]:
    """Break a post collection down by how it is scoped."""
    public_ids = membership.public_adventure_ids
    public_posts = public_adventure_posts = private_posts = 0
    for post in posts:
        if has_malformed_scope(post):
            continue
        scope = adventure_ids_of(post)
        if not scope:
            public_posts += 1
        elif any(a in public_ids for a in scope):
            public_adventure_posts += 1
        else:
            private_posts += 1
    return {
        "public_posts": public_posts,
        "public_adventure_posts": public_adventure_posts,
        "private_posts": private_posts,
    }


def group_posts_by_adventure(
    posts: Iterable[Any], adventures: Iterable[Any]
) -> dict[str, dict[str, Any]]:
    """``{adventure_id: {"adventure": doc, "posts": [...]}}`` for known adventures."""
    grouped: dict[str, dict[str, Any]] = {
        doc_id(a): {"adventure": a, "posts": []} for a in adventures if doc_id(a)
    }
    for post in posts:
        for adventure_id in dict.fromkeys(adventure_ids_of(post)):
            if adventure_id in grouped:
                grouped[adventure_id]["posts"].append(post)
    return grouped


def has_active_filters(query: FeedQuery) -> bool:
    return bool(
        query.search.strip()
        or query.tag.strip()
        or (query.status and query.status != _STATUS_ALL)
        or (query.adventure_id or "").strip()
    )


def adventure_options(adventures: Iterable[Any]) -> list[dict[str, str]]:
    """Select-box options ``{label, value, status}``."""
    return [
        {
            "label": str(doc_get(a, "title") or ""),
            "value": doc_id(a),
            "status": str(doc_get(a, "status") or ""),
        }
        for a in adventures
    ]


# ---------------------------------------------------------------------------
# Empty states — authorization outcomes surface here, never as errors
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class EmptyState:
    type: str
    title: str
    description: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "title": self.title, "description": self.description}


def empty_state(
    context: str,
    membership: MembershipIndex,
    is_admin_user: bool,
    search_term: str | None = None,
) -> EmptyState:
    """Describe why a list rendered empty.

    *context* is one of ``posts``, ``adventures`` or ``filtered``.
    """
    if not membership.has_access_to_content(is_admin_user):
        return EmptyState(
            "no_adventures",
            "You are not part of any adventure",
            "Ask a game master to add you to an adventure. "
            "Public posts will still show up here.",
        )

    if context == "posts":
        return EmptyState(
            "no_posts",
            "No posts found",
            "There are no posts in your adventures yet."
            if membership.user_adventure_ids
            else "There are no public posts yet.",
        )
    if context == "adventures":
        if is_admin_user:
            return EmptyState(
                "no_adventures_available",
                "No adventures created yet",
                "Start by creating your first adventure.",
            )
        return EmptyState(
            "no_adventures_available",
            "No adventures available",
            "Look for public adventures or wait for an invitation.",
        )
    if context == "filtered":
        return EmptyState(
            "no_results",
            "No results found",
            f'Nothing matched "{search_term}".'
            if search_term
            else "No item matches the active filters.",
        )
    return EmptyState("empty", "Nothing here", "There is no content to show.")
