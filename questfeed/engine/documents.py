"""
questfeed.engine.documents — Tolerant field access for raw documents
=====================================================================

The engine consumes documents exactly as the store hands them over:
plain mappings (``{"$id": ..., "adventures": [...]}``) or attribute
objects.  Every accessor here is total — a missing or malformed field
yields a neutral value instead of raising, so a broken document can only
ever *lose* visibility, never gain it.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "adventure_ids_of",
    "created_at_of",
    "doc_get",
    "doc_id",
    "has_malformed_scope",
    "parse_timestamp",
]

_MISSING = object()

# camelCase document key → snake_case attribute fallback
_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("$id", "id"),
    "createdAt": ("$createdAt", "createdAt", "created_at"),
    "updatedAt": ("$updatedAt", "updatedAt", "updated_at"),
    "isPublic": ("isPublic", "is_public"),
    "lastSeen": ("lastSeen", "last_seen"),
    "adventureId": ("adventureId", "adventure_id"),
    "userId": ("userId", "user_id"),
    "createdBy": ("createdBy", "created_by"),
}


def _lookup(doc: Any, key: str) -> Any:
    if isinstance(doc, Mapping):
        return doc.get(key, _MISSING)
    return getattr(doc, key, _MISSING)


def doc_get(doc: Any, key: str, default: Any = None) -> Any:
    """Return *key* from *doc*, trying known aliases; *default* if absent."""
    if doc is None:
        return default
    for candidate in _ALIASES.get(key, (key,)):
        value = _lookup(doc, candidate)
        if value is not _MISSING:
            return value
    return default


def doc_id(doc: Any) -> str:
    """Document ID as a string, or ``""`` when the document has none."""
    value = doc_get(doc, "id")
    return str(value) if value is not None else ""


def adventure_ids_of(post: Any) -> list[str]:
    """Adventure IDs a post is scoped to.

    Anything that is not a list/tuple of IDs yields ``[]``.  Use
    :func:`has_malformed_scope` to tell a broken field apart from a
    genuinely public post.
    """
    raw = doc_get(post, "adventures")
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(a) for a in raw if a is not None and a != ""]


def has_malformed_scope(post: Any) -> bool:
    """True when ``adventures`` is present but is not a list of IDs.

    A missing/null field is not malformed: such posts predate adventure
    scoping and are public.
    """
    raw = doc_get(post, "adventures")
    return raw is not None and not isinstance(raw, (list, tuple))


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce an ISO-8601 string or datetime into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def created_at_of(doc: Any) -> datetime | None:
    return parse_timestamp(doc_get(doc, "createdAt"))
