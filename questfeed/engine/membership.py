"""
questfeed.engine.membership — Adventure Membership Index
=========================================================

Derives, from raw participant and adventure documents, the two ID sets
every visibility decision needs:

- ``user_adventure_ids``   — adventures the user participates in, whatever
  their status.
- ``public_adventure_ids`` — adventures that are public *and* active; the
  same for every user.

Duplicate participant rows collapse into one membership.  The index does
no caching: callers rebuild it from fresh collections whenever the
underlying data changes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from questfeed.database.models import AdventureStatus
from questfeed.engine.documents import doc_get, doc_id

__all__ = [
    "EMPTY_MEMBERSHIP",
    "MembershipIndex",
    "build_membership",
    "participant_adventure_ids",
    "public_adventure_ids",
]


@dataclass(frozen=True, slots=True)
class MembershipIndex:
    """Immutable per-request view of a user's adventure reach."""

    user_adventure_ids: frozenset[str] = field(default_factory=frozenset)
    public_adventure_ids: frozenset[str] = field(default_factory=frozenset)

    @property
    def accessible_adventure_ids(self) -> frozenset[str]:
        return self.user_adventure_ids | self.public_adventure_ids

    def has_access_to_content(self, is_admin: bool = False) -> bool:
        """Whether anything beyond public posts can reach this user."""
        return is_admin or bool(self.accessible_adventure_ids)


EMPTY_MEMBERSHIP = MembershipIndex()


def participant_adventure_ids(
    participants: Iterable[Any],
    user_id: str | None = None,
) -> frozenset[str]:
    """Adventure IDs from *participants*, restricted to *user_id* if given."""
    ids: set[str] = set()
    for row in participants or ():
        if user_id is not None and str(doc_get(row, "userId", "")) != user_id:
            continue
        adventure_id = doc_get(row, "adventureId")
        if adventure_id:
            ids.add(str(adventure_id))
    return frozenset(ids)


def public_adventure_ids(adventures: Iterable[Any]) -> frozenset[str]:
    """IDs of adventures with ``isPublic is True`` and ``status == active``."""
    return frozenset(
        doc_id(a)
        for a in adventures or ()
        if doc_get(a, "isPublic") is True
        and doc_get(a, "status") == AdventureStatus.ACTIVE
        and doc_id(a)
    )


def build_membership(
    user_id: str | None,
    participants: Iterable[Any],
    adventures: Iterable[Any],
) -> MembershipIndex:
    """Build the index for *user_id*.

    An empty/``None`` *user_id* (anonymous session) joins nothing but still
    sees public adventures.
    """
    if user_id:
        joined = participant_adventure_ids(participants, user_id=str(user_id))
    else:
        joined = frozenset()
    return MembershipIndex(
        user_adventure_ids=joined,
        public_adventure_ids=public_adventure_ids(adventures),
    )
