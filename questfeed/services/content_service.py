"""
questfeed.services.content_service — Feed, adventure & submission service
==========================================================================

Glue between the :class:`DocumentStore` and the pure engine:

  1. Fetch adventures + the caller's participant rows
  2. Build a fresh :class:`MembershipIndex` (no caching across calls)
  3. Fetch posts (public ∪ accessible adventures, or everything for admins)
  4. Run the filter pipeline

Store failures never propagate from read paths: each failed collection is
logged and replaced by an empty one, so results can only shrink.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from questfeed.config import DEFAULT_SEARCH_FIELDS
from questfeed.engine.documents import doc_id
from questfeed.engine.filtering import (
    EmptyState,
    FeedQuery,
    ItemKind,
    empty_state,
    filter_and_sort,
    filtering_stats,
    has_active_filters,
    visible_posts,
)
from questfeed.engine.identity import UserIdentity
from questfeed.engine.membership import MembershipIndex, build_membership
from questfeed.engine.policy import (
    PostDecision,
    PostReason,
    can_create_post,
    can_create_public_post,
    can_post_in_adventures,
    can_view_adventure,
    is_admin,
)
from questfeed.services.document_store import Document, DocumentStore, DocumentStoreError
from questfeed.services.session import SessionContext

logger = logging.getLogger(__name__)

ADVENTURE_SEARCH_FIELDS: tuple[str, ...] = ("title", "description")

NOT_ALLOWED_TO_POST = "not_allowed_to_post"
NOT_ALLOWED_TO_POST_PUBLIC = "not_allowed_to_post_public"


class SubmissionRejected(Exception):
    """A post submission failed the policy check; nothing was written."""

    def __init__(self, reason: str, blocked_adventures: Sequence[str] = ()) -> None:
        self.reason = reason
        self.blocked_adventures = tuple(blocked_adventures)
        super().__init__(
            f"{reason}: {', '.join(self.blocked_adventures)}"
            if self.blocked_adventures
            else reason
        )

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"error": self.reason}
        if self.blocked_adventures:
            detail["blocked_adventures"] = list(self.blocked_adventures)
        return detail


@dataclass(frozen=True, slots=True)
class ContentPage:
    """A filtered listing plus the numbers the UI shows next to it."""

    items: list[Document]
    membership: MembershipIndex
    stats: dict[str, int] = field(default_factory=dict)
    empty: EmptyState | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": self.items,
            "stats": self.stats,
            "empty_state": self.empty.to_dict() if self.empty else None,
        }


class ContentService:
    """Per-session read/validate service; create one per request."""

    def __init__(
        self,
        store: DocumentStore,
        session: SessionContext,
        *,
        search_fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
    ) -> None:
        self.store = store
        self.session = session
        self.search_fields = tuple(search_fields)

    @property
    def user(self) -> UserIdentity:
        return self.session.identity

    @property
    def adventure_search_fields(self) -> tuple[str, ...]:
        """Configured search fields that adventures actually carry."""
        fields = tuple(f for f in self.search_fields if f in ADVENTURE_SEARCH_FIELDS)
        return fields or ADVENTURE_SEARCH_FIELDS

    async def _fetch(
        self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> list[Document]:
        try:
            return list(await func(*args, **kwargs) or ())
        except DocumentStoreError:
            logger.exception("Failed to fetch %s; treating as empty", label)
            return []

    # -- membership ---------------------------------------------------------
    async def load_membership(self) -> tuple[MembershipIndex, list[Document]]:
        """Return the caller's membership index and the adventures it was built from."""
        adventures = await self._fetch("adventures", self.store.list_adventures)
        participants: list[Document] = []
        if self.session.is_authenticated:
            participants = await self._fetch(
                "adventure participants",
                self.store.list_adventure_participants,
                user_id=self.session.user_id,
            )
        membership = build_membership(self.session.user_id, participants, adventures)
        return membership, adventures

    # -- posts --------------------------------------------------------------
    async def _candidate_posts(self, membership: MembershipIndex) -> list[Document]:
        if is_admin(self.user):
            return await self._fetch("posts", self.store.list_posts)

        posts = await self._fetch("public posts", self.store.list_posts, public_only=True)
        accessible = membership.accessible_adventure_ids
        if accessible:
            posts += await self._fetch(
                "adventure posts", self.store.list_posts, adventure_ids=sorted(accessible)
            )
        return posts

    async def feed_posts(self, query: FeedQuery | None = None) -> ContentPage:
        """Visible posts for the session, refined by *query*."""
        query = self._with_defaults(query, ItemKind.POST)
        membership, _ = await self.load_membership()
        visible = visible_posts(
            await self._candidate_posts(membership), self.user, membership
        )
        items = filter_and_sort(visible, self.user, membership, query)
        return ContentPage(
            items=items,
            membership=membership,
            stats=filtering_stats(visible, items),
            empty=self._empty(items, "posts", query, membership),
        )

    async def posts_by_tag(self, tag: str) -> ContentPage:
        return await self.feed_posts(FeedQuery(tag=tag))

    # -- adventures ---------------------------------------------------------
    async def adventures(self, query: FeedQuery | None = None) -> ContentPage:
        """Adventures visible to the session, refined by *query*."""
        query = self._with_defaults(query, ItemKind.ADVENTURE)
        membership, all_adventures = await self.load_membership()
        items = filter_and_sort(all_adventures, self.user, membership, query)
        return ContentPage(
            items=items,
            membership=membership,
            stats=filtering_stats(all_adventures, items),
            empty=self._empty(items, "adventures", query, membership),
        )

    async def adventure(self, adventure_id: str) -> Document | None:
        """A single adventure, or ``None`` when missing *or* not visible."""
        membership, all_adventures = await self.load_membership()
        for adventure in all_adventures:
            if doc_id(adventure) == adventure_id:
                decision = can_view_adventure(
                    self.user, adventure, membership.user_adventure_ids
                )
                if decision:
                    return adventure
                logger.debug(
                    "Adventure %s hidden from %s (%s)",
                    adventure_id, self.user.id or "anonymous", decision.reason,
                )
                return None
        return None

    # -- submissions --------------------------------------------------------
    async def validate_submission(self, selected_adventure_ids: Iterable[str]) -> PostDecision:
        """Policy check before a post write; raises :class:`SubmissionRejected`."""
        selected = [str(a) for a in selected_adventure_ids]
        legacy = self.session.legacy

        if not can_create_post(self.user, legacy):
            raise SubmissionRejected(NOT_ALLOWED_TO_POST)
        if not selected and not can_create_public_post(self.user, legacy):
            raise SubmissionRejected(NOT_ALLOWED_TO_POST_PUBLIC)

        membership, _ = await self.load_membership()
        decision = can_post_in_adventures(
            self.user,
            selected,
            membership.user_adventure_ids,
            membership.public_adventure_ids,
        )
        if not decision:
            logger.info(
                "Submission by %s rejected; blocked adventures: %s",
                self.user.id, ", ".join(decision.blocked_adventures),
            )
            raise SubmissionRejected(
                PostReason.NO_ACCESS_TO_ADVENTURES, decision.blocked_adventures
            )
        return decision

    # -- helpers ------------------------------------------------------------
    def _with_defaults(self, query: FeedQuery | None, kind: ItemKind) -> FeedQuery:
        query = query or FeedQuery(search_fields=self.search_fields)
        return replace(query, kind=kind)

    def _empty(
        self,
        items: list[Document],
        context: str,
        query: FeedQuery,
        membership: MembershipIndex,
    ) -> EmptyState | None:
        if items:
            return None
        if has_active_filters(query):
            return empty_state("filtered", membership, is_admin(self.user), query.search)
        return empty_state(context, membership, is_admin(self.user))
