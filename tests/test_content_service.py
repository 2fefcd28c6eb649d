"""
tests/test_content_service.py — Feed, adventure & submission service
=====================================================================
Uses an in-memory fake store so fetch failures can be injected per
collection.
"""

from __future__ import annotations

import asyncio

import pytest

from questfeed.engine.filtering import FeedQuery
from questfeed.engine.identity import LegacyAccess
from questfeed.engine.policy import PostReason
from questfeed.services.content_service import (
    NOT_ALLOWED_TO_POST,
    ContentService,
    SubmissionRejected,
)
from questfeed.services.document_store import DocumentStoreError
from questfeed.services.session import SessionContext


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


ADVENTURES = [
    {"$id": "a-pub", "title": "Open Road", "status": "active", "isPublic": True},
    {"$id": "a-priv", "title": "Hidden Vault", "status": "active", "isPublic": False},
    {"$id": "a-off", "title": "Retired", "status": "inactive", "isPublic": False},
]
PARTICIPANTS = [
    {"adventureId": "a-priv", "userId": "alice"},
    {"adventureId": "a-off", "userId": "alice"},
]
POSTS = [
    {"$id": "p1", "title": "Welcome", "adventures": [], "tags": ["intro"],
     "$createdAt": "2026-01-01T00:00:00Z"},
    {"$id": "p2", "title": "Road notes", "adventures": ["a-pub"], "tags": [],
     "$createdAt": "2026-01-02T00:00:00Z"},
    {"$id": "p3", "title": "Vault plans", "adventures": ["a-priv", "a-pub"], "tags": ["plan"],
     "$createdAt": "2026-01-03T00:00:00Z"},
    {"$id": "p4", "title": "Old log", "adventures": ["a-off"], "tags": [],
     "$createdAt": "2026-01-04T00:00:00Z"},
]


class FakeStore:
    def __init__(self, failing: frozenset[str] = frozenset()) -> None:
        self.failing = failing
        self.post_calls: list[dict] = []

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise DocumentStoreError(f"{name} unavailable")

    async def list_adventures(self):
        self._check("adventures")
        return [dict(a) for a in ADVENTURES]

    async def list_adventure_participants(self, adventure_id=None, user_id=None):
        self._check("participants")
        return [
            p for p in PARTICIPANTS
            if (user_id is None or p["userId"] == user_id)
            and (adventure_id is None or p["adventureId"] == adventure_id)
        ]

    async def list_posts(self, adventure_ids=None, public_only=False):
        self._check("posts")
        self.post_calls.append({"adventure_ids": adventure_ids, "public_only": public_only})
        if public_only:
            return [p for p in POSTS if not p["adventures"]]
        if adventure_ids is not None:
            # one copy per matching adventure, like per-adventure fetches
            return [p for a in adventure_ids for p in POSTS if a in p["adventures"]]
        return list(POSTS)


def _service(user: dict | None, store: FakeStore | None = None, legacy=None):
    session = SessionContext(legacy=legacy)
    if user is not None:
        session.sign_in(user)
    return ContentService(store or FakeStore(), session)


def _ids(items):
    return [i["$id"] for i in items]


class TestFeed:
    def test_participant_feed_is_deduplicated(self):
        """p3 is fetched through both adventures but listed once."""
        page = run_async(_service({"$id": "alice"}).feed_posts())
        assert _ids(page.items) == ["p4", "p3", "p2", "p1"]
        assert page.empty is None

    def test_outsider_feed(self):
        page = run_async(_service({"$id": "bob"}).feed_posts())
        assert _ids(page.items) == ["p3", "p2", "p1"]

    def test_anonymous_feed_has_public_content(self):
        page = run_async(_service(None).feed_posts())
        assert "p1" in _ids(page.items)
        assert "p4" not in _ids(page.items)

    def test_admin_fetches_everything_once(self):
        store = FakeStore()
        page = run_async(_service({"$id": "root", "role": "admin"}, store).feed_posts())
        assert _ids(page.items) == ["p4", "p3", "p2", "p1"]
        assert store.post_calls == [{"adventure_ids": None, "public_only": False}]

    def test_query_refines(self):
        page = run_async(_service({"$id": "alice"}).feed_posts(FeedQuery(search="vault")))
        assert _ids(page.items) == ["p3"]
        assert page.stats["visible"] == 1
        assert page.stats["total"] == 4

    def test_posts_by_tag(self):
        page = run_async(_service({"$id": "alice"}).posts_by_tag("intro"))
        assert _ids(page.items) == ["p1"]

    def test_filtered_empty_state(self):
        page = run_async(_service({"$id": "alice"}).feed_posts(FeedQuery(search="zzz")))
        assert page.items == []
        assert page.to_dict()["empty_state"]["type"] == "no_results"


class TestFailClosed:
    def test_participant_fetch_failure_keeps_public_reach(self, caplog):
        store = FakeStore(failing=frozenset({"participants"}))
        page = run_async(_service({"$id": "alice"}, store).feed_posts())
        assert "p3" in _ids(page.items)  # still reachable via the public adventure
        assert "Failed to fetch adventure participants" in caplog.text

    def test_adventure_fetch_failure_leaves_public_posts(self):
        store = FakeStore(failing=frozenset({"adventures"}))
        page = run_async(_service({"$id": "bob"}, store).feed_posts())
        assert _ids(page.items) == ["p1"]

    def test_post_fetch_failure_is_empty_not_error(self):
        store = FakeStore(failing=frozenset({"posts"}))
        page = run_async(_service({"$id": "alice"}, store).feed_posts())
        assert page.items == []
        assert page.empty is not None


class TestAdventures:
    def test_listing_respects_policy(self):
        page = run_async(_service({"$id": "alice"}).adventures())
        assert sorted(_ids(page.items)) == ["a-priv", "a-pub"]

    def test_admin_sees_inactive(self):
        page = run_async(_service({"$id": "root", "role": "admin"}).adventures())
        assert len(page.items) == 3

    def test_single_adventure_hidden_is_none(self):
        assert run_async(_service({"$id": "bob"}).adventure("a-priv")) is None
        assert run_async(_service({"$id": "alice"}).adventure("a-off")) is None
        assert run_async(_service({"$id": "alice"}).adventure("missing")) is None
        assert run_async(_service({"$id": "alice"}).adventure("a-priv"))["$id"] == "a-priv"


class TestValidateSubmission:
    LEGACY = LegacyAccess.from_ids(publisher_ids=["alice", "bob"])

    def test_blocked_adventures_are_reported(self):
        service = _service({"$id": "bob"}, legacy=self.LEGACY)
        with pytest.raises(SubmissionRejected) as exc_info:
            run_async(service.validate_submission(["a-priv", "a-pub", "a-off"]))
        assert exc_info.value.reason == PostReason.NO_ACCESS_TO_ADVENTURES
        assert exc_info.value.blocked_adventures == ("a-priv", "a-off")
        assert exc_info.value.to_detail() == {
            "error": "no_access_to_adventures",
            "blocked_adventures": ["a-priv", "a-off"],
        }

    def test_participant_may_post(self):
        service = _service({"$id": "alice"}, legacy=self.LEGACY)
        decision = run_async(service.validate_submission(["a-priv", "a-off"]))
        assert decision.can_post

    def test_non_publisher_refused(self):
        service = _service({"$id": "carol"}, legacy=self.LEGACY)
        with pytest.raises(SubmissionRejected) as exc_info:
            run_async(service.validate_submission(["a-pub"]))
        assert exc_info.value.reason == NOT_ALLOWED_TO_POST

    def test_anonymous_refused(self):
        with pytest.raises(SubmissionRejected):
            run_async(_service(None).validate_submission([]))

    def test_admin_posts_anywhere(self):
        service = _service({"$id": "root", "role": "admin"})
        assert run_async(service.validate_submission(["nowhere"])).reason == PostReason.ADMIN


class TestSearchFields:
    def test_adventure_fields_follow_config(self):
        service = ContentService(
            FakeStore(), SessionContext(), search_fields=("title", "captions")
        )
        assert service.adventure_search_fields == ("title",)

    def test_post_only_config_falls_back(self):
        service = ContentService(FakeStore(), SessionContext(), search_fields=("captions",))
        assert service.adventure_search_fields == ("title", "description")

