"""
tests/test_filtering.py — Content filter pipeline
==================================================
Policy stage, free-text/tag/status/scope refinements, ordering and the
visible-posts union.
"""

from __future__ import annotations

import copy

from questfeed.database.models import Role
from questfeed.engine.filtering import (
    FeedQuery,
    ItemKind,
    adventure_options,
    empty_state,
    filter_and_sort,
    filter_by_search,
    filtering_stats,
    group_posts_by_adventure,
    has_active_filters,
    normalize_text,
    post_visibility_stats,
    sort_items,
    visible_posts,
)
from questfeed.engine.identity import ANONYMOUS, UserIdentity
from questfeed.engine.membership import EMPTY_MEMBERSHIP, MembershipIndex, build_membership
from questfeed.engine.policy import can_view_post

ADMIN = UserIdentity(id="admin", role=Role.ADMIN)
ALICE = UserIdentity(id="alice")
BOB = UserIdentity(id="bob")

ADVENTURES = [
    {"$id": "a-pub", "title": "Dragão Hunt", "status": "active", "isPublic": True,
     "$createdAt": "2026-01-02T00:00:00Z"},
    {"$id": "a-priv", "title": "Secret Crypt", "status": "active", "isPublic": False,
     "$createdAt": "2026-01-03T00:00:00Z"},
    {"$id": "a-old", "title": "Old Keep", "status": "inactive", "isPublic": True,
     "$createdAt": "2026-01-04T00:00:00Z"},
]
PARTICIPANTS = [{"adventureId": "a-priv", "userId": "alice"}]

POSTS = [
    {"$id": "p1", "title": "Hello tavern", "tags": ["intro"], "adventures": [],
     "$createdAt": "2026-02-01T00:00:00Z"},
    {"$id": "p2", "title": "Dragon sighted", "tags": ["Dragon"], "adventures": ["a-pub"],
     "$createdAt": "2026-02-03T00:00:00Z"},
    {"$id": "p3", "title": "Crypt map", "captions": ["Ração for the road"],
     "adventures": ["a-priv"], "$createdAt": "2026-02-02T00:00:00Z"},
    {"$id": "p4", "title": "Keep closed", "adventures": ["a-old"],
     "$createdAt": "2026-02-04T00:00:00Z"},
]


def _ids(items):
    return [i["$id"] for i in items]


def _membership(user_id):
    return build_membership(user_id, PARTICIPANTS, ADVENTURES)


class TestNormalizeText:
    def test_accents_and_case_are_folded(self):
        assert normalize_text("Dragão") == "dragao"
        assert normalize_text("STRASSE") == normalize_text("straße")


class TestPolicyStage:
    def test_posts_for_participant(self):
        result = filter_and_sort(POSTS, ALICE, _membership("alice"))
        assert _ids(result) == ["p2", "p3", "p1"]

    def test_posts_for_outsider(self):
        assert _ids(filter_and_sort(POSTS, BOB, _membership("bob"))) == ["p2", "p1"]

    def test_anonymous_sees_public_only(self):
        assert _ids(filter_and_sort(POSTS, ANONYMOUS, _membership(None))) == ["p2", "p1"]

    def test_admin_sees_all(self):
        assert len(filter_and_sort(POSTS, ADMIN, EMPTY_MEMBERSHIP)) == len(POSTS)

    def test_adventures_kind_detection(self):
        result = filter_and_sort(ADVENTURES, ALICE, _membership("alice"))
        assert _ids(result) == ["a-priv", "a-pub"]

    def test_bare_post_without_scope_is_public(self):
        """No adventures, creator or captions: still a public post."""
        legacy = {"$id": "legacy", "title": "Old news", "tags": ["lore"]}
        assert can_view_post(BOB, legacy, (), ()).can_view
        assert _ids(filter_and_sort([legacy], BOB, EMPTY_MEMBERSHIP)) == ["legacy"]
        assert _ids(filter_and_sort([legacy], ANONYMOUS, EMPTY_MEMBERSHIP)) == ["legacy"]

    def test_none_input_yields_empty_list(self):
        assert filter_and_sort(None, ALICE, EMPTY_MEMBERSHIP) == []


class TestRefinements:
    def test_search_is_accent_insensitive_and_covers_lists(self):
        result = filter_and_sort(POSTS, ALICE, _membership("alice"), FeedQuery(search="racao"))
        assert _ids(result) == ["p3"]

    def test_search_on_adventures(self):
        result = filter_by_search(ADVENTURES, "dragao", ("title",))
        assert _ids(result) == ["a-pub"]

    def test_blank_search_keeps_everything(self):
        assert filter_by_search(POSTS, "   ") == POSTS

    def test_tag_filter(self):
        result = filter_and_sort(POSTS, ALICE, _membership("alice"), FeedQuery(tag="dragon"))
        assert _ids(result) == ["p2"]

    def test_status_filter_only_for_admins(self):
        query = FeedQuery(status="inactive", kind=ItemKind.ADVENTURE)
        assert _ids(filter_and_sort(ADVENTURES, ADMIN, EMPTY_MEMBERSHIP, query)) == ["a-old"]
        assert len(filter_and_sort(ADVENTURES, ALICE, _membership("alice"), query)) == 2

    def test_adventure_scope(self):
        query = FeedQuery(adventure_id="a-priv")
        assert _ids(filter_and_sort(POSTS, ALICE, _membership("alice"), query)) == ["p3"]

    def test_has_active_filters(self):
        assert not has_active_filters(FeedQuery())
        assert not has_active_filters(FeedQuery(search="  ", status="all"))
        assert has_active_filters(FeedQuery(tag="x"))
        assert has_active_filters(FeedQuery(status="active"))


class TestOrdering:
    def test_active_first_then_newest(self):
        result = sort_items(ADVENTURES)
        assert _ids(result) == ["a-priv", "a-pub", "a-old"]

    def test_missing_created_at_sorts_last(self):
        items = [{"$id": "x"}, {"$id": "y", "$createdAt": "2026-01-01T00:00:00Z"}]
        assert _ids(sort_items(items)) == ["y", "x"]

    def test_sort_is_stable(self):
        """Items equal under the sort key keep their input order."""
        same = "2026-05-05T05:05:05Z"
        items = [{"$id": str(i), "$createdAt": same} for i in range(6)]
        assert _ids(sort_items(items)) == [str(i) for i in range(6)]
        reversed_items = list(reversed(items))
        assert _ids(sort_items(reversed_items)) == [str(i) for i in reversed(range(6))]

    def test_mixed_timezone_offsets(self):
        items = [
            {"$id": "utc", "$createdAt": "2026-01-01T10:00:00+00:00"},
            {"$id": "ahead", "$createdAt": "2026-01-01T12:30:00+03:00"},  # 09:30 UTC
        ]
        assert _ids(sort_items(items)) == ["utc", "ahead"]


class TestIdempotence:
    def test_pipeline_is_idempotent_and_pure(self):
        snapshot = copy.deepcopy(POSTS)
        membership = _membership("alice")
        query = FeedQuery(search="a")
        first = filter_and_sort(POSTS, ALICE, membership, query)
        second = filter_and_sort(POSTS, ALICE, membership, query)
        assert first == second
        assert filter_and_sort(first, ALICE, membership, query) == first
        assert POSTS == snapshot

    def test_returns_new_list(self):
        result = filter_and_sort(POSTS, ADMIN, EMPTY_MEMBERSHIP)
        assert result is not POSTS


class TestVisiblePosts:
    def test_union_is_deduplicated(self):
        """A post fetched via public and adventure queries appears once."""
        both = {"$id": "pb", "adventures": ["a-pub", "a-priv"],
                "$createdAt": "2026-03-01T00:00:00Z"}
        fetched = POSTS + [both, dict(both)] + [POSTS[1]]
        result = visible_posts(fetched, ALICE, _membership("alice"))
        ids = _ids(result)
        assert len(ids) == len(set(ids))
        assert ids[0] == "pb"

    def test_outsider_union(self):
        assert _ids(visible_posts(POSTS, BOB, _membership("bob"))) == ["p2", "p1"]

    def test_admin_gets_everything(self):
        assert len(visible_posts(POSTS + POSTS, ADMIN, EMPTY_MEMBERSHIP)) == len(POSTS)

    def test_malformed_scope_dropped(self):
        bad = {"$id": "bad", "adventures": "a-pub"}
        assert visible_posts([bad], ALICE, _membership("alice")) == []


class TestReporting:
    def test_filtering_stats(self):
        assert filtering_stats([1, 2, 3, 4], [1]) == {
            "total": 4, "visible": 1, "hidden": 3, "percentage": 25,
        }
        assert filtering_stats([], [])["percentage"] == 0

    def test_post_visibility_stats(self):
        stats = post_visibility_stats(POSTS, _membership("alice"))
        assert stats == {"public_posts": 1, "public_adventure_posts": 1, "private_posts": 2}

    def test_group_posts_by_adventure(self):
        grouped = group_posts_by_adventure(POSTS, ADVENTURES)
        assert _ids(grouped["a-priv"]["posts"]) == ["p3"]
        assert grouped["a-pub"]["adventure"]["title"] == "Dragão Hunt"

    def test_adventure_options(self):
        options = adventure_options(ADVENTURES[:1])
        assert options == [{"label": "Dragão Hunt", "value": "a-pub", "status": "active"}]


class TestEmptyState:
    def test_no_adventures(self):
        state = empty_state("posts", EMPTY_MEMBERSHIP, False)
        assert state.type == "no_adventures"

    def test_filtered_mentions_search_term(self):
        membership = MembershipIndex(frozenset({"a"}), frozenset())
        state = empty_state("filtered", membership, False, "goblin")
        assert state.type == "no_results"
        assert "goblin" in state.description

    def test_admin_adventures(self):
        state = empty_state("adventures", EMPTY_MEMBERSHIP, True)
        assert state.title == "No adventures created yet"
        assert state.to_dict()["type"] == "no_adventures_available"
