"""
questfeed.engine.policy — Visibility & Access-Control Policy Engine
====================================================================

Pure decision functions: no store I/O, no logging, no exceptions.  Each
takes an already-resolved :class:`UserIdentity` plus already-fetched
documents/ID sets and returns either a bool (capabilities) or a
reason-tagged decision (visibility, submission).

Visibility rules:

- An adventure is visible to admins; otherwise only when ``active`` and
  either public or joined.  Inactive adventures are admin-only even for
  participants.
- A post is visible to admins, when it carries no adventures (public
  post), or when any of its adventures is public-active or joined.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from typing import Any

from questfeed.database.models import AdventureStatus, Role
from questfeed.engine.documents import (
    adventure_ids_of,
    doc_get,
    doc_id,
    has_malformed_scope,
)
from questfeed.engine.identity import LegacyAccess, UserIdentity

__all__ = [
    "ADMIN_ONLY_ROUTES",
    "Permission",
    "PostDecision",
    "PostReason",
    "ROLE_PERMISSIONS",
    "ViewDecision",
    "ViewReason",
    "can_access_route",
    "can_create_adventure",
    "can_create_post",
    "can_create_public_post",
    "can_delete_adventure",
    "can_delete_post",
    "can_edit_adventure",
    "can_edit_post",
    "can_edit_user_role",
    "can_manage_participants",
    "can_post_in_adventures",
    "can_toggle_adventure_visibility",
    "can_view_adventure",
    "can_view_all_users",
    "can_view_post",
    "can_view_user_details",
    "capability_map",
    "creator_id_of",
    "has_permission",
    "is_admin",
    "permission_error_message",
]


# ---------------------------------------------------------------------------
# Reason tags
# ---------------------------------------------------------------------------
class ViewReason(enum.StrEnum):
    ADMIN = "admin"
    PUBLIC_POST = "public_post"
    PUBLIC_ADVENTURE = "public_adventure"
    PARTICIPANT = "participant"
    INACTIVE = "inactive"
    NO_ACCESS = "no_access"


class PostReason(enum.StrEnum):
    ADMIN = "admin"
    ALLOWED = "allowed"
    NO_ACCESS_TO_ADVENTURES = "no_access_to_adventures"


@dataclass(frozen=True, slots=True)
class ViewDecision:
    """Outcome of a visibility check.  Truthy iff the item is visible."""

    can_view: bool
    reason: ViewReason

    def __bool__(self) -> bool:
        return self.can_view


@dataclass(frozen=True, slots=True)
class PostDecision:
    """Outcome of a submission check.

    ``blocked_adventures`` lists every selected adventure the user may not
    post into, in selection order.  A non-empty list means the whole
    submission is refused.
    """

    can_post: bool
    reason: PostReason
    blocked_adventures: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return self.can_post


# ---------------------------------------------------------------------------
# Role → permission table
# ---------------------------------------------------------------------------
class Permission(enum.StrEnum):
    CREATE_ADVENTURE = "create_adventure"
    EDIT_ADVENTURE = "edit_adventure"
    DELETE_ADVENTURE = "delete_adventure"
    MANAGE_PARTICIPANTS = "manage_participants"
    TOGGLE_ADVENTURE_VISIBILITY = "toggle_adventure_visibility"
    VIEW_INACTIVE_ADVENTURES = "view_inactive_adventures"
    EDIT_ANY_POST = "edit_any_post"
    DELETE_ANY_POST = "delete_any_post"
    VIEW_ALL_POSTS = "view_all_posts"
    VIEW_ALL_USERS = "view_all_users"
    EDIT_USER_ROLES = "edit_user_roles"
    ACCESS_ADMIN_PANEL = "access_admin_panel"


# Post creation is deliberately absent: it is decided by role plus the
# legacy publisher allow-list, see can_create_post().
ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.ADMIN: frozenset(Permission),
    Role.USER: frozenset(),
}

_PERMISSION_MESSAGES: dict[Permission, str] = {
    Permission.CREATE_ADVENTURE: "Only administrators can create adventures.",
    Permission.EDIT_ADVENTURE: "You are not allowed to edit this adventure.",
    Permission.DELETE_ADVENTURE: "You are not allowed to delete this adventure.",
    Permission.MANAGE_PARTICIPANTS: "You are not allowed to manage participants.",
    Permission.TOGGLE_ADVENTURE_VISIBILITY: (
        "Only administrators can change adventure visibility."
    ),
    Permission.VIEW_INACTIVE_ADVENTURES: (
        "Only administrators can see inactive adventures."
    ),
    Permission.EDIT_ANY_POST: "You can only edit your own posts.",
    Permission.DELETE_ANY_POST: "You can only delete your own posts.",
    Permission.VIEW_ALL_POSTS: (
        "You can only see posts from adventures you take part in."
    ),
    Permission.VIEW_ALL_USERS: "You are not allowed to list all users.",
    Permission.EDIT_USER_ROLES: "Only administrators can change user roles.",
    Permission.ACCESS_ADMIN_PANEL: "Access to the admin area was denied.",
}

_DEFAULT_DENIAL = "You are not allowed to perform this action."


def has_permission(user: UserIdentity, permission: Permission) -> bool:
    if not user.is_authenticated:
        return False
    return permission in ROLE_PERMISSIONS.get(user.role, frozenset())


def permission_error_message(permission: Permission | str) -> str:
    """Human-readable denial message for *permission*."""
    try:
        return _PERMISSION_MESSAGES[Permission(permission)]
    except ValueError:
        return _DEFAULT_DENIAL


def is_admin(user: UserIdentity) -> bool:
    return user.is_authenticated and user.role == Role.ADMIN


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------
def can_view_adventure(
    user: UserIdentity,
    adventure: Any,
    user_adventure_ids: Collection[str],
) -> ViewDecision:
    """Decide whether *user* may see *adventure*.

    Check order: admin → inactive → public → participant.
    """
    if is_admin(user):
        return ViewDecision(True, ViewReason.ADMIN)

    if doc_get(adventure, "status") != AdventureStatus.ACTIVE:
        return ViewDecision(False, ViewReason.INACTIVE)

    if doc_get(adventure, "isPublic") is True:
        return ViewDecision(True, ViewReason.PUBLIC_ADVENTURE)

    adventure_id = doc_id(adventure)
    if adventure_id and adventure_id in user_adventure_ids:
        return ViewDecision(True, ViewReason.PARTICIPANT)

    return ViewDecision(False, ViewReason.NO_ACCESS)


def can_view_post(
    user: UserIdentity,
    post: Any,
    user_adventure_ids: Collection[str],
    public_adventure_ids: Collection[str],
) -> ViewDecision:
    """Decide whether *user* may see *post*.

    Check order: admin → public post → public adventure → participant.
    A post whose ``adventures`` field is malformed gets no grant beyond
    the admin one.
    """
    if is_admin(user):
        return ViewDecision(True, ViewReason.ADMIN)

    if has_malformed_scope(post):
        return ViewDecision(False, ViewReason.NO_ACCESS)

    scope = adventure_ids_of(post)
    if not scope:
        return ViewDecision(True, ViewReason.PUBLIC_POST)

    if any(a in public_adventure_ids for a in scope):
        return ViewDecision(True, ViewReason.PUBLIC_ADVENTURE)

    if any(a in user_adventure_ids for a in scope):
        return ViewDecision(True, ViewReason.PARTICIPANT)

    return ViewDecision(False, ViewReason.NO_ACCESS)


# ---------------------------------------------------------------------------
# Adventure administration — admin only, no per-adventure delegation
# ---------------------------------------------------------------------------
def can_create_adventure(user: UserIdentity) -> bool:
    return has_permission(user, Permission.CREATE_ADVENTURE)


def can_edit_adventure(user: UserIdentity) -> bool:
    return has_permission(user, Permission.EDIT_ADVENTURE)


def can_delete_adventure(user: UserIdentity) -> bool:
    return has_permission(user, Permission.DELETE_ADVENTURE)


def can_manage_participants(user: UserIdentity) -> bool:
    return has_permission(user, Permission.MANAGE_PARTICIPANTS)


def can_toggle_adventure_visibility(user: UserIdentity) -> bool:
    return has_permission(user, Permission.TOGGLE_ADVENTURE_VISIBILITY)


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------
def creator_id_of(post: Any) -> str:
    """ID of the post's creator, whether embedded as a document or a bare ID."""
    creator = doc_get(post, "creator")
    if creator is None:
        creator = doc_get(post, "creatorId", doc_get(post, "creator_id"))
    if creator is None:
        return ""
    if isinstance(creator, (str, int)):
        return str(creator)
    return doc_id(creator)


def can_create_post(user: UserIdentity, legacy: LegacyAccess | None = None) -> bool:
    """Admins, plus the legacy publisher allow-list."""
    if not user.is_authenticated:
        return False
    if is_admin(user):
        return True
    return legacy is not None and user.id in legacy.publisher_ids


def can_create_public_post(
    user: UserIdentity, legacy: LegacyAccess | None = None
) -> bool:
    return can_create_post(user, legacy)


def _owns_or_admin(user: UserIdentity, post: Any, permission: Permission) -> bool:
    if post is None or not user.is_authenticated:
        return False
    if has_permission(user, permission):
        return True
    return bool(user.id) and creator_id_of(post) == user.id


def can_edit_post(user: UserIdentity, post: Any) -> bool:
    return _owns_or_admin(user, post, Permission.EDIT_ANY_POST)


def can_delete_post(user: UserIdentity, post: Any) -> bool:
    return _owns_or_admin(user, post, Permission.DELETE_ANY_POST)


def can_post_in_adventures(
    user: UserIdentity,
    selected_adventure_ids: Iterable[str],
    user_adventure_ids: Collection[str],
    public_adventure_ids: Collection[str],
) -> PostDecision:
    """Check every selected adventure; refuse the whole submission on any miss."""
    if is_admin(user):
        return PostDecision(True, PostReason.ADMIN)

    selected = list(dict.fromkeys(str(a) for a in selected_adventure_ids))
    blocked = tuple(
        a for a in selected
        if a not in user_adventure_ids and a not in public_adventure_ids
    )
    if blocked:
        return PostDecision(False, PostReason.NO_ACCESS_TO_ADVENTURES, blocked)
    return PostDecision(True, PostReason.ALLOWED)


# ---------------------------------------------------------------------------
# Users & routes
# ---------------------------------------------------------------------------
def can_view_all_users(user: UserIdentity) -> bool:
    return has_permission(user, Permission.VIEW_ALL_USERS)


def can_edit_user_role(user: UserIdentity) -> bool:
    return has_permission(user, Permission.EDIT_USER_ROLES)


def can_view_user_details(user: UserIdentity, target_user_id: str) -> bool:
    if not user.is_authenticated:
        return False
    return is_admin(user) or (bool(user.id) and user.id == str(target_user_id))


ADMIN_ONLY_ROUTES: tuple[str, ...] = (
    "/adventures",
    "/adventures/create",
    "/adventures/*/edit",
    "/adventures/*/manage",
)

_ADMIN_ROUTE_PATTERNS = tuple(
    re.compile("^" + re.escape(route).replace(r"\*", "[^/]+") + "$")
    for route in ADMIN_ONLY_ROUTES
)


def can_access_route(user: UserIdentity, path: str) -> bool:
    """Admin-only route patterns are gated; every other path is open."""
    normalized = path.rstrip("/") or "/"
    if any(p.match(normalized) for p in _ADMIN_ROUTE_PATTERNS):
        return is_admin(user)
    return True


def capability_map(
    user: UserIdentity, legacy: LegacyAccess | None = None
) -> dict[str, bool]:
    """Flat capability snapshot for the UI layer."""
    admin = is_admin(user)
    return {
        "is_admin": admin,
        "can_create_adventure": can_create_adventure(user),
        "can_edit_adventure": can_edit_adventure(user),
        "can_delete_adventure": can_delete_adventure(user),
        "can_manage_participants": can_manage_participants(user),
        "can_toggle_adventure_visibility": can_toggle_adventure_visibility(user),
        "can_see_inactive_adventures": has_permission(
            user, Permission.VIEW_INACTIVE_ADVENTURES
        ),
        "can_create_post": can_create_post(user, legacy),
        "can_create_public_post": can_create_public_post(user, legacy),
        "can_view_all_users": can_view_all_users(user),
        "can_edit_user_role": can_edit_user_role(user),
        "can_access_admin_panel": has_permission(user, Permission.ACCESS_ADMIN_PANEL),
    }
