"""
questfeed.services.admin_service — Admin Mutation Service Layer
================================================================

Every admin write follows the same pattern:
  1. Check the actor's capability; raise :class:`PermissionDenied` before
     touching the database
  2. Begin transaction
  3. Read "before" snapshot
  4. Apply change
  5. Commit and log before/after at INFO

Functions are synchronous; async callers wrap them in ``run_db``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from questfeed.database.models import (
    Adventure,
    AdventureParticipant,
    AdventureStatus,
    Role,
    User,
)
from questfeed.engine.identity import UserIdentity
from questfeed.engine.policy import (
    Permission,
    can_create_adventure,
    can_delete_adventure,
    can_edit_adventure,
    can_edit_user_role,
    can_manage_participants,
    can_toggle_adventure_visibility,
    permission_error_message,
)

logger = logging.getLogger(__name__)


class PermissionDenied(Exception):
    """The acting identity lacks the capability for a mutation."""

    def __init__(self, permission: Permission) -> None:
        self.permission = permission
        super().__init__(permission_error_message(permission))


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------

def _require(
    actor: UserIdentity,
    check: Callable[[UserIdentity], bool],
    permission: Permission,
) -> None:
    if not check(actor):
        logger.info("Denied %s for %s", permission, actor.id or "anonymous")
        raise PermissionDenied(permission)


def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_change(
    action: str, table: str, target_id: str, actor: UserIdentity,
    before: dict | None, after: dict | None,
) -> None:
    logger.info(
        "%s %s/%s by %s: %s -> %s", action, table, target_id, actor.id, before, after
    )


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------

def _find_participant(
    session: Session, adventure_id: str, user_id: str
) -> AdventureParticipant | None:
    return session.scalar(
        select(AdventureParticipant).where(
            AdventureParticipant.adventure_id == adventure_id,
            AdventureParticipant.user_id == user_id,
        )
    )


def add_participant(
    engine,
    *,
    actor: UserIdentity,
    adventure_id: str,
    user_id: str,
) -> AdventureParticipant | None:
    """Add *user_id* to *adventure_id*.

    Idempotent: an existing membership is returned unchanged, including
    one inserted by a concurrent call.  Returns ``None`` if the adventure
    or the user does not exist.
    """
    _require(actor, can_manage_participants, Permission.MANAGE_PARTICIPANTS)

    with Session(engine, expire_on_commit=False) as session:
        if session.get(Adventure, adventure_id) is None or session.get(User, user_id) is None:
            return None

        existing = _find_participant(session, adventure_id, user_id)
        if existing is not None:
            session.expunge(existing)
            return existing

        row = AdventureParticipant(
            adventure_id=adventure_id, user_id=user_id, added_by=actor.id
        )
        session.add(row)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            existing = _find_participant(session, adventure_id, user_id)
            if existing is None:
                raise
            logger.debug(
                "Participant %s/%s added concurrently; returning existing row",
                adventure_id, user_id,
            )
            session.expunge(existing)
            return existing
        after = _row_to_dict(row)
        session.commit()
        session.refresh(row)
        session.expunge(row)

    _log_change("CREATE", "adventure_participants", row.id, actor, None, after)
    return row


def remove_participant(
    engine,
    *,
    actor: UserIdentity,
    adventure_id: str,
    user_id: str,
) -> bool:
    """Remove every membership row for the pair. Returns True if any existed."""
    _require(actor, can_manage_participants, Permission.MANAGE_PARTICIPANTS)

    with Session(engine) as session:
        rows = session.scalars(
            select(AdventureParticipant).where(
                AdventureParticipant.adventure_id == adventure_id,
                AdventureParticipant.user_id == user_id,
            )
        ).all()
        if not rows:
            return False
        before = _row_to_dict(rows[0])
        for row in rows:
            session.delete(row)
        session.commit()

    _log_change(
        "DELETE", "adventure_participants", f"{adventure_id}:{user_id}", actor, before, None
    )
    return True


def list_participant_ids(engine, adventure_id: str) -> list[str]:
    """User IDs taking part in *adventure_id*, oldest membership first."""
    with Session(engine) as session:
        return list(dict.fromkeys(session.scalars(
            select(AdventureParticipant.user_id)
            .where(AdventureParticipant.adventure_id == adventure_id)
            .order_by(AdventureParticipant.created_at)
        ).all()))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def update_user_role(
    engine,
    *,
    actor: UserIdentity,
    user_id: str,
    role: str,
) -> User | None:
    """Change another account's role. Returns ``None`` if the user is unknown.

    Raises
    ------
    PermissionDenied
        If *actor* may not edit roles.
    ValueError
        If *role* is not a known :class:`Role`.
    """
    _require(actor, can_edit_user_role, Permission.EDIT_USER_ROLES)
    new_role = Role(role)

    with Session(engine, expire_on_commit=False) as session:
        user = session.get(User, user_id)
        if user is None:
            return None
        before = _row_to_dict(user)
        user.role = new_role.value
        session.flush()
        after = _row_to_dict(user)
        session.commit()
        session.expunge(user)

    _log_change("UPDATE", "users", user_id, actor, before, after)
    return user


# ---------------------------------------------------------------------------
# Adventure CRUD
# ---------------------------------------------------------------------------

_FROZEN_ADVENTURE_KEYS = ("id", "created_by", "created_at")


def create_adventure(
    engine,
    *,
    actor: UserIdentity,
    title: str,
    description: str | None = None,
    is_public: bool = False,
    status: str = AdventureStatus.ACTIVE,
) -> Adventure:
    _require(actor, can_create_adventure, Permission.CREATE_ADVENTURE)

    with Session(engine, expire_on_commit=False) as session:
        row = Adventure(
            title=title,
            description=description,
            is_public=is_public,
            status=AdventureStatus(status).value,
            created_by=actor.id,
        )
        session.add(row)
        session.flush()
        after = _row_to_dict(row)
        session.commit()
        session.refresh(row)
        session.expunge(row)

    _log_change("CREATE", "adventures", row.id, actor, None, after)
    return row


def update_adventure(
    engine,
    adventure_id: str,
    *,
    actor: UserIdentity,
    **kwargs: Any,
) -> Adventure | None:
    """Apply *kwargs* to an adventure. Returns ``None`` if not found.

    Changing ``is_public`` additionally requires the visibility capability.
    """
    _require(actor, can_edit_adventure, Permission.EDIT_ADVENTURE)
    if "is_public" in kwargs:
        _require(
            actor, can_toggle_adventure_visibility,
            Permission.TOGGLE_ADVENTURE_VISIBILITY,
        )
    if "status" in kwargs:
        kwargs["status"] = AdventureStatus(kwargs["status"]).value

    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(Adventure, adventure_id)
        if obj is None:
            return None
        before = _row_to_dict(obj)
        for key, value in kwargs.items():
            if hasattr(obj, key) and key not in _FROZEN_ADVENTURE_KEYS:
                setattr(obj, key, value)
        session.flush()
        after = _row_to_dict(obj)
        session.commit()
        session.refresh(obj)
        session.expunge(obj)

    _log_change("UPDATE", "adventures", adventure_id, actor, before, after)
    return obj


def set_adventure_visibility(
    engine, adventure_id: str, *, actor: UserIdentity, is_public: bool
) -> Adventure | None:
    return update_adventure(engine, adventure_id, actor=actor, is_public=is_public)


def delete_adventure(engine, adventure_id: str, *, actor: UserIdentity) -> bool:
    """Delete an adventure and (by cascade) its participant rows."""
    _require(actor, can_delete_adventure, Permission.DELETE_ADVENTURE)

    with Session(engine) as session:
        obj = session.get(Adventure, adventure_id)
        if obj is None:
            return False
        before = _row_to_dict(obj)
        session.delete(obj)
        session.commit()

    _log_change("DELETE", "adventures", adventure_id, actor, before, None)
    return True
