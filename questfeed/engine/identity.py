"""
questfeed.engine.identity — Account → UserIdentity normalization
=================================================================

Every policy decision takes a :class:`UserIdentity`, never a raw account
document.  :func:`resolve_identity` is the single place where the stored
shape (``$id``, optional ``role``, ISO ``lastSeen``) is mapped onto it.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from questfeed.database.models import Role
from questfeed.engine.documents import doc_get, doc_id, parse_timestamp

__all__ = ["ANONYMOUS", "LegacyAccess", "UserIdentity", "resolve_identity"]


# ---------------------------------------------------------------------------
# Legacy allow-lists — migration shim
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LegacyAccess:
    """ID allow-lists for accounts that predate the ``role`` field.

    ``admin_ids`` is consulted only when an account has no usable role.
    ``publisher_ids`` grants post creation to non-admins.  Both are
    injected from config; an empty instance disables the shim.
    """

    admin_ids: frozenset[str] = field(default_factory=frozenset)
    publisher_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_ids(
        cls,
        admin_ids: Iterable[str] = (),
        publisher_ids: Iterable[str] = (),
    ) -> LegacyAccess:
        return cls(
            admin_ids=frozenset(str(i) for i in admin_ids),
            publisher_ids=frozenset(str(i) for i in publisher_ids),
        )


# ---------------------------------------------------------------------------
# UserIdentity
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class UserIdentity:
    """Role-bearing identity of the current (or any) user."""

    id: str
    name: str = ""
    username: str = ""
    email: str = ""
    role: Role = Role.USER
    last_seen: datetime | None = None
    is_authenticated: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


ANONYMOUS = UserIdentity(id="", is_authenticated=False)


def _coerce_role(raw: Any) -> Role | None:
    if isinstance(raw, Role):
        return raw
    if isinstance(raw, str):
        try:
            return Role(raw.strip().lower())
        except ValueError:
            return None
    return None


def resolve_identity(
    raw_account: Any,
    legacy: LegacyAccess | None = None,
) -> UserIdentity:
    """Map a raw account document onto a :class:`UserIdentity`.

    A stored role always wins.  Without one, the legacy admin allow-list
    decides, defaulting to ``user``.  ``None``/empty input (and documents
    without an ID) resolve to :data:`ANONYMOUS`; this never raises.
    """
    if not raw_account:
        return ANONYMOUS

    user_id = doc_id(raw_account)
    if not user_id:
        return ANONYMOUS

    role = _coerce_role(doc_get(raw_account, "role"))
    if role is None:
        legacy = legacy or LegacyAccess()
        role = Role.ADMIN if user_id in legacy.admin_ids else Role.USER

    return UserIdentity(
        id=user_id,
        name=str(doc_get(raw_account, "name") or ""),
        username=str(doc_get(raw_account, "username") or ""),
        email=str(doc_get(raw_account, "email") or ""),
        role=role,
        last_seen=parse_timestamp(doc_get(raw_account, "lastSeen")),
    )
