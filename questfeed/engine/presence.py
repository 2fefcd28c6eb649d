"""
questfeed.engine.presence — Online classification from ``lastSeen``
====================================================================

Pure functions of a timestamp and "now".  The heartbeat that keeps
``lastSeen`` fresh lives in :mod:`questfeed.services.presence_tracker`;
this module only interprets the value.

Tiers (minutes since ``lastSeen``)::

    ≤ 2          now        online   "online now"
    < threshold  recent     online   "online"
    ≤ 60         away       offline  "last seen 17m ago"
    ≤ 1440       idle       offline  "last seen 3h ago"
    > 1440       long_gone  offline  "last seen 4d ago"
    (none)       never      offline  "never seen"
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from questfeed.engine.documents import doc_get, parse_timestamp

__all__ = [
    "DEFAULT_ONLINE_THRESHOLD",
    "PresenceStatus",
    "PresenceTier",
    "classify_presence",
    "filter_by_presence",
    "format_last_seen",
    "sort_by_presence",
]

DEFAULT_ONLINE_THRESHOLD = timedelta(minutes=5)
_ONLINE_NOW = timedelta(minutes=2)
_HOUR = timedelta(hours=1)
_DAY = timedelta(days=1)


def _now_utc(now: datetime | None) -> datetime:
    """Naive *now* values are taken as UTC, like stored timestamps."""
    return parse_timestamp(now) or datetime.now(UTC)


class PresenceTier(enum.StrEnum):
    NOW = "now"
    RECENT = "recent"
    AWAY = "away"
    IDLE = "idle"
    LONG_GONE = "long_gone"
    NEVER = "never"


@dataclass(frozen=True, slots=True)
class PresenceStatus:
    is_online: bool
    label: str
    tier: PresenceTier

    def to_dict(self) -> dict[str, Any]:
        return {"is_online": self.is_online, "label": self.label, "tier": self.tier.value}


def classify_presence(
    last_seen: datetime | str | None,
    now: datetime | None = None,
    threshold: timedelta = DEFAULT_ONLINE_THRESHOLD,
) -> PresenceStatus:
    """Online iff ``now - last_seen`` is below *threshold*.

    A ``lastSeen`` in the future (clock skew between devices) counts as
    age zero.
    """
    seen = parse_timestamp(last_seen)
    if seen is None:
        return PresenceStatus(False, "never seen", PresenceTier.NEVER)

    age = max(_now_utc(now) - seen, timedelta(0))

    if age < threshold:
        if age <= _ONLINE_NOW:
            return PresenceStatus(True, "online now", PresenceTier.NOW)
        return PresenceStatus(True, "online", PresenceTier.RECENT)

    minutes = int(age.total_seconds() // 60)
    if age <= _HOUR:
        return PresenceStatus(False, f"last seen {minutes}m ago", PresenceTier.AWAY)
    if age <= _DAY:
        return PresenceStatus(
            False, f"last seen {minutes // 60}h ago", PresenceTier.IDLE
        )
    return PresenceStatus(
        False, f"last seen {minutes // 1440}d ago", PresenceTier.LONG_GONE
    )


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'} ago"


def format_last_seen(
    last_seen: datetime | str | None, now: datetime | None = None
) -> str:
    """Long-form relative label: ``"just now"``, ``"3 minutes ago"``, …"""
    seen = parse_timestamp(last_seen)
    if seen is None:
        return "never seen"
    seconds = max((_now_utc(now) - seen).total_seconds(), 0)
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return _plural(int(seconds // 60), "minute")
    if seconds < 86400:
        return _plural(int(seconds // 3600), "hour")
    return _plural(int(seconds // 86400), "day")


def _is_online(user: Any, now: datetime, threshold: timedelta) -> bool:
    return classify_presence(doc_get(user, "lastSeen"), now, threshold).is_online


def sort_by_presence(
    users: Iterable[Any],
    now: datetime | None = None,
    threshold: timedelta = DEFAULT_ONLINE_THRESHOLD,
) -> list[Any]:
    """Online users first, then most recently seen; never-seen users last."""
    now = _now_utc(now)

    def key(user: Any) -> tuple[int, int, float]:
        seen = parse_timestamp(doc_get(user, "lastSeen"))
        online = 0 if _is_online(user, now, threshold) else 1
        if seen is None:
            return (online, 1, 0.0)
        return (online, 0, -seen.timestamp())

    return sorted(users, key=key)


def filter_by_presence(
    users: Iterable[Any],
    which: str = "all",
    now: datetime | None = None,
    threshold: timedelta = DEFAULT_ONLINE_THRESHOLD,
) -> list[Any]:
    """Keep ``online``, ``offline`` (never-seen included) or ``all`` users."""
    now = _now_utc(now)
    if which == "online":
        return [u for u in users if _is_online(u, now, threshold)]
    if which == "offline":
        return [u for u in users if not _is_online(u, now, threshold)]
    return list(users)
