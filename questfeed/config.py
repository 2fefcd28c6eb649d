"""
questfeed.config — YAML Configuration Loader
=============================================

**Why this file exists:**
This module reads ``config.yaml`` for settings that are not secrets
(community identity, presence timings, search defaults, and the legacy
allow-lists).  Secrets and connection strings (``JWT_SECRET``,
``DATABASE_URL``) stay in the environment.

Usage::

    from questfeed.config import load_config

    cfg = load_config()                   # reads ./config.yaml by default
    print(cfg.presence_interval_minutes)  # 2
    print(cfg.legacy_admin_ids)           # frozenset({...})
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_SEARCH_FIELDS: tuple[str, ...] = ("title", "description", "captions", "tags")


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class QuestfeedConfig:
    """Immutable configuration loaded from ``config.yaml``.

    ``legacy_admin_ids`` and ``legacy_publisher_ids`` are a migration shim:
    accounts created before the ``role`` field existed are recognised by
    ID.  Empty them once every account carries a role.
    """

    # Identity
    community_name: str

    # Presence
    presence_interval_minutes: int = 2
    presence_throttle_seconds: int = 60
    online_threshold_minutes: int = 5

    # Filtering
    search_fields: tuple[str, ...] = DEFAULT_SEARCH_FIELDS

    # Legacy allow-lists
    legacy_admin_ids: frozenset[str] = field(default_factory=frozenset)
    legacy_publisher_ids: frozenset[str] = field(default_factory=frozenset)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> QuestfeedConfig:
    """Read *path* and return a :class:`QuestfeedConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    presence = raw.get("presence") or {}
    legacy = raw.get("legacy") or {}

    return QuestfeedConfig(
        community_name=raw["community_name"],
        presence_interval_minutes=int(presence.get("interval_minutes", 2)),
        presence_throttle_seconds=int(presence.get("throttle_seconds", 60)),
        online_threshold_minutes=int(presence.get("online_threshold_minutes", 5)),
        search_fields=tuple(raw.get("search_fields") or DEFAULT_SEARCH_FIELDS),
        legacy_admin_ids=frozenset(str(i) for i in legacy.get("admin_ids") or []),
        legacy_publisher_ids=frozenset(
            str(i) for i in legacy.get("publisher_ids") or []
        ),
    )
