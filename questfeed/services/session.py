"""
questfeed.services.session — Explicit per-session context
==========================================================

Holds the resolved identity of one logical session (one browser tab, one
API request) together with the injected legacy allow-lists.  Passed
explicitly to the content service and the presence tracker, so any number
of independent sessions can coexist in one process.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from questfeed.config import QuestfeedConfig
from questfeed.engine.identity import ANONYMOUS, LegacyAccess, UserIdentity, resolve_identity

logger = logging.getLogger(__name__)

SessionListener = Callable[["SessionContext"], None]


class SessionContext:
    """Identity holder with sign-in/sign-out notifications."""

    def __init__(
        self,
        identity: UserIdentity = ANONYMOUS,
        legacy: LegacyAccess | None = None,
    ) -> None:
        self.identity = identity
        self.legacy = legacy or LegacyAccess()
        self._listeners: list[SessionListener] = []

    @classmethod
    def from_config(cls, cfg: QuestfeedConfig) -> SessionContext:
        return cls(
            legacy=LegacyAccess(
                admin_ids=cfg.legacy_admin_ids,
                publisher_ids=cfg.legacy_publisher_ids,
            )
        )

    @property
    def is_authenticated(self) -> bool:
        return self.identity.is_authenticated and bool(self.identity.id)

    @property
    def user_id(self) -> str:
        return self.identity.id

    def subscribe(self, listener: SessionListener) -> None:
        """Call *listener* after every sign-in/sign-out."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def sign_in(self, raw_account: Any) -> UserIdentity:
        """Resolve *raw_account* and make it the current identity."""
        self.identity = resolve_identity(raw_account, self.legacy)
        logger.info(
            "Session identity set: %s (%s)",
            self.identity.id or "anonymous", self.identity.role,
        )
        self._notify()
        return self.identity

    def sign_out(self) -> None:
        self.identity = ANONYMOUS
        logger.info("Session signed out")
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
