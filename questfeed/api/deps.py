"""
questfeed.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from functools import lru_cache
from typing import Annotated, Any, TypeVar

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from questfeed.config import QuestfeedConfig, load_config
from questfeed.database.engine import create_db_engine, run_db
from questfeed.services.admin_service import PermissionDenied
from questfeed.services.content_service import ContentService
from questfeed.services.document_store import (
    DocumentStore,
    DocumentStoreError,
    SqlDocumentStore,
)
from questfeed.services.presence_tracker import HeartbeatGates
from questfeed.services.session import SessionContext

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "questfeed-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"

T = TypeVar("T")


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> QuestfeedConfig:
    return load_config()


def get_store(engine: Annotated[Engine, Depends(get_engine)]) -> DocumentStore:
    return SqlDocumentStore(engine)


@lru_cache(maxsize=1)
def _heartbeat_gates(throttle_seconds: int) -> HeartbeatGates:
    return HeartbeatGates(throttle_seconds)


def get_heartbeat_gates(
    cfg: Annotated[QuestfeedConfig, Depends(get_config)],
) -> HeartbeatGates:
    """Process-wide per-user throttle for ``POST /presence/heartbeat``."""
    return _heartbeat_gates(cfg.presence_throttle_seconds)


def _decode_subject(authorization: str) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return str(sub)


async def get_session_context(
    authorization: Annotated[str | None, Header()] = None,
    store: DocumentStore = Depends(get_store),
    cfg: QuestfeedConfig = Depends(get_config),
) -> SessionContext:
    """Resolve the caller into a :class:`SessionContext`.

    No ``Authorization`` header means an anonymous session.  A header that
    does not decode, or names an unknown user, is a 401.
    """
    session = SessionContext.from_config(cfg)
    if not authorization:
        return session

    user_id = _decode_subject(authorization)
    try:
        account = await store.get_user(user_id)
    except DocumentStoreError:
        logger.exception("Failed to load account %s", user_id)
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Account lookup failed")
    if account is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unknown user")

    session.sign_in(account)
    return session


def require_authenticated(
    session: Annotated[SessionContext, Depends(get_session_context)],
) -> SessionContext:
    if not session.is_authenticated:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return session


def get_content_service(
    session: Annotated[SessionContext, Depends(get_session_context)],
    store: DocumentStore = Depends(get_store),
    cfg: QuestfeedConfig = Depends(get_config),
) -> ContentService:
    return ContentService(store, session, search_fields=cfg.search_fields)


async def run_admin(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run an :mod:`admin_service` mutation off the loop; denial → 403."""
    try:
        return await run_db(func, *args, **kwargs)
    except PermissionDenied as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, str(exc))
    except ValueError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))
