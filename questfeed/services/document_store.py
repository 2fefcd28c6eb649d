"""
questfeed.services.document_store — Document-store contract + SQL adapter
==========================================================================

The policy core consumes the store through :class:`DocumentStore`, a
small async protocol returning plain mapping documents.  Every call
either resolves or raises :class:`DocumentStoreError`; retry policy is
the caller's business (there is none in this package).

:class:`SqlDocumentStore` implements the protocol over the SQLAlchemy
models, pushing each blocking query through :func:`run_db`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol, TypeVar

from sqlalchemy import Engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from questfeed.database.engine import get_session, run_db
from questfeed.database.models import Adventure, AdventureParticipant, Post, User
from questfeed.engine.documents import parse_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

Document = dict[str, Any]


class DocumentStoreError(Exception):
    """Transport or storage failure talking to the document store."""


class DocumentStore(Protocol):
    async def list_adventures(self) -> list[Document]: ...

    async def list_adventure_participants(
        self, adventure_id: str | None = None, user_id: str | None = None
    ) -> list[Document]: ...

    async def list_posts(
        self, adventure_ids: Iterable[str] | None = None, public_only: bool = False
    ) -> list[Document]: ...

    async def get_user(self, user_id: str) -> Document | None: ...

    async def update_user_timestamp(self, user_id: str, iso8601: str) -> None: ...

    async def update_document(
        self, collection: str, doc_id: str, data: dict[str, Any]
    ) -> Document: ...


# ---------------------------------------------------------------------------
# Row → document mapping
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def user_doc(u: User) -> Document:
    return {
        "$id": u.id,
        "name": u.name,
        "username": u.username,
        "email": u.email,
        "role": u.role,
        "lastSeen": _iso(u.last_seen),
        "$createdAt": _iso(u.created_at),
    }


def adventure_doc(a: Adventure) -> Document:
    return {
        "$id": a.id,
        "title": a.title,
        "description": a.description,
        "status": a.status,
        "isPublic": bool(a.is_public),
        "createdBy": a.created_by,
        "$createdAt": _iso(a.created_at),
        "$updatedAt": _iso(a.updated_at),
    }


def participant_doc(p: AdventureParticipant) -> Document:
    return {
        "$id": p.id,
        "adventureId": p.adventure_id,
        "userId": p.user_id,
        "addedBy": p.added_by,
        "$createdAt": _iso(p.created_at),
    }


def post_doc(p: Post) -> Document:
    creator = p.creator
    return {
        "$id": p.id,
        "creator": {
            "$id": p.creator_id,
            "name": creator.name if creator else None,
            "username": creator.username if creator else None,
        },
        "title": p.title,
        "captions": p.captions,
        "tags": p.tags,
        "adventures": p.adventures,
        "likes": p.likes,
        "$createdAt": _iso(p.created_at),
    }


# Writable fields per collection: document key → (model, column attribute)
_UPDATABLE: dict[str, tuple[type, dict[str, str]]] = {
    "users": (
        User,
        {"name": "name", "email": "email", "role": "role", "lastSeen": "last_seen"},
    ),
    "adventures": (
        Adventure,
        {
            "title": "title",
            "description": "description",
            "status": "status",
            "isPublic": "is_public",
        },
    ),
    "posts": (
        Post,
        {
            "title": "title",
            "captions": "captions",
            "tags": "tags",
            "adventures": "adventures",
            "likes": "likes",
        },
    ),
}

_DOC_MAPPERS: dict[type, Callable[[Any], Document]] = {
    User: user_doc,
    Adventure: adventure_doc,
    Post: post_doc,
}


# ---------------------------------------------------------------------------
# SQL-backed store
# ---------------------------------------------------------------------------
class SqlDocumentStore:
    """:class:`DocumentStore` over the Questfeed SQL schema."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await run_db(func, *args)
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"{func.__name__} failed: {exc}") from exc

    # -- reads --------------------------------------------------------------
    def _list_adventures(self) -> list[Document]:
        with Session(self.engine) as session:
            rows = session.scalars(select(Adventure)).all()
            return [adventure_doc(a) for a in rows]

    def _list_participants(
        self, adventure_id: str | None, user_id: str | None
    ) -> list[Document]:
        query = select(AdventureParticipant)
        if adventure_id is not None:
            query = query.where(AdventureParticipant.adventure_id == adventure_id)
        if user_id is not None:
            query = query.where(AdventureParticipant.user_id == user_id)
        with Session(self.engine) as session:
            return [participant_doc(p) for p in session.scalars(query).all()]

    def _list_posts(
        self, adventure_ids: frozenset[str] | None, public_only: bool
    ) -> list[Document]:
        query = (
            select(Post)
            .options(selectinload(Post.creator))
            .order_by(Post.created_at.desc())
        )
        with Session(self.engine) as session:
            docs = [post_doc(p) for p in session.scalars(query).all()]
        # JSON list membership is filtered here to stay portable across dialects.
        if public_only:
            return [d for d in docs if d["adventures"] in (None, [])]
        if adventure_ids is not None:
            return [
                d for d in docs
                if isinstance(d["adventures"], list)
                and any(a in adventure_ids for a in d["adventures"])
            ]
        return docs

    def _get_user(self, user_id: str) -> Document | None:
        with Session(self.engine) as session:
            row = session.get(User, user_id)
            return user_doc(row) if row is not None else None

    async def list_adventures(self) -> list[Document]:
        return await self._call(self._list_adventures)

    async def list_adventure_participants(
        self, adventure_id: str | None = None, user_id: str | None = None
    ) -> list[Document]:
        return await self._call(self._list_participants, adventure_id, user_id)

    async def list_posts(
        self, adventure_ids: Iterable[str] | None = None, public_only: bool = False
    ) -> list[Document]:
        ids = frozenset(adventure_ids) if adventure_ids is not None else None
        return await self._call(self._list_posts, ids, public_only)

    async def get_user(self, user_id: str) -> Document | None:
        return await self._call(self._get_user, user_id)

    # -- writes -------------------------------------------------------------
    def _update_user_timestamp(self, user_id: str, iso8601: str) -> None:
        seen = parse_timestamp(iso8601)
        if seen is None:
            raise DocumentStoreError(f"Invalid timestamp: {iso8601!r}")
        with get_session(self.engine) as session:
            row = session.get(User, user_id)
            if row is None:
                raise DocumentStoreError(f"User not found: {user_id}")
            row.last_seen = seen

    def _update_document(
        self, collection: str, doc_id: str, data: dict[str, Any]
    ) -> Document:
        if collection not in _UPDATABLE:
            raise DocumentStoreError(f"Unknown collection: {collection!r}")
        model, fields = _UPDATABLE[collection]
        unknown = sorted(set(data) - set(fields))
        if unknown:
            raise DocumentStoreError(
                f"Fields not writable on {collection}: {', '.join(unknown)}"
            )
        with get_session(self.engine) as session:
            row = session.get(model, doc_id)
            if row is None:
                raise DocumentStoreError(f"{collection}/{doc_id} not found")
            for key, value in data.items():
                if key == "lastSeen":
                    value = parse_timestamp(value)
                setattr(row, fields[key], value)
            session.flush()
            return _DOC_MAPPERS[model](row)

    async def update_user_timestamp(self, user_id: str, iso8601: str) -> None:
        await self._call(self._update_user_timestamp, user_id, iso8601)

    async def update_document(
        self, collection: str, doc_id: str, data: dict[str, Any]
    ) -> Document:
        return await self._call(self._update_document, collection, doc_id, data)
