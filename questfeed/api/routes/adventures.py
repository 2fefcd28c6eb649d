"""
questfeed.api.routes.adventures — Adventure listing & admin mutations
======================================================================

Reads go through :class:`ContentService` (policy-filtered).  Writes go
through :mod:`questfeed.services.admin_service`, which refuses non-admins
before any database work.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from questfeed.api.deps import (
    get_content_service,
    get_engine,
    require_authenticated,
    run_admin,
)
from questfeed.engine.filtering import FeedQuery
from questfeed.services import admin_service
from questfeed.services.content_service import ContentService
from questfeed.services.document_store import adventure_doc, participant_doc
from questfeed.services.session import SessionContext

router = APIRouter(prefix="/adventures", tags=["adventures"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AdventureCreate(BaseModel):
    title: str
    description: str | None = None
    is_public: bool = False
    status: str = "active"


class AdventureUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    is_public: bool | None = None
    status: str | None = None


class ParticipantAdd(BaseModel):
    user_id: str


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("")
async def list_adventures(
    search: str = Query(""),
    status: str = Query("all"),
    service: ContentService = Depends(get_content_service),
):
    """Adventures visible to the caller.  ``status`` only narrows for admins."""
    page = await service.adventures(
        FeedQuery(
            search=search,
            search_fields=service.adventure_search_fields,
            status=status,
        )
    )
    return page.to_dict()


@router.get("/{adventure_id}")
async def get_adventure(
    adventure_id: str,
    service: ContentService = Depends(get_content_service),
):
    adventure = await service.adventure(adventure_id)
    if adventure is None:
        raise HTTPException(404, "Adventure not found")
    return adventure


# ---------------------------------------------------------------------------
# Adventure CRUD (admin)
# ---------------------------------------------------------------------------
@router.post("", status_code=201)
async def create_adventure(
    body: AdventureCreate,
    session: SessionContext = Depends(require_authenticated),
    engine: Engine = Depends(get_engine),
):
    row = await run_admin(
        admin_service.create_adventure,
        engine,
        actor=session.identity,
        title=body.title,
        description=body.description,
        is_public=body.is_public,
        status=body.status,
    )
    return adventure_doc(row)


@router.patch("/{adventure_id}")
async def update_adventure(
    adventure_id: str,
    body: AdventureUpdate,
    session: SessionContext = Depends(require_authenticated),
    engine: Engine = Depends(get_engine),
):
    changes = body.model_dump(exclude_none=True)
    row = await run_admin(
        admin_service.update_adventure, engine, adventure_id,
        actor=session.identity, **changes,
    )
    if row is None:
        raise HTTPException(404, "Adventure not found")
    return adventure_doc(row)


@router.delete("/{adventure_id}")
async def delete_adventure(
    adventure_id: str,
    session: SessionContext = Depends(require_authenticated),
    engine: Engine = Depends(get_engine),
):
    deleted = await run_admin(
        admin_service.delete_adventure, engine, adventure_id, actor=session.identity
    )
    if not deleted:
        raise HTTPException(404, "Adventure not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Participants (admin)
# ---------------------------------------------------------------------------
@router.post("/{adventure_id}/participants", status_code=201)
async def add_participant(
    adventure_id: str,
    body: ParticipantAdd,
    session: SessionContext = Depends(require_authenticated),
    engine: Engine = Depends(get_engine),
):
    row = await run_admin(
        admin_service.add_participant,
        engine,
        actor=session.identity,
        adventure_id=adventure_id,
        user_id=body.user_id,
    )
    if row is None:
        raise HTTPException(404, "Adventure or user not found")
    return participant_doc(row)


@router.delete("/{adventure_id}/participants/{user_id}")
async def remove_participant(
    adventure_id: str,
    user_id: str,
    session: SessionContext = Depends(require_authenticated),
    engine: Engine = Depends(get_engine),
):
    removed = await run_admin(
        admin_service.remove_participant,
        engine,
        actor=session.identity,
        adventure_id=adventure_id,
        user_id=user_id,
    )
    if not removed:
        raise HTTPException(404, "Participant not found")
    return {"removed": True}
