"""
questfeed.api.routes.users — Role administration
=================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import Engine

from questfeed.api.deps import get_engine, require_authenticated, run_admin
from questfeed.services import admin_service
from questfeed.services.document_store import user_doc
from questfeed.services.session import SessionContext

router = APIRouter(prefix="/users", tags=["users"])


class RoleUpdate(BaseModel):
    role: str


@router.patch("/{user_id}/role")
async def update_role(
    user_id: str,
    body: RoleUpdate,
    session: SessionContext = Depends(require_authenticated),
    engine: Engine = Depends(get_engine),
):
    """Change a user's role (admin only)."""
    user = await run_admin(
        admin_service.update_user_role,
        engine,
        actor=session.identity,
        user_id=user_id,
        role=body.role,
    )
    if user is None:
        raise HTTPException(404, "User not found")
    return user_doc(user)
