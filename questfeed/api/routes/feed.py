"""
questfeed.api.routes.feed — Feed, submission check & capability endpoints
==========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from questfeed.api.deps import get_content_service, get_session_context
from questfeed.engine.filtering import FeedQuery
from questfeed.engine.policy import capability_map
from questfeed.services.content_service import ContentService, SubmissionRejected
from questfeed.services.session import SessionContext

router = APIRouter(tags=["feed"])


class SubmissionCheck(BaseModel):
    adventures: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# GET /feed/posts
# ---------------------------------------------------------------------------
@router.get("/feed/posts")
async def list_feed_posts(
    search: str = Query(""),
    tag: str = Query(""),
    adventure_id: str | None = Query(None),
    service: ContentService = Depends(get_content_service),
):
    """Posts the caller may see, newest first, with filter stats."""
    page = await service.feed_posts(
        FeedQuery(
            search=search,
            search_fields=service.search_fields,
            tag=tag,
            adventure_id=adventure_id,
        )
    )
    return page.to_dict()


# ---------------------------------------------------------------------------
# POST /posts/check
# ---------------------------------------------------------------------------
@router.post("/posts/check")
async def check_submission(
    body: SubmissionCheck,
    service: ContentService = Depends(get_content_service),
):
    """Run the submission policy for the selected adventures; no write."""
    if not service.session.is_authenticated:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    try:
        decision = await service.validate_submission(body.adventures)
    except SubmissionRejected as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, exc.to_detail())
    return {"can_post": decision.can_post, "reason": decision.reason}


# ---------------------------------------------------------------------------
# GET /permissions/me
# ---------------------------------------------------------------------------
@router.get("/permissions/me")
def my_permissions(session: SessionContext = Depends(get_session_context)):
    """Capability snapshot for the current identity (anonymous allowed)."""
    identity = session.identity
    return {
        "user_id": identity.id or None,
        "role": identity.role if identity.is_authenticated else None,
        "is_authenticated": identity.is_authenticated,
        "capabilities": capability_map(identity, session.legacy),
    }
