"""
questfeed.api.routes.presence — Heartbeat & online status
==========================================================

The browser-side tracker posts here; the per-user :class:`WriteGate`
applies the same throttle and in-flight rules server-side, so a chatty
client cannot turn every activity event into a database write.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from questfeed.api.deps import (
    get_config,
    get_heartbeat_gates,
    get_store,
    require_authenticated,
)
from questfeed.config import QuestfeedConfig
from questfeed.engine.documents import doc_get
from questfeed.engine.presence import classify_presence, format_last_seen
from questfeed.services.document_store import DocumentStore, DocumentStoreError
from questfeed.services.presence_tracker import HeartbeatGates, Trigger, write_heartbeat
from questfeed.services.session import SessionContext

router = APIRouter(prefix="/presence", tags=["presence"])


class Heartbeat(BaseModel):
    trigger: Trigger | None = None


@router.post("/heartbeat")
async def heartbeat(
    body: Heartbeat | None = None,
    session: SessionContext = Depends(require_authenticated),
    store: DocumentStore = Depends(get_store),
    gates: HeartbeatGates = Depends(get_heartbeat_gates),
):
    """Record activity; ``unload`` bypasses the throttle."""
    trigger = body.trigger if body else None
    written = await write_heartbeat(
        store,
        gates.gate_for(session.user_id),
        session.user_id,
        force=trigger is Trigger.UNLOAD,
    )
    return {"written": written}


@router.get("/{user_id}")
async def get_presence(
    user_id: str,
    _session: SessionContext = Depends(require_authenticated),
    store: DocumentStore = Depends(get_store),
    cfg: QuestfeedConfig = Depends(get_config),
):
    try:
        account = await store.get_user(user_id)
    except DocumentStoreError:
        raise HTTPException(503, "Presence lookup failed")
    if account is None:
        raise HTTPException(404, "User not found")

    last_seen = doc_get(account, "lastSeen")
    presence = classify_presence(
        last_seen, threshold=timedelta(minutes=cfg.online_threshold_minutes)
    )
    return {
        "user_id": user_id,
        "last_seen": last_seen,
        "last_seen_label": format_last_seen(last_seen),
        **presence.to_dict(),
    }
