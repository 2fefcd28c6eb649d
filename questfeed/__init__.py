"""
Questfeed — Adventure-scoped community feed with role-based visibility
========================================================================
Members post into adventures (content scopes); what each member sees is
decided by a pure policy engine over their role, their adventure
memberships and each adventure's public/active flags.  A throttled
heartbeat keeps ``lastSeen`` fresh for online indicators.

Package layout::

    questfeed/
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # users, adventures, adventure_participants, posts
    ├── engine/
    │   ├── documents.py   # Field access over raw documents / ORM rows
    │   ├── identity.py    # Account → UserIdentity, legacy allow-lists
    │   ├── policy.py      # Visibility + capability decisions
    │   ├── membership.py  # Participant / public adventure ID sets
    │   ├── filtering.py   # Policy → search → tag → status → scope → sort
    │   └── presence.py    # lastSeen → online / "last seen" labels
    ├── services/
    │   ├── document_store.py   # Store protocol + SQL adapter
    │   ├── session.py          # Per-session identity context
    │   ├── content_service.py  # Feed, adventures, submission checks
    │   ├── admin_service.py    # Admin-only mutations
    │   └── presence_tracker.py # Throttled heartbeat state machine
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT → SessionContext, engine, config
        └── routes/        # Feed, adventures, users, presence
"""

__version__ = "0.1.0"
