"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of questfeed.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, null  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from questfeed.config import QuestfeedConfig  # noqa: E402
from questfeed.database.models import Adventure, AdventureParticipant, Base, Post, User  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Questfeed tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def test_config() -> QuestfeedConfig:
    return QuestfeedConfig(
        community_name="Test Realm",
        legacy_admin_ids=frozenset({"legacy-admin"}),
        legacy_publisher_ids=frozenset({"publisher"}),
    )


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------
@pytest.fixture
def seeded_engine(db_engine: Engine) -> Engine:
    """Five accounts, three adventures and four posts.

    - ``adv-public``   active + public
    - ``adv-private``  active, private; ``alice`` participates
    - ``adv-closed``   inactive + public; ``alice`` participates
    """
    with Session(db_engine) as session:
        session.add_all([
            User(id="admin", name="Ada", username="ada", email="ada@example.org", role="admin"),
            User(id="alice", name="Alice", username="alice", email="alice@example.org", role="user"),
            User(id="bob", name="Bob", username="bob", email="bob@example.org", role="user"),
            # null() bypasses the column default; legacy rows carry no role.
            User(id="legacy-admin", name="Old", username="old", email="old@example.org", role=null()),
            User(id="publisher", name="Pub", username="pub", email="pub@example.org", role="user"),
        ])
        session.add_all([
            Adventure(id="adv-public", title="Dragão Hunt", status="active",
                      is_public=True, created_by="admin"),
            Adventure(id="adv-private", title="Secret Crypt", status="active",
                      is_public=False, created_by="admin"),
            Adventure(id="adv-closed", title="Old Keep", status="inactive",
                      is_public=True, created_by="admin"),
        ])
        session.flush()
        session.add_all([
            AdventureParticipant(adventure_id="adv-private", user_id="alice", added_by="admin"),
            AdventureParticipant(adventure_id="adv-closed", user_id="alice", added_by="admin"),
        ])
        session.add_all([
            Post(id="p-public", creator_id="bob", title="Hello tavern",
                 captions=["first light"], tags=["intro"], adventures=[]),
            Post(id="p-open", creator_id="admin", title="Dragon sighted",
                 captions=[], tags=["dragon"], adventures=["adv-public"]),
            Post(id="p-private", creator_id="alice", title="Crypt map",
                 captions=["do not share"], tags=["map"], adventures=["adv-private"]),
            Post(id="p-closed", creator_id="admin", title="Keep closed",
                 captions=[], tags=[], adventures=["adv-closed"]),
        ])
        session.commit()
    return db_engine


# ---------------------------------------------------------------------------
# Tokens & client
# ---------------------------------------------------------------------------
def make_token(sub: str = "alice") -> str:
    """Create a bearer JWT for *sub*.  Usable as a plain factory function."""
    import jwt

    from questfeed.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def auth_header():
    def _header(sub: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(sub)}"}
    return _header


@pytest.fixture
def client(seeded_engine: Engine, test_config: QuestfeedConfig):
    """FastAPI TestClient wired to the seeded SQLite engine."""
    from fastapi.testclient import TestClient

    from questfeed.api.deps import _heartbeat_gates, get_config, get_engine
    from questfeed.api.main import app

    app.dependency_overrides[get_engine] = lambda: seeded_engine
    app.dependency_overrides[get_config] = lambda: test_config
    _heartbeat_gates.cache_clear()
    # No `with` block: the lifespan would build the real PostgreSQL engine.
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
