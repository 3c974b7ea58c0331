"""Pytest configuration and fixtures."""
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.models  # noqa: F401  registers LocalEntry on Base.metadata
from app import main as app_main
from app.main import app
from app.database import Base
from app.dependencies import (
    get_coordinator,
    get_pending_store,
    get_prefill_restorer,
    get_replayer,
    get_session_provider,
)
from app.services import (
    GuestSessionCoordinator,
    PendingActionStore,
    PrefillRestorer,
    TokenSessionProvider,
)

from tests.guest_helpers import RecordingRecords, make_replayer


@pytest.fixture
def session_factory(tmp_path):
    """Fresh SQLite local store per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'local.db'}",
        poolclass=NullPool,
    )

    async def init_db():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_db())
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def store(session_factory):
    return PendingActionStore(session_factory=session_factory, namespace="test", write_attempts=2)


@pytest.fixture
def records():
    return RecordingRecords()


@pytest.fixture
def token_session():
    return TokenSessionProvider()


@pytest.fixture
def client(store, records, token_session):
    """Test client wired to the per-test store and recording backend."""
    # Tables come from the session_factory fixture, not app startup
    app_main.settings.auto_create_tables = False
    # Avoid Supabase JWKS network calls during tests; use legacy JWT flow.
    app_main.settings.supabase_url = ""
    app_main.settings.allow_legacy_jwt = True

    coordinator = GuestSessionCoordinator(store, token_session)
    restorer = PrefillRestorer(store)
    replayer = make_replayer(store, token_session, records, session_wait_attempts=1)

    app.dependency_overrides[get_pending_store] = lambda: store
    app.dependency_overrides[get_session_provider] = lambda: token_session
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_prefill_restorer] = lambda: restorer
    app.dependency_overrides[get_replayer] = lambda: replayer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
