"""
Process-wide service instances for the routers.

The app runs next to a single device, so the session, store and replayer are
shared by every request. Tests swap them through ``app.dependency_overrides``.
"""
from functools import lru_cache

from app.services import (
    AuthTransitionReplayer,
    GuestSessionCoordinator,
    PendingActionStore,
    PrefillRestorer,
    RecordsClient,
    TokenSessionProvider,
)


@lru_cache()
def get_pending_store() -> PendingActionStore:
    return PendingActionStore()


@lru_cache()
def get_session_provider() -> TokenSessionProvider:
    return TokenSessionProvider()


@lru_cache()
def get_records_client() -> RecordsClient:
    return RecordsClient(session_provider=get_session_provider())


@lru_cache()
def get_coordinator() -> GuestSessionCoordinator:
    return GuestSessionCoordinator(get_pending_store(), get_session_provider())


@lru_cache()
def get_prefill_restorer() -> PrefillRestorer:
    return PrefillRestorer(get_pending_store())


@lru_cache()
def get_replayer() -> AuthTransitionReplayer:
    return AuthTransitionReplayer(
        get_pending_store(),
        get_session_provider(),
        get_records_client(),
    )
