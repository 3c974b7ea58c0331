"""Service layer for the guest capture and replay workflow."""
from app.services.pending_store import PendingActionStore
from app.services.session import SessionProvider, TokenSessionProvider
from app.services.records import RecordsClient
from app.services.guest_session import GuestSessionCoordinator
from app.services.prefill import PrefillRestorer
from app.services.replayer import AuthTransitionReplayer, expand_action

__all__ = [
    "PendingActionStore",
    "SessionProvider",
    "TokenSessionProvider",
    "RecordsClient",
    "GuestSessionCoordinator",
    "PrefillRestorer",
    "AuthTransitionReplayer",
    "expand_action",
]
