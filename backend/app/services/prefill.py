"""Restores typed-but-unsynced form content when a capture screen is reopened."""
import logging
from typing import Any, Dict, Optional

from app.services.pending_store import PendingActionStore

logger = logging.getLogger(__name__)


class PrefillRestorer:
    """
    Reads form snapshots out of the store.

    Showing a prefill and consuming its signal never touch the pending action
    itself; only a successful replay removes that.
    """

    def __init__(self, store: PendingActionStore):
        self.store = store

    async def get_prefill_for(self, screen_id: str) -> Optional[Dict[str, Any]]:
        """Form values of the latest pending action captured on ``screen_id``."""
        for action in reversed(await self.store.load_all()):
            if action.target_screen == screen_id:
                return dict(action.form_snapshot)
        return None

    async def should_show(self, screen_id: str) -> bool:
        return await self.store.get_prefill_signal() == screen_id

    async def consume_prefill_signal(self) -> None:
        await self.store.clear_prefill_signal()
        logger.info("Prefill signal consumed")
