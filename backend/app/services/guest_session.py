"""Routes content created by guests into the device store instead of the backend."""
import logging
from typing import Optional

from app.core.errors import StorageWriteError
from app.core.responses import ResponseMessages
from app.schemas.guest_schemas import (
    CaptureOutcome,
    PendingAction,
    SaveWorkChoice,
    SaveWorkResolution,
)
from app.services.pending_store import PendingActionStore
from app.services.replayer import expand_action
from app.services.session import SessionProvider

logger = logging.getLogger(__name__)

SIGN_IN_ROUTE = "/(auth)/signin"
SIGN_UP_ROUTE = "/(auth)/signup"


class GuestSessionCoordinator:
    """Decides, per save attempt, whether content goes to the backend or the store."""

    def __init__(self, store: PendingActionStore, session_provider: SessionProvider):
        self.store = store
        self.session = session_provider

    async def is_guest(self) -> bool:
        # Asked on every save attempt; OAuth may have completed since the last one
        return not await self.session.is_authenticated()

    async def capture_and_prompt(self, action: PendingAction) -> CaptureOutcome:
        """
        Save the action locally, then tell the screen to show the save-work prompt.

        The prompt is shown even when the local write failed so the guest can
        still sign in right away; the outcome says the copy was not kept.

        Raises:
            ValidationError: The payload cannot be turned into backend records.
        """
        expand_action(action)

        try:
            stored = await self.store.save(action)
        except StorageWriteError as exc:
            logger.error(
                f"Guest capture of {action.kind.value} from '{action.target_screen}' "
                f"was not persisted; content may be lost: {exc.message}"
            )
            return CaptureOutcome(
                captured=True,
                is_guest=True,
                persisted=False,
                show_save_work_modal=True,
                message=ResponseMessages.SAVE_FAILED_LOCALLY,
                action=action,
            )

        return CaptureOutcome(
            captured=True,
            is_guest=True,
            persisted=True,
            show_save_work_modal=True,
            message=ResponseMessages.SAVED_LOCALLY,
            action=stored,
        )

    async def intercept(self, action: PendingAction) -> Optional[CaptureOutcome]:
        """Capture for guests; None tells a signed-in caller to create it normally."""
        if not await self.is_guest():
            return None
        return await self.capture_and_prompt(action)

    async def resolve_prompt(self, choice: SaveWorkChoice) -> SaveWorkResolution:
        """Apply the guest's answer to the save-work prompt."""
        if choice == SaveWorkChoice.SKIP:
            # Dismissing keeps the data; the form is refilled when the guest returns
            latest = await self.store.load()
            screen = latest.target_screen if latest else None
            if screen:
                await self.store.raise_prefill_signal(screen)
            logger.info(f"Save-work prompt skipped; prefill raised for {screen!r}")
            return SaveWorkResolution(choice=choice, prefill_screen=screen)

        if choice in (SaveWorkChoice.SIGN_IN, SaveWorkChoice.SIGN_UP):
            await self.store.mark_save_work_entry()
            route = SIGN_IN_ROUTE if choice == SaveWorkChoice.SIGN_IN else SIGN_UP_ROUTE
            return SaveWorkResolution(choice=choice, next_route=route)

        # Discard drops pending content but keeps mood entries and mode selection
        removed = await self.store.clear()
        logger.info(f"Guest discarded {removed} pending action(s)")
        return SaveWorkResolution(choice=choice, discarded=True)
