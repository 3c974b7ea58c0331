"""Guest capture router: save-work prompt, prefill and device-local extras."""
import logging
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.errors import NotFoundError
from app.core.responses import MessageResponse, ResponseMessages
from app.dependencies import (
    get_coordinator,
    get_pending_store,
    get_prefill_restorer,
)
from app.schemas.guest_schemas import (
    CaptureOutcome,
    GuestStatusResponse,
    MoodEntry,
    PendingAction,
    PendingActionCreate,
    PrefillResponse,
    SaveWorkResolution,
    SaveWorkResolveRequest,
    SensoryModeUpdate,
)
from app.services import (
    GuestSessionCoordinator,
    PendingActionStore,
    PrefillRestorer,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status", response_model=GuestStatusResponse)
async def get_status(
    coordinator: Annotated[GuestSessionCoordinator, Depends(get_coordinator)],
    store: Annotated[PendingActionStore, Depends(get_pending_store)],
):
    """Whether the user is a guest and what is waiting on this device."""
    actions = await store.load_all()
    mood_entries = await store.load_mood_entries()

    return GuestStatusResponse(
        is_guest=await coordinator.is_guest(),
        has_unsaved_data=await store.has_unsaved_data(),
        pending_kinds=[a.kind for a in actions],
        mood_entry_count=len(mood_entries),
        sensory_mode=await store.load_mode_selection(),
        last_saved_at=await store.get_last_saved(),
    )


@router.post("/actions", response_model=CaptureOutcome)
async def capture_action(
    data: PendingActionCreate,
    coordinator: Annotated[GuestSessionCoordinator, Depends(get_coordinator)],
):
    """
    Save attempt from a capture screen.

    Guests get their content stored on the device and are asked to save
    their work. Signed-in callers get ``captured=false`` and create the
    record themselves. Content that could never be replayed is rejected
    with 422 before it is stored.
    """
    action = PendingAction.from_create(data)
    outcome = await coordinator.intercept(action)
    if outcome is None:
        return CaptureOutcome(captured=False, is_guest=False)
    return outcome


@router.get("/actions", response_model=List[PendingAction])
async def list_actions(
    store: Annotated[PendingActionStore, Depends(get_pending_store)],
):
    """Pending actions, oldest first."""
    return await store.load_all()


@router.get("/actions/{action_id}", response_model=PendingAction)
async def get_action(
    action_id: UUID,
    store: Annotated[PendingActionStore, Depends(get_pending_store)],
):
    action = await store.get(action_id)
    if action is None:
        raise NotFoundError(resource="pending_action", identifier=str(action_id))
    return action


@router.delete("/actions", response_model=MessageResponse)
async def discard_actions(
    store: Annotated[PendingActionStore, Depends(get_pending_store)],
    expected_version: Optional[int] = Query(None, ge=0),
):
    """Drop pending actions, optionally only those up to ``expected_version``."""
    removed = await store.clear(expected_version=expected_version)
    logger.info(f"Discarded {removed} pending action(s)")
    return MessageResponse(message=ResponseMessages.DISCARDED)


@router.post("/save-work/resolve", response_model=SaveWorkResolution)
async def resolve_save_work(
    data: SaveWorkResolveRequest,
    coordinator: Annotated[GuestSessionCoordinator, Depends(get_coordinator)],
):
    """Apply the guest's answer to the save-work prompt."""
    return await coordinator.resolve_prompt(data.choice)


@router.get("/prefill/{screen_id}", response_model=PrefillResponse)
async def get_prefill(
    screen_id: str,
    restorer: Annotated[PrefillRestorer, Depends(get_prefill_restorer)],
):
    """Form values to restore when ``screen_id`` opens."""
    snapshot = await restorer.get_prefill_for(screen_id)
    return PrefillResponse(
        screen_id=screen_id,
        show=snapshot is not None and await restorer.should_show(screen_id),
        form_snapshot=snapshot,
    )


@router.post("/prefill/consume", response_model=MessageResponse)
async def consume_prefill(
    restorer: Annotated[PrefillRestorer, Depends(get_prefill_restorer)],
):
    await restorer.consume_prefill_signal()
    return MessageResponse(message=ResponseMessages.PREFILL_CONSUMED)


@router.post("/mood-entries", response_model=MessageResponse)
async def add_mood_entry(
    entry: MoodEntry,
    store: Annotated[PendingActionStore, Depends(get_pending_store)],
):
    await store.save_mood_entry(entry)
    return MessageResponse(message=ResponseMessages.SAVED_LOCALLY)


@router.put("/sensory-mode", response_model=MessageResponse)
async def set_sensory_mode(
    data: SensoryModeUpdate,
    store: Annotated[PendingActionStore, Depends(get_pending_store)],
):
    await store.save_mode_selection(data.mode)
    return MessageResponse(message=ResponseMessages.SAVED_LOCALLY)
