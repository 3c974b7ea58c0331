"""Session router: sign-in handover, sign-out and guest work replay."""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from app.core.errors import AuthenticationError, ConflictError, ErrorCode
from app.core.responses import MessageResponse, ResponseMessages
from app.dependencies import get_replayer, get_session_provider
from app.schemas.guest_schemas import ReplayReport, ReplayState, SignedInRequest
from app.services import AuthTransitionReplayer, TokenSessionProvider

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/signed-in", response_model=ReplayReport)
async def signed_in(
    data: SignedInRequest,
    session: Annotated[TokenSessionProvider, Depends(get_session_provider)],
    replayer: Annotated[AuthTransitionReplayer, Depends(get_replayer)],
):
    """
    Called once sign-in or sign-up finishes.

    Stores the session, then replays any guest work into the new account.
    A replay that fails keeps the work on the device and is reported, not
    raised.
    """
    session.set_session(data.access_token, data.refresh_token)

    if not await session.is_authenticated():
        session.clear()
        raise AuthenticationError(
            message="Could not validate credentials",
            code=ErrorCode.AUTH_INVALID_TOKEN,
        )

    return await replayer.replay()


@router.post("/signed-out", response_model=MessageResponse)
async def signed_out(
    session: Annotated[TokenSessionProvider, Depends(get_session_provider)],
):
    session.clear()
    logger.info("Session cleared; back in guest mode")
    return MessageResponse(message=ResponseMessages.SIGNED_OUT)


@router.post("/replay", response_model=ReplayReport)
async def replay(
    session: Annotated[TokenSessionProvider, Depends(get_session_provider)],
    replayer: Annotated[AuthTransitionReplayer, Depends(get_replayer)],
):
    """Retry a replay, e.g. when the app returns to the foreground."""
    if not await session.is_authenticated():
        raise AuthenticationError()

    if replayer.is_running:
        raise ConflictError(
            message="Your saved work is already being restored",
            code=ErrorCode.CONFLICT_REPLAY_IN_PROGRESS,
        )

    return await replayer.replay()


@router.get("/replay/state", response_model=ReplayReport)
async def replay_state(
    replayer: Annotated[AuthTransitionReplayer, Depends(get_replayer)],
):
    """Current replay state, with the last run's items once it has finished."""
    if replayer.is_replaying or replayer.last_report is None:
        return ReplayReport(state=replayer.state)
    return replayer.last_report
