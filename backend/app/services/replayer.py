"""Replays guest work into the signed-in user's backend records."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid5

import httpx
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings
from app.core.errors import (
    ErrorCode,
    ExternalServiceError,
    ReplayItemError,
    StorageWriteError,
    ValidationError,
)
from app.schemas.guest_schemas import (
    ActionKind,
    MoodEntry,
    PendingAction,
    QuickJotEntryType,
    ReplayItemResult,
    ReplayItemStatus,
    ReplayReport,
    ReplayState,
    SensoryMode,
)
from app.schemas.record_schemas import (
    CalendarEventRecord,
    CoreMemoryRecord,
    GoalRecord,
    JournalEntryRecord,
    KanbanCardRecord,
    MoodEntryRecord,
    NoteRecord,
    RecordBase,
    RecordOperation,
    TodoRecord,
)
from app.services.pending_store import PendingActionStore
from app.services.session import SessionProvider

logger = logging.getLogger(__name__)

# Namespace for deterministic mood entry ids
MOOD_ID_NAMESPACE = UUID("6f1c1f0e-4b7a-4f43-9d55-2f0f3c8e9a11")

LABEL_LENGTH = 40


@dataclass
class ReplayItem:
    """One backend create call derived from a pending action."""
    action: PendingAction
    key: str
    operation: RecordOperation
    record: RecordBase
    label: str


def _label(text: Any) -> str:
    text = str(text or "").strip()
    return text if len(text) <= LABEL_LENGTH else text[:LABEL_LENGTH - 1] + "…"


def _title(text: str) -> str:
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    return first_line[:500]


def _build(record_type, action: PendingAction, key: str, fields: Dict[str, Any]) -> RecordBase:
    data = dict(fields)
    data["id"] = uuid5(action.id, key)
    return record_type.model_validate(data)


# (record type, operation) per single-record kind
SINGLE_RECORD_KINDS = {
    ActionKind.NOTE: (NoteRecord, RecordOperation.CREATE_NOTE),
    ActionKind.TODO: (TodoRecord, RecordOperation.CREATE_TODO),
    ActionKind.CALENDAR_EVENT: (CalendarEventRecord, RecordOperation.CREATE_CALENDAR_EVENT),
    ActionKind.CORE_MEMORY: (CoreMemoryRecord, RecordOperation.CREATE_CORE_MEMORY),
    ActionKind.GOAL: (GoalRecord, RecordOperation.CREATE_GOAL),
    ActionKind.KANBAN_TASK: (KanbanCardRecord, RecordOperation.CREATE_KANBAN_CARD),
}


def _quick_jot_items(action: PendingAction) -> List[ReplayItem]:
    payload = action.payload
    subtasks = payload.get("ai_subtasks") or payload.get("aiSubtasks") or []

    if subtasks:
        items = []
        for index, subtask in enumerate(subtasks):
            text = str(subtask).strip()
            if not text:
                continue
            key = f"subtask:{index}"
            record = _build(TodoRecord, action, key, {
                "title": _title(text),
                "description": text,
            })
            items.append(ReplayItem(action, key, RecordOperation.CREATE_TODO, record, _label(text)))
        return items

    content = str(payload.get("content") or "").strip()
    entry_type = QuickJotEntryType(payload.get("entry_type") or payload.get("type") or "")
    key = f"entry:{entry_type.value}"

    if entry_type == QuickJotEntryType.TASK:
        record = _build(TodoRecord, action, key, {"title": _title(content), "description": content})
        operation = RecordOperation.CREATE_TODO
    elif entry_type == QuickJotEntryType.NOTE:
        record = _build(NoteRecord, action, key, {"title": _title(content), "content": content})
        operation = RecordOperation.CREATE_NOTE
    elif entry_type == QuickJotEntryType.JOURNAL:
        record = _build(JournalEntryRecord, action, key, {"content": content})
        operation = RecordOperation.CREATE_JOURNAL_ENTRY
    else:
        record = _build(CoreMemoryRecord, action, key, {"title": _title(content), "description": content})
        operation = RecordOperation.CREATE_CORE_MEMORY

    return [ReplayItem(action, key, operation, record, _label(content))]


def expand_action(action: PendingAction) -> List[ReplayItem]:
    """
    Map a pending action to the backend create calls it stands for.

    Notes, todos and the other single-record kinds become one call. A quick-jot
    fans out to one todo per AI subtask, or to a single record chosen by its
    entry type. Item keys are stable, and each record id is derived from the
    action id and item key.

    Raises:
        ValidationError: if the payload cannot be turned into records.
    """
    try:
        if action.kind == ActionKind.QUICK_JOT:
            items = _quick_jot_items(action)
        else:
            record_type, operation = SINGLE_RECORD_KINDS[action.kind]
            fields = dict(action.payload)
            if action.kind == ActionKind.KANBAN_TASK and "assignee" in fields:
                fields.setdefault("assignee_id", fields.pop("assignee"))
            key = action.kind.value
            record = _build(record_type, action, key, fields)
            label = fields.get("title") or fields.get("content") or action.kind.value
            items = [ReplayItem(action, key, operation, record, _label(label))]
    except PydanticValidationError as exc:
        details = [
            f"{'.'.join(str(part) for part in err.get('loc', []))}: {err.get('msg')}"
            for err in exc.errors()
        ]
        raise ValidationError(
            message=f"{action.kind.value} payload cannot be saved",
            param="payload",
            code=ErrorCode.VALIDATION_UNMAPPABLE_PAYLOAD,
            details=details,
        ) from exc
    except ValueError as exc:
        raise ValidationError(
            message=f"{action.kind.value} payload cannot be saved: {exc}",
            param="payload",
            code=ErrorCode.VALIDATION_UNMAPPABLE_PAYLOAD,
        ) from exc

    if not items:
        raise ValidationError(
            message=f"{action.kind.value} payload has nothing to save",
            param="payload",
            code=ErrorCode.VALIDATION_UNMAPPABLE_PAYLOAD,
        )
    return items


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ExternalServiceError):
        status = exc.upstream_status
        return status is None or status == 429 or status >= 500
    return isinstance(exc, httpx.HTTPError)


class AuthTransitionReplayer:
    """
    Migrates stored guest work into backend records after sign-in.

    States: idle -> pending_detected -> replaying -> completed, or
    pending_detected/replaying -> replay_failed. A failed run keeps the store
    so the next sign-in or app foreground can retry; items that already
    succeeded are recorded and skipped on the retry.
    """

    def __init__(
        self,
        store: PendingActionStore,
        session_provider: SessionProvider,
        records,
        item_attempts: Optional[int] = None,
        retry_wait_seconds: Optional[float] = None,
        session_wait_attempts: Optional[int] = None,
        session_wait_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.store = store
        self.session = session_provider
        self.records = records
        self.item_attempts = max(1, item_attempts or settings.replay_item_attempts)
        self.retry_wait_seconds = (
            settings.replay_retry_wait_seconds if retry_wait_seconds is None else retry_wait_seconds
        )
        self.retry_max_wait_seconds = settings.replay_retry_max_wait_seconds
        self.session_wait_attempts = max(1, session_wait_attempts or settings.session_wait_attempts)
        self.session_wait_seconds = (
            settings.session_wait_seconds if session_wait_seconds is None else session_wait_seconds
        )

        self.state = ReplayState.IDLE
        self.last_report: Optional[ReplayReport] = None
        self._lock = asyncio.Lock()
        self._listeners: List[Callable[[ReplayState], None]] = []

    # -- state signals --

    @property
    def is_replaying(self) -> bool:
        return self.state in (ReplayState.PENDING_DETECTED, ReplayState.REPLAYING)

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def subscribe(self, callback: Callable[[ReplayState], None]) -> Callable[[], None]:
        """Register for state changes. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _transition(self, state: ReplayState) -> None:
        logger.info(f"Replay: {self.state.value} -> {state.value}")
        self.state = state
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception:
                logger.exception("Replay state listener failed")

    # -- replay --

    async def replay(self) -> ReplayReport:
        """Run one replay. Concurrent callers wait and then see an empty store."""
        async with self._lock:
            try:
                report = await self._run()
            except Exception:
                self._transition(ReplayState.REPLAY_FAILED)
                raise
            self.last_report = report
            return report

    async def _wait_for_user(self) -> Optional[str]:
        for attempt in range(1, self.session_wait_attempts + 1):
            user_id = await self.session.get_user_id()
            if user_id:
                return user_id
            logger.info(f"Replay: waiting for signed-in user ({attempt}/{self.session_wait_attempts})")
            if attempt < self.session_wait_attempts:
                await asyncio.sleep(self.session_wait_seconds)
        return None

    async def _run(self) -> ReplayReport:
        self.state = ReplayState.IDLE

        if not await self.store.has_unsaved_data():
            return ReplayReport(state=ReplayState.IDLE, message="No saved guest work")

        self._transition(ReplayState.PENDING_DETECTED)
        came_through_prompt = await self.store.has_save_work_entry()

        user_id = await self._wait_for_user()
        if not user_id:
            logger.error("Replay: no signed-in user after waiting; guest work kept on device")
            self._transition(ReplayState.REPLAY_FAILED)
            return ReplayReport(
                state=ReplayState.REPLAY_FAILED,
                came_through_save_work_modal=came_through_prompt,
                message="Sign-in has not finished yet; your work is still on this device",
            )

        actions = await self.store.load_all()
        mood_entries = await self.store.load_mood_entries()
        mode = await self.store.load_mode_selection()
        redirect_to = actions[-1].target_screen if actions else None

        self._transition(ReplayState.REPLAYING)

        results: List[ReplayItemResult] = []
        unmapped: List[ReplayItemResult] = []
        pending: List[ReplayItem] = []
        for action in actions:
            try:
                items = expand_action(action)
            except ValidationError as exc:
                logger.error(f"Replay: action {action.id} cannot be mapped: {exc.message}")
                unmapped.append(ReplayItemResult(
                    action_id=action.id,
                    kind=action.kind,
                    item_key=action.kind.value,
                    operation="unmapped",
                    label=action.kind.value,
                    status=ReplayItemStatus.FAILED,
                    error=exc.message,
                ))
                continue
            for item in items:
                if item.key in action.replayed_items:
                    results.append(self._result(item, ReplayItemStatus.ALREADY_REPLAYED))
                else:
                    pending.append(item)

        # Fan-out calls may run concurrently; the clear below waits for all of them
        item_results = await asyncio.gather(
            *(self._replay_item(user_id, item) for item in pending)
        )
        results.extend(item_results)

        for action in actions:
            done = [
                r.item_key for r in item_results
                if r.action_id == action.id and r.status == ReplayItemStatus.CREATED
            ]
            if done:
                await self._mark_replayed(action, done)

        # Unmappable actions do not hold back mood and mode
        extras_synced = False
        if not any(r.status == ReplayItemStatus.FAILED for r in results):
            extras = await self._sync_extras(user_id, mood_entries, mode)
            results.extend(extras)
            extras_synced = not any(r.status == ReplayItemStatus.FAILED for r in extras)
        results.extend(unmapped)

        failed = [r for r in results if r.status == ReplayItemStatus.FAILED]
        report = ReplayReport(
            state=ReplayState.REPLAY_FAILED,
            items=results,
            redirect_to=redirect_to,
            came_through_save_work_modal=came_through_prompt,
        )

        try:
            if extras_synced:
                await self._clear_extras(mood_entries, mode)
            if not failed:
                await self._clear_replayed(actions)
        except StorageWriteError as exc:
            # Rows exist on the backend; a retry re-sends the same ids and is ignored there
            logger.error(f"Replay: saved to backend but could not clear device copy: {exc.message}")
            report.message = "Your work was saved, but this device still holds a copy"
            self._transition(ReplayState.REPLAY_FAILED)
            return report

        if failed:
            names = ", ".join(f"'{r.label}'" for r in failed)
            report.message = f"Some items could not be saved yet: {names}"
            logger.warning(f"Replay: {len(failed)} item(s) failed; guest work kept for retry")
            self._transition(ReplayState.REPLAY_FAILED)
            return report

        created = sum(1 for r in results if r.status == ReplayItemStatus.CREATED)
        report.state = ReplayState.COMPLETED
        report.message = f"Restored {created} item(s) to your account"
        self._transition(ReplayState.COMPLETED)
        return report

    def _result(
        self,
        item: ReplayItem,
        status: ReplayItemStatus,
        record_id: Optional[str] = None,
        attempts: int = 0,
        error: Optional[str] = None,
    ) -> ReplayItemResult:
        return ReplayItemResult(
            action_id=item.action.id,
            kind=item.action.kind,
            item_key=item.key,
            operation=item.operation.value,
            label=item.label,
            status=status,
            record_id=record_id,
            attempts=attempts,
            error=error,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.item_attempts),
            wait=wait_exponential(
                multiplier=self.retry_wait_seconds,
                max=self.retry_max_wait_seconds,
            ),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )

    async def _replay_item(self, user_id: str, item: ReplayItem) -> ReplayItemResult:
        create = getattr(self.records, item.operation.value)
        attempts = 0
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    created = await create(user_id, item.record)
        except (ExternalServiceError, httpx.HTTPError) as exc:
            error = ReplayItemError(
                action_id=str(item.action.id),
                item_key=item.key,
                message=f"{item.operation.value} failed after {attempts} attempt(s): {exc}",
                retryable=_is_transient(exc),
            )
            logger.warning(f"Replay: {error.details[0]} {error.message}")
            return self._result(item, ReplayItemStatus.FAILED, attempts=attempts, error=error.message)

        return self._result(item, ReplayItemStatus.CREATED, record_id=created.id, attempts=attempts)

    async def _mark_replayed(self, action: PendingAction, item_keys: List[str]) -> None:
        try:
            await self.store.mark_replayed(action.id, action.version, item_keys)
        except StorageWriteError as exc:
            # Record ids are deterministic, so a repeat create is ignored by the backend
            logger.warning(f"Replay: could not record progress for {action.id}: {exc.message}")

    async def _sync_extras(
        self,
        user_id: str,
        mood_entries: List[MoodEntry],
        mode: Optional[SensoryMode],
    ) -> List[ReplayItemResult]:
        results = []

        if mood_entries:
            records = [
                MoodEntryRecord(
                    id=uuid5(MOOD_ID_NAMESPACE, f"{self.store.namespace}:{entry.timestamp}"),
                    timestamp=entry.timestamp,
                    mood_value=entry.mood_value.model_dump(),
                )
                for entry in mood_entries
            ]
            results.append(await self._sync_extra(
                "mood_entries",
                f"{len(records)} mood entries",
                lambda: self.records.create_mood_entries(user_id, records),
            ))

        if mode is not None:
            results.append(await self._sync_extra(
                "sensory_mode",
                f"{mode.value} sensory mode",
                lambda: self.records.upsert_sensory_mode(user_id, mode),
            ))

        return results

    async def _sync_extra(self, key: str, label: str, call) -> ReplayItemResult:
        attempts = 0
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await call()
        except (ExternalServiceError, httpx.HTTPError) as exc:
            logger.warning(f"Replay: syncing {key} failed: {exc}")
            return ReplayItemResult(
                item_key=key, operation=key, label=label,
                status=ReplayItemStatus.FAILED, attempts=attempts, error=str(exc),
            )
        return ReplayItemResult(
            item_key=key, operation=key, label=label,
            status=ReplayItemStatus.CREATED, attempts=attempts,
        )

    async def _clear_extras(
        self,
        mood_entries: List[MoodEntry],
        mode: Optional[SensoryMode],
    ) -> None:
        # Only what was synced; entries or a mode change made during the replay stay
        if mood_entries:
            await self.store.clear_mood_entries(synced=mood_entries)
        if mode is not None:
            await self.store.clear_mode_selection(expected=mode)

    async def _clear_replayed(self, actions: List[PendingAction]) -> None:
        if actions:
            # Actions captured while this replay ran carry a higher version and stay
            await self.store.clear(expected_version=max(a.version for a in actions))
        await self.store.pop_save_work_entry()
        await self.store.touch_last_saved()
