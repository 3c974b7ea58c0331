"""Device-local store for guest work captured before sign-in."""
import json
import logging
import time
from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from app.config import get_settings
from app.core.errors import ConflictError, StorageReadError, StorageWriteError
from app.database import AsyncSessionLocal
from app.models.local_entry import LocalEntry
from app.schemas.guest_schemas import MoodEntry, PendingAction, SensoryMode

logger = logging.getLogger(__name__)

# Key names inside the namespace
PENDING_ACTIONS = "pending_actions"
PREFILL_SIGNAL = "prefill_signal"
MOOD_ENTRIES = "mood_entries"
SENSORY_MODE = "sensory_mode"
LAST_SAVED_AT = "last_saved_at"
SAVE_WORK_ENTRY = "came_through_save_work_modal"
VERSION_SEQUENCE = "version_seq"

# Keys whose presence means "unsaved guest work"
UNSAVED_KEYS = (PENDING_ACTIONS, MOOD_ENTRIES, SENSORY_MODE)


class PendingActionStore:
    """
    Namespaced, versioned key-value persistence for guest work.

    Pending actions form a small ordered queue with replace-by-kind semantics:
    saving a note replaces an earlier unsynced note but keeps a pending todo.
    Every saved action gets a version from a per-namespace sequence that is
    never reset, so ``clear(expected_version=...)`` can leave newer captures
    in place. Rows are updated with compare-and-swap on their own version.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        namespace: Optional[str] = None,
        write_attempts: Optional[int] = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory or AsyncSessionLocal
        self.namespace = namespace or settings.storage_namespace
        self.write_attempts = max(1, write_attempts or settings.store_write_attempts)

    # -- key-value primitives --

    def _key(self, name: str) -> str:
        return f"{self.namespace}:{name}"

    async def _read(self, session: AsyncSession, name: str) -> Optional[Tuple[Any, int]]:
        """Return (decoded value, row version) or None."""
        result = await session.execute(
            select(LocalEntry.value, LocalEntry.version).where(
                LocalEntry.key == self._key(name)
            )
        )
        row = result.first()
        if row is None:
            return None
        try:
            return json.loads(row.value), row.version
        except ValueError as exc:
            raise StorageReadError(
                message=f"Stored value for '{name}' is not valid JSON",
                key=self._key(name),
            ) from exc

    async def _put(
        self,
        session: AsyncSession,
        name: str,
        value: Any,
        expected_version: Optional[int],
    ) -> int:
        """Write a value, failing with ConflictError if the row moved."""
        key = self._key(name)
        document = json.dumps(value)

        if expected_version is None:
            try:
                await session.execute(
                    insert(LocalEntry).values(
                        key=key,
                        namespace=self.namespace,
                        value=document,
                        version=1,
                    )
                )
            except IntegrityError as exc:
                raise ConflictError(f"'{key}' was created concurrently") from exc
            return 1

        result = await session.execute(
            update(LocalEntry)
            .where(LocalEntry.key == key)
            .where(LocalEntry.version == expected_version)
            .values(
                value=document,
                version=expected_version + 1,
                updated_at=datetime.utcnow(),
            )
        )
        if result.rowcount != 1:
            raise ConflictError(f"'{key}' changed since version {expected_version}")
        return expected_version + 1

    async def _remove(
        self,
        session: AsyncSession,
        name: str,
        expected_version: Optional[int] = None,
    ) -> None:
        query = delete(LocalEntry).where(LocalEntry.key == self._key(name))
        if expected_version is not None:
            query = query.where(LocalEntry.version == expected_version)
        result = await session.execute(query)
        if expected_version is not None and result.rowcount != 1:
            raise ConflictError(f"'{self._key(name)}' changed since version {expected_version}")

    async def _put_or_remove(
        self,
        session: AsyncSession,
        name: str,
        items: list,
        current: Optional[Tuple[Any, int]],
    ) -> None:
        """Write a list; an empty list deletes the key so presence stays meaningful."""
        expected = current[1] if current else None
        if items:
            await self._put(session, name, items, expected)
        elif current is not None:
            await self._remove(session, name, expected)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.write_attempts),
            retry=retry_if_exception_type((StorageWriteError, ConflictError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _transaction(self, name: str, operation) -> Any:
        """Run ``operation(session)`` once inside a transaction."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await operation(session)
        except SQLAlchemyError as exc:
            raise StorageWriteError(
                message=f"Local write of '{name}' failed: {exc}",
                key=self._key(name),
            ) from exc

    async def _write(self, name: str, operation) -> Any:
        """Run ``operation(session)`` in a transaction with bounded retries."""
        try:
            async for attempt in self._retrying():
                with attempt:
                    result = await self._transaction(name, operation)
        except ConflictError as exc:
            raise StorageWriteError(
                message=f"Local write of '{name}' kept conflicting",
                key=self._key(name),
            ) from exc
        return result

    async def _get(self, name: str, default: Any = None) -> Any:
        """Read one key, failing open to ``default``."""
        try:
            async with self._session_factory() as session:
                current = await self._read(session, name)
        except (SQLAlchemyError, StorageReadError) as exc:
            logger.error(f"Guest store: reading '{name}' failed, treating as empty: {exc}")
            return default
        return default if current is None else current[0]

    async def _set(self, name: str, value: Any) -> None:
        async def operation(session):
            current = await self._read_for_write(session, name)
            await self._put(session, name, value, current[1] if current else None)

        await self._write(name, operation)

    async def _delete(self, name: str) -> None:
        async def operation(session):
            await self._remove(session, name)

        await self._write(name, operation)

    async def _read_for_write(
        self, session: AsyncSession, name: str
    ) -> Optional[Tuple[Any, int]]:
        """Read before a write; a corrupt document is replaced rather than blocking writes."""
        try:
            return await self._read(session, name)
        except StorageReadError:
            logger.warning(f"Guest store: overwriting unreadable '{self._key(name)}'")
            result = await session.execute(
                select(LocalEntry.version).where(LocalEntry.key == self._key(name))
            )
            version = result.scalar_one_or_none()
            return None if version is None else ([], version)

    # -- pending actions --

    @staticmethod
    def _decode_actions(value: Any) -> List[PendingAction]:
        return [PendingAction.model_validate(item) for item in value or []]

    def _actions_for_write(self, current: Optional[Tuple[Any, int]]) -> List[PendingAction]:
        if current is None:
            return []
        try:
            return self._decode_actions(current[0])
        except ValueError as exc:
            logger.warning(f"Guest store: replacing malformed pending actions: {exc}")
            return []

    @staticmethod
    def _encode_actions(actions: Iterable[PendingAction]) -> list:
        return [action.model_dump(mode="json") for action in actions]

    async def _next_version(self, session: AsyncSession) -> int:
        current = await self._read_for_write(session, VERSION_SEQUENCE)
        last = current[0] if current and isinstance(current[0], int) else 0
        await self._put(session, VERSION_SEQUENCE, last + 1, current[1] if current else None)
        return last + 1

    async def save(self, action: PendingAction) -> PendingAction:
        """
        Persist a pending action, replacing any stored action of the same kind.

        The write is verified with ``has_unsaved_data()`` and retried once
        (``store_write_attempts``) before StorageWriteError is raised.

        Returns:
            The stored copy, carrying its assigned version.
        """

        async def operation(session):
            current = await self._read_for_write(session, PENDING_ACTIONS)
            actions = self._actions_for_write(current)
            stored = action.model_copy(update={"version": await self._next_version(session)})
            kept = [a for a in actions if a.kind != action.kind and a.id != action.id]
            kept.append(stored)
            await self._put_or_remove(session, PENDING_ACTIONS, self._encode_actions(kept), current)
            return stored

        try:
            async for attempt in self._retrying():
                with attempt:
                    stored = await self._transaction(PENDING_ACTIONS, operation)
                    if not await self.has_unsaved_data():
                        raise StorageWriteError(
                            message="Saved work was not found after writing it",
                            key=self._key(PENDING_ACTIONS),
                        )
        except (StorageWriteError, ConflictError) as exc:
            logger.error(f"Guest store: could not save {action.kind.value} action {action.id}: {exc}")
            if isinstance(exc, StorageWriteError):
                raise
            raise StorageWriteError(
                message="Saved work kept conflicting with another write",
                key=self._key(PENDING_ACTIONS),
            ) from exc

        logger.info(
            f"Guest store: saved {stored.kind.value} action {stored.id} "
            f"(version {stored.version}, screen {stored.target_screen})"
        )
        return stored

    async def has_unsaved_data(self) -> bool:
        """Existence check only; nothing is deserialized."""
        keys = [self._key(name) for name in UNSAVED_KEYS]
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(LocalEntry.key).where(LocalEntry.key.in_(keys)).limit(1)
                )
                return result.first() is not None
        except SQLAlchemyError as exc:
            logger.error(f"Guest store: existence check failed, assuming no saved work: {exc}")
            return False

    async def load_all(self) -> List[PendingAction]:
        """All pending actions in capture order."""
        try:
            return self._decode_actions(await self._get(PENDING_ACTIONS, []))
        except ValueError as exc:
            logger.error(f"Guest store: pending actions are malformed, ignoring them: {exc}")
            return []

    async def load(self) -> Optional[PendingAction]:
        """The most recently captured pending action."""
        actions = await self.load_all()
        return actions[-1] if actions else None

    async def get(self, action_id: UUID) -> Optional[PendingAction]:
        for action in await self.load_all():
            if action.id == action_id:
                return action
        return None

    async def clear(self, expected_version: Optional[int] = None) -> int:
        """
        Remove pending actions. Safe on an empty store.

        Args:
            expected_version: When given, only actions with a version up to
                this value are removed, so a capture made after the caller
                read the store is kept.

        Returns:
            Number of actions removed.
        """

        async def operation(session):
            current = await self._read_for_write(session, PENDING_ACTIONS)
            if current is None:
                return 0
            actions = self._actions_for_write(current)
            if expected_version is None:
                remaining = []
            else:
                remaining = [a for a in actions if a.version > expected_version]
            await self._put_or_remove(
                session, PENDING_ACTIONS, self._encode_actions(remaining), current
            )
            if not remaining:
                await self._remove(session, PREFILL_SIGNAL)
            return len(actions) - len(remaining)

        removed = await self._write(PENDING_ACTIONS, operation)
        if removed:
            logger.info(f"Guest store: cleared {removed} pending action(s)")
        return removed

    async def mark_replayed(self, action_id: UUID, version: int, item_keys: List[str]) -> bool:
        """
        Record fan-out items that reached the backend.

        Returns False when the action was replaced or removed in the meantime.
        """

        async def operation(session):
            current = await self._read_for_write(session, PENDING_ACTIONS)
            actions = self._actions_for_write(current)
            updated = False
            for index, action in enumerate(actions):
                if action.id == action_id and action.version == version:
                    done = list(action.replayed_items)
                    done.extend(k for k in item_keys if k not in done)
                    actions[index] = action.model_copy(update={"replayed_items": done})
                    updated = True
            if updated:
                await self._put(session, PENDING_ACTIONS, self._encode_actions(actions), current[1])
            return updated

        return await self._write(PENDING_ACTIONS, operation)

    # -- prefill signal --

    async def raise_prefill_signal(self, target_screen: str) -> None:
        await self._set(
            PREFILL_SIGNAL,
            {"target_screen": target_screen, "raised_at": int(time.time() * 1000)},
        )

    async def get_prefill_signal(self) -> Optional[str]:
        value = await self._get(PREFILL_SIGNAL)
        if isinstance(value, dict):
            return value.get("target_screen")
        return None

    async def clear_prefill_signal(self) -> None:
        await self._delete(PREFILL_SIGNAL)

    # -- mood entries and sensory mode --

    async def save_mood_entry(self, entry: MoodEntry) -> None:
        async def operation(session):
            current = await self._read_for_write(session, MOOD_ENTRIES)
            entries = list(current[0]) if current else []
            entries.append(entry.model_dump(mode="json"))
            await self._put(session, MOOD_ENTRIES, entries, current[1] if current else None)

        await self._write(MOOD_ENTRIES, operation)

    async def load_mood_entries(self) -> List[MoodEntry]:
        try:
            return [MoodEntry.model_validate(e) for e in await self._get(MOOD_ENTRIES, [])]
        except ValueError as exc:
            logger.error(f"Guest store: mood entries are malformed, ignoring them: {exc}")
            return []

    async def clear_mood_entries(self, synced: Optional[List[MoodEntry]] = None) -> int:
        """
        Remove mood entries.

        Args:
            synced: When given, only these entries are removed; entries
                recorded after the caller read them stay.

        Returns:
            Number of entries removed.
        """
        targets = None if synced is None else [e.model_dump(mode="json") for e in synced]

        async def operation(session):
            current = await self._read_for_write(session, MOOD_ENTRIES)
            if current is None:
                return 0
            stored = list(current[0])
            if targets is None:
                await self._remove(session, MOOD_ENTRIES, current[1])
                return len(stored)

            remaining = list(targets)
            kept = []
            for entry in stored:
                try:
                    normalized = MoodEntry.model_validate(entry).model_dump(mode="json")
                except ValueError:
                    normalized = entry
                if normalized in remaining:
                    remaining.remove(normalized)
                else:
                    kept.append(entry)
            await self._put_or_remove(session, MOOD_ENTRIES, kept, current)
            return len(stored) - len(kept)

        return await self._write(MOOD_ENTRIES, operation)

    async def save_mode_selection(self, mode: SensoryMode) -> None:
        await self._set(SENSORY_MODE, mode.value)

    async def load_mode_selection(self) -> Optional[SensoryMode]:
        value = await self._get(SENSORY_MODE)
        try:
            return SensoryMode(value) if value else None
        except ValueError:
            logger.error(f"Guest store: ignoring unknown sensory mode {value!r}")
            return None

    async def clear_mode_selection(self, expected: Optional[SensoryMode] = None) -> bool:
        """Remove the mode; with ``expected``, only while it still holds that value."""

        async def operation(session):
            current = await self._read_for_write(session, SENSORY_MODE)
            if current is None:
                return False
            if expected is not None and current[0] != expected.value:
                return False
            await self._remove(session, SENSORY_MODE, current[1])
            return True

        return await self._write(SENSORY_MODE, operation)

    # -- bookkeeping flags --

    async def mark_save_work_entry(self) -> None:
        """Remember that sign-in was started from the save-work prompt."""
        await self._set(SAVE_WORK_ENTRY, True)

    async def has_save_work_entry(self) -> bool:
        return bool(await self._get(SAVE_WORK_ENTRY, False))

    async def pop_save_work_entry(self) -> bool:
        flagged = bool(await self._get(SAVE_WORK_ENTRY, False))
        if flagged:
            await self._delete(SAVE_WORK_ENTRY)
        return flagged

    async def touch_last_saved(self) -> int:
        stamp = int(time.time() * 1000)
        await self._set(LAST_SAVED_AT, stamp)
        return stamp

    async def get_last_saved(self) -> Optional[int]:
        return await self._get(LAST_SAVED_AT)

    async def clear_all(self) -> None:
        """Drop every guest key except the version sequence."""

        async def operation(session):
            await session.execute(
                delete(LocalEntry)
                .where(LocalEntry.namespace == self.namespace)
                .where(LocalEntry.key != self._key(VERSION_SEQUENCE))
            )

        await self._write("*", operation)
        logger.info(f"Guest store: cleared all guest data in '{self.namespace}'")
