"""Shared test infrastructure for guest capture and replay tests.

Contains a fake session provider, a recording records backend and
pending-action builders.
NOT a test file -- imported by conftest.py and test_*.py modules.
"""
from typing import Dict, List, Optional

from app.core.errors import ExternalServiceError
from app.schemas.guest_schemas import ActionKind, PendingAction
from app.schemas.record_schemas import CreatedRecord
from app.services import AuthTransitionReplayer


# ---------------------------------------------------------------------------
# Fake session provider
# ---------------------------------------------------------------------------

class FakeSession:
    """Session provider whose user appears after ``ready_after`` lookups."""

    def __init__(self, user_id: Optional[str] = None, ready_after: int = 0):
        self.user_id = user_id
        self.ready_after = ready_after
        self.lookups = 0

    async def is_authenticated(self) -> bool:
        return self.user_id is not None

    async def get_user_id(self) -> Optional[str]:
        self.lookups += 1
        if self.lookups <= self.ready_after:
            return None
        return self.user_id

    async def get_access_token(self) -> Optional[str]:
        return "fake-token" if self.user_id else None


# ---------------------------------------------------------------------------
# Recording records backend
# ---------------------------------------------------------------------------

class RecordingRecords:
    """
    Records backend stand-in.

    Rows are keyed by id and repeated inserts are ignored, like the real
    backend with ``resolution=ignore-duplicates``. ``fail`` makes calls whose
    operation or record title matches raise ExternalServiceError.
    """

    def __init__(self):
        self.rows: Dict[str, tuple] = {}
        self.attempts: List[tuple] = []
        self.mood_entries: Dict[str, object] = {}
        self.sensory_modes: List[str] = []
        self._rules: List[list] = []

    def fail(self, match: str, times: Optional[int] = None, status_code: Optional[int] = 503):
        self._rules.append([match, times, status_code])

    def recover(self):
        self._rules.clear()

    def _check(self, operation: str, title: Optional[str]) -> None:
        self.attempts.append((operation, title))
        for rule in self._rules:
            match, times, status_code = rule
            if match not in (operation, title):
                continue
            if times is not None:
                if times <= 0:
                    continue
                rule[1] = times - 1
            raise ExternalServiceError(
                service="records",
                message=f"{operation} rejected",
                status_code=status_code,
            )

    async def _create(self, operation: str, user_id: str, record) -> CreatedRecord:
        self._check(operation, getattr(record, "title", None))
        self.rows.setdefault(str(record.id), (operation, user_id, record))
        return CreatedRecord(id=str(record.id), table=operation)

    def created(self, operation: Optional[str] = None) -> List[tuple]:
        return [row for row in self.rows.values() if operation in (None, row[0])]

    async def create_note(self, user_id, record):
        return await self._create("create_note", user_id, record)

    async def create_todo(self, user_id, record):
        return await self._create("create_todo", user_id, record)

    async def create_journal_entry(self, user_id, record):
        return await self._create("create_journal_entry", user_id, record)

    async def create_core_memory(self, user_id, record):
        return await self._create("create_core_memory", user_id, record)

    async def create_calendar_event(self, user_id, record):
        return await self._create("create_calendar_event", user_id, record)

    async def create_goal(self, user_id, record):
        return await self._create("create_goal", user_id, record)

    async def create_kanban_card(self, user_id, record):
        return await self._create("create_kanban_card", user_id, record)

    async def create_mood_entries(self, user_id, records):
        self._check("create_mood_entries", None)
        for record in records:
            self.mood_entries.setdefault(str(record.id), record)
        return [CreatedRecord(id=str(r.id), table="mood_entries") for r in records]

    async def upsert_sensory_mode(self, user_id, mode):
        self._check("upsert_sensory_mode", None)
        self.sensory_modes.append(mode.value)


def make_replayer(store, session, records, **kwargs) -> AuthTransitionReplayer:
    """Replayer with no waits between retries or session lookups."""
    kwargs.setdefault("item_attempts", 3)
    kwargs.setdefault("session_wait_attempts", 3)
    return AuthTransitionReplayer(
        store,
        session,
        records,
        retry_wait_seconds=0,
        session_wait_seconds=0,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Pending action builders
# ---------------------------------------------------------------------------

def note_action(
    title: str = "Groceries",
    screen: str = "note-editor",
    snapshot: Optional[dict] = None,
) -> PendingAction:
    return PendingAction(
        kind=ActionKind.NOTE,
        target_screen=screen,
        payload={"title": title, "content": f"{title} body", "tags": ["guest"]},
        form_snapshot=snapshot or {"title": title},
    )


def todo_action(title: str = "Call the dentist", screen: str = "todo-editor") -> PendingAction:
    return PendingAction(
        kind=ActionKind.TODO,
        target_screen=screen,
        payload={"title": title, "priority": "high"},
        form_snapshot={"title": title},
    )


def subtask_action(subtasks: List[str], screen: str = "quick-jot") -> PendingAction:
    return PendingAction(
        kind=ActionKind.QUICK_JOT,
        target_screen=screen,
        payload={"content": "Plan the party", "ai_subtasks": subtasks},
        form_snapshot={"text": "Plan the party"},
    )


def quick_jot_action(entry_type: str, content: str = "Felt calm today") -> PendingAction:
    return PendingAction(
        kind=ActionKind.QUICK_JOT,
        target_screen="quick-jot",
        payload={"entry_type": entry_type, "content": content},
        form_snapshot={"text": content, "type": entry_type},
    )
