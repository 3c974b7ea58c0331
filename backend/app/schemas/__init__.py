"""Pydantic schemas for API request/response validation."""
from app.schemas.guest_schemas import (
    ActionKind,
    QuickJotEntryType,
    SensoryMode,
    PendingActionCreate,
    PendingAction,
    MoodEntry,
    CaptureOutcome,
    SaveWorkChoice,
    SaveWorkResolution,
    PrefillResponse,
    GuestStatusResponse,
    ReplayState,
    ReplayItemStatus,
    ReplayItemResult,
    ReplayReport,
    SignedInRequest,
)
from app.schemas.record_schemas import (
    RecordOperation,
    NoteRecord,
    TodoRecord,
    JournalEntryRecord,
    CoreMemoryRecord,
    CalendarEventRecord,
    GoalRecord,
    KanbanCardRecord,
    MoodEntryRecord,
    CreatedRecord,
)

__all__ = [
    "ActionKind",
    "QuickJotEntryType",
    "SensoryMode",
    "PendingActionCreate",
    "PendingAction",
    "MoodEntry",
    "CaptureOutcome",
    "SaveWorkChoice",
    "SaveWorkResolution",
    "PrefillResponse",
    "GuestStatusResponse",
    "ReplayState",
    "ReplayItemStatus",
    "ReplayItemResult",
    "ReplayReport",
    "SignedInRequest",
    "RecordOperation",
    "NoteRecord",
    "TodoRecord",
    "JournalEntryRecord",
    "CoreMemoryRecord",
    "CalendarEventRecord",
    "GoalRecord",
    "KanbanCardRecord",
    "MoodEntryRecord",
    "CreatedRecord",
]
