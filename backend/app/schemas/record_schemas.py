"""Row shapes for the hosted records backend."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class RecordOperation(str, Enum):
    """Create operations the replayer can issue."""
    CREATE_NOTE = "create_note"
    CREATE_TODO = "create_todo"
    CREATE_JOURNAL_ENTRY = "create_journal_entry"
    CREATE_CORE_MEMORY = "create_core_memory"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    CREATE_GOAL = "create_goal"
    CREATE_KANBAN_CARD = "create_kanban_card"


class RecordBase(BaseModel):
    """Fields every inserted row carries. Unknown payload keys are dropped."""
    model_config = ConfigDict(extra="ignore")

    # Client-generated; lets the backend ignore a repeated insert
    id: UUID = Field(default_factory=uuid4)

    def to_row(self, user_id: Optional[str]) -> Dict[str, Any]:
        row = self.model_dump(mode="json", exclude_none=True)
        if user_id is not None:
            row["user_id"] = user_id
        return row


class NoteRecord(RecordBase):
    title: str = Field(..., min_length=1, max_length=500)
    content: str = ""
    category: str = "personal"
    tags: List[str] = []


class TodoRecord(RecordBase):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    is_completed: bool = False
    priority: str = "medium"
    category: str = "personal"


class JournalEntryRecord(RecordBase):
    content: str = Field(..., min_length=1)
    mood: str = "neutral"


class CoreMemoryRecord(RecordBase):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    memory_date: Optional[str] = None
    photo_url: Optional[str] = None
    tags: List[str] = []
    importance_level: Optional[int] = None
    is_favorite: bool = False


class CalendarEventRecord(RecordBase):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    all_day: bool = False
    color: Optional[str] = None


class GoalRecord(RecordBase):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    target_date: Optional[str] = None
    priority: str = "medium"
    category: str = "personal"
    status: str = "active"


class KanbanCardRecord(RecordBase):
    board_id: str = "default"
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: str = "todo"
    priority: str = "medium"
    assignee_id: Optional[str] = None
    due_date: Optional[str] = None


class MoodEntryRecord(RecordBase):
    timestamp: int
    mood_value: Dict[str, int]


class CreatedRecord(BaseModel):
    """Identifier of a row the backend accepted."""
    id: str
    table: str
