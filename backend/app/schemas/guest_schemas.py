"""Guest capture, prefill and replay Pydantic schemas."""
import time
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def now_millis() -> int:
    return int(time.time() * 1000)


class ActionKind(str, Enum):
    """Content types a guest can create before signing in."""
    NOTE = "note"
    TODO = "todo"
    QUICK_JOT = "quick_jot"
    CALENDAR_EVENT = "calendar_event"
    CORE_MEMORY = "core_memory"
    GOAL = "goal"
    KANBAN_TASK = "kanban_task"


class QuickJotEntryType(str, Enum):
    """How a single quick-jot entry is saved."""
    TASK = "task"
    NOTE = "note"
    JOURNAL = "journal"
    MEMORY = "memory"


class SensoryMode(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PendingActionCreate(BaseModel):
    """Body sent by a capture screen when a guest presses save."""
    kind: ActionKind
    target_screen: str = Field(..., min_length=1, max_length=100)
    payload: Dict[str, Any] = Field(default_factory=dict)
    form_snapshot: Dict[str, Any] = Field(default_factory=dict)
    captured_at_epoch_millis: Optional[int] = Field(None, ge=0)


class PendingAction(BaseModel):
    """A unit of guest content held on the device until sign-in."""
    id: UUID = Field(default_factory=uuid4)
    kind: ActionKind
    target_screen: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    form_snapshot: Dict[str, Any] = Field(default_factory=dict)
    captured_at_epoch_millis: int = Field(default_factory=now_millis)

    # Assigned by the store on every write
    version: int = 0
    # Fan-out item keys already created on the backend
    replayed_items: List[str] = Field(default_factory=list)

    @classmethod
    def from_create(cls, data: PendingActionCreate) -> "PendingAction":
        fields = data.model_dump(exclude_none=True)
        return cls(**fields)


class MoodValue(BaseModel):
    body: int = Field(..., ge=0, le=100)
    mind: int = Field(..., ge=0, le=100)


class MoodEntry(BaseModel):
    """Mood slider reading taken while in guest mode."""
    timestamp: int = Field(default_factory=now_millis)
    mood_value: MoodValue


class SensoryModeUpdate(BaseModel):
    mode: SensoryMode


class CaptureOutcome(BaseModel):
    """What the capture screen should do after a save attempt."""
    captured: bool
    is_guest: bool
    persisted: bool = False
    show_save_work_modal: bool = False
    message: Optional[str] = None
    action: Optional[PendingAction] = None


class SaveWorkChoice(str, Enum):
    """Buttons on the "save your work" prompt."""
    SKIP = "skip"
    SIGN_IN = "sign_in"
    SIGN_UP = "sign_up"
    DISCARD = "discard"


class SaveWorkResolveRequest(BaseModel):
    choice: SaveWorkChoice


class SaveWorkResolution(BaseModel):
    choice: SaveWorkChoice
    next_route: Optional[str] = None
    prefill_screen: Optional[str] = None
    discarded: bool = False


class PrefillResponse(BaseModel):
    screen_id: str
    show: bool
    form_snapshot: Optional[Dict[str, Any]] = None


class GuestStatusResponse(BaseModel):
    is_guest: bool
    has_unsaved_data: bool
    pending_kinds: List[ActionKind] = []
    mood_entry_count: int = 0
    sensory_mode: Optional[SensoryMode] = None
    last_saved_at: Optional[int] = None


class ReplayState(str, Enum):
    IDLE = "idle"
    PENDING_DETECTED = "pending_detected"
    REPLAYING = "replaying"
    COMPLETED = "completed"
    REPLAY_FAILED = "replay_failed"


class ReplayItemStatus(str, Enum):
    CREATED = "created"
    FAILED = "failed"
    ALREADY_REPLAYED = "already_replayed"


class ReplayItemResult(BaseModel):
    # Unset for mood entries and sensory mode, which are not pending actions
    action_id: Optional[UUID] = None
    kind: Optional[ActionKind] = None
    item_key: str
    operation: str
    label: str
    status: ReplayItemStatus
    record_id: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None


class ReplayReport(BaseModel):
    """Outcome of one replay run, shown as a non-blocking notice on failure."""
    state: ReplayState
    items: List[ReplayItemResult] = []
    redirect_to: Optional[str] = None
    came_through_save_work_modal: bool = False
    message: Optional[str] = None

    @property
    def failed_items(self) -> List[ReplayItemResult]:
        return [i for i in self.items if i.status == ReplayItemStatus.FAILED]


class SignedInRequest(BaseModel):
    """Handed over by the sign-in screen or OAuth callback."""
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
