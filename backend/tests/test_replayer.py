"""Tests for app.services.replayer -- moving guest work into the signed-in account."""
import asyncio
from uuid import uuid5

import pytest

from app.core.errors import ErrorCode, StorageWriteError, ValidationError
from app.schemas.guest_schemas import (
    ActionKind,
    MoodEntry,
    MoodValue,
    PendingAction,
    ReplayItemStatus,
    ReplayState,
    SensoryMode,
)
from app.schemas.record_schemas import RecordOperation
from app.services import expand_action

from tests.guest_helpers import (
    FakeSession,
    RecordingRecords,
    make_replayer,
    note_action,
    quick_jot_action,
    subtask_action,
    todo_action,
)


# -- expand_action --

def test_expand_note_is_single_item_with_derived_id():
    action = note_action("Groceries")

    items = expand_action(action)

    assert len(items) == 1
    assert items[0].operation == RecordOperation.CREATE_NOTE
    assert items[0].record.id == uuid5(action.id, "note")
    assert items[0].record.title == "Groceries"
    assert items[0].label == "Groceries"


def test_expand_subtasks_fans_out_to_todos():
    action = subtask_action(["Buy balloons", "Book venue", "Send invites"])

    items = expand_action(action)

    assert [i.key for i in items] == ["subtask:0", "subtask:1", "subtask:2"]
    assert {i.operation for i in items} == {RecordOperation.CREATE_TODO}
    assert [i.record.title for i in items] == ["Buy balloons", "Book venue", "Send invites"]
    assert len({i.record.id for i in items}) == 3
    # Same action, same ids
    assert [i.record.id for i in expand_action(action)] == [i.record.id for i in items]


@pytest.mark.parametrize("entry_type,operation", [
    ("task", RecordOperation.CREATE_TODO),
    ("note", RecordOperation.CREATE_NOTE),
    ("journal", RecordOperation.CREATE_JOURNAL_ENTRY),
    ("memory", RecordOperation.CREATE_CORE_MEMORY),
])
def test_expand_quick_jot_entry_types(entry_type, operation):
    items = expand_action(quick_jot_action(entry_type, "Felt calm today"))

    assert len(items) == 1
    assert items[0].operation == operation
    assert items[0].key == f"entry:{entry_type}"


def test_expand_kanban_maps_assignee():
    action = PendingAction(
        kind=ActionKind.KANBAN_TASK,
        target_screen="board",
        payload={"title": "Fix login", "assignee": "user-9", "board_id": "b1"},
    )

    record = expand_action(action)[0].record

    assert record.assignee_id == "user-9"
    assert record.board_id == "b1"


def test_expand_calendar_event_without_start_is_unmappable():
    action = PendingAction(
        kind=ActionKind.CALENDAR_EVENT,
        target_screen="calendar",
        payload={"title": "Dentist"},
    )

    with pytest.raises(ValidationError) as exc_info:
        expand_action(action)
    assert exc_info.value.code == ErrorCode.VALIDATION_UNMAPPABLE_PAYLOAD
    assert any("start_time" in d for d in exc_info.value.details)


def test_expand_quick_jot_unknown_type_is_unmappable():
    with pytest.raises(ValidationError):
        expand_action(quick_jot_action("poem"))


def test_expand_empty_subtasks_is_unmappable():
    action = PendingAction(
        kind=ActionKind.QUICK_JOT,
        target_screen="quick-jot",
        payload={"ai_subtasks": ["  ", ""]},
    )

    with pytest.raises(ValidationError):
        expand_action(action)


# -- replay --

@pytest.mark.asyncio
async def test_replay_with_empty_store_stays_idle(store, records):
    replayer = make_replayer(store, FakeSession("user-1"), records)
    states = []
    replayer.subscribe(states.append)

    report = await replayer.replay()

    assert report.state == ReplayState.IDLE
    assert states == []
    assert records.attempts == []


@pytest.mark.asyncio
async def test_replay_note_end_to_end(store, records):
    action = await store.save(note_action("Groceries"))
    await store.raise_prefill_signal("note-editor")
    replayer = make_replayer(store, FakeSession("user-1"), records)
    states = []
    replayer.subscribe(states.append)

    report = await replayer.replay()

    assert report.state == ReplayState.COMPLETED
    assert report.redirect_to == "note-editor"
    assert states == [ReplayState.PENDING_DETECTED, ReplayState.REPLAYING, ReplayState.COMPLETED]

    created = records.created("create_note")
    assert len(created) == 1
    _, user_id, record = created[0]
    assert user_id == "user-1"
    assert record.id == uuid5(action.id, "note")
    assert report.items[0].record_id == str(record.id)

    assert await store.has_unsaved_data() is False
    assert await store.get_prefill_signal() is None
    assert await store.get_last_saved() is not None


@pytest.mark.asyncio
async def test_second_replay_is_a_noop(store, records):
    await store.save(note_action("Buy milk"))
    replayer = make_replayer(store, FakeSession("user-1"), records)

    first = await replayer.replay()
    second = await replayer.replay()

    assert first.state == ReplayState.COMPLETED
    assert second.state == ReplayState.IDLE
    assert records.attempts == [("create_note", "Buy milk")]


@pytest.mark.asyncio
async def test_partial_failure_keeps_store_and_retry_sends_only_the_rest(store, records):
    await store.save(subtask_action(["Buy balloons", "Book venue", "Send invites"]))
    records.fail("Book venue", status_code=400)
    replayer = make_replayer(store, FakeSession("user-1"), records)

    report = await replayer.replay()

    assert report.state == ReplayState.REPLAY_FAILED
    assert [i.label for i in report.failed_items] == ["Book venue"]
    assert "Book venue" in report.message
    assert await store.has_unsaved_data() is True
    stored = await store.load()
    assert sorted(stored.replayed_items) == ["subtask:0", "subtask:2"]
    assert len(records.created("create_todo")) == 2

    # Backend recovers; the next sign-in only sends what is missing
    records.recover()
    records.attempts.clear()
    report = await replayer.replay()

    assert report.state == ReplayState.COMPLETED
    assert records.attempts == [("create_todo", "Book venue")]
    statuses = {i.item_key: i.status for i in report.items}
    assert statuses == {
        "subtask:0": ReplayItemStatus.ALREADY_REPLAYED,
        "subtask:1": ReplayItemStatus.CREATED,
        "subtask:2": ReplayItemStatus.ALREADY_REPLAYED,
    }
    assert len(records.created("create_todo")) == 3
    assert await store.has_unsaved_data() is False


@pytest.mark.asyncio
async def test_lost_progress_does_not_duplicate_rows(store, records, monkeypatch):
    await store.save(subtask_action(["one", "two"]))
    records.fail("two", status_code=400)

    async def broken_mark(*args, **kwargs):
        raise StorageWriteError("disk full")

    monkeypatch.setattr(store, "mark_replayed", broken_mark)
    replayer = make_replayer(store, FakeSession("user-1"), records)

    first = await replayer.replay()
    assert first.state == ReplayState.REPLAY_FAILED

    records.recover()
    second = await replayer.replay()

    assert second.state == ReplayState.COMPLETED
    # "one" was sent twice with the same id; the backend kept one row
    assert [a[1] for a in records.attempts].count("one") == 2
    assert len(records.created("create_todo")) == 2


@pytest.mark.asyncio
async def test_transient_errors_are_retried(store, records):
    await store.save(note_action("Flaky"))
    records.fail("create_note", times=2, status_code=503)
    replayer = make_replayer(store, FakeSession("user-1"), records, item_attempts=3)

    report = await replayer.replay()

    assert report.state == ReplayState.COMPLETED
    assert report.items[0].attempts == 3


@pytest.mark.asyncio
async def test_rejected_item_is_not_retried(store, records):
    await store.save(note_action("Bad"))
    records.fail("create_note", status_code=400)
    replayer = make_replayer(store, FakeSession("user-1"), records, item_attempts=3)

    report = await replayer.replay()

    assert report.state == ReplayState.REPLAY_FAILED
    assert report.items[0].attempts == 1


@pytest.mark.asyncio
async def test_retries_exhausted_keeps_store(store, records):
    await store.save(todo_action())
    records.fail("create_todo", status_code=None)
    replayer = make_replayer(store, FakeSession("user-1"), records, item_attempts=2)

    report = await replayer.replay()

    assert report.state == ReplayState.REPLAY_FAILED
    assert report.items[0].attempts == 2
    assert await store.has_unsaved_data() is True


@pytest.mark.asyncio
async def test_waits_for_session_user(store, records):
    await store.save(todo_action())
    session = FakeSession("user-1", ready_after=2)
    replayer = make_replayer(store, session, records, session_wait_attempts=3)

    report = await replayer.replay()

    assert report.state == ReplayState.COMPLETED
    assert session.lookups == 3


@pytest.mark.asyncio
async def test_session_wait_exhausted_keeps_store(store, records):
    await store.save(todo_action())
    session = FakeSession(None)
    replayer = make_replayer(store, session, records, session_wait_attempts=3)
    states = []
    replayer.subscribe(states.append)

    report = await replayer.replay()

    assert report.state == ReplayState.REPLAY_FAILED
    assert states == [ReplayState.PENDING_DETECTED, ReplayState.REPLAY_FAILED]
    assert session.lookups == 3
    assert records.attempts == []
    assert await store.has_unsaved_data() is True


@pytest.mark.asyncio
async def test_save_work_entry_survives_failed_replay(store, records):
    await store.save(todo_action())
    await store.mark_save_work_entry()
    session = FakeSession(None)
    replayer = make_replayer(store, session, records, session_wait_attempts=1)

    first = await replayer.replay()
    assert first.state == ReplayState.REPLAY_FAILED
    assert first.came_through_save_work_modal is True

    records.fail("Call the dentist", status_code=400)
    session.user_id = "user-1"
    second = await replayer.replay()
    assert second.state == ReplayState.REPLAY_FAILED
    assert second.came_through_save_work_modal is True

    records.recover()
    third = await replayer.replay()
    assert third.state == ReplayState.COMPLETED
    assert third.came_through_save_work_modal is True
    assert await store.has_save_work_entry() is False


@pytest.mark.asyncio
async def test_capture_during_replay_survives_clear(store):
    await store.save(note_action("Before sign-in"))

    class CapturingRecords(RecordingRecords):
        async def create_note(self, user_id, record):
            # Guest-mode capture racing the replay
            await store.save(todo_action("Captured meanwhile"))
            return await super().create_note(user_id, record)

    records = CapturingRecords()
    replayer = make_replayer(store, FakeSession("user-1"), records)

    report = await replayer.replay()

    assert report.state == ReplayState.COMPLETED
    remaining = await store.load_all()
    assert [a.payload["title"] for a in remaining] == ["Captured meanwhile"]


@pytest.mark.asyncio
async def test_mood_and_mode_sync_then_clear(store, records):
    await store.save_mood_entry(MoodEntry(timestamp=10, mood_value=MoodValue(body=50, mind=60)))
    await store.save_mode_selection(SensoryMode.LOW)
    replayer = make_replayer(store, FakeSession("user-1"), records)

    report = await replayer.replay()

    assert report.state == ReplayState.COMPLETED
    assert len(records.mood_entries) == 1
    assert records.sensory_modes == ["low"]
    assert await store.load_mood_entries() == []
    assert await store.load_mode_selection() is None
    assert await store.has_unsaved_data() is False


@pytest.mark.asyncio
async def test_mood_sync_failure_keeps_everything(store, records):
    await store.save(note_action())
    await store.save_mood_entry(MoodEntry(timestamp=10, mood_value=MoodValue(body=50, mind=60)))
    records.fail("create_mood_entries", status_code=500)
    replayer = make_replayer(store, FakeSession("user-1"), records, item_attempts=1)

    report = await replayer.replay()

    assert report.state == ReplayState.REPLAY_FAILED
    assert [i.item_key for i in report.failed_items] == ["mood_entries"]
    assert len(await store.load_all()) == 1
    assert len(await store.load_mood_entries()) == 1


@pytest.mark.asyncio
async def test_unmappable_stored_action_does_not_block_other_work(store, records):
    await store.save(PendingAction(
        kind=ActionKind.CALENDAR_EVENT,
        target_screen="calendar",
        payload={"title": "No start"},
    ))
    await store.save(todo_action("Still sent"))
    await store.save_mood_entry(MoodEntry(timestamp=10, mood_value=MoodValue(body=50, mind=60)))
    await store.save_mode_selection(SensoryMode.HIGH)
    replayer = make_replayer(store, FakeSession("user-1"), records)

    report = await replayer.replay()

    assert report.state == ReplayState.REPLAY_FAILED
    assert [i.label for i in report.failed_items] == ["calendar_event"]
    assert [row[2].title for row in records.created()] == ["Still sent"]
    assert len(records.mood_entries) == 1
    assert records.sensory_modes == ["high"]
    assert await store.load_mood_entries() == []
    assert await store.load_mode_selection() is None
    assert [a.kind for a in await store.load_all()] == [ActionKind.CALENDAR_EVENT, ActionKind.TODO]

    again = await replayer.replay()

    assert again.state == ReplayState.REPLAY_FAILED
    assert [i.status for i in again.items if i.kind == ActionKind.TODO] == [ReplayItemStatus.ALREADY_REPLAYED]
    assert len(records.created()) == 1


@pytest.mark.asyncio
async def test_mood_entry_recorded_during_replay_is_kept(store):
    await store.save(note_action())
    await store.save_mood_entry(MoodEntry(timestamp=1, mood_value=MoodValue(body=10, mind=20)))

    class RacingRecords(RecordingRecords):
        raced = False

        async def create_mood_entries(self, user_id, records):
            if not self.raced:
                self.raced = True
                await store.save_mood_entry(MoodEntry(timestamp=2, mood_value=MoodValue(body=30, mind=40)))
            return await super().create_mood_entries(user_id, records)

    records = RacingRecords()
    replayer = make_replayer(store, FakeSession("user-1"), records)

    report = await replayer.replay()

    assert report.state == ReplayState.COMPLETED
    assert [r.timestamp for r in records.mood_entries.values()] == [1]
    assert [e.timestamp for e in await store.load_mood_entries()] == [2]
    assert await store.has_unsaved_data() is True

    await replayer.replay()

    assert sorted(r.timestamp for r in records.mood_entries.values()) == [1, 2]
    assert await store.has_unsaved_data() is False


@pytest.mark.asyncio
async def test_mode_changed_during_replay_is_kept(store):
    await store.save_mode_selection(SensoryMode.LOW)

    class RacingRecords(RecordingRecords):
        async def upsert_sensory_mode(self, user_id, mode):
            await store.save_mode_selection(SensoryMode.HIGH)
            return await super().upsert_sensory_mode(user_id, mode)

    records = RacingRecords()
    replayer = make_replayer(store, FakeSession("user-1"), records)

    report = await replayer.replay()

    assert report.state == ReplayState.COMPLETED
    assert records.sensory_modes == ["low"]
    assert await store.load_mode_selection() == SensoryMode.HIGH


@pytest.mark.asyncio
async def test_reports_save_work_entry(store, records):
    await store.save(note_action())
    await store.mark_save_work_entry()
    replayer = make_replayer(store, FakeSession("user-1"), records)

    report = await replayer.replay()

    assert report.came_through_save_work_modal is True
    assert await store.pop_save_work_entry() is False


@pytest.mark.asyncio
async def test_concurrent_replays_create_once(store, records):
    await store.save(note_action())
    replayer = make_replayer(store, FakeSession("user-1"), records)

    first, second = await asyncio.gather(replayer.replay(), replayer.replay())

    assert {first.state, second.state} == {ReplayState.COMPLETED, ReplayState.IDLE}
    assert len(records.attempts) == 1


@pytest.mark.asyncio
async def test_listener_errors_do_not_stop_replay(store, records):
    await store.save(note_action())
    replayer = make_replayer(store, FakeSession("user-1"), records)
    seen = []

    def broken(state):
        raise RuntimeError("indicator gone")

    replayer.subscribe(broken)
    unsubscribe = replayer.subscribe(seen.append)

    report = await replayer.replay()
    unsubscribe()

    assert report.state == ReplayState.COMPLETED
    assert seen[-1] == ReplayState.COMPLETED
    assert replayer.is_replaying is False
