"""Records client for the hosted backend (Supabase PostgREST)."""
import logging
from datetime import datetime
from typing import List, Optional

import httpx

from app.config import get_settings
from app.core.errors import ExternalServiceError
from app.schemas.guest_schemas import SensoryMode
from app.schemas.record_schemas import (
    CalendarEventRecord,
    CoreMemoryRecord,
    CreatedRecord,
    GoalRecord,
    JournalEntryRecord,
    KanbanCardRecord,
    MoodEntryRecord,
    NoteRecord,
    RecordBase,
    TodoRecord,
)
from app.services.session import SessionProvider

logger = logging.getLogger(__name__)


class RecordsClient:
    """
    Narrow create-only client used to replay guest work.

    Rows carry client-generated ids and are inserted with
    ``resolution=ignore-duplicates``, so replaying the same item twice leaves
    one row on the backend.
    """

    def __init__(
        self,
        session_provider: Optional[SessionProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.session_provider = session_provider
        self.base_url = self.settings.records_rest_url
        self.anon_key = self.settings.supabase_anon_key
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.records_timeout_seconds,
            transport=self._transport,
        )

    async def _headers(self, prefer: str) -> dict:
        token = None
        if self.session_provider is not None:
            token = await self.session_provider.get_access_token()
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token or self.anon_key}",
            "Content-Type": "application/json",
            "Prefer": prefer,
        }

    async def _post(self, table: str, rows: List[dict], prefer: str, params: Optional[dict] = None) -> httpx.Response:
        url = f"{self.base_url}/{table}"
        headers = await self._headers(prefer)

        try:
            async with self._client() as client:
                response = await client.post(url, json=rows, headers=headers, params=params)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                service="records",
                message=f"Could not reach records backend for '{table}': {exc}",
            ) from exc

        if response.status_code not in (200, 201, 204):
            raise ExternalServiceError(
                service="records",
                message=f"Failed to create {table} row: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def _insert(self, table: str, user_id: str, records: List[RecordBase]) -> List[CreatedRecord]:
        rows = [record.to_row(user_id) for record in records]
        await self._post(
            table,
            rows,
            prefer="return=minimal,resolution=ignore-duplicates",
        )
        logger.info(f"Records: inserted {len(rows)} row(s) into {table}")
        return [CreatedRecord(id=str(record.id), table=table) for record in records]

    async def _insert_one(self, table: str, user_id: str, record: RecordBase) -> CreatedRecord:
        created = await self._insert(table, user_id, [record])
        return created[0]

    # -- create operations --

    async def create_note(self, user_id: str, record: NoteRecord) -> CreatedRecord:
        return await self._insert_one("notes", user_id, record)

    async def create_todo(self, user_id: str, record: TodoRecord) -> CreatedRecord:
        return await self._insert_one("todos", user_id, record)

    async def create_journal_entry(self, user_id: str, record: JournalEntryRecord) -> CreatedRecord:
        return await self._insert_one("journal_entries", user_id, record)

    async def create_core_memory(self, user_id: str, record: CoreMemoryRecord) -> CreatedRecord:
        return await self._insert_one("core_memories", user_id, record)

    async def create_calendar_event(self, user_id: str, record: CalendarEventRecord) -> CreatedRecord:
        return await self._insert_one("calendar_events", user_id, record)

    async def create_goal(self, user_id: str, record: GoalRecord) -> CreatedRecord:
        return await self._insert_one("goals", user_id, record)

    async def create_kanban_card(self, user_id: str, record: KanbanCardRecord) -> CreatedRecord:
        # Cards belong to a board, not directly to a user
        created = await self._post(
            "kanban_cards",
            [record.to_row(None)],
            prefer="return=minimal,resolution=ignore-duplicates",
        )
        logger.info(f"Records: inserted kanban card ({created.status_code})")
        return CreatedRecord(id=str(record.id), table="kanban_cards")

    async def create_mood_entries(self, user_id: str, records: List[MoodEntryRecord]) -> List[CreatedRecord]:
        if not records:
            return []
        return await self._insert("mood_entries", user_id, records)

    async def upsert_sensory_mode(self, user_id: str, mode: SensoryMode) -> None:
        await self._post(
            "user_profiles",
            [{
                "user_id": user_id,
                "sensory_mode": mode.value,
                "updated_at": datetime.utcnow().isoformat() + "Z",
            }],
            prefer="return=minimal,resolution=merge-duplicates",
            params={"on_conflict": "user_id"},
        )
        logger.info(f"Records: saved sensory mode '{mode.value}' for {user_id}")
