"""Session-scoped store used by long-lived call components.

Request handlers get one `AsyncSession` per request. The controller, status
monitor, transcription pipeline and agent bridge outlive a request and run
concurrently, so each store operation here opens its own session.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import PersistenceFailure
from app.db.models import Agent, Call, CallDirection, CallStatus, Contact, TranscriptEntry
from app.services.persistence.agents import AgentPersistenceService
from app.services.persistence.calls import CallPersistenceService
from app.services.persistence.contacts import ContactPersistenceService
from app.services.persistence.transcripts import TranscriptPersistenceService

logger = logging.getLogger(__name__)

# Collections the AI agent may read, and the columns it may filter on
QUERYABLE_COLLECTIONS = {
    "calls": Call,
    "agents": Agent,
    "contacts": Contact,
}
MAX_QUERY_LIMIT = 50


def row_to_dict(row: Any) -> Dict[str, Any]:
    """Serialize an ORM row's columns to JSON-friendly values."""
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        data[column.name] = value
    return data


class CallStore:
    """Persistent store facade: call CRUD, atomic transcript append, lookups."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as db:
            try:
                yield db
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"[STORE] {operation} failed: {type(e).__name__}: {e}")
                raise PersistenceFailure(f"{operation} failed: {e}") from e

    async def create_call(
        self,
        counterpart_number: str,
        direction: str = CallDirection.OUTBOUND,
        provider_call_id: Optional[str] = None,
        status: str = CallStatus.ACTIVE,
        counterpart_name: Optional[str] = None,
        ai_agent_id: Optional[int] = None,
        human_agent_id: Optional[int] = None,
    ) -> Call:
        call, _ = await self.get_or_create_call(
            counterpart_number,
            direction=direction,
            provider_call_id=provider_call_id,
            status=status,
            counterpart_name=counterpart_name,
            ai_agent_id=ai_agent_id,
            human_agent_id=human_agent_id,
        )
        return call

    async def get_or_create_call(self, counterpart_number: str, **fields: Any) -> Tuple[Call, bool]:
        """Returns (call, created); concurrent inserts of one provider call id share a row."""
        async with self._session("create_call") as db:
            return await CallPersistenceService(db).get_or_create_call(counterpart_number, **fields)

    async def get_call(self, call_id: int, with_transcript: bool = False) -> Optional[Call]:
        async with self._session("get_call") as db:
            return await CallPersistenceService(db).get_call(call_id, with_transcript)

    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        async with self._session("get_call_by_provider_id") as db:
            return await CallPersistenceService(db).get_call_by_provider_id(provider_call_id)

    async def update_call_status(
        self,
        call_id: int,
        status: str,
        ended_at: Optional[datetime] = None,
        duration: Optional[int] = None,
    ) -> Optional[Call]:
        async with self._session("update_call_status") as db:
            return await CallPersistenceService(db).update_call_status(
                call_id, status, ended_at=ended_at, duration=duration
            )

    async def mark_call_ended(
        self, call_id: int, status: str = CallStatus.COMPLETED
    ) -> bool:
        async with self._session("mark_call_ended") as db:
            return await CallPersistenceService(db).mark_call_ended(call_id, status)

    async def assign_agents(
        self,
        call_id: int,
        ai_agent_id: Optional[int] = None,
        human_agent_id: Optional[int] = None,
    ) -> Optional[Call]:
        async with self._session("assign_agents") as db:
            return await CallPersistenceService(db).assign_agents(
                call_id, ai_agent_id=ai_agent_id, human_agent_id=human_agent_id
            )

    async def list_calls(self, statuses: Optional[List[str]] = None, limit: int = 100) -> List[Call]:
        async with self._session("list_calls") as db:
            return await CallPersistenceService(db).list_calls(statuses, limit)

    async def append_transcript_entry(
        self,
        call_id: int,
        text: str,
        source: str,
        timestamp: Optional[datetime] = None,
    ) -> TranscriptEntry:
        """Atomically append one entry to a call's transcript."""
        async with self._session("append_transcript_entry") as db:
            return await TranscriptPersistenceService(db).append_entry(
                call_id, text, source, timestamp=timestamp
            )

    async def list_transcript(self, call_id: int) -> List[TranscriptEntry]:
        async with self._session("list_transcript") as db:
            return await TranscriptPersistenceService(db).list_entries(call_id)

    async def find_available_ai_agent(self) -> Optional[Agent]:
        async with self._session("find_available_ai_agent") as db:
            return await AgentPersistenceService(db).find_available_agent("ai")

    async def create_agent(self, name: str, **fields: Any) -> Agent:
        async with self._session("create_agent") as db:
            return await AgentPersistenceService(db).create_agent(name, **fields)

    async def find_contact_by_phone(self, phone: str) -> Optional[Contact]:
        async with self._session("find_contact_by_phone") as db:
            return await ContactPersistenceService(db).find_by_phone(phone)

    async def query_collection(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Equality-filtered read over an allow-listed collection."""
        model = QUERYABLE_COLLECTIONS.get(collection)
        if model is None:
            raise ValueError(f"Collection '{collection}' is not queryable")

        query = select(model)
        for column_name, value in (filters or {}).items():
            if column_name not in model.__table__.columns:
                raise ValueError(f"Unknown column '{column_name}' for {collection}")
            query = query.where(model.__table__.columns[column_name] == value)
        query = query.order_by(model.id).limit(max(1, min(int(limit), MAX_QUERY_LIMIT)))

        async with self._session("query_collection") as db:
            result = await db.execute(query)
            return [row_to_dict(row) for row in result.scalars().all()]
