"""Call persistence service."""
from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from app.db.models import Call, CallDirection, CallStatus


def apply_status(
    call: Call,
    status: str,
    at: Optional[datetime] = None,
    duration: Optional[int] = None,
) -> None:
    """Set a call's status, keeping end_time set exactly when the status is terminal."""
    if status not in CallStatus.ALL:
        raise ValueError(f"Unknown call status: {status}")
    call.status = status
    if status in CallStatus.TERMINAL:
        if call.end_time is None:
            call.end_time = at or datetime.utcnow()
        if duration is not None:
            call.duration = duration
    else:
        call.end_time = None


class CallPersistenceService:
    """Service for persisting call sessions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_call(self, counterpart_number: str, **fields) -> Call:
        """Create a new call record, or return the existing one for the provider call id."""
        call, _ = await self.get_or_create_call(counterpart_number, **fields)
        return call

    async def get_or_create_call(
        self,
        counterpart_number: str,
        direction: str = CallDirection.OUTBOUND,
        provider_call_id: Optional[str] = None,
        status: str = CallStatus.ACTIVE,
        counterpart_name: Optional[str] = None,
        ai_agent_id: Optional[int] = None,
        human_agent_id: Optional[int] = None,
    ) -> Tuple[Call, bool]:
        """
        Create a call record keyed by provider call id.

        Returns (call, created). When another writer inserted the same
        provider call id first, its row is returned with created=False.
        """
        if provider_call_id:
            existing_call = await self.get_call_by_provider_id(provider_call_id)
            if existing_call:
                return existing_call, False

        call = Call(
            provider_call_id=provider_call_id,
            direction=direction,
            counterpart_number=counterpart_number,
            counterpart_name=counterpart_name,
            ai_agent_id=ai_agent_id,
            human_agent_id=human_agent_id,
            start_time=datetime.utcnow(),
        )
        apply_status(call, status)
        self.db.add(call)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing_call = (
                await self.get_call_by_provider_id(provider_call_id) if provider_call_id else None
            )
            if existing_call is None:
                raise
            return existing_call, False
        await self.db.refresh(call)
        return call, True

    async def get_call(self, call_id: int, with_transcript: bool = False) -> Optional[Call]:
        """Get call by database id."""
        query = select(Call).where(Call.id == call_id)
        if with_transcript:
            query = query.options(selectinload(Call.transcript))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        """Get call by the telephony provider's call id."""
        result = await self.db.execute(
            select(Call).where(Call.provider_call_id == provider_call_id)
        )
        return result.scalar_one_or_none()

    async def update_call_status(
        self,
        call_id: int,
        status: str,
        ended_at: Optional[datetime] = None,
        duration: Optional[int] = None,
    ) -> Optional[Call]:
        """Update call status unconditionally."""
        call = await self.get_call(call_id)
        if call:
            apply_status(call, status, at=ended_at, duration=duration)
            await self.db.commit()
            await self.db.refresh(call)
        return call

    async def mark_call_ended(
        self,
        call_id: int,
        status: str = CallStatus.COMPLETED,
        ended_at: Optional[datetime] = None,
    ) -> bool:
        """Move a call to a terminal status unless it already is terminal.

        Returns True when this call performed the transition.
        """
        if status not in CallStatus.TERMINAL:
            raise ValueError(f"Not a terminal status: {status}")
        result = await self.db.execute(
            update(Call)
            .where(Call.id == call_id)
            .where(Call.status.not_in(CallStatus.TERMINAL))
            .values(status=status, end_time=ended_at or datetime.utcnow())
        )
        await self.db.commit()
        return result.rowcount > 0

    async def assign_agents(
        self,
        call_id: int,
        ai_agent_id: Optional[int] = None,
        human_agent_id: Optional[int] = None,
    ) -> Optional[Call]:
        """Set agent assignments. Both may be set at once."""
        call = await self.get_call(call_id)
        if call:
            if ai_agent_id is not None:
                call.ai_agent_id = ai_agent_id
            if human_agent_id is not None:
                call.human_agent_id = human_agent_id
            await self.db.commit()
            await self.db.refresh(call)
        return call

    async def list_calls(
        self, statuses: Optional[Iterable[str]] = None, limit: int = 100
    ) -> List[Call]:
        """List calls, newest first, optionally filtered by status."""
        query = select(Call).order_by(desc(Call.start_time)).limit(limit)
        if statuses:
            query = query.where(Call.status.in_(list(statuses)))
        result = await self.db.execute(query)
        return list(result.scalars().all())
