"""Transcript persistence service.

Transcript entries live in their own insert-only table. Appending is a single
INSERT, so two producers writing to the same call never overwrite each other.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.db.models import TranscriptEntry, TranscriptSource


class TranscriptPersistenceService:
    """Service for appending to and reading call transcripts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append_entry(
        self,
        call_id: int,
        text: str,
        source: str,
        timestamp: Optional[datetime] = None,
    ) -> TranscriptEntry:
        """Append one entry to a call's transcript."""
        if source not in TranscriptSource.ALL:
            raise ValueError(f"Unknown transcript source: {source}")
        entry = TranscriptEntry(
            call_id=call_id,
            text=text,
            source=source,
            timestamp=timestamp or datetime.utcnow(),
        )
        self.db.add(entry)
        await self.db.commit()
        await self.db.refresh(entry)
        return entry

    async def list_entries(self, call_id: int) -> List[TranscriptEntry]:
        """Get a call's transcript in append order."""
        result = await self.db.execute(
            select(TranscriptEntry)
            .where(TranscriptEntry.call_id == call_id)
            .order_by(TranscriptEntry.id)
        )
        return list(result.scalars().all())
