"""Contact lookup service."""
import re
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.db.models import Contact

# Number of trailing digits compared when matching phone numbers
PHONE_SUFFIX_DIGITS = 9


def normalize_phone(phone: str) -> str:
    """Strip everything but digits."""
    return re.sub(r"\D", "", phone or "")


def phone_suffix(phone: str, digits: int = PHONE_SUFFIX_DIGITS) -> str:
    """Trailing digits used to match numbers written in different formats."""
    return normalize_phone(phone)[-digits:]


class ContactPersistenceService:
    """Service for reverse phone lookups in the contacts directory."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_phone(self, phone: str) -> Optional[Contact]:
        """Find a contact whose number shares the normalized suffix of `phone`."""
        suffix = phone_suffix(phone)
        if not suffix:
            return None

        # Stored numbers may contain separators anywhere but after the final
        # digit, so prefilter on that digit and compare normalized values here.
        result = await self.db.execute(
            select(Contact)
            .where(Contact.phone.like(f"%{suffix[-1]}"))
            .order_by(Contact.id)
        )
        for contact in result.scalars().all():
            if phone_suffix(contact.phone) == suffix:
                return contact
        return None
