"""Database models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship

Base = declarative_base()


class CallStatus:
    """Persisted call statuses."""

    ACTIVE = "active"
    QUEUED = "queued"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    TERMINAL = frozenset({COMPLETED, ABANDONED})
    ALL = frozenset({ACTIVE, QUEUED, COMPLETED, ABANDONED})


class CallDirection:
    """Who placed the call."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"


class TranscriptSource:
    """Who produced a transcript entry."""

    HUMAN = "human"
    AI = "ai"
    SYSTEM = "system"

    ALL = frozenset({HUMAN, AI, SYSTEM})


class Agent(Base):
    """Agent model (AI or human)."""

    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(String, default="ai", nullable=False)  # ai, human
    status = Column(String, default="available", nullable=False)  # available, busy, offline
    voice_id = Column(String, nullable=True)
    specialization = Column(String, nullable=True)
    prompt_template = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Contact(Base):
    """Contact directory entry."""

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=False, index=True)
    email = Column(String, nullable=True)
    company = Column(String, nullable=True)
    last_contact = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Call(Base):
    """Call session model."""

    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    provider_call_id = Column(String, unique=True, index=True, nullable=True)
    direction = Column(String, default=CallDirection.OUTBOUND, nullable=False)
    counterpart_number = Column(String, nullable=False)
    counterpart_name = Column(String, nullable=True)
    status = Column(String, default=CallStatus.ACTIVE, nullable=False)
    start_time = Column(DateTime, default=datetime.utcnow, nullable=False)
    end_time = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # seconds, from provider callbacks
    ai_agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True)
    human_agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True)

    # Relationships
    transcript = relationship(
        "TranscriptEntry",
        back_populates="call",
        order_by="TranscriptEntry.id",
    )


class TranscriptEntry(Base):
    """One appended transcript turn. Rows are insert-only."""

    __tablename__ = "transcript_entries"

    id = Column(Integer, primary_key=True, index=True)
    call_id = Column(Integer, ForeignKey("calls.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    source = Column(String, nullable=False)  # human, ai, system
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    call = relationship("Call", back_populates="transcript")
