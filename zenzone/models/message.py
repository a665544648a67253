"""Message model definitions."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Text
from zenzone.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(Base):
    """A chat message exchanged inside an appointment. Never edited after insert."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    content = Column(Text, nullable=False, default='')
    attachments = Column(JSON, nullable=False, default=list)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
