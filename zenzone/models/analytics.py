"""Chat session analytics model definitions."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from zenzone.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatSessionAnalytics(Base):
    """Per-user summary of one support chat session, keyed by the client's session id."""
    __tablename__ = "chat_session_analytics"
    __table_args__ = (UniqueConstraint('user_id', 'session_id', name='uq_chat_session_analytics_user_session'),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    session_id = Column(String, nullable=False)
    stats = Column(JSON, nullable=False, default=dict)  # {sentiments: {...}, intents: {...}}
    timeline = Column(JSON, nullable=False, default=list)
    meta = Column(JSON, nullable=False, default=dict)  # startedAt/endedAt/totalMessages
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
