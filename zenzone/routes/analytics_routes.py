import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zenzone.auth.dependencies import get_current_user
from zenzone.core import config
from zenzone.core.errors import NotFound, ServiceUnavailable
from zenzone.database import ensure_database_ready, get_db
from zenzone.models.analytics import ChatSessionAnalytics
from zenzone.models.user import User

router = APIRouter(tags=['analytics'])

logger = logging.getLogger(__name__)


class SaveChatSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias='sessionId')
    stats: dict = Field(default_factory=dict)
    timeline: list = Field(default_factory=list)
    meta: dict = Field(default_factory=dict)

    @field_validator('session_id')
    @classmethod
    def validate_session_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('sessionId is required')
        return normalized


class SavedResponse(BaseModel):
    message: str
    id: int


class ChatSessionResponse(BaseModel):
    id: int
    sessionId: str
    stats: dict
    timeline: list
    meta: dict
    createdAt: datetime
    updatedAt: datetime


class ChatSessionListResponse(BaseModel):
    items: list[ChatSessionResponse]


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def serialize_session(record: ChatSessionAnalytics) -> ChatSessionResponse:
    return ChatSessionResponse(
        id=record.id,
        sessionId=record.session_id,
        stats=record.stats or {},
        timeline=record.timeline or [],
        meta=record.meta or {},
        createdAt=_aware(record.created_at),
        updatedAt=_aware(record.updated_at),
    )


def _find(db: Session, user_id: int, session_id: str) -> ChatSessionAnalytics | None:
    return db.query(ChatSessionAnalytics).filter(
        ChatSessionAnalytics.user_id == user_id,
        ChatSessionAnalytics.session_id == session_id,
    ).first()


def _upsert(db: Session, user_id: int, data: SaveChatSessionRequest) -> ChatSessionAnalytics:
    record = _find(db, user_id, data.session_id)
    if record is None:
        record = ChatSessionAnalytics(user_id=user_id, session_id=data.session_id)
        db.add(record)
    record.stats = data.stats
    record.timeline = data.timeline
    record.meta = data.meta
    record.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(record)
    return record


@router.post('/chat-session', response_model=SavedResponse)
def save_chat_session(
    data: SaveChatSessionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        try:
            record = _upsert(db, current_user.id, data)
        except IntegrityError:
            # A concurrent save created the row first; update that one instead.
            db.rollback()
            record = _upsert(db, current_user.id, data)

        logger.info('Chat session %s saved for user %s', data.session_id, current_user.id)
        return SavedResponse(message='Saved', id=record.id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServiceUnavailable() from exc


@router.get('/chat-sessions', response_model=ChatSessionListResponse)
def list_chat_sessions(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        records = db.query(ChatSessionAnalytics).filter(
            ChatSessionAnalytics.user_id == current_user.id,
        ).order_by(
            ChatSessionAnalytics.updated_at.desc(),
            ChatSessionAnalytics.id.desc(),
        ).limit(config.ANALYTICS_LIST_LIMIT).all()

        return ChatSessionListResponse(items=[serialize_session(record) for record in records])
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


@router.get('/chat-session/{record_id}', response_model=ChatSessionResponse)
def get_chat_session(
    record_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        record = db.query(ChatSessionAnalytics).filter(
            ChatSessionAnalytics.id == record_id,
            ChatSessionAnalytics.user_id == current_user.id,
        ).first()
        if record is None:
            raise NotFound('Not found')
        return serialize_session(record)
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc
