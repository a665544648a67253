from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zenzone.auth.dependencies import get_current_user
from zenzone.core.errors import ServiceUnavailable, ValidationFailed
from zenzone.database import ensure_database_ready, get_db
from zenzone.models.user import User
from zenzone.services import message_store
from zenzone.services.authorization import resolve_active_appointment

router = APIRouter(tags=['messages'])

MAX_ATTACHMENTS_PER_MESSAGE = 10


class AttachmentRequest(BaseModel):
    name: str | None = None
    url: str | None = None
    type: str | None = None
    size: float | None = None


class CreateMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str | None = ''
    appointment_id: int | None = Field(default=None, alias='appointmentId')
    recipient_id: int | None = Field(default=None, alias='recipientId')
    resolve_appointment: bool = Field(default=False, alias='resolveAppointment')
    attachments: list[AttachmentRequest] = Field(default_factory=list)

    @field_validator('attachments')
    @classmethod
    def validate_attachments(cls, value: list[AttachmentRequest]) -> list[AttachmentRequest]:
        if len(value) > MAX_ATTACHMENTS_PER_MESSAGE:
            raise ValueError(f'At most {MAX_ATTACHMENTS_PER_MESSAGE} attachments per message.')
        return value


class AttachmentResponse(BaseModel):
    name: str
    url: str
    type: str
    size: int


class PartyResponse(BaseModel):
    id: int
    username: str | None = None
    displayName: str


class MessageResponse(BaseModel):
    id: int
    senderId: int
    recipientId: int
    appointmentId: int
    content: str
    attachments: list[AttachmentResponse]
    timestamp: str
    sender: PartyResponse
    recipient: PartyResponse


@router.get('', response_model=list[MessageResponse])
def list_inbox(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return message_store.inbox(db, current_user)
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


@router.get('/by-appointment/{appointment_id}', response_model=list[MessageResponse])
def list_conversation(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return message_store.list_by_appointment(db, current_user, appointment_id)
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


@router.get('/last/{appointment_id}', response_model=MessageResponse | None)
def latest_message(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return message_store.latest(db, current_user, appointment_id)
    except SQLAlchemyError as exc:
        raise ServiceUnavailable() from exc


@router.post('', response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def create_message(
    data: CreateMessageRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment_id = data.appointment_id
        if appointment_id is None:
            if not data.resolve_appointment:
                raise ValidationFailed(
                    'appointmentId is required. Set resolveAppointment to use your single active appointment.'
                )
            appointment_id = resolve_active_appointment(db, current_user, counterpart=data.recipient_id).id

        return message_store.create(
            db,
            current_user,
            appointment_id=appointment_id,
            content=data.content,
            attachments=[attachment.model_dump() for attachment in data.attachments],
            recipient_id=data.recipient_id,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServiceUnavailable() from exc
