"""Appointment-scoped message persistence.

The store is the source of truth for conversations; the realtime channel only
carries echoes of rows written here.
"""

import logging
import re
from datetime import datetime, timezone

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from zenzone.core import config
from zenzone.core.errors import Forbidden, NotApproved, ValidationFailed
from zenzone.models.appointment import APPROVED, CLOSED, Appointment
from zenzone.models.message import Message
from zenzone.models.user import PSYCHIATRIST_ROLE, User, UserBlock
from zenzone.services import anonymity
from zenzone.services.authorization import authorize_participant, counterpart_id

logger = logging.getLogger(__name__)

BANNED_WORDS = ('fuck', 'shit', 'bitch', 'asshole')
_BANNED_PATTERN = re.compile('|'.join(re.escape(word) for word in BANNED_WORDS), re.IGNORECASE)

MAX_ATTACHMENT_NAME_LENGTH = 200
DEFAULT_ATTACHMENT_TYPE = 'application/octet-stream'


def mask_profanity(text: str) -> str:
    return _BANNED_PATTERN.sub(lambda match: '*' * len(match.group(0)), text)


def normalize_attachments(attachments: list[dict] | None) -> list[dict]:
    normalized = []
    for attachment in attachments or []:
        if not isinstance(attachment, dict):
            continue
        name = attachment.get('name')
        url = attachment.get('url')
        if not name or not url:
            continue
        try:
            size = int(attachment.get('size') or 0)
        except (TypeError, ValueError):
            size = 0
        normalized.append({
            'name': str(name)[:MAX_ATTACHMENT_NAME_LENGTH],
            'url': str(url),
            'type': str(attachment.get('type') or DEFAULT_ATTACHMENT_TYPE),
            'size': max(size, 0),
        })
    return normalized


def readable_statuses() -> tuple[str, ...]:
    if config.CLOSED_HISTORY_READABLE:
        return APPROVED, CLOSED
    return (APPROVED,)


def is_blocked(db: Session, blocker_id: int, blocked_id: int) -> bool:
    return db.query(UserBlock.id).filter(
        UserBlock.blocker_id == blocker_id,
        UserBlock.blocked_id == blocked_id,
    ).first() is not None


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _party(user: User | None, user_id: int) -> dict:
    return {
        'id': user_id,
        'username': user.username if user is not None else None,
        'displayName': anonymity.display_name(user),
    }


def serialize_message(message: Message, users: dict[int, User] | None = None) -> dict:
    users = users or {}
    return {
        'id': message.id,
        'senderId': message.sender_id,
        'recipientId': message.recipient_id,
        'appointmentId': message.appointment_id,
        'content': message.content,
        'attachments': list(message.attachments or []),
        'timestamp': _isoformat(message.timestamp),
        'sender': _party(users.get(message.sender_id), message.sender_id),
        'recipient': _party(users.get(message.recipient_id), message.recipient_id),
    }


def _load_users(db: Session, user_ids: set[int]) -> dict[int, User]:
    if not user_ids:
        return {}
    return {user.id: user for user in db.query(User).filter(User.id.in_(user_ids)).all()}


def serialize_messages(db: Session, messages: list[Message]) -> list[dict]:
    user_ids = {message.sender_id for message in messages} | {message.recipient_id for message in messages}
    users = _load_users(db, user_ids)
    return [serialize_message(message, users) for message in messages]


def list_by_appointment(db: Session, user: User, appointment_id: int) -> list[dict]:
    appointment = authorize_participant(db, user, appointment_id, allowed_statuses=readable_statuses())
    other_id = counterpart_id(appointment, user.id)

    messages = db.query(Message).filter(
        or_(
            and_(Message.sender_id == user.id, Message.recipient_id == other_id),
            and_(Message.sender_id == other_id, Message.recipient_id == user.id),
        )
    ).order_by(Message.timestamp.asc(), Message.id.asc()).all()

    return serialize_messages(db, messages)


def latest(db: Session, user: User, appointment_id: int) -> dict | None:
    authorize_participant(db, user, appointment_id, allowed_statuses=readable_statuses())

    message = db.query(Message).filter(
        Message.appointment_id == appointment_id,
    ).order_by(Message.timestamp.desc(), Message.id.desc()).first()

    if message is None:
        return None
    return serialize_messages(db, [message])[0]


def get(db: Session, message_id: int) -> Message | None:
    return db.query(Message).filter(Message.id == message_id).first()


def create(
    db: Session,
    user: User,
    appointment_id: int,
    content: str | None,
    attachments: list[dict] | None = None,
    recipient_id: int | None = None,
) -> dict:
    appointment = authorize_participant(db, user, appointment_id)
    other_id = counterpart_id(appointment, user.id)

    if recipient_id is not None and recipient_id != other_id:
        raise Forbidden('Recipient is not the other participant of this appointment.')

    if is_blocked(db, blocker_id=other_id, blocked_id=user.id):
        logger.info('Blocked message from user %s in appointment %s', user.id, appointment_id)
        raise Forbidden('You cannot send messages to this user.')

    safe_attachments = normalize_attachments(attachments)
    text = (content or '').strip()
    if not text and not safe_attachments:
        raise ValidationFailed('Message content or an attachment is required.')
    if len(text) > config.MAX_MESSAGE_LENGTH:
        raise ValidationFailed(f'Messages must be {config.MAX_MESSAGE_LENGTH} characters or fewer.')

    message = Message(
        sender_id=user.id,
        recipient_id=other_id,
        appointment_id=appointment.id,
        content=mask_profanity(text),
        attachments=safe_attachments,
        timestamp=datetime.now(timezone.utc),
    )
    db.add(message)
    db.commit()
    db.refresh(message)

    logger.info('Message %s stored for appointment %s', message.id, appointment.id)
    return serialize_messages(db, [message])[0]


def inbox(db: Session, user: User) -> list[dict]:
    """Every message of the caller's approved appointments, oldest first.

    A psychiatrist without approved appointments gets an empty inbox; a
    student without one is refused, as they have nobody to talk to yet.
    """
    seat = Appointment.psychiatrist_id if user.role == PSYCHIATRIST_ROLE else Appointment.student_id
    appointment_ids = [
        row.id
        for row in db.query(Appointment.id).filter(seat == user.id, Appointment.status == APPROVED).all()
    ]
    if not appointment_ids:
        if user.role == PSYCHIATRIST_ROLE:
            return []
        raise NotApproved('No approved appointment.')

    messages = db.query(Message).filter(
        Message.appointment_id.in_(appointment_ids),
        or_(Message.sender_id == user.id, Message.recipient_id == user.id),
    ).order_by(Message.timestamp.asc(), Message.id.asc()).all()

    return serialize_messages(db, messages)
