"""Websocket endpoint for conversation rooms.

Frames in both directions are JSON envelopes ``{"event": str, "data": dict}``.
Messages are never written over this channel: clients persist through
``POST /api/messages`` first and then ask the server to echo the stored row
with ``sendMessage``.
"""

import enum
import json
import logging
import time
from typing import Any

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from zenzone import database
from zenzone.auth.dependencies import user_from_token
from zenzone.core.errors import Forbidden, NotFound, ValidationFailed, error_code
from zenzone.models.appointment import Appointment
from zenzone.models.user import User
from zenzone.realtime.broker import broker, participant_topic, shared_topic
from zenzone.services import message_store
from zenzone.services.authorization import authorize_participant

router = APIRouter()

logger = logging.getLogger(__name__)

UNAUTHORIZED_CLOSE_CODE = 4401


class ConnectionState(enum.Enum):
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'


class Connection:
    def __init__(self, websocket: WebSocket, user: User) -> None:
        self.websocket = websocket
        self.user_id = user.id
        self.user = user
        self.state = ConnectionState.CONNECTING
        self.joined: set[int] = set()

    async def deliver(self, event: str, payload: dict[str, Any]) -> None:
        if self.state is not ConnectionState.CONNECTED:
            raise RuntimeError('Connection is not open.')
        await self.websocket.send_json({'event': event, 'data': payload})

    def __repr__(self) -> str:
        return f'<Connection user={self.user_id} rooms={sorted(self.joined)}>'


def _now_ms() -> int:
    return int(time.time() * 1000)


def _appointment_id(data: dict) -> int:
    try:
        return int(data.get('appointmentId'))
    except (TypeError, ValueError) as exc:
        raise ValidationFailed('appointmentId is required.') from exc


def _load_room(user: User, appointment_id: int) -> Appointment:
    db = database.SessionLocal()
    try:
        return authorize_participant(db, user, appointment_id, require_approved=False)
    finally:
        db.close()


def _load_echo(message_id: int) -> dict | None:
    db = database.SessionLocal()
    try:
        message = message_store.get(db, message_id)
        if message is None:
            return None
        return message_store.serialize_messages(db, [message])[0]
    finally:
        db.close()


def _require_joined(connection: Connection, appointment_id: int) -> None:
    if appointment_id not in connection.joined:
        raise Forbidden('Join the conversation room first.')


async def _announce(connection: Connection, appointment_id: int, online: bool) -> None:
    await broker.publish(
        [shared_topic(appointment_id)],
        'peerOnline',
        {'appointmentId': appointment_id, 'userId': connection.user_id, 'online': online, 'timestamp': _now_ms()},
        exclude=connection,
    )


async def handle_join_room(connection: Connection, data: dict) -> None:
    appointment_id = _appointment_id(data)
    claimed_user = data.get('userId')
    if claimed_user is not None and str(claimed_user) != str(connection.user_id):
        raise Forbidden('Cannot join a room on behalf of another user.')

    await run_in_threadpool(_load_room, connection.user, appointment_id)

    broker.subscribe(participant_topic(appointment_id, connection.user_id), connection)
    broker.subscribe(shared_topic(appointment_id), connection)
    connection.joined.add(appointment_id)
    logger.info('User %s joined room %s', connection.user_id, appointment_id)

    await connection.deliver('roomJoined', {'appointmentId': appointment_id, 'userId': connection.user_id})
    await _announce(connection, appointment_id, online=True)


async def handle_leave_room(connection: Connection, data: dict) -> None:
    appointment_id = _appointment_id(data)
    _require_joined(connection, appointment_id)

    broker.unsubscribe(participant_topic(appointment_id, connection.user_id), connection)
    broker.unsubscribe(shared_topic(appointment_id), connection)
    connection.joined.discard(appointment_id)

    await connection.deliver('roomLeft', {'appointmentId': appointment_id})
    await _announce(connection, appointment_id, online=False)


async def handle_send_message(connection: Connection, data: dict) -> None:
    appointment_id = _appointment_id(data)
    _require_joined(connection, appointment_id)
    try:
        message_id = int(data.get('id'))
    except (TypeError, ValueError) as exc:
        raise ValidationFailed('Message id is required; persist the message before sending it.') from exc

    stored = await run_in_threadpool(_load_echo, message_id)
    if stored is None:
        raise NotFound('Message not found.')
    if stored['appointmentId'] != appointment_id or stored['senderId'] != connection.user_id:
        raise Forbidden('Only the sender can relay a message to its conversation.')

    await broker.publish(
        [
            participant_topic(appointment_id, stored['senderId']),
            participant_topic(appointment_id, stored['recipientId']),
            shared_topic(appointment_id),
        ],
        'receiveMessage',
        stored,
    )
    await broker.publish(
        [shared_topic(appointment_id)],
        'reloadChat',
        {'appointmentId': appointment_id},
        exclude=connection,
    )


async def handle_typing(connection: Connection, data: dict) -> None:
    appointment_id = _appointment_id(data)
    _require_joined(connection, appointment_id)
    await broker.publish(
        [shared_topic(appointment_id)],
        'userTyping',
        {'appointmentId': appointment_id, 'userId': connection.user_id, 'isTyping': bool(data.get('isTyping'))},
        exclude=connection,
    )


async def handle_presence_ping(connection: Connection, data: dict) -> None:
    appointment_id = _appointment_id(data)
    _require_joined(connection, appointment_id)
    # Other devices of the caller do not count as the peer being online.
    peer_ids = sorted({
        member.user_id
        for member in broker.members(shared_topic(appointment_id))
        if member.user_id != connection.user_id
    })
    await connection.deliver(
        'peerOnline',
        {'appointmentId': appointment_id, 'userIds': peer_ids, 'online': bool(peer_ids)},
    )


HANDLERS = {
    'joinRoom': handle_join_room,
    'leaveRoom': handle_leave_room,
    'sendMessage': handle_send_message,
    'typing': handle_typing,
    'presencePing': handle_presence_ping,
}


def parse_envelope(raw: str) -> tuple[str, dict]:
    try:
        envelope = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationFailed('Frames must be JSON.') from exc
    if not isinstance(envelope, dict) or not isinstance(envelope.get('event'), str):
        raise ValidationFailed('Frames must look like {"event": ..., "data": {...}}.')
    data = envelope.get('data') or {}
    if not isinstance(data, dict):
        raise ValidationFailed('Event data must be an object.')
    return envelope['event'], data


async def dispatch(connection: Connection, raw: str) -> None:
    try:
        event, data = parse_envelope(raw)
        handler = HANDLERS.get(event)
        if handler is None:
            raise ValidationFailed(f'Unknown event: {event}')
        await handler(connection, data)
    except HTTPException as exc:
        await connection.deliver('error', {'error': exc.detail, 'code': error_code(exc)})


@router.websocket('/ws')
async def conversation_socket(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    try:
        user = await run_in_threadpool(user_from_token, token)
    except HTTPException:
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
        return

    connection = Connection(websocket, user)
    await websocket.accept()
    connection.state = ConnectionState.CONNECTED
    logger.info('Realtime connection opened for user %s', user.id)

    try:
        while True:
            raw = await websocket.receive_text()
            await dispatch(connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        connection.state = ConnectionState.DISCONNECTED
        broker.drop(connection)
        for appointment_id in sorted(connection.joined):
            await _announce(connection, appointment_id, online=False)
        logger.info('Realtime connection closed for user %s', user.id)
