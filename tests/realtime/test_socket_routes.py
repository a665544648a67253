import asyncio
import json

import pytest
from fastapi import HTTPException, WebSocketDisconnect
from fastapi.testclient import TestClient

from conftest import auth_headers, token_for
from zenzone.main import app
from zenzone.models.appointment import PENDING
from zenzone.realtime import socket_routes
from zenzone.realtime.broker import shared_topic


class RecordingSubscriber:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def deliver(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))


class FakeWebSocket:
    def __init__(self, frames: list[str]) -> None:
        self.frames = list(frames)
        self.sent: list[dict] = []
        self.accepted = False
        self.close_code: int | None = None

    async def accept(self) -> None:
        self.accepted = True

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    async def receive_text(self) -> str:
        if self.frames:
            return self.frames.pop(0)
        raise WebSocketDisconnect(code=1000)

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)


def _frame(event: str, **data) -> dict:
    return {'event': event, 'data': data}


def _join(websocket, appointment_id: int, user_id: int) -> dict:
    websocket.send_json(_frame('joinRoom', appointmentId=appointment_id, userId=user_id))
    return websocket.receive_json()


def test_parse_envelope_rejects_malformed_frames() -> None:
    assert socket_routes.parse_envelope('{"event": "typing", "data": {"isTyping": true}}') == (
        'typing',
        {'isTyping': True},
    )
    assert socket_routes.parse_envelope('{"event": "presencePing"}') == ('presencePing', {})

    for raw in ('not json', '[]', '{"data": {}}', '{"event": "typing", "data": [1]}'):
        with pytest.raises(HTTPException) as exception_info:
            socket_routes.parse_envelope(raw)
        assert exception_info.value.status_code == 400


def test_connection_without_valid_token_is_closed() -> None:
    with TestClient(app) as client:
        for url in ('/ws', '/ws?token=not-a-jwt'):
            with pytest.raises(WebSocketDisconnect) as exception_info:
                with client.websocket_connect(url):
                    pass
            assert exception_info.value.code == socket_routes.UNAUTHORIZED_CLOSE_CODE


def test_message_round_trip_between_participants(student, psychiatrist, approved_appointment) -> None:
    appointment_id = approved_appointment.id

    with TestClient(app) as client:
        with client.websocket_connect(f'/ws?token={token_for(student)}') as student_ws:
            assert _join(student_ws, appointment_id, student.id) == _frame(
                'roomJoined', appointmentId=appointment_id, userId=student.id,
            )

            with client.websocket_connect(f'/ws?token={token_for(psychiatrist)}') as psychiatrist_ws:
                assert _join(psychiatrist_ws, appointment_id, psychiatrist.id)['event'] == 'roomJoined'

                online = student_ws.receive_json()
                assert online['event'] == 'peerOnline'
                assert online['data']['userId'] == psychiatrist.id
                assert online['data']['online'] is True

                response = client.post(
                    '/api/messages',
                    json={'appointmentId': appointment_id, 'content': 'hello'},
                    headers=auth_headers(student),
                )
                assert response.status_code == 201
                stored = response.json()

                student_ws.send_json({'event': 'sendMessage', 'data': stored})

                echo = student_ws.receive_json()
                assert echo['event'] == 'receiveMessage'
                assert echo['data']['id'] == stored['id']

                received = psychiatrist_ws.receive_json()
                assert received['event'] == 'receiveMessage'
                assert received['data']['id'] == stored['id']
                assert received['data']['content'] == 'hello'
                assert received['data']['senderId'] == student.id
                assert psychiatrist_ws.receive_json() == _frame('reloadChat', appointmentId=appointment_id)

                psychiatrist_ws.send_json(_frame('typing', appointmentId=appointment_id, isTyping=True))
                assert student_ws.receive_json() == _frame(
                    'userTyping', appointmentId=appointment_id, userId=psychiatrist.id, isTyping=True,
                )

                student_ws.send_json(_frame('presencePing', appointmentId=appointment_id))
                assert student_ws.receive_json() == _frame(
                    'peerOnline', appointmentId=appointment_id, userIds=[psychiatrist.id], online=True,
                )

                psychiatrist_ws.send_json(_frame('leaveRoom', appointmentId=appointment_id))
                assert psychiatrist_ws.receive_json() == _frame('roomLeft', appointmentId=appointment_id)

                offline = student_ws.receive_json()
                assert offline['event'] == 'peerOnline'
                assert offline['data']['online'] is False


def test_client_errors_come_back_as_error_events(student, psychiatrist, make_user, make_appointment) -> None:
    outsider = make_user('nosy_student')
    pending = make_appointment(student, psychiatrist, status=PENDING)

    with TestClient(app) as client:
        with client.websocket_connect(f'/ws?token={token_for(outsider)}') as websocket:
            assert _join(websocket, pending.id, outsider.id) == _frame(
                'error', error='Not authorized for this appointment.', code='Forbidden',
            )

            websocket.send_json(_frame('typing', appointmentId=pending.id, isTyping=True))
            assert websocket.receive_json()['data']['code'] == 'Forbidden'

            websocket.send_json(_frame('shout', appointmentId=pending.id))
            assert websocket.receive_json()['data']['code'] == 'ValidationError'

            websocket.send_text('not json')
            assert websocket.receive_json()['data']['code'] == 'ValidationError'

            websocket.send_json(_frame('joinRoom', appointmentId=pending.id, userId=student.id))
            assert websocket.receive_json()['data']['code'] == 'Forbidden'


def test_presence_ping_requires_joining_the_room(student, make_user, approved_appointment) -> None:
    outsider = make_user('nosy_student')
    appointment_id = approved_appointment.id

    with TestClient(app) as client:
        with client.websocket_connect(f'/ws?token={token_for(student)}') as student_ws:
            _join(student_ws, appointment_id, student.id)

            with client.websocket_connect(f'/ws?token={token_for(outsider)}') as outsider_ws:
                outsider_ws.send_json(_frame('presencePing', appointmentId=appointment_id))
                reply = outsider_ws.receive_json()

            assert reply['event'] == 'error'
            assert reply['data']['code'] == 'Forbidden'

            student_ws.send_json(_frame('presencePing', appointmentId=appointment_id))
            assert student_ws.receive_json() == _frame(
                'peerOnline', appointmentId=appointment_id, userIds=[], online=False,
            )


def test_second_device_of_same_user_is_not_a_peer(student, approved_appointment) -> None:
    appointment_id = approved_appointment.id

    with TestClient(app) as client:
        with client.websocket_connect(f'/ws?token={token_for(student)}') as phone:
            _join(phone, appointment_id, student.id)
            with client.websocket_connect(f'/ws?token={token_for(student)}') as laptop:
                _join(laptop, appointment_id, student.id)
                phone.receive_json()

                laptop.send_json(_frame('presencePing', appointmentId=appointment_id))
                assert laptop.receive_json()['data']['online'] is False


def test_participant_can_join_pending_room(student, psychiatrist, make_appointment) -> None:
    pending = make_appointment(student, psychiatrist, status=PENDING)

    with TestClient(app) as client:
        with client.websocket_connect(f'/ws?token={token_for(student)}') as websocket:
            assert _join(websocket, pending.id, student.id)['event'] == 'roomJoined'


def test_send_message_only_relays_own_stored_messages(student, psychiatrist, approved_appointment) -> None:
    appointment_id = approved_appointment.id

    with TestClient(app) as client:
        response = client.post(
            '/api/messages',
            json={'appointmentId': appointment_id, 'content': 'from the doctor'},
            headers=auth_headers(psychiatrist),
        )
        stored = response.json()

        with client.websocket_connect(f'/ws?token={token_for(student)}') as websocket:
            websocket.send_json({'event': 'sendMessage', 'data': stored})
            assert websocket.receive_json()['data']['code'] == 'Forbidden'

            _join(websocket, appointment_id, student.id)

            websocket.send_json({'event': 'sendMessage', 'data': stored})
            assert websocket.receive_json()['data']['code'] == 'Forbidden'

            websocket.send_json(_frame('sendMessage', appointmentId=appointment_id, content='unsaved'))
            assert websocket.receive_json()['data']['code'] == 'ValidationError'

            websocket.send_json(_frame('sendMessage', appointmentId=appointment_id, id=9999))
            assert websocket.receive_json()['data']['code'] == 'NotFound'


def test_disconnect_leaves_rooms_and_announces_offline(fresh_broker, student, approved_appointment) -> None:
    appointment_id = approved_appointment.id
    peer = RecordingSubscriber()
    fresh_broker.subscribe(shared_topic(appointment_id), peer)
    websocket = FakeWebSocket([json.dumps(_frame('joinRoom', appointmentId=appointment_id))])

    asyncio.run(socket_routes.conversation_socket(websocket, token=token_for(student)))

    assert websocket.accepted
    assert websocket.sent == [_frame('roomJoined', appointmentId=appointment_id, userId=student.id)]
    assert [(event, payload['online']) for event, payload in peer.events] == [
        ('peerOnline', True),
        ('peerOnline', False),
    ]
    assert fresh_broker.topics() == [shared_topic(appointment_id)]


def test_bad_token_closes_before_accept() -> None:
    websocket = FakeWebSocket([])

    asyncio.run(socket_routes.conversation_socket(websocket, token='garbage'))

    assert websocket.close_code == socket_routes.UNAUTHORIZED_CLOSE_CODE
    assert websocket.accepted is False
