"""Wires a ``ConversationView`` to the REST API and a realtime link.

Sends always go through REST first; only the stored message is echoed over
the realtime link. A failed send keeps the draft and records an error so the
caller can show it and ``retry``. After a reconnect the session re-joins the
room and re-fetches history, which is how missed broadcasts are recovered.
"""

import logging
import time
from typing import Any, Callable, Protocol

import httpx

from zenzone.client.conversation import ChatMessage, ConversationView, TypingNotifier
from zenzone.client.preferences import PreferenceStore
from zenzone.core import config

logger = logging.getLogger(__name__)


class RealtimeLink(Protocol):
    def send_json(self, data: Any) -> None:
        ...


def error_message(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get('error'):
            return str(body['error'])
        return f'Request failed with status {exc.response.status_code}'
    if isinstance(exc, httpx.TimeoutException):
        return 'The server took too long to respond. Try again.'
    return 'Could not reach the server. Try again.'


class ConversationSession:
    def __init__(
        self,
        http: httpx.Client,
        appointment_id: int,
        user_id: int,
        token: str | None = None,
        realtime: RealtimeLink | None = None,
        preferences: PreferenceStore | None = None,
        send_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.http = http
        self.appointment_id = appointment_id
        self.user_id = user_id
        self.headers = {'Authorization': f'Bearer {token}'} if token else {}
        self.realtime = realtime
        self.preferences = preferences
        self.send_timeout = config.SEND_TIMEOUT_SECONDS if send_timeout is None else send_timeout

        self.view = ConversationView(appointment_id, user_id, clock=clock)
        self.typing = TypingNotifier(self._emit_typing, clock=clock)
        self.draft = ''
        self.attachments: list[dict] = []
        self.joined = False

    def _emit(self, event: str, data: dict) -> None:
        if self.realtime is None:
            return
        self.realtime.send_json({'event': event, 'data': data})

    def _emit_typing(self, is_typing: bool) -> None:
        self._emit('typing', {'appointmentId': self.appointment_id, 'isTyping': is_typing})

    def join(self) -> None:
        self._emit('joinRoom', {'appointmentId': self.appointment_id, 'userId': self.user_id})

    def refresh(self) -> bool:
        try:
            response = self.http.get(
                f'/api/messages/by-appointment/{self.appointment_id}',
                headers=self.headers,
                timeout=self.send_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.view.error = f'Failed to load messages: {error_message(exc)}'
            logger.warning('History fetch for appointment %s failed: %s', self.appointment_id, exc)
            return False
        unread_before = self.view.unread_count
        self.view.load_history(response.json())
        self._badge(self.view.unread_count - unread_before)
        return True

    def _badge(self, new_unread: int) -> None:
        if self.preferences is not None and new_unread > 0:
            self.preferences.increment_unread(self.appointment_id, new_unread)

    def fetch_latest(self) -> dict | None:
        response = self.http.get(
            f'/api/messages/last/{self.appointment_id}',
            headers=self.headers,
            timeout=self.send_timeout,
        )
        response.raise_for_status()
        return response.json()

    def on_draft_changed(self, text: str) -> None:
        self.draft = text
        self.typing.keystroke(text)

    def tick(self) -> None:
        self.typing.tick()

    def send(self, content: str | None = None, attachments: list[dict] | None = None) -> ChatMessage | None:
        if content is not None:
            self.draft = content
        if attachments is not None:
            self.attachments = list(attachments)

        try:
            response = self.http.post(
                '/api/messages',
                json={
                    'appointmentId': self.appointment_id,
                    'content': self.draft,
                    'attachments': self.attachments,
                },
                headers=self.headers,
                timeout=self.send_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.view.error = f'Failed to send message: {error_message(exc)}'
            logger.warning('Send to appointment %s failed: %s', self.appointment_id, exc)
            return None

        payload = response.json()
        self.view.append_local(payload)
        self.view.error = None
        self.draft = ''
        self.attachments = []
        self.typing.stop()
        self._emit('sendMessage', payload)
        if self.preferences is not None:
            self.preferences.clear_unread(self.appointment_id)
        return ChatMessage.from_payload(payload)

    def retry(self) -> ChatMessage | None:
        return self.send()

    def mark_read(self) -> None:
        self.view.set_at_bottom(True)
        if self.preferences is not None:
            self.preferences.clear_unread(self.appointment_id)

    def handle_event(self, envelope: dict) -> str | None:
        event = envelope.get('event')
        data = envelope.get('data') or {}

        if event == 'receiveMessage':
            unread_before = self.view.unread_count
            self.view.receive(data)
            self._badge(self.view.unread_count - unread_before)
        elif event == 'userTyping':
            if data.get('appointmentId') in (None, self.appointment_id):
                self.view.on_remote_typing(data.get('userId'), bool(data.get('isTyping')))
        elif event == 'peerOnline':
            self.view.on_presence(data.get('userId'), bool(data.get('online')), data.get('timestamp'))
        elif event == 'reloadChat':
            self.refresh()
        elif event == 'roomJoined':
            self.joined = True
        elif event == 'error':
            self.view.error = data.get('error')
        else:
            return None
        return event

    def reconnected(self, realtime: RealtimeLink) -> bool:
        self.realtime = realtime
        self.joined = False
        self.join()
        return self.refresh()
