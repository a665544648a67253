"""Client-side state for one appointment conversation.

``ConversationView`` merges REST history with live broadcast events into a
single list ordered by ``(timestamp, id)``. Nothing here performs I/O; time is
read through an injectable clock so the typing and presence logic can be
driven deterministically.
"""

import bisect
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from zenzone.core import config


# Clears a remote typing indicator whose "stopped" event never arrived.
REMOTE_TYPING_EXPIRY_SECONDS = 5.0


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    else:
        parsed = datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ChatMessage:
    id: int
    sender_id: int
    recipient_id: int
    appointment_id: int
    content: str
    timestamp: datetime
    attachments: list[dict] = field(default_factory=list)
    sender_name: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> 'ChatMessage':
        sender = payload.get('sender') or {}
        return cls(
            id=int(payload['id']),
            sender_id=int(payload['senderId']),
            recipient_id=int(payload['recipientId']),
            appointment_id=int(payload['appointmentId']),
            content=payload.get('content') or '',
            timestamp=parse_timestamp(payload.get('timestamp')),
            attachments=list(payload.get('attachments') or []),
            sender_name=sender.get('displayName'),
        )

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return self.timestamp, self.id


class ConversationView:
    def __init__(
        self,
        appointment_id: int,
        user_id: int,
        clock: Callable[[], float] = time.monotonic,
        remote_typing_expiry: float = REMOTE_TYPING_EXPIRY_SECONDS,
    ) -> None:
        self.appointment_id = appointment_id
        self.user_id = user_id
        self.clock = clock
        self.remote_typing_expiry = remote_typing_expiry

        self.messages: list[ChatMessage] = []
        self._ids: set[int] = set()

        self.at_bottom = True
        self.unread_count = 0
        self.first_unread_id: int | None = None

        self.peer_online = False
        self.last_seen: datetime | None = None
        self._remote_typing_until: float | None = None

        self.error: str | None = None

    # Message list

    def _insert(self, message: ChatMessage) -> bool:
        if message.id in self._ids:
            return False
        keys = [existing.sort_key for existing in self.messages]
        self.messages.insert(bisect.bisect_right(keys, message.sort_key), message)
        self._ids.add(message.id)
        return True

    def _accepts(self, message: ChatMessage) -> bool:
        return message.appointment_id == self.appointment_id

    def contains(self, message_id: int) -> bool:
        return message_id in self._ids

    def load_history(self, payloads: list[dict]) -> int:
        """Merge a REST history response; returns how many messages were new."""
        added = 0
        for payload in payloads:
            message = ChatMessage.from_payload(payload)
            if self._accepts(message) and self._insert(message):
                added += 1
                if message.sender_id != self.user_id:
                    self._observe_counterpart(message)
                    self._count_unseen(message)
        self.error = None
        return added

    def append_local(self, payload: dict) -> bool:
        """Add the stored copy of a message this client just sent."""
        message = ChatMessage.from_payload(payload)
        if not self._accepts(message) or not self._insert(message):
            return False
        self.mark_read()
        return True

    def receive(self, payload: dict) -> bool:
        """Apply a ``receiveMessage`` broadcast. Duplicates are ignored."""
        message = ChatMessage.from_payload(payload)
        if not self._accepts(message) or not self._insert(message):
            return False

        if message.sender_id != self.user_id:
            self._observe_counterpart(message)
            self._remote_typing_until = None
            self._count_unseen(message)
        return True

    def _count_unseen(self, message: ChatMessage) -> None:
        # Counterpart messages that arrive while scrolled up, live or via refetch.
        if self.at_bottom:
            return
        self.unread_count += 1
        marker = self.first_unread_index
        if marker is None or message.sort_key < self.messages[marker].sort_key:
            self.first_unread_id = message.id

    def _observe_counterpart(self, message: ChatMessage) -> None:
        if message.sender_id == self.user_id:
            return
        if self.last_seen is None or message.timestamp > self.last_seen:
            self.last_seen = message.timestamp

    @property
    def latest(self) -> ChatMessage | None:
        return self.messages[-1] if self.messages else None

    # Scroll and unread state

    @property
    def first_unread_index(self) -> int | None:
        if self.first_unread_id is None:
            return None
        for index, message in enumerate(self.messages):
            if message.id == self.first_unread_id:
                return index
        return None

    @property
    def should_auto_scroll(self) -> bool:
        return self.at_bottom

    @property
    def show_jump_to_latest(self) -> bool:
        return not self.at_bottom and self.unread_count > 0

    def set_at_bottom(self, at_bottom: bool) -> None:
        self.at_bottom = at_bottom
        if at_bottom:
            self.mark_read()

    def mark_read(self) -> None:
        self.unread_count = 0
        self.first_unread_id = None

    def jump_to_latest(self) -> None:
        self.set_at_bottom(True)

    # Typing and presence

    def on_remote_typing(self, user_id: int, is_typing: bool) -> None:
        if user_id == self.user_id:
            return
        self._remote_typing_until = self.clock() + self.remote_typing_expiry if is_typing else None

    @property
    def remote_typing(self) -> bool:
        if self._remote_typing_until is None:
            return False
        if self.clock() >= self._remote_typing_until:
            self._remote_typing_until = None
            return False
        return True

    def on_presence(self, user_id: Any, online: bool, timestamp: Any = None) -> None:
        if str(user_id) == str(self.user_id):
            return
        self.peer_online = online
        if not online:
            self._remote_typing_until = None
            if timestamp is not None:
                self.last_seen = parse_timestamp(timestamp)


class TypingNotifier:
    """Turns keystrokes into ``typing`` emissions for the counterpart.

    The first keystroke of a burst emits ``True``; each keystroke pushes the
    quiet-period deadline back, and ``tick`` emits ``False`` once it passes.
    """

    def __init__(
        self,
        emit: Callable[[bool], None],
        quiet_period: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.emit = emit
        self.quiet_period = config.TYPING_QUIET_SECONDS if quiet_period is None else quiet_period
        self.clock = clock
        self.typing = False
        self.deadline: float | None = None

    def keystroke(self, draft: str) -> None:
        if not draft:
            self.stop()
            return
        self.deadline = self.clock() + self.quiet_period
        if not self.typing:
            self.typing = True
            self.emit(True)

    def tick(self) -> None:
        if self.typing and self.deadline is not None and self.clock() >= self.deadline:
            self.stop()

    def stop(self) -> None:
        self.deadline = None
        if self.typing:
            self.typing = False
            self.emit(False)
