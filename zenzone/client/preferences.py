"""Per-device chat preferences: pins, mutes, archives, unread badges, settings.

The store is the single owner of this state. Listeners are notified after each
change, and ``dumps``/``loads`` are the only way state crosses into storage.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Callable, Iterable

Listener = Callable[['PreferenceStore'], None]


@dataclass
class ChatSettings:
    darkMode: bool = False
    messageSounds: bool = True
    desktopNotifications: bool = False
    readReceipts: bool = True
    lastSeen: bool = True
    autoDownloadMedia: bool = False
    enterToSend: bool = True


@dataclass
class ConversationPreferences:
    pinned: bool = False
    muted: bool = False
    archived: bool = False
    unread: int = 0


@dataclass
class PreferenceStore:
    conversations: dict[int, ConversationPreferences] = field(default_factory=dict)
    settings: ChatSettings = field(default_factory=ChatSettings)
    _listeners: list[Listener] = field(default_factory=list, repr=False, compare=False)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def get(self, appointment_id: int) -> ConversationPreferences:
        return self.conversations.get(appointment_id, ConversationPreferences())

    def _update(self, appointment_id: int, **changes) -> None:
        current = self.conversations.setdefault(appointment_id, ConversationPreferences())
        for name, value in changes.items():
            setattr(current, name, value)
        self._changed()

    def set_pinned(self, appointment_id: int, pinned: bool = True) -> None:
        self._update(appointment_id, pinned=pinned)

    def set_muted(self, appointment_id: int, muted: bool = True) -> None:
        self._update(appointment_id, muted=muted)

    def set_archived(self, appointment_id: int, archived: bool = True) -> None:
        self._update(appointment_id, archived=archived)

    def increment_unread(self, appointment_id: int, count: int = 1) -> None:
        self._update(appointment_id, unread=self.get(appointment_id).unread + count)

    def clear_unread(self, appointment_id: int) -> None:
        self._update(appointment_id, unread=0)

    def update_settings(self, **changes) -> None:
        known = {item.name for item in fields(ChatSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f'Unknown chat settings: {", ".join(sorted(unknown))}')
        for name, value in changes.items():
            setattr(self.settings, name, bool(value))
        self._changed()

    def should_notify(self, appointment_id: int) -> bool:
        prefs = self.get(appointment_id)
        return not prefs.muted and not prefs.archived

    def sidebar_order(
        self,
        appointment_ids: Iterable[int],
        last_activity: dict[int, datetime] | None = None,
        show_archived: bool = False,
    ) -> list[int]:
        """Pinned first, then most recent activity; archived ones only when asked for."""
        last_activity = last_activity or {}
        visible = [
            appointment_id
            for appointment_id in appointment_ids
            if self.get(appointment_id).archived == show_archived
        ]

        def sort_key(appointment_id: int) -> tuple[int, float]:
            activity = last_activity.get(appointment_id)
            return (
                0 if self.get(appointment_id).pinned else 1,
                -activity.timestamp() if activity else 0.0,
            )

        return sorted(visible, key=sort_key)

    def dumps(self) -> str:
        return json.dumps({
            'conversations': {
                str(appointment_id): asdict(prefs)
                for appointment_id, prefs in sorted(self.conversations.items())
            },
            'settings': asdict(self.settings),
        }, sort_keys=True)

    @classmethod
    def loads(cls, raw: str | None) -> 'PreferenceStore':
        """Rebuild a store from ``dumps`` output; missing or corrupt data yields defaults."""
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return cls()
        if not isinstance(data, dict):
            return cls()

        raw_conversations = data.get('conversations')
        if not isinstance(raw_conversations, dict):
            raw_conversations = {}
        raw_settings = data.get('settings')
        if not isinstance(raw_settings, dict):
            raw_settings = {}

        conversation_fields = {item.name for item in fields(ConversationPreferences)}
        conversations = {}
        for key, value in raw_conversations.items():
            if not isinstance(value, dict):
                continue
            try:
                appointment_id = int(key)
            except ValueError:
                continue
            conversations[appointment_id] = ConversationPreferences(
                **{name: value[name] for name in conversation_fields if name in value}
            )

        setting_fields = {item.name for item in fields(ChatSettings)}
        settings = ChatSettings(
            **{name: bool(raw_settings[name]) for name in setting_fields if name in raw_settings}
        )
        return cls(conversations=conversations, settings=settings)
