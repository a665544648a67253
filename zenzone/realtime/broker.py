"""In-process publish/subscribe rooms for conversation events.

Topics are plain strings: ``"<appointmentId>"`` is the room shared by every
connection in a conversation and ``"<appointmentId>-<userId>"`` addresses one
participant's devices. Delivery is best-effort and at-most-once: a subscriber
that is not connected when an event is published never sees it, and nothing
is queued or replayed. Clients recover missed events from the message store.

Membership is only mutated from the event loop, and no mutation awaits, so the
broker needs no lock.
"""

import logging
from typing import Any, Iterable, Protocol

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    async def deliver(self, event: str, payload: dict[str, Any]) -> None:
        ...


def shared_topic(appointment_id: int | str) -> str:
    return f'{appointment_id}'


def participant_topic(appointment_id: int | str, user_id: int | str) -> str:
    return f'{appointment_id}-{user_id}'


class RoomBroker:
    def __init__(self) -> None:
        self._rooms: dict[str, set[Subscriber]] = {}

    def subscribe(self, topic: str, subscriber: Subscriber) -> None:
        self._rooms.setdefault(topic, set()).add(subscriber)

    def unsubscribe(self, topic: str, subscriber: Subscriber) -> None:
        members = self._rooms.get(topic)
        if not members:
            return
        members.discard(subscriber)
        if not members:
            del self._rooms[topic]

    def drop(self, subscriber: Subscriber) -> list[str]:
        """Remove a subscriber from every topic and return the topics it left."""
        left = [topic for topic, members in self._rooms.items() if subscriber in members]
        for topic in left:
            self.unsubscribe(topic, subscriber)
        return left

    def members(self, topic: str) -> set[Subscriber]:
        return set(self._rooms.get(topic, ()))

    def topics(self) -> list[str]:
        return list(self._rooms)

    def is_member(self, topic: str, subscriber: Subscriber) -> bool:
        return subscriber in self._rooms.get(topic, ())

    async def publish(
        self,
        topics: Iterable[str],
        event: str,
        payload: dict[str, Any],
        exclude: Subscriber | None = None,
    ) -> int:
        """Deliver ``event`` once to each subscriber of any of ``topics``.

        Returns the number of successful deliveries.
        """
        recipients: list[Subscriber] = []
        seen: set[int] = set()
        for topic in topics:
            for subscriber in list(self._rooms.get(topic, ())):
                if subscriber is exclude or id(subscriber) in seen:
                    continue
                seen.add(id(subscriber))
                recipients.append(subscriber)

        delivered = 0
        for subscriber in recipients:
            try:
                await subscriber.deliver(event, payload)
            except Exception:
                logger.warning('Dropping subscriber after failed %s delivery', event, exc_info=True)
                self.drop(subscriber)
                continue
            delivered += 1
        return delivered


broker = RoomBroker()
