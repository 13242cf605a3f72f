"""
In-process subscriber registry and best-effort fan-out.

Subscribers join named groups ("all", "product:<id>", "dashboard",
"role:<role>"). publish() delivers an event at most once to every subscriber
of the addressed groups. Delivery never blocks: a closed subscriber is
dropped from the registry and a full one is skipped. Membership may change
while a publish is running; delivery works on a snapshot taken under the
lock.
"""
import json
import logging
import queue
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone

logger = logging.getLogger(__name__)

ALL = 'all'
DASHBOARD = 'dashboard'


def product_group(product_id) -> str:
    return f"product:{product_id}"


def role_group(role: str) -> str:
    return f"role:{role}"


class SubscriberGone(Exception):
    """The subscriber was closed and should be removed."""
    pass


class SubscriberBusy(Exception):
    """The subscriber cannot take more events right now."""
    pass


@dataclass(frozen=True)
class Message:
    event: str
    data: dict
    timestamp: str = field(default_factory=lambda: timezone.now().isoformat())

    def as_json(self) -> str:
        return json.dumps(
            {'event': self.event, 'data': self.data, 'timestamp': self.timestamp},
            cls=DjangoJSONEncoder,
        )

    def as_sse(self) -> str:
        """Server-sent-events frame."""
        return f"event: {self.event}\ndata: {self.as_json()}\n\n"


class QueueSubscriber:
    """
    Subscriber backed by a bounded queue, drained by a transport
    (e.g. the event stream view).
    """

    def __init__(self, maxsize: int = 100, name: Optional[str] = None):
        self.id = name or uuid.uuid4().hex
        self._queue: "queue.Queue[Message]" = queue.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def __repr__(self):
        return f"<QueueSubscriber {self.id}>"

    def deliver(self, message: Message) -> None:
        if self.closed:
            raise SubscriberGone(self.id)
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            self.dropped += 1
            raise SubscriberBusy(self.id)

    def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Next pending message, or None if nothing arrived within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self.closed = True


Relay = Callable[[Message, List[str]], None]


class SubscriberHub:
    """Thread-safe map of group name -> subscribers."""

    def __init__(self):
        self._groups: Dict[str, Set] = defaultdict(set)
        self._lock = threading.RLock()
        self._relays: List[Relay] = []

    def join(self, subscriber, group: str) -> None:
        with self._lock:
            self._groups[group].add(subscriber)
        logger.debug(f"{subscriber!r} joined {group}")

    def leave(self, subscriber, group: Optional[str] = None) -> None:
        """Leave one group, or every group when group is None."""
        with self._lock:
            names = [group] if group is not None else list(self._groups)
            for name in names:
                members = self._groups.get(name)
                if members is None:
                    continue
                members.discard(subscriber)
                if not members:
                    del self._groups[name]
        logger.debug(f"{subscriber!r} left {group or 'all groups'}")

    def members(self, group: str) -> frozenset:
        with self._lock:
            return frozenset(self._groups.get(group, ()))

    def groups(self) -> Dict[str, int]:
        with self._lock:
            return {name: len(members) for name, members in self._groups.items()}

    def add_relay(self, relay: Relay) -> None:
        with self._lock:
            self._relays.append(relay)

    def remove_relay(self, relay: Relay) -> None:
        with self._lock:
            if relay in self._relays:
                self._relays.remove(relay)

    def clear(self) -> None:
        with self._lock:
            self._groups.clear()
            self._relays.clear()

    def publish(self, event: str, data: dict, groups: Iterable[str]) -> int:
        """
        Deliver one event to the subscribers of the given groups.

        Returns:
            Number of subscribers that accepted the event.
        """
        groups = list(dict.fromkeys(groups))
        message = Message(event, data)

        with self._lock:
            targets = []
            seen = set()
            for name in groups:
                for subscriber in self._groups.get(name, ()):
                    if subscriber not in seen:
                        seen.add(subscriber)
                        targets.append(subscriber)
            relays = list(self._relays)

        delivered = 0
        for subscriber in targets:
            try:
                subscriber.deliver(message)
                delivered += 1
            except SubscriberGone:
                self.leave(subscriber)
            except SubscriberBusy:
                logger.warning(f"Skipped {event} for slow subscriber {subscriber!r}")
            except Exception:
                logger.exception(f"Failed to deliver {event} to {subscriber!r}")

        for relay in relays:
            try:
                relay(message, groups)
            except Exception:
                logger.exception(f"Relay failed for {event}")

        logger.debug(f"Published {event} to {groups}: {delivered} subscriber(s)")
        return delivered


hub = SubscriberHub()
