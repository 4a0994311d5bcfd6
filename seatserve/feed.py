"""Change feed for storage snapshots.

Listeners get the current snapshot when they subscribe and again after every
write. Usage:
    feed = SnapshotFeed(repo.snapshot)
    sub = feed.subscribe(lambda snap: print(snap.revision))
    ...
    sub.cancel()
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable

from seatserve.domain import Snapshot
from seatserve.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[Snapshot], None]


@dataclass
class Subscription:
    feed: "SnapshotFeed"
    key: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def active(self) -> bool:
        return self.feed.has(self.key)

    def cancel(self) -> None:
        self.feed.unsubscribe(self.key)


class SnapshotFeed:
    def __init__(self, loader: Callable[[], Snapshot]) -> None:
        self._loader = loader
        self._listeners: dict[str, Listener] = {}
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Subscription:
        subscription = Subscription(feed=self)
        with self._lock:
            self._listeners[subscription.key] = listener
        self._deliver(subscription.key, listener, self._loader())
        return subscription

    def unsubscribe(self, key: str) -> None:
        with self._lock:
            self._listeners.pop(key, None)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._listeners

    def publish(self, snapshot: Snapshot | None = None) -> None:
        with self._lock:
            listeners = list(self._listeners.items())
        if not listeners:
            return
        current = snapshot or self._loader()
        for key, listener in listeners:
            self._deliver(key, listener, current)

    def _deliver(self, key: str, listener: Listener, snapshot: Snapshot) -> None:
        try:
            listener(snapshot)
        except Exception:
            # a broken listener must not fail the write that triggered it
            logger.exception("Snapshot listener %s failed at revision %s", key, snapshot.revision)
