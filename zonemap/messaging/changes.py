"""
Change notifications: an explicit observer channel.

Writers publish `ChangeEvent`s; each subscriber holds its own `Subscription`
and cancels it deterministically (`cancel()` or leaving a `with` block).
Nothing is subscribed implicitly, and nothing outlives its subscription.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from zonemap.common.logging import log_event

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    kind: ChangeKind
    collection: str
    doc_id: str
    tenant_id: Optional[str] = None
    path: Optional[str] = None


Subscriber = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, channel: "ChangeChannel", key: int) -> None:
        self._channel = channel
        self._key = key
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._channel._remove(self._key)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: object) -> None:
        self.cancel()


class ChangeChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_key = 0
        self._subscribers: Dict[int, tuple[Subscriber, Optional[str]]] = {}

    def subscribe(self, callback: Subscriber, *, collection: Optional[str] = None) -> Subscription:
        """
        Register `callback`; when `collection` is given only events for that
        collection are delivered.
        """
        with self._lock:
            key = self._next_key
            self._next_key += 1
            self._subscribers[key] = (callback, collection)
        return Subscription(self, key)

    def _remove(self, key: int) -> None:
        with self._lock:
            self._subscribers.pop(key, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver to current subscribers; returns how many were notified.

        A failing subscriber is logged and does not prevent delivery to the others.
        """
        with self._lock:
            targets = list(self._subscribers.values())

        delivered = 0
        for callback, collection in targets:
            if collection is not None and collection != event.collection:
                continue
            try:
                callback(event)
            except Exception:
                log_event(
                    logger,
                    "changes.subscriber_failed",
                    severity="ERROR",
                    kind=event.kind.value,
                    collection=event.collection,
                    doc_id=event.doc_id,
                    exc_info=True,
                )
                continue
            delivered += 1
        return delivered
