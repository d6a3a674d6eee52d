"""In-process real-time hub.

Rooms are strings such as ``user-42``. Subscribers are plain callables
``(room, event, payload)``; a websocket gateway registers one to forward
messages to connected clients. A room value of ``None`` denotes a broadcast.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from flask import current_app

logger = logging.getLogger("portal.realtime")

Subscriber = Callable[[str | None, str, dict], None]


def user_room(user_id) -> str:
    return f"user-{user_id}"


class RealtimeChannel:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _deliver(self, room: str | None, event: str, payload: dict) -> int:
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for callback in subscribers:
            try:
                callback(room, event, payload)
                delivered += 1
            except Exception:
                logger.exception("[RT-EMIT] subscriber failed room=%s event=%s", room, event)
        return delivered

    def emit(self, room: str, event: str, payload: dict) -> int:
        delivered = self._deliver(room, event, payload)
        logger.info("[RT-EMIT] room=%s event=%s subscribers=%s", room, event, delivered)
        return delivered

    def broadcast(self, event: str, payload: dict) -> int:
        delivered = self._deliver(None, event, payload)
        logger.info("[RT-EMIT] broadcast event=%s subscribers=%s", event, delivered)
        return delivered


def get_channel() -> RealtimeChannel:
    return current_app.extensions["realtime"]
