from __future__ import annotations

import logging
import threading
import weakref
from enum import Enum
from typing import Any, List, Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationType(Enum):
    GAME_LOADED = "game_loaded"
    EMULATION_STOPPED = "emulation_stopped"
    STATE_LOADED = "state_loaded"
    GAME_RESET = "game_reset"


class NotificationListener(Protocol):
    def process_notification(self, notification: NotificationType, parameter: Any = None) -> None: ...


class Subscription:
    """Keeps a listener alive; the bus itself only holds a weak reference.

    A listener has at most one live handle. Registering it again returns the same one.
    """

    def __init__(self, manager: "NotificationManager", listener: NotificationListener) -> None:
        self._manager = manager
        self._listener: Optional[NotificationListener] = listener

    @property
    def active(self) -> bool:
        return self._listener is not None

    def close(self) -> None:
        listener = self._listener
        if listener is None:
            return
        self._manager.unregister_listener(listener)
        self._listener = None


class NotificationManager:
    """Emulator lifecycle bus. Delivery is synchronous on the sender's thread."""

    def __init__(self) -> None:
        self._listeners: List[weakref.ReferenceType] = []
        # id(listener) -> handle; the handle pins the listener, so the id stays unique.
        self._subscriptions: "weakref.WeakValueDictionary[int, Subscription]" = weakref.WeakValueDictionary()
        self._lock = threading.Lock()

    def register_listener(self, listener: NotificationListener) -> Subscription:
        with self._lock:
            if not any(ref() is listener for ref in self._listeners):
                self._listeners.append(weakref.ref(listener))
            sub = self._subscriptions.get(id(listener))
            if sub is None or not sub.active:
                sub = Subscription(self, listener)
                self._subscriptions[id(listener)] = sub
            return sub

    def unregister_listener(self, listener: NotificationListener) -> None:
        with self._lock:
            self._listeners = [ref for ref in self._listeners if ref() is not None and ref() is not listener]
            sub = self._subscriptions.pop(id(listener), None)
        if sub is not None:
            sub._listener = None

    def listener_count(self) -> int:
        with self._lock:
            return sum(1 for ref in self._listeners if ref() is not None)

    def send_notification(self, notification: NotificationType, parameter: Any = None) -> None:
        with self._lock:
            self._listeners = [ref for ref in self._listeners if ref() is not None]
            refs = list(self._listeners)

        for ref in refs:
            listener = ref()
            if listener is None:
                continue
            try:
                listener.process_notification(notification, parameter)
            except Exception as exc:
                logger.exception("Notification listener failed for %s: %s", notification.value, exc)


__all__ = ["NotificationType", "NotificationListener", "Subscription", "NotificationManager"]
