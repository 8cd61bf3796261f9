"""
connectivity.py — Online/offline transition source.

The platform layer (network listener, health probe, test) calls
report(online) whenever it observes the network state; the monitor turns
that into edge-triggered OnlineTransition / OfflineTransition
notifications. Consumers subscribe and never poll the platform.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from backend.safecheck.core.events import ConnectivityChanged, EventBus

logger = logging.getLogger(__name__)


class Transition(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


Listener = Callable[[Transition], None]


class ConnectivityMonitor:
    """
    Tracks the last reported network state and fans transitions out to
    listeners.

    Repeated reports of the same state are not transitions and are ignored.
    """

    def __init__(self, *, initially_online: bool = True, events: Optional[EventBus] = None):
        self._online = initially_online
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._events = events

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def report(self, online: bool) -> Optional[Transition]:
        """Record an observed state. Returns the transition, if any."""
        with self._lock:
            if online == self._online:
                return None
            self._online = online
            listeners = list(self._listeners)

        transition = Transition.ONLINE if online else Transition.OFFLINE
        logger.info("Connectivity transition: %s", transition.value)

        if self._events is not None:
            self._events.publish(ConnectivityChanged(online=online))

        for listener in listeners:
            try:
                listener(transition)
            except Exception:
                logger.exception("Connectivity listener failed on %s", transition.value)

        return transition
