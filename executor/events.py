"""
Observer channels used by the executor components.

Listeners are plain callables registered on a channel and called
synchronously, in subscription order, whenever the channel fires.
"""

import logging
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class EventEmitter:
    """A single named event channel."""

    def __init__(self, name: str = 'event'):
        self.name = name
        self._listeners: List[Callable[[Any], None]] = []

    def subscribe(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Callable taking the fired value

        Returns:
            Zero-argument callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def fire(self, value: Any = None):
        """Deliver value to every listener."""
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(
                    f"Listener {listener!r} on '{self.name}' raised: {e}",
                    exc_info=True
                )

    def clear(self):
        self._listeners.clear()

    def __len__(self):
        return len(self._listeners)

    def __repr__(self):
        return f"EventEmitter(name={self.name!r}, listeners={len(self._listeners)})"
