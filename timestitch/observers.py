"""Observer lists with explicit unsubscribe handles."""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by ObserverList.subscribe."""

    def __init__(self, observers: "ObserverList", callback: Callable[..., Any]):
        self._observers = observers
        self._callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        """Detach the callback. Safe to call more than once."""
        if self.active:
            self._observers._remove(self._callback)
            self.active = False


class ObserverList:
    """Ordered list of callbacks that all receive every notification."""

    def __init__(self, name: str = "observers"):
        self.name = name
        self._callbacks: list[Callable[..., Any]] = []

    def subscribe(self, callback: Callable[..., Any]) -> Subscription:
        self._callbacks.append(callback)
        return Subscription(self, callback)

    def _remove(self, callback: Callable[..., Any]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def notify(self, *args: Any) -> None:
        """Call every subscriber with args.

        A failing subscriber is logged and does not stop the others.
        """
        for callback in list(self._callbacks):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"{self.name} callback failed: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._callbacks)
