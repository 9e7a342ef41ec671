"""Typed observer channel for automation proposals."""

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Channel(Generic[T]):
    """Synchronous broadcast to subscribers in subscription order.

    A listener that raises is logged and skipped; remaining listeners still
    receive the event.
    """

    def __init__(self, name: str = "channel"):
        self.name = name
        self._listeners: List[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register ``listener``. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: T) -> int:
        """Deliver ``event``. Returns the number of listeners that accepted it."""
        delivered = 0
        for listener in list(self._listeners):
            try:
                listener(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Listener on {self.name} failed: {e}")
        return delivered

    def __len__(self) -> int:
        return len(self._listeners)


class ProposalChannel(Channel):
    """Channel carrying ``AutomationProposal`` events from the detector."""

    def __init__(self):
        super().__init__(name="proposals")
