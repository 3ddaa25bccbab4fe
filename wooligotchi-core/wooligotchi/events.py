"""Typed notifications pushed from the core to rendering/audio/UI collaborators."""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Closed set of notifications the core can emit."""

    FED = "fed"
    CATASTROPHE_ON = "catastrophe_on"
    CATASTROPHE_OFF = "catastrophe_off"
    DEATH = "death"
    COLLECTION_UPDATED = "collection_updated"
    LIVES_UPDATED = "lives_updated"
    LIFE_SPENT = "life_spent"
    TRANSFER_REQUESTED = "transfer_requested"
    STATUS_MESSAGE = "status_message"


Handler = Callable[[EventKind, Dict[str, Any]], None]


class EventBus:
    """Push-only fan-out of core events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[EventKind, List[Handler]] = {}

    def subscribe(self, kind: EventKind, handler: Handler) -> Callable[[], None]:
        """Register a handler for one event kind and return an unsubscribe hook."""
        if not isinstance(kind, EventKind):
            raise TypeError(f"Unknown event kind: {kind!r}")
        self._handlers.setdefault(kind, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def notify(self, kind: EventKind, payload: Optional[Dict[str, Any]] = None) -> None:
        """Deliver an event to every handler; a failing handler never breaks the core."""
        data = dict(payload or {})
        for handler in list(self._handlers.get(kind, [])):
            try:
                handler(kind, data)
            except Exception as exc:
                logger.warning("Event handler for %s failed: %s", kind.value, exc)

    def status(self, message: str, *, level: str = "info") -> None:
        """Emit a transient, dismissable status message for the UI shell."""
        self.notify(EventKind.STATUS_MESSAGE, {"message": message, "level": level})
