"""Explicit hand-off events between pipeline stages."""

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourcesRegistered:
    """New attachments were stored and are waiting for download."""

    account_id: str
    tenant_key: str
    count: int


@dataclass(frozen=True)
class ResourceReady:
    """An attachment finished downloading and can be extracted."""

    account_id: str
    tenant_key: str
    resource_id: int


class EventBus:
    """Synchronous dispatch to subscribers; handlers only schedule work."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[object], None]]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Callable[[object], None]) -> None:
        self._handlers[event_type].append(handler)

    def emit(self, event: object) -> None:
        for handler in self._handlers.get(type(event), []):
            try:
                handler(event)
            except Exception:
                logger.exception("Handler for %s failed", type(event).__name__)
