"""
In-process event bus.

Repositories announce what happened to leads and participations; listeners
(the webhook notifier today) react without the repositories knowing about
them. Delivery is synchronous and in registration order.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Any]

# Lead lifecycle
EVENT_LEAD_CREATED = 'lead_created'
EVENT_LEAD_UPDATED = 'lead_updated'
EVENT_LEAD_SUBMITTED = 'lead_submitted'
EVENT_LEAD_STATUS_CHANGED = 'lead_status_changed'
EVENT_LEAD_DELETED = 'lead_deleted'

# Participations
EVENT_PARTICIPATION_CREATED = 'participation_created'
EVENT_PARTICIPATION_REMOVED = 'participation_removed'


def _handler_name(handler: Handler) -> str:
    return getattr(handler, '__qualname__', None) or repr(handler)


class EventBus:
    """Maps event names to handlers. A handler that raises is logged and skipped."""

    def __init__(self):
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def on(self, event_name: str, handler: Handler) -> Handler:
        self._handlers[event_name].append(handler)
        logger.debug(f"subscribed {_handler_name(handler)} to '{event_name}'")
        return handler

    def off(self, event_name: str, handler: Handler) -> bool:
        """Unsubscribe; returns False when the handler was not registered."""
        handlers = self._handlers.get(event_name, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def emit(self, event_name: str, event_data: Optional[Dict[str, Any]] = None) -> int:
        """
        Call every handler of `event_name` with `event_data` ({} when omitted).

        Returns how many handlers completed without raising.
        """
        payload = event_data if event_data is not None else {}
        handlers = list(self._handlers.get(event_name, []))
        logger.debug(f"emit '{event_name}' to {len(handlers)} handler(s)")

        delivered = 0
        for handler in handlers:
            try:
                handler(payload)
            except Exception as exc:
                logger.error(f"handler {_handler_name(handler)} failed on '{event_name}': {exc}")
                continue
            delivered += 1
        return delivered

    def clear(self) -> None:
        self._handlers.clear()
