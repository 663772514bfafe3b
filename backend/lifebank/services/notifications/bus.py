"""
In-process event bus for order domain notifications.

Routes published notifications to the handlers subscribed to their name.
Handlers run in subscription order. A failing handler is logged and skipped;
it never stops delivery to the remaining handlers and never reaches the
publisher, whose transaction is already committed.
"""

import inspect
from typing import Any, Awaitable, Callable, Union

from lifebank.core.logging import get_logger
from lifebank.services.notifications.events import DomainNotification

logger = get_logger(__name__)

Handler = Callable[[DomainNotification], Union[None, Awaitable[None]]]


class EventBusError(Exception):
    """Raised for invalid subscriptions."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class EventBus:
    """Publish-only notification bus with per-name subscriber lists."""

    def __init__(self):
        self._subscribers: dict[str, list[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        """
        Register a handler for a notification name.

        Raises:
            EventBusError: If handler is not callable or already registered
        """
        if not callable(handler):
            raise EventBusError(
                f"Handler must be callable, got {type(handler).__name__}",
                code="INVALID_HANDLER",
                name=name,
            )

        handlers = self._subscribers.setdefault(name, [])
        if any(existing is handler for existing in handlers):
            raise EventBusError(
                f"Handler already subscribed to '{name}'",
                code="DUPLICATE_SUBSCRIBER",
                name=name,
                handler=_handler_name(handler),
            )

        handlers.append(handler)
        logger.debug("Handler subscribed", name=name, handler=_handler_name(handler))

    def unsubscribe(self, name: str, handler: Handler) -> bool:
        """Remove a handler. Returns False if it was not subscribed."""
        handlers = self._subscribers.get(name, [])
        for index, existing in enumerate(handlers):
            if existing is handler:
                del handlers[index]
                if not handlers:
                    del self._subscribers[name]
                return True
        return False

    def subscribers(self, name: str) -> list[Handler]:
        return list(self._subscribers.get(name, []))

    async def publish(self, notification: DomainNotification) -> int:
        """
        Deliver a notification to every handler subscribed to its name.

        Returns:
            Number of handlers that completed without raising
        """
        handlers = self.subscribers(notification.name)
        if not handlers:
            logger.debug("No subscribers for notification", name=notification.name)
            return 0

        delivered = 0
        for handler in handlers:
            try:
                result = handler(notification)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(
                    "Notification handler failed",
                    name=notification.name,
                    handler=_handler_name(handler),
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

        logger.debug(
            "Notification published",
            name=notification.name,
            delivered=delivered,
            failed=len(handlers) - delivered,
        )
        return delivered


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))
