"""Async event emitter for publishing domain events.

Handlers are isolated: a failing handler is logged and reported in the
returned error list, but never stops other handlers and never propagates
to the caller. Services emit only after committing, so a handler failure
can never undo financial state.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar, Union

from marketplace_ledger.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)

Handler = Callable[[DomainEvent], Union[Awaitable[None], None]]


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: Handler
    event_types: set[str] | None  # None = all events
    categories: set[EventCategory] | None  # None = all categories

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        if self.categories is not None and event.category not in self.categories:
            return False
        return True


class AsyncEventEmitter:
    """Publishes events to registered sync or async handlers.

    Usage:
        emitter = AsyncEventEmitter()

        async def on_paid(event: PayoutPaid) -> None:
            await notifier.notify_payout(...)

        emitter.on(PayoutPaid, on_paid)
        await emitter.emit(event)
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(self, event_type: type[T] | list[type[T]], handler: Handler) -> None:
        """Register handler for specific event type(s)."""
        types = event_type if isinstance(event_type, list) else [event_type]
        self._handlers.append(
            HandlerRegistration(handler, {t.__name__ for t in types}, None)
        )

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: Handler,
    ) -> None:
        """Register handler for event category(ies)."""
        cats = category if isinstance(category, list) else [category]
        self._handlers.append(HandlerRegistration(handler, None, set(cats)))

    def on_all(self, handler: Handler) -> None:
        """Register handler for all events."""
        self._handlers.append(HandlerRegistration(handler, None, None))

    def off(self, handler: Handler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Emit an event to all matching handlers, in registration order.

        Returns list of any exceptions raised by handlers.
        """
        errors: list[Exception] = []
        for reg in self._handlers:
            if not reg.matches(event):
                continue
            try:
                result = reg.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(
                    "Handler %s failed for event %s",
                    reg.handler,
                    event.event_type,
                )
                errors.append(e)
        return errors

    async def emit_all(self, events: Iterable[DomainEvent]) -> list[Exception]:
        """Emit several events in order."""
        errors: list[Exception] = []
        for event in events:
            errors.extend(await self.emit(event))
        return errors
