"""In-process publish/subscribe registry for inbound server events."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Iterable, overload

from chat_client.application.dto.events import EventName

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]
Unsubscribe = Callable[[], None]

SUFFIXED_EVENTS = frozenset({EventName.MESSAGE_NEW, EventName.MESSAGE_READ})


def scoped_key(event: str, scope: str) -> str:
    return f"{event}:{scope}"


class EventDispatcher:
    """Routes decoded events to handlers registered per event name.

    Handlers run in registration order. A handler raising is logged and the
    remaining handlers still receive the event. Coroutine handlers are
    scheduled as tasks on the running loop.

    The scope of an event is the first of ``scope_fields`` present in its
    payload. Events in ``suffixed_events`` may also arrive as
    ``"<event>:<scope>"``; they are routed as the base event with that
    scope, and the scope is written into the payload if it is missing.
    Scoped events reach the base-name handlers first, then the handlers
    registered on ``"<event>:<scope>"``.
    """

    def __init__(
        self,
        scope_fields: tuple[str, ...] = ("conversationId", "chatId"),
        suffixed_events: Iterable[str] = SUFFIXED_EVENTS,
    ) -> None:
        self._scope_fields = scope_fields
        self._suffixed_events = frozenset(str(e) for e in suffixed_events)
        self._handlers: dict[str, list[Handler]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    @overload
    def on(self, event: str, handler: Handler, /) -> Unsubscribe: ...

    @overload
    def on(self, event: str, scope: str, handler: Handler, /) -> Unsubscribe: ...

    def on(self, event: str, *args: Any) -> Unsubscribe:
        if len(args) == 1:
            key, handler = str(event), args[0]
        elif len(args) == 2:
            key, handler = scoped_key(str(event), str(args[0])), args[1]
        else:
            raise TypeError("on() takes (event, handler) or (event, scope, handler)")
        self._handlers.setdefault(key, []).append(handler)
        return lambda: self._remove(key, handler)

    def off(self, event: str, handler: Handler, scope: str | None = None) -> None:
        key = scoped_key(str(event), scope) if scope is not None else str(event)
        self._remove(key, handler)

    def has_handlers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def dispatch(self, event: str, data: dict[str, Any]) -> int:
        """Deliver one event; returns the number of handlers invoked."""
        event, data = self._unsuffix(str(event), data)
        keys = [event]
        scope = self._scope_of(data)
        if scope is not None:
            keys.append(scoped_key(event, scope))

        delivered = 0
        for key in keys:
            for handler in list(self._handlers.get(key, ())):
                delivered += 1
                self._invoke(key, handler, data)

        if not delivered:
            logger.debug("No handlers for event %s, ignored", event)
        return delivered

    def clear(self) -> None:
        self._handlers.clear()

    def _unsuffix(self, event: str, data: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        base, sep, scope = event.rpartition(":")
        if not sep or not scope or base not in self._suffixed_events:
            return event, data
        if self._scope_fields and self._scope_of(data) is None:
            data = {**data, self._scope_fields[0]: scope}
        return base, data

    def _scope_of(self, data: dict[str, Any]) -> str | None:
        for field in self._scope_fields:
            value = data.get(field)
            if value is not None and value != "":
                return str(value)
        return None

    def _invoke(self, key: str, handler: Handler, data: dict[str, Any]) -> None:
        try:
            result = handler(data)
        except Exception:
            logger.exception("Handler %r failed for event %s", handler, key)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._on_task_done(key, t))

    def _on_task_done(self, key: str, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async handler failed for event %s", key, exc_info=exc)

    def _remove(self, key: str, handler: Handler) -> None:
        handlers = self._handlers.get(key)
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._handlers[key]
