"""Named-notification emitter shared by connections, transports and masters."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

EventHandler = Callable[..., Any]
LOGGER = logging.getLogger(__name__)


@dataclass
class _Listener:
    handler: EventHandler
    once: bool


class EventEmitter:
    """Fan out named notifications to subscribed handlers.

    Handlers are observers: a handler that raises is logged and skipped so it
    can never change what the emitting component does next.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[_Listener]] = {}

    def on(self, event: str, handler: EventHandler) -> None:
        self._listeners.setdefault(event, []).append(_Listener(handler, once=False))

    def once(self, event: str, handler: EventHandler) -> None:
        self._listeners.setdefault(event, []).append(_Listener(handler, once=True))

    def off(self, event: str, handler: EventHandler) -> None:
        listeners = self._listeners.get(event, [])
        self._listeners[event] = [item for item in listeners if item.handler is not handler]

    def emit(self, event: str, *args: Any) -> bool:
        listeners = self._listeners.get(event)
        if not listeners:
            return False
        self._listeners[event] = [item for item in listeners if not item.once]
        for listener in listeners:
            try:
                listener.handler(*args)
            except Exception:
                LOGGER.exception("Handler for '%s' event failed", event)
        return True
