"""
director.services.bus — Host Message Bus
=========================================

The host platform's extension channel is consumed as an opaque async bus
with three verbs: ``request`` (RPC), ``subscribe`` and ``publish``.
:class:`SessionEngine` only depends on the :class:`MessageBus` protocol, so
tests and local runs can plug in :class:`LocalBus`.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# RPC methods
CONTEXT_GET = "v1.ext.context.get"
SETTINGS_GET = "v1.model.ext.settings.get"
SETTINGS_SET = "v1.model.ext.settings.set"
TIP_MENU_GET = "v1.model.tip.menu.get"
CHAT_SEND = "v1.chat.message.send"
WHISPER = "v1.ext.whisper"
OVERLAY_OPEN = "v1.ext.overlay.open"

# Subscription topics
WHISPERED = "v1.ext.whispered"
TOKENS_SPENT = "v1.payment.tokens.spend.succeeded"

Handler = Callable[[Any], Awaitable[None] | None]
Responder = Callable[[Any], Any]


class MessageBus(Protocol):
    async def request(self, method: str, params: Any = None) -> Any: ...

    async def publish(self, topic: str, data: Any) -> None: ...

    def subscribe(self, topic: str, handler: Handler) -> None: ...


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class LocalBus:
    """In-process bus.

    * ``request(WHISPER, {"data": ...})`` fans the data out to every
      ``WHISPERED`` subscriber, the way the platform echoes whispers to all
      extension surfaces.
    * Any other request is answered by the responder registered for that
      method; unknown methods raise :class:`LookupError`.
    """

    def __init__(self) -> None:
        self._responders: dict[str, Responder] = {}
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def register(self, method: str, responder: Responder) -> None:
        self._responders[method] = responder

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._subscribers[topic].append(handler)

    async def publish(self, topic: str, data: Any) -> None:
        for handler in list(self._subscribers.get(topic, ())):
            try:
                await _maybe_await(handler(data))
            except Exception:
                logger.exception("Subscriber for '%s' failed", topic)

    async def request(self, method: str, params: Any = None) -> Any:
        if method == WHISPER:
            data = params.get("data") if isinstance(params, dict) else None
            await self.publish(WHISPERED, data)
            return None

        responder = self._responders.get(method)
        if responder is None:
            raise LookupError(f"No responder registered for '{method}'")
        return await _maybe_await(responder(params))
