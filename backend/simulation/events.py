"""
Domain events emitted by the simulation core.

Listeners (inventory updates, alerts, metrics, quests) subscribe on an
EventDispatcher. Dispatch is synchronous with respect to the caller: every
handler runs inside the caller's unit of work, in subscription order, and a
handler that raises aborts the surrounding operation.
"""

from __future__ import annotations

import inspect
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

import structlog

from db.models import Order, Simulation, SpikeEvent, Transfer

logger = structlog.get_logger()


@dataclass(frozen=True)
class SpikeOccurred:
    spike: SpikeEvent


@dataclass(frozen=True)
class SpikeEnded:
    spike: SpikeEvent


@dataclass(frozen=True)
class TimeAdvanced:
    day: int
    simulation: Simulation


@dataclass(frozen=True)
class OrderPlaced:
    order: Order


@dataclass(frozen=True)
class OrderDelivered:
    order: Order


@dataclass(frozen=True)
class OrderCancelled:
    order: Order


@dataclass(frozen=True)
class TransferCompleted:
    transfer: Transfer


Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventDispatcher:
    """In-process publish/subscribe keyed by event class."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event_type: type) -> list[Handler]:
        return list(self._handlers.get(event_type, []))

    async def dispatch(self, event: Any) -> None:
        handlers = self.handlers_for(type(event))
        logger.debug("event.dispatch", event_type=type(event).__name__, handlers=len(handlers))
        for handler in handlers:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
