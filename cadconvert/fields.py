"""Observable form fields and the listener bookkeeping around them.

Each load cycle of the converter owns one ``ReactorSet``. Disposing it
unsubscribes every reactor the cycle installed, so a new cycle never shares
listeners with the previous one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from cadconvert.engine import is_valid_amount

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    def __init__(self, listeners: list[Subscription], callback: Callable[[Any], None]) -> None:
        self._listeners = listeners
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._listeners.remove(self)


class Field(Generic[T]):
    """A value holder that notifies subscribers when it changes."""

    def __init__(self, name: str, value: T, enabled: bool = True) -> None:
        self.name = name
        self.value = value
        self.enabled = enabled
        self.listeners: list[Subscription] = []

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        sub = Subscription(self.listeners, callback)
        self.listeners.append(sub)
        return sub

    def set_value(self, value: T, emit: bool = True) -> None:
        """Store ``value``; with ``emit=False`` no reactor runs."""
        self.value = value
        if not emit:
            return
        for sub in list(self.listeners):
            if sub.active:
                sub.callback(value)

    def reset(self, value: T, enabled: bool) -> None:
        self.value = value
        self.enabled = enabled

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False


class AmountField(Field[str]):
    def __init__(self, name: str) -> None:
        super().__init__(name, "", enabled=False)

    @property
    def valid(self) -> bool:
        # An empty field is not an error, just nothing to convert.
        return not self.value or is_valid_amount(self.value)


class ReactorSet:
    """The subscriptions installed by one load cycle."""

    def __init__(self) -> None:
        self._subs: list[Subscription] = []
        self.disposed = False

    def __len__(self) -> int:
        return len(self._subs)

    def add(self, sub: Subscription) -> None:
        if self.disposed:
            sub.unsubscribe()
            return
        self._subs.append(sub)

    def dispose(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()
        self._subs.clear()
        self.disposed = True


class StateSignal:
    """Latest-value signal: subscribers get the current value immediately."""

    def __init__(self, value: str = "") -> None:
        self.value = value
        self.listeners: list[Subscription] = []
        self._waiters: list[tuple[frozenset[str], asyncio.Future[str]]] = []

    def subscribe(self, callback: Callable[[str], None]) -> Subscription:
        sub = Subscription(self.listeners, callback)
        self.listeners.append(sub)
        callback(self.value)
        return sub

    def emit(self, value: str) -> None:
        self.value = value
        for sub in list(self.listeners):
            if sub.active:
                sub.callback(value)

        pending = []
        for wanted, fut in self._waiters:
            if fut.done():
                continue
            if value in wanted:
                fut.set_result(value)
            else:
                pending.append((wanted, fut))
        self._waiters = pending

    async def wait_for(self, *values: str) -> str:
        """Return as soon as the signal holds one of ``values``."""
        if self.value in values:
            return self.value
        fut: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._waiters.append((frozenset(values), fut))
        return await fut
