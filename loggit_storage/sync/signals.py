"""
Minimal observable streams for replication signals.

A replication session publishes liveness, change and completion signals;
the session manager subscribes to them and must be able to release those
subscriptions before the session is torn down.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Observer = Callable[[T], Any]


class Subscription:
    """Handle returned by `Observable.subscribe`."""

    def __init__(self, observable: Observable, observer: Callable) -> None:
        self._observable: Observable | None = observable
        self._observer = observer

    @property
    def closed(self) -> bool:
        return self._observable is None

    def unsubscribe(self) -> None:
        """Stop receiving values. Safe to call more than once."""
        if self._observable is not None:
            self._observable._remove(self._observer)
            self._observable = None


class Observable(Generic[T]):
    """A named stream of values delivered to subscribed callbacks.

    Callbacks may be plain functions or coroutine functions. They run in
    subscription order; a failing callback is logged and does not stop the
    others or the publisher.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._observers: list[Callable] = []

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: Observer[T]) -> Subscription:
        self._observers.append(observer)
        return Subscription(self, observer)

    def _remove(self, observer: Callable) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    async def emit(self, value: T) -> None:
        for observer in list(self._observers):
            try:
                result = observer(value)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Observer of '{self.name}' failed: {e}", exc_info=True)
