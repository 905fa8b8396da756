"""
NotificationStream - explicit broadcast channel for caller-facing updates.

Values can be consumed either through synchronous listener callbacks or
through async-iterator subscriptions, each backed by its own unbounded
``asyncio.Queue``. Publishing never blocks.
"""

import asyncio
from collections.abc import Callable
from typing import Generic, TypeVar

from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """Async iterator over values published after the subscription was opened."""

    def __init__(self, stream: "NotificationStream[T]"):
        self._stream = stream
        self._queue: asyncio.Queue = asyncio.Queue()

    def _push(self, value) -> None:
        self._queue.put_nowait(value)

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._stream._remove(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        value = await self._queue.get()
        if value is _CLOSED:
            raise StopAsyncIteration
        return value


class NotificationStream(Generic[T]):
    """
    Fan-out of published values to listeners and subscriptions.

    Listener exceptions are logged and never propagate into the publisher.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Callable[[T], None]] = []
        self._subscriptions: list[Subscription[T]] = []
        self.published_count = 0

    def add_listener(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """
        Register a callback.

        Returns:
            A function that removes the listener again
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(self) -> Subscription[T]:
        """Open an async-iterator subscription (must be called with a running loop)."""
        subscription: Subscription[T] = Subscription(self)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, value: T) -> None:
        self.published_count += 1
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(
                    f"Listener on {self.name} stream failed: {e}",
                    exc_info=e,
                    extra={"extra_fields": {"stream": self.name, "error_type": type(e).__name__}},
                )
        for subscription in list(self._subscriptions):
            subscription._push(value)

    def close(self) -> None:
        """End every open subscription; listeners stay registered."""
        for subscription in list(self._subscriptions):
            subscription.close()
