"""Current-value broadcast with subscription and async iteration.

A :class:`Broadcast` always holds exactly one value and pushes every new
value to its subscribers.  It serves two roles in shadowsync:

- the device's merged state stream (``None`` until the first snapshot)
- the connection handle holder, swapped on reconnect or credential
  rotation

``None`` is the "nothing yet" placeholder.  Subscribers, :meth:`first`
and :meth:`stream` skip it unless asked otherwise, so a consumer that
subscribes before the first snapshot simply waits for it.

Publishing is synchronous and runs subscriber callbacks inline, in
subscription order.  A failing callback is logged and does not stop
delivery to the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]
"""Callable returned by :meth:`Broadcast.subscribe`; detaches the callback."""


class Broadcast[T]:
    """Holds a current value and broadcasts replacements.

    Example::

        handle = Broadcast[str | None](None)
        handle.subscribe(print)        # nothing printed yet (None)
        handle.publish("first")        # prints "first"
        assert handle.value == "first"
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: list[tuple[Callable[[T], None], bool]] = []
        self._upstream: Unsubscribe | None = None

    @property
    def value(self) -> T:
        """The most recently published value."""
        return self._value

    def publish(self, value: T) -> None:
        """Replace the current value and notify subscribers."""
        self._value = value
        for callback, include_none in list(self._subscribers):
            if value is None and not include_none:
                continue
            try:
                callback(value)
            except Exception:
                logger.exception("Broadcast subscriber %r failed", callback)

    def subscribe(
        self,
        callback: Callable[[T], None],
        *,
        skip_first: bool = False,
        include_none: bool = False,
    ) -> Unsubscribe:
        """Call *callback* with the current value and every later one.

        Args:
            callback: Receives each value.
            skip_first: Do not replay the current value; only react to
                values published after subscribing.
            include_none: Also deliver ``None`` placeholders.

        Returns:
            A callable that removes the subscription.
        """
        entry = (callback, include_none)
        self._subscribers.append(entry)
        if not skip_first and (self._value is not None or include_none):
            callback(self._value)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    async def first(
        self,
        predicate: Callable[[T], bool] | None = None,
    ) -> T:
        """Return the first non-``None`` value satisfying *predicate*.

        The current value counts, so this returns immediately when it
        already matches.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()

        def _check(value: T) -> None:
            if future.done():
                return
            if predicate is None or predicate(value):
                future.set_result(value)

        unsubscribe = self.subscribe(_check)
        try:
            return await future
        finally:
            unsubscribe()

    async def stream(self) -> AsyncIterator[T]:
        """Yield the current value (if any) and every later non-``None`` one."""
        queue: asyncio.Queue[T] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    def project[U](self, selector: Callable[[T], U]) -> Broadcast[U | None]:
        """Derive a broadcast of ``selector(value)`` that skips repeats.

        The derived broadcast only publishes when the selected value
        differs from the last one it published.  Call :meth:`detach` on
        it to drop its subscription on this broadcast.
        """
        derived: Broadcast[U | None] = Broadcast(None)

        def _forward(value: T) -> None:
            selected = selector(value)
            if selected != derived.value:
                derived.publish(selected)

        derived._upstream = self.subscribe(_forward)
        return derived

    def detach(self) -> None:
        """Stop following the broadcast this one was projected from."""
        if self._upstream is not None:
            self._upstream()
            self._upstream = None

    @property
    def subscriber_count(self) -> int:
        """Number of live subscriptions."""
        return len(self._subscribers)
