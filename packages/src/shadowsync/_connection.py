"""Shadow connection port and in-process adapters.

Provides ShadowConnection (Protocol) and two implementations:

- MockShadowConnection — test double that records calls and lets tests
  emit events
- NullShadowConnection — silent adapter that never issues a request

The production adapter, :class:`~shadowsync._aws.AwsShadowClient`, lives
in its own module because it pulls in the MQTT stack.

Design decisions:

- Listeners are plain synchronous callables receiving one
  :data:`~shadowsync._events.ShadowEvent`.  The session turns them into
  queue puts, so the connection never awaits a consumer.
- Requests accept a caller-chosen ``client_token`` so the caller can
  register its waiter *before* the request leaves; the adapter returns
  the token actually used, or ``None`` when nothing was sent.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from shadowsync._document import Document
from shadowsync._events import (
    ForeignChangeEvent,
    Lifecycle,
    LifecycleEvent,
    ResponseStatus,
    ShadowEvent,
    ShadowState,
    StatusEvent,
)

logger = logging.getLogger(__name__)

ShadowListener = Callable[[ShadowEvent], None]
"""Synchronous callback receiving every event a connection emits."""

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class ShadowConnection(Protocol):
    """Port contract for a device-shadow transport.

    The device never owns a connection's lifecycle; it only listens to
    it and issues requests through it.
    """

    @property
    def is_connected(self) -> bool: ...

    def add_listener(self, listener: ShadowListener) -> None: ...

    def remove_listener(self, listener: ShadowListener) -> None: ...

    async def register(self, thing_name: str) -> None: ...

    async def get(
        self,
        thing_name: str,
        *,
        client_token: str | None = None,
    ) -> str | None: ...

    async def update(
        self,
        thing_name: str,
        document: dict[str, Any],
        *,
        client_token: str | None = None,
    ) -> str | None: ...


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


@dataclass
class NullShadowConnection:
    """Silent adapter that is permanently connected but never sends.

    Every request returns ``None`` (no token), which callers treat as an
    immediate failure.  Useful as a placeholder handle.
    """

    @property
    def is_connected(self) -> bool:
        return True

    def add_listener(self, listener: ShadowListener) -> None:  # noqa: ARG002
        """Accept and ignore a listener."""

    def remove_listener(self, listener: ShadowListener) -> None:  # noqa: ARG002
        """Accept and ignore a listener removal."""

    async def register(self, thing_name: str) -> None:
        logger.debug("NullShadowConnection.register(%s): discarded", thing_name)

    async def get(
        self,
        thing_name: str,
        *,
        client_token: str | None = None,  # noqa: ARG002
    ) -> str | None:
        logger.debug("NullShadowConnection.get(%s): discarded", thing_name)
        return None

    async def update(
        self,
        thing_name: str,
        document: dict[str, Any],  # noqa: ARG002
        *,
        client_token: str | None = None,  # noqa: ARG002
    ) -> str | None:
        logger.debug("NullShadowConnection.update(%s): discarded", thing_name)
        return None


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockShadowConnection:
    """In-memory test double that records shadow interactions.

    Records registrations, ``get`` and ``update`` calls for assertion,
    and offers helpers that emit events to the attached listeners as a
    real transport would.

    Attributes:
        connected: Value reported by :attr:`is_connected`.  Change it
            through :meth:`set_connected` to also emit a lifecycle event.
        refuse: When true, ``get``/``update`` return ``None``.
        error: When set, ``get``/``update`` raise it.
    """

    connected: bool = True
    refuse: bool = False
    error: Exception | None = None
    registered: list[str] = field(default_factory=list)
    gets: list[tuple[str, str]] = field(default_factory=list)
    updates: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)
    _listeners: list[ShadowListener] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _counter: itertools.count[int] = field(
        default_factory=lambda: itertools.count(1),
        init=False,
        repr=False,
    )

    # -- ShadowConnection methods -------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.connected

    def add_listener(self, listener: ShadowListener) -> None:
        """Attach a listener (duplicates are ignored)."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ShadowListener) -> None:
        """Detach a listener if present."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def register(self, thing_name: str) -> None:
        """Record a registration."""
        self.registered.append(thing_name)

    async def get(
        self,
        thing_name: str,
        *,
        client_token: str | None = None,
    ) -> str | None:
        """Record a get request and return its token."""
        token = self._issue(client_token)
        if token is not None:
            self.gets.append((thing_name, token))
        return token

    async def update(
        self,
        thing_name: str,
        document: dict[str, Any],
        *,
        client_token: str | None = None,
    ) -> str | None:
        """Record an update request and return its token."""
        token = self._issue(client_token)
        if token is not None:
            self.updates.append((thing_name, token, document))
        return token

    # -- Test helpers -------------------------------------------------------

    @property
    def listener_count(self) -> int:
        """Number of attached listeners."""
        return len(self._listeners)

    def emit(self, event: ShadowEvent) -> None:
        """Deliver *event* to every attached listener."""
        for listener in list(self._listeners):
            listener(event)

    def set_connected(self, connected: bool) -> None:
        """Flip the connection state and emit the matching lifecycle event."""
        self.connected = connected
        kind = Lifecycle.CONNECT if connected else Lifecycle.CLOSE
        self.emit(LifecycleEvent(kind))

    def respond(
        self,
        thing_name: str,
        token: str,
        *,
        reported: Document | None = None,
        desired: Document | None = None,
        status: ResponseStatus = ResponseStatus.ACCEPTED,
        message: str = "",
    ) -> None:
        """Emit a :class:`StatusEvent` answering *token*."""
        self.emit(
            StatusEvent(
                thing_name=thing_name,
                token=token,
                status=status,
                state=ShadowState(reported=reported, desired=desired),
                message=message,
            ),
        )

    def push(
        self,
        thing_name: str,
        *,
        reported: Document | None = None,
        desired: Document | None = None,
    ) -> None:
        """Emit a :class:`ForeignChangeEvent`."""
        self.emit(
            ForeignChangeEvent(
                thing_name=thing_name,
                state=ShadowState(reported=reported, desired=desired),
            ),
        )

    def reset(self) -> None:
        """Clear all recorded calls (listeners stay attached)."""
        self.registered.clear()
        self.gets.clear()
        self.updates.clear()

    # -- Internal -----------------------------------------------------------

    def _issue(self, client_token: str | None) -> str | None:
        if self.error is not None:
            raise self.error
        if self.refuse:
            return None
        return client_token or f"mock-{next(self._counter)}"
