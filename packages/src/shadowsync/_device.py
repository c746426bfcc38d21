"""Generic shadow-backed device.

:class:`ShadowDevice` is the public face of the synchronization engine.
It combines a :class:`~shadowsync._session.ShadowSession` (cached state
and event handling) with an
:class:`~shadowsync._serializer.UpdateSerializer` (one request in flight)
and exposes:

- ``on_state`` — broadcast of the merged document
- ``update(changes)`` — queued desired-state mutation
- ``get_current_state()`` — first available document

Device-specific classes subclass it and build projections and commands
on top of those three.

Connection handles are supplied through a
:class:`~shadowsync._broadcast.Broadcast`.  :meth:`ShadowDevice.start`
attaches the current handle; a skip-first subscription re-attaches and
re-runs the snapshot handshake for every later handle (reconnect,
credential rotation).

Usage::

    handle = Broadcast[ShadowConnection | None](client)
    async with ShadowDevice(DeviceInfo("rest-1", "Nursery"), handle) as device:
        state = await device.get_current_state()
        result = await device.update({"current": {"paused": True}})
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Self

from shadowsync._broadcast import Broadcast, Unsubscribe
from shadowsync._clock import ClockPort
from shadowsync._connection import ShadowConnection
from shadowsync._document import Document
from shadowsync._serializer import (
    DEFAULT_REQUEST_TIMEOUT,
    UpdateResult,
    UpdateSerializer,
)
from shadowsync._session import ShadowSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    """Immutable identity of one shadow-backed device.

    Attributes:
        thing_name: Shadow identifier on the transport.
        name: Human-readable name used in logs.
        mac_address: Physical address of the device.
        id: Vendor identifier, when the vendor has one.
        product: Vendor product code.
    """

    thing_name: str
    name: str
    mac_address: str = ""
    id: str = ""
    product: str = ""


class ShadowDevice:
    """A device whose state lives in a remote shadow document.

    Args:
        info: Device identity.
        connection: Broadcast of the current connection handle, or a
            single handle (wrapped in a broadcast that never changes).
        request_timeout: Seconds to wait for each shadow response.
        clock: Monotonic clock used to time requests.
    """

    def __init__(
        self,
        info: DeviceInfo,
        connection: Broadcast[ShadowConnection | None] | ShadowConnection | None,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: ClockPort | None = None,
    ) -> None:
        if not isinstance(connection, Broadcast):
            connection = Broadcast[ShadowConnection | None](connection)
        self._info = info
        self._connection = connection
        self._session = ShadowSession(info.thing_name)
        self._serializer = UpdateSerializer(
            self._session,
            timeout=request_timeout,
            clock=clock,
        )
        self._unsubscribe: Unsubscribe | None = None

    # -- Identity -----------------------------------------------------------

    @property
    def info(self) -> DeviceInfo:
        return self._info

    @property
    def id(self) -> str:
        return self._info.id

    @property
    def name(self) -> str:
        return self._info.name

    @property
    def thing_name(self) -> str:
        return self._info.thing_name

    @property
    def mac_address(self) -> str:
        return self._info.mac_address

    # -- State --------------------------------------------------------------

    @property
    def on_connection(self) -> Broadcast[ShadowConnection | None]:
        """The connection handle broadcast this device follows."""
        return self._connection

    @property
    def on_state(self) -> Broadcast[Document | None]:
        """Broadcast of the merged shadow document.

        Subscribers, ``first()`` and ``stream()`` skip the ``None``
        placeholder held before the first snapshot.
        """
        return self._session.state

    @property
    def state(self) -> Document | None:
        """Latest merged document, ``None`` before the first snapshot."""
        return self._session.document

    @property
    def session(self) -> ShadowSession:
        return self._session

    @property
    def serializer(self) -> UpdateSerializer:
        return self._serializer

    async def get_current_state(self) -> Document:
        """Return the current document, waiting for the first snapshot."""
        return await self.on_state.first()

    def project[T](self, selector: Callable[[Document], T]) -> Broadcast[T | None]:
        """Broadcast of ``selector(state)`` that only publishes changes."""
        return self.on_state.project(selector)

    # -- Mutation -----------------------------------------------------------

    def update(self, changes: Document) -> asyncio.Future[UpdateResult]:
        """Queue a desired-state change for this device.

        Returns a future resolving with the :class:`UpdateResult`;
        callers that do not care about the outcome may ignore it.
        """
        logger.info("update() called for %s: %s", self.name, changes)
        return self._serializer.submit(changes)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Attach the current connection and start processing.

        Later connection handles are picked up automatically.
        """
        await self._session.start()
        await self._serializer.start()
        if self._unsubscribe is None:
            self._unsubscribe = self._connection.subscribe(
                self._register_connection,
                skip_first=True,
                include_none=True,
            )
            self._register_connection(self._connection.value)

    async def stop(self) -> None:
        """Stop following the connection and release its listeners."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self._serializer.stop()
        await self._session.stop()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # -- Internal -----------------------------------------------------------

    def _register_connection(self, connection: ShadowConnection | None) -> None:
        if connection is not None and connection is self._session.connection:
            logger.debug("Connection for %s unchanged, already attached", self.name)
            return
        logger.info(
            "Registering shadow connection for %s (thingName: %s)",
            self.name,
            self.thing_name,
        )
        self._session.attach(connection)
        if connection is None:
            logger.warning("No shadow connection available for %s", self.name)
            return
        self._serializer.schedule_handshake(connection)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(thing_name={self.thing_name!r}, name={self.name!r})"
