"""Shadow session: bridge between a connection's events and the cached state.

The session owns the cached merged document of one device and keeps it
in step with whatever the attached connection reports.  Four event
classes arrive from the connection (see :mod:`shadowsync._events`);
the session funnels all of them into a single ``asyncio.Queue`` and a
single processing task handles them strictly in arrival order, so
published document versions form one causal sequence even though
several producers contribute to them.

Merge bases:

- **Snapshot** (answer to our ``get``) — ``merge(reported, desired)``.
  Desired values win: intent overrides the last reported value until
  the device acknowledges it.
- **Foreign change** — ``merge(merge(cached, reported), desired)``.
  Ignored until a first snapshot exists; there is nothing to merge
  against before that.
- **Acknowledged update** — layered onto the cached document the same
  way as a foreign change, once the correlation registry has matched
  the token to a live request.

Lifecycle, delta and timeout events are logged only; they never touch
the document.  Lifecycle events count only while the handle that
emitted them is still attached: a late ``close`` from a replaced handle
must not mark its successor as disconnected.

A rejected snapshot request publishes nothing.  The rejection fails the
snapshot future with :class:`~shadowsync._errors.RequestFailedError`
and the cached document stays as it was.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import itertools
import logging
import uuid

from shadowsync._broadcast import Broadcast
from shadowsync._connection import ShadowConnection, ShadowListener
from shadowsync._correlation import CorrelationRegistry
from shadowsync._document import Document, merge
from shadowsync._errors import ConnectionUnavailableError, RequestFailedError
from shadowsync._events import (
    DeltaEvent,
    ForeignChangeEvent,
    Lifecycle,
    LifecycleEvent,
    ResponseStatus,
    ShadowEvent,
    StatusEvent,
    TimeoutEvent,
)

logger = logging.getLogger(__name__)


class ShadowSession:
    """Keeps one device's cached shadow document in sync with a connection.

    Args:
        thing_name: Identity of the device; events for other things are
            ignored.
        registry: Correlation registry receiving non-snapshot responses.
            A fresh one is created when omitted.
    """

    def __init__(
        self,
        thing_name: str,
        *,
        registry: CorrelationRegistry | None = None,
    ) -> None:
        self._thing_name = thing_name
        self._registry = registry if registry is not None else CorrelationRegistry()
        self._snapshots = CorrelationRegistry()
        self._state: Broadcast[Document | None] = Broadcast(None)
        self._connection: ShadowConnection | None = None
        self._connected = asyncio.Event()
        self._replaced = asyncio.Event()
        self._listener: ShadowListener | None = None
        self._events: asyncio.Queue[tuple[ShadowConnection, ShadowEvent]] = (
            asyncio.Queue()
        )
        self._task: asyncio.Task[None] | None = None
        self._token_prefix = uuid.uuid4().hex[:8]
        self._token_counter = itertools.count(1)

    # -- Properties ---------------------------------------------------------

    @property
    def thing_name(self) -> str:
        return self._thing_name

    @property
    def connection(self) -> ShadowConnection | None:
        """The currently attached connection handle, if any."""
        return self._connection

    @property
    def registry(self) -> CorrelationRegistry:
        return self._registry

    @property
    def state(self) -> Broadcast[Document | None]:
        """Broadcast of the cached merged document (``None`` until a snapshot)."""
        return self._state

    @property
    def document(self) -> Document | None:
        """The most recently published document."""
        return self._state.value

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the event processing task."""
        if self._task is not None and not self._task.done():
            logger.debug("ShadowSession.start() called while already running")
            return
        self._task = asyncio.create_task(
            self._process_events(),
            name=f"shadowsync-session-{self._thing_name}",
        )

    async def stop(self) -> None:
        """Release the connection listener and stop processing.

        Idempotent; safe to call multiple times.
        """
        self.attach(None)
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    # -- Connection handling ------------------------------------------------

    def attach(self, connection: ShadowConnection | None) -> None:
        """Listen to *connection* instead of the previous handle.

        Attaching the handle that is already attached is a no-op.
        ``None`` detaches without attaching anything new.
        """
        if connection is self._connection:
            return

        if self._connection is not None and self._listener is not None:
            self._connection.remove_listener(self._listener)
            self._listener = None

        self._connection = connection
        self._connected.clear()
        self._replaced.set()
        self._replaced = asyncio.Event()

        if connection is None:
            logger.info("Detached shadow connection for %s", self._thing_name)
            return

        self._listener = functools.partial(self._enqueue, connection)
        connection.add_listener(self._listener)
        if connection.is_connected:
            self._connected.set()
        logger.info(
            "Attached shadow connection for %s (connected=%s)",
            self._thing_name,
            connection.is_connected,
        )

    async def wait_connected(self) -> bool:
        """Suspend until the attached connection is connected or replaced.

        Returns:
            ``True`` when the handle attached at call time is connected,
            ``False`` when it was detached or swapped first (or nothing
            was attached).
        """
        connection = self._connection
        if connection is None:
            return False

        connected = asyncio.ensure_future(self._connected.wait())
        replaced = asyncio.ensure_future(self._replaced.wait())
        try:
            await asyncio.wait(
                {connected, replaced},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            connected.cancel()
            replaced.cancel()
        return connection is self._connection and self._connected.is_set()

    def next_token(self) -> str:
        """Return a client token unique to this session."""
        return f"{self._token_prefix}-{next(self._token_counter)}"

    async def request_snapshot(self) -> asyncio.Future[Document]:
        """Register the thing and ask the connection for its current shadow.

        Returns:
            A future resolved with ``merge(reported, desired)`` once the
            matching status event arrives.  The same document is
            published on :attr:`state`.

        Raises:
            ConnectionUnavailableError: No connection is attached.
            RequestFailedError: The connection could not issue the request.
        """
        connection = self._connection
        if connection is None:
            raise ConnectionUnavailableError(self._thing_name)

        token = self.next_token()
        future: asyncio.Future[Document] = self._snapshots.wait_for(token)
        try:
            await connection.register(self._thing_name)
            issued = await connection.get(self._thing_name, client_token=token)
        except Exception as exc:
            self._snapshots.discard(token)
            raise RequestFailedError(self._thing_name, "get", str(exc)) from exc

        if issued is None:
            self._snapshots.discard(token)
            raise RequestFailedError(
                self._thing_name,
                "get",
                "connection returned no client token",
            )

        if issued != token:
            self._snapshots.discard(token)
            future = self._snapshots.wait_for(issued)

        logger.info(
            "Requested shadow snapshot for %s (token: %s)",
            self._thing_name,
            issued,
        )
        return future

    # -- Event processing ---------------------------------------------------

    def _enqueue(self, source: ShadowConnection, event: ShadowEvent) -> None:
        self._events.put_nowait((source, event))

    async def _process_events(self) -> None:
        while True:
            source, event = await self._events.get()
            try:
                self.handle(event, source=source)
            except Exception:
                logger.exception(
                    "Error handling %s for %s",
                    type(event).__name__,
                    self._thing_name,
                )

    def handle(
        self,
        event: ShadowEvent,
        *,
        source: ShadowConnection | None = None,
    ) -> None:
        """Apply one event to the session state.

        Called by the processing task for each queued event; tests may
        call it directly to drive the session synchronously.  *source*
        is the handle that emitted the event; lifecycle events from a
        handle that is no longer attached are dropped.
        """
        match event:
            case LifecycleEvent() if (
                source is not None and source is not self._connection
            ):
                logger.debug(
                    "Ignoring %s from a detached connection for %s",
                    event.kind,
                    self._thing_name,
                )
            case LifecycleEvent():
                self._on_lifecycle(event)
            case StatusEvent():
                self._on_status(event)
            case ForeignChangeEvent():
                self._on_foreign_change(event)
            case DeltaEvent():
                logger.info(
                    "Delta received for %s (token: %s)",
                    event.thing_name,
                    event.token,
                )
                logger.debug("Delta state: %s", event.state)
            case TimeoutEvent():
                logger.error(
                    "Transport timeout for %s (token: %s)",
                    event.thing_name,
                    event.token,
                )

    def _on_lifecycle(self, event: LifecycleEvent) -> None:
        match event.kind:
            case Lifecycle.CONNECT:
                self._connected.set()
                logger.info("Shadow connection CONNECTED for %s", self._thing_name)
            case Lifecycle.CLOSE | Lifecycle.OFFLINE:
                self._connected.clear()
                logger.error(
                    "Shadow connection %s for %s",
                    event.kind.upper(),
                    self._thing_name,
                )
            case Lifecycle.ERROR:
                logger.error(
                    "Shadow connection ERROR for %s: %s",
                    self._thing_name,
                    event.detail,
                )
            case Lifecycle.RECONNECT:
                logger.info("Shadow connection reconnecting for %s", self._thing_name)

    def _on_status(self, event: StatusEvent) -> None:
        if event.thing_name != self._thing_name:
            logger.debug("Ignoring status for different thing: %s", event.thing_name)
            return

        if event.token in self._snapshots:
            self._on_snapshot(event)
            return

        delivered = self._registry.deliver(event.token, event)
        cached = self._state.value
        if delivered and event.status is ResponseStatus.ACCEPTED and cached is not None:
            self._publish(
                merge(merge(cached, event.state.reported), event.state.desired),
                cause="acknowledgment",
            )

    def _on_snapshot(self, event: StatusEvent) -> None:
        if event.status is ResponseStatus.REJECTED:
            reason = event.message or "no reason given"
            logger.warning("Snapshot request for %s rejected: %s", self._thing_name, reason)
            self._snapshots.fail(
                event.token,
                RequestFailedError(self._thing_name, "get", reason),
            )
            return

        logger.info("Initial shadow state received for %s", self._thing_name)
        logger.debug("Reported state: %s", event.state.reported)
        logger.debug("Desired state: %s", event.state.desired)
        document = merge(event.state.reported, event.state.desired)
        self._snapshots.deliver(event.token, document)
        self._publish(document, cause="snapshot")

    def discard_snapshot(self, future: asyncio.Future[Document]) -> None:
        """Stop waiting for the snapshot behind *future*.

        A late answer to it is then dropped like any unknown token.
        """
        self._snapshots.discard_future(future)

    def _on_foreign_change(self, event: ForeignChangeEvent) -> None:
        cached = self._state.value
        if cached is None or event.thing_name != self._thing_name:
            logger.debug(
                "Ignoring foreign change for %s (cached: %s, thing match: %s)",
                event.thing_name,
                cached is not None,
                event.thing_name == self._thing_name,
            )
            return

        logger.info("Applying foreign state change for %s", self._thing_name)
        self._publish(
            merge(merge(cached, event.state.reported), event.state.desired),
            cause="foreign change",
        )

    def _publish(self, document: Document, *, cause: str) -> None:
        logger.debug("Publishing %s state for %s: %s", cause, self._thing_name, document)
        self._state.publish(document)
