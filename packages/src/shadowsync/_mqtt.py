"""MQTT client port and adapters.

Provides MqttPort (Protocol) and two implementations:

- MqttClient — real aiomqtt-based client with reconnection and TLS
- MockMqttClient — test double that records calls

Design decisions:

- aiomqtt imported lazily inside MqttClient._connection_loop() so the
  mock works without aiomqtt installed
- Subscriptions tracked internally and restored on reconnect
- MessageCallback dispatches (topic, payload) to registered handlers
- LifecycleCallback reports connect / close / error / reconnect so
  shadow sessions can observe connection health without seeing aiomqtt
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from shadowsync._events import Lifecycle
from shadowsync._settings import MqttSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""

LifecycleCallback = Callable[[Lifecycle, str], None]
"""Callback receiving (kind, detail) for each connection transition."""

# ---------------------------------------------------------------------------
# Ports (Protocols)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Port contract for MQTT publish/subscribe."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str, *, qos: int = 1) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Adapters that fan inbound messages out to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters that report their connection state."""

    @property
    def is_connected(self) -> bool: ...

    def on_lifecycle(self, callback: LifecycleCallback) -> None: ...


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Records publishes and subscriptions for assertion.  Supports
    callback registration and simulated message delivery via
    ``deliver()``, and simulated connection changes via
    ``set_connected()``.
    """

    connected: bool = True
    published: list[tuple[str, str, bool, int]] = field(
        default_factory=list,
    )
    subscriptions: list[str] = field(default_factory=list)
    publish_error: Exception | None = None
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _lifecycle_callbacks: list[LifecycleCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Record a publish call (or raise ``publish_error``)."""
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, retain, qos))

    async def subscribe(self, topic: str, *, qos: int = 1) -> None:  # noqa: ARG002
        """Record a subscribe call."""
        self.subscriptions.append(topic)

    # -- Handler / lifecycle registration ----------------------------------

    @property
    def is_connected(self) -> bool:
        return self.connected

    def on_message(self, callback: MessageCallback) -> None:
        """Register an inbound-message callback."""
        self._callbacks.append(callback)

    def on_lifecycle(self, callback: LifecycleCallback) -> None:
        """Register a connection-lifecycle callback."""
        self._lifecycle_callbacks.append(callback)

    # -- Test helpers -------------------------------------------------------

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message by invoking all callbacks."""
        for cb in self._callbacks:
            await cb(topic, payload)

    def set_connected(self, connected: bool, detail: str = "") -> None:
        """Simulate a connect or close and notify lifecycle callbacks."""
        self.connected = connected
        kind = Lifecycle.CONNECT if connected else Lifecycle.CLOSE
        for cb in self._lifecycle_callbacks:
            cb(kind, detail)

    @property
    def publish_count(self) -> int:
        """Number of recorded publishes."""
        return len(self.published)

    def get_messages_for(
        self,
        topic: str,
    ) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]

    def reset(self) -> None:
        """Clear all recorded data and callbacks."""
        self.published.clear()
        self.subscriptions.clear()
        self._callbacks.clear()
        self._lifecycle_callbacks.clear()


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *aiomqtt*.

    Uses a background task that maintains a persistent connection
    with automatic reconnection (exponential backoff with jitter,
    capped at ``reconnect_max_interval``).  ``aiomqtt`` is imported
    lazily inside ``_connection_loop()``.
    """

    settings: MqttSettings

    # internal state --------------------------------------------------------
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _lifecycle_callbacks: list[LifecycleCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _subscriptions: dict[str, int] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)
    _client_id: str = field(default="", init=False, repr=False)

    def __post_init__(self) -> None:
        self._client_id = self.settings.client_id or f"shadowsync-{uuid.uuid4().hex[:8]}"

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish a message to the broker.

        Raises:
            RuntimeError: If the client is not connected.
        """
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        await self._client.publish(
            topic,
            payload,
            retain=retain,
            qos=qos,
        )
        logger.debug(
            "Published to %s (qos=%d, retain=%s)",
            topic,
            qos,
            retain,
        )

    async def subscribe(self, topic: str, *, qos: int = 1) -> None:
        """Subscribe to *topic*.

        The subscription is tracked internally so it can be restored
        after a reconnection.
        """
        self._subscriptions[topic] = qos
        if self._client is not None:
            await self._client.subscribe(topic, qos=qos)

    # -- Callback registration ---------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        """Register a callback for inbound messages."""
        self._callbacks.append(callback)

    def on_lifecycle(self, callback: LifecycleCallback) -> None:
        """Register a callback for connection transitions."""
        self._lifecycle_callbacks.append(callback)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient.start() called while already running")
            return
        self._stopping = False
        self._listen_task = asyncio.create_task(
            self._connection_loop(),
        )

    async def stop(self) -> None:
        """Stop the connection loop and clean up.

        Idempotent; safe to call multiple times.
        """
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    async def wait_connected(self) -> None:
        """Suspend until the broker connection is up."""
        await self._connected.wait()

    @property
    def is_connected(self) -> bool:
        """Whether the client is currently connected to the broker."""
        return self._connected.is_set()

    @property
    def client_id(self) -> str:
        """MQTT client identifier used for every connection attempt."""
        return self._client_id

    # -- Internal -----------------------------------------------------------

    def _notify(self, kind: Lifecycle, detail: str = "") -> None:
        for cb in self._lifecycle_callbacks:
            try:
                cb(kind, detail)
            except Exception:
                logger.exception("Error in lifecycle callback (%s)", kind)

    def _backoff_delay(self, failures: int) -> float:
        """Exponential delay with jitter for the *failures*-th retry."""
        base = self.settings.reconnect_interval * (2 ** max(failures - 1, 0))
        capped = min(base, self.settings.reconnect_max_interval)
        return capped * random.uniform(0.5, 1.0)

    def _tls_params(self, aiomqtt: Any) -> Any:
        if not self.settings.uses_tls:
            return None
        return aiomqtt.TLSParameters(
            ca_certs=self.settings.ca_file,
            certfile=self.settings.cert_file,
            keyfile=self.settings.key_file,
        )

    async def _connection_loop(self) -> None:
        """Maintain a persistent connection with auto-reconnect."""
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        failures = 0
        while not self._stopping:
            try:
                password: str | None = None
                if self.settings.password is not None:
                    password = self.settings.password.get_secret_value()

                async with aiomqtt.Client(
                    hostname=self.settings.host,
                    port=self.settings.port,
                    username=self.settings.username,
                    password=password,
                    identifier=self._client_id,
                    tls_params=self._tls_params(aiomqtt),
                ) as client:
                    self._client = client
                    try:
                        for topic, qos in list(self._subscriptions.items()):
                            await client.subscribe(topic, qos=qos)

                        failures = 0
                        self._connected.set()
                        logger.info(
                            "MQTT connected to %s:%d",
                            self.settings.host,
                            self.settings.port,
                        )
                        self._notify(Lifecycle.CONNECT)

                        async for message in client.messages:
                            await self._dispatch(message)
                    finally:
                        self._connected.clear()
                        self._client = None
                        self._notify(Lifecycle.CLOSE)

            except asyncio.CancelledError:
                raise
            except Exception as exc:
                failures += 1
                delay = self._backoff_delay(failures)
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    delay,
                    exc_info=True,
                )
                self._notify(Lifecycle.ERROR, str(exc))
                await asyncio.sleep(delay)
                self._notify(Lifecycle.RECONNECT)

    async def _dispatch(self, message: Any) -> None:
        """Decode and fan-out an inbound message to callbacks."""
        topic = str(message.topic)

        if message.payload is None:
            logger.debug(
                "Skipping message with None payload on %s",
                topic,
            )
            return

        payload = (
            message.payload.decode("utf-8")
            if isinstance(message.payload, (bytes, bytearray))
            else str(message.payload)
        )

        for cb in self._callbacks:
            try:
                await cb(topic, payload)
            except Exception:
                logger.exception(
                    "Error in message callback for %s",
                    topic,
                )
