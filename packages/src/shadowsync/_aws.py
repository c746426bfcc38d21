"""AWS IoT device-shadow protocol over MQTT.

:class:`AwsShadowClient` satisfies
:class:`~shadowsync._connection.ShadowConnection` on top of any MQTT
adapter that can publish, subscribe, dispatch messages and report its
lifecycle (:class:`~shadowsync._mqtt.MqttClient` in production,
:class:`~shadowsync._mqtt.MockMqttClient` in tests).

Topic layout (classic, unnamed shadow)::

    $aws/things/{thing}/shadow/get                 ← publish {"clientToken"}
    $aws/things/{thing}/shadow/get/accepted        → full shadow document
    $aws/things/{thing}/shadow/get/rejected        → {"code", "message"}
    $aws/things/{thing}/shadow/update              ← publish {"state", "clientToken"}
    $aws/things/{thing}/shadow/update/accepted     → accepted update
    $aws/things/{thing}/shadow/update/rejected     → {"code", "message"}
    $aws/things/{thing}/shadow/update/delta        → desired ≠ reported

Event mapping:

- ``accepted``/``rejected`` carrying one of *our* tokens → StatusEvent
- ``update/accepted`` with any other token (or none) → ForeignChangeEvent
- ``update/delta`` → DeltaEvent
- our request unanswered after ``operation_timeout`` → TimeoutEvent
- MQTT connect / close / error / reconnect → LifecycleEvent
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

from shadowsync._connection import ShadowListener
from shadowsync._events import (
    DeltaEvent,
    ForeignChangeEvent,
    Lifecycle,
    LifecycleEvent,
    ResponseStatus,
    ShadowEvent,
    ShadowState,
    StatusEvent,
    TimeoutEvent,
)
from shadowsync._mqtt import LifecycleCallback, MessageCallback

logger = logging.getLogger(__name__)

_TOPIC_RE = re.compile(
    r"^\$aws/things/(?P<thing>[^/]+)/shadow/"
    r"(?P<operation>get|update)/(?P<kind>accepted|rejected|delta)$",
)

_EXPIRED_TOKENS_KEPT = 64

_RESPONSE_SUFFIXES = (
    "get/accepted",
    "get/rejected",
    "update/accepted",
    "update/rejected",
    "update/delta",
)


def shadow_topic(thing_name: str, suffix: str) -> str:
    """Return ``$aws/things/{thing_name}/shadow/{suffix}``."""
    return f"$aws/things/{thing_name}/shadow/{suffix}"


class ShadowMqtt(Protocol):
    """What :class:`AwsShadowClient` needs from an MQTT adapter."""

    @property
    def is_connected(self) -> bool: ...

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str, *, qos: int = 1) -> None: ...

    def on_message(self, callback: MessageCallback) -> None: ...

    def on_lifecycle(self, callback: LifecycleCallback) -> None: ...


@dataclass
class AwsShadowClient:
    """Shadow connection speaking the AWS IoT shadow MQTT topics.

    Args:
        mqtt: MQTT adapter; the client registers its message and
            lifecycle callbacks on construction.
        operation_timeout: Seconds after which an unanswered request of
            ours is reported as a :class:`TimeoutEvent`.
        qos: QoS used for shadow publishes and subscriptions.
    """

    mqtt: ShadowMqtt
    operation_timeout: float = 5.0
    qos: int = 1

    _listeners: list[ShadowListener] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _registered: set[str] = field(default_factory=set, init=False, repr=False)
    _pending: dict[str, asyncio.TimerHandle] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _expired: deque[str] = field(
        default_factory=lambda: deque(maxlen=_EXPIRED_TOKENS_KEPT),
        init=False,
        repr=False,
    )

    def __post_init__(self) -> None:
        self.mqtt.on_message(self._on_message)
        self.mqtt.on_lifecycle(self._on_lifecycle)

    # -- ShadowConnection ---------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.mqtt.is_connected

    def add_listener(self, listener: ShadowListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ShadowListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def register(self, thing_name: str) -> None:
        """Subscribe to the response topics of *thing_name* (once)."""
        if thing_name in self._registered:
            return
        for suffix in _RESPONSE_SUFFIXES:
            await self.mqtt.subscribe(shadow_topic(thing_name, suffix), qos=self.qos)
        self._registered.add(thing_name)
        logger.info("Registered shadow topics for %s", thing_name)

    async def get(
        self,
        thing_name: str,
        *,
        client_token: str | None = None,
    ) -> str | None:
        return await self._request(thing_name, "get", {}, client_token)

    async def update(
        self,
        thing_name: str,
        document: dict[str, Any],
        *,
        client_token: str | None = None,
    ) -> str | None:
        return await self._request(thing_name, "update", document, client_token)

    # -- Internal -----------------------------------------------------------

    @property
    def pending_tokens(self) -> frozenset[str]:
        """Tokens of our requests still awaiting an answer."""
        return frozenset(self._pending)

    async def _request(
        self,
        thing_name: str,
        operation: str,
        body: dict[str, Any],
        client_token: str | None,
    ) -> str | None:
        if not self.mqtt.is_connected:
            logger.warning(
                "Cannot send shadow %s for %s: MQTT not connected",
                operation,
                thing_name,
            )
            return None

        token = client_token or uuid.uuid4().hex
        payload = json.dumps({**body, "clientToken": token}, separators=(",", ":"))
        self._track(thing_name, token)
        try:
            await self.mqtt.publish(
                shadow_topic(thing_name, operation),
                payload,
                qos=self.qos,
            )
        except Exception:
            self._untrack(token)
            logger.warning(
                "Failed to publish shadow %s for %s",
                operation,
                thing_name,
                exc_info=True,
            )
            return None

        logger.debug("Published shadow %s for %s: %s", operation, thing_name, payload)
        return token

    def _track(self, thing_name: str, token: str) -> None:
        loop = asyncio.get_running_loop()
        self._pending[token] = loop.call_later(
            self.operation_timeout,
            self._expire,
            thing_name,
            token,
        )

    def _untrack(self, token: str) -> bool:
        handle = self._pending.pop(token, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def _expire(self, thing_name: str, token: str) -> None:
        if self._pending.pop(token, None) is None:
            return
        # A late answer to an expired token is still ours, not foreign.
        self._expired.append(token)
        self._emit(TimeoutEvent(thing_name=thing_name, token=token))

    def _is_own(self, token: str) -> bool:
        """Consume *token* if it belongs to one of our requests."""
        if self._untrack(token):
            return True
        if token in self._expired:
            self._expired.remove(token)
            return True
        return False

    def _emit(self, event: ShadowEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in shadow listener for %s", type(event).__name__)

    def _on_lifecycle(self, kind: Lifecycle, detail: str) -> None:
        self._emit(LifecycleEvent(kind=kind, detail=detail))

    async def _on_message(self, topic: str, payload: str) -> None:
        parsed = _TOPIC_RE.match(topic)
        if parsed is None:
            return

        try:
            body = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON shadow message on %s", topic)
            return
        if not isinstance(body, dict):
            logger.warning("Ignoring non-object shadow message on %s", topic)
            return

        thing_name = parsed["thing"]
        operation = parsed["operation"]
        kind = parsed["kind"]
        token = body.get("clientToken")
        token = token if isinstance(token, str) else None

        if kind == "delta":
            state = body.get("state")
            self._emit(
                DeltaEvent(
                    thing_name=thing_name,
                    state=state if isinstance(state, dict) else {},
                    token=token,
                ),
            )
            return

        if token is not None and self._is_own(token):
            message = body.get("message")
            self._emit(
                StatusEvent(
                    thing_name=thing_name,
                    token=token,
                    status=ResponseStatus(kind),
                    state=ShadowState.from_payload(body),
                    message=message if isinstance(message, str) else "",
                ),
            )
            return

        if operation == "update" and kind == "accepted":
            self._emit(
                ForeignChangeEvent(
                    thing_name=thing_name,
                    state=ShadowState.from_payload(body),
                ),
            )
            return

        logger.debug(
            "Ignoring %s/%s for %s with foreign token %s",
            operation,
            kind,
            thing_name,
            token,
        )
