"""Typed events emitted by a shadow connection.

A connection produces four classes of event, all on one ordered stream
per device:

- :class:`LifecycleEvent` — connect / close / offline / error / reconnect
- :class:`StatusEvent` — answer to one of *our* requests, keyed by token
- :class:`ForeignChangeEvent` — state pushed by any other actor
- :class:`DeltaEvent` / :class:`TimeoutEvent` — diagnostics only

The session dispatches on the concrete type with ``match``, so adding a
new event class means adding a new ``case`` there.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from shadowsync._document import Document


class Lifecycle(StrEnum):
    """Connection lifecycle transitions."""

    CONNECT = "connect"
    CLOSE = "close"
    OFFLINE = "offline"
    ERROR = "error"
    RECONNECT = "reconnect"


class ResponseStatus(StrEnum):
    """Outcome reported by the transport for one request."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class ShadowState:
    """The ``{reported, desired}`` pair carried by status and change events.

    Either side may be absent (``None``), e.g. a shadow that has never
    been reported to, or a change that only touches ``desired``.
    """

    reported: Document | None = None
    desired: Document | None = None

    @classmethod
    def from_payload(cls, payload: object) -> ShadowState:
        """Build from a decoded ``{"state": {...}}`` message body."""
        if not isinstance(payload, dict):
            return cls()
        state = payload.get("state")
        if not isinstance(state, dict):
            return cls()
        reported = state.get("reported")
        desired = state.get("desired")
        return cls(
            reported=reported if isinstance(reported, dict) else None,
            desired=desired if isinstance(desired, dict) else None,
        )


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """Connection status change; carries no shadow data."""

    kind: Lifecycle
    detail: str = ""


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """Response to a request this process issued."""

    thing_name: str
    token: str
    status: ResponseStatus
    state: ShadowState = field(default_factory=ShadowState)
    message: str = ""


@dataclass(frozen=True, slots=True)
class ForeignChangeEvent:
    """State change not caused by one of our outstanding requests."""

    thing_name: str
    state: ShadowState = field(default_factory=ShadowState)


@dataclass(frozen=True, slots=True)
class DeltaEvent:
    """Fields where ``desired`` differs from ``reported``."""

    thing_name: str
    state: Document = field(default_factory=dict)
    token: str | None = None


@dataclass(frozen=True, slots=True)
class TimeoutEvent:
    """The transport gave up waiting for an answer to *token*."""

    thing_name: str
    token: str


type ShadowEvent = (
    LifecycleEvent | StatusEvent | ForeignChangeEvent | DeltaEvent | TimeoutEvent
)
