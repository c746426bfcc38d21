"""Exception hierarchy for shadowsync.

Only *direct* calls raise: asking the session for a snapshot without a
connection, or loading invalid configuration from the CLI.  Mutations
submitted through the update queue never raise; their failures are
returned as :class:`~shadowsync._serializer.UpdateResult` values so one
bad request cannot break the queue behind it.

Failure taxonomy::

    ConnectionUnavailableError  ← no connection handle is attached
    RequestFailedError          ← the transport refused to issue a request

Both derive from :class:`ShadowSyncError` so callers can catch the
whole family at once.
"""

from __future__ import annotations


class ShadowSyncError(Exception):
    """Base class for all shadowsync errors."""


class ConnectionUnavailableError(ShadowSyncError):
    """Raised when a request needs a connection but none is attached."""

    def __init__(self, thing_name: str) -> None:
        super().__init__(f"No shadow connection attached for '{thing_name}'")
        self.thing_name = thing_name


class RequestFailedError(ShadowSyncError):
    """Raised when the transport could not issue a request or refused a snapshot.

    Attributes:
        thing_name: Thing the request was addressed to.
        operation: Shadow operation name (``"get"`` or ``"update"``).
    """

    def __init__(self, thing_name: str, operation: str, reason: str) -> None:
        super().__init__(f"Shadow {operation} for '{thing_name}' failed: {reason}")
        self.thing_name = thing_name
        self.operation = operation
        self.reason = reason
