"""Per-device update queue: one shadow request in flight at a time.

A single worker task consumes jobs from an ``asyncio.Queue``.  Each job
runs to a terminal outcome before the next one is taken, so requests
reach the transport in ``submit`` order and never overlap.  Mutual
exclusion is structural: there is exactly one consumer.

Two kinds of job share the queue:

- **update** — send ``{"state": {"desired": changes}}`` and wait for the
  correlated response, bounded by ``timeout``.
- **handshake** — wait for the connection, request a snapshot and wait
  for it, bounded by the same ``timeout``.  Queued on every attach so
  that updates issued afterwards go out only once the fresh snapshot
  has settled.  A handshake ends at once when its handle is detached
  or replaced, and a snapshot that misses the deadline is abandoned.

A job's failure is reported to its caller as an :class:`UpdateResult`
and never stops the worker.  Timed-out requests are abandoned locally:
they are neither retried nor cancelled at the transport, and a late
answer is dropped by the correlation registry.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import StrEnum

from shadowsync._clock import ClockPort, SystemClock
from shadowsync._connection import ShadowConnection
from shadowsync._document import Document, copy_document
from shadowsync._errors import ShadowSyncError
from shadowsync._events import ResponseStatus, StatusEvent
from shadowsync._session import ShadowSession

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
"""Seconds to wait for the response to one shadow request."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class UpdateOutcome(StrEnum):
    """Terminal outcome of one submitted update."""

    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class PendingRequest:
    """The request currently in flight."""

    token: str
    changes: Document
    created_at: float


@dataclass(frozen=True, slots=True)
class UpdateResult:
    """Outcome of one update, returned to the caller that submitted it.

    Attributes:
        outcome: Terminal outcome.
        changes: The partial document that was submitted.
        token: Client token of the request, ``None`` if none was issued.
        response: The correlated status event (succeeded/rejected only).
        reason: Human-readable explanation for non-successful outcomes.
        elapsed: Seconds between issuing the request and its outcome.
    """

    outcome: UpdateOutcome
    changes: Document
    token: str | None = None
    response: StatusEvent | None = field(default=None, repr=False)
    reason: str = ""
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is UpdateOutcome.SUCCEEDED


@dataclass(frozen=True, slots=True)
class _UpdateJob:
    changes: Document
    future: asyncio.Future[UpdateResult]


@dataclass(frozen=True, slots=True)
class _HandshakeJob:
    connection: ShadowConnection


# ---------------------------------------------------------------------------
# Serializer
# ---------------------------------------------------------------------------


class UpdateSerializer:
    """Single-consumer queue of shadow requests for one device.

    Args:
        session: Session providing the connection, tokens and registry.
        timeout: Seconds to wait for each response.
        clock: Monotonic clock used to time requests.
    """

    def __init__(
        self,
        session: ShadowSession,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: ClockPort | None = None,
    ) -> None:
        if timeout <= 0:
            msg = f"timeout must be positive, got {timeout}"
            raise ValueError(msg)
        self._session = session
        self._timeout = timeout
        self._clock: ClockPort = clock if clock is not None else SystemClock()
        self._jobs: asyncio.Queue[_UpdateJob | _HandshakeJob] = asyncio.Queue()
        self._active: PendingRequest | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def active(self) -> PendingRequest | None:
        """The request currently awaiting its response, if any."""
        return self._active

    @property
    def backlog(self) -> int:
        """Number of jobs waiting behind the current one."""
        return self._jobs.qsize()

    # -- Public API ---------------------------------------------------------

    def submit(self, changes: Document) -> asyncio.Future[UpdateResult]:
        """Queue a desired-state change; resolve with its outcome.

        The returned future never raises for transport problems; see
        :class:`UpdateOutcome`.
        """
        future: asyncio.Future[UpdateResult] = (
            asyncio.get_running_loop().create_future()
        )
        self._jobs.put_nowait(_UpdateJob(copy_document(changes), future))
        return future

    def schedule_handshake(self, connection: ShadowConnection) -> None:
        """Queue a snapshot handshake against *connection*."""
        self._jobs.put_nowait(_HandshakeJob(connection))

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the worker task."""
        if self._task is not None and not self._task.done():
            logger.debug("UpdateSerializer.start() called while already running")
            return
        self._task = asyncio.create_task(
            self._worker(),
            name=f"shadowsync-updates-{self._session.thing_name}",
        )

    async def stop(self) -> None:
        """Stop the worker and cancel futures of jobs still queued.

        Idempotent; safe to call multiple times.
        """
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        while not self._jobs.empty():
            job = self._jobs.get_nowait()
            if isinstance(job, _UpdateJob) and not job.future.done():
                job.future.cancel()

    # -- Worker -------------------------------------------------------------

    async def _worker(self) -> None:
        while True:
            job = await self._jobs.get()
            try:
                match job:
                    case _HandshakeJob(connection=connection):
                        await self._handshake(connection)
                    case _UpdateJob(changes=changes, future=future):
                        result = await self._send(changes)
                        if not future.done():
                            future.set_result(result)
            except asyncio.CancelledError:
                if isinstance(job, _UpdateJob) and not job.future.done():
                    job.future.cancel()
                raise
            except Exception as exc:
                logger.exception(
                    "Unexpected error processing request for %s",
                    self._session.thing_name,
                )
                if isinstance(job, _UpdateJob) and not job.future.done():
                    job.future.set_result(
                        UpdateResult(
                            outcome=UpdateOutcome.FAILED,
                            changes=job.changes,
                            reason=str(exc),
                        ),
                    )
            finally:
                self._jobs.task_done()

    async def _handshake(self, connection: ShadowConnection) -> None:
        thing_name = self._session.thing_name
        if connection is not self._session.connection:
            logger.debug("Skipping handshake for replaced connection")
            return

        snapshot: asyncio.Future[Document] | None = None
        try:
            async with asyncio.timeout(self._timeout):
                if not await self._session.wait_connected():
                    logger.debug("Skipping handshake for replaced connection")
                    return
                snapshot = await self._session.request_snapshot()
                await asyncio.shield(snapshot)
        except TimeoutError:
            if snapshot is not None:
                self._session.discard_snapshot(snapshot)
            logger.warning(
                "Snapshot handshake for %s timed out after %.1fs",
                thing_name,
                self._timeout,
            )
        except ShadowSyncError as exc:
            logger.error("Snapshot handshake for %s failed: %s", thing_name, exc)

    async def _send(self, changes: Document) -> UpdateResult:
        thing_name = self._session.thing_name
        connection = self._session.connection
        if connection is None:
            logger.error(
                "No shadow connection for %s, update cannot be sent",
                thing_name,
            )
            return UpdateResult(
                outcome=UpdateOutcome.FAILED,
                changes=changes,
                reason="no connection",
            )

        registry = self._session.registry
        token = self._session.next_token()
        waiter = registry.wait_for(token)
        started = self._clock.now()
        self._active = PendingRequest(token=token, changes=changes, created_at=started)
        try:
            try:
                issued = await connection.update(
                    thing_name,
                    {"state": {"desired": changes}},
                    client_token=token,
                )
            except Exception as exc:
                registry.discard(token)
                logger.error("Shadow update for %s could not be sent: %s", thing_name, exc)
                return UpdateResult(
                    outcome=UpdateOutcome.FAILED,
                    changes=changes,
                    reason=str(exc),
                )

            if issued is None:
                registry.discard(token)
                logger.error(
                    "Shadow update for %s returned no token. Payload: %s",
                    thing_name,
                    changes,
                )
                return UpdateResult(
                    outcome=UpdateOutcome.FAILED,
                    changes=changes,
                    reason="connection returned no client token",
                )

            if issued != token:
                registry.discard(token)
                token = issued
                waiter = registry.wait_for(token)

            logger.info("Shadow update sent for %s (token: %s)", thing_name, token)

            try:
                response: StatusEvent = await asyncio.wait_for(waiter, self._timeout)
            except TimeoutError:
                registry.discard(token)
                logger.error(
                    "Shadow update for %s TIMED OUT after %.1fs (token: %s)",
                    thing_name,
                    self._timeout,
                    token,
                )
                return UpdateResult(
                    outcome=UpdateOutcome.TIMED_OUT,
                    changes=changes,
                    token=token,
                    reason=f"no response within {self._timeout:g}s",
                    elapsed=self._clock.now() - started,
                )

            elapsed = self._clock.now() - started
            if response.status is ResponseStatus.REJECTED:
                logger.warning(
                    "Shadow update for %s rejected: %s",
                    thing_name,
                    response.message,
                )
                return UpdateResult(
                    outcome=UpdateOutcome.REJECTED,
                    changes=changes,
                    token=token,
                    response=response,
                    reason=response.message or "rejected",
                    elapsed=elapsed,
                )

            logger.info("Shadow update completed for %s (token: %s)", thing_name, token)
            return UpdateResult(
                outcome=UpdateOutcome.SUCCEEDED,
                changes=changes,
                token=token,
                response=response,
                elapsed=elapsed,
            )
        finally:
            self._active = None
