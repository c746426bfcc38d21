"""Unit tests for shadowsync._serializer — one request in flight.

Test Techniques Used:
    - Specification-based Testing: outcomes succeeded / rejected /
      failed / timed out
    - State Transition Testing: queue order, handshake before updates
    - Error Guessing: missing connection, refused and failing transport,
      late responses after timeout
    - Mock-based Isolation: MockShadowConnection + FakeClock
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from shadowsync._connection import MockShadowConnection
from shadowsync._events import ResponseStatus
from shadowsync._serializer import UpdateOutcome, UpdateSerializer
from shadowsync._session import ShadowSession
from shadowsync.testing import FakeClock

THING = "rest-1"
TIMEOUT = 0.2


@pytest.fixture
async def session() -> AsyncIterator[ShadowSession]:
    session = ShadowSession(THING)
    await session.start()
    yield session
    await session.stop()


@pytest.fixture
async def serializer(
    session: ShadowSession,
    fake_clock: FakeClock,
) -> AsyncIterator[UpdateSerializer]:
    serializer = UpdateSerializer(session, timeout=TIMEOUT, clock=fake_clock)
    await serializer.start()
    yield serializer
    await serializer.stop()


@pytest.fixture
def attached(
    session: ShadowSession,
    mock_connection: MockShadowConnection,
) -> MockShadowConnection:
    session.attach(mock_connection)
    return mock_connection


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    """Technique: Boundary Value Analysis."""

    @pytest.mark.parametrize("timeout", [0, -1.0])
    def test_non_positive_timeout_rejected(self, timeout: float) -> None:
        with pytest.raises(ValueError, match="positive"):
            UpdateSerializer(ShadowSession(THING), timeout=timeout)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestOutcomes:
    """Tests for each terminal outcome.

    Technique: Specification-based Testing.
    """

    async def test_sends_desired_state(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        serializer.submit({"current": {"paused": True}})
        await settle()
        thing, _token, document = attached.updates[0]
        assert thing == THING
        assert document == {"state": {"desired": {"current": {"paused": True}}}}

    async def test_accepted_response_succeeds(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        fake_clock: FakeClock,
        settle,
    ) -> None:
        future = serializer.submit({"v": 10})
        await settle()
        _, token, _ = attached.updates[0]
        assert serializer.active is not None
        assert serializer.active.token == token

        fake_clock.advance(2.5)
        attached.respond(THING, token, desired={"v": 10})
        result = await asyncio.wait_for(future, 1)

        assert result.outcome is UpdateOutcome.SUCCEEDED
        assert result.ok
        assert result.token == token
        assert result.changes == {"v": 10}
        assert result.elapsed == 2.5
        assert result.response is not None
        assert serializer.active is None

    async def test_rejected_response(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        future = serializer.submit({"v": "loud"})
        await settle()
        attached.respond(
            THING,
            attached.updates[0][1],
            status=ResponseStatus.REJECTED,
            message="Invalid JSON",
        )
        result = await asyncio.wait_for(future, 1)
        assert result.outcome is UpdateOutcome.REJECTED
        assert result.reason == "Invalid JSON"
        assert not result.ok

    async def test_no_connection_fails_immediately(
        self,
        serializer: UpdateSerializer,
    ) -> None:
        """No handle means failure now, not after the request timeout."""
        result = await asyncio.wait_for(serializer.submit({"v": 10}), TIMEOUT / 2)
        assert result.outcome is UpdateOutcome.FAILED
        assert result.reason == "no connection"
        assert result.token is None

    async def test_refused_request_fails(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
    ) -> None:
        attached.refuse = True
        result = await asyncio.wait_for(serializer.submit({"v": 1}), 1)
        assert result.outcome is UpdateOutcome.FAILED
        assert "no client token" in result.reason

    async def test_transport_error_fails(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
    ) -> None:
        attached.error = ConnectionError("broken pipe")
        result = await asyncio.wait_for(serializer.submit({"v": 1}), 1)
        assert result.outcome is UpdateOutcome.FAILED
        assert result.reason == "broken pipe"

    async def test_no_response_times_out(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
    ) -> None:
        result = await asyncio.wait_for(serializer.submit({"v": 1}), 1)
        assert result.outcome is UpdateOutcome.TIMED_OUT
        assert result.token == attached.updates[0][1]

    async def test_submitted_changes_are_copied(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        changes = {"current": {"v": 1}}
        serializer.submit(changes)
        changes["current"]["v"] = 2
        await settle()
        assert attached.updates[0][2] == {"state": {"desired": {"current": {"v": 1}}}}


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    """Requests reach the transport in call order, one at a time.

    Technique: State Transition Testing.
    """

    async def test_one_request_in_flight(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        first = serializer.submit({"n": 1})
        second = serializer.submit({"n": 2})
        third = serializer.submit({"n": 3})
        await settle()
        assert len(attached.updates) == 1
        assert serializer.backlog == 2

        for expected in (1, 2, 3):
            thing, token, document = attached.updates[-1]
            assert document["state"]["desired"] == {"n": expected}
            attached.respond(thing, token)
            await settle()

        results = await asyncio.gather(first, second, third)
        assert [r.outcome for r in results] == [UpdateOutcome.SUCCEEDED] * 3
        assert len(attached.updates) == 3

    async def test_timeout_does_not_block_next_request(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        a = serializer.submit({"a": 1})
        b = serializer.submit({"b": 1})
        await settle()
        assert len(attached.updates) == 1

        result_a = await asyncio.wait_for(a, 1)
        assert result_a.outcome is UpdateOutcome.TIMED_OUT
        await settle()
        assert len(attached.updates) == 2
        assert not b.done()

        attached.respond(THING, attached.updates[1][1])
        assert (await asyncio.wait_for(b, 1)).ok

    async def test_late_response_is_dropped(
        self,
        serializer: UpdateSerializer,
        session: ShadowSession,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        session.state.publish({"v": 0})
        result = await asyncio.wait_for(serializer.submit({"v": 1}), 1)
        assert result.outcome is UpdateOutcome.TIMED_OUT

        attached.respond(THING, result.token, desired={"v": 1})
        await settle()
        assert session.document == {"v": 0}
        assert len(session.registry) == 0

    async def test_failure_does_not_stop_worker(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        attached.error = RuntimeError("transient")
        failed = await asyncio.wait_for(serializer.submit({"v": 1}), 1)
        assert failed.outcome is UpdateOutcome.FAILED

        attached.error = None
        future = serializer.submit({"v": 2})
        await settle()
        attached.respond(THING, attached.updates[-1][1])
        assert (await asyncio.wait_for(future, 1)).ok


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


class TestHandshake:
    """Snapshot handshake queued ahead of updates.

    Technique: State Transition Testing.
    """

    async def test_updates_wait_for_snapshot(
        self,
        serializer: UpdateSerializer,
        session: ShadowSession,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        serializer.schedule_handshake(attached)
        update = serializer.submit({"v": 1})
        await settle()
        assert len(attached.gets) == 1
        assert attached.updates == []

        attached.respond(THING, attached.gets[0][1], reported={"v": 0})
        await settle()
        assert session.document == {"v": 0}
        assert len(attached.updates) == 1

        attached.respond(THING, attached.updates[0][1], desired={"v": 1})
        assert (await asyncio.wait_for(update, 1)).ok
        assert session.document == {"v": 1}

    async def test_handshake_waits_for_connect(
        self,
        serializer: UpdateSerializer,
        session: ShadowSession,
        settle,
    ) -> None:
        connection = MockShadowConnection(connected=False)
        session.attach(connection)
        serializer.schedule_handshake(connection)
        await settle()
        assert connection.gets == []

        connection.set_connected(True)
        await settle()
        assert connection.registered == [THING]
        assert len(connection.gets) == 1

    async def test_handshake_timeout_releases_queue(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        serializer.schedule_handshake(attached)
        update = serializer.submit({"v": 1})
        await asyncio.sleep(TIMEOUT * 1.5)
        await settle()
        assert len(attached.updates) == 1
        attached.respond(THING, attached.updates[0][1])
        assert (await asyncio.wait_for(update, 1)).ok

    async def test_late_snapshot_after_handshake_timeout_dropped(
        self,
        serializer: UpdateSerializer,
        session: ShadowSession,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        serializer.schedule_handshake(attached)
        await asyncio.sleep(TIMEOUT * 1.5)
        attached.respond(THING, attached.gets[0][1], reported={"v": 0})
        await settle()
        assert session.document is None

    async def test_handshake_ends_when_waiting_handle_detached(
        self,
        serializer: UpdateSerializer,
        session: ShadowSession,
        settle,
    ) -> None:
        connection = MockShadowConnection(connected=False)
        session.attach(connection)
        serializer.schedule_handshake(connection)
        update = serializer.submit({"v": 1})
        await settle()

        session.attach(None)
        result = await asyncio.wait_for(update, TIMEOUT / 2)
        assert result.outcome is UpdateOutcome.FAILED
        assert connection.gets == []

    async def test_handshake_for_replaced_connection_skipped(
        self,
        serializer: UpdateSerializer,
        session: ShadowSession,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        replacement = MockShadowConnection()
        serializer.schedule_handshake(attached)
        session.attach(replacement)
        await settle()
        assert attached.gets == []

    async def test_failed_handshake_logged(
        self,
        serializer: UpdateSerializer,
        attached: MockShadowConnection,
        settle,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        attached.refuse = True
        serializer.schedule_handshake(attached)
        await settle()
        assert "Snapshot handshake" in caplog.text


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Technique: State Transition Testing."""

    async def test_stop_cancels_queued_futures(
        self,
        session: ShadowSession,
        attached: MockShadowConnection,
        settle,
    ) -> None:
        serializer = UpdateSerializer(session, timeout=TIMEOUT)
        await serializer.start()
        in_flight = serializer.submit({"n": 1})
        queued = serializer.submit({"n": 2})
        await settle()

        await serializer.stop()
        assert in_flight.cancelled()
        assert queued.cancelled()

    async def test_stop_is_idempotent(self, session: ShadowSession) -> None:
        serializer = UpdateSerializer(session)
        await serializer.stop()
        await serializer.stop()
