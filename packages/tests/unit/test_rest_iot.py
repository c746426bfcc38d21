"""Unit tests for shadowsync._rest_iot — Rest IoT device and conversions.

Test Techniques Used:
    - Boundary Value Analysis: percentage ↔ raw conversions at 0/100
    - Specification-based Testing: projections and command payloads
    - Decision Table: product code → model name, touch-ring routine choice
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from shadowsync._connection import MockShadowConnection
from shadowsync._device import DeviceInfo
from shadowsync._rest_iot import (
    MAX_IOT_VALUE,
    Product,
    RestIot,
    convert_from_percentage,
    convert_to_percentage,
    select_touch_ring_routine,
    touch_ring_routines,
)

THING = "rest-iot-1"


def _info(product: str = Product.REST_IOT) -> DeviceInfo:
    return DeviceInfo(thing_name=THING, name="Bedroom", product=product)


@pytest.fixture
async def rest(mock_connection: MockShadowConnection, settle) -> AsyncIterator[RestIot]:
    async with RestIot(_info(), mock_connection, request_timeout=0.2) as device:
        await settle()
        yield device


def _desired(connection: MockShadowConnection) -> dict:
    return connection.updates[-1][2]["state"]["desired"]


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------


class TestConversions:
    """Technique: Boundary Value Analysis."""

    @pytest.mark.parametrize(
        ("percentage", "raw"),
        [(0, 0), (100, MAX_IOT_VALUE), (50, 32768), (1, 656)],
    )
    def test_from_percentage_rounds_up(self, percentage: int, raw: int) -> None:
        assert convert_from_percentage(percentage) == raw

    @pytest.mark.parametrize(
        ("raw", "percentage"),
        [(0, 0), (MAX_IOT_VALUE, 100), (32768, 50), (655, 0), (656, 1)],
    )
    def test_to_percentage_rounds_down(self, raw: int, percentage: int) -> None:
        assert convert_to_percentage(raw) == percentage


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class TestModel:
    """Technique: Decision Table."""

    @pytest.mark.parametrize(
        ("product", "model"),
        [
            (Product.REST_IOT, "Rest 2nd Gen"),
            (Product.RIOT_PLUS, "Rest+ 2nd Gen"),
            (Product.RESTORE_IOT, "Restore IoT"),
            ("", "Rest 2nd Gen"),
        ],
    )
    def test_model_name(self, product: str, model: str) -> None:
        assert RestIot(_info(product), None).model == model


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


class TestProjections:
    """Technique: Specification-based Testing."""

    async def test_projections_follow_state(
        self,
        rest: RestIot,
        mock_connection: MockShadowConnection,
        settle,
    ) -> None:
        mock_connection.respond(
            THING,
            mock_connection.gets[0][1],
            reported={
                "current": {"playing": "routine", "sound": {"v": MAX_IOT_VALUE // 2}},
                "deviceInfo": {"f": "5.2.1"},
            },
        )
        await settle()
        assert rest.on_some_content_playing.value is True
        assert rest.on_volume.value == 50
        assert rest.on_firmware_version.value == "5.2.1"

    async def test_nothing_playing(
        self,
        rest: RestIot,
        mock_connection: MockShadowConnection,
        settle,
    ) -> None:
        mock_connection.respond(
            THING,
            mock_connection.gets[0][1],
            reported={"current": {"playing": "none"}},
        )
        await settle()
        assert rest.on_some_content_playing.value is False
        assert rest.on_volume.value is None
        assert rest.on_firmware_version.value is None

    async def test_missing_sections_tolerated(
        self,
        rest: RestIot,
        mock_connection: MockShadowConnection,
        settle,
    ) -> None:
        mock_connection.respond(THING, mock_connection.gets[0][1], reported={"current": "odd"})
        await settle()
        assert rest.on_some_content_playing.value is True
        assert rest.on_volume.value is None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    """Technique: Specification-based Testing — outbound payloads."""

    async def _ready(self, connection: MockShadowConnection, settle) -> None:
        connection.respond(THING, connection.gets[0][1], reported={})
        await settle()

    async def test_set_volume(
        self,
        rest: RestIot,
        mock_connection: MockShadowConnection,
        settle,
    ) -> None:
        await self._ready(mock_connection, settle)
        future = rest.set_volume(50)
        await settle()
        assert _desired(mock_connection) == {"current": {"sound": {"v": 32768}}}

        mock_connection.respond(THING, mock_connection.updates[-1][1])
        assert (await asyncio.wait_for(future, 1)).ok

    async def test_turn_on_routine_with_volume(
        self,
        rest: RestIot,
        mock_connection: MockShadowConnection,
        settle,
    ) -> None:
        await self._ready(mock_connection, settle)
        rest.turn_on_routine(1234, volume=100)
        await settle()
        assert _desired(mock_connection) == {
            "current": {
                "playing": "routine",
                "step": 1,
                "srId": 1234,
                "paused": False,
                "sound": {"v": MAX_IOT_VALUE},
            },
        }

    async def test_turn_on_routine_without_volume(
        self,
        rest: RestIot,
        mock_connection: MockShadowConnection,
        settle,
    ) -> None:
        await self._ready(mock_connection, settle)
        rest.turn_on_routine(7)
        await settle()
        assert "sound" not in _desired(mock_connection)["current"]

    async def test_turn_off(
        self,
        rest: RestIot,
        mock_connection: MockShadowConnection,
        settle,
    ) -> None:
        await self._ready(mock_connection, settle)
        rest.turn_off()
        await settle()
        assert _desired(mock_connection) == {
            "current": {"playing": "none", "step": 0, "srId": 0, "paused": False},
        }


# ---------------------------------------------------------------------------
# Routine selection
# ---------------------------------------------------------------------------


class TestTouchRingRoutines:
    """Tests for touch_ring_routines() and select_touch_ring_routine().

    Technique: Decision Table.
    """

    ROUTINES = [
        {"id": 3, "name": "Bedtime", "type": "routine", "displayOrder": 2, "button0": True},
        {"id": 1, "name": "Nap", "type": "favorite", "displayOrder": 5},
        {"id": 9, "name": "Alarm", "type": "alarm", "displayOrder": 0},
        {"id": 4, "name": "Wind down", "type": "routine", "displayOrder": 1},
    ]

    def test_filters_and_orders_by_display_order(self) -> None:
        ids = [routine["id"] for routine in touch_ring_routines(self.ROUTINES)]
        assert ids == [3, 1]

    def test_selects_first_ring_routine(self) -> None:
        chosen = select_touch_ring_routine(self.ROUTINES)
        assert chosen is not None
        assert chosen["id"] == 3

    @pytest.mark.parametrize(
        "routines",
        [
            [],
            [{"id": 9, "type": "alarm", "displayOrder": 0}],
            [{"id": 4, "type": "routine", "displayOrder": 1, "button0": False}],
        ],
    )
    def test_none_when_nothing_on_ring(self, routines: list[dict]) -> None:
        assert select_touch_ring_routine(routines) is None
