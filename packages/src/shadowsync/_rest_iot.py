"""Hatch Rest IoT sound machines on top of :class:`ShadowDevice`.

The shadow document of these devices looks like::

    {
        "current": {
            "playing": "none" | "routine" | "remote",
            "step": 1,
            "srId": 1234,
            "paused": false,
            "sound": {"v": 0..65535}
        },
        "deviceInfo": {"f": "firmware version"}
    }

Volume and similar analogue values are 16-bit raw integers on the
device and percentages everywhere else.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

from shadowsync._broadcast import Broadcast
from shadowsync._clock import ClockPort
from shadowsync._connection import ShadowConnection
from shadowsync._device import DeviceInfo, ShadowDevice
from shadowsync._document import Document
from shadowsync._serializer import DEFAULT_REQUEST_TIMEOUT, UpdateResult

logger = logging.getLogger(__name__)

MAX_IOT_VALUE = 65535


def convert_from_percentage(percentage: float) -> int:
    """Map 0–100 % onto 0–65535, rounding up."""
    return math.ceil((percentage / 100) * MAX_IOT_VALUE)


def convert_to_percentage(value: float) -> int:
    """Map 0–65535 onto 0–100 %, rounding down."""
    return math.floor((value * 100) / MAX_IOT_VALUE)


def volume_to_device(percent: float) -> int:
    return round(percent * MAX_IOT_VALUE / 100)


def volume_from_device(raw: float) -> int:
    return round(raw * 100 / MAX_IOT_VALUE)


def _lookup(document: Document, *path: str) -> Any:
    """Follow *path* through nested documents; ``None`` if any step is missing."""
    value: Any = document
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


class Product(StrEnum):
    """Hatch product codes that speak the IoT shadow protocol."""

    REST_IOT = "restIot"
    RIOT_PLUS = "riotPlus"
    RESTORE_IOT = "restoreIot"


def touch_ring_routines(routines: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    """Routines reachable from the touch ring, in display order.

    Older firmware only put favorites on the ring; newer firmware marks
    any ring routine with ``button0``.
    """
    ordered = sorted(routines, key=lambda routine: routine.get("displayOrder", 0))
    return [
        routine
        for routine in ordered
        if routine.get("type") == "favorite" or routine.get("button0")
    ]


def select_touch_ring_routine(
    routines: Iterable[Mapping[str, Any]],
) -> Mapping[str, Any] | None:
    """The routine the device starts when switched on, or ``None``."""
    candidates = touch_ring_routines(routines)
    if not candidates:
        return None
    chosen = candidates[0]
    logger.debug("Using routine id=%s, name=%s", chosen.get("id"), chosen.get("name"))
    return chosen


class RestIot(ShadowDevice):
    """A Rest 2nd Gen / Rest+ 2nd Gen / Restore IoT device."""

    def __init__(
        self,
        info: DeviceInfo,
        connection: Broadcast[ShadowConnection | None] | ShadowConnection | None,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: ClockPort | None = None,
    ) -> None:
        super().__init__(
            info,
            connection,
            request_timeout=request_timeout,
            clock=clock,
        )
        self.on_some_content_playing: Broadcast[bool | None] = self.project(
            lambda state: _lookup(state, "current", "playing") != "none",
        )
        self.on_volume: Broadcast[int | None] = self.project(self._volume_percent)
        self.on_firmware_version: Broadcast[str | None] = self.project(
            lambda state: _lookup(state, "deviceInfo", "f"),
        )

    @property
    def model(self) -> str:
        match self.info.product:
            case Product.RESTORE_IOT:
                return "Restore IoT"
            case Product.RIOT_PLUS:
                return "Rest+ 2nd Gen"
            case _:
                return "Rest 2nd Gen"

    @staticmethod
    def _volume_percent(state: Document) -> int | None:
        raw = _lookup(state, "current", "sound", "v")
        if not isinstance(raw, int | float):
            return None
        return volume_from_device(raw)

    # -- Commands -----------------------------------------------------------

    def set_current(
        self,
        playing: str,
        step: int,
        sr_id: int,
        volume: float | None = None,
    ) -> asyncio.Future[UpdateResult]:
        """Switch what the device is playing; always unpauses."""
        logger.info(
            "set_current called: playing=%s, step=%s, srId=%s, volume=%s",
            playing,
            step,
            sr_id,
            volume,
        )
        current: Document = {
            "playing": playing,
            "step": step,
            "srId": sr_id,
            "paused": False,
        }
        if volume is not None:
            current["sound"] = {"v": volume_to_device(volume)}
        return self.update({"current": current})

    def set_volume(self, percent: float) -> asyncio.Future[UpdateResult]:
        """Adjust the volume of whatever is playing (0–100 %)."""
        logger.info("set_volume called for %s: %s%%", self.name, percent)
        return self.update({"current": {"sound": {"v": volume_to_device(percent)}}})

    def turn_on_routine(
        self,
        routine_id: int,
        volume: float | None = None,
    ) -> asyncio.Future[UpdateResult]:
        """Start the first step of *routine_id*, optionally at *volume* %."""
        logger.info("Turning on routine %s for %s", routine_id, self.name)
        return self.set_current("routine", 1, routine_id, volume)

    def turn_off(self) -> asyncio.Future[UpdateResult]:
        logger.info("turn_off called for %s", self.name)
        return self.set_current("none", 0, 0)
