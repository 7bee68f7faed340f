from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from lifx import HSBK, Light, discover
from lifx.exceptions import LifxError, LifxTimeoutError

from lifx_act.bulbs import POWER_OFF, POWER_ON, BulbState


logger = logging.getLogger("lifx_act.lifx_client")

LIFX_PORT = 56700

# color temperature range accepted by HSBK
KELVIN_MIN = 1500
KELVIN_MAX = 9000


class LifxTransportError(Exception):
    pass


class LifxTimeout(LifxTransportError):
    pass


@dataclass(frozen=True)
class DeviceHandle:
    serial: str
    label: str
    host: str
    port: int = LIFX_PORT

    @property
    def name(self) -> str:
        return self.label


DeviceCallback = Callable[[DeviceHandle], None]


def hsbk_from_levels(*, hue: int, saturation: int, brightness: int, kelvin: int) -> HSBK:
    return HSBK(
        hue=hue * 360.0 / 0xFFFF,
        saturation=saturation / 0xFFFF,
        brightness=brightness / 0xFFFF,
        kelvin=max(KELVIN_MIN, min(KELVIN_MAX, kelvin)),
    )


def state_from_reading(color: HSBK, power: int | bool, label: str | None) -> BulbState:
    return BulbState(
        label=label or "",
        power=POWER_ON if power else POWER_OFF,
        hue=round(color.hue * 0xFFFF / 360.0),
        saturation=round(color.saturation * 0xFFFF),
        brightness=round(color.brightness * 0xFFFF),
        kelvin=int(color.kelvin),
    )


class LifxClient:
    """Discovery and control of LIFX lights through lifx-async.

    Lights are announced to the discovery callback once their label is known,
    which takes one color read per new light. Discovery repeats in windows of
    `discovery_interval_seconds` until stopped.
    """

    def __init__(
        self,
        *,
        broadcast_address: str = "255.255.255.255",
        discovery_interval_seconds: float = 1.0,
    ) -> None:
        self._broadcast_address = broadcast_address
        self._discovery_interval = discovery_interval_seconds
        self._lights: dict[str, Light] = {}
        self._devices: dict[str, DeviceHandle] = {}
        self._on_device: DeviceCallback | None = None
        self._discovery_task: asyncio.Task | None = None

    async def close(self) -> None:
        self.stop_discovery()

    async def __aenter__(self) -> "LifxClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def devices(self) -> list[DeviceHandle]:
        return list(self._devices.values())

    def start_discovery(self, on_device: DeviceCallback) -> None:
        self._on_device = on_device
        for device in list(self._devices.values()):
            on_device(device)
        if self._discovery_task is None:
            self._discovery_task = asyncio.create_task(self._discovery_loop())

    def stop_discovery(self) -> None:
        self._on_device = None
        if self._discovery_task:
            self._discovery_task.cancel()
            self._discovery_task = None

    async def _discovery_loop(self) -> None:
        while True:
            try:
                async for light in discover(
                    timeout=self._discovery_interval,
                    broadcast_address=self._broadcast_address,
                ):
                    if isinstance(light, Light) and light.serial not in self._devices:
                        await self._announce(light)
            except (LifxError, OSError) as exc:
                logger.warning("Discovery failed: %s", exc)
                await asyncio.sleep(self._discovery_interval)

    async def _announce(self, light: Light) -> None:
        try:
            _, _, label = await light.get_color()
        except (LifxError, OSError) as exc:
            logger.debug("No label from %s yet: %s", light.serial, exc)
            return
        device = DeviceHandle(serial=light.serial, label=label or "", host=light.ip)
        self._lights[light.serial] = light
        self._devices[light.serial] = device
        logger.debug("Found bulb %s (%s) at %s", device.label, device.serial, device.host)
        if self._on_device:
            self._on_device(device)

    def _light(self, device: DeviceHandle) -> Light:
        light = self._lights.get(device.serial)
        if light is None:
            raise LifxTransportError(f"unknown bulb {device.serial}")
        return light

    async def set_power(self, device: DeviceHandle, on: bool, *, duration_ms: int = 0) -> None:
        try:
            await self._light(device).set_power(on, duration=duration_ms / 1000.0)
        except LifxTimeoutError as exc:
            raise LifxTimeout(str(exc)) from exc
        except (LifxError, OSError) as exc:
            raise LifxTransportError(str(exc)) from exc

    async def set_color(
        self,
        device: DeviceHandle,
        *,
        hue: int,
        saturation: int,
        brightness: int,
        kelvin: int,
        duration_ms: int,
    ) -> None:
        color = hsbk_from_levels(hue=hue, saturation=saturation, brightness=brightness, kelvin=kelvin)
        try:
            await self._light(device).set_color(color, duration=max(0, duration_ms) / 1000.0)
        except LifxTimeoutError as exc:
            raise LifxTimeout(str(exc)) from exc
        except (LifxError, OSError) as exc:
            raise LifxTransportError(str(exc)) from exc

    async def get_state(self, device: DeviceHandle) -> tuple[DeviceHandle, BulbState]:
        """One color/power/label read; returns the handle of the light that answered."""
        light = self._light(device)
        try:
            color, power, label = await light.get_color()
        except LifxTimeoutError as exc:
            raise LifxTimeout(str(exc)) from exc
        except (LifxError, OSError) as exc:
            raise LifxTransportError(str(exc)) from exc

        reported = self._devices[device.serial]
        if label and label != reported.label:
            reported = DeviceHandle(serial=reported.serial, label=label, host=reported.host, port=reported.port)
            self._devices[device.serial] = reported
        return reported, state_from_reading(color, power, label)
