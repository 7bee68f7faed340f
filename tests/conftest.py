import asyncio
from dataclasses import dataclass, replace

import pytest

from lifx_act.bulbs import POWER_OFF, POWER_ON, BulbState
from lifx_act.config import AppConfig
from lifx_act.lifx_client import DeviceHandle


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        port=8000,
        db_path=":memory:",
        illumination_step_size=255,
        turn_off_level=511,
        idle_check_seconds=0.05,
        state_query_timeout_seconds=0.05,
        state_query_max_retries=3,
        default_transition_ms=3000,
        broadcast_address="255.255.255.255",
        discovery_interval_seconds=0.01,
    )


def make_bulb(
    label: str,
    serial: str,
    *,
    power: int = POWER_ON,
    hue: int = 0,
    saturation: int = 0,
    brightness: int = 0x8000,
    kelvin: int = 3500,
    **kwargs,
) -> "FakeBulb":
    device = DeviceHandle(serial=serial, label=label, host="192.0.2.10", port=56700)
    state = BulbState(
        label=label,
        power=power,
        hue=hue,
        saturation=saturation,
        brightness=brightness,
        kelvin=kelvin,
    )
    return FakeBulb(device=device, state=state, **kwargs)

@dataclass
class FakeBulb:
    device: DeviceHandle
    state: BulbState
    # answer state requests at all
    responsive: bool = True
    # number of requests answered only after `reply_delay`
    slow_replies: int = 0
    reply_delay: float = 0.0
    # number of replies that come back labelled as another bulb
    wrong_replies: int = 0
    impostor: DeviceHandle | None = None


class FakeLifxClient:
    """In-memory stand-in for LifxClient; records every command sent to a bulb."""

    def __init__(self, bulbs: list[FakeBulb], *, announce_twice: bool = False) -> None:
        self.bulbs = {b.device.serial: b for b in bulbs}
        self.announce_twice = announce_twice
        self.calls: list[tuple] = []
        self.state_requests: list[str] = []
        self.discovery_started = 0
        self.discovery_stopped = 0

    def start_discovery(self, on_device) -> None:
        self.discovery_started += 1
        rounds = 2 if self.announce_twice else 1
        for _ in range(rounds):
            for bulb in self.bulbs.values():
                on_device(bulb.device)

    def stop_discovery(self) -> None:
        self.discovery_stopped += 1

    async def set_power(self, device: DeviceHandle, on: bool, *, duration_ms: int = 0) -> None:
        self.calls.append(("power", device.name, on))
        bulb = self.bulbs[device.serial]
        bulb.state = replace(bulb.state, power=POWER_ON if on else POWER_OFF)

    async def set_color(self, device: DeviceHandle, *, hue, saturation, brightness, kelvin, duration_ms) -> None:
        self.calls.append(("color", device.name, (hue, saturation, brightness, kelvin), duration_ms))
        bulb = self.bulbs[device.serial]
        bulb.state = replace(
            bulb.state,
            hue=hue,
            saturation=saturation,
            brightness=brightness,
            kelvin=kelvin,
            duration_ms=duration_ms,
        )

    async def get_state(self, device: DeviceHandle) -> tuple[DeviceHandle, BulbState]:
        self.state_requests.append(device.name)
        bulb = self.bulbs[device.serial]
        if not bulb.responsive:
            # never answers; the caller's timeout cancels this
            await asyncio.sleep(3600)
        if bulb.slow_replies > 0:
            bulb.slow_replies -= 1
            await asyncio.sleep(bulb.reply_delay)
        if bulb.wrong_replies > 0:
            bulb.wrong_replies -= 1
            impostor = bulb.impostor or DeviceHandle(serial="ff:ff:ff:ff:ff:ff", label="Impostor", host="192.0.2.99")
            return impostor, bulb.state
        return bulb.device, bulb.state

    def commands_for(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[1] == name]


@pytest.fixture
def make_client():
    def _make(*bulbs: FakeBulb, **kwargs) -> FakeLifxClient:
        return FakeLifxClient(list(bulbs), **kwargs)

    return _make
