from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


POWER_OFF = 0x0000
POWER_ON = 0xFFFF


@dataclass(frozen=True)
class BulbState:
    """Bulb color and power, every channel on the 16-bit LIFX scale."""

    label: str
    power: int
    hue: int
    saturation: int
    brightness: int
    kelvin: int
    duration_ms: int = 0

    @property
    def is_on(self) -> bool:
        return self.power != POWER_OFF

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BulbState":
        return BulbState(
            label=str(data["label"]),
            power=int(data["power"]),
            hue=int(data["hue"]),
            saturation=int(data["saturation"]),
            brightness=int(data["brightness"]),
            kelvin=int(data["kelvin"]),
            duration_ms=int(data.get("duration_ms", 0)),
        )
