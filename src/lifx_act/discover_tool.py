from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass

from lifx_act.bulbs import BulbState
from lifx_act.config import AppConfig
from lifx_act.lifx_client import DeviceHandle, LifxClient, LifxTransportError
from lifx_act.state_query import StateQueryTimeout, query_state


logger = logging.getLogger("lifx_act.discover_tool")


@dataclass(frozen=True)
class DiscoveredBulb:
    device: DeviceHandle
    state: BulbState | None = None


async def discover(
    *,
    timeout_seconds: float = 3.0,
    broadcast_address: str = "255.255.255.255",
    discovery_interval_seconds: float = 1.0,
    state_timeout_seconds: float = 2.0,
    client: LifxClient | None = None,
) -> list[DiscoveredBulb]:
    """Listen for bulbs for `timeout_seconds`, then read the state of each one found."""
    if client is None:
        async with LifxClient(
            broadcast_address=broadcast_address,
            discovery_interval_seconds=discovery_interval_seconds,
        ) as lan:
            return await discover(
                timeout_seconds=timeout_seconds,
                state_timeout_seconds=state_timeout_seconds,
                client=lan,
            )

    found: dict[str, DeviceHandle] = {}

    def _on_device(device: DeviceHandle) -> None:
        found.setdefault(device.serial, device)

    client.start_discovery(_on_device)
    try:
        await asyncio.sleep(timeout_seconds)
    finally:
        client.stop_discovery()

    async def _read(device: DeviceHandle) -> DiscoveredBulb:
        try:
            state = await query_state(client, device, timeout_seconds=state_timeout_seconds, max_retries=1)
        except (StateQueryTimeout, LifxTransportError) as exc:
            logger.warning("%s: %s", device.name, exc)
            state = None
        return DiscoveredBulb(device=device, state=state)

    bulbs = await asyncio.gather(*(_read(d) for d in found.values()))
    return sorted(bulbs, key=lambda b: b.device.name.lower())


def _print_bulbs(bulbs: list[DiscoveredBulb], *, json_out: bool) -> None:
    if json_out:
        print(
            json.dumps(
                [
                    {
                        "label": b.device.label,
                        "serial": b.device.serial,
                        "host": b.device.host,
                        "port": b.device.port,
                        "state": b.state.to_dict() if b.state else None,
                    }
                    for b in bulbs
                ],
                indent=2,
            )
        )
        return

    if not bulbs:
        print("No LIFX bulbs discovered.")
        return

    for i, b in enumerate(bulbs, start=1):
        line = f"{i}) {b.device.label or '(no label)'} [{b.device.serial}] {b.device.host}:{b.device.port}"
        if b.state:
            s = b.state
            power = "on" if s.is_on else "off"
            line += f" - {power} hsbk 0x{s.hue:x} 0x{s.saturation:x} 0x{s.brightness:x} {s.kelvin}K"
        print(line)


def main(argv: list[str] | None = None) -> None:
    config = AppConfig.from_env()
    parser = argparse.ArgumentParser(prog="lifx-act-discover")
    parser.add_argument("--timeout-seconds", type=float, default=3.0)
    parser.add_argument("--broadcast", default=config.broadcast_address)
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        bulbs = asyncio.run(
            discover(
                timeout_seconds=args.timeout_seconds,
                broadcast_address=args.broadcast,
                discovery_interval_seconds=config.discovery_interval_seconds,
            )
        )
    except LifxTransportError as exc:
        print(f"Discovery failed: {exc}", file=sys.stderr)
        raise SystemExit(1)

    _print_bulbs(bulbs, json_out=args.json)


if __name__ == "__main__":
    main()
