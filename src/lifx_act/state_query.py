from __future__ import annotations

import asyncio
import logging
from typing import Any

from lifx_act.bulbs import BulbState
from lifx_act.lifx_client import DeviceHandle, LifxTimeout


logger = logging.getLogger("lifx_act.state_query")


class StateQueryTimeout(Exception):
    def __init__(self, *, device: str, retries: int) -> None:
        super().__init__(f"No state from {device} after {retries} retries")
        self.device = device
        self.retries = retries


async def query_state(
    client: Any,
    device: DeviceHandle,
    *,
    timeout_seconds: float = 5.0,
    max_retries: int = 5,
) -> BulbState:
    """Ask one bulb for its current state.

    Each unanswered wait re-sends the request, up to `max_retries` times;
    the wait after the last retry raises StateQueryTimeout. A reply that
    names a different bulb is not trusted: the query is re-issued instead.
    """
    retries = 0
    while True:
        try:
            reported, state = await asyncio.wait_for(client.get_state(device), timeout=timeout_seconds)
        except (asyncio.TimeoutError, LifxTimeout):
            if retries >= max_retries:
                raise StateQueryTimeout(device=device.name, retries=retries)
            retries += 1
            logger.debug("No state from %s yet, retry %d", device.name, retries)
            continue

        if reported.serial != device.serial:
            logger.debug("Got state for %s while expecting %s", reported.name, device.name)
            continue
        return state
