from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from lifx_act.actions import Action, EffectContext
from lifx_act.config import AppConfig
from lifx_act.event_hub import Reporter, run_event
from lifx_act.lifx_client import DeviceHandle, LifxClient, LifxTransportError
from lifx_act.snapshots import SnapshotStore
from lifx_act.state_query import StateQueryTimeout


logger = logging.getLogger("lifx_act.orchestrator")


class RunState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    DRAINING = "draining"
    FINISHED = "finished"


@dataclass(frozen=True)
class DeviceSeen:
    device: DeviceHandle


@dataclass(frozen=True)
class EffectDone:
    device: DeviceHandle
    ok: bool


@dataclass(frozen=True)
class IdleTick:
    pass


@dataclass
class RunSummary:
    command: str
    verb: str
    matched: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    idle_checks: int = 0
    elapsed_seconds: float = 0.0


async def _discard_event(event: dict[str, Any]) -> None:
    return None


class CommandRunner:
    """Runs one compiled action against every matching bulb found on the LAN.

    All run bookkeeping (seen bulbs, in-flight count, liveness, the working
    target set) is mutated only by the control loop in `run`, which consumes
    DeviceSeen / EffectDone / IdleTick messages from a single inbox.

    The number of bulbs is unknown up front, so an `all` run ends only when a
    whole idle interval passes with no newly matched bulb and nothing in
    flight. An explicit run also ends as soon as every named bulb was acted on.
    """

    def __init__(
        self,
        *,
        action: Action,
        client: Any,
        config: AppConfig,
        reporter: Reporter | None = None,
        store: SnapshotStore | None = None,
    ) -> None:
        self.action = action
        self.client = client
        self.config = config
        self.reporter = reporter or _discard_event
        self.store = store
        self.state = RunState.IDLE

        self._inbox: asyncio.Queue[DeviceSeen | EffectDone | IdleTick] = asyncio.Queue()
        self._seen: set[str] = set()
        self._alive = True
        self._in_flight = 0
        self._tasks: set[asyncio.Task] = set()
        self._idle_task: asyncio.Task | None = None
        self._summary = RunSummary(command=action.command, verb=action.verb)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def run(self) -> RunSummary:
        loop = asyncio.get_running_loop()
        started = loop.time()
        ctx = EffectContext(
            client=self.client,
            config=self.config,
            command=self.action.command,
            reporter=self.reporter,
            store=self.store,
        )

        await self._emit(
            "run.started",
            f"Starting action {self.action.verb}",
            data={"targets": self.action.original_targets.to_json(), "parameters": self.action.parameters},
        )
        await self.action.effect.initialize(ctx, self.action)

        try:
            self.state = RunState.DISCOVERING
            self.client.start_discovery(self._on_device)
            self._idle_task = asyncio.create_task(self._idle_clock())
            while self.state is RunState.DISCOVERING:
                message = await self._inbox.get()
                await self._handle(ctx, message)
        except BaseException:
            self._stop_discovery()
            for task in list(self._tasks):
                task.cancel()
            raise

        self._stop_discovery()
        if self._tasks:
            await asyncio.gather(*self._tasks)
        while not self._inbox.empty():
            message = self._inbox.get_nowait()
            if isinstance(message, EffectDone):
                self._effect_done(message)

        await self.action.effect.finalize(ctx, self.action)
        self.state = RunState.FINISHED

        summary = self._summary
        summary.unmatched = [] if self.action.targets.is_all else self.action.targets.names
        summary.elapsed_seconds = loop.time() - started
        await self._emit("run.finished", f"Finishing action {self.action.verb}")
        return summary

    def _on_device(self, device: DeviceHandle) -> None:
        # Dedup happens here, before any asynchronous work for the bulb starts.
        if device.serial in self._seen:
            return
        self._seen.add(device.serial)
        self._inbox.put_nowait(DeviceSeen(device))

    async def _idle_clock(self) -> None:
        while True:
            await asyncio.sleep(self.config.idle_check_seconds)
            self._inbox.put_nowait(IdleTick())

    def _stop_discovery(self) -> None:
        if self.state is RunState.DISCOVERING:
            self.state = RunState.DRAINING
        if self._idle_task is not None:
            self._idle_task.cancel()
            self._idle_task = None
        self.client.stop_discovery()

    async def _handle(self, ctx: EffectContext, message: DeviceSeen | EffectDone | IdleTick) -> None:
        if isinstance(message, DeviceSeen):
            await self._device_seen(ctx, message.device)
        elif isinstance(message, EffectDone):
            self._effect_done(message)
            if self.action.targets.exhausted:
                self.state = RunState.DRAINING
        elif isinstance(message, IdleTick):
            self._summary.idle_checks += 1
            if not self._alive and self._in_flight == 0:
                logger.debug("Nothing happened for %.1fs, finishing", self.config.idle_check_seconds)
                self.state = RunState.DRAINING
            else:
                self._alive = False

    async def _device_seen(self, ctx: EffectContext, device: DeviceHandle) -> None:
        targets = self.action.targets
        if not targets.matches(device.name):
            logger.debug("Ignoring bulb %s", device.name)
            return

        self._alive = True
        targets.discard(device.name)
        self._in_flight += 1
        self._summary.matched.append(device.name)
        await self._emit("device.matched", f"Running action on {device.name}", device=device.name)

        task = asyncio.create_task(self._dispatch(ctx, device))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _effect_done(self, message: EffectDone) -> None:
        self._in_flight -= 1
        if not message.ok:
            self._summary.failed.append(message.device.name)

    async def _dispatch(self, ctx: EffectContext, device: DeviceHandle) -> None:
        ok = False
        try:
            await self.action.effect.run(ctx, device)
            ok = True
        except StateQueryTimeout as exc:
            logger.warning("%s", exc)
            await self._emit("device.failed", f"No state from {device.name}, skipping", device=device.name)
        except LifxTransportError as exc:
            logger.warning("Transport error for %s: %s", device.name, exc)
            await self._emit("device.failed", f"Could not reach {device.name}: {exc}", device=device.name)
        except Exception:
            logger.exception("Action %s failed on %s", self.action.verb, device.name)
            await self._emit("device.failed", f"Action failed on {device.name}", device=device.name)
        finally:
            self._inbox.put_nowait(EffectDone(device=device, ok=ok))

    async def _emit(
        self,
        event_type: str,
        message: str,
        *,
        device: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        await self.reporter(
            run_event(event_type, command=self.action.command, message=message, device=device, data=data)
        )


async def run_command(
    action: Action,
    *,
    config: AppConfig,
    reporter: Reporter | None = None,
    store: SnapshotStore | None = None,
    client: Any = None,
) -> RunSummary:
    """Run `action` over a fresh LAN client unless one is supplied."""
    if client is not None:
        return await CommandRunner(action=action, client=client, config=config, reporter=reporter, store=store).run()

    async with LifxClient(
        broadcast_address=config.broadcast_address,
        discovery_interval_seconds=config.discovery_interval_seconds,
    ) as lan:
        runner = CommandRunner(action=action, client=lan, config=config, reporter=reporter, store=store)
        return await runner.run()
