import asyncio

import pytest

from conftest import make_bulb
from lifx_act.actions import compile_command
from lifx_act.bulbs import POWER_OFF
from lifx_act.db import Database
from lifx_act.grammar import tokenize
from lifx_act.orchestrator import CommandRunner, RunState, run_command
from lifx_act.snapshots import SnapshotStore


def _action(command, config):
    return compile_command(tokenize(command), config)


class Recorder:
    def __init__(self) -> None:
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    def types(self):
        return [e["type"] for e in self.events]

    def messages(self):
        return [e["message"] for e in self.events]


@pytest.mark.asyncio
async def test_all_run_with_no_bulbs_ends_after_one_quiet_interval(make_client, config):
    client = make_client()
    recorder = Recorder()

    summary = await asyncio.wait_for(
        run_command(_action("on all", config), config=config, reporter=recorder, client=client),
        timeout=2.0,
    )

    # the first check only clears liveness, the second finds the run quiet
    assert summary.idle_checks == 2
    assert summary.matched == []
    assert recorder.types() == ["run.started", "run.finished"]
    assert recorder.messages() == ["Starting action on", "Finishing action on"]
    assert client.discovery_started == 1
    assert client.discovery_stopped == 1


@pytest.mark.asyncio
async def test_bulb_reported_twice_is_acted_on_once(make_client, config):
    kitchen = make_bulb("Kitchen", "d0:73:d5:00:00:01", power=POWER_OFF)
    hall = make_bulb("Hall", "d0:73:d5:00:00:02", power=POWER_OFF)
    client = make_client(kitchen, hall, announce_twice=True)

    summary = await run_command(_action("on all", config), config=config, client=client)

    assert sorted(summary.matched) == ["Hall", "Kitchen"]
    assert client.commands_for("Kitchen") == [("power", "Kitchen", True)]
    assert client.commands_for("Hall") == [("power", "Hall", True)]


@pytest.mark.asyncio
async def test_explicit_run_ends_once_every_name_is_handled(make_client, config):
    kitchen = make_bulb("Kitchen", "d0:73:d5:00:00:01")
    hall = make_bulb("Hall", "d0:73:d5:00:00:02")
    client = make_client(kitchen, hall)
    action = _action("off kitchen", config)
    runner = CommandRunner(action=action, client=client, config=config)

    summary = await runner.run()

    assert runner.state is RunState.FINISHED
    assert runner.in_flight == 0
    assert summary.matched == ["Kitchen"]
    assert summary.idle_checks == 0
    assert summary.unmatched == []
    assert client.calls == [("power", "Kitchen", False)]
    assert action.targets.exhausted
    assert action.original_targets.names == ["kitchen"]


@pytest.mark.asyncio
async def test_missing_name_falls_back_to_idle_timeout(make_client, config):
    client = make_client(make_bulb("Kitchen", "d0:73:d5:00:00:01"))

    summary = await run_command(_action("on Kitchen and Ghost", config), config=config, client=client)

    assert summary.matched == ["Kitchen"]
    assert summary.unmatched == ["Ghost"]
    assert summary.idle_checks >= 2


@pytest.mark.asyncio
async def test_unresponsive_bulb_does_not_abort_the_run(make_client, config):
    desk = make_bulb("Desk", "d0:73:d5:00:00:01")
    attic = make_bulb("Attic", "d0:73:d5:00:00:02", responsive=False)
    client = make_client(desk, attic)
    recorder = Recorder()

    summary = await run_command(_action("status all", config), config=config, reporter=recorder, client=client)

    assert sorted(summary.matched) == ["Attic", "Desk"]
    assert summary.failed == ["Attic"]
    assert "device.failed" in recorder.types()
    assert recorder.types()[-1] == "run.finished"
    reports = [e for e in recorder.events if e["type"] == "device.report"]
    assert [e["device"] for e in reports] == ["Desk"]


@pytest.mark.asyncio
async def test_save_then_restore_reproduces_the_captured_state(make_client, config):
    kitchen = make_bulb("Kitchen", "d0:73:d5:00:00:01", hue=0x1111, saturation=0x2222, brightness=0x3333, kelvin=2700)
    hall = make_bulb("Hall", "d0:73:d5:00:00:02", power=POWER_OFF, brightness=0x4444, kelvin=5000)
    client = make_client(kitchen, hall)
    captured = {b.device.name: b.state for b in (kitchen, hall)}

    db = Database(":memory:")
    await db.connect()
    store = SnapshotStore(db)
    try:
        await run_command(_action("save Kitchen and Hall to Evening", config), config=config, client=client, store=store)
        saved = await store.load_states("kitchen_hall_", "Evening")
        assert sorted(s.label for s in saved) == ["Hall", "Kitchen"]

        await run_command(_action("color Kitchen Hall in blue quickly", config), config=config, client=client)
        assert kitchen.state.hue != captured["Kitchen"].hue
        assert hall.state.is_on

        # `and` placement does not change which snapshot is used
        restore = _action("restore Kitchen Hall from Evening", config)
        await run_command(restore, config=config, client=client, store=store)
        for bulb in (kitchen, hall):
            before, after = captured[bulb.device.name], bulb.state
            assert (after.power, after.hue, after.saturation, after.brightness, after.kelvin) == (
                before.power,
                before.hue,
                before.saturation,
                before.brightness,
                before.kelvin,
            )

        settled = {b.device.name: b.state for b in (kitchen, hall)}
        client.calls.clear()
        await run_command(_action("restore Kitchen and Hall from Evening", config), config=config, client=client, store=store)
        assert {b.device.name: b.state for b in (kitchen, hall)} == settled
        assert len([c for c in client.calls if c[0] == "color"]) == 2
        assert not [c for c in client.calls if c[0] == "power"]
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_restore_without_snapshot_reports_and_touches_nothing(make_client, config):
    client = make_client(make_bulb("Kitchen", "d0:73:d5:00:00:01"))
    recorder = Recorder()

    db = Database(":memory:")
    await db.connect()
    try:
        await run_command(
            _action("restore Kitchen from Nowhere", config),
            config=config,
            reporter=recorder,
            client=client,
            store=SnapshotStore(db),
        )
    finally:
        await db.close()

    assert "Configuration state not found, cannot restore" in recorder.messages()
    assert client.calls == []


@pytest.mark.asyncio
async def test_save_with_nothing_captured_writes_nothing(make_client, config):
    client = make_client()
    db = Database(":memory:")
    await db.connect()
    store = SnapshotStore(db)
    try:
        await run_command(_action("save Ghost", config), config=config, client=client, store=store)
        assert await db.list_snapshots() == []
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_run_started_carries_targets_and_parameters(make_client, config):
    client = make_client(make_bulb("Kitchen", "d0:73:d5:00:00:01"))
    recorder = Recorder()

    await run_command(_action("color Kitchen in red", config), config=config, reporter=recorder, client=client)

    started = recorder.events[0]
    assert started["type"] == "run.started"
    assert started["data"]["targets"] == ["Kitchen"]
    assert started["data"]["parameters"]["color"] == "red"
    assert started["data"]["parameters"]["speed"] == config.default_transition_ms


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("command", "bulbs"),
    [
        ("off kitchen", [("Kitchen", "d0:73:d5:00:00:01")]),
        ("on all", []),
    ],
)
async def test_idle_clock_is_cancelled_when_the_run_ends(make_client, config, command, bulbs):
    client = make_client(*(make_bulb(label, serial) for label, serial in bulbs))
    runner = CommandRunner(action=_action(command, config), client=client, config=config)

    await asyncio.wait_for(runner.run(), timeout=2.0)

    assert runner._idle_task is None
    await asyncio.sleep(config.idle_check_seconds * 3)
    assert runner._inbox.empty()
