import pytest

from lifx_act.bulbs import BulbState
from lifx_act.db import Database
from lifx_act.snapshots import DEFAULT_STATE, SnapshotStore


def _state(label: str, brightness: int = 0x4000) -> BulbState:
    return BulbState(label=label, power=0xFFFF, hue=1, saturation=2, brightness=brightness, kelvin=3000, duration_ms=0)


@pytest.mark.asyncio
async def test_default_and_named_states_are_kept_apart():
    db = Database(":memory:")
    await db.connect()
    store = SnapshotStore(db)
    try:
        await store.save_states("kitchen_", [_state("Kitchen", 0x1000)])
        await store.save_states("kitchen_", [_state("Kitchen", 0x2000)], "Evening")

        assert (await store.load_states("kitchen_"))[0].brightness == 0x1000
        assert (await store.load_states("kitchen_", "Evening"))[0].brightness == 0x2000
        assert await store.load_states("kitchen_", "Morning") is None
        assert await store.load_states("hall_") is None

        rows = await db.list_snapshots()
        assert [(k, n) for k, n, _ in rows] == [("kitchen_", DEFAULT_STATE), ("kitchen_", "Evening")]
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_saving_again_replaces_the_snapshot():
    db = Database(":memory:")
    await db.connect()
    store = SnapshotStore(db)
    try:
        await store.save_states("all", [_state("A"), _state("B")])
        await store.save_states("all", [_state("C")])

        states = await store.load_states("all")
        assert [s.label for s in states] == ["C"]
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_unreadable_rows_are_skipped():
    db = Database(":memory:")
    await db.connect()
    store = SnapshotStore(db)
    try:
        await db.upsert_snapshot(target_key="broken_", state_name="", states_json="{not json")
        await db.commit()
        await store.save_states("desk_", [_state("Desk")])

        configuration = await store.load_configuration()
        assert set(configuration) == {"desk_"}
        assert configuration["desk_"].default[0].label == "Desk"
    finally:
        await db.close()
