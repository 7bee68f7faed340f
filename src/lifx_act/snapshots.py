from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from lifx_act.bulbs import BulbState
from lifx_act.db import Database


logger = logging.getLogger("lifx_act.snapshots")

DEFAULT_STATE = ""


@dataclass
class TargetSnapshots:
    default: list[BulbState] | None = None
    named_states: dict[str, list[BulbState]] = field(default_factory=dict)

    def get(self, state_name: str | None) -> list[BulbState] | None:
        if state_name:
            return self.named_states.get(state_name)
        return self.default

    def put(self, state_name: str | None, states: list[BulbState]) -> None:
        if state_name:
            self.named_states[state_name] = list(states)
        else:
            self.default = list(states)


# canonical target-set key -> snapshots saved for that exact set of bulbs
PersistedConfiguration = dict[str, TargetSnapshots]


def _dump_states(states: list[BulbState]) -> str:
    return json.dumps([s.to_dict() for s in states], separators=(",", ":"), ensure_ascii=False)


def _load_states(states_json: str) -> list[BulbState]:
    items = json.loads(states_json)
    if not isinstance(items, list):
        raise ValueError("snapshot is not a list")
    return [BulbState.from_dict(item) for item in items]


class SnapshotStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def load_configuration(self) -> PersistedConfiguration:
        configuration: PersistedConfiguration = {}
        for target_key, state_name, states_json in await self.db.list_snapshots():
            try:
                states = _load_states(states_json)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable snapshot %r/%r: %s", target_key, state_name, exc)
                continue
            configuration.setdefault(target_key, TargetSnapshots()).put(state_name or None, states)
        return configuration

    async def save_configuration(self, configuration: PersistedConfiguration) -> None:
        try:
            for target_key, snapshots in configuration.items():
                if snapshots.default is not None:
                    await self.db.upsert_snapshot(
                        target_key=target_key,
                        state_name=DEFAULT_STATE,
                        states_json=_dump_states(snapshots.default),
                    )
                for state_name, states in snapshots.named_states.items():
                    await self.db.upsert_snapshot(
                        target_key=target_key,
                        state_name=state_name,
                        states_json=_dump_states(states),
                    )
        except BaseException:
            await self.db.rollback()
            raise
        await self.db.commit()

    async def load_states(self, target_key: str, state_name: str | None = None) -> list[BulbState] | None:
        configuration = await self.load_configuration()
        snapshots = configuration.get(target_key)
        if snapshots is None:
            return None
        return snapshots.get(state_name)

    async def save_states(
        self,
        target_key: str,
        states: list[BulbState],
        state_name: str | None = None,
    ) -> None:
        configuration = await self.load_configuration()
        configuration.setdefault(target_key, TargetSnapshots()).put(state_name, states)
        await self.save_configuration(configuration)
