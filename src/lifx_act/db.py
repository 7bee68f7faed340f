from __future__ import annotations

import os
import time

import aiosqlite


class Database:
    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        dir_name = os.path.dirname(self._db_path)
        if dir_name:
            os.makedirs(dir_name, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        await self._conn.execute("PRAGMA synchronous=NORMAL;")
        await self._init_schema()
        await self._conn.commit()

    @property
    def conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Database not connected")
        return self._conn

    async def _init_schema(self) -> None:
        # state_name '' holds the default snapshot of a target set
        await self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
              target_key TEXT NOT NULL,
              state_name TEXT NOT NULL,
              states_json TEXT NOT NULL,
              updated_at INTEGER NOT NULL,
              PRIMARY KEY (target_key, state_name)
            );
            """
        )

    async def list_snapshots(self) -> list[tuple[str, str, str]]:
        """
        Returns: [(target_key, state_name, states_json), ...]
        """
        async with self.conn.execute(
            "SELECT target_key, state_name, states_json FROM snapshots ORDER BY target_key, state_name"
        ) as cursor:
            rows = await cursor.fetchall()
        return [(str(key), str(name), str(states)) for key, name, states in rows]

    async def upsert_snapshot(
        self,
        *,
        target_key: str,
        state_name: str,
        states_json: str,
        updated_at: int | None = None,
    ) -> None:
        now = int(time.time()) if updated_at is None else updated_at
        await self.conn.execute(
            """
            INSERT INTO snapshots (target_key, state_name, states_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(target_key, state_name) DO UPDATE SET
              states_json=excluded.states_json,
              updated_at=excluded.updated_at
            """,
            (target_key, state_name, states_json, now),
        )

    async def commit(self) -> None:
        await self.conn.commit()

    async def rollback(self) -> None:
        await self.conn.rollback()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
