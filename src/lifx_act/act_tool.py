from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from typing import Any

import httpx

from lifx_act.actions import compile_command
from lifx_act.config import AppConfig
from lifx_act.db import Database
from lifx_act.grammar import CommandError
from lifx_act.orchestrator import RunSummary, run_command
from lifx_act.snapshots import SnapshotStore


async def _print_event(event: dict[str, Any]) -> None:
    print(event["message"], flush=True)


async def _run_local(config: AppConfig, tokens: list[str]) -> RunSummary:
    action = compile_command(tokens, config)
    db = Database(db_path=config.db_path)
    await db.connect()
    try:
        return await run_command(
            action,
            config=config,
            reporter=_print_event,
            store=SnapshotStore(db),
        )
    finally:
        await db.close()


def _post_command(server_url: str, command: str) -> None:
    with httpx.Client() as client:
        try:
            resp = client.post(f"{server_url}/v1/commands", json={"command": command}, timeout=10.0)
        except httpx.HTTPError as exc:
            print(f"Failed to reach server at {server_url}: {exc}", file=sys.stderr)
            raise SystemExit(1)

    try:
        payload = resp.json()
    except ValueError:
        payload = {"raw": resp.text}

    if resp.status_code == 202 and isinstance(payload, dict) and payload.get("ok") is True:
        print(payload["result"]["message"])
        return

    err = payload.get("error") if isinstance(payload, dict) else None
    if resp.status_code == 400 and isinstance(err, dict):
        print(err.get("message", "Invalid command"), file=sys.stderr)
        raise SystemExit(2)

    print(f"Command failed: HTTP {resp.status_code} {payload}", file=sys.stderr)
    raise SystemExit(1)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="lifx-act",
        description="Run a command against LIFX bulbs on the local network, e.g. `lifx-act much darker Kitchen`.",
    )
    parser.add_argument("tokens", nargs="*", help="Command words")
    parser.add_argument("--db-path", help="Snapshot database (default: LIFX_DB_PATH or ./.data/lifx-act.db)")
    parser.add_argument("--idle-seconds", type=float, help="Seconds without a new bulb before an `all` run ends")
    parser.add_argument("--broadcast", help="Discovery broadcast address")
    parser.add_argument("--server-url", default=os.getenv("LIFX_ACT_URL"), help="Send the command to a running server")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.server_url:
        _post_command(args.server_url.rstrip("/"), " ".join(args.tokens))
        return

    config = AppConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.idle_seconds is not None:
        overrides["idle_check_seconds"] = args.idle_seconds
    if args.broadcast:
        overrides["broadcast_address"] = args.broadcast
    config = replace(config, **overrides)

    try:
        summary = asyncio.run(_run_local(config, args.tokens))
    except CommandError as exc:
        print(exc.message, file=sys.stderr)
        raise SystemExit(2)

    if summary.unmatched:
        print(f"Not found: {', '.join(summary.unmatched)}", file=sys.stderr)


if __name__ == "__main__":
    main()
