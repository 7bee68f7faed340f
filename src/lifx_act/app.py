from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Callable

from fastapi import Body, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from lifx_act.actions import Action, compile_command
from lifx_act.config import AppConfig
from lifx_act.db import Database
from lifx_act.event_hub import EventHub
from lifx_act.grammar import CommandError, tokenize
from lifx_act.orchestrator import run_command
from lifx_act.schemas import CommandFailureResponse, CommandRequest, CommandResponse, HealthResponse
from lifx_act.snapshots import SnapshotStore


@dataclass
class AppState:
    config: AppConfig
    db: Database
    store: SnapshotStore
    hub: EventHub
    run_lock: asyncio.Lock
    tasks: set[asyncio.Task] = field(default_factory=set)
    # LAN client shared by runs; None opens a fresh one per run
    client: Any = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = AppConfig.from_env()
    db = Database(db_path=config.db_path)
    await db.connect()

    state = AppState(
        config=config,
        db=db,
        store=SnapshotStore(db),
        hub=EventHub(),
        run_lock=asyncio.Lock(),
    )
    app.state.state = state
    try:
        yield
    finally:
        for task in list(state.tasks):
            task.cancel()
        for task in list(state.tasks):
            try:
                await task
            except BaseException:
                pass
        await db.close()


app = FastAPI(
    title="lifx-act",
    version="0.1.0",
    description=(
        "# lifx-act\n\n"
        "Drive LIFX bulbs on the local network with short command sentences.\n\n"
        "## Grammar\n"
        "`[much|little] <verb> [all | <name> [and] <name> ...] [clause] [quickly|slowly]`\n\n"
        "Verbs: `on`, `off`, `save [... to <state>]`, `restore [... from <state>]`, "
        "`color|rgb ... in <name>|<r> <g> <b>`, `hsb ... in <h> <s> <b>`, `darker`, `lighter`, `status`.\n\n"
        "## Endpoints\n"
        "- `GET /healthz` liveness\n"
        "- `POST /v1/commands` compile a command and start a run (202)\n"
        "- `GET /v1/events/stream` SSE stream of run events\n\n"
        "Runs are serialized: a command posted while another run is in progress starts once it finishes.\n"
    ),
    lifespan=lifespan,
)

logger = logging.getLogger("lifx_act")


def _error_envelope(
    *,
    request_id: str | None,
    command: str,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "requestId": request_id,
        "command": command,
        "ok": False,
        "error": {"code": code, "message": message, "details": details or {}},
    }


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    def _json_safe(value):
        if isinstance(value, (str, int, float, bool)) or value is None:
            return value
        if isinstance(value, bytes):
            return value.decode("utf-8", "ignore")
        if isinstance(value, (list, tuple)):
            return [_json_safe(v) for v in value]
        if isinstance(value, dict):
            return {str(k): _json_safe(v) for k, v in value.items()}
        return str(value)

    code = "invalid_request"
    message = "Request validation failed"
    details: dict[str, Any] = {"errors": _json_safe(exc.errors())}
    for err in exc.errors():
        if err.get("type") == "json_invalid":
            code = "invalid_json"
            message = "Request body must be valid JSON"
            details = {"error": str(err.get("msg", "invalid json"))}
            break

    return JSONResponse(
        _error_envelope(
            request_id=request.headers.get("x-request-id"),
            command="",
            code=code,
            message=message,
            details=details,
        ),
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@app.middleware("http")
async def access_log(request: Request, call_next: Callable[[Request], Response]):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    request_id = request.headers.get("x-request-id", "")
    logger.info(
        "%s %s -> %s (%.1fms) rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
        request_id,
    )
    return response


async def _run_serialized(state: AppState, action: Action) -> None:
    async with state.run_lock:
        try:
            summary = await run_command(
                action,
                config=state.config,
                reporter=state.hub.publish,
                store=state.store,
                client=state.client,
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Run of %r failed", action.command)
            return
    logger.info(
        "Run %r finished: matched=%d failed=%d (%.1fs)",
        action.command,
        len(summary.matched),
        len(summary.failed),
        summary.elapsed_seconds,
    )


@app.get(
    "/healthz",
    summary="Liveness check",
    description="Returns `ok=true` if the process is alive.",
    response_model=HealthResponse,
    tags=["meta"],
)
async def healthz() -> HealthResponse:
    return {"ok": True}


@app.post(
    "/v1/commands",
    summary="Run a command",
    description=(
        "Compile a command sentence and start a run against the matching bulbs.\n\n"
        "The command is compiled before the response is sent, so grammar errors come back as `400` "
        "with `error.code` one of `empty_command`, `missing_verb`, `unknown_verb`, `adverb_not_allowed`, "
        "`missing_clause`, `invalid_number`, `unknown_color`.\n\n"
        "On success the response is `202` and the run proceeds in the background; follow it on "
        "`GET /v1/events/stream`.\n"
    ),
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CommandResponse,
    responses={
        400: {"description": "Command could not be compiled.", "model": CommandFailureResponse},
    },
    tags=["commands"],
)
async def commands(
    payload: CommandRequest = Body(
        ...,
        openapi_examples={
            "all_on": {"summary": "Turn every bulb on", "value": {"command": "on all"}},
            "dim": {"summary": "Dim two bulbs a lot", "value": {"command": "much darker Kitchen and Hall"}},
            "save": {"summary": "Save a named state", "value": {"command": "save all to Evening"}},
        },
    ),
):
    state: AppState = app.state.state
    try:
        action = compile_command(tokenize(payload.command), state.config)
    except CommandError as exc:
        logger.info("Rejected command %r: %s", payload.command, exc.message)
        return JSONResponse(
            _error_envelope(
                request_id=payload.requestId,
                command=payload.command,
                code=exc.code,
                message=exc.message,
                details=exc.details,
            ),
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    task = asyncio.create_task(_run_serialized(state, action))
    state.tasks.add(task)
    task.add_done_callback(state.tasks.discard)

    return JSONResponse(
        {
            "requestId": payload.requestId,
            "command": payload.command,
            "ok": True,
            "result": {
                "verb": action.verb,
                "targets": action.original_targets.to_json(),
                "message": f'executing action "{payload.command}".',
            },
        },
        status_code=status.HTTP_202_ACCEPTED,
    )


@app.get(
    "/v1/events/stream",
    summary="Run event stream (SSE)",
    description=(
        "Server-Sent Events (SSE) stream of run events (`run.started`, `device.matched`, "
        "`device.report`, `device.failed`, `run.finished`).\n\n"
        "Each event is sent as a single `data: <json>` frame. The server may also send "
        "`: keepalive` comment frames.\n"
    ),
    tags=["events"],
    responses={
        200: {
            "description": "SSE stream (text/event-stream).",
            "content": {"text/event-stream": {"schema": {"type": "string"}}},
        },
    },
)
async def events_stream():
    state: AppState = app.state.state
    subscription = await state.hub.subscribe()

    async def _gen():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(subscription.queue.get(), timeout=15.0)
                    yield f"data: {json.dumps(event, separators=(',',':'))}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            await subscription.unsubscribe()

    return StreamingResponse(_gen(), media_type="text/event-stream")
