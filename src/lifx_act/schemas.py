from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = Field(..., description="Process is alive.")


class CommandRequest(BaseModel):
    requestId: str | None = Field(
        default=None,
        description="Optional client-provided id used for correlating logs and responses.",
        examples=["req-123"],
    )
    command: str = Field(
        ...,
        min_length=1,
        description="Command sentence, e.g. `much darker Kitchen and Hall slowly`.",
        examples=["on all", "color Kitchen in red quickly", "save all to Evening"],
    )


class CommandErrorBody(BaseModel):
    code: str = Field(..., description="Machine-readable error code.")
    message: str = Field(..., description="Human-readable error message.")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Optional structured details for debugging.",
    )


class CommandAccepted(BaseModel):
    verb: str = Field(..., description="Canonical verb the command compiled to.")
    targets: str | list[str] = Field(..., description="`all` or the list of named bulbs.")
    message: str = Field(..., description="Human readable acknowledgement.")


class CommandResponse(BaseModel):
    requestId: str | None = Field(default=None, description="Echoed from the request (if provided).")
    command: str = Field(..., description="Echoed command.")
    ok: Literal[True] = Field(True, description="True when the command compiled and a run was started.")
    result: CommandAccepted


class CommandFailureResponse(BaseModel):
    requestId: str | None = Field(default=None, description="Echoed from the request (if provided).")
    command: str = Field(..., description="Echoed command.")
    ok: Literal[False] = Field(False, description="False when the command was rejected.")
    error: CommandErrorBody
