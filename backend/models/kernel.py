"""Wire models for the kernel routes: commands in, state and events out."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lifeos.kernel.types import Command, TodayView


class CommandBody(BaseModel):
    """The command envelope exactly as a client sends it."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    cmd: str = Field(min_length=1, max_length=64)
    input: dict[str, Any]
    idempotency_key: str = Field(alias="idempotencyKey", min_length=1, max_length=256)
    tz_offset_minutes: int | float | None = Field(default=None, alias="tzOffsetMinutes")

    def to_command(self) -> Command:
        return Command(
            cmd=self.cmd,
            input=self.input,
            idempotency_key=self.idempotency_key,
            tz_offset_minutes=self.tz_offset_minutes,
        )


class SubmitCommandRequest(BaseModel):
    """What the client sends to POST /api/commands."""

    model_config = ConfigDict(extra="forbid")

    command: CommandBody


class SubmitCommandResponse(BaseModel):
    """What the command endpoint returns on success or dedupe."""

    success: bool
    deduped: bool = False


class ErrorResponse(BaseModel):
    """Flat error body. `code` is machine-readable, `detail` is for humans."""

    detail: str
    code: str


class TodayResponse(BaseModel):
    """What GET /api/today returns."""

    model_config = ConfigDict(populate_by_name=True)

    day: str
    state: dict[str, Any]
    suggestions: list[dict[str, Any]]
    state_hash: str = Field(alias="stateHash")

    @classmethod
    def from_view(cls, view: TodayView) -> TodayResponse:
        return cls(
            day=view.day,
            state=view.state.to_dict(),
            suggestions=[a.to_dict() for a in view.suggestions],
            state_hash=view.state_hash,
        )


class EventsResponse(BaseModel):
    """What GET /api/events returns: the caller's events in log order."""

    events: list[dict[str, Any]]
