"""Kernel routes — submit commands, read today, feed the event log to devices."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from backend.auth import get_user_id
from backend.models.kernel import (
    ErrorResponse,
    EventsResponse,
    SubmitCommandRequest,
    SubmitCommandResponse,
    TodayResponse,
)
from lifeos.kernel.assembly import LifeKernel
from lifeos.kernel.errors import CorruptEvent, StorageUnavailable, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["kernel"])


def get_kernel(request: Request) -> LifeKernel:
    """The process-wide kernel built in the app lifespan."""
    return request.app.state.kernel


def _corrupt_log(user_id: str, e: CorruptEvent) -> JSONResponse:
    """A corrupt log is fatal, not transient: 500 with a code clients must not retry."""
    logger.error("routes: corrupt event log for %s: %s", user_id, e)
    error = ErrorResponse(detail=f"Event log is corrupt: {e}", code=CorruptEvent.code)
    return JSONResponse(status_code=500, content=error.model_dump())


def _parse_offset(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


@router.post(
    "/commands",
    status_code=200,
    responses={422: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def submit_command(
    req: SubmitCommandRequest,
    user_id: Annotated[str, Depends(get_user_id)],
    kernel: Annotated[LifeKernel, Depends(get_kernel)],
):
    """
    Apply one command for the caller.

    A repeated idempotency key returns success with deduped=true and appends
    nothing. Validation failures come back as 422 with a flat {detail, code}.
    """
    try:
        result = await kernel.execute(user_id, req.command.to_command())
    except StorageUnavailable as e:
        logger.warning("routes: storage unavailable for %s: %s", user_id, e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event log unavailable.") from e
    except CorruptEvent as e:
        return _corrupt_log(user_id, e)

    if not result.success:
        error = ErrorResponse(detail=result.error or "Invalid command.", code=result.code or ValidationError.code)
        return JSONResponse(status_code=422, content=error.model_dump())
    return SubmitCommandResponse(success=True, deduped=result.deduped)


@router.get("/today", status_code=200)
async def get_today(
    user_id: Annotated[str, Depends(get_user_id)],
    kernel: Annotated[LifeKernel, Depends(get_kernel)],
    tz_offset_minutes: Annotated[str | None, Query(alias="tzOffsetMinutes")] = None,
) -> TodayResponse:
    """
    State and pending suggestions for the caller's local today.
    Appends no events, but the suggestions returned claim their cooldown keys.
    """
    try:
        view = await kernel.today(user_id, _parse_offset(tz_offset_minutes))
    except StorageUnavailable as e:
        logger.warning("routes: storage unavailable for %s: %s", user_id, e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event log unavailable.") from e
    except CorruptEvent as e:
        return _corrupt_log(user_id, e)
    return TodayResponse.from_view(view)


@router.get("/events", status_code=200)
async def get_events(
    user_id: Annotated[str, Depends(get_user_id)],
    kernel: Annotated[LifeKernel, Depends(get_kernel)],
    after_seq: Annotated[int | None, Query(alias="afterSeq", ge=0)] = None,
) -> EventsResponse:
    """The caller's events in log order, optionally only those after a cursor."""
    try:
        events = await kernel.events(user_id, after_seq=after_seq)
    except StorageUnavailable as e:
        logger.warning("routes: storage unavailable for %s: %s", user_id, e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event log unavailable.") from e
    except CorruptEvent as e:
        return _corrupt_log(user_id, e)
    return EventsResponse(events=[e.to_dict() for e in events])
