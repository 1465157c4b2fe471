"""
Pydantic models for LifeOS.

All wire shapes defined here. No imports from db or routes.
"""

from backend.models.kernel import (
    CommandBody,
    ErrorResponse,
    EventsResponse,
    SubmitCommandRequest,
    SubmitCommandResponse,
    TodayResponse,
)

__all__ = [
    "CommandBody",
    "ErrorResponse",
    "EventsResponse",
    "SubmitCommandRequest",
    "SubmitCommandResponse",
    "TodayResponse",
]
