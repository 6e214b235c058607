"""Pydantic schemas for rate limit status and recording endpoints.

RateLimitStatusResponse mirrors a RateLimitDecision; it is built with
model_validate(decision) straight from the engine's dataclasses.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ringhub.models.reputation import Tier
from ringhub.services.rate_limiting import DenialReason


class WindowCountsSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hourly: int
    daily: int
    weekly: int


class ResetTimesSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hourly: datetime
    daily: datetime
    weekly: datetime


class RateLimitStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    allowed: bool
    tier: Tier
    remaining: WindowCountsSchema
    reset_times: ResetTimesSchema
    reason: Optional[DenialReason] = None


class RecordActionRequest(BaseModel):
    """Report an action that succeeded so it counts against future quota."""

    metadata: Optional[dict] = Field(None, description="e.g. {\"ring_id\": \"...\"}")


class DenialDetails(BaseModel):
    action: str
    error_type: DenialReason
    reset_time: datetime
    tier: Tier
    remaining: WindowCountsSchema


class RateLimitExceeded(BaseModel):
    """Body of a 429, carried under FastAPI's ``detail`` key."""

    error: str = "Rate limit exceeded"
    message: str
    details: DenialDetails


class RateLimitExceededResponse(BaseModel):
    detail: RateLimitExceeded
