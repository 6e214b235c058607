"""Pydantic schemas for admin rate limit management endpoints."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ringhub.models.reputation import Tier


class ReputationItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    actor_did: str
    tier: Tier
    reputation_score: int
    rings_created: int
    active_rings: int
    total_posts: int
    membership_count: int
    flagged_for_review: bool
    violation_count: int
    last_violation_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None
    last_calculated_at: datetime


class FlaggedActorsResponse(BaseModel):
    flagged_actors: list[ReputationItem]
    limit: int
    offset: int


class CooldownRequest(BaseModel):
    """Request body for applying a cooldown.

    Omit ``hours`` for the configured default. The upper bound is the
    configured maximum, enforced when the cooldown is applied.
    """

    hours: Optional[int] = Field(None, ge=1)
    reason: Optional[str] = Field(None, max_length=500)


class CooldownResponse(BaseModel):
    success: bool = True
    message: str
    cooldown_until: datetime


class ClearViolationsResponse(BaseModel):
    success: bool = True
    message: str = "Actor violations cleared successfully"


class ActorProfileItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    did: str
    name: Optional[str] = None
    verified: bool
    trusted: bool
    is_admin: bool
    discovered_at: datetime


class ActionRecordItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: str
    performed_at: datetime
    metadata: Optional[dict] = None


class ActivityItem(BaseModel):
    forks_this_week: int
    forks_this_month: int
    recent_forks: list[ActionRecordItem]


class ActorStatsResponse(BaseModel):
    actor: ActorProfileItem
    reputation: Optional[ReputationItem] = None
    activity: ActivityItem
