"""Ring Hub Pydantic schemas package.

Re-exports all request and response schemas for convenient importing:

    from ringhub.schemas import RateLimitStatusResponse, CooldownRequest, ...
"""

from ringhub.schemas.admin import (
    ActionRecordItem,
    ActivityItem,
    ActorProfileItem,
    ActorStatsResponse,
    ClearViolationsResponse,
    CooldownRequest,
    CooldownResponse,
    FlaggedActorsResponse,
    ReputationItem,
)
from ringhub.schemas.rate_limit import (
    DenialDetails,
    RateLimitExceeded,
    RateLimitExceededResponse,
    RateLimitStatusResponse,
    RecordActionRequest,
    ResetTimesSchema,
    WindowCountsSchema,
)

__all__ = [
    # Rate limits
    "RateLimitStatusResponse",
    "RecordActionRequest",
    "ResetTimesSchema",
    "WindowCountsSchema",
    "DenialDetails",
    "RateLimitExceeded",
    "RateLimitExceededResponse",
    # Admin
    "ActionRecordItem",
    "ActivityItem",
    "ActorProfileItem",
    "ActorStatsResponse",
    "ClearViolationsResponse",
    "CooldownRequest",
    "CooldownResponse",
    "FlaggedActorsResponse",
    "ReputationItem",
]
