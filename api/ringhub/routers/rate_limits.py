"""Rate limit endpoints for the acting user and for the services that act for them.

GET  /api/v1/rate-limits/{action}         -- current quota, never consumes
POST /api/v1/rate-limits/fork_ring/check  -- enforce: 200 with headers, or 429
POST /api/v1/rate-limits/{action}/record  -- count an action that succeeded
"""

from fastapi import APIRouter, HTTPException, Response

from ringhub.dependencies import CurrentActor, Limiter
from ringhub.exceptions import UnknownActionError
from ringhub.middleware.rate_limiter import ForkRateLimit, rate_limit_headers
from ringhub.schemas.rate_limit import (
    RateLimitExceededResponse,
    RateLimitStatusResponse,
    RecordActionRequest,
)

router = APIRouter(prefix="/api/v1", tags=["rate-limits"])


@router.get("/rate-limits/{action}", response_model=RateLimitStatusResponse)
async def get_rate_limit_status(
    action: str,
    response: Response,
    actor_did: CurrentActor,
    limiter: Limiter,
) -> RateLimitStatusResponse:
    """Report whether the caller could perform ``action`` now, and their quota.

    Always 200: a denial here is information, not an error.
    """
    try:
        decision = await limiter.check_limit(actor_did, action)
    except UnknownActionError:
        raise HTTPException(status_code=404, detail=f"Unknown action: {action}")

    response.headers.update(rate_limit_headers(decision))
    return RateLimitStatusResponse.model_validate(decision)


@router.post(
    "/rate-limits/fork_ring/check",
    response_model=RateLimitStatusResponse,
    responses={429: {"model": RateLimitExceededResponse}},
)
async def check_fork_limit(decision: ForkRateLimit) -> RateLimitStatusResponse:
    """Pre-flight check for fork creation. Denials surface as 429."""
    return RateLimitStatusResponse.model_validate(decision)


@router.post("/rate-limits/{action}/record", status_code=202)
async def record_action(
    action: str,
    body: RecordActionRequest,
    actor_did: CurrentActor,
    limiter: Limiter,
) -> dict:
    """Count an action the caller has already performed successfully.

    Accepted even when the counter store is down; recording is best effort.
    """
    try:
        await limiter.record_action(actor_did, action, body.metadata)
    except UnknownActionError:
        raise HTTPException(status_code=404, detail=f"Unknown action: {action}")

    return {"recorded": True, "action": action}
