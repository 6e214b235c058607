"""Per-action rate limit dependency for FastAPI routes.

Runs RateLimiter.check_limit for the current actor before the route body,
surfaces the decision as X-RateLimit-* headers, and turns a denial into a 429
that says which of the three denial kinds it is.

Header format:
  X-RateLimit-Remaining-{Hourly,Daily,Weekly}: integer
  X-RateLimit-Reset-{Hourly,Daily,Weekly}: ISO 8601 timestamp
  X-RateLimit-User-Tier: NEW | ESTABLISHED | VETERAN | TRUSTED | ADMIN

Routes that perform the limited action must call RateLimiter.record_action
after the action succeeds; this dependency never consumes quota.
"""

from datetime import datetime
from typing import Annotated

from fastapi import Depends, HTTPException, Response

from ringhub.dependencies import CurrentActor, Limiter
from ringhub.schemas.rate_limit import DenialDetails, RateLimitExceeded, WindowCountsSchema
from ringhub.services.rate_limiting import (
    DenialReason,
    RateLimitDecision,
    classify_denial,
    exhausted_window,
)
from ringhub.services.tiers import FORK_ACTION


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    remaining = decision.remaining
    resets = decision.reset_times
    return {
        "X-RateLimit-Remaining-Hourly": str(remaining.hourly),
        "X-RateLimit-Remaining-Daily": str(remaining.daily),
        "X-RateLimit-Remaining-Weekly": str(remaining.weekly),
        "X-RateLimit-Reset-Hourly": resets.hourly.isoformat(),
        "X-RateLimit-Reset-Daily": resets.daily.isoformat(),
        "X-RateLimit-Reset-Weekly": resets.weekly.isoformat(),
        "X-RateLimit-User-Tier": decision.tier.value,
    }


def denial_detail(action: str, decision: RateLimitDecision, now: datetime) -> dict:
    """Build the 429 body for a denied decision."""
    reason = classify_denial(decision, now) or DenialReason.RATE_LIMIT
    reset_time = decision.reset_times.daily

    if reason is DenialReason.QUALITY_GATE:
        message = (
            "Quality gate not met: you must have at least 1 post in your most "
            "recent ring before creating another fork."
        )
    elif reason is DenialReason.COOLDOWN:
        message = (
            f"Account is in cooldown until {reset_time.isoformat()} "
            "due to rate limit violations."
        )
    else:
        window = exhausted_window(decision) or "daily"
        reset_time = getattr(decision.reset_times, window)
        message = (
            f"{window.capitalize()} limit for {action} exceeded. "
            f"Try again after {reset_time.isoformat()}."
        )

    body = RateLimitExceeded(
        message=message,
        details=DenialDetails(
            action=action,
            error_type=reason,
            reset_time=reset_time,
            tier=decision.tier,
            remaining=WindowCountsSchema.model_validate(decision.remaining),
        ),
    )
    return body.model_dump(mode="json")


def require_action_limit(action: str):
    """FastAPI dependency factory enforcing the rate limit for ``action``."""

    async def _check(
        response: Response,
        actor_did: CurrentActor,
        limiter: Limiter,
    ) -> RateLimitDecision:
        decision = await limiter.check_limit(actor_did, action)
        headers = rate_limit_headers(decision)

        if not decision.allowed:
            raise HTTPException(
                status_code=429,
                detail=denial_detail(action, decision, limiter.clock.now()),
                headers=headers,
            )

        response.headers.update(headers)
        return decision

    return _check


# Inject into fork-creating endpoints
ForkRateLimit = Annotated[RateLimitDecision, Depends(require_action_limit(FORK_ACTION))]
