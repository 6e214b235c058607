"""Admin endpoints for rate limit enforcement.

GET  /api/v1/admin/flagged-actors                 -- actors flagged for review
POST /api/v1/admin/clear-violations/{actor_did}   -- reset flag, violations, cooldown
POST /api/v1/admin/apply-cooldown/{actor_did}     -- lock an actor out for N hours
GET  /api/v1/admin/actor-stats/{actor_did}        -- profile, reputation, recent forks

Every endpoint requires the caller to be an admin actor.
"""

from fastapi import APIRouter, HTTPException, Query

from ringhub.dependencies import DbSession, Limiter, RequireAdmin
from ringhub.exceptions import ConfigurationError, StoreUnavailable
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
from ringhub.services.audit import record_admin_action

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


def _unavailable(exc: StoreUnavailable) -> HTTPException:
    return HTTPException(status_code=503, detail=f"{exc.store} store unavailable")


# ---------------------------------------------------------------------------
# GET /api/v1/admin/flagged-actors
# ---------------------------------------------------------------------------


@router.get("/flagged-actors", response_model=FlaggedActorsResponse)
async def list_flagged_actors(
    admin_did: RequireAdmin,
    limiter: Limiter,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> FlaggedActorsResponse:
    """List actors flagged for human review, most recently recalculated first."""
    try:
        records = await limiter.list_flagged_actors(limit=limit, offset=offset)
    except StoreUnavailable as exc:
        raise _unavailable(exc)

    return FlaggedActorsResponse(
        flagged_actors=[ReputationItem.model_validate(r) for r in records],
        limit=limit,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# POST /api/v1/admin/clear-violations/{actor_did}
# ---------------------------------------------------------------------------


@router.post("/clear-violations/{actor_did}", response_model=ClearViolationsResponse)
async def clear_violations(
    actor_did: str,
    admin_did: RequireAdmin,
    limiter: Limiter,
    db: DbSession,
) -> ClearViolationsResponse:
    """Reset an actor's review flag, violation count and cooldown.

    The tier is not restored; it is recomputed on the actor's next request.
    """
    try:
        cleared = await limiter.clear_violations(actor_did)
    except StoreUnavailable as exc:
        raise _unavailable(exc)

    if not cleared:
        raise HTTPException(status_code=404, detail="No reputation record for actor")

    await record_admin_action(
        db,
        action="admin.clear_violations",
        admin_did=admin_did,
        target_did=actor_did,
    )
    return ClearViolationsResponse()


# ---------------------------------------------------------------------------
# POST /api/v1/admin/apply-cooldown/{actor_did}
# ---------------------------------------------------------------------------


@router.post("/apply-cooldown/{actor_did}", response_model=CooldownResponse)
async def apply_cooldown(
    actor_did: str,
    body: CooldownRequest,
    admin_did: RequireAdmin,
    limiter: Limiter,
    db: DbSession,
) -> CooldownResponse:
    """Lock an actor out of limited actions and demote them to NEW."""
    hours = limiter.cooldowns.default_hours if body.hours is None else body.hours
    try:
        cooldown_until = await limiter.apply_cooldown(actor_did, hours)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except StoreUnavailable as exc:
        raise _unavailable(exc)

    await record_admin_action(
        db,
        action="admin.apply_cooldown",
        admin_did=admin_did,
        target_did=actor_did,
        metadata={
            "hours": hours,
            "reason": body.reason or "Admin applied cooldown",
            "cooldown_until": cooldown_until.isoformat(),
        },
    )
    return CooldownResponse(
        message=f"Cooldown applied for {hours} hours",
        cooldown_until=cooldown_until,
    )


# ---------------------------------------------------------------------------
# GET /api/v1/admin/actor-stats/{actor_did}
# ---------------------------------------------------------------------------


@router.get("/actor-stats/{actor_did}", response_model=ActorStatsResponse)
async def get_actor_stats(
    actor_did: str,
    admin_did: RequireAdmin,
    limiter: Limiter,
) -> ActorStatsResponse:
    """Profile, reputation and the last month of fork activity for one actor."""
    try:
        stats = await limiter.actor_stats(actor_did)
    except StoreUnavailable as exc:
        raise _unavailable(exc)

    if stats is None:
        raise HTTPException(status_code=404, detail="Actor not found")

    return ActorStatsResponse(
        actor=ActorProfileItem.model_validate(stats.profile),
        reputation=(
            ReputationItem.model_validate(stats.reputation) if stats.reputation else None
        ),
        activity=ActivityItem(
            forks_this_week=stats.actions_this_week,
            forks_this_month=stats.actions_this_month,
            recent_forks=[ActionRecordItem.model_validate(r) for r in stats.recent_actions],
        ),
    )
