"""Trust tiers: per-tier quotas and the tier classifier.

An actor's tier is derived from account facts (age since discovery, trusted
and verified flags) and cached on their reputation record for
TIER_CACHE_TTL. A cached tier may also come from a cooldown, which demotes the
actor to NEW and restamps the cache.

Tier rules, first match wins:
- TRUSTED: trusted, or verified with an account older than 90 days
- VETERAN: account at least 30 days old
- ESTABLISHED: account at least 7 days old
- NEW: everyone else, including actors the directory does not know
"""

import asyncio
from datetime import datetime, timedelta

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ringhub.clock import Clock
from ringhub.config import settings
from ringhub.exceptions import StoreUnavailable, UnknownActionError
from ringhub.models.reputation import Tier
from ringhub.services.directory import ActorDirectory, ActorProfile, RingDirectory
from ringhub.services.fail_open import report_store_failure
from ringhub.services.reputation import ReputationStore

log = structlog.get_logger()

FORK_ACTION = "fork_ring"

# Burst backstop: no tier may perform a limited action more than this per hour
MAX_ACTIONS_PER_HOUR = 2

TRUSTED_VERIFIED_MIN_AGE_DAYS = 90
VETERAN_MIN_AGE_DAYS = 30
ESTABLISHED_MIN_AGE_DAYS = 7


class WindowLimits(BaseModel):
    """Caps for the hourly, daily and weekly rolling windows.

    Windows widen monotonically: hourly <= daily <= weekly.
    """

    model_config = ConfigDict(frozen=True)

    hourly: int = Field(ge=0)
    daily: int = Field(ge=0)
    weekly: int = Field(ge=0)

    @model_validator(mode="after")
    def check_widening(self) -> "WindowLimits":
        if not (self.hourly <= self.daily <= self.weekly):
            raise ValueError(
                f"window caps must widen: hourly={self.hourly} "
                f"daily={self.daily} weekly={self.weekly}"
            )
        return self


FORK_LIMITS: dict[Tier, WindowLimits] = {
    Tier.NEW: WindowLimits(hourly=1, daily=1, weekly=3),
    Tier.ESTABLISHED: WindowLimits(hourly=2, daily=3, weekly=15),
    Tier.VETERAN: WindowLimits(hourly=2, daily=5, weekly=25),
    Tier.TRUSTED: WindowLimits(hourly=2, daily=10, weekly=50),
}

ACTION_LIMITS: dict[str, dict[Tier, WindowLimits]] = {
    FORK_ACTION: FORK_LIMITS,
}


def limits_for(action: str, tier: Tier) -> WindowLimits:
    """Effective caps for an action at a tier, with the hourly burst cap applied.

    Raises UnknownActionError for actions with no limit table.
    """
    table = ACTION_LIMITS.get(action)
    if table is None:
        raise UnknownActionError(action)
    limits = table[tier]
    return limits.model_copy(update={"hourly": min(limits.hourly, MAX_ACTIONS_PER_HOUR)})


def classify_tier(profile: ActorProfile, now: datetime) -> Tier:
    age_days = (now - profile.discovered_at) / timedelta(days=1)

    if profile.trusted or (profile.verified and age_days > TRUSTED_VERIFIED_MIN_AGE_DAYS):
        return Tier.TRUSTED
    if age_days >= VETERAN_MIN_AGE_DAYS:
        return Tier.VETERAN
    if age_days >= ESTABLISHED_MIN_AGE_DAYS:
        return Tier.ESTABLISHED
    return Tier.NEW


def compute_reputation_score(active_rings: int, total_posts: int, membership_count: int) -> int:
    """Weighted activity score: owned rings with real posts count most."""
    return active_rings * 10 + total_posts * 2 + membership_count


class TierClassifier:
    def __init__(
        self,
        reputation: ReputationStore,
        actors: ActorDirectory,
        rings: RingDirectory,
        clock: Clock,
        cache_ttl: timedelta = timedelta(minutes=settings.tier_cache_ttl_minutes),
    ) -> None:
        self.reputation = reputation
        self.actors = actors
        self.rings = rings
        self.clock = clock
        self.cache_ttl = cache_ttl

    async def resolve_tier(self, actor_did: str) -> Tier:
        """Return the actor's tier, recomputing it when the cached one is stale.

        Never raises for store failures: an unreadable directory yields NEW.
        """
        now = self.clock.now()

        try:
            record = await self.reputation.get(actor_did)
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did)
            record = None

        if record is not None and now - record.last_calculated_at < self.cache_ttl:
            return record.tier

        try:
            profile = await self.actors.get_actor(actor_did)
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did)
            return Tier.NEW

        if profile is None:
            return Tier.NEW

        tier = classify_tier(profile, now)
        await self._refresh_reputation(actor_did, tier, now)
        return tier

    async def _refresh_reputation(self, actor_did: str, tier: Tier, now: datetime) -> None:
        """Persist the tier with a fresh activity snapshot. Best effort."""
        try:
            rings_created, active_rings, total_posts, membership_count = await asyncio.gather(
                self.rings.count_rings_owned_by(actor_did),
                self.rings.count_active_rings_with_accepted_posts(actor_did),
                self.rings.count_accepted_posts_by(actor_did),
                self.rings.count_active_memberships(actor_did),
            )
            await self.reputation.merge(
                actor_did,
                tier=tier,
                reputation_score=compute_reputation_score(
                    active_rings, total_posts, membership_count
                ),
                rings_created=rings_created,
                active_rings=active_rings,
                total_posts=total_posts,
                membership_count=membership_count,
                last_calculated_at=now,
            )
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did, tier=tier.value)
            return

        log.debug("tier_recalculated", actor_did=actor_did, tier=tier.value)
