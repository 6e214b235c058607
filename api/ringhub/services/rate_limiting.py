"""Fork rate limiting: the single entry point the HTTP layer talks to.

RateLimiter composes the stores, the tier classifier, the quality gate, the
cooldown tracker and the review monitor into one decision per request:

    admin?            -> allow, tier ADMIN
    in cooldown?      -> deny (cooldown), every reset = cooldown_until
    quality gate?     -> deny (quality_gate), resets a day / a week out
    window usage      -> allow iff hourly, daily and weekly usage are under cap

Design notes:
- Store failures never become request failures. Each read fails open on its
  own: an unreadable count is 0, an unreadable reputation record is "none",
  an unreadable profile is "not admin, tier NEW".
- Unknown action names are programming errors and raise UnknownActionError.
- There is no lock between check_limit and record_action. Two concurrent
  requests from one actor can both be allowed at the edge of a window; the
  hourly burst cap bounds how far that race can overshoot.
"""

import asyncio
import enum
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ringhub.clock import Clock, SystemClock
from ringhub.config import Settings
from ringhub.exceptions import StoreUnavailable, UnknownActionError
from ringhub.metrics import rate_limit_check_duration, rate_limit_decisions
from ringhub.models.reputation import Tier
from ringhub.services.counters import ActionRecord, CounterStore, build_counter_store
from ringhub.services.directory import (
    ActorDirectory,
    ActorProfile,
    RingDirectory,
    SqlActorDirectory,
    SqlRingDirectory,
)
from ringhub.services.fail_open import report_store_failure
from ringhub.services.penalties import CooldownTracker, active_cooldown
from ringhub.services.quality_gate import QualityGate
from ringhub.services.reputation import ReputationRecord, ReputationStore, SqlReputationStore
from ringhub.services.review import MONTH, WEEK, ReviewFlagMonitor
from ringhub.services.tiers import ACTION_LIMITS, FORK_ACTION, TierClassifier, limits_for

log = structlog.get_logger()

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
WINDOWS: tuple[tuple[str, timedelta], ...] = (("hourly", HOUR), ("daily", DAY), ("weekly", WEEK))

# Remaining count reported to admins, who are never limited
ADMIN_REMAINING = 999

# Actions that must pass the quality gate and feed the review monitor
QUALITY_GATED_ACTIONS = frozenset({FORK_ACTION})
REVIEWED_ACTIONS = frozenset({FORK_ACTION})

# A denial whose weekly reset is further out than this, with nothing remaining,
# reads as a quality-gate denial when no explicit reason travels with it
QUALITY_GATE_RESET_THRESHOLD = timedelta(hours=2)


class DenialReason(str, enum.Enum):
    QUALITY_GATE = "quality_gate"
    COOLDOWN = "cooldown"
    RATE_LIMIT = "rate_limit"


@dataclass(frozen=True)
class WindowCounts:
    hourly: int
    daily: int
    weekly: int

    def all_zero(self) -> bool:
        return self.hourly == 0 and self.daily == 0 and self.weekly == 0


@dataclass(frozen=True)
class ResetTimes:
    hourly: datetime
    daily: datetime
    weekly: datetime


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: WindowCounts
    reset_times: ResetTimes
    tier: Tier
    reason: Optional[DenialReason] = None


@dataclass(frozen=True)
class ActorStats:
    profile: ActorProfile
    reputation: Optional[ReputationRecord]
    actions_this_week: int
    actions_this_month: int
    recent_actions: list[ActionRecord]


def classify_denial(decision: RateLimitDecision, now: datetime) -> Optional[DenialReason]:
    """Put a denial into exactly one category; None for an allowed decision.

    The explicit reason wins. Decisions rebuilt from response headers carry no
    reason and are read from their shape: a cooldown resets every window at
    the same instant, a quality-gate denial zeroes everything and pushes the
    weekly reset far out, anything else is quota exhaustion.
    """
    if decision.allowed:
        return None
    if decision.reason is not None:
        return decision.reason

    resets = decision.reset_times
    if decision.remaining.all_zero():
        if resets.hourly == resets.daily == resets.weekly:
            return DenialReason.COOLDOWN
        if resets.weekly > now + QUALITY_GATE_RESET_THRESHOLD:
            return DenialReason.QUALITY_GATE
    return DenialReason.RATE_LIMIT


def exhausted_window(decision: RateLimitDecision) -> Optional[str]:
    """The first window with nothing remaining, checked hourly, daily, weekly."""
    for name, _ in WINDOWS:
        if getattr(decision.remaining, name) == 0:
            return name
    return None


class RateLimiter:
    def __init__(
        self,
        counters: CounterStore,
        reputation: ReputationStore,
        actors: ActorDirectory,
        rings: RingDirectory,
        clock: Optional[Clock] = None,
        *,
        classifier: Optional[TierClassifier] = None,
        quality_gate: Optional[QualityGate] = None,
        cooldowns: Optional[CooldownTracker] = None,
        review_monitor: Optional[ReviewFlagMonitor] = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.counters = counters
        self.reputation = reputation
        self.actors = actors
        self.rings = rings
        self.classifier = classifier or TierClassifier(reputation, actors, rings, self.clock)
        self.quality_gate = quality_gate or QualityGate(rings, self.clock)
        self.cooldowns = cooldowns or CooldownTracker(reputation, self.clock)
        self.review_monitor = review_monitor or ReviewFlagMonitor(
            counters, reputation, self.clock
        )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def is_admin(self, actor_did: str) -> bool:
        try:
            profile = await self.actors.get_actor(actor_did)
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did, check="admin")
            return False
        return profile is not None and profile.is_admin

    async def check_limit(self, actor_did: str, action: str) -> RateLimitDecision:
        """Decide whether ``actor_did`` may perform ``action`` right now.

        Does not consume quota; call record_action once the action succeeded.
        """
        _require_known_action(action)
        start = time.monotonic()

        decision = await self._decide(actor_did, action)

        outcome = decision.reason.value if decision.reason else "allowed"
        rate_limit_decisions.labels(action=action, tier=decision.tier.value, outcome=outcome).inc()
        rate_limit_check_duration.labels(action=action).observe(time.monotonic() - start)
        if not decision.allowed:
            log.info(
                "rate_limit_denied",
                actor_did=actor_did,
                action=action,
                reason=outcome,
                tier=decision.tier.value,
            )
        return decision

    async def _decide(self, actor_did: str, action: str) -> RateLimitDecision:
        now = self.clock.now()

        if await self.is_admin(actor_did):
            return RateLimitDecision(
                allowed=True,
                remaining=WindowCounts(ADMIN_REMAINING, ADMIN_REMAINING, ADMIN_REMAINING),
                reset_times=ResetTimes(now + HOUR, now + DAY, now + WEEK),
                tier=Tier.ADMIN,
            )

        try:
            record = await self.reputation.get(actor_did)
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did, action=action)
            record = None

        cooldown_until = active_cooldown(record, now)
        if cooldown_until is not None:
            return RateLimitDecision(
                allowed=False,
                remaining=WindowCounts(0, 0, 0),
                reset_times=ResetTimes(cooldown_until, cooldown_until, cooldown_until),
                tier=record.tier,
                reason=DenialReason.COOLDOWN,
            )

        if action in QUALITY_GATED_ACTIONS:
            gate = await self.quality_gate.check(actor_did)
            if not gate.passed:
                # Shaped like an exhausted quota so clients need one code path;
                # "try again tomorrow"
                return RateLimitDecision(
                    allowed=False,
                    remaining=WindowCounts(0, 0, 0),
                    reset_times=ResetTimes(now + DAY, now + DAY, now + WEEK),
                    tier=await self.classifier.resolve_tier(actor_did),
                    reason=DenialReason.QUALITY_GATE,
                )

        tier = await self.classifier.resolve_tier(actor_did)
        limits = limits_for(action, tier)
        usage = await asyncio.gather(
            *(self._window_usage(actor_did, action, now, length) for _, length in WINDOWS)
        )
        (hourly_used, hourly_reset), (daily_used, daily_reset), (weekly_used, weekly_reset) = usage

        allowed = (
            hourly_used < limits.hourly
            and daily_used < limits.daily
            and weekly_used < limits.weekly
        )
        return RateLimitDecision(
            allowed=allowed,
            remaining=WindowCounts(
                hourly=max(0, limits.hourly - hourly_used),
                daily=max(0, limits.daily - daily_used),
                weekly=max(0, limits.weekly - weekly_used),
            ),
            reset_times=ResetTimes(hourly_reset, daily_reset, weekly_reset),
            tier=tier,
            reason=None if allowed else DenialReason.RATE_LIMIT,
        )

    async def _window_usage(
        self, actor_did: str, action: str, now: datetime, length: timedelta
    ) -> tuple[int, datetime]:
        """Count a rolling window and find when its oldest record rolls out.

        An empty window resets immediately. Unreadable counts fail open as 0.
        """
        since = now - length
        try:
            used, oldest = await asyncio.gather(
                self.counters.count_since(actor_did, action, since),
                self.counters.oldest_since(actor_did, action, since),
            )
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did, action=action)
            return 0, now
        return used, (oldest + length if oldest is not None else now)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record_action(
        self, actor_did: str, action: str, metadata: Optional[dict] = None
    ) -> None:
        """Count an action that already succeeded. Never raises for store failures."""
        _require_known_action(action)

        try:
            record = await self.counters.record_action(actor_did, action, metadata)
            if record is None or action not in REVIEWED_ACTIONS:
                return
            await self.review_monitor.observe(actor_did, action)
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did, action=action)
        except Exception:
            # The upstream action already happened; bookkeeping errors stop here
            log.error("record_action_failed", actor_did=actor_did, action=action, exc_info=True)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def apply_cooldown(self, actor_did: str, hours: Optional[int] = None) -> datetime:
        return await self.cooldowns.apply_cooldown(actor_did, hours)

    async def is_in_cooldown(self, actor_did: str) -> bool:
        return await self.cooldowns.is_in_cooldown(actor_did)

    async def clear_violations(self, actor_did: str) -> bool:
        return await self.cooldowns.clear_violations(actor_did)

    async def list_flagged_actors(self, limit: int = 50, offset: int = 0) -> list[ReputationRecord]:
        return await self.reputation.list_flagged(limit=limit, offset=offset)

    async def actor_stats(self, actor_did: str, action: str = FORK_ACTION) -> Optional[ActorStats]:
        """Profile, reputation and recent activity for one actor; None if unknown."""
        _require_known_action(action)
        profile = await self.actors.get_actor(actor_did)
        if profile is None:
            return None

        now = self.clock.now()
        reputation, this_week, this_month, recent = await asyncio.gather(
            self.reputation.get(actor_did),
            self.counters.count_since(actor_did, action, now - WEEK),
            self.counters.count_since(actor_did, action, now - MONTH),
            self.counters.list_since(actor_did, action, now - MONTH, limit=10),
        )
        return ActorStats(
            profile=profile,
            reputation=reputation,
            actions_this_week=this_week,
            actions_this_month=this_month,
            recent_actions=recent,
        )


def _require_known_action(action: str) -> None:
    if action not in ACTION_LIMITS:
        raise UnknownActionError(action)


def build_rate_limiter(
    app_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: Optional[aioredis.Redis] = None,
    clock: Optional[Clock] = None,
) -> RateLimiter:
    """Wire a RateLimiter against the configured stores."""
    clock = clock or SystemClock()
    counters = build_counter_store(
        app_settings.counter_backend,
        clock,
        session_factory=session_factory,
        redis_client=redis_client,
        retention=timedelta(days=app_settings.action_retention_days),
    )
    reputation = SqlReputationStore(session_factory)
    actors = SqlActorDirectory(session_factory)
    rings = SqlRingDirectory(session_factory)

    return RateLimiter(
        counters,
        reputation,
        actors,
        rings,
        clock,
        classifier=TierClassifier(
            reputation,
            actors,
            rings,
            clock,
            cache_ttl=timedelta(minutes=app_settings.tier_cache_ttl_minutes),
        ),
        quality_gate=QualityGate(
            rings, clock, grace_period=timedelta(minutes=app_settings.quality_gate_grace_minutes)
        ),
        cooldowns=CooldownTracker(
            reputation,
            clock,
            default_hours=app_settings.default_cooldown_hours,
            max_hours=app_settings.max_cooldown_hours,
        ),
        review_monitor=ReviewFlagMonitor(
            counters,
            reputation,
            clock,
            weekly_threshold=app_settings.review_weekly_threshold,
            monthly_threshold=app_settings.review_monthly_threshold,
        ),
    )
