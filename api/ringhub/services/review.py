"""Review flagging for high-volume actors.

Advisory only: a flag puts the actor on the moderators' list and never blocks
an action. Blocking is done with an explicit cooldown.
"""

import asyncio
from datetime import timedelta

import structlog

from ringhub.clock import Clock
from ringhub.config import settings
from ringhub.metrics import review_flags_raised
from ringhub.services.counters import CounterStore
from ringhub.services.reputation import ReputationStore

log = structlog.get_logger()

WEEK = timedelta(days=7)
MONTH = timedelta(days=30)


class ReviewFlagMonitor:
    def __init__(
        self,
        counters: CounterStore,
        reputation: ReputationStore,
        clock: Clock,
        weekly_threshold: int = settings.review_weekly_threshold,
        monthly_threshold: int = settings.review_monthly_threshold,
    ) -> None:
        self.counters = counters
        self.reputation = reputation
        self.clock = clock
        self.weekly_threshold = weekly_threshold
        self.monthly_threshold = monthly_threshold

    async def observe(self, actor_did: str, action: str) -> bool:
        """Flag the actor if their recent volume crosses a threshold.

        Returns True only when a new flag was set; an actor already awaiting
        review is left alone. Raises StoreUnavailable.
        """
        now = self.clock.now()
        weekly_count, monthly_count = await asyncio.gather(
            self.counters.count_since(actor_did, action, now - WEEK),
            self.counters.count_since(actor_did, action, now - MONTH),
        )

        if weekly_count < self.weekly_threshold and monthly_count < self.monthly_threshold:
            return False

        record = await self.reputation.get(actor_did)
        if record is not None and record.flagged_for_review:
            return False

        await self.reputation.mark_flagged(actor_did)
        review_flags_raised.labels(action=action).inc()
        log.warning(
            "actor_flagged_for_review",
            actor_did=actor_did,
            action=action,
            weekly_count=weekly_count,
            monthly_count=monthly_count,
        )
        return True
