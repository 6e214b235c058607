"""Cooldowns and violation history.

A cooldown is a full lockout from limited actions until cooldown_until. Applying
one also counts a violation and demotes the actor to NEW, so once the lockout
lifts they start again under the strictest quotas.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from ringhub.clock import Clock
from ringhub.config import settings
from ringhub.exceptions import ConfigurationError, StoreUnavailable
from ringhub.metrics import cooldowns_applied
from ringhub.services.fail_open import report_store_failure
from ringhub.services.reputation import ReputationRecord, ReputationStore

log = structlog.get_logger()


def active_cooldown(record: Optional[ReputationRecord], now: datetime) -> Optional[datetime]:
    """The cooldown expiry if it is still in the future, else None."""
    if record is None or record.cooldown_until is None:
        return None
    return record.cooldown_until if record.cooldown_until > now else None


class CooldownTracker:
    def __init__(
        self,
        reputation: ReputationStore,
        clock: Clock,
        default_hours: int = settings.default_cooldown_hours,
        max_hours: int = settings.max_cooldown_hours,
    ) -> None:
        self.reputation = reputation
        self.clock = clock
        self.default_hours = default_hours
        self.max_hours = max_hours

    async def apply_cooldown(self, actor_did: str, hours: Optional[int] = None) -> datetime:
        """Lock the actor out for ``hours`` and return when the lockout ends.

        Store failures propagate: an admin asking for a penalty must learn it
        did not happen.
        """
        hours = self.default_hours if hours is None else hours
        if not 1 <= hours <= self.max_hours:
            raise ConfigurationError(
                f"cooldown must be between 1 and {self.max_hours} hours, got {hours}"
            )

        now = self.clock.now()
        cooldown_until = now + timedelta(hours=hours)
        await self.reputation.record_violation(actor_did, at=now, cooldown_until=cooldown_until)

        cooldowns_applied.inc()
        log.warning(
            "cooldown_applied",
            actor_did=actor_did,
            hours=hours,
            cooldown_until=cooldown_until.isoformat(),
        )
        return cooldown_until

    async def is_in_cooldown(self, actor_did: str) -> bool:
        try:
            record = await self.reputation.get(actor_did)
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did, check="cooldown")
            return False
        return active_cooldown(record, self.clock.now()) is not None

    async def clear_violations(self, actor_did: str) -> bool:
        """Admin reset of flag, violations and cooldown.

        The cached tier is expired, so the next decision reclassifies the actor
        from their live profile.
        """
        cleared = await self.reputation.clear_violations(actor_did)
        if cleared:
            log.info("violations_cleared", actor_did=actor_did)
        return cleared
