"""Quality gate for forking.

Before an actor may fork again, the ring they created most recently must show
a sign of real use: at least one accepted post that is not the automated fork
notification. A ring younger than the grace period is let through so the owner
has time to set it up. Actors with no rings always pass.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog

from ringhub.clock import Clock
from ringhub.config import settings
from ringhub.exceptions import StoreUnavailable
from ringhub.services.directory import RingDirectory
from ringhub.services.fail_open import report_store_failure

log = structlog.get_logger()

QUALITY_GATE_REASON = "must have at least 1 post in most recent ring before creating another"


@dataclass(frozen=True)
class QualityGateResult:
    passed: bool
    reason: Optional[str] = None


class QualityGate:
    def __init__(
        self,
        rings: RingDirectory,
        clock: Clock,
        grace_period: timedelta = timedelta(minutes=settings.quality_gate_grace_minutes),
    ) -> None:
        self.rings = rings
        self.clock = clock
        self.grace_period = grace_period

    async def check(self, actor_did: str) -> QualityGateResult:
        try:
            ring = await self.rings.most_recent_ring_owned_by(actor_did)
            if ring is None:
                return QualityGateResult(passed=True)

            real_posts = await self.rings.count_accepted_posts(
                ring.id, excluding_notifications=True
            )
        except StoreUnavailable as exc:
            report_store_failure(exc, actor_did=actor_did, check="quality_gate")
            return QualityGateResult(passed=True)

        if real_posts > 0:
            return QualityGateResult(passed=True)

        if self.clock.now() - ring.created_at < self.grace_period:
            return QualityGateResult(passed=True)

        log.info("quality_gate_failed", actor_did=actor_did, ring_id=str(ring.id))
        return QualityGateResult(passed=False, reason=QUALITY_GATE_REASON)
