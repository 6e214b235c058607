"""Reputation store: one ActorReputation row per actor.

All writes are single upserts (INSERT ... ON CONFLICT DO UPDATE) keyed on the
actor_did unique constraint, so no write needs a prior read and two writers
for the same actor never race on row creation. Increments use column
expressions (violation_count + 1) so concurrent violations are not lost.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ringhub.database import store_session
from ringhub.models.reputation import (
    ACTOR_REPUTATION_UNIQUE_CONSTRAINT,
    ActorReputation,
    Tier,
)

STORE_NAME = "reputation"

# Freshness stamp for rows created by something other than the classifier, so
# the next resolve_tier recomputes instead of serving a placeholder tier
NEVER_CALCULATED = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ReputationRecord:
    actor_did: str
    tier: Tier
    last_calculated_at: datetime
    reputation_score: int = 0
    rings_created: int = 0
    active_rings: int = 0
    total_posts: int = 0
    membership_count: int = 0
    flagged_for_review: bool = False
    violation_count: int = 0
    last_violation_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None


class ReputationStore(ABC):
    """Contract for the per-actor reputation record.

    Every method raises StoreUnavailable when the backing store fails.
    """

    @abstractmethod
    async def get(self, actor_did: str) -> Optional[ReputationRecord]: ...

    @abstractmethod
    async def merge(self, actor_did: str, **fields) -> None:
        """Create the record with ``fields`` or overwrite just those fields."""

    @abstractmethod
    async def record_violation(
        self, actor_did: str, at: datetime, cooldown_until: datetime
    ) -> None:
        """Increment violations, start a cooldown and demote to NEW in one write."""

    @abstractmethod
    async def mark_flagged(self, actor_did: str) -> None:
        """Set flagged_for_review, creating a NEW-tier record if absent."""

    @abstractmethod
    async def clear_violations(self, actor_did: str) -> bool:
        """Reset flag, violations and cooldown, and expire the cached tier.

        Returns False if no record exists.
        """

    @abstractmethod
    async def list_flagged(self, limit: int = 50, offset: int = 0) -> list[ReputationRecord]: ...


def _to_record(row: ActorReputation) -> ReputationRecord:
    return ReputationRecord(
        actor_did=row.actor_did,
        tier=Tier(row.tier),
        last_calculated_at=row.last_calculated_at,
        reputation_score=row.reputation_score,
        rings_created=row.rings_created,
        active_rings=row.active_rings,
        total_posts=row.total_posts,
        membership_count=row.membership_count,
        flagged_for_review=row.flagged_for_review,
        violation_count=row.violation_count,
        last_violation_at=row.last_violation_at,
        cooldown_until=row.cooldown_until,
    )


def _column_values(fields: dict) -> dict:
    # Tier is a str enum; store its plain value
    return {
        key: (value.value if isinstance(value, Tier) else value)
        for key, value in fields.items()
    }


def violation_upsert(actor_did: str, at: datetime, cooldown_until: datetime):
    """Count a violation, start a cooldown and demote to NEW in one statement."""
    return pg_insert(ActorReputation).values(
        actor_did=actor_did,
        tier=Tier.NEW.value,
        violation_count=1,
        last_violation_at=at,
        cooldown_until=cooldown_until,
        last_calculated_at=at,
    ).on_conflict_do_update(
        constraint=ACTOR_REPUTATION_UNIQUE_CONSTRAINT,
        set_={
            "violation_count": ActorReputation.violation_count + 1,
            "last_violation_at": at,
            "cooldown_until": cooldown_until,
            # Demotion is part of the penalty
            "tier": Tier.NEW.value,
            "last_calculated_at": at,
        },
    )


def flag_upsert(actor_did: str):
    return pg_insert(ActorReputation).values(
        actor_did=actor_did,
        tier=Tier.NEW.value,
        flagged_for_review=True,
        last_calculated_at=NEVER_CALCULATED,
    ).on_conflict_do_update(
        constraint=ACTOR_REPUTATION_UNIQUE_CONSTRAINT,
        set_={"flagged_for_review": True},
    )


def clear_violations_update(actor_did: str):
    """Reset penalty state and expire the cached tier.

    The stored tier is left as it is; expiring the cache makes the next
    resolve_tier recompute it from account facts.
    """
    return (
        update(ActorReputation)
        .where(ActorReputation.actor_did == actor_did)
        .values(
            flagged_for_review=False,
            violation_count=0,
            last_violation_at=None,
            cooldown_until=None,
            last_calculated_at=NEVER_CALCULATED,
        )
        .execution_options(synchronize_session=False)
    )


class SqlReputationStore(ReputationStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, actor_did: str) -> Optional[ReputationRecord]:
        async with store_session(self._session_factory, STORE_NAME, "get") as db:
            result = await db.execute(
                select(ActorReputation).where(ActorReputation.actor_did == actor_did)
            )
            row = result.scalar_one_or_none()
            return _to_record(row) if row is not None else None

    async def merge(self, actor_did: str, **fields) -> None:
        values = _column_values(fields)
        stmt = pg_insert(ActorReputation).values(
            actor_did=actor_did, **values
        ).on_conflict_do_update(
            constraint=ACTOR_REPUTATION_UNIQUE_CONSTRAINT,
            set_=values,
        )
        async with store_session(self._session_factory, STORE_NAME, "merge") as db:
            await db.execute(stmt)
            await db.commit()

    async def record_violation(
        self, actor_did: str, at: datetime, cooldown_until: datetime
    ) -> None:
        stmt = violation_upsert(actor_did, at, cooldown_until)
        async with store_session(self._session_factory, STORE_NAME, "record_violation") as db:
            await db.execute(stmt)
            await db.commit()

    async def mark_flagged(self, actor_did: str) -> None:
        stmt = flag_upsert(actor_did)
        async with store_session(self._session_factory, STORE_NAME, "mark_flagged") as db:
            await db.execute(stmt)
            await db.commit()

    async def clear_violations(self, actor_did: str) -> bool:
        async with store_session(self._session_factory, STORE_NAME, "clear_violations") as db:
            result = await db.execute(clear_violations_update(actor_did))
            await db.commit()
            return result.rowcount > 0

    async def list_flagged(self, limit: int = 50, offset: int = 0) -> list[ReputationRecord]:
        async with store_session(self._session_factory, STORE_NAME, "list_flagged") as db:
            result = await db.execute(
                select(ActorReputation)
                .where(ActorReputation.flagged_for_review.is_(True))
                .order_by(ActorReputation.last_calculated_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return [_to_record(row) for row in result.scalars().all()]
