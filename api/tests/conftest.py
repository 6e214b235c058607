"""Shared fixtures: a frozen clock and in-memory stand-ins for every store.

The in-memory stores implement the same ABCs as the SQL ones, so the engine
under test is exactly the production RateLimiter. Each fake can be switched
into a failing mode to exercise the fail-open paths.
"""

import dataclasses
import uuid
from datetime import datetime, timedelta
from typing import Optional

import pytest

from ringhub.clock import FrozenClock
from ringhub.exceptions import StoreUnavailable
from ringhub.models.reputation import Tier
from ringhub.services.counters import CounterStore, InMemoryCounterStore
from ringhub.services.directory import ActorDirectory, ActorProfile, RingDirectory, RingSummary
from ringhub.services.rate_limiting import RateLimiter
from ringhub.services.reputation import NEVER_CALCULATED, ReputationRecord, ReputationStore


class InMemoryReputationStore(ReputationStore):
    def __init__(self) -> None:
        self.records: dict[str, ReputationRecord] = {}
        self.failing = False

    def _check(self, operation: str) -> None:
        if self.failing:
            raise StoreUnavailable("reputation", operation)

    async def get(self, actor_did: str) -> Optional[ReputationRecord]:
        self._check("get")
        return self.records.get(actor_did)

    async def merge(self, actor_did: str, **fields) -> None:
        self._check("merge")
        existing = self.records.get(actor_did)
        if existing is None:
            fields.setdefault("tier", Tier.NEW)
            fields.setdefault("last_calculated_at", NEVER_CALCULATED)
            self.records[actor_did] = ReputationRecord(actor_did=actor_did, **fields)
        else:
            self.records[actor_did] = dataclasses.replace(existing, **fields)

    async def record_violation(
        self, actor_did: str, at: datetime, cooldown_until: datetime
    ) -> None:
        self._check("record_violation")
        existing = self.records.get(actor_did)
        violations = existing.violation_count + 1 if existing else 1
        await self.merge(
            actor_did,
            tier=Tier.NEW,
            violation_count=violations,
            last_violation_at=at,
            cooldown_until=cooldown_until,
            last_calculated_at=at,
        )

    async def mark_flagged(self, actor_did: str) -> None:
        self._check("mark_flagged")
        await self.merge(actor_did, flagged_for_review=True)

    async def clear_violations(self, actor_did: str) -> bool:
        self._check("clear_violations")
        if actor_did not in self.records:
            return False
        await self.merge(
            actor_did,
            flagged_for_review=False,
            violation_count=0,
            last_violation_at=None,
            cooldown_until=None,
            last_calculated_at=NEVER_CALCULATED,
        )
        return True

    async def list_flagged(self, limit: int = 50, offset: int = 0) -> list[ReputationRecord]:
        self._check("list_flagged")
        flagged = sorted(
            (r for r in self.records.values() if r.flagged_for_review),
            key=lambda r: r.last_calculated_at,
            reverse=True,
        )
        return flagged[offset:offset + limit]


class InMemoryActorDirectory(ActorDirectory):
    def __init__(self, clock: FrozenClock) -> None:
        self.clock = clock
        self.profiles: dict[str, ActorProfile] = {}
        self.failing = False

    def add(self, did: str, age_days: float = 0, **flags) -> ActorProfile:
        profile = ActorProfile(
            did=did,
            discovered_at=self.clock.now() - timedelta(days=age_days),
            **flags,
        )
        self.profiles[did] = profile
        return profile

    async def get_actor(self, did: str) -> Optional[ActorProfile]:
        if self.failing:
            raise StoreUnavailable("directory", "get_actor")
        return self.profiles.get(did)


@dataclasses.dataclass
class _Post:
    ring_id: uuid.UUID
    actor_did: str
    accepted: bool
    notification: bool


class InMemoryRingDirectory(RingDirectory):
    def __init__(self, clock: FrozenClock) -> None:
        self.clock = clock
        self.rings: list[tuple[str, RingSummary]] = []
        self.posts: list[_Post] = []
        self.memberships: list[tuple[str, bool]] = []
        self.failing = False

    def _check(self, operation: str) -> None:
        if self.failing:
            raise StoreUnavailable("directory", operation)

    def add_ring(self, owner_did: str, age: timedelta = timedelta(0)) -> RingSummary:
        ring = RingSummary(id=uuid.uuid4(), created_at=self.clock.now() - age)
        self.rings.append((owner_did, ring))
        return ring

    def add_post(
        self,
        ring: RingSummary,
        actor_did: str,
        accepted: bool = True,
        notification: bool = False,
    ) -> None:
        self.posts.append(_Post(ring.id, actor_did, accepted, notification))

    def add_membership(self, actor_did: str, active: bool = True) -> None:
        self.memberships.append((actor_did, active))

    def _owned(self, did: str) -> list[RingSummary]:
        return [ring for owner, ring in self.rings if owner == did]

    async def count_rings_owned_by(self, did: str) -> int:
        self._check("count_rings_owned_by")
        return len(self._owned(did))

    async def most_recent_ring_owned_by(self, did: str) -> Optional[RingSummary]:
        self._check("most_recent_ring")
        return max(self._owned(did), key=lambda r: r.created_at, default=None)

    async def count_accepted_posts(
        self, ring_id: uuid.UUID, excluding_notifications: bool = True
    ) -> int:
        self._check("count_accepted_posts")
        return sum(
            1
            for p in self.posts
            if p.ring_id == ring_id
            and p.accepted
            and not (excluding_notifications and p.notification)
        )

    async def count_accepted_posts_by(self, did: str) -> int:
        self._check("count_accepted_posts_by")
        return sum(1 for p in self.posts if p.actor_did == did and p.accepted)

    async def count_active_rings_with_accepted_posts(self, did: str) -> int:
        self._check("count_active_rings")
        accepted_rings = {p.ring_id for p in self.posts if p.accepted}
        return sum(1 for ring in self._owned(did) if ring.id in accepted_rings)

    async def count_active_memberships(self, did: str) -> int:
        self._check("count_active_memberships")
        return sum(1 for actor, active in self.memberships if actor == did and active)


class BrokenCounterStore(CounterStore):
    """Every call fails as if the backing store were down."""

    async def _append(self, record) -> None:
        raise StoreUnavailable("counters", "record_action")

    async def count_since(self, actor_did, action, since) -> int:
        raise StoreUnavailable("counters", "count_since")

    async def oldest_since(self, actor_did, action, since):
        raise StoreUnavailable("counters", "oldest_since")

    async def list_since(self, actor_did, action, since, limit=50):
        raise StoreUnavailable("counters", "list_since")

    async def prune_older_than(self, horizon) -> int:
        raise StoreUnavailable("counters", "prune_older_than")


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def counters(clock):
    return InMemoryCounterStore(clock)


@pytest.fixture
def reputation():
    return InMemoryReputationStore()


@pytest.fixture
def actors(clock):
    return InMemoryActorDirectory(clock)


@pytest.fixture
def rings(clock):
    return InMemoryRingDirectory(clock)


@pytest.fixture
def limiter(counters, reputation, actors, rings, clock):
    return RateLimiter(counters, reputation, actors, rings, clock)
