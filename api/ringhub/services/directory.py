"""Read-only views of the hub's actors and rings used by the rate limiter.

The rate limiter never writes here. Both directories raise StoreUnavailable on
failure and leave the fail-open decision to their callers.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ringhub.database import store_session
from ringhub.models.actor import Actor
from ringhub.models.ring import (
    FORK_NOTIFICATION_TYPE,
    Membership,
    MembershipStatus,
    PostRef,
    PostStatus,
    Ring,
)

STORE_NAME = "directory"


@dataclass(frozen=True)
class ActorProfile:
    did: str
    discovered_at: datetime
    trusted: bool = False
    verified: bool = False
    is_admin: bool = False
    name: Optional[str] = None


@dataclass(frozen=True)
class RingSummary:
    id: uuid.UUID
    created_at: datetime


class ActorDirectory(ABC):
    @abstractmethod
    async def get_actor(self, did: str) -> Optional[ActorProfile]: ...


class RingDirectory(ABC):
    @abstractmethod
    async def count_rings_owned_by(self, did: str) -> int: ...

    @abstractmethod
    async def most_recent_ring_owned_by(self, did: str) -> Optional[RingSummary]: ...

    @abstractmethod
    async def count_accepted_posts(
        self, ring_id: uuid.UUID, excluding_notifications: bool = True
    ) -> int: ...

    @abstractmethod
    async def count_accepted_posts_by(self, did: str) -> int: ...

    @abstractmethod
    async def count_active_rings_with_accepted_posts(self, did: str) -> int: ...

    @abstractmethod
    async def count_active_memberships(self, did: str) -> int: ...


class SqlActorDirectory(ActorDirectory):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_actor(self, did: str) -> Optional[ActorProfile]:
        async with store_session(self._session_factory, STORE_NAME, "get_actor") as db:
            result = await db.execute(select(Actor).where(Actor.did == did))
            actor = result.scalar_one_or_none()
            if actor is None:
                return None
            return ActorProfile(
                did=actor.did,
                name=actor.name,
                discovered_at=actor.discovered_at,
                trusted=actor.trusted,
                verified=actor.verified,
                is_admin=actor.is_admin,
            )


def accepted_posts_query(ring_id: uuid.UUID, excluding_notifications: bool = True):
    stmt = (
        select(func.count(PostRef.id))
        .where(PostRef.ring_id == ring_id)
        .where(PostRef.status == PostStatus.ACCEPTED.value)
    )
    if excluding_notifications:
        # Only posts explicitly typed as fork notifications are excluded;
        # missing metadata or a missing type key still counts
        post_type = PostRef.metadata_json["type"].as_string()
        stmt = stmt.where(func.coalesce(post_type, "") != FORK_NOTIFICATION_TYPE)
    return stmt


class SqlRingDirectory(RingDirectory):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _count(self, operation: str, stmt) -> int:
        async with store_session(self._session_factory, STORE_NAME, operation) as db:
            result = await db.execute(stmt)
            return result.scalar_one()

    async def count_rings_owned_by(self, did: str) -> int:
        return await self._count(
            "count_rings_owned_by",
            select(func.count(Ring.id)).where(Ring.owner_did == did),
        )

    async def most_recent_ring_owned_by(self, did: str) -> Optional[RingSummary]:
        async with store_session(self._session_factory, STORE_NAME, "most_recent_ring") as db:
            result = await db.execute(
                select(Ring.id, Ring.created_at)
                .where(Ring.owner_did == did)
                .order_by(Ring.created_at.desc())
                .limit(1)
            )
            row = result.one_or_none()
            if row is None:
                return None
            return RingSummary(id=row.id, created_at=row.created_at)

    async def count_accepted_posts(
        self, ring_id: uuid.UUID, excluding_notifications: bool = True
    ) -> int:
        return await self._count(
            "count_accepted_posts", accepted_posts_query(ring_id, excluding_notifications)
        )

    async def count_accepted_posts_by(self, did: str) -> int:
        return await self._count(
            "count_accepted_posts_by",
            select(func.count(PostRef.id))
            .where(PostRef.actor_did == did)
            .where(PostRef.status == PostStatus.ACCEPTED.value),
        )

    async def count_active_rings_with_accepted_posts(self, did: str) -> int:
        has_accepted_post = (
            select(PostRef.id)
            .where(PostRef.ring_id == Ring.id)
            .where(PostRef.status == PostStatus.ACCEPTED.value)
            .exists()
        )
        return await self._count(
            "count_active_rings",
            select(func.count(Ring.id)).where(Ring.owner_did == did).where(has_accepted_post),
        )

    async def count_active_memberships(self, did: str) -> int:
        return await self._count(
            "count_active_memberships",
            select(func.count(Membership.id))
            .where(Membership.actor_did == did)
            .where(Membership.status == MembershipStatus.ACTIVE.value),
        )
