"""Counter store: the append-only log of rate-limited actions.

Every accepted action is appended as one immutable ActionRecord. Sliding-window
usage is answered by counting records at or after a window start; records are
never updated and are only removed by the retention sweep.

Three backends share one contract:
- SqlCounterStore: rows in the rate_limits table (the default).
- RedisCounterStore: one sorted set per actor+action, scored by timestamp.
- InMemoryCounterStore: process-local lists, for development and tests.

Design notes:
- record_action never raises. The action it records has already happened, so
  a failed write is logged and counted, and the caller carries on.
- Read failures raise StoreUnavailable; the rate limiter decides how to fail
  open for each read.
- No ordering stronger than "an append that returned is visible to the next
  count" is promised. The check-then-record race between two concurrent
  requests of one actor is accepted; see RateLimiter.check_limit.
"""

import json
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ringhub.clock import Clock
from ringhub.database import store_session
from ringhub.exceptions import StoreUnavailable
from ringhub.metrics import store_errors
from ringhub.models.rate_limit import RateLimitRecord

log = structlog.get_logger()

STORE_NAME = "counters"


@dataclass(frozen=True)
class ActionRecord:
    actor_did: str
    action: str
    performed_at: datetime
    metadata: Optional[dict] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class CounterStore(ABC):
    """Contract shared by every counter backend."""

    def __init__(self, clock: Clock) -> None:
        self.clock = clock

    async def record_action(
        self, actor_did: str, action: str, metadata: Optional[dict] = None
    ) -> Optional[ActionRecord]:
        """Append one record stamped with the current time.

        Returns the record, or None when the write failed (already logged).
        """
        record = ActionRecord(
            actor_did=actor_did,
            action=action,
            performed_at=self.clock.now(),
            metadata=metadata,
        )
        try:
            await self._append(record)
        except StoreUnavailable as exc:
            store_errors.labels(store=exc.store, operation=exc.operation).inc()
            log.error(
                "action_record_failed",
                actor_did=actor_did,
                action=action,
                exc_info=exc,
            )
            return None
        return record

    @abstractmethod
    async def _append(self, record: ActionRecord) -> None: ...

    @abstractmethod
    async def count_since(self, actor_did: str, action: str, since: datetime) -> int:
        """Number of records for actor+action with performed_at >= since."""

    @abstractmethod
    async def oldest_since(
        self, actor_did: str, action: str, since: datetime
    ) -> Optional[datetime]:
        """Earliest performed_at >= since, or None if the window is empty."""

    @abstractmethod
    async def list_since(
        self, actor_did: str, action: str, since: datetime, limit: int = 50
    ) -> list[ActionRecord]:
        """Records with performed_at >= since, newest first."""

    @abstractmethod
    async def prune_older_than(self, horizon: datetime) -> int:
        """Delete every record with performed_at < horizon. Returns the number removed."""


class SqlCounterStore(CounterStore):
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], clock: Clock
    ) -> None:
        super().__init__(clock)
        self._session_factory = session_factory

    async def _append(self, record: ActionRecord) -> None:
        async with store_session(self._session_factory, STORE_NAME, "record_action") as db:
            db.add(
                RateLimitRecord(
                    id=record.id,
                    actor_did=record.actor_did,
                    action=record.action,
                    window_type="action",
                    performed_at=record.performed_at,
                    metadata_json=record.metadata,
                )
            )
            await db.commit()

    async def count_since(self, actor_did: str, action: str, since: datetime) -> int:
        async with store_session(self._session_factory, STORE_NAME, "count_since") as db:
            result = await db.execute(
                select(func.count())
                .select_from(RateLimitRecord)
                .where(RateLimitRecord.actor_did == actor_did)
                .where(RateLimitRecord.action == action)
                .where(RateLimitRecord.performed_at >= since)
            )
            return result.scalar_one()

    async def oldest_since(
        self, actor_did: str, action: str, since: datetime
    ) -> Optional[datetime]:
        async with store_session(self._session_factory, STORE_NAME, "oldest_since") as db:
            result = await db.execute(
                select(func.min(RateLimitRecord.performed_at))
                .where(RateLimitRecord.actor_did == actor_did)
                .where(RateLimitRecord.action == action)
                .where(RateLimitRecord.performed_at >= since)
            )
            return result.scalar_one_or_none()

    async def list_since(
        self, actor_did: str, action: str, since: datetime, limit: int = 50
    ) -> list[ActionRecord]:
        async with store_session(self._session_factory, STORE_NAME, "list_since") as db:
            result = await db.execute(
                select(RateLimitRecord)
                .where(RateLimitRecord.actor_did == actor_did)
                .where(RateLimitRecord.action == action)
                .where(RateLimitRecord.performed_at >= since)
                .order_by(RateLimitRecord.performed_at.desc())
                .limit(limit)
            )
            return [
                ActionRecord(
                    id=row.id,
                    actor_did=row.actor_did,
                    action=row.action,
                    performed_at=row.performed_at,
                    metadata=row.metadata_json,
                )
                for row in result.scalars().all()
            ]

    async def prune_older_than(self, horizon: datetime) -> int:
        async with store_session(self._session_factory, STORE_NAME, "prune_older_than") as db:
            result = await db.execute(
                delete(RateLimitRecord)
                .where(RateLimitRecord.performed_at < horizon)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount


class RedisCounterStore(CounterStore):
    """Sorted-set backend.

    Key format: actions:{actor_did}:{action}
    Member: JSON {"id", "metadata"} (unique per record); score: Unix timestamp.
    Keys expire after the retention horizon so idle actors clean themselves up;
    the periodic prune trims the tails of active ones.
    """

    KEY_PREFIX = "actions"

    def __init__(self, redis_client: aioredis.Redis, clock: Clock, retention: timedelta) -> None:
        super().__init__(clock)
        self._redis = redis_client
        self._retention_seconds = int(retention.total_seconds())

    def _key(self, actor_did: str, action: str) -> str:
        return f"{self.KEY_PREFIX}:{actor_did}:{action}"

    async def _append(self, record: ActionRecord) -> None:
        member = json.dumps({"id": record.id.hex, "metadata": record.metadata})
        key = self._key(record.actor_did, record.action)
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.zadd(key, {member: record.performed_at.timestamp()})
            pipe.expire(key, self._retention_seconds)
            await pipe.execute()
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(STORE_NAME, "record_action") from exc

    async def count_since(self, actor_did: str, action: str, since: datetime) -> int:
        try:
            return await self._redis.zcount(
                self._key(actor_did, action), since.timestamp(), "+inf"
            )
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(STORE_NAME, "count_since") from exc

    async def oldest_since(
        self, actor_did: str, action: str, since: datetime
    ) -> Optional[datetime]:
        try:
            rows = await self._redis.zrangebyscore(
                self._key(actor_did, action),
                since.timestamp(),
                "+inf",
                start=0,
                num=1,
                withscores=True,
            )
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(STORE_NAME, "oldest_since") from exc
        if not rows:
            return None
        return datetime.fromtimestamp(rows[0][1], tz=timezone.utc)

    async def list_since(
        self, actor_did: str, action: str, since: datetime, limit: int = 50
    ) -> list[ActionRecord]:
        try:
            rows = await self._redis.zrevrangebyscore(
                self._key(actor_did, action),
                "+inf",
                since.timestamp(),
                start=0,
                num=limit,
                withscores=True,
            )
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(STORE_NAME, "list_since") from exc

        records = []
        for member, score in rows:
            payload = json.loads(member)
            records.append(
                ActionRecord(
                    id=uuid.UUID(payload["id"]),
                    actor_did=actor_did,
                    action=action,
                    performed_at=datetime.fromtimestamp(score, tz=timezone.utc),
                    metadata=payload.get("metadata"),
                )
            )
        return records

    async def prune_older_than(self, horizon: datetime) -> int:
        removed = 0
        try:
            async for key in self._redis.scan_iter(match=f"{self.KEY_PREFIX}:*"):
                # "(" makes the upper bound exclusive: performed_at < horizon
                removed += await self._redis.zremrangebyscore(
                    key, "-inf", f"({horizon.timestamp()}"
                )
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(STORE_NAME, "prune_older_than") from exc
        return removed


class InMemoryCounterStore(CounterStore):
    """Process-local backend. Not shared between workers."""

    def __init__(self, clock: Clock) -> None:
        super().__init__(clock)
        self._records: dict[tuple[str, str], list[ActionRecord]] = defaultdict(list)

    async def _append(self, record: ActionRecord) -> None:
        self._records[(record.actor_did, record.action)].append(record)

    def _window(self, actor_did: str, action: str, since: datetime) -> list[ActionRecord]:
        return [
            r for r in self._records.get((actor_did, action), []) if r.performed_at >= since
        ]

    async def count_since(self, actor_did: str, action: str, since: datetime) -> int:
        return len(self._window(actor_did, action, since))

    async def oldest_since(
        self, actor_did: str, action: str, since: datetime
    ) -> Optional[datetime]:
        window = self._window(actor_did, action, since)
        return min((r.performed_at for r in window), default=None)

    async def list_since(
        self, actor_did: str, action: str, since: datetime, limit: int = 50
    ) -> list[ActionRecord]:
        window = sorted(
            self._window(actor_did, action, since),
            key=lambda r: r.performed_at,
            reverse=True,
        )
        return window[:limit]

    async def prune_older_than(self, horizon: datetime) -> int:
        removed = 0
        for key, records in list(self._records.items()):
            kept = [r for r in records if r.performed_at >= horizon]
            removed += len(records) - len(kept)
            self._records[key] = kept
        return removed


def build_counter_store(
    backend: str,
    clock: Clock,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    redis_client: Optional[aioredis.Redis] = None,
    retention: timedelta = timedelta(days=7),
) -> CounterStore:
    """Construct the configured counter backend."""
    if backend == "postgres":
        if session_factory is None:
            raise ValueError("postgres counter backend requires a session factory")
        return SqlCounterStore(session_factory, clock)
    if backend == "redis":
        if redis_client is None:
            raise ValueError("redis counter backend requires a Redis client")
        return RedisCounterStore(redis_client, clock, retention)
    if backend == "memory":
        return InMemoryCounterStore(clock)
    raise ValueError(f"Unknown counter backend: {backend}")
