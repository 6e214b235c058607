"""ActorReputation ORM model.

One row per actor, created lazily the first time the actor's tier is computed,
a violation is recorded, or the actor is flagged for review. The tier column
caches the classifier's output; last_calculated_at is its freshness stamp.

Upsert logic should reference ACTOR_REPUTATION_UNIQUE_CONSTRAINT rather than
hardcoding the constraint name.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

ACTOR_REPUTATION_UNIQUE_CONSTRAINT = "uq_actor_reputation_actor_did"


class Tier(str, enum.Enum):
    """Trust tiers, strictest first.

    ADMIN is a runtime override for admin actors and is never stored.
    """

    NEW = "NEW"
    ESTABLISHED = "ESTABLISHED"
    VETERAN = "VETERAN"
    TRUSTED = "TRUSTED"
    ADMIN = "ADMIN"


STORED_TIERS = (Tier.NEW, Tier.ESTABLISHED, Tier.VETERAN, Tier.TRUSTED)


class ActorReputation(Base):
    __tablename__ = "actor_reputation"

    __table_args__ = (
        UniqueConstraint("actor_did", name=ACTOR_REPUTATION_UNIQUE_CONSTRAINT),
        Index("ix_actor_reputation_tier", "tier"),
        Index("ix_actor_reputation_reputation_score", "reputation_score"),
        Index("ix_actor_reputation_flagged_for_review", "flagged_for_review"),
        Index("ix_actor_reputation_cooldown_until", "cooldown_until"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    actor_did: Mapped[str] = mapped_column(String(255), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), default=Tier.NEW, nullable=False)

    # Activity snapshot taken at the last tier calculation
    reputation_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rings_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active_rings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_posts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    membership_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Penalty state
    flagged_for_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    violation_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_violation_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cooldown_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    last_calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
