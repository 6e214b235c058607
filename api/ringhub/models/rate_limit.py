"""RateLimitRecord ORM model.

Append-only log of rate-limited actions, one row per accepted action. Rows are
never updated; the retention worker deletes rows older than the retention
horizon. The composite index serves the sliding-window count
(actor_did, action, performed_at >= since).
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class RateLimitRecord(Base):
    __tablename__ = "rate_limits"

    __table_args__ = (
        Index("ix_rate_limits_actor_action_performed_at", "actor_did", "action", "performed_at"),
        Index("ix_rate_limits_performed_at", "performed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    actor_did: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    window_type: Mapped[str] = mapped_column(String(20), default="action", nullable=False)

    # Stamped by the application clock, not the database, so window math and
    # stored timestamps share one time source
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    metadata_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
