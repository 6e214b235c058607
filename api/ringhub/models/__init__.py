from .base import Base
from .actor import Actor
from .ring import FORK_NOTIFICATION_TYPE, Membership, MembershipStatus, PostRef, PostStatus, Ring
from .rate_limit import RateLimitRecord
from .reputation import ACTOR_REPUTATION_UNIQUE_CONSTRAINT, ActorReputation, Tier
from .audit_log import AuditLog

__all__ = [
    "Base",
    "Actor",
    "Ring",
    "PostRef",
    "PostStatus",
    "Membership",
    "MembershipStatus",
    "FORK_NOTIFICATION_TYPE",
    "RateLimitRecord",
    "ActorReputation",
    "ACTOR_REPUTATION_UNIQUE_CONSTRAINT",
    "Tier",
    "AuditLog",
]
