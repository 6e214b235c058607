"""Audit trail for administrative actions."""

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ringhub.database import DB_ERRORS
from ringhub.models.audit_log import AuditLog

log = structlog.get_logger()


async def record_admin_action(
    db: AsyncSession,
    *,
    action: str,
    admin_did: str,
    target_did: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> bool:
    """Append an audit row and commit it.

    The audited action has already taken effect, so a failed write is logged
    and reported as False rather than raised.
    """
    db.add(
        AuditLog(
            action=action,
            actor_did=admin_did,
            target_did=target_did,
            metadata_json=metadata,
        )
    )
    try:
        await db.commit()
    except DB_ERRORS:
        await db.rollback()
        log.error(
            "audit_log_write_failed",
            action=action,
            admin_did=admin_did,
            target_did=target_did,
            exc_info=True,
        )
        return False
    return True
