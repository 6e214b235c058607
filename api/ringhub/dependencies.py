from typing import Annotated, Optional

import structlog
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from ringhub.config import settings
from ringhub.database import get_db
from ringhub.services.rate_limiting import RateLimiter

DbSession = Annotated[AsyncSession, Depends(get_db)]

# Set by the upstream gateway after signature verification
# auto_error=False so a missing header is a 401, not FastAPI's default 403.
actor_header = APIKeyHeader(name=settings.actor_header_name, auto_error=False)


async def get_rate_limiter(request: Request) -> RateLimiter:
    """Inject the RateLimiter from app.state (built during lifespan startup)."""
    return request.app.state.rate_limiter


async def get_current_actor(
    actor_did: Optional[str] = Security(actor_header),
) -> str:
    """Return the already-verified actor DID for this request.

    Raises 401 when the gateway did not forward an identity.
    """
    if not actor_did:
        raise HTTPException(status_code=401, detail="Authentication required")
    structlog.contextvars.bind_contextvars(actor_did=actor_did)
    return actor_did


# Annotated type aliases for clean endpoint signatures
CurrentActor = Annotated[str, Depends(get_current_actor)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]


async def require_admin(actor_did: CurrentActor, limiter: Limiter) -> str:
    """Gate: the current actor must carry the admin flag. Raises 403 otherwise."""
    if not await limiter.is_admin(actor_did):
        raise HTTPException(status_code=403, detail="Admin access required")
    return actor_did


RequireAdmin = Annotated[str, Depends(require_admin)]
