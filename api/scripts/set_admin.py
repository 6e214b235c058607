"""Grant or revoke the admin flag on an actor.

Admins bypass every rate limit and may use the /api/v1/admin endpoints, so the
flag is only ever set from the command line, never over HTTP.

Key behaviors:
- Idempotent: setting the flag to its current value reports "unchanged"
- Unknown DIDs are an error unless --create is given
- Writes an audit_logs row for every change

Usage:
    cd api
    DATABASE_URL="postgresql+asyncpg://..." python -m scripts.set_admin did:plc:abc123
    python -m scripts.set_admin did:plc:abc123 --revoke
    python -m scripts.set_admin did:plc:abc123 --create --name "Hub Operator"
"""
import argparse
import asyncio
import sys
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Support running from both project root and api/ directory
_api_root = Path(__file__).parent.parent  # api/
if str(_api_root) not in sys.path:
    sys.path.insert(0, str(_api_root))

from ringhub.config import settings
from ringhub.models.actor import Actor
from ringhub.models.audit_log import AuditLog

CLI_OPERATOR = "cli:set_admin"


async def set_admin(did: str, grant: bool, create: bool, name: str | None) -> int:
    """Apply the flag change. Returns a process exit code."""
    engine = create_async_engine(settings.database_url, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            result = await session.execute(select(Actor).where(Actor.did == did))
            actor = result.scalar_one_or_none()
            created = False

            if actor is None:
                if not create:
                    print(f"Error: no actor with DID {did} (use --create)", file=sys.stderr)
                    return 1
                actor = Actor(did=did, name=name, is_admin=False)
                session.add(actor)
                await session.flush()
                created = True

            if actor.is_admin == grant:
                print(f"{did}: admin={grant} (unchanged)")
                return 0

            actor.is_admin = grant
            session.add(
                AuditLog(
                    action="admin.grant" if grant else "admin.revoke",
                    actor_did=CLI_OPERATOR,
                    target_did=did,
                    metadata_json={"created": created},
                )
            )
            await session.commit()
    finally:
        await engine.dispose()

    print(f"{did}: admin={grant}")
    return 0


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Grant or revoke Ring Hub admin access")
    parser.add_argument("did", help="Actor DID, e.g. did:plc:abc123")
    parser.add_argument(
        "--revoke",
        action="store_true",
        help="Remove the admin flag instead of setting it",
    )
    parser.add_argument(
        "--create",
        action="store_true",
        help="Create the actor if it does not exist yet",
    )
    parser.add_argument("--name", default=None, help="Display name when creating the actor")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    sys.exit(asyncio.run(set_admin(args.did, not args.revoke, args.create, args.name)))
