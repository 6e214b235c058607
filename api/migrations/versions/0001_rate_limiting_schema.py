"""Rate limiting schema: actors, rings, action log, reputation, audit trail

Revision ID: c7e1f0a24b9d
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates actors, rings, post_refs, memberships (the directory the tier
classifier and quality gate read), rate_limits (the append-only action log),
actor_reputation (cached tier and penalty state) and audit_logs.

Written by hand; the composite index on rate_limits is the one every
sliding-window count uses, so its column order matters.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON, UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "c7e1f0a24b9d"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False, server_default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.text("now()") if server_default else None,
    )


def upgrade() -> None:
    # --- actors table ---
    op.create_table(
        "actors",
        sa.Column("did", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("trusted", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default="false"),
        _timestamp("discovered_at"),
        _timestamp("last_seen_at", nullable=True, server_default=False),
    )

    # --- rings table ---
    op.create_table(
        "rings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "owner_did",
            sa.String(255),
            sa.ForeignKey("actors.did", name="fk_rings_owner_did_actors"),
            nullable=False,
        ),
        sa.Column(
            "parent_id",
            UUID(as_uuid=True),
            sa.ForeignKey("rings.id", name="fk_rings_parent_id_rings"),
            nullable=True,
        ),
        _timestamp("created_at"),
    )
    op.create_index("ix_rings_owner_did_created_at", "rings", ["owner_did", "created_at"])

    # --- post_refs table ---
    op.create_table(
        "post_refs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "ring_id",
            UUID(as_uuid=True),
            sa.ForeignKey("rings.id", name="fk_post_refs_ring_id_rings"),
            nullable=False,
        ),
        sa.Column("actor_did", sa.String(255), nullable=False),
        sa.Column("uri", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("metadata_json", JSON(), nullable=True),
        _timestamp("submitted_at"),
    )
    op.create_index("ix_post_refs_ring_id_status", "post_refs", ["ring_id", "status"])
    op.create_index("ix_post_refs_actor_did_status", "post_refs", ["actor_did", "status"])

    # --- memberships table ---
    op.create_table(
        "memberships",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "ring_id",
            UUID(as_uuid=True),
            sa.ForeignKey("rings.id", name="fk_memberships_ring_id_rings"),
            nullable=False,
        ),
        sa.Column("actor_did", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        _timestamp("joined_at"),
    )
    op.create_index(
        "ix_memberships_actor_did_status", "memberships", ["actor_did", "status"]
    )

    # --- rate_limits table (append-only action log) ---
    op.create_table(
        "rate_limits",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("actor_did", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("window_type", sa.String(20), nullable=False, server_default="action"),
        # Stamped by the application clock; no server default
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata_json", JSON(), nullable=True),
    )
    op.create_index(
        "ix_rate_limits_actor_action_performed_at",
        "rate_limits",
        ["actor_did", "action", "performed_at"],
    )
    op.create_index("ix_rate_limits_performed_at", "rate_limits", ["performed_at"])

    # --- actor_reputation table ---
    op.create_table(
        "actor_reputation",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("actor_did", sa.String(255), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False, server_default="NEW"),
        sa.Column("reputation_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rings_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_rings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_posts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("membership_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("flagged_for_review", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("violation_count", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("last_violation_at", nullable=True, server_default=False),
        _timestamp("cooldown_until", nullable=True, server_default=False),
        _timestamp("last_calculated_at"),
        _timestamp("created_at"),
        sa.UniqueConstraint("actor_did", name="uq_actor_reputation_actor_did"),
    )
    op.create_index("ix_actor_reputation_tier", "actor_reputation", ["tier"])
    op.create_index(
        "ix_actor_reputation_reputation_score", "actor_reputation", ["reputation_score"]
    )
    op.create_index(
        "ix_actor_reputation_flagged_for_review", "actor_reputation", ["flagged_for_review"]
    )
    op.create_index(
        "ix_actor_reputation_cooldown_until", "actor_reputation", ["cooldown_until"]
    )

    # --- audit_logs table ---
    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("actor_did", sa.String(255), nullable=False),
        sa.Column("target_did", sa.String(255), nullable=True),
        sa.Column("metadata_json", JSON(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_audit_logs_target_did", "audit_logs", ["target_did"])


def downgrade() -> None:
    # Drop tables in reverse dependency order
    op.drop_index("ix_audit_logs_target_did", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_actor_reputation_cooldown_until", table_name="actor_reputation")
    op.drop_index("ix_actor_reputation_flagged_for_review", table_name="actor_reputation")
    op.drop_index("ix_actor_reputation_reputation_score", table_name="actor_reputation")
    op.drop_index("ix_actor_reputation_tier", table_name="actor_reputation")
    op.drop_table("actor_reputation")
    op.drop_index("ix_rate_limits_performed_at", table_name="rate_limits")
    op.drop_index("ix_rate_limits_actor_action_performed_at", table_name="rate_limits")
    op.drop_table("rate_limits")
    op.drop_index("ix_memberships_actor_did_status", table_name="memberships")
    op.drop_table("memberships")
    op.drop_index("ix_post_refs_actor_did_status", table_name="post_refs")
    op.drop_index("ix_post_refs_ring_id_status", table_name="post_refs")
    op.drop_table("post_refs")
    op.drop_index("ix_rings_owner_did_created_at", table_name="rings")
    op.drop_table("rings")
    op.drop_table("actors")
