"""Tests for the PostgreSQL statements behind the SQL stores.

The in-memory fakes cover behaviour; these compile the production statements
with the postgresql dialect and check the clauses that the fakes cannot.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.dialects import postgresql

from ringhub.models.reputation import ACTOR_REPUTATION_UNIQUE_CONSTRAINT, Tier
from ringhub.models.ring import FORK_NOTIFICATION_TYPE, PostStatus
from ringhub.services.directory import accepted_posts_query
from ringhub.services.reputation import (
    NEVER_CALCULATED,
    clear_violations_update,
    flag_upsert,
    violation_upsert,
)

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _compile(stmt):
    return stmt.compile(dialect=postgresql.dialect())


def _update_clause(sql: str) -> str:
    return sql.split("DO UPDATE SET", 1)[1]


class TestAcceptedPostsQuery:
    def test_excludes_only_typed_fork_notifications(self):
        compiled = _compile(accepted_posts_query(uuid.uuid4()))
        sql = str(compiled)
        params = list(compiled.params.values())

        assert "post_refs.metadata_json ->>" in sql
        assert "coalesce(" in sql
        assert "!=" in sql
        assert "type" in params
        assert FORK_NOTIFICATION_TYPE in params
        assert PostStatus.ACCEPTED.value in params

    def test_missing_type_coalesces_to_empty_string(self):
        """NULL metadata must compare as '' so the post still counts."""
        compiled = _compile(accepted_posts_query(uuid.uuid4()))
        assert "" in compiled.params.values()

    def test_all_accepted_posts_when_not_excluding(self):
        compiled = _compile(accepted_posts_query(uuid.uuid4(), excluding_notifications=False))
        sql = str(compiled)

        assert "coalesce(" not in sql
        assert "->>" not in sql
        assert PostStatus.ACCEPTED.value in compiled.params.values()


class TestViolationUpsert:
    @pytest.fixture
    def compiled(self):
        return _compile(violation_upsert("did:a", NOW, NOW + timedelta(hours=24)))

    def test_conflicts_on_actor_constraint(self, compiled):
        assert (
            f"ON CONFLICT ON CONSTRAINT {ACTOR_REPUTATION_UNIQUE_CONSTRAINT} DO UPDATE"
            in str(compiled)
        )

    def test_increments_existing_count(self, compiled):
        assert "actor_reputation.violation_count +" in _update_clause(str(compiled))

    def test_demotes_and_refreshes_cache(self, compiled):
        update = _update_clause(str(compiled))
        assert "tier" in update
        assert "last_calculated_at" in update
        assert "cooldown_until" in update

        assert compiled.params["tier"] == Tier.NEW.value
        assert compiled.params["last_calculated_at"] == NOW
        assert compiled.params["violation_count"] == 1


class TestFlagUpsert:
    @pytest.fixture
    def compiled(self):
        return _compile(flag_upsert("did:a"))

    def test_conflicts_on_actor_constraint(self, compiled):
        assert (
            f"ON CONFLICT ON CONSTRAINT {ACTOR_REPUTATION_UNIQUE_CONSTRAINT} DO UPDATE"
            in str(compiled)
        )

    def test_existing_row_only_gains_the_flag(self, compiled):
        """Flagging must not touch the tier or its cache timestamp."""
        update = _update_clause(str(compiled))
        assert "flagged_for_review" in update
        assert "tier" not in update
        assert "last_calculated_at" not in update

    def test_new_row_is_never_calculated(self, compiled):
        assert compiled.params["last_calculated_at"] == NEVER_CALCULATED
        assert compiled.params["flagged_for_review"] is True


class TestClearViolationsUpdate:
    def test_resets_penalties_and_expires_cache(self):
        compiled = _compile(clear_violations_update("did:a"))
        sql = str(compiled)
        params = compiled.params

        assert sql.startswith("UPDATE actor_reputation SET")
        assert params["flagged_for_review"] is False
        assert params["violation_count"] == 0
        assert params["last_violation_at"] is None
        assert params["cooldown_until"] is None
        assert params["last_calculated_at"] == NEVER_CALCULATED
        assert "did:a" in params.values()

    def test_leaves_stored_tier_alone(self):
        sql = str(_compile(clear_violations_update("did:a")))
        assert " tier=" not in sql
