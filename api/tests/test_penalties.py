"""Tests for cooldowns and violation history."""

from datetime import timedelta

import pytest

from ringhub.exceptions import ConfigurationError, StoreUnavailable
from ringhub.models.reputation import Tier
from ringhub.services.penalties import CooldownTracker, active_cooldown
from ringhub.services.reputation import NEVER_CALCULATED, ReputationRecord


@pytest.fixture
def tracker(reputation, clock):
    return CooldownTracker(reputation, clock, default_hours=24, max_hours=168)


class TestActiveCooldown:
    def test_no_record(self, clock):
        assert active_cooldown(None, clock.now()) is None

    def test_expired_cooldown_is_inactive(self, clock):
        record = ReputationRecord(
            actor_did="did:a",
            tier=Tier.NEW,
            last_calculated_at=clock.now(),
            cooldown_until=clock.now(),
        )
        assert active_cooldown(record, clock.now()) is None

    def test_future_cooldown_is_active(self, clock):
        until = clock.now() + timedelta(minutes=1)
        record = ReputationRecord(
            actor_did="did:a",
            tier=Tier.NEW,
            last_calculated_at=clock.now(),
            cooldown_until=until,
        )
        assert active_cooldown(record, clock.now()) == until


class TestCooldownTracker:
    @pytest.mark.asyncio
    async def test_apply_defaults_to_24_hours(self, tracker, reputation, clock):
        until = await tracker.apply_cooldown("did:a")
        assert until == clock.now() + timedelta(hours=24)

        record = reputation.records["did:a"]
        assert record.cooldown_until == until
        assert record.violation_count == 1
        assert record.last_violation_at == clock.now()

    @pytest.mark.asyncio
    async def test_apply_demotes_and_counts_violations(self, tracker, reputation, clock):
        await reputation.merge("did:a", tier=Tier.TRUSTED, last_calculated_at=clock.now())
        await tracker.apply_cooldown("did:a", hours=2)
        await tracker.apply_cooldown("did:a", hours=3)

        record = reputation.records["did:a"]
        assert record.tier is Tier.NEW
        assert record.violation_count == 2
        assert record.cooldown_until == clock.now() + timedelta(hours=3)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hours", [0, -1, 169])
    async def test_out_of_range_hours_rejected(self, tracker, hours):
        with pytest.raises(ConfigurationError):
            await tracker.apply_cooldown("did:a", hours=hours)

    @pytest.mark.asyncio
    async def test_is_in_cooldown_expires(self, tracker, clock):
        await tracker.apply_cooldown("did:a", hours=1)
        assert await tracker.is_in_cooldown("did:a")

        clock.advance(timedelta(hours=1))
        assert not await tracker.is_in_cooldown("did:a")

    @pytest.mark.asyncio
    async def test_is_in_cooldown_fails_open(self, tracker, reputation):
        await tracker.apply_cooldown("did:a")
        reputation.failing = True
        assert not await tracker.is_in_cooldown("did:a")

    @pytest.mark.asyncio
    async def test_apply_propagates_store_failure(self, tracker, reputation):
        """An admin asking for a penalty must learn it did not happen."""
        reputation.failing = True
        with pytest.raises(StoreUnavailable):
            await tracker.apply_cooldown("did:a")

    @pytest.mark.asyncio
    async def test_clear_violations_expires_tier_cache(self, tracker, reputation):
        await tracker.apply_cooldown("did:a")
        await reputation.mark_flagged("did:a")

        assert await tracker.clear_violations("did:a")

        record = reputation.records["did:a"]
        assert record.cooldown_until is None
        assert record.violation_count == 0
        assert record.last_violation_at is None
        assert not record.flagged_for_review
        assert record.tier is Tier.NEW
        assert record.last_calculated_at == NEVER_CALCULATED

    @pytest.mark.asyncio
    async def test_clear_violations_unknown_actor(self, tracker):
        assert not await tracker.clear_violations("did:nobody")
