"""Tests for tier quotas and the tier classifier."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from ringhub.exceptions import UnknownActionError
from ringhub.models.reputation import STORED_TIERS, Tier
from ringhub.services.tiers import (
    FORK_ACTION,
    FORK_LIMITS,
    MAX_ACTIONS_PER_HOUR,
    TierClassifier,
    WindowLimits,
    classify_tier,
    compute_reputation_score,
    limits_for,
)


class TestWindowLimits:
    @pytest.mark.parametrize("tier", STORED_TIERS)
    def test_windows_widen_and_respect_burst_cap(self, tier):
        """Every tier: hourly <= daily <= weekly and hourly <= 2."""
        limits = limits_for(FORK_ACTION, tier)
        assert limits.hourly <= limits.daily <= limits.weekly
        assert limits.hourly <= MAX_ACTIONS_PER_HOUR

    def test_new_tier_is_strictest(self):
        assert limits_for(FORK_ACTION, Tier.NEW) == WindowLimits(hourly=1, daily=1, weekly=3)

    def test_trusted_tier_quota(self):
        assert limits_for(FORK_ACTION, Tier.TRUSTED) == WindowLimits(hourly=2, daily=10, weekly=50)

    def test_narrowing_windows_rejected(self):
        with pytest.raises(ValidationError):
            WindowLimits(hourly=3, daily=2, weekly=10)

    def test_hourly_cap_clamped(self, monkeypatch):
        """A table entry above the burst cap is clamped, not trusted."""
        monkeypatch.setitem(
            FORK_LIMITS, Tier.TRUSTED, WindowLimits(hourly=5, daily=10, weekly=50)
        )
        assert limits_for(FORK_ACTION, Tier.TRUSTED).hourly == MAX_ACTIONS_PER_HOUR

    def test_unknown_action_raises(self):
        with pytest.raises(UnknownActionError):
            limits_for("delete_ring", Tier.NEW)


class TestClassifyTier:
    def test_brand_new_account_is_new(self, actors, clock):
        assert classify_tier(actors.add("did:a", age_days=0), clock.now()) is Tier.NEW

    def test_boundaries(self, actors, clock):
        now = clock.now()
        assert classify_tier(actors.add("did:a", age_days=6.9), now) is Tier.NEW
        assert classify_tier(actors.add("did:b", age_days=7), now) is Tier.ESTABLISHED
        assert classify_tier(actors.add("did:c", age_days=29), now) is Tier.ESTABLISHED
        assert classify_tier(actors.add("did:d", age_days=30), now) is Tier.VETERAN

    def test_trusted_flag_wins_regardless_of_age(self, actors, clock):
        profile = actors.add("did:a", age_days=0, trusted=True)
        assert classify_tier(profile, clock.now()) is Tier.TRUSTED

    def test_verified_needs_more_than_ninety_days(self, actors, clock):
        now = clock.now()
        assert classify_tier(actors.add("did:a", age_days=90, verified=True), now) is Tier.VETERAN
        assert classify_tier(actors.add("did:b", age_days=91, verified=True), now) is Tier.TRUSTED


class TestReputationScore:
    def test_weights(self):
        assert compute_reputation_score(active_rings=2, total_posts=3, membership_count=4) == 30


class TestTierClassifier:
    def _classifier(self, reputation, actors, rings, clock):
        return TierClassifier(reputation, actors, rings, clock, cache_ttl=timedelta(hours=1))

    @pytest.mark.asyncio
    async def test_unknown_actor_is_new_and_not_persisted(self, reputation, actors, rings, clock):
        classifier = self._classifier(reputation, actors, rings, clock)
        assert await classifier.resolve_tier("did:ghost") is Tier.NEW
        assert "did:ghost" not in reputation.records

    @pytest.mark.asyncio
    async def test_recalculation_persists_tier_and_score(self, reputation, actors, rings, clock):
        actors.add("did:a", age_days=40)
        ring = rings.add_ring("did:a", age=timedelta(days=3))
        rings.add_post(ring, "did:a")
        rings.add_membership("did:a")

        classifier = self._classifier(reputation, actors, rings, clock)
        assert await classifier.resolve_tier("did:a") is Tier.VETERAN

        record = reputation.records["did:a"]
        assert record.tier is Tier.VETERAN
        assert record.rings_created == 1
        assert record.reputation_score == 10 + 2 + 1
        assert record.last_calculated_at == clock.now()

    @pytest.mark.asyncio
    async def test_fresh_cache_is_served(self, reputation, actors, rings, clock):
        """Within the TTL the stored tier wins even if account facts changed."""
        actors.add("did:a", age_days=10)
        classifier = self._classifier(reputation, actors, rings, clock)
        assert await classifier.resolve_tier("did:a") is Tier.ESTABLISHED

        actors.add("did:a", age_days=10, trusted=True)
        clock.advance(timedelta(minutes=59))
        assert await classifier.resolve_tier("did:a") is Tier.ESTABLISHED

    @pytest.mark.asyncio
    async def test_stale_cache_is_recomputed(self, reputation, actors, rings, clock):
        actors.add("did:a", age_days=10)
        classifier = self._classifier(reputation, actors, rings, clock)
        await classifier.resolve_tier("did:a")

        actors.add("did:a", age_days=10, trusted=True)
        clock.advance(timedelta(hours=1))
        assert await classifier.resolve_tier("did:a") is Tier.TRUSTED

    @pytest.mark.asyncio
    async def test_directory_outage_yields_new(self, reputation, actors, rings, clock):
        actors.add("did:a", age_days=400, trusted=True)
        actors.failing = True
        classifier = self._classifier(reputation, actors, rings, clock)
        assert await classifier.resolve_tier("did:a") is Tier.NEW

    @pytest.mark.asyncio
    async def test_persist_failure_still_returns_computed_tier(
        self, reputation, actors, rings, clock
    ):
        actors.add("did:a", age_days=400, trusted=True)
        rings.failing = True
        classifier = self._classifier(reputation, actors, rings, clock)
        assert await classifier.resolve_tier("did:a") is Tier.TRUSTED
        assert "did:a" not in reputation.records
