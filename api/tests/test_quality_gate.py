"""Tests for the fork quality gate."""

from datetime import timedelta

import pytest

from ringhub.services.quality_gate import QUALITY_GATE_REASON, QualityGate


@pytest.fixture
def gate(rings, clock):
    return QualityGate(rings, clock, grace_period=timedelta(hours=1))


class TestQualityGate:
    @pytest.mark.asyncio
    async def test_actor_without_rings_passes(self, gate):
        """First fork is always allowed."""
        result = await gate.check("did:a")
        assert result.passed
        assert result.reason is None

    @pytest.mark.asyncio
    async def test_ring_with_real_post_passes(self, gate, rings):
        ring = rings.add_ring("did:a", age=timedelta(days=2))
        rings.add_post(ring, "did:b")
        assert (await gate.check("did:a")).passed

    @pytest.mark.asyncio
    async def test_empty_ring_past_grace_fails(self, gate, rings):
        rings.add_ring("did:a", age=timedelta(hours=2))
        result = await gate.check("did:a")
        assert not result.passed
        assert result.reason == QUALITY_GATE_REASON

    @pytest.mark.asyncio
    async def test_empty_ring_inside_grace_passes(self, gate, rings):
        rings.add_ring("did:a", age=timedelta(minutes=30))
        assert (await gate.check("did:a")).passed

    @pytest.mark.asyncio
    async def test_fork_notification_does_not_count(self, gate, rings):
        ring = rings.add_ring("did:a", age=timedelta(hours=2))
        rings.add_post(ring, "did:a", notification=True)
        assert not (await gate.check("did:a")).passed

    @pytest.mark.asyncio
    async def test_pending_post_does_not_count(self, gate, rings):
        ring = rings.add_ring("did:a", age=timedelta(hours=2))
        rings.add_post(ring, "did:b", accepted=False)
        assert not (await gate.check("did:a")).passed

    @pytest.mark.asyncio
    async def test_only_most_recent_ring_is_judged(self, gate, rings):
        """An active older ring does not excuse an abandoned newer one."""
        old = rings.add_ring("did:a", age=timedelta(days=10))
        rings.add_post(old, "did:b")
        rings.add_ring("did:a", age=timedelta(hours=3))
        assert not (await gate.check("did:a")).passed

    @pytest.mark.asyncio
    async def test_directory_outage_passes(self, gate, rings):
        rings.add_ring("did:a", age=timedelta(hours=2))
        rings.failing = True
        assert (await gate.check("did:a")).passed
