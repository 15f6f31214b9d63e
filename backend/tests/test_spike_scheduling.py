"""
Tests for spike scheduling — constraint checker and scheduler.

Covers:
  - Concurrency cap over the full candidate window
  - Type cooldown (scheduled neighbours and recorded last starts)
  - Guaranteed generation: grace period, cap, cooldown relaxation
  - Random generation: window, weights, scoping skips
  - Initial seeding
"""

import random

import pytest

from conftest import add_spike
from core.config import Settings
from db.enums import ALL_SPIKE_TYPES, SpikeType
from db.models import Simulation
from simulation.context import SimulationContext
from simulation.events import EventDispatcher
from spikes.constraints import SpikeConstraintChecker
from spikes.scheduler import MAGNITUDE_RANGES, SpikeScheduler

# ── Constraint checker ─────────────────────────────────────────────────


class TestConstraintChecker:
    @pytest.mark.asyncio
    async def test_counts_spikes_covering_half_open_window(self, test_db, world, settings):
        simulation = world["simulation"]
        add_spike(test_db, simulation, starts_at_day=2, duration=3)  # [2, 5)
        await test_db.flush()
        checker = SpikeConstraintChecker(test_db, simulation, settings)

        assert await checker.spike_count_covering_day(1) == 0
        assert await checker.spike_count_covering_day(2) == 1
        assert await checker.spike_count_covering_day(4) == 1
        assert await checker.spike_count_covering_day(5) == 0

    @pytest.mark.asyncio
    async def test_cap_checked_across_whole_window(self, test_db, world, settings):
        simulation = world["simulation"]
        add_spike(test_db, simulation, starts_at_day=6, duration=2)
        add_spike(test_db, simulation, "delay", starts_at_day=6, duration=2)
        await test_db.flush()
        checker = SpikeConstraintChecker(test_db, simulation, settings)

        assert await checker.can_schedule(2, 3) is True  # [2, 5)
        assert await checker.can_schedule(4, 3) is False  # [4, 7) overlaps day 6

    @pytest.mark.asyncio
    async def test_cooldown_blocks_types_starting_nearby(self, test_db, world, settings):
        simulation = world["simulation"]
        add_spike(test_db, simulation, "price", starts_at_day=5, duration=2)
        await test_db.flush()
        checker = SpikeConstraintChecker(test_db, simulation, settings)

        assert SpikeType.PRICE not in await checker.allowed_types(3)
        assert SpikeType.PRICE not in await checker.allowed_types(7)
        assert SpikeType.PRICE in await checker.allowed_types(8)
        assert SpikeType.DEMAND in await checker.allowed_types(5)

    @pytest.mark.asyncio
    async def test_recorded_last_start_blocks_type(self, test_db, world, settings):
        simulation = world["simulation"]
        checker = SpikeConstraintChecker(test_db, simulation, settings)
        checker.record_spike_started("breakdown", 4)

        assert simulation.spike_cooldowns == {"breakdown": 4}
        assert SpikeType.BREAKDOWN not in await checker.allowed_types(6)
        assert SpikeType.BREAKDOWN in await checker.allowed_types(7)

    @pytest.mark.asyncio
    async def test_allowed_types_may_be_empty(self, test_db, world, settings):
        simulation = world["simulation"]
        for spike_type in ALL_SPIKE_TYPES:
            add_spike(test_db, simulation, spike_type.value, starts_at_day=10, duration=2)
        await test_db.flush()
        checker = SpikeConstraintChecker(test_db, simulation, settings)

        assert await checker.allowed_types(10) == []


# ── Guaranteed generation ──────────────────────────────────────────────


class TestGuaranteedSpikes:
    @pytest.mark.asyncio
    async def test_no_guaranteed_spike_on_first_day(self, world, make_ctx):
        scheduler = SpikeScheduler(make_ctx(world["simulation"]))
        assert await scheduler.generate_guaranteed(1) is None

    @pytest.mark.asyncio
    async def test_guaranteed_spike_starts_today(self, world, make_ctx):
        scheduler = SpikeScheduler(make_ctx(world["simulation"]))

        spike = await scheduler.generate_guaranteed(3)

        assert spike is not None
        assert spike.is_guaranteed is True
        assert spike.starts_at_day == 3
        assert 2 <= spike.duration <= 5
        assert spike.ends_at_day == 3 + spike.duration
        assert spike.is_active is False

    @pytest.mark.asyncio
    async def test_at_cap_returns_none_and_count_unchanged(self, test_db, world, make_ctx):
        simulation = world["simulation"]
        add_spike(test_db, simulation, "demand", starts_at_day=2, duration=8)  # [2, 10)
        add_spike(test_db, simulation, "price", starts_at_day=2, duration=8)
        await test_db.flush()
        scheduler = SpikeScheduler(make_ctx(simulation))

        assert await scheduler.generate_guaranteed(2) is None
        assert await scheduler.checker.spike_count_covering_day(2) == 2

    @pytest.mark.asyncio
    async def test_cooldown_relaxed_only_when_nothing_else_fits(self, test_db, world, make_ctx):
        simulation = world["simulation"]
        simulation.spike_cooldowns = {spike_type.value: 4 for spike_type in ALL_SPIKE_TYPES}
        await test_db.flush()
        scheduler = SpikeScheduler(make_ctx(simulation))

        spike = await scheduler.generate_guaranteed(5)

        assert spike is not None
        assert spike.meta.get("cooldown_relaxed") is True

    @pytest.mark.asyncio
    async def test_strict_cooldown_respected_when_types_remain(self, test_db, world, make_ctx):
        simulation = world["simulation"]
        blocked = {"demand": 4, "delay": 4, "price": 4, "breakdown": 4}
        simulation.spike_cooldowns = blocked
        await test_db.flush()
        scheduler = SpikeScheduler(make_ctx(simulation))

        spike = await scheduler.generate_guaranteed(5)

        assert spike.spike_type == SpikeType.BLIZZARD
        assert spike.route_id is not None
        assert "cooldown_relaxed" not in spike.meta

    @pytest.mark.asyncio
    async def test_ensure_skips_when_day_already_covered(self, test_db, world, make_ctx):
        simulation = world["simulation"]
        add_spike(test_db, simulation, starts_at_day=3, duration=2)
        await test_db.flush()
        scheduler = SpikeScheduler(make_ctx(simulation))

        assert await scheduler.ensure_guaranteed_spike(4) is None
        assert await scheduler.ensure_guaranteed_spike(5) is not None


# ── Random generation ──────────────────────────────────────────────────


def _ctx(test_db, simulation, weights, seed=11):
    return SimulationContext(
        db=test_db,
        simulation=simulation,
        events=EventDispatcher(),
        rng=random.Random(seed),
        settings=Settings(spike_type_weights=weights),
    )


class TestRandomSpikes:
    @pytest.mark.asyncio
    async def test_window_starts_tomorrow(self, test_db, world):
        scheduler = SpikeScheduler(_ctx(test_db, world["simulation"], {"demand": 40}))

        spike = await scheduler.generate_random(4)

        assert spike.spike_type == SpikeType.DEMAND
        assert spike.starts_at_day == 5
        assert spike.ends_at_day == 5 + spike.duration
        assert spike.is_guaranteed is False

    @pytest.mark.asyncio
    async def test_zero_weight_types_never_drawn(self, test_db, world):
        scheduler = SpikeScheduler(_ctx(test_db, world["simulation"], {"price": 30, "blizzard": 0}))
        drawn = {scheduler.weighted_type(list(ALL_SPIKE_TYPES)) for _ in range(200)}
        assert drawn == {SpikeType.PRICE}

    @pytest.mark.asyncio
    async def test_no_positive_weight_skips(self, test_db, world):
        scheduler = SpikeScheduler(_ctx(test_db, world["simulation"], {}))
        assert await scheduler.generate_random(2) is None

    @pytest.mark.asyncio
    async def test_at_cap_skips(self, test_db, world):
        simulation = world["simulation"]
        add_spike(test_db, simulation, "delay", starts_at_day=3, duration=10)
        add_spike(test_db, simulation, "price", starts_at_day=3, duration=10)
        await test_db.flush()
        scheduler = SpikeScheduler(_ctx(test_db, simulation, {"demand": 40}))

        assert await scheduler.generate_random(2) is None

    @pytest.mark.asyncio
    async def test_cooldown_blocked_type_skips(self, test_db, world):
        simulation = world["simulation"]
        simulation.spike_cooldowns = {"demand": 3}
        scheduler = SpikeScheduler(_ctx(test_db, simulation, {"demand": 40}))

        assert await scheduler.generate_random(3) is None

    @pytest.mark.asyncio
    async def test_breakdown_always_scoped_to_location(self, test_db, world):
        scheduler = SpikeScheduler(_ctx(test_db, world["simulation"], {"breakdown": 10}))

        spike = await scheduler.generate_random(2)

        assert spike.spike_type == SpikeType.BREAKDOWN
        assert spike.location_id is not None
        assert spike.product_id is None
        assert 0.2 <= spike.magnitude <= 0.7

    @pytest.mark.asyncio
    async def test_breakdown_without_locations_skips(self, test_db):
        simulation = Simulation(name="Empty", day=1, cash=0, spike_cooldowns={})
        test_db.add(simulation)
        await test_db.flush()
        scheduler = SpikeScheduler(_ctx(test_db, simulation, {"breakdown": 10}))

        assert await scheduler.generate_random(2) is None

    @pytest.mark.asyncio
    async def test_magnitudes_stay_in_type_ranges(self, test_db, world):
        scheduler = SpikeScheduler(_ctx(test_db, world["simulation"], {"demand": 1}))
        for spike_type, (low, high) in MAGNITUDE_RANGES.items():
            for _ in range(50):
                magnitude = scheduler.random_magnitude(spike_type)
                assert low <= magnitude <= high
        assert all(scheduler.random_magnitude(SpikeType.DELAY).is_integer() for _ in range(20))


# ── Seeding ────────────────────────────────────────────────────────────


class TestSeeding:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    async def test_seeds_three_to_five_early_spikes_within_cap(self, test_db, world, make_ctx, seed):
        ctx = make_ctx(world["simulation"], seed=seed)
        scheduler = SpikeScheduler(ctx)

        seeded = await scheduler.seed_initial_spikes()

        assert 3 <= len(seeded) <= 5
        start_days = [spike.starts_at_day for spike in seeded]
        assert len(set(start_days)) == len(start_days)
        assert all(2 <= day <= 7 for day in start_days)
        assert all(spike.is_guaranteed for spike in seeded)
        for day in range(1, 15):
            assert await scheduler.checker.spike_count_covering_day(day) <= 2
