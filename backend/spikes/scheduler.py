"""
Spike Scheduler — random, guaranteed and seeded spike generation.

    generate_random(day)       window [day+1, day+1+duration), weighted type,
                               skipped when the cap or cooldown refuses it
    generate_guaranteed(day)   window [day, day+duration), never on day <= 1,
                               cooldown relaxed to every type if nothing else fits
    ensure_guaranteed_spike    guaranteed spike only when nothing covers the day
    seed_initial_spikes        3-5 guaranteed spikes across the early game

Every "no spike" outcome returns None and is logged, never raised.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

import structlog
from sqlalchemy import select

from db.enums import ALL_SPIKE_TYPES, SpikeType
from db.models import Location, Product, Route, SpikeEvent
from simulation.context import SimulationContext
from spikes.constraints import SpikeConstraintChecker

logger = structlog.get_logger()

MAGNITUDE_RANGES: dict[SpikeType, tuple[float, float]] = {
    SpikeType.DEMAND: (1.2, 2.0),
    SpikeType.DELAY: (1, 3),  # whole days
    SpikeType.PRICE: (1.1, 1.5),
    SpikeType.BREAKDOWN: (0.2, 0.7),  # fraction of storage lost
    SpikeType.BLIZZARD: (1.0, 1.0),
}


class SpikeScheduler:
    def __init__(self, ctx: SimulationContext, checker: SpikeConstraintChecker | None = None):
        self.ctx = ctx
        self.checker = checker or SpikeConstraintChecker(ctx.db, ctx.simulation, ctx.settings)

    # ── Random draws ───────────────────────────────────────────────────────

    def random_duration(self) -> int:
        return self.ctx.rng.randint(self.ctx.settings.spike_duration_min, self.ctx.settings.spike_duration_max)

    def random_magnitude(self, spike_type: SpikeType) -> float:
        low, high = MAGNITUDE_RANGES[spike_type]
        if spike_type == SpikeType.DELAY:
            return float(self.ctx.rng.randint(int(low), int(high)))
        if low == high:
            return low
        # Two-decimal steps, as a percentage draw
        return round(self.ctx.rng.randint(int(round(low * 100)), int(round(high * 100))) / 100, 2)

    def weighted_type(self, allowed: Sequence[SpikeType]) -> SpikeType | None:
        weights = self.ctx.settings.spike_type_weights
        candidates = [(t, int(weights.get(t.value, 0))) for t in allowed]
        candidates = [(t, w) for t, w in candidates if w > 0]
        if not candidates:
            return None

        total = sum(w for _, w in candidates)
        pick = self.ctx.rng.randint(1, total)
        running = 0
        for spike_type, weight in candidates:
            running += weight
            if pick <= running:
                return spike_type
        return candidates[-1][0]

    # ── Scoping ────────────────────────────────────────────────────────────

    async def _random_row_id(self, model, id_column, *criteria) -> uuid.UUID | None:
        rows = (
            await self.ctx.db.execute(
                select(id_column).where(model.simulation_id == self.ctx.simulation_id, *criteria).order_by(id_column)
            )
        ).scalars().all()
        if not rows:
            return None
        return self.ctx.rng.choice(list(rows))

    async def build_spike(
        self,
        spike_type: SpikeType,
        start_day: int,
        duration: int,
        *,
        is_guaranteed: bool,
        meta: dict | None = None,
    ) -> SpikeEvent | None:
        """Scope and persist a spike of the given type; None when the type cannot be scoped."""
        location_id = product_id = route_id = None

        if spike_type == SpikeType.BLIZZARD:
            route_id = await self._random_row_id(Route, Route.route_id, Route.weather_vulnerable.is_(True))
            if route_id is None:
                logger.info("spike.skipped", reason="no_weather_vulnerable_route", day=start_day)
                return None
        elif spike_type == SpikeType.BREAKDOWN or self.ctx.rng.randint(0, 100) > 50:
            location_id = await self._random_row_id(Location, Location.location_id)
            if spike_type == SpikeType.BREAKDOWN and location_id is None:
                logger.info("spike.skipped", reason="breakdown_without_location", day=start_day)
                return None

        if spike_type not in (SpikeType.BREAKDOWN, SpikeType.BLIZZARD) and self.ctx.rng.randint(0, 100) > 50:
            product_id = await self._random_row_id(Product, Product.product_id)

        spike = SpikeEvent(
            simulation_id=self.ctx.simulation_id,
            spike_type=spike_type.value,
            magnitude=self.random_magnitude(spike_type),
            duration=duration,
            location_id=location_id,
            product_id=product_id,
            route_id=route_id,
            starts_at_day=start_day,
            ends_at_day=start_day + duration,
            is_active=False,
            is_guaranteed=is_guaranteed,
            meta=dict(meta or {}),
            action_log=[],
        )
        self.ctx.db.add(spike)
        await self.ctx.db.flush()

        logger.info(
            "spike.scheduled",
            spike_id=str(spike.spike_id),
            spike_type=spike.spike_type,
            starts_at_day=spike.starts_at_day,
            ends_at_day=spike.ends_at_day,
            magnitude=spike.magnitude,
            is_guaranteed=is_guaranteed,
        )
        return spike

    # ── Generation ─────────────────────────────────────────────────────────

    async def generate_random(self, day: int) -> SpikeEvent | None:
        start_day = day + 1
        duration = self.random_duration()

        if not await self.checker.can_schedule(start_day, duration):
            logger.info("spike.skipped", reason="at_cap", day=start_day, duration=duration)
            return None

        allowed = await self.checker.allowed_types(start_day)
        spike_type = self.weighted_type(allowed)
        if spike_type is None:
            logger.info("spike.skipped", reason="cooldown", day=start_day)
            return None

        return await self.build_spike(spike_type, start_day, duration, is_guaranteed=False)

    async def generate_guaranteed(self, day: int) -> SpikeEvent | None:
        # Tutorial grace period
        if day <= 1:
            return None

        duration = self.random_duration()
        if not await self.checker.can_schedule(day, duration):
            logger.info("spike.skipped", reason="at_cap", day=day, duration=duration, guaranteed=True)
            return None

        allowed = await self.checker.allowed_types(day)
        relaxed = not allowed
        if relaxed:
            allowed = list(ALL_SPIKE_TYPES)
            logger.info("spike.cooldown_relaxed", day=day)

        # A type that cannot be scoped (e.g. no vulnerable routes) falls through to the next one.
        candidates = list(allowed)
        self.ctx.rng.shuffle(candidates)
        for spike_type in candidates:
            spike = await self.build_spike(
                spike_type,
                day,
                duration,
                is_guaranteed=True,
                meta={"cooldown_relaxed": True} if relaxed else None,
            )
            if spike is not None:
                return spike
        return None

    async def ensure_guaranteed_spike(self, day: int) -> SpikeEvent | None:
        if day <= 1:
            return None
        if await self.checker.spike_count_covering_day(day) > 0:
            return None
        return await self.generate_guaranteed(day)

    async def seed_initial_spikes(self) -> list[SpikeEvent]:
        settings = self.ctx.settings
        available_days = list(settings.seed_spike_days)
        count = self.ctx.rng.randint(settings.seed_spike_count_min, settings.seed_spike_count_max)
        selected_days = sorted(self.ctx.rng.sample(available_days, min(count, len(available_days))))

        last_start_by_type: dict[SpikeType, int] = {}
        seeded: list[SpikeEvent] = []

        for day in selected_days:
            allowed = [
                t
                for t in ALL_SPIKE_TYPES
                if t not in last_start_by_type or day - last_start_by_type[t] > settings.type_cooldown_days
            ]
            relaxed = not allowed
            if relaxed:
                allowed = list(ALL_SPIKE_TYPES)

            duration = await self._shortest_duration_that_fits(day)
            if duration is None:
                continue

            candidates = list(allowed)
            self.ctx.rng.shuffle(candidates)
            for spike_type in candidates:
                spike = await self.build_spike(
                    spike_type,
                    day,
                    duration,
                    is_guaranteed=True,
                    meta={"cooldown_relaxed": True} if relaxed else None,
                )
                if spike is not None:
                    last_start_by_type[spike_type] = day
                    seeded.append(spike)
                    break

        logger.info("spike.seeded", simulation_id=str(self.ctx.simulation_id), count=len(seeded))
        return seeded

    async def _shortest_duration_that_fits(self, start_day: int) -> int | None:
        # Shorter windows leave cap room for the remaining seeded spikes.
        settings = self.ctx.settings
        for duration in range(settings.spike_duration_min, settings.spike_duration_max + 1):
            if await self.checker.can_schedule(start_day, duration):
                return duration
        return None
