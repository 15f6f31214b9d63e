"""
Spike Constraint Checker — concurrency cap and per-type cooldown.

Rules:
  - Cap: no day may be covered by more than max_active_spikes spike windows.
    The cap is checked against the candidate's full window, so a spike that
    fits today cannot overflow a later day.
  - Cooldown: a type is blocked when a spike of that type starts within
    ±type_cooldown_days of the candidate start day, or when the simulation's
    recorded last start for that type is within type_cooldown_days.

A refusal is a normal outcome: callers skip generation, nothing is raised.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.enums import ALL_SPIKE_TYPES, SpikeType
from db.models import Simulation, SpikeEvent


class SpikeConstraintChecker:
    def __init__(self, db: AsyncSession, simulation: Simulation, settings: Settings | None = None):
        self.db = db
        self.simulation = simulation
        self.settings = settings or get_settings()

    @property
    def max_active_spikes(self) -> int:
        return self.settings.max_active_spikes

    @property
    def cooldown_days(self) -> int:
        return self.settings.type_cooldown_days

    async def spike_count_covering_day(self, day: int) -> int:
        """Spikes whose window [starts_at_day, ends_at_day) contains the day."""
        result = await self.db.execute(
            select(func.count(SpikeEvent.spike_id)).where(
                SpikeEvent.simulation_id == self.simulation.simulation_id,
                SpikeEvent.starts_at_day <= day,
                SpikeEvent.ends_at_day > day,
            )
        )
        return int(result.scalar() or 0)

    async def can_schedule(self, start_day: int, duration: int) -> bool:
        for day in range(start_day, start_day + duration):
            if await self.spike_count_covering_day(day) >= self.max_active_spikes:
                return False
        return True

    async def allowed_types(self, start_day: int) -> list[SpikeType]:
        """Types not blocked by cooldown. May be empty; relaxing is the caller's call."""
        result = await self.db.execute(
            select(SpikeEvent.spike_type)
            .where(
                SpikeEvent.simulation_id == self.simulation.simulation_id,
                SpikeEvent.starts_at_day >= start_day - self.cooldown_days,
                SpikeEvent.starts_at_day <= start_day + self.cooldown_days,
            )
            .distinct()
        )
        scheduled_types = {str(row) for row in result.scalars().all()}
        cooldowns = self.simulation.spike_cooldowns or {}

        allowed = []
        for spike_type in ALL_SPIKE_TYPES:
            if spike_type.value in scheduled_types:
                continue
            last_start = cooldowns.get(spike_type.value)
            if last_start is not None and start_day - int(last_start) <= self.cooldown_days:
                continue
            allowed.append(spike_type)
        return allowed

    def record_spike_started(self, spike_type: str, day: int) -> None:
        cooldowns = dict(self.simulation.spike_cooldowns or {})
        cooldowns[str(spike_type)] = day
        # Reassign so the JSON column is flagged dirty.
        self.simulation.spike_cooldowns = cooldowns
