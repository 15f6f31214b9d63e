"""
Spike Resolution — player actions on active spikes.

Early resolution is a paid action available for breakdown and blizzard
spikes only. It ends the spike on the current day, rolls its effect back
and writes a SpikeResolution audit row. Acknowledging a spike is free and
idempotent. Mitigation softens a spike for free while it keeps running.

Every action runs in its own unit of work: either every change lands
(cash, spike, world effect, audit row) or none does.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from core.errors import InsufficientFundsError, NotFoundError, ValidationError
from db.enums import ResolvedBy, SpikeType
from db.models import Simulation, SpikeEvent, SpikeResolution
from db.unit_of_work import UnitOfWork
from simulation.events import EventDispatcher, SpikeEnded
from spikes.effects import apply_spike, rollback_spike

logger = structlog.get_logger()

MITIGATION_DAMPING = 0.8


def resolution_cost(spike: SpikeEvent, settings: Settings | None = None) -> int:
    """Early-resolution price in cents, scaled up (never down) by magnitude."""
    settings = settings or get_settings()
    base_costs = {
        SpikeType.BREAKDOWN.value: settings.breakdown_resolution_cost,
        SpikeType.BLIZZARD.value: settings.blizzard_resolution_cost,
    }
    if spike.spike_type not in base_costs:
        raise ValidationError(f"Spikes of type '{spike.spike_type}' cannot be resolved early")
    return int(round(base_costs[spike.spike_type] * max(1.0, float(spike.magnitude))))


async def _load(db: AsyncSession, simulation_id: uuid.UUID, spike_id: uuid.UUID) -> tuple[Simulation, SpikeEvent]:
    simulation = await db.get(Simulation, simulation_id)
    if simulation is None:
        raise NotFoundError(f"Simulation {simulation_id} not found")
    spike = await db.get(SpikeEvent, spike_id)
    if spike is None or spike.simulation_id != simulation_id:
        raise NotFoundError(f"Spike {spike_id} not found")
    return simulation, spike


async def resolve_early(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    spike_id: uuid.UUID,
    events: EventDispatcher,
    settings: Settings | None = None,
) -> SpikeEvent:
    async with UnitOfWork(db, name="spike.resolve_early"):
        simulation, spike = await _load(db, simulation_id, spike_id)

        if not spike.is_resolvable:
            raise ValidationError(f"Spikes of type '{spike.spike_type}' cannot be resolved early")
        if not spike.is_active:
            raise ValidationError("Only active spikes can be resolved")

        cost = resolution_cost(spike, settings)
        if simulation.cash < cost:
            raise InsufficientFundsError(required=cost, available=simulation.cash)

        day = simulation.day
        effect = {key: value for key, value in (spike.meta or {}).items() if key.startswith("original_")}

        simulation.cash -= cost
        spike.is_active = False
        spike.ends_at_day = max(day, spike.starts_at_day)
        spike.resolved_at = datetime.utcnow()
        spike.resolved_by = ResolvedBy.PLAYER.value
        spike.resolution_cost = cost
        spike.action_log = [
            *(spike.action_log or []),
            {"action": "resolve_early", "day": day, "cost_cents": cost},
        ]

        await rollback_spike(db, spike)

        db.add(
            SpikeResolution(
                simulation_id=simulation_id,
                spike_id=spike.spike_id,
                action_type="resolve_early",
                cost_cents=cost,
                effect={"restored": effect},
                game_day=day,
            )
        )
        await db.flush()
        await events.dispatch(SpikeEnded(spike=spike))

    logger.info(
        "spike.resolved_early",
        simulation_id=str(simulation_id),
        spike_id=str(spike_id),
        spike_type=spike.spike_type,
        cost_cents=cost,
        day=day,
    )
    return spike


async def acknowledge(db: AsyncSession, simulation_id: uuid.UUID, spike_id: uuid.UUID) -> SpikeEvent:
    async with UnitOfWork(db, name="spike.acknowledge"):
        simulation, spike = await _load(db, simulation_id, spike_id)
        if spike.acknowledged_at is not None:
            return spike

        spike.acknowledged_at = datetime.utcnow()
        spike.action_log = [*(spike.action_log or []), {"action": "acknowledge", "day": simulation.day}]
        db.add(
            SpikeResolution(
                simulation_id=simulation_id,
                spike_id=spike.spike_id,
                action_type="acknowledge",
                cost_cents=0,
                game_day=simulation.day,
            )
        )

    logger.info("spike.acknowledged", simulation_id=str(simulation_id), spike_id=str(spike_id))
    return spike


def mitigated_magnitude(spike: SpikeEvent) -> float:
    """Magnitude after one mitigation step."""
    magnitude = float(spike.magnitude)
    if spike.spike_type in (SpikeType.DEMAND.value, SpikeType.PRICE.value):
        return max(1.0, round(magnitude * MITIGATION_DAMPING, 2))
    if spike.spike_type == SpikeType.DELAY.value:
        return float(max(0, int(round(magnitude)) - 1))
    if spike.spike_type == SpikeType.BREAKDOWN.value:
        return max(0.0, round(magnitude * MITIGATION_DAMPING, 2))
    return magnitude


async def mitigate(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    spike_id: uuid.UUID,
    action: str = "mitigate",
) -> SpikeEvent:
    """
    Soften an active spike without ending it.

    Demand and price multipliers are damped towards neutral, delays lose a
    day, breakdowns give back part of the lost capacity and blizzards reopen
    the routes they closed. Mitigation is free and may be repeated.
    """
    async with UnitOfWork(db, name="spike.mitigate"):
        simulation, spike = await _load(db, simulation_id, spike_id)
        if not spike.is_active:
            raise ValidationError("Spike is not currently active")

        day = simulation.day
        meta = spike.meta or {}
        new_magnitude = mitigated_magnitude(spike)
        spike.meta = {
            **meta,
            "original_magnitude": meta.get("original_magnitude", float(spike.magnitude)),
            "mitigation_count": int(meta.get("mitigation_count", 0)) + 1,
        }
        spike.magnitude = new_magnitude
        spike.action_log = [
            *(spike.action_log or []),
            {"action": "mitigate", "detail": action, "day": day, "magnitude": new_magnitude},
        ]

        if spike.spike_type == SpikeType.BREAKDOWN.value:
            await apply_spike(db, spike)
        elif spike.spike_type == SpikeType.BLIZZARD.value:
            await rollback_spike(db, spike)
            spike.meta = {**spike.meta, "mitigated_route": True}

        db.add(
            SpikeResolution(
                simulation_id=simulation_id,
                spike_id=spike.spike_id,
                action_type="mitigate",
                cost_cents=0,
                effect={"type": spike.spike_type, "action": action, "new_magnitude": new_magnitude},
                game_day=day,
            )
        )

    logger.info(
        "spike.mitigated",
        simulation_id=str(simulation_id),
        spike_id=str(spike_id),
        spike_type=spike.spike_type,
        magnitude=new_magnitude,
        day=day,
    )
    return spike
