"""
Spike Effect Engine — reversible world effects, one strategy per spike type.

    breakdown  location max_storage × Π(1 − magnitude) over its active breakdowns;
               original kept in meta
    blizzard   scoped route(s) deactivated; original flags kept in meta
    demand     read live via demand_multiplier()
    price      read live via price_multiplier()
    delay      read live via LocationGraph.quoted_transit_days()

apply() and rollback() are exact inverses. Adding a spike type means adding
an entry to SPIKE_EFFECTS.
"""

from __future__ import annotations

import uuid
from typing import Protocol

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import DomainInvariantError
from db.enums import SpikeType
from db.models import Location, Route, SpikeEvent

logger = structlog.get_logger()


class SpikeEffect(Protocol):
    async def apply(self, db: AsyncSession, spike: SpikeEvent) -> None: ...

    async def rollback(self, db: AsyncSession, spike: SpikeEvent) -> None: ...


def _with_meta(spike: SpikeEvent, **values) -> None:
    # JSON columns only notice reassignment.
    spike.meta = {**(spike.meta or {}), **values}


class LiveMultiplierEffect:
    """Effect read at query time by consumers; nothing persisted to undo."""

    async def apply(self, db: AsyncSession, spike: SpikeEvent) -> None:
        return None

    async def rollback(self, db: AsyncSession, spike: SpikeEvent) -> None:
        return None


class BreakdownEffect:
    async def _other_breakdowns(self, db: AsyncSession, spike: SpikeEvent) -> list[SpikeEvent]:
        """Other breakdowns currently reducing the same location."""
        others = (
            await db.execute(
                select(SpikeEvent).where(
                    SpikeEvent.simulation_id == spike.simulation_id,
                    SpikeEvent.spike_type == SpikeType.BREAKDOWN.value,
                    SpikeEvent.location_id == spike.location_id,
                    SpikeEvent.spike_id != spike.spike_id,
                )
            )
        ).scalars().all()
        return [other for other in others if (other.meta or {}).get("storage_reduced")]

    @staticmethod
    def _reduced(original: int, breakdowns: list[SpikeEvent]) -> int:
        remaining = float(original)
        for breakdown in breakdowns:
            remaining *= 1 - float(breakdown.magnitude)
        return int(remaining)

    async def apply(self, db: AsyncSession, spike: SpikeEvent) -> None:
        if spike.location_id is None:
            return
        location = await db.get(Location, spike.location_id)
        if location is None:
            logger.warning("spike.breakdown_missing_location", spike_id=str(spike.spike_id))
            return

        others = await self._other_breakdowns(db, spike)
        meta = spike.meta or {}
        if "original_max_storage" in meta:
            original = int(meta["original_max_storage"])
        elif others:
            original = int(others[0].meta["original_max_storage"])
        else:
            original = int(location.max_storage)
        location.max_storage = self._reduced(original, [*others, spike])
        _with_meta(spike, original_max_storage=original, storage_reduced=True)

        logger.info(
            "spike.breakdown_applied",
            spike_id=str(spike.spike_id),
            location_id=str(location.location_id),
            original_max_storage=original,
            max_storage=location.max_storage,
            overlapping=len(others),
        )

    async def rollback(self, db: AsyncSession, spike: SpikeEvent) -> None:
        if spike.location_id is None:
            return
        original = (spike.meta or {}).get("original_max_storage")
        if original is None:
            return
        location = await db.get(Location, spike.location_id)
        if location is None:
            return
        # Capacity stays reduced by whichever breakdowns are still running.
        others = await self._other_breakdowns(db, spike)
        location.max_storage = self._reduced(int(original), others)
        _with_meta(spike, storage_reduced=False)


class BlizzardEffect:
    async def _target_routes(self, db: AsyncSession, spike: SpikeEvent) -> list[Route]:
        if spike.route_id is not None:
            route = await db.get(Route, spike.route_id)
            return [route] if route is not None else []

        query = select(Route).where(
            Route.simulation_id == spike.simulation_id,
            Route.weather_vulnerable.is_(True),
        )
        if spike.location_id is not None:
            query = query.where(
                or_(Route.source_id == spike.location_id, Route.target_id == spike.location_id)
            )
        return list((await db.execute(query)).scalars().all())

    async def _held_by_other_blizzards(self, db: AsyncSession, spike: SpikeEvent) -> dict[str, bool]:
        """Original route flags recorded by other active, unmitigated blizzards."""
        others = (
            await db.execute(
                select(SpikeEvent).where(
                    SpikeEvent.simulation_id == spike.simulation_id,
                    SpikeEvent.spike_type == SpikeType.BLIZZARD.value,
                    SpikeEvent.is_active.is_(True),
                    SpikeEvent.spike_id != spike.spike_id,
                )
            )
        ).scalars().all()
        held: dict[str, bool] = {}
        for other in others:
            if (other.meta or {}).get("mitigated_route"):
                continue
            for route_id, was_active in (other.meta or {}).get("original_route_states", {}).items():
                held.setdefault(route_id, bool(was_active))
        return held

    async def apply(self, db: AsyncSession, spike: SpikeEvent) -> None:
        routes = await self._target_routes(db, spike)
        held = await self._held_by_other_blizzards(db, spike)
        recorded = dict((spike.meta or {}).get("original_route_states", {}))
        for route in routes:
            route_key = str(route.route_id)
            recorded.setdefault(route_key, held.get(route_key, bool(route.is_active)))
            route.is_active = False
        _with_meta(spike, original_route_states=recorded)

        logger.info("spike.blizzard_applied", spike_id=str(spike.spike_id), routes_closed=len(routes))

    async def rollback(self, db: AsyncSession, spike: SpikeEvent) -> None:
        recorded = (spike.meta or {}).get("original_route_states", {})
        if not recorded:
            return

        held = await self._held_by_other_blizzards(db, spike)
        for route_id, was_active in recorded.items():
            route = await db.get(Route, uuid.UUID(route_id))
            if route is None:
                continue
            route.is_active = False if route_id in held else bool(was_active)


SPIKE_EFFECTS: dict[SpikeType, SpikeEffect] = {
    SpikeType.DEMAND: LiveMultiplierEffect(),
    SpikeType.PRICE: LiveMultiplierEffect(),
    SpikeType.DELAY: LiveMultiplierEffect(),
    SpikeType.BREAKDOWN: BreakdownEffect(),
    SpikeType.BLIZZARD: BlizzardEffect(),
}


def effect_for(spike_type: str) -> SpikeEffect:
    try:
        return SPIKE_EFFECTS[SpikeType(spike_type)]
    except (ValueError, KeyError):
        raise DomainInvariantError(f"Unknown spike type: {spike_type}") from None


async def apply_spike(db: AsyncSession, spike: SpikeEvent) -> None:
    await effect_for(spike.spike_type).apply(db, spike)


async def rollback_spike(db: AsyncSession, spike: SpikeEvent) -> None:
    await effect_for(spike.spike_type).rollback(db, spike)


# ── Live multipliers ───────────────────────────────────────────────────────


async def _max_active_magnitude(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    spike_type: SpikeType,
    location_id: uuid.UUID | None,
    product_id: uuid.UUID | None,
) -> float:
    query = select(SpikeEvent.magnitude).where(
        SpikeEvent.simulation_id == simulation_id,
        SpikeEvent.spike_type == spike_type.value,
        SpikeEvent.is_active.is_(True),
    )
    if location_id is not None:
        query = query.where(or_(SpikeEvent.location_id == location_id, SpikeEvent.location_id.is_(None)))
    else:
        query = query.where(SpikeEvent.location_id.is_(None))
    if product_id is not None:
        query = query.where(or_(SpikeEvent.product_id == product_id, SpikeEvent.product_id.is_(None)))
    else:
        query = query.where(SpikeEvent.product_id.is_(None))

    magnitudes = (await db.execute(query)).scalars().all()
    return max((float(m) for m in magnitudes), default=1.0)


async def demand_multiplier(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    location_id: uuid.UUID | None = None,
    product_id: uuid.UUID | None = None,
) -> float:
    """Largest active demand magnitude matching the scope, 1.0 when none."""
    return await _max_active_magnitude(db, simulation_id, SpikeType.DEMAND, location_id, product_id)


async def price_multiplier(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    location_id: uuid.UUID | None = None,
    product_id: uuid.UUID | None = None,
) -> float:
    """Largest active price magnitude matching the scope, 1.0 when none."""
    return await _max_active_magnitude(db, simulation_id, SpikeType.PRICE, location_id, product_id)
