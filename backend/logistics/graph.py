"""
Location Graph — immutable snapshot of the logistics network.

A snapshot holds every location, every route (active or not) and the
active spikes that change how routes are priced and quoted. Routers work
on the snapshot only, so concurrent readers always see one consistent
state and never observe a day-advance that is still in progress.

Effective cost of a route:
    base_cost × (1 + Σ magnitude of active spikes scoped to that route)

Quoted transit time of a route:
    transit_days + Σ delay days of active delay spikes that match the route
    (scoped to the route, to one of its endpoints, or global)
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.enums import SpikeType
from db.models import Location, Route, SpikeEvent


@dataclass(frozen=True)
class LocationNode:
    location_id: uuid.UUID
    name: str
    location_type: str
    max_storage: int = 0


@dataclass(frozen=True)
class RouteEdge:
    route_id: uuid.UUID
    source_id: uuid.UUID
    target_id: uuid.UUID
    transport_mode: str
    base_cost: int
    transit_days: int
    capacity: int
    is_active: bool = True
    weather_vulnerable: bool = False


@dataclass(frozen=True)
class ActiveSpike:
    spike_id: uuid.UUID
    spike_type: str
    magnitude: float
    location_id: uuid.UUID | None = None
    product_id: uuid.UUID | None = None
    route_id: uuid.UUID | None = None
    activated_day: int | None = None


class LocationGraph:
    def __init__(
        self,
        locations: Iterable[LocationNode],
        routes: Iterable[RouteEdge],
        active_spikes: Iterable[ActiveSpike] = (),
    ):
        self.locations: dict[uuid.UUID, LocationNode] = {loc.location_id: loc for loc in locations}
        self.routes: dict[uuid.UUID, RouteEdge] = {route.route_id: route for route in routes}
        self.active_spikes: tuple[ActiveSpike, ...] = tuple(active_spikes)

        self._outgoing: dict[uuid.UUID, list[RouteEdge]] = defaultdict(list)
        self._incoming: dict[uuid.UUID, list[RouteEdge]] = defaultdict(list)
        for route in self.routes.values():
            if not route.is_active:
                continue
            self._outgoing[route.source_id].append(route)
            self._incoming[route.target_id].append(route)

        self._route_magnitude: dict[uuid.UUID, float] = defaultdict(float)
        for spike in self.active_spikes:
            if spike.route_id is not None:
                self._route_magnitude[spike.route_id] += float(spike.magnitude)

    # ── Loading ────────────────────────────────────────────────────────────

    @classmethod
    async def load(cls, db: AsyncSession, simulation_id: uuid.UUID) -> "LocationGraph":
        """Build a snapshot of one simulation's network from the database."""
        location_rows = (
            await db.execute(select(Location).where(Location.simulation_id == simulation_id))
        ).scalars().all()
        route_rows = (
            await db.execute(select(Route).where(Route.simulation_id == simulation_id))
        ).scalars().all()
        spike_rows = (
            await db.execute(
                select(SpikeEvent).where(
                    SpikeEvent.simulation_id == simulation_id,
                    SpikeEvent.is_active.is_(True),
                )
            )
        ).scalars().all()

        return cls(
            locations=[
                LocationNode(
                    location_id=row.location_id,
                    name=row.name,
                    location_type=row.location_type,
                    max_storage=row.max_storage,
                )
                for row in location_rows
            ],
            routes=[
                RouteEdge(
                    route_id=row.route_id,
                    source_id=row.source_id,
                    target_id=row.target_id,
                    transport_mode=row.transport_mode,
                    base_cost=row.base_cost,
                    transit_days=row.transit_days,
                    capacity=row.capacity,
                    is_active=bool(row.is_active),
                    weather_vulnerable=bool(row.weather_vulnerable),
                )
                for row in route_rows
            ],
            active_spikes=[
                ActiveSpike(
                    spike_id=row.spike_id,
                    spike_type=row.spike_type,
                    magnitude=float(row.magnitude),
                    location_id=row.location_id,
                    product_id=row.product_id,
                    route_id=row.route_id,
                    activated_day=row.activated_day,
                )
                for row in spike_rows
            ],
        )

    # ── Topology ───────────────────────────────────────────────────────────

    def outgoing(self, location_id: uuid.UUID) -> list[RouteEdge]:
        """Active routes leaving a location, in load order."""
        return self._outgoing.get(location_id, [])

    def incoming(self, location_id: uuid.UUID) -> list[RouteEdge]:
        """Active routes arriving at a location, in load order."""
        return self._incoming.get(location_id, [])

    def routes_between(
        self,
        source_id: uuid.UUID,
        target_id: uuid.UUID,
        active_only: bool = True,
    ) -> list[RouteEdge]:
        return [
            route
            for route in self.routes.values()
            if route.source_id == source_id
            and route.target_id == target_id
            and (route.is_active or not active_only)
        ]

    # ── Pricing & quoting ──────────────────────────────────────────────────

    def spike_magnitude(self, route: RouteEdge) -> float:
        return self._route_magnitude.get(route.route_id, 0.0)

    def effective_cost(self, route: RouteEdge) -> float:
        return round(float(route.base_cost) * (1 + self.spike_magnitude(route)), 2)

    def quoted_transit_days(self, route: RouteEdge, product_id: uuid.UUID | None = None) -> int:
        delay = 0
        for spike in self.active_spikes:
            if spike.spike_type != SpikeType.DELAY:
                continue
            if spike.product_id is not None and product_id is not None and spike.product_id != product_id:
                continue
            if spike.route_id is not None:
                matches = spike.route_id == route.route_id
            elif spike.location_id is not None:
                matches = spike.location_id in (route.source_id, route.target_id)
            else:
                matches = True
            if matches:
                delay += int(spike.magnitude)
        return route.transit_days + delay

    def blocking_spike_type(self, route: RouteEdge) -> str | None:
        """Type of the active spike scoped to this route, if any."""
        for spike in self.active_spikes:
            if spike.route_id == route.route_id:
                return spike.spike_type
        return None
