"""
Logistics Router — path queries, route status and network health.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_simulation
from db.models import Simulation
from logistics.graph import LocationGraph
from logistics.router import Router, get_path

router = APIRouter(prefix="/api/v1/logistics", tags=["logistics"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PathStep(BaseModel):
    route_id: UUID
    source_id: UUID
    target_id: UUID
    transport_mode: str
    cost: float
    transit_days: int
    capacity: int
    is_premium: bool


class PathResponse(BaseModel):
    success: bool
    reachable: bool
    total_cost: float
    path: list[PathStep]
    message: str | None = None


class RouteStatusResponse(BaseModel):
    route_id: UUID
    source_id: UUID
    target_id: UUID
    transport_mode: str
    base_cost: int
    effective_cost: float
    transit_days: int
    capacity: int
    is_active: bool
    weather_vulnerable: bool
    is_premium: bool
    blocked_reason: str | None = None


class LogisticsHealthResponse(BaseModel):
    logistics_health: float
    active_routes: int
    total_routes: int
    isolated_locations: list[UUID]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/path", response_model=PathResponse)
async def find_path(
    source_id: UUID = Query(...),
    target_id: UUID = Query(...),
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
):
    """Cheapest active path between two locations at current spike-adjusted costs."""
    return await get_path(db, simulation.simulation_id, source_id, target_id)


@router.get("/routes", response_model=list[RouteStatusResponse])
async def list_routes(
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
):
    graph = await LocationGraph.load(db, simulation.simulation_id)
    route_finder = Router(graph)

    results = []
    for route in graph.routes.values():
        blocked_reason = graph.blocking_spike_type(route)
        if blocked_reason is None and not route.is_active:
            blocked_reason = "inactive"
        results.append(
            RouteStatusResponse(
                route_id=route.route_id,
                source_id=route.source_id,
                target_id=route.target_id,
                transport_mode=route.transport_mode,
                base_cost=route.base_cost,
                effective_cost=graph.effective_cost(route),
                transit_days=graph.quoted_transit_days(route),
                capacity=route.capacity,
                is_active=route.is_active,
                weather_vulnerable=route.weather_vulnerable,
                is_premium=route_finder.is_premium(route),
                blocked_reason=blocked_reason,
            )
        )
    return results


@router.get("/health", response_model=LogisticsHealthResponse)
async def logistics_health(
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
):
    graph = await LocationGraph.load(db, simulation.simulation_id)
    route_finder = Router(graph)
    return LogisticsHealthResponse(
        logistics_health=round(route_finder.logistics_health(), 1),
        active_routes=sum(1 for route in graph.routes.values() if route.is_active),
        total_routes=len(graph.routes),
        isolated_locations=[
            location_id
            for location_id in graph.locations
            if not route_finder.is_reachable_from_supply(location_id)
        ],
    )
