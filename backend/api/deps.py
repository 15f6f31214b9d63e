"""
ShelfSim API Dependencies

Dependency injection for DB sessions, the event dispatcher, simulation
lookups and per-request simulation contexts.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache
from uuid import UUID

from fastapi import Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Simulation
from db.session import AsyncSessionLocal
from simulation.context import SimulationContext
from simulation.events import EventDispatcher
from supply_chain.inventory import register_default_listeners


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@lru_cache
def get_event_dispatcher() -> EventDispatcher:
    """Process-wide dispatcher with the inventory listeners attached."""
    return register_default_listeners(EventDispatcher())


async def get_simulation(
    simulation_id: UUID = Query(..., description="Simulation (game world) id"),
    db: AsyncSession = Depends(get_db),
) -> Simulation:
    simulation = await db.get(Simulation, simulation_id)
    if simulation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Simulation not found",
        )
    return simulation


async def get_simulation_context(
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
    events: EventDispatcher = Depends(get_event_dispatcher),
) -> SimulationContext:
    """Context for player actions on one simulation, sharing the request's session."""
    return SimulationContext(db=db, simulation=simulation, events=events)
