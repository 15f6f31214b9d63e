"""
Spikes Router — list disruptions, resolve or mitigate them, acknowledge them.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_event_dispatcher, get_simulation
from db.models import Simulation, SpikeEvent
from simulation.events import EventDispatcher
from spikes.resolution import acknowledge, mitigate, resolve_early

router = APIRouter(prefix="/api/v1/spikes", tags=["spikes"])


class SpikeResponse(BaseModel):
    spike_id: UUID
    simulation_id: UUID
    spike_type: str
    magnitude: float
    duration: int
    location_id: UUID | None
    product_id: UUID | None
    route_id: UUID | None
    starts_at_day: int
    ends_at_day: int
    is_active: bool
    is_guaranteed: bool
    is_resolvable: bool
    activated_day: int | None
    acknowledged_at: datetime | None
    resolved_at: datetime | None
    resolved_by: str | None
    resolution_cost: int | None

    model_config = {"from_attributes": True}


@router.get("", response_model=list[SpikeResponse])
async def list_spikes(
    active_only: bool = Query(False),
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
):
    query = select(SpikeEvent).where(SpikeEvent.simulation_id == simulation.simulation_id)
    if active_only:
        query = query.where(SpikeEvent.is_active.is_(True))
    query = query.order_by(SpikeEvent.starts_at_day, SpikeEvent.created_at)
    result = await db.execute(query)
    return result.scalars().all()


@router.post("/{spike_id}/resolve", response_model=SpikeResponse)
async def resolve_spike(
    spike_id: UUID,
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
    events: EventDispatcher = Depends(get_event_dispatcher),
):
    """
    Pay to end a breakdown or blizzard spike today.

    400 when the spike is not resolvable, not active, or cash is short.
    """
    return await resolve_early(db, simulation.simulation_id, spike_id, events)


@router.post("/{spike_id}/acknowledge", response_model=SpikeResponse)
async def acknowledge_spike(
    spike_id: UUID,
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
):
    return await acknowledge(db, simulation.simulation_id, spike_id)


class MitigationRequest(BaseModel):
    action: str = Field("mitigate", min_length=1, max_length=255, description="What the player did")


@router.post("/{spike_id}/mitigate", response_model=SpikeResponse)
async def mitigate_spike(
    spike_id: UUID,
    body: MitigationRequest | None = None,
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
):
    """Soften an active spike for free; 400 when it is not active."""
    action = body.action if body is not None else "mitigate"
    return await mitigate(db, simulation.simulation_id, spike_id, action)
