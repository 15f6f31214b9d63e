"""
Simulations Router — new games, game state and the day-advance.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_event_dispatcher
from db.models import Alert, Simulation, SpikeEvent
from simulation.events import EventDispatcher
from simulation.orchestrator import TickOrchestrator
from simulation.world import initialize_simulation

router = APIRouter(prefix="/api/v1/simulations", tags=["simulations"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class SimulationCreate(BaseModel):
    name: str = Field("New Game", min_length=1, max_length=255)
    seed_spikes: bool = True


class SimulationResponse(BaseModel):
    simulation_id: UUID
    name: str
    day: int
    cash: int
    spike_cooldowns: dict[str, int]
    created_at: datetime
    updated_at: datetime
    active_spikes: int = 0
    open_alerts: int = 0

    model_config = {"from_attributes": True}


class TickReportResponse(BaseModel):
    simulation_id: UUID
    day: int
    spikes_started: list[UUID]
    spikes_ended: list[UUID]
    guaranteed_spike_id: UUID | None = None
    random_spike_id: UUID | None = None
    orders_delivered: list[UUID]
    transfers_completed: list[UUID]
    alerts_created: list[UUID]
    alerts_resolved: list[UUID]


# ─── Endpoints ──────────────────────────────────────────────────────────────


async def _to_response(db: AsyncSession, simulation: Simulation) -> SimulationResponse:
    active_spikes = await db.scalar(
        select(func.count(SpikeEvent.spike_id)).where(
            SpikeEvent.simulation_id == simulation.simulation_id,
            SpikeEvent.is_active.is_(True),
        )
    )
    open_alerts = await db.scalar(
        select(func.count(Alert.alert_id)).where(
            Alert.simulation_id == simulation.simulation_id,
            Alert.is_resolved.is_(False),
        )
    )
    response = SimulationResponse.model_validate(simulation)
    response.active_spikes = active_spikes or 0
    response.open_alerts = open_alerts or 0
    return response


@router.post("", response_model=SimulationResponse, status_code=201)
async def create_simulation(body: SimulationCreate, db: AsyncSession = Depends(get_db)):
    """Start a new game with the demo network, stock and seeded spikes."""
    simulation = await initialize_simulation(db, body.name, seed_spikes=body.seed_spikes)
    return await _to_response(db, simulation)


@router.get("/{simulation_id}", response_model=SimulationResponse)
async def get_simulation(simulation_id: UUID, db: AsyncSession = Depends(get_db)):
    simulation = await db.get(Simulation, simulation_id)
    if not simulation:
        raise HTTPException(status_code=404, detail="Simulation not found")
    return await _to_response(db, simulation)


@router.post("/{simulation_id}/advance", response_model=TickReportResponse)
async def advance_simulation(
    simulation_id: UUID,
    db: AsyncSession = Depends(get_db),
    events: EventDispatcher = Depends(get_event_dispatcher),
):
    """
    Advance the simulation by one day.

    Runs Event → Physics → Analysis ticks atomically. A failure rolls the
    whole day back and returns 500.
    """
    report = await TickOrchestrator(events=events).advance_day(db, simulation_id)
    return TickReportResponse(**report.to_dict())
