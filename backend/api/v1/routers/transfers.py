"""
Transfers Router — moving stock between locations of one simulation.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_simulation, get_simulation_context
from db.models import Simulation, Transfer
from db.unit_of_work import UnitOfWork
from simulation.context import SimulationContext
from supply_chain.transfers import cancel_transfer, create_transfer, dispatch_transfer

router = APIRouter(prefix="/api/v1/transfers", tags=["transfers"])


class TransferCreate(BaseModel):
    source_id: UUID
    target_id: UUID
    product_id: UUID
    quantity: int = Field(..., gt=0)
    dispatch: bool = False


class TransferResponse(BaseModel):
    transfer_id: UUID
    simulation_id: UUID
    source_id: UUID
    target_id: UUID
    product_id: UUID
    quantity: int
    total_cost: int
    status: str
    route_path: list[UUID]
    total_transit_days: int
    created_day: int
    delivery_day: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


@router.get("", response_model=list[TransferResponse])
async def list_transfers(
    transfer_status: str | None = Query(None, alias="status"),
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
):
    query = select(Transfer).where(Transfer.simulation_id == simulation.simulation_id)
    if transfer_status:
        query = query.where(Transfer.status == transfer_status)
    query = query.order_by(Transfer.created_day.desc(), Transfer.created_at.desc())
    result = await db.execute(query)
    return result.scalars().all()


@router.post("", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
async def create(body: TransferCreate, ctx: SimulationContext = Depends(get_simulation_context)):
    """
    Route and cost a transfer; with dispatch=true the stock leaves the source now.

    400 when no path exists, the source is short, or the quantity exceeds
    route capacity.
    """
    async with UnitOfWork(ctx.db, name="transfer.create"):
        transfer = await create_transfer(
            ctx,
            body.source_id,
            body.target_id,
            body.product_id,
            body.quantity,
            dispatch=body.dispatch,
        )
    return transfer


@router.post("/{transfer_id}/dispatch", response_model=TransferResponse)
async def dispatch(transfer_id: UUID, ctx: SimulationContext = Depends(get_simulation_context)):
    async with UnitOfWork(ctx.db, name="transfer.dispatch"):
        transfer = await dispatch_transfer(ctx, transfer_id)
    return transfer


@router.post("/{transfer_id}/cancel", response_model=TransferResponse)
async def cancel(transfer_id: UUID, ctx: SimulationContext = Depends(get_simulation_context)):
    """Cancel a draft or in-transit transfer; stock already sent goes back to the source."""
    async with UnitOfWork(ctx.db, name="transfer.cancel"):
        transfer = await cancel_transfer(ctx, transfer_id)
    return transfer
