"""
Orders Router — vendor purchase orders through their lifecycle.

    POST /orders                 route, price and (by default) submit an order
    GET  /orders/capacity-check  would a quantity fit the cheapest path today
    POST /orders/{id}/submit     draft → pending
    POST /orders/{id}/ship       pending → shipped
    POST /orders/{id}/cancel     pending/shipped → cancelled, refunded

Every write runs in its own unit of work; guard failures come back as 400.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_simulation, get_simulation_context
from db.models import Order, Simulation
from db.unit_of_work import UnitOfWork
from simulation.context import SimulationContext
from supply_chain.orders import cancel_order, check_capacity, place_order, ship_order, submit_order

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class OrderCreate(BaseModel):
    source_id: UUID
    destination_id: UUID
    product_id: UUID
    quantity: int = Field(..., gt=0)
    submit: bool = True


class OrderResponse(BaseModel):
    order_id: UUID
    simulation_id: UUID
    source_id: UUID
    location_id: UUID
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


class CapacityCheckResponse(BaseModel):
    within_capacity: bool
    order_quantity: int
    route_capacity: int | None
    excess: int
    suggestion: str | None
    route_path: list[UUID]

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=list[OrderResponse])
async def list_orders(
    order_status: str | None = Query(None, alias="status"),
    simulation: Simulation = Depends(get_simulation),
    db: AsyncSession = Depends(get_db),
):
    query = select(Order).where(Order.simulation_id == simulation.simulation_id)
    if order_status:
        query = query.where(Order.status == order_status)
    query = query.order_by(Order.created_day.desc(), Order.created_at.desc())
    result = await db.execute(query)
    return result.scalars().all()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreate,
    ctx: SimulationContext = Depends(get_simulation_context),
):
    """
    Place an order from a vendor or warehouse.

    400 when the source cannot supply, no path exists, the quantity exceeds
    route capacity or cash is short. Nothing is stored on failure.
    """
    async with UnitOfWork(ctx.db, name="order.place"):
        order = await place_order(
            ctx,
            source_id=body.source_id,
            destination_id=body.destination_id,
            product_id=body.product_id,
            quantity=body.quantity,
            submit=body.submit,
        )
    return order


@router.get("/capacity-check", response_model=CapacityCheckResponse)
async def capacity_check(
    source_id: UUID,
    destination_id: UUID,
    quantity: int = Query(..., ge=0),
    ctx: SimulationContext = Depends(get_simulation_context),
):
    return await check_capacity(ctx, source_id, destination_id, quantity)


@router.post("/{order_id}/submit", response_model=OrderResponse)
async def submit(order_id: UUID, ctx: SimulationContext = Depends(get_simulation_context)):
    async with UnitOfWork(ctx.db, name="order.submit"):
        order = await submit_order(ctx, order_id)
    return order


@router.post("/{order_id}/ship", response_model=OrderResponse)
async def ship(order_id: UUID, ctx: SimulationContext = Depends(get_simulation_context)):
    async with UnitOfWork(ctx.db, name="order.ship"):
        order = await ship_order(ctx, order_id)
    return order


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel(order_id: UUID, ctx: SimulationContext = Depends(get_simulation_context)):
    """Cancel a pending or shipped order and refund its total cost."""
    async with UnitOfWork(ctx.db, name="order.cancel"):
        order = await cancel_order(ctx, order_id)
    return order
