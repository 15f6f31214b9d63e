"""
Inventory bookkeeping driven by domain events.

TransferCompleted and OrderDelivered add stock at the destination; the
source side of a transfer is debited when it is dispatched.
"""

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_object_session

from core.errors import DomainInvariantError, InsufficientStockError
from db.models import Inventory
from simulation.events import EventDispatcher, OrderDelivered, TransferCompleted

logger = structlog.get_logger()


async def get_or_create_inventory(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    location_id: uuid.UUID,
    product_id: uuid.UUID,
) -> Inventory:
    result = await db.execute(
        select(Inventory).where(
            Inventory.location_id == location_id,
            Inventory.product_id == product_id,
        )
    )
    inventory = result.scalar_one_or_none()
    if inventory is None:
        inventory = Inventory(
            simulation_id=simulation_id,
            location_id=location_id,
            product_id=product_id,
            quantity=0,
        )
        db.add(inventory)
        await db.flush()
    return inventory


async def adjust_stock(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    location_id: uuid.UUID,
    product_id: uuid.UUID,
    delta: int,
) -> Inventory:
    inventory = await get_or_create_inventory(db, simulation_id, location_id, product_id)
    if inventory.quantity + delta < 0:
        raise InsufficientStockError(requested=-delta, available=inventory.quantity)
    inventory.quantity += delta
    return inventory


def _session_of(instance) -> AsyncSession:
    db = async_object_session(instance)
    if db is None:
        raise DomainInvariantError(f"{type(instance).__name__} is not attached to a session")
    return db


async def on_transfer_completed(event: TransferCompleted) -> None:
    transfer = event.transfer
    inventory = await adjust_stock(
        _session_of(transfer), transfer.simulation_id, transfer.target_id, transfer.product_id, transfer.quantity
    )
    logger.info(
        "inventory.received_transfer",
        transfer_id=str(transfer.transfer_id),
        location_id=str(transfer.target_id),
        quantity=inventory.quantity,
    )


async def on_order_delivered(event: OrderDelivered) -> None:
    order = event.order
    inventory = await adjust_stock(
        _session_of(order), order.simulation_id, order.location_id, order.product_id, order.quantity
    )
    logger.info(
        "inventory.received_order",
        order_id=str(order.order_id),
        location_id=str(order.location_id),
        quantity=inventory.quantity,
    )


def register_default_listeners(events: EventDispatcher) -> EventDispatcher:
    events.subscribe(TransferCompleted, on_transfer_completed)
    events.subscribe(OrderDelivered, on_order_delivered)
    return events
