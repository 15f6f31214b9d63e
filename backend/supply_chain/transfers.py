"""
Transfer lifecycle — moving stock between two locations of the network.

    draft ──▶ in_transit ──▶ completed
      │           │
      └──▶ cancelled ◀┘

draft → in_transit    guard: source stock ≥ quantity and quantity ≤ smallest
                      route capacity; debits source stock,
                      delivery_day = day + total_transit_days
in_transit → completed emits TransferCompleted (listeners add target stock)
→ cancelled            stock that already left the source is returned
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import select

from core.errors import (
    DomainInvariantError,
    InsufficientStockError,
    NoPathFoundError,
    NotFoundError,
    RouteCapacityExceededError,
    ValidationError,
)
from db.enums import TransferStatus
from db.models import Location, Product, Route, Transfer
from logistics.graph import LocationGraph
from logistics.router import Router
from simulation.context import SimulationContext
from simulation.events import TransferCompleted
from supply_chain.inventory import adjust_stock, get_or_create_inventory
from supply_chain.orders import TransitionResult, require_transition

logger = structlog.get_logger()


class TransferStateMachine:
    TRANSITIONS: dict[str, frozenset[str]] = {
        TransferStatus.DRAFT.value: frozenset({TransferStatus.IN_TRANSIT.value, TransferStatus.CANCELLED.value}),
        TransferStatus.IN_TRANSIT.value: frozenset({TransferStatus.COMPLETED.value, TransferStatus.CANCELLED.value}),
        TransferStatus.COMPLETED.value: frozenset(),
        TransferStatus.CANCELLED.value: frozenset(),
    }

    def __init__(self, ctx: SimulationContext):
        self.ctx = ctx

    def can_transition(self, transfer: Transfer, target: str) -> bool:
        return str(target) in self.TRANSITIONS.get(transfer.status, frozenset())

    async def transition(self, transfer: Transfer, target: str) -> TransitionResult:
        target = str(target)
        if not self.can_transition(transfer, target):
            raise DomainInvariantError(f"Invalid transfer transition: {transfer.status} -> {target}")

        if target == TransferStatus.IN_TRANSIT:
            return await self._to_in_transit(transfer)
        if target == TransferStatus.COMPLETED:
            return await self._to_completed(transfer)
        return await self._to_cancelled(transfer)

    async def _min_capacity(self, transfer: Transfer) -> int | None:
        route_ids = [uuid.UUID(route_id) for route_id in transfer.route_path or []]
        if not route_ids:
            return None
        capacities = (
            await self.ctx.db.execute(select(Route.capacity).where(Route.route_id.in_(route_ids)))
        ).scalars().all()
        return min(capacities) if capacities else None

    async def _to_in_transit(self, transfer: Transfer) -> TransitionResult:
        db = self.ctx.db
        stock = await get_or_create_inventory(db, transfer.simulation_id, transfer.source_id, transfer.product_id)
        if stock.quantity < transfer.quantity:
            error = InsufficientStockError(requested=transfer.quantity, available=stock.quantity)
            return TransitionResult(ok=False, status=transfer.status, reason=str(error), error=error)

        min_capacity = await self._min_capacity(transfer)
        if min_capacity is not None and transfer.quantity > min_capacity:
            error = RouteCapacityExceededError(quantity=transfer.quantity, capacity=min_capacity)
            return TransitionResult(ok=False, status=transfer.status, reason=str(error), error=error)

        stock.quantity -= transfer.quantity
        transfer.status = TransferStatus.IN_TRANSIT.value
        transfer.delivery_day = self.ctx.day + int(transfer.total_transit_days or 0)
        return TransitionResult(ok=True, status=transfer.status)

    async def _to_completed(self, transfer: Transfer) -> TransitionResult:
        transfer.status = TransferStatus.COMPLETED.value
        await self.ctx.events.dispatch(TransferCompleted(transfer=transfer))
        return TransitionResult(ok=True, status=transfer.status)

    async def _to_cancelled(self, transfer: Transfer) -> TransitionResult:
        if transfer.status == TransferStatus.IN_TRANSIT:
            await adjust_stock(
                self.ctx.db, transfer.simulation_id, transfer.source_id, transfer.product_id, transfer.quantity
            )
        transfer.status = TransferStatus.CANCELLED.value
        return TransitionResult(ok=True, status=transfer.status)


# ─── Services ──────────────────────────────────────────────────────────────


async def _get_transfer(ctx: SimulationContext, transfer_id: uuid.UUID) -> Transfer:
    transfer = await ctx.db.get(Transfer, transfer_id)
    if transfer is None or transfer.simulation_id != ctx.simulation_id:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


async def create_transfer(
    ctx: SimulationContext,
    source_id: uuid.UUID,
    target_id: uuid.UUID,
    product_id: uuid.UUID,
    quantity: int,
    dispatch: bool = False,
) -> Transfer:
    """Route and cost a transfer as a draft; optionally dispatch it immediately."""
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")
    if source_id == target_id:
        raise ValidationError("Source and target must differ")

    db = ctx.db
    for model, row_id in ((Location, source_id), (Location, target_id), (Product, product_id)):
        row = await db.get(model, row_id)
        if row is None or row.simulation_id != ctx.simulation_id:
            raise NotFoundError(f"{model.__name__} {row_id} not found")

    graph = await LocationGraph.load(db, ctx.simulation_id)
    path = Router(graph).shortest_path(source_id, target_id)
    if path is None:
        raise NoPathFoundError(source_id, target_id)

    transit_days = sum(graph.quoted_transit_days(route, product_id) for route in path.routes)
    transfer = Transfer(
        simulation_id=ctx.simulation_id,
        source_id=source_id,
        target_id=target_id,
        product_id=product_id,
        quantity=quantity,
        total_cost=int(path.total_cost),
        status=TransferStatus.DRAFT.value,
        route_path=[str(route_id) for route_id in path.route_ids],
        total_transit_days=transit_days,
        created_day=ctx.day,
    )
    db.add(transfer)
    await db.flush()

    logger.info(
        "transfer.created",
        transfer_id=str(transfer.transfer_id),
        quantity=quantity,
        total_cost=transfer.total_cost,
        transit_days=transit_days,
    )

    if dispatch:
        await dispatch_transfer(ctx, transfer.transfer_id)
    return transfer


async def dispatch_transfer(ctx: SimulationContext, transfer_id: uuid.UUID) -> Transfer:
    transfer = await _get_transfer(ctx, transfer_id)
    machine = TransferStateMachine(ctx)
    require_transition(machine, transfer, TransferStatus.IN_TRANSIT.value, "transfer")
    result = await machine.transition(transfer, TransferStatus.IN_TRANSIT)
    result.raise_for_failure()
    logger.info("transfer.dispatched", transfer_id=str(transfer.transfer_id), delivery_day=transfer.delivery_day)
    return transfer


async def cancel_transfer(ctx: SimulationContext, transfer_id: uuid.UUID) -> Transfer:
    transfer = await _get_transfer(ctx, transfer_id)
    machine = TransferStateMachine(ctx)
    require_transition(machine, transfer, TransferStatus.CANCELLED.value, "transfer")
    result = await machine.transition(transfer, TransferStatus.CANCELLED)
    result.raise_for_failure()
    logger.info("transfer.cancelled", transfer_id=str(transfer.transfer_id))
    return transfer


async def complete_due_transfers(ctx: SimulationContext) -> list[Transfer]:
    """In-transit transfers whose delivery day has come move to completed."""
    due = (
        await ctx.db.execute(
            select(Transfer)
            .where(
                Transfer.simulation_id == ctx.simulation_id,
                Transfer.status == TransferStatus.IN_TRANSIT.value,
                Transfer.delivery_day <= ctx.day,
            )
            .order_by(Transfer.delivery_day, Transfer.created_at)
        )
    ).scalars().all()

    machine = TransferStateMachine(ctx)
    completed = []
    for transfer in due:
        result = await machine.transition(transfer, TransferStatus.COMPLETED)
        result.raise_for_failure()
        completed.append(transfer)
    return completed
