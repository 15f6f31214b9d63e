"""
Order lifecycle — vendor purchase orders moving through the network.

    draft ──▶ pending ──▶ shipped ──▶ delivered
                 │           │
                 └──▶ cancelled ◀──┘

draft → pending     guard: cash ≥ total_cost; deducts cash, emits OrderPlaced
pending → shipped   guard: quantity ≤ smallest route capacity on the path;
                    delivery_day = day + total_transit_days
shipped → delivered emits OrderDelivered (inventory listeners add stock)
→ cancelled         refunds total_cost, emits OrderCancelled

Guard failures come back as a TransitionResult with ok=False. A transition
missing from the table is a programming error (DomainInvariantError).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import select

from core.errors import (
    DomainInvariantError,
    InsufficientFundsError,
    NoPathFoundError,
    NotFoundError,
    RouteCapacityExceededError,
    ValidationError,
)
from db.enums import SUPPLY_LOCATION_TYPES, OrderStatus
from db.models import Location, Order, Product, Route
from logistics.graph import LocationGraph
from logistics.router import Router
from simulation.context import SimulationContext
from simulation.events import OrderCancelled, OrderDelivered, OrderPlaced
from spikes.effects import price_multiplier

logger = structlog.get_logger()


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    status: str
    reason: str | None = None
    error: ValidationError | None = None

    def raise_for_failure(self) -> None:
        if self.ok:
            return
        raise self.error or ValidationError(self.reason or f"Transition refused in status '{self.status}'")


class OrderStateMachine:
    TRANSITIONS: dict[str, frozenset[str]] = {
        OrderStatus.DRAFT.value: frozenset({OrderStatus.PENDING.value}),
        OrderStatus.PENDING.value: frozenset({OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value}),
        OrderStatus.SHIPPED.value: frozenset({OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}),
        OrderStatus.DELIVERED.value: frozenset(),
        OrderStatus.CANCELLED.value: frozenset(),
    }

    def __init__(self, ctx: SimulationContext):
        self.ctx = ctx

    def can_transition(self, order: Order, target: str) -> bool:
        return str(target) in self.TRANSITIONS.get(order.status, frozenset())

    async def transition(self, order: Order, target: str) -> TransitionResult:
        target = str(target)
        if not self.can_transition(order, target):
            raise DomainInvariantError(f"Invalid order transition: {order.status} -> {target}")

        if target == OrderStatus.PENDING:
            return await self._to_pending(order)
        if target == OrderStatus.SHIPPED:
            return await self._to_shipped(order)
        if target == OrderStatus.DELIVERED:
            return await self._to_delivered(order)
        return await self._to_cancelled(order)

    async def _to_pending(self, order: Order) -> TransitionResult:
        simulation = self.ctx.simulation
        if simulation.cash < order.total_cost:
            error = InsufficientFundsError(required=order.total_cost, available=simulation.cash)
            return TransitionResult(ok=False, status=order.status, reason=str(error), error=error)

        simulation.cash -= order.total_cost
        order.status = OrderStatus.PENDING.value
        await self.ctx.events.dispatch(OrderPlaced(order=order))
        return TransitionResult(ok=True, status=order.status)

    async def _to_shipped(self, order: Order) -> TransitionResult:
        route_ids = [uuid.UUID(route_id) for route_id in order.route_path or []]
        if route_ids:
            capacities = (
                await self.ctx.db.execute(select(Route.capacity).where(Route.route_id.in_(route_ids)))
            ).scalars().all()
            min_capacity = min(capacities) if capacities else None
            if min_capacity is not None and order.quantity > min_capacity:
                error = RouteCapacityExceededError(quantity=order.quantity, capacity=min_capacity)
                return TransitionResult(ok=False, status=order.status, reason=str(error), error=error)

        order.status = OrderStatus.SHIPPED.value
        order.delivery_day = self.ctx.day + int(order.total_transit_days or 0)
        return TransitionResult(ok=True, status=order.status)

    async def _to_delivered(self, order: Order) -> TransitionResult:
        order.status = OrderStatus.DELIVERED.value
        await self.ctx.events.dispatch(OrderDelivered(order=order))
        return TransitionResult(ok=True, status=order.status)

    async def _to_cancelled(self, order: Order) -> TransitionResult:
        # Cash left the balance when the order went pending.
        self.ctx.simulation.cash += order.total_cost
        order.status = OrderStatus.CANCELLED.value
        await self.ctx.events.dispatch(OrderCancelled(order=order))
        return TransitionResult(ok=True, status=order.status)


# ─── Services ──────────────────────────────────────────────────────────────


async def _get_order(ctx: SimulationContext, order_id: uuid.UUID) -> Order:
    order = await ctx.db.get(Order, order_id)
    if order is None or order.simulation_id != ctx.simulation_id:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def require_transition(machine, entity, target: str, noun: str) -> None:
    """Reject a player action the transition table does not allow."""
    if not machine.can_transition(entity, target):
        raise ValidationError(f"Cannot move {noun} from '{entity.status}' to '{target}'")


async def place_order(
    ctx: SimulationContext,
    source_id: uuid.UUID,
    destination_id: uuid.UUID,
    product_id: uuid.UUID,
    quantity: int,
    submit: bool = True,
) -> Order:
    """
    Route, price and create an order from a vendor or warehouse.

    Total cost = units × live-priced unit cost + Σ effective route costs.
    With submit=True the draft is moved straight to pending.
    """
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")

    db = ctx.db
    source = await db.get(Location, source_id)
    destination = await db.get(Location, destination_id)
    product = await db.get(Product, product_id)
    for label, row, row_id in (
        ("Location", source, source_id),
        ("Location", destination, destination_id),
        ("Product", product, product_id),
    ):
        if row is None or row.simulation_id != ctx.simulation_id:
            raise NotFoundError(f"{label} {row_id} not found")

    if source.location_type not in SUPPLY_LOCATION_TYPES:
        raise ValidationError(f"Orders must ship from a vendor or warehouse, not a {source.location_type}")
    if source_id == destination_id:
        raise ValidationError("Source and destination must differ")

    graph = await LocationGraph.load(db, ctx.simulation_id)
    router = Router(graph)
    path = router.shortest_path(source_id, destination_id)
    if path is None:
        raise NoPathFoundError(source_id, destination_id)

    min_capacity = path.min_capacity
    if min_capacity is not None and quantity > min_capacity:
        raise RouteCapacityExceededError(quantity=quantity, capacity=min_capacity)

    multiplier = await price_multiplier(db, ctx.simulation_id, destination_id, product_id)
    unit_cost = int(round(product.unit_cost * multiplier))
    shipping = int(sum(graph.effective_cost(route) for route in path.routes))
    transit_days = sum(graph.quoted_transit_days(route, product_id) for route in path.routes)
    total_cost = unit_cost * quantity + shipping

    # Refused before any draft row exists.
    if submit and ctx.simulation.cash < total_cost:
        raise InsufficientFundsError(required=total_cost, available=ctx.simulation.cash)

    order = Order(
        simulation_id=ctx.simulation_id,
        source_id=source_id,
        location_id=destination_id,
        product_id=product_id,
        quantity=quantity,
        total_cost=total_cost,
        status=OrderStatus.DRAFT.value,
        route_path=[str(route_id) for route_id in path.route_ids],
        total_transit_days=transit_days,
        created_day=ctx.day,
        delivery_day=ctx.day + transit_days,
    )
    db.add(order)
    await db.flush()

    logger.info(
        "order.created",
        order_id=str(order.order_id),
        total_cost=order.total_cost,
        price_multiplier=multiplier,
        hops=len(path.routes),
    )

    if submit:
        await submit_order(ctx, order.order_id)
    return order


async def submit_order(ctx: SimulationContext, order_id: uuid.UUID) -> Order:
    order = await _get_order(ctx, order_id)
    machine = OrderStateMachine(ctx)
    require_transition(machine, order, OrderStatus.PENDING.value, "order")
    result = await machine.transition(order, OrderStatus.PENDING)
    result.raise_for_failure()
    logger.info("order.placed", order_id=str(order.order_id), cash=ctx.simulation.cash)
    return order


async def ship_order(ctx: SimulationContext, order_id: uuid.UUID) -> Order:
    order = await _get_order(ctx, order_id)
    machine = OrderStateMachine(ctx)
    require_transition(machine, order, OrderStatus.SHIPPED.value, "order")
    result = await machine.transition(order, OrderStatus.SHIPPED)
    result.raise_for_failure()
    logger.info("order.shipped", order_id=str(order.order_id), delivery_day=order.delivery_day)
    return order


async def cancel_order(ctx: SimulationContext, order_id: uuid.UUID) -> Order:
    order = await _get_order(ctx, order_id)
    machine = OrderStateMachine(ctx)
    require_transition(machine, order, OrderStatus.CANCELLED.value, "order")
    result = await machine.transition(order, OrderStatus.CANCELLED)
    result.raise_for_failure()
    logger.info("order.cancelled", order_id=str(order.order_id), refunded=order.total_cost)
    return order


async def deliver_due_orders(ctx: SimulationContext) -> list[Order]:
    """Shipped orders whose delivery day has come move to delivered."""
    due = (
        await ctx.db.execute(
            select(Order)
            .where(
                Order.simulation_id == ctx.simulation_id,
                Order.status == OrderStatus.SHIPPED.value,
                Order.delivery_day <= ctx.day,
            )
            .order_by(Order.delivery_day, Order.created_at)
        )
    ).scalars().all()

    machine = OrderStateMachine(ctx)
    delivered = []
    for order in due:
        result = await machine.transition(order, OrderStatus.DELIVERED)
        result.raise_for_failure()
        delivered.append(order)
    return delivered


@dataclass(frozen=True)
class CapacityCheck:
    order_quantity: int
    route_capacity: int | None
    route_path: list[str]

    @property
    def within_capacity(self) -> bool:
        return self.route_capacity is None or self.order_quantity <= self.route_capacity

    @property
    def excess(self) -> int:
        if self.route_capacity is None:
            return 0
        return max(0, self.order_quantity - self.route_capacity)

    @property
    def suggestion(self) -> str | None:
        return f"Reduce order size by {self.excess} units." if self.excess else None


async def check_capacity(
    ctx: SimulationContext,
    source_id: uuid.UUID,
    destination_id: uuid.UUID,
    quantity: int,
) -> CapacityCheck:
    """Would ``quantity`` fit through the cheapest path today? Nothing is written."""
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")
    graph = await LocationGraph.load(ctx.db, ctx.simulation_id)
    path = Router(graph).shortest_path(source_id, destination_id)
    if path is None:
        raise NoPathFoundError(source_id, destination_id)
    return CapacityCheck(
        order_quantity=quantity,
        route_capacity=path.min_capacity,
        route_path=[str(route_id) for route_id in path.route_ids],
    )
