"""
Tests for the order and transfer state machines.

Covers:
  - Order placement: routing, live pricing, shipping, cash deduction
  - Guards: funds, route capacity, source stock
  - Transition table enforcement
  - Refunds / stock return on cancellation
  - Delivery and completion feeding inventory through listeners
  - Capacity checks ahead of ordering
"""

import pytest
from sqlalchemy import select

from conftest import add_spike
from core.errors import (
    DomainInvariantError,
    InsufficientFundsError,
    InsufficientStockError,
    NoPathFoundError,
    RouteCapacityExceededError,
    ValidationError,
)
from db.models import Inventory, Order
from simulation.events import OrderCancelled, OrderDelivered, OrderPlaced, TransferCompleted
from supply_chain.orders import (
    OrderStateMachine,
    cancel_order,
    check_capacity,
    deliver_due_orders,
    place_order,
    ship_order,
    submit_order,
)
from supply_chain.transfers import (
    TransferStateMachine,
    cancel_transfer,
    complete_due_transfers,
    create_transfer,
    dispatch_transfer,
)


async def _stock(db, location, product) -> int:
    result = await db.execute(
        select(Inventory.quantity).where(
            Inventory.location_id == location.location_id,
            Inventory.product_id == product.product_id,
        )
    )
    return result.scalar_one()


def _order_args(world, quantity=10, destination="store_a"):
    return {
        "source_id": world["vendor"].location_id,
        "destination_id": world[destination].location_id,
        "product_id": world["product"].product_id,
        "quantity": quantity,
    }


# ── Orders ─────────────────────────────────────────────────────────────


class TestOrderPlacement:
    @pytest.mark.asyncio
    async def test_place_order_prices_routes_and_deducts_cash(self, world, make_ctx, events):
        placed = []
        events.subscribe(OrderPlaced, placed.append)
        ctx = make_ctx(world["simulation"])

        order = await place_order(ctx, **_order_args(world))

        assert order.status == "pending"
        assert order.total_cost == 200 * 10 + 150
        assert order.total_transit_days == 3
        assert order.route_path == [
            str(world["routes"]["vendor_warehouse"].route_id),
            str(world["routes"]["warehouse_store_a"].route_id),
        ]
        assert ctx.simulation.cash == 100_000 - 2150
        assert [event.order for event in placed] == [order]

    @pytest.mark.asyncio
    async def test_active_price_spike_raises_unit_cost(self, test_db, world, make_ctx):
        add_spike(test_db, world["simulation"], "price", starts_at_day=1, magnitude=1.5, is_active=True)
        await test_db.flush()

        order = await place_order(make_ctx(world["simulation"]), **_order_args(world))

        assert order.total_cost == 300 * 10 + 150

    @pytest.mark.asyncio
    async def test_quantity_over_route_capacity_rejected(self, world, make_ctx):
        with pytest.raises(RouteCapacityExceededError, match=r"exceeds route capacity \(100\)"):
            await place_order(make_ctx(world["simulation"]), **_order_args(world, quantity=150))

    @pytest.mark.asyncio
    async def test_unreachable_destination_raises_no_path(self, test_db, world, make_ctx):
        world["routes"]["warehouse_store_b"].is_active = False
        await test_db.flush()

        with pytest.raises(NoPathFoundError):
            await place_order(make_ctx(world["simulation"]), **_order_args(world, destination="store_b"))

    @pytest.mark.asyncio
    async def test_store_cannot_be_order_source(self, world, make_ctx):
        args = _order_args(world)
        args["source_id"] = world["store_a"].location_id
        with pytest.raises(ValidationError, match="vendor or warehouse"):
            await place_order(make_ctx(world["simulation"]), **args)

    @pytest.mark.asyncio
    async def test_insufficient_funds_leaves_draft_untouched(self, world, make_ctx):
        simulation = world["simulation"]
        simulation.cash = 1_000
        ctx = make_ctx(simulation)
        order = await place_order(ctx, **_order_args(world), submit=False)

        with pytest.raises(InsufficientFundsError):
            await submit_order(ctx, order.order_id)

        assert order.status == "draft"
        assert simulation.cash == 1_000

    @pytest.mark.asyncio
    async def test_unaffordable_submitted_order_leaves_no_draft(self, test_db, world, make_ctx):
        simulation = world["simulation"]
        simulation.cash = 1_000

        with pytest.raises(InsufficientFundsError, match=r"Required: \$21\.50"):
            await place_order(make_ctx(simulation), **_order_args(world))

        orders = (
            await test_db.execute(select(Order).where(Order.simulation_id == simulation.simulation_id))
        ).scalars().all()
        assert orders == []
        assert simulation.cash == 1_000


class TestOrderLifecycle:
    @pytest.mark.asyncio
    async def test_ship_sets_delivery_day(self, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        order = await place_order(ctx, **_order_args(world))

        await ship_order(ctx, order.order_id)

        assert order.status == "shipped"
        assert order.delivery_day == 1 + 3

    @pytest.mark.asyncio
    async def test_ship_guard_rechecks_capacity(self, test_db, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        order = await place_order(ctx, **_order_args(world))
        world["routes"]["warehouse_store_a"].capacity = 5
        await test_db.flush()

        result = await OrderStateMachine(ctx).transition(order, "shipped")

        assert result.ok is False
        assert result.status == "pending"
        assert "exceeds route capacity (5)" in result.reason
        with pytest.raises(RouteCapacityExceededError):
            result.raise_for_failure()

    @pytest.mark.asyncio
    async def test_cancel_refunds_total(self, world, make_ctx, events):
        cancelled = []
        events.subscribe(OrderCancelled, cancelled.append)
        ctx = make_ctx(world["simulation"])
        order = await place_order(ctx, **_order_args(world))
        await ship_order(ctx, order.order_id)

        await cancel_order(ctx, order.order_id)

        assert order.status == "cancelled"
        assert ctx.simulation.cash == 100_000
        assert len(cancelled) == 1

    @pytest.mark.asyncio
    async def test_transition_outside_table_is_invariant_error(self, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        order = await place_order(ctx, **_order_args(world))

        with pytest.raises(DomainInvariantError, match="pending -> delivered"):
            await OrderStateMachine(ctx).transition(order, "delivered")

    @pytest.mark.asyncio
    async def test_due_orders_delivered_into_inventory(self, test_db, world, make_ctx, events):
        delivered_events = []
        events.subscribe(OrderDelivered, delivered_events.append)
        ctx = make_ctx(world["simulation"])
        order = await place_order(ctx, **_order_args(world))
        await ship_order(ctx, order.order_id)

        ctx.simulation.day = 3
        assert await deliver_due_orders(ctx) == []

        ctx.simulation.day = 4
        delivered = await deliver_due_orders(ctx)

        assert delivered == [order]
        assert order.status == "delivered"
        assert len(delivered_events) == 1
        assert await _stock(test_db, world["store_a"], world["product"]) == 60

    @pytest.mark.asyncio
    async def test_cancelling_delivered_order_is_refused(self, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        order = await place_order(ctx, **_order_args(world))
        await ship_order(ctx, order.order_id)
        ctx.simulation.day = 4
        await deliver_due_orders(ctx)

        with pytest.raises(ValidationError, match="Cannot move order from 'delivered' to 'cancelled'"):
            await cancel_order(ctx, order.order_id)
        assert ctx.simulation.cash == 100_000 - 2150


class TestCapacityCheck:
    @pytest.mark.asyncio
    async def test_over_capacity_reports_excess(self, world, make_ctx):
        check = await check_capacity(
            make_ctx(world["simulation"]), world["vendor"].location_id, world["store_a"].location_id, 130
        )

        assert check.within_capacity is False
        assert check.route_capacity == 100
        assert check.excess == 30
        assert check.suggestion == "Reduce order size by 30 units."
        assert len(check.route_path) == 2

    @pytest.mark.asyncio
    async def test_within_capacity(self, world, make_ctx):
        check = await check_capacity(
            make_ctx(world["simulation"]), world["vendor"].location_id, world["store_a"].location_id, 100
        )

        assert check.within_capacity is True
        assert check.excess == 0
        assert check.suggestion is None

    @pytest.mark.asyncio
    async def test_unreachable_destination(self, test_db, world, make_ctx):
        world["routes"]["warehouse_store_b"].is_active = False
        await test_db.flush()

        with pytest.raises(NoPathFoundError):
            await check_capacity(
                make_ctx(world["simulation"]), world["vendor"].location_id, world["store_b"].location_id, 10
            )


# ── Transfers ──────────────────────────────────────────────────────────


class TestTransfers:
    @pytest.mark.asyncio
    async def test_dispatch_debits_source_and_sets_delivery_day(self, test_db, world, make_ctx):
        ctx = make_ctx(world["simulation"])

        transfer = await create_transfer(
            ctx,
            world["warehouse"].location_id,
            world["store_b"].location_id,
            world["product"].product_id,
            20,
            dispatch=True,
        )

        assert transfer.status == "in_transit"
        assert transfer.delivery_day == 2
        assert transfer.total_cost == 100
        assert await _stock(test_db, world["warehouse"], world["product"]) == 180

    @pytest.mark.asyncio
    async def test_dispatch_guard_checks_source_stock(self, test_db, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        transfer = await create_transfer(
            ctx, world["warehouse"].location_id, world["store_b"].location_id, world["product"].product_id, 300
        )

        with pytest.raises(InsufficientStockError):
            await dispatch_transfer(ctx, transfer.transfer_id)
        assert transfer.status == "draft"
        assert await _stock(test_db, world["warehouse"], world["product"]) == 200

    @pytest.mark.asyncio
    async def test_dispatch_guard_checks_capacity(self, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        transfer = await create_transfer(
            ctx, world["warehouse"].location_id, world["store_a"].location_id, world["product"].product_id, 150
        )

        result = await TransferStateMachine(ctx).transition(transfer, "in_transit")

        assert result.ok is False
        assert isinstance(result.error, RouteCapacityExceededError)

    @pytest.mark.asyncio
    async def test_cancel_in_transit_returns_stock(self, test_db, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        transfer = await create_transfer(
            ctx,
            world["warehouse"].location_id,
            world["store_a"].location_id,
            world["product"].product_id,
            40,
            dispatch=True,
        )

        await cancel_transfer(ctx, transfer.transfer_id)

        assert transfer.status == "cancelled"
        assert await _stock(test_db, world["warehouse"], world["product"]) == 200

    @pytest.mark.asyncio
    async def test_cancel_draft_leaves_stock_alone(self, test_db, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        transfer = await create_transfer(
            ctx, world["warehouse"].location_id, world["store_a"].location_id, world["product"].product_id, 40
        )

        await cancel_transfer(ctx, transfer.transfer_id)

        assert transfer.status == "cancelled"
        assert await _stock(test_db, world["warehouse"], world["product"]) == 200

    @pytest.mark.asyncio
    async def test_due_transfer_completes_into_target_stock(self, test_db, world, make_ctx, events):
        completed_events = []
        events.subscribe(TransferCompleted, completed_events.append)
        ctx = make_ctx(world["simulation"])
        transfer = await create_transfer(
            ctx,
            world["warehouse"].location_id,
            world["store_b"].location_id,
            world["product"].product_id,
            20,
            dispatch=True,
        )

        ctx.simulation.day = 2
        completed = await complete_due_transfers(ctx)

        assert completed == [transfer]
        assert transfer.status == "completed"
        assert [event.transfer for event in completed_events] == [transfer]
        assert await _stock(test_db, world["store_b"], world["product"]) == 25

    @pytest.mark.asyncio
    async def test_completed_transfer_cannot_be_cancelled(self, world, make_ctx):
        ctx = make_ctx(world["simulation"])
        transfer = await create_transfer(
            ctx,
            world["warehouse"].location_id,
            world["store_b"].location_id,
            world["product"].product_id,
            20,
            dispatch=True,
        )
        ctx.simulation.day = 2
        await complete_due_transfers(ctx)

        with pytest.raises(ValidationError, match="Cannot move transfer from 'completed' to 'cancelled'"):
            await cancel_transfer(ctx, transfer.transfer_id)

    @pytest.mark.asyncio
    async def test_same_source_and_target_rejected(self, world, make_ctx):
        with pytest.raises(ValidationError, match="must differ"):
            await create_transfer(
                make_ctx(world["simulation"]),
                world["store_a"].location_id,
                world["store_a"].location_id,
                world["product"].product_id,
                5,
            )
