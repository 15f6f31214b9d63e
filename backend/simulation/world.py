"""
World seeding — a ready-to-play simulation.

The demo network:

    3 vendors ──truck──▶ 2 warehouses ──truck──▶ 5 stores (chained by truck)
        └──────air──▶ Central Transit Hub ──air──┘

Vendor→warehouse trucks are cheap and slow, the air corridor through the
hub is fast but premium and weather-vulnerable. A new game also gets
starting stock, some pipeline activity arriving in the first days and a
handful of seeded spikes in days 2-7.
"""

from __future__ import annotations

import random

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.enums import LocationType
from db.models import Inventory, Location, Product, Route, Simulation
from db.unit_of_work import UnitOfWork
from simulation.context import SimulationContext
from simulation.events import EventDispatcher
from spikes.scheduler import SpikeScheduler
from supply_chain.inventory import register_default_listeners
from supply_chain.orders import place_order, ship_order
from supply_chain.transfers import create_transfer

logger = structlog.get_logger()

VENDOR_NAMES = ["Northfield Farms", "Harbor Packaging Co.", "Summit Beverages"]
WAREHOUSE_NAMES = ["North Distribution Center", "South Distribution Center"]
STORE_NAMES = ["Downtown Market", "Riverside Store", "Hillcrest Store", "Lakeside Store", "Airport Express"]
HUB_NAME = "Central Transit Hub"

# (sku, name, unit_cost cents, perishable)
PRODUCT_CATALOG = [
    ("MILK-1L", "Whole Milk 1L", 189, True),
    ("BREAD-WHT", "White Bread Loaf", 249, True),
    ("COFFEE-500", "Ground Coffee 500g", 899, False),
    ("PASTA-1KG", "Dry Pasta 1kg", 319, False),
    ("WATER-6PK", "Spring Water 6-pack", 449, False),
]

# mode, base_cost, transit_days, capacity, weather_vulnerable
VENDOR_TO_WAREHOUSE = ("truck", 50, 2, 500, False)
WAREHOUSE_TO_STORE = ("truck", 100, 1, 300, False)
STORE_TO_STORE = ("truck", 150, 3, 150, False)
VENDOR_TO_HUB = ("air", 500, 1, 100, True)
HUB_TO_STORE = ("air", 500, 1, 100, True)


def _route(simulation: Simulation, source: Location, target: Location, profile: tuple) -> Route:
    mode, base_cost, transit_days, capacity, weather_vulnerable = profile
    return Route(
        simulation_id=simulation.simulation_id,
        source_id=source.location_id,
        target_id=target.location_id,
        transport_mode=mode,
        base_cost=base_cost,
        transit_days=transit_days,
        capacity=capacity,
        is_active=True,
        weather_vulnerable=weather_vulnerable,
    )


async def seed_network(db: AsyncSession, simulation: Simulation) -> dict[str, list[Location]]:
    def location(name: str, location_type: LocationType, max_storage: int) -> Location:
        return Location(
            simulation_id=simulation.simulation_id,
            name=name,
            location_type=location_type.value,
            max_storage=max_storage,
        )

    vendors = [location(name, LocationType.VENDOR, 100_000) for name in VENDOR_NAMES]
    warehouses = [location(name, LocationType.WAREHOUSE, 5_000) for name in WAREHOUSE_NAMES]
    stores = [location(name, LocationType.STORE, 1_000) for name in STORE_NAMES]
    hub = location(HUB_NAME, LocationType.HUB, 2_000)
    db.add_all([*vendors, *warehouses, *stores, hub])
    await db.flush()

    routes = []
    for vendor in vendors:
        routes.extend(_route(simulation, vendor, warehouse, VENDOR_TO_WAREHOUSE) for warehouse in warehouses)
        routes.append(_route(simulation, vendor, hub, VENDOR_TO_HUB))
    for warehouse in warehouses:
        routes.extend(_route(simulation, warehouse, store, WAREHOUSE_TO_STORE) for store in stores)
    routes.extend(_route(simulation, a, b, STORE_TO_STORE) for a, b in zip(stores, stores[1:]))
    routes.extend(_route(simulation, hub, store, HUB_TO_STORE) for store in stores)
    db.add_all(routes)
    await db.flush()

    logger.info("world.network_seeded", locations=len(vendors) + len(warehouses) + len(stores) + 1, routes=len(routes))
    return {"vendor": vendors, "warehouse": warehouses, "store": stores, "hub": [hub]}


async def seed_products(db: AsyncSession, simulation: Simulation) -> list[Product]:
    products = [
        Product(
            simulation_id=simulation.simulation_id,
            sku=sku,
            name=name,
            unit_cost=unit_cost,
            is_perishable=perishable,
        )
        for sku, name, unit_cost, perishable in PRODUCT_CATALOG
    ]
    db.add_all(products)
    await db.flush()
    return products


async def seed_inventory(
    db: AsyncSession,
    simulation: Simulation,
    network: dict[str, list[Location]],
    products: list[Product],
) -> None:
    """Primary store fully stocked, warehouses in bulk, other stores thin."""
    primary, *secondary = network["store"]
    rows = []
    for product in products:
        rows.append((primary, product, 30 if product.is_perishable else 80))
        rows.extend((warehouse, product, 20 if product.is_perishable else 200) for warehouse in network["warehouse"])
        rows.extend((store, product, 10 if product.is_perishable else 25) for store in secondary)

    db.add_all(
        Inventory(
            simulation_id=simulation.simulation_id,
            location_id=location.location_id,
            product_id=product.product_id,
            quantity=quantity,
        )
        for location, product, quantity in rows
    )
    await db.flush()


async def seed_pipeline(ctx: SimulationContext, network: dict[str, list[Location]], products: list[Product]) -> None:
    """One shipped vendor order and one in-transit transfer, both landing in the first days."""
    store = network["store"][0]
    order = await place_order(
        ctx,
        source_id=network["vendor"][0].location_id,
        destination_id=store.location_id,
        product_id=products[0].product_id,
        quantity=50,
    )
    await ship_order(ctx, order.order_id)

    await create_transfer(
        ctx,
        source_id=network["warehouse"][0].location_id,
        target_id=store.location_id,
        product_id=products[-1].product_id,
        quantity=25,
        dispatch=True,
    )


async def initialize_simulation(
    db: AsyncSession,
    name: str = "New Game",
    *,
    seed_spikes: bool = True,
    seed_pipeline_activity: bool = True,
    rng: random.Random | None = None,
    settings: Settings | None = None,
) -> Simulation:
    settings = settings or get_settings()
    rng = rng or random.Random(settings.random_seed)

    async with UnitOfWork(db, name="world.initialize"):
        simulation = Simulation(name=name, day=1, cash=settings.starting_cash_cents, spike_cooldowns={})
        db.add(simulation)
        await db.flush()

        network = await seed_network(db, simulation)
        products = await seed_products(db, simulation)
        await seed_inventory(db, simulation, network, products)

        ctx = SimulationContext(
            db=db,
            simulation=simulation,
            events=register_default_listeners(EventDispatcher()),
            rng=rng,
            settings=settings,
        )
        if seed_pipeline_activity:
            await seed_pipeline(ctx, network, products)
        seeded = await SpikeScheduler(ctx).seed_initial_spikes() if seed_spikes else []

    logger.info(
        "world.initialized",
        simulation_id=str(simulation.simulation_id),
        cash=simulation.cash,
        seeded_spikes=len(seeded),
    )
    return simulation
