"""
Test Configuration — Fixtures for async DB, test client, and world data.

Every test gets its own in-memory SQLite database (StaticPool keeps the one
connection alive), so code under test may commit and roll back freely.
"""

import random
import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401  (register tables on Base.metadata)
from api.deps import get_db
from api.main import app
from core.config import Settings
from db.models import Inventory, Location, Product, Route, Simulation, SpikeEvent
from db.session import Base
from simulation.context import SimulationContext
from simulation.events import EventDispatcher
from supply_chain.inventory import register_default_listeners

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session = AsyncSession(test_engine, expire_on_commit=False)
    yield session
    await session.close()


@pytest.fixture
def settings():
    """Default tunables with random spike generation switched off."""
    return Settings(spike_type_weights={}, random_seed=None)


@pytest.fixture
def events():
    return register_default_listeners(EventDispatcher())


@pytest.fixture
async def client(test_db):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ── World builders ──────────────────────────────────────────────────────────


def add_route(db, simulation, source, target, **overrides) -> Route:
    values = {
        "transport_mode": "truck",
        "base_cost": 100,
        "transit_days": 1,
        "capacity": 100,
        "is_active": True,
        "weather_vulnerable": False,
    }
    values.update(overrides)
    route = Route(
        simulation_id=simulation.simulation_id,
        source_id=source.location_id,
        target_id=target.location_id,
        **values,
    )
    db.add(route)
    return route


def add_spike(db, simulation, spike_type="demand", starts_at_day=2, duration=3, **overrides) -> SpikeEvent:
    values = {
        "magnitude": 1.5,
        "is_active": False,
        "is_guaranteed": False,
        "meta": {},
        "action_log": [],
    }
    values.update(overrides)
    spike = SpikeEvent(
        simulation_id=simulation.simulation_id,
        spike_type=spike_type,
        duration=duration,
        starts_at_day=starts_at_day,
        ends_at_day=starts_at_day + duration,
        **values,
    )
    db.add(spike)
    return spike


@pytest.fixture
async def world(test_db):
    """
    Small deterministic network:

        vendor ──truck 50──▶ warehouse ──truck 100──▶ store_a
           │                     └──truck 100 (weather)──▶ store_b
           └──air 500 (weather)──▶ hub ──air 500 (weather)──▶ store_a

    store_a holds healthy stock, store_b is already low.
    """
    simulation = Simulation(name="Test World", day=1, cash=100_000, spike_cooldowns={})
    test_db.add(simulation)
    await test_db.flush()

    def location(name, location_type, max_storage=1000):
        loc = Location(
            simulation_id=simulation.simulation_id,
            name=name,
            location_type=location_type,
            max_storage=max_storage,
        )
        test_db.add(loc)
        return loc

    vendor = location("Acme Vendor", "vendor", 100_000)
    warehouse = location("Main Warehouse", "warehouse", 5_000)
    hub = location("Air Hub", "hub", 2_000)
    store_a = location("Store A", "store")
    store_b = location("Store B", "store")
    await test_db.flush()

    routes = {
        "vendor_warehouse": add_route(test_db, simulation, vendor, warehouse, base_cost=50, transit_days=2, capacity=500),
        "warehouse_store_a": add_route(test_db, simulation, warehouse, store_a),
        "warehouse_store_b": add_route(test_db, simulation, warehouse, store_b, weather_vulnerable=True),
        "vendor_hub": add_route(
            test_db, simulation, vendor, hub, transport_mode="air", base_cost=500, weather_vulnerable=True
        ),
        "hub_store_a": add_route(
            test_db, simulation, hub, store_a, transport_mode="air", base_cost=500, weather_vulnerable=True
        ),
    }

    product = Product(simulation_id=simulation.simulation_id, sku="SKU-0001", name="Test Product", unit_cost=200)
    test_db.add(product)
    await test_db.flush()

    for loc, quantity in ((warehouse, 200), (store_a, 50), (store_b, 5)):
        test_db.add(
            Inventory(
                simulation_id=simulation.simulation_id,
                location_id=loc.location_id,
                product_id=product.product_id,
                quantity=quantity,
            )
        )
    await test_db.commit()

    return {
        "simulation": simulation,
        "vendor": vendor,
        "warehouse": warehouse,
        "hub": hub,
        "store_a": store_a,
        "store_b": store_b,
        "routes": routes,
        "product": product,
    }


@pytest.fixture
def make_ctx(test_db, events, settings):
    def _make(simulation, seed=7):
        return SimulationContext(
            db=test_db,
            simulation=simulation,
            events=events,
            rng=random.Random(seed),
            settings=settings,
        )

    return _make


def new_id() -> uuid.UUID:
    return uuid.uuid4()
