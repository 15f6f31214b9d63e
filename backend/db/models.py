"""
ShelfSim Database Models

10 tables for the day-cycle supply-chain simulation.
Multi-world via simulation_id on all world tables.

Tables:
  World (1-5):
  1. simulations       - Game state: day counter, cash, spike cooldowns
  2. locations         - Stores, warehouses, hubs, vendors
  3. products          - Product catalog
  4. inventories       - Stock per location/product
  5. routes            - Directed transport edges between locations

  Disruptions (6-7):
  6. spike_events      - Time-windowed disruptions with reversible effects
  7. spike_resolutions - Audit trail of player actions on spikes

  Pipeline (8-9):
  8. orders            - Vendor purchase orders (draft → pending → shipped → delivered)
  9. transfers         - Inter-location stock movements (draft → in_transit → completed)

  Analysis (10):
  10. alerts           - Isolation alerts with causal spike reference
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from db.session import Base

# ─── 1. Simulations ────────────────────────────────────────────────────────


class Simulation(Base):
    __tablename__ = "simulations"

    simulation_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, default="New Game")
    day = Column(Integer, nullable=False, default=1)
    cash = Column(Integer, nullable=False, default=0)  # cents
    spike_cooldowns = Column(JSON, nullable=False, default=dict)  # spike_type -> last start day
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (CheckConstraint("day >= 1", name="ck_simulation_day"),)


# ─── 2. Locations ───────────────────────────────────────────────────────────


class Location(Base):
    __tablename__ = "locations"

    location_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    name = Column(String(255), nullable=False)
    location_type = Column(String(20), nullable=False)
    max_storage = Column(Integer, nullable=False, default=1000)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_locations_simulation", "simulation_id"),
        CheckConstraint(
            "location_type IN ('store', 'warehouse', 'hub', 'vendor')",
            name="ck_location_type",
        ),
        CheckConstraint("max_storage >= 0", name="ck_location_max_storage"),
    )


# ─── 3. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    sku = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    unit_cost = Column(Integer, nullable=False, default=0)  # cents
    is_perishable = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("simulation_id", "sku", name="uq_product_sku_per_simulation"),
        Index("ix_products_simulation", "simulation_id"),
    )


# ─── 4. Inventories ─────────────────────────────────────────────────────────


class Inventory(Base):
    __tablename__ = "inventories"

    inventory_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    location_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("location_id", "product_id", name="uq_inventory_location_product"),
        Index("ix_inventories_simulation", "simulation_id"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity"),
    )


# ─── 5. Routes ──────────────────────────────────────────────────────────────


class Route(Base):
    __tablename__ = "routes"

    route_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    source_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=False)
    target_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=False)
    transport_mode = Column(String(30), nullable=False, default="truck")
    base_cost = Column(Integer, nullable=False, default=0)
    transit_days = Column(Integer, nullable=False, default=1)
    capacity = Column(Integer, nullable=False, default=100)
    is_active = Column(Boolean, nullable=False, default=True)
    weather_vulnerable = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("source_id", "target_id", "transport_mode", name="uq_route_source_target_mode"),
        Index("ix_routes_simulation", "simulation_id"),
        CheckConstraint("base_cost >= 0", name="ck_route_base_cost"),
        CheckConstraint("transit_days >= 0", name="ck_route_transit_days"),
    )


# ─── 6. Spike Events ────────────────────────────────────────────────────────


class SpikeEvent(Base):
    __tablename__ = "spike_events"

    spike_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    spike_type = Column(String(20), nullable=False)
    magnitude = Column(Float, nullable=False, default=1.0)
    duration = Column(Integer, nullable=False)
    # Scope (all null = global)
    location_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=True)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=True)
    route_id = Column(GUID(), ForeignKey("routes.route_id"), nullable=True)
    # Lookup key only; spikes are never loaded through it as an object graph.
    parent_id = Column(GUID(), nullable=True)
    # Half-open window [starts_at_day, ends_at_day)
    starts_at_day = Column(Integer, nullable=False)
    ends_at_day = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    is_guaranteed = Column(Boolean, nullable=False, default=False)
    activated_day = Column(Integer, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(20), nullable=True)  # time, player
    resolution_cost = Column(Integer, nullable=True)
    meta = Column(JSON, nullable=False, default=dict)
    action_log = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_spike_events_simulation_window", "simulation_id", "starts_at_day", "ends_at_day"),
        CheckConstraint(
            "spike_type IN ('demand', 'delay', 'price', 'breakdown', 'blizzard')",
            name="ck_spike_type",
        ),
        CheckConstraint("resolved_by IS NULL OR resolved_by IN ('time', 'player')", name="ck_spike_resolved_by"),
        CheckConstraint("ends_at_day >= starts_at_day", name="ck_spike_window"),
    )

    @property
    def is_resolvable(self) -> bool:
        """Only breakdown and blizzard spikes can be resolved early by the player."""
        return self.spike_type in ("breakdown", "blizzard")

    def covers_day(self, day: int) -> bool:
        return self.starts_at_day <= day < self.ends_at_day


# ─── 7. Spike Resolutions ───────────────────────────────────────────────────


class SpikeResolution(Base):
    __tablename__ = "spike_resolutions"

    resolution_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    spike_id = Column(GUID(), ForeignKey("spike_events.spike_id"), nullable=False)
    action_type = Column(String(30), nullable=False)  # resolve_early, mitigate, acknowledge
    cost_cents = Column(Integer, nullable=False, default=0)
    effect = Column(JSON, nullable=True)
    game_day = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_spike_resolutions_spike", "spike_id"),
        CheckConstraint("action_type IN ('resolve_early', 'mitigate', 'acknowledge')", name="ck_resolution_action"),
    )


# ─── 8. Orders ──────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    source_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=False)
    location_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    total_cost = Column(Integer, nullable=False, default=0)  # cents
    status = Column(String(20), nullable=False, default="draft")
    route_path = Column(JSON, nullable=False, default=list)  # ordered route ids
    total_transit_days = Column(Integer, nullable=False, default=0)
    created_day = Column(Integer, nullable=False)
    delivery_day = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_orders_simulation_status", "simulation_id", "status"),
        CheckConstraint(
            "status IN ('draft', 'pending', 'shipped', 'delivered', 'cancelled')",
            name="ck_order_status",
        ),
        CheckConstraint("quantity > 0", name="ck_order_quantity"),
    )


# ─── 9. Transfers ───────────────────────────────────────────────────────────


class Transfer(Base):
    __tablename__ = "transfers"

    transfer_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    source_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=False)
    target_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    total_cost = Column(Integer, nullable=False, default=0)  # cents
    status = Column(String(20), nullable=False, default="draft")
    route_path = Column(JSON, nullable=False, default=list)
    total_transit_days = Column(Integer, nullable=False, default=0)
    created_day = Column(Integer, nullable=False)
    delivery_day = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_transfers_simulation_status", "simulation_id", "status"),
        CheckConstraint(
            "status IN ('draft', 'in_transit', 'completed', 'cancelled')",
            name="ck_transfer_status",
        ),
        CheckConstraint("quantity > 0", name="ck_transfer_quantity"),
    )


# ─── 10. Alerts ─────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    alert_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("simulations.simulation_id"), nullable=False)
    location_id = Column(GUID(), ForeignKey("locations.location_id"), nullable=False)
    # Causal reference only: the alert outlives and ignores the spike's lifecycle.
    spike_id = Column(GUID(), ForeignKey("spike_events.spike_id"), nullable=True)
    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    alert_metadata = Column(JSON, nullable=True)
    is_resolved = Column(Boolean, nullable=False, default=False)
    created_day = Column(Integer, nullable=False)
    resolved_day = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_alerts_location_type", "location_id", "alert_type", "is_resolved"),
        CheckConstraint("severity IN ('critical', 'high', 'medium', 'low')", name="ck_alert_severity"),
    )
