import enum


class LocationType(enum.StrEnum):
    STORE = "store"
    WAREHOUSE = "warehouse"
    HUB = "hub"
    VENDOR = "vendor"


class SpikeType(enum.StrEnum):
    DEMAND = "demand"
    DELAY = "delay"
    PRICE = "price"
    BREAKDOWN = "breakdown"
    BLIZZARD = "blizzard"


class ResolvedBy(enum.StrEnum):
    TIME = "time"
    PLAYER = "player"


class OrderStatus(enum.StrEnum):
    DRAFT = "draft"
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class TransferStatus(enum.StrEnum):
    DRAFT = "draft"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ALL_SPIKE_TYPES: tuple[SpikeType, ...] = tuple(SpikeType)
SUPPLY_LOCATION_TYPES = frozenset({LocationType.WAREHOUSE.value, LocationType.VENDOR.value})
PREMIUM_TRANSPORT_MODES = frozenset({"air", "courier", "express"})
