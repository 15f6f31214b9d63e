"""
Isolation Alerts — supply reachability × stock level.

Rules (evaluated per location, once per day-advance):
  - isolated + stock below threshold + no open isolation alert → create a
    critical alert pointing at the most likely causal spike
  - reachable → resolve every open isolation alert for the location

Stock level is the lowest quantity across the location's inventory lines.
A location with no inventory lines has nothing to run low on and never
alerts. Supply locations are reachable by definition, so only stores and
hubs ever alert.

A location that becomes isolated again after its alert was resolved gets a
fresh alert; resolved alerts are kept as history.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.enums import SpikeType
from db.models import Alert, Inventory, SpikeEvent
from logistics.graph import LocationGraph, LocationNode
from logistics.router import Router

logger = structlog.get_logger()

ISOLATION_ALERT_TYPE = "isolation"
CAUSAL_SPIKE_TYPES = (SpikeType.BREAKDOWN.value, SpikeType.BLIZZARD.value)


@dataclass
class IsolationReport:
    created: list[Alert] = field(default_factory=list)
    resolved: list[Alert] = field(default_factory=list)


class IsolationAlertGenerator:
    def __init__(
        self,
        db: AsyncSession,
        simulation_id: uuid.UUID,
        day: int,
        graph: LocationGraph,
        settings: Settings | None = None,
    ):
        self.db = db
        self.simulation_id = simulation_id
        self.day = day
        self.graph = graph
        self.router = Router(graph)
        self.settings = settings or get_settings()

    async def stock_level(self, location_id: uuid.UUID) -> int | None:
        result = await self.db.execute(
            select(func.min(Inventory.quantity)).where(Inventory.location_id == location_id)
        )
        lowest = result.scalar()
        return None if lowest is None else int(lowest)

    async def open_alerts(self, location_id: uuid.UUID) -> list[Alert]:
        result = await self.db.execute(
            select(Alert).where(
                Alert.simulation_id == self.simulation_id,
                Alert.location_id == location_id,
                Alert.alert_type == ISOLATION_ALERT_TYPE,
                Alert.is_resolved.is_(False),
            )
        )
        return list(result.scalars().all())

    async def causal_spike(self, location_id: uuid.UUID) -> SpikeEvent | None:
        """Latest active breakdown/blizzard on an incoming route or the location, else the latest global one."""
        incoming_route_ids = [
            route.route_id
            for route in self.graph.routes.values()
            if route.target_id == location_id
        ]
        base = (
            select(SpikeEvent)
            .where(
                SpikeEvent.simulation_id == self.simulation_id,
                SpikeEvent.is_active.is_(True),
                SpikeEvent.spike_type.in_(CAUSAL_SPIKE_TYPES),
            )
            .order_by(SpikeEvent.activated_day.desc(), SpikeEvent.created_at.desc())
            .limit(1)
        )

        scope = [SpikeEvent.location_id == location_id]
        if incoming_route_ids:
            scope.append(SpikeEvent.route_id.in_(incoming_route_ids))
        scoped = (await self.db.execute(base.where(or_(*scope)))).scalars().first()
        if scoped is not None:
            return scoped

        return (
            await self.db.execute(base.where(SpikeEvent.location_id.is_(None), SpikeEvent.route_id.is_(None)))
        ).scalars().first()

    async def evaluate(self, location: LocationNode, report: IsolationReport) -> None:
        if self.router.is_reachable_from_supply(location.location_id):
            for alert in await self.open_alerts(location.location_id):
                alert.is_resolved = True
                alert.resolved_day = self.day
                report.resolved.append(alert)
                logger.info("alert.isolation_resolved", alert_id=str(alert.alert_id), location=location.name)
            return

        stock = await self.stock_level(location.location_id)
        if stock is None or stock >= self.settings.low_stock_threshold:
            return
        if await self.open_alerts(location.location_id):
            return

        cause = await self.causal_spike(location.location_id)
        alert = Alert(
            simulation_id=self.simulation_id,
            location_id=location.location_id,
            spike_id=cause.spike_id if cause else None,
            alert_type=ISOLATION_ALERT_TYPE,
            severity="critical",
            message=f"{location.location_type.title()} '{location.name}' is isolated from supply and low on stock",
            alert_metadata={
                "stock_level": stock,
                "threshold": self.settings.low_stock_threshold,
                "reason": f"Likely due to {cause.spike_type}" if cause else "Unknown network failure",
            },
            is_resolved=False,
            created_day=self.day,
        )
        self.db.add(alert)
        report.created.append(alert)
        logger.warning(
            "alert.isolation_created",
            location=location.name,
            stock_level=stock,
            spike_id=str(cause.spike_id) if cause else None,
        )

    async def run(self) -> IsolationReport:
        report = IsolationReport()
        for location in sorted(self.graph.locations.values(), key=lambda loc: loc.name):
            await self.evaluate(location, report)
        await self.db.flush()
        return report
