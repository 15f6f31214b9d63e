"""
Tick Orchestrator — the atomic day-advance.

advance_day(db, simulation_id):
  0. Lock the simulation row and increment the day
  1. Event Tick     end expired spikes (rollback, SpikeEnded), make sure a
                    guaranteed spike covers the day, activate spikes whose
                    window has opened (apply, SpikeOccurred), then try one
                    random spike
  2. Physics Tick   shipped orders / in-transit transfers that are due are
                    delivered / completed
  3. Analysis Tick  fresh graph snapshot, isolation alerts for every location
  4. TimeAdvanced   one notification with the new day

All of it runs in one UnitOfWork. Any exception rolls everything back (day
counter included) and surfaces as TickAbortedError chained to the cause.
"""

from __future__ import annotations

import enum
import random
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.isolation import IsolationAlertGenerator
from core.config import Settings, get_settings
from core.errors import DomainInvariantError, NotFoundError, TickAbortedError
from db.enums import ResolvedBy
from db.models import Simulation, SpikeEvent
from db.unit_of_work import UnitOfWork
from logistics.graph import LocationGraph
from simulation.context import SimulationContext
from simulation.events import EventDispatcher, SpikeEnded, SpikeOccurred, TimeAdvanced
from spikes.constraints import SpikeConstraintChecker
from spikes.effects import apply_spike, rollback_spike
from spikes.scheduler import SpikeScheduler
from supply_chain.inventory import register_default_listeners
from supply_chain.orders import deliver_due_orders
from supply_chain.transfers import complete_due_transfers

logger = structlog.get_logger()


class TickState(enum.StrEnum):
    IDLE = "idle"
    ADVANCING = "advancing"


@dataclass
class TickReport:
    simulation_id: str
    day: int
    spikes_started: list[str] = field(default_factory=list)
    spikes_ended: list[str] = field(default_factory=list)
    guaranteed_spike_id: str | None = None
    random_spike_id: str | None = None
    orders_delivered: list[str] = field(default_factory=list)
    transfers_completed: list[str] = field(default_factory=list)
    alerts_created: list[str] = field(default_factory=list)
    alerts_resolved: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class TickOrchestrator:
    def __init__(
        self,
        events: EventDispatcher | None = None,
        rng: random.Random | None = None,
        settings: Settings | None = None,
    ):
        self.events = events if events is not None else register_default_listeners(EventDispatcher())
        self.settings = settings or get_settings()
        self._rng = rng
        self.state = TickState.IDLE

    def rng_for(self, simulation_id: uuid.UUID, day: int) -> random.Random:
        if self._rng is not None:
            return self._rng
        if self.settings.random_seed is None:
            return random.Random()
        # Replaying a seeded world reproduces every day's draws.
        return random.Random(f"{self.settings.random_seed}:{simulation_id}:{day}")

    async def advance_day(self, db: AsyncSession, simulation_id: uuid.UUID) -> TickReport:
        if self.state is TickState.ADVANCING:
            raise DomainInvariantError("advance_day re-entered while a day-advance is in progress")

        simulation = await db.get(Simulation, simulation_id)
        if simulation is None:
            raise NotFoundError(f"Simulation {simulation_id} not found")
        target_day = simulation.day + 1

        self.state = TickState.ADVANCING
        try:
            async with UnitOfWork(db, name="tick.advance_day"):
                report = await self._advance(db, simulation_id)
        except Exception as exc:
            logger.error(
                "tick.aborted",
                simulation_id=str(simulation_id),
                day=target_day,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise TickAbortedError(simulation_id, target_day, exc) from exc
        finally:
            self.state = TickState.IDLE

        logger.info(
            "tick.advanced",
            simulation_id=str(simulation_id),
            day=report.day,
            spikes_started=len(report.spikes_started),
            spikes_ended=len(report.spikes_ended),
            orders_delivered=len(report.orders_delivered),
            transfers_completed=len(report.transfers_completed),
            alerts_created=len(report.alerts_created),
        )
        return report

    async def _advance(self, db: AsyncSession, simulation_id: uuid.UUID) -> TickReport:
        simulation = (
            await db.execute(
                select(Simulation)
                .where(Simulation.simulation_id == simulation_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        simulation.day += 1

        ctx = SimulationContext(
            db=db,
            simulation=simulation,
            events=self.events,
            rng=self.rng_for(simulation_id, simulation.day),
            settings=self.settings,
        )
        report = TickReport(simulation_id=str(simulation_id), day=simulation.day)

        await self.event_tick(ctx, report)
        await self.physics_tick(ctx, report)
        await self.analysis_tick(ctx, report)

        await ctx.events.dispatch(TimeAdvanced(day=simulation.day, simulation=simulation))
        return report

    # ── Event Tick ─────────────────────────────────────────────────────────

    async def event_tick(self, ctx: SimulationContext, report: TickReport) -> None:
        db, day = ctx.db, ctx.day

        expired = (
            await db.execute(
                select(SpikeEvent)
                .where(
                    SpikeEvent.simulation_id == ctx.simulation_id,
                    SpikeEvent.is_active.is_(True),
                    SpikeEvent.ends_at_day <= day,
                )
                .order_by(SpikeEvent.starts_at_day, SpikeEvent.created_at)
            )
        ).scalars().all()
        for spike in expired:
            spike.is_active = False
            spike.resolved_by = ResolvedBy.TIME.value
            spike.resolved_at = datetime.utcnow()
            await rollback_spike(db, spike)
            await ctx.events.dispatch(SpikeEnded(spike=spike))
            report.spikes_ended.append(str(spike.spike_id))
            logger.info("spike.ended", spike_id=str(spike.spike_id), spike_type=spike.spike_type, day=day)

        checker = SpikeConstraintChecker(db, ctx.simulation, ctx.settings)
        scheduler = SpikeScheduler(ctx, checker)

        guaranteed = await scheduler.ensure_guaranteed_spike(day)
        if guaranteed is not None:
            report.guaranteed_spike_id = str(guaranteed.spike_id)

        starting = (
            await db.execute(
                select(SpikeEvent)
                .where(
                    SpikeEvent.simulation_id == ctx.simulation_id,
                    SpikeEvent.is_active.is_(False),
                    SpikeEvent.resolved_at.is_(None),
                    SpikeEvent.starts_at_day <= day,
                    SpikeEvent.ends_at_day > day,
                )
                .order_by(SpikeEvent.starts_at_day, SpikeEvent.created_at)
            )
        ).scalars().all()
        for spike in starting:
            await self._activate(ctx, checker, spike, report)

        random_spike = await scheduler.generate_random(day)
        if random_spike is not None:
            report.random_spike_id = str(random_spike.spike_id)
            await self._activate(ctx, checker, random_spike, report)

    async def _activate(
        self,
        ctx: SimulationContext,
        checker: SpikeConstraintChecker,
        spike: SpikeEvent,
        report: TickReport,
    ) -> None:
        spike.is_active = True
        spike.activated_day = ctx.day
        checker.record_spike_started(spike.spike_type, spike.starts_at_day)
        await apply_spike(ctx.db, spike)
        await ctx.db.flush()
        await ctx.events.dispatch(SpikeOccurred(spike=spike))
        report.spikes_started.append(str(spike.spike_id))
        logger.info(
            "spike.started",
            spike_id=str(spike.spike_id),
            spike_type=spike.spike_type,
            magnitude=spike.magnitude,
            day=ctx.day,
        )

    # ── Physics Tick ───────────────────────────────────────────────────────

    async def physics_tick(self, ctx: SimulationContext, report: TickReport) -> None:
        for transfer in await complete_due_transfers(ctx):
            report.transfers_completed.append(str(transfer.transfer_id))
        for order in await deliver_due_orders(ctx):
            report.orders_delivered.append(str(order.order_id))

    # ── Analysis Tick ──────────────────────────────────────────────────────

    async def analysis_tick(self, ctx: SimulationContext, report: TickReport) -> None:
        await ctx.db.flush()
        graph = await LocationGraph.load(ctx.db, ctx.simulation_id)
        isolation = await IsolationAlertGenerator(
            ctx.db, ctx.simulation_id, ctx.day, graph, ctx.settings
        ).run()
        report.alerts_created.extend(str(alert.alert_id) for alert in isolation.created)
        report.alerts_resolved.extend(str(alert.alert_id) for alert in isolation.resolved)


async def advance_day(db: AsyncSession, simulation_id: uuid.UUID, events: EventDispatcher | None = None) -> TickReport:
    return await TickOrchestrator(events=events).advance_day(db, simulation_id)
