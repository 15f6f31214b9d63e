"""
Tests for the in-process event dispatcher and the unit of work.
"""

import pytest

from core.errors import ValidationError
from db.models import Simulation
from db.unit_of_work import UnitOfWork
from simulation.events import EventDispatcher, TimeAdvanced


def _tick(day=2):
    return TimeAdvanced(day=day, simulation=Simulation(name="Events", day=day, cash=0))


class TestEventDispatcher:
    @pytest.mark.asyncio
    async def test_handlers_run_in_subscription_order(self):
        events = EventDispatcher()
        calls = []

        async def async_handler(event):
            calls.append(("async", event.day))

        events.subscribe(TimeAdvanced, lambda event: calls.append(("sync", event.day)))
        events.subscribe(TimeAdvanced, async_handler)

        await events.dispatch(_tick(3))

        assert calls == [("sync", 3), ("async", 3)]

    @pytest.mark.asyncio
    async def test_events_only_reach_their_own_handlers(self):
        events = EventDispatcher()
        calls = []
        events.subscribe(TimeAdvanced, calls.append)

        await events.dispatch(object())

        assert calls == []

    @pytest.mark.asyncio
    async def test_handler_errors_propagate_and_stop_dispatch(self):
        events = EventDispatcher()
        calls = []

        def broken(event):
            raise RuntimeError("boom")

        events.subscribe(TimeAdvanced, broken)
        events.subscribe(TimeAdvanced, calls.append)

        with pytest.raises(RuntimeError, match="boom"):
            await events.dispatch(_tick())
        assert calls == []

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        events = EventDispatcher()
        calls = []
        events.subscribe(TimeAdvanced, calls.append)
        events.unsubscribe(TimeAdvanced, calls.append)
        events.unsubscribe(TimeAdvanced, calls.append)

        await events.dispatch(_tick())

        assert calls == []
        assert events.handlers_for(TimeAdvanced) == []


class TestUnitOfWork:
    @pytest.mark.asyncio
    async def test_clean_exit_commits(self, test_db, world):
        simulation = world["simulation"]

        async with UnitOfWork(test_db, name="test.commit") as uow_db:
            simulation.cash = 42
        await test_db.rollback()
        await test_db.refresh(simulation)

        assert uow_db is test_db
        assert simulation.cash == 42

    @pytest.mark.asyncio
    async def test_exception_rolls_back_and_propagates(self, test_db, world):
        simulation = world["simulation"]
        uow = UnitOfWork(test_db, name="test.rollback")

        with pytest.raises(ValidationError):
            async with uow:
                simulation.cash = 42
                await test_db.flush()
                raise ValidationError("nope")

        await test_db.refresh(simulation)
        assert uow.committed is False
        assert simulation.cash == 100_000
