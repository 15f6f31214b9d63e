"""Per-simulation context passed explicitly into every core operation."""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.models import Simulation
from simulation.events import EventDispatcher


@dataclass
class SimulationContext:
    db: AsyncSession
    simulation: Simulation
    events: EventDispatcher
    rng: random.Random = field(default_factory=random.Random)
    settings: Settings = field(default_factory=get_settings)

    @property
    def simulation_id(self) -> uuid.UUID:
        return self.simulation.simulation_id

    @property
    def day(self) -> int:
        return self.simulation.day
