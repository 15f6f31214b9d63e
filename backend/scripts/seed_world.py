#!/usr/bin/env python3
"""Seed a demo simulation and optionally play it forward.

Usage:
  python backend/scripts/seed_world.py --create-tables
  python backend/scripts/seed_world.py --name "Demo" --days 7 --seed 42 --pretty
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import random
import sys
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Add backend/ to import path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import get_settings
from core.errors import TickAbortedError
from db.session import Base
from simulation.orchestrator import TickOrchestrator
from simulation.world import initialize_simulation


async def _run(args: argparse.Namespace) -> dict[str, Any]:
    settings = get_settings()
    if args.seed is not None:
        settings = settings.model_copy(update={"random_seed": args.seed})

    engine = create_async_engine(args.database_url or settings.database_url)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        if args.create_tables:
            import db.models  # noqa: F401  (register tables on Base.metadata)

            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            simulation = await initialize_simulation(
                db,
                args.name,
                seed_spikes=not args.no_spikes,
                rng=random.Random(settings.random_seed),
                settings=settings,
            )
            orchestrator = TickOrchestrator(settings=settings)

            days = []
            for _ in range(args.days):
                try:
                    report = await orchestrator.advance_day(db, simulation.simulation_id)
                except TickAbortedError as exc:
                    days.append({"day": exc.day, "aborted": True, "error": str(exc.cause)})
                    break
                days.append(report.to_dict())

            await db.refresh(simulation)
            return {
                "simulation_id": str(simulation.simulation_id),
                "name": simulation.name,
                "day": simulation.day,
                "cash": simulation.cash,
                "days": days,
            }
    finally:
        await engine.dispose()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create a demo ShelfSim world and advance it")
    parser.add_argument("--name", default="Demo World", help="Simulation name")
    parser.add_argument("--days", type=int, default=0, help="Number of days to advance after seeding")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible worlds")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--create-tables", action="store_true", help="Create tables before seeding")
    parser.add_argument("--no-spikes", action="store_true", help="Skip the early-game seeded spikes")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    return parser


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    if args.days < 0:
        parser.error("--days must be non-negative")
    result = asyncio.run(_run(args))
    if args.pretty:
        print(json.dumps(result, indent=2, sort_keys=True))
    else:
        print(json.dumps(result))
    return 1 if any(day.get("aborted") for day in result["days"]) else 0


if __name__ == "__main__":
    raise SystemExit(main())
