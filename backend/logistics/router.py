"""
Router — cheapest-path search and supply reachability over a LocationGraph.

Algorithm:
1. shortest_path: Dijkstra over active routes, edge weight = effective cost.
   The heap is keyed by (accumulated cost, discovery counter) so that equal
   costs resolve to whichever node was discovered first.
2. is_reachable_from_supply: BFS backwards along incoming active routes from
   the location until a warehouse or vendor is visited.
3. is_premium: premium transport mode, or dearer than the cheapest active
   route between the same two locations.
"""

from __future__ import annotations

import heapq
import itertools
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from db.enums import PREMIUM_TRANSPORT_MODES, SUPPLY_LOCATION_TYPES
from logistics.graph import LocationGraph, RouteEdge

logger = structlog.get_logger()


@dataclass
class PathResult:
    """Ordered routes from source to target with their effective total cost."""

    routes: list[RouteEdge] = field(default_factory=list)
    total_cost: float = 0.0

    @property
    def route_ids(self) -> list[uuid.UUID]:
        return [route.route_id for route in self.routes]

    @property
    def min_capacity(self) -> int | None:
        if not self.routes:
            return None
        return min(route.capacity for route in self.routes)


class Router:
    def __init__(self, graph: LocationGraph):
        self.graph = graph

    def shortest_path(self, source_id: uuid.UUID, target_id: uuid.UUID) -> PathResult | None:
        """Cheapest path through active routes, or None when the target is unreachable."""
        if source_id not in self.graph.locations or target_id not in self.graph.locations:
            return None
        if source_id == target_id:
            return PathResult()

        counter = itertools.count()
        dist: dict[uuid.UUID, float] = {source_id: 0.0}
        prev_route: dict[uuid.UUID, RouteEdge] = {}
        pq: list[tuple[float, int, uuid.UUID]] = [(0.0, next(counter), source_id)]
        settled: set[uuid.UUID] = set()

        while pq:
            cost, _, current = heapq.heappop(pq)
            if current in settled:
                continue
            settled.add(current)
            if current == target_id:
                break

            for route in self.graph.outgoing(current):
                neighbor = route.target_id
                if neighbor in settled or neighbor not in self.graph.locations:
                    continue
                alt = cost + self.graph.effective_cost(route)
                if neighbor not in dist or alt < dist[neighbor]:
                    dist[neighbor] = alt
                    prev_route[neighbor] = route
                    heapq.heappush(pq, (alt, next(counter), neighbor))

        if target_id not in dist:
            return None

        routes: list[RouteEdge] = []
        node = target_id
        while node != source_id:
            route = prev_route[node]
            routes.append(route)
            node = route.source_id
        routes.reverse()

        return PathResult(routes=routes, total_cost=round(dist[target_id], 2))

    def is_reachable_from_supply(self, location_id: uuid.UUID) -> bool:
        """True when some warehouse or vendor can reach the location over active routes."""
        if location_id not in self.graph.locations:
            return False

        queue: deque[uuid.UUID] = deque([location_id])
        visited: set[uuid.UUID] = {location_id}

        while queue:
            current = queue.popleft()
            node = self.graph.locations.get(current)
            if node is not None and node.location_type in SUPPLY_LOCATION_TYPES:
                return True

            for route in self.graph.incoming(current):
                if route.source_id not in visited:
                    visited.add(route.source_id)
                    queue.append(route.source_id)

        return False

    def is_premium(self, route: RouteEdge) -> bool:
        if (route.transport_mode or "").lower() in PREMIUM_TRANSPORT_MODES:
            return True

        alternatives = self.graph.routes_between(route.source_id, route.target_id, active_only=True)
        if not alternatives:
            return False
        cheapest = min(alt.base_cost for alt in alternatives)
        return route.base_cost > cheapest

    def logistics_health(self) -> float:
        """Percentage of routes currently active (100 when the network is empty)."""
        total = len(self.graph.routes)
        if total == 0:
            return 100.0
        active = sum(1 for route in self.graph.routes.values() if route.is_active)
        return active / total * 100


def describe_path(router: Router, path: PathResult, product_id: uuid.UUID | None = None) -> list[dict[str, Any]]:
    graph = router.graph
    return [
        {
            "route_id": str(route.route_id),
            "source_id": str(route.source_id),
            "target_id": str(route.target_id),
            "transport_mode": route.transport_mode,
            "cost": graph.effective_cost(route),
            "transit_days": graph.quoted_transit_days(route, product_id),
            "capacity": route.capacity,
            "is_premium": router.is_premium(route),
        }
        for route in path.routes
    ]


async def get_path(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    source_id: uuid.UUID,
    target_id: uuid.UUID,
) -> dict[str, Any]:
    """Query interface used by the presentation layer."""
    graph = await LocationGraph.load(db, simulation_id)
    router = Router(graph)
    path = router.shortest_path(source_id, target_id)

    if path is None:
        logger.info(
            "logistics.no_path",
            simulation_id=str(simulation_id),
            source_id=str(source_id),
            target_id=str(target_id),
        )
        return {
            "success": False,
            "reachable": False,
            "total_cost": 0.0,
            "path": [],
            "message": "No active routes found between these locations.",
        }

    return {
        "success": True,
        "reachable": True,
        "total_cost": path.total_cost,
        "path": describe_path(router, path),
        "message": None,
    }
