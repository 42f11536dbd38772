"""
Traversal Engine

Bounded breadth-first expansion over the graph being built. Registry records
are fetched lazily one level at a time; a level's fetches run concurrently.

- depth is clamped to MAX_TRAVERSAL_DEPTH
- a node is expanded at most once, so cycles terminate
- the seed failing is fatal; a neighbour failing is recorded and skipped
"""
import asyncio
from typing import Iterable, Optional

from loguru import logger
from pydantic import BaseModel

from config import settings
from core.errors import EntityUnreachable
from core.schemas import EntityType, RecordKind
from network.graph_builder import Direction, EdgeFilter, GraphBuilder, registry_id
from network.orchestrator import FetchOrchestrator


DEFAULT_LOADABLE = frozenset({EntityType.COMPANY, EntityType.OFFICER})


class TraversalResult(BaseModel):
    seed: str
    visited: dict[str, int] = {}  # node id -> hop distance from the seed
    depth_requested: int = 0
    depth_applied: int = 0
    depth_clamped: bool = False


def clamp_depth(depth: int) -> tuple[int, bool]:
    """Clamp a requested depth into [0, MAX_TRAVERSAL_DEPTH]."""
    if depth < 0:
        raise ValueError("depth must be >= 0")
    if depth > settings.MAX_TRAVERSAL_DEPTH:
        logger.warning(f"[TraversalEngine] Depth {depth} exceeds ceiling, clamping to {settings.MAX_TRAVERSAL_DEPTH}")
        return settings.MAX_TRAVERSAL_DEPTH, True
    return depth, False


class TraversalEngine:
    """Expands a seed entity into its neighbourhood."""

    def __init__(self, orchestrator: FetchOrchestrator, builder: GraphBuilder):
        self.orchestrator = orchestrator
        self.builder = builder

    async def load(
        self,
        entity_id: str,
        company_kinds: Optional[Iterable[RecordKind]] = None,
        fatal: bool = False,
    ) -> bool:
        """
        Fetch and incorporate the registry record behind a node, if it has not been loaded yet.

        Returns False when the entity could not be reached. With fatal=True the
        EntityUnreachable is raised instead.
        """
        builder = self.builder
        if not builder.needs_fetch(entity_id):
            return True

        entity = builder.entity(entity_id)
        key = registry_id(entity_id)
        try:
            if entity.type == EntityType.COMPANY:
                record = await self.orchestrator.fetch_company(key, company_kinds)
            elif entity.type == EntityType.OFFICER:
                record = await self.orchestrator.fetch_officer(entity.attributes["officer_id"])
            else:
                record = await self.orchestrator.fetch_companies_at_address(entity.attributes.get("address") or entity.label)
        except EntityUnreachable as e:
            if fatal:
                raise
            logger.info(f"[TraversalEngine] Skipping unreachable {entity_id}")
            builder.record_unreachable(entity_id, e.reasons)
            builder.mark_loaded(entity_id)
            return False

        builder.incorporate(record)
        builder.mark_loaded(entity_id)
        return True

    async def load_all(
        self,
        entity_ids: Iterable[str],
        company_kinds: Optional[Iterable[RecordKind]] = None,
    ) -> list[bool]:
        """Load several nodes concurrently; an unexpected error is re-raised once every load has settled."""
        results = await asyncio.gather(
            *(self.load(entity_id, company_kinds) for entity_id in entity_ids),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    async def expand(
        self,
        seed_id: str,
        max_depth: int,
        edge_filter: Optional[EdgeFilter] = None,
        direction: Direction = "both",
        company_kinds: Optional[Iterable[RecordKind]] = None,
        loadable: Iterable[EntityType] = DEFAULT_LOADABLE,
    ) -> TraversalResult:
        """
        Breadth-first expansion from a seed node already present in the builder.

        Args:
            seed_id: Node id to start from
            max_depth: Hop limit (0 returns the seed alone)
            edge_filter: Accept only edges for which this returns True
            direction: Follow outgoing, incoming or both edge directions
            company_kinds: Record kinds fetched for company nodes
            loadable: Entity types whose registry records are fetched on discovery

        Returns:
            TraversalResult with the hop distance of every visited node
        """
        if not self.builder.has_entity(seed_id):
            raise ValueError(f"Seed {seed_id} is not in the graph")

        depth, clamped = clamp_depth(max_depth)
        loadable = frozenset(loadable)
        company_kinds = list(company_kinds) if company_kinds else None

        visited = {seed_id: 0}
        frontier = [seed_id]

        # the seed is always loaded, whatever its type
        await self.load(seed_id, company_kinds, fatal=True)

        current_depth = 0
        while frontier and current_depth < depth:
            current_depth += 1

            next_frontier = []
            for node in frontier:
                for neighbor, _ in self.builder.neighbors(node, edge_filter, direction):
                    if neighbor not in visited:
                        visited[neighbor] = current_depth
                        next_frontier.append(neighbor)

            logger.debug(f"[TraversalEngine] Depth {current_depth}: {len(next_frontier)} new entities from {seed_id}")

            to_load = [
                node for node in next_frontier
                if self.builder.entity(node).type in loadable and self.builder.needs_fetch(node)
            ]
            if to_load:
                await self.load_all(to_load, company_kinds)

            frontier = next_frontier

        logger.info(f"[TraversalEngine] Visited {len(visited)} entities from {seed_id} (depth {depth})")
        return TraversalResult(
            seed=seed_id,
            visited=visited,
            depth_requested=max_depth,
            depth_applied=depth,
            depth_clamped=clamped,
        )
