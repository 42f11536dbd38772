"""
Ownership Chain Resolver

Follows PSC_OF edges from a company toward its controllers (up) or from a
controller toward what it controls (down) and computes effective ownership
along every path.

- effective ownership is the product of the hop percentages
- one unknown hop makes the whole path unknown
- a path that revisits a node already on it is cut and flagged cyclic
- every distinct path is kept; stakes per controller are summed, capped at 100
"""
from collections import defaultdict
from typing import Optional

from loguru import logger

from core.schemas import (
    UNKNOWN,
    UNSUPPORTED,
    ControllerStake,
    EntityType,
    OwnershipChainAnalysis,
    OwnershipDirection,
    OwnershipPath,
    Percent,
    RecordKind,
    Relationship,
    RelationshipKind,
    SourceStatus,
)
from network.graph_builder import GraphBuilder, registry_id
from network.traversal import TraversalEngine, TraversalResult


OWNERSHIP_KINDS = frozenset({RecordKind.PROFILE, RecordKind.PSCS})


def is_ownership_edge(rel: Relationship) -> bool:
    return rel.kind == RelationshipKind.PSC_OF and rel.is_active


def _edge_direction(direction: OwnershipDirection) -> str:
    # PSC_OF points controller -> controlled
    return "in" if direction == OwnershipDirection.UP else "out"


def effective_ownership(percentages: list[Percent]) -> Percent:
    """Multiply hop percentages; any unknown hop makes the result unknown."""
    if any(p == UNKNOWN or p is None for p in percentages):
        return UNKNOWN
    effective = 100.0
    for percent in percentages:
        effective = effective * float(percent) / 100.0
    return round(effective, 6)


def enumerate_paths(
    builder: GraphBuilder,
    seed_id: str,
    direction: OwnershipDirection,
    max_depth: int,
    nodes: Optional[set[str]] = None,
) -> list[OwnershipPath]:
    """
    Every ownership path starting at the seed, one per reached node per route.

    A path is recorded for each prefix, so an intermediate holder gets its own
    (direct or indirect) stake as well as the ultimate controller.
    """
    edge_dir = _edge_direction(direction)
    paths: list[OwnershipPath] = []

    def step_edges(node: str) -> list[tuple[str, Relationship]]:
        return [
            (nbr, rel) for nbr, rel in builder.neighbors(node, is_ownership_edge, edge_dir)
            if nodes is None or nbr in nodes
        ]

    def walk(path: list[str], percentages: list[Percent]) -> None:
        for neighbor, rel in step_edges(path[-1]):
            percent = rel.ownership_percent if rel.ownership_percent is not None else UNKNOWN
            new_path = path + [neighbor]
            new_percentages = percentages + [percent]

            if neighbor in path:
                logger.debug(f"[OwnershipResolver] Cyclic path {' -> '.join(new_path)}")
                paths.append(OwnershipPath(nodes=new_path, percentages=new_percentages, cyclic=True))
                continue

            hops = len(new_path) - 1
            # controllers beyond the ceiling may be known as stubs without having been visited
            truncated = hops >= max_depth and bool(builder.neighbors(neighbor, is_ownership_edge, edge_dir))
            paths.append(OwnershipPath(
                nodes=new_path,
                percentages=new_percentages,
                effective_percent=effective_ownership(new_percentages),
                truncated=truncated,
            ))
            if hops < max_depth:
                walk(new_path, new_percentages)

    if max_depth > 0:
        walk([seed_id], [])
    return paths


def _conflicting_pairs(builder: GraphBuilder, nodes: set[str]) -> set[tuple[str, str]]:
    """Pairs joined by more than one active ownership edge with differing figures."""
    figures: dict[tuple[str, str], set] = defaultdict(set)
    for rel in builder.relationships():
        if is_ownership_edge(rel) and rel.source in nodes and rel.target in nodes:
            figures[(rel.source, rel.target)].add(rel.ownership_percent)
    return {pair for pair, values in figures.items() if len(values) > 1}


def aggregate_stakes(
    builder: GraphBuilder,
    seed_id: str,
    paths: list[OwnershipPath],
    direction: OwnershipDirection,
    nodes: set[str],
) -> OwnershipChainAnalysis:
    """Fold individual paths into per-controller stakes and chain metrics."""
    edge_dir = _edge_direction(direction)
    conflicts = _conflicting_pairs(builder, nodes)

    by_endpoint: dict[str, list[OwnershipPath]] = defaultdict(list)
    for path in paths:
        if path.endpoint != seed_id:
            by_endpoint[path.endpoint].append(path)

    controllers = []
    for entity_id, routes in by_endpoint.items():
        entity = builder.entity(entity_id)
        clean = [p for p in routes if not p.cyclic]
        known = [p.effective_percent for p in clean if p.effective_percent != UNKNOWN]

        total: Optional[Percent]
        if not clean:
            total = None
        elif len(known) < len(clean):
            total = UNKNOWN
        else:
            total = min(100.0, round(sum(known), 6))

        has_further = any(
            nbr in nodes for nbr, _ in builder.neighbors(entity_id, is_ownership_edge, edge_dir)
        )
        ambiguous = any(
            (a, b) in conflicts or (b, a) in conflicts
            for p in routes for a, b in zip(p.nodes, p.nodes[1:])
        )
        controllers.append(ControllerStake(
            entity_id=entity_id,
            label=entity.label,
            entity_type=entity.type,
            depth=min(len(p.nodes) - 1 for p in routes),
            path_count=len(clean),
            cyclic_path_count=len(routes) - len(clean),
            known_percent=min(100.0, round(sum(known), 6)),
            total_percent=total,
            is_ultimate=bool(clean) and not has_further and not any(p.truncated for p in clean),
            ambiguous=ambiguous,
        ))

    controllers.sort(key=lambda c: (c.depth, -c.known_percent, c.entity_id))
    ultimate = [c for c in controllers if c.is_ultimate]

    concentration = sum(
        (c.total_percent / 100.0) ** 2
        for c in ultimate
        if c.total_percent not in (None, UNKNOWN)
    )

    ownership_edges = {
        (rel.source, rel.target)
        for rel in builder.relationships()
        if is_ownership_edge(rel) and rel.source in nodes and rel.target in nodes
    }
    cross_holdings = any((b, a) in ownership_edges for a, b in ownership_edges if a != b)

    clean_paths = [p for p in paths if not p.cyclic]
    return OwnershipChainAnalysis(
        target=seed_id,
        direction=direction,
        paths=paths,
        controllers=controllers,
        ultimate_owners=ultimate,
        chain_length=max((len(p.nodes) - 1 for p in clean_paths), default=0),
        ownership_concentration=round(concentration, 4),
        circular_ownership=any(p.cyclic for p in paths),
        cross_holdings=cross_holdings,
        conflicting_edges=sorted([list(pair) for pair in conflicts]),
    )


async def resolve_ownership(
    traversal: TraversalEngine,
    seed_id: str,
    direction: OwnershipDirection = OwnershipDirection.UP,
    depth: int = 6,
) -> tuple[TraversalResult, OwnershipChainAnalysis]:
    """Discover the ownership neighbourhood of a company and resolve its chains."""
    builder = traversal.builder
    expansion = await traversal.expand(
        seed_id,
        depth,
        edge_filter=is_ownership_edge,
        direction=_edge_direction(direction),
        company_kinds=OWNERSHIP_KINDS,
        loadable={EntityType.COMPANY},
    )
    if direction == OwnershipDirection.DOWN:
        # the registry lists who controls a company, never what a company controls
        logger.warning(
            f"[OwnershipResolver] Holdings of {seed_id} cannot be listed; "
            f"only ownership edges already in the graph are followed"
        )
        builder.sources.append(SourceStatus(
            entity_id=registry_id(seed_id),
            kind=RecordKind.HOLDINGS,
            status="unavailable",
            reason=UNSUPPORTED,
        ))

    nodes = set(expansion.visited)
    paths = enumerate_paths(builder, seed_id, direction, expansion.depth_applied, nodes)
    analysis = aggregate_stakes(builder, seed_id, paths, direction, nodes)

    if analysis.circular_ownership:
        logger.info(f"[OwnershipResolver] Circular ownership detected around {seed_id}")
    logger.info(
        f"[OwnershipResolver] {seed_id}: {len(paths)} paths, "
        f"{len(analysis.controllers)} controllers, {len(analysis.ultimate_owners)} ultimate"
    )
    return expansion, analysis
