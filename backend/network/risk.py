"""
Risk Propagation Resolver

Base risk comes from each node's risk flags (fixed weights, capped at 1.0).
Every flagged node then contributes base x decay^hops to each other node it
reaches within max_depth, once per distinct simple path, so a node tied to a
flagged entity through several routes accumulates more risk. Unlike the
structural traversal a node may be reached more than once; paths never repeat
a node, which keeps cycles finite. This runs as a post-pass over the already
discovered graph. Each node's total is capped at 1.0.
"""
from collections import Counter
from typing import Iterable, Iterator, Optional

import networkx as nx
from loguru import logger

from config import settings
from core.schemas import NodeRisk, RiskContribution, RiskNetwork
from network.graph_builder import GraphBuilder, base_risk_score
from network.traversal import TraversalEngine, TraversalResult


RECOMMENDED_ACTIONS = {
    "dissolved": "Confirm whether dealings with dissolved entities in the network have ceased",
    "liquidated": "Review liquidation records and creditor exposure",
    "insolvencyHistory": "Obtain insolvency history details before extending credit",
    "overdueFiling": "Request up-to-date accounts; filings are overdue",
    "overdueConfirmationStatement": "Check for an overdue confirmation statement",
    "hasCharges": "Review registered charges over company assets",
    "recentlyIncorporated": "Apply enhanced due diligence to recently incorporated entities",
}


def risk_category(score: float) -> str:
    if score >= 0.75:
        return "critical"
    if score >= 0.5:
        return "high"
    if score >= 0.25:
        return "medium"
    return "low"


def _simple_paths(graph: nx.Graph, source: str, max_depth: int) -> Iterator[list[str]]:
    """Every simple path of 1..max_depth hops leaving source."""
    if max_depth < 1:
        return
    for target in graph.nodes:
        if target != source:
            yield from nx.all_simple_paths(graph, source, target, cutoff=max_depth)


def propagate_risk(
    builder: GraphBuilder,
    seed_id: str,
    nodes: Optional[Iterable[str]] = None,
    max_depth: int = 2,
    decay: Optional[float] = None,
) -> RiskNetwork:
    """Score every node in the (sub)graph and summarise the seed's exposure."""
    decay = settings.RISK_DECAY if decay is None else decay
    if not 0 < decay < 1:
        raise ValueError("decay must be between 0 and 1")

    sub = builder.graph if nodes is None else builder.graph.subgraph(list(nodes))
    undirected = nx.Graph(sub.to_undirected())

    base = {
        node: base_risk_score(data["entity"].risk_flags)
        for node, data in sub.nodes(data=True)
    }
    contributions: dict[str, list[RiskContribution]] = {node: [] for node in base}

    for source, score in base.items():
        if score <= 0:
            continue
        for path in _simple_paths(undirected, source, max_depth):
            hops = len(path) - 1
            contributions[path[-1]].append(RiskContribution(
                source=source,
                hops=hops,
                amount=round(score * decay ** hops, 6),
                path=path,
            ))

    scores = []
    for node, score in base.items():
        entity = builder.entity(node)
        propagated = sum(c.amount for c in contributions[node])
        scores.append(NodeRisk(
            entity_id=node,
            label=entity.label,
            entity_type=entity.type,
            risk_flags=list(entity.risk_flags),
            base_score=round(score, 6),
            propagated_score=round(propagated, 6),
            total_score=round(min(1.0, score + propagated), 6),
            contributions=sorted(contributions[node], key=lambda c: (c.hops, c.source, c.path)),
        ))
    scores.sort(key=lambda s: (-s.total_score, s.entity_id))

    flag_counts = Counter(flag for s in scores for flag in s.risk_flags)
    factors = [flag for flag, _ in sorted(flag_counts.items(), key=lambda kv: (-kv[1], kv[0]))]

    seed_score = next((s for s in scores if s.entity_id == seed_id), None)
    overall = seed_score.total_score if seed_score else 0.0

    return RiskNetwork(
        seed=seed_id,
        decay=decay,
        scores=scores,
        overall_risk_score=overall,
        risk_category=risk_category(overall),
        primary_risk_factors=factors[:5],
        recommended_actions=[RECOMMENDED_ACTIONS[f] for f in factors if f in RECOMMENDED_ACTIONS],
        risk_connections=[s.entity_id for s in scores if s.entity_id != seed_id and s.base_score > 0],
    )


async def resolve_risk_network(
    traversal: TraversalEngine,
    seed_id: str,
    depth: int,
    decay: Optional[float] = None,
) -> tuple[TraversalResult, RiskNetwork]:
    """Discover the seed's neighbourhood, then propagate risk across it."""
    expansion = await traversal.expand(seed_id, depth, direction="both")
    network = propagate_risk(
        traversal.builder,
        seed_id,
        nodes=expansion.visited,
        max_depth=expansion.depth_applied,
        decay=decay,
    )
    logger.info(
        f"[RiskPropagationResolver] {seed_id}: overall {network.overall_risk_score} "
        f"({network.risk_category}), {len(network.risk_connections)} risky connections"
    )
    return expansion, network
