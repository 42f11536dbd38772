"""
Address Cluster Resolver

Groups companies by normalized registered address. Starting from a seed
address it collects every company registered there, then one hop further:
companies registered at any address used by an officer or PSC of those
companies.
"""
from collections import defaultdict
from typing import Iterable, Optional

from loguru import logger

from config import settings
from core.schemas import (
    AddressClusterAnalysis,
    ClusterMember,
    ClusterRiskIndicators,
    EntityType,
    LinkedCluster,
    RelationshipKind,
)
from network.graph_builder import GraphBuilder, base_risk_score
from network.normalizer import normalize_address
from network.traversal import TraversalEngine, TraversalResult


DORMANT_STATUSES = {"dormant", "inactive"}


def group_by_address(items: Iterable[tuple[str, Optional[str]]]) -> dict[str, list[str]]:
    """Group (entity id, address) pairs by normalized address key."""
    clusters: dict[str, list[str]] = defaultdict(list)
    for entity_id, address in items:
        key = normalize_address(address)
        if key and entity_id not in clusters[key]:
            clusters[key].append(entity_id)
    return dict(clusters)


def _registered_here(builder: GraphBuilder, address_id: str) -> list[str]:
    """Company ids with a REGISTERED_AT edge into the address node."""
    return sorted({
        neighbor for neighbor, _ in builder.neighbors(
            address_id, lambda rel: rel.kind == RelationshipKind.REGISTERED_AT, "in"
        )
        if builder.entity(neighbor).type == EntityType.COMPANY
    })


def _people_of(builder: GraphBuilder, company_id: str) -> list[str]:
    people = builder.neighbors(
        company_id,
        lambda rel: rel.kind in (RelationshipKind.DIRECTOR_OF, RelationshipKind.PSC_OF),
        "in",
    )
    return [
        node for node, _ in people
        if builder.entity(node).type in (EntityType.OFFICER, EntityType.PSC)
    ]


def _addresses_of(builder: GraphBuilder, person_id: str) -> list[str]:
    return [
        node for node, _ in builder.neighbors(
            person_id, lambda rel: rel.kind == RelationshipKind.LOCATED_AT, "out"
        )
    ]


def cluster_indicators(
    builder: GraphBuilder,
    members: list[str],
    threshold: int,
) -> tuple[ClusterRiskIndicators, float]:
    """Risk indicators for a cluster and its mean member base risk."""
    entities = [builder.entity(m) for m in members]
    dissolved = sum(1 for e in entities if e.status.lower() == "dissolved")
    dormant = sum(1 for e in entities if e.status.lower() in DORMANT_STATUSES)
    recent = sum(1 for e in entities if "recentlyIncorporated" in e.risk_flags)

    appointments: dict[str, set[str]] = defaultdict(set)
    for member in members:
        for officer, _ in builder.neighbors(
            member, lambda rel: rel.kind == RelationshipKind.DIRECTOR_OF, "in"
        ):
            appointments[officer].add(member)
    shared = sorted(officer for officer, companies in appointments.items() if len(companies) >= 2)

    patterns = []
    if len(members) > threshold:
        patterns.append(f"{len(members)} companies registered at one address (threshold {threshold})")
    if members and dissolved / len(members) > 0.5:
        patterns.append("majority of companies at this address are dissolved")
    if recent >= 5:
        patterns.append(f"{recent} companies incorporated at this address in the last year")
    if shared:
        patterns.append(f"{len(shared)} officers hold appointments at several companies at this address")

    score = (
        sum(base_risk_score(e.risk_flags) for e in entities) / len(entities)
        if entities else 0.0
    )
    indicators = ClusterRiskIndicators(
        dissolved_companies=dissolved,
        dormant_companies=dormant,
        recent_incorporations=recent,
        shared_directors=shared,
        suspicious_patterns=patterns,
    )
    return indicators, round(score, 4)


async def resolve_address_cluster(
    traversal: TraversalEngine,
    address: str,
    threshold: Optional[int] = None,
) -> tuple[TraversalResult, AddressClusterAnalysis]:
    """
    Build the cluster of companies at an address.

    Args:
        traversal: Traversal engine bound to this request's builder
        address: Free-text registered address
        threshold: Cluster size above which size_anomaly_flag is set

    Returns:
        The traversal of the seed address and the cluster analysis
    """
    threshold = threshold if threshold is not None else settings.ADDRESS_CLUSTER_THRESHOLD
    if threshold < 1:
        raise ValueError("threshold must be at least 1")

    builder = traversal.builder
    seed_id = builder.add_address(address)
    if seed_id is None:
        raise ValueError("address must contain at least one letter or digit")
    key = normalize_address(address)

    # Stage 1: companies registered at the seed address
    expansion = await traversal.expand(
        seed_id,
        1,
        edge_filter=lambda rel: rel.kind == RelationshipKind.REGISTERED_AT,
        direction="in",
        loadable={EntityType.COMPANY},
    )
    members = [
        company for company in _registered_here(builder, seed_id)
        if normalize_address(builder.entity(company).attributes.get("registered_address")) in ("", key)
    ]

    # Stage 2: one more hop through the addresses of the members' officers and PSCs
    via: dict[str, set[str]] = defaultdict(set)
    people = set()
    for member in members:
        for person in _people_of(builder, member):
            people.add(person)
            for linked in _addresses_of(builder, person):
                if linked != seed_id:
                    via[linked].add(person)

    if via:
        await traversal.load_all(via)

    # hops from the seed: address 0, members 1, their people 2, linked addresses 3, linked members 4
    hops = dict(expansion.visited)
    for member in members:
        hops.setdefault(member, 1)
    for person in sorted(people):
        hops.setdefault(person, 2)

    linked_clusters = []
    for linked_id in sorted(via):
        linked_members = [c for c in _registered_here(builder, linked_id) if c not in members]
        hops.setdefault(linked_id, 3)
        for linked_member in linked_members:
            hops.setdefault(linked_member, 4)
        linked_clusters.append(LinkedCluster(
            address_key=linked_id.split(":", 1)[1],
            address=builder.entity(linked_id).label,
            via=sorted(via[linked_id]),
            members=linked_members,
        ))

    companies = [n for n in hops if builder.entity(n).type == EntityType.COMPANY]
    clusters = group_by_address(
        (c, builder.entity(c).attributes.get("registered_address")) for c in sorted(companies)
    )

    indicators, cluster_score = cluster_indicators(builder, members, threshold)
    size = len(members)
    if size > threshold:
        logger.warning(f"[AddressClusterResolver] {size} companies at '{key}' exceeds threshold {threshold}")

    analysis = AddressClusterAnalysis(
        seed_address=address,
        address_key=key,
        members=[
            ClusterMember(
                company_id=m,
                label=builder.entity(m).label,
                status=builder.entity(m).status,
                incorporated_on=builder.entity(m).attributes.get("date_of_creation"),
                address=builder.entity(m).attributes.get("registered_address"),
            )
            for m in members
        ],
        linked_clusters=linked_clusters,
        clusters=clusters,
        size=size,
        threshold=threshold,
        size_anomaly_flag=size > threshold,
        risk_indicators=indicators,
        cluster_risk_score=cluster_score,
    )
    logger.info(
        f"[AddressClusterResolver] '{key}': {size} members, {len(linked_clusters)} linked addresses"
    )
    return expansion.model_copy(update={"visited": hops}), analysis
