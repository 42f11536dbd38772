"""
Directorship network derivation.

Resolves a director name to registry officer ids, expands their appointments
and the co-directors of every appointed company.
"""
from collections import defaultdict
from datetime import date
from typing import Optional

from loguru import logger

from core.errors import EntityUnreachable
from core.schemas import (
    CoDirector,
    DirectorAppointment,
    DirectorshipNetwork,
    Entity,
    EntityType,
    OfficerMatch,
    RecordKind,
    RelationshipKind,
)
from network.graph_builder import GraphBuilder, base_risk_score, officer_node_id
from network.normalizer import normalize_key
from network.traversal import TraversalEngine, TraversalResult


DIRECTOR_KINDS = frozenset({RecordKind.PROFILE, RecordKind.OFFICERS})


def _name_tokens(name: str) -> list[str]:
    # Registry search titles read "SURNAME, Forenames"; compare as a token set
    return sorted(normalize_key(name).split())


def select_officers(name: str, matches: list[OfficerMatch]) -> list[OfficerMatch]:
    """Exact name matches if any, otherwise the best-ranked match."""
    wanted = _name_tokens(name)
    exact = [m for m in matches if _name_tokens(m.name) == wanted]
    if exact:
        return exact
    return matches[:1]


def _is_directorship(rel) -> bool:
    return rel.kind == RelationshipKind.DIRECTOR_OF


def _tenure_years(appointed_on: Optional[str], resigned_on: Optional[str], as_of: date) -> Optional[float]:
    try:
        start = date.fromisoformat(appointed_on) if appointed_on else None
        end = date.fromisoformat(resigned_on) if resigned_on else as_of
    except ValueError:
        return None
    if start is None or end < start:
        return None
    return (end - start).days / 365.25


def summarize_directorships(
    builder: GraphBuilder,
    director_name: str,
    officer_ids: list[str],
) -> DirectorshipNetwork:
    """Appointments, co-directors and tenure for the given officer nodes."""
    appointments = []
    companies: set[str] = set()
    for officer in officer_ids:
        for company_id, rel in builder.neighbors(officer, _is_directorship, "out"):
            company = builder.entity(company_id)
            companies.add(company_id)
            appointments.append(DirectorAppointment(
                company_id=company_id,
                company_name=company.label,
                role=rel.role or "director",
                appointed_on=rel.appointed_on,
                resigned_on=rel.resigned_on,
                is_active=rel.is_active,
                risk_flags=list(company.risk_flags),
            ))
    appointments.sort(key=lambda a: (not a.is_active, a.appointed_on or "", a.company_id))

    shared: dict[str, set[str]] = defaultdict(set)
    for company_id in companies:
        for other, _ in builder.neighbors(company_id, _is_directorship, "in"):
            if other not in officer_ids:
                shared[other].add(company_id)

    co_directors = [
        CoDirector(
            officer_id=other,
            name=builder.entity(other).label,
            shared_companies=sorted(common),
            connection_strength=round(len(common) / len(companies), 4),
        )
        for other, common in shared.items()
    ]
    co_directors.sort(key=lambda c: (-c.connection_strength, c.officer_id))

    tenures = [
        t for t in (_tenure_years(a.appointed_on, a.resigned_on, builder.as_of) for a in appointments)
        if t is not None
    ]

    return DirectorshipNetwork(
        director_name=director_name,
        officer_ids=officer_ids,
        appointments=appointments,
        co_directors=co_directors,
        total_appointments=len(appointments),
        active_appointments=sum(1 for a in appointments if a.is_active),
        average_tenure_years=round(sum(tenures) / len(tenures), 2) if tenures else 0.0,
        risk_score=max((base_risk_score(builder.entity(c).risk_flags) for c in companies), default=0.0),
    )


async def resolve_director_network(
    traversal: TraversalEngine,
    name: str,
) -> tuple[TraversalResult, DirectorshipNetwork]:
    """
    Build the directorship network for a person.

    Raises:
        EntityUnreachable: when the name search fails, finds nobody, or no
            matching officer's appointments could be fetched
    """
    builder = traversal.builder
    matches = await traversal.orchestrator.search_officers(name)
    selected = select_officers(name, matches)
    if not selected:
        raise EntityUnreachable(name, {"officer_search": "not_found"})

    logger.info(f"[DirectorNetwork] '{name}' resolved to {len(selected)} officer id(s)")

    visited: dict[str, int] = {}
    reached = []
    failure: Optional[EntityUnreachable] = None
    expansion = None
    for match in selected:
        seed_id = officer_node_id(match.officer_id, match.name)
        builder.add_entity(Entity(
            id=seed_id,
            type=EntityType.OFFICER,
            label=match.name,
            attributes={"officer_id": match.officer_id, "address": match.address},
        ))
        try:
            expansion = await traversal.expand(
                seed_id,
                2,
                edge_filter=_is_directorship,
                direction="both",
                company_kinds=DIRECTOR_KINDS,
                loadable={EntityType.COMPANY},
            )
        except EntityUnreachable as e:
            logger.warning(f"[DirectorNetwork] Appointments unavailable for {seed_id}")
            builder.record_unreachable(seed_id, e.reasons)
            failure = e
            continue
        reached.append(seed_id)
        for node, depth in expansion.visited.items():
            visited[node] = min(depth, visited.get(node, depth))

    if not reached:
        raise failure

    network = summarize_directorships(builder, name, reached)
    return expansion.model_copy(update={"seed": reached[0], "visited": visited}), network
