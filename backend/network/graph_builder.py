"""
Graph Builder

Converts normalized entity records into typed nodes and directed, attributed
edges on a networkx MultiDiGraph (several edges between the same pair are
allowed, e.g. two PSC filings with different percentages).

Invariants:
- node ids are unique; re-adding an id merges attributes into the existing node
- an edge may only reference ids already present as nodes (DanglingEdge otherwise)
- risk flags are derived at insertion time from a fixed rule table
"""
from datetime import date
from typing import Callable, Iterable, Literal, Optional

import networkx as nx
from loguru import logger

from core.errors import DanglingEdge
from core.schemas import (
    UNKNOWN,
    Entity,
    EntityRecord,
    EntityType,
    GraphSnapshot,
    NetworkMetrics,
    Percent,
    Relationship,
    RelationshipKind,
    SourceStatus,
)
from network.normalizer import normalize_address, normalize_key


Direction = Literal["out", "in", "both"]
EdgeFilter = Callable[[Relationship], bool]


# ============================================
# Node ids
# ============================================

def company_node_id(company_number: str) -> str:
    if not company_number or not company_number.strip():
        raise ValueError("company number must be a non-empty string")
    return f"company:{company_number.strip().upper().zfill(8)}"


def officer_node_id(officer_id: Optional[str], name: str) -> str:
    if officer_id:
        return f"officer:{officer_id}"
    return f"officer:{normalize_key(name)}"


def psc_node_id(name: str) -> str:
    return f"psc:{normalize_key(name)}"


def address_node_id(address: str) -> str:
    return f"address:{normalize_address(address)}"


def registry_id(node_id: str) -> str:
    """Strip the type prefix from a node id."""
    return node_id.split(":", 1)[1]


# ============================================
# Risk flag rule table
# ============================================

def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _past_due(entity: Entity, as_of: date, flag_attr: str, due_attr: str) -> bool:
    if entity.attributes.get(flag_attr):
        return True
    due = _parse_date(entity.attributes.get(due_attr))
    return due is not None and (as_of - due).days > 0


def _recently_incorporated(entity: Entity, as_of: date) -> bool:
    created = _parse_date(entity.attributes.get("date_of_creation"))
    return created is not None and 0 <= (as_of - created).days < 365


RISK_FLAG_RULES: tuple[tuple[str, Callable[[Entity, date], bool]], ...] = (
    ("dissolved", lambda e, as_of: e.status.lower() == "dissolved"),
    ("overdueFiling", lambda e, as_of: _past_due(e, as_of, "accounts_overdue", "accounts_next_due")),
    ("overdueConfirmationStatement", lambda e, as_of: _past_due(
        e, as_of, "confirmation_statement_overdue", "confirmation_statement_next_due")),
    ("liquidated", lambda e, as_of: bool(e.attributes.get("has_been_liquidated")) or e.status.lower() == "liquidation"),
    ("insolvencyHistory", lambda e, as_of: bool(e.attributes.get("has_insolvency_history"))),
    ("hasCharges", lambda e, as_of: bool(e.attributes.get("has_charges"))),
    ("recentlyIncorporated", _recently_incorporated),
)

RISK_WEIGHTS = {
    "dissolved": 0.6,
    "overdueFiling": 0.4,
    "overdueConfirmationStatement": 0.2,
    "liquidated": 0.5,
    "insolvencyHistory": 0.5,
    "hasCharges": 0.1,
    "recentlyIncorporated": 0.1,
}


def derive_risk_flags(entity: Entity, as_of: date) -> list[str]:
    return [flag for flag, rule in RISK_FLAG_RULES if rule(entity, as_of)]


def base_risk_score(flags: Iterable[str]) -> float:
    return min(1.0, sum(RISK_WEIGHTS.get(flag, 0.0) for flag in flags))


# ============================================
# Builder
# ============================================

class GraphBuilder:
    """Builds the relationship graph for a single analysis request."""

    def __init__(self, as_of: Optional[date] = None):
        self.as_of = as_of or date.today()
        self.graph = nx.MultiDiGraph()
        self._loaded: set[str] = set()
        self._edge_seq = 0

        # Track data sources for transparency
        self.sources: list[SourceStatus] = []
        self.unreachable: dict[str, dict[str, str]] = {}

    # ---------- nodes ----------

    def has_entity(self, entity_id: str) -> bool:
        return self.graph.has_node(entity_id)

    def entity(self, entity_id: str) -> Entity:
        return self.graph.nodes[entity_id]["entity"]

    def entities(self) -> list[Entity]:
        return [data["entity"] for _, data in self.graph.nodes(data=True)]

    def add_entity(self, record: Entity) -> Entity:
        """Insert a node, or merge into the existing node with the same id."""
        existing: Optional[Entity] = self.graph.nodes[record.id]["entity"] if self.has_entity(record.id) else None

        if existing is None:
            merged = record
        else:
            if existing.type != record.type:
                raise ValueError(f"Entity {record.id} already exists as {existing.type.value}, not {record.type.value}")
            attributes = dict(existing.attributes)
            attributes.update({k: v for k, v in record.attributes.items() if v is not None})
            merged = Entity(
                id=existing.id,
                type=existing.type,
                label=record.label or existing.label,
                status=record.status if record.status != UNKNOWN else existing.status,
                attributes=attributes,
            )

        # flags always reflect the current merged state, never an earlier stub
        flags = sorted(derive_risk_flags(merged, self.as_of))
        merged = merged.model_copy(update={"risk_flags": flags})

        if existing is None:
            self.graph.add_node(merged.id, entity=merged)
        else:
            self.graph.nodes[merged.id]["entity"] = merged
        return merged

    def is_loaded(self, entity_id: str) -> bool:
        return entity_id in self._loaded

    def mark_loaded(self, entity_id: str) -> None:
        self._loaded.add(entity_id)

    def needs_fetch(self, entity_id: str) -> bool:
        """True when the node's own registry record has not been incorporated yet."""
        if self.is_loaded(entity_id) or not self.has_entity(entity_id):
            return False
        entity = self.entity(entity_id)
        if entity.type == EntityType.PSC:
            return False
        if entity.type == EntityType.OFFICER:
            return bool(entity.attributes.get("officer_id"))
        return True

    # ---------- edges ----------

    def add_relationship(
        self,
        from_id: str,
        to_id: str,
        kind: RelationshipKind,
        ownership_percent: Optional[Percent] = None,
        role: Optional[str] = None,
        appointed_on: Optional[str] = None,
        resigned_on: Optional[str] = None,
        attributes: Optional[dict] = None,
    ) -> Relationship:
        """Add a directed edge between two existing nodes."""
        missing = [node for node in (from_id, to_id) if not self.has_entity(node)]
        if missing:
            logger.error(f"[GraphBuilder] Dangling {kind.value} edge {from_id} -> {to_id}")
            raise DanglingEdge(from_id, to_id, kind.value, missing)

        attributes = attributes or {}
        # Identical edges are not duplicated; differing ones between the same pair are kept
        for _, _, data in self.graph.out_edges(from_id, data=True):
            rel: Relationship = data["relationship"]
            if (
                rel.target == to_id
                and rel.kind == kind
                and rel.ownership_percent == ownership_percent
                and rel.role == role
                and rel.appointed_on == appointed_on
                and rel.resigned_on == resigned_on
                and rel.attributes == attributes
            ):
                return rel

        self._edge_seq += 1
        relationship = Relationship(
            id=f"{kind.value}:{self._edge_seq}",
            source=from_id,
            target=to_id,
            kind=kind,
            ownership_percent=ownership_percent,
            role=role,
            appointed_on=appointed_on,
            resigned_on=resigned_on,
            attributes=attributes,
        )
        self.graph.add_edge(from_id, to_id, key=relationship.id, relationship=relationship)
        return relationship

    def relationships(self) -> list[Relationship]:
        return [data["relationship"] for _, _, data in self.graph.edges(data=True)]

    def neighbors(
        self,
        entity_id: str,
        edge_filter: Optional[EdgeFilter] = None,
        direction: Direction = "both",
    ) -> list[tuple[str, Relationship]]:
        """Adjacent node ids reachable through accepted edges."""
        found = []
        if direction in ("out", "both"):
            for _, target, data in self.graph.out_edges(entity_id, data=True):
                rel = data["relationship"]
                if edge_filter is None or edge_filter(rel):
                    found.append((target, rel))
        if direction in ("in", "both"):
            for source, _, data in self.graph.in_edges(entity_id, data=True):
                rel = data["relationship"]
                if edge_filter is None or edge_filter(rel):
                    found.append((source, rel))
        return found

    # ---------- record incorporation ----------

    def add_address(self, address: Optional[str]) -> Optional[str]:
        if not address or not normalize_address(address):
            return None
        node = self.add_entity(Entity(
            id=address_node_id(address),
            type=EntityType.ADDRESS,
            label=address,
            attributes={"address": address},
        ))
        return node.id

    def _add_company_stub(self, company_number: str, label: str, status: str = UNKNOWN, **attributes) -> str:
        attributes["company_number"] = company_number
        node = self.add_entity(Entity(
            id=company_node_id(company_number),
            type=EntityType.COMPANY,
            label=label,
            status=status or UNKNOWN,
            attributes=attributes,
        ))
        return node.id

    def incorporate(self, record: EntityRecord) -> str:
        """Add a fetched record to the graph. Returns the record's node id."""
        self.sources.extend(record.statuses)
        if record.entity_type == EntityType.COMPANY:
            node_id = self._incorporate_company(record)
        elif record.entity_type == EntityType.OFFICER:
            node_id = self._incorporate_officer(record)
        elif record.entity_type == EntityType.ADDRESS:
            node_id = self._incorporate_address_listing(record)
        else:
            raise ValueError(f"No registry record shape for {record.entity_type.value}")
        self.mark_loaded(node_id)
        return node_id

    def _incorporate_company(self, record: EntityRecord) -> str:
        profile = record.profile
        attributes: dict = {"company_number": record.entity_id}
        label = record.entity_id
        status = UNKNOWN
        if profile is not None:
            attributes.update(profile.model_dump(exclude={"record_type", "company_name", "company_status"}))
            label = profile.company_name or record.entity_id
            status = profile.company_status
        if record.filing_history:
            attributes["filing_count"] = len(record.filing_history)
            dates = [f.date for f in record.filing_history if f.date]
            if dates:
                attributes["last_filing_date"] = max(dates)

        company = self.add_entity(Entity(
            id=company_node_id(record.entity_id),
            type=EntityType.COMPANY,
            label=label,
            status=status,
            attributes=attributes,
        ))

        address = record.address or (profile.registered_address if profile else None)
        address_id = self.add_address(address)
        if address_id:
            self.add_relationship(company.id, address_id, RelationshipKind.REGISTERED_AT)

        for officer in record.officers:
            officer_node = self.add_entity(Entity(
                id=officer_node_id(officer.officer_id, officer.name),
                type=EntityType.OFFICER,
                label=officer.name,
                attributes={
                    "officer_id": officer.officer_id,
                    "nationality": officer.nationality,
                    "occupation": officer.occupation,
                    "address": officer.address,
                },
            ))
            self.add_relationship(
                officer_node.id,
                company.id,
                RelationshipKind.DIRECTOR_OF,
                role=officer.officer_role,
                appointed_on=officer.appointed_on,
                resigned_on=officer.resigned_on,
            )
            located = self.add_address(officer.address)
            if located:
                self.add_relationship(officer_node.id, located, RelationshipKind.LOCATED_AT)

        for psc in record.pscs:
            if psc.kind in ("corporate", "legal-person") and psc.registration_number:
                # a corporate owner registered here continues the chain as a company
                owner_id = self._add_company_stub(psc.registration_number, psc.name, psc_kind=psc.kind)
            else:
                owner_id = self.add_entity(Entity(
                    id=psc_node_id(psc.name),
                    type=EntityType.PSC,
                    label=psc.name,
                    attributes={
                        "psc_kind": psc.kind,
                        "nationality": psc.nationality,
                        "country_of_residence": psc.country_of_residence,
                        "address": psc.address,
                    },
                )).id
            self.add_relationship(
                owner_id,
                company.id,
                RelationshipKind.PSC_OF,
                ownership_percent=psc.ownership_percent,
                appointed_on=psc.notified_on,
                resigned_on=psc.ceased_on,
                attributes={
                    "ownership_band": psc.ownership_band,
                    "natures_of_control": list(psc.natures_of_control),
                },
            )
            located = self.add_address(psc.address)
            if located and self.entity(owner_id).type == EntityType.PSC:
                self.add_relationship(owner_id, located, RelationshipKind.LOCATED_AT)

        return company.id

    def _incorporate_officer(self, record: EntityRecord) -> str:
        officer_id = officer_node_id(record.entity_id, record.entity_id)
        if not self.has_entity(officer_id):
            self.add_entity(Entity(
                id=officer_id,
                type=EntityType.OFFICER,
                label=record.entity_id,
                attributes={"officer_id": record.entity_id},
            ))
        for appointment in record.appointments:
            company_id = self._add_company_stub(
                appointment.company_number,
                appointment.company_name,
                status=appointment.company_status,
            )
            self.add_relationship(
                officer_id,
                company_id,
                RelationshipKind.DIRECTOR_OF,
                role=appointment.officer_role,
                appointed_on=appointment.appointed_on,
                resigned_on=appointment.resigned_on,
            )

        addresses = list(dict.fromkeys(a.address for a in record.appointments if a.address))
        if addresses and not self.entity(officer_id).attributes.get("address"):
            officer = self.entity(officer_id)
            self.add_entity(Entity(
                id=officer_id,
                type=EntityType.OFFICER,
                label=officer.label,
                attributes={"address": addresses[0]},
            ))
        for address in addresses:
            located = self.add_address(address)
            if located:
                self.add_relationship(officer_id, located, RelationshipKind.LOCATED_AT)
        return officer_id

    def _incorporate_address_listing(self, record: EntityRecord) -> str:
        key = normalize_address(record.entity_id)
        address_id = self.add_address(record.entity_id)
        if address_id is None:
            raise ValueError(f"Cannot build an address node from {record.entity_id!r}")
        skipped = 0
        for listing in record.companies_at_address:
            # search results are fuzzy; only exact normalized matches are registered here
            if normalize_address(listing.address) != key:
                skipped += 1
                continue
            company_id = self._add_company_stub(
                listing.company_number,
                listing.company_name,
                status=listing.company_status,
                date_of_creation=listing.date_of_creation,
                registered_address=listing.address,
            )
            self.add_relationship(company_id, address_id, RelationshipKind.REGISTERED_AT)
        if skipped:
            logger.debug(f"[GraphBuilder] {skipped} search results did not match address '{key}'")
        return address_id

    def record_unreachable(self, entity_id: str, reasons: dict[str, str]) -> None:
        self.unreachable[entity_id] = dict(reasons)

    # ---------- output ----------

    def _subgraph(self, node_ids: Optional[Iterable[str]] = None) -> nx.MultiDiGraph:
        if node_ids is None:
            return self.graph
        return self.graph.subgraph(list(node_ids))

    def snapshot(self, node_ids: Optional[Iterable[str]] = None) -> GraphSnapshot:
        """Immutable copy of the graph induced by node_ids (all nodes when omitted)."""
        sub = self._subgraph(node_ids)
        nodes = [data["entity"] for _, data in sub.nodes(data=True)]
        edges = [data["relationship"] for _, _, data in sub.edges(data=True)]
        return GraphSnapshot(
            nodes=nodes,
            edges=edges,
            statistics={
                "total_entities": len(nodes),
                "total_relationships": len(edges),
                "companies": sum(1 for n in nodes if n.type == EntityType.COMPANY),
                "officers": sum(1 for n in nodes if n.type == EntityType.OFFICER),
                "pscs": sum(1 for n in nodes if n.type == EntityType.PSC),
                "addresses": sum(1 for n in nodes if n.type == EntityType.ADDRESS),
            },
        )

    def metrics(self, node_ids: Optional[Iterable[str]] = None) -> NetworkMetrics:
        """Structural metrics and a 0-100 structural risk score."""
        sub = self._subgraph(node_ids)
        total_nodes = sub.number_of_nodes()
        total_edges = sub.number_of_edges()
        if total_nodes == 0:
            return NetworkMetrics()

        density = (2 * total_edges) / (total_nodes * (total_nodes - 1)) if total_nodes > 1 else 0.0
        degrees = {node: deg for node, deg in sub.degree()}
        connected = [d for d in degrees.values() if d > 0]
        avg_degree = sum(connected) / len(connected) if connected else 0.0

        high_risk = sum(
            1 for _, data in sub.nodes(data=True)
            if base_risk_score(data["entity"].risk_flags) >= 0.6
        )
        inactive = sum(1 for _, _, data in sub.edges(data=True) if not data["relationship"].is_active)
        risk_score = (high_risk / total_nodes) * 50
        if total_edges:
            risk_score += (inactive / total_edges) * 30
        if density > 0.7:
            risk_score += 20

        return NetworkMetrics(
            total_nodes=total_nodes,
            total_edges=total_edges,
            density=round(density, 2),
            avg_degree=round(avg_degree, 2),
            max_degree=max(degrees.values()) if degrees else 0,
            connected_components=nx.number_weakly_connected_components(sub),
            risk_score=min(100, round(risk_score)),
            degrees=degrees,
        )
