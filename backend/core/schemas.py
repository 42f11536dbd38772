"""
Pydantic Schemas for the Registry Network Engine
"""
from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import Any, Literal, Optional, Union
from datetime import datetime
from enum import Enum


UNKNOWN = "unknown"
UNSUPPORTED = "unsupported"

# An ownership percentage in [0, 100], or "unknown" when the registry does not say
Percent = Union[float, Literal["unknown"]]


# ============================================
# Enums
# ============================================

class EntityType(str, Enum):
    COMPANY = "company"
    OFFICER = "officer"
    PSC = "psc"
    ADDRESS = "address"


class RelationshipKind(str, Enum):
    DIRECTOR_OF = "DIRECTOR_OF"      # Officer -> Company
    PSC_OF = "PSC_OF"                # PSC (or corporate owner) -> Company
    REGISTERED_AT = "REGISTERED_AT"  # Company -> Address
    LOCATED_AT = "LOCATED_AT"        # Officer / PSC -> Address (service address)


class RecordKind(str, Enum):
    PROFILE = "profile"
    OFFICERS = "officers"
    PSCS = "pscs"
    FILING_HISTORY = "filing_history"
    ADDRESS = "address"
    APPOINTMENTS = "appointments"
    COMPANIES_AT_ADDRESS = "companies_at_address"
    HOLDINGS = "holdings"  # what a company controls; the registry has no such listing


COMPANY_RECORD_KINDS = frozenset({
    RecordKind.PROFILE,
    RecordKind.OFFICERS,
    RecordKind.PSCS,
    RecordKind.FILING_HISTORY,
    RecordKind.ADDRESS,
})


class AnalysisType(str, Enum):
    COMPANY_NETWORK = "company_network"
    OWNERSHIP_CHAIN = "ownership_chain"
    ADDRESS_CLUSTER = "address_cluster"
    DIRECTOR_NETWORK = "director_network"
    RISK_NETWORK = "risk_network"


class OwnershipDirection(str, Enum):
    UP = "up"      # from the controlled entity toward its controllers
    DOWN = "down"  # from a controller toward the entities it controls


# ============================================
# Registry Record Variants
# (validated at the Fetch Orchestrator boundary)
# ============================================

class CompanyRecord(BaseModel):
    """Normalized company profile."""
    record_type: Literal["company"] = "company"
    company_number: str
    company_name: str = ""
    company_status: str = UNKNOWN
    company_type: Optional[str] = None
    date_of_creation: Optional[str] = None
    date_of_cessation: Optional[str] = None
    sic_codes: list[str] = []
    has_been_liquidated: bool = False
    has_insolvency_history: bool = False
    has_charges: bool = False
    accounts_next_due: Optional[str] = None
    accounts_overdue: bool = False
    confirmation_statement_next_due: Optional[str] = None
    confirmation_statement_overdue: bool = False
    registered_address: Optional[str] = None


class OfficerRecord(BaseModel):
    """One entry of a company's officer list."""
    record_type: Literal["officer"] = "officer"
    officer_id: Optional[str] = None
    name: str
    officer_role: str = "director"
    appointed_on: Optional[str] = None
    resigned_on: Optional[str] = None
    nationality: Optional[str] = None
    occupation: Optional[str] = None
    address: Optional[str] = None


class PSCRecord(BaseModel):
    """One person (or legal entity) with significant control."""
    record_type: Literal["psc"] = "psc"
    name: str
    kind: str = "individual"  # individual | corporate | legal-person | other
    natures_of_control: list[str] = []
    ownership_percent: Percent = UNKNOWN
    ownership_band: Optional[str] = None
    registration_number: Optional[str] = None
    notified_on: Optional[str] = None
    ceased_on: Optional[str] = None
    nationality: Optional[str] = None
    country_of_residence: Optional[str] = None
    address: Optional[str] = None


class FilingRecord(BaseModel):
    record_type: Literal["filing"] = "filing"
    transaction_id: Optional[str] = None
    date: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None


class AppointmentRecord(BaseModel):
    """One appointment held by an officer."""
    record_type: Literal["appointment"] = "appointment"
    company_number: str
    company_name: str = ""
    company_status: str = UNKNOWN
    officer_role: str = "director"
    appointed_on: Optional[str] = None
    resigned_on: Optional[str] = None
    address: Optional[str] = None  # the officer's correspondence address for this appointment


class CompanyListing(BaseModel):
    """A company returned by an address search."""
    record_type: Literal["listing"] = "listing"
    company_number: str
    company_name: str = ""
    company_status: str = UNKNOWN
    date_of_creation: Optional[str] = None
    address: Optional[str] = None


class OfficerMatch(BaseModel):
    """An officer returned by a name search."""
    record_type: Literal["officer_match"] = "officer_match"
    officer_id: str
    name: str
    address: Optional[str] = None
    appointment_count: int = 0


class SourceStatus(BaseModel):
    """Outcome of fetching one record kind for one entity."""
    entity_id: str
    kind: RecordKind
    status: Literal["ok", "unavailable"]
    reason: Optional[str] = None


class EntityRecord(BaseModel):
    """Composite, best-effort record assembled by the Fetch Orchestrator."""
    entity_type: EntityType
    entity_id: str
    profile: Optional[CompanyRecord] = None
    officers: list[OfficerRecord] = []
    pscs: list[PSCRecord] = []
    filing_history: list[FilingRecord] = []
    address: Optional[str] = None
    appointments: list[AppointmentRecord] = []
    companies_at_address: list[CompanyListing] = []
    statuses: list[SourceStatus] = []

    def ok(self, kind: RecordKind) -> bool:
        return any(s.kind == kind and s.status == "ok" for s in self.statuses)

    @property
    def missing_kinds(self) -> list[RecordKind]:
        return [s.kind for s in self.statuses if s.status == "unavailable"]


# ============================================
# Graph Schemas
# ============================================

class Entity(BaseModel):
    """A node in the relationship graph."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: EntityType
    label: str
    status: str = UNKNOWN
    attributes: dict[str, Any] = {}
    risk_flags: list[str] = []


class Relationship(BaseModel):
    """A directed, typed edge between two entity ids."""
    model_config = ConfigDict(frozen=True)

    id: str
    source: str
    target: str
    kind: RelationshipKind
    ownership_percent: Optional[Percent] = None  # PSC_OF only
    role: Optional[str] = None
    appointed_on: Optional[str] = None
    resigned_on: Optional[str] = None
    attributes: dict[str, Any] = {}

    @property
    def is_active(self) -> bool:
        return self.resigned_on is None


class GraphSnapshot(BaseModel):
    """Entities and relationships assembled for one analysis."""
    model_config = ConfigDict(frozen=True)

    nodes: list[Entity] = []
    edges: list[Relationship] = []
    statistics: dict[str, Any] = {}

    def node(self, entity_id: str) -> Optional[Entity]:
        for entity in self.nodes:
            if entity.id == entity_id:
                return entity
        return None


class SourceManifest(BaseModel):
    """Which data sources contributed to a result and which were unavailable."""
    model_config = ConfigDict(frozen=True)

    sources: list[SourceStatus] = []
    unreachable_entities: dict[str, dict[str, str]] = {}

    @computed_field
    @property
    def partial(self) -> bool:
        return bool(self.unreachable_entities) or any(s.status == "unavailable" for s in self.sources)

    @computed_field
    @property
    def missing(self) -> dict[str, list[str]]:
        missing: dict[str, list[str]] = {}
        for s in self.sources:
            if s.status == "unavailable":
                missing.setdefault(s.entity_id, []).append(s.kind.value)
        return missing


# ============================================
# Company Network Schemas
# ============================================

class NetworkMetrics(BaseModel):
    total_nodes: int = 0
    total_edges: int = 0
    density: float = 0.0
    avg_degree: float = 0.0
    max_degree: int = 0
    connected_components: int = 0
    risk_score: int = Field(default=0, ge=0, le=100)
    degrees: dict[str, int] = {}


# ============================================
# Ownership Schemas
# ============================================

class OwnershipPath(BaseModel):
    """One route through the ownership graph, starting at the analysed entity."""
    nodes: list[str]
    percentages: list[Percent] = []
    effective_percent: Optional[Percent] = None  # None when cyclic
    cyclic: bool = False
    truncated: bool = False  # stopped at the depth ceiling

    @property
    def endpoint(self) -> str:
        return self.nodes[-1]


class ControllerStake(BaseModel):
    """Aggregated stake of one entity reached through one or more paths."""
    entity_id: str
    label: str
    entity_type: EntityType
    depth: int
    path_count: int = 0
    cyclic_path_count: int = 0
    known_percent: float = 0.0
    total_percent: Optional[Percent] = None
    is_ultimate: bool = False
    ambiguous: bool = False


class OwnershipChainAnalysis(BaseModel):
    target: str
    direction: OwnershipDirection
    paths: list[OwnershipPath] = []
    controllers: list[ControllerStake] = []
    ultimate_owners: list[ControllerStake] = []
    chain_length: int = 0
    ownership_concentration: float = 0.0
    circular_ownership: bool = False
    cross_holdings: bool = False
    conflicting_edges: list[list[str]] = []


# ============================================
# Address Cluster Schemas
# ============================================

class ClusterMember(BaseModel):
    company_id: str
    label: str
    status: str = UNKNOWN
    incorporated_on: Optional[str] = None
    address: Optional[str] = None


class LinkedCluster(BaseModel):
    """Companies registered at an address used by an officer or PSC of the seed cluster."""
    address_key: str
    address: Optional[str] = None
    via: list[str] = []
    members: list[str] = []


class ClusterRiskIndicators(BaseModel):
    dissolved_companies: int = 0
    dormant_companies: int = 0
    recent_incorporations: int = 0
    shared_directors: list[str] = []
    suspicious_patterns: list[str] = []


class AddressClusterAnalysis(BaseModel):
    seed_address: str
    address_key: str
    members: list[ClusterMember] = []
    linked_clusters: list[LinkedCluster] = []
    clusters: dict[str, list[str]] = {}
    size: int = 0
    threshold: int = 50
    size_anomaly_flag: bool = False
    risk_indicators: ClusterRiskIndicators = ClusterRiskIndicators()
    cluster_risk_score: float = 0.0


# ============================================
# Directorship Schemas
# ============================================

class DirectorAppointment(BaseModel):
    company_id: str
    company_name: str
    role: str
    appointed_on: Optional[str] = None
    resigned_on: Optional[str] = None
    is_active: bool = True
    risk_flags: list[str] = []


class CoDirector(BaseModel):
    officer_id: str
    name: str
    shared_companies: list[str] = []
    connection_strength: float = 0.0


class DirectorshipNetwork(BaseModel):
    director_name: str
    officer_ids: list[str] = []
    appointments: list[DirectorAppointment] = []
    co_directors: list[CoDirector] = []
    total_appointments: int = 0
    active_appointments: int = 0
    average_tenure_years: float = 0.0
    risk_score: float = 0.0


# ============================================
# Risk Schemas
# ============================================

class RiskContribution(BaseModel):
    source: str
    hops: int
    amount: float
    path: list[str] = []  # source first, receiving node last


class NodeRisk(BaseModel):
    entity_id: str
    label: str
    entity_type: EntityType
    risk_flags: list[str] = []
    base_score: float = 0.0
    propagated_score: float = 0.0
    total_score: float = 0.0
    contributions: list[RiskContribution] = []


class RiskNetwork(BaseModel):
    seed: str
    decay: float
    scores: list[NodeRisk] = []
    overall_risk_score: float = 0.0
    risk_category: Literal["low", "medium", "high", "critical"] = "low"
    primary_risk_factors: list[str] = []
    recommended_actions: list[str] = []
    risk_connections: list[str] = []

    def score_for(self, entity_id: str) -> Optional[NodeRisk]:
        for score in self.scores:
            if score.entity_id == entity_id:
                return score
        return None


# ============================================
# Analysis Result / Cache Schemas
# ============================================

class AnalysisResult(BaseModel):
    """Output of one analysis; immutable once created."""
    model_config = ConfigDict(frozen=True)

    analysis_type: AnalysisType
    entity_type: EntityType
    entity_id: str
    variant: str
    depth_requested: int = 0
    depth_applied: int = 0
    depth_clamped: bool = False
    graph: GraphSnapshot = GraphSnapshot()
    manifest: SourceManifest = SourceManifest()
    created_at: datetime = Field(default_factory=datetime.utcnow)
    compute_time_ms: int = 0
    from_cache: bool = False

    network_metrics: Optional[NetworkMetrics] = None
    ownership: Optional[OwnershipChainAnalysis] = None
    address_cluster: Optional[AddressClusterAnalysis] = None
    director_network: Optional[DirectorshipNetwork] = None
    risk_network: Optional[RiskNetwork] = None


class CacheEntry(BaseModel):
    """A serialized AnalysisResult with its expiry."""
    entity_type: str
    entity_id: str
    variant: str
    value: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
