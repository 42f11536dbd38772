"""
Network Analysis Engine

Entry point for the five analyses. Every request:
1. consults the Analysis Cache
2. on a miss, takes the per-key computation lock and checks the cache again
3. builds its own graph through a fresh orchestrator / builder / traversal
4. runs the resolver and stores the completed result
"""
import time
from datetime import date
from typing import Awaitable, Callable, Optional, Union

from loguru import logger

from config import settings
from core.cache import AnalysisCache, KeyedLocks, build_cache_backend, cache_key
from core.errors import GatewayTimeout, RateLimited, Unavailable, UnsupportedEntityType
from core.schemas import (
    UNSUPPORTED,
    AnalysisResult,
    AnalysisType,
    Entity,
    EntityType,
    OwnershipDirection,
    SourceManifest,
)
from network.address_cluster import resolve_address_cluster
from network.directors import resolve_director_network
from network.graph_builder import GraphBuilder, address_node_id, company_node_id, officer_node_id, registry_id
from network.normalizer import normalize_address, normalize_key
from network.orchestrator import FetchOrchestrator
from network.ownership import resolve_ownership
from network.risk import resolve_risk_network
from network.traversal import TraversalEngine, TraversalResult, clamp_depth
from registry.base import RegistryGateway


TRANSIENT_REASONS = frozenset({RateLimited.reason, Unavailable.reason, GatewayTimeout.reason})

# failures worth retrying, plus sources the registry cannot serve at all
UNCACHEABLE_REASONS = TRANSIENT_REASONS | {UNSUPPORTED}


_network_engine_instance = None


def get_network_engine() -> "NetworkAnalysisEngine":
    """Get or create the singleton NetworkAnalysisEngine instance."""
    global _network_engine_instance
    if _network_engine_instance is None:
        _network_engine_instance = NetworkAnalysisEngine()
    return _network_engine_instance


def _has_uncacheable_gaps(manifest: SourceManifest) -> bool:
    """True when a gap could be filled by asking again, or the result is known to be incomplete."""
    reasons = [s.reason for s in manifest.sources if s.status == "unavailable"]
    for entity_reasons in manifest.unreachable_entities.values():
        reasons.extend(entity_reasons.values())
    return any(reason in UNCACHEABLE_REASONS for reason in reasons)


class NetworkAnalysisEngine:
    """Cached, per-request graph analyses over registry data."""

    def __init__(
        self,
        gateway: Optional[RegistryGateway] = None,
        cache: Optional[AnalysisCache] = None,
        as_of: Optional[date] = None,
    ):
        logger.info("[NetworkAnalysisEngine.__init__] Initializing network analysis engine")
        self._gateway = gateway
        self._cache = cache
        self._locks = KeyedLocks()
        self.as_of = as_of

    @property
    def gateway(self) -> RegistryGateway:
        if self._gateway is None:
            from registry.companies_house import UKCompaniesHouseAPI
            self._gateway = UKCompaniesHouseAPI()
        return self._gateway

    @property
    def cache(self) -> AnalysisCache:
        if self._cache is None:
            backend = build_cache_backend(
                settings.CACHE_BACKEND,
                max_entries=settings.CACHE_MAX_ENTRIES,
                directory=settings.CACHE_DIR,
            )
            self._cache = AnalysisCache(backend, default_ttl_hours=settings.CACHE_TTL_HOURS)
        return self._cache

    def _new_traversal(self) -> TraversalEngine:
        # each request gets its own graph; nothing is shared but the cache
        builder = GraphBuilder(as_of=self.as_of)
        return TraversalEngine(FetchOrchestrator(self.gateway), builder)

    @staticmethod
    def _result(
        analysis_type: AnalysisType,
        entity_type: EntityType,
        entity_id: str,
        variant: str,
        traversal: TraversalEngine,
        expansion: TraversalResult,
        **derived,
    ) -> AnalysisResult:
        builder = traversal.builder
        return AnalysisResult(
            analysis_type=analysis_type,
            entity_type=entity_type,
            entity_id=entity_id,
            variant=variant,
            depth_requested=expansion.depth_requested,
            depth_applied=expansion.depth_applied,
            depth_clamped=expansion.depth_clamped,
            graph=builder.snapshot(expansion.visited),
            manifest=SourceManifest(
                sources=list(builder.sources),
                unreachable_entities=dict(builder.unreachable),
            ),
            **derived,
        )

    async def _run(
        self,
        entity_type: EntityType,
        entity_id: str,
        variant: str,
        compute: Callable[[], Awaitable[AnalysisResult]],
        use_cache: bool = True,
    ) -> AnalysisResult:
        """Serve from cache, or compute once per key and store the completed result."""
        if use_cache:
            cached = self.cache.get(entity_type.value, entity_id, variant)
            if cached is not None:
                logger.info(f"[NetworkAnalysisEngine] Cache hit for {entity_id} ({variant})")
                return cached.model_copy(update={"from_cache": True})

        async with self._locks.hold(cache_key(entity_type.value, entity_id, variant)):
            if use_cache:
                # another request may have finished the same computation while we waited
                cached = self.cache.get(entity_type.value, entity_id, variant)
                if cached is not None:
                    return cached.model_copy(update={"from_cache": True})

            start = time.perf_counter()
            result = await compute()
            elapsed = int((time.perf_counter() - start) * 1000)
            result = result.model_copy(update={"compute_time_ms": elapsed})

            if _has_uncacheable_gaps(result.manifest):
                logger.info(
                    f"[NetworkAnalysisEngine] Not caching {entity_id} ({variant}): "
                    f"incomplete sources, missing {result.manifest.missing}"
                )
            else:
                self.cache.put(entity_type.value, entity_id, variant, result)

        logger.info(f"[NetworkAnalysisEngine] Computed {variant} for {entity_id} in {elapsed}ms")
        return result

    # ============================================
    # Analyses
    # ============================================

    async def analyze_company_network(
        self,
        company_id: str,
        depth: Optional[int] = None,
        use_cache: bool = True,
    ) -> AnalysisResult:
        """All relationships around a company, out to `depth` hops."""
        requested = settings.DEFAULT_NETWORK_DEPTH if depth is None else depth
        applied, _ = clamp_depth(requested)
        seed_id = company_node_id(company_id)
        number = registry_id(seed_id)
        variant = f"{AnalysisType.COMPANY_NETWORK.value}:depth={applied}"

        async def compute() -> AnalysisResult:
            traversal = self._new_traversal()
            traversal.builder.add_entity(Entity(id=seed_id, type=EntityType.COMPANY, label=number))
            expansion = await traversal.expand(seed_id, requested, direction="both")
            return self._result(
                AnalysisType.COMPANY_NETWORK, EntityType.COMPANY, number, variant, traversal, expansion,
                network_metrics=traversal.builder.metrics(expansion.visited),
            )

        return await self._run(EntityType.COMPANY, number, variant, compute, use_cache)

    async def analyze_ownership(
        self,
        company_id: str,
        direction: Union[OwnershipDirection, str] = OwnershipDirection.UP,
        depth: Optional[int] = None,
        use_cache: bool = True,
    ) -> AnalysisResult:
        """Ownership chains above (or below) a company with effective percentages."""
        direction = OwnershipDirection(direction)
        requested = settings.MAX_TRAVERSAL_DEPTH if depth is None else depth
        applied, _ = clamp_depth(requested)
        seed_id = company_node_id(company_id)
        number = registry_id(seed_id)
        variant = f"{AnalysisType.OWNERSHIP_CHAIN.value}:direction={direction.value}:depth={applied}"

        async def compute() -> AnalysisResult:
            traversal = self._new_traversal()
            traversal.builder.add_entity(Entity(id=seed_id, type=EntityType.COMPANY, label=number))
            expansion, ownership = await resolve_ownership(traversal, seed_id, direction, requested)
            return self._result(
                AnalysisType.OWNERSHIP_CHAIN, EntityType.COMPANY, number, variant, traversal, expansion,
                ownership=ownership,
            )

        return await self._run(EntityType.COMPANY, number, variant, compute, use_cache)

    async def analyze_address_cluster(
        self,
        address: str,
        threshold: Optional[int] = None,
        use_cache: bool = True,
    ) -> AnalysisResult:
        """Companies registered at an address, plus one hop through their people."""
        key = normalize_address(address)
        if not key:
            raise ValueError("address must contain at least one letter or digit")
        threshold = settings.ADDRESS_CLUSTER_THRESHOLD if threshold is None else threshold
        variant = f"{AnalysisType.ADDRESS_CLUSTER.value}:threshold={threshold}"

        async def compute() -> AnalysisResult:
            traversal = self._new_traversal()
            expansion, cluster = await resolve_address_cluster(traversal, address, threshold)
            return self._result(
                AnalysisType.ADDRESS_CLUSTER, EntityType.ADDRESS, key, variant, traversal, expansion,
                address_cluster=cluster,
            )

        return await self._run(EntityType.ADDRESS, key, variant, compute, use_cache)

    async def analyze_director_network(self, name: str, use_cache: bool = True) -> AnalysisResult:
        """Appointments and co-directors of everyone registered under a name."""
        key = normalize_key(name)
        if not key:
            raise ValueError("name must be a non-empty string")
        variant = f"{AnalysisType.DIRECTOR_NETWORK.value}:depth=2"

        async def compute() -> AnalysisResult:
            traversal = self._new_traversal()
            expansion, network = await resolve_director_network(traversal, name)
            return self._result(
                AnalysisType.DIRECTOR_NETWORK, EntityType.OFFICER, key, variant, traversal, expansion,
                director_network=network,
            )

        return await self._run(EntityType.OFFICER, key, variant, compute, use_cache)

    async def analyze_risk_network(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        depth: Optional[int] = None,
        decay: Optional[float] = None,
        use_cache: bool = True,
    ) -> AnalysisResult:
        """Decayed risk spreading to the entity from flagged neighbours."""
        try:
            entity_type = EntityType(entity_type)
        except ValueError:
            raise UnsupportedEntityType(str(entity_type), AnalysisType.RISK_NETWORK.value)
        if not entity_id or not entity_id.strip():
            raise ValueError("entity_id must be a non-empty string")

        requested = settings.DEFAULT_NETWORK_DEPTH if depth is None else depth
        applied, _ = clamp_depth(requested)
        decay = settings.RISK_DECAY if decay is None else decay

        if entity_type == EntityType.COMPANY:
            seed = Entity(id=company_node_id(entity_id), type=EntityType.COMPANY, label=entity_id)
        elif entity_type == EntityType.OFFICER:
            seed = Entity(
                id=officer_node_id(entity_id.strip(), entity_id),
                type=EntityType.OFFICER,
                label=entity_id,
                attributes={"officer_id": entity_id.strip()},
            )
        elif entity_type == EntityType.ADDRESS:
            if not normalize_address(entity_id):
                raise ValueError("address must contain at least one letter or digit")
            seed = Entity(
                id=address_node_id(entity_id),
                type=EntityType.ADDRESS,
                label=entity_id,
                attributes={"address": entity_id},
            )
        else:
            # a PSC has no registry record of its own to start from
            raise UnsupportedEntityType(entity_type.value, AnalysisType.RISK_NETWORK.value)

        key = registry_id(seed.id)
        variant = f"{AnalysisType.RISK_NETWORK.value}:depth={applied}:decay={decay}"

        async def compute() -> AnalysisResult:
            traversal = self._new_traversal()
            traversal.builder.add_entity(seed)
            expansion, network = await resolve_risk_network(traversal, seed.id, requested, decay)
            return self._result(
                AnalysisType.RISK_NETWORK, entity_type, key, variant, traversal, expansion,
                risk_network=network,
            )

        return await self._run(entity_type, key, variant, compute, use_cache)
