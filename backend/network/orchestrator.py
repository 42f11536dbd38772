"""
Fetch Orchestrator

Issues the gateway calls needed for one entity concurrently and assembles a
normalized, best-effort EntityRecord.

- one call per record kind, all awaited together (join on all settled)
- every call carries its own timeout; a timed-out kind is unavailable(timeout)
- outbound concurrency is bounded by a semaphore shared by the whole request
- one kind failing never aborts the others; only when every kind fails is
  EntityUnreachable raised
"""
import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional

from loguru import logger

from config import settings
from core.errors import EntityUnreachable, GatewayError, InvalidRecord
from core.schemas import (
    COMPANY_RECORD_KINDS,
    EntityRecord,
    EntityType,
    OfficerMatch,
    RecordKind,
    SourceStatus,
)
from network.normalizer import (
    format_address,
    normalize_appointment,
    normalize_filing,
    normalize_listing,
    normalize_officer,
    normalize_officer_match,
    normalize_profile,
    normalize_psc,
)
from registry.base import RegistryGateway


KINDS_BY_ENTITY_TYPE = {
    EntityType.COMPANY: COMPANY_RECORD_KINDS,
    EntityType.OFFICER: frozenset({RecordKind.APPOINTMENTS}),
    EntityType.ADDRESS: frozenset({RecordKind.COMPANIES_AT_ADDRESS}),
    EntityType.PSC: frozenset(),
}


class FetchOrchestrator:
    """Concurrent, partial-failure tolerant fetching of registry records."""

    def __init__(
        self,
        gateway: RegistryGateway,
        timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.gateway = gateway
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self.max_concurrency = max_concurrency or settings.GATEWAY_MAX_CONCURRENCY
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

        # Track call stats for reporting
        self.stats = {"calls": 0, "success": 0, "errors": 0}

    def _call_for(self, kind: RecordKind, entity_id: str) -> Callable[[], Awaitable[Any]]:
        gateway = self.gateway
        calls = {
            RecordKind.PROFILE: lambda: gateway.fetch_profile(entity_id),
            RecordKind.OFFICERS: lambda: gateway.fetch_officers(entity_id, settings.OFFICERS_PAGE_SIZE),
            RecordKind.PSCS: lambda: gateway.fetch_pscs(entity_id, settings.PSC_PAGE_SIZE),
            RecordKind.FILING_HISTORY: lambda: gateway.fetch_filing_history(entity_id, settings.FILING_HISTORY_PAGE_SIZE),
            RecordKind.ADDRESS: lambda: gateway.fetch_address(entity_id),
            RecordKind.APPOINTMENTS: lambda: gateway.fetch_officer_appointments(entity_id, settings.APPOINTMENTS_PAGE_SIZE),
            RecordKind.COMPANIES_AT_ADDRESS: lambda: gateway.search_companies_by_address(entity_id, settings.SEARCH_PAGE_SIZE),
        }
        return calls[kind]

    async def _guarded(self, factory: Callable[[], Awaitable[Any]]) -> Any:
        async with self._semaphore:
            self.stats["calls"] += 1
            return await asyncio.wait_for(factory(), timeout=self.timeout)

    async def _fetch_kind(self, kind: RecordKind, entity_id: str) -> tuple[Any, SourceStatus]:
        try:
            raw = await self._guarded(self._call_for(kind, entity_id))
            data = self._normalize(kind, raw, entity_id)
        except asyncio.TimeoutError:
            self.stats["errors"] += 1
            logger.warning(f"[FetchOrchestrator] {kind.value} for {entity_id} timed out after {self.timeout}s")
            return None, SourceStatus(entity_id=entity_id, kind=kind, status="unavailable", reason="timeout")
        except GatewayError as e:
            self.stats["errors"] += 1
            logger.info(f"[FetchOrchestrator] {kind.value} for {entity_id} unavailable: {e.reason}")
            return None, SourceStatus(entity_id=entity_id, kind=kind, status="unavailable", reason=e.reason)
        except InvalidRecord as e:
            self.stats["errors"] += 1
            logger.warning(f"[FetchOrchestrator] {e}")
            return None, SourceStatus(entity_id=entity_id, kind=kind, status="unavailable", reason=e.reason)

        self.stats["success"] += 1
        return data, SourceStatus(entity_id=entity_id, kind=kind, status="ok")

    def _normalize_items(self, normalizer, raw: Any, entity_id: str, kind: RecordKind) -> list:
        if not isinstance(raw, list):
            raise InvalidRecord(entity_id, kind.value, f"expected a list, got {type(raw).__name__}")
        items = []
        for item in raw:
            try:
                items.append(normalizer(item, entity_id))
            except InvalidRecord as e:
                # one malformed entry does not spoil the rest of the list
                logger.warning(f"[FetchOrchestrator] Skipping entry: {e}")
        return items

    def _normalize(self, kind: RecordKind, raw: Any, entity_id: str) -> Any:
        if kind == RecordKind.PROFILE:
            return normalize_profile(raw, entity_id)
        if kind == RecordKind.ADDRESS:
            address = format_address(raw)
            if address is None:
                raise InvalidRecord(entity_id, kind.value, "empty address")
            return address
        normalizers = {
            RecordKind.OFFICERS: normalize_officer,
            RecordKind.PSCS: normalize_psc,
            RecordKind.FILING_HISTORY: normalize_filing,
            RecordKind.APPOINTMENTS: normalize_appointment,
            RecordKind.COMPANIES_AT_ADDRESS: normalize_listing,
        }
        return self._normalize_items(normalizers[kind], raw, entity_id, kind)

    async def fetch(
        self,
        entity_type: EntityType,
        entity_id: str,
        kinds: Iterable[RecordKind],
    ) -> EntityRecord:
        """
        Fetch every requested record kind for one entity.

        Args:
            entity_type: Type of the entity being fetched
            entity_id: Registry identifier (company number, officer id, address text)
            kinds: Record kinds to fetch; must be valid for the entity type

        Returns:
            EntityRecord with a status per kind

        Raises:
            EntityUnreachable: when every requested kind failed
        """
        if not entity_id or not entity_id.strip():
            raise ValueError("entity_id must be a non-empty string")
        kinds = list(dict.fromkeys(RecordKind(k) for k in kinds))
        if not kinds:
            raise ValueError("at least one record kind is required")
        invalid = [k.value for k in kinds if k not in KINDS_BY_ENTITY_TYPE[entity_type]]
        if invalid:
            raise ValueError(f"record kinds {invalid} cannot be fetched for a {entity_type.value}")

        logger.debug(f"[FetchOrchestrator] Fetching {[k.value for k in kinds]} for {entity_type.value} {entity_id}")

        settled = await asyncio.gather(
            *(self._fetch_kind(kind, entity_id) for kind in kinds),
            return_exceptions=True,
        )

        # Anything not absorbed by _fetch_kind is a defect; surface it after every call settled
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome

        fields: dict[str, Any] = {}
        statuses = []
        for kind, (data, status) in zip(kinds, settled):
            statuses.append(status)
            if data is not None:
                fields[kind.value] = data

        if all(s.status == "unavailable" for s in statuses):
            reasons = {s.kind.value: s.reason or "unavailable" for s in statuses}
            logger.warning(f"[FetchOrchestrator] {entity_type.value} {entity_id} unreachable: {reasons}")
            raise EntityUnreachable(entity_id, reasons)

        missing = [s.kind.value for s in statuses if s.status == "unavailable"]
        if missing:
            logger.info(f"[FetchOrchestrator] {entity_id}: partial data, missing {missing}")

        return EntityRecord(entity_type=entity_type, entity_id=entity_id, statuses=statuses, **fields)

    async def fetch_company(self, company_number: str, kinds: Optional[Iterable[RecordKind]] = None) -> EntityRecord:
        return await self.fetch(EntityType.COMPANY, company_number, kinds or COMPANY_RECORD_KINDS)

    async def fetch_officer(self, officer_id: str) -> EntityRecord:
        return await self.fetch(EntityType.OFFICER, officer_id, [RecordKind.APPOINTMENTS])

    async def fetch_companies_at_address(self, address: str) -> EntityRecord:
        return await self.fetch(EntityType.ADDRESS, address, [RecordKind.COMPANIES_AT_ADDRESS])

    async def search_officers(self, name: str) -> list[OfficerMatch]:
        """Resolve a director name to registry officer ids."""
        if not name or not name.strip():
            raise ValueError("name must be a non-empty string")
        try:
            raw = await self._guarded(lambda: self.gateway.search_officers(name, settings.SEARCH_PAGE_SIZE))
        except asyncio.TimeoutError:
            raise EntityUnreachable(name, {"officer_search": "timeout"})
        except GatewayError as e:
            raise EntityUnreachable(name, {"officer_search": e.reason})
        if not isinstance(raw, list):
            raise EntityUnreachable(name, {"officer_search": InvalidRecord.reason})

        matches = []
        for item in raw:
            try:
                matches.append(normalize_officer_match(item, name))
            except InvalidRecord as e:
                logger.warning(f"[FetchOrchestrator] Skipping officer match: {e}")
        return matches
