"""Pytest configuration and fixtures."""
import asyncio
import copy
import sys
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from core.cache import AnalysisCache, InMemoryCacheBackend
from core.errors import NotFound
from network.engine import NetworkAnalysisEngine
from network.graph_builder import GraphBuilder
from network.normalizer import normalize_key
from network.orchestrator import FetchOrchestrator
from network.traversal import TraversalEngine
from factories import officer_item, psc_item


AS_OF = date(2024, 6, 1)


def _page(items, limit):
    return items[:limit] if isinstance(items, list) else items


class FakeRegistryGateway:
    """
    In-memory RegistryGateway.

    Records are keyed by company number / officer id / normalized address.
    Failures and delays can be injected per (kind, id); every call is counted.
    """

    def __init__(self):
        self.profiles: dict[str, dict] = {}
        self.officers: dict[str, list] = {}
        self.pscs: dict[str, list] = {}
        self.filings: dict[str, list] = {}
        self.addresses: dict[str, dict] = {}
        self.appointments: dict[str, list] = {}
        self.officer_search: dict[str, list] = {}
        self.address_search: dict[str, list] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.delays: dict[tuple[str, str], float] = {}
        self.calls: Counter = Counter()

    # ---------- set-up helpers ----------

    def add_company(self, number: str, name: str, status: str = "active",
                    address: Optional[str] = "1 Example St, London",
                    officers: Optional[list] = None, pscs: Optional[list] = None,
                    **profile) -> None:
        self.profiles[number] = {
            "company_number": number,
            "company_name": name,
            "company_status": status,
            "date_of_creation": profile.pop("date_of_creation", "2010-01-01"),
            "registered_office_address": address,
            **profile,
        }
        self.officers[number] = officers or []
        self.pscs[number] = pscs or []
        self.filings[number] = [{"transaction_id": f"T{number}", "date": "2023-10-01", "type": "AA"}]
        if address:
            self.addresses[number] = {"address_line_1": address}

    def add_appointments(self, officer_id: str, *companies: tuple) -> None:
        """companies: (number, name, status[, resigned_on])"""
        items = []
        for entry in companies:
            number, name, status = entry[:3]
            item = {
                "appointed_to": {"company_number": number, "company_name": name, "company_status": status},
                "officer_role": "director",
                "appointed_on": "2015-01-01",
            }
            if len(entry) > 3 and entry[3]:
                item["resigned_on"] = entry[3]
            items.append(item)
        self.appointments[officer_id] = items

    def add_listing(self, search_address: str, number: str, name: str, address: str,
                    status: str = "active", date_of_creation: str = "2010-01-01") -> None:
        self.address_search.setdefault(normalize_key(search_address), []).append({
            "company_number": number,
            "company_name": name,
            "company_status": status,
            "date_of_creation": date_of_creation,
            "registered_office_address": {"address_line_1": address},
        })

    def fail(self, kind: str, entity_id: str, error: Exception) -> None:
        self.failures[(kind, entity_id)] = error

    def delay(self, kind: str, entity_id: str, seconds: float) -> None:
        self.delays[(kind, entity_id)] = seconds

    # ---------- gateway protocol ----------

    async def _serve(self, kind: str, entity_id: str, store: dict, default=None):
        self.calls[(kind, entity_id)] += 1
        if (kind, entity_id) in self.delays:
            await asyncio.sleep(self.delays[(kind, entity_id)])
        if (kind, entity_id) in self.failures:
            raise self.failures[(kind, entity_id)]
        if entity_id in store:
            return copy.deepcopy(store[entity_id])
        if default is not None and entity_id in self.profiles:
            return default
        raise NotFound(entity_id, kind)

    async def fetch_profile(self, company_number):
        return await self._serve("profile", company_number, self.profiles)

    async def fetch_officers(self, company_number, limit=35):
        return _page(await self._serve("officers", company_number, self.officers, []), limit)

    async def fetch_pscs(self, company_number, limit=35):
        return _page(await self._serve("pscs", company_number, self.pscs, []), limit)

    async def fetch_filing_history(self, company_number, limit=25):
        return _page(await self._serve("filing_history", company_number, self.filings, []), limit)

    async def fetch_address(self, company_number):
        return await self._serve("address", company_number, self.addresses)

    async def fetch_officer_appointments(self, officer_id, limit=50):
        return _page(await self._serve("appointments", officer_id, self.appointments), limit)

    async def search_officers(self, name, limit=100):
        return _page(await self._serve("officer_search", normalize_key(name), self.officer_search), limit)

    async def search_companies_by_address(self, address, limit=100):
        return _page(await self._serve("companies_at_address", normalize_key(address), self.address_search), limit)


class Clock:
    """Controllable UTC clock for cache expiry tests."""

    def __init__(self):
        self.now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float) -> None:
        self.now += timedelta(hours=hours)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def gateway():
    return FakeRegistryGateway()


@pytest.fixture
def builder(as_of):
    return GraphBuilder(as_of=as_of)


@pytest.fixture
def orchestrator(gateway):
    return FetchOrchestrator(gateway, timeout=0.5, max_concurrency=4)


@pytest.fixture
def traversal(orchestrator, builder):
    return TraversalEngine(orchestrator, builder)


@pytest.fixture
def cache(clock):
    return AnalysisCache(InMemoryCacheBackend(max_entries=32), default_ttl_hours=24.0, clock=clock)


@pytest.fixture
def engine(gateway, cache, as_of):
    return NetworkAnalysisEngine(gateway=gateway, cache=cache, as_of=as_of)


@pytest.fixture
def sample_network(gateway):
    """
    Three companies linked by two directors and one corporate owner.

    ALPHA (00000001) is 62.5% owned by BETA (00000002), which is dissolved and
    87.5% owned by Max Power. Jane Doe directs ALPHA and BETA; John Roe
    directs ALPHA and GAMMA (00000003).
    """
    gateway.add_company(
        "00000001", "ALPHA HOLDINGS LTD",
        officers=[officer_item("DOE, Jane", "jane"), officer_item("ROE, John", "john")],
        pscs=[psc_item("BETA GROUP PLC", 62.5, corporate_number="00000002")],
    )
    gateway.add_company(
        "00000002", "BETA GROUP PLC", status="dissolved", address="9 Other Road, Leeds",
        officers=[officer_item("DOE, Jane", "jane")],
        pscs=[psc_item("Max Power", 87.5)],
    )
    gateway.add_company(
        "00000003", "GAMMA TRADING LTD", address="3 Third Lane, York",
        officers=[officer_item("ROE, John", "john")],
    )
    gateway.add_appointments(
        "jane", ("00000001", "ALPHA HOLDINGS LTD", "active"), ("00000002", "BETA GROUP PLC", "dissolved"),
    )
    gateway.add_appointments(
        "john", ("00000001", "ALPHA HOLDINGS LTD", "active"), ("00000003", "GAMMA TRADING LTD", "active"),
    )
    return gateway
