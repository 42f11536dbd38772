"""
Registry Gateway contract.

Every call returns raw registry data (JSON-shaped dicts/lists) or raises one of
NotFound, RateLimited, Unavailable, GatewayTimeout from core.errors.
"""
from typing import Protocol


class RegistryGateway(Protocol):

    async def fetch_profile(self, company_number: str) -> dict: ...

    async def fetch_officers(self, company_number: str, limit: int) -> list[dict]: ...

    async def fetch_pscs(self, company_number: str, limit: int) -> list[dict]: ...

    async def fetch_filing_history(self, company_number: str, limit: int) -> list[dict]: ...

    async def fetch_address(self, company_number: str) -> dict: ...

    async def fetch_officer_appointments(self, officer_id: str, limit: int) -> list[dict]: ...

    async def search_officers(self, name: str, limit: int) -> list[dict]: ...

    async def search_companies_by_address(self, address: str, limit: int) -> list[dict]: ...
