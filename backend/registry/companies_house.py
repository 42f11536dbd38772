"""
UK Companies House API Wrapper
For accessing UK company registry data including Persons with Significant Control (PSC).
API Documentation: https://developer.company-information.service.gov.uk/
"""
import httpx
import base64
from typing import Optional
from loguru import logger

from config import settings
from core.errors import GatewayTimeout, NotFound, RateLimited, Unavailable


class UKCompaniesHouseAPI:
    """
    Wrapper for UK Companies House API.
    Free API - requires registration for API key.

    Unlike a best-effort lookup, every method raises a typed gateway error on
    failure so the orchestrator can record why a record kind is unavailable.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.UK_COMPANIES_HOUSE_API_KEY
        self.base_url = (base_url or settings.COMPANIES_HOUSE_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport
        # UK Companies House uses HTTP Basic Auth with API key as username
        if self.api_key:
            credentials = base64.b64encode(f"{self.api_key}:".encode()).decode()
            self.auth_header = f"Basic {credentials}"
        else:
            self.auth_header = None

    def _get_headers(self) -> dict:
        """Get headers for API requests."""
        headers = {
            "Accept": "application/json"
        }
        if self.auth_header:
            headers["Authorization"] = self.auth_header
        return headers

    @staticmethod
    def _pad(company_number: str) -> str:
        # Company numbers are 8 characters; purely numeric ones lose leading zeros upstream
        return company_number.strip().upper().zfill(8)

    async def _get(self, path: str, entity_id: str, kind: str, params: Optional[dict] = None):
        """Issue one GET and map failures onto the gateway error taxonomy."""
        if not self.api_key:
            logger.warning("[UKCompaniesHouse] No API key configured - get one at https://developer.company-information.service.gov.uk/")
            raise Unavailable(entity_id, kind, "no API key configured")

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}{path}",
                    params=params,
                    headers=self._get_headers(),
                    timeout=self.timeout
                )
        except httpx.TimeoutException:
            logger.warning(f"[UKCompaniesHouse] Timeout fetching {kind} for {entity_id}")
            raise GatewayTimeout(entity_id, kind)
        except httpx.HTTPError as e:
            logger.warning(f"[UKCompaniesHouse] Transport error fetching {kind} for {entity_id}: {e}")
            raise Unavailable(entity_id, kind, str(e))

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError as e:
                raise Unavailable(entity_id, kind, f"malformed JSON: {e}")
            # every endpoint used here answers with a JSON object
            if not isinstance(data, dict):
                logger.warning(f"[UKCompaniesHouse] Unexpected {type(data).__name__} body for {kind} of {entity_id}")
                raise Unavailable(entity_id, kind, "unexpected JSON body")
            return data
        elif response.status_code == 404:
            logger.info(f"[UKCompaniesHouse] Not found: {kind} for {entity_id}")
            raise NotFound(entity_id, kind)
        elif response.status_code == 429:
            logger.warning("[UKCompaniesHouse] Rate limit exceeded (429) - slow down requests")
            raise RateLimited(entity_id, kind)
        elif response.status_code == 401:
            # Keys need to be activated and may take up to 24 hours
            logger.warning("[UKCompaniesHouse] Auth failed (401) - key may be invalid, expired, or not yet activated (can take 24h)")
            raise Unavailable(entity_id, kind, "unauthorized")
        else:
            logger.warning(f"[UKCompaniesHouse] API error: {response.status_code} for {kind} of {entity_id}")
            raise Unavailable(entity_id, kind, f"HTTP {response.status_code}")

    async def fetch_profile(self, company_number: str) -> dict:
        """
        Get detailed company information.

        API Endpoint: GET /company/{company_number}
        """
        company_number = self._pad(company_number)
        data = await self._get(f"/company/{company_number}", company_number, "profile")
        logger.info(f"[UKCompaniesHouse] Retrieved company: {data.get('company_name')}")
        return data

    async def fetch_officers(self, company_number: str, limit: int = 35) -> list[dict]:
        """Get company officers (directors, secretaries)."""
        company_number = self._pad(company_number)
        data = await self._get(
            f"/company/{company_number}/officers",
            company_number,
            "officers",
            params={"items_per_page": limit},
        )
        officers = data.get("items", [])
        logger.info(f"[UKCompaniesHouse] Found {len(officers)} officers for {company_number}")
        return officers

    async def fetch_pscs(self, company_number: str, limit: int = 35) -> list[dict]:
        """
        Get Persons with Significant Control (PSC) - beneficial owners.
        This is the key endpoint for beneficial ownership data.
        """
        company_number = self._pad(company_number)
        data = await self._get(
            f"/company/{company_number}/persons-with-significant-control",
            company_number,
            "pscs",
            params={"items_per_page": limit},
        )
        pscs = data.get("items", [])
        logger.info(f"[UKCompaniesHouse] Found {len(pscs)} PSC records for {company_number}")
        return pscs

    async def fetch_filing_history(self, company_number: str, limit: int = 25) -> list[dict]:
        """Get company filing history."""
        company_number = self._pad(company_number)
        data = await self._get(
            f"/company/{company_number}/filing-history",
            company_number,
            "filing_history",
            params={"items_per_page": limit},
        )
        return data.get("items", [])

    async def fetch_address(self, company_number: str) -> dict:
        """Get the registered office address."""
        company_number = self._pad(company_number)
        return await self._get(
            f"/company/{company_number}/registered-office-address",
            company_number,
            "address",
        )

    async def fetch_officer_appointments(self, officer_id: str, limit: int = 50) -> list[dict]:
        """Get every appointment held by one officer."""
        data = await self._get(
            f"/officers/{officer_id}/appointments",
            officer_id,
            "appointments",
            params={"items_per_page": limit},
        )
        return data.get("items", [])

    async def search_officers(self, name: str, limit: int = 100) -> list[dict]:
        """
        Search for officers by name.

        API Endpoint: GET /search/officers
        """
        data = await self._get(
            "/search/officers",
            name,
            "officer_search",
            params={"q": name.strip(), "items_per_page": min(limit, 100)},
        )
        items = data.get("items", [])
        logger.info(f"[UKCompaniesHouse] Found {len(items)} officers matching: {name}")
        return items

    async def search_companies_by_address(self, address: str, limit: int = 100) -> list[dict]:
        """
        Find companies registered at an address.

        API Endpoint: GET /advanced-search/companies?location=
        """
        data = await self._get(
            "/advanced-search/companies",
            address,
            "companies_at_address",
            params={"location": address.strip(), "size": min(limit, 5000)},
        )
        items = data.get("items", [])
        logger.info(f"[UKCompaniesHouse] Found {len(items)} companies near: {address}")
        return items
