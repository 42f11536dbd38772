"""
Tests for the UK Companies House gateway.
"""
import base64
import httpx
import pytest
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from core.errors import GatewayTimeout, NotFound, RateLimited, Unavailable
from registry.companies_house import UKCompaniesHouseAPI


def make_api(handler, api_key="test-key"):
    return UKCompaniesHouseAPI(
        api_key=api_key,
        base_url="https://registry.test",
        transport=httpx.MockTransport(handler),
    )


class TestRequests:
    """Request shape: auth, padding, endpoints."""

    @pytest.mark.asyncio
    async def test_profile_uses_basic_auth_and_padded_number(self):
        """Test profile requests use basic auth and a padded number."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"company_number": "00012345", "company_name": "ALPHA LTD"})

        api = make_api(handler)
        data = await api.fetch_profile("12345")

        assert data["company_name"] == "ALPHA LTD"
        assert seen["path"] == "/company/00012345"
        expected = base64.b64encode(b"test-key:").decode()
        assert seen["auth"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_officers_returns_items_with_page_size(self):
        """Test officer items are returned and the page size is sent."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["items_per_page"] = request.url.params.get("items_per_page")
            return httpx.Response(200, json={"items": [{"name": "DOE, Jane"}]})

        api = make_api(handler)
        officers = await api.fetch_officers("SC123456", limit=20)

        assert officers == [{"name": "DOE, Jane"}]
        assert seen["path"] == "/company/SC123456/officers"
        assert seen["items_per_page"] == "20"

    @pytest.mark.asyncio
    async def test_pscs_endpoint(self):
        """Test the PSC endpoint path."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/company/00000001/persons-with-significant-control"
            return httpx.Response(200, json={"items": []})

        assert await make_api(handler).fetch_pscs("00000001") == []

    @pytest.mark.asyncio
    async def test_officer_search_query(self):
        """Test the officer search query is trimmed."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/search/officers"
            assert request.url.params.get("q") == "Jane Doe"
            return httpx.Response(200, json={"items": [{"title": "DOE, Jane"}]})

        items = await make_api(handler).search_officers("  Jane Doe ")

        assert items == [{"title": "DOE, Jane"}]

    @pytest.mark.asyncio
    async def test_address_search_location(self):
        """Test the address search location parameter."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/advanced-search/companies"
            assert request.url.params.get("location") == "1 Example St, London"
            return httpx.Response(200, json={"items": [{"company_number": "00000001"}]})

        items = await make_api(handler).search_companies_by_address("1 Example St, London")

        assert items[0]["company_number"] == "00000001"

    @pytest.mark.asyncio
    async def test_appointments_endpoint(self):
        """Test the officer appointments endpoint path."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/officers/abc123/appointments"
            return httpx.Response(200, json={"items": [{"appointed_to": {"company_number": "00000001"}}]})

        items = await make_api(handler).fetch_officer_appointments("abc123")

        assert len(items) == 1


class TestErrorMapping:
    """HTTP outcomes map onto the gateway error taxonomy."""

    @pytest.mark.asyncio
    async def test_404_is_not_found(self):
        """Test a 404 maps to NotFound."""
        api = make_api(lambda request: httpx.Response(404))

        with pytest.raises(NotFound) as exc:
            await api.fetch_profile("00000001")

        assert exc.value.retrievable is False
        assert exc.value.reason == "not_found"

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self):
        """Test a 429 maps to RateLimited."""
        api = make_api(lambda request: httpx.Response(429))

        with pytest.raises(RateLimited) as exc:
            await api.fetch_officers("00000001")

        assert exc.value.retrievable is True

    @pytest.mark.asyncio
    async def test_500_is_unavailable(self):
        """Test a 500 maps to Unavailable."""
        api = make_api(lambda request: httpx.Response(500))

        with pytest.raises(Unavailable, match="HTTP 500"):
            await api.fetch_filing_history("00000001")

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test a read timeout maps to GatewayTimeout."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(GatewayTimeout):
            await make_api(handler).fetch_pscs("00000001")

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self):
        """Test a connection error maps to Unavailable."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(Unavailable):
            await make_api(handler).fetch_address("00000001")

    @pytest.mark.asyncio
    async def test_malformed_json_is_unavailable(self):
        """Test a non-JSON body maps to Unavailable."""
        api = make_api(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(Unavailable, match="malformed JSON"):
            await api.fetch_profile("00000001")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["fetch_profile", "fetch_officers", "fetch_pscs"])
    async def test_non_object_body_is_unavailable(self, method):
        """Test a JSON array or scalar body is reported as unavailable, not a crash."""
        api = make_api(lambda request: httpx.Response(200, json=[{"items": []}]))

        with pytest.raises(Unavailable, match="unexpected JSON body") as exc:
            await getattr(api, method)("00000001")

        assert exc.value.retrievable is True

    @pytest.mark.asyncio
    async def test_missing_api_key_is_unavailable(self, monkeypatch):
        """Test no request is sent without an API key."""
        from config import settings
        monkeypatch.setattr(settings, "UK_COMPANIES_HOUSE_API_KEY", None)
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        api = UKCompaniesHouseAPI(api_key=None, transport=httpx.MockTransport(handler))

        with pytest.raises(Unavailable, match="no API key"):
            await api.fetch_profile("00000001")
        assert calls == []
