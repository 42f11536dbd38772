"""Tests for the network analysis routes."""
import pytest
from fastapi.testclient import TestClient

from config import settings
from core.errors import RateLimited
from main import app
from network.engine import get_network_engine

client = TestClient(app)

PREFIX = f"{settings.API_PREFIX}/network"


@pytest.fixture(autouse=True)
def override_engine(engine):
    app.dependency_overrides[get_network_engine] = lambda: engine
    yield
    app.dependency_overrides.clear()


def test_root_and_health():
    """Test the root and health endpoints report status."""
    assert client.get("/").json()["status"] == "operational"

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["cache_backend"] == settings.CACHE_BACKEND


def test_company_network(sample_network):
    """Test a company network request returns the graph and a complete manifest."""
    response = client.get(f"{PREFIX}/company/00000001", params={"depth": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["analysis_type"] == "company_network"
    assert body["variant"] == "company_network:depth=1"
    assert body["manifest"]["partial"] is False
    assert any(node["id"] == "company:00000002" for node in body["graph"]["nodes"])


def test_company_network_cached_on_second_call(sample_network):
    """Test a repeated company network request is served from cache."""
    client.get(f"{PREFIX}/company/00000001", params={"depth": 1})
    response = client.get(f"{PREFIX}/company/00000001", params={"depth": 1})

    assert response.json()["from_cache"] is True


def test_unknown_company_is_404():
    """Test an unknown company number returns 404 with per-kind reasons."""
    response = client.get(f"{PREFIX}/company/00000404")

    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["entity_id"] == "00000404"
    assert set(detail["reasons"].values()) == {"not_found"}


def test_registry_failure_is_502(gateway):
    """Test a rate-limited registry returns 502."""
    for kind in ("profile", "officers", "pscs", "filing_history", "address"):
        gateway.fail(kind, "00000001", RateLimited("00000001", kind))

    response = client.get(f"{PREFIX}/company/00000001")

    assert response.status_code == 502


def test_negative_depth_rejected():
    """Test a negative depth fails validation."""
    response = client.get(f"{PREFIX}/company/00000001", params={"depth": -1})

    assert response.status_code == 422


def test_ownership(sample_network):
    """Test the ownership route returns ultimate owners."""
    response = client.get(f"{PREFIX}/ownership/00000001", params={"direction": "up"})

    assert response.status_code == 200
    ultimate = response.json()["ownership"]["ultimate_owners"]
    assert [owner["entity_id"] for owner in ultimate] == ["psc:max power"]


def test_ownership_down_reports_missing_holdings(sample_network):
    """Test a downward chain is flagged partial with holdings missing."""
    response = client.get(f"{PREFIX}/ownership/00000002", params={"direction": "down"})

    assert response.status_code == 200
    manifest = response.json()["manifest"]
    assert manifest["partial"] is True
    assert manifest["missing"] == {"00000002": ["holdings"]}


def test_address_cluster(gateway):
    """Test the address cluster route returns the cluster size."""
    gateway.add_company("00000001", "ALPHA HOLDINGS LTD")
    gateway.add_listing("1 Example St, London", "00000001", "ALPHA HOLDINGS LTD", "1 Example St, London")

    response = client.get(f"{PREFIX}/address", params={"address": "1 Example St, London", "threshold": 5})

    assert response.status_code == 200
    assert response.json()["address_cluster"]["size"] == 1


def test_director_not_found(gateway):
    """Test an unmatched director name returns 404."""
    gateway.officer_search["nobody"] = []

    response = client.get(f"{PREFIX}/director", params={"name": "Nobody"})

    assert response.status_code == 404


def test_risk_network(sample_network):
    """Test the risk route returns a risk category."""
    response = client.get(f"{PREFIX}/risk", params={"entity_type": "company", "entity_id": "00000001"})

    assert response.status_code == 200
    assert response.json()["risk_network"]["risk_category"] == "medium"


def test_risk_network_psc_seed_rejected():
    """Test a PSC risk seed returns 400."""
    response = client.get(f"{PREFIX}/risk", params={"entity_type": "psc", "entity_id": "Max Power"})

    assert response.status_code == 400


def test_blank_address_rejected():
    """Test an address without letters or digits returns 400."""
    response = client.get(f"{PREFIX}/address", params={"address": " ,. "})

    assert response.status_code == 400
