"""Tests for the Address Cluster Resolver."""
import pytest

from network.address_cluster import group_by_address, resolve_address_cluster
from factories import officer_item


SEED = "1 Example St, London"
VARIANTS = ["1 Example St, London", "1 EXAMPLE ST,   LONDON", " 1 example st. london"]


@pytest.fixture
def shared_address(gateway):
    """Three companies at spelling variants of one address, two directed by Jane Doe."""
    for i, variant in enumerate(VARIANTS, start=1):
        number = f"0000000{i}"
        officers = [officer_item("DOE, Jane", "jane", address="5 Home Road, Leeds")] if i < 3 else []
        gateway.add_company(number, f"COMPANY {i} LTD", address=variant, officers=officers)
        gateway.add_listing(SEED, number, f"COMPANY {i} LTD", variant)
    # fuzzy search noise: a neighbouring building
    gateway.add_listing(SEED, "00000009", "NEXT DOOR LTD", "10 Example St, London")
    gateway.add_listing("5 Home Road, Leeds", "00000007", "SIDE LTD", "5 Home Road, Leeds")
    gateway.add_appointments("jane", ("00000001", "COMPANY 1 LTD", "active"))
    return gateway


class TestGroupByAddress:

    def test_variants_share_a_key(self):
        """Test spelling variants of an address group together."""
        pairs = [(f"c{i}", v) for i, v in enumerate(VARIANTS)] + [("c9", "10 Example St, London"), ("c8", None)]

        clusters = group_by_address(pairs)

        assert clusters == {
            "1 example st london": ["c0", "c1", "c2"],
            "10 example st london": ["c9"],
        }


class TestResolveAddressCluster:
    """Seed address plus one hop through officer addresses."""

    @pytest.mark.asyncio
    async def test_variants_form_one_cluster(self, traversal, shared_address):
        """Test companies at address variants form one cluster."""
        _, analysis = await resolve_address_cluster(traversal, SEED, threshold=50)

        assert analysis.address_key == "1 example st london"
        assert [m.company_id for m in analysis.members] == [
            "company:00000001", "company:00000002", "company:00000003",
        ]
        assert analysis.size == 3
        assert analysis.size_anomaly_flag is False
        assert analysis.clusters["1 example st london"] == [
            "company:00000001", "company:00000002", "company:00000003",
        ]

    @pytest.mark.asyncio
    async def test_size_above_threshold_is_flagged(self, traversal, shared_address):
        """Test a cluster larger than the threshold is flagged."""
        _, analysis = await resolve_address_cluster(traversal, SEED, threshold=2)

        assert analysis.size_anomaly_flag is True
        assert any("threshold 2" in p for p in analysis.risk_indicators.suspicious_patterns)

    @pytest.mark.asyncio
    async def test_size_equal_to_threshold_is_not_flagged(self, traversal, shared_address):
        """Test a cluster at the threshold is not flagged."""
        _, analysis = await resolve_address_cluster(traversal, SEED, threshold=3)

        assert analysis.size_anomaly_flag is False

    @pytest.mark.asyncio
    async def test_linked_cluster_through_officer_address(self, traversal, shared_address):
        """Test an officer address links a second cluster."""
        expansion, analysis = await resolve_address_cluster(traversal, SEED, threshold=50)

        assert len(analysis.linked_clusters) == 1
        linked = analysis.linked_clusters[0]
        assert linked.address_key == "5 home road leeds"
        assert linked.via == ["officer:jane"]
        assert linked.members == ["company:00000007"]
        assert "company:00000007" in expansion.visited
        assert analysis.clusters["5 home road leeds"] == ["company:00000007"]

    @pytest.mark.asyncio
    async def test_visited_carries_real_hop_distance(self, traversal, shared_address):
        """Test each cluster node is labelled with its hop distance from the seed address."""
        expansion, _ = await resolve_address_cluster(traversal, SEED, threshold=50)

        assert expansion.visited["address:1 example st london"] == 0
        assert expansion.visited["company:00000001"] == 1
        assert expansion.visited["officer:jane"] == 2
        assert expansion.visited["address:5 home road leeds"] == 3
        assert expansion.visited["company:00000007"] == 4

    @pytest.mark.asyncio
    async def test_shared_directors(self, traversal, shared_address):
        """Test officers directing several members are reported."""
        _, analysis = await resolve_address_cluster(traversal, SEED, threshold=50)

        assert analysis.risk_indicators.shared_directors == ["officer:jane"]

    @pytest.mark.asyncio
    async def test_dissolved_majority(self, traversal, gateway):
        """Test a mostly dissolved cluster is flagged."""
        for i in range(1, 4):
            number = f"0000000{i}"
            status = "dissolved" if i < 3 else "active"
            gateway.add_company(number, f"COMPANY {i} LTD", status=status, address=SEED)
            gateway.add_listing(SEED, number, f"COMPANY {i} LTD", SEED, status=status)

        _, analysis = await resolve_address_cluster(traversal, SEED, threshold=50)

        assert analysis.risk_indicators.dissolved_companies == 2
        assert "majority of companies at this address are dissolved" in analysis.risk_indicators.suspicious_patterns
        assert analysis.cluster_risk_score == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_empty_address_rejected(self, traversal):
        """Test an address without letters or digits is refused."""
        with pytest.raises(ValueError):
            await resolve_address_cluster(traversal, " ,. ")

    @pytest.mark.asyncio
    async def test_threshold_must_be_positive(self, traversal):
        """Test a zero threshold is refused."""
        with pytest.raises(ValueError):
            await resolve_address_cluster(traversal, SEED, threshold=0)
