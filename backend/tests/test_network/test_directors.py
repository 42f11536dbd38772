"""Tests for directorship network derivation."""
import pytest

from core.errors import EntityUnreachable
from core.schemas import OfficerMatch
from network.directors import resolve_director_network, select_officers


def search_hit(officer_id, title="DOE, Jane"):
    return {"title": title, "links": {"self": f"/officers/{officer_id}/appointments"}}


class TestSelectOfficers:

    def test_token_order_does_not_matter(self):
        """Test "DOE, Jane" matches a search for Jane Doe."""
        matches = [
            OfficerMatch(officer_id="a", name="DOE, Janet"),
            OfficerMatch(officer_id="b", name="DOE, Jane"),
        ]

        assert [m.officer_id for m in select_officers("Jane Doe", matches)] == ["b"]

    def test_falls_back_to_best_ranked(self):
        """Test the top search result is used when no name matches exactly."""
        matches = [OfficerMatch(officer_id="a", name="DOE, Janet")]

        assert [m.officer_id for m in select_officers("Jane Doe", matches)] == ["a"]

    def test_nothing_to_select(self):
        """Test an empty search selects nobody."""
        assert select_officers("Jane Doe", []) == []


class TestResolveDirectorNetwork:
    """Appointments and co-directors for a name."""

    @pytest.mark.asyncio
    async def test_appointments_and_co_directors(self, traversal, sample_network):
        """Test appointments and co-directors are collected."""
        sample_network.officer_search["jane doe"] = [search_hit("jane")]

        expansion, network = await resolve_director_network(traversal, "Jane Doe")

        assert expansion.seed == "officer:jane"
        assert network.officer_ids == ["officer:jane"]
        assert sorted(a.company_id for a in network.appointments) == ["company:00000001", "company:00000002"]
        assert network.total_appointments == 2
        assert network.active_appointments == 2
        john = network.co_directors[0]
        assert john.officer_id == "officer:john"
        assert john.shared_companies == ["company:00000001"]
        assert john.connection_strength == 0.5
        assert network.average_tenure_years == pytest.approx(9.42)
        assert network.risk_score == 0.6

    @pytest.mark.asyncio
    async def test_dissolved_appointment_carries_flags(self, traversal, sample_network):
        """Test an appointment at a dissolved company carries its flags."""
        sample_network.officer_search["jane doe"] = [search_hit("jane")]

        _, network = await resolve_director_network(traversal, "Jane Doe")

        beta = next(a for a in network.appointments if a.company_id == "company:00000002")
        assert "dissolved" in beta.risk_flags

    @pytest.mark.asyncio
    async def test_resigned_appointment_is_inactive(self, traversal, gateway):
        """Test a resigned appointment is reported inactive."""
        gateway.add_company("00000001", "ALPHA LTD")
        gateway.add_company("00000002", "BETA LTD")
        gateway.add_appointments(
            "jane",
            ("00000001", "ALPHA LTD", "active"),
            ("00000002", "BETA LTD", "active", "2020-01-01"),
        )
        gateway.officer_search["jane doe"] = [search_hit("jane")]

        _, network = await resolve_director_network(traversal, "Jane Doe")

        assert network.total_appointments == 2
        assert network.active_appointments == 1
        assert network.appointments[-1].company_id == "company:00000002"

    @pytest.mark.asyncio
    async def test_same_name_several_officer_ids(self, traversal, sample_network):
        """Test every officer id under one name is merged."""
        sample_network.add_appointments("jane2", ("00000003", "GAMMA TRADING LTD", "active"))
        sample_network.officer_search["jane doe"] = [search_hit("jane"), search_hit("jane2")]

        _, network = await resolve_director_network(traversal, "Jane Doe")

        assert network.officer_ids == ["officer:jane", "officer:jane2"]
        assert network.total_appointments == 3

    @pytest.mark.asyncio
    async def test_one_officer_unreachable(self, traversal, sample_network):
        """Test one unreachable officer is recorded and skipped."""
        sample_network.officer_search["jane doe"] = [search_hit("jane"), search_hit("ghost")]

        _, network = await resolve_director_network(traversal, "Jane Doe")

        assert network.officer_ids == ["officer:jane"]
        assert "officer:ghost" in traversal.builder.unreachable

    @pytest.mark.asyncio
    async def test_every_officer_unreachable(self, traversal, gateway):
        """Test the analysis fails when no officer can be reached."""
        gateway.officer_search["jane doe"] = [search_hit("ghost")]

        with pytest.raises(EntityUnreachable):
            await resolve_director_network(traversal, "Jane Doe")

    @pytest.mark.asyncio
    async def test_no_search_results(self, traversal, gateway):
        """Test a name with no search results is unreachable."""
        gateway.officer_search["jane doe"] = []

        with pytest.raises(EntityUnreachable) as exc:
            await resolve_director_network(traversal, "Jane Doe")

        assert exc.value.not_found is True
