"""Integration tests for the Google Maps discovery -> LeadStore flow.

The googlemaps client is mocked; the LeadStore runs against SQLite so that
deduplication across cycles and cities is exercised end to end.
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from outreach_engine.discovery import DiscoveryCycle
from outreach_engine.lead_store import LeadStore
from outreach_engine.models import DatabaseManager, LeadStatus
from outreach_engine.models.strategy import PhaseSettings, TargetCity
from outreach_engine.providers.google_maps import GoogleMapsDiscoveryProvider
from outreach_engine.stats import EngineStats


# ============================================================================
# Mock Data Fixtures
# ============================================================================

PLACES_BY_QUERY = {
    "dentist in Austin, TX": [
        {"place_id": "ChIJ-smile", "name": "Smile Dental", "rating": 4.1, "user_ratings_total": 9},
        {"place_id": "ChIJ-bright", "name": "Bright Teeth", "rating": 3.8, "user_ratings_total": 3},
    ],
    "lawyer in Austin, TX": [
        {"place_id": "ChIJ-lex", "name": "Lex & Co", "rating": 4.9, "user_ratings_total": 310},
    ],
}

DETAILS = {
    "ChIJ-smile": {"formatted_phone_number": "512-555-0100"},
    "ChIJ-bright": {"formatted_phone_number": "512-555-0101"},
    "ChIJ-lex": {"formatted_phone_number": "512-555-0102", "website": "https://lex.example"},
}


@pytest.fixture
def maps_client():
    client = MagicMock()
    client.places.side_effect = lambda query, page_token=None: {
        "results": PLACES_BY_QUERY.get(query, [])
    }
    client.place.side_effect = lambda place_id, fields: {"result": DETAILS[place_id]}
    return client


@pytest_asyncio.fixture
async def lead_store(tmp_path):
    db = DatabaseManager(f"sqlite:///{tmp_path / 'leads.db'}")
    await db.create_tables()
    yield LeadStore(db)
    await db.close()


def austin_settings() -> PhaseSettings:
    return PhaseSettings(
        cities=[TargetCity(city="Austin", state="TX")],
        industries=["dentist", "lawyer"],
    )


# ============================================================================
# Tests
# ============================================================================

class TestDiscoveryToLeadStore:
    """Tests for discovery cycles persisting leads."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cycle_stores_qualifying_leads(self, maps_client, lead_store):
        """Test that established businesses with a site are filtered out."""
        stats = EngineStats()
        cycle = DiscoveryCycle(
            GoogleMapsDiscoveryProvider(client=maps_client),
            lead_store,
            stats,
            delay_seconds=0,
            sleep=AsyncMock(),
        )

        result = await cycle.run(austin_settings())

        assert result.found == 3
        assert result.inserted == 2
        assert result.filtered_out == 1
        assert stats.leads_generated == 2
        batch = await lead_store.get_uncontacted_batch(10)
        assert {lead.name for lead in batch} == {"Smile Dental", "Bright Teeth"}
        assert all(lead.status == LeadStatus.NEW for lead in batch)
        assert batch[0].phone is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_second_cycle_finds_only_duplicates(self, maps_client, lead_store):
        """Test that rediscovering the same businesses creates no new leads."""
        stats = EngineStats()
        cycle = DiscoveryCycle(
            GoogleMapsDiscoveryProvider(client=maps_client),
            lead_store,
            stats,
            delay_seconds=0,
            sleep=AsyncMock(),
        )

        await cycle.run(austin_settings())
        second = await cycle.run(austin_settings())

        assert second.inserted == 0
        assert second.duplicates == 2
        assert stats.leads_generated == 2
        assert await lead_store.count() == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_upgrade_phase_targets_established_sites(self, maps_client, lead_store):
        settings = austin_settings().model_copy(
            update={"target_no_website": False, "target_existing_website": True}
        )
        cycle = DiscoveryCycle(
            GoogleMapsDiscoveryProvider(client=maps_client),
            lead_store,
            EngineStats(),
            delay_seconds=0,
            sleep=AsyncMock(),
        )

        result = await cycle.run(settings)

        assert result.inserted == 1
        lead = (await lead_store.get_uncontacted_batch(10))[0]
        assert lead.name == "Lex & Co"
        assert lead.has_website is True
