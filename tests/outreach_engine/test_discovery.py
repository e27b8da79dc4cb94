"""Unit tests for the discovery cycle and retry helper.

The LeadStore is mocked here; tests/outreach_engine/integration covers the
same flow against a real database.
"""

import asyncio
import os
import sys
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from outreach_engine.discovery import DiscoveryCycle, qualifies, retry_with_backoff
from outreach_engine.exceptions import DiscoveryError
from outreach_engine.lead_store import InsertResult
from outreach_engine.models.strategy import PhaseSettings, TargetCity
from outreach_engine.providers.base import Business
from outreach_engine.stats import EngineStats


NOW = datetime(2026, 10, 21, 14, 0, tzinfo=timezone.utc)


# ============================================================================
# Fixtures
# ============================================================================

def make_settings(**overrides) -> PhaseSettings:
    data = {
        "cities": [TargetCity(city="Austin", state="TX"), TargetCity(city="Dallas", state="TX")],
        "industries": ["dentist", "lawyer"],
    }
    data.update(overrides)
    return PhaseSettings(**data)


def make_business(place_id, **overrides) -> Business:
    data = {"provider_id": place_id, "name": f"Business {place_id}", "city": "Austin", "state": "TX"}
    data.update(overrides)
    return Business(**data)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def lead_store():
    """LeadStore mock that treats every provider id seen twice as a duplicate."""
    store = MagicMock()
    seen = set()

    async def insert(business, now=None):
        if not business.provider_id and not business.name.strip():
            raise ValueError("no identity")
        lead = MagicMock(created_at=NOW)
        is_new = business.provider_id not in seen
        seen.add(business.provider_id)
        return InsertResult(lead=lead, is_new=is_new)

    store.insert = AsyncMock(side_effect=insert)
    return store


# ============================================================================
# retry_with_backoff
# ============================================================================

class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self, sleep):
        """Test exponential delays between attempts before success."""
        func = AsyncMock(side_effect=[DiscoveryError("busy"), DiscoveryError("busy"), ["ok"]])

        result = await retry_with_backoff(func, "a", max_retries=2, base_delay=1.0, sleep=sleep)

        assert result == ["ok"]
        assert func.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_retryable_error_raises_immediately(self, sleep):
        func = AsyncMock(side_effect=DiscoveryError("bad key", retryable=False))

        with pytest.raises(DiscoveryError):
            await retry_with_backoff(func, max_retries=3, sleep=sleep)

        assert func.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_last_error_raised_after_exhaustion(self, sleep):
        func = AsyncMock(side_effect=[DiscoveryError("one"), DiscoveryError("two")])

        with pytest.raises(DiscoveryError, match="two"):
            await retry_with_backoff(func, max_retries=1, sleep=sleep)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_exceptions_propagate(self, sleep):
        func = AsyncMock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            await retry_with_backoff(func, sleep=sleep)
        assert func.await_count == 1


# ============================================================================
# Targeting
# ============================================================================

class TestQualifies:
    """Tests for phase targeting flags."""

    @pytest.mark.unit
    def test_no_website_targeting(self):
        settings = make_settings(target_no_website=True, target_existing_website=False)

        assert qualifies(make_business("a"), settings) is True
        established = make_business(
            "b", website="https://b.example", rating=4.7, review_count=80
        )
        assert qualifies(established, settings) is False

    @pytest.mark.unit
    def test_weak_website_still_targeted(self):
        """Test that a site with few reviews counts as a no-website candidate."""
        settings = make_settings(target_no_website=True)
        weak = make_business("c", website="https://c.example", rating=3.2, review_count=4)
        assert qualifies(weak, settings) is True

    @pytest.mark.unit
    def test_upgrade_targeting(self):
        settings = make_settings(target_no_website=False, target_existing_website=True)
        established = make_business(
            "b", website="https://b.example", rating=4.7, review_count=80
        )
        assert qualifies(established, settings) is True
        assert qualifies(make_business("a"), settings) is False

    @pytest.mark.unit
    def test_no_flags_accepts_everything(self):
        settings = make_settings(target_no_website=False, target_existing_website=False)
        assert qualifies(make_business("a", website="https://a.example"), settings) is True


# ============================================================================
# DiscoveryCycle
# ============================================================================

class TestDiscoveryCycle:
    """Tests for DiscoveryCycle.run."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_searches_every_pair_and_counts(self, lead_store, sleep):
        """Test the cross product of cities and industries with dedup counts."""
        provider = MagicMock()
        provider.search = AsyncMock(
            side_effect=[
                [make_business("p1"), make_business("p2")],
                [make_business("p2")],
                [],
                [make_business("p3")],
            ]
        )
        stats = EngineStats(started_at=NOW)
        cycle = DiscoveryCycle(provider, lead_store, stats, delay_seconds=2.0, sleep=sleep)

        result = await cycle.run(make_settings())

        assert result.searched_pairs == 4
        assert result.found == 4
        assert result.inserted == 3
        assert result.duplicates == 1
        assert stats.leads_generated == 3
        assert stats.last_lead_generated_at == NOW
        searched = [c.args for c in provider.search.await_args_list]
        assert searched[0] == ("Austin", "TX", "dentist")
        assert searched[3] == ("Dallas", "TX", "lawyer")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delay_between_searches_only(self, lead_store, sleep):
        """Test that the rate-limit delay runs between pairs, not before the first."""
        provider = MagicMock()
        provider.search = AsyncMock(return_value=[])
        cycle = DiscoveryCycle(provider, lead_store, EngineStats(), delay_seconds=2.0, sleep=sleep)

        await cycle.run(make_settings())

        assert sleep.await_count == 3
        assert all(c.args[0] == 2.0 for c in sleep.await_args_list)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provider_failure_skips_pair(self, lead_store, sleep):
        """Test that a failing pair is counted and the cycle continues."""
        provider = MagicMock()
        provider.search = AsyncMock(
            side_effect=[
                DiscoveryError("quota", retryable=False),
                [make_business("p1")],
                [make_business("p2")],
                [make_business("p3")],
            ]
        )
        cycle = DiscoveryCycle(provider, lead_store, EngineStats(), sleep=sleep)

        result = await cycle.run(make_settings())

        assert result.errors == 1
        assert result.inserted == 3
        assert "dentist in Austin, TX" in result.error_messages[0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_filtered_businesses_not_stored(self, lead_store, sleep):
        provider = MagicMock()
        provider.search = AsyncMock(
            return_value=[
                make_business("p1"),
                make_business("p2", website="https://x.example", rating=4.9, review_count=200),
            ]
        )
        settings = make_settings(
            cities=[TargetCity(city="Austin", state="TX")], industries=["dentist"]
        )
        cycle = DiscoveryCycle(provider, lead_store, EngineStats(), sleep=sleep)

        result = await cycle.run(settings)

        assert result.inserted == 1
        assert result.filtered_out == 1
        assert lead_store.insert.await_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_should_continue_stops_cycle(self, lead_store, sleep):
        """Test that a pause between searches ends the cycle early."""
        provider = MagicMock()
        provider.search = AsyncMock(return_value=[])
        calls = iter([True, False])
        cycle = DiscoveryCycle(provider, lead_store, EngineStats(), sleep=sleep)

        result = await cycle.run(make_settings(), should_continue=lambda: next(calls))

        assert result.searched_pairs == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, lead_store):
        """Test that a second run while one is in flight is skipped."""
        gate = asyncio.Event()

        async def slow_search(city, state, industry):
            await gate.wait()
            return []

        provider = MagicMock()
        provider.search = slow_search
        settings = make_settings(
            cities=[TargetCity(city="Austin", state="TX")], industries=["dentist"]
        )
        cycle = DiscoveryCycle(provider, lead_store, EngineStats())

        first = asyncio.create_task(cycle.run(settings))
        await asyncio.sleep(0)
        assert cycle.is_running is True

        second = await cycle.run(settings)
        gate.set()
        first_result = await first

        assert second.skipped is True
        assert first_result.skipped is False
        assert cycle.is_running is False
