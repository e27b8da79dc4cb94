"""Discovery cycle: search each (city, industry) pair and store new leads."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .clock import utcnow
from .exceptions import ProviderError
from .lead_store import LeadStore, MIN_ESTABLISHED_RATING, MIN_ESTABLISHED_REVIEWS
from .models.strategy import PhaseSettings
from .providers.base import Business, BusinessDiscoveryProvider
from .stats import EngineStats

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = 2,
    base_delay: float = 2.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Await a coroutine function with exponential backoff retry logic.

    Only retryable ProviderErrors are retried; anything else propagates
    immediately.

    Args:
        func: Coroutine function to call.
        *args: Positional arguments for the function.
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles each retry).
        sleep: Awaitable sleep, replaceable in tests.
        **kwargs: Keyword arguments for the function.

    Returns:
        The function result on success.

    Raises:
        The last ProviderError if all retries fail.
    """
    last_exception: Optional[ProviderError] = None

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except ProviderError as e:
            last_exception = e
            if e.retryable and attempt < max_retries:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                    attempt + 1,
                    max_retries + 1,
                    str(e),
                    delay,
                )
                await sleep(delay)
            else:
                logger.error(
                    "All %d attempts failed. Last error: %s", attempt + 1, str(e)
                )
                break

    raise last_exception


def qualifies(business: Business, settings: PhaseSettings) -> bool:
    """Apply the phase's targeting flags to a discovered business.

    With neither flag enabled every business qualifies.
    """
    if not settings.target_no_website and not settings.target_existing_website:
        return True

    rating = business.rating or 0.0
    reviews = business.review_count or 0
    established = rating >= MIN_ESTABLISHED_RATING and reviews >= MIN_ESTABLISHED_REVIEWS

    if settings.target_no_website and (not business.website_present or not established):
        return True
    if settings.target_existing_website and business.website_present and established:
        return True
    return False


@dataclass
class DiscoveryResult:
    """Summary of one discovery cycle."""

    searched_pairs: int = 0
    found: int = 0
    inserted: int = 0
    duplicates: int = 0
    filtered_out: int = 0
    errors: int = 0
    skipped: bool = False
    error_messages: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "searched_pairs": self.searched_pairs,
            "found": self.found,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "filtered_out": self.filtered_out,
            "errors": self.errors,
            "skipped": self.skipped,
        }


class DiscoveryCycle:
    """Queries the discovery provider for the current phase and fills the LeadStore."""

    def __init__(
        self,
        provider: BusinessDiscoveryProvider,
        lead_store: LeadStore,
        stats: EngineStats,
        delay_seconds: float = 2.0,
        max_retries: int = 2,
        retry_base_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.provider = provider
        self.lead_store = lead_store
        self.stats = stats
        self.delay_seconds = delay_seconds
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._clock = clock
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(
        self,
        settings: PhaseSettings,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> DiscoveryResult:
        """Search every (city, industry) pair of the phase settings.

        Args:
            settings: Targeting for the active phase (overrides already applied).
            should_continue: Checked between searches; returning False ends
                the cycle early (pause/stop).

        Returns:
            DiscoveryResult with counts for the cycle.
        """
        result = DiscoveryResult()
        if self._running:
            logger.warning("Discovery cycle already running; skipping overlapping run")
            result.skipped = True
            return result

        self._running = True
        try:
            pairs = [(c, i) for c in settings.cities for i in settings.industries]
            logger.info(
                "Discovery cycle starting: %d cities x %d industries",
                len(settings.cities),
                len(settings.industries),
            )

            for index, (city, industry) in enumerate(pairs):
                if should_continue is not None and not should_continue():
                    logger.info("Discovery cycle interrupted after %d searches", index)
                    break
                if index > 0 and self.delay_seconds > 0:
                    await self._sleep(self.delay_seconds)

                result.searched_pairs += 1
                try:
                    businesses = await retry_with_backoff(
                        self.provider.search,
                        city.city,
                        city.state,
                        industry,
                        max_retries=self.max_retries,
                        base_delay=self.retry_base_delay,
                        sleep=self._sleep,
                    )
                except ProviderError as e:
                    result.errors += 1
                    result.error_messages.append(f"{industry} in {city.label()}: {e}")
                    logger.error("Discovery failed for %s in %s: %s", industry, city.label(), e)
                    continue

                result.found += len(businesses)
                await self._store(businesses, settings, result)

            logger.info("Discovery cycle complete: %s", result.to_dict())
            return result
        finally:
            self._running = False

    async def _store(
        self, businesses: list[Business], settings: PhaseSettings, result: DiscoveryResult
    ) -> None:
        for business in businesses:
            if not qualifies(business, settings):
                result.filtered_out += 1
                continue
            try:
                outcome = await self.lead_store.insert(business, now=self._clock())
            except ValueError as e:
                result.filtered_out += 1
                logger.warning("Skipping unidentifiable business %r: %s", business.name, e)
                continue
            if outcome.is_new:
                result.inserted += 1
                self.stats.record_lead(outcome.lead.created_at)
            else:
                result.duplicates += 1
