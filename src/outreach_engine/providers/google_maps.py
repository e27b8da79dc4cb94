"""Google Maps Places API discovery provider.

Searches for businesses of a given industry in a target city using the
Places Text Search endpoint, follows pagination, and enriches each result
with phone and website from Place Details.
"""

import asyncio
import logging
from typing import Any, Optional

import googlemaps
from googlemaps.exceptions import ApiError, Timeout, TransportError

from ..exceptions import DiscoveryError
from .base import Business

logger = logging.getLogger(__name__)

# Constants
MAX_PAGES = 3  # Google Places API allows up to 3 pages (60 results total)
PAGINATION_DELAY_SECONDS = 2.0  # Required delay before a next_page_token is valid
DETAIL_FIELDS = ["formatted_phone_number", "website"]
PROVIDER_NAME = "google"


class GoogleMapsDiscoveryProvider:
    """Business discovery backed by the googlemaps client.

    The googlemaps SDK is blocking, so every call runs in the default
    executor.

    Example:
        >>> provider = GoogleMapsDiscoveryProvider(api_key="...")
        >>> businesses = await provider.search("Austin", "TX", "dentist")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_pages: int = MAX_PAGES,
        enrich_details: bool = True,
        client: Optional[googlemaps.Client] = None,
        pagination_delay: float = PAGINATION_DELAY_SECONDS,
    ) -> None:
        """Initialize the discovery provider.

        Args:
            api_key: Google Maps API key.
            max_pages: Maximum number of result pages per search (1-3).
            enrich_details: Whether to fetch phone/website for each result.
            client: Pre-built googlemaps client, mainly for tests.
            pagination_delay: Seconds to wait before requesting the next page.

        Raises:
            ValueError: If neither an API key nor a client is provided.
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "Google Maps API key required. Set GOOGLE_MAPS_API_KEY environment "
                    "variable or pass api_key parameter."
                )
            client = googlemaps.Client(key=api_key)

        self._client = client
        self.max_pages = max(1, min(max_pages, MAX_PAGES))
        self.enrich_details = enrich_details
        self.pagination_delay = pagination_delay

    async def _call(self, func, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    def _parse_place(
        self, place_data: dict[str, Any], city: str, state: str, industry: str
    ) -> Business:
        """Parse a raw Places result into a Business."""
        return Business(
            provider=PROVIDER_NAME,
            provider_id=place_data.get("place_id") or None,
            name=place_data.get("name", ""),
            industry=industry,
            city=city,
            state=state,
            address=place_data.get("formatted_address", place_data.get("vicinity")),
            rating=place_data.get("rating"),
            review_count=place_data.get("user_ratings_total"),
        )

    async def _enrich(self, business: Business) -> Business:
        """Fill phone and website from Place Details; failures leave them empty."""
        if not business.provider_id:
            return business
        try:
            response = await self._call(
                self._client.place, business.provider_id, fields=DETAIL_FIELDS
            )
        except (ApiError, TransportError, Timeout) as e:
            logger.warning(
                "Failed to fetch details for place %s: %s", business.provider_id, e
            )
            return business

        details = response.get("result", {})
        website = details.get("website")
        return business.model_copy(
            update={
                "phone": details.get("formatted_phone_number"),
                "website": website,
                "has_website": bool(website),
            }
        )

    async def search(self, city: str, state: str, industry: str) -> list[Business]:
        """Search for businesses of an industry in a city.

        Args:
            city: Target city name.
            state: Two-letter state code.
            industry: Business keyword (e.g. "dentist").

        Returns:
            Businesses found, enriched with contact details when enabled.

        Raises:
            DiscoveryError: If the first page cannot be fetched.
        """
        query = f"{industry} in {city}, {state}"
        logger.info("Searching Google Places for '%s'", query)

        businesses: list[Business] = []
        next_page_token: Optional[str] = None

        for page_num in range(self.max_pages):
            try:
                if page_num == 0:
                    response = await self._call(self._client.places, query=query)
                else:
                    await asyncio.sleep(self.pagination_delay)
                    response = await self._call(
                        self._client.places, query=query, page_token=next_page_token
                    )
            except (ApiError, TransportError, Timeout) as e:
                logger.error("Places API error on page %d: %s", page_num + 1, e)
                if page_num == 0:
                    raise DiscoveryError(
                        f"Places search failed for '{query}': {e}",
                        provider=PROVIDER_NAME,
                    ) from e
                break

            for place_data in response.get("results", []):
                if place_data.get("business_status", "OPERATIONAL") != "OPERATIONAL":
                    continue
                businesses.append(self._parse_place(place_data, city, state, industry))

            next_page_token = response.get("next_page_token")
            if not next_page_token:
                break

        if self.enrich_details and businesses:
            businesses = list(await asyncio.gather(*(self._enrich(b) for b in businesses)))

        logger.info("Found %d businesses for '%s'", len(businesses), query)
        return businesses
