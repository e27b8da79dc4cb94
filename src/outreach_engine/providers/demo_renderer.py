"""HTTP client for the demo-site rendering service."""

import logging
from typing import Optional

import httpx

from ..exceptions import RenderError
from ..models.lead import Lead

logger = logging.getLogger(__name__)

PROVIDER_NAME = "demo-renderer"
DEFAULT_TIMEOUT_SECONDS = 60.0


class HttpDemoRenderer:
    """Renders a personalized demo site by POSTing the lead to a render service.

    The service responds with JSON containing the public ``url`` of the demo.
    """

    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not endpoint:
            raise ValueError("Demo render endpoint required. Set DEMO_RENDER_URL.")
        self.endpoint = endpoint
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, headers=headers)

    async def render(self, lead: Lead) -> str:
        """Render a demo for the lead and return its URL.

        Raises:
            RenderError: On transport failure, non-2xx status, or a response
                without a URL.
        """
        payload = {
            "lead_id": lead.id,
            "name": lead.name,
            "industry": lead.industry,
            "city": lead.city,
            "state": lead.state,
            "phone": lead.phone,
            "address": lead.address,
            "website": lead.website,
        }
        try:
            response = await self._client.post(self.endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RenderError(
                f"Demo render returned {e.response.status_code}",
                provider=PROVIDER_NAME,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RenderError(f"Demo render request failed: {e}", provider=PROVIDER_NAME) from e

        try:
            data = response.json()
        except ValueError as e:
            raise RenderError("Demo render returned non-JSON body", provider=PROVIDER_NAME) from e
        if not isinstance(data, dict):
            raise RenderError(
                f"Demo render returned {type(data).__name__}, expected an object",
                provider=PROVIDER_NAME,
            )
        url = data.get("url")
        if not url or not isinstance(url, str):
            raise RenderError("Demo render response has no url", provider=PROVIDER_NAME)

        logger.debug("Rendered demo for %s at %s", lead.dedup_key, url)
        return url

    async def aclose(self) -> None:
        await self._client.aclose()
