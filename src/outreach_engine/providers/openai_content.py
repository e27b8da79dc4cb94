"""OpenAI-backed research, outreach composition and issue classification.

Every call asks the model for a JSON object and validates it into the typed
results from providers.base, so the orchestration code never handles raw
model text.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from ..exceptions import ContentGenerationError
from ..models.lead import Lead
from .base import (
    HardTrigger,
    Issue,
    IssueClassification,
    OutreachContent,
    ResearchContext,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "openai"
DEMO_URL_PLACEHOLDER = "[DEMO_URL]"

RESEARCH_PROMPT = """You research small local businesses before a sales email.
Return JSON: {"summary": "<two sentences>", "facts": ["<short fact>", ...]}.
Only use the details given; do not invent reviews, owners or prices."""

COMPOSE_PROMPT = """You write short, friendly cold emails offering a free website demo
to small local businesses. Keep the body under 150 words, plain text, no markdown.
Include the literal placeholder [DEMO_URL] exactly once where the demo link belongs.
Return JSON: {"subject": "<subject line>", "body": "<email body>"}."""

CLASSIFY_PROMPT = """You triage customer issues for a small website business.
Rate severity 0-10. List any hard triggers from this set:
legal_threat, multi_customer_outage, regulatory_issue, reputation_risk,
demands_owner, security_breach.
Return JSON: {"severity": <int>, "hard_triggers": [...], "can_resolve_locally": <bool>,
"confidence": <0-1>, "suggested_response": "<reply to the customer>", "reasoning": "<one line>"}."""


def _lead_summary(lead: Lead) -> Dict[str, Any]:
    return {
        "name": lead.name,
        "industry": lead.industry,
        "city": lead.city,
        "state": lead.state,
        "rating": lead.rating,
        "review_count": lead.review_count,
        "has_website": lead.has_website,
        "website": lead.website,
    }


class OpenAIContentProvider:
    """Content generation through the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        client: Optional[AsyncOpenAI] = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize the content provider.

        Args:
            api_key: OpenAI API key.
            model: Chat model name.
            client: Pre-built AsyncOpenAI client, mainly for tests.
            timeout_seconds: Request timeout passed to the SDK.

        Raises:
            ValueError: If neither an API key nor a client is provided.
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "OpenAI API key required. Set OPENAI_API_KEY environment "
                    "variable or pass api_key parameter."
                )
            client = AsyncOpenAI(api_key=api_key, timeout=timeout_seconds)
        self._client = client
        self.model = model

    async def _complete_json(
        self, system_prompt: str, payload: Dict[str, Any], temperature: float
    ) -> Dict[str, Any]:
        """Run a chat completion and parse the JSON object it returns.

        Raises:
            ContentGenerationError: On API failure or non-JSON output.
        """
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": json.dumps(payload, default=str)},
                ],
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise ContentGenerationError(
                f"OpenAI request failed: {e}", provider=PROVIDER_NAME
            ) from e

        content = completion.choices[0].message.content or ""
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse JSON response: %s", e)
            raise ContentGenerationError(
                "Model returned malformed JSON", provider=PROVIDER_NAME
            ) from e
        if not isinstance(data, dict):
            raise ContentGenerationError(
                "Model returned JSON that is not an object", provider=PROVIDER_NAME
            )
        return data

    async def research(self, lead: Lead) -> ResearchContext:
        """Summarize what is known about a lead."""
        data = await self._complete_json(RESEARCH_PROMPT, _lead_summary(lead), 0.2)
        facts = data.get("facts") or []
        return ResearchContext(
            summary=str(data.get("summary", "")),
            facts=[str(f) for f in facts if f],
        )

    async def compose_outreach(
        self, lead: Lead, research: ResearchContext
    ) -> OutreachContent:
        """Write the subject and body of the first outreach email."""
        payload = {"business": _lead_summary(lead), "research": research.model_dump()}
        data = await self._complete_json(COMPOSE_PROMPT, payload, 0.7)
        try:
            return OutreachContent(subject=data.get("subject", ""), body=data.get("body", ""))
        except ValidationError as e:
            raise ContentGenerationError(
                f"Model returned incomplete email: {e.error_count()} errors",
                provider=PROVIDER_NAME,
            ) from e

    async def classify_issue(self, issue: Issue) -> IssueClassification:
        """Classify a customer issue for the escalation gate."""
        data = await self._complete_json(CLASSIFY_PROMPT, issue.model_dump(), 0.0)
        triggers: List[HardTrigger] = []
        for raw in data.get("hard_triggers") or []:
            try:
                triggers.append(HardTrigger(str(raw).strip().lower()))
            except ValueError:
                logger.warning("Ignoring unknown hard trigger from classifier: %s", raw)
        try:
            return IssueClassification(
                severity=max(0, min(10, int(data.get("severity", 0)))),
                hard_triggers=triggers,
                can_resolve_locally=bool(data.get("can_resolve_locally", True)),
                confidence=max(0.0, min(1.0, float(data.get("confidence", 0.0)))),
                suggested_response=data.get("suggested_response"),
                reasoning=str(data.get("reasoning", "")),
            )
        except (TypeError, ValueError) as e:
            raise ContentGenerationError(
                f"Model returned an invalid classification: {e}", provider=PROVIDER_NAME
            ) from e
