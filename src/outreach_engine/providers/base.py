"""Collaborator contracts and the typed results they exchange with the core.

The orchestration code only depends on the Protocols below; concrete
adapters live in the sibling modules and can be swapped for fakes in tests.
"""

from enum import Enum
from typing import List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field, field_validator

from ..models.lead import Lead


class HardTrigger(str, Enum):
    """Categorical conditions that always route an issue to a human."""

    LEGAL_THREAT = "legal_threat"
    MULTI_CUSTOMER_OUTAGE = "multi_customer_outage"
    REGULATORY_ISSUE = "regulatory_issue"
    REPUTATION_RISK = "reputation_risk"
    DEMANDS_OWNER = "demands_owner"
    SECURITY_BREACH = "security_breach"


class Business(BaseModel):
    """A business returned by a discovery provider."""

    provider: str = Field(default="google", description="Discovery provider name")
    provider_id: Optional[str] = Field(default=None, description="Provider's stable id")
    name: str
    industry: str = ""
    city: str = ""
    state: str = ""
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = Field(default=None, ge=0.0, le=5.0)
    review_count: Optional[int] = Field(default=None, ge=0)
    has_website: Optional[bool] = None

    @field_validator("state")
    @classmethod
    def normalize_state(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def website_present(self) -> bool:
        if self.has_website is not None:
            return self.has_website
        return bool(self.website)


class ResearchContext(BaseModel):
    """Background gathered about a lead before composing outreach."""

    summary: str = ""
    facts: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "ResearchContext":
        return cls()


class OutreachContent(BaseModel):
    """Subject and body produced by the content provider."""

    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)


class IssueClassification(BaseModel):
    """Typed classifier output consumed by the escalation gate."""

    severity: int = Field(default=0, ge=0, le=10)
    hard_triggers: List[HardTrigger] = Field(default_factory=list)
    can_resolve_locally: bool = True
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    suggested_response: Optional[str] = None
    reasoning: str = ""


class DeliveryResult(BaseModel):
    """Outcome of an email send."""

    success: bool
    message_id: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


class Issue(BaseModel):
    """An incoming customer issue to be classified and routed."""

    id: str
    customer: str = ""
    category: str = "general"
    message: str


@runtime_checkable
class BusinessDiscoveryProvider(Protocol):
    async def search(self, city: str, state: str, industry: str) -> List[Business]:
        ...


@runtime_checkable
class ContentGenerationProvider(Protocol):
    async def research(self, lead: Lead) -> ResearchContext:
        ...

    async def compose_outreach(
        self, lead: Lead, research: ResearchContext
    ) -> OutreachContent:
        ...

    async def classify_issue(self, issue: Issue) -> IssueClassification:
        ...


@runtime_checkable
class DemoRenderingProvider(Protocol):
    async def render(self, lead: Lead) -> str:
        ...


@runtime_checkable
class EmailDeliveryProvider(Protocol):
    async def send(self, to: str, subject: str, body: str) -> DeliveryResult:
        ...


@runtime_checkable
class NotificationProvider(Protocol):
    async def notify(self, channel: str, message: str) -> None:
        ...
