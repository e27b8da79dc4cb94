"""External collaborator contracts and their library-backed adapters."""

from .base import (
    Business,
    BusinessDiscoveryProvider,
    ContentGenerationProvider,
    DeliveryResult,
    DemoRenderingProvider,
    EmailDeliveryProvider,
    HardTrigger,
    Issue,
    IssueClassification,
    NotificationProvider,
    OutreachContent,
    ResearchContext,
)

__all__ = [
    "Business",
    "BusinessDiscoveryProvider",
    "ContentGenerationProvider",
    "DeliveryResult",
    "DemoRenderingProvider",
    "EmailDeliveryProvider",
    "HardTrigger",
    "Issue",
    "IssueClassification",
    "NotificationProvider",
    "OutreachContent",
    "ResearchContext",
]
