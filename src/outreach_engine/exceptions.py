"""Exception hierarchy for the outreach engine.

Provider adapters translate their SDK errors into ProviderError subclasses so
the pipeline can recover per lead without knowing which library failed.
Configuration problems live in config.ConfigError and are fatal at startup.
"""

from typing import Optional


class OutreachEngineError(Exception):
    """Base exception for outreach engine errors."""

    pass


class ProviderError(OutreachEngineError):
    """Raised when an external collaborator call fails.

    Attributes:
        provider: Short name of the failing collaborator (e.g. "sendgrid").
        retryable: Whether a later attempt may succeed.
    """

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        retryable: bool = True,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable
        self.status_code = status_code


class DiscoveryError(ProviderError):
    """Raised when business discovery fails."""

    pass


class ContentGenerationError(ProviderError):
    """Raised when research, composition or classification fails."""

    pass


class RenderError(ProviderError):
    """Raised when demo rendering fails."""

    pass


class DeliveryError(ProviderError):
    """Raised when email delivery fails."""

    pass


class InvalidRecipientError(DeliveryError):
    """Raised when the recipient address can never be delivered to."""

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message, provider=provider, retryable=False)


class NotificationError(ProviderError):
    """Raised when an operator notification cannot be delivered."""

    pass


class StrategyDataError(OutreachEngineError):
    """Raised when the persisted growth strategy is unreadable or malformed."""

    pass


class InvalidStatusTransition(OutreachEngineError):
    """Raised when a lead status change would move the lifecycle backwards."""

    pass


class LeadNotFoundError(OutreachEngineError):
    """Raised when an operation references an unknown dedup key."""

    pass
