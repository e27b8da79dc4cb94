"""Bounded-authority escalation gate and alert de-duplication.

EscalationGate is deterministic: it decides from a typed classification and
never calls a model itself. IssueHandler wires it to the classifier and the
notifier for incoming customer issues.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .clock import utcnow
from .exceptions import ProviderError
from .providers.base import (
    ContentGenerationProvider,
    HardTrigger,
    Issue,
    IssueClassification,
    NotificationProvider,
)

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY_THRESHOLD = 8
DEFAULT_COOLDOWN = timedelta(hours=24)
QUOTA_ALERT_KEY = "sendgrid_approaching_limit"


@dataclass
class EscalationDecision:
    """Outcome of EscalationGate.decide."""

    escalate: bool
    reason: Optional[str] = None
    severity: int = 0
    hard_triggers: List[HardTrigger] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "escalate": self.escalate,
            "reason": self.reason,
            "severity": self.severity,
            "hard_triggers": [t.value for t in self.hard_triggers],
        }


@dataclass
class EscalationStats:
    """Counters updated on every decide() call."""

    total_issues: int = 0
    resolved_locally: int = 0
    escalated: int = 0

    @property
    def escalation_rate(self) -> float:
        """Escalated issues as a percentage of all issues."""
        if self.total_issues == 0:
            return 0.0
        return round(self.escalated / self.total_issues * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_issues": self.total_issues,
            "resolved_locally": self.resolved_locally,
            "escalated": self.escalated,
            "escalation_rate": self.escalation_rate,
        }


class EscalationGate:
    """Decides local resolution versus human escalation, and throttles alerts.

    Attributes:
        severity_threshold: Severity at or above which issues escalate.
        cooldown: Minimum time between two notifications with the same key.
    """

    def __init__(
        self,
        severity_threshold: int = DEFAULT_SEVERITY_THRESHOLD,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.severity_threshold = severity_threshold
        self.cooldown = cooldown
        self._clock = clock
        self.alerts_sent: Dict[str, datetime] = {}
        self.stats = EscalationStats()

    def decide(self, issue: Issue, classification: IssueClassification) -> EscalationDecision:
        """Escalate on any hard trigger or when severity reaches the threshold."""
        self.stats.total_issues += 1
        triggers = list(dict.fromkeys(classification.hard_triggers))

        if triggers:
            reason = "hard_trigger:" + ",".join(t.value for t in triggers)
        elif classification.severity >= self.severity_threshold:
            reason = f"severity:{classification.severity}>={self.severity_threshold}"
        else:
            reason = None

        if reason is None:
            self.stats.resolved_locally += 1
            logger.info("Issue %s resolved locally (severity %d)", issue.id, classification.severity)
            return EscalationDecision(False, None, classification.severity, [])

        self.stats.escalated += 1
        logger.warning("Issue %s escalated: %s", issue.id, reason)
        return EscalationDecision(True, reason, classification.severity, triggers)

    def is_on_cooldown(self, alert_key: str, now: Optional[datetime] = None) -> bool:
        last_sent = self.alerts_sent.get(alert_key)
        if last_sent is None:
            return False
        return (now or self._clock()) - last_sent < self.cooldown

    def notify_if_due(self, alert_key: str, now: Optional[datetime] = None) -> bool:
        """Record and allow a notification unless one was sent within the cooldown.

        Callers reset the cooldown when the notification then fails to send.

        Returns:
            True if the caller should send the notification now.
        """
        now = now or self._clock()
        if self.is_on_cooldown(alert_key, now):
            logger.debug("Alert %s suppressed (cooldown)", alert_key)
            return False
        self.alerts_sent[alert_key] = now
        return True

    def reset_cooldown(self, alert_key: str) -> None:
        self.alerts_sent.pop(alert_key, None)

    def check_delivery_quota(
        self,
        sent_this_month: int,
        monthly_limit: int = 3000,
        warn_ratio: float = 0.8,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Return the quota alert key when usage crosses the warning ratio and is due."""
        if monthly_limit <= 0 or sent_this_month < monthly_limit * warn_ratio:
            return None
        if not self.notify_if_due(QUOTA_ALERT_KEY, now):
            return None
        return QUOTA_ALERT_KEY


@dataclass
class IssueOutcome:
    """What happened to an incoming issue."""

    issue_id: str
    decision: EscalationDecision
    classification: IssueClassification
    response: Optional[str] = None
    notified: bool = False


class IssueHandler:
    """Classifies incoming issues, applies the gate, and notifies humans."""

    def __init__(
        self,
        gate: EscalationGate,
        classifier: ContentGenerationProvider,
        notifier: NotificationProvider,
        channel: str = "",
        emergency_contact: Optional[str] = None,
    ) -> None:
        self.gate = gate
        self.classifier = classifier
        self.notifier = notifier
        self.channel = channel
        self.emergency_contact = emergency_contact

    async def handle(self, issue: Issue) -> IssueOutcome:
        """Route one issue to local resolution or a human.

        A classifier failure falls back to local resolution with severity 0.
        """
        try:
            classification = await self.classifier.classify_issue(issue)
        except ProviderError as e:
            logger.error("Issue %s classification failed, resolving locally: %s", issue.id, e)
            classification = IssueClassification(
                severity=0, can_resolve_locally=True, reasoning="classifier unavailable"
            )

        decision = self.gate.decide(issue, classification)
        if not decision.escalate:
            return IssueOutcome(
                issue.id, decision, classification, response=classification.suggested_response
            )

        notified = False
        alert_key = f"escalation:{issue.id}"
        if self.gate.notify_if_due(alert_key):
            contact = f" (contact: {self.emergency_contact})" if self.emergency_contact else ""
            message = (
                f"Escalation for issue {issue.id} from {issue.customer or 'unknown customer'}"
                f"{contact}: {decision.reason}\n{issue.message}"
            )
            try:
                await self.notifier.notify(self.channel, message)
                notified = True
            except ProviderError as e:
                logger.error("Escalation notification for %s failed: %s", issue.id, e)
                self.gate.reset_cooldown(alert_key)

        return IssueOutcome(issue.id, decision, classification, notified=notified)
