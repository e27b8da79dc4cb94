"""Unit tests for the escalation gate, alert cooldowns and issue handling."""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from outreach_engine.escalation import QUOTA_ALERT_KEY, EscalationGate, IssueHandler
from outreach_engine.exceptions import ContentGenerationError, NotificationError
from outreach_engine.providers.base import HardTrigger, Issue, IssueClassification


NOW = datetime(2026, 10, 21, 15, 0, tzinfo=timezone.utc)


def make_issue(**overrides) -> Issue:
    data = {"id": "iss-1", "customer": "Smile Dental", "message": "The site is down"}
    data.update(overrides)
    return Issue(**data)


class TestEscalationDecision:
    """Tests for EscalationGate.decide."""

    @pytest.mark.unit
    def test_low_severity_resolved_locally(self):
        gate = EscalationGate()

        decision = gate.decide(make_issue(), IssueClassification(severity=3))

        assert decision.escalate is False
        assert decision.reason is None
        assert gate.stats.resolved_locally == 1

    @pytest.mark.unit
    def test_severity_threshold_is_inclusive(self):
        gate = EscalationGate(severity_threshold=8)

        assert gate.decide(make_issue(), IssueClassification(severity=7)).escalate is False
        decision = gate.decide(make_issue(), IssueClassification(severity=8))

        assert decision.escalate is True
        assert decision.reason == "severity:8>=8"

    @pytest.mark.unit
    def test_hard_trigger_escalates_regardless_of_severity(self):
        """Test that a hard trigger overrides a low severity and local resolvability."""
        gate = EscalationGate()
        classification = IssueClassification(
            severity=1,
            hard_triggers=[HardTrigger.LEGAL_THREAT, HardTrigger.LEGAL_THREAT],
            can_resolve_locally=True,
        )

        decision = gate.decide(make_issue(), classification)

        assert decision.escalate is True
        assert decision.reason == "hard_trigger:legal_threat"
        assert decision.hard_triggers == [HardTrigger.LEGAL_THREAT]

    @pytest.mark.unit
    def test_escalation_rate(self):
        gate = EscalationGate()
        gate.decide(make_issue(), IssueClassification(severity=9))
        for _ in range(3):
            gate.decide(make_issue(), IssueClassification(severity=1))

        assert gate.stats.total_issues == 4
        assert gate.stats.escalation_rate == 25.0


class TestAlertCooldown:
    """Tests for notify_if_due and the quota alert."""

    @pytest.mark.unit
    def test_second_alert_within_cooldown_suppressed(self):
        gate = EscalationGate(cooldown=timedelta(hours=24))

        assert gate.notify_if_due("NO_LEADS_ALERT", NOW) is True
        assert gate.notify_if_due("NO_LEADS_ALERT", NOW + timedelta(hours=23)) is False
        assert gate.notify_if_due("NO_LEADS_ALERT", NOW + timedelta(hours=24)) is True

    @pytest.mark.unit
    def test_keys_are_independent(self):
        gate = EscalationGate()
        assert gate.notify_if_due("a", NOW) is True
        assert gate.notify_if_due("b", NOW) is True

    @pytest.mark.unit
    def test_reset_cooldown(self):
        gate = EscalationGate()
        gate.notify_if_due("a", NOW)
        gate.reset_cooldown("a")
        assert gate.is_on_cooldown("a", NOW) is False

    @pytest.mark.unit
    def test_quota_alert_at_eighty_percent(self):
        gate = EscalationGate()

        assert gate.check_delivery_quota(2399, 3000, now=NOW) is None
        assert gate.check_delivery_quota(2400, 3000, now=NOW) == QUOTA_ALERT_KEY
        assert gate.check_delivery_quota(2500, 3000, now=NOW) is None


class TestIssueHandler:
    """Tests for IssueHandler.handle."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_escalated_issue_notifies(self):
        classifier = AsyncMock()
        classifier.classify_issue.return_value = IssueClassification(
            severity=9, suggested_response="We are on it"
        )
        notifier = AsyncMock()
        handler = IssueHandler(
            EscalationGate(clock=lambda: NOW),
            classifier,
            notifier,
            channel="#escalations",
            emergency_contact="owner@example.com",
        )

        outcome = await handler.handle(make_issue())

        assert outcome.decision.escalate is True
        assert outcome.notified is True
        assert outcome.response is None
        channel, message = notifier.notify.await_args.args
        assert channel == "#escalations"
        assert "iss-1" in message
        assert "owner@example.com" in message

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_local_issue_returns_suggested_response(self):
        classifier = AsyncMock()
        classifier.classify_issue.return_value = IssueClassification(
            severity=2, suggested_response="Try clearing your cache"
        )
        notifier = AsyncMock()
        handler = IssueHandler(EscalationGate(), classifier, notifier)

        outcome = await handler.handle(make_issue())

        assert outcome.decision.escalate is False
        assert outcome.response == "Try clearing your cache"
        notifier.notify.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_classifier_failure_resolves_locally(self):
        classifier = AsyncMock()
        classifier.classify_issue.side_effect = ContentGenerationError("model down")
        handler = IssueHandler(EscalationGate(), classifier, AsyncMock())

        outcome = await handler.handle(make_issue())

        assert outcome.decision.escalate is False
        assert outcome.classification.severity == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_notification_failure_is_reported(self):
        classifier = AsyncMock()
        classifier.classify_issue.return_value = IssueClassification(
            severity=0, hard_triggers=[HardTrigger.SECURITY_BREACH]
        )
        notifier = AsyncMock()
        notifier.notify.side_effect = NotificationError("slack down")
        handler = IssueHandler(EscalationGate(), classifier, notifier)

        outcome = await handler.handle(make_issue())

        assert outcome.decision.escalate is True
        assert outcome.notified is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_escalation_retried_after_notification_failure(self):
        """Test that a failed escalation notice does not start the cooldown."""
        classifier = AsyncMock()
        classifier.classify_issue.return_value = IssueClassification(severity=10)
        notifier = AsyncMock()
        notifier.notify.side_effect = [NotificationError("slack down"), None]
        gate = EscalationGate(clock=lambda: NOW)
        handler = IssueHandler(gate, classifier, notifier)

        first = await handler.handle(make_issue())
        second = await handler.handle(make_issue())

        assert first.notified is False
        assert second.notified is True
        assert notifier.notify.await_count == 2
        assert gate.is_on_cooldown("escalation:iss-1") is True
