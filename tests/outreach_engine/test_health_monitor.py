"""Unit tests for pipeline health checks and the heartbeat file."""

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from outreach_engine.escalation import EscalationGate
from outreach_engine.exceptions import NotificationError
from outreach_engine.health_monitor import (
    HealthAlert,
    HealthMonitor,
    read_health_status,
    write_health_status,
)
from outreach_engine.stats import EngineStats


START = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)


def make_store(uncontacted=0, oldest=None):
    store = MagicMock()
    store.count_uncontacted = AsyncMock(return_value=uncontacted)
    store.oldest_uncontacted_created_at = AsyncMock(return_value=oldest)
    return store


class TestHealthAlerts:
    """Tests for HealthMonitor.check alert rules."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_leads_alert_after_two_hours(self):
        """Test that zero leads after more than two hours raises NO_LEADS_ALERT."""
        stats = EngineStats(started_at=START)
        monitor = HealthMonitor()

        early = await monitor.check(START + timedelta(hours=2), stats, make_store())
        late = await monitor.check(START + timedelta(hours=2, seconds=1), stats, make_store())

        assert early.alerts == []
        assert late.alerts == [HealthAlert.NO_LEADS_ALERT]
        assert late.healthy is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_backlog_alert_when_nothing_sent(self):
        """Test UNCONTACTED_BACKLOG_ALERT for leads older than three hours."""
        stats = EngineStats(started_at=START, leads_generated=4)
        now = START + timedelta(hours=4)
        store = make_store(uncontacted=4, oldest=now - timedelta(hours=3, minutes=1))

        snapshot = await HealthMonitor().check(now, stats, store)

        assert snapshot.alerts == [HealthAlert.UNCONTACTED_BACKLOG_ALERT]
        assert snapshot.uncontacted_lead_count == 4
        assert snapshot.oldest_uncontacted_age_seconds == pytest.approx(3 * 3600 + 60)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_backlog_alert_once_emails_sent(self):
        stats = EngineStats(started_at=START, leads_generated=4, emails_sent=1)
        now = START + timedelta(hours=5)
        store = make_store(uncontacted=3, oldest=now - timedelta(hours=4))

        snapshot = await HealthMonitor().check(now, stats, store)

        assert snapshot.alerts == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_backlog_alert_during_testing_phase(self):
        """Test that held-back delivery in the testing phase is not reported as a backlog."""
        stats = EngineStats(started_at=START, leads_generated=4)
        now = START + timedelta(hours=4)
        store = make_store(uncontacted=4, oldest=now - timedelta(hours=3, minutes=1))

        snapshot = await HealthMonitor().check(now, stats, store, testing=True)

        assert snapshot.alerts == []
        assert snapshot.uncontacted_lead_count == 4

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_alert_retried_after_notifier_failure(self):
        """Test that an alert the notifier dropped is forwarded on the next check."""
        stats = EngineStats(started_at=START)
        notifier = AsyncMock()
        notifier.notify.side_effect = [NotificationError("slack down"), None]
        monitor = HealthMonitor(
            notifier=notifier, escalation_gate=EscalationGate(), channel="#ops"
        )

        await monitor.check(START + timedelta(hours=3), stats, make_store())
        await monitor.check(START + timedelta(hours=3, minutes=10), stats, make_store())

        assert notifier.notify.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_healthy_pipeline(self):
        stats = EngineStats(started_at=START)
        stats.record_lead(START + timedelta(minutes=10))
        stats.record_email_sent(START + timedelta(minutes=40))
        now = START + timedelta(hours=3)
        monitor = HealthMonitor()

        snapshot = await monitor.check(now, stats, make_store())

        assert snapshot.healthy is True
        assert snapshot.time_since_last_lead_generated == pytest.approx(170 * 60)
        assert snapshot.time_since_last_email_sent == pytest.approx(140 * 60)
        assert monitor.last_snapshot is snapshot

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_alerts_forwarded_once_per_cooldown(self):
        """Test that a repeated alert is only forwarded once within the cooldown."""
        stats = EngineStats(started_at=START)
        notifier = AsyncMock()
        monitor = HealthMonitor(
            notifier=notifier, escalation_gate=EscalationGate(), channel="#ops"
        )

        await monitor.check(START + timedelta(hours=3), stats, make_store())
        await monitor.check(START + timedelta(hours=4), stats, make_store())

        assert notifier.notify.await_count == 1
        channel, message = notifier.notify.await_args.args
        assert channel == "#ops"
        assert message.startswith("NO_LEADS_ALERT")


class TestHeartbeatFile:
    """Tests for write_health_status and read_health_status."""

    @pytest.mark.unit
    def test_fresh_heartbeat_is_healthy(self, tmp_path):
        path = tmp_path / "health-status.json"
        stats = EngineStats(started_at=START, leads_generated=2)

        write_health_status(path, stats, now=START, extra={"phase": 1})
        status = read_health_status(path, now=START + timedelta(seconds=90))

        assert status.is_healthy is True
        assert status.age_seconds == 90
        assert status.data["stats"]["leads_generated"] == 2
        assert status.data["phase"] == 1

    @pytest.mark.unit
    def test_stale_heartbeat_is_unhealthy(self, tmp_path):
        path = tmp_path / "health-status.json"
        write_health_status(path, EngineStats(started_at=START), now=START)

        status = read_health_status(path, now=START + timedelta(minutes=3))

        assert status.is_healthy is False

    @pytest.mark.unit
    def test_missing_heartbeat(self, tmp_path):
        status = read_health_status(tmp_path / "absent.json")

        assert status.is_healthy is False
        assert "not found" in status.error

    @pytest.mark.unit
    def test_corrupt_heartbeat(self, tmp_path):
        path = tmp_path / "health-status.json"
        path.write_text("{not json", encoding="utf-8")

        status = read_health_status(path)

        assert status.is_healthy is False
        assert status.error.startswith("unreadable heartbeat")

    @pytest.mark.unit
    def test_heartbeat_written_as_json(self, tmp_path):
        path = tmp_path / "health-status.json"
        write_health_status(path, EngineStats(started_at=START), now=START)

        data = json.loads(path.read_text())
        assert data["timestamp"] == START.isoformat()
        assert data["health"] is None
