"""Pipeline liveness checks and the heartbeat file read by external monitors."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .clock import ensure_utc, utcnow
from .escalation import EscalationGate
from .exceptions import ProviderError
from .lead_store import LeadStore
from .phase_controller import atomic_write_json
from .providers.base import NotificationProvider
from .stats import EngineStats

logger = logging.getLogger(__name__)

DEFAULT_NO_LEADS_AFTER = timedelta(hours=2)
DEFAULT_BACKLOG_AFTER = timedelta(hours=3)
HEARTBEAT_MAX_AGE = timedelta(minutes=2)


class HealthAlert(str, Enum):
    """Advisory alerts raised by HealthMonitor.check."""

    NO_LEADS_ALERT = "NO_LEADS_ALERT"
    UNCONTACTED_BACKLOG_ALERT = "UNCONTACTED_BACKLOG_ALERT"


def _seconds_since(now: datetime, then: Optional[datetime]) -> Optional[float]:
    if then is None:
        return None
    return max(0.0, (now - ensure_utc(then)).total_seconds())


@dataclass
class HealthSnapshot:
    """Result of one health check; only the latest one is kept."""

    checked_at: datetime
    uptime_seconds: float
    time_since_last_lead_generated: Optional[float]
    time_since_last_email_sent: Optional[float]
    uncontacted_lead_count: int
    oldest_uncontacted_age_seconds: Optional[float]
    leads_generated: int = 0
    emails_sent: int = 0
    alerts: List[HealthAlert] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.alerts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": self.checked_at.isoformat(),
            "uptime_seconds": self.uptime_seconds,
            "time_since_last_lead_generated": self.time_since_last_lead_generated,
            "time_since_last_email_sent": self.time_since_last_email_sent,
            "uncontacted_lead_count": self.uncontacted_lead_count,
            "oldest_uncontacted_age_seconds": self.oldest_uncontacted_age_seconds,
            "leads_generated": self.leads_generated,
            "emails_sent": self.emails_sent,
            "alerts": [a.value for a in self.alerts],
        }


class HealthMonitor:
    """Detects a stalled pipeline from counters and lead ages.

    Alerts are returned and logged; when a notifier and gate are supplied
    they are also forwarded, throttled by the gate's cooldown. The monitor
    never takes corrective action.
    """

    def __init__(
        self,
        notifier: Optional[NotificationProvider] = None,
        escalation_gate: Optional[EscalationGate] = None,
        no_leads_after: timedelta = DEFAULT_NO_LEADS_AFTER,
        backlog_after: timedelta = DEFAULT_BACKLOG_AFTER,
        channel: str = "",
    ) -> None:
        self.notifier = notifier
        self.escalation_gate = escalation_gate
        self.no_leads_after = no_leads_after
        self.backlog_after = backlog_after
        self.channel = channel
        self.last_snapshot: Optional[HealthSnapshot] = None
        self._checking = False

    async def check(
        self,
        now: datetime,
        stats: EngineStats,
        lead_store: LeadStore,
        testing: bool = False,
    ) -> Optional[HealthSnapshot]:
        """Evaluate pipeline health.

        Args:
            now: Evaluation time.
            stats: Engine counters.
            lead_store: Source of the uncontacted backlog.
            testing: Whether delivery is held back by the testing phase; no
                backlog alert is raised then.

        Returns:
            The new snapshot, or None if a previous check is still running.
        """
        if self._checking:
            logger.debug("Health check already running; skipping")
            return None
        self._checking = True
        try:
            uncontacted = await lead_store.count_uncontacted()
            oldest = await lead_store.oldest_uncontacted_created_at()
            uptime = stats.uptime(now)

            snapshot = HealthSnapshot(
                checked_at=now,
                uptime_seconds=uptime,
                time_since_last_lead_generated=_seconds_since(now, stats.last_lead_generated_at),
                time_since_last_email_sent=_seconds_since(now, stats.last_email_sent_at),
                uncontacted_lead_count=uncontacted,
                oldest_uncontacted_age_seconds=_seconds_since(now, oldest),
                leads_generated=stats.leads_generated,
                emails_sent=stats.emails_sent,
            )

            if uptime > self.no_leads_after.total_seconds() and stats.leads_generated == 0:
                snapshot.alerts.append(HealthAlert.NO_LEADS_ALERT)

            if (
                not testing
                and uncontacted > 0
                and stats.emails_sent == 0
                and snapshot.oldest_uncontacted_age_seconds is not None
                and snapshot.oldest_uncontacted_age_seconds > self.backlog_after.total_seconds()
            ):
                snapshot.alerts.append(HealthAlert.UNCONTACTED_BACKLOG_ALERT)

            for alert in snapshot.alerts:
                logger.warning("Health alert %s: %s", alert.value, snapshot.to_dict())
                await self._forward(alert, snapshot, now)

            logger.info(
                "Health check: %d leads generated, %d emails sent, %d uncontacted",
                stats.leads_generated,
                stats.emails_sent,
                uncontacted,
            )
            self.last_snapshot = snapshot
            return snapshot
        finally:
            self._checking = False

    async def _forward(self, alert: HealthAlert, snapshot: HealthSnapshot, now: datetime) -> None:
        if self.notifier is None or self.escalation_gate is None:
            return
        if not self.escalation_gate.notify_if_due(alert.value, now):
            return
        hours = snapshot.uptime_seconds / 3600
        message = (
            f"{alert.value}: uptime {hours:.1f}h, {snapshot.leads_generated} leads generated, "
            f"{snapshot.emails_sent} emails sent, {snapshot.uncontacted_lead_count} uncontacted"
        )
        try:
            await self.notifier.notify(self.channel, message)
        except ProviderError as e:
            logger.error("Could not forward health alert %s: %s", alert.value, e)
            self.escalation_gate.reset_cooldown(alert.value)


@dataclass
class HeartbeatStatus:
    """Freshness of the heartbeat file as seen by an external monitor."""

    is_healthy: bool
    age_seconds: Optional[float]
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def write_health_status(
    path: Union[str, Path],
    stats: EngineStats,
    now: Optional[datetime] = None,
    snapshot: Optional[HealthSnapshot] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Atomically write the heartbeat file and return what was written."""
    now = now or utcnow()
    data: Dict[str, Any] = {
        "timestamp": now.isoformat(),
        "stats": stats.to_dict(now),
        "health": snapshot.to_dict() if snapshot else None,
    }
    if extra:
        data.update(extra)
    atomic_write_json(Path(path), data)
    return data


def read_health_status(
    path: Union[str, Path],
    now: Optional[datetime] = None,
    max_age: timedelta = HEARTBEAT_MAX_AGE,
) -> HeartbeatStatus:
    """Read the heartbeat file; healthy when it is younger than ``max_age``."""
    now = now or utcnow()
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        written_at = ensure_utc(datetime.fromisoformat(data["timestamp"]))
    except FileNotFoundError:
        return HeartbeatStatus(False, None, error="heartbeat file not found")
    except (OSError, ValueError, KeyError, TypeError) as e:
        return HeartbeatStatus(False, None, error=f"unreadable heartbeat: {e}")

    age = (now - written_at).total_seconds()
    return HeartbeatStatus(age < max_age.total_seconds(), age, data)
