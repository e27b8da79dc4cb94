"""Shared engine counters.

One EngineStats instance is owned by the engine and handed to the
components that update or read it.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional

from .clock import utcnow


@dataclass
class EngineStats:
    """Throughput counters and timestamps for the running engine.

    Attributes:
        started_at: When the engine started.
        leads_generated: New leads inserted since start.
        emails_sent: Outreach emails accepted by the delivery provider.
        demos_created: Demo sites rendered for sent emails.
        customers_signed: Conversions recorded since start.
        last_lead_generated_at: Time of the most recent new lead.
        last_email_sent_at: Time of the most recent accepted email.
    """

    started_at: datetime = field(default_factory=utcnow)
    leads_generated: int = 0
    emails_sent: int = 0
    demos_created: int = 0
    customers_signed: int = 0
    last_lead_generated_at: Optional[datetime] = None
    last_email_sent_at: Optional[datetime] = None
    emails_sent_on: Optional[date] = None
    emails_sent_today: int = 0
    stopped_at: Optional[datetime] = None

    def record_lead(self, now: datetime) -> None:
        self.leads_generated += 1
        self.last_lead_generated_at = now

    def record_email_sent(self, now: datetime, demo_created: bool = True) -> None:
        today = now.date()
        if self.emails_sent_on != today:
            self.emails_sent_on = today
            self.emails_sent_today = 0
        self.emails_sent += 1
        self.emails_sent_today += 1
        if demo_created:
            self.demos_created += 1
        self.last_email_sent_at = now

    def uptime(self, now: Optional[datetime] = None) -> float:
        """Seconds since start, frozen once the engine has stopped."""
        end = self.stopped_at or now or utcnow()
        return max(0.0, (end - self.started_at).total_seconds())

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "uptime_seconds": self.uptime(now),
            "leads_generated": self.leads_generated,
            "emails_sent": self.emails_sent,
            "demos_created": self.demos_created,
            "customers_signed": self.customers_signed,
            "last_lead_generated_at": (
                self.last_lead_generated_at.isoformat() if self.last_lead_generated_at else None
            ),
            "last_email_sent_at": (
                self.last_email_sent_at.isoformat() if self.last_email_sent_at else None
            ),
            "emails_sent_today": self.emails_sent_today,
        }
