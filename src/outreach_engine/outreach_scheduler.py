"""Time-windowed outreach: drain uncontacted leads through the send pipeline.

Each tick moves IDLE -> WINDOW_CHECK -> DRAINING -> IDLE. Leads in a batch
are processed strictly one after another with a fixed delay between sends;
that delay is the rate limit towards the content, rendering and delivery
providers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .clock import utcnow
from .escalation import EscalationGate
from .exceptions import DeliveryError, InvalidRecipientError, ProviderError
from .lead_store import LeadStore
from .logging_utils import LogContext, get_logger
from .models.lead import Lead
from .models.strategy import PhaseSettings, SendWindow
from .outreach_window import compute_optimal_send_time, is_optimal_window, to_window_time
from .providers.base import (
    ContentGenerationProvider,
    DemoRenderingProvider,
    EmailDeliveryProvider,
    NotificationProvider,
    ResearchContext,
)
from .providers.openai_content import DEMO_URL_PLACEHOLDER
from .stats import EngineStats

logger = get_logger(__name__)

T = TypeVar("T")

SYSTEMIC_ALERT_KEY = "outreach_systemic_failure"


class OutreachState(str, Enum):
    """States of the outreach tick state machine."""

    IDLE = "idle"
    WINDOW_CHECK = "window_check"
    DRAINING = "draining"


class SkipReason(str, Enum):
    """Why a tick did not drain any leads."""

    PAUSED = "paused"
    STOPPED = "stopped"
    BUSY = "busy"
    OUT_OF_WINDOW = "out_of_window"
    DAILY_CAP = "daily_cap"


class LeadOutcome(str, Enum):
    """What happened to one lead in a drained batch."""

    SENT = "sent"
    NO_EMAIL = "no_email"
    TESTED = "tested"


@dataclass
class OutreachSettings:
    """Tunable limits for the outreach pipeline.

    Attributes:
        batch_size: Maximum leads drained per tick.
        inter_send_delay: Seconds between consecutive sends.
        error_threshold: Failures in one tick above which the tick aborts.
        call_timeout: Per-call timeout for every provider call, in seconds.
        daily_cap: Maximum emails per local day; 0 disables the cap.
        skip_research: Compose without the research step.
        alert_channel: Notification channel for aggregated alerts.
    """

    batch_size: int = 10
    inter_send_delay: float = 10.0
    error_threshold: int = 3
    call_timeout: float = 60.0
    daily_cap: int = 0
    skip_research: bool = False
    alert_channel: str = ""

    @classmethod
    def from_config(cls, config: Any) -> "OutreachSettings":
        return cls(
            batch_size=config.OUTREACH_BATCH_SIZE,
            inter_send_delay=config.INTER_SEND_DELAY_SECONDS,
            error_threshold=config.TICK_ERROR_THRESHOLD,
            call_timeout=config.COLLABORATOR_TIMEOUT_SECONDS,
            daily_cap=config.DAILY_EMAIL_CAP,
            skip_research=config.SKIP_RESEARCH,
            alert_channel=config.SLACK_CHANNEL,
        )


@dataclass
class TickResult:
    """Summary of one outreach tick."""

    ran: bool = False
    skipped_reason: Optional[SkipReason] = None
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped_no_email: int = 0
    tested: int = 0
    aborted: bool = False
    alert_sent: bool = False
    contacted_keys: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ran": self.ran,
            "skipped_reason": self.skipped_reason.value if self.skipped_reason else None,
            "attempted": self.attempted,
            "sent": self.sent,
            "failed": self.failed,
            "skipped_no_email": self.skipped_no_email,
            "tested": self.tested,
            "aborted": self.aborted,
            "alert_sent": self.alert_sent,
        }


def insert_demo_url(body: str, demo_url: str) -> str:
    """Replace the demo placeholder, or append the link when there is none."""
    if DEMO_URL_PLACEHOLDER in body:
        return body.replace(DEMO_URL_PLACEHOLDER, demo_url)
    return f"{body.rstrip()}\n\nYour demo: {demo_url}"


class OutreachScheduler:
    """Drains uncontacted leads through research, compose, render and send.

    A failing lead stays ``new`` and is retried on a later tick once its
    backoff has passed; a rejected address is never retried.
    Too many failures in one tick abort it with a single aggregated alert.
    """

    def __init__(
        self,
        lead_store: LeadStore,
        content: ContentGenerationProvider,
        renderer: DemoRenderingProvider,
        delivery: EmailDeliveryProvider,
        notifier: NotificationProvider,
        escalation_gate: EscalationGate,
        stats: EngineStats,
        phase_settings: Callable[[], PhaseSettings],
        settings: Optional[OutreachSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.lead_store = lead_store
        self.content = content
        self.renderer = renderer
        self.delivery = delivery
        self.notifier = notifier
        self.escalation_gate = escalation_gate
        self.stats = stats
        self.phase_settings = phase_settings
        self.settings = settings or OutreachSettings()
        self._sleep = sleep
        self._clock = clock

        self.state = OutreachState.IDLE
        self._paused = False
        self._stopped = False
        self._last_out_of_window_notice: Optional[date] = None
        self.testing_until: Optional[datetime] = None

    @property
    def is_paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        """Stop draining at the next lead boundary; the in-flight lead completes."""
        self._paused = True
        logger.info("Outreach paused")

    def resume(self) -> None:
        self._paused = False
        logger.info("Outreach resumed")

    def stop(self) -> None:
        self._stopped = True
        logger.info("Outreach stopped")

    def _should_continue(self) -> bool:
        return not (self._paused or self._stopped)

    def start_testing_phase(self, until: datetime) -> None:
        """Run the full pipeline without delivering anything until ``until``.

        Leads processed during the testing phase stay ``new`` so that they are
        contacted for real once it ends. Each lead is tested at most once.
        """
        self.testing_until = until
        logger.info("Testing phase active until %s; no emails will be delivered", until.isoformat())

    def in_testing_phase(self, now: datetime) -> bool:
        return self.testing_until is not None and now < self.testing_until

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        """Run one outreach cycle.

        Args:
            now: Evaluation time for window checks. Defaults to the clock.

        Returns:
            TickResult describing what the tick did or why it was skipped.
        """
        if self._stopped:
            return TickResult(skipped_reason=SkipReason.STOPPED)
        if self._paused:
            return TickResult(skipped_reason=SkipReason.PAUSED)
        if self.state != OutreachState.IDLE:
            logger.warning("Outreach tick still in progress; skipping overlapping tick")
            return TickResult(skipped_reason=SkipReason.BUSY)

        now = now or self._clock()
        self.state = OutreachState.WINDOW_CHECK
        try:
            phase_settings = self.phase_settings()
            window = phase_settings.send_window

            if not is_optimal_window(now, window, phase_settings.industries):
                self._log_out_of_window(now, window)
                return TickResult(skipped_reason=SkipReason.OUT_OF_WINDOW)

            limit = await self._batch_limit(now, window)
            if limit <= 0:
                logger.info("Daily email cap of %d reached", self.settings.daily_cap)
                return TickResult(skipped_reason=SkipReason.DAILY_CAP)

            self.state = OutreachState.DRAINING
            testing = self.in_testing_phase(now)
            leads = await self.lead_store.get_uncontacted_batch(
                limit, now=now, require_email=True, exclude_tested=testing
            )
            if not leads:
                logger.debug("No uncontacted leads to drain")
                return TickResult(ran=True)

            return await self._drain(
                self.order_batch(leads, now, window), testing=testing, now=now
            )
        finally:
            self.state = OutreachState.IDLE

    def _log_out_of_window(self, now: datetime, window: SendWindow) -> None:
        local_date = to_window_time(now, window).date()
        if self._last_out_of_window_notice != local_date:
            self._last_out_of_window_notice = local_date
            logger.info("Outside the outreach window (%s); no sends until it opens", local_date)
        else:
            logger.debug("Outside the outreach window")

    async def _batch_limit(self, now: datetime, window: SendWindow) -> int:
        limit = self.settings.batch_size
        if self.settings.daily_cap <= 0:
            return limit
        start_of_day = to_window_time(now, window).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        sent_today = await self.lead_store.count_contacted_since(start_of_day)
        return min(limit, self.settings.daily_cap - sent_today)

    @staticmethod
    def order_batch(leads: List[Lead], now: datetime, window: SendWindow) -> List[Lead]:
        """Order leads by advisory send-time score, best first, then oldest first."""
        scores = {
            lead.dedup_key: compute_optimal_send_time(lead.industry, now, window).score
            for lead in leads
        }
        return sorted(leads, key=lambda lead: (-scores[lead.dedup_key], lead.created_at))

    async def _drain(
        self, leads: List[Lead], testing: bool = False, now: Optional[datetime] = None
    ) -> TickResult:
        result = TickResult(ran=True)
        needs_delay = False

        for lead in leads:
            if not self._should_continue():
                logger.info("Outreach interrupted with %d leads left", len(leads) - result.attempted)
                break
            if needs_delay and self.settings.inter_send_delay > 0:
                await self._sleep(self.settings.inter_send_delay)

            result.attempted += 1
            with LogContext(dedup_key=lead.dedup_key):
                error: Optional[BaseException] = None
                try:
                    outcome = await self._process_lead(lead, testing)
                except (ProviderError, asyncio.TimeoutError) as e:
                    error = e
                    logger.error(
                        "Outreach failed for %s: %s", lead.name, str(e) or type(e).__name__
                    )
                except Exception as e:
                    error = e
                    logger.exception("Unexpected error during outreach for %s", lead.name)

                if error is not None:
                    needs_delay = True
                    result.failed += 1
                    result.errors.append(f"{lead.dedup_key}: {str(error) or type(error).__name__}")
                    await self._hold_back(lead, error, now)
                    if result.failed > self.settings.error_threshold:
                        result.aborted = True
                        result.alert_sent = await self._raise_systemic_alert(result)
                        break
                    continue

            if outcome == LeadOutcome.SENT:
                needs_delay = True
                result.sent += 1
                result.contacted_keys.append(lead.dedup_key)
            elif outcome == LeadOutcome.TESTED:
                needs_delay = True
                result.tested += 1
            else:
                result.skipped_no_email += 1

        logger.info("Outreach tick complete: %s", result.to_dict())
        return result

    async def _hold_back(self, lead: Lead, error: BaseException, now: Optional[datetime]) -> None:
        """Delay the failed lead's next attempt so later leads get their turn."""
        try:
            await self.lead_store.record_failed_attempt(
                lead.dedup_key,
                now or self._clock(),
                permanent=isinstance(error, InvalidRecipientError),
            )
        except Exception:
            logger.exception("Could not record failed attempt for %s", lead.dedup_key)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.settings.call_timeout)

    async def _process_lead(self, lead: Lead, testing: bool = False) -> LeadOutcome:
        """Research, compose, render and send for one lead.

        During the testing phase everything but the send runs; the lead
        stays new and is only marked tested.

        Raises:
            ProviderError: If any provider call fails.
            asyncio.TimeoutError: If any provider call exceeds the timeout.
        """
        if not lead.email:
            logger.info("Skipping %s: no email address", lead.name)
            return LeadOutcome.NO_EMAIL

        if self.settings.skip_research:
            research = ResearchContext.empty()
        else:
            research = await self._call(self.content.research(lead))

        outreach = await self._call(self.content.compose_outreach(lead, research))
        demo_url = await self._call(self.renderer.render(lead))
        body = insert_demo_url(outreach.body, demo_url)

        if testing:
            logger.info(
                "Testing phase: outreach for %s composed (%d chars), not sent",
                lead.name,
                len(body),
            )
            await self.lead_store.mark_tested(lead.dedup_key, self._clock())
            return LeadOutcome.TESTED

        delivery = await self._call(self.delivery.send(lead.email, outreach.subject, body))
        if not delivery.success:
            raise DeliveryError(delivery.error or "delivery rejected", provider="delivery")

        sent_at = self._clock()
        await self.lead_store.mark_contacted(lead.dedup_key, sent_at)
        self.stats.record_email_sent(sent_at)
        logger.info("Outreach sent to %s <%s>", lead.name, lead.email)
        return LeadOutcome.SENT

    async def _raise_systemic_alert(self, result: TickResult) -> bool:
        logger.error(
            "Outreach tick aborted after %d failures; providers may be down",
            result.failed,
        )
        if not self.escalation_gate.notify_if_due(SYSTEMIC_ALERT_KEY, self._clock()):
            return False
        message = (
            f"Outreach tick aborted after {result.failed} failures in "
            f"{result.attempted} attempts. Latest: {result.errors[-1]}"
        )
        try:
            await self.notifier.notify(self.settings.alert_channel, message)
        except ProviderError as e:
            logger.error("Could not deliver systemic failure alert: %s", e)
            self.escalation_gate.reset_cooldown(SYSTEMIC_ALERT_KEY)
            return False
        return True
