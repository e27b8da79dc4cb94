"""Autonomous engine: wires the components together and drives them on a schedule.

The engine is the composition root. Every component receives its
collaborators through its constructor; nothing is looked up from module
globals.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .clock import utcnow
from .config import Config
from .discovery import DiscoveryCycle, DiscoveryResult
from .escalation import EscalationGate, IssueHandler, IssueOutcome
from .exceptions import ProviderError
from .health_monitor import HealthMonitor, HealthSnapshot, write_health_status
from .lead_store import LeadStore
from .models.database import DatabaseManager
from .models.lead import LeadStatus
from .models.strategy import PhaseSettings, PhaseTransition
from .outreach_scheduler import OutreachScheduler, OutreachSettings, TickResult
from .phase_controller import PhaseController
from .providers.base import Issue, NotificationProvider
from .providers.demo_renderer import HttpDemoRenderer
from .providers.google_maps import GoogleMapsDiscoveryProvider
from .providers.openai_content import OpenAIContentProvider
from .providers.sendgrid_delivery import SendGridDeliveryProvider
from .providers.slack_notifier import LoggingNotifier, SlackNotifier
from .scheduler import SchedulePolicy, Scheduler
from .stats import EngineStats

logger = logging.getLogger(__name__)

DISCOVERY_TASK_PREFIX = "discovery@"


class AutonomousEngine:
    """Runs discovery, outreach, health and phase checks until stopped.

    Example:
        >>> engine = build_engine(Config())
        >>> await engine.run_forever()
    """

    def __init__(
        self,
        config: Config,
        db: DatabaseManager,
        lead_store: LeadStore,
        phase_controller: PhaseController,
        discovery: DiscoveryCycle,
        outreach: OutreachScheduler,
        health: HealthMonitor,
        escalation_gate: EscalationGate,
        notifier: NotificationProvider,
        stats: EngineStats,
        issue_handler: Optional[IssueHandler] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = utcnow,
        closers: Optional[List[Callable[[], Awaitable[Any]]]] = None,
    ) -> None:
        self.config = config
        self.db = db
        self.lead_store = lead_store
        self.phase_controller = phase_controller
        self.discovery = discovery
        self.outreach = outreach
        self.health = health
        self.escalation_gate = escalation_gate
        self.notifier = notifier
        self.stats = stats
        self.issue_handler = issue_handler
        self.scheduler = scheduler or Scheduler(clock=clock)
        self._clock = clock
        self._closers = closers or []

        self.is_running = False
        self.is_paused = False
        self._stop_event = asyncio.Event()
        self.last_discovery: Optional[DiscoveryResult] = None
        self.last_tick: Optional[TickResult] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Validate configuration, prepare storage, and start the schedule.

        Raises:
            ConfigError: If required configuration is missing. Nothing is
                started in that case.
        """
        if self.is_running:
            return
        self.config.validate_all()

        await self.db.create_tables()
        self.phase_controller.load_strategy()
        await self.check_phase()

        self.stats.started_at = self._clock()
        self.stats.stopped_at = None
        if not self.config.SKIP_TESTING:
            self.outreach.start_testing_phase(
                self.stats.started_at + timedelta(hours=self.config.TESTING_PHASE_HOURS)
            )
        self._register_tasks()
        self.is_running = True
        self.is_paused = False
        self._stop_event.clear()
        await self.scheduler.start()

        phase = self.phase_controller.active_phase()
        logger.info(
            "Engine started in %s mode, phase %d (%s)",
            self.config.OPERATION_MODE,
            phase.phase,
            phase.name,
        )

    def _policy(self, settings: PhaseSettings) -> SchedulePolicy:
        return SchedulePolicy.from_config(
            self.config, settings.search_times, settings.send_window.timezone
        )

    def _register_tasks(self) -> None:
        settings = self.current_settings()
        policy = self._policy(settings)
        self.scheduler.register_interval(
            policy.outreach_interval_seconds, self.run_outreach_tick, name="outreach"
        )
        self.scheduler.register_interval(
            policy.health_interval_seconds, self.run_health_check, name="health"
        )
        self.scheduler.register_interval(
            policy.heartbeat_interval_seconds,
            self.write_heartbeat,
            name="heartbeat",
            run_immediately=True,
        )
        self.scheduler.register_interval(
            policy.phase_check_interval_seconds, self.check_phase, name="phase-check"
        )
        self._register_discovery(policy)

    def _register_discovery(self, policy: SchedulePolicy) -> None:
        for time_of_day in policy.discovery_times:
            self.scheduler.register_daily_at(
                time_of_day,
                self.run_discovery_now,
                name=f"{DISCOVERY_TASK_PREFIX}{time_of_day}",
                tz=policy.discovery_timezone,
            )

    async def _reschedule_discovery(self) -> None:
        for name in list(self.scheduler.registrations):
            if name.startswith(DISCOVERY_TASK_PREFIX):
                await self.scheduler.unregister(name)
        self._register_discovery(self._policy(self.current_settings()))

    def pause(self) -> None:
        self.is_paused = True
        self.outreach.pause()
        logger.info("Engine paused")

    def resume(self) -> None:
        self.is_paused = False
        self.outreach.resume()
        logger.info("Engine resumed")

    def should_continue(self) -> bool:
        return self.is_running and not self.is_paused

    async def stop(self) -> None:
        """Cancel all scheduled work and release resources."""
        if not self.is_running and self._stop_event.is_set():
            return
        self.is_running = False
        self.outreach.stop()
        await self.scheduler.stop()
        self.stats.stopped_at = self._clock()

        for close in self._closers:
            try:
                await close()
            except Exception:
                logger.exception("Error while closing a provider")
        await self.db.close()

        self._stop_event.set()
        logger.info(
            "Engine stopped after %s: %s",
            timedelta(seconds=int(self.stats.uptime())),
            self.stats.to_dict(),
        )

    async def run_forever(self, discover_now: bool = False) -> None:
        """Start and block until stopped, or until the configured duration ends."""
        await self.start()
        if discover_now:
            await self.run_discovery_now()

        timeout = None
        if self.config.OPERATION_MODE == "duration":
            timeout = self.config.OPERATION_DURATION_DAYS * 86400
            logger.info("Duration mode: stopping after %d days", self.config.OPERATION_DURATION_DAYS)

        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info("Operation duration reached")
        finally:
            await self.stop()

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def current_settings(self) -> PhaseSettings:
        """Active phase settings with operator overrides applied."""
        return self.phase_controller.apply_overrides(
            self.phase_controller.active_phase(),
            self.config.INDUSTRY_OVERRIDES,
            self.config.CITY_OVERRIDES,
        )

    async def run_discovery_now(self) -> Optional[DiscoveryResult]:
        if self.is_paused:
            logger.info("Engine paused; skipping discovery")
            return None
        self.last_discovery = await self.discovery.run(
            self.current_settings(), should_continue=lambda: not self.is_paused
        )
        return self.last_discovery

    async def run_outreach_tick(self) -> TickResult:
        self.last_tick = await self.outreach.tick(self._clock())
        return self.last_tick

    async def run_health_check(self) -> Optional[HealthSnapshot]:
        now = self._clock()
        snapshot = await self.health.check(
            now, self.stats, self.lead_store, testing=self.outreach.in_testing_phase(now)
        )
        await self.check_delivery_quota(now)
        return snapshot

    async def check_delivery_quota(self, now: datetime) -> None:
        """Warn once per cooldown when monthly sends approach the provider limit."""
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        sent = await self.lead_store.count_contacted_since(month_start)
        limit = self.config.SENDGRID_MONTHLY_LIMIT
        alert_key = self.escalation_gate.check_delivery_quota(sent, monthly_limit=limit, now=now)
        if alert_key is None:
            return
        try:
            await self.notifier.notify(
                self.config.SLACK_CHANNEL,
                f"Email volume at {sent}/{limit} for this month ({sent / limit:.0%})",
            )
        except ProviderError as e:
            logger.error("Notification %s failed: %s", alert_key, e)
            self.escalation_gate.reset_cooldown(alert_key)

    async def write_heartbeat(self) -> None:
        phase = self.phase_controller.active_phase()
        write_health_status(
            self.config.HEALTH_STATUS_PATH,
            self.stats,
            now=self._clock(),
            snapshot=self.health.last_snapshot,
            extra={
                "is_running": self.is_running,
                "is_paused": self.is_paused,
                "phase": phase.phase,
            },
        )

    async def check_phase(self, now: Optional[datetime] = None) -> Optional[PhaseTransition]:
        """Move to the phase matching the customer count and react to a change."""
        now = now or self._clock()
        customers = await self.lead_store.count_converted()
        transition = self.phase_controller.advance_if_needed(customers, now)

        readiness = self.phase_controller.evaluate_next_phase(customers)
        if readiness.ready and readiness.next_phase is not None:
            await self._notify(
                f"phase_advancement_{readiness.next_phase}",
                f"Ready for phase {readiness.next_phase}: revenue ${readiness.monthly_revenue:,.0f}/mo "
                f"covers next-phase costs {readiness.revenue_safety_ratio}x",
                now,
            )

        if transition is not None:
            await self._notify(
                f"phase_transition_{transition.to_phase}",
                f"Moved from phase {transition.from_phase} to {transition.to_phase} "
                f"at {customers} customers",
                now,
            )
            if self.is_running:
                await self._reschedule_discovery()
                await self.run_discovery_now()
        return transition

    async def _notify(self, alert_key: str, message: str, now: datetime) -> None:
        if not self.escalation_gate.notify_if_due(alert_key, now):
            return
        try:
            await self.notifier.notify(self.config.SLACK_CHANNEL, message)
        except ProviderError as e:
            logger.error("Notification %s failed: %s", alert_key, e)
            self.escalation_gate.reset_cooldown(alert_key)

    # ------------------------------------------------------------------
    # External events and queries
    # ------------------------------------------------------------------

    async def record_conversion(self, dedup_key: str) -> Optional[PhaseTransition]:
        """Mark a lead converted and re-evaluate the growth phase."""
        changed = await self.lead_store.mark_status(
            dedup_key, LeadStatus.CONVERTED, now=self._clock()
        )
        if changed:
            self.stats.customers_signed += 1
        return await self.check_phase()

    async def handle_issue(self, issue: Issue) -> IssueOutcome:
        if self.issue_handler is None:
            raise RuntimeError("No issue handler configured")
        return await self.issue_handler.handle(issue)

    async def status(self) -> Dict[str, Any]:
        """Read-only view for operator dashboards."""
        now = self._clock()
        phase = self.phase_controller.active_phase()
        strategy = self.phase_controller.load_strategy()
        return {
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "operation_mode": self.config.OPERATION_MODE,
            "stats": self.stats.to_dict(now),
            "phase": {
                "current": phase.phase,
                "name": phase.name,
                "last_change": (
                    strategy.last_phase_change.isoformat() if strategy.last_phase_change else None
                ),
                "degraded": self.phase_controller.degraded,
            },
            "leads": await self.lead_store.count_by_status(),
            "health": self.health.last_snapshot.to_dict() if self.health.last_snapshot else None,
            "escalation": self.escalation_gate.stats.to_dict(),
            "outreach_state": self.outreach.state.value,
            "testing_phase": self.outreach.in_testing_phase(now),
        }


def build_engine(config: Config) -> AutonomousEngine:
    """Construct the engine with library-backed providers.

    Raises:
        ConfigError: If required credentials are missing.
    """
    config.validate_all()

    stats = EngineStats()
    db = DatabaseManager(config.DATABASE_URL, echo=config.DEBUG)
    lead_store = LeadStore(db)
    phase_controller = PhaseController(
        config.GROWTH_STRATEGY_PATH, allow_regression=config.ALLOW_PHASE_REGRESSION
    )
    gate = EscalationGate(
        severity_threshold=config.ESCALATION_SEVERITY_THRESHOLD,
        cooldown=timedelta(hours=config.ALERT_COOLDOWN_HOURS),
    )

    if config.SLACK_BOT_TOKEN:
        notifier: NotificationProvider = SlackNotifier(
            token=config.SLACK_BOT_TOKEN, default_channel=config.SLACK_CHANNEL
        )
    else:
        logger.info("SLACK_BOT_TOKEN not set; alerts go to the log only")
        notifier = LoggingNotifier()

    content = OpenAIContentProvider(
        api_key=config.OPENAI_API_KEY,
        model=config.OPENAI_MODEL,
        timeout_seconds=config.COLLABORATOR_TIMEOUT_SECONDS,
    )
    renderer = HttpDemoRenderer(
        config.DEMO_RENDER_URL,
        token=config.DEMO_RENDER_TOKEN or None,
        timeout_seconds=config.COLLABORATOR_TIMEOUT_SECONDS,
    )
    delivery = SendGridDeliveryProvider(
        api_key=config.SENDGRID_API_KEY,
        from_email=config.SENDGRID_FROM_EMAIL,
        from_name=config.SENDGRID_FROM_NAME or None,
    )
    discovery = DiscoveryCycle(
        GoogleMapsDiscoveryProvider(api_key=config.GOOGLE_MAPS_API_KEY),
        lead_store,
        stats,
        delay_seconds=config.DISCOVERY_DELAY_SECONDS,
    )

    def phase_settings() -> PhaseSettings:
        return phase_controller.apply_overrides(
            phase_controller.active_phase(),
            config.INDUSTRY_OVERRIDES,
            config.CITY_OVERRIDES,
        )

    outreach = OutreachScheduler(
        lead_store,
        content,
        renderer,
        delivery,
        notifier,
        gate,
        stats,
        phase_settings,
        settings=OutreachSettings.from_config(config),
    )
    health = HealthMonitor(notifier=notifier, escalation_gate=gate, channel=config.SLACK_CHANNEL)
    issue_handler = IssueHandler(
        gate,
        content,
        notifier,
        channel=config.SLACK_CHANNEL,
        emergency_contact=config.EMERGENCY_CONTACT_EMAIL or None,
    )

    return AutonomousEngine(
        config=config,
        db=db,
        lead_store=lead_store,
        phase_controller=phase_controller,
        discovery=discovery,
        outreach=outreach,
        health=health,
        escalation_gate=gate,
        notifier=notifier,
        stats=stats,
        issue_handler=issue_handler,
        closers=[renderer.aclose],
    )
