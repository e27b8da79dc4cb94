"""Growth-phase state machine.

Selects the operating Phase from the customer count, persists the
current-phase pointer and transition log, and reports whether the business
is ready for the next phase.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from .clock import utcnow
from .exceptions import StrategyDataError
from .models.strategy import (
    CustomerRange,
    GrowthStrategy,
    Phase,
    PhaseEconomics,
    PhaseSettings,
    PhaseTransition,
    SendWindow,
    TargetCity,
)

logger = logging.getLogger(__name__)

DEFAULT_INDUSTRIES = ["dentist", "lawyer", "plumber", "hvac", "electrician"]
REVENUE_SAFETY_RATIO = 3.0


def default_strategy() -> GrowthStrategy:
    """Built-in single-phase strategy used when no document can be read."""
    return GrowthStrategy(
        phases=[
            Phase(
                phase=1,
                name="Phase 1 - Local Validation",
                customer_range=CustomerRange(min=0, max=None),
                settings=PhaseSettings(
                    cities=[
                        TargetCity(city="Austin", state="TX"),
                        TargetCity(city="Dallas", state="TX"),
                    ],
                    industries=list(DEFAULT_INDUSTRIES),
                    search_times=["09:00", "13:00"],
                    send_window=SendWindow(),
                    target_no_website=True,
                    target_existing_website=False,
                ),
                economics=PhaseEconomics(monthly_cost=100.0, revenue_target=1000.0),
            )
        ],
        current_phase=1,
    )


@dataclass
class PhaseReadiness:
    """Whether the next phase is affordable at the current customer count."""

    ready: bool
    current_phase: int
    next_phase: Optional[int]
    monthly_revenue: float
    revenue_safety_ratio: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ready": self.ready,
            "current_phase": self.current_phase,
            "next_phase": self.next_phase,
            "monthly_revenue": self.monthly_revenue,
            "revenue_safety_ratio": self.revenue_safety_ratio,
        }


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to ``path`` via a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, default=str)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class PhaseController:
    """Selects and persists the active growth phase.

    Single writer: callers serialize advance_if_needed (the engine runs it
    from one scheduled task and on conversions).

    Attributes:
        strategy_path: Location of the growth strategy JSON document.
        allow_regression: Whether a falling customer count may move the
            pointer to an earlier phase.
    """

    def __init__(
        self, strategy_path: Union[str, Path], allow_regression: bool = True
    ) -> None:
        self.strategy_path = Path(strategy_path)
        self.allow_regression = allow_regression
        self._strategy: Optional[GrowthStrategy] = None
        self.degraded = False

    def _read(self) -> GrowthStrategy:
        try:
            raw = self.strategy_path.read_text(encoding="utf-8")
        except OSError as e:
            raise StrategyDataError(f"Cannot read {self.strategy_path}: {e}") from e
        try:
            return GrowthStrategy.model_validate_json(raw)
        except ValidationError as e:
            raise StrategyDataError(
                f"Malformed growth strategy in {self.strategy_path}: {e.error_count()} errors"
            ) from e

    def load_strategy(self) -> GrowthStrategy:
        """Load the persisted strategy, caching it.

        On read or parse failure, returns the built-in default strategy and
        logs a warning; the engine keeps running with default targeting.
        """
        if self._strategy is not None:
            return self._strategy
        try:
            self._strategy = self._read()
            self.degraded = False
            logger.info(
                "Loaded growth strategy with %d phases (current phase %d)",
                len(self._strategy.phases),
                self._strategy.current_phase,
            )
        except StrategyDataError as e:
            logger.warning("%s; using default single-phase strategy", e)
            self._strategy = default_strategy()
            self.degraded = True
        return self._strategy

    def reload(self) -> GrowthStrategy:
        self._strategy = None
        return self.load_strategy()

    def save(self, strategy: Optional[GrowthStrategy] = None) -> None:
        strategy = strategy or self.load_strategy()
        atomic_write_json(self.strategy_path, strategy.model_dump(mode="json"))

    def current_phase(self, customer_count: int) -> Phase:
        """Phase whose range contains the count; the first phase if none does."""
        strategy = self.load_strategy()
        for phase in strategy.phases:
            if phase.customer_range.contains(customer_count):
                return phase
        return strategy.phases[0]

    def active_phase(self) -> Phase:
        """Phase named by the stored pointer."""
        strategy = self.load_strategy()
        return strategy.phase_by_number(strategy.current_phase) or strategy.phases[0]

    def advance_if_needed(
        self, customer_count: int, now: Optional[datetime] = None
    ) -> Optional[PhaseTransition]:
        """Move the pointer to the phase matching the customer count.

        Appends to the transition log and persists the strategy when the
        pointer moves. Calling again with the same count writes nothing.

        Returns:
            The transition that was applied, or None.
        """
        strategy = self.load_strategy()
        target = self.current_phase(customer_count)
        if target.phase == strategy.current_phase:
            return None

        if target.phase < strategy.current_phase and not self.allow_regression:
            logger.info(
                "Customer count %d maps to phase %d; staying in phase %d (regression disabled)",
                customer_count,
                target.phase,
                strategy.current_phase,
            )
            return None

        timestamp = now or utcnow()
        transition = PhaseTransition(
            from_phase=strategy.current_phase,
            to_phase=target.phase,
            timestamp=timestamp,
            customer_count=customer_count,
        )
        updated = strategy.model_copy(deep=True)
        updated.current_phase = target.phase
        updated.last_phase_change = timestamp
        updated.transitions.append(transition)
        # The cached strategy only moves once the write has succeeded
        self.save(updated)
        self._strategy = updated

        logger.info(
            "Phase transition %d -> %d (%s) at %d customers",
            transition.from_phase,
            transition.to_phase,
            target.name,
            customer_count,
        )
        return transition

    def evaluate_next_phase(self, customer_count: int) -> PhaseReadiness:
        """Check whether revenue covers the next phase's cost with margin.

        Ready when monthly revenue is at least three times the next phase's
        monthly cost and the count has reached the next phase's minimum.
        """
        strategy = self.load_strategy()
        current = self.active_phase()
        revenue = customer_count * current.economics.price_per_customer

        later = sorted(
            (p for p in strategy.phases if p.phase > current.phase), key=lambda p: p.phase
        )
        if not later:
            return PhaseReadiness(False, current.phase, None, revenue, None)

        nxt = later[0]
        cost = nxt.economics.monthly_cost
        ratio = revenue / cost if cost > 0 else None
        affordable = ratio is None or ratio >= REVENUE_SAFETY_RATIO
        ready = affordable and customer_count >= nxt.customer_range.min
        return PhaseReadiness(
            ready, current.phase, nxt.phase, revenue, round(ratio, 2) if ratio is not None else None
        )

    @staticmethod
    def apply_overrides(
        phase: Phase,
        industries: Optional[List[str]] = None,
        cities: Optional[List[str]] = None,
    ) -> PhaseSettings:
        """Return the phase settings with operator overrides applied.

        Overrides are never persisted into the strategy document.
        """
        update: Dict[str, Any] = {}
        if industries:
            update["industries"] = [i.strip().lower() for i in industries]
        if cities:
            update["cities"] = [TargetCity.parse(c) for c in cities]
        if not update:
            return phase.settings
        return phase.settings.model_copy(update=update)
