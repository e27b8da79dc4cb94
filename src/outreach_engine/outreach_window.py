"""Send-window gating and per-industry timing heuristics.

Pure data and pure functions: nothing here holds state or performs I/O.
Weekdays follow Python's numbering, Monday=0 ... Sunday=6.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .models.strategy import SendWindow

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)

VOLUME_MULTIPLIERS: Dict[int, float] = {
    MONDAY: 0.8,
    TUESDAY: 1.3,
    WEDNESDAY: 1.4,
    THURSDAY: 1.2,
    FRIDAY: 0.7,
    SATURDAY: 0.2,
    SUNDAY: 0.1,
}

OPTIMAL_HOURS: Dict[int, Tuple[int, ...]] = {
    MONDAY: (9, 10, 14),
    TUESDAY: (8, 9, 10, 11, 14, 15),
    WEDNESDAY: (8, 9, 10, 11, 14, 15, 16),
    THURSDAY: (9, 10, 11, 14, 15),
    FRIDAY: (9, 10, 11),
    SATURDAY: (10,),
    SUNDAY: (14,),
}

BEST_DAYS = frozenset({TUESDAY, WEDNESDAY, THURSDAY})
MODERATE_DAYS = frozenset({MONDAY, FRIDAY})
LOW_DAYS = frozenset({SATURDAY, SUNDAY})

BLACKOUT_DATES = frozenset({"01-01", "07-04", "11-28", "12-25", "12-31"})
REDUCED_VOLUME_DATES = frozenset({"01-02", "11-29", "12-24", "12-26"})
HOLIDAY_WEEKS: Tuple[Tuple[str, str], ...] = (
    ("11-25", "11-29"),
    ("12-23", "12-31"),
    ("07-01", "07-05"),
)

BASE_OPEN_RATE = 35.0
BASE_CLICK_RATE = 8.0
MIN_VOLUME_MULTIPLIER = 0.05
MAX_VOLUME_MULTIPLIER = 2.0
LOOKAHEAD_DAYS = 7


@dataclass(frozen=True)
class IndustrySchedule:
    """Preferred days and hours for one industry category."""

    category: str
    best_days: FrozenSet[int]
    best_hours: Tuple[int, ...]
    avoid_days: FrozenSet[int] = field(default_factory=frozenset)


INDUSTRY_SCHEDULES: Dict[str, IndustrySchedule] = {
    "ecommerce": IndustrySchedule(
        "ecommerce", BEST_DAYS, (9, 10, 14, 15), LOW_DAYS
    ),
    "tech": IndustrySchedule("tech", BEST_DAYS, (8, 9, 15, 16), LOW_DAYS),
    "retail": IndustrySchedule(
        "retail", frozenset({MONDAY, TUESDAY, WEDNESDAY}), (7, 8, 17, 18), frozenset({SUNDAY})
    ),
    "healthcare": IndustrySchedule("healthcare", BEST_DAYS, (10, 11, 14), LOW_DAYS),
    "hospitality": IndustrySchedule(
        "hospitality",
        frozenset({MONDAY, TUESDAY, WEDNESDAY}),
        (10, 11, 15, 16),
        frozenset({FRIDAY, SATURDAY, SUNDAY}),
    ),
    "professional_services": IndustrySchedule(
        "professional_services", BEST_DAYS, (9, 10, 11, 14), LOW_DAYS
    ),
    "home_services": IndustrySchedule(
        "home_services",
        frozenset({MONDAY, TUESDAY, WEDNESDAY, THURSDAY}),
        (7, 8, 9, 16, 17),
        frozenset({SUNDAY}),
    ),
}

GENERAL_SCHEDULE = IndustrySchedule("general", BEST_DAYS, (9, 10, 11, 14))

INDUSTRY_CATEGORIES: Dict[str, str] = {
    "dentist": "healthcare",
    "doctor": "healthcare",
    "chiropractor": "healthcare",
    "veterinarian": "healthcare",
    "physical therapist": "healthcare",
    "lawyer": "professional_services",
    "accountant": "professional_services",
    "insurance agent": "professional_services",
    "real estate agent": "professional_services",
    "plumber": "home_services",
    "hvac": "home_services",
    "electrician": "home_services",
    "roofer": "home_services",
    "landscaper": "home_services",
    "cleaning service": "home_services",
    "restaurant": "hospitality",
    "cafe": "hospitality",
    "hotel": "hospitality",
    "salon": "retail",
    "boutique": "retail",
    "florist": "retail",
    "online store": "ecommerce",
    "it services": "tech",
    "software": "tech",
}


@dataclass(frozen=True)
class SendTimeRecommendation:
    """Advisory send slot for a lead; used to order a batch, never to gate it."""

    send_at: datetime
    weekday: int
    hour: int
    expected_open_rate: float
    expected_click_rate: float
    confidence: str
    volume_multiplier: float
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "send_at": self.send_at.isoformat(),
            "weekday": self.weekday,
            "hour": self.hour,
            "expected_open_rate": self.expected_open_rate,
            "expected_click_rate": self.expected_click_rate,
            "confidence": self.confidence,
            "volume_multiplier": self.volume_multiplier,
            "score": self.score,
        }


def get_industry_schedule(industry: Optional[str]) -> IndustrySchedule:
    """Look up the timing schedule for an industry keyword or category."""
    key = (industry or "").strip().lower()
    if key in INDUSTRY_SCHEDULES:
        return INDUSTRY_SCHEDULES[key]
    category = INDUSTRY_CATEGORIES.get(key)
    if category is None:
        return GENERAL_SCHEDULE
    return INDUSTRY_SCHEDULES[category]


def _month_day(day: date) -> str:
    return day.strftime("%m-%d")


def is_blackout_date(day: date, extra: Iterable[str] = ()) -> bool:
    md = _month_day(day)
    return md in BLACKOUT_DATES or md in set(extra)


def is_reduced_volume_date(day: date) -> bool:
    return _month_day(day) in REDUCED_VOLUME_DATES


def is_holiday_week(day: date) -> bool:
    md = _month_day(day)
    return any(start <= md <= end for start, end in HOLIDAY_WEEKS)


def to_window_time(now: datetime, window: SendWindow) -> datetime:
    """Convert an aware datetime into the window's timezone.

    Naive datetimes are taken to already be in the window's timezone.
    """
    tz = ZoneInfo(window.timezone)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def is_optimal_window(
    now: datetime,
    window: SendWindow,
    industries: Optional[Iterable[str]] = None,
) -> bool:
    """Decide whether outreach may run at ``now``.

    True only on an allowed weekday, within [start_hour, end_hour), on a
    date outside the blackout lists, and, when industries are given, on a
    day at least one of them does not avoid.
    """
    local = to_window_time(now, window)
    weekday = local.weekday()

    if weekday not in window.weekdays:
        return False
    if not (window.start_hour <= local.hour < window.end_hour):
        return False
    if is_blackout_date(local.date(), window.blackout_dates):
        return False

    if industries is not None:
        schedules = [get_industry_schedule(i) for i in industries]
        if schedules and all(weekday in s.avoid_days for s in schedules):
            return False

    return True


def calculate_volume_adjustment(now: datetime) -> float:
    """Scale daily send volume for the day of week and holiday calendar."""
    day = now.date()
    multiplier = VOLUME_MULTIPLIERS[now.weekday()]

    if is_reduced_volume_date(day):
        multiplier *= 0.5
    if is_holiday_week(day):
        multiplier *= 0.7
    if day.day >= 25:
        multiplier *= 1.1
    elif day.day <= 5:
        multiplier *= 1.15

    return round(max(MIN_VOLUME_MULTIPLIER, min(MAX_VOLUME_MULTIPLIER, multiplier)), 3)


def expected_performance(
    weekday: int, hour: int, schedule: IndustrySchedule
) -> Tuple[float, float, str]:
    """Estimate open and click rates (percent) for a slot.

    Returns:
        Tuple of (open_rate, click_rate, confidence).
    """
    open_rate = BASE_OPEN_RATE
    click_rate = BASE_CLICK_RATE

    if weekday in schedule.best_days:
        open_rate += 5
        click_rate += 2
    elif weekday in LOW_DAYS:
        open_rate -= 8
        click_rate -= 3

    if hour in schedule.best_hours:
        open_rate += 3
        click_rate += 1

    open_rate = max(15.0, min(50.0, open_rate))
    click_rate = max(3.0, min(15.0, click_rate))
    confidence = "high" if weekday in schedule.best_days else "medium"
    return open_rate, click_rate, confidence


def _candidate_slots(local: datetime, schedule: IndustrySchedule) -> List[datetime]:
    start = local.replace(minute=0, second=0, microsecond=0)
    slots = []
    for offset in range(LOOKAHEAD_DAYS + 1):
        day_start = start + timedelta(days=offset)
        weekday = day_start.weekday()
        if weekday in schedule.avoid_days or weekday not in schedule.best_days:
            continue
        for hour in sorted(schedule.best_hours):
            slot = day_start.replace(hour=hour)
            if slot >= start:
                slots.append(slot)
    return slots


def compute_optimal_send_time(
    industry: Optional[str],
    now: datetime,
    window: Optional[SendWindow] = None,
) -> SendTimeRecommendation:
    """Recommend the next send slot for a lead's industry.

    Picks the first best-day, best-hour slot at or after ``now`` within a
    week, in the window's timezone. ``score`` ranks leads inside a batch:
    leads whose optimal slot is the current hour score their full expected
    open rate; others lose one point per hour until their slot.
    """
    window = window or SendWindow()
    schedule = get_industry_schedule(industry)
    local = to_window_time(now, window)

    slots = _candidate_slots(local, schedule)
    slot = slots[0] if slots else local.replace(minute=0, second=0, microsecond=0)

    open_rate, click_rate, confidence = expected_performance(
        slot.weekday(), slot.hour, schedule
    )
    current_hour = local.replace(minute=0, second=0, microsecond=0)
    hours_until = max(0.0, (slot - current_hour).total_seconds() / 3600)

    return SendTimeRecommendation(
        send_at=slot,
        weekday=slot.weekday(),
        hour=slot.hour,
        expected_open_rate=open_rate,
        expected_click_rate=click_rate,
        confidence=confidence,
        volume_multiplier=calculate_volume_adjustment(slot),
        score=round(open_rate - hours_until, 2),
    )


def next_optimal_day(from_day: date, industry: Optional[str] = None) -> date:
    """First best day for the industry within a week, skipping avoided days."""
    schedule = get_industry_schedule(industry)
    for offset in range(1, LOOKAHEAD_DAYS + 1):
        candidate = from_day + timedelta(days=offset)
        weekday = candidate.weekday()
        if weekday in schedule.avoid_days:
            continue
        if weekday in schedule.best_days and not is_blackout_date(candidate):
            return candidate
    return from_day + timedelta(days=1)
