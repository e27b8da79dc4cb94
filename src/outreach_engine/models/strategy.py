"""Pydantic models for the persisted growth strategy document."""

from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

# Default timezone for targets whose state is not in the table below
DEFAULT_TIMEZONE = "America/Chicago"

STATE_TIMEZONES = {
    "TX": "America/Chicago",
    "OK": "America/Chicago",
    "LA": "America/Chicago",
    "IL": "America/Chicago",
    "AZ": "America/Phoenix",
    "NV": "America/Los_Angeles",
    "OR": "America/Los_Angeles",
    "CA": "America/Los_Angeles",
    "WA": "America/Los_Angeles",
    "CO": "America/Denver",
    "UT": "America/Denver",
    "NM": "America/Denver",
    "NY": "America/New_York",
    "FL": "America/New_York",
    "GA": "America/New_York",
}


def timezone_for_state(state: str) -> str:
    """Map a two-letter state code to an IANA timezone name."""
    return STATE_TIMEZONES.get((state or "").strip().upper(), DEFAULT_TIMEZONE)


def check_timezone(name: str) -> str:
    """Reject names the tz database does not know."""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown timezone {name!r}") from e
    return name


class CustomerRange(BaseModel):
    """Inclusive customer-count range; a missing max means unbounded."""

    min: int = Field(default=0, ge=0)
    max: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "CustomerRange":
        if self.max is not None and self.max < self.min:
            raise ValueError(f"customer range max {self.max} is below min {self.min}")
        return self

    def contains(self, count: int) -> bool:
        if count < self.min:
            return False
        return self.max is None or count <= self.max


class SendWindow(BaseModel):
    """Allowed outreach window in a target timezone.

    Weekdays use Monday=0 ... Sunday=6. end_hour is exclusive, so the default
    window admits 09:00 through 13:59.
    """

    weekdays: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    start_hour: int = Field(default=9, ge=0, le=23)
    end_hour: int = Field(default=14, ge=1, le=24)
    timezone: str = Field(default=DEFAULT_TIMEZONE)
    blackout_dates: List[str] = Field(
        default_factory=list, description="Extra MM-DD dates with no sends"
    )

    @field_validator("weekdays")
    @classmethod
    def validate_weekdays(cls, v: List[int]) -> List[int]:
        for day in v:
            if day < 0 or day > 6:
                raise ValueError(f"weekday {day} is outside 0-6")
        return sorted(set(v))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        return check_timezone(v)

    @model_validator(mode="after")
    def check_hours(self) -> "SendWindow":
        if self.end_hour <= self.start_hour:
            raise ValueError("send window end_hour must be after start_hour")
        return self


class TargetCity(BaseModel):
    """A city targeted by discovery."""

    city: str
    state: str
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return check_timezone(v) if v else v

    @model_validator(mode="after")
    def fill_timezone(self) -> "TargetCity":
        if not self.timezone:
            self.timezone = timezone_for_state(self.state)
        return self

    @classmethod
    def parse(cls, value: str) -> "TargetCity":
        """Parse 'Austin|TX' or 'Austin, TX'."""
        separator = "|" if "|" in value else ","
        city, _, state = value.partition(separator)
        if not city.strip() or not state.strip():
            raise ValueError(f"city override {value!r} must look like 'City|ST'")
        return cls(city=city.strip(), state=state.strip().upper())

    def label(self) -> str:
        return f"{self.city}, {self.state}"


class PhaseSettings(BaseModel):
    """Targeting and timing settings active during a phase."""

    cities: List[TargetCity] = Field(default_factory=list)
    industries: List[str] = Field(default_factory=list)
    search_times: List[str] = Field(default_factory=lambda: ["09:00", "13:00"])
    send_window: SendWindow = Field(default_factory=SendWindow)
    target_no_website: bool = True
    target_existing_website: bool = False

    @field_validator("search_times")
    @classmethod
    def validate_search_times(cls, v: List[str]) -> List[str]:
        for value in v:
            hour, _, minute = value.partition(":")
            if not (hour.isdigit() and minute.isdigit()):
                raise ValueError(f"search time {value!r} must be HH:MM")
            if int(hour) > 23 or int(minute) > 59:
                raise ValueError(f"search time {value!r} is out of range")
        return v


class PhaseEconomics(BaseModel):
    """Cost and revenue targets; reporting and advancement readiness only."""

    monthly_cost: float = 0.0
    revenue_target: float = 0.0
    price_per_customer: float = 197.0


class Phase(BaseModel):
    """A named operating configuration selected by customer count."""

    phase: int = Field(..., ge=1)
    name: str
    customer_range: CustomerRange = Field(default_factory=CustomerRange)
    settings: PhaseSettings = Field(default_factory=PhaseSettings)
    economics: PhaseEconomics = Field(default_factory=PhaseEconomics)


class PhaseTransition(BaseModel):
    """Entry in the strategy's transition log."""

    from_phase: int
    to_phase: int
    timestamp: datetime
    customer_count: int = 0

    @property
    def is_regression(self) -> bool:
        return self.to_phase < self.from_phase


class GrowthStrategy(BaseModel):
    """Ordered phases plus the current-phase pointer and transition log."""

    phases: List[Phase] = Field(..., min_length=1)
    current_phase: int = 1
    transitions: List[PhaseTransition] = Field(default_factory=list)
    last_phase_change: Optional[datetime] = None

    @field_validator("phases")
    @classmethod
    def validate_unique_phase_numbers(cls, v: List[Phase]) -> List[Phase]:
        numbers = [p.phase for p in v]
        if len(numbers) != len(set(numbers)):
            raise ValueError("phase numbers must be unique")
        return v

    def phase_by_number(self, number: int) -> Optional[Phase]:
        for phase in self.phases:
            if phase.phase == number:
                return phase
        return None
