"""
Rate Limit Config Model
Campaign-configurable caps, spacing and working-hour window for outbound actions
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, Tuple
from datetime import date, datetime, time, timedelta
import pytz

from outreach.utils.time_utils import ensure_utc, utcnow


def _parse_hhmm(value: str) -> time:
    hour, minute = map(int, value.split(":"))
    return time(hour, minute)


class RateLimitConfig(BaseModel):
    """
    Per-campaign rate limits.

    Stored on the campaign row as JSON. Daily counters reset at local midnight
    in `timezone`; the weekly connection cap is a rolling 168 hour window.
    """

    # Daily / weekly caps
    daily_connection_requests: int = Field(
        default=15,
        ge=0,
        description="Max connection requests per local calendar day"
    )
    daily_messages: int = Field(
        default=20,
        ge=0,
        description="Max messages (message, follow-up, InMail) per local calendar day"
    )
    weekly_connection_cap: int = Field(
        default=80,
        ge=0,
        description="Max connection requests in any rolling 7x24h window"
    )

    # Spacing between dispatches (jitter bounds)
    min_delay_seconds: int = Field(
        default=45,
        ge=0,
        description="Minimum seconds between two dispatches in this campaign"
    )
    max_delay_seconds: int = Field(
        default=180,
        ge=0,
        description="Upper bound of the random spacing inserted after a dispatch"
    )

    # Working-hour window
    working_hours_start: str = Field(
        default="09:00",
        description="Start of the working window (HH:MM, inclusive)"
    )
    working_hours_end: str = Field(
        default="18:00",
        description="End of the working window (HH:MM, exclusive)"
    )
    timezone: str = Field(
        default="America/Denver",
        description="Timezone for the working window and daily resets"
    )
    pause_weekends: bool = Field(
        default=True,
        description="Block dispatches on Saturday and Sunday (local time)"
    )

    @field_validator("working_hours_start", "working_hours_end")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        try:
            _parse_hhmm(v)
        except ValueError:
            raise ValueError(f"Invalid time '{v}', expected HH:MM")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            pytz.timezone(v)
        except pytz.exceptions.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "RateLimitConfig":
        if self.max_delay_seconds < self.min_delay_seconds:
            raise ValueError("max_delay_seconds must be >= min_delay_seconds")
        return self

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    def to_local(self, when: Optional[datetime] = None) -> datetime:
        """Convert a datetime (default: now) to the campaign's local time."""
        return ensure_utc(when or utcnow()).astimezone(self.tz)

    def local_date(self, when: datetime) -> date:
        """Calendar day used for daily counters."""
        return self.to_local(when).date()

    def next_local_midnight(self, when: datetime) -> datetime:
        """UTC instant at which the daily counters for `when` roll over."""
        next_day = self.local_date(when) + timedelta(days=1)
        midnight = self.tz.localize(datetime.combine(next_day, time(0, 0)))
        return midnight.astimezone(pytz.UTC)

    def _is_working_day(self, day: date) -> bool:
        return not (self.pause_weekends and day.weekday() >= 5)

    def is_within_working_hours(self, check_time: Optional[datetime] = None) -> Tuple[bool, str]:
        """
        Check if a time falls inside the working window.

        Args:
            check_time: Time to check (default: now)

        Returns:
            (is_allowed, reason)
        """
        local = self.to_local(check_time)

        if not self._is_working_day(local.date()):
            day_names = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
            return False, f"weekend_paused_{day_names[local.weekday()]}"

        start = _parse_hhmm(self.working_hours_start)
        end = _parse_hhmm(self.working_hours_end)
        current = local.time()

        if start <= end:
            inside = start <= current < end
        else:
            # Overnight window, e.g. 22:00-06:00
            inside = current >= start or current < end

        if inside:
            return True, "within_working_hours"
        return False, f"outside_working_hours_{self.working_hours_start}_{self.working_hours_end}"

    def next_window_start(self, from_time: Optional[datetime] = None) -> datetime:
        """
        Get the next time the working window opens (UTC).

        Returns `from_time` itself when it is already inside the window.
        """
        from_utc = ensure_utc(from_time or utcnow())
        in_window, _ = self.is_within_working_hours(from_utc)
        if in_window:
            return from_utc

        local = self.to_local(from_utc)
        start = _parse_hhmm(self.working_hours_start)

        for offset in range(0, 8):
            day = local.date() + timedelta(days=offset)
            if not self._is_working_day(day):
                continue
            candidate = self.tz.localize(datetime.combine(day, start))
            if candidate > local:
                return candidate.astimezone(pytz.UTC)

        # Unreachable with at least one working day per week
        return from_utc + timedelta(days=1)

    @classmethod
    def default(cls) -> "RateLimitConfig":
        """Create default rate limits."""
        return cls()

    def to_dict(self) -> dict:
        """Convert to dictionary for database storage."""
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RateLimitConfig":
        """Create from dictionary (database load)."""
        if data is None:
            return cls.default()
        return cls(**data)
