"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import FrozenSet, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from helpdesk_sla.config import (
    DEFAULT_HOURS_END, DEFAULT_HOURS_START, DEFAULT_WORKING_WEEKDAYS, settings
)
from helpdesk_sla.core import DomainException, ValidationException

# Upper bound on the calendar walk; a calendar with no working day in this
# horizon is treated as unusable instead of looping forever.
MAX_WALK_DAYS = 3660


@dataclass(frozen=True)
class BusinessCalendar:
    """
    Working hours, working weekdays and holidays of one SLA policy.

    Weekdays are numbered 0 = Sunday through 6 = Saturday. Holidays are
    calendar dates in the calendar's own timezone.
    """
    hours_start: int = DEFAULT_HOURS_START
    hours_end: int = DEFAULT_HOURS_END
    working_weekdays: FrozenSet[int] = field(
        default_factory=lambda: frozenset(DEFAULT_WORKING_WEEKDAYS)
    )
    holidays: FrozenSet[date] = field(default_factory=frozenset)
    timezone: str = field(default_factory=lambda: settings.default_timezone)

    def __post_init__(self):
        """Validate calendar bounds and normalize collections."""
        if not 0 <= self.hours_start <= 23 or not 0 <= self.hours_end <= 23:
            raise ValidationException(
                "Business hours must be between 0 and 23",
                {"hours_start": self.hours_start, "hours_end": self.hours_end}
            )
        if self.hours_end <= self.hours_start:
            raise ValidationException(
                "hours_end must be greater than hours_start",
                {"hours_start": self.hours_start, "hours_end": self.hours_end}
            )

        weekdays = frozenset(int(d) for d in self.working_weekdays)
        if not weekdays:
            raise ValidationException("A business calendar needs at least one working weekday")
        if any(d < 0 or d > 6 for d in weekdays):
            raise ValidationException(
                "Working weekdays must be between 0 (Sunday) and 6 (Saturday)",
                {"working_weekdays": sorted(weekdays)}
            )

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationException(
                f"Unknown timezone: {self.timezone}", {"timezone": self.timezone}
            )

        # frozen dataclass: bypass __setattr__ to store the normalized sets
        object.__setattr__(self, "working_weekdays", weekdays)
        object.__setattr__(self, "holidays", frozenset(_as_date(h) for h in self.holidays))

    @classmethod
    def from_values(
        cls,
        hours_start: Optional[int] = None,
        hours_end: Optional[int] = None,
        working_weekdays: Optional[Iterable[int]] = None,
        holidays: Optional[Iterable] = None,
        timezone: Optional[str] = None,
    ) -> "BusinessCalendar":
        """Build a calendar from stored values, filling gaps with defaults."""
        return cls(
            hours_start=DEFAULT_HOURS_START if hours_start is None else hours_start,
            hours_end=DEFAULT_HOURS_END if hours_end is None else hours_end,
            working_weekdays=frozenset(
                DEFAULT_WORKING_WEEKDAYS if working_weekdays is None else working_weekdays
            ),
            holidays=frozenset(holidays or ()),
            timezone=timezone or settings.default_timezone,
        )

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_working_day(self, day: date) -> bool:
        """Check whether a date is a working weekday and not a holiday."""
        weekday = (day.weekday() + 1) % 7  # Python: Monday=0 -> Sunday-based
        return weekday in self.working_weekdays and day not in self.holidays

    def localize(self, instant: datetime) -> datetime:
        """Express an instant in the calendar's zone; naive means local wall time."""
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self.zone)
        return instant.astimezone(self.zone)

    def to_dict(self) -> dict:
        return {
            "hours_start": self.hours_start,
            "hours_end": self.hours_end,
            "working_weekdays": sorted(self.working_weekdays),
            "holidays": sorted(h.isoformat() for h in self.holidays),
            "timezone": self.timezone,
        }


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class DeadlineCalculator:
    """
    Pure functions for business-hours deadline arithmetic.

    Stateless utility class - all deadline calculation logic in one place.
    """

    @staticmethod
    def compute_deadline(
        start: datetime,
        hours_to_add: float,
        calendar: BusinessCalendar
    ) -> datetime:
        """
        Add business hours to an instant.

        Walks forward on the calendar's local wall clock, skipping
        non-working days, holidays and time outside working hours.

        Args:
            start: Instant the clock starts from
            hours_to_add: Business hours to add (may be fractional)
            calendar: Calendar defining working time

        Returns:
            The deadline, as an aware datetime in the calendar's zone.
            `start` is returned unchanged when hours_to_add is 0.
        """
        if hours_to_add < 0:
            raise ValidationException(
                "hours_to_add cannot be negative", {"hours_to_add": hours_to_add}
            )
        if hours_to_add == 0:
            return start

        local = calendar.localize(start)
        zone = local.tzinfo
        current = local.replace(tzinfo=None)
        remaining = timedelta(hours=hours_to_add)

        day_start = timedelta(hours=calendar.hours_start)
        day_end = timedelta(hours=calendar.hours_end)
        last_day = current.date() + timedelta(days=MAX_WALK_DAYS)

        while remaining > timedelta(0):
            if current.date() > last_day:
                raise DomainException(
                    "No working time found within the calendar horizon",
                    {"start": start.isoformat(), "calendar": calendar.to_dict()}
                )

            if not calendar.is_working_day(current.date()):
                current = DeadlineCalculator._next_day_start(current, calendar)
                continue

            time_of_day = current - datetime.combine(current.date(), time.min)

            if time_of_day < day_start:
                current = datetime.combine(current.date(), time(calendar.hours_start))
                continue

            if time_of_day >= day_end:
                current = DeadlineCalculator._next_day_start(current, calendar)
                continue

            consumed = min(remaining, day_end - time_of_day)
            current += consumed
            remaining -= consumed

            if remaining > timedelta(0):
                current = DeadlineCalculator._next_day_start(current, calendar)

        return current.replace(tzinfo=zone)

    @staticmethod
    def _next_day_start(current: datetime, calendar: BusinessCalendar) -> datetime:
        next_day = current.date() + timedelta(days=1)
        return datetime.combine(next_day, time(calendar.hours_start))


@dataclass(frozen=True)
class SLADeadline:
    """
    Immutable value object representing one computed SLA deadline.
    """
    ticket_id: str
    kind: str
    deadline: datetime
    budget_hours: float
    policy_id: Optional[str] = None

    def is_past(self, now: datetime) -> bool:
        """Check if deadline is in the past at `now`."""
        return now > self.deadline

    def overdue_minutes(self, now: datetime) -> int:
        """Whole minutes elapsed past the deadline (0 if not yet due)."""
        seconds = (now - self.deadline).total_seconds()
        return max(0, int(seconds // 60))
