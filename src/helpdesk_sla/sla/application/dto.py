"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA application layer.

These Pydantic models validate policy documents loaded from YAML and shape
the payloads handed to the notification dispatcher.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from helpdesk_sla.config import (
    DEFAULT_HOURS_END, DEFAULT_HOURS_START, DEFAULT_WORKING_WEEKDAYS,
    VALID_PRIORITIES, VALID_TICKET_TYPES,
)


# ========== Policy documents ==========

class BusinessCalendarConfig(BaseModel):
    """Business calendar section of a policy document."""
    hours_start: int = Field(default=DEFAULT_HOURS_START, ge=0, le=23)
    hours_end: int = Field(default=DEFAULT_HOURS_END, ge=0, le=23)
    working_weekdays: List[int] = Field(
        default_factory=lambda: list(DEFAULT_WORKING_WEEKDAYS),
        description="0 = Sunday ... 6 = Saturday"
    )
    holidays: List[date] = Field(default_factory=list)
    timezone: Optional[str] = Field(None, description="IANA zone, defaults to settings")

    @model_validator(mode="after")
    def validate_hours(self) -> "BusinessCalendarConfig":
        if self.hours_end <= self.hours_start:
            raise ValueError("hours_end must be greater than hours_start")
        return self

    def to_domain(self):
        from helpdesk_sla.sla.domain import BusinessCalendar

        return BusinessCalendar.from_values(
            hours_start=self.hours_start,
            hours_end=self.hours_end,
            working_weekdays=self.working_weekdays,
            holidays=self.holidays,
            timezone=self.timezone,
        )


class SLAPolicyConfig(BaseModel):
    """One SLA policy entry of a policy document."""
    id: Optional[str] = None
    organization_id: str = Field(..., min_length=1)
    name: str = ""
    priority: str
    ticket_type: str
    response_hours: float = Field(..., ge=0)
    resolution_hours: float = Field(..., ge=0)
    calendar: BusinessCalendarConfig = Field(default_factory=BusinessCalendarConfig)
    active: bool = True

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        if v not in VALID_PRIORITIES:
            raise ValueError(f"priority must be one of {VALID_PRIORITIES}")
        return v

    @field_validator("ticket_type")
    @classmethod
    def validate_ticket_type(cls, v: str) -> str:
        if v not in VALID_TICKET_TYPES:
            raise ValueError(f"ticket_type must be one of {VALID_TICKET_TYPES}")
        return v

    def to_domain(self):
        from helpdesk_sla.sla.domain import SLAPolicy

        return SLAPolicy(
            id=self.id,
            organization_id=self.organization_id,
            name=self.name,
            priority=self.priority,
            ticket_type=self.ticket_type,
            response_hours=self.response_hours,
            resolution_hours=self.resolution_hours,
            calendar=self.calendar.to_domain(),
            active=self.active,
        )


class SLAPolicyDocument(BaseModel):
    """Top-level shape of the SLA policy YAML file."""
    policies: List[SLAPolicyConfig] = Field(default_factory=list)


# ========== Notification payloads ==========

class ViolationNotification(BaseModel):
    """Payload sent when a new SLA violation is recorded."""
    event: str = "sla_breached"
    ticket_id: str
    ticket_number: str
    priority: str
    violation_kind: str
    breach_time: str = Field(..., description="Overdue time, '<h>h <m>m'")
    expected_deadline: datetime
    ticket_url: str
