"""
SLA Value Objects
==================

Immutable value objects and pure domain services for the SLA engine.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING, FrozenSet, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from inquiry_sla.config import (
    Priority, Role, Severity, ViolationType, PRIORITY_ORDER, VALID_PRIORITIES
)
from inquiry_sla.core.exceptions import ConfigurationException

if TYPE_CHECKING:
    from inquiry_sla.sla.domain.entities import User

DEFAULT_BUSINESS_DAYS = frozenset({1, 2, 3, 4, 5})


def as_utc(moment: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_business_days(value) -> FrozenSet[int]:
    """Accept "1,2,3" strings (the storage format) or any iterable of ints."""
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",") if p.strip()]
        try:
            return frozenset(int(p) for p in parts)
        except ValueError:
            raise ConfigurationException(f"Invalid business days: {value!r}")
    return frozenset(int(d) for d in value)


def format_business_days(days: Iterable[int]) -> str:
    return ",".join(str(d) for d in sorted(days))


@dataclass(frozen=True)
class BusinessPolicy:
    """
    Which hours count toward an SLA deadline.

    Hours are evaluated in ``timezone``; days use ISO numbering
    (Monday=1 ... Sunday=7). ``end_hour`` is exclusive.
    """
    business_hours_only: bool = False
    start_hour: int = 9
    end_hour: int = 18
    business_days: FrozenSet[int] = DEFAULT_BUSINESS_DAYS
    timezone: str = "UTC"

    def __post_init__(self):
        if not (0 <= self.start_hour <= 23 and 0 <= self.end_hour <= 23):
            raise ConfigurationException(
                "Business hours must be within 0-23",
                {"start_hour": self.start_hour, "end_hour": self.end_hour}
            )
        if self.start_hour >= self.end_hour:
            raise ConfigurationException(
                "Business start hour must be before end hour",
                {"start_hour": self.start_hour, "end_hour": self.end_hour}
            )
        if not self.business_days:
            raise ConfigurationException("At least one business day is required")
        if not set(self.business_days) <= set(range(1, 8)):
            raise ConfigurationException(
                "Business days must be between 1 (Monday) and 7 (Sunday)",
                {"business_days": sorted(self.business_days)}
            )
        # Fail on unknown zones at construction, not in the middle of a sweep.
        self.tzinfo

    @property
    def tzinfo(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return timezone.utc
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationException(f"Unknown timezone: {self.timezone}")


class BusinessCalendar:
    """
    Pure deadline arithmetic over a business calendar.

    Stateless utility class; all calendar logic lives here.
    """

    @staticmethod
    def is_business_time(moment: datetime, policy: BusinessPolicy) -> bool:
        """Check whether a local ``moment`` falls inside a business window."""
        return (
            moment.isoweekday() in policy.business_days
            and policy.start_hour <= moment.hour < policy.end_hour
        )

    @staticmethod
    def next_window_start(moment: datetime, policy: BusinessPolicy) -> datetime:
        """
        Get the opening of the next business window after a local ``moment``.

        Same day when the day qualifies and we are before opening time,
        otherwise the next qualifying day at opening time.
        """
        opening = moment.replace(hour=policy.start_hour, minute=0, second=0, microsecond=0)
        if moment.isoweekday() in policy.business_days and moment < opening:
            return opening

        for offset in range(1, 8):
            candidate = opening + timedelta(days=offset)
            if candidate.isoweekday() in policy.business_days:
                return candidate

        raise ConfigurationException("Business calendar has no business days")

    @classmethod
    def compute_deadline(
        cls,
        start: datetime,
        hours: float,
        policy: BusinessPolicy
    ) -> datetime:
        """
        Calculate the instant at which ``hours`` of SLA time have elapsed.

        Args:
            start: When the clock starts (naive values are read as UTC)
            hours: SLA duration in hours
            policy: Business calendar policy

        Returns:
            The deadline as an aware UTC datetime
        """
        start = as_utc(start)
        if hours <= 0:
            return start

        if not policy.business_hours_only:
            return start + timedelta(hours=hours)

        current = start.astimezone(policy.tzinfo)
        remaining = timedelta(hours=hours)

        # Each pass either consumes a positive slice of ``remaining`` or jumps
        # to a window opening, and a window opening is always business time.
        while remaining > timedelta(0):
            if cls.is_business_time(current, policy):
                closing = current.replace(
                    hour=policy.end_hour, minute=0, second=0, microsecond=0
                )
                step = min(remaining, closing - current)
                current += step
                remaining -= step
            else:
                current = cls.next_window_start(current, policy)

        # Landing exactly on closing time is the same business instant as the
        # next opening.
        if not cls.is_business_time(current, policy):
            current = cls.next_window_start(current, policy)

        return current.astimezone(timezone.utc)


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Severity, delay and priority promotion rules in one place.
    """

    MINOR_MAX_DELAY_HOURS = 2.0
    MAJOR_MAX_DELAY_HOURS = 8.0

    @staticmethod
    def is_breached(expected: datetime, current_time: datetime) -> bool:
        return as_utc(current_time) > as_utc(expected)

    @staticmethod
    def delay_hours(expected: datetime, detected: datetime) -> float:
        """Hours between the deadline and the detection instant."""
        return (as_utc(detected) - as_utc(expected)).total_seconds() / 3600

    @classmethod
    def classify_severity(cls, delay_hours: float) -> Severity:
        """
        Map delay magnitude to a severity tier.

        Example:
            2.0h late -> minor, 2.01h -> major, 8.01h -> critical
        """
        if delay_hours <= cls.MINOR_MAX_DELAY_HOURS:
            return Severity.MINOR
        if delay_hours <= cls.MAJOR_MAX_DELAY_HOURS:
            return Severity.MAJOR
        return Severity.CRITICAL

    @staticmethod
    def promote_priority(priority: Priority) -> Priority:
        """Raise priority one tier; critical stays critical."""
        index = PRIORITY_ORDER.index(Priority(priority))
        return PRIORITY_ORDER[min(index + 1, len(PRIORITY_ORDER) - 1)]


@dataclass(frozen=True)
class SlaConfig:
    """
    Per-application, per-priority SLA thresholds plus the business calendar.

    Read-only to the engine; edited by configuration management.
    """
    id: str
    application_id: str
    priority_level: Priority
    response_time_hours: float
    resolution_time_hours: float
    escalation_time_hours: float
    business_hours_only: bool = False
    business_start_hour: int = 9
    business_end_hour: int = 18
    business_days: FrozenSet[int] = DEFAULT_BUSINESS_DAYS
    is_active: bool = True
    timezone: str = "UTC"
    policy: BusinessPolicy = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        for name in ("response_time_hours", "resolution_time_hours", "escalation_time_hours"):
            if getattr(self, name) < 1:
                raise ConfigurationException(
                    f"{name} must be at least 1 hour",
                    {"sla_config_id": self.id, name: getattr(self, name)}
                )
        object.__setattr__(self, "priority_level", Priority(self.priority_level))
        object.__setattr__(self, "business_days", parse_business_days(self.business_days))
        object.__setattr__(self, "policy", BusinessPolicy(
            business_hours_only=self.business_hours_only,
            start_hour=self.business_start_hour,
            end_hour=self.business_end_hour,
            business_days=self.business_days,
            timezone=self.timezone,
        ))

    def threshold_hours(self, violation_type: ViolationType) -> float:
        """Get the configured hours for a deadline kind."""
        return {
            ViolationType.RESPONSE_TIME: self.response_time_hours,
            ViolationType.RESOLUTION_TIME: self.resolution_time_hours,
            ViolationType.ESCALATION_TIME: self.escalation_time_hours,
        }[ViolationType(violation_type)]

    def expected_time(self, start: datetime, violation_type: ViolationType) -> datetime:
        """Deadline for ``violation_type`` on an item created at ``start``."""
        return BusinessCalendar.compute_deadline(
            start, self.threshold_hours(violation_type), self.policy
        )


class EscalationPolicy:
    """Pure selection rules for escalation targets."""

    ELEVATED_ROLES = (Role.ADMIN, Role.SYSTEM_ADMIN)

    @staticmethod
    def most_senior(
        candidates: Iterable["User"],
        exclude_user_id: Optional[str] = None
    ) -> Optional["User"]:
        """Earliest-created active candidate, skipping ``exclude_user_id``."""
        eligible = [
            u for u in candidates
            if u.is_active and u.id != exclude_user_id
        ]
        if not eligible:
            return None
        return min(eligible, key=lambda u: (as_utc(u.created_at), u.id))

    @classmethod
    def elevated_over(
        cls,
        assignee_role: Role,
        candidates: Iterable["User"]
    ) -> List["User"]:
        """Administrative users whose role outranks the assignee's."""
        return [
            u for u in candidates
            if u.role in cls.ELEVATED_ROLES and Role(u.role).outranks(assignee_role)
        ]


# ========== YAML configuration schema ==========

class SlaConfigDefinition(BaseModel):
    """One SLA configuration entry as written in ``sla_config.yaml``."""
    id: str = Field(..., min_length=1)
    application_id: str = Field(..., min_length=1)
    priority_level: str
    response_time_hours: float = Field(..., ge=1)
    resolution_time_hours: float = Field(..., ge=1)
    escalation_time_hours: float = Field(..., ge=1)
    business_hours_only: bool = False
    business_start_hour: int = Field(default=9, ge=0, le=23)
    business_end_hour: int = Field(default=18, ge=0, le=23)
    business_days: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    is_active: bool = True
    timezone: str = "UTC"

    @field_validator("priority_level")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        if v not in VALID_PRIORITIES:
            raise ValueError(f"priority_level must be one of {VALID_PRIORITIES}")
        return v

    @model_validator(mode="after")
    def validate_business_window(self) -> "SlaConfigDefinition":
        if self.business_start_hour >= self.business_end_hour:
            raise ValueError("business_start_hour must be before business_end_hour")
        return self

    def to_domain(self) -> SlaConfig:
        return SlaConfig(
            id=self.id,
            application_id=self.application_id,
            priority_level=Priority(self.priority_level),
            response_time_hours=self.response_time_hours,
            resolution_time_hours=self.resolution_time_hours,
            escalation_time_hours=self.escalation_time_hours,
            business_hours_only=self.business_hours_only,
            business_start_hour=self.business_start_hour,
            business_end_hour=self.business_end_hour,
            business_days=frozenset(self.business_days),
            is_active=self.is_active,
            timezone=self.timezone,
        )


class SlaConfigFile(BaseModel):
    """Top-level layout of ``sla_config.yaml``."""
    sla_configs: List[SlaConfigDefinition] = Field(default_factory=list)

    def to_domain(self) -> List[SlaConfig]:
        return [definition.to_domain() for definition in self.sla_configs]
