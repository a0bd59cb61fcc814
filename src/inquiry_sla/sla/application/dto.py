"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from pydantic import BaseModel, Field, model_validator
from typing import Dict, List, Optional, Literal
from datetime import datetime


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "critical"]
ViolationTypeStr = Literal["response_time", "resolution_time", "escalation_time"]
SeverityStr = Literal["minor", "major", "critical"]


# ========== Request DTOs ==========

class ManualEscalationRequest(BaseModel):
    """Request model for an operator-triggered escalation."""
    escalate_to_user_id: Optional[str] = Field(
        None,
        description="Target user; resolved through the fallback chain when omitted"
    )
    reason: str = Field(..., min_length=1, max_length=500, description="Why the violation is escalated")
    notes: Optional[str] = Field(None, max_length=2000, description="Free-text notes")
    escalated_by: Optional[str] = Field(None, description="User performing the escalation")


class DateRangeQuery(BaseModel):
    """Query parameters shared by the reporting endpoints."""
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def validate_range(self) -> "DateRangeQuery":
        if self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class ViolationQueryDTO(BaseModel):
    """Query parameters for the violation listing."""
    work_item_id: Optional[str] = None
    violation_type: Optional[ViolationTypeStr] = None
    severity: Optional[SeverityStr] = None
    is_escalated: Optional[bool] = None
    is_resolved: Optional[bool] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    def filters(self) -> dict:
        return self.model_dump(exclude={"limit", "offset"}, exclude_none=True)


# ========== Response DTOs ==========

class EscalationRecordResponse(BaseModel):
    """Response model for an escalation audit record."""
    id: Optional[str] = None
    reason: str
    notes: Optional[str] = None
    escalated_by: Optional[str] = Field(None, description="None for automatic escalations")
    from_user_id: Optional[str] = None
    to_user_id: str
    escalated_at: datetime
    previous_priority: PriorityStr
    new_priority: PriorityStr

    @classmethod
    def from_domain(cls, record) -> "EscalationRecordResponse":
        return cls(
            id=record.id,
            reason=record.reason,
            notes=record.notes,
            escalated_by=record.escalated_by,
            from_user_id=record.from_user_id,
            to_user_id=record.to_user_id,
            escalated_at=record.escalated_at,
            previous_priority=record.previous_priority.value,
            new_priority=record.new_priority.value,
        )


class ViolationResponse(BaseModel):
    """Response model for an SLA violation."""
    id: str
    work_item_id: str
    sla_config_id: str
    violation_type: ViolationTypeStr
    expected_time: datetime
    detected_at: datetime
    delay_hours: float
    severity: SeverityStr
    is_escalated: bool
    escalated_to_user_id: Optional[str] = None
    escalated_at: Optional[datetime] = None
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    escalation: Optional[EscalationRecordResponse] = None

    @classmethod
    def from_domain(cls, violation) -> "ViolationResponse":
        return cls(
            id=violation.id,
            work_item_id=violation.work_item_id,
            sla_config_id=violation.sla_config_id,
            violation_type=violation.violation_type.value,
            expected_time=violation.expected_time,
            detected_at=violation.detected_at,
            delay_hours=round(violation.delay_hours, 2),
            severity=violation.severity.value,
            is_escalated=violation.is_escalated,
            escalated_to_user_id=violation.escalated_to_user_id,
            escalated_at=violation.escalated_at,
            is_resolved=violation.is_resolved,
            resolved_at=violation.resolved_at,
            escalation=(
                EscalationRecordResponse.from_domain(violation.escalation)
                if violation.escalation else None
            ),
        )


class EscalationResultResponse(BaseModel):
    """Response model for a performed escalation."""
    violation: ViolationResponse
    escalated_to_user_id: str
    escalated_to_email: str
    previous_priority: PriorityStr
    new_priority: PriorityStr

    @classmethod
    def from_result(cls, result) -> "EscalationResultResponse":
        return cls(
            violation=ViolationResponse.from_domain(result.violation),
            escalated_to_user_id=result.target.id,
            escalated_to_email=result.target.email,
            previous_priority=result.record.previous_priority.value,
            new_priority=result.record.new_priority.value,
        )


class PriorityBreakdown(BaseModel):
    """Compliance figures for one priority level."""
    total: int
    compliant: int
    violations: int
    compliance_rate: float


class ComplianceMetricsResponse(BaseModel):
    """Response model for SLA compliance metrics."""
    application_id: str
    start_date: datetime
    end_date: datetime
    total_items: int
    compliant: int
    violations: int
    compliance_rate: float = Field(..., description="Percentage of inquiries without violations")
    average_response_hours: float
    average_resolution_hours: float
    per_priority: Dict[PriorityStr, PriorityBreakdown]

    @classmethod
    def from_metrics(cls, metrics) -> "ComplianceMetricsResponse":
        return cls(
            application_id=metrics.application_id,
            start_date=metrics.start_date,
            end_date=metrics.end_date,
            total_items=metrics.total_items,
            compliant=metrics.compliant,
            violations=metrics.violations,
            compliance_rate=round(metrics.compliance_rate, 2),
            average_response_hours=round(metrics.average_response_hours, 2),
            average_resolution_hours=round(metrics.average_resolution_hours, 2),
            per_priority={
                priority: PriorityBreakdown(
                    total=stats.total,
                    compliant=stats.compliant,
                    violations=stats.violations,
                    compliance_rate=round(stats.compliance_rate, 2),
                )
                for priority, stats in metrics.per_priority.items()
            },
        )


class EscalationCounts(BaseModel):
    total: int
    resolved: int
    pending: int


class EscalationStatsResponse(BaseModel):
    """Response model for escalation statistics."""
    start_date: datetime
    end_date: datetime
    total_escalations: int
    resolved_escalations: int
    pending_escalations: int
    resolution_rate: float
    by_user: Dict[str, EscalationCounts]
    by_severity: Dict[SeverityStr, EscalationCounts]

    @classmethod
    def from_stats(cls, stats) -> "EscalationStatsResponse":
        return cls(
            start_date=stats.start_date,
            end_date=stats.end_date,
            total_escalations=stats.total_escalations,
            resolved_escalations=stats.resolved_escalations,
            pending_escalations=stats.pending_escalations,
            resolution_rate=round(stats.resolution_rate, 2),
            by_user={k: EscalationCounts(**v) for k, v in stats.by_user.items()},
            by_severity={k: EscalationCounts(**v) for k, v in stats.by_severity.items()},
        )


class SweepSummaryResponse(BaseModel):
    """Response model for a manually triggered sweep."""
    skipped: bool = Field(default=False, description="True when a sweep was already running")
    started_at: Optional[datetime] = None
    configs_checked: int = 0
    items_evaluated: int = 0
    violations_created: int = 0
    escalations_performed: int = 0
    escalations_skipped: int = 0
    errors: int = 0


class SlaConfigResponse(BaseModel):
    """Response model for an active SLA configuration."""
    id: str
    application_id: str
    priority_level: PriorityStr
    response_time_hours: float
    resolution_time_hours: float
    escalation_time_hours: float
    business_hours_only: bool
    business_start_hour: int
    business_end_hour: int
    business_days: List[int]
    timezone: str
    is_active: bool

    @classmethod
    def from_domain(cls, config) -> "SlaConfigResponse":
        return cls(
            id=config.id,
            application_id=config.application_id,
            priority_level=config.priority_level.value,
            response_time_hours=config.response_time_hours,
            resolution_time_hours=config.resolution_time_hours,
            escalation_time_hours=config.escalation_time_hours,
            business_hours_only=config.business_hours_only,
            business_start_hour=config.business_start_hour,
            business_end_hour=config.business_end_hour,
            business_days=sorted(config.business_days),
            timezone=config.timezone,
            is_active=config.is_active,
        )


class ResolveViolationsResponse(BaseModel):
    """Response model for closing out an inquiry's violations."""
    work_item_id: str
    resolved_count: int
