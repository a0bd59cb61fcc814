"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring and escalation.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from inquiry_sla.config import (
    Priority, Role, Severity, ViolationType, WorkItemStatus
)


@dataclass
class WorkItem:
    """
    An inquiry as seen by the SLA engine.

    Owned by the ticketing subsystem; the engine only reads it and may
    request a reassignment plus a priority change.
    """

    id: str
    application_id: str
    priority: Priority
    status: WorkItemStatus
    created_at: datetime
    updated_at: datetime
    assigned_user_id: Optional[str] = None
    first_response_at: Optional[datetime] = None
    title: str = ""

    @property
    def has_any_response(self) -> bool:
        return self.first_response_at is not None

    @property
    def is_open(self) -> bool:
        return self.status == WorkItemStatus.OPEN

    @property
    def is_resolved(self) -> bool:
        """Check if inquiry has been resolved or closed."""
        return self.status in (WorkItemStatus.RESOLVED, WorkItemStatus.CLOSED)

    @property
    def response_hours(self) -> Optional[float]:
        """Hours from creation to first response."""
        if self.first_response_at is None:
            return None
        return (self.first_response_at - self.created_at).total_seconds() / 3600

    @property
    def resolution_hours(self) -> Optional[float]:
        """Hours from creation to the last update of a resolved inquiry."""
        if not self.is_resolved:
            return None
        return (self.updated_at - self.created_at).total_seconds() / 3600


@dataclass
class User:
    """Collaborator view of a user, enough for escalation routing."""

    id: str
    email: str
    role: Role
    created_at: datetime
    name: str = ""
    application_id: Optional[str] = None
    is_active: bool = True


@dataclass
class EscalationRecord:
    """
    Audit trail entry for one escalated violation.

    ``escalated_by`` is None for automatic escalations.
    """

    violation_id: str
    work_item_id: str
    to_user_id: str
    reason: str
    escalated_at: datetime
    previous_priority: Priority
    new_priority: Priority
    from_user_id: Optional[str] = None
    escalated_by: Optional[str] = None
    notes: Optional[str] = None
    id: Optional[str] = None

    @property
    def is_automatic(self) -> bool:
        return self.escalated_by is None


@dataclass
class SlaViolation:
    """
    A detected breach of one deadline kind for one inquiry.

    At most one exists per (work_item_id, violation_type).
    """

    id: Optional[str]
    work_item_id: str
    sla_config_id: str
    violation_type: ViolationType
    expected_time: datetime
    detected_at: datetime
    delay_hours: float
    severity: Severity

    is_escalated: bool = False
    escalated_to_user_id: Optional[str] = None
    escalated_at: Optional[datetime] = None

    is_resolved: bool = False
    resolved_at: Optional[datetime] = None

    # Populated by repositories that join the audit trail
    escalation: Optional[EscalationRecord] = None

    @property
    def can_escalate(self) -> bool:
        return not self.is_escalated

    def mark_escalated(self, target_user_id: str, timestamp: Optional[datetime] = None) -> None:
        """Move the violation to the escalated state."""
        self.is_escalated = True
        self.escalated_to_user_id = target_user_id
        self.escalated_at = timestamp or datetime.now(timezone.utc)

    def mark_resolved(self, timestamp: Optional[datetime] = None) -> None:
        if self.is_resolved:
            return
        self.is_resolved = True
        self.resolved_at = timestamp or datetime.now(timezone.utc)


@dataclass(frozen=True)
class NotificationRequest:
    """
    Outbound message handed to the external notifier.

    ``metadata`` carries violation_id, work_item_id, violation_type,
    severity and delay_hours.
    """

    kind: str
    recipients: List[str]
    subject: str
    body: str
    priority: Priority
    metadata: Dict[str, Any] = field(default_factory=dict)
