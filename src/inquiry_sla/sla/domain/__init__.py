"""
SLA Domain Layer
================

Domain layer for SLA monitoring and escalation.

Contains:
- Entities: Core business objects with identity (WorkItem, User, SlaViolation, EscalationRecord)
- Value Objects: Immutable objects defined by attributes (SlaConfig, BusinessPolicy)
- Domain Services: Stateless business logic (BusinessCalendar, SLACalculator, EscalationPolicy)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from inquiry_sla.sla.domain.entities import (
    WorkItem,
    User,
    SlaViolation,
    EscalationRecord,
    NotificationRequest,
)
from inquiry_sla.sla.domain.value_objects import (
    BusinessCalendar,
    BusinessPolicy,
    EscalationPolicy,
    SLACalculator,
    SlaConfig,
    SlaConfigDefinition,
    SlaConfigFile,
    as_utc,
)

__all__ = [
    # Entities
    "WorkItem",
    "User",
    "SlaViolation",
    "EscalationRecord",
    "NotificationRequest",
    # Value Objects & Services
    "BusinessCalendar",
    "BusinessPolicy",
    "EscalationPolicy",
    "SLACalculator",
    "SlaConfig",
    "SlaConfigDefinition",
    "SlaConfigFile",
    "as_utc",
]
