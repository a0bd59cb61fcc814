"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Detection sweep, escalation and reporting
- Notifications: Outbound notification requests and their dispatch
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from inquiry_sla.sla.application.dto import (
    ManualEscalationRequest,
    DateRangeQuery,
    ViolationQueryDTO,
    ViolationResponse,
    EscalationRecordResponse,
    EscalationResultResponse,
    ComplianceMetricsResponse,
    EscalationStatsResponse,
    SweepSummaryResponse,
    SlaConfigResponse,
    ResolveViolationsResponse,
)
from inquiry_sla.sla.application.notifications import (
    INotifier,
    NotificationDispatcher,
)
from inquiry_sla.sla.application.services import (
    SLAMonitor,
    SLAReportingService,
    SweepSummary,
    ViolationDetector,
    IUnitOfWork,
    IWorkItemRepository,
    ISlaConfigRepository,
    IUserRepository,
    IViolationRepository,
)
from inquiry_sla.sla.application.escalation import (
    EscalationResult,
    EscalationService,
    EscalationTargetResolver,
)

__all__ = [
    # DTOs
    "ManualEscalationRequest",
    "DateRangeQuery",
    "ViolationQueryDTO",
    "ViolationResponse",
    "EscalationRecordResponse",
    "EscalationResultResponse",
    "ComplianceMetricsResponse",
    "EscalationStatsResponse",
    "SweepSummaryResponse",
    "SlaConfigResponse",
    "ResolveViolationsResponse",
    # Notifications
    "INotifier",
    "NotificationDispatcher",
    # Services
    "SLAMonitor",
    "SLAReportingService",
    "SweepSummary",
    "ViolationDetector",
    "EscalationResult",
    "EscalationService",
    "EscalationTargetResolver",
    # Repository Interfaces
    "IUnitOfWork",
    "IWorkItemRepository",
    "ISlaConfigRepository",
    "IUserRepository",
    "IViolationRepository",
]
