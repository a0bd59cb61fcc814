"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring and escalation endpoints.

Controllers are thin - they delegate to application services. Typed
application exceptions propagate to the exception handlers registered in
``main.py``, which map them to HTTP status codes.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from inquiry_sla.core.exceptions import ValidationException, ViolationNotFoundException
from inquiry_sla.infrastructure.database import get_session
from inquiry_sla.shared.infrastructure.logging import get_logger
from inquiry_sla.sla.application import (
    ComplianceMetricsResponse,
    EscalationResultResponse,
    EscalationService,
    EscalationStatsResponse,
    ManualEscalationRequest,
    NotificationDispatcher,
    ResolveViolationsResponse,
    SLAMonitor,
    SLAReportingService,
    SlaConfigResponse,
    SweepSummaryResponse,
    ViolationQueryDTO,
    ViolationResponse,
)
from inquiry_sla.sla.infrastructure import SQLAlchemyUnitOfWork

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Example payloads for Swagger ==========

ESCALATION_REQUEST_EXAMPLE = {
    "escalate_to_user_id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
    "reason": "Customer is blocked on a production outage",
    "notes": "Customer called twice this morning",
    "escalated_by": "2f1b8a1e-3c4d-4e5f-8a9b-0c1d2e3f4a5b"
}

METRICS_RESPONSE_EXAMPLE = {
    "application_id": "app-1",
    "start_date": "2024-01-01T00:00:00Z",
    "end_date": "2024-01-31T23:59:59Z",
    "total_items": 40,
    "compliant": 34,
    "violations": 9,
    "compliance_rate": 85.0,
    "average_response_hours": 1.75,
    "average_resolution_hours": 26.4,
    "per_priority": {
        "high": {"total": 10, "compliant": 7, "violations": 4, "compliance_rate": 70.0}
    }
}


# ========== Dependencies ==========

def get_unit_of_work(
    request: Request,
    session: AsyncSession = Depends(get_session)
) -> SQLAlchemyUnitOfWork:
    """Unit of work over the request session, honouring the configured SLA config source."""
    config_repository = getattr(request.app.state, "sla_config_repository", None)
    return SQLAlchemyUnitOfWork(session, config_repository)


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    """Get the application-wide notification dispatcher."""
    dispatcher = getattr(request.app.state, "notification_dispatcher", None)
    if dispatcher is None:
        raise RuntimeError("Notification dispatcher not initialized")
    return dispatcher


def get_sla_monitor(request: Request) -> SLAMonitor:
    """Get the long-lived SLA monitor."""
    monitor = getattr(request.app.state, "sla_monitor", None)
    if monitor is None:
        raise RuntimeError("SLA monitor not initialized")
    return monitor


def get_escalation_service(
    uow: SQLAlchemyUnitOfWork = Depends(get_unit_of_work),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
) -> EscalationService:
    return EscalationService(uow, dispatcher)


def get_reporting_service(
    uow: SQLAlchemyUnitOfWork = Depends(get_unit_of_work)
) -> SLAReportingService:
    return SLAReportingService(uow)


def _validate_range(start_date: datetime, end_date: datetime) -> None:
    if end_date < start_date:
        raise ValidationException(
            "end_date cannot be before start_date",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
        )


# ========== Route Handlers ==========

@router.post(
    "/violations/{violation_id}/escalate",
    response_model=EscalationResultResponse,
    summary="Escalate an SLA violation",
    description="""
    Manually escalate a violation to another user.

    The inquiry is reassigned to the target and its priority is raised one
    tier (`low -> medium -> high -> critical`, capped at `critical`).
    When `escalate_to_user_id` is omitted the target is resolved through the
    fallback chain: a senior admin, then the application's admins, then
    system admins.

    **Errors**:
    - `404 violation_not_found`: unknown violation
    - `409 already_escalated`: the violation was escalated before (terminal)
    - `422 target_not_found`: target user unknown/inactive or no target available
    """,
    responses={
        404: {"description": "Violation not found"},
        409: {"description": "Violation already escalated"},
        422: {"description": "Escalation target not found"},
    },
    openapi_extra={
        "requestBody": {"content": {"application/json": {"example": ESCALATION_REQUEST_EXAMPLE}}}
    }
)
async def escalate_violation(
    violation_id: str,
    request: ManualEscalationRequest,
    escalation_service: EscalationService = Depends(get_escalation_service)
):
    result = await escalation_service.trigger_manual_escalation(
        violation_id,
        reason=request.reason,
        target_user_id=request.escalate_to_user_id,
        notes=request.notes,
        escalated_by=request.escalated_by,
    )
    return EscalationResultResponse.from_result(result)


@router.get(
    "/inquiries/{work_item_id}/escalations",
    response_model=List[ViolationResponse],
    summary="Get escalation history of an inquiry",
    description="Escalated violations of the inquiry, most recent first, with their escalation records."
)
async def get_escalation_history(
    work_item_id: str,
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    violations = await reporting.get_escalation_history(work_item_id)
    return [ViolationResponse.from_domain(v) for v in violations]


@router.get(
    "/metrics",
    response_model=ComplianceMetricsResponse,
    summary="Get SLA compliance metrics",
    description="""
    Compliance statistics for inquiries of one application created within a
    date range.

    An inquiry is compliant when no violation was recorded against it. The
    compliance rate is 100 when there are no inquiries in the range.
    """,
    responses={
        200: {
            "description": "Compliance metrics",
            "content": {"application/json": {"example": METRICS_RESPONSE_EXAMPLE}}
        }
    }
)
async def get_compliance_metrics(
    application_id: str = Query(..., min_length=1, description="Application to report on"),
    start_date: datetime = Query(..., description="Range start (inclusive)"),
    end_date: datetime = Query(..., description="Range end (inclusive)"),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    _validate_range(start_date, end_date)
    metrics = await reporting.get_compliance_metrics(application_id, start_date, end_date)
    return ComplianceMetricsResponse.from_metrics(metrics)


@router.get(
    "/escalations/stats",
    response_model=EscalationStatsResponse,
    summary="Get escalation statistics",
    description="Escalations performed within a date range, grouped by target user and severity."
)
async def get_escalation_stats(
    start_date: datetime = Query(..., description="Range start (inclusive)"),
    end_date: datetime = Query(..., description="Range end (inclusive)"),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    _validate_range(start_date, end_date)
    stats = await reporting.get_escalation_stats(start_date, end_date)
    return EscalationStatsResponse.from_stats(stats)


@router.get(
    "/violations",
    response_model=List[ViolationResponse],
    summary="List SLA violations",
    description="""
    List violations, most recently detected first.

    **Query Parameters:**
    - `work_item_id`: Filter by inquiry
    - `violation_type`: `response_time`, `resolution_time`, `escalation_time`
    - `severity`: `minor`, `major`, `critical`
    - `is_escalated`, `is_resolved`: Filter by state
    - `limit` / `offset`: Pagination
    """
)
async def list_violations(
    query: ViolationQueryDTO = Depends(),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    violations = await reporting.list_violations(query.filters(), limit=query.limit, offset=query.offset)
    return [ViolationResponse.from_domain(v) for v in violations]


@router.get(
    "/violations/{violation_id}",
    response_model=ViolationResponse,
    summary="Get an SLA violation",
    responses={404: {"description": "Violation not found"}}
)
async def get_violation(
    violation_id: str,
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    violation = await reporting.get_violation(violation_id)
    if violation is None:
        raise ViolationNotFoundException(violation_id)
    return ViolationResponse.from_domain(violation)


@router.post(
    "/inquiries/{work_item_id}/violations/resolve",
    response_model=ResolveViolationsResponse,
    summary="Resolve the violations of an inquiry",
    description="Marks every open violation of the inquiry as resolved. Called when the inquiry closes."
)
async def resolve_violations(
    work_item_id: str,
    resolved_at: Optional[datetime] = Query(None, description="Resolution time, defaults to now"),
    reporting: SLAReportingService = Depends(get_reporting_service)
):
    count = await reporting.resolve_violations(work_item_id, resolved_at)
    return ResolveViolationsResponse(work_item_id=work_item_id, resolved_count=count)


@router.get(
    "/configs",
    response_model=List[SlaConfigResponse],
    summary="List active SLA configurations"
)
async def list_sla_configs(
    uow: SQLAlchemyUnitOfWork = Depends(get_unit_of_work)
):
    configs = await uow.sla_configs.list_active()
    return [SlaConfigResponse.from_domain(c) for c in configs]


@router.post(
    "/sweep",
    response_model=SweepSummaryResponse,
    summary="Run an SLA sweep now",
    description="""
    Run violation detection (and auto-escalation when enabled) immediately.

    Returns `skipped: true` when a sweep is already in progress.
    """
)
async def trigger_sweep(
    monitor: SLAMonitor = Depends(get_sla_monitor)
):
    summary = await monitor.run_sweep()
    if summary is None:
        return SweepSummaryResponse(skipped=True)
    return SweepSummaryResponse(**summary.to_dict())


# Export router for inclusion in main app
sla_router = router
