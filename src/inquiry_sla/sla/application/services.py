"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncContextManager, Callable, Dict, Iterable, List, Optional

from inquiry_sla.config import (
    PRIORITY_ORDER, Priority, Role, Severity, ViolationType
)
from inquiry_sla.core.exceptions import TargetNotFoundException
from inquiry_sla.shared.infrastructure.logging import get_logger, log_latency
from inquiry_sla.sla.domain import (
    EscalationRecord, SLACalculator, SlaConfig, SlaViolation, User, WorkItem, as_utc
)
from inquiry_sla.sla.application.notifications import NotificationDispatcher

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IWorkItemRepository(ABC):
    """Interface for inquiry data access (owned by the ticketing subsystem)."""

    # Ids of rows the last list_open skipped as invalid
    rejected_ids: List[str]

    @abstractmethod
    async def get_by_id(self, work_item_id: str) -> Optional[WorkItem]:
        """Get inquiry by ID."""

    @abstractmethod
    async def get_for_update(self, work_item_id: str) -> Optional[WorkItem]:
        """Fresh read of an inquiry, locked for the rest of the transaction."""

    @abstractmethod
    async def list_open(
        self,
        application_id: str,
        priority: Optional[Priority] = None
    ) -> List[WorkItem]:
        """List open inquiries of an application."""

    @abstractmethod
    async def list_created_between(
        self,
        application_id: str,
        start: datetime,
        end: datetime
    ) -> List[WorkItem]:
        """List inquiries of an application created within [start, end]."""

    @abstractmethod
    async def update_assignment(
        self,
        work_item_id: str,
        assigned_user_id: str,
        priority: Priority
    ) -> None:
        """Reassign an inquiry and set its priority in one update."""


class ISlaConfigRepository(ABC):
    """Interface for SLA configuration access (read-only to the engine)."""

    # Ids of rows the last list_active skipped as invalid
    rejected_ids: List[str]

    @abstractmethod
    async def list_active(self) -> List[SlaConfig]:
        """Get all active SLA configurations."""

    @abstractmethod
    async def get_by_id(self, config_id: str) -> Optional[SlaConfig]:
        """Get SLA configuration by ID."""


class IUserRepository(ABC):
    """Interface for user lookups used by escalation routing."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""

    @abstractmethod
    async def list_by_role(
        self,
        role: Role,
        application_id: Optional[str] = None
    ) -> List[User]:
        """List active users holding ``role``, optionally within one application."""


class IViolationRepository(ABC):
    """Interface for SLA violation and escalation-log data access."""

    @abstractmethod
    async def get_by_id(self, violation_id: str) -> Optional[SlaViolation]:
        """Get violation by ID, with its escalation record when present."""

    @abstractmethod
    async def exists(self, work_item_id: str, violation_type: ViolationType) -> bool:
        """Check whether a violation of this kind was already recorded."""

    @abstractmethod
    async def create(self, violation: SlaViolation) -> Optional[SlaViolation]:
        """
        Insert a violation unless one exists for (work_item_id, violation_type).

        Returns None when a concurrent writer recorded it first.
        """

    @abstractmethod
    async def mark_escalated(
        self,
        violation_id: str,
        target_user_id: str,
        escalated_at: datetime
    ) -> bool:
        """Flip is_escalated from false to true; False if it was already set."""

    @abstractmethod
    async def add_escalation_record(self, record: EscalationRecord) -> EscalationRecord:
        """Persist the escalation audit record."""

    @abstractmethod
    async def list_pending_escalation(
        self,
        violation_types: Iterable[ViolationType]
    ) -> List[SlaViolation]:
        """Unresolved, un-escalated violations of the given kinds."""

    @abstractmethod
    async def list_escalated_for_work_item(self, work_item_id: str) -> List[SlaViolation]:
        """Escalated violations of one inquiry, most recent first."""

    @abstractmethod
    async def list_escalated_between(self, start: datetime, end: datetime) -> List[SlaViolation]:
        """Violations escalated within [start, end]."""

    @abstractmethod
    async def list_for_work_items(self, work_item_ids: List[str]) -> List[SlaViolation]:
        """All violations recorded against the given inquiries."""

    @abstractmethod
    async def list(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[SlaViolation]:
        """List violations with filters, most recently detected first."""

    @abstractmethod
    async def resolve_for_work_item(self, work_item_id: str, resolved_at: datetime) -> int:
        """Mark every unresolved violation of an inquiry resolved; returns the count."""


class IUnitOfWork(ABC):
    """
    One transactional scope over the engine's repositories.

    Changes made through the repositories become visible to others only
    after ``commit``.
    """

    work_items: IWorkItemRepository
    sla_configs: ISlaConfigRepository
    users: IUserRepository
    violations: IViolationRepository

    @abstractmethod
    async def commit(self) -> None:
        """Commit pending changes."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending changes."""


UnitOfWorkFactory = Callable[[], AsyncContextManager[IUnitOfWork]]


# ========== Application Services ==========

@dataclass
class DetectionResult:
    """Outcome of one detection pass."""
    configs_checked: int = 0
    items_evaluated: int = 0
    violations: List[SlaViolation] = field(default_factory=list)
    errors: int = 0


class ViolationDetector:
    """
    Detects deadline breaches on open inquiries.

    Creates at most one violation per (inquiry, violation type); re-running
    over the same data creates nothing new.
    """

    def __init__(self, uow: IUnitOfWork, dispatcher: NotificationDispatcher):
        self._uow = uow
        self._dispatcher = dispatcher

    async def detect(self, current_time: Optional[datetime] = None) -> DetectionResult:
        """
        Evaluate every open inquiry against its active SLA configuration.

        Errors are contained per application and per inquiry so one bad
        record does not abort the sweep. Invalid configuration or inquiry
        rows are skipped by the repositories and counted as errors here.
        """
        current_time = as_utc(current_time or datetime.now(timezone.utc))
        result = DetectionResult()

        configs = await self._uow.sla_configs.list_active()
        result.errors += len(self._uow.sla_configs.rejected_ids)

        by_application: Dict[str, Dict[Priority, SlaConfig]] = {}
        for config in configs:
            by_application.setdefault(config.application_id, {})[config.priority_level] = config

        for application_id, app_configs in by_application.items():
            try:
                work_items = await self._uow.work_items.list_open(application_id)
            except Exception:
                logger.exception(
                    "Failed to load inquiries for application",
                    extra={"application_id": application_id}
                )
                await self._uow.rollback()
                result.errors += 1
                continue
            result.errors += len(self._uow.work_items.rejected_ids)

            unmonitored = [w.id for w in work_items if w.priority not in app_configs]
            if unmonitored:
                logger.warning(
                    "Open inquiries have no active SLA config for their priority",
                    extra={"application_id": application_id, "work_item_ids": unmonitored}
                )

            for priority, config in app_configs.items():
                result.configs_checked += 1
                for work_item in work_items:
                    if work_item.priority != priority:
                        continue
                    result.items_evaluated += 1
                    try:
                        created = await self.check_work_item(work_item, config, current_time)
                    except Exception:
                        logger.exception(
                            "SLA check failed for inquiry",
                            extra={"work_item_id": work_item.id, "sla_config_id": config.id}
                        )
                        await self._uow.rollback()
                        result.errors += 1
                        continue
                    result.violations.extend(created)

        return result

    def due_checks(self, work_item: WorkItem) -> List[ViolationType]:
        """Deadline kinds that still apply to an inquiry."""
        if not work_item.is_open:
            return []
        checks = []
        if not work_item.has_any_response:
            checks.append(ViolationType.RESPONSE_TIME)
        if not work_item.is_resolved:
            checks.append(ViolationType.RESOLUTION_TIME)
        checks.append(ViolationType.ESCALATION_TIME)
        return checks

    async def check_work_item(
        self,
        work_item: WorkItem,
        config: SlaConfig,
        current_time: datetime
    ) -> List[SlaViolation]:
        """Run every applicable check for one inquiry; returns new violations."""
        created = []
        for violation_type in self.due_checks(work_item):
            violation = await self._check_deadline(work_item, config, violation_type, current_time)
            if violation is not None:
                created.append(violation)
        return created

    async def _check_deadline(
        self,
        work_item: WorkItem,
        config: SlaConfig,
        violation_type: ViolationType,
        current_time: datetime
    ) -> Optional[SlaViolation]:
        expected_time = config.expected_time(work_item.created_at, violation_type)
        if not SLACalculator.is_breached(expected_time, current_time):
            return None

        if await self._uow.violations.exists(work_item.id, violation_type):
            return None

        delay_hours = SLACalculator.delay_hours(expected_time, current_time)
        violation = await self._uow.violations.create(SlaViolation(
            id=None,
            work_item_id=work_item.id,
            sla_config_id=config.id,
            violation_type=violation_type,
            expected_time=expected_time,
            detected_at=current_time,
            delay_hours=delay_hours,
            severity=SLACalculator.classify_severity(delay_hours),
        ))
        if violation is None:
            # Recorded by a concurrent writer between the check and the insert
            return None

        await self._uow.commit()

        logger.warning(
            "SLA violation detected",
            extra={
                "violation_id": violation.id,
                "work_item_id": work_item.id,
                "violation_type": violation_type.value,
                "delay_hours": round(delay_hours, 2),
                "severity": violation.severity.value,
            }
        )

        await self._dispatcher.violation_detected(violation, work_item)
        return violation


@dataclass
class SweepSummary:
    """Counters for one full sweep."""
    started_at: datetime
    configs_checked: int = 0
    items_evaluated: int = 0
    violations_created: int = 0
    escalations_performed: int = 0
    escalations_skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses and logs."""
        return {
            "started_at": self.started_at.isoformat(),
            "configs_checked": self.configs_checked,
            "items_evaluated": self.items_evaluated,
            "violations_created": self.violations_created,
            "escalations_performed": self.escalations_performed,
            "escalations_skipped": self.escalations_skipped,
            "errors": self.errors,
        }


class SLAMonitor:
    """
    Runs the periodic sweep: detection followed by automatic escalation.

    Long-lived; sweeps never overlap. A sweep requested while another is
    running is skipped and returns None.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        dispatcher: NotificationDispatcher,
        auto_escalate: bool = True,
        auto_escalate_types: Iterable[str] = (ViolationType.ESCALATION_TIME.value,)
    ):
        self._uow_factory = uow_factory
        self._dispatcher = dispatcher
        self._auto_escalate = auto_escalate
        self._auto_escalate_types = [ViolationType(t) for t in auto_escalate_types]
        self._lock = asyncio.Lock()

    @property
    def is_sweeping(self) -> bool:
        return self._lock.locked()

    async def run_sweep(self, current_time: Optional[datetime] = None) -> Optional[SweepSummary]:
        """Run one sweep unless one is already in progress."""
        if self._lock.locked():
            logger.warning("SLA sweep already in progress, skipping this tick")
            return None

        async with self._lock:
            current_time = as_utc(current_time or datetime.now(timezone.utc))
            summary = SweepSummary(started_at=current_time)

            with log_latency(logger, "sla_sweep"):
                async with self._uow_factory() as uow:
                    detection = await ViolationDetector(uow, self._dispatcher).detect(current_time)
                    summary.configs_checked = detection.configs_checked
                    summary.items_evaluated = detection.items_evaluated
                    summary.violations_created = len(detection.violations)
                    summary.errors = detection.errors

                    if self._auto_escalate and self._auto_escalate_types:
                        await self._escalate_pending(uow, summary, current_time)

            logger.info("SLA sweep completed", extra=summary.to_dict())
            return summary

    async def _escalate_pending(
        self,
        uow: IUnitOfWork,
        summary: SweepSummary,
        current_time: datetime
    ) -> None:
        from inquiry_sla.sla.application.escalation import EscalationService

        escalation_service = EscalationService(uow, self._dispatcher)
        pending = await uow.violations.list_pending_escalation(self._auto_escalate_types)

        for violation in pending:
            try:
                result = await escalation_service.auto_escalate(violation.id, current_time)
            except TargetNotFoundException:
                # Left un-escalated for the next sweep or an operator
                summary.escalations_skipped += 1
                continue
            except Exception:
                logger.exception(
                    "Automatic escalation failed",
                    extra={"violation_id": violation.id}
                )
                summary.errors += 1
                continue

            if result is not None:
                summary.escalations_performed += 1


# ========== Reporting ==========

@dataclass
class PriorityCompliance:
    total: int = 0
    compliant: int = 0
    violations: int = 0
    compliance_rate: float = 100.0


@dataclass
class ComplianceMetrics:
    application_id: str
    start_date: datetime
    end_date: datetime
    total_items: int
    compliant: int
    violations: int
    compliance_rate: float
    average_response_hours: float
    average_resolution_hours: float
    per_priority: Dict[str, PriorityCompliance]


@dataclass
class EscalationStats:
    start_date: datetime
    end_date: datetime
    total_escalations: int
    resolved_escalations: int
    pending_escalations: int
    resolution_rate: float
    by_user: Dict[str, Dict[str, int]]
    by_severity: Dict[str, Dict[str, int]]


def _compliance_rate(total: int, compliant: int) -> float:
    return (compliant / total * 100) if total > 0 else 100.0


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class SLAReportingService:
    """Read-only aggregation of violations and escalations."""

    def __init__(self, uow: IUnitOfWork):
        self._uow = uow

    async def get_compliance_metrics(
        self,
        application_id: str,
        start_date: datetime,
        end_date: datetime
    ) -> ComplianceMetrics:
        """
        Compliance statistics for inquiries created within a date range.

        An inquiry is compliant when no violation of any kind was recorded
        against it.
        """
        start_date, end_date = as_utc(start_date), as_utc(end_date)
        work_items = await self._uow.work_items.list_created_between(
            application_id, start_date, end_date
        )
        violations = await self._uow.violations.list_for_work_items(
            [item.id for item in work_items]
        )

        violation_counts: Dict[str, int] = {}
        for violation in violations:
            violation_counts[violation.work_item_id] = violation_counts.get(violation.work_item_id, 0) + 1

        per_priority = {p.value: PriorityCompliance() for p in PRIORITY_ORDER}
        for item in work_items:
            stats = per_priority[Priority(item.priority).value]
            stats.total += 1
            stats.violations += violation_counts.get(item.id, 0)
            if item.id not in violation_counts:
                stats.compliant += 1
        for stats in per_priority.values():
            stats.compliance_rate = _compliance_rate(stats.total, stats.compliant)

        total = len(work_items)
        compliant = sum(1 for item in work_items if item.id not in violation_counts)

        return ComplianceMetrics(
            application_id=application_id,
            start_date=start_date,
            end_date=end_date,
            total_items=total,
            compliant=compliant,
            violations=len(violations),
            compliance_rate=_compliance_rate(total, compliant),
            average_response_hours=_average(
                [item.response_hours for item in work_items if item.response_hours is not None]
            ),
            average_resolution_hours=_average(
                [item.resolution_hours for item in work_items if item.resolution_hours is not None]
            ),
            per_priority=per_priority,
        )

    async def get_escalation_history(self, work_item_id: str) -> List[SlaViolation]:
        """Escalated violations of one inquiry, most recent first."""
        return await self._uow.violations.list_escalated_for_work_item(work_item_id)

    async def get_escalation_stats(self, start_date: datetime, end_date: datetime) -> EscalationStats:
        escalations = await self._uow.violations.list_escalated_between(
            as_utc(start_date), as_utc(end_date)
        )

        by_user: Dict[str, Dict[str, int]] = {}
        by_severity: Dict[str, Dict[str, int]] = {
            s.value: {"total": 0, "resolved": 0, "pending": 0} for s in Severity
        }
        for violation in escalations:
            bucket_key = "resolved" if violation.is_resolved else "pending"
            user_stats = by_user.setdefault(
                violation.escalated_to_user_id or "unknown",
                {"total": 0, "resolved": 0, "pending": 0}
            )
            severity_stats = by_severity[Severity(violation.severity).value]
            for stats in (user_stats, severity_stats):
                stats["total"] += 1
                stats[bucket_key] += 1

        total = len(escalations)
        resolved = sum(1 for v in escalations if v.is_resolved)

        return EscalationStats(
            start_date=as_utc(start_date),
            end_date=as_utc(end_date),
            total_escalations=total,
            resolved_escalations=resolved,
            pending_escalations=total - resolved,
            resolution_rate=(resolved / total * 100) if total > 0 else 0.0,
            by_user=by_user,
            by_severity=by_severity,
        )

    async def list_violations(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[SlaViolation]:
        return await self._uow.violations.list(filters, limit=limit, offset=offset)

    async def get_violation(self, violation_id: str) -> Optional[SlaViolation]:
        return await self._uow.violations.get_by_id(violation_id)

    async def resolve_violations(
        self,
        work_item_id: str,
        resolved_at: Optional[datetime] = None
    ) -> int:
        """Close out every open violation of an inquiry that has been resolved."""
        count = await self._uow.violations.resolve_for_work_item(
            work_item_id, as_utc(resolved_at or datetime.now(timezone.utc))
        )
        await self._uow.commit()
        logger.info(
            "SLA violations resolved",
            extra={"work_item_id": work_item_id, "resolved_count": count}
        )
        return count
