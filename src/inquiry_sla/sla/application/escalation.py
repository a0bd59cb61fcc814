"""
SLA Escalation Services
========================

Target resolution and the escalation state transition.

Both the manual (operator) and the automatic (sweep) paths go through
``EscalationService._execute`` so they share one idempotency guard.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from inquiry_sla.config import AUTO_ESCALATION_REASON, Role
from inquiry_sla.core.exceptions import (
    AlreadyEscalatedException,
    ResourceNotFoundException,
    TargetNotFoundException,
    ViolationNotFoundException,
)
from inquiry_sla.shared.infrastructure.logging import get_logger
from inquiry_sla.sla.application.notifications import NotificationDispatcher
from inquiry_sla.sla.application.services import IUnitOfWork, IUserRepository
from inquiry_sla.sla.domain import (
    EscalationPolicy, EscalationRecord, SLACalculator, SlaViolation, User, WorkItem, as_utc
)

logger = get_logger(__name__)


@dataclass
class EscalationResult:
    """Outcome of a successful escalation."""
    violation: SlaViolation
    record: EscalationRecord
    target: User


class EscalationTargetResolver:
    """
    Picks who an inquiry is escalated to.

    Fallback chain:
    1. an administrative user outranking the current assignee
    2. the most senior admin of the inquiry's application
    3. the most senior system admin

    Someone other than the assignee is preferred at every tier. When the
    assignee is already the last admin in the chain, the inquiry stays
    with them so the escalation still raises its priority.
    """

    def __init__(self, users: IUserRepository):
        self._users = users

    async def resolve(self, work_item: WorkItem) -> Optional[User]:
        """Return the next responsible user, or None when the chain is exhausted."""
        assignee_id = work_item.assigned_user_id

        if assignee_id:
            assignee = await self._users.get_by_id(assignee_id)
            assignee_role = Role(assignee.role) if assignee else Role.CONTRIBUTOR
            candidates = await self._users.list_by_role(Role.ADMIN)
            target = EscalationPolicy.most_senior(
                EscalationPolicy.elevated_over(assignee_role, candidates),
                exclude_user_id=assignee_id,
            )
            if target:
                return target

        app_admins = await self._users.list_by_role(Role.ADMIN, work_item.application_id)
        target = EscalationPolicy.most_senior(app_admins, exclude_user_id=assignee_id)
        if target:
            return target

        system_admins = await self._users.list_by_role(Role.SYSTEM_ADMIN)
        target = EscalationPolicy.most_senior(system_admins, exclude_user_id=assignee_id)
        if target:
            return target

        # Only the assignee is left
        return EscalationPolicy.most_senior(app_admins) or EscalationPolicy.most_senior(system_admins)


class EscalationService:
    """
    Executes escalations.

    The violation update, the audit record and the inquiry reassignment
    commit together. Notification follows the commit and never undoes it.
    """

    def __init__(self, uow: IUnitOfWork, dispatcher: NotificationDispatcher):
        self._uow = uow
        self._dispatcher = dispatcher
        self._resolver = EscalationTargetResolver(uow.users)

    async def trigger_manual_escalation(
        self,
        violation_id: str,
        reason: str,
        target_user_id: Optional[str] = None,
        notes: Optional[str] = None,
        escalated_by: Optional[str] = None,
    ) -> EscalationResult:
        """
        Escalate a violation on an operator's request.

        Raises:
            ViolationNotFoundException: No such violation
            AlreadyEscalatedException: The violation was escalated before
            TargetNotFoundException: Target user unknown/inactive, or no
                target could be resolved
        """
        violation = await self._uow.violations.get_by_id(violation_id)
        if violation is None:
            raise ViolationNotFoundException(violation_id)
        if not violation.can_escalate:
            raise AlreadyEscalatedException(violation_id)

        work_item = await self._load_work_item(violation)

        if target_user_id:
            target = await self._uow.users.get_by_id(target_user_id)
            if target is None or not target.is_active:
                raise TargetNotFoundException(violation_id, target_user_id)
        else:
            target = await self._resolver.resolve(work_item)
            if target is None:
                raise TargetNotFoundException(violation_id)

        result = await self._execute(
            violation, work_item, target,
            reason=reason, notes=notes, escalated_by=escalated_by,
        )
        if result is None:
            # Lost the race to a concurrent escalation
            raise AlreadyEscalatedException(violation_id)
        return result

    async def auto_escalate(
        self,
        violation_id: str,
        current_time: Optional[datetime] = None
    ) -> Optional[EscalationResult]:
        """
        Escalate a violation from the sweep.

        Returns None when the violation is already escalated or its inquiry
        is no longer open. Raises TargetNotFoundException when the fallback
        chain is exhausted; the violation then stays un-escalated.
        """
        violation = await self._uow.violations.get_by_id(violation_id)
        if violation is None:
            raise ViolationNotFoundException(violation_id)
        if not violation.can_escalate:
            return None

        work_item = await self._load_work_item(violation)
        if not work_item.is_open:
            logger.info(
                "Inquiry is no longer open, skipping escalation",
                extra={
                    "violation_id": violation.id,
                    "work_item_id": work_item.id,
                    "status": work_item.status.value,
                }
            )
            return None

        target = await self._resolver.resolve(work_item)
        if target is None:
            logger.warning(
                "No escalation target available",
                extra={
                    "violation_id": violation.id,
                    "work_item_id": work_item.id,
                    "application_id": work_item.application_id,
                }
            )
            raise TargetNotFoundException(violation.id)

        return await self._execute(
            violation, work_item, target,
            reason=AUTO_ESCALATION_REASON,
            current_time=current_time,
        )

    async def _load_work_item(self, violation: SlaViolation) -> WorkItem:
        work_item = await self._uow.work_items.get_by_id(violation.work_item_id)
        if work_item is None:
            raise ResourceNotFoundException("Inquiry", violation.work_item_id)
        return work_item

    async def _execute(
        self,
        violation: SlaViolation,
        work_item: WorkItem,
        target: User,
        reason: str,
        notes: Optional[str] = None,
        escalated_by: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Optional[EscalationResult]:
        escalated_at = as_utc(current_time or datetime.now(timezone.utc))

        try:
            claimed = await self._uow.violations.mark_escalated(
                violation.id, target.id, escalated_at
            )
            if not claimed:
                await self._uow.rollback()
                logger.info(
                    "Violation already escalated, skipping",
                    extra={"violation_id": violation.id}
                )
                return None

            # Priority and assignee as they are now, not as first read
            work_item = await self._uow.work_items.get_for_update(work_item.id)
            if work_item is None:
                raise ResourceNotFoundException("Inquiry", violation.work_item_id)
            previous_priority = work_item.priority
            new_priority = SLACalculator.promote_priority(previous_priority)

            await self._uow.work_items.update_assignment(work_item.id, target.id, new_priority)
            record = await self._uow.violations.add_escalation_record(EscalationRecord(
                violation_id=violation.id,
                work_item_id=work_item.id,
                from_user_id=work_item.assigned_user_id,
                to_user_id=target.id,
                reason=reason,
                notes=notes,
                escalated_by=escalated_by,
                escalated_at=escalated_at,
                previous_priority=previous_priority,
                new_priority=new_priority,
            ))
            await self._uow.commit()
        except Exception:
            await self._uow.rollback()
            raise

        violation.mark_escalated(target.id, escalated_at)
        violation.escalation = record

        logger.info(
            "Violation escalated",
            extra={
                "violation_id": violation.id,
                "work_item_id": work_item.id,
                "from_user_id": work_item.assigned_user_id,
                "to_user_id": target.id,
                "previous_priority": previous_priority.value,
                "new_priority": new_priority.value,
                "automatic": record.is_automatic,
            }
        )

        await self._dispatcher.escalated(violation, work_item, target, record)
        return EscalationResult(violation=violation, record=record, target=target)
