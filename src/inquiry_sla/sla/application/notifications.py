"""
SLA Notification Dispatch
==========================

Builds outbound notification requests and hands them to the external
notifier. Delivery is best effort: failures are logged here and never
reach the caller.
"""

from abc import ABC, abstractmethod

from inquiry_sla.core.exceptions import NotificationDispatchException
from inquiry_sla.shared.infrastructure.logging import get_logger
from inquiry_sla.sla.domain import (
    EscalationRecord, NotificationRequest, SlaViolation, User, WorkItem
)

logger = get_logger(__name__)

VIOLATION_RECIPIENTS = ["role:admin", "role:support"]


class INotifier(ABC):
    """Interface for the external notification transport."""

    @abstractmethod
    async def send(self, request: NotificationRequest) -> bool:
        """
        Deliver a notification request.

        Returns False when delivery was skipped (e.g. transport not
        configured); raises NotificationDispatchException on failure.
        """


def _violation_metadata(violation: SlaViolation) -> dict:
    return {
        "violation_id": violation.id,
        "work_item_id": violation.work_item_id,
        "violation_type": violation.violation_type.value,
        "severity": violation.severity.value,
        "delay_hours": round(violation.delay_hours, 2),
    }


def build_violation_notification(
    violation: SlaViolation,
    work_item: WorkItem
) -> NotificationRequest:
    """Notification for a newly detected violation, sent to admins and support."""
    metadata = _violation_metadata(violation)
    metadata["application_id"] = work_item.application_id
    return NotificationRequest(
        kind="sla_violation",
        recipients=list(VIOLATION_RECIPIENTS),
        subject=f"SLA violation on inquiry {work_item.id} ({violation.violation_type.value})",
        body=(
            f"Inquiry {work_item.id} missed its {violation.violation_type.value} deadline "
            f"({violation.expected_time.isoformat()}) by {violation.delay_hours:.2f} hours. "
            f"Severity: {violation.severity.value}."
        ),
        priority=work_item.priority,
        metadata=metadata,
    )


def build_escalation_notification(
    violation: SlaViolation,
    work_item: WorkItem,
    target: User,
    record: EscalationRecord,
    frontend_url: str = ""
) -> NotificationRequest:
    """Notification for the user an inquiry was escalated to."""
    metadata = _violation_metadata(violation)
    metadata.update({
        "reason": record.reason,
        "notes": record.notes,
        "escalated_to_user_id": target.id,
        "escalated_by": record.escalated_by,
    })

    lines = [
        f"Inquiry {work_item.id} has been escalated to you.",
        f"Violation: {violation.violation_type.value} ({violation.severity.value}), "
        f"{violation.delay_hours:.2f} hours late.",
        f"Priority: {record.previous_priority.value} -> {record.new_priority.value}",
        f"Reason: {record.reason}",
    ]
    if work_item.title:
        lines.insert(1, f"Subject: {work_item.title[:200]}")
    if record.notes:
        lines.append(f"Notes: {record.notes}")
    if frontend_url:
        lines.append(f"{frontend_url.rstrip('/')}/inquiries/{work_item.id}")

    return NotificationRequest(
        kind="escalation",
        recipients=[target.email],
        subject=f"Escalation: inquiry {work_item.id} ({violation.severity.value})",
        body="\n".join(lines),
        priority=record.new_priority,
        metadata=metadata,
    )


class NotificationDispatcher:
    """
    Fire-and-forget handoff to the notifier.

    Never raises: an escalation or violation that is already committed
    must not be retried because a message could not be delivered.
    """

    def __init__(self, notifier: INotifier, frontend_url: str = ""):
        self._notifier = notifier
        self._frontend_url = frontend_url

    async def enqueue(self, request: NotificationRequest) -> bool:
        try:
            sent = await self._notifier.send(request)
        except NotificationDispatchException as e:
            logger.error(
                "Notification dispatch failed",
                extra={"kind": request.kind, "error": e.message, **request.metadata}
            )
            return False
        except Exception as e:
            logger.error(
                "Notification dispatch failed unexpectedly",
                extra={"kind": request.kind, "error": str(e), **request.metadata}
            )
            return False

        if not sent:
            logger.debug("Notification skipped", extra={"kind": request.kind})
        return sent

    async def violation_detected(self, violation: SlaViolation, work_item: WorkItem) -> bool:
        return await self.enqueue(build_violation_notification(violation, work_item))

    async def escalated(
        self,
        violation: SlaViolation,
        work_item: WorkItem,
        target: User,
        record: EscalationRecord
    ) -> bool:
        return await self.enqueue(build_escalation_notification(
            violation, work_item, target, record, self._frontend_url
        ))
