from datetime import timedelta

import pytest

from inquiry_sla.config import Priority, Role, WorkItemStatus
from inquiry_sla.sla.application import EscalationService, SLAReportingService

from tests.conftest import APP_ID, BASE_TIME

RANGE_START = BASE_TIME - timedelta(days=1)
RANGE_END = BASE_TIME + timedelta(days=1)


@pytest.mark.asyncio
async def test_metrics_without_inquiries_report_full_compliance(uow):
    metrics = await SLAReportingService(uow).get_compliance_metrics(APP_ID, RANGE_START, RANGE_END)

    assert metrics.total_items == 0
    assert metrics.violations == 0
    assert metrics.compliance_rate == 100.0
    assert metrics.average_response_hours == 0.0
    assert all(p.compliance_rate == 100.0 for p in metrics.per_priority.values())


@pytest.mark.asyncio
async def test_metrics_count_items_and_violations(uow, seed):
    breached = await seed.inquiry(priority=Priority.HIGH.value)
    await seed.violation(work_item_id=breached.id, violation_type="response_time")
    await seed.violation(work_item_id=breached.id, violation_type="escalation_time")
    await seed.inquiry(
        priority=Priority.HIGH.value,
        first_response_at=BASE_TIME + timedelta(hours=1),
    )
    await seed.inquiry(
        priority=Priority.LOW.value,
        status=WorkItemStatus.RESOLVED.value,
        first_response_at=BASE_TIME + timedelta(hours=3),
        updated_at=BASE_TIME + timedelta(hours=10),
    )
    # Outside the range and another application
    await seed.inquiry(created_at=BASE_TIME - timedelta(days=5))
    await seed.inquiry(application_id="another-app")

    metrics = await SLAReportingService(uow).get_compliance_metrics(APP_ID, RANGE_START, RANGE_END)

    assert metrics.total_items == 3
    assert metrics.compliant == 2
    assert metrics.violations == 2
    assert metrics.compliance_rate == pytest.approx(200 / 3)
    assert metrics.average_response_hours == pytest.approx(2.0)
    assert metrics.average_resolution_hours == pytest.approx(10.0)

    high = metrics.per_priority["high"]
    assert (high.total, high.compliant, high.violations) == (2, 1, 2)
    assert high.compliance_rate == pytest.approx(50.0)
    assert metrics.per_priority["low"].compliance_rate == 100.0
    assert metrics.per_priority["critical"].total == 0


@pytest.mark.asyncio
async def test_escalation_history_is_most_recent_first(uow, seed):
    inquiry = await seed.inquiry()
    await seed.violation(
        work_item_id=inquiry.id, violation_type="response_time",
        is_escalated=True, escalated_to_user_id="a", escalated_at=BASE_TIME + timedelta(hours=1),
    )
    await seed.violation(
        work_item_id=inquiry.id, violation_type="escalation_time",
        is_escalated=True, escalated_to_user_id="b", escalated_at=BASE_TIME + timedelta(hours=3),
    )
    await seed.violation(work_item_id=inquiry.id, violation_type="resolution_time")

    history = await SLAReportingService(uow).get_escalation_history(inquiry.id)

    assert [v.escalated_to_user_id for v in history] == ["b", "a"]


@pytest.mark.asyncio
async def test_history_includes_audit_record(uow, dispatcher, seed):
    await seed.user(Role.SYSTEM_ADMIN, id="root")
    inquiry = await seed.inquiry()
    violation = await seed.violation(work_item_id=inquiry.id)
    await EscalationService(uow, dispatcher).trigger_manual_escalation(
        violation.id, reason="Waiting on vendor", escalated_by="operator-1"
    )

    history = await SLAReportingService(uow).get_escalation_history(inquiry.id)

    assert len(history) == 1
    assert history[0].escalation.reason == "Waiting on vendor"
    assert history[0].escalation.escalated_by == "operator-1"


@pytest.mark.asyncio
async def test_escalation_stats_by_user_and_severity(uow, seed):
    inquiry = await seed.inquiry()
    other = await seed.inquiry()
    in_range = BASE_TIME + timedelta(hours=2)
    await seed.violation(
        work_item_id=inquiry.id, violation_type="response_time", severity="critical",
        is_escalated=True, escalated_to_user_id="lead", escalated_at=in_range,
        is_resolved=True, resolved_at=in_range + timedelta(hours=1),
    )
    await seed.violation(
        work_item_id=inquiry.id, violation_type="escalation_time", severity="minor",
        is_escalated=True, escalated_to_user_id="lead", escalated_at=in_range,
    )
    await seed.violation(
        work_item_id=other.id, violation_type="escalation_time", severity="minor",
        is_escalated=True, escalated_to_user_id="root", escalated_at=in_range,
    )
    await seed.violation(
        work_item_id=other.id, violation_type="response_time",
        is_escalated=True, escalated_to_user_id="root", escalated_at=BASE_TIME - timedelta(days=3),
    )

    stats = await SLAReportingService(uow).get_escalation_stats(RANGE_START, RANGE_END)

    assert stats.total_escalations == 3
    assert stats.resolved_escalations == 1
    assert stats.pending_escalations == 2
    assert stats.resolution_rate == pytest.approx(100 / 3)
    assert stats.by_user["lead"] == {"total": 2, "resolved": 1, "pending": 1}
    assert stats.by_user["root"] == {"total": 1, "resolved": 0, "pending": 1}
    assert stats.by_severity["minor"]["total"] == 2
    assert stats.by_severity["critical"]["resolved"] == 1
    assert stats.by_severity["major"]["total"] == 0


@pytest.mark.asyncio
async def test_escalation_stats_empty_range(uow):
    stats = await SLAReportingService(uow).get_escalation_stats(RANGE_START, RANGE_END)

    assert stats.total_escalations == 0
    assert stats.resolution_rate == 0.0
    assert stats.by_user == {}


@pytest.mark.asyncio
async def test_resolve_violations_closes_open_ones(uow, seed):
    inquiry = await seed.inquiry()
    await seed.violation(work_item_id=inquiry.id, violation_type="response_time")
    await seed.violation(work_item_id=inquiry.id, violation_type="resolution_time")
    service = SLAReportingService(uow)

    assert await service.resolve_violations(inquiry.id, BASE_TIME + timedelta(days=1)) == 2
    assert await service.resolve_violations(inquiry.id) == 0

    remaining = await service.list_violations({"work_item_id": inquiry.id, "is_resolved": False})
    assert remaining == []


@pytest.mark.asyncio
async def test_list_violations_filters_and_paginates(uow, seed):
    first = await seed.inquiry()
    second = await seed.inquiry()
    await seed.violation(work_item_id=first.id, violation_type="response_time", severity="major",
                         detected_at=BASE_TIME + timedelta(hours=1))
    await seed.violation(work_item_id=first.id, violation_type="escalation_time",
                         detected_at=BASE_TIME + timedelta(hours=2))
    await seed.violation(work_item_id=second.id, violation_type="response_time",
                         detected_at=BASE_TIME + timedelta(hours=3))
    service = SLAReportingService(uow)

    by_item = await service.list_violations({"work_item_id": first.id})
    assert [v.violation_type.value for v in by_item] == ["escalation_time", "response_time"]

    majors = await service.list_violations({"severity": "major"})
    assert len(majors) == 1

    page = await service.list_violations({}, limit=2, offset=1)
    assert [v.work_item_id for v in page] == [first.id, first.id]
