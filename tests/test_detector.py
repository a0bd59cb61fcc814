import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from inquiry_sla.config import Priority, Severity, ViolationType
from inquiry_sla.sla.application import SLAMonitor, ViolationDetector
from inquiry_sla.sla.infrastructure import sqlalchemy_uow_factory
from inquiry_sla.sla.infrastructure.models import SlaViolationModel

from tests.conftest import BASE_TIME


async def _violation_rows(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(SlaViolationModel).order_by(SlaViolationModel.violation_type))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_response_deadline_breach_creates_one_minor_violation(uow, dispatcher, notifier, seed, session_factory):
    await seed.config(response_time_hours=4, resolution_time_hours=48, escalation_time_hours=24)
    inquiry = await seed.inquiry()

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=5))

    assert len(result.violations) == 1
    violation = result.violations[0]
    assert violation.work_item_id == inquiry.id
    assert violation.violation_type == ViolationType.RESPONSE_TIME
    assert violation.delay_hours == pytest.approx(1.0)
    assert violation.severity == Severity.MINOR
    assert violation.expected_time == BASE_TIME + timedelta(hours=4)

    rows = await _violation_rows(session_factory)
    assert len(rows) == 1

    sent = notifier.of_kind("sla_violation")
    assert len(sent) == 1
    assert sent[0].metadata["work_item_id"] == inquiry.id
    assert sent[0].metadata["violation_type"] == "response_time"
    assert sent[0].metadata["delay_hours"] == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_repeated_sweeps_are_idempotent(uow, dispatcher, notifier, seed, session_factory):
    await seed.config(response_time_hours=1, resolution_time_hours=2, escalation_time_hours=3)
    await seed.inquiry()
    await seed.inquiry()

    detector = ViolationDetector(uow, dispatcher)
    first = await detector.detect(BASE_TIME + timedelta(hours=4))
    second = await detector.detect(BASE_TIME + timedelta(hours=5))
    third = await detector.detect(BASE_TIME + timedelta(hours=30))

    assert len(first.violations) == 6
    assert second.violations == []
    assert third.violations == []
    assert len(await _violation_rows(session_factory)) == 6
    assert len(notifier.of_kind("sla_violation")) == 6


@pytest.mark.asyncio
async def test_responded_item_only_checks_resolution_and_escalation(uow, dispatcher, seed):
    await seed.config(response_time_hours=1, resolution_time_hours=2, escalation_time_hours=3)
    await seed.inquiry(first_response_at=BASE_TIME + timedelta(minutes=30))

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=6))

    assert sorted(v.violation_type.value for v in result.violations) == ["escalation_time", "resolution_time"]


@pytest.mark.asyncio
async def test_only_open_items_of_matching_priority_are_checked(uow, dispatcher, seed):
    await seed.config(priority_level=Priority.HIGH.value)
    await seed.inquiry(status="resolved")
    await seed.inquiry(priority=Priority.LOW.value)
    await seed.inquiry(application_id="another-app")
    matching = await seed.inquiry()

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=5))

    assert [v.work_item_id for v in result.violations] == [matching.id]
    assert result.items_evaluated == 1


@pytest.mark.asyncio
async def test_inactive_config_is_ignored(uow, dispatcher, seed):
    await seed.config(is_active=False)
    await seed.inquiry()

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(days=10))

    assert result.configs_checked == 0
    assert result.violations == []


@pytest.mark.asyncio
async def test_not_yet_due_creates_nothing(uow, dispatcher, seed):
    await seed.config(response_time_hours=4)
    await seed.inquiry()

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=4))

    assert result.violations == []


@pytest.mark.asyncio
async def test_business_hours_config_uses_calendar(uow, dispatcher, seed):
    await seed.config(
        business_hours_only=True,
        response_time_hours=2,
        resolution_time_hours=100,
        escalation_time_hours=100,
    )
    friday_5pm = BASE_TIME.replace(day=19, hour=17)
    await seed.inquiry(created_at=friday_5pm, updated_at=friday_5pm)

    detector = ViolationDetector(uow, dispatcher)
    saturday = await detector.detect(friday_5pm + timedelta(hours=20))
    monday = await detector.detect(BASE_TIME.replace(day=22, hour=11))

    assert saturday.violations == []
    assert len(monday.violations) == 1
    assert monday.violations[0].expected_time == BASE_TIME.replace(day=22, hour=10)
    assert monday.violations[0].delay_hours == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_notification_failure_keeps_violation(uow, dispatcher, notifier, seed, session_factory):
    notifier.fail = True
    await seed.config()
    await seed.inquiry()

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=5))

    assert len(result.violations) == 1
    assert result.errors == 0
    assert len(await _violation_rows(session_factory)) == 1


@pytest.mark.asyncio
async def test_duplicate_insert_is_dropped_by_constraint(uow, seed, session_factory):
    await seed.config()
    inquiry = await seed.inquiry()
    await seed.violation(work_item_id=inquiry.id, violation_type="response_time")

    from inquiry_sla.sla.domain import SlaViolation

    created = await uow.violations.create(SlaViolation(
        id=None,
        work_item_id=inquiry.id,
        sla_config_id="cfg-x",
        violation_type=ViolationType.RESPONSE_TIME,
        expected_time=BASE_TIME,
        detected_at=BASE_TIME + timedelta(hours=2),
        delay_hours=2.0,
        severity=Severity.MINOR,
    ))
    await uow.commit()

    assert created is None
    async with session_factory() as session:
        count = await session.scalar(select(func.count()).select_from(SlaViolationModel))
    assert count == 1


# ========== Error containment ==========

@pytest.mark.asyncio
async def test_invalid_config_row_does_not_block_valid_ones(uow, dispatcher, seed):
    await seed.config(id="cfg-broken", priority_level=Priority.LOW.value,
                      business_start_hour=18, business_end_hour=9)
    await seed.config(id="cfg-high", response_time_hours=4)
    inquiry = await seed.inquiry()

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=5))

    assert result.errors == 1
    assert result.configs_checked == 1
    assert [(v.work_item_id, v.sla_config_id) for v in result.violations] == [(inquiry.id, "cfg-high")]
    assert uow.sla_configs.rejected_ids == ["cfg-broken"]


@pytest.mark.asyncio
async def test_inquiry_with_unknown_priority_is_skipped(uow, dispatcher, seed):
    await seed.config()
    await seed.inquiry(id="inq-garbled", priority="urgent")
    valid = await seed.inquiry()

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=5))

    assert result.errors == 1
    assert [v.work_item_id for v in result.violations] == [valid.id]
    assert uow.work_items.rejected_ids == ["inq-garbled"]


@pytest.mark.asyncio
async def test_failed_inquiry_load_only_skips_that_application(uow, dispatcher, seed, monkeypatch):
    await seed.config(application_id="another-app")
    await seed.config()
    await seed.inquiry(application_id="another-app")
    matching = await seed.inquiry()

    list_open = uow.work_items.list_open

    async def flaky_list_open(application_id, priority=None):
        if application_id == "another-app":
            raise RuntimeError("connection reset")
        return await list_open(application_id, priority)

    monkeypatch.setattr(uow.work_items, "list_open", flaky_list_open)

    result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=5))

    assert result.errors == 1
    assert result.configs_checked == 1
    assert [v.work_item_id for v in result.violations] == [matching.id]


@pytest.mark.asyncio
async def test_failed_check_only_skips_that_inquiry(uow, dispatcher, seed, session_factory, monkeypatch):
    await seed.config()
    broken = await seed.inquiry()
    healthy = await seed.inquiry()

    detector = ViolationDetector(uow, dispatcher)
    check_work_item = detector.check_work_item

    async def flaky_check(work_item, config, current_time):
        if work_item.id == broken.id:
            raise RuntimeError("deadlock detected")
        return await check_work_item(work_item, config, current_time)

    monkeypatch.setattr(detector, "check_work_item", flaky_check)

    result = await detector.detect(BASE_TIME + timedelta(hours=5))

    assert result.errors == 1
    assert result.items_evaluated == 2
    assert [v.work_item_id for v in result.violations] == [healthy.id]
    assert [r.work_item_id for r in await _violation_rows(session_factory)] == [healthy.id]


@pytest.mark.asyncio
async def test_priority_without_config_is_reported(uow, dispatcher, seed, caplog):
    await seed.config(priority_level=Priority.HIGH.value)
    unmonitored = await seed.inquiry(priority=Priority.CRITICAL.value)
    await seed.inquiry()

    with caplog.at_level("WARNING"):
        result = await ViolationDetector(uow, dispatcher).detect(BASE_TIME + timedelta(hours=5))

    assert result.items_evaluated == 1
    assert result.errors == 0
    warnings = [r for r in caplog.records if "no active SLA config" in r.getMessage()]
    assert len(warnings) == 1
    assert warnings[0].work_item_ids == [unmonitored.id]


@pytest.mark.asyncio
async def test_sweep_returns_summary(monitor, seed):
    await seed.config(response_time_hours=1, resolution_time_hours=2, escalation_time_hours=3)
    await seed.inquiry()

    summary = await monitor.run_sweep(BASE_TIME + timedelta(hours=2, minutes=30))

    assert summary.configs_checked == 1
    assert summary.items_evaluated == 1
    assert summary.violations_created == 2
    assert summary.escalations_performed == 0
    assert summary.to_dict()["started_at"] == (BASE_TIME + timedelta(hours=2, minutes=30)).isoformat()


@pytest.mark.asyncio
async def test_overlapping_sweep_is_skipped(session_factory, dispatcher, seed):
    await seed.config()
    await seed.inquiry()

    gate = asyncio.Event()
    factory = sqlalchemy_uow_factory(session_factory)

    def gated_factory():
        return _GatedUnitOfWork(factory(), gate)

    monitor = SLAMonitor(gated_factory, dispatcher)
    first = asyncio.create_task(monitor.run_sweep(BASE_TIME + timedelta(hours=5)))
    await asyncio.sleep(0)
    assert monitor.is_sweeping

    assert await monitor.run_sweep(BASE_TIME + timedelta(hours=5)) is None

    gate.set()
    summary = await first
    assert summary.violations_created == 1
    assert not monitor.is_sweeping


class _GatedUnitOfWork:
    """Holds the sweep open until the gate is set."""

    def __init__(self, inner, gate):
        self._inner = inner
        self._gate = gate

    async def __aenter__(self):
        await self._gate.wait()
        return await self._inner.__aenter__()

    async def __aexit__(self, *exc_info):
        return await self._inner.__aexit__(*exc_info)
