import json
import logging

import httpx
import pytest

from inquiry_sla.config import Priority
from inquiry_sla.core import ConfigurationException, NotificationDispatchException
from inquiry_sla.shared.infrastructure.logging import CustomJsonFormatter
from inquiry_sla.sla.domain import NotificationRequest
from inquiry_sla.sla.infrastructure import (
    CircuitBreaker,
    SLAConfigManager,
    SLAScheduler,
    SlackNotifier,
    YAMLSlaConfigRepository,
)

VALID_YAML = """
sla_configs:
  - id: portal-high
    application_id: support-portal
    priority_level: high
    response_time_hours: 4
    resolution_time_hours: 24
    escalation_time_hours: 8
    business_hours_only: true
    business_days: [1, 2, 3, 4, 5]
  - id: portal-low
    application_id: support-portal
    priority_level: low
    response_time_hours: 24
    resolution_time_hours: 120
    escalation_time_hours: 48
    is_active: false
"""


# ========== YAML configuration ==========

def test_load_valid_file(tmp_path):
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_YAML)

    configs = SLAConfigManager().load(path)

    assert [c.id for c in configs] == ["portal-high", "portal-low"]
    assert configs[0].priority_level == Priority.HIGH
    assert configs[0].business_hours_only is True


def test_missing_file_means_no_configs(tmp_path):
    assert SLAConfigManager().load(tmp_path / "absent.yaml") == []


@pytest.mark.parametrize(
    "content",
    [
        "sla_configs: [unterminated",
        "sla_configs:\n  - id: x\n    application_id: a\n    priority_level: urgent\n"
        "    response_time_hours: 1\n    resolution_time_hours: 1\n    escalation_time_hours: 1\n",
        "sla_configs:\n  - id: x\n    application_id: a\n    priority_level: high\n"
        "    response_time_hours: 0\n    resolution_time_hours: 1\n    escalation_time_hours: 1\n",
    ],
)
def test_invalid_file_is_rejected(tmp_path, content):
    path = tmp_path / "sla_config.yaml"
    path.write_text(content)

    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)


def test_reload_keeps_previous_configs_on_error(tmp_path):
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_YAML)
    manager = SLAConfigManager()
    manager.load(path)

    path.write_text("sla_configs: [unterminated")
    assert manager.reload() is False
    assert len(manager.configs) == 2

    path.write_text(VALID_YAML.split("  - id: portal-low")[0])
    assert manager.reload() is True
    assert [c.id for c in manager.configs] == ["portal-high"]


@pytest.mark.asyncio
async def test_yaml_repository_lists_active_configs(tmp_path):
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_YAML)
    manager = SLAConfigManager()
    manager.load(path)
    repository = YAMLSlaConfigRepository(manager)

    assert [c.id for c in await repository.list_active()] == ["portal-high"]
    assert (await repository.get_by_id("portal-low")).is_active is False
    assert await repository.get_by_id("nope") is None


# ========== Slack notifier ==========

def _request():
    return NotificationRequest(
        kind="escalation",
        recipients=["lead@example.com"],
        subject="Escalation: inquiry inq-1 (major)",
        body="Inquiry inq-1 has been escalated to you.",
        priority=Priority.CRITICAL,
        metadata={
            "violation_id": "vio-1",
            "work_item_id": "inq-1",
            "violation_type": "escalation_time",
            "severity": "major",
            "delay_hours": 3.5,
        },
    )


@pytest.mark.asyncio
async def test_slack_notifier_posts_block_kit_message():
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(200, text="ok")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = SlackNotifier(webhook_url="https://hooks.example.com/x", channel="#sla", http_client=client)

    assert await notifier.send(_request()) is True
    await notifier.close()

    assert received[0]["channel"] == "#sla"
    assert received[0]["text"] == "Escalation: inquiry inq-1 (major)"
    assert received[0]["blocks"][0]["type"] == "header"


@pytest.mark.asyncio
async def test_slack_notifier_without_webhook_skips():
    notifier = SlackNotifier(webhook_url="")

    assert await notifier.send(_request()) is False


@pytest.mark.asyncio
async def test_slack_notifier_raises_after_retries():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(500)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
    notifier = SlackNotifier(
        webhook_url="https://hooks.example.com/x",
        http_client=client,
        max_retries=2,
        retry_backoff_seconds=0,
        circuit_breaker=breaker,
    )

    with pytest.raises(NotificationDispatchException):
        await notifier.send(_request())
    assert len(attempts) == 2

    # Circuit is now open, the webhook is not called again
    with pytest.raises(NotificationDispatchException):
        await notifier.send(_request())
    assert len(attempts) == 2


# ========== Scheduler and logging ==========

@pytest.mark.parametrize("interval", [0, -5])
def test_scheduler_rejects_non_positive_interval(interval):
    with pytest.raises(ConfigurationException):
        SLAScheduler(interval_seconds=interval)


@pytest.mark.asyncio
async def test_scheduler_lifecycle():
    async def job():
        return None

    scheduler = SLAScheduler(interval_seconds=3600)
    await scheduler.start(job)
    assert scheduler.is_running

    await scheduler.stop()
    assert not scheduler.is_running


def test_json_formatter_redacts_sensitive_fields():
    formatter = CustomJsonFormatter("%(levelname)s %(name)s %(message)s", environment="test")
    record = logging.LogRecord("inquiry_sla", logging.INFO, __file__, 1, "Notifier configured", None, None)
    record.webhook_url = "https://hooks.example.com/secret"
    record.correlation_id = "abc-123"

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "Notifier configured"
    assert payload["webhook_url"] == "***REDACTED***"
    assert payload["correlation_id"] == "abc-123"
    assert payload["environment"] == "test"
    assert "timestamp" in payload
