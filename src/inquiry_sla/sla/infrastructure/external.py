"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- Slack webhook delivery of notification requests
- YAML SLA config file watcher
- APScheduler for the periodic violation sweep
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml
import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from inquiry_sla.config import Priority, settings
from inquiry_sla.core.exceptions import ConfigurationException, NotificationDispatchException
from inquiry_sla.shared.infrastructure.logging import get_logger
from inquiry_sla.sla.application.notifications import INotifier
from inquiry_sla.sla.domain import NotificationRequest, SlaConfig, SlaConfigFile

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA config file changed", extra={"path": event.src_path})
            self.config_manager.reload()


class SLAConfigManager:
    """
    Thread-safe holder of YAML-defined SLA configurations with hot reload.

    Uses watchdog to monitor the file; an invalid edit is logged and the
    previous configurations stay in effect.
    """

    def __init__(self):
        self._configs: Optional[List[SlaConfig]] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> List[SlaConfig]:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file is malformed
        """
        self._path = Path(path)
        configs = self._load_from_file(self._path)
        with self._lock:
            self._configs = configs
        logger.info("SLA configurations loaded", extra={"path": str(self._path), "count": len(configs)})
        return configs

    def _load_from_file(self, path: Path) -> List[SlaConfig]:
        """Load, validate and convert the YAML config file."""
        if not path.exists():
            logger.warning("SLA config file not found, no SLA configurations active", extra={"path": str(path)})
            return []

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return SlaConfigFile.model_validate(data).to_domain()
        except yaml.YAMLError as e:
            raise ConfigurationException(f"Invalid YAML in {path}: {e}")
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid SLA configuration in {path}",
                {"errors": e.errors(include_url=False)}
            )

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_configs = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload SLA config, keeping previous configuration",
                extra={"error": e.message, "details": e.details}
            )
            return False

        with self._lock:
            self._configs = new_configs
        logger.info("SLA configuration reloaded successfully", extra={"count": len(new_configs)})
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable
        (e.g. some container runtimes).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Config file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def configs(self) -> List[SlaConfig]:
        """Get current configurations."""
        with self._lock:
            if self._configs is None:
                raise RuntimeError("SLA configuration not loaded")
            return list(self._configs)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


_PRIORITY_EMOJI = {
    Priority.LOW: ":large_blue_circle:",
    Priority.MEDIUM: ":large_yellow_circle:",
    Priority.HIGH: ":large_orange_circle:",
    Priority.CRITICAL: ":red_circle:",
}


class SlackNotifier(INotifier):
    """
    Slack webhook notifier with circuit breaker and retry logic.

    Delivers notification requests as Block Kit messages with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._channel = channel or settings.slack_channel
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff_seconds
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, request: NotificationRequest) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        is_escalation = request.kind == "escalation"
        header_text = "Inquiry Escalated" if is_escalation else "SLA Violation"
        emoji = ":rotating_light:" if is_escalation else ":warning:"
        meta = request.metadata

        fields = [
            {"type": "mrkdwn", "text": f"*Inquiry:*\n{meta.get('work_item_id', '-')}"},
            {"type": "mrkdwn", "text": f"*Priority:*\n{_PRIORITY_EMOJI.get(request.priority, '')} {request.priority.value.title()}"},
            {"type": "mrkdwn", "text": f"*Violation:*\n{str(meta.get('violation_type', '-')).replace('_', ' ').title()}"},
            {"type": "mrkdwn", "text": f"*Severity:*\n{str(meta.get('severity', '-')).title()}"},
        ]
        if meta.get("delay_hours") is not None:
            fields.append({"type": "mrkdwn", "text": f"*Delay:*\n{meta['delay_hours']:.2f}h"})
        if is_escalation:
            fields.append({"type": "mrkdwn", "text": f"*Escalated to:*\n{', '.join(request.recipients)}"})

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{emoji} {header_text}",
                    "emoji": True
                }
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*{request.subject}*\n{request.body}"}
            },
            {
                "type": "section",
                "fields": fields
            },
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"Violation ID: {meta.get('violation_id', '-')}"}
                ]
            }
        ]

        return {
            "channel": self._channel,
            "text": request.subject,
            "blocks": blocks
        }

    async def send(self, request: NotificationRequest) -> bool:
        """
        Send a notification request to the Slack webhook.

        Returns:
            True if sent, False if no webhook is configured

        Raises:
            NotificationDispatchException: Circuit open or retries exhausted
        """
        if not self._webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            raise NotificationDispatchException(
                "Circuit breaker open, Slack notification not sent",
                {"kind": request.kind}
            )

        message = self._build_message(request)
        last_error = None

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={
                            "kind": request.kind,
                            "violation_id": request.metadata.get("violation_id"),
                        }
                    )
                    return True

                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Slack webhook returned non-200",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    "Slack notification attempt failed",
                    extra={"error": last_error, "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_backoff * (2 ** attempt))

        self._circuit_breaker.record_failure()
        raise NotificationDispatchException(
            "Slack notification failed after retries",
            {"kind": request.kind, "attempts": self._max_retries, "last_error": last_error}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SLAScheduler:
    """
    Wrapper for APScheduler running the periodic SLA sweep.

    Manages the lifecycle of the scheduler and jobs.
    """

    JOB_ID = "sla_violation_sweep"

    def __init__(self, interval_seconds: int = 300):
        if interval_seconds <= 0:
            raise ConfigurationException(
                "SLA evaluation interval must be positive",
                {"interval_seconds": interval_seconds}
            )
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="SLA Violation Sweep",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
