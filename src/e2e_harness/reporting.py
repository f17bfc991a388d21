"""
Slack Reporter - posts run summaries and failures to an incoming webhook.

Configuration lives in ``config/slack.json``::

    {
      "webhookUrl": "https://hooks.slack.com/services/...",
      "enabled": true,
      "notifyOn": {"testComplete": false, "testFailure": true, "thresholdExceeded": true},
      "thresholds": {"failurePercentage": 10},
      "channel": "#e2e"
    }

``E2E_SLACK_WEBHOOK_URL`` overrides the file's webhook so the secret can
stay out of the repository. Delivery failures are logged, never raised.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Mapping, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from e2e_harness.results import TestSummary

logger = logging.getLogger(__name__)

PLACEHOLDER_WEBHOOK = "REPLACE_WITH_SLACK_WEBHOOK_URL"
WEBHOOK_VAR = "E2E_SLACK_WEBHOOK_URL"

BOT_NAME = "E2E Harness Bot"
BOT_ICON = ":robot_face:"
FOOTER = "E2E Harness"

COLOR_PASSED = "#36a64f"
COLOR_FAILED = "#ff9800"
COLOR_FAILURE = "#d32f2f"

PILLAR_NAMES = {
    "synthetic": "Synthetic (Browser)",
    "integration": "Integration (API)",
    "performance": "Performance (Load)",
}


class NotifyOn(BaseModel):
    test_complete: bool = Field(False, alias="testComplete")
    test_failure: bool = Field(True, alias="testFailure")
    threshold_exceeded: bool = Field(True, alias="thresholdExceeded")

    class Config:
        populate_by_name = True


class Thresholds(BaseModel):
    failure_percentage: float = Field(10.0, alias="failurePercentage")

    class Config:
        populate_by_name = True


class SlackConfig(BaseModel):
    """Contents of config/slack.json"""

    webhook_url: str = Field(PLACEHOLDER_WEBHOOK, alias="webhookUrl")
    enabled: bool = False
    notify_on: NotifyOn = Field(default_factory=NotifyOn, alias="notifyOn")
    thresholds: Thresholds = Field(default_factory=Thresholds)
    channel: Optional[str] = None

    class Config:
        populate_by_name = True

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url) and self.webhook_url != PLACEHOLDER_WEBHOOK


def format_pillar(pillar: str) -> str:
    return PILLAR_NAMES.get(pillar, pillar)


def format_duration(ms: float) -> str:
    """Human-readable duration: 850ms, 42s, 3m 5s, 1h 12m"""
    if ms < 1000:
        return f"{ms:g}ms"

    seconds = int(ms // 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def truncate_error(error: str, max_length: int = 500) -> str:
    if len(error) <= max_length:
        return error
    return error[:max_length] + "..."


def failure_percentage(summary: TestSummary) -> float:
    return summary.failed / summary.total * 100 if summary.total else 0.0


class SlackReporter:
    """
    Sends test results to Slack.

    Usage:
        reporter = SlackReporter.from_file(Path("config/slack.json"))
        if reporter.enabled:
            await reporter.send_summary(summary, report_url="https://ci/run/42")
    """

    def __init__(
        self,
        config: Optional[SlackConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.config = config or SlackConfig()
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_file(
        cls,
        path: Path | str,
        environ: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SlackReporter":
        """
        Load the reporter from a JSON config file.

        A missing or unreadable file yields a disabled reporter.
        """
        environ = os.environ if environ is None else environ
        path = Path(path)
        config = SlackConfig()
        if path.exists():
            try:
                config = SlackConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Failed to load Slack config {path}: {e}")
        else:
            logger.debug(f"No Slack config at {path}; notifications disabled")

        webhook = environ.get(WEBHOOK_VAR)
        if webhook:
            config = config.model_copy(update={"webhook_url": webhook})
        return cls(config, transport=transport)

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self.config.configured

    def should_notify(self, summary: TestSummary) -> bool:
        notify = self.config.notify_on
        if notify.threshold_exceeded and summary.total:
            if failure_percentage(summary) >= self.config.thresholds.failure_percentage:
                return True
        if notify.test_complete:
            return True
        return notify.test_failure and summary.failed > 0

    def _envelope(self, attachment: dict[str, Any], report_url: Optional[str]) -> dict[str, Any]:
        attachment["footer"] = FOOTER
        attachment["ts"] = str(int(time.time()))
        message: dict[str, Any] = {
            "username": BOT_NAME,
            "icon_emoji": BOT_ICON,
            "attachments": [attachment],
        }
        if self.config.channel:
            message["channel"] = self.config.channel
        if report_url:
            message["text"] = f"<{report_url}|View Full Report>"
        return message

    def format_summary(self, summary: TestSummary, report_url: Optional[str] = None) -> dict[str, Any]:
        all_passed = summary.failed == 0
        emoji = ":white_check_mark:" if all_passed else ":warning:"

        def field(title: str, value: Any) -> dict[str, Any]:
            return {"title": title, "value": str(value), "short": True}

        return self._envelope(
            {
                "color": COLOR_PASSED if all_passed else COLOR_FAILED,
                "title": f"{emoji} {format_pillar(summary.pillar)} Tests - {summary.environment}",
                "fields": [
                    field("Status", "All Passed" if all_passed else f"{summary.failed} Failed"),
                    field("Pass Rate", f"{summary.pass_rate:.1f}%"),
                    field("Total Tests", summary.total),
                    field("Duration", format_duration(summary.duration)),
                    field("Passed", summary.passed),
                    field("Failed", summary.failed),
                    field("Skipped", summary.skipped),
                    field("Environment", summary.environment),
                ],
            },
            report_url,
        )

    def format_failure(
        self,
        pillar: str,
        environment: str,
        test: str,
        error: str,
        report_url: Optional[str] = None,
    ) -> dict[str, Any]:
        return self._envelope(
            {
                "color": COLOR_FAILURE,
                "title": f":x: Test Failure - {format_pillar(pillar)}",
                "fields": [
                    {"title": "Environment", "value": environment, "short": True},
                    {"title": "Test", "value": test, "short": True},
                    {"title": "Error", "value": truncate_error(error), "short": False},
                ],
            },
            report_url,
        )

    async def send_summary(self, summary: TestSummary, report_url: Optional[str] = None) -> bool:
        """
        Post a run summary when the notification rules call for one.

        Returns:
            True if a message was delivered
        """
        if not self.enabled:
            return False
        if not self.should_notify(summary):
            logger.debug(f"No Slack notification needed for {summary.pillar}/{summary.environment}")
            return False
        return await self._post(self.format_summary(summary, report_url))

    async def send_failure(
        self,
        pillar: str,
        environment: str,
        test: str,
        error: str,
        report_url: Optional[str] = None,
    ) -> bool:
        if not self.enabled or not self.config.notify_on.test_failure:
            return False
        return await self._post(self.format_failure(pillar, environment, test, error, report_url))

    async def _post(self, message: dict[str, Any]) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.config.webhook_url, json=message)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send Slack notification: {e}")
            return False

        logger.info("Slack notification sent")
        return True
