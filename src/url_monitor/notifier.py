import logging
from datetime import UTC, datetime

import httpx

from url_monitor.models import UNGROUPED, NotificationConfig, URLTarget

logger = logging.getLogger(__name__)


def _context_block(timestamp: datetime, dashboard_url: str) -> dict:
    return {
        "type": "context",
        "elements": [
            {
                "type": "mrkdwn",
                "text": f"{timestamp.isoformat()} | <{dashboard_url}|View Dashboard>",
            }
        ],
    }


def build_failure_payload(
    target: URLTarget,
    consecutive_failures: int,
    last_error: str | None,
    dashboard_url: str,
    timestamp: datetime | None = None,
) -> dict:
    timestamp = timestamp or datetime.now(UTC)
    group = target.group or UNGROUPED
    error = last_error or "Connection failed"
    return {
        "text": f"URL Monitor Alert: {target.name} is failing",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "URL Monitor Alert"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*URL:* {target.name}\n{target.url}"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Group:* {group}\n*Consecutive Failures:* {consecutive_failures}",
                    },
                ],
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Error:* {error}"}},
            _context_block(timestamp, dashboard_url),
        ],
        "event": {
            "type": "failure",
            "name": target.name,
            "url": target.url,
            "group": group,
            "country_code": target.country_code,
            "consecutive_failures": consecutive_failures,
            "last_error": error,
            "timestamp": timestamp.isoformat(),
        },
    }


def build_recovery_payload(
    target: URLTarget, dashboard_url: str, timestamp: datetime | None = None
) -> dict:
    timestamp = timestamp or datetime.now(UTC)
    group = target.group or UNGROUPED
    return {
        "text": f"URL Monitor Recovery: {target.name} is back online",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "URL Monitor Recovery"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*URL:* {target.name}\n{target.url}"},
                    {"type": "mrkdwn", "text": f"*Group:* {group}\n*Status:* Back online"},
                ],
            },
            _context_block(timestamp, dashboard_url),
        ],
        "event": {
            "type": "recovery",
            "name": target.name,
            "url": target.url,
            "group": group,
            "country_code": target.country_code,
            "consecutive_failures": "recovered",
            "last_error": None,
            "timestamp": timestamp.isoformat(),
        },
    }


class WebhookNotifier:
    """Posts failure and recovery alerts to a webhook. Never raises.

    Without a webhook URL the notifier is disabled and every send is a no-op
    that reports success.
    """

    def __init__(self, config: NotificationConfig | None = None):
        self.config = config or NotificationConfig()
        if self.enabled:
            logger.info("Webhook notifications enabled")
        else:
            logger.info("Webhook notifications disabled: no webhook_url configured")

    @property
    def enabled(self) -> bool:
        return bool(self.config.webhook_url)

    async def send_failure_alert(
        self, target: URLTarget, consecutive_failures: int, last_error: str | None
    ) -> bool:
        if not self.enabled:
            logger.debug(
                "Notification skipped for %s (%d failures)", target.name, consecutive_failures
            )
            return True
        payload = build_failure_payload(
            target, consecutive_failures, last_error, self.config.dashboard_url
        )
        return await self._post(payload, f"failure alert for {target.name}")

    async def send_recovery_alert(self, target: URLTarget) -> bool:
        if not self.enabled:
            return True
        payload = build_recovery_payload(target, self.config.dashboard_url)
        return await self._post(payload, f"recovery alert for {target.name}")

    async def _post(self, payload: dict, description: str) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.config.webhook_url,
                    json=payload,
                    timeout=self.config.timeout_seconds,
                )
                response.raise_for_status()
        except Exception:
            logger.exception("Failed to send %s", description)
            return False
        logger.info("Sent %s", description)
        return True
