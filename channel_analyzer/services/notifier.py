"""
Discord webhook notifier.
Posts finding alerts and system error alerts. Delivery is best effort: failures are
logged and never raised to the caller.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from channel_analyzer.schemas.analysis import ConfidenceLevel, Finding
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

FOOTER_TEXT = "Channel Analyzer Automation"
FIELD_VALUE_LIMIT = 1024
ERROR_COLOR = 0xFF0000
CONFIDENCE_COLORS = {
    ConfidenceLevel.HIGH: 0x00FF00,
    ConfidenceLevel.MEDIUM: 0xFFFF00,
    ConfidenceLevel.LOW: 0xFF9900,
}


class NotificationError(Exception):
    """Raised internally when the webhook rejects or cannot receive a payload."""
    pass


def watch_url(item_id: str) -> str:
    return f"https://www.youtube.com/watch?v={item_id}"


def _truncate(value: str, limit: int = FIELD_VALUE_LIMIT) -> str:
    if len(value) <= limit:
        return value
    return value[:limit - 3] + "..."


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_finding_field(finding: Finding) -> Dict[str, Any]:
    """Render one finding as an embed field."""
    lines = [f"**Urgency:** {finding.urgency.value}"]

    attributes = finding.attributes or {}
    if attributes.get("team"):
        lines.append(f"**Team:** {attributes['team']}")
    if attributes.get("position"):
        lines.append(f"**Position:** {attributes['position']}")
    if attributes.get("roster_percentage") is not None:
        lines.append(f"**Rostered:** {attributes['roster_percentage']}%")

    lines.append(f"**Reasoning:** {finding.reasoning}")
    if finding.context:
        lines.append(f"**Context:** {finding.context}")

    return {"name": _truncate(finding.subject_name, 256), "value": _truncate("\n".join(lines)), "inline": False}


class DiscordNotifier:
    """Sends formatted notifications to a Discord webhook."""

    def __init__(self, webhook_url: Optional[str], http_client: Optional[httpx.Client] = None,
                 timeout: float = 10.0) -> None:
        """
        Initialize the notifier.

        Args:
            webhook_url: Discord webhook URL; notifications are skipped when empty
            http_client: Optional preconfigured client (used by tests)
            timeout: Request timeout in seconds
        """
        self.webhook_url = webhook_url
        self._client = http_client or httpx.Client(timeout=timeout)

    def notify_findings(self, item_id: str, title: str, findings: List[Finding], summary: str,
                        confidence: ConfidenceLevel) -> bool:
        """
        Send a rich alert for the given findings.

        Returns:
            True when the webhook accepted the payload, False otherwise
        """
        embed = {
            "title": _truncate(title, 256),
            "url": watch_url(item_id),
            "description": _truncate(summary, 4096),
            "color": CONFIDENCE_COLORS.get(confidence, CONFIDENCE_COLORS[ConfidenceLevel.LOW]),
            "fields": [
                {"name": "Analysis Confidence", "value": confidence.value, "inline": True},
                {"name": "Findings", "value": str(len(findings)), "inline": True},
                *[format_finding_field(finding) for finding in findings],
            ],
            "timestamp": _timestamp(),
            "footer": {"text": FOOTER_TEXT},
        }
        payload = {"content": "**New Fantasy Basketball Alert!**", "embeds": [embed]}

        sent = self._send(payload, kind="findings")
        if sent:
            logger.info("Finding notification sent", item_id=item_id, findings=len(findings))
        return sent

    def notify_error(self, message: str, context: Optional[str] = None) -> bool:
        """Send a terse system error alert."""
        embed: Dict[str, Any] = {
            "title": "Automation Error",
            "description": _truncate(message, 4096),
            "color": ERROR_COLOR,
            "timestamp": _timestamp(),
            "footer": {"text": FOOTER_TEXT},
        }
        if context:
            embed["fields"] = [{"name": "Context", "value": _truncate(context)}]

        return self._send({"embeds": [embed]}, kind="error")

    def send_test(self) -> bool:
        """Post a test embed to confirm the webhook works."""
        payload = {
            "content": "Test notification",
            "embeds": [{
                "title": "Webhook Test",
                "description": "If you can see this, notifications are configured correctly.",
                "color": CONFIDENCE_COLORS[ConfidenceLevel.HIGH],
                "timestamp": _timestamp(),
                "footer": {"text": FOOTER_TEXT},
            }],
        }
        return self._send(payload, kind="test")

    def _send(self, payload: Dict[str, Any], kind: str) -> bool:
        if not self.webhook_url:
            logger.warning("DISCORD_WEBHOOK_URL not configured, skipping notification", kind=kind)
            return False

        try:
            self._post(payload)
        except NotificationError as e:
            logger.error("Failed to send notification", kind=kind, error=str(e))
            return False
        except Exception as e:
            logger.error("Unexpected notification failure", kind=kind, error=str(e), error_type=type(e).__name__)
            return False
        return True

    def _post(self, payload: Dict[str, Any]) -> None:
        try:
            response = self._client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook request failed: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(f"Discord API error: {response.status_code} - {response.text[:200]}")

    def close(self) -> None:
        self._client.close()
