"""
Webhook notifier for Tailwatch.
"""

import requests

from tailwatch.core import Notifier
from tailwatch.logging_config import get_logger
from tailwatch.registry import register_notifier

logger = get_logger(__name__)


@register_notifier("webhook")
class WebhookNotifier(Notifier):
    """
    Sends notifications via HTTP webhook.

    Config:
        url: Webhook URL
        method: POST or PUT (default: POST)
        headers: Optional HTTP headers
        timeout_seconds: HTTP timeout (default: 10)
    """

    def notify(self, title: str, body: str) -> bool:
        """Send notification via webhook."""
        url = self.config["url"]
        method = self.config.get("method", "POST").upper()
        if method not in ("POST", "PUT"):
            raise ValueError(f"Unsupported HTTP method: {method}")

        try:
            response = requests.request(
                method,
                url,
                json={"title": title, "body": body},
                headers=self.config.get("headers", {}),
                timeout=self.config.get("timeout_seconds", 10)
            )
            response.raise_for_status()
            logger.info("Webhook notification sent to %s", url)
            return True
        except requests.RequestException:
            logger.error("Failed to send webhook notification to %s", url, exc_info=True)
            return False


# Export for dynamic importing
__all__ = ["WebhookNotifier"]
