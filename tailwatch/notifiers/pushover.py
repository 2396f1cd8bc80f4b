"""
Pushover notifier for Tailwatch.
"""

from typing import ClassVar

import requests

from tailwatch.core import Notifier
from tailwatch.logging_config import get_logger
from tailwatch.registry import register_notifier

logger = get_logger(__name__)


@register_notifier("pushover")
class PushoverNotifier(Notifier):
    """
    Sends notifications via Pushover API.

    Config:
        user_key: Pushover user key
        api_token: Pushover API token
        priority: Message priority, -2 to 2 (default: 0)
        timeout_seconds: HTTP timeout (default: 10)
    """

    PUSHOVER_API_URL: ClassVar[str] = "https://api.pushover.net/1/messages.json"
    MAX_TITLE_LENGTH: ClassVar[int] = 250
    MAX_MESSAGE_LENGTH: ClassVar[int] = 1024

    def notify(self, title: str, body: str) -> bool:
        """Send notification via Pushover."""
        priority = self.config.get("priority", 0)
        payload = {
            "token": self.config["api_token"],
            "user": self.config["user_key"],
            "title": title[:self.MAX_TITLE_LENGTH],
            "message": body[:self.MAX_MESSAGE_LENGTH],
            "priority": priority,
        }

        # Emergency priority requires retry and expire parameters
        if priority == 2:
            payload["retry"] = 60
            payload["expire"] = 3600

        try:
            response = requests.post(
                self.PUSHOVER_API_URL,
                data=payload,
                timeout=self.config.get("timeout_seconds", 10)
            )
            response.raise_for_status()
            logger.info("Pushover notification sent: %s", title)
            return True
        except requests.RequestException:
            logger.error("Failed to send Pushover notification", exc_info=True)
            return False


# Export for dynamic importing
__all__ = ["PushoverNotifier"]
