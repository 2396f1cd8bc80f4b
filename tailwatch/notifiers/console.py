"""
Console notifier for Tailwatch.
"""

from tailwatch.core import Notifier
from tailwatch.logging_config import get_logger
from tailwatch.registry import register_notifier

logger = get_logger(__name__)


@register_notifier("console")
class ConsoleNotifier(Notifier):
    """
    Prints alerts to stdout, like the original terminal alert line.

    Config:
        (none required)
    """

    def notify(self, title: str, body: str) -> bool:
        """Print notification to console."""
        logger.debug("Console alert: %s", title)
        print(f"ALERT → {title} | {body}", flush=True)
        return True


# Export for dynamic importing
__all__ = ["ConsoleNotifier"]
