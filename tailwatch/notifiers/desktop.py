"""
Desktop notifier for Tailwatch using notify-send.
"""

import shutil
import subprocess  # nosec B404

from tailwatch.core import Notifier
from tailwatch.logging_config import get_logger
from tailwatch.registry import register_notifier

logger = get_logger(__name__)


@register_notifier("desktop")
class DesktopNotifier(Notifier):
    """
    Shows a desktop notification via the freedesktop `notify-send` tool.

    When the tool is not installed the notifier reports failure and the
    alert stays in the audit trail only.

    Config:
        command: Notifier executable (default: notify-send)
        urgency: low, normal or critical (default: critical)
        timeout_seconds: Seconds to wait for the command (default: 10)
    """

    def notify(self, title: str, body: str) -> bool:
        """Send a desktop notification."""
        command = self.config.get("command", "notify-send")
        executable = shutil.which(command)
        if executable is None:
            logger.warning("%s not found, desktop notification skipped", command)
            return False

        args = [executable, "--urgency", self.config.get("urgency", "critical"), title, body]
        try:
            result = subprocess.run(  # nosec B603
                args,
                capture_output=True,
                text=True,
                timeout=self.config.get("timeout_seconds", 10),
                check=False
            )
        except (OSError, subprocess.TimeoutExpired):
            logger.error("Failed to run %s", command, exc_info=True)
            return False

        if result.returncode != 0:
            logger.error("%s exited with %d: %s", command, result.returncode, result.stderr.strip())
            return False
        return True


# Export for dynamic importing
__all__ = ["DesktopNotifier"]
