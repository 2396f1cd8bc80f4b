"""
Main daemon entry point for Tailwatch.
"""

import argparse
import signal
import sys
import threading
from typing import Any

from tailwatch.config import load_config
from tailwatch.errors import NoReadableSources
from tailwatch.logging_config import get_logger, setup_logging
from tailwatch.session import Session

logger = get_logger(__name__)


class TailwatchDaemon:
    """Runs one monitoring session in the foreground until stopped."""

    def __init__(self, config_path: str) -> None:
        """
        Initialize the daemon.

        Args:
            config_path: Path to configuration file

        Raises:
            InvalidPattern: If a configured pattern does not compile
        """
        self.config = load_config(config_path)
        self.session = Session(self.config)
        self._stop_requested = threading.Event()

    def start(self) -> None:
        """
        Start monitoring and block until stop() is called.

        Raises:
            NoReadableSources: If no configured source can be read
        """
        logger.info("Starting Tailwatch daemon")
        self.session.start()
        logger.info("Monitoring: %s", ", ".join(self.config.sources))

        try:
            while not self._stop_requested.wait(1):
                pass
        except KeyboardInterrupt:
            logger.info("Shutdown signal received")
        finally:
            self.session.stop()
            stats = self.session.stats()
            logger.info(
                "Session summary: %d line(s) observed, %d alert(s), %d suppressed, "
                "%d delivery failure(s)",
                stats["observed"], stats["alerts"], stats["suppressed"], stats["delivery_failed"]
            )

    def stop(self) -> None:
        """Ask start() to return after a graceful shutdown."""
        self._stop_requested.set()


def main() -> None:
    """Entry point for the daemon."""
    parser = argparse.ArgumentParser(description="Tailwatch log monitoring daemon")
    parser.add_argument(
        '--config',
        default='/etc/tailwatch/config.yaml',
        help='Path to configuration file (default: /etc/tailwatch/config.yaml)'
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Log level (default: INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Optional session log file (logs to console if not specified)'
    )
    args = parser.parse_args()

    setup_logging(level=args.log_level, log_file=args.log_file)

    try:
        daemon = TailwatchDaemon(args.config)
    except (FileNotFoundError, ValueError) as e:
        # InvalidPattern is a ValueError
        logger.critical("Invalid configuration: %s", e)
        sys.exit(1)

    def signal_handler(_sig: int, _frame: Any) -> None:
        logger.info("Shutdown signal received")
        daemon.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        daemon.start()
    except NoReadableSources as e:
        logger.critical("%s", e)
        sys.exit(1)
    except Exception:
        logger.critical("Fatal error", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
