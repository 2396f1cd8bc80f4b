"""
Tailwatch - A log tailing and alerting daemon.

This package follows append-only system log files, classifies new lines
against a set of error patterns, and sends deduplicated, rate-limited
alerts to notification transports while keeping an append-only audit
trail of everything observed.
"""

__version__ = "0.1.0"
