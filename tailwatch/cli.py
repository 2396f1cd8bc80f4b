"""
Tailwatch CLI - Command line interface for the log monitor.

Provides commands for:
- Configuration validation
- Checking which configured log files are readable
- Running the monitor in the foreground
- Showing the last alerts from the audit trail
- Sending a test notification through the configured transports
"""

import argparse
import sys
from pathlib import Path

from tailwatch.audit import read_records
from tailwatch.config import Config, load_config
from tailwatch.core import RecordKind
from tailwatch.daemon import TailwatchDaemon
from tailwatch.errors import NoReadableSources
from tailwatch.logging_config import get_logger, setup_logging
from tailwatch.platform import check_readable
from tailwatch.registry import create_notifier

logger = get_logger(__name__)


def _load(args: argparse.Namespace) -> Config | None:
    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        return None
    try:
        return load_config(config_path)
    except Exception as e:  # pylint: disable=broad-exception-caught
        print(f"✗ Configuration invalid: {e}", file=sys.stderr)
        return None


def cmd_config_validate(args: argparse.Namespace) -> int:
    """Validate configuration file."""
    config = _load(args)
    if config is None:
        return 1

    print(f"✓ Configuration valid: {args.config}")
    print(f"  - {len(config.sources)} source(s) configured")
    print(f"  - {len(config.patterns)} pattern(s): {'|'.join(config.patterns)}")
    print(f"  - {len(config.notifiers)} notifier(s) configured")
    print(f"  - Throttle window: {config.throttle_window:g}s")
    print(f"  - Audit file: {config.audit_file}")
    return 0


def cmd_sources(args: argparse.Namespace) -> int:
    """Show which configured log files can be read."""
    config = _load(args)
    if config is None:
        return 1

    readable = 0
    for source in config.sources:
        reason = check_readable(source)
        if reason is None:
            readable += 1
            print(f"  ✓ {source}")
        else:
            print(f"  ✗ {source} ({reason})")

    print(f"\n{readable}/{len(config.sources)} source(s) readable")
    return 0 if readable else 1


def cmd_monitor(args: argparse.Namespace) -> int:
    """Run the monitor in the foreground."""
    setup_logging(level=args.log_level, log_file=args.log_file)
    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        return 1

    try:
        daemon = TailwatchDaemon(str(config_path))
        print("Monitoring logs... Press Ctrl+C to stop.")
        daemon.start()
        return 0
    except NoReadableSources as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except Exception as e:  # pylint: disable=broad-exception-caught
        print(f"Error starting monitor: {e}", file=sys.stderr)
        return 1


def cmd_alerts(args: argparse.Namespace) -> int:
    """Show the last alerts recorded in the audit trail."""
    config = _load(args)
    if config is None:
        return 1

    audit_file = Path(config.audit_file)
    if not audit_file.exists():
        print("No alerts logged yet.")
        return 0

    kinds = None if args.all else [RecordKind.ALERT, RecordKind.DELIVERY_FAILED]
    try:
        records = read_records(audit_file, kinds=kinds, limit=args.count)
    except OSError as e:
        print(f"Error reading audit file {audit_file}: {e}", file=sys.stderr)
        return 1

    if not records:
        print("No alerts logged yet.")
        return 0

    for record in records:
        stamp = record.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        label = record.kind.value.upper()
        if record.sequence is not None:
            label = f"{label} #{record.sequence}"
        rule = f" [{record.matched_rule}]" if record.matched_rule else ""
        print(f"[{stamp}] {label}{rule} {record.source}: {record.text}")
        if record.detail:
            print(f"    {record.detail}")
    return 0


def cmd_notify(args: argparse.Namespace) -> int:
    """Send a test notification."""
    config = _load(args)
    if config is None:
        return 1

    if not config.notifiers:
        print("No notifiers configured", file=sys.stderr)
        return 1

    print(f"Sending notification: {args.title}")
    sent_count = 0
    for notifier_config in config.notifiers:
        try:
            notifier = create_notifier(notifier_config.type, notifier_config.config)
            success = notifier.notify(args.title, args.body)
            status = "✓" if success else "✗"
            print(f"  {status} {notifier_config.type}")
            if success:
                sent_count += 1
        except Exception as e:  # pylint: disable=broad-exception-caught
            print(f"  ✗ {notifier_config.type}: {e}")

    print(f"\nSent to {sent_count}/{len(config.notifiers)} notifier(s)")
    return 0 if sent_count > 0 else 1


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tailwatch",
        description="Tailwatch - Log monitoring and alerting"
    )
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="subcommand")
    config_subparsers.add_parser("validate", help="Validate configuration file")

    subparsers.add_parser("sources", help="Check which configured log files are readable")

    monitor_parser = subparsers.add_parser("monitor", help="Run the monitor (foreground)")
    monitor_parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: INFO)"
    )
    monitor_parser.add_argument("--log-file", help="Optional session log file")

    alerts_parser = subparsers.add_parser("alerts", help="Show the last alerts")
    alerts_parser.add_argument(
        "-n", "--count",
        type=int,
        default=20,
        help="Number of records to show (default: 20)"
    )
    alerts_parser.add_argument(
        "--all",
        action="store_true",
        help="Show every audit record kind, not just alerts"
    )

    notify_parser = subparsers.add_parser("notify", help="Send a test notification")
    notify_parser.add_argument("title", help="Notification title")
    notify_parser.add_argument("body", help="Notification text")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "config" and args.subcommand == "validate":
        return cmd_config_validate(args)
    if args.command == "sources":
        return cmd_sources(args)
    if args.command == "monitor":
        return cmd_monitor(args)
    if args.command == "alerts":
        return cmd_alerts(args)
    if args.command == "notify":
        return cmd_notify(args)

    parser.print_help()
    return 0


if __name__ == '__main__':
    sys.exit(main())
