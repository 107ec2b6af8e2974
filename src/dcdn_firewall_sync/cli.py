"""Command-line entry point.

Runs the scheduler until SIGINT/SIGTERM, or a single pass with ``--once``.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

from dcdn_firewall_sync import __version__
from dcdn_firewall_sync.config import DEFAULT_CONFIG_PATH, generate_sample_config, load_config
from dcdn_firewall_sync.exceptions import ConfigError, SetupError
from dcdn_firewall_sync.logging_config import setup_logging
from dcdn_firewall_sync.models import SyncStatus
from dcdn_firewall_sync.scheduler import Scheduler

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_GENERATED = 2


def cmd_gen_config(config_path: Path) -> int:
    """Write a sample configuration file.

    Args:
        config_path: Destination path.

    Returns:
        Exit code.
    """
    path = generate_sample_config(config_path)
    print(f"Sample config written to {path}")
    return EXIT_OK


def cmd_once(scheduler: Scheduler) -> int:
    """Run a single sync pass.

    Args:
        scheduler: Configured scheduler.

    Returns:
        Exit code (0 only if the pass completed without errors).
    """
    print("Running one sync pass...")
    task = scheduler.run_once()
    if task is None:
        print("Error: another sync pass is already running", file=sys.stderr)
        return EXIT_ERROR

    for result in task.group_results:
        if result.error:
            print(f"❌ {result.group_name}: {result.error}")
        else:
            print(f"✓ {result.group_name}: Synced {result.ips_count} IPs")

    if task.status != SyncStatus.COMPLETED:
        print(f"Error: sync pass {task.status.value}: {task.error_msg}", file=sys.stderr)
        return EXIT_ERROR

    print(f"Sync complete: {len(task.added_ips)} IPs in {task.duration_seconds:.1f}s")
    return EXIT_OK


def cmd_run(scheduler: Scheduler) -> int:
    """Run the scheduler until a stop signal arrives.

    Args:
        scheduler: Configured scheduler.

    Returns:
        Exit code.
    """

    def handle_signal(signum: int, _frame: object) -> None:
        logger.info("Received signal %s, shutting down", signal.Signals(signum).name)
        scheduler.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    print("Starting scheduler...")
    scheduler.start()
    print("Scheduler exited")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Sync Aliyun DCDN L2 node IPs to Cloud Firewall address books",
        prog="dcdn-firewall-sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one sync pass and exit",
    )
    parser.add_argument(
        "--gen-config",
        action="store_true",
        help="Write a sample config file and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Aliyun DCDN Firewall Sync v{__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command line arguments.

    Returns:
        Exit code.
    """
    args = build_parser().parse_args(argv)

    if args.gen_config:
        return cmd_gen_config(args.config)

    if not args.config.exists():
        print(f"Config file not found, generating a sample at {args.config}")
        generate_sample_config(args.config)
        print(f"Edit {args.config} and run again")
        return EXIT_CONFIG_GENERATED

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(config.logging, verbose=args.verbose)

    try:
        scheduler = Scheduler.from_config(config)
        if args.once:
            return cmd_once(scheduler)
        return cmd_run(scheduler)
    except SetupError as e:
        logger.error("Scheduler setup failed: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except Exception as e:
        logger.exception("Unexpected error")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
