#!/usr/bin/env python3
"""
Pterodactyl Update Monitor - Main Entry Point

Loads the server list and starts one update orchestrator per server.

Usage:
    ptero-monitor                     # Use default config.yaml
    ptero-monitor --config my.yaml    # Use custom config file
    ptero-monitor --dry-run           # Print config and exit

Each orchestrator will:
1. Compare the server's running build with the latest published build
2. Trigger the watchdog update when they differ
3. Kill, reinstall and restart the server once it reports "starting"
4. Announce the update on Discord
"""

import argparse
import asyncio
import sys

from .common.config import AppSettings, load_settings, validate_target
from .common.exceptions import ConfigError
from .common.logging_setup import get_service_logger, setup_logging_from_env
from .supervisor import Supervisor

logger = get_service_logger("main")


def report_invalid_targets(settings: AppSettings) -> int:
    """
    Log configuration problems for every server.

    Invalid servers are still handed to the supervisor; their
    orchestrators refuse to start without affecting the others.

    Returns:
        Number of servers with problems
    """
    invalid = 0
    for target in settings.servers:
        errors = validate_target(target)
        if errors:
            invalid += 1
            for error in errors:
                logger.error(f"Configuration error in '{target.name or '<unnamed>'}': {error}")
    return invalid


def print_config_summary(settings: AppSettings):
    """Print a summary of the configuration."""
    print("\n" + "=" * 60)
    print("  PTERODACTYL UPDATE MONITOR")
    print("=" * 60)

    print(f"\n  Servers: {len(settings.servers)}")
    for target in settings.servers:
        valid = "ok" if not validate_target(target) else "INVALID"
        print(f"\n    - {target.name or '<unnamed>'} ({valid})")
        print(f"      Manifest: {target.manifest_url}")
        print(f"      Server: {target.server_url}")
        print(f"      Panel: {target.pterodactyl_api_url} (server {target.pterodactyl_server_id})")
        print(f"      Check Interval: {target.check_interval_seconds}s")
        print(f"      Discord: {'Enabled' if target.discord_webhook_url else 'Disabled'}")

    timings = settings.timings
    print(f"\n  Timings:")
    print(f"    - Cycle Timeout: {timings.cycle_timeout_s:g}s")
    print(f"    - Busy Backoff: {timings.busy_backoff_s:g}s")
    print(
        f"    - Post-Update Delays: kill {timings.kill_delay_s:g}s, "
        f"reinstall {timings.reinstall_delay_s:g}s, start {timings.start_delay_s:g}s"
    )

    status = settings.status
    if status.port:
        print(f"\n  Status Server: http://{status.host}:{status.port}")
    else:
        print(f"\n  Status Server: Disabled")

    print("=" * 60 + "\n")


async def main_async(settings: AppSettings):
    """
    Async main function.

    Args:
        settings: Loaded application settings
    """
    supervisor = Supervisor(settings)

    try:
        await supervisor.start()
    except asyncio.CancelledError:
        logger.info("Monitor cancelled")
        await supervisor.stop()
    except Exception as e:
        logger.critical(f"Supervisor failed: {e}")
        await supervisor.stop()
        raise


def main(argv: list[str] | None = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Keeps SS14 servers hosted on Pterodactyl on the latest build"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print configuration and exit without starting the monitor"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    args = parser.parse_args(argv)

    setup_logging_from_env(verbose=args.verbose)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        logger.critical(str(e))
        sys.exit(1)

    logger.info(f"Loaded configuration from {args.config}")

    invalid = report_invalid_targets(settings)
    if invalid == len(settings.servers):
        logger.critical("No server has a valid configuration")
        sys.exit(1)

    print_config_summary(settings)

    if args.dry_run:
        print("Dry run mode - exiting without starting the monitor")
        sys.exit(0)

    logger.info("Starting update monitor...")
    print("Press Ctrl+C to stop\n")

    try:
        asyncio.run(main_async(settings))
    except KeyboardInterrupt:
        print("\nStopped by user")


if __name__ == "__main__":
    main()
