#!/usr/bin/env python3
"""CLI entry point for the outreach engine.

Usage:
    outreach-engine run
    outreach-engine run --duration-days 7 --discover-now
    outreach-engine check-env
    outreach-engine health
    outreach-engine phase --customers 12
    outreach-engine window --at 2026-10-21T10:00:00-05:00 --industry dentist

Exit codes: 0 on success, 1 on runtime failure or an unhealthy heartbeat,
2 on configuration errors.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from typing import Optional

from .clock import utcnow
from .config import Config, ConfigError
from .engine import build_engine
from .health_monitor import read_health_status
from .logging_utils import setup_logging
from .outreach_window import compute_optimal_send_time, is_optimal_window, next_optimal_day
from .phase_controller import PhaseController

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def print_env_status(status: dict[str, bool]) -> bool:
    """Print which credentials are configured.

    Returns:
        True if every credential needed to run is present.
    """
    optional = {"SLACK_BOT_TOKEN"}

    print("\nEnvironment Status:")
    print("-" * 40)
    missing = []
    for var, present in status.items():
        kind = "optional" if var in optional else "required"
        symbol = "✓" if present else ("-" if var in optional else "✗")
        print(f"  [{symbol}] {var} ({kind})")
        if not present and var not in optional:
            missing.append(var)
    print("-" * 40)

    if missing:
        print(f"\nError: Missing required environment variables: {', '.join(missing)}")
        return False
    return True


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="outreach-engine",
        description="Phase-driven lead discovery and scheduled email outreach",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    output = parser.add_argument_group("output options")
    output.add_argument("--verbose", "-v", action="store_true", help="Log at INFO level")
    output.add_argument("--debug", action="store_true", help="Log at DEBUG level")
    output.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON log lines"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run the engine")
    mode = run.add_mutually_exclusive_group()
    mode.add_argument(
        "--duration-days",
        type=int,
        metavar="N",
        help="Stop after N days (duration mode)",
    )
    mode.add_argument(
        "--continuous", action="store_true", help="Run until interrupted"
    )
    run.add_argument(
        "--discover-now",
        action="store_true",
        help="Run a discovery cycle immediately after startup",
    )

    commands.add_parser("check-env", help="Report which credentials are configured")

    health = commands.add_parser("health", help="Check the heartbeat file")
    health.add_argument("--path", help="Heartbeat file (default: HEALTH_STATUS_PATH)")

    phase = commands.add_parser("phase", help="Show the phase for a customer count")
    phase.add_argument("--customers", type=int, required=True, metavar="N")

    window = commands.add_parser("window", help="Show the send-window decision")
    window.add_argument("--at", help="ISO timestamp to evaluate (default: now)")
    window.add_argument("--industry", help="Industry for the send-time recommendation")

    return parser


def _parse_at(value: Optional[str]) -> datetime:
    if not value:
        return utcnow()
    return datetime.fromisoformat(value)


async def run_engine(config: Config, discover_now: bool) -> int:
    engine = build_engine(config)
    try:
        await engine.run_forever(discover_now=discover_now)
    except asyncio.CancelledError:
        await engine.stop()
    return EXIT_OK


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    if args.duration_days is not None:
        config.OPERATION_MODE = "duration"
        config.OPERATION_DURATION_DAYS = args.duration_days
    elif args.continuous:
        config.OPERATION_MODE = "continuous"

    try:
        return asyncio.run(run_engine(config, args.discover_now))
    except KeyboardInterrupt:
        print("\nInterrupted; engine stopped.")
        return EXIT_OK


def cmd_health(args: argparse.Namespace, config: Config) -> int:
    status = read_health_status(args.path or config.HEALTH_STATUS_PATH)
    print(
        json.dumps(
            {
                "is_healthy": status.is_healthy,
                "age_seconds": status.age_seconds,
                "error": status.error,
                "data": status.data,
            },
            indent=2,
            default=str,
        )
    )
    return EXIT_OK if status.is_healthy else EXIT_FAILURE


def cmd_phase(args: argparse.Namespace, config: Config) -> int:
    controller = PhaseController(config.GROWTH_STRATEGY_PATH)
    phase = controller.current_phase(args.customers)
    readiness = controller.evaluate_next_phase(args.customers)
    print(
        json.dumps(
            {
                "customers": args.customers,
                "phase": phase.phase,
                "name": phase.name,
                "stored_phase": controller.load_strategy().current_phase,
                "default_strategy": controller.degraded,
                "readiness": readiness.to_dict(),
            },
            indent=2,
        )
    )
    return EXIT_OK


def cmd_window(args: argparse.Namespace, config: Config) -> int:
    controller = PhaseController(config.GROWTH_STRATEGY_PATH)
    settings = controller.apply_overrides(
        controller.active_phase(), config.INDUSTRY_OVERRIDES, config.CITY_OVERRIDES
    )
    at = _parse_at(args.at)
    industry = args.industry or (settings.industries[0] if settings.industries else None)
    recommendation = compute_optimal_send_time(industry, at, settings.send_window)
    print(
        json.dumps(
            {
                "at": at.isoformat(),
                "in_window": is_optimal_window(at, settings.send_window, settings.industries),
                "industry": industry,
                "recommendation": recommendation.to_dict(),
                "next_optimal_day": next_optimal_day(at.date(), industry).isoformat(),
            },
            indent=2,
        )
    )
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    level = "DEBUG" if args.debug else ("INFO" if args.verbose else None)
    setup_logging(level=level, structured=True if args.json_logs else None)

    try:
        config = Config()
        if args.command == "check-env":
            return EXIT_OK if print_env_status(config.credential_report()) else EXIT_FAILURE
        if args.command == "health":
            return cmd_health(args, config)
        if args.command == "phase":
            return cmd_phase(args, config)
        if args.command == "window":
            return cmd_window(args, config)
        return cmd_run(args, config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
