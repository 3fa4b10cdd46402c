#!/usr/bin/env python3
"""
Blue-green manager CLI entry point.

Exit codes: 0 success, 1 health-check failure, 2 provision failure,
3 router apply failure, 4 deployment already in progress, 5 other errors.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from bluegreen_manager.config.settings import BlueGreenConfig
from bluegreen_manager.core import build_orchestrator
from bluegreen_manager.errors import (
    EXIT_ERROR,
    EXIT_SUCCESS,
    BlueGreenError,
    RouterApplyFailedError,
)
from bluegreen_manager.logging_config import setup_basic_logging, setup_logging
from bluegreen_manager.output import FORMATS, format_output

DEFAULT_CONFIG_PATH = "/etc/bluegreen-manager/config.yml"

HISTORY_COLUMNS = ["started_at", "version", "previous_slot", "target_slot", "outcome", "reason"]
ATTEMPT_COLUMNS = ["attempt_id", "version", "target_slot", "outcome", "reason", "health_attempts"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bluegreen-manager",
        description="Blue-green deployment manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Deploy a version to the inactive slot and switch traffic to it
  bluegreen-manager deploy 1.4.2

  # Trigger the deploy on a running manager instead
  bluegreen-manager --api-url http://127.0.0.1:8890 deploy 1.4.2

  # Show the active slot and the last attempt
  bluegreen-manager status

  # Run the API
  bluegreen-manager serve
        """,
    )
    parser.add_argument(
        "--config",
        "-c",
        default=os.environ.get("BLUEGREEN_CONFIG", DEFAULT_CONFIG_PATH),
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--format", "-f", choices=FORMATS, default="table", help="Output format (default: table)"
    )
    parser.add_argument(
        "--api-url",
        default=os.environ.get("BLUEGREEN_API_URL"),
        help="Send commands to a running manager instead of acting locally",
    )
    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Generate default configuration file and exit",
    )
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration file and exit"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    deploy_parser = subparsers.add_parser("deploy", help="Deploy a version and switch traffic")
    deploy_parser.add_argument("version", help="Artifact version to deploy")

    subparsers.add_parser("status", help="Show active slot and last attempt")

    history_parser = subparsers.add_parser("history", help="Show recent deployment attempts")
    history_parser.add_argument(
        "--limit", "-n", type=int, default=10, help="Number of attempts (default: 10)"
    )

    subparsers.add_parser("reconcile", help="Point the router at the registry's active slot")
    subparsers.add_parser("serve", help="Run the HTTP API")

    return parser


def configure_logging(config: BlueGreenConfig, verbose: bool = False) -> None:
    """Set up file logging, falling back to the console when not permitted."""
    console_level = "DEBUG" if verbose else config.logging.console_level
    try:
        setup_logging(
            log_dir=config.logging.log_dir,
            console_level=console_level,
            file_level=config.logging.file_level,
            use_json=config.logging.use_json,
        )
    except OSError:
        setup_basic_logging(verbose)


def _print_attempt_result(result: Dict[str, Any], output_format: str) -> None:
    if output_format == "table":
        print(format_output([result["attempt"]], "table", ATTEMPT_COLUMNS))
    else:
        print(format_output(result, output_format))
    for warning in result.get("warnings", []):
        print(f"WARNING: {warning}", file=sys.stderr)


def _print_history(attempts: List[Dict[str, Any]], output_format: str) -> None:
    columns = HISTORY_COLUMNS if output_format == "table" else None
    print(format_output(attempts, output_format, columns))


async def run_local(args: argparse.Namespace, config: BlueGreenConfig) -> int:
    """Run a command against this host's slots directly."""
    orchestrator = build_orchestrator(config)

    if args.command == "deploy":
        # A crash between a router switch and its commit leaves them disagreeing
        applied, error = await orchestrator.reconcile()
        if not applied:
            raise RouterApplyFailedError(
                f"Router does not match the active slot and could not be reconciled: {error}"
            )
        result = await orchestrator.deploy(args.version)
        content = result.model_dump(mode="json")
        _print_attempt_result(content, args.format)
        return result.exit_code

    if args.command == "status":
        print(format_output(await orchestrator.status(), args.format))
        return EXIT_SUCCESS

    if args.command == "history":
        attempts = await orchestrator.history(limit=args.limit)
        _print_history([a.model_dump(mode="json") for a in attempts], args.format)
        return EXIT_SUCCESS

    if args.command == "reconcile":
        applied, error = await orchestrator.reconcile()
        if not applied:
            print(f"Reconcile failed: {error}", file=sys.stderr)
            return EXIT_ERROR
        print("Router matches the active slot")
        return EXIT_SUCCESS

    raise ValueError(f"Unknown command: {args.command}")


def run_remote(args: argparse.Namespace) -> int:
    """Run a command against a running manager's API."""
    from bluegreen_manager.client import BlueGreenClient

    client = BlueGreenClient(args.api_url)

    if args.command == "deploy":
        result = client.deploy(args.version)
        _print_attempt_result(result, args.format)
        return int(result.get("exit_code", EXIT_ERROR))

    if args.command == "status":
        print(format_output(client.status(), args.format))
        return EXIT_SUCCESS

    if args.command == "history":
        _print_history(client.history(limit=args.limit), args.format)
        return EXIT_SUCCESS

    print(f"Command '{args.command}' is not available with --api-url", file=sys.stderr)
    return EXIT_ERROR


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        BlueGreenConfig().save(args.config)
        print(f"Generated default configuration at: {args.config}")
        return EXIT_SUCCESS

    try:
        config = BlueGreenConfig.from_file(args.config)
    except BlueGreenError as e:
        print(f"Configuration invalid: {e}", file=sys.stderr)
        return e.exit_code

    if args.validate_config:
        print(f"Configuration valid: {args.config}")
        return EXIT_SUCCESS

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    configure_logging(config, args.verbose)
    logger = logging.getLogger(__name__)

    try:
        if args.command == "serve":
            from bluegreen_manager.api.app import serve

            serve(config, build_orchestrator(config))
            return EXIT_SUCCESS
        if args.api_url:
            return run_remote(args)
        return asyncio.run(run_local(args, config))
    except BlueGreenError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_SUCCESS
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"Error running bluegreen-manager: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
