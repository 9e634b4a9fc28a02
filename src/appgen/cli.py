"""AppGen command-line host.

Usage:
    appgen create "A CRM for a small bakery"   # Generate and deploy an app
    appgen health                              # Check connectivity and credentials

Progress goes to stdout; structured logs go to stderr.

Exit codes:
    0   success
    1   failure (sanitized reason printed as the last progress line)
    2   invalid prompt or usage
    130 interrupted (Ctrl-C)
"""

import argparse
import asyncio
import sys

from .__version__ import __version__
from .config import get_config
from .errors import ConfigurationError, InputValidationError
from .logging_config import configure_logging
from .metrics import push_metrics
from .orchestrator import AppGenOrchestrator
from .validation import validate_prompt

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appgen",
        description="Generate and deploy an application from a prompt",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s create "A CRM for a small bakery"   # Generate and deploy
  %(prog)s health                              # Check authentication

Configuration:
  Set tenant credentials in the environment or .env:
    OS_HOSTNAME=your-tenant.outsystems.dev
    OS_USERNAME=user@example.com
    OS_PASSWORD=your_password

  Export metrics from each run to a Prometheus Pushgateway:
    APPGEN_PUSHGATEWAY_ENABLED=true
    APPGEN_PUSHGATEWAY_URL=localhost:9091
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: APPGEN_LOG_LEVEL from environment or .env, else INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        default=None,
        help="Log format (default: APPGEN_LOG_FORMAT from environment or .env, else json)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create and deploy an app from a prompt")
    create.add_argument("prompt", help="Description of the app (10-500 characters)")

    subparsers.add_parser("health", help="Check API connectivity and authentication")
    return parser


def print_configuration_help() -> None:
    print("", file=sys.stderr)
    print("To configure:", file=sys.stderr)
    print("  1. Set OS_HOSTNAME to your tenant hostname", file=sys.stderr)
    print("  2. Set OS_USERNAME and OS_PASSWORD", file=sys.stderr)
    print("  3. Or put them in a .env file in the working directory", file=sys.stderr)


async def run_create(orchestrator: AppGenOrchestrator, prompt: str) -> int:
    """Stream progress to stdout and return an exit code."""
    try:
        await orchestrator.run_to_completion(prompt, on_progress=lambda m: print(m, flush=True))
    except ConfigurationError:
        print_configuration_help()
        return EXIT_FAILURE
    except Exception:
        # Sanitized reason was already printed as the last progress line
        return EXIT_FAILURE
    return EXIT_SUCCESS


async def run_health(orchestrator: AppGenOrchestrator) -> int:
    result = await orchestrator.health_check()
    print(result.message)
    return EXIT_SUCCESS if result.success else EXIT_FAILURE


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = get_config()
    except Exception as e:
        print(f"Error: Failed to load configuration: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    # Flags win over settings (environment and .env)
    configure_logging(
        level=args.log_level or config.log_level,
        log_format=args.log_format or config.log_format,
    )

    if args.command == "create":
        try:
            prompt = validate_prompt(args.prompt)
        except InputValidationError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(EXIT_USAGE)

    orchestrator = AppGenOrchestrator(config=config)

    try:
        if args.command == "create":
            code = asyncio.run(run_create(orchestrator, prompt))
        else:
            code = asyncio.run(run_health(orchestrator))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        code = EXIT_INTERRUPTED
    finally:
        if config.pushgateway_enabled:
            push_metrics(
                config.pushgateway_url, timeout=config.pushgateway_timeout_seconds
            )

    sys.exit(code)


if __name__ == "__main__":
    main()
