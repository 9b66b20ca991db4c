"""
Command-line entry point.

Usage:
    cicd-harness [test] [--command CMD] [--port N] ...
    cicd-harness serve [--port N]
    cicd-harness pipeline [FILE]
    cicd-harness mcp
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config.settings import Settings, get_settings
from .exceptions import HarnessError, PipelineError
from .orchestrator import Orchestrator
from .utils.logging import get_logger, setup_logging
from .utils.pipeline_runner import run_pipeline_file
from .utils.validation import parse_command, parse_env_assignments, validate_port, validate_readiness_marker

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cicd-harness",
        description="Start a server, check its health endpoint and tear it down."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", type=str.upper,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    logs = parser.add_mutually_exclusive_group()
    logs.add_argument("--json-logs", dest="log_json", action="store_true", default=None)
    logs.add_argument("--console-logs", dest="log_json", action="store_false")

    commands = parser.add_subparsers(dest="action")

    test = commands.add_parser("test", help="Run the launch/assert/teardown scenario (default)")
    test.add_argument("--command", help="Start command (default: bundled server)")
    test.add_argument("--host", help="Host of the server")
    test.add_argument("--port", type=int, help="Port of the server")
    test.add_argument("--marker", help="Readiness marker printed by the server")
    test.add_argument("--attempts", type=int, help="Maximum launch attempts")
    test.add_argument("--startup-timeout", type=float, help="Seconds allowed per launch attempt")
    test.add_argument("--env", action="append", default=[], metavar="KEY=VALUE",
                      help="Extra environment variable for the server (repeatable)")

    serve = commands.add_parser("serve", help="Run the bundled health/webhook server")
    serve.add_argument("--host", help="Interface to bind")
    serve.add_argument("--port", type=int, help="Port to bind")

    pipeline = commands.add_parser("pipeline", help="Run a YAML pipeline")
    pipeline.add_argument("file", nargs="?", type=Path, help="Pipeline file (default: pipeline.yaml)")

    commands.add_parser("mcp", help="Run the MCP server")

    return parser


def _test_settings(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = validate_port(args.port)
        overrides["base_url"] = None
    if args.marker:
        overrides["readiness_marker"] = validate_readiness_marker(args.marker)
    if args.attempts is not None:
        overrides["max_attempts"] = max(1, args.attempts)
    if args.startup_timeout is not None:
        overrides["startup_timeout"] = args.startup_timeout
    return settings.model_copy(update=overrides)


def run_test(settings: Settings, args: argparse.Namespace) -> int:
    try:
        run_settings = _test_settings(settings, args)
        command = parse_command(args.command) if args.command else run_settings.command()
        env = parse_env_assignments(args.env)
        orchestrator = Orchestrator(
            settings=run_settings,
            command=command,
            env=env,
            handle_signals=True
        )
    except HarnessError as e:
        logger.error("invalid_arguments", error=str(e), context=e.context)
        return 2

    report = asyncio.run(orchestrator.run())
    return report.exit_code


def run_serve(settings: Settings, args: argparse.Namespace) -> int:
    from .webapp import serve

    port = validate_port(args.port) if args.port is not None else settings.port
    secret = settings.webhook_secret.get_secret_value() if settings.webhook_secret else None
    serve(
        host=args.host or settings.host,
        port=port,
        environment=settings.environment,
        webhook_secret=secret
    )
    return 0


def run_pipeline_command(settings: Settings, args: argparse.Namespace) -> int:
    path = args.file or settings.pipeline_file
    try:
        results = run_pipeline_file(path)
    except PipelineError as e:
        logger.error("pipeline_failed", path=str(path), error=str(e))
        return 1

    logger.info("pipeline_succeeded", path=str(path), steps=len(results))
    return 0


def run_mcp(settings: Settings, args: argparse.Namespace) -> int:
    from .server import main as mcp_main

    mcp_main()
    return 0


ACTIONS = {
    "test": run_test,
    "serve": run_serve,
    "pipeline": run_pipeline_command,
    "mcp": run_mcp,
}


GLOBAL_FLAGS = {"-h", "--help", "--version", "--json-logs", "--console-logs"}


def with_default_action(argv: List[str]) -> List[str]:
    """Insert ``test`` after the global options when no subcommand is given."""
    i = 0
    while i < len(argv):
        token = argv[i]
        if token == "--log-level":
            i += 2
        elif token in GLOBAL_FLAGS or token.startswith("--log-level="):
            i += 1
        else:
            break

    if i < len(argv) and argv[i] in ACTIONS:
        return argv
    return [*argv[:i], "test", *argv[i:]]


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    argv = list(argv if argv is not None else sys.argv[1:])
    args = parser.parse_args(with_default_action(argv))
    action = args.action

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_json is not None:
        overrides["log_json"] = args.log_json
    settings = get_settings().model_copy(update=overrides)

    if action != "mcp":
        settings.ensure_directories()
        setup_logging(level=settings.log_level, json_logs=settings.log_json, log_dir=settings.log_dir)

    return ACTIONS[action](settings, args)


if __name__ == "__main__":
    sys.exit(main())
