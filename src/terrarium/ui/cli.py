# ruff: noqa: T201

from __future__ import annotations

import argparse
import json
import logging
import sys
from contextlib import contextmanager
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from terrarium.app import (
    apply_changes,
    build_engine,
    destroy_resources,
    load_graph,
    plan_changes,
    read_outputs,
)
from terrarium.config import ConfigurationError, configure_logging
from terrarium.domain.errors import ConfigError, StalePlanError, StateLockedError
from terrarium.domain.ports import ProviderRegistry

from .render import format_outputs, format_plan, format_report

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from types import FrameType

    from terrarium.domain.reconciliation import ReconciliationEngine

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_LOCKED = 3


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="terrarium",
        description="Plan and apply declarative infrastructure configurations",
    )
    parser.add_argument(
        "--state",
        type=str,
        help="Path of the SQLite state file (defaults to TERRARIUM_STATE_URI or the data dir)",
    )
    parser.add_argument(
        "--parallelism",
        type=int,
        help="Maximum number of concurrent provider operations (default: 10)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan = subparsers.add_parser("plan", help="Show the changes an apply would make")
    _add_config_arguments(plan)
    plan.add_argument(
        "--no-refresh",
        action="store_true",
        help="Plan against recorded state without reading resources from providers",
    )
    plan.add_argument("--destroy", action="store_true", help="Plan a full teardown")

    apply = subparsers.add_parser("apply", help="Create, update and delete resources")
    _add_config_arguments(apply)
    apply.add_argument(
        "--no-refresh",
        action="store_true",
        help="Skip reading resources from providers before planning",
    )

    destroy = subparsers.add_parser("destroy", help="Delete every recorded resource")
    _add_config_arguments(destroy)

    output = subparsers.add_parser("output", help="Print outputs evaluated against state")
    _add_config_arguments(output)

    subparsers.add_parser("force-unlock", help="Remove a stale state lock")

    args = parser.parse_args(list(argv))
    if args.parallelism is not None and args.parallelism < 1:
        raise ValueError("--parallelism must be at least 1")
    return args


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("config", type=str, help="Configuration document (.json, .toml, .yaml)")
    parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set a variable; JSON values are decoded, anything else is a string",
    )


def _parse_vars(items: Sequence[str]) -> dict[str, object]:
    variables: dict[str, object] = {}
    for item in items:
        name, separator, raw = item.partition("=")
        if not separator or not name.strip():
            raise ValueError(f"Invalid --var {item!r}; expected NAME=VALUE")
        try:
            variables[name.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            variables[name.strip()] = raw
    return variables


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        variables = _parse_vars(getattr(parsed_args, "var", []))
    except ValueError as exc:
        configure_logging()
        log.error(f"Invalid arguments: {exc}")
        sys.exit(EXIT_USAGE)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        code = _run(parsed_args, variables)
    except StateLockedError as exc:
        log.error(f"{exc}; use 'terrarium force-unlock' if no other run is active")
        sys.exit(EXIT_LOCKED)
    except (ConfigError, ConfigurationError, StalePlanError) as exc:
        log.error(str(exc))
        sys.exit(EXIT_USAGE)
    except Exception:
        log.exception("Fatal error during run")
        sys.exit(EXIT_FAILURE)

    if code != EXIT_OK:
        sys.exit(code)


def _run(args: argparse.Namespace, variables: dict[str, object]) -> int:
    if args.command == "force-unlock":
        engine = build_engine(
            state_path=args.state,
            parallelism=args.parallelism,
            registry=ProviderRegistry(),
        )
        if engine.state.force_unlock():
            print("State lock removed.")
        else:
            print("State was not locked.")
        return EXIT_OK

    engine = build_engine(state_path=args.state, parallelism=args.parallelism)
    graph = load_graph(args.config, registry=engine.registry, variables=variables)

    if args.command == "plan":
        plan = plan_changes(engine, graph, refresh=not args.no_refresh, destroy=args.destroy)
        print(format_plan(plan))
        return EXIT_OK
    if args.command == "apply":
        with _cancel_on_sigint(engine):
            result = apply_changes(engine, graph, refresh=not args.no_refresh)
        print(format_plan(result.plan))
        print(format_report(result.report))
        if result.outputs:
            print(format_outputs(result.outputs))
        return EXIT_OK if result.report.ok else EXIT_FAILURE
    if args.command == "destroy":
        with _cancel_on_sigint(engine):
            result = destroy_resources(engine, graph)
        print(format_report(result.report))
        return EXIT_OK if result.report.ok else EXIT_FAILURE
    if args.command == "output":
        print(format_outputs(read_outputs(engine, graph)))
        return EXIT_OK
    raise ValueError(f"Unsupported command: {args.command}")


@contextmanager
def _cancel_on_sigint(engine: ReconciliationEngine) -> Iterator[None]:
    """Route Ctrl+C to ``engine.cancel()``; a second Ctrl+C aborts immediately."""

    def handle(_signal_received: int, _frame: FrameType | None) -> None:
        if engine.cancelled:
            raise KeyboardInterrupt
        log.warning("Interrupted; waiting for in-flight actions (Ctrl+C again to abort)")
        engine.cancel()

    previous = signal(SIGINT, handle)
    try:
        yield
    finally:
        signal(SIGINT, previous)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    signal(SIGINT, sigint_handler)
    main()
