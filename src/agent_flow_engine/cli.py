"""CLI entrypoint for annotating, inspecting and running flow documents."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from agent_flow_engine import __version__
from agent_flow_engine.core.config import FlowEngineConfig
from agent_flow_engine.core.runner import FlowRunner
from agent_flow_engine.flows.engine import CancellationToken
from agent_flow_engine.flows.errors import PathError, RunCancelledError, TreeContractError
from agent_flow_engine.flows.events import NodeEvent
from agent_flow_engine.flows.models import FlowDefinition
from agent_flow_engine.flows.paths import resolve_path
from agent_flow_engine.flows.results import RunResult
from agent_flow_engine.flows.status import RunStatus

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_RUN_FAILED = 3
EXIT_CANCELLED = 4


def _parse_var(value: str) -> tuple[str, Any]:
    name, sep, raw = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {value!r}")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = raw
    return name, parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flow-engine",
        description="Define, inspect and run agent flows",
    )
    parser.add_argument(
        "--version", action="version", version=f"agent-flow-engine {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    annotate = subparsers.add_parser(
        "annotate", help="Fill in node ids and breadcrumb labels and print the flow"
    )
    annotate.add_argument("flow", type=Path, help="Flow document (JSON)")
    annotate.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the annotated document here instead of stdout",
    )

    resolve = subparsers.add_parser("resolve", help="Print the node a path expression addresses")
    resolve.add_argument("flow", type=Path, help="Flow document (JSON)")
    resolve.add_argument("path", help="Path expression, e.g. '$.input[1].input[0]'")

    run = subparsers.add_parser("run", help="Execute a flow and print its result tree")
    run.add_argument("flow", type=Path, help="Flow document (JSON)")
    run.add_argument(
        "--var",
        dest="variables",
        action="append",
        type=_parse_var,
        default=[],
        metavar="NAME=VALUE",
        help="Run variable; VALUE is parsed as JSON when possible (repeatable)",
    )
    run.add_argument(
        "--vars-file",
        type=Path,
        default=None,
        help="JSON object with run variables (--var entries take precedence)",
    )
    run.add_argument(
        "--executor",
        choices=["echo", "openai"],
        default=None,
        help="Agent executor (defaults to FLOW_ENGINE_LLM_PROVIDER)",
    )
    run.add_argument(
        "--resume",
        type=Path,
        default=None,
        help="Result of an earlier run; its succeeded steps are reused",
    )
    run.add_argument(
        "--events",
        action="store_true",
        help="Stream node transitions to stderr as JSON lines",
    )

    return parser


def load_definition(path: Path) -> FlowDefinition:
    return FlowDefinition.model_validate_json(path.read_text(encoding="utf-8"))


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)


def _print_event(event: NodeEvent) -> None:
    print(event.model_dump_json(exclude_none=True), file=sys.stderr, flush=True)


async def _run(
    runner: FlowRunner,
    definition: FlowDefinition,
    variables: dict[str, Any],
    resume_from: RunResult | None,
    events: bool,
) -> RunResult:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except NotImplementedError:
        # Windows event loops have no signal handler support.
        pass
    return await runner.run(
        definition,
        variables,
        token,
        observer=_print_event if events else None,
        resume_from=resume_from,
    )


def _run_command(args: argparse.Namespace, runner: FlowRunner, definition: FlowDefinition) -> int:
    variables: dict[str, Any] = {}
    if args.vars_file is not None:
        loaded = json.loads(args.vars_file.read_text(encoding="utf-8"))
        if not isinstance(loaded, dict):
            print(f"{args.vars_file} must contain a JSON object", file=sys.stderr)
            return EXIT_INVALID
        variables.update(loaded)
    variables.update(dict(args.variables))

    resume_from = None
    if args.resume is not None:
        resume_from = RunResult.model_validate_json(args.resume.read_text(encoding="utf-8"))

    try:
        result = asyncio.run(_run(runner, definition, variables, resume_from, args.events))
    except RunCancelledError as e:
        print(e.result.model_dump_json(indent=2))
        return EXIT_CANCELLED

    print(result.model_dump_json(indent=2))
    if result.status is RunStatus.SUCCEEDED:
        return EXIT_OK
    for failure in result.failures():
        if failure.error is not None:
            logger.warning(
                "Node failed",
                extra={"node_path": failure.path, "error_kind": failure.error.kind.value},
            )
    return EXIT_RUN_FAILED


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = FlowEngineConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_INVALID

    if getattr(args, "executor", None):
        config = config.model_copy(
            update={"llm": config.llm.model_copy(update={"provider": args.executor})}
        )

    runner = FlowRunner(config)

    try:
        definition = load_definition(args.flow)
    except (OSError, ValidationError) as e:
        print(f"Invalid flow document {args.flow}:", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_INVALID

    try:
        if args.command == "annotate":
            annotated = runner.prepare(definition)
            text = annotated.model_dump_json(indent=2)
            if args.output is None:
                print(text)
            else:
                args.output.write_text(text + "\n", encoding="utf-8")
                print(f"Annotated flow written to {args.output}")
            return EXIT_OK

        if args.command == "resolve":
            annotated = runner.prepare(definition)
            target = resolve_path(annotated.flow, args.path)
            print(_dump(target.model_dump(mode="json", exclude_none=True)))
            return EXIT_OK

        if args.command == "run":
            return _run_command(args, runner, definition)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_INVALID

    except PathError as e:
        print(f"Path error: {e}", file=sys.stderr)
        return EXIT_INVALID

    except TreeContractError as e:
        print(f"Invalid flow tree: {e}", file=sys.stderr)
        return EXIT_INVALID

    except (OSError, ValueError) as e:
        logger.warning("Invalid input", extra={"error": str(e)})
        print(f"Invalid input: {e}", file=sys.stderr)
        return EXIT_INVALID

    except Exception:
        logger.exception("Command failed")
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
