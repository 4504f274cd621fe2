"""Command line entry point: run workflows and actor commands from a shell."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Sequence

from fastapi.encoders import jsonable_encoder

from vitrus.client import Vitrus
from vitrus.config import get_settings
from vitrus.errors import VitrusError
from vitrus.version import __version__

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vitrus", description="Talk to the Vitrus orchestration service.")
    parser.add_argument("--api-key", help="API key (default: VITRUS_API_KEY or config file)")
    parser.add_argument("--world", help="World id scoping actors and agents")
    parser.add_argument("--base-url", help="Service WebSocket endpoint")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    workflow = subparsers.add_parser("workflow", help="Run a workflow and print its result")
    workflow.add_argument("name", help="Workflow name")
    workflow.add_argument("--args", default="{}", help="Workflow arguments as a JSON object")

    subparsers.add_parser("workflows", help="List available workflows")

    run = subparsers.add_parser("run", help="Run a command on an actor")
    run.add_argument("actor", help="Target actor name")
    run.add_argument("actor_command", metavar="COMMAND", help="Command name")
    run.add_argument("args", nargs="*", help="Positional arguments (parsed as JSON when possible)")
    return parser


def parse_arg(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _workflow_args(raw: str) -> Dict[str, Any]:
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("must be a JSON object")
    return parsed


async def _execute(client: Vitrus, args: argparse.Namespace) -> Any:
    async with client:
        if args.command == "workflow":
            return await client.workflow(args.name, args.workflow_args)
        if args.command == "workflows":
            return await client.list_workflows()
        return await client.run_command(args.actor, args.actor_command, [parse_arg(item) for item in args.args])


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.command == "workflow":
        try:
            args.workflow_args = _workflow_args(args.args)
        except ValueError as exc:
            parser.error(f"--args {exc}")

    settings = get_settings()
    level = logging.DEBUG if args.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        client = Vitrus(
            api_key=args.api_key,
            world=args.world,
            base_url=args.base_url,
            debug=args.debug,
            settings=settings,
        )
    except ValueError as exc:
        parser.error(str(exc))

    try:
        result = asyncio.run(_execute(client, args))
    except VitrusError as exc:
        LOGGER.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(jsonable_encoder(result), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
