"""Command line interface.

Usage:
    varflow resolve sheet.yaml
    varflow resolve sheet.yaml --page fighter --json
    varflow run sheet.yaml --page fighter 'addValue("hp", -3)' 'setValue("hp", 0)'
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .engine import Engine
from .errors import ConfigError
from .persistence import JsonFilePersistence, MemoryPersistence
from .templates import format_value


def _print_scope(title: str, scope: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps({"scope": title, "variables": scope}, default=format_value, ensure_ascii=False))
        return
    print(f"[{title}]")
    for name, value in scope.items():
        print(f"  {name} = {format_value(value)}")


async def _resolve(engine: Engine, args: argparse.Namespace) -> int:
    global_scope = await engine.load()
    page_ids = [args.page] if args.page else engine.page_ids()
    if not args.page:
        _print_scope("global", global_scope, args.json)
    for page_id in page_ids:
        scope = await engine.resolve_page(page_id)
        _print_scope(page_id, scope, args.json)
    return 0


async def _run(engine: Engine, args: argparse.Namespace) -> int:
    await engine.load()
    result = await engine.run_command(args.page, args.commands)
    scope = await engine.page_scope(args.page)
    _print_scope(args.page, dict(scope), args.json)
    if not result.ok:
        print(f"command failed: {result.error}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="varflow", description="Resolve variable sheets and run commands")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    resolve = sub.add_parser("resolve", help="Print resolved variables")
    resolve.add_argument("config", help="YAML or JSON configuration file")
    resolve.add_argument("--page", help="Only this page (default: global scope and every page)")
    resolve.add_argument("--json", action="store_true", help="One JSON object per scope")
    resolve.add_argument("--state", help="JSON file of persisted values")

    run = sub.add_parser("run", help="Run commands on a page and print its variables")
    run.add_argument("config", help="YAML or JSON configuration file")
    run.add_argument("--page", required=True)
    run.add_argument("--json", action="store_true")
    run.add_argument("--state", help="JSON file of persisted values (updated in place)")
    run.add_argument("commands", nargs="+")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    persistence = JsonFilePersistence(args.state) if args.state else MemoryPersistence()
    try:
        engine = Engine.from_file(args.config, persistence=persistence)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    if args.page and args.page not in engine.page_ids():
        print(f"error: unknown page: {args.page}", file=sys.stderr)
        return 1

    handler = _resolve if args.command == "resolve" else _run
    return asyncio.run(handler(engine, args))


if __name__ == "__main__":
    sys.exit(main())
