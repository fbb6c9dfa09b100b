"""serverkit command-line interface.

Thin argparse front end over the orchestrator: builds a config from the
arguments, runs the matching strategy and renders the result either as Rich
console output or, with ``--json``, as a single JSON document on stdout. The
process exit code follows :class:`serverkit.errors.ExitCode`.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from rich.panel import Panel
from rich.table import Table

from serverkit.audit import validate_project
from serverkit.config import Settings
from serverkit.engine.orchestrator import ScaffoldOptions, ScaffoldOrchestrator, ScaffoldResult
from serverkit.engine.snapshot import SnapshotStore
from serverkit.errors import ExitCode, ScaffoldError, error_payload, exit_code_for
from serverkit.inventory import ENTITY_TYPES, STATUS_FILTERS, EntityInfo, discover_entities, filter_entities
from serverkit.strategies import parse_config, strategy_for
from serverkit.utils import console, print_error, print_success, print_summary_table, print_warning, set_verbose

# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="serverkit",
        description="serverkit -- transactional scaffolding for MCP server projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  serverkit add tool weather --description 'Current weather'\n"
            "  serverkit add resource config --static\n"
            "  serverkit add binding kv --name MY_CACHE\n"
            "  serverkit add auth stytch\n"
            "  serverkit backups list\n"
            "  serverkit list tools --filter untested\n"
            "  serverkit validate --strict\n"
        ),
    )
    parser.add_argument("--cwd", default=".", help="Project root (default: current directory)")
    parser.add_argument("--json", action="store_true", help="Print a single JSON document instead of console output")
    parser.add_argument("--dry-run", action="store_true", help="Validate only; change nothing")
    parser.add_argument("--skip-backup", action="store_true", help="Do not snapshot the project first")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show anchor and state-machine diagnostics")

    commands = parser.add_subparsers(dest="command", required=True)

    # -- add ----------------------------------------------------------------
    add = commands.add_parser("add", help="Add an entity, binding or authentication")
    targets = add.add_subparsers(dest="target", required=True)

    for entity_type in ("tool", "prompt", "resource"):
        sub = targets.add_parser(entity_type, help=f"Add a {entity_type}")
        sub.add_argument("name", help=f"{entity_type} name in kebab-case")
        sub.add_argument("--description", "-d", default="", help="Human-readable description")
        sub.add_argument("--no-tests", action="store_true", help="Skip test generation")
        sub.add_argument("--no-register", action="store_true", help="Do not register in src/index.ts")
        if entity_type == "resource":
            kind = sub.add_mutually_exclusive_group()
            kind.add_argument("--static", action="store_true", help="Fixed URI (config://<name>)")
            kind.add_argument("--dynamic", action="store_true", help="Templated URI (resource://{id})")
            sub.add_argument("--uri-pattern", default=None, help="Explicit URI pattern")

    binding = targets.add_parser("binding", help="Add a Cloudflare binding")
    binding.add_argument("binding_type", choices=["kv", "d1", "r2"])
    binding.add_argument("--name", required=True, help="Binding name in UPPER_SNAKE_CASE")
    binding.add_argument("--database", default=None, help="D1 database name (default: kebab-case of --name)")
    binding.add_argument("--bucket", default=None, help="R2 bucket name (default: kebab-case of --name)")
    binding.add_argument("--skip-helper", action="store_true", help="Do not generate a helper class")

    auth = targets.add_parser("auth", help="Add authentication")
    auth.add_argument("provider", choices=["stytch", "auth0", "workos"])
    auth.add_argument("--platform", choices=["cloudflare", "vercel"], default=None)
    auth.add_argument("--force", action="store_true", help="Regenerate existing authentication")
    auth.add_argument("--type-check", action="store_true", help="Run tsc --noEmit after the change")

    # -- backups ------------------------------------------------------------
    backups = commands.add_parser("backups", help="Inspect leftover snapshots")
    actions = backups.add_subparsers(dest="action", required=True)
    actions.add_parser("list", help="List snapshots, newest first")
    restore = actions.add_parser("restore", help="Restore a snapshot into the project")
    restore.add_argument("name")
    restore.add_argument("--keep", action="store_true", help="Keep the snapshot after restoring")
    remove = actions.add_parser("remove", help="Delete a snapshot")
    remove.add_argument("name")

    # -- list / validate ----------------------------------------------------
    listing = commands.add_parser("list", help="List tools, prompts or resources and their status")
    listing.add_argument("plural", choices=[f"{t}s" for t in ENTITY_TYPES])
    listing.add_argument(
        "--filter", "-f", choices=STATUS_FILTERS, default="all", help="Only show entities with this status"
    )
    listing.add_argument("--show-examples", action="store_true", help="Include _example modules")

    validate = commands.add_parser("validate", help="Check registrations, tests, specs and configuration")
    validate.add_argument("--strict", action="store_true", help="Fail on advisory findings too")

    return parser


def config_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Translate parsed ``add`` arguments into a raw config mapping."""
    if args.target in ("tool", "prompt", "resource"):
        raw: dict[str, Any] = {
            "kind": "entity",
            "entity_type": args.target,
            "name": args.name,
            "description": args.description,
            "generate_tests": not args.no_tests,
            "auto_register": not args.no_register,
        }
        if args.target == "resource":
            raw["resource_options"] = {
                "static": args.static,
                "dynamic": args.dynamic,
                "uri_pattern": args.uri_pattern,
            }
        return raw
    if args.target == "binding":
        raw = {
            "kind": "binding",
            "binding_type": args.binding_type,
            "binding_name": args.name,
            "skip_helper": args.skip_helper,
        }
        if args.database is not None:
            raw["database_name"] = args.database
        if args.bucket is not None:
            raw["bucket_name"] = args.bucket
        return raw
    return {
        "kind": "auth",
        "provider": args.provider,
        "platform": args.platform,
        "force": args.force,
        "type_check": args.type_check,
    }


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _run_add(args: argparse.Namespace, settings: Settings, root: Path) -> dict[str, Any]:
    config = parse_config(config_from_args(args))
    kwargs: dict[str, Any] = {"metadata_file": settings.metadata_file}
    if config.kind == "auth":
        kwargs["command_timeout"] = settings.command_timeout
    strategy = strategy_for(config, **kwargs)

    orchestrator = ScaffoldOrchestrator(settings=settings)
    options = ScaffoldOptions(skip_backup=args.skip_backup, dry_run=args.dry_run)
    result = orchestrator.run(root, config, strategy, options)

    if not args.json:
        _print_result(result, dry_run=args.dry_run)
    payload = result.model_dump()
    payload["dryRun"] = args.dry_run
    return payload


def _run_backups(args: argparse.Namespace, settings: Settings, root: Path) -> dict[str, Any]:
    store = SnapshotStore(settings)

    if args.action == "list":
        handles = store.list(root)
        if not args.json:
            if not handles:
                console.print("No backups found.")
            else:
                table = Table(title="Backups", show_header=True, header_style="bold cyan")
                table.add_column("Name", no_wrap=True)
                table.add_column("Purpose")
                table.add_column("Created")
                for handle in handles:
                    table.add_row(handle.name, handle.purpose, handle.created_at)
                console.print(table)
        return {"success": True, "backups": [h.to_dict() for h in handles]}

    handle = store.find(root, args.name)
    if args.action == "restore":
        store.restore(handle, root)
        if not args.keep:
            store.remove(handle)
        if not args.json:
            print_success(f"Restored {handle.name}")
        return {"success": True, "restored": handle.name, "kept": args.keep}

    store.remove(handle)
    if not args.json:
        print_success(f"Removed {handle.name}")
    return {"success": True, "removed": handle.name}


def _run_list(args: argparse.Namespace, settings: Settings, root: Path) -> dict[str, Any]:
    entity_type = args.plural[:-1]
    entities = filter_entities(
        discover_entities(root, entity_type, include_examples=args.show_examples),
        args.filter,
    )
    if not args.json:
        _print_entities(args.plural, entities)
    return {
        "success": True,
        "type": entity_type,
        "filter": args.filter,
        "entities": [entity.model_dump(by_alias=True) for entity in entities],
    }


def _run_validate(args: argparse.Namespace, settings: Settings, root: Path) -> dict[str, Any]:
    result = validate_project(root, strict=args.strict, metadata_file=settings.metadata_file)
    if not args.json:
        for error in result.errors:
            if "(advisory)" not in error:
                print_error(error)
        summary = f"{len(result.passed_checks)} passed, {len(result.failed_checks)} failed"
        if result.passed:
            print_success(f"Project is valid ({summary})")
        else:
            print_error(f"Validation failed ({summary})")
    payload = result.model_dump()
    payload["success"] = result.passed
    payload["strict"] = args.strict
    return payload


def _print_entities(plural: str, entities: list[EntityInfo]) -> None:
    if not entities:
        console.print(f"No {plural} found.")
        return

    def mark(flag: bool) -> str:
        return "[green]yes[/green]" if flag else "[red]no[/red]"

    table = Table(title=plural.capitalize(), show_header=True, header_style="bold cyan")
    table.add_column("Name", no_wrap=True)
    table.add_column("Registered")
    table.add_column("Unit")
    table.add_column("Integration")
    table.add_column("Description")
    for entity in entities:
        table.add_row(
            entity.name,
            mark(entity.registered),
            mark(entity.has_unit_test),
            mark(entity.has_integration_test),
            entity.description or "",
        )
    console.print(table)
    total = len(entities)
    console.print(
        f"{total} {plural}: "
        f"{sum(e.registered for e in entities)}/{total} registered, "
        f"{sum(e.has_unit_test for e in entities)}/{total} unit tested, "
        f"{sum(e.has_integration_test for e in entities)}/{total} with integration specs"
    )


_HANDLERS = {
    "add": _run_add,
    "backups": _run_backups,
    "list": _run_list,
    "validate": _run_validate,
}


def _print_result(result: ScaffoldResult, dry_run: bool) -> None:
    if dry_run:
        print_success("Validation passed (dry run, nothing changed)")
        return

    print_success("Done.")
    summary: dict[str, str] = {}
    if result.files_created:
        summary["Created"] = "\n".join(result.files_created)
    if result.files_modified:
        summary["Modified"] = "\n".join(result.files_modified)
    if summary:
        print_summary_table(summary, title="Changes")
    for warning in result.warnings:
        print_warning(warning)
    if result.next_steps:
        steps = "\n".join(f"{i}. {step}" for i, step in enumerate(result.next_steps, start=1))
        console.print(Panel(steps, title="Next steps", style="cyan"))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for ``serverkit`` and ``python -m serverkit``."""
    parser = build_parser()
    args = parser.parse_args(argv)

    set_verbose(args.verbose and not args.json)
    previous_quiet = console.quiet
    if args.json:
        console.quiet = True

    try:
        settings = Settings.from_env()
        root = Path(args.cwd).resolve()
        handler = _HANDLERS[args.command]
        payload = handler(args, settings, root)
        exit_code = int(ExitCode.SUCCESS if payload.get("success", True) else ExitCode.VALIDATION_ERROR)
    except Exception as exc:  # every failure becomes an exit code and, in JSON mode, an error object
        payload = error_payload(exc)
        exit_code = exit_code_for(exc)
        if not args.json:
            print_error(f"Error: {exc}")
            if isinstance(exc, ScaffoldError) and exc.suggestion:
                print_warning(f"Suggestion: {exc.suggestion}")
    finally:
        console.quiet = previous_quiet
        set_verbose(False)

    if args.json:
        sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
