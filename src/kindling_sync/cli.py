"""Command line entry point: ``kindling-sync``.

All results go to stdout; logs and errors go to stderr.
"""

import argparse
import json
import logging
import sys

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from . import __version__
from .config import load_config
from .config_loader import load_hierarchical_config
from .config_schema import build_config, to_fallbacks
from .errors import KindlingSyncError, StoreError
from .logger import setup_logging
from .models import SourceFormat
from .service import SyncService
from .sync.reporter import (
    format_project_tree,
    format_reimport_summary,
    format_sync_preview,
    preview_to_json,
    summary_to_json,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


def _emit(args: argparse.Namespace, data: dict, text: str) -> None:
    if args.json:
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        print(text)


def _progress(done: int, total: int, label: str) -> None:
    logger.debug("Read %d/%d: %s", done, total, label)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_import(service: SyncService, args: argparse.Namespace) -> int:
    result = service.import_project(args.path, args.format, progress=_progress)
    counts = result.counts
    text = (
        f"Imported project {result.project_id}\n"
        f"  {counts['chapters']} chapters, {counts['scenes']} scenes, "
        f"{counts['beats']} beats, {counts['references']} references"
    )
    if result.needs_reclassification:
        text += (
            f"\n{result.guessed_references} reference types were guessed. "
            f"Review them with: kindling-sync show {result.project_id}"
        )
    _emit(args, result.model_dump(mode="json"), text)
    return EXIT_OK


def cmd_preview(service: SyncService, args: argparse.Namespace) -> int:
    preview = service.get_sync_preview(args.project_id, progress=_progress)
    _emit(args, preview_to_json(preview), format_sync_preview(preview))
    return EXIT_OK


def cmd_apply(service: SyncService, args: argparse.Namespace) -> int:
    changes = list(args.change or [])
    additions = list(args.addition or [])
    if args.all:
        preview = service.get_sync_preview(args.project_id)
        changes = preview.change_ids
        additions = preview.addition_ids
    elif not changes and not additions:
        print(
            "Nothing to apply: pass --change/--addition ids or --all",
            file=sys.stderr,
        )
        return EXIT_USAGE

    summary = service.apply_sync(args.project_id, changes, additions)
    _emit(args, summary_to_json(summary), format_reimport_summary(summary))
    return EXIT_OK


def cmd_reimport(service: SyncService, args: argparse.Namespace) -> int:
    summary = service.reimport_project(args.project_id, progress=_progress)
    _emit(args, summary_to_json(summary), format_reimport_summary(summary))
    return EXIT_OK


def cmd_reclassify(service: SyncService, args: argparse.Namespace) -> int:
    mapping: dict[str, str] = {}
    for pair in args.assignments:
        ref_id, sep, ref_type = pair.partition("=")
        if not sep or not ref_id or not ref_type:
            print(
                f"Invalid assignment {pair!r}: expected REFERENCE_ID=TYPE",
                file=sys.stderr,
            )
            return EXIT_USAGE
        mapping[ref_id.strip()] = ref_type.strip()

    updated = service.reclassify_references(args.project_id, mapping)
    text = "\n".join(
        f"{ref.name}: {ref.reference_type.value}" for ref in updated
    )
    _emit(args, {"updated": [r.model_dump(mode="json") for r in updated]}, text)
    return EXIT_OK


def cmd_show(service: SyncService, args: argparse.Namespace) -> int:
    store = service.store
    if not args.project_id:
        projects = store.list_projects()
        text = "\n".join(
            f"{p.id}  {p.name} ({p.source_format.value})" for p in projects
        )
        _emit(
            args,
            {"projects": [p.model_dump(mode="json") for p in projects]},
            text or "No projects.",
        )
        return EXIT_OK

    snapshot = store.snapshot(args.project_id)
    references = store.get_references(args.project_id)
    data = snapshot.model_dump(mode="json")
    data["references"] = [r.model_dump(mode="json") for r in references]
    _emit(args, data, format_project_tree(snapshot, references))
    return EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kindling-sync",
        description="Import story outlines and re-sync them with their source",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import a Plottr file
  kindling-sync import story.pltr --format plottr

  # See what changed in the source since the import
  kindling-sync preview <project-id>

  # Apply selected changes, or everything
  kindling-sync apply <project-id> --change scene-title-<id> --addition scene-md:ch0:sc1
  kindling-sync apply <project-id> --all

  # Fix guessed reference types
  kindling-sync reclassify <project-id> <reference-id>=locations
        """,
    )
    parser.add_argument(
        "--db",
        help="SQLite database file (takes precedence over KINDLING_DB_PATH and config files)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Log output format (default: text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"kindling-sync version {__version__}",
    )

    json_flag = argparse.ArgumentParser(add_help=False)
    json_flag.add_argument(
        "--json", action="store_true", help="Print machine-readable JSON"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", parents=[json_flag], help="Import a new project")
    p.add_argument("path", help="Source file, or vault directory for longform")
    p.add_argument(
        "--format",
        "-f",
        required=True,
        choices=[f.value for f in SourceFormat],
        help="Source format",
    )
    p.set_defaults(handler=cmd_import)

    p = sub.add_parser(
        "preview", parents=[json_flag], help="Show what a sync would change"
    )
    p.add_argument("project_id")
    p.set_defaults(handler=cmd_preview)

    p = sub.add_parser("apply", parents=[json_flag], help="Apply selected sync items")
    p.add_argument("project_id")
    p.add_argument(
        "--change", action="append", metavar="ID", help="Accept a change (repeatable)"
    )
    p.add_argument(
        "--addition",
        action="append",
        metavar="ID",
        help="Accept an addition (repeatable)",
    )
    p.add_argument(
        "--all", action="store_true", help="Accept everything in the preview"
    )
    p.set_defaults(handler=cmd_apply)

    p = sub.add_parser(
        "reimport", parents=[json_flag], help="Apply every addition and change"
    )
    p.add_argument("project_id")
    p.set_defaults(handler=cmd_reimport)

    p = sub.add_parser(
        "reclassify", parents=[json_flag], help="Change reference types"
    )
    p.add_argument("project_id")
    p.add_argument("assignments", nargs="+", metavar="REFERENCE_ID=TYPE")
    p.set_defaults(handler=cmd_reclassify)

    p = sub.add_parser(
        "show", parents=[json_flag], help="List projects or show one project"
    )
    p.add_argument("project_id", nargs="?")
    p.set_defaults(handler=cmd_show)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run one subcommand and return the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    try:
        unified = build_config(load_hierarchical_config())
        config = load_config(
            db_path=args.db,
            debug=args.debug,
            yaml_fallbacks=to_fallbacks(unified),
        )
    except (ValueError, ValidationError, OSError, yaml.YAMLError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(
        mode="cli",
        debug=config.debug,
        log_file=args.log_file or config.log_file,
        debug_format=args.log_format,
        level=config.log_level,
    )

    try:
        service = SyncService.from_config(config)
        return args.handler(service, args)
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.partial_summary is not None:
            print("Applied before the failure:", file=sys.stderr)
            print(format_reimport_summary(e.partial_summary), file=sys.stderr)
        return EXIT_ERROR
    except (KindlingSyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
