"""Command line interface for triad lineage tooling."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List

from rich.console import Console

from .config import TriadSettings, load_settings
from .exceptions import (
    ConfigurationError,
    InvalidIdentifierError,
    LineageIOError,
    MalformedDocumentError,
    StructuralRiskError,
    VerificationFailedError,
)
from .lineage import find_project_root
from .lint import lint_lineage
from .loader import document_path
from .merge import MergeOptions, merge_agent
from .models import DocumentKind
from .normalizer import NormalizeMode
from .utils import validate_identifier
from .verifier import canonicalize_file
from .writers import (
    RISK_FLAG,
    FilePlan,
    WriteReport,
    WriteState,
    append_log_entry,
    archive_backups,
    build_log_entry,
    discover_agent_dirs,
    normalize_paths,
    rank_archivable,
    restore_backups,
    sort_contribution_log,
    triad_files,
)

console = Console()
err_console = Console(stderr=True)

EXIT_OK = 0
EXIT_IO = 1
EXIT_UNSAFE = 2

_KIND_CHOICES = [kind.short_name for kind in DocumentKind]
_STATE_STYLE = {
    WriteState.APPLIED: "green",
    WriteState.SKIPPED: "dim",
    WriteState.PLANNED: "cyan",
    WriteState.REFUSED: "bold red",
    WriteState.DISCOVERED: "white",
}


def _root(arguments: argparse.Namespace) -> Path:
    start = Path(arguments.root or Path.cwd()).resolve()
    return find_project_root(start, _settings(arguments).root_markers) or start


def _settings(arguments: argparse.Namespace) -> TriadSettings:
    cached = getattr(arguments, "_settings", None)
    if cached is None:
        start = Path(arguments.root or Path.cwd())
        cached = load_settings(root=start, path=arguments.config)
        arguments._settings = cached
    return cached


def _emit_json(payload: Any) -> None:
    console.out(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False), highlight=False)


def _print_plan(plan: FilePlan) -> None:
    style = _STATE_STYLE[plan.state]
    line = f"[{style}]{plan.state.value}[/] {plan.path}"
    if plan.reason:
        line += f" ({plan.reason})"
    if plan.verified is not None:
        line += " [green]semantics-equal[/]" if plan.verified else " [yellow]semantic mismatch[/]"
    console.print(line, highlight=False, soft_wrap=True)
    for message in plan.schema_messages:
        console.print(f"  [yellow]schema[/] {message}", highlight=False, soft_wrap=True)


def _report_exit(report: WriteReport) -> int:
    for error in report.errors:
        err_console.print(f"[red]error[/] {error['path']}: {error['error']}", highlight=False, soft_wrap=True)
    if report.refused:
        reasons = {plan.reason for plan in report.refused}
        if any(RISK_FLAG in reason for reason in reasons):
            err_console.print(
                f"[bold red]DATA LOSS RISK[/] refusing to apply; re-run with {RISK_FLAG} to proceed.",
                highlight=False,
                soft_wrap=True,
            )
        return EXIT_UNSAFE
    if any(error.get("type") == "MalformedDocumentError" for error in report.errors):
        return EXIT_UNSAFE
    if report.errors:
        return EXIT_IO
    return EXIT_OK


def _print_report(report: WriteReport, as_json: bool) -> int:
    if as_json:
        _emit_json(report.to_dict())
    else:
        for plan in report.plans:
            _print_plan(plan)
        counts = ", ".join(f"{state.value}={len(report.by_state(state))}" for state in WriteState if report.by_state(state))
        mode = "dry-run" if report.dry_run else "applied"
        console.print(f"[bold]{report.operation}[/] {mode}: {counts or 'nothing to do'}", highlight=False)
    return _report_exit(report)


def _agent_dirs(arguments: argparse.Namespace) -> List[Path]:
    slug = None if getattr(arguments, "all", False) else arguments.slug
    return discover_agent_dirs(_root(arguments), slug, _settings(arguments))


def _single_agent_dir(arguments: argparse.Namespace) -> Path:
    dirs = _agent_dirs(arguments)
    if not dirs:
        raise LineageIOError(f"no agent directory for {arguments.slug!r} under {_root(arguments)}")
    return dirs[0]


def _merge_command(arguments: argparse.Namespace) -> int:
    settings = _settings(arguments)
    start = Path(arguments.path or arguments.root or Path.cwd())
    options = MergeOptions(
        include_provenance=arguments.sources,
        include_duplicates=arguments.duplicates,
        include_origin=arguments.origin,
    )
    view = merge_agent(arguments.slug, start, DocumentKind.parse(arguments.kind), options, settings)
    console.out(view.to_json(), highlight=False)
    return EXIT_OK


def _normalize_command(arguments: argparse.Namespace) -> int:
    paths: List[Path] = []
    for directory in _agent_dirs(arguments):
        paths.extend(triad_files(directory))
    report = normalize_paths(
        paths,
        write=arguments.write,
        backup=arguments.backup,
        verify=arguments.verify,
        strict_verify=arguments.strict,
        acknowledge_risk=arguments.acknowledge_risk,
        mode=NormalizeMode(arguments.mode),
        schema_check=arguments.schema_check,
        root=_root(arguments),
        settings=_settings(arguments),
    )
    if arguments.mode != NormalizeMode.PRESERVE.value and not arguments.acknowledge_risk:
        err_console.print(
            f"[yellow]merge mode {arguments.mode} may drop or reshape data; pass {RISK_FLAG} or use preserve[/]",
            highlight=False,
            soft_wrap=True,
        )
    return _print_report(report, arguments.json)


def _restore_command(arguments: argparse.Namespace) -> int:
    kinds = [DocumentKind.parse(arguments.kind)] if arguments.kind else None
    report = restore_backups(
        _agent_dirs(arguments),
        kinds=kinds,
        apply=arguments.apply,
        verify=arguments.verify,
        backup_current=not arguments.no_backup_current,
        settings=_settings(arguments),
    )
    code = _print_report(report, arguments.json)
    if arguments.verify and any(plan.verified is False for plan in report.plans):
        err_console.print("[red]post-restore verification failed[/]", highlight=False)
        return EXIT_UNSAFE
    return code


def _cleanup_command(arguments: argparse.Namespace) -> int:
    report = archive_backups(
        _agent_dirs(arguments),
        archive_dir=arguments.archive_dir,
        apply=arguments.apply,
        root=_root(arguments),
        settings=_settings(arguments),
    )
    if arguments.rank:
        ranked = rank_archivable(report, top=arguments.top)
        if arguments.json:
            _emit_json([{"agent": agent, "bytes": size, "files": count} for agent, size, count in ranked])
        else:
            for agent, size, count in ranked:
                console.print(f"{agent}\t{size} bytes\t{count} file(s)", highlight=False)
        return _report_exit(report)
    return _print_report(report, arguments.json)


def _sort_log_command(arguments: argparse.Namespace) -> int:
    directory = _single_agent_dir(arguments)
    path = document_path(directory, DocumentKind.CONTRIBUTION_LOG)
    if path is None:
        raise LineageIOError(f"no contribution log in {directory}")
    plan = sort_contribution_log(path, write=arguments.write, backup=arguments.backup, settings=_settings(arguments))
    _print_plan(plan)
    return EXIT_OK


def _log_command(arguments: argparse.Namespace) -> int:
    settings = _settings(arguments)
    slug = validate_identifier(arguments.slug)
    agents_root = _root(arguments) / settings.agents_dir / slug
    path = document_path(agents_root, DocumentKind.CONTRIBUTION_LOG)
    if path is None:
        path = agents_root / f"{slug}{DocumentKind.CONTRIBUTION_LOG.suffix}"
    entry = build_log_entry(
        arguments.summary,
        timestamp=arguments.timestamp,
        kind=arguments.entry_kind,
        title=arguments.title,
        details=arguments.detail,
        tags=arguments.tag,
        actors=arguments.by,
        contribution_type=arguments.type,
        weight=arguments.weight,
    )
    plan = append_log_entry(
        path,
        entry,
        write=arguments.write,
        backup=arguments.backup,
        upsert=arguments.upsert,
        create_if_missing=arguments.create,
        slug=slug,
        settings=settings,
    )
    _print_plan(plan)
    return EXIT_OK


def _verify_command(arguments: argparse.Namespace) -> int:
    kind = DocumentKind.parse(arguments.kind)
    left = canonicalize_file(arguments.left, kind, upgrade=arguments.upgrade)
    right = canonicalize_file(arguments.right, kind, upgrade=arguments.upgrade)
    result: Dict[str, Any] = {
        "left": str(arguments.left),
        "right": str(arguments.right),
        "kind": kind.value,
        "semanticsEqual": left is not None and left == right,
    }
    if arguments.json:
        _emit_json(result)
    elif result["semanticsEqual"]:
        console.print(f"[green]ok[/] semantics-equal: {arguments.left} == {arguments.right}", highlight=False)
    else:
        console.print(f"[red]different[/] or undecodable: {arguments.left} / {arguments.right}", highlight=False)
    return EXIT_OK if result["semanticsEqual"] else EXIT_UNSAFE


def _lint_command(arguments: argparse.Namespace) -> int:
    report = lint_lineage(_root(arguments), arguments.slug, _settings(arguments))
    if arguments.json:
        _emit_json(report.to_dict(arguments.strict))
    else:
        for error in report.errors:
            err_console.print(f"[red]error[/] {error}", highlight=False, soft_wrap=True)
        for warning in report.warnings:
            err_console.print(f"[yellow]warning[/] {warning}", highlight=False, soft_wrap=True)
        console.print(f"linted {len(report.agents)} agent(s) against {report.root_directives}", highlight=False)
    return EXIT_UNSAFE if report.failed(arguments.strict) else EXIT_OK


def _add_target(parser: argparse.ArgumentParser, allow_all: bool) -> None:
    if allow_all:
        group = parser.add_mutually_exclusive_group(required=True)
        group.add_argument("--slug", help="Agent identifier (kebab-case)")
        group.add_argument("--all", action="store_true", help="Every agent under the agents directory")
    else:
        parser.add_argument("--slug", required=True, help="Agent identifier (kebab-case)")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="triads", description="Merge, normalize and verify agent triads")
    parser.add_argument("--root", type=Path, default=None, help="Start directory (default: current directory)")
    parser.add_argument("--config", type=Path, default=None, help="Explicit triads.yaml settings file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    merge_parser = subparsers.add_parser("merge", help="Print the merged view of one triad kind")
    _add_target(merge_parser, allow_all=False)
    merge_parser.add_argument("--kind", choices=_KIND_CHOICES, default="agent")
    merge_parser.add_argument("--sources", action="store_true", help="Include field provenance")
    merge_parser.add_argument("--duplicates", action="store_true", help="Include pre-dedup traces")
    merge_parser.add_argument("--origin", action="store_true", help="Include first-observed timestamp and evidence")
    merge_parser.add_argument("--path", type=Path, default=None, help="Directory to resolve lineage from")
    merge_parser.set_defaults(handler=_merge_command)

    normalize_parser = subparsers.add_parser("normalize", help="Migrate triads to the current schema")
    _add_target(normalize_parser, allow_all=True)
    normalize_parser.add_argument("--write", action="store_true", help="Apply changes (default: dry-run)")
    normalize_parser.add_argument("--backup", action="store_true", help="Write a .bak before each change")
    normalize_parser.add_argument("--verify", action="store_true", help="Check typed semantic equivalence")
    normalize_parser.add_argument("--strict", action="store_true", help="Refuse files whose semantics change")
    normalize_parser.add_argument("--mode", choices=[m.value for m in NormalizeMode], default="preserve")
    normalize_parser.add_argument("--schema-check", action="store_true", help="Validate against schema overrides")
    normalize_parser.add_argument("--i-understand-data-loss", dest="acknowledge_risk", action="store_true")
    normalize_parser.add_argument("--json", action="store_true")
    normalize_parser.set_defaults(handler=_normalize_command)

    restore_parser = subparsers.add_parser("restore", help="Restore triads from .bak backups")
    _add_target(restore_parser, allow_all=False)
    restore_parser.add_argument("--kind", choices=_KIND_CHOICES, default=None)
    restore_parser.add_argument("--apply", action="store_true", help="Apply restores (default: dry-run)")
    restore_parser.add_argument("--verify", action="store_true", help="Re-check equality after restore")
    restore_parser.add_argument("--no-backup-current", action="store_true", help="Skip the pre-restore copy")
    restore_parser.add_argument("--json", action="store_true")
    restore_parser.set_defaults(handler=_restore_command)

    cleanup_parser = subparsers.add_parser("cleanup-backups", help="Archive backups equal to their current file")
    _add_target(cleanup_parser, allow_all=True)
    cleanup_parser.add_argument("--apply", action="store_true", help="Move safe backups (default: dry-run)")
    cleanup_parser.add_argument("--archive-dir", type=Path, default=None)
    cleanup_parser.add_argument("--rank", action="store_true", help="Summarize safe bytes per agent")
    cleanup_parser.add_argument("--top", type=int, default=None)
    cleanup_parser.add_argument("--json", action="store_true")
    cleanup_parser.set_defaults(handler=_cleanup_command)

    sort_parser = subparsers.add_parser("sort-log", help="Sort contribution-log entries newest first")
    _add_target(sort_parser, allow_all=False)
    sort_parser.add_argument("--write", action="store_true")
    sort_parser.add_argument("--backup", action="store_true")
    sort_parser.set_defaults(handler=_sort_log_command)

    log_parser = subparsers.add_parser("log", help="Append an entry to the contribution log")
    _add_target(log_parser, allow_all=False)
    log_parser.add_argument("--summary", required=True)
    log_parser.add_argument("--kind", dest="entry_kind", default=None)
    log_parser.add_argument("--title", default=None)
    log_parser.add_argument("--detail", action="append", default=None)
    log_parser.add_argument("--tag", action="append", default=None)
    log_parser.add_argument("--by", action="append", default=None, help="Contributor (repeatable)")
    log_parser.add_argument("--type", default=None, help="Contribution type (default: entry kind)")
    log_parser.add_argument("--weight", type=float, default=1.0)
    log_parser.add_argument("--timestamp", default=None)
    log_parser.add_argument("--upsert", action="store_true", help="Replace a same-day entry with equal title/kind")
    log_parser.add_argument("--create", action="store_true", help="Create the log when missing")
    log_parser.add_argument("--write", action="store_true")
    log_parser.add_argument("--backup", action="store_true")
    log_parser.set_defaults(handler=_log_command)

    verify_parser = subparsers.add_parser("verify", help="Compare two triad files canonically")
    verify_parser.add_argument("left", type=Path)
    verify_parser.add_argument("right", type=Path)
    verify_parser.add_argument("--kind", choices=_KIND_CHOICES, required=True)
    verify_parser.add_argument("--upgrade", action="store_true", help="Normalize before decoding legacy files")
    verify_parser.add_argument("--json", action="store_true")
    verify_parser.set_defaults(handler=_verify_command)

    lint_parser = subparsers.add_parser("lineage-lint", help="Check inherits and guardrail hygiene")
    lint_parser.add_argument("--slug", default=None, help="Only lint this agent")
    lint_parser.add_argument("--strict", action="store_true", help="Fail when any warning is reported")
    lint_parser.add_argument("--json", action="store_true")
    lint_parser.set_defaults(handler=_lint_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point used by ``triads`` and ``python -m triad_lineage``."""

    parser = _build_parser()
    arguments = parser.parse_args(argv)
    handler = getattr(arguments, "handler", None)
    if handler is None:
        parser.error("No command handler configured")
    try:
        return handler(arguments)
    except (StructuralRiskError, VerificationFailedError, MalformedDocumentError) as exc:
        err_console.print(f"[red]error[/] {exc}", highlight=False, soft_wrap=True)
        return EXIT_UNSAFE
    except (InvalidIdentifierError, ConfigurationError) as exc:
        err_console.print(f"[red]error[/] {exc}", highlight=False, soft_wrap=True)
        return EXIT_UNSAFE
    except LineageIOError as exc:
        err_console.print(f"[red]io error[/] {exc}", highlight=False, soft_wrap=True)
        return EXIT_IO


if __name__ == "__main__":  # pragma: no cover - manual invocation helper
    raise SystemExit(main())
