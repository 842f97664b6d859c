"""Safety-gated writers for triad documents.

Every writer plans first and only touches the filesystem when explicitly asked
to (``write=True`` / ``apply=True``). Each target file moves through
``DISCOVERED -> PLANNED -> {APPLIED | SKIPPED | REFUSED}`` and the outcome is
recorded in a :class:`FilePlan`. Writes go through an atomic replace and, when
requested, a ``.bak`` snapshot of the previous bytes is written first.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from .config import CURRENT_SCHEMA_VERSION, TriadSettings
from .exceptions import (
    LineageIOError,
    MalformedDocumentError,
    StructuralRiskError,
    VerificationFailedError,
)
from .loader import kind_for_path
from .logging import get_logger, log_event
from .models import AgencyEntry, DocumentKind
from .normalizer import NormalizeMode, StructuralRisk, normalize, parse_document
from .schemas import validate_document
from .utils import atomic_write_bytes, json_write, pretty_bytes, read_bytes, validate_identifier
from .verifier import canonicalize, equivalent

logger = get_logger("writers")

RISK_FLAG = "--i-understand-data-loss"


class WriteState(str, Enum):
    DISCOVERED = "discovered"
    PLANNED = "planned"
    APPLIED = "applied"
    SKIPPED = "skipped"
    REFUSED = "refused"


@dataclass(slots=True)
class FilePlan:
    path: Path
    kind: Optional[DocumentKind] = None
    state: WriteState = WriteState.DISCOVERED
    reason: str = ""
    risk: StructuralRisk = field(default_factory=StructuralRisk)
    verified: Optional[bool] = None
    backup: Optional[Path] = None
    counterpart: Optional[Path] = None
    size: int = 0
    schema_messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "path": str(self.path),
            "kind": self.kind.value if self.kind else None,
            "state": self.state.value,
            "reason": self.reason,
            "risk": self.risk.to_dict(),
        }
        if self.verified is not None:
            out["verified"] = self.verified
        if self.backup is not None:
            out["backup"] = str(self.backup)
        if self.counterpart is not None:
            out["counterpart"] = str(self.counterpart)
        if self.size:
            out["bytes"] = self.size
        if self.schema_messages:
            out["schemaMessages"] = list(self.schema_messages)
        return out


@dataclass(slots=True)
class WriteReport:
    operation: str
    dry_run: bool
    plans: List[FilePlan] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    archive_dir: Optional[Path] = None

    def by_state(self, state: WriteState) -> List[FilePlan]:
        return [plan for plan in self.plans if plan.state is state]

    @property
    def refused(self) -> List[FilePlan]:
        return self.by_state(WriteState.REFUSED)

    @property
    def ok(self) -> bool:
        return not self.refused and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "operation": self.operation,
            "dryRun": self.dry_run,
            "plans": [plan.to_dict() for plan in self.plans],
            "errors": list(self.errors),
            "counts": {state.value: len(self.by_state(state)) for state in WriteState},
        }
        if self.archive_dir is not None:
            out["archiveDir"] = str(self.archive_dir)
        return out


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _backup_path(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


def _write_with_backup(plan: FilePlan, original: Optional[bytes], proposed: bytes, backup: bool, suffix: str) -> None:
    if backup and original is not None:
        plan.backup = _backup_path(plan.path, suffix)
        atomic_write_bytes(plan.backup, original)
    atomic_write_bytes(plan.path, proposed)


def _record_error(report: WriteReport, path: Path, exc: Exception) -> None:
    report.errors.append({"path": str(path), "error": str(exc), "type": type(exc).__name__})
    logger.warning("skipping %s: %s", path, exc, extra={"path": str(path)})


def discover_agent_dirs(
    root: Path | str, identifier: Optional[str] = None, settings: TriadSettings | None = None
) -> List[Path]:
    """Agent directories under ``<root>/<agents_dir>``; one identifier or all of them."""

    settings = settings or TriadSettings()
    agents_root = Path(root) / settings.agents_dir
    if identifier is not None:
        target = agents_root / validate_identifier(identifier)
        return [target] if target.is_dir() else []
    if not agents_root.is_dir():
        return []
    try:
        return sorted(p for p in agents_root.iterdir() if p.is_dir())
    except OSError as exc:
        raise LineageIOError(f"unable to list {agents_root}: {exc}") from exc


def triad_files(directory: Path | str) -> List[Path]:
    base = Path(directory)
    try:
        return sorted(p for p in base.iterdir() if p.is_file() and kind_for_path(p) is not None)
    except OSError as exc:
        raise LineageIOError(f"unable to list {base}: {exc}") from exc


def raise_for_refusal(plan: FilePlan) -> FilePlan:
    """Turn a refused plan into the matching exception for single-target callers."""

    if plan.state is not WriteState.REFUSED:
        return plan
    if plan.verified is False:
        raise VerificationFailedError(plan.path, plan.reason)
    raise StructuralRiskError(plan.path, plan.risk.reasons, RISK_FLAG)


# ---------------------------------------------------------------------------
# normalize


def normalize_file(
    path: Path | str,
    *,
    write: bool = False,
    backup: bool = False,
    verify: bool = False,
    strict_verify: bool = False,
    acknowledge_risk: bool = False,
    mode: NormalizeMode | str = NormalizeMode.PRESERVE,
    schema_check: bool = False,
    root: Path | str | None = None,
    settings: TriadSettings | None = None,
) -> FilePlan:
    settings = settings or TriadSettings()
    path = Path(path)
    kind = kind_for_path(path)
    plan = FilePlan(path=path, kind=kind)
    original = read_bytes(path)
    raw = parse_document(original, path)
    result = normalize(raw, kind, mode=mode)
    proposed = pretty_bytes(result.document)
    plan.state = WriteState.PLANNED
    plan.risk = result.risk

    if verify or strict_verify:
        plan.verified = kind is not None and equivalent(original, proposed, kind, upgrade=True)
    if schema_check and kind is not None:
        plan.schema_messages = validate_document(result.document, kind, root or path.parent, settings)

    if proposed == original:
        plan.state, plan.reason = WriteState.SKIPPED, "unchanged"
        return plan
    if strict_verify and not plan.verified:
        plan.state, plan.reason = WriteState.REFUSED, "verification failed: semantic mismatch or decode failure"
        log_event(logger, "normalize.refused", {"path": str(path), "reason": plan.reason})
        return plan
    if not write:
        plan.reason = "would-update"
        log_event(logger, "normalize.planned", {"path": str(path), "risk": plan.risk.to_dict()})
        return plan
    if plan.risk.risky and not acknowledge_risk:
        plan.state = WriteState.REFUSED
        plan.reason = f"structural risk ({plan.risk.reason}); re-run with {RISK_FLAG}"
        log_event(logger, "normalize.refused", {"path": str(path), "reasons": list(plan.risk.reasons)})
        return plan
    _write_with_backup(plan, original, proposed, backup, settings.backup_suffix)
    plan.state, plan.reason = WriteState.APPLIED, "updated"
    log_event(logger, "normalize.applied", {"path": str(path), "backup": str(plan.backup) if plan.backup else None})
    return plan


def normalize_paths(paths: Iterable[Path | str], **options: Any) -> WriteReport:
    """Normalize many files; malformed or unreadable files are recorded and skipped."""

    report = WriteReport(operation="normalize", dry_run=not options.get("write", False))
    for path in paths:
        try:
            report.plans.append(normalize_file(path, **options))
        except (MalformedDocumentError, LineageIOError) as exc:
            _record_error(report, Path(path), exc)
    return report


# ---------------------------------------------------------------------------
# contribution log


def _entry_sort_key(entry: Any) -> str:
    if isinstance(entry, Mapping) and isinstance(entry.get("timestamp"), str):
        return entry["timestamp"]
    return ""


def _sorted_entries(entries: List[Any]) -> List[Any]:
    return sorted(entries, key=_entry_sort_key, reverse=True)


def sort_contribution_log(
    path: Path | str,
    *,
    write: bool = False,
    backup: bool = False,
    settings: TriadSettings | None = None,
) -> FilePlan:
    """Reorder entries newest first; a pure reorder is recorded but not risk-gated."""

    settings = settings or TriadSettings()
    path = Path(path)
    plan = FilePlan(path=path, kind=DocumentKind.CONTRIBUTION_LOG)
    original = read_bytes(path)
    doc = parse_document(original, path)
    entries = doc.get("entries")
    if not isinstance(entries, list):
        plan.state, plan.reason = WriteState.SKIPPED, "no entries"
        return plan
    reordered = _sorted_entries(entries)
    plan.state = WriteState.PLANNED
    if reordered == entries:
        plan.state, plan.reason = WriteState.SKIPPED, "already sorted"
        return plan
    plan.risk = StructuralRisk(risky=False, reasons=("entries: order changed",))
    doc["entries"] = reordered
    proposed = pretty_bytes(doc)
    if not write:
        plan.reason = "would-sort"
        return plan
    _write_with_backup(plan, original, proposed, backup, settings.backup_suffix)
    plan.state, plan.reason = WriteState.APPLIED, "sorted"
    log_event(logger, "log.sorted", {"path": str(path), "entries": len(reordered)})
    return plan


def build_log_entry(
    summary: str,
    *,
    timestamp: Optional[str] = None,
    kind: Optional[str] = None,
    title: Optional[str] = None,
    details: Optional[Sequence[str]] = None,
    tags: Optional[Sequence[str]] = None,
    actors: Optional[Sequence[str]] = None,
    contribution_type: Optional[str] = None,
    weight: float = 1.0,
) -> Dict[str, Any]:
    """Build a typed contribution-log entry; one contribution group per actor."""

    entry: Dict[str, Any] = {"timestamp": timestamp or _utc_now(), "summary": summary}
    if kind:
        entry["kind"] = kind
    if title:
        entry["title"] = title
    if details:
        entry["details"] = list(details)
    if tags:
        entry["tags"] = list(tags)
    ctype = contribution_type or kind or "log"
    entry["contributionGroups"] = [
        {"by": actor, "types": [{"type": ctype, "weight": weight, "evidence": summary}]}
        for actor in (actors or [])
    ]
    return entry


def create_minimal_log(slug: str, timestamp: Optional[str] = None) -> Dict[str, Any]:
    return {
        "schemaVersion": CURRENT_SCHEMA_VERSION,
        "slug": slug,
        "title": f"{slug.title()} Agency",
        "updated": timestamp or _utc_now(),
        "status": "active",
        "entries": [],
    }


def _same_day_match(existing: Any, entry: Mapping[str, Any]) -> bool:
    if not isinstance(existing, Mapping):
        return False
    return (
        str(existing.get("timestamp", ""))[:10] == str(entry.get("timestamp", ""))[:10]
        and existing.get("title") == entry.get("title")
        and existing.get("kind") == entry.get("kind")
    )


def append_log_entry(
    path: Path | str,
    entry: Mapping[str, Any],
    *,
    write: bool = False,
    backup: bool = False,
    upsert: bool = False,
    create_if_missing: bool = False,
    slug: Optional[str] = None,
    timestamp: Optional[str] = None,
    settings: TriadSettings | None = None,
) -> FilePlan:
    """Append (or upsert by same-day title/kind) ``entry`` and keep entries newest first."""

    settings = settings or TriadSettings()
    path = Path(path)
    plan = FilePlan(path=path, kind=DocumentKind.CONTRIBUTION_LOG)
    entry = dict(entry)
    if timestamp and "timestamp" not in entry:
        entry["timestamp"] = timestamp
    entry.setdefault("timestamp", _utc_now())
    try:
        AgencyEntry.model_validate(entry)
    except ValidationError as exc:
        raise MalformedDocumentError(path, f"invalid log entry: {exc.error_count()} error(s)") from exc

    original: Optional[bytes] = None
    if path.exists():
        original = read_bytes(path)
        doc = parse_document(original, path)
    elif create_if_missing:
        if not slug:
            raise MalformedDocumentError(path, "a slug is required to create a contribution log")
        doc = create_minimal_log(validate_identifier(slug), entry["timestamp"])
    else:
        raise LineageIOError(f"contribution log not found: {path}")

    entries = doc.get("entries")
    entries = list(entries) if isinstance(entries, list) else []
    replaced = False
    if upsert:
        for index, existing in enumerate(entries):
            if _same_day_match(existing, entry):
                entries[index] = entry
                replaced = True
                break
    if not replaced:
        entries.append(entry)
    doc["entries"] = _sorted_entries(entries)
    doc["updated"] = entry["timestamp"]
    proposed = pretty_bytes(doc)

    plan.state = WriteState.PLANNED
    if proposed == original:
        plan.state, plan.reason = WriteState.SKIPPED, "unchanged"
        return plan
    if not write:
        plan.reason = "would-upsert" if replaced else "would-append"
        return plan
    _write_with_backup(plan, original, proposed, backup, settings.backup_suffix)
    plan.state, plan.reason = WriteState.APPLIED, "upserted" if replaced else "appended"
    log_event(logger, "log.appended", {"path": str(path), "timestamp": entry["timestamp"], "upsert": replaced})
    return plan


# ---------------------------------------------------------------------------
# backups


def _backups_in(directory: Path, suffix: str) -> List[Path]:
    try:
        return sorted(p for p in directory.iterdir() if p.is_file() and p.name.endswith(suffix))
    except OSError as exc:
        raise LineageIOError(f"unable to list {directory}: {exc}") from exc


def _current_for(backup: Path, settings: TriadSettings) -> Path:
    for suffix in (settings.pre_restore_suffix, settings.backup_suffix):
        if backup.name.endswith(suffix):
            return backup.with_name(backup.name[: -len(suffix)])
    return backup


def restore_backups(
    agent_dirs: Iterable[Path | str],
    *,
    kinds: Optional[Sequence[DocumentKind | str]] = None,
    apply: bool = False,
    verify: bool = False,
    backup_current: bool = True,
    settings: TriadSettings | None = None,
) -> WriteReport:
    """Restore triad files from their ``.bak`` siblings when they differ semantically."""

    settings = settings or TriadSettings()
    wanted = {DocumentKind.parse(k) for k in kinds} if kinds else set(DocumentKind)
    report = WriteReport(operation="restore", dry_run=not apply)
    for directory in agent_dirs:
        directory = Path(directory)
        for backup in _backups_in(directory, settings.backup_suffix):
            if backup.name.endswith(settings.pre_restore_suffix):
                continue
            current = _current_for(backup, settings)
            kind = kind_for_path(current)
            if kind is None or kind not in wanted:
                continue
            plan = FilePlan(path=current, kind=kind, counterpart=backup)
            try:
                backup_bytes = read_bytes(backup)
                current_bytes = read_bytes(current) if current.exists() else None
                plan.state = WriteState.PLANNED
                if current_bytes is not None and equivalent(current_bytes, backup_bytes, kind, upgrade=True):
                    plan.state, plan.reason = WriteState.SKIPPED, "skipped (equal)"
                elif not apply:
                    plan.reason = "would-restore"
                else:
                    if backup_current and current_bytes is not None:
                        plan.backup = _backup_path(current, settings.pre_restore_suffix)
                        atomic_write_bytes(plan.backup, current_bytes)
                    atomic_write_bytes(current, backup_bytes)
                    plan.state, plan.reason = WriteState.APPLIED, "restored"
                    if verify:
                        restored = canonicalize(read_bytes(current), kind, upgrade=True)
                        plan.verified = restored is not None and restored == canonicalize(
                            backup_bytes, kind, upgrade=True
                        )
                    log_event(logger, "restore.applied", {"path": str(current), "backup": str(backup)})
            except LineageIOError as exc:
                _record_error(report, current, exc)
                continue
            report.plans.append(plan)
    return report


def archive_backups(
    agent_dirs: Iterable[Path | str],
    *,
    archive_dir: Path | str | None = None,
    apply: bool = False,
    root: Path | str | None = None,
    stamp: Optional[str] = None,
    settings: TriadSettings | None = None,
) -> WriteReport:
    """Move backups that are canonically equal to their current file into an archive.

    Kept backups carry the reason ``content-differs`` or ``no-current``. When
    applied, ``manifest.json`` in the archive directory lists every decision.
    """

    settings = settings or TriadSettings()
    base = Path(root) if root is not None else Path.cwd()
    if archive_dir is not None:
        archive_root = Path(archive_dir)
    else:
        archive_root = base / settings.archive_dir / (stamp or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ"))
    report = WriteReport(operation="cleanup-backups", dry_run=not apply, archive_dir=archive_root)
    manifest: List[Dict[str, Any]] = []

    for directory in agent_dirs:
        directory = Path(directory)
        for backup in _backups_in(directory, settings.backup_suffix):
            current = _current_for(backup, settings)
            kind = kind_for_path(current)
            plan = FilePlan(path=backup, kind=kind, counterpart=current if current.exists() else None)
            try:
                plan.size = backup.stat().st_size
            except OSError as exc:
                _record_error(report, backup, exc)
                continue
            plan.state = WriteState.PLANNED
            if not current.exists():
                plan.state, plan.reason = WriteState.SKIPPED, "no-current"
            elif kind is None:
                plan.state, plan.reason = WriteState.SKIPPED, "content-differs"
            else:
                try:
                    same = equivalent(read_bytes(current), read_bytes(backup), kind, upgrade=True)
                except LineageIOError as exc:
                    _record_error(report, backup, exc)
                    continue
                if not same:
                    plan.state, plan.reason = WriteState.SKIPPED, "content-differs"
                elif not apply:
                    plan.reason = "would-archive"
                else:
                    destination = archive_root / _relative_to(backup, base)
                    try:
                        destination.parent.mkdir(parents=True, exist_ok=True)
                        shutil.move(str(backup), str(destination))
                    except OSError as exc:
                        raise LineageIOError(f"unable to archive {backup}: {exc}") from exc
                    plan.state, plan.reason = WriteState.APPLIED, "archived"
                    plan.backup = destination
                    log_event(logger, "backup.archived", {"backup": str(backup), "destination": str(destination)})
            report.plans.append(plan)
            manifest.append(
                {
                    "agent": directory.name,
                    "backup": str(_relative_to(backup, base)),
                    "current": str(_relative_to(current, base)) if current.exists() else None,
                    "status": plan.reason if plan.state is not WriteState.SKIPPED else "keep",
                    "reason": plan.reason,
                    "bytes": plan.size,
                }
            )

    if apply and any(plan.state is WriteState.APPLIED for plan in report.plans):
        json_write(archive_root / "manifest.json", manifest)
    return report


def _relative_to(path: Path, base: Path) -> Path:
    try:
        return path.resolve().relative_to(base.resolve())
    except ValueError:
        return Path(*[part for part in path.parts if part not in (path.anchor, "..")])


def rank_archivable(report: WriteReport, top: Optional[int] = None) -> List[Tuple[str, int, int]]:
    """Safe-to-archive ``(agent, bytes, files)`` totals, largest first."""

    totals: Dict[str, List[int]] = {}
    for plan in report.plans:
        if plan.reason not in ("would-archive", "archived"):
            continue
        agent = plan.path.parent.name
        bucket = totals.setdefault(agent, [0, 0])
        bucket[0] += plan.size
        bucket[1] += 1
    ranked = sorted(((agent, b, n) for agent, (b, n) in totals.items()), key=lambda t: (-t[1], t[0]))
    return ranked[:top] if top is not None else ranked


__all__ = [
    "FilePlan",
    "RISK_FLAG",
    "WriteReport",
    "WriteState",
    "append_log_entry",
    "archive_backups",
    "build_log_entry",
    "create_minimal_log",
    "discover_agent_dirs",
    "normalize_file",
    "normalize_paths",
    "raise_for_refusal",
    "rank_archivable",
    "restore_backups",
    "sort_contribution_log",
    "triad_files",
]
