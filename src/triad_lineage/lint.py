"""Read-only lineage hygiene checks.

Every agent profile is expected to inherit the project's root directives
profile (``<agents_dir>/root/*.agent.json``). After merging, guardrails that only
differ by case or spacing are reported as duplicates. Schema overrides that do
not accept the current ``schemaVersion`` are reported as well.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import CURRENT_SCHEMA_VERSION, TriadSettings
from .exceptions import InvalidIdentifierError, MalformedDocumentError
from .loader import document_path, read_document
from .logging import get_logger, log_event
from .merge import merge_agent
from .models import DocumentKind
from .schemas import allowed_schema_versions
from .utils import validate_identifier
from .writers import discover_agent_dirs

logger = get_logger("lint")

ROOT_DIRECTIVES_SLUG = "root"
SKIPPED_AGENT_DIRS = frozenset({ROOT_DIRECTIVES_SLUG, "templates"})


@dataclass(slots=True)
class AgentLint:
    slug: str
    missing_inherits: bool = False
    duplicate_guardrails: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"slug": self.slug}
        if self.missing_inherits:
            out["missingInherits"] = True
        if self.duplicate_guardrails:
            out["duplicateGuardrails"] = list(self.duplicate_guardrails)
        return out


@dataclass(slots=True)
class LintReport:
    root: Path
    root_directives: str
    agents: List[AgentLint] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def failed(self, strict: bool = False) -> bool:
        return bool(self.errors) or (strict and bool(self.warnings))

    def to_dict(self, strict: bool = False) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "rootDirectives": self.root_directives,
            "status": "degraded" if self.failed(strict) else "ok",
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "report": [agent.to_dict() for agent in self.agents],
        }


def _guardrail_key(text: str) -> str:
    return " ".join(text.split()).casefold()


def duplicate_guardrails(guardrails: List[Any]) -> List[str]:
    """Guardrails that repeat an earlier one once case and spacing are ignored."""

    seen = set()
    repeated: List[str] = []
    for guardrail in guardrails:
        if not isinstance(guardrail, str):
            continue
        key = _guardrail_key(guardrail)
        if key in seen:
            repeated.append(guardrail)
        seen.add(key)
    return repeated


def _root_directives(root: Path, settings: TriadSettings) -> Optional[str]:
    path = document_path(root / settings.agents_dir / ROOT_DIRECTIVES_SLUG, DocumentKind.PROFILE)
    if path is None:
        return None
    return path.relative_to(root).as_posix()


def _inherits(data: Dict[str, Any]) -> List[str]:
    inherits = data.get("inherits")
    if not isinstance(inherits, list):
        return []
    return [Path(entry.strip()).as_posix() for entry in inherits if isinstance(entry, str) and entry.strip()]


def lint_lineage(
    root: Path | str,
    identifier: Optional[str] = None,
    settings: TriadSettings | None = None,
) -> LintReport:
    settings = settings or TriadSettings()
    root = Path(root)
    directives = _root_directives(root, settings)
    warnings: List[str] = []
    if directives is None:
        directives = f"{Path(settings.agents_dir).as_posix()}/{ROOT_DIRECTIVES_SLUG}/{ROOT_DIRECTIVES_SLUG}.agent.json"
        warnings.append(f"root directives not found; using fallback {directives}")
    report = LintReport(root=root, root_directives=directives, warnings=warnings)

    for kind in DocumentKind:
        allowed = allowed_schema_versions(kind, root, settings)
        if allowed and CURRENT_SCHEMA_VERSION not in allowed:
            report.warnings.append(
                f"schema for {kind.short_name} does not accept schemaVersion {CURRENT_SCHEMA_VERSION}"
                f" (allows {', '.join(allowed)})"
            )

    if identifier is not None:
        directories = discover_agent_dirs(root, validate_identifier(identifier), settings)
    else:
        directories = [
            d for d in discover_agent_dirs(root, None, settings)
            if d.name not in SKIPPED_AGENT_DIRS and not d.name.startswith("_")
        ]

    for directory in directories:
        profile = document_path(directory, DocumentKind.PROFILE)
        if profile is None:
            continue
        slug = directory.name
        try:
            validate_identifier(slug)
        except InvalidIdentifierError:
            report.warnings.append(f"skipping {slug}: not a kebab-case identifier")
            continue
        try:
            data = read_document(profile)
            view = merge_agent(slug, root, DocumentKind.PROFILE, settings=settings)
        except MalformedDocumentError as exc:
            report.errors.append(f"unreadable profile for slug={slug}: {exc}")
            continue
        agent = AgentLint(slug=slug)
        if directives not in _inherits(data):
            agent.missing_inherits = True
            report.warnings.append(f"missing inherits for slug={slug}")
        guardrails = view.document.get("guardrails")
        agent.duplicate_guardrails = duplicate_guardrails(guardrails if isinstance(guardrails, list) else [])
        if agent.duplicate_guardrails:
            report.warnings.append(f"duplicate guardrails after merge for slug={slug}")
        report.agents.append(agent)

    log_event(
        logger,
        "lint.completed",
        {"root": str(root), "agents": len(report.agents), "warnings": len(report.warnings)},
    )
    return report


__all__ = ["AgentLint", "LintReport", "duplicate_guardrails", "lint_lineage"]
