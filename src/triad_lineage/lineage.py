"""Directory lineage resolver.

Given an agent identifier and a starting directory, find every container that
defines the agent, ordered root-most first. Containers are the ancestors of the
project root plus any linked container listed in a lineage manifest
(``.gitmodules`` style ``path = <rel>`` lines) that holds the start directory.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import TriadSettings
from .exceptions import LineageIOError
from .logging import get_logger, log_event
from .models import DocumentKind
from .utils import validate_identifier

logger = get_logger("lineage")


@dataclass(frozen=True, slots=True)
class LineageLayer:
    """One link of the lineage chain."""

    label: str
    directory: Path
    container: Path

    def to_dict(self) -> Dict[str, str]:
        return {"label": self.label, "directory": str(self.directory), "container": str(self.container)}


def find_project_root(start: Path | str, markers: Sequence[str] = (".git",)) -> Optional[Path]:
    """Walk upward from ``start`` and return the first directory holding a marker."""

    current = Path(start).resolve()
    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in markers):
            return candidate
    return None


def parse_lineage_manifest(directory: Path | str, name: str = ".gitmodules") -> List[Path]:
    """Return the absolute container paths listed by the manifest in ``directory``."""

    base = Path(directory)
    manifest = base / name
    if not manifest.is_file():
        return []
    try:
        text = manifest.read_text(encoding="utf-8")
    except OSError as exc:
        raise LineageIOError(f"unable to read lineage manifest {manifest}: {exc}") from exc
    containers: List[Path] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", ";")):
            continue
        key, sep, value = stripped.partition("=")
        if sep and key.strip() == "path" and value.strip():
            containers.append((base / value.strip()).resolve())
    return containers


def _ancestors(path: Path) -> List[Path]:
    # filesystem root first
    return list(reversed([path, *path.parents]))


def _label(container: Path) -> str:
    return container.name or "/"


def _contains(container: Path, path: Path) -> bool:
    return container == path or container in path.parents


def _holds_triad(directory: Path) -> bool:
    suffixes = tuple(s for kind in DocumentKind for s in (kind.suffix, kind.alias_suffix))
    try:
        return any(entry.is_file() and entry.name.endswith(suffixes) for entry in directory.iterdir())
    except OSError as exc:
        raise LineageIOError(f"unable to scan agent directory {directory}: {exc}") from exc


def candidate_containers(start: Path | str, settings: TriadSettings | None = None) -> List[Path]:
    """Every container that may define an agent for ``start``, outer to inner."""

    settings = settings or TriadSettings()
    start_path = Path(start).resolve()
    root = find_project_root(start_path, settings.root_markers) or start_path

    found: List[Path] = list(_ancestors(root))
    for ancestor in _ancestors(start_path):
        for container in parse_lineage_manifest(ancestor, settings.lineage_manifest):
            if _contains(container, start_path):
                found.append(container)

    unique: Dict[Path, Path] = {}
    for container in found:
        unique.setdefault(container.resolve(), container)
    return sorted(unique.keys(), key=lambda p: (len(p.parts), str(p)))


def resolve(
    identifier: str,
    start: Path | str,
    settings: TriadSettings | None = None,
) -> List[LineageLayer]:
    """Return the layers defining ``identifier``; ``[]`` when none does."""

    settings = settings or TriadSettings()
    identifier = validate_identifier(identifier)
    layers: List[LineageLayer] = []
    for container in candidate_containers(start, settings):
        agent_dir = container / settings.agents_dir / identifier
        if agent_dir.is_dir() and _holds_triad(agent_dir):
            layers.append(LineageLayer(label=_label(container), directory=agent_dir, container=container))
    log_event(
        logger,
        "lineage.resolved",
        {"slug": identifier, "start": str(start), "layers": [layer.label for layer in layers]},
    )
    return layers


__all__ = [
    "LineageLayer",
    "candidate_containers",
    "find_project_root",
    "parse_lineage_manifest",
    "resolve",
]
