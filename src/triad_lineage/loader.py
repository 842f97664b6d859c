"""Document loader: read one triad kind per lineage layer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

from .exceptions import LineageIOError
from .lineage import LineageLayer
from .logging import get_logger
from .models import DocumentKind
from .normalizer import parse_document
from .utils import read_bytes

logger = get_logger("loader")

INHERITED_LABEL = "{label}:inherits"


@dataclass(slots=True)
class LoadedDocument:
    label: str
    path: Path
    kind: DocumentKind
    data: Dict[str, Any]
    inherited: bool = False


def kind_for_path(path: Path | str) -> Optional[DocumentKind]:
    name = Path(path).name
    for kind in DocumentKind:
        if name.endswith(kind.suffix) or name.endswith(kind.alias_suffix):
            return kind
    return None


def document_path(directory: Path | str, kind: DocumentKind | str) -> Optional[Path]:
    """Locate the ``kind`` document in ``directory``; the plain suffix beats the alias."""

    kind = DocumentKind.parse(kind)
    base = Path(directory)
    if not base.is_dir():
        return None
    try:
        names = sorted(entry.name for entry in base.iterdir() if entry.is_file())
    except OSError as exc:
        raise LineageIOError(f"unable to list {base}: {exc}") from exc
    for suffix in (kind.suffix, kind.alias_suffix):
        for name in names:
            if name.endswith(suffix):
                return base / name
    return None


def read_document(path: Path | str) -> Dict[str, Any]:
    """Parse ``path`` as a JSON object.

    Raises :class:`MalformedDocumentError` for bad JSON or a non-object root and
    :class:`LineageIOError` when the file cannot be read.
    """

    return parse_document(read_bytes(Path(path)), path)


def _is_url(value: str) -> bool:
    return "://" in value


def inherit_targets(data: Dict[str, Any], project_root: Path) -> List[Path]:
    inherits = data.get("inherits")
    if not isinstance(inherits, list):
        return []
    targets: List[Path] = []
    for entry in inherits:
        if not isinstance(entry, str) or not entry.strip() or _is_url(entry):
            continue
        candidate = Path(entry.strip())
        targets.append(candidate if candidate.is_absolute() else project_root / candidate)
    return targets


def _load_with_inherits(
    path: Path,
    label: str,
    kind: DocumentKind,
    project_root: Path,
    visited: Set[Path],
    out: List[LoadedDocument],
    inherited: bool = False,
) -> None:
    key = path.resolve()
    if key in visited:
        return
    visited.add(key)
    data = read_document(path)
    for target in inherit_targets(data, project_root):
        if not target.is_file():
            logger.debug("skipping missing inherited document %s", target)
            continue
        _load_with_inherits(
            target, INHERITED_LABEL.format(label=label), kind, project_root, visited, out, inherited=True
        )
    out.append(LoadedDocument(label=label, path=path, kind=kind, data=data, inherited=inherited))


def load_layers(
    kind: DocumentKind | str,
    layers: Sequence[LineageLayer],
    project_root: Path | str | None = None,
) -> List[LoadedDocument]:
    """Load ``kind`` from every layer that has it, inherited documents first."""

    kind = DocumentKind.parse(kind)
    if project_root is not None:
        root = Path(project_root)
    elif layers:
        root = layers[-1].container
    else:
        root = Path.cwd()
    visited: Set[Path] = set()
    out: List[LoadedDocument] = []
    for layer in layers:
        path = document_path(layer.directory, kind)
        if path is None:
            continue
        _load_with_inherits(path, layer.label, kind, root, visited, out)
    return out


__all__ = [
    "LoadedDocument",
    "document_path",
    "inherit_targets",
    "kind_for_path",
    "load_layers",
    "read_document",
]
