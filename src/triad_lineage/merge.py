"""Field merge engine.

Layers are folded root-most first. Every field follows one :class:`MergePolicy`;
unlisted fields are ``OVERRIDE``. Empty values (``None``, blank strings, empty
lists or maps) never erase an earlier value.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .config import CURRENT_SCHEMA_VERSION, TriadSettings
from .exceptions import MalformedDocumentError
from .lineage import LineageLayer, find_project_root, resolve
from .loader import LoadedDocument, document_path, inherit_targets, load_layers, read_document
from .logging import get_logger, log_event
from .models import DocumentKind
from .normalizer import normalize
from .utils import canonical_dumps, is_blank

logger = get_logger("merge")

UNKNOWN_SLUG = "unknown"
PLACEHOLDER_SLUGS = {"agent-profile"}


class MergePolicy(str, Enum):
    OVERRIDE = "override"
    LIST_UNION = "list_union"
    LIST_APPEND = "list_append"
    MAP_OVERLAY = "map_overlay"


_SHARED_UNION = ("mentors", "tags", "links", "sections")

POLICIES: Dict[DocumentKind, Dict[str, MergePolicy]] = {
    DocumentKind.PROFILE: {
        **{name: MergePolicy.LIST_UNION for name in _SHARED_UNION},
        **{
            name: MergePolicy.LIST_UNION
            for name in ("responsibilities", "guardrails", "checklists", "emojiTags")
        },
        "extensions": MergePolicy.MAP_OVERLAY,
    },
    DocumentKind.PLAN: {
        **{name: MergePolicy.LIST_UNION for name in _SHARED_UNION},
        **{
            name: MergePolicy.LIST_UNION
            for name in (
                "principles",
                "themes",
                "horizons",
                "initiatives",
                "milestones",
                "backlog",
                "dependencies",
                "risks",
            )
        },
        "extensions": MergePolicy.MAP_OVERLAY,
    },
    DocumentKind.CONTRIBUTION_LOG: {
        **{name: MergePolicy.LIST_UNION for name in _SHARED_UNION},
        "entries": MergePolicy.LIST_APPEND,
        "extensions": MergePolicy.MAP_OVERLAY,
    },
}

_LIST_POLICIES = (MergePolicy.LIST_UNION, MergePolicy.LIST_APPEND)


def policy_for(kind: DocumentKind | str, name: str) -> MergePolicy:
    return POLICIES[DocumentKind.parse(kind)].get(name, MergePolicy.OVERRIDE)


@dataclass(frozen=True, slots=True)
class MergeOptions:
    include_provenance: bool = False
    include_duplicates: bool = False
    include_origin: bool = False


@dataclass(frozen=True, slots=True)
class OriginRecord:
    """One timestamp observed in an agent directory."""

    source: str
    path: str
    value: str
    inherited_from: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        out = {"source": self.source, "path": self.path, "value": self.value}
        if self.inherited_from:
            out["inheritedFrom"] = self.inherited_from
        return out


@dataclass(slots=True)
class Origin:
    first_observed_at: Optional[str] = None
    provenance: List[OriginRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "firstObservedAt": self.first_observed_at,
            "provenance": [record.to_dict() for record in self.provenance],
        }


@dataclass(slots=True)
class MergedView:
    """Read-only merged document for one kind and identifier."""

    kind: DocumentKind
    document: Dict[str, Any]
    context_chain: List[str] = field(default_factory=list)
    found: bool = True
    provenance: Optional[Dict[str, str]] = None
    duplicates: Optional[Dict[str, List[Dict[str, Any]]]] = None
    origin: Optional[Origin] = None

    @property
    def identifier(self) -> str:
        return self.document["slug"]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "kind": self.kind.value,
            "slug": self.identifier,
            "found": self.found,
            "contextChain": list(self.context_chain),
            "document": self.document,
        }
        if self.provenance is not None:
            out["provenance"] = dict(self.provenance)
        if self.duplicates is not None:
            out["duplicates"] = {k: list(v) for k, v in self.duplicates.items()}
        if self.origin is not None:
            out["origin"] = self.origin.to_dict()
        return out

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True, ensure_ascii=False)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _dedup_key(name: str, item: Any) -> str:
    if isinstance(item, str):
        return item
    if name == "links" and isinstance(item, Mapping):
        return f"{item.get('title') or ''}|{item.get('url') or ''}"
    return canonical_dumps(item)


def _merge_override(values: Sequence[Tuple[str, Any]]) -> Tuple[Any, Optional[str]]:
    effective, source = None, None
    for label, value in values:
        if not is_blank(value):
            effective, source = value, label
    return effective, source


def _merge_union(name: str, values: Sequence[Tuple[str, Any]]) -> Tuple[List[Any], Optional[str]]:
    seen = set()
    merged: List[Any] = []
    source = None
    for label, value in values:
        for item in _as_list(value):
            if is_blank(item):
                continue
            key = _dedup_key(name, item)
            if key in seen:
                continue
            seen.add(key)
            merged.append(item)
            source = label
    return merged, source


def _section_title(section: Mapping[str, Any]) -> Optional[str]:
    title = section.get("title")
    return title.strip() if isinstance(title, str) and title.strip() else None


def _merge_sections(values: Sequence[Tuple[str, Any]]) -> Tuple[List[Any], Optional[str]]:
    """Union section items per title; titles keep first-seen order, untitled items go last."""

    groups: Dict[Optional[str], Dict[str, Any]] = {}
    seen_items: Dict[Optional[str], set] = {}
    others: List[Any] = []
    seen_others = set()
    source = None
    for label, value in values:
        for section in _as_list(value):
            if is_blank(section):
                continue
            items = section.get("items") if isinstance(section, Mapping) else None
            if not isinstance(section, Mapping) or not (items is None or isinstance(items, list)):
                key = canonical_dumps(section)
                if key not in seen_others:
                    seen_others.add(key)
                    others.append(section)
                    source = label
                continue
            title = _section_title(section)
            group = groups.get(title)
            if group is None:
                group = {k: v for k, v in section.items() if k != "items"}
                group["items"] = []
                groups[title] = group
                seen_items[title] = set()
                source = label
            for item in items or []:
                key = _dedup_key("sections", item)
                if is_blank(item) or key in seen_items[title]:
                    continue
                seen_items[title].add(key)
                group["items"].append(item)
                source = label
    merged = [group for title, group in groups.items() if title is not None]
    merged.extend(others)
    if None in groups:
        merged.append(groups[None])
    return merged, source


def _merge_append(values: Sequence[Tuple[str, Any]]) -> Tuple[List[Any], Optional[str]]:
    merged: List[Any] = []
    source = None
    for label, value in values:
        items = _as_list(value)
        if items:
            source = label
        merged.extend(items)
    return merged, source


def _merge_overlay(values: Sequence[Tuple[str, Any]]) -> Tuple[Dict[str, Any], Optional[str]]:
    merged: Dict[str, Any] = {}
    source = None
    for label, value in values:
        if isinstance(value, Mapping) and value:
            merged.update(value)
            source = label
    return merged, source


def _trace(policy: MergePolicy, values: Sequence[Tuple[str, Any]]) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    for label, value in values:
        if policy in _LIST_POLICIES:
            records.extend({"layer": label, "value": item} for item in _as_list(value))
        elif not is_blank(value):
            records.append({"layer": label, "value": value})
    return records


def _field_order(documents: Sequence[Tuple[str, Dict[str, Any]]]) -> List[str]:
    order: List[str] = []
    for _, data in documents:
        for name in data:
            if name not in order:
                order.append(name)
    return order


def _apply_defaults(kind: DocumentKind, doc: Dict[str, Any], identifier: Optional[str], found: bool) -> None:
    slug = doc.get("slug")
    if not found:
        doc["slug"] = UNKNOWN_SLUG
    elif is_blank(slug) or not isinstance(slug, str) or slug in PLACEHOLDER_SLUGS:
        doc["slug"] = identifier or UNKNOWN_SLUG
    slug = doc["slug"]
    if is_blank(doc.get("title")):
        doc["title"] = slug
    if kind is DocumentKind.PROFILE and is_blank(doc.get("role")):
        doc["role"] = slug
    if kind is DocumentKind.PLAN:
        agent = doc.get("agent")
        agent = dict(agent) if isinstance(agent, Mapping) else {}
        if is_blank(agent.get("role")):
            agent["role"] = slug
        doc["agent"] = agent
    doc["schemaVersion"] = CURRENT_SCHEMA_VERSION
    for name, policy in POLICIES[kind].items():
        if name in doc:
            continue
        if policy in _LIST_POLICIES:
            doc[name] = []
        elif policy is MergePolicy.MAP_OVERLAY:
            doc[name] = {}


def merge_documents(
    kind: DocumentKind | str,
    documents: Sequence[LoadedDocument | Tuple[str, Mapping[str, Any]]],
    options: MergeOptions | None = None,
    identifier: Optional[str] = None,
) -> MergedView:
    """Merge already-loaded documents, given root-most first."""

    kind = DocumentKind.parse(kind)
    options = options or MergeOptions()
    layered: List[Tuple[str, Dict[str, Any]]] = []
    for doc in documents:
        label, data = (doc.label, doc.data) if isinstance(doc, LoadedDocument) else doc
        upgraded = normalize(data, kind, fill_defaults=False).document
        layered.append((label, upgraded))

    merged: Dict[str, Any] = {}
    provenance: Dict[str, str] = {}
    duplicates: Dict[str, List[Dict[str, Any]]] = {}
    for name in _field_order(layered):
        values = [(label, data.get(name)) for label, data in layered if name in data]
        policy = policy_for(kind, name)
        if policy is MergePolicy.LIST_UNION and name == "sections":
            value, source = _merge_sections(values)
        elif policy is MergePolicy.LIST_UNION:
            value, source = _merge_union(name, values)
        elif policy is MergePolicy.LIST_APPEND:
            value, source = _merge_append(values)
        elif policy is MergePolicy.MAP_OVERLAY:
            value, source = _merge_overlay(values)
        else:
            value, source = _merge_override(values)
        if source is None:
            continue
        merged[name] = value
        provenance[name] = source
        if options.include_duplicates:
            duplicates[name] = _trace(policy, values)

    found = bool(layered)
    _apply_defaults(kind, merged, identifier, found)
    chain: List[str] = []
    for label, _ in layered:
        if label not in chain:
            chain.append(label)
    return MergedView(
        kind=kind,
        document=merged,
        context_chain=chain,
        found=found,
        provenance=provenance if options.include_provenance else None,
        duplicates=duplicates if options.include_duplicates else None,
    )


def merge(
    kind: DocumentKind | str,
    layers: Sequence[LineageLayer],
    options: MergeOptions | None = None,
    identifier: Optional[str] = None,
    project_root: Path | str | None = None,
) -> MergedView:
    documents = load_layers(kind, layers, project_root=project_root)
    return merge_documents(kind, documents, options, identifier=identifier)


# ---------------------------------------------------------------------------
# origin

_ORIGIN_SOURCES = (
    (DocumentKind.CONTRIBUTION_LOG, "agency"),
    (DocumentKind.PROFILE, "agent"),
    (DocumentKind.PLAN, "agenda"),
)
_UNPARSABLE = datetime.max.replace(tzinfo=timezone.utc)


def _timestamp_key(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _UNPARSABLE
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _relative(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.name


def _slug_from_path(path: Path, settings: TriadSettings) -> Optional[str]:
    parts = path.resolve().parts
    marker = Path(settings.agents_dir).name
    if marker in parts:
        index = parts.index(marker)
        if index + 1 < len(parts):
            return parts[index + 1]
    return None


def _stamp(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def _collect_origin(
    directory: Path,
    root: Path,
    inherited_from: Optional[str],
    settings: TriadSettings,
    visited: set,
    out: List[OriginRecord],
) -> None:
    key = directory.resolve()
    if key in visited:
        return
    visited.add(key)
    profile: Optional[Dict[str, Any]] = None
    for kind, tag in _ORIGIN_SOURCES:
        path = document_path(directory, kind)
        if path is None:
            continue
        try:
            data = read_document(path)
        except MalformedDocumentError as exc:
            logger.warning("origin: skipping %s: %s", path, exc, extra={"path": str(path)})
            continue
        rel = _relative(path, root)
        if _stamp(data.get("updated")):
            out.append(OriginRecord(f"updated:{tag}", rel, data["updated"], inherited_from))
        if kind is DocumentKind.CONTRIBUTION_LOG:
            for entry in _as_list(data.get("entries")):
                if isinstance(entry, Mapping) and _stamp(entry.get("timestamp")):
                    out.append(OriginRecord("agencyEntry", rel, entry["timestamp"], inherited_from))
        for note in _as_list(normalize(data, kind, fill_defaults=False).document.get("notes")):
            if isinstance(note, Mapping) and _stamp(note.get("timestamp")):
                out.append(OriginRecord("note", rel, note["timestamp"], inherited_from))
        if kind is DocumentKind.PROFILE:
            profile = data
    if profile is None:
        return
    for target in inherit_targets(profile, root):
        if target.is_file():
            _collect_origin(target.parent, root, _slug_from_path(target, settings), settings, visited, out)


def derive_origin(
    identifier: str,
    start: Path | str,
    settings: TriadSettings | None = None,
    layers: Optional[Sequence[LineageLayer]] = None,
) -> Origin:
    """Collect every timestamp defining ``identifier`` across the lineage, oldest first.

    Evidence comes from ``updated``, contribution-log entries and note
    timestamps of each layer and of the profiles it inherits. Timestamps that do
    not parse as ISO-8601 sort last.
    """

    settings = settings or TriadSettings()
    root = find_project_root(start, settings.root_markers) or Path(start).resolve()
    if layers is None:
        layers = resolve(identifier, start, settings)
    records: List[OriginRecord] = []
    visited: set = set()
    for layer in layers:
        _collect_origin(layer.directory, root, None, settings, visited, records)
    records.sort(key=lambda record: _timestamp_key(record.value))
    return Origin(first_observed_at=records[0].value if records else None, provenance=records)


def merge_agent(
    identifier: str,
    start: Path | str,
    kind: DocumentKind | str = DocumentKind.PROFILE,
    options: MergeOptions | None = None,
    settings: TriadSettings | None = None,
) -> MergedView:
    """Resolve, load and merge ``kind`` for ``identifier`` starting at ``start``."""

    settings = settings or TriadSettings()
    options = options or MergeOptions()
    layers = resolve(identifier, start, settings)
    root = find_project_root(start, settings.root_markers) or Path(start).resolve()
    view = merge(kind, layers, options, identifier=identifier, project_root=root)
    if options.include_origin:
        view.origin = derive_origin(identifier, start, settings, layers=layers)
    log_event(
        logger,
        "merge.completed",
        {"slug": view.identifier, "kind": view.kind.value, "found": view.found, "layers": view.context_chain},
    )
    return view


__all__ = [
    "MergeOptions",
    "MergePolicy",
    "MergedView",
    "Origin",
    "OriginRecord",
    "POLICIES",
    "UNKNOWN_SLUG",
    "derive_origin",
    "merge",
    "merge_agent",
    "merge_documents",
    "policy_for",
]
