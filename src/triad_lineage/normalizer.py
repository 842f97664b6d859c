"""Schema normalizer: bring a triad document's dynamic JSON up to the current version.

Rules run in a fixed order and each one only acts on the legacy shape it
recognises, so running the normalizer twice is a no-op the second time:

1. force ``schemaVersion``;
2. hoist ``sourcePath`` aliases out of ``extensions``;
3. flat string ``sections`` become titled groups;
4. flat string ``checklists`` become one checklist of required items;
5. legacy notes wrappers and raw blocks become typed notes;
6. ``role`` defaults to ``slug``.

Rules 3-5 rewrite collections. Any change to their serialized form is reported
as structural risk; callers decide whether the risk was acknowledged.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import CURRENT_SCHEMA_VERSION
from .exceptions import MalformedDocumentError
from .models import SECTION_DELIMITER, DocumentKind, sections_from_flat
from .utils import canonical_dumps, is_blank

SOURCE_PATH_ALIASES = ("sourcePath", "x-source-path")
RISK_FIELDS = ("sections", "checklists", "notes")
PARAGRAPH = "paragraph"


class NormalizeMode(str, Enum):
    """How ``sections``/``checklists`` arrays are rewritten.

    ``preserve`` only converts legacy shapes. ``union`` and ``flatten`` collapse
    the arrays to strings and are always treated as risky.
    """

    PRESERVE = "preserve"
    UNION = "union"
    FLATTEN = "flatten"


@dataclass(frozen=True, slots=True)
class StructuralRisk:
    risky: bool = False
    reasons: Tuple[str, ...] = ()

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)

    def to_dict(self) -> Dict[str, Any]:
        return {"risky": self.risky, "reasons": list(self.reasons)}


@dataclass(slots=True)
class NormalizationResult:
    document: Dict[str, Any]
    risk: StructuralRisk = field(default_factory=StructuralRisk)
    applied: List[str] = field(default_factory=list)

    @property
    def risky(self) -> bool:
        return self.risk.risky


def _all_strings(value: Any) -> bool:
    return isinstance(value, list) and bool(value) and all(isinstance(v, str) for v in value)


def _json_type(value: Any) -> str:
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    return "number"


def _describe_change(name: str, before: Any, after: Any) -> Optional[str]:
    if canonical_dumps(before) == canonical_dumps(after):
        return None
    before_type, after_type = _json_type(before), _json_type(after)
    if before_type != after_type:
        return f"{name}: type changed ({before_type} -> {after_type})"
    if isinstance(before, list) and len(before) != len(after):
        return f"{name}: cardinality changed ({len(before)} -> {len(after)})"
    if isinstance(before, list):
        return f"{name}: array shape changed"
    return f"{name}: value changed"


def _hoist_source_path(doc: Dict[str, Any]) -> bool:
    extensions = doc.get("extensions")
    if not isinstance(extensions, Mapping):
        return False
    if not any(alias in extensions for alias in SOURCE_PATH_ALIASES):
        return False
    chosen = doc.get("sourcePath")
    if not (isinstance(chosen, str) and chosen.strip()):
        chosen = None
        for alias in SOURCE_PATH_ALIASES:
            candidate = extensions.get(alias)
            if isinstance(candidate, str) and candidate.strip():
                chosen = candidate
                break
    # only string aliases are dropped, and only once a string path is kept
    if chosen is None:
        return False
    dropped = [alias for alias in SOURCE_PATH_ALIASES if isinstance(extensions.get(alias), str)]
    if not dropped and doc.get("sourcePath") == chosen:
        return False
    doc["sourcePath"] = chosen
    extensions = {k: v for k, v in extensions.items() if k not in dropped}
    if extensions:
        doc["extensions"] = extensions
    else:
        doc.pop("extensions", None)
    return True


def _typed_checklists(items: List[str]) -> List[Dict[str, Any]]:
    return [{"items": [{"text": text, "level": "required"} for text in items]}]


def _paragraph(text: str) -> Dict[str, Any]:
    return {"kind": PARAGRAPH, "text": [text]}


def _typed_block(block: Any) -> Any:
    if isinstance(block, str):
        return _paragraph(block)
    if isinstance(block, Mapping):
        out = dict(block)
        if is_blank(out.get("kind")):
            out["kind"] = PARAGRAPH
        text = out.get("text")
        if isinstance(text, str):
            out["text"] = [text]
        elif text is None:
            out["text"] = []
        return out
    return block


def _unwrap(value: Any) -> Any:
    while isinstance(value, Mapping) and set(value.keys()) == {"object"}:
        value = value["object"]
    return value


def _typed_note(note: Any) -> Any:
    note = _unwrap(note)
    if isinstance(note, str):
        return {"blocks": [_paragraph(note)]}
    if not isinstance(note, Mapping):
        return note
    out = dict(note)
    blocks = out.get("blocks")
    if isinstance(blocks, str):
        out["blocks"] = [_paragraph(blocks)]
    elif isinstance(blocks, list):
        out["blocks"] = [_typed_block(b) for b in blocks]
    return out


def _typed_notes(value: Any) -> Any:
    value = _unwrap(value)
    if isinstance(value, str):
        return [_typed_note(value)]
    if isinstance(value, Mapping):
        return [_typed_note(value)]
    if isinstance(value, list):
        return [_typed_note(n) for n in value]
    return value


def flatten_sections(value: Any) -> Optional[List[str]]:
    """Collapse typed sections back into ``"Title: item"`` strings."""

    if not isinstance(value, list):
        return None
    out: List[str] = []
    for section in value:
        if isinstance(section, str):
            out.append(section)
            continue
        if not isinstance(section, Mapping):
            continue
        title = section.get("title") or section.get("slug") or ""
        items = section.get("items")
        if isinstance(items, list) and items:
            for item in items:
                if isinstance(item, str):
                    out.append(f"{title}{SECTION_DELIMITER}{item}" if title else item)
        elif title:
            out.append(title)
    return out


def flatten_strings(value: Any) -> Optional[List[str]]:
    """Collapse titled groups (checklists and similar) into plain strings."""

    if not isinstance(value, list):
        return None
    out: List[str] = []
    for entry in value:
        if isinstance(entry, str):
            out.append(entry)
            continue
        if not isinstance(entry, Mapping):
            continue
        title = entry.get("title")
        if isinstance(title, str) and title:
            out.append(title)
        items = entry.get("items")
        if isinstance(items, list):
            for item in items:
                if isinstance(item, str):
                    out.append(item)
                elif isinstance(item, Mapping) and isinstance(item.get("text"), str):
                    out.append(item["text"])
    return out


def union_strings(*lists: Optional[List[str]]) -> List[str]:
    seen = set()
    out: List[str] = []
    for values in lists:
        for value in values or []:
            if not value.strip() or value in seen:
                continue
            seen.add(value)
            out.append(value)
    return out


def _apply_mode(doc: Dict[str, Any], original: Mapping[str, Any], mode: NormalizeMode) -> None:
    for name, flatten in (("sections", flatten_sections), ("checklists", flatten_strings)):
        if name not in doc and name not in original:
            continue
        if mode is NormalizeMode.FLATTEN:
            result = flatten(doc.get(name))
        else:
            result = union_strings(flatten(original.get(name)), flatten(doc.get(name)))
        if result is not None:
            doc[name] = result


def _resolve_kind(kind: DocumentKind | str | None) -> Optional[DocumentKind]:
    if kind is None:
        return None
    return DocumentKind.parse(kind)


def normalize(
    raw: Mapping[str, Any],
    kind: DocumentKind | str | None = None,
    *,
    fill_defaults: bool = True,
    mode: NormalizeMode | str = NormalizeMode.PRESERVE,
) -> NormalizationResult:
    """Return the normalized copy of ``raw`` plus its structural risk.

    ``fill_defaults=False`` skips the version and role defaults so merge layers
    can be shape-upgraded without inventing values. The input is never mutated.
    """

    if not isinstance(raw, Mapping):
        raise MalformedDocumentError(None, f"document root must be an object, got {_json_type(raw)}")
    resolved_kind = _resolve_kind(kind)
    mode = NormalizeMode(mode)
    doc: Dict[str, Any] = copy.deepcopy(dict(raw))
    applied: List[str] = []

    if fill_defaults and doc.get("schemaVersion") != CURRENT_SCHEMA_VERSION:
        doc["schemaVersion"] = CURRENT_SCHEMA_VERSION
        applied.append("schemaVersion")

    if _hoist_source_path(doc):
        applied.append("sourcePath")

    if _all_strings(doc.get("sections")):
        doc["sections"] = sections_from_flat(doc["sections"])
        applied.append("sections")

    if _all_strings(doc.get("checklists")):
        doc["checklists"] = _typed_checklists(doc["checklists"])
        applied.append("checklists")

    if "notes" in doc and doc["notes"] is not None:
        notes = _typed_notes(doc["notes"])
        if canonical_dumps(notes) != canonical_dumps(doc["notes"]):
            doc["notes"] = notes
            applied.append("notes")

    if fill_defaults and resolved_kind in (None, DocumentKind.PROFILE):
        slug = doc.get("slug")
        if is_blank(doc.get("role")) and isinstance(slug, str) and slug.strip():
            doc["role"] = slug
            applied.append("role")

    if mode is not NormalizeMode.PRESERVE:
        _apply_mode(doc, raw, mode)
        applied.append(f"mode:{mode.value}")

    reasons: List[str] = []
    for name in RISK_FIELDS:
        change = _describe_change(name, raw.get(name), doc.get(name))
        if change:
            reasons.append(change)
    if mode is not NormalizeMode.PRESERVE:
        reasons.append(f"mode: {mode.value} reshapes sections and checklists")
    risk = StructuralRisk(risky=bool(reasons), reasons=tuple(reasons))
    return NormalizationResult(document=doc, risk=risk, applied=applied)


def parse_document(data: bytes, path: Any = None) -> Dict[str, Any]:
    """Decode ``data`` as a JSON object or raise :class:`MalformedDocumentError`."""

    try:
        value = json.loads(data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedDocumentError(path, f"invalid JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise MalformedDocumentError(path, f"document root must be an object, got {_json_type(value)}")
    return value


def normalize_bytes(
    data: bytes,
    kind: DocumentKind | str | None = None,
    *,
    mode: NormalizeMode | str = NormalizeMode.PRESERVE,
    path: Any = None,
) -> NormalizationResult:
    return normalize(parse_document(data, path), kind, mode=mode)


__all__ = [
    "NormalizationResult",
    "NormalizeMode",
    "StructuralRisk",
    "flatten_sections",
    "flatten_strings",
    "normalize",
    "normalize_bytes",
    "parse_document",
    "union_strings",
]
