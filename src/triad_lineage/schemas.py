"""Optional JSON-Schema checks for triad documents.

Projects may ship ``triads.<agent|agenda|agency>.schema.json`` under the
configured schemas directory. Without a schema file nothing is validated.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft202012Validator, SchemaError, ValidationError

from .config import TriadSettings
from .exceptions import ConfigurationError
from .models import DocumentKind


def schema_path(kind: DocumentKind | str, root: Path | str, settings: TriadSettings | None = None) -> Path:
    settings = settings or TriadSettings()
    kind = DocumentKind.parse(kind)
    return Path(root) / settings.schemas_dir / f"triads.{kind.short_name}.schema.json"


def load_schema(
    kind: DocumentKind | str, root: Path | str, settings: TriadSettings | None = None
) -> Optional[Dict[str, Any]]:
    """Load the schema override for ``kind`` or return ``None`` when absent."""

    path = schema_path(kind, root, settings)
    if not path.is_file():
        return None
    try:
        schema = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"unable to load schema {path}: {exc}") from exc
    if not isinstance(schema, dict):
        raise ConfigurationError(f"schema {path} must be a JSON object")
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        raise ConfigurationError(f"invalid schema {path}: {exc.message}") from exc
    return schema


def allowed_schema_versions(
    kind: DocumentKind | str, root: Path | str, settings: TriadSettings | None = None
) -> List[str]:
    """Versions accepted by the schema's ``properties.schemaVersion`` (``const``/``enum``)."""

    schema = load_schema(kind, root, settings) or {}
    prop = schema.get("properties", {}).get("schemaVersion", {})
    if not isinstance(prop, Mapping):
        return []
    if isinstance(prop.get("const"), str):
        return [prop["const"]]
    if isinstance(prop.get("enum"), list):
        return [v for v in prop["enum"] if isinstance(v, str)]
    return []


def validate_document(
    document: Mapping[str, Any],
    kind: DocumentKind | str,
    root: Path | str,
    settings: TriadSettings | None = None,
) -> List[str]:
    """Return ``location: message`` strings for every schema violation."""

    schema = load_schema(kind, root, settings)
    if schema is None:
        return []
    validator = Draft202012Validator(schema)

    def _sort_key(error: ValidationError) -> tuple:
        path = tuple(str(part) for part in error.absolute_path)
        return path + (error.message,)

    messages = []
    for error in sorted(validator.iter_errors(document), key=_sort_key):
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        messages.append(f"{location}: {error.message}")
    return messages


__all__ = ["allowed_schema_versions", "load_schema", "schema_path", "validate_document"]
