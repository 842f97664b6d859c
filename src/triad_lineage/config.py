"""Configuration models for triad-lineage."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

CURRENT_SCHEMA_VERSION = "0.4.0"
SETTINGS_FILENAME = "triads.yaml"

_ENV_OVERRIDES = {
    "TRIADS_AGENTS_DIR": "agents_dir",
    "TRIADS_MANIFEST": "lineage_manifest",
    "TRIADS_ARCHIVE_DIR": "archive_dir",
}
_FORBIDDEN_YAML_MARKERS = ("!!python", "!!binary", "python/object", "tag:yaml.org,2002:python")


class TriadSettings(BaseModel):
    """Layout and safety settings shared by the resolver and the writers."""

    agents_dir: str = Field(default=".clia/agents", description="Agents directory relative to a container")
    root_markers: List[str] = Field(default_factory=lambda: [".git"], description="Project root markers")
    lineage_manifest: str = Field(default=".gitmodules", description="Manifest listing linked containers")
    backup_suffix: str = Field(default=".bak")
    pre_restore_suffix: str = Field(default=".pre-restore.bak")
    archive_dir: str = Field(default=".triads/backups/archive", description="Archive root for retired backups")
    schemas_dir: str = Field(default=".clia/schemas/triads", description="Optional JSON schema overrides")

    @field_validator("agents_dir", "lineage_manifest", "archive_dir", "schemas_dir")
    @classmethod
    def _relative_path(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("path settings must not be empty")
        if ".." in Path(text).parts:
            raise ValueError(f"path setting must stay inside its container: {text}")
        return text

    @field_validator("root_markers")
    @classmethod
    def _markers_present(cls, value: List[str]) -> List[str]:
        markers = [m.strip() for m in value if m and m.strip()]
        if not markers:
            raise ValueError("at least one root marker is required")
        return markers

    @field_validator("backup_suffix", "pre_restore_suffix")
    @classmethod
    def _suffix_shape(cls, value: str) -> str:
        if not value.startswith(".") or not value.endswith(".bak"):
            raise ValueError(f"backup suffixes must look like '.<name>.bak': {value}")
        return value


def _load_settings_yaml(path: Path) -> Dict[str, Any]:
    raw = path.read_text(encoding="utf-8")
    if any(m in raw for m in _FORBIDDEN_YAML_MARKERS):
        raise ConfigurationError(f"{path} contains forbidden YAML tags/constructors")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return dict(data)


def load_settings(root: Path | str | None = None, path: Path | str | None = None) -> TriadSettings:
    """Build :class:`TriadSettings` from ``triads.yaml`` and environment overrides.

    ``path`` points at an explicit settings file; otherwise ``<root>/triads.yaml``
    is used when present. Environment variables win over file values.
    """

    raw: Dict[str, Any] = {}
    candidate = Path(path) if path is not None else (Path(root) / SETTINGS_FILENAME if root is not None else None)
    if candidate is not None:
        if candidate.is_file():
            raw.update(_load_settings_yaml(candidate))
        elif path is not None:
            raise ConfigurationError(f"settings file not found: {candidate}")

    for env_key, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_key)
        if value:
            raw[field_name] = value

    try:
        return TriadSettings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid triad settings: {exc}") from exc


__all__ = ["CURRENT_SCHEMA_VERSION", "SETTINGS_FILENAME", "TriadSettings", "load_settings"]
