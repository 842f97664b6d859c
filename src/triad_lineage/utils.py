"""Utility helpers for deterministic JSON encoding, atomic writes and identifiers."""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from .exceptions import InvalidIdentifierError, LineageIOError


_IDENTIFIER = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def validate_identifier(identifier: str) -> str:
    """Return ``identifier`` when it is lowercase kebab-case, else raise."""

    value = str(identifier or "").strip()
    if not _IDENTIFIER.match(value):
        raise InvalidIdentifierError(f"agent identifier must be lowercase kebab-case: {identifier!r}")
    return value


def is_blank(value: Any) -> bool:
    """True for ``None``, whitespace-only strings and empty containers."""

    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def canonical_dumps(value: Any) -> str:
    """Compact JSON with sorted keys; list order is significant and kept."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def pretty_bytes(payload: Any) -> bytes:
    """Human-friendly JSON (two-space indent, sorted keys, trailing newline)."""

    text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def read_bytes(path: Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise LineageIOError(f"unable to read {path}: {exc}") from exc


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` through a sibling temp file and ``os.replace``."""

    path = Path(path)
    temp_path: Path | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "wb", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as handle:
            temp_path = Path(handle.name)
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except OSError as exc:
        raise LineageIOError(f"unable to write {path}: {exc}") from exc
    finally:
        if temp_path is not None and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass


def json_write(path: Path, payload: Any) -> bytes:
    """Atomically write ``payload`` as pretty JSON; returns the bytes written."""

    data = pretty_bytes(payload)
    atomic_write_bytes(path, data)
    return data


__all__ = [
    "atomic_write_bytes",
    "canonical_dumps",
    "is_blank",
    "json_write",
    "pretty_bytes",
    "read_bytes",
    "validate_identifier",
]
