"""Canonical equivalence verifier.

A payload is decoded into the typed model for its kind and re-encoded with
sorted keys and omitted optionals. Two payloads are semantically equal iff both
decode and their canonical encodings match. A decode failure is never "equal".
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from .exceptions import MalformedDocumentError
from .logging import get_logger
from .models import DocumentKind, model_for
from .normalizer import normalize

logger = get_logger("verifier")


def _as_mapping(data: bytes | str | Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    if isinstance(data, Mapping):
        return data
    try:
        value = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, Mapping) else None


def _encode(payload: Mapping[str, Any], kind: DocumentKind) -> bytes:
    model = model_for(kind).model_validate(payload)
    dumped = model.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(dumped, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def canonicalize(
    data: bytes | str | Mapping[str, Any],
    kind: DocumentKind | str,
    *,
    upgrade: bool = False,
) -> Optional[bytes]:
    """Return the canonical bytes for ``data`` or ``None`` when it does not decode.

    ``upgrade=True`` retries a failed strict decode on the normalized document,
    so legacy payloads compare equal to their migrated form.
    """

    kind = DocumentKind.parse(kind)
    payload = _as_mapping(data)
    if payload is None:
        return None
    try:
        return _encode(payload, kind)
    except ValidationError as exc:
        if not upgrade:
            logger.debug("strict decode failed for %s: %s", kind.value, exc.error_count())
            return None
    try:
        return _encode(normalize(payload, kind).document, kind)
    except (ValidationError, MalformedDocumentError) as exc:
        logger.debug("upgraded decode failed for %s: %s", kind.value, exc)
        return None


def equivalent(
    a: bytes | str | Mapping[str, Any],
    b: bytes | str | Mapping[str, Any],
    kind: DocumentKind | str,
    *,
    upgrade: bool = False,
) -> bool:
    left = canonicalize(a, kind, upgrade=upgrade)
    if left is None:
        return False
    right = canonicalize(b, kind, upgrade=upgrade)
    return right is not None and left == right


def canonicalize_file(path: Path | str, kind: DocumentKind | str, *, upgrade: bool = False) -> Optional[bytes]:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        logger.debug("unable to read %s: %s", path, exc)
        return None
    return canonicalize(data, kind, upgrade=upgrade)


__all__ = ["canonicalize", "canonicalize_file", "equivalent"]
