"""Custom exceptions raised by triad-lineage."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List


class TriadError(RuntimeError):
    """Base error for all triad related exceptions."""


class ConfigurationError(TriadError):
    """Raised when configuration values are invalid or missing."""


class InvalidIdentifierError(TriadError, ValueError):
    """Raised when an agent identifier is not lowercase kebab-case."""


class LineageIOError(TriadError, OSError):
    """Raised when the filesystem cannot be read or written."""


class MalformedDocumentError(TriadError):
    """Raised when a triad document root is not a parsable JSON object."""

    def __init__(self, path: Path | str | None, detail: str) -> None:
        self.path = Path(path) if path is not None else None
        self.detail = detail
        where = str(self.path) if self.path is not None else "<bytes>"
        super().__init__(f"malformed triad document at {where}: {detail}")


class StructuralRiskError(TriadError):
    """Raised when a risky write is attempted without acknowledgment."""

    def __init__(self, path: Path | str, reasons: Iterable[str], flag: str) -> None:
        self.path = Path(path)
        self.reasons: List[str] = list(reasons)
        self.flag = flag
        summary = "; ".join(self.reasons) or "inherently risky mode"
        super().__init__(
            f"refusing to write {self.path}: {summary}. Re-run with {flag} to proceed."
        )


class VerificationFailedError(TriadError):
    """Raised when canonical verification fails under strict mode."""

    def __init__(self, path: Path | str, detail: str = "semantic mismatch or decode failure") -> None:
        self.path = Path(path)
        super().__init__(f"verification failed for {self.path}: {detail}")


__all__ = [
    "ConfigurationError",
    "InvalidIdentifierError",
    "LineageIOError",
    "MalformedDocumentError",
    "StructuralRiskError",
    "TriadError",
    "VerificationFailedError",
]
