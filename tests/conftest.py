from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict

import pytest


# Ensure src/ is importable for all tests (CI and local)
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (ROOT, SRC):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from tests._triad_factory import write_json  # noqa: E402


def pytest_collection_modifyitems(config, items):
    """Default all tests to 'unit' unless explicitly marked otherwise.

    - If a test has @pytest.mark.integ or @pytest.mark.smoke, leave it.
    - If it already has @pytest.mark.unit, leave it.
    - Else, add @pytest.mark.unit to make unit the default selection.
    """
    for item in items:
        marks = {m.name for m in item.iter_markers()}
        if not ("integ" in marks or "smoke" in marks or "unit" in marks):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for key in ("TRIADS_AGENTS_DIR", "TRIADS_MANIFEST", "TRIADS_ARCHIVE_DIR"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def lineage_tree(tmp_path: Path) -> Dict[str, Path]:
    """Nested root -> container -> local containers, each defining ``codex``.

    Only ``local`` carries the ``.git`` marker so the others are its ancestors.
    """

    root = tmp_path / "root"
    container = root / "container"
    local = container / "local"
    (local / ".git").mkdir(parents=True)
    write_json(
        root / ".clia/agents/codex/codex.agent.json",
        {"schemaVersion": "0.4.0", "slug": "codex", "title": "Root", "guardrails": ["safety"]},
    )
    write_json(
        container / ".clia/agents/codex/codex.agent.json",
        {"schemaVersion": "0.4.0", "slug": "codex", "title": "", "guardrails": ["safety", "speed"]},
    )
    write_json(
        local / ".clia/agents/codex/codex.agent.json",
        {"schemaVersion": "0.4.0", "slug": "codex", "title": "Codex", "guardrails": ["speed", "clarity"]},
    )
    return {"root": root, "container": container, "local": local}
