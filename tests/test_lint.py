from __future__ import annotations

from pathlib import Path

import pytest

from tests._triad_factory import agent_doc, write_json
from triad_lineage.lint import duplicate_guardrails, lint_lineage
from triad_lineage.schemas import schema_path


pytestmark = pytest.mark.unit

ROOT_DIRECTIVES = ".clia/agents/root/root.agent.json"


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / ".git").mkdir()
    agents = tmp_path / ".clia/agents"
    write_json(agents / "root/root.agent.json", agent_doc(slug="root", guardrails=["Stay safe"]))
    write_json(agents / "codex/codex.agent.json", agent_doc(inherits=[ROOT_DIRECTIVES], guardrails=["stay  SAFE"]))
    write_json(agents / "scribe/scribe.agent.json", agent_doc(slug="scribe", guardrails=["cite sources"]))
    write_json(agents / "templates/templates.agent.json", agent_doc(slug="templates"))
    return tmp_path


def test_duplicate_guardrails_ignore_case_and_spacing():
    assert duplicate_guardrails(["Stay safe", "ship", "stay  SAFE", 3, "Ship"]) == ["stay  SAFE", "Ship"]


def test_lint_reports_missing_inherits_and_duplicates(project: Path):
    report = lint_lineage(project)
    assert report.root_directives == ROOT_DIRECTIVES
    assert [agent.slug for agent in report.agents] == ["codex", "scribe"]
    codex, scribe = report.agents
    assert codex.missing_inherits is False
    assert codex.duplicate_guardrails == ["stay  SAFE"]
    assert scribe.missing_inherits is True
    assert scribe.duplicate_guardrails == []
    assert report.warnings == [
        "duplicate guardrails after merge for slug=codex",
        "missing inherits for slug=scribe",
    ]
    assert report.failed() is False
    assert report.failed(strict=True) is True


def test_lint_single_agent_and_json_shape(project: Path):
    report = lint_lineage(project, "scribe")
    payload = report.to_dict(strict=True)
    assert payload["status"] == "degraded"
    assert payload["rootDirectives"] == ROOT_DIRECTIVES
    assert payload["report"] == [{"slug": "scribe", "missingInherits": True}]
    assert lint_lineage(project, "codex").to_dict()["status"] == "ok"


def test_lint_falls_back_when_root_directives_are_absent(tmp_path: Path):
    (tmp_path / ".git").mkdir()
    write_json(tmp_path / ".clia/agents/codex/codex.agent.json", agent_doc())
    report = lint_lineage(tmp_path)
    assert report.root_directives == ROOT_DIRECTIVES
    assert report.warnings[0].startswith("root directives not found")
    assert report.agents[0].missing_inherits is True


def test_lint_reports_unreadable_profiles_as_errors(project: Path):
    (project / ".clia/agents/broken").mkdir()
    (project / ".clia/agents/broken/broken.agent.json").write_text("{nope", encoding="utf-8")
    report = lint_lineage(project)
    assert any(error.startswith("unreadable profile for slug=broken") for error in report.errors)
    assert report.failed() is True
    assert [agent.slug for agent in report.agents] == ["codex", "scribe"]


def test_lint_skips_directories_that_are_not_identifiers(project: Path):
    write_json(project / ".clia/agents/Not_Kebab/Not_Kebab.agent.json", agent_doc())
    report = lint_lineage(project)
    assert "skipping Not_Kebab: not a kebab-case identifier" in report.warnings
    assert "Not_Kebab" not in [agent.slug for agent in report.agents]


def test_lint_warns_when_schema_rejects_current_version(project: Path):
    write_json(schema_path("profile", project), {"properties": {"schemaVersion": {"enum": ["0.3.0"]}}})
    report = lint_lineage(project, "codex")
    assert "schema for agent does not accept schemaVersion 0.4.0 (allows 0.3.0)" in report.warnings

    write_json(schema_path("profile", project), {"properties": {"schemaVersion": {"const": "0.4.0"}}})
    assert not any(w.startswith("schema for") for w in lint_lineage(project, "codex").warnings)
