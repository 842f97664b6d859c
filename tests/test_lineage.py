from __future__ import annotations

import os
from pathlib import Path

import pytest

from tests._triad_factory import agent_doc, write_json
from triad_lineage.exceptions import InvalidIdentifierError, LineageIOError, MalformedDocumentError
from triad_lineage.lineage import LineageLayer, find_project_root, parse_lineage_manifest, resolve
from triad_lineage.loader import document_path, kind_for_path, load_layers, read_document
from triad_lineage.merge import merge
from triad_lineage.models import DocumentKind


pytestmark = pytest.mark.unit


def test_find_project_root_walks_upward(tmp_path: Path):
    (tmp_path / "repo" / ".marker").mkdir(parents=True)
    start = tmp_path / "repo" / "a" / "b"
    start.mkdir(parents=True)
    assert find_project_root(start, (".marker",)) == (tmp_path / "repo").resolve()
    assert find_project_root(tmp_path, (".no-such-marker-here",)) is None


def test_parse_lineage_manifest(tmp_path: Path):
    (tmp_path / ".gitmodules").write_text(
        '[submodule "shared"]\n\tpath = vendor/shared\n\turl = https://example.test/shared.git\n# path = ignored\n',
        encoding="utf-8",
    )
    assert parse_lineage_manifest(tmp_path) == [(tmp_path / "vendor/shared").resolve()]
    assert parse_lineage_manifest(tmp_path / "vendor") == []


def test_resolve_orders_root_most_first(lineage_tree):
    layers = resolve("codex", lineage_tree["local"])
    assert [layer.label for layer in layers] == ["root", "container", "local"]
    assert layers[-1].directory == lineage_tree["local"].resolve() / ".clia/agents/codex"


def test_manifest_containers_holding_start_are_included(tmp_path: Path):
    outer = tmp_path / "outer"
    (outer / ".git").mkdir(parents=True)
    (outer / ".gitmodules").write_text("path = vendor/shared\npath = vendor/other\n", encoding="utf-8")
    write_json(outer / ".clia/agents/codex/codex.agent.json", agent_doc())
    write_json(outer / "vendor/shared/.clia/agents/codex/codex.agent.json", agent_doc())
    write_json(outer / "vendor/other/.clia/agents/codex/codex.agent.json", agent_doc())
    start = outer / "vendor/shared/src"
    start.mkdir(parents=True)

    layers = resolve("codex", start)
    assert [layer.label for layer in layers] == ["outer", "shared"]


def test_undefined_identifier_returns_empty(tmp_path: Path):
    (tmp_path / ".git").mkdir()
    assert resolve("nobody", tmp_path) == []


def test_backups_alone_do_not_define_an_agent(tmp_path: Path):
    (tmp_path / ".git").mkdir()
    write_json(tmp_path / ".clia/agents/codex/codex.agent.json.bak", agent_doc())
    assert resolve("codex", tmp_path) == []


@pytest.mark.parametrize("identifier", ["../etc", "Codex", "a_b", "", "-a"])
def test_invalid_identifiers_are_rejected(tmp_path: Path, identifier: str):
    with pytest.raises(InvalidIdentifierError):
        resolve(identifier, tmp_path)


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinked_agent_directory_is_followed(tmp_path: Path):
    (tmp_path / ".git").mkdir()
    real = write_json(tmp_path / "store/codex/codex.agent.json", agent_doc()).parent
    (tmp_path / ".clia/agents").mkdir(parents=True)
    os.symlink(real, tmp_path / ".clia/agents/codex", target_is_directory=True)
    layers = resolve("codex", tmp_path)
    assert len(layers) == 1


def test_document_path_prefers_plain_suffix(tmp_path: Path):
    write_json(tmp_path / "codex.agent.triad.json", agent_doc())
    assert document_path(tmp_path, "profile").name == "codex.agent.triad.json"
    write_json(tmp_path / "codex.agent.json", agent_doc())
    assert document_path(tmp_path, DocumentKind.PROFILE).name == "codex.agent.json"
    assert document_path(tmp_path, "plan") is None


def test_kind_for_path():
    assert kind_for_path("x.agenda.triad.json") is DocumentKind.PLAN
    assert kind_for_path("x.agency.json") is DocumentKind.CONTRIBUTION_LOG
    assert kind_for_path("x.agent.json.bak") is None


def test_read_document_errors(tmp_path: Path):
    bad = tmp_path / "bad.agent.json"
    bad.write_text("{oops", encoding="utf-8")
    with pytest.raises(MalformedDocumentError) as excinfo:
        read_document(bad)
    assert excinfo.value.path == bad
    with pytest.raises(LineageIOError):
        read_document(tmp_path / "missing.agent.json")


def test_inherits_expand_first_and_are_cycle_safe(tmp_path: Path):
    local_dir = tmp_path / ".clia/agents/codex"
    write_json(
        tmp_path / "shared/base.agent.json",
        {"schemaVersion": "0.4.0", "guardrails": ["inherited"], "inherits": [".clia/agents/codex/codex.agent.json"]},
    )
    write_json(
        local_dir / "codex.agent.json",
        agent_doc(
            guardrails=["local"],
            inherits=["shared/base.agent.json", "https://example.test/remote.agent.json", "missing.agent.json"],
        ),
    )
    layers = [LineageLayer(label="proj", directory=local_dir, container=tmp_path)]

    loaded = load_layers("profile", layers, project_root=tmp_path)
    assert [doc.label for doc in loaded] == ["proj:inherits", "proj"]
    assert loaded[0].inherited is True

    view = merge("profile", layers, project_root=tmp_path)
    assert view.document["guardrails"] == ["inherited", "local"]
