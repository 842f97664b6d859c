from __future__ import annotations

import pytest

from tests._triad_factory import agency_doc, agent_doc, write_json
from triad_lineage.merge import (
    MergeOptions,
    MergePolicy,
    derive_origin,
    merge_agent,
    merge_documents,
    policy_for,
)


pytestmark = pytest.mark.unit


def test_end_to_end_guardrails_across_three_layers(lineage_tree):
    view = merge_agent("codex", lineage_tree["local"], options=MergeOptions(include_provenance=True))
    assert view.found is True
    assert view.context_chain == ["root", "container", "local"]
    assert view.document["title"] == "Codex"
    assert view.document["guardrails"] == ["safety", "speed", "clarity"]
    assert view.provenance["title"] == "local"


def test_override_never_erases_with_empty_value():
    view = merge_documents("profile", [("a", {"title": "Foo"}), ("b", {"title": ""})])
    assert view.document["title"] == "Foo"


def test_list_union_keeps_first_seen_order():
    view = merge_documents("profile", [("a", {"mentors": ["x", "y"]}), ("b", {"mentors": ["y", "z", " "]})])
    assert view.document["mentors"] == ["x", "y", "z"]


def test_provenance_names_the_effective_layer():
    layers = [
        ("root", {"title": "Root", "purpose": "base", "tags": ["a"]}),
        ("local", {"title": "Local", "purpose": "", "tags": ["b"]}),
    ]
    view = merge_documents("profile", layers, MergeOptions(include_provenance=True))
    assert view.provenance["title"] == "local"
    assert view.provenance["purpose"] == "root"
    assert view.provenance["tags"] == "local"
    assert view.duplicates is None


def test_duplicates_trace_is_pre_dedup():
    layers = [("a", {"mentors": ["x", "y"]}), ("b", {"mentors": ["y", "z"]})]
    view = merge_documents("profile", layers, MergeOptions(include_duplicates=True))
    assert view.duplicates["mentors"] == [
        {"layer": "a", "value": "x"},
        {"layer": "a", "value": "y"},
        {"layer": "b", "value": "y"},
        {"layer": "b", "value": "z"},
    ]
    assert view.provenance is None


def test_links_dedup_on_title_and_url():
    layers = [
        ("a", {"links": [{"title": "Docs", "url": "https://x.test"}]}),
        ("b", {"links": [{"url": "https://x.test", "title": "Docs"}, {"title": "Other", "url": "https://y.test"}]}),
    ]
    view = merge_documents("profile", layers)
    assert view.document["links"] == [
        {"title": "Docs", "url": "https://x.test"},
        {"title": "Other", "url": "https://y.test"},
    ]


def test_contribution_entries_append_without_dedup():
    entry = {"timestamp": "2024-01-01T00:00:00Z", "contributionGroups": []}
    view = merge_documents("agency", [("a", {"entries": [entry]}), ("b", {"entries": [entry]})])
    assert view.document["entries"] == [entry, entry]
    assert policy_for("agency", "entries") is MergePolicy.LIST_APPEND


def test_extensions_overlay_is_shallow():
    layers = [("a", {"extensions": {"a": 1, "b": {"deep": 1}}}), ("b", {"extensions": {"b": {"other": 2}}})]
    view = merge_documents("profile", layers)
    assert view.document["extensions"] == {"a": 1, "b": {"other": 2}}


def test_legacy_and_typed_sections_merge_as_one():
    layers = [
        ("root", {"sections": ["Scope: build"]}),
        ("local", {"sections": [{"title": "Scope", "items": ["build"]}]}),
    ]
    view = merge_documents("profile", layers)
    assert view.document["sections"] == [{"title": "Scope", "items": ["build"]}]


def test_post_merge_defaults():
    view = merge_documents("profile", [("a", {"slug": "agent-profile"})], identifier="codex")
    assert view.identifier == "codex"
    assert view.document["title"] == "codex"
    assert view.document["role"] == "codex"
    assert view.document["schemaVersion"] == "0.4.0"
    plan = merge_documents("plan", [("a", {"slug": "codex"})])
    assert plan.document["agent"] == {"role": "codex"}


def test_absent_identifier_yields_sentinel(tmp_path):
    view = merge_documents("profile", [], identifier="ghost")
    assert view.found is False
    assert view.identifier == "unknown"
    assert view.document["guardrails"] == []
    assert view.document["sections"] == []
    assert view.document["extensions"] == {}
    assert view.document["title"] == "unknown"

    (tmp_path / ".git").mkdir()
    on_disk = merge_agent("ghost", tmp_path)
    assert on_disk.found is False
    assert on_disk.context_chain == []


def test_merge_is_deterministic(lineage_tree):
    options = MergeOptions(include_provenance=True, include_duplicates=True)
    first = merge_agent("codex", lineage_tree["local"], options=options).to_json()
    second = merge_agent("codex", lineage_tree["local"], options=options).to_json()
    assert first == second


def test_sections_sharing_a_title_merge_items():
    layers = [
        ("root", {"sections": ["Scope: build", "loose"]}),
        ("local", {"sections": ["Scope: test", "Scope: build", "Risks: none"]}),
    ]
    view = merge_documents("profile", layers, MergeOptions(include_provenance=True))
    assert view.document["sections"] == [
        {"title": "Scope", "items": ["build", "test"]},
        {"title": "Risks", "items": ["none"]},
        {"items": ["loose"]},
    ]
    assert view.provenance["sections"] == "local"


def test_union_provenance_ignores_layers_that_only_repeat():
    layers = [("root", {"guardrails": ["safety", "speed"]}), ("local", {"guardrails": ["speed"]})]
    view = merge_documents("profile", layers, MergeOptions(include_provenance=True))
    assert view.document["guardrails"] == ["safety", "speed"]
    assert view.provenance["guardrails"] == "root"


def test_origin_collects_timestamps_oldest_first(tmp_path):
    (tmp_path / ".git").mkdir()
    base = tmp_path / ".clia/agents"
    write_json(base / "root/root.agent.json", agent_doc(slug="root", updated="2023-05-01"))
    write_json(
        base / "codex/codex.agent.json",
        agent_doc(
            updated="not a date",
            inherits=[".clia/agents/root/root.agent.json"],
            notes=[{"timestamp": "2024-02-01T00:00:00Z", "blocks": ["hi"]}],
        ),
    )
    write_json(base / "codex/codex.agency.json", agency_doc())

    view = merge_agent("codex", tmp_path, options=MergeOptions(include_origin=True))
    origin = view.to_dict()["origin"]
    assert origin["firstObservedAt"] == "2023-05-01"
    sources = [(record["source"], record["value"]) for record in origin["provenance"]]
    assert sources == [
        ("updated:agent", "2023-05-01"),
        ("agencyEntry", "2024-01-01T10:00:00Z"),
        ("updated:agency", "2024-01-02T00:00:00Z"),
        ("agencyEntry", "2024-01-02T10:00:00Z"),
        ("note", "2024-02-01T00:00:00Z"),
        ("updated:agent", "not a date"),
    ]
    assert origin["provenance"][0]["inheritedFrom"] == "root"
    assert origin["provenance"][0]["path"] == ".clia/agents/root/root.agent.json"
    assert "inheritedFrom" not in origin["provenance"][1]


def test_origin_is_empty_without_documents(tmp_path):
    (tmp_path / ".git").mkdir()
    origin = derive_origin("ghost", tmp_path)
    assert origin.first_observed_at is None
    assert origin.provenance == []
    assert "origin" not in merge_agent("ghost", tmp_path).to_dict()
