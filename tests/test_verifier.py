from __future__ import annotations

import json

import pytest

from tests._triad_factory import agency_doc, agent_doc
from triad_lineage.verifier import canonicalize, canonicalize_file, equivalent


pytestmark = pytest.mark.unit


def test_canonical_reflexivity():
    data = json.dumps(agent_doc()).encode("utf-8")
    assert canonicalize(data, "profile") is not None
    assert equivalent(data, data, "profile")


def test_cosmetic_differences_are_ignored():
    doc = agent_doc()
    pretty = json.dumps(doc, indent=4, sort_keys=True)
    compact = json.dumps(dict(reversed(list(doc.items()))), separators=(",", ":"))
    assert equivalent(pretty, compact, "profile")


def test_semantic_differences_are_detected():
    changed = agent_doc(responsibilities=["review changes", "ship hotfixes"])
    assert not equivalent(json.dumps(agent_doc()), json.dumps(changed), "profile")


def test_decode_failure_is_never_equal():
    assert canonicalize(b"not json", "profile") is None
    assert not equivalent(b"not json", b"not json", "profile")
    assert canonicalize(b"[]", "profile") is None


def test_schema_version_must_match_unless_upgrading():
    old = agent_doc(schemaVersion="0.3.0")
    assert canonicalize(old, "profile") is None
    assert canonicalize(old, "profile", upgrade=True) == canonicalize(agent_doc(), "profile")


def test_legacy_shapes_decode_to_the_typed_form():
    flat = agent_doc(sections=["Scope: build", "notes"], checklists=["lint"])
    typed = agent_doc(
        sections=[{"title": "Scope", "items": ["build"]}, {"items": ["notes"]}],
        checklists=[{"items": [{"text": "lint", "level": "required"}]}],
    )
    assert equivalent(flat, typed, "profile")


def test_null_optionals_match_absent_ones():
    assert equivalent(agent_doc(status=None, purpose=None), agent_doc(), "profile")


def test_unknown_keys_are_ignored():
    assert equivalent(agent_doc(extra="ignored"), agent_doc(), "profile")


def test_contributions_alias_matches_contribution_groups():
    doc = agency_doc()
    aliased = agency_doc()
    for entry in aliased["entries"]:
        entry["contributions"] = entry.pop("contributionGroups")
    assert equivalent(doc, aliased, "agency")
    canonical = json.loads(canonicalize(aliased, "agency"))
    assert "contributionGroups" in canonical["entries"][0]


def test_canonical_encoding_is_sorted_and_compact():
    canonical = canonicalize(agent_doc(), "profile")
    keys = list(json.loads(canonical).keys())
    assert keys == sorted(keys)
    assert b"\n" not in canonical


def test_canonicalize_file_missing_returns_none(tmp_path):
    assert canonicalize_file(tmp_path / "missing.agent.json", "profile") is None


@pytest.mark.parametrize("level", [["odd"], {"odd": True}, 3])
def test_unhashable_checklist_level_decodes_as_required(level):
    odd = agent_doc(checklists=[{"items": [{"text": "x", "level": level}]}])
    plain = agent_doc(checklists=[{"items": [{"text": "x", "level": "required"}]}])
    assert canonicalize(odd, "profile") == canonicalize(plain, "profile")
    assert equivalent(odd, plain, "profile", upgrade=True)


def test_malformed_mentors_fail_decode_quietly():
    doc = agent_doc(mentors=[{"email": "a@example.test"}])
    assert canonicalize(doc, "profile") is None
    assert canonicalize(agent_doc(mentors=[{"name": "Ada"}]), "profile") is not None
