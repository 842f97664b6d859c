from __future__ import annotations

from pathlib import Path

import pytest

from tests._triad_factory import agent_doc, write_json
from triad_lineage.exceptions import ConfigurationError
from triad_lineage.schemas import allowed_schema_versions, load_schema, schema_path, validate_document


pytestmark = pytest.mark.unit


def _schema(tmp_path: Path, payload) -> Path:
    return write_json(schema_path("profile", tmp_path), payload)


def test_no_schema_means_no_messages(tmp_path: Path):
    assert load_schema("profile", tmp_path) is None
    assert validate_document(agent_doc(), "profile", tmp_path) == []
    assert allowed_schema_versions("profile", tmp_path) == []


def test_schema_path_uses_short_kind_names(tmp_path: Path):
    assert schema_path("contribution_log", tmp_path).name == "triads.agency.schema.json"


def test_validation_messages_are_sorted_by_location(tmp_path: Path):
    _schema(
        tmp_path,
        {
            "type": "object",
            "required": ["slug", "purpose"],
            "properties": {"schemaVersion": {"const": "0.4.0"}, "guardrails": {"type": "array", "items": {"type": "string"}}},
        },
    )
    doc = agent_doc(schemaVersion="0.3.0", guardrails=["ok", 3])
    doc.pop("slug")
    messages = validate_document(doc, "profile", tmp_path)
    assert messages[0].startswith("<root>: ")
    assert "guardrails/1: 3 is not of type 'string'" in messages
    assert any(m.startswith("schemaVersion: ") for m in messages)
    assert allowed_schema_versions("profile", tmp_path) == ["0.4.0"]


def test_enum_versions(tmp_path: Path):
    _schema(tmp_path, {"properties": {"schemaVersion": {"enum": ["0.3.0", "0.4.0"]}}})
    assert allowed_schema_versions("profile", tmp_path) == ["0.3.0", "0.4.0"]


def test_invalid_schema_is_a_configuration_error(tmp_path: Path):
    _schema(tmp_path, {"type": 12})
    with pytest.raises(ConfigurationError):
        load_schema("profile", tmp_path)
