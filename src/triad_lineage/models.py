"""Typed triad models.

The models mirror the on-disk JSON of the three linked documents that describe
an agent. Canonical verification decodes through them: two payloads are equal
when they decode to the same model and re-encode to the same bytes. Unknown
keys are ignored.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .config import CURRENT_SCHEMA_VERSION

SECTION_DELIMITER = ": "


def sections_from_flat(items: List[str]) -> List[Dict[str, Any]]:
    """Group legacy ``"Title: item"`` strings into typed sections.

    Titles keep first-seen order; strings without the delimiter collect into one
    trailing untitled section.
    """

    grouped: Dict[str, List[str]] = {}
    untitled: List[str] = []
    for raw in items:
        title, sep, item = raw.partition(SECTION_DELIMITER)
        if sep and title.strip():
            grouped.setdefault(title.strip(), []).append(item.strip())
        else:
            untitled.append(raw.strip())
    sections: List[Dict[str, Any]] = [{"title": t, "items": its} for t, its in grouped.items()]
    if untitled:
        sections.append({"items": untitled})
    return sections


class DocumentKind(str, Enum):
    """The three triad document kinds and their on-disk suffixes."""

    PROFILE = "profile"
    PLAN = "plan"
    CONTRIBUTION_LOG = "contribution_log"

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]

    @property
    def suffix(self) -> str:
        return f".{self.short_name}.json"

    @property
    def alias_suffix(self) -> str:
        return f".{self.short_name}.triad.json"

    @classmethod
    def parse(cls, value: "str | DocumentKind") -> "DocumentKind":
        """Accept enum values, short names (``agent``/``agenda``/``agency``) or member names."""

        if isinstance(value, DocumentKind):
            return value
        text = str(value or "").strip().lower().replace("-", "_")
        for kind in cls:
            if text in (kind.value, kind.short_name, kind.name.lower()):
                return kind
        raise ValueError(f"unknown triad kind: {value!r}")


_SHORT_NAMES = {
    DocumentKind.PROFILE: "agent",
    DocumentKind.PLAN: "agenda",
    DocumentKind.CONTRIBUTION_LOG: "agency",
}


class TriadModel(BaseModel):
    """Shared config: camelCase wire names, unknown keys ignored, nulls read as absent."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class LinkRef(TriadModel):
    title: Optional[str] = None
    url: Optional[str] = None


class Section(TriadModel):
    title: Optional[str] = None
    slug: Optional[str] = None
    kind: Optional[str] = None
    items: List[str] = Field(default_factory=list)


class ChecklistLevel(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    DISABLED = "disabled"


class ChecklistItem(TriadModel):
    text: str
    level: ChecklistLevel = ChecklistLevel.REQUIRED

    @model_validator(mode="before")
    @classmethod
    def _bare_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"text": data}
        return data

    @field_validator("level", mode="before")
    @classmethod
    def _unknown_level(cls, value: Any) -> Any:
        if isinstance(value, str) and value in {level.value for level in ChecklistLevel}:
            return value
        return ChecklistLevel.REQUIRED


class Checklist(TriadModel):
    title: Optional[str] = None
    items: List[ChecklistItem] = Field(default_factory=list)


class NoteBlock(TriadModel):
    kind: str
    text: List[str]


class Note(TriadModel):
    timestamp: Optional[str] = None
    author: Optional[str] = None
    blocks: List[NoteBlock] = Field(default_factory=list)
    tags: Optional[List[str]] = None
    links: Optional[List[LinkRef]] = None
    extensions: Optional[Dict[str, Any]] = None


class Contribution(TriadModel):
    type: str
    weight: float


class ContributionMix(TriadModel):
    primary: List[Contribution]
    secondary: Optional[List[Contribution]] = None


class ContributionItem(TriadModel):
    type: str
    weight: float
    evidence: str


class ContributionGroup(TriadModel):
    by: str
    types: List[ContributionItem]


class FocusDomain(TriadModel):
    label: str
    identifier: str
    weight: Optional[float] = None


class PersonaRefs(TriadModel):
    profile_path: Optional[str] = None
    reveries_path: Optional[str] = None


class SystemInstructionsRefs(TriadModel):
    compact_path: Optional[str] = None
    full_path: Optional[str] = None
    last_updated: Optional[str] = None


class CLISpecExport(TriadModel):
    export: bool = False
    path: Optional[str] = None


class TriadDocument(TriadModel):
    """Fields shared by every triad kind."""

    schema_version: str
    slug: str = ""
    title: str = ""
    updated: str = ""
    status: Optional[str] = None
    source_path: Optional[str] = None
    mentors: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    links: List[LinkRef] = Field(default_factory=list)
    sections: List[Section] = Field(default_factory=list)
    notes: List[Note] = Field(default_factory=list)
    extensions: Optional[Dict[str, Any]] = None

    @field_validator("schema_version")
    @classmethod
    def _current_version(cls, value: str) -> str:
        if value != CURRENT_SCHEMA_VERSION:
            raise ValueError(f"expected schemaVersion {CURRENT_SCHEMA_VERSION}, got {value!r}")
        return value

    @field_validator("sections", mode="before")
    @classmethod
    def _flat_sections(cls, value: Any) -> Any:
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            return sections_from_flat(value)
        return value

    @field_validator("mentors", mode="before")
    @classmethod
    def _mentor_names(cls, value: Any) -> Any:
        # person refs collapse to their names
        if isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
            if all(isinstance(v.get("name"), str) for v in value):
                return [v["name"] for v in value]
        return value


class AgentDoc(TriadDocument):
    """Profile document (``*.agent.json``)."""

    role: Optional[str] = None
    inherits: Optional[List[str]] = None
    avatar_path: Optional[str] = None
    figlet_font_name: Optional[str] = None
    purpose: Optional[str] = None
    responsibilities: List[str] = Field(default_factory=list)
    guardrails: List[str] = Field(default_factory=list)
    checklists: List[Checklist] = Field(default_factory=list)
    emoji_tags: List[str] = Field(default_factory=list)
    contribution_mix: Optional[ContributionMix] = None
    focus_domains: Optional[List[FocusDomain]] = None
    persona: Optional[PersonaRefs] = None
    system_instructions: Optional[SystemInstructionsRefs] = None
    cli_spec: Optional[CLISpecExport] = None

    @field_validator("checklists", mode="before")
    @classmethod
    def _flat_checklists(cls, value: Any) -> Any:
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            return [{"items": list(value)}]
        return value


class AgendaAgentRef(TriadModel):
    role: str = ""
    scope: Optional[str] = None
    l_level: Optional[str] = None


class ExpectedContributionTargets(TriadModel):
    synergy_min: Optional[float] = None
    stability_min: Optional[float] = None


class ExpectedContributions(TriadModel):
    types: List[str]
    targets: Optional[ExpectedContributionTargets] = None


class Horizon(TriadModel):
    slug: str
    title: str
    kind: Optional[str] = None
    items: List[str] = Field(default_factory=list)


class Milestone(TriadModel):
    slug: str
    title: str
    due: Optional[str] = None
    status: Optional[str] = None
    completed_at: Optional[str] = None
    notes: Optional[List[str]] = None
    links: Optional[List[LinkRef]] = None
    expected_contributions: Optional[ExpectedContributions] = None


class BacklogItem(TriadModel):
    title: str
    slug: Optional[str] = None
    notes: Optional[List[str]] = None
    links: Optional[List[LinkRef]] = None
    expected_contributions: Optional[ExpectedContributions] = None


class AgendaDoc(TriadDocument):
    """Plan document (``*.agenda.json``)."""

    subtitle: Optional[str] = None
    agent: AgendaAgentRef = Field(default_factory=AgendaAgentRef)
    north_star: Optional[str] = None
    principles: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    horizons: List[Horizon] = Field(default_factory=list)
    initiatives: List[str] = Field(default_factory=list)
    milestones: List[Milestone] = Field(default_factory=list)
    backlog: List[BacklogItem] = Field(default_factory=list)
    metrics: Optional[str] = None
    cadence: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    cross_links: Optional[str] = None

    @field_validator("horizons", mode="before")
    @classmethod
    def _flat_horizons(cls, value: Any) -> Any:
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            return [{"slug": "legacy", "title": v, "items": []} for v in value]
        return value

    @field_validator("milestones", mode="before")
    @classmethod
    def _flat_milestones(cls, value: Any) -> Any:
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            return [{"slug": "", "title": v} for v in value]
        return value

    @field_validator("backlog", mode="before")
    @classmethod
    def _flat_backlog(cls, value: Any) -> Any:
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            return [{"title": v} for v in value]
        return value


class AgencyEntry(TriadModel):
    timestamp: str
    kind: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    details: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    links: Optional[List[LinkRef]] = None
    contribution_groups: List[ContributionGroup] = Field(
        validation_alias=AliasChoices("contributionGroups", "contributions", "contribution_groups"),
        serialization_alias="contributionGroups",
    )
    extensions: Optional[Dict[str, Any]] = None


class AgencyDoc(TriadDocument):
    """Contribution-log document (``*.agency.json``)."""

    entries: List[AgencyEntry] = Field(default_factory=list)


MODEL_FOR_KIND: Dict[DocumentKind, Type[TriadDocument]] = {
    DocumentKind.PROFILE: AgentDoc,
    DocumentKind.PLAN: AgendaDoc,
    DocumentKind.CONTRIBUTION_LOG: AgencyDoc,
}


def model_for(kind: DocumentKind | str) -> Type[TriadDocument]:
    return MODEL_FOR_KIND[DocumentKind.parse(kind)]


__all__ = [
    "AgencyDoc",
    "AgencyEntry",
    "AgendaDoc",
    "AgentDoc",
    "Checklist",
    "ChecklistItem",
    "ChecklistLevel",
    "ContributionGroup",
    "ContributionItem",
    "DocumentKind",
    "LinkRef",
    "MODEL_FOR_KIND",
    "Note",
    "NoteBlock",
    "Section",
    "SECTION_DELIMITER",
    "TriadDocument",
    "model_for",
    "sections_from_flat",
]
