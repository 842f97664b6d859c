"""Lineage merge, schema normalization and safety verification for agent triads."""

from .config import CURRENT_SCHEMA_VERSION, TriadSettings, load_settings
from .lineage import LineageLayer, find_project_root, resolve
from .lint import LintReport, lint_lineage
from .merge import MergedView, MergeOptions, MergePolicy, Origin, derive_origin, merge, merge_agent, merge_documents
from .models import DocumentKind
from .normalizer import NormalizationResult, NormalizeMode, StructuralRisk, normalize
from .verifier import canonicalize, equivalent

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "DocumentKind",
    "LineageLayer",
    "LintReport",
    "MergeOptions",
    "MergePolicy",
    "MergedView",
    "NormalizationResult",
    "NormalizeMode",
    "Origin",
    "StructuralRisk",
    "TriadSettings",
    "canonicalize",
    "derive_origin",
    "equivalent",
    "find_project_root",
    "lint_lineage",
    "load_settings",
    "merge",
    "merge_agent",
    "merge_documents",
    "normalize",
    "resolve",
]
