"""Header-template matching and record merging.

Layered flow of one session:
1) resolve and validate the session template (``catalog``)
2) normalize each raw table onto the canonical fields (``normalize``)
3) match normalized records into identity clusters (``match``)
4) resolve every cluster into one merged record (``resolve``)
5) check row counts, sums and a reference table (``validate``)
6) collect reports, issues and statistics (``session``)
"""

from __future__ import annotations

from .catalog import (
    ProblemKind,
    TemplateCatalog,
    TemplateLookup,
    TemplateProblem,
    resolve_valid_template,
    validate_template,
)
from .errors import (
    MergeCancelledError,
    MergeError,
    MergeSettingsError,
    TemplateInvalidError,
    TemplateNotFoundError,
)
from .match import MatchDecision, RecordMatcher, match_records
from .normalize import NormalizationOutcome, NormalizeTable, normalize_table, plan_columns
from .resolve import ResolveCluster, resolve_cluster
from .session import MergeSession, run_merge_session
from .settings import (
    DEFAULT_FIELD_THRESHOLD,
    DEFAULT_SIMILARITY_THRESHOLD,
    MatchField,
    MatchRules,
    MergeSettings,
)
from .validate import (
    DEFAULT_SUM_SCALE,
    DEFAULT_SUM_TOLERANCE,
    ReferenceTable,
    ValidateMerge,
    ValidationExpectations,
    column_total,
    validate_merge,
)

__all__ = [
    "DEFAULT_FIELD_THRESHOLD",
    "DEFAULT_SIMILARITY_THRESHOLD",
    "DEFAULT_SUM_SCALE",
    "DEFAULT_SUM_TOLERANCE",
    "MatchDecision",
    "MatchField",
    "MatchRules",
    "MergeCancelledError",
    "MergeError",
    "MergeSession",
    "MergeSettings",
    "MergeSettingsError",
    "NormalizationOutcome",
    "NormalizeTable",
    "ProblemKind",
    "RecordMatcher",
    "ReferenceTable",
    "ResolveCluster",
    "TemplateCatalog",
    "TemplateInvalidError",
    "TemplateLookup",
    "TemplateNotFoundError",
    "TemplateProblem",
    "ValidateMerge",
    "ValidationExpectations",
    "column_total",
    "match_records",
    "normalize_table",
    "plan_columns",
    "resolve_cluster",
    "resolve_valid_template",
    "run_merge_session",
    "validate_merge",
    "validate_template",
]
