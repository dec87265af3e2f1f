"""Public domain model surface."""

from __future__ import annotations

from listmerge.domain.model.enums import (
    ConflictPolicy,
    FieldKind,
    HeaderPosition,
    IssueCode,
    IssueSeverity,
)
from listmerge.domain.model.results import (
    ConflictNote,
    MatchCluster,
    MergedRecord,
    MergeIssue,
    MergeResult,
    MergeStatistics,
    NormalizationReport,
)
from listmerge.domain.model.tables import FieldValue, NormalizedRecord, RawTable, RecordRef
from listmerge.domain.model.templates import (
    AliasSet,
    FieldDefinition,
    HeaderTemplate,
    normalize_header,
)

__all__ = [
    "AliasSet",
    "ConflictNote",
    "ConflictPolicy",
    "FieldDefinition",
    "FieldKind",
    "FieldValue",
    "HeaderPosition",
    "HeaderTemplate",
    "IssueCode",
    "IssueSeverity",
    "MatchCluster",
    "MergeIssue",
    "MergeResult",
    "MergeStatistics",
    "MergedRecord",
    "NormalizationReport",
    "NormalizedRecord",
    "RawTable",
    "RecordRef",
    "normalize_header",
]
