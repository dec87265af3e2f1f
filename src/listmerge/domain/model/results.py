"""Clusters, merged records and the session report.

Everything a caller needs to audit a merge lives here: every discarded
candidate value is kept as a ``ConflictNote`` and every recoverable problem as
a ``MergeIssue`` with a stable code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from listmerge.domain.model.enums import IssueCode, IssueSeverity

if TYPE_CHECKING:
    from collections.abc import Mapping

    from listmerge.domain.model.enums import ConflictPolicy
    from listmerge.domain.model.tables import FieldValue, NormalizedRecord, RecordRef

SUMMARY_ISSUE_LIMIT = 3


@dataclass(frozen=True, slots=True, kw_only=True)
class MergeIssue:
    """Recoverable problem recorded instead of aborting the session."""

    code: IssueCode
    message: str
    source_id: str | None = None
    field: str | None = None
    details: str | None = None
    severity: IssueSeverity = IssueSeverity.WARNING

    def __post_init__(self) -> None:
        if not self.message.strip():
            raise ValueError("Issue message must not be blank")

    def __str__(self) -> str:
        scope = ", ".join(part for part in (self.source_id, self.field) if part)
        label = f"{self.code} [{scope}]" if scope else str(self.code)
        return f"{label}: {self.message}"


@dataclass(slots=True)
class MatchCluster:
    """Records judged to be the same entity.

    ``confidence`` is the score of the weakest link that formed the cluster.
    Clusters only ever grow; they are never split or merged with each other.
    """

    cluster_id: int
    members: list[NormalizedRecord] = field(default_factory=list["NormalizedRecord"])
    confidence: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Cluster confidence must be within [0, 1]: {self.confidence}")

    def __len__(self) -> int:
        return len(self.members)

    @property
    def is_singleton(self) -> bool:
        return len(self.members) == 1

    def add(self, record: NormalizedRecord, *, score: float = 1.0) -> None:
        self.members.append(record)
        self.confidence = min(self.confidence, score)


@dataclass(frozen=True, slots=True, kw_only=True)
class ConflictNote:
    """A candidate value that lost conflict resolution, with its origin."""

    field: str
    value: FieldValue
    ref: RecordRef
    chosen: FieldValue
    policy: ConflictPolicy

    @property
    def source_id(self) -> str:
        return self.ref.source_id

    @property
    def row_index(self) -> int:
        return self.ref.row_index


@dataclass(frozen=True, slots=True, kw_only=True)
class MergedRecord:
    """One output row per cluster."""

    values: Mapping[str, FieldValue]
    conflicts: Mapping[str, tuple[ConflictNote, ...]]
    provenance: Mapping[str, RecordRef]
    sources: tuple[RecordRef, ...]
    confidence: float = 1.0

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def conflicts_for(self, field_name: str) -> tuple[ConflictNote, ...]:
        return self.conflicts.get(field_name, ())

    @property
    def conflict_count(self) -> int:
        return sum(len(notes) for notes in self.conflicts.values())


@dataclass(frozen=True, slots=True, kw_only=True)
class NormalizationReport:
    """What the Schema Normalizer did with one source's columns."""

    source_id: str
    template_id: str
    row_count: int
    column_mapping: Mapping[str, str]
    unmapped_columns: tuple[str, ...] = ()
    shadowed_columns: tuple[str, ...] = ()
    missing_required_fields: tuple[str, ...] = ()
    missing_optional_fields: tuple[str, ...] = ()
    issues: tuple[MergeIssue, ...] = ()

    @property
    def mapped_fields(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(self.column_mapping.values()))


@dataclass(frozen=True, slots=True, kw_only=True)
class MergeStatistics:
    total_input_rows: int
    merged_rows: int
    rows_with_conflicts: int
    matched_clusters: int
    singletons: int
    conflict_notes: int
    ambiguous_matches: int
    unmapped_columns: Mapping[str, tuple[str, ...]]


@dataclass(frozen=True, slots=True, kw_only=True)
class MergeResult:
    """Complete, inspectable outcome of one merge session."""

    template_id: str
    field_names: tuple[str, ...]
    records: tuple[MergedRecord, ...]
    unmatched: tuple[NormalizedRecord, ...]
    reports: tuple[NormalizationReport, ...]
    issues: tuple[MergeIssue, ...]
    statistics: MergeStatistics

    @property
    def has_warnings(self) -> bool:
        return any(issue.severity is IssueSeverity.WARNING for issue in self.issues)

    def issues_with(self, code: IssueCode) -> tuple[MergeIssue, ...]:
        return tuple(issue for issue in self.issues if issue.code is code)

    def report_for(self, source_id: str) -> NormalizationReport:
        for report in self.reports:
            if report.source_id == source_id:
                return report
        raise KeyError(source_id)

    def summary(self, *, limit: int = SUMMARY_ISSUE_LIMIT) -> str:
        """One status line: counts plus the first ``limit`` issues."""

        stats = self.statistics
        head = (
            f"Merged {stats.total_input_rows} rows into {stats.merged_rows} "
            f"({stats.rows_with_conflicts} with conflicts)."
        )
        if not self.issues:
            return f"{head} OK (0 issues)."
        top = " | ".join(str(issue) for issue in self.issues[:limit])
        suffix = " | ..." if len(self.issues) > limit else ""
        return f"{head} {len(self.issues)} issues: {top}{suffix}"
