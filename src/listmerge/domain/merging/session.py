"""Merge session orchestrator.

The session composes the stages but does not know where tables or templates
come from. Sources run strictly in the configured order because both cluster
formation and ``prefer_first_source`` depend on it. Only the session thread
writes to the cluster set; with ``normalize_workers > 1`` the normalization of
upcoming sources runs ahead in a thread pool while the current one is matched.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from listmerge.domain.model import (
    IssueCode,
    MergeIssue,
    MergeResult,
    MergeStatistics,
)

from .catalog import resolve_valid_template
from .errors import MergeCancelledError
from .match import RecordMatcher
from .normalize import normalize_table
from .resolve import resolve_cluster
from .validate import validate_merge

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterator, Sequence
    from concurrent.futures import Future

    from listmerge.domain.model import (
        HeaderTemplate,
        MergedRecord,
        NormalizationReport,
        NormalizedRecord,
        RawTable,
    )

    from .catalog import TemplateLookup
    from .normalize import NormalizationOutcome, NormalizeTable
    from .resolve import ResolveCluster
    from .settings import MergeSettings
    from .validate import ReferenceTable, ValidateMerge

log = logging.getLogger(__name__)


@dataclass(slots=True)
class MergeSession:
    """Run one merge from raw tables to a ``MergeResult``."""

    templates: TemplateLookup
    settings: MergeSettings
    normalize: NormalizeTable = field(default=normalize_table)
    resolve: ResolveCluster = field(default=resolve_cluster)
    validate: ValidateMerge = field(default=validate_merge)

    def run(
        self,
        tables: Sequence[RawTable],
        *,
        template_id: str,
        cancel: threading.Event | None = None,
        reference: ReferenceTable | None = None,
    ) -> MergeResult:
        """Merge ``tables`` with the template ``template_id``.

        The finished merge is checked against the settings' expectations and,
        when given, the per-key counts and sums of ``reference``.

        Raises ``TemplateNotFoundError``/``TemplateInvalidError`` before any
        source is touched, ``MergeSettingsError`` for settings that do not fit
        the template or the sources, and ``MergeCancelledError`` when
        ``cancel`` is set between two sources.
        """

        template = resolve_valid_template(self.templates, template_id)
        self.settings.check_against(template)
        ordered = self.settings.ordered(tables, source_id_of=lambda table: table.source_id)
        log.info(
            "Starting merge session: template=%s sources=%s policy=%s keys=%s",
            template.template_id,
            [table.source_id for table in ordered],
            self.settings.policy,
            self.settings.match_rules.names,
        )

        matcher = RecordMatcher(
            self.settings.match_rules,
            similarity_threshold=self.settings.similarity_threshold,
        )
        reports: list[NormalizationReport] = []
        for index, outcome in enumerate(self._normalized(ordered, template, cancel)):
            matcher.add_source(outcome.records)
            reports.append(outcome.report)
            log.info(
                "Matched source %s (%s/%s): clusters=%s",
                outcome.report.source_id,
                index + 1,
                len(ordered),
                len(matcher.clusters),
            )

        return self._finish(template, matcher, reports, reference)

    def _normalized(
        self,
        tables: Sequence[RawTable],
        template: HeaderTemplate,
        cancel: threading.Event | None,
    ) -> Iterator[NormalizationOutcome]:
        workers = self.settings.normalize_workers
        if workers <= 1 or len(tables) <= 1:
            for index, table in enumerate(tables):
                _check_cancelled(cancel, index, len(tables))
                yield self.normalize(table, template, source_index=index)
            return

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="normalize") as executor:
            futures: list[Future[NormalizationOutcome]] = [
                executor.submit(self.normalize, table, template, source_index=index)
                for index, table in enumerate(tables)
            ]
            try:
                for index, future in enumerate(futures):
                    _check_cancelled(cancel, index, len(tables))
                    yield future.result()
            finally:
                for future in futures:
                    future.cancel()

    def _finish(
        self,
        template: HeaderTemplate,
        matcher: RecordMatcher,
        reports: list[NormalizationReport],
        reference: ReferenceTable | None,
    ) -> MergeResult:
        clusters = matcher.clusters
        records: list[MergedRecord] = [
            self.resolve(cluster, template=template, policy=self.settings.policy)
            for cluster in clusters
        ]
        unmatched: list[NormalizedRecord] = [
            cluster.members[0] for cluster in clusters if cluster.is_singleton
        ]

        issues: list[MergeIssue] = [issue for report in reports for issue in report.issues]
        issues.extend(matcher.issues)
        issues.extend(_conflict_issues(records))

        total_input_rows = sum(report.row_count for report in reports)
        issues.extend(
            self.validate(
                records,
                template=template,
                rules=self.settings.match_rules,
                total_input_rows=total_input_rows,
                expectations=self.settings.expectations,
                reference=reference,
            )
        )

        statistics = MergeStatistics(
            total_input_rows=total_input_rows,
            merged_rows=len(records),
            rows_with_conflicts=sum(1 for record in records if record.has_conflicts),
            matched_clusters=sum(1 for cluster in clusters if not cluster.is_singleton),
            singletons=len(unmatched),
            conflict_notes=sum(record.conflict_count for record in records),
            ambiguous_matches=len(matcher.issues),
            unmapped_columns={report.source_id: report.unmapped_columns for report in reports},
        )
        result = MergeResult(
            template_id=template.template_id,
            field_names=template.field_names,
            records=tuple(records),
            unmatched=tuple(unmatched),
            reports=tuple(reports),
            issues=tuple(issues),
            statistics=statistics,
        )
        log.info("Finished merge session: %s", result.summary())
        return result


def _check_cancelled(cancel: threading.Event | None, index: int, total: int) -> None:
    if cancel is not None and cancel.is_set():
        log.info("Merge session cancelled before source %s/%s", index + 1, total)
        raise MergeCancelledError(processed_sources=index, total_sources=total)


def _conflict_issues(records: Sequence[MergedRecord]) -> list[MergeIssue]:
    issues: list[MergeIssue] = []
    for record in records:
        for field_name, notes in record.conflicts.items():
            winner = record.values[field_name]
            issues.append(
                MergeIssue(
                    code=IssueCode.UNRESOLVED_CONFLICT,
                    message=(
                        f"Field {field_name!r} resolved to {winner!r} over "
                        f"{', '.join(repr(note.value) for note in notes)}"
                    ),
                    source_id=record.provenance[field_name].source_id,
                    field=field_name,
                    details=", ".join(f"{note.ref}={note.value!r}" for note in notes),
                )
            )
    return issues


def run_merge_session(
    tables: Sequence[RawTable],
    *,
    templates: TemplateLookup,
    template_id: str,
    settings: MergeSettings,
    cancel: threading.Event | None = None,
    reference: ReferenceTable | None = None,
) -> MergeResult:
    """Functional entry point for a single session."""

    return MergeSession(templates=templates, settings=settings).run(
        tables, template_id=template_id, cancel=cancel, reference=reference
    )
