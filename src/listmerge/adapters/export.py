"""Write merge results: the merged table and an optional JSON report."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

import pandas as pd
from pydantic import BaseModel, ConfigDict

from .tables import CSV_SUFFIXES, EXCEL_SUFFIXES, UnsupportedTableError

if TYPE_CHECKING:
    from pathlib import Path

    from listmerge.domain.model import MergedRecord, MergeResult

SOURCES_COLUMN = "Sources"
REPORT_SUFFIX = ".report.json"

log = logging.getLogger(__name__)


class ReportModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class IssueEntry(ReportModel):
    code: str
    severity: str
    message: str
    source_id: str | None = None
    field: str | None = None
    details: str | None = None


class ConflictEntry(ReportModel):
    row: int
    field: str
    chosen: str | Decimal | None
    discarded: str | Decimal | None
    source: str
    policy: str


class SourceEntry(ReportModel):
    source_id: str
    row_count: int
    column_mapping: dict[str, str]
    unmapped_columns: list[str]
    shadowed_columns: list[str]
    missing_required_fields: list[str]


class StatisticsEntry(ReportModel):
    total_input_rows: int
    merged_rows: int
    rows_with_conflicts: int
    matched_clusters: int
    singletons: int
    conflict_notes: int
    ambiguous_matches: int


class MergeReportDocument(ReportModel):
    template_id: str
    summary: str
    statistics: StatisticsEntry
    sources: list[SourceEntry]
    conflicts: list[ConflictEntry]
    issues: list[IssueEntry]


def merged_frame(result: MergeResult) -> pd.DataFrame:
    """Merged rows in template field order plus the number of contributing rows."""

    columns = [*result.field_names, SOURCES_COLUMN]
    data = [
        [*(record.values.get(name) for name in result.field_names), len(record.sources)]
        for record in result.records
    ]
    return pd.DataFrame(data, columns=columns)


def export_result(result: MergeResult, path: Path, *, report: bool = False) -> list[Path]:
    """Write the merged table to ``path`` (format by suffix); return every file written."""

    suffix = path.suffix.lower()
    frame = merged_frame(result)
    path.parent.mkdir(parents=True, exist_ok=True)
    if suffix in EXCEL_SUFFIXES:
        frame.to_excel(path, index=False, engine="openpyxl")
    elif suffix in CSV_SUFFIXES:
        frame.to_csv(path, index=False, encoding="utf-8-sig")
    else:
        raise UnsupportedTableError(f"Unsupported export file type: {path.name}")
    log.info("Wrote %s merged rows to %s", len(frame), path)

    written = [path]
    if report:
        written.append(write_report(result, report_path_for(path)))
    return written


def report_path_for(path: Path) -> Path:
    return path.with_name(path.stem + REPORT_SUFFIX)


def write_report(result: MergeResult, path: Path) -> Path:
    document = build_report(result)
    path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
    log.info("Wrote merge report to %s", path)
    return path


def build_report(result: MergeResult) -> MergeReportDocument:
    stats = result.statistics
    return MergeReportDocument(
        template_id=result.template_id,
        summary=result.summary(),
        statistics=StatisticsEntry(
            total_input_rows=stats.total_input_rows,
            merged_rows=stats.merged_rows,
            rows_with_conflicts=stats.rows_with_conflicts,
            matched_clusters=stats.matched_clusters,
            singletons=stats.singletons,
            conflict_notes=stats.conflict_notes,
            ambiguous_matches=stats.ambiguous_matches,
        ),
        sources=[
            SourceEntry(
                source_id=report.source_id,
                row_count=report.row_count,
                column_mapping=dict(report.column_mapping),
                unmapped_columns=list(report.unmapped_columns),
                shadowed_columns=list(report.shadowed_columns),
                missing_required_fields=list(report.missing_required_fields),
            )
            for report in result.reports
        ],
        conflicts=[
            entry
            for row, record in enumerate(result.records)
            for entry in _conflict_entries(row, record)
        ],
        issues=[
            IssueEntry(
                code=str(issue.code),
                severity=str(issue.severity),
                message=issue.message,
                source_id=issue.source_id,
                field=issue.field,
                details=issue.details,
            )
            for issue in result.issues
        ],
    )


def _conflict_entries(row: int, record: MergedRecord) -> list[ConflictEntry]:
    return [
        ConflictEntry(
            row=row,
            field=note.field,
            chosen=note.chosen,
            discarded=note.value,
            source=str(note.ref),
            policy=str(note.policy),
        )
        for notes in record.conflicts.values()
        for note in notes
    ]
