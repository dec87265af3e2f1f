"""Schema normalization stage.

Responsibilities of this stage:
- map each raw header onto a canonical field of the session template
- coerce raw cell text into typed values (string or number)
- report unmapped, shadowed and missing columns instead of failing

No row is ever dropped here, and row order is preserved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Protocol

from listmerge.domain.model import (
    FieldKind,
    IssueCode,
    IssueSeverity,
    MergeIssue,
    NormalizationReport,
    NormalizedRecord,
    RecordRef,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from listmerge.domain.model import FieldDefinition, FieldValue, HeaderTemplate, RawTable

DEFAULT_NUMBER_PATTERN = r"(-?\d+(?:[.,]\d+)?)"
log = logging.getLogger(__name__)


class NormalizeTable(Protocol):
    """Apply a template to one raw table."""

    def __call__(
        self,
        table: RawTable,
        template: HeaderTemplate,
        *,
        source_index: int = 0,
    ) -> NormalizationOutcome: ...


@dataclass(frozen=True, slots=True)
class NormalizationOutcome:
    records: tuple[NormalizedRecord, ...]
    report: NormalizationReport


@dataclass(frozen=True, slots=True)
class ColumnPlan:
    """Resolved header -> field assignment for one table."""

    mapping: dict[str, str]
    unmapped: tuple[str, ...]
    shadowed: tuple[str, ...]
    issues: tuple[MergeIssue, ...]


def normalize_table(
    table: RawTable,
    template: HeaderTemplate,
    *,
    source_index: int = 0,
) -> NormalizationOutcome:
    """Apply ``template`` to ``table``.

    ``source_index`` is the position of the table in session processing order
    and ends up in each record's provenance.
    """

    plan = plan_columns(table, template)
    issues = list(plan.issues)

    mapped_fields = set(plan.mapping.values())
    missing_required = tuple(
        definition.name
        for definition in template.fields
        if definition.required and definition.name not in mapped_fields
    )
    missing_optional = tuple(
        definition.name
        for definition in template.fields
        if not definition.required and definition.name not in mapped_fields
    )
    issues.extend(
        MergeIssue(
            code=IssueCode.MISSING_REQUIRED_FIELD,
            message=f"Missing required field {name!r}; all rows carry no value for it",
            source_id=table.source_id,
            field=name,
        )
        for name in missing_required
    )
    if not plan.mapping:
        issues.append(
            MergeIssue(
                code=IssueCode.NO_MAPPED_COLUMNS,
                message=(
                    f"No column matched template {template.template_id!r}; "
                    "every field of this source is empty"
                ),
                source_id=table.source_id,
            )
        )

    coercer = _ValueCoercer(template)
    records: list[NormalizedRecord] = []
    for row_index, row in enumerate(table.rows):
        values = _row_values(row, plan.mapping, template, coercer, row_index)
        records.append(
            NormalizedRecord(
                ref=RecordRef(
                    source_index=source_index,
                    row_index=row_index,
                    source_id=table.source_id,
                ),
                values=values,
            )
        )
    issues.extend(coercer.issues(table.source_id))

    for issue in issues:
        log.warning("%s", issue)

    report = NormalizationReport(
        source_id=table.source_id,
        template_id=template.template_id,
        row_count=len(records),
        column_mapping=dict(plan.mapping),
        unmapped_columns=plan.unmapped,
        shadowed_columns=plan.shadowed,
        missing_required_fields=missing_required,
        missing_optional_fields=missing_optional,
        issues=tuple(issues),
    )
    log.info(
        "Normalized source %s: rows=%s mapped=%s unmapped=%s",
        table.source_id,
        report.row_count,
        len(plan.mapping),
        len(plan.unmapped),
    )
    return NormalizationOutcome(records=tuple(records), report=report)


def plan_columns(table: RawTable, template: HeaderTemplate) -> ColumnPlan:
    """Assign each header of ``table`` to at most one canonical field."""

    mapping: dict[str, str] = {}
    taken: dict[str, str] = {}
    unmapped: list[str] = []
    shadowed: list[str] = []
    issues: list[MergeIssue] = []

    for header in table.headers:
        claimants = template.fields_for_header(header)
        if not claimants:
            unmapped.append(header)
            issues.append(
                MergeIssue(
                    code=IssueCode.UNMAPPED_COLUMN,
                    message=f"Column {header!r} matches no field and is dropped",
                    source_id=table.source_id,
                    details=f"header={header}",
                )
            )
            continue

        chosen = claimants[0]
        if len(claimants) > 1:
            issues.append(
                MergeIssue(
                    code=IssueCode.AMBIGUOUS_ALIAS,
                    message=(
                        f"Column {header!r} is claimed by fields "
                        f"{', '.join(repr(c.name) for c in claimants)}; "
                        f"using {chosen.name!r}"
                    ),
                    source_id=table.source_id,
                    field=chosen.name,
                    details=f"header={header}",
                )
            )

        previous = taken.get(chosen.name)
        if previous is not None:
            shadowed.append(header)
            issues.append(
                MergeIssue(
                    code=IssueCode.DUPLICATE_COLUMN,
                    message=(
                        f"Column {header!r} maps to field {chosen.name!r} which is "
                        f"already filled from column {previous!r}; it is dropped"
                    ),
                    source_id=table.source_id,
                    field=chosen.name,
                    details=f"header={header}",
                )
            )
            continue

        taken[chosen.name] = header
        mapping[header] = chosen.name

    return ColumnPlan(
        mapping=mapping,
        unmapped=tuple(unmapped),
        shadowed=tuple(shadowed),
        issues=tuple(issues),
    )


def _row_values(
    row: Mapping[str, str | None],
    mapping: Mapping[str, str],
    template: HeaderTemplate,
    coercer: _ValueCoercer,
    row_index: int,
) -> dict[str, FieldValue]:
    values: dict[str, FieldValue] = dict.fromkeys(template.field_names)
    for header, field_name in mapping.items():
        values[field_name] = coercer.coerce(field_name, row.get(header), row_index)
    return values


class _ValueCoercer:
    """Typed conversion of raw cell text, collecting per-field parse failures."""

    def __init__(self, template: HeaderTemplate) -> None:
        self._definitions: dict[str, FieldDefinition] = {
            definition.name: definition for definition in template.fields
        }
        self._patterns: dict[str, re.Pattern[str]] = {
            definition.name: re.compile(definition.value_pattern or DEFAULT_NUMBER_PATTERN)
            for definition in template.fields
            if definition.kind is FieldKind.NUMBER
        }
        self._failures: dict[str, list[int]] = {}
        self._samples: dict[str, str] = {}

    def coerce(self, field_name: str, raw: str | None, row_index: int) -> FieldValue:
        if raw is None:
            return None
        text = raw.strip()
        if not text:
            return None
        definition = self._definitions[field_name]
        if definition.kind is FieldKind.STRING:
            return text

        number = _parse_number(text, self._patterns[field_name])
        if number is None:
            self._failures.setdefault(field_name, []).append(row_index)
            self._samples.setdefault(field_name, text)
        return number

    def issues(self, source_id: str) -> list[MergeIssue]:
        return [
            MergeIssue(
                code=IssueCode.INVALID_NUMBER,
                message=(
                    f"{len(rows)} value(s) of number field {field_name!r} could not be "
                    "parsed and were left empty"
                ),
                source_id=source_id,
                field=field_name,
                details=f"first_row={rows[0]}, sample={self._samples[field_name]!r}",
                severity=IssueSeverity.WARNING,
            )
            for field_name, rows in self._failures.items()
        ]


def _parse_number(text: str, pattern: re.Pattern[str]) -> Decimal | None:
    match = pattern.search(text)
    if match is None:
        return None
    candidate = match.group(1).replace(",", ".")
    try:
        return Decimal(candidate)
    except InvalidOperation:
        log.debug("Could not parse number %r from %r", candidate, text)
        return None
