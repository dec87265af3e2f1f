"""Merge validation stage.

Responsibilities of this stage:
- check that every input row ended up in exactly one merged record
- compare the row count and column sums against caller expectations
- compare per-key counts and sums against an independent reference table

Validation only records ``MergeIssue`` entries; it never aborts a session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol

from listmerge.domain.model import IssueCode, MergeIssue, RawTable

from .errors import MergeSettingsError
from .keys import comparison_value
from .normalize import normalize_table

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from listmerge.domain.model import FieldValue, HeaderTemplate, MergedRecord

    from .keys import MatchKey
    from .settings import MatchRules

log = logging.getLogger(__name__)

DEFAULT_SUM_TOLERANCE = Decimal("0.01")
DEFAULT_SUM_SCALE = 2


@dataclass(frozen=True, slots=True, kw_only=True)
class ValidationExpectations:
    """Target values a merge is checked against.

    ``expected_sums`` maps canonical field names to the expected column
    total. Sums are rounded half-up to ``sum_scale`` decimals before being
    compared within ``sum_tolerance``. With ``require_expectations`` a missing
    row count, or a missing sum for the template's summed field, is recorded
    as an issue instead of only being logged.
    """

    expected_rows: int | None = None
    expected_sums: Mapping[str, Decimal] = field(
        default_factory=lambda: MappingProxyType({})
    )
    sum_tolerance: Decimal = DEFAULT_SUM_TOLERANCE
    sum_scale: int = DEFAULT_SUM_SCALE
    require_expectations: bool = False

    def __post_init__(self) -> None:
        if self.expected_rows is not None and self.expected_rows < 0:
            raise MergeSettingsError(f"expected_rows must not be negative: {self.expected_rows}")
        if self.sum_tolerance < 0:
            raise MergeSettingsError(f"sum_tolerance must not be negative: {self.sum_tolerance}")
        if self.sum_scale < 0:
            raise MergeSettingsError(f"sum_scale must not be negative: {self.sum_scale}")
        if not isinstance(self.expected_sums, MappingProxyType):
            object.__setattr__(self, "expected_sums", MappingProxyType(dict(self.expected_sums)))

    def rounded(self, value: Decimal) -> Decimal:
        return value.quantize(Decimal(1).scaleb(-self.sum_scale), rounding=ROUND_HALF_UP)

    def differ(self, actual: Decimal, expected: Decimal) -> bool:
        return abs(self.rounded(actual) - self.rounded(expected)) > self.sum_tolerance


@dataclass(frozen=True, slots=True, kw_only=True)
class ReferenceTable:
    """Independent table whose per-key counts and sums a merge must reproduce.

    Every row counts once, unless ``count_column`` names a column holding
    the number of rows it stands for (as in an earlier merged export).
    """

    table: RawTable
    count_column: str | None = None


class ValidateMerge(Protocol):
    """Check merged records and return the issues found."""

    def __call__(
        self,
        records: Sequence[MergedRecord],
        *,
        template: HeaderTemplate,
        rules: MatchRules,
        total_input_rows: int,
        expectations: ValidationExpectations,
        reference: ReferenceTable | None = None,
    ) -> list[MergeIssue]: ...


@dataclass(slots=True)
class _Aggregate:
    count: int = 0
    total: Decimal = field(default_factory=Decimal)

    def add(self, count: int, value: FieldValue) -> None:
        self.count += count
        if isinstance(value, Decimal):
            self.total += value


def validate_merge(
    records: Sequence[MergedRecord],
    *,
    template: HeaderTemplate,
    rules: MatchRules,
    total_input_rows: int,
    expectations: ValidationExpectations,
    reference: ReferenceTable | None = None,
) -> list[MergeIssue]:
    """Run every check over ``records`` and return the issues found."""

    issues: list[MergeIssue] = []
    merged_rows = sum(len(record.sources) for record in records)
    if merged_rows != total_input_rows:
        issues.append(
            MergeIssue(
                code=IssueCode.ROW_COUNT_NOT_CONSERVED,
                message=(
                    f"{total_input_rows} input rows but {merged_rows} rows "
                    "in the merged records"
                ),
                details=f"expected={total_input_rows}, actual={merged_rows}",
            )
        )

    issues.extend(_row_count_issues(merged_rows, expectations))
    issues.extend(_sum_issues(records, template, expectations))
    if reference is not None:
        issues.extend(_reference_issues(records, template, rules, expectations, reference))

    for issue in issues:
        log.warning("%s", issue)
    log.info("Validated merge: rows=%s issues=%s", merged_rows, len(issues))
    return issues


def _row_count_issues(actual: int, expectations: ValidationExpectations) -> list[MergeIssue]:
    expected = expectations.expected_rows
    if expected is None:
        return _missing_expectation(
            expectations,
            code=IssueCode.MISSING_EXPECTED_ROW_COUNT,
            message="No expected row count given",
        )
    if actual == expected:
        log.debug("Row count check passed: %s", actual)
        return []
    return [
        MergeIssue(
            code=IssueCode.ROW_COUNT_MISMATCH,
            message=f"Expected {expected} rows, the merge holds {actual}",
            details=f"expected={expected}, actual={actual}",
        )
    ]


def _sum_issues(
    records: Sequence[MergedRecord],
    template: HeaderTemplate,
    expectations: ValidationExpectations,
) -> list[MergeIssue]:
    issues: list[MergeIssue] = []
    if template.sum_field is not None and template.sum_field not in expectations.expected_sums:
        issues.extend(
            _missing_expectation(
                expectations,
                code=IssueCode.MISSING_EXPECTED_SUM,
                message=f"No expected sum given for {template.sum_field!r}",
                field_name=template.sum_field,
            )
        )

    for field_name, expected in expectations.expected_sums.items():
        actual = column_total(records, field_name)
        if not expectations.differ(actual, expected):
            log.debug("Sum check passed for %s: %s", field_name, actual)
            continue
        issues.append(
            MergeIssue(
                code=IssueCode.SUM_MISMATCH,
                message=(
                    f"Expected {field_name!r} to sum to {expectations.rounded(expected)}, "
                    f"the merge sums to {expectations.rounded(actual)}"
                ),
                field=field_name,
                details=_sum_details(actual, expected, expectations),
            )
        )
    return issues


def column_total(records: Iterable[MergedRecord], field_name: str) -> Decimal:
    """Sum of the number values of one canonical field across ``records``."""

    total = Decimal(0)
    for record in records:
        value = record.values.get(field_name)
        if isinstance(value, Decimal):
            total += value
    return total


def _missing_expectation(
    expectations: ValidationExpectations,
    *,
    code: IssueCode,
    message: str,
    field_name: str | None = None,
) -> list[MergeIssue]:
    if not expectations.require_expectations:
        log.debug("%s; check skipped", message)
        return []
    return [MergeIssue(code=code, message=message, field=field_name)]


def _reference_issues(
    records: Sequence[MergedRecord],
    template: HeaderTemplate,
    rules: MatchRules,
    expectations: ValidationExpectations,
    reference: ReferenceTable,
) -> list[MergeIssue]:
    sum_field = template.sum_field
    merged: dict[MatchKey, _Aggregate] = {}
    for record in records:
        key = _key_of(record.values, rules)
        if key is not None:
            value = record.values.get(sum_field) if sum_field else None
            merged.setdefault(key, _Aggregate()).add(len(record.sources), value)

    expected = _reference_aggregates(template, rules, reference)
    source_id = reference.table.source_id
    issues: list[MergeIssue] = []
    for key, target in expected.items():
        details = f"key={list(key)}"
        actual = merged.get(key)
        if actual is None:
            issues.append(
                MergeIssue(
                    code=IssueCode.REFERENCE_MISSING_KEY,
                    message=f"Reference key {list(key)} has no merged record",
                    source_id=source_id,
                    details=details,
                )
            )
            continue
        if actual.count != target.count:
            issues.append(
                MergeIssue(
                    code=IssueCode.REFERENCE_COUNT_MISMATCH,
                    message=(
                        f"Reference key {list(key)} stands for {target.count} rows, "
                        f"the merge for {actual.count}"
                    ),
                    source_id=source_id,
                    details=f"{details}, expected={target.count}, actual={actual.count}",
                )
            )
        if sum_field is not None and expectations.differ(actual.total, target.total):
            issues.append(
                MergeIssue(
                    code=IssueCode.REFERENCE_SUM_MISMATCH,
                    message=(
                        f"Reference key {list(key)} sums {sum_field!r} to "
                        f"{expectations.rounded(target.total)}, the merge to "
                        f"{expectations.rounded(actual.total)}"
                    ),
                    source_id=source_id,
                    field=sum_field,
                    details=(
                        f"{details}, "
                        f"{_sum_details(actual.total, target.total, expectations)}"
                    ),
                )
            )
    return issues


def _reference_aggregates(
    template: HeaderTemplate,
    rules: MatchRules,
    reference: ReferenceTable,
) -> dict[MatchKey, _Aggregate]:
    count_column = reference.count_column
    table = reference.table
    counts = [_row_count(row, count_column) for row in table.rows]
    if count_column is not None and count_column in table.headers:
        table = RawTable.from_rows(
            table.source_id,
            ({h: v for h, v in row.items() if h != count_column} for row in table.rows),
            headers=[header for header in table.headers if header != count_column],
        )

    outcome = normalize_table(table, template.with_canonical_aliases())
    aggregates: dict[MatchKey, _Aggregate] = {}
    for record, count in zip(outcome.records, counts, strict=True):
        key = _key_of(record.values, rules)
        if key is None:
            continue
        value = record.get(template.sum_field) if template.sum_field else None
        aggregates.setdefault(key, _Aggregate()).add(count, value)
    return aggregates


def _row_count(row: Mapping[str, str | None], count_column: str | None) -> int:
    if count_column is None:
        return 1
    raw = (row.get(count_column) or "").strip()
    if not raw:
        return 1
    try:
        return int(Decimal(raw))
    except (InvalidOperation, ValueError, OverflowError):
        log.warning("Reference count %r is not a number; counting the row once", raw)
        return 1


def _key_of(values: Mapping[str, FieldValue], rules: MatchRules) -> MatchKey | None:
    key = tuple(
        comparison_value(values.get(match_field.name), normalize=match_field.normalize)
        for match_field in rules.fields
    )
    if all(value is None for value in key):
        return None
    return key


def _sum_details(actual: Decimal, expected: Decimal, expectations: ValidationExpectations) -> str:
    rounded_actual = expectations.rounded(actual)
    rounded_expected = expectations.rounded(expected)
    return (
        f"expected={rounded_expected}, actual={rounded_actual}, "
        f"tolerance={expectations.sum_tolerance}, "
        f"delta={abs(rounded_actual - rounded_expected)}"
    )

