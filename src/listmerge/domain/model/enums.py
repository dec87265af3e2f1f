"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class FieldKind(StrEnum):
    """Value type a canonical field is coerced into during normalization."""

    STRING = "string"
    NUMBER = "number"


class ConflictPolicy(StrEnum):
    """Rule picking one value when a cluster disagrees on a field."""

    PREFER_FIRST_SOURCE = "prefer_first_source"
    PREFER_LONGEST = "prefer_longest"
    PREFER_MOST_FREQUENT = "prefer_most_frequent"

    @classmethod
    def parse(cls, value: str) -> ConflictPolicy:
        """Accept ``prefer_first_source`` as well as ``preferFirstSource`` spellings."""

        cleaned = value.strip()
        for policy in cls:
            if cleaned in (policy.value, _camel(policy.value)):
                return policy
        raise ValueError(f"Unknown conflict policy: {value}")


class HeaderPosition(StrEnum):
    """Row of a sheet that carries the column titles."""

    FIRST = "first"
    LAST = "last"

    @classmethod
    def parse(cls, value: str) -> HeaderPosition:
        return cls(value.strip().lower())


class IssueSeverity(StrEnum):
    WARNING = "warning"
    INFO = "info"


class IssueCode(StrEnum):
    """Stable codes for recoverable problems recorded during a merge session."""

    UNMAPPED_COLUMN = "UNMAPPED_COLUMN"
    DUPLICATE_COLUMN = "DUPLICATE_COLUMN"
    AMBIGUOUS_ALIAS = "AMBIGUOUS_ALIAS"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    NO_MAPPED_COLUMNS = "NO_MAPPED_COLUMNS"
    INVALID_NUMBER = "INVALID_NUMBER"
    AMBIGUOUS_MATCH = "AMBIGUOUS_MATCH"
    UNRESOLVED_CONFLICT = "UNRESOLVED_CONFLICT"
    ROW_COUNT_NOT_CONSERVED = "ROW_COUNT_NOT_CONSERVED"
    ROW_COUNT_MISMATCH = "ROW_COUNT_MISMATCH"
    SUM_MISMATCH = "SUM_MISMATCH"
    MISSING_EXPECTED_ROW_COUNT = "MISSING_EXPECTED_ROW_COUNT"
    MISSING_EXPECTED_SUM = "MISSING_EXPECTED_SUM"
    REFERENCE_MISSING_KEY = "REFERENCE_MISSING_KEY"
    REFERENCE_COUNT_MISMATCH = "REFERENCE_COUNT_MISMATCH"
    REFERENCE_SUM_MISMATCH = "REFERENCE_SUM_MISMATCH"


def _camel(snake: str) -> str:
    head, *rest = snake.split("_")
    return head + "".join(part.capitalize() for part in rest)
