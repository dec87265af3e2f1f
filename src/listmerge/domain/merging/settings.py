"""Per-session merge settings.

Settings are plain frozen dataclasses so they can be built from environment
defaults, a JSON settings file or CLI flags without the domain knowing which.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from listmerge.domain.model import ConflictPolicy

from .errors import MergeSettingsError
from .validate import ValidationExpectations

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from listmerge.domain.model import HeaderTemplate

DEFAULT_SIMILARITY_THRESHOLD = 0.85
DEFAULT_FIELD_THRESHOLD = 0.8


@dataclass(frozen=True, slots=True, kw_only=True)
class MatchField:
    """How one match-key field takes part in identity comparison."""

    name: str
    fuzzy: bool = False
    threshold: float = DEFAULT_FIELD_THRESHOLD
    weight: float = 1.0
    normalize: bool = True

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise MergeSettingsError("Match field name must not be blank")
        if not 0.0 <= self.threshold <= 1.0:
            raise MergeSettingsError(
                f"Match field {self.name!r} threshold must be within [0, 1]: {self.threshold}"
            )
        if self.weight <= 0:
            raise MergeSettingsError(
                f"Match field {self.name!r} weight must be positive: {self.weight}"
            )


@dataclass(frozen=True, slots=True)
class MatchRules:
    """Ordered match-key fields."""

    fields: tuple[MatchField, ...]

    def __post_init__(self) -> None:
        names = [match_field.name for match_field in self.fields]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise MergeSettingsError(f"Duplicate match key fields: {', '.join(duplicates)}")

    @classmethod
    def exact(cls, names: Iterable[str]) -> MatchRules:
        return cls(tuple(MatchField(name=name) for name in names))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(match_field.name for match_field in self.fields)

    @property
    def has_fuzzy(self) -> bool:
        return any(match_field.fuzzy for match_field in self.fields)


@dataclass(frozen=True, slots=True, kw_only=True)
class MergeSettings:
    """Everything a merge session needs besides the template and the tables."""

    match_rules: MatchRules
    policy: ConflictPolicy = ConflictPolicy.PREFER_FIRST_SOURCE
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    source_order: tuple[str, ...] | None = None
    normalize_workers: int = 1
    expectations: ValidationExpectations = field(default_factory=ValidationExpectations)

    def __post_init__(self) -> None:
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise MergeSettingsError(
                f"Similarity threshold must be within [0, 1]: {self.similarity_threshold}"
            )
        if self.normalize_workers < 1:
            raise MergeSettingsError(
                f"normalize_workers must be at least 1: {self.normalize_workers}"
            )

    def check_against(self, template: HeaderTemplate) -> None:
        """Raise when match-key or expected-sum fields are not fields of ``template``."""

        known = set(template.field_names)
        unknown = [name for name in self.match_rules.names if name not in known]
        if unknown:
            raise MergeSettingsError(
                f"Match key fields not defined by template {template.template_id!r}: "
                f"{', '.join(unknown)}"
            )
        unknown_sums = [name for name in self.expectations.expected_sums if name not in known]
        if unknown_sums:
            raise MergeSettingsError(
                f"Expected sums name fields not defined by template {template.template_id!r}: "
                f"{', '.join(unknown_sums)}"
            )

    def ordered[T](self, sources: Sequence[T], *, source_id_of: Callable[[T], str]) -> list[T]:
        """Return ``sources`` in the configured processing order."""

        by_id: dict[str, T] = {}
        for source in sources:
            source_id = source_id_of(source)
            if source_id in by_id:
                raise MergeSettingsError(f"Duplicate source id: {source_id!r}")
            by_id[source_id] = source

        if self.source_order is None:
            return list(sources)

        order = list(self.source_order)
        if len(set(order)) != len(order):
            raise MergeSettingsError("source_order lists a source more than once")
        missing = [source_id for source_id in order if source_id not in by_id]
        if missing:
            raise MergeSettingsError(f"source_order names unknown sources: {', '.join(missing)}")
        unlisted = [source_id for source_id in by_id if source_id not in order]
        if unlisted:
            raise MergeSettingsError(
                f"source_order does not list sources: {', '.join(unlisted)}"
            )
        return [by_id[source_id] for source_id in order]
