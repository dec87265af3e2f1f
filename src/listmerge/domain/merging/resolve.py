"""Merge resolution stage.

Responsibilities of this stage:
- turn one cluster into one merged record
- pick a value per canonical field with the session's conflict policy
- keep every discarded candidate as a ``ConflictNote``
- add up the summed field of the template instead of picking one value

Resolution is deterministic given the member order of the cluster, which is
processing order: earlier source first, then row order.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol

from listmerge.domain.model import ConflictNote, ConflictPolicy, MergedRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from listmerge.domain.model import FieldValue, HeaderTemplate, MatchCluster, RecordRef


class ResolveCluster(Protocol):
    """Resolve one cluster into a merged record."""

    def __call__(
        self,
        cluster: MatchCluster,
        *,
        template: HeaderTemplate,
        policy: ConflictPolicy,
    ) -> MergedRecord: ...


@dataclass(frozen=True, slots=True)
class Candidate:
    value: FieldValue
    ref: RecordRef


type PickWinner = Callable[[Sequence[Candidate]], FieldValue]


def resolve_cluster(
    cluster: MatchCluster,
    *,
    template: HeaderTemplate,
    policy: ConflictPolicy,
) -> MergedRecord:
    """Resolve every canonical field of ``template`` across ``cluster``."""

    pick = _POLICIES[policy]
    values: dict[str, FieldValue] = {}
    conflicts: dict[str, tuple[ConflictNote, ...]] = {}
    provenance: dict[str, RecordRef] = {}

    for field_name in template.field_names:
        candidates = [
            Candidate(value=value, ref=record.ref)
            for record in cluster.members
            if (value := record.get(field_name)) is not None
        ]
        if not candidates:
            values[field_name] = None
            continue
        if field_name == template.sum_field:
            values[field_name] = _total(candidates)
            provenance[field_name] = candidates[0].ref
            continue

        distinct = _distinct_values(candidates)
        winner = distinct[0] if len(distinct) == 1 else pick(candidates)
        values[field_name] = winner
        provenance[field_name] = next(c.ref for c in candidates if c.value == winner)

        if len(distinct) > 1:
            conflicts[field_name] = tuple(
                ConflictNote(
                    field=field_name,
                    value=candidate.value,
                    ref=candidate.ref,
                    chosen=winner,
                    policy=policy,
                )
                for candidate in candidates
                if candidate.value != winner
            )

    return MergedRecord(
        values=MappingProxyType(values),
        conflicts=MappingProxyType(conflicts),
        provenance=MappingProxyType(provenance),
        sources=tuple(record.ref for record in cluster.members),
        confidence=cluster.confidence,
    )


def _total(candidates: Sequence[Candidate]) -> Decimal:
    return sum(
        (c.value for c in candidates if isinstance(c.value, Decimal)), start=Decimal(0)
    )


def _distinct_values(candidates: Sequence[Candidate]) -> list[FieldValue]:
    distinct: list[FieldValue] = []
    for candidate in candidates:
        if candidate.value not in distinct:
            distinct.append(candidate.value)
    return distinct


def prefer_first_source(candidates: Sequence[Candidate]) -> FieldValue:
    return candidates[0].value


def prefer_longest(candidates: Sequence[Candidate]) -> FieldValue:
    """Longest string wins; non-string values rank below strings."""

    best = candidates[0]
    for candidate in candidates[1:]:
        if _length(candidate.value) > _length(best.value):
            best = candidate
    return best.value


def prefer_most_frequent(candidates: Sequence[Candidate]) -> FieldValue:
    """Value carried by the most records; ties go to the first occurrence."""

    counts = Counter(candidate.value for candidate in candidates)
    best = candidates[0].value
    for candidate in candidates[1:]:
        if counts[candidate.value] > counts[best]:
            best = candidate.value
    return best


def _length(value: FieldValue) -> int:
    return len(value) if isinstance(value, str) else -1


_POLICIES: dict[ConflictPolicy, PickWinner] = {
    ConflictPolicy.PREFER_FIRST_SOURCE: prefer_first_source,
    ConflictPolicy.PREFER_LONGEST: prefer_longest,
    ConflictPolicy.PREFER_MOST_FREQUENT: prefer_most_frequent,
}
