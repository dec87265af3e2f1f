"""Record matching stage.

Responsibilities of this stage:
- compare each incoming record with the representative of every cluster
- attach it to the best-scoring cluster at or above the threshold
- otherwise open a new cluster, shared with identical keys of the same source

Matching is greedy across sources: earlier decisions are never revisited and
clusters are never split or merged after they form. Inside one source it is
order independent. Every row is scored against the clusters formed by the
earlier sources, and representatives only take in a source's key values once
the whole source is placed. A field that is null on either side is simply not
compared; it can neither confirm nor veto a match. A record without any
comparable field always forms its own cluster.

When no field is fuzzy, candidates are looked up through a blocking index of
``(field, value)`` pairs instead of scanning every cluster. This is only a
shortcut: an exact-only match always shares at least one key value.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from listmerge.domain.model import IssueCode, IssueSeverity, MatchCluster, MergeIssue

from .keys import comparison_value, similarity

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from listmerge.domain.model import NormalizedRecord

    from .keys import KeyValue, MatchKey
    from .settings import MatchRules

log = logging.getLogger(__name__)

type _IndexKey = tuple[str, KeyValue]


@dataclass(frozen=True, slots=True)
class MatchDecision:
    """Where one record ended up and why."""

    cluster_id: int
    score: float
    created: bool
    ambiguous: bool = False


@dataclass(frozen=True, slots=True)
class _Candidate:
    cluster_id: int
    score: float
    size: int


class RecordMatcher:
    """Owns the cluster set of one session; the only writer to it."""

    def __init__(
        self,
        rules: MatchRules,
        *,
        similarity_threshold: float,
        blocking: bool = True,
    ) -> None:
        self._rules = rules
        self._threshold = similarity_threshold
        self._clusters: list[MatchCluster] = []
        self._representatives: list[dict[str, KeyValue]] = []
        self._index: dict[_IndexKey, list[int]] | None = (
            {} if blocking and not rules.has_fuzzy else None
        )
        self._issues: list[MergeIssue] = []

    @classmethod
    def seeded(
        cls,
        clusters: Iterable[MatchCluster],
        rules: MatchRules,
        *,
        similarity_threshold: float,
    ) -> RecordMatcher:
        """Continue matching on top of already formed clusters."""

        matcher = cls(rules, similarity_threshold=similarity_threshold)
        for cluster in clusters:
            if cluster.cluster_id != len(matcher._clusters):
                raise ValueError(
                    f"Cluster ids must be consecutive from 0; got {cluster.cluster_id}"
                )
            matcher._clusters.append(cluster)
            matcher._representatives.append({})
            for member in cluster.members:
                matcher._absorb_keys(cluster.cluster_id, [matcher.key_for(member)])
        return matcher

    @property
    def clusters(self) -> tuple[MatchCluster, ...]:
        return tuple(self._clusters)

    @property
    def issues(self) -> tuple[MergeIssue, ...]:
        return tuple(self._issues)

    @property
    def uses_blocking_index(self) -> bool:
        return self._index is not None

    def key_for(self, record: NormalizedRecord) -> dict[str, KeyValue]:
        return {
            match_field.name: comparison_value(
                record.get(match_field.name), normalize=match_field.normalize
            )
            for match_field in self._rules.fields
        }

    def match_key(self, record: NormalizedRecord) -> MatchKey:
        key = self.key_for(record)
        return tuple(key[name] for name in self._rules.names)

    def add_source(self, records: Iterable[NormalizedRecord]) -> list[MatchDecision]:
        """Match the records of one source and commit them together.

        Records matching no earlier cluster are grouped with the rows of the
        same source that carry the identical match key; each group opens one
        cluster.
        """

        batch = list(records)
        keys = [self.key_for(record) for record in batch]
        sizes = [len(cluster) for cluster in self._clusters]
        opened: dict[MatchKey, int] = {}
        decisions: list[MatchDecision] = []
        for record, key in zip(batch, keys, strict=True):
            decision = self._join_existing(record, key, sizes)
            if decision is None:
                decision = self._join_group(record, key, opened)
            decisions.append(decision)

        joined: dict[int, list[dict[str, KeyValue]]] = {}
        for decision, key in zip(decisions, keys, strict=True):
            joined.setdefault(decision.cluster_id, []).append(key)
        for cluster_id, cluster_keys in joined.items():
            self._absorb_keys(cluster_id, cluster_keys)
        return decisions

    def add(self, record: NormalizedRecord) -> MatchDecision:
        """Match a single record and commit it right away."""

        return self.add_source([record])[0]

    def score(self, key: dict[str, KeyValue], cluster_id: int) -> float | None:
        """Weighted score of ``key`` against one cluster, ``None`` when vetoed."""

        representative = self._representatives[cluster_id]
        total = 0.0
        weights = 0.0
        all_exact = True
        for match_field in self._rules.fields:
            left = key.get(match_field.name)
            right = representative.get(match_field.name)
            if left is None or right is None:
                continue
            if left == right:
                field_score = 1.0
            elif match_field.fuzzy:
                field_score = similarity(left, right)
                if field_score < match_field.threshold:
                    return None
                all_exact = False
            else:
                return None
            total += field_score * match_field.weight
            weights += match_field.weight

        if weights == 0.0:
            return None
        if all_exact:
            return 1.0
        return total / weights

    def _join_existing(
        self,
        record: NormalizedRecord,
        key: dict[str, KeyValue],
        sizes: Sequence[int],
    ) -> MatchDecision | None:
        candidates = self._score_candidates(key, sizes)
        if not candidates:
            return None

        ranked = sorted(candidates, key=_rank, reverse=True)
        best = ranked[0]
        ambiguous = len(ranked) > 1 and math.isclose(ranked[1].score, best.score, abs_tol=1e-9)
        if ambiguous:
            self._record_ambiguity(record, ranked)

        self._clusters[best.cluster_id].add(record, score=best.score)
        log.debug(
            "Record %s joined cluster %s (score=%.3f)", record.ref, best.cluster_id, best.score
        )
        return MatchDecision(
            cluster_id=best.cluster_id, score=best.score, created=False, ambiguous=ambiguous
        )

    def _join_group(
        self,
        record: NormalizedRecord,
        key: dict[str, KeyValue],
        opened: dict[MatchKey, int],
    ) -> MatchDecision:
        group = tuple(key[name] for name in self._rules.names)
        if all(value is None for value in group):
            return self._open_cluster(record)
        cluster_id = opened.get(group)
        if cluster_id is None:
            decision = self._open_cluster(record)
            opened[group] = decision.cluster_id
            return decision
        self._clusters[cluster_id].add(record, score=1.0)
        log.debug("Record %s joined cluster %s of its own source", record.ref, cluster_id)
        return MatchDecision(cluster_id=cluster_id, score=1.0, created=False)

    def _score_candidates(
        self, key: dict[str, KeyValue], sizes: Sequence[int]
    ) -> list[_Candidate]:
        candidates: list[_Candidate] = []
        for cluster_id in self._candidate_ids(key, len(sizes)):
            score = self.score(key, cluster_id)
            if score is None or score < self._threshold:
                continue
            candidates.append(
                _Candidate(cluster_id=cluster_id, score=score, size=sizes[cluster_id])
            )
        return candidates

    def _candidate_ids(self, key: dict[str, KeyValue], limit: int) -> Sequence[int]:
        if self._index is None:
            return range(limit)
        found: set[int] = set()
        for name, value in key.items():
            if value is not None:
                found.update(self._index.get((name, value), ()))
        return sorted(cluster_id for cluster_id in found if cluster_id < limit)

    def _open_cluster(self, record: NormalizedRecord) -> MatchDecision:
        cluster_id = len(self._clusters)
        self._clusters.append(MatchCluster(cluster_id=cluster_id, members=[record]))
        self._representatives.append({})
        log.debug("Record %s opened cluster %s", record.ref, cluster_id)
        return MatchDecision(cluster_id=cluster_id, score=1.0, created=True)

    def _absorb_keys(self, cluster_id: int, keys: Sequence[dict[str, KeyValue]]) -> None:
        """Fill representative fields that are still empty.

        A field is filled only when the given keys agree on a single value.
        """

        representative = self._representatives[cluster_id]
        for name in self._rules.names:
            if representative.get(name) is not None:
                continue
            values = {key[name] for key in keys if key.get(name) is not None}
            if len(values) != 1:
                continue
            value = values.pop()
            representative[name] = value
            if self._index is not None:
                self._index.setdefault((name, value), []).append(cluster_id)

    def _record_ambiguity(self, record: NormalizedRecord, ranked: list[_Candidate]) -> None:
        best, runner_up = ranked[0], ranked[1]
        issue = MergeIssue(
            code=IssueCode.AMBIGUOUS_MATCH,
            message=(
                f"Row {record.row_index} scored {best.score:.3f} against clusters "
                f"{best.cluster_id} and {runner_up.cluster_id}; joined cluster "
                f"{best.cluster_id} ({best.size} members)"
            ),
            source_id=record.source_id,
            details=(
                f"candidates={[(c.cluster_id, round(c.score, 3), c.size) for c in ranked]}"
            ),
            severity=IssueSeverity.INFO,
        )
        self._issues.append(issue)
        log.info("%s", issue)


def _rank(candidate: _Candidate) -> tuple[float, int, int]:
    # higher score, then larger cluster, then the older cluster
    return (round(candidate.score, 9), candidate.size, -candidate.cluster_id)


def match_records(
    clusters: list[MatchCluster],
    incoming: Iterable[NormalizedRecord],
    rules: MatchRules,
    similarity_threshold: float,
) -> list[MatchCluster]:
    """Match one source's ``incoming`` records against ``clusters``.

    Existing clusters are grown in place; new clusters are appended.
    """

    matcher = RecordMatcher.seeded(clusters, rules, similarity_threshold=similarity_threshold)
    matcher.add_source(incoming)
    clusters[:] = matcher.clusters
    return clusters
