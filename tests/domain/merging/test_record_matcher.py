from __future__ import annotations

import random
from typing import TYPE_CHECKING

import pytest

from listmerge.domain.merging import MatchField, MatchRules, RecordMatcher, match_records
from listmerge.domain.merging.keys import similarity
from listmerge.domain.model import IssueCode, IssueSeverity
from tests.helpers.merging import cluster, record

if TYPE_CHECKING:
    from listmerge.domain.model import MatchCluster


def _emails(clusters: tuple[MatchCluster, ...] | list[MatchCluster]) -> set[frozenset[object]]:
    return {frozenset(member.get("email") for member in item.members) for item in clusters}


def test_identical_customer_id_clusters_regardless_of_threshold() -> None:
    rules = MatchRules(
        (MatchField(name="customerId"), MatchField(name="name", fuzzy=True, threshold=0.99))
    )
    matcher = RecordMatcher(rules, similarity_threshold=1.0)

    matcher.add(record("a", customerId="42", name="Jane Doe"))
    decision = matcher.add(record("b", source_index=1, customerId="42", name=None))

    assert not decision.created
    assert decision.score == 1.0
    assert len(matcher.clusters) == 1


def test_record_with_only_null_key_forms_singleton() -> None:
    matcher = RecordMatcher(MatchRules.exact(["customerId"]), similarity_threshold=0.0)

    first = matcher.add(record("a", 0, customerId=None, name="Jane"))
    second = matcher.add(record("a", 1, customerId=None, name="Jane"))

    assert first.created
    assert second.created
    assert [len(item) for item in matcher.clusters] == [1, 1]


def test_unequal_exact_field_vetoes_match() -> None:
    matcher = RecordMatcher(MatchRules.exact(["name", "email"]), similarity_threshold=0.0)

    matcher.add(record("a", 0, name="Jane", email="jane@x.com"))
    decision = matcher.add(record("b", 0, source_index=1, name="Jane", email="other@x.com"))

    assert decision.created


def test_null_field_is_not_compared() -> None:
    matcher = RecordMatcher(MatchRules.exact(["name", "email"]), similarity_threshold=0.85)

    matcher.add(record("a", 0, name="Jane", email=None))
    decision = matcher.add(record("b", 0, source_index=1, name="jane ", email="jane@x.com"))

    assert not decision.created
    assert decision.score == 1.0


def test_normalization_can_be_disabled_per_field() -> None:
    rules = MatchRules((MatchField(name="name", normalize=False),))
    matcher = RecordMatcher(rules, similarity_threshold=0.85)

    matcher.add(record("a", 0, name="Jane"))
    decision = matcher.add(record("a", 1, name="jane"))

    assert decision.created


def test_fuzzy_field_scores_weighted_mean() -> None:
    rules = MatchRules(
        (MatchField(name="customerId"), MatchField(name="name", fuzzy=True, threshold=0.8))
    )
    matcher = RecordMatcher(rules, similarity_threshold=0.85)
    matcher.add(record("a", 0, customerId="42", name="John Smith"))

    incoming = record("b", 0, source_index=1, customerId="42", name="Jon Smith")
    expected = (1.0 + similarity("jon smith", "john smith")) / 2
    decision = matcher.add(incoming)

    assert not decision.created
    assert decision.score == pytest.approx(expected)
    assert matcher.clusters[0].confidence == pytest.approx(expected)


def test_fuzzy_field_below_its_threshold_vetoes() -> None:
    rules = MatchRules((MatchField(name="name", fuzzy=True, threshold=0.8),))
    matcher = RecordMatcher(rules, similarity_threshold=0.0)

    matcher.add(record("a", 0, name="Jane Doe"))
    decision = matcher.add(record("a", 1, name="Mark Twain"))

    assert decision.created


def test_score_below_overall_threshold_opens_new_cluster() -> None:
    rules = MatchRules((MatchField(name="name", fuzzy=True, threshold=0.5),))
    matcher = RecordMatcher(rules, similarity_threshold=0.99)

    matcher.add(record("a", 0, name="John Smith"))
    decision = matcher.add(record("a", 1, name="Jon Smith"))

    assert decision.created


def test_representative_keeps_first_non_null_value() -> None:
    matcher = RecordMatcher(MatchRules.exact(["name", "email"]), similarity_threshold=0.85)

    matcher.add(record("a", 0, name="Jane", email=None))
    joined = matcher.add(record("a", 1, name="Jane", email="a@x.com"))
    rejected = matcher.add(record("a", 2, name="Jane", email="b@x.com"))

    assert not joined.created
    assert rejected.created
    assert [len(item) for item in matcher.clusters] == [2, 1]


def test_equal_scores_prefer_earlier_cluster_and_report_ambiguity() -> None:
    matcher = RecordMatcher(MatchRules.exact(["name", "email"]), similarity_threshold=0.85)
    matcher.add(record("a", 0, name="Jane", email=None))
    matcher.add(record("a", 1, name=None, email="j@x.com"))

    decision = matcher.add(record("a", 2, name="Jane", email="j@x.com"))

    assert decision.cluster_id == 0
    assert decision.ambiguous
    assert [issue.code for issue in matcher.issues] == [IssueCode.AMBIGUOUS_MATCH]
    assert matcher.issues[0].severity is IssueSeverity.INFO


def test_equal_scores_prefer_larger_cluster() -> None:
    matcher = RecordMatcher(MatchRules.exact(["name", "email"]), similarity_threshold=0.85)
    matcher.add(record("a", 0, name="Jane", email=None))
    matcher.add(record("a", 1, name=None, email="j@x.com"))
    matcher.add(record("a", 2, name=None, email="j@x.com"))

    decision = matcher.add(record("a", 3, name="Jane", email="j@x.com"))

    assert decision.cluster_id == 1


def test_within_source_duplicates_are_merged() -> None:
    matcher = RecordMatcher(MatchRules.exact(["email"]), similarity_threshold=0.85)

    decisions = matcher.add_source(
        [
            record("a", 0, email="jane@x.com"),
            record("a", 1, email="JANE@x.com"),
            record("a", 2, email="john@x.com"),
        ]
    )

    assert [decision.cluster_id for decision in decisions] == [0, 0, 1]


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_row_permutation_within_a_source_keeps_clusters(seed: int) -> None:
    rows = [
        {"name": "Jane", "email": "jane1@x.com"},
        {"name": "John", "email": "john@x.com"},
        {"name": "jane", "email": "jane2@x.com"},
        {"name": None, "email": "nobody@x.com"},
        {"name": "JOHN ", "email": "john2@x.com"},
    ]
    shuffled = rows[:]
    random.Random(seed).shuffle(shuffled)

    def clusters_for(values: list[dict[str, str | None]]) -> set[frozenset[object]]:
        matcher = RecordMatcher(MatchRules.exact(["name"]), similarity_threshold=0.85)
        matcher.add_source(record("a", index, **row) for index, row in enumerate(values))
        return _emails(matcher.clusters)

    assert clusters_for(shuffled) == clusters_for(rows)


def _grouping(
    rows: list[dict[str, str | None]], *, seed_rows: list[dict[str, str | None]] | None = None
) -> set[frozenset[tuple[str | None, str | None]]]:
    matcher = RecordMatcher(MatchRules.exact(["name", "email"]), similarity_threshold=0.85)
    if seed_rows:
        matcher.add_source(record("seed", index, **row) for index, row in enumerate(seed_rows))
    matcher.add_source(
        record("a", index, source_index=1, **row) for index, row in enumerate(rows)
    )
    return {
        frozenset((member.get("name"), member.get("email")) for member in item.members)
        for item in matcher.clusters
    }


@pytest.mark.parametrize("order", [[0, 1, 2], [2, 0, 1], [1, 2, 0], [2, 1, 0]])
def test_row_permutation_with_partial_keys_keeps_clusters(order: list[int]) -> None:
    rows: list[dict[str, str | None]] = [
        {"name": "Jane", "email": None},
        {"name": None, "email": "j@x.com"},
        {"name": "Jane", "email": "j@x.com"},
    ]

    permuted = [rows[index] for index in order]

    assert _grouping(permuted) == _grouping(rows)
    assert _grouping(rows) == {
        frozenset({("Jane", None)}),
        frozenset({(None, "j@x.com")}),
        frozenset({("Jane", "j@x.com")}),
    }


@pytest.mark.parametrize("seed", [3, 11, 29])
def test_row_permutation_against_earlier_source_keeps_clusters(seed: int) -> None:
    earlier: list[dict[str, str | None]] = [{"name": "Jane", "email": None}]
    rows: list[dict[str, str | None]] = [
        {"name": "Jane", "email": "a@x.com"},
        {"name": "Jane", "email": "b@x.com"},
        {"name": None, "email": "a@x.com"},
        {"name": "jane", "email": None},
        {"name": "John", "email": "b@x.com"},
    ]
    shuffled = rows[:]
    random.Random(seed).shuffle(shuffled)

    assert _grouping(shuffled, seed_rows=earlier) == _grouping(rows, seed_rows=earlier)


def test_rows_of_one_source_are_scored_against_earlier_clusters_only() -> None:
    matcher = RecordMatcher(MatchRules.exact(["name", "email"]), similarity_threshold=0.85)
    matcher.add(record("seed", 0, name="Jane", email=None))

    decisions = matcher.add_source(
        [
            record("a", 0, source_index=1, name="Jane", email="a@x.com"),
            record("a", 1, source_index=1, name="Jane", email="b@x.com"),
        ]
    )

    assert [decision.cluster_id for decision in decisions] == [0, 0]
    later = matcher.add(record("b", 0, source_index=2, name="Jane", email="c@x.com"))
    assert later.cluster_id == 0


def test_representative_takes_source_value_only_when_rows_agree() -> None:
    matcher = RecordMatcher(MatchRules.exact(["name", "email"]), similarity_threshold=0.85)
    matcher.add(record("seed", 0, name="Jane", email=None))
    matcher.add_source(
        [
            record("a", 0, source_index=1, name="Jane", email="a@x.com"),
            record("a", 1, source_index=1, name="Jane", email="A@x.com"),
        ]
    )

    decision = matcher.add(record("b", 0, source_index=2, name="Jane", email="c@x.com"))

    assert decision.created


def _cluster_members(matcher: RecordMatcher) -> list[list[str]]:
    return [[str(member.ref) for member in item.members] for item in matcher.clusters]


def test_blocking_index_gives_same_clusters_as_linear_scan() -> None:
    rules = MatchRules.exact(["customerId", "email"])
    sources = [
        [
            record("a", 0, customerId="1", email="jane@x.com"),
            record("a", 1, customerId=None, email="john@x.com"),
            record("a", 2, customerId="3", email=None),
        ],
        [
            record("b", 0, source_index=1, customerId="1", email=None),
            record("b", 1, source_index=1, customerId="2", email="john@x.com"),
            record("b", 2, source_index=1, customerId="3", email="ann@x.com"),
            record("b", 3, source_index=1, customerId="1", email="other@x.com"),
            record("b", 4, source_index=1, customerId=None, email=None),
        ],
        [
            record("c", 0, source_index=2, customerId=None, email="ann@x.com"),
            record("c", 1, source_index=2, customerId="2", email="JOHN@x.com"),
        ],
    ]
    indexed = RecordMatcher(rules, similarity_threshold=0.85)
    linear = RecordMatcher(rules, similarity_threshold=0.85, blocking=False)

    for records in sources:
        indexed_decisions = indexed.add_source(records)
        linear_decisions = linear.add_source(records)
        assert indexed_decisions == linear_decisions

    assert indexed.uses_blocking_index
    assert not linear.uses_blocking_index
    assert _cluster_members(indexed) == _cluster_members(linear)
    assert indexed.issues == linear.issues


def test_fuzzy_rules_never_use_blocking_index() -> None:
    rules = MatchRules((MatchField(name="name", fuzzy=True),))

    assert not RecordMatcher(rules, similarity_threshold=0.85).uses_blocking_index


def test_match_records_grows_existing_clusters_in_place() -> None:
    existing = [cluster(record("a", 0, email="jane@x.com"))]
    rules = MatchRules.exact(["email"])

    updated = match_records(
        existing,
        [
            record("b", 0, source_index=1, email="jane@x.com"),
            record("b", 1, source_index=1, email="x@x.com"),
        ],
        rules,
        0.85,
    )

    assert updated is existing
    assert [len(item) for item in existing] == [2, 1]
    assert [item.cluster_id for item in existing] == [0, 1]


def test_seeded_matcher_requires_consecutive_cluster_ids() -> None:
    with pytest.raises(ValueError, match="consecutive"):
        RecordMatcher.seeded(
            [cluster(record(email="a@x.com"), cluster_id=3)],
            MatchRules.exact(["email"]),
            similarity_threshold=0.85,
        )


def test_match_key_lists_comparison_values_in_rule_order() -> None:
    rules = MatchRules.exact(["email", "name"])
    matcher = RecordMatcher(rules, similarity_threshold=0.85)

    assert matcher.match_key(record(name=" Jane  Doe", email=None)) == (None, "jane doe")
