"""Merge defaults taken from the environment."""

from __future__ import annotations

from dataclasses import dataclass

from listmerge.domain.merging import DEFAULT_SIMILARITY_THRESHOLD
from listmerge.domain.model import ConflictPolicy

from .env import optional_env
from .errors import ConfigurationError

POLICY_ENV = "LISTMERGE_CONFLICT_POLICY"
THRESHOLD_ENV = "LISTMERGE_SIMILARITY_THRESHOLD"
WORKERS_ENV = "LISTMERGE_NORMALIZE_WORKERS"


@dataclass(frozen=True, slots=True)
class MergeDefaults:
    policy: ConflictPolicy = ConflictPolicy.PREFER_FIRST_SOURCE
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    normalize_workers: int = 1


def get_merge_defaults() -> MergeDefaults:
    """Read session defaults; unset variables keep the built-in values."""

    defaults = MergeDefaults()
    policy = defaults.policy
    threshold = defaults.similarity_threshold
    workers = defaults.normalize_workers

    raw_policy = optional_env(POLICY_ENV)
    if raw_policy is not None:
        try:
            policy = ConflictPolicy.parse(raw_policy)
        except ValueError as exc:
            raise ConfigurationError(POLICY_ENV, raw_policy, str(exc)) from exc

    raw_threshold = optional_env(THRESHOLD_ENV)
    if raw_threshold is not None:
        try:
            threshold = float(raw_threshold)
        except ValueError as exc:
            raise ConfigurationError(THRESHOLD_ENV, raw_threshold, "not a number") from exc
        if not 0.0 <= threshold <= 1.0:
            raise ConfigurationError(THRESHOLD_ENV, raw_threshold, "must be within [0, 1]")

    raw_workers = optional_env(WORKERS_ENV)
    if raw_workers is not None:
        try:
            workers = int(raw_workers)
        except ValueError as exc:
            raise ConfigurationError(WORKERS_ENV, raw_workers, "not an integer") from exc
        if workers < 1:
            raise ConfigurationError(WORKERS_ENV, raw_workers, "must be at least 1")

    return MergeDefaults(policy=policy, similarity_threshold=threshold, normalize_workers=workers)
