"""Merge settings files.

A settings file is a JSON object; every key is optional::

    {
      "matchKey": ["customer_id", {"name": "name", "fuzzy": true, "threshold": 0.8}],
      "policy": "preferFirstSource",
      "similarityThreshold": 0.85,
      "sourceOrder": ["crm.csv", "shop.xlsx"],
      "normalizeWorkers": 2,
      "expectedRows": 120,
      "expectedSums": {"amount": "1520.40"},
      "sumTolerance": "0.01",
      "sumScale": 2,
      "requireExpectations": false
    }
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, cast

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from listmerge.domain.merging import (
    DEFAULT_FIELD_THRESHOLD,
    DEFAULT_SUM_SCALE,
    DEFAULT_SUM_TOLERANCE,
    MatchField,
    MatchRules,
    MergeSettings,
    MergeSettingsError,
    ValidationExpectations,
)
from listmerge.domain.model import ConflictPolicy

if TYPE_CHECKING:
    from pathlib import Path

    from listmerge.config import MergeDefaults


class SettingsBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class MatchFieldPayload(SettingsBaseModel):
    name: str
    fuzzy: bool = False
    threshold: float = DEFAULT_FIELD_THRESHOLD
    weight: float = 1.0
    normalize: bool = True

    @model_validator(mode="before")
    @classmethod
    def _accept_plain_name(cls, value: object) -> object:
        if isinstance(value, str):
            return {"name": value}
        return value

    def to_match_field(self) -> MatchField:
        return MatchField(
            name=self.name,
            fuzzy=self.fuzzy,
            threshold=self.threshold,
            weight=self.weight,
            normalize=self.normalize,
        )


class SettingsPayload(SettingsBaseModel):
    match_key: list[MatchFieldPayload] = Field(
        default_factory=list[MatchFieldPayload], alias="matchKey"
    )
    policy: ConflictPolicy | None = None
    similarity_threshold: float | None = Field(default=None, alias="similarityThreshold")
    source_order: list[str] | None = Field(default=None, alias="sourceOrder")
    normalize_workers: int | None = Field(default=None, alias="normalizeWorkers")
    expected_rows: int | None = Field(default=None, alias="expectedRows")
    expected_sums: dict[str, Decimal] = Field(
        default_factory=dict[str, Decimal], alias="expectedSums"
    )
    sum_tolerance: Decimal | None = Field(default=None, alias="sumTolerance")
    sum_scale: int | None = Field(default=None, alias="sumScale")
    require_expectations: bool = Field(default=False, alias="requireExpectations")

    @field_validator("policy", mode="before")
    @classmethod
    def _parse_policy(cls, value: object) -> object:
        if isinstance(value, str):
            return ConflictPolicy.parse(value)
        return value

    def to_settings(self, defaults: MergeDefaults) -> MergeSettings:
        """Build session settings; keys absent from the file fall back to ``defaults``."""

        return MergeSettings(
            match_rules=MatchRules(tuple(field.to_match_field() for field in self.match_key)),
            policy=self.policy or defaults.policy,
            similarity_threshold=(
                self.similarity_threshold
                if self.similarity_threshold is not None
                else defaults.similarity_threshold
            ),
            source_order=tuple(self.source_order) if self.source_order is not None else None,
            normalize_workers=(
                self.normalize_workers
                if self.normalize_workers is not None
                else defaults.normalize_workers
            ),
            expectations=self.to_expectations(),
        )

    def to_expectations(self) -> ValidationExpectations:
        return ValidationExpectations(
            expected_rows=self.expected_rows,
            expected_sums=self.expected_sums,
            sum_tolerance=(
                self.sum_tolerance if self.sum_tolerance is not None else DEFAULT_SUM_TOLERANCE
            ),
            sum_scale=self.sum_scale if self.sum_scale is not None else DEFAULT_SUM_SCALE,
            require_expectations=self.require_expectations,
        )


def parse_settings_text(text: str) -> SettingsPayload:
    try:
        return SettingsPayload.model_validate_json(text)
    except ValidationError as exc:
        raise MergeSettingsError(f"Invalid merge settings: {_describe(exc)}") from exc


def load_settings_file(path: Path) -> SettingsPayload:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MergeSettingsError(f"Cannot read settings file {path}: {exc}") from exc
    return parse_settings_text(text)


def _describe(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "document"
        context = cast(Mapping[str, object], error.get("ctx") or {})
        reason = context.get("error", error["msg"])
        parts.append(f"{location}: {reason}")
    return "; ".join(parts)
