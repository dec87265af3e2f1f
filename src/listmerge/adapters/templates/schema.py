"""Pydantic models describing header template documents.

Two layouts are accepted. The full layout lists ``fields`` with aliases and
types. The compact layout only lists ``headers`` (each header is its own
alias) plus optional ``headerAliases``: alternate spellings of the whole
header row, where cell ``i`` of every alias row is an alias of ``headers[i]``.
A compact ``sumColumn`` names the header whose values are added up; it
becomes a number field parsed with ``sumPattern``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import cast

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from listmerge.domain.model import (
    AliasSet,
    FieldDefinition,
    FieldKind,
    HeaderPosition,
    HeaderTemplate,
    normalize_header,
)

DEFAULT_SUM_PATTERN = r"(\d+[\.,]?\d*)"


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class TemplateBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class FieldPayload(TemplateBaseModel):
    name: str
    aliases: list[str] = Field(default_factory=list[str])
    required: bool = False
    kind: FieldKind = FieldKind.STRING
    value_pattern: str | None = Field(default=None, alias="valuePattern")

    _normalize_pattern = field_validator("value_pattern", mode="before")(_blank_to_none)

    @field_validator("kind", mode="before")
    @classmethod
    def _lower_kind(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def to_definition(self) -> FieldDefinition:
        return FieldDefinition(
            name=self.name.strip(),
            aliases=AliasSet.of(self.aliases),
            required=self.required,
            kind=self.kind,
            value_pattern=self.value_pattern,
        )


class TemplatePayload(TemplateBaseModel):
    template_id: str = Field(alias="name")
    description: str | None = None
    header_position: HeaderPosition = Field(default=HeaderPosition.FIRST, alias="headerPosition")
    sum_field: str | None = Field(default=None, alias="sumField")
    fields: list[FieldPayload]

    @model_validator(mode="before")
    @classmethod
    def _expand_compact_schema(cls, value: object) -> object:
        if not isinstance(value, Mapping):
            return value
        mapping_value = cast(Mapping[str, object], value)
        headers = mapping_value.get("headers")
        if "fields" in mapping_value or not isinstance(headers, list):
            return mapping_value

        header_list = cast(list[object], headers)
        aliases: list[list[object]] = [[header] for header in header_list]
        raw_aliases = mapping_value.get("headerAliases")
        alias_rows = cast(list[object], raw_aliases) if isinstance(raw_aliases, list) else []
        for row in alias_rows:
            if not isinstance(row, list):
                continue
            # cells past the last header have no field to belong to
            for index, alias in enumerate(cast(list[object], row)[: len(header_list)]):
                if _is_new_alias(alias, aliases[index]):
                    aliases[index].append(alias)

        sum_column = _blank_to_none(mapping_value.get("sumColumn"))
        sum_pattern = _blank_to_none(mapping_value.get("sumPattern")) or DEFAULT_SUM_PATTERN
        sum_field: object = sum_column
        fields: list[dict[str, object]] = []
        for header, header_aliases in zip(header_list, aliases, strict=True):
            field: dict[str, object] = {"name": header, "aliases": header_aliases}
            if _same_header(header, sum_column):
                field["kind"] = FieldKind.NUMBER
                field["valuePattern"] = sum_pattern
                sum_field = header
            fields.append(field)

        data: dict[str, object] = dict(mapping_value)
        data["fields"] = fields
        data["sumField"] = sum_field
        return data

    _normalize_description = field_validator("description", mode="before")(_blank_to_none)
    _normalize_sum_field = field_validator("sum_field", mode="before")(_blank_to_none)

    @field_validator("header_position", mode="before")
    @classmethod
    def _parse_header_position(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return HeaderPosition.FIRST
        if isinstance(value, str):
            return HeaderPosition.parse(value)
        return value

    def to_template(self) -> HeaderTemplate:
        return HeaderTemplate(
            template_id=self.template_id.strip(),
            fields=tuple(field.to_definition() for field in self.fields),
            description=self.description,
            header_position=self.header_position,
            sum_field=self.sum_field,
        )


def _same_header(header: object, other: object) -> bool:
    if not isinstance(header, str) or not isinstance(other, str):
        return False
    return normalize_header(header) == normalize_header(other)


def _is_new_alias(alias: object, known: list[object]) -> bool:
    if not isinstance(alias, str) or not alias.strip():
        return False
    return not any(_same_header(alias, existing) for existing in known)
