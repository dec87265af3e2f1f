"""Header templates: canonical fields and the source headers they accept.

Templates are explicit, user-curated mappings. Alias lookup is exact after
normalization (NFKC, trim, collapsed whitespace, case-fold); column naming
ambiguity is fixed by editing the template, never guessed at runtime.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from listmerge.domain.model.enums import FieldKind, HeaderPosition

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


def normalize_header(value: str) -> str:
    """Return the comparison form of a header or alias string."""

    text = unicodedata.normalize("NFKC", value)
    return " ".join(text.split()).casefold()


@dataclass(frozen=True, slots=True)
class AliasSet:
    """Accepted source headers for one canonical field.

    ``declared`` keeps the spelling from the template for reports, while
    ``normalized`` holds the lookup keys in declaration order.
    """

    declared: tuple[str, ...] = ()
    normalized: tuple[str, ...] = field(init=False, default=())

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "normalized", tuple(normalize_header(alias) for alias in self.declared)
        )

    @classmethod
    def of(cls, aliases: Iterable[str]) -> AliasSet:
        return cls(declared=tuple(aliases))

    def including(self, alias: str) -> AliasSet:
        if alias in self:
            return self
        return AliasSet(declared=(*self.declared, alias))

    def __contains__(self, header: object) -> bool:
        if not isinstance(header, str):
            return False
        return normalize_header(header) in self.normalized

    def __iter__(self) -> Iterator[str]:
        return iter(self.declared)

    def __len__(self) -> int:
        return len(self.declared)


@dataclass(frozen=True, slots=True, kw_only=True)
class FieldDefinition:
    """One canonical column of a template."""

    name: str
    aliases: AliasSet
    required: bool = False
    kind: FieldKind = FieldKind.STRING
    value_pattern: str | None = None

    def accepts(self, header: str) -> bool:
        return header in self.aliases


@dataclass(frozen=True, slots=True, kw_only=True)
class HeaderTemplate:
    """Named, ordered set of canonical field definitions.

    ``header_position`` tells readers whether the column titles are the first
    or the last non-blank row of a sheet. ``sum_field`` names a number field
    whose values are added up across the records of a cluster instead of
    being resolved by the conflict policy.
    """

    template_id: str
    fields: tuple[FieldDefinition, ...]
    description: str | None = None
    header_position: HeaderPosition = HeaderPosition.FIRST
    sum_field: str | None = None

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(definition.name for definition in self.fields)

    @property
    def required_fields(self) -> tuple[FieldDefinition, ...]:
        return tuple(definition for definition in self.fields if definition.required)

    def definition(self, name: str) -> FieldDefinition:
        for definition in self.fields:
            if definition.name == name:
                return definition
        raise KeyError(name)

    def fields_for_header(self, header: str) -> tuple[FieldDefinition, ...]:
        """Return every field claiming ``header``, in declaration order."""

        return tuple(definition for definition in self.fields if definition.accepts(header))

    def with_canonical_aliases(self) -> HeaderTemplate:
        """Copy of the template whose fields also accept their canonical name.

        Used for tables this program wrote itself, whose columns carry the
        canonical names.
        """

        return replace(
            self,
            fields=tuple(
                replace(definition, aliases=definition.aliases.including(definition.name))
                for definition in self.fields
            ),
        )
