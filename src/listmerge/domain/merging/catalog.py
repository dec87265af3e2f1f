"""Header Template Store.

Responsibilities of this stage:
- hold named header templates as an immutable lookup table
- resolve a template id to its definition
- report structural problems before any table is touched

The catalog is constructed once and passed explicitly into merge sessions;
there is no process-wide template registry.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol

from listmerge.domain.model import FieldKind

from .errors import TemplateInvalidError, TemplateNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from listmerge.domain.model import HeaderTemplate

log = logging.getLogger(__name__)


class TemplateLookup(Protocol):
    """Anything that resolves a template id to a template."""

    def __call__(self, template_id: str, /) -> HeaderTemplate: ...


class ProblemKind(StrEnum):
    MALFORMED_DOCUMENT = "malformed_document"
    BLANK_TEMPLATE_ID = "blank_template_id"
    NO_FIELDS = "no_fields"
    BLANK_FIELD_NAME = "blank_field_name"
    DUPLICATE_FIELD = "duplicate_field"
    EMPTY_REQUIRED_ALIASES = "empty_required_aliases"
    BLANK_ALIAS = "blank_alias"
    DUPLICATE_ALIAS = "duplicate_alias"
    INVALID_VALUE_PATTERN = "invalid_value_pattern"
    INVALID_SUM_FIELD = "invalid_sum_field"


@dataclass(frozen=True, slots=True, kw_only=True)
class TemplateProblem:
    """One structural defect of a template."""

    kind: ProblemKind
    message: str
    field: str | None = None

    def __str__(self) -> str:
        return self.message


def validate_template(template: HeaderTemplate) -> list[TemplateProblem]:
    """Return every structural problem of ``template`` (empty when valid)."""

    problems: list[TemplateProblem] = []
    if not template.template_id.strip():
        problems.append(
            TemplateProblem(kind=ProblemKind.BLANK_TEMPLATE_ID, message="Template id is blank")
        )
    if not template.fields:
        problems.append(
            TemplateProblem(kind=ProblemKind.NO_FIELDS, message="Template declares no fields")
        )

    seen_names: set[str] = set()
    alias_owner: dict[str, str] = {}
    for definition in template.fields:
        name = definition.name
        if not name.strip():
            problems.append(
                TemplateProblem(kind=ProblemKind.BLANK_FIELD_NAME, message="Field name is blank")
            )
        elif name in seen_names:
            problems.append(
                TemplateProblem(
                    kind=ProblemKind.DUPLICATE_FIELD,
                    message=f"Canonical field {name!r} is declared more than once",
                    field=name,
                )
            )
        seen_names.add(name)

        if definition.required and not definition.aliases:
            problems.append(
                TemplateProblem(
                    kind=ProblemKind.EMPTY_REQUIRED_ALIASES,
                    message=f"Required field {name!r} has no aliases",
                    field=name,
                )
            )

        for declared, normalized in zip(
            definition.aliases.declared, definition.aliases.normalized, strict=True
        ):
            if not normalized:
                problems.append(
                    TemplateProblem(
                        kind=ProblemKind.BLANK_ALIAS,
                        message=f"Field {name!r} declares a blank alias",
                        field=name,
                    )
                )
                continue
            owner = alias_owner.get(normalized)
            if owner is not None:
                problems.append(
                    TemplateProblem(
                        kind=ProblemKind.DUPLICATE_ALIAS,
                        message=(
                            f"Alias {declared!r} of field {name!r} is already claimed "
                            f"by field {owner!r}"
                        ),
                        field=name,
                    )
                )
                continue
            alias_owner[normalized] = name

        if definition.value_pattern is not None:
            problems.extend(_pattern_problems(name, definition.value_pattern))

    if template.sum_field is not None:
        problems.extend(_sum_field_problems(template, template.sum_field))

    return problems


def _sum_field_problems(template: HeaderTemplate, name: str) -> list[TemplateProblem]:
    try:
        definition = template.definition(name)
    except KeyError:
        return [
            TemplateProblem(
                kind=ProblemKind.INVALID_SUM_FIELD,
                message=f"Summed field {name!r} is not a field of the template",
                field=name,
            )
        ]
    if definition.kind is not FieldKind.NUMBER:
        return [
            TemplateProblem(
                kind=ProblemKind.INVALID_SUM_FIELD,
                message=f"Summed field {name!r} must be a number field",
                field=name,
            )
        ]
    return []


def _pattern_problems(name: str, pattern: str) -> list[TemplateProblem]:
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        return [
            TemplateProblem(
                kind=ProblemKind.INVALID_VALUE_PATTERN,
                message=f"Field {name!r} has an invalid value pattern: {exc}",
                field=name,
            )
        ]
    if compiled.groups < 1:
        return [
            TemplateProblem(
                kind=ProblemKind.INVALID_VALUE_PATTERN,
                message=f"Field {name!r} value pattern needs a capturing group",
                field=name,
            )
        ]
    return []


class TemplateCatalog:
    """Immutable template lookup table keyed by template id."""

    __slots__ = ("_templates",)

    def __init__(self, templates: Iterable[HeaderTemplate] | Mapping[str, HeaderTemplate] = ()):
        values = templates.values() if isinstance(templates, Mapping) else templates
        by_id: dict[str, HeaderTemplate] = {}
        for template in values:
            if template.template_id in by_id:
                log.warning(
                    "Template %r supplied twice; the later definition wins",
                    template.template_id,
                )
            by_id[template.template_id] = template
        self._templates: Mapping[str, HeaderTemplate] = MappingProxyType(by_id)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def __iter__(self) -> Iterator[HeaderTemplate]:
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def __call__(self, template_id: str, /) -> HeaderTemplate:
        return self.resolve(template_id)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._templates)

    def resolve(self, template_id: str) -> HeaderTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateNotFoundError(template_id, known=self.ids) from None

    def validated(self, template_id: str) -> HeaderTemplate:
        """Resolve ``template_id`` and fail on any structural problem."""

        return resolve_valid_template(self.resolve, template_id)


def resolve_valid_template(lookup: TemplateLookup, template_id: str) -> HeaderTemplate:
    """Resolve through any lookup function and validate the result."""

    template = lookup(template_id)
    problems = validate_template(template)
    if problems:
        raise TemplateInvalidError(template_id, problems)
    return template
