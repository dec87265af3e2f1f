"""Load header templates from the bundled index and an external directory.

Bundled templates ship inside the package under ``headers/`` and are listed in
``headers/index.json``. Every ``*.json`` file of the external directory is a
template on its own; an external template replaces a bundled one with the
same id. Templates are validated as they are loaded, so a broken file fails
before any table is read.
"""

from __future__ import annotations

import json
import logging
from importlib import resources
from typing import TYPE_CHECKING, cast

from pydantic import ValidationError

from listmerge.domain.merging import (
    ProblemKind,
    TemplateCatalog,
    TemplateInvalidError,
    TemplateProblem,
    validate_template,
)

from .schema import TemplatePayload

if TYPE_CHECKING:
    from importlib.resources.abc import Traversable
    from pathlib import Path

    from listmerge.domain.model import HeaderTemplate

BUNDLED_PACKAGE = "listmerge"
BUNDLED_DIR = "headers"
INDEX_FILENAME = "index.json"

log = logging.getLogger(__name__)


def load_template_catalog(
    external_dir: Path | None = None,
    *,
    include_bundled: bool = True,
) -> TemplateCatalog:
    """Build the catalog from bundled templates overridden by ``external_dir``."""

    templates: dict[str, HeaderTemplate] = {}
    if include_bundled:
        for template in load_bundled_templates():
            templates[template.template_id] = template
    for template in load_external_templates(external_dir):
        if template.template_id in templates:
            log.info("External template %r overrides the bundled one", template.template_id)
        templates[template.template_id] = template

    log.info("Loaded %s header templates: %s", len(templates), ", ".join(templates))
    return TemplateCatalog(templates)


def load_bundled_templates() -> list[HeaderTemplate]:
    root = resources.files(BUNDLED_PACKAGE) / BUNDLED_DIR
    index = root / INDEX_FILENAME
    if not index.is_file():
        log.warning("No bundled template index found at %s", index)
        return []

    file_names = _read_index(index)
    templates: list[HeaderTemplate] = []
    for file_name in file_names:
        resource = root / file_name
        if not resource.is_file():
            log.warning("Bundled template listed in index but not found: %s", file_name)
            continue
        templates.append(parse_template_text(resource.read_text(encoding="utf-8"), file_name))
    return templates


def load_external_templates(folder: Path | None) -> list[HeaderTemplate]:
    if folder is None or not folder.is_dir():
        log.info("No external template directory at %s (optional)", folder)
        return []

    paths = sorted(
        path
        for path in folder.iterdir()
        if path.is_file()
        and path.suffix.lower() == ".json"
        and path.name.lower() != INDEX_FILENAME
    )
    by_id: dict[str, HeaderTemplate] = {}
    for path in paths:
        template = load_template_file(path)
        by_id[template.template_id] = template
    return list(by_id.values())


def load_template_file(path: Path) -> HeaderTemplate:
    return parse_template_text(path.read_text(encoding="utf-8"), str(path))


def parse_template_text(text: str, source: str) -> HeaderTemplate:
    """Parse and validate one template document; ``source`` names it in errors."""

    try:
        payload = TemplatePayload.model_validate_json(text)
    except ValidationError as exc:
        raise TemplateInvalidError(source, _payload_problems(exc)) from exc

    template = payload.to_template()
    problems = validate_template(template)
    if problems:
        raise TemplateInvalidError(template.template_id or source, problems)
    return template


def dump_template(template: HeaderTemplate) -> str:
    """Serialize ``template`` in the full document layout."""

    document = {
        "name": template.template_id,
        "description": template.description,
        "headerPosition": str(template.header_position),
        "sumField": template.sum_field,
        "fields": [
            {
                "name": definition.name,
                "aliases": list(definition.aliases),
                "required": definition.required,
                "kind": str(definition.kind),
                "valuePattern": definition.value_pattern,
            }
            for definition in template.fields
        ],
    }
    return json.dumps(document, indent=2, ensure_ascii=False)


def _read_index(index: Traversable) -> list[str]:
    try:
        names: object = json.loads(index.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise TemplateInvalidError(
            INDEX_FILENAME,
            [TemplateProblem(kind=ProblemKind.MALFORMED_DOCUMENT, message=str(exc))],
        ) from exc
    if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
        raise TemplateInvalidError(
            INDEX_FILENAME,
            [
                TemplateProblem(
                    kind=ProblemKind.MALFORMED_DOCUMENT,
                    message="Template index must be a JSON list of file names",
                )
            ],
        )
    return list(dict.fromkeys(cast("list[str]", names)))


def _payload_problems(exc: ValidationError) -> list[TemplateProblem]:
    return [
        TemplateProblem(
            kind=ProblemKind.MALFORMED_DOCUMENT,
            message=f"{'.'.join(str(part) for part in error['loc']) or 'document'}: {error['msg']}",
        )
        for error in exc.errors()
    ]
