"""Application orchestration entry points."""

from __future__ import annotations

from dataclasses import dataclass, replace
from logging import getLogger
from typing import TYPE_CHECKING

from listmerge.adapters.export import SOURCES_COLUMN, export_result
from listmerge.adapters.settings import SettingsPayload, load_settings_file
from listmerge.adapters.tables import read_table, read_tables
from listmerge.adapters.templates import dump_template, load_template_catalog
from listmerge.config import get_merge_defaults, get_template_storage_config
from listmerge.domain.merging import (
    DEFAULT_FIELD_THRESHOLD,
    MatchField,
    MatchRules,
    MergeSettingsError,
    ReferenceTable,
    resolve_valid_template,
    run_merge_session,
)

if TYPE_CHECKING:
    import threading
    from collections.abc import Mapping, Sequence
    from decimal import Decimal
    from pathlib import Path

    from listmerge.config import MergeDefaults
    from listmerge.domain.merging import MergeSettings, TemplateCatalog, TemplateLookup
    from listmerge.domain.model import (
        ConflictPolicy,
        HeaderPosition,
        HeaderTemplate,
        MergeResult,
    )

type FuzzyKey = tuple[str, float | None]


log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MergeFilesResult:
    result: MergeResult
    written: tuple[Path, ...] = ()


def load_templates(template_dir: Path | None = None) -> TemplateCatalog:
    """Bundled templates overridden by ``template_dir`` (or the configured directory)."""

    directory = template_dir or get_template_storage_config().template_dir
    return load_template_catalog(directory)


def build_merge_settings(
    *,
    keys: Sequence[str] = (),
    fuzzy: Sequence[FuzzyKey] = (),
    policy: ConflictPolicy | None = None,
    similarity_threshold: float | None = None,
    expected_rows: int | None = None,
    expected_sums: Mapping[str, Decimal] | None = None,
    settings_file: Path | None = None,
    defaults: MergeDefaults | None = None,
) -> MergeSettings:
    """Combine environment defaults, an optional settings file and explicit options.

    Explicit options win over the file and the file wins over the environment.
    ``keys`` replaces the file's match key; ``fuzzy`` turns listed fields fuzzy,
    appending those that are not part of the key yet. ``expected_sums`` entries
    replace the file's expectation for the same field.
    """

    effective_defaults = defaults or get_merge_defaults()
    payload = load_settings_file(settings_file) if settings_file else SettingsPayload()
    base = payload.to_settings(effective_defaults)

    fields = [MatchField(name=name) for name in keys] if keys else list(base.match_rules.fields)
    for name, threshold in fuzzy:
        field_threshold = DEFAULT_FIELD_THRESHOLD if threshold is None else threshold
        position = next((i for i, field in enumerate(fields) if field.name == name), None)
        if position is None:
            fields.append(MatchField(name=name, fuzzy=True, threshold=field_threshold))
        else:
            fields[position] = replace(fields[position], fuzzy=True, threshold=field_threshold)
    if not fields:
        raise MergeSettingsError("At least one match key field is required")

    expectations = replace(
        base.expectations,
        expected_rows=(
            expected_rows if expected_rows is not None else base.expectations.expected_rows
        ),
        expected_sums={**base.expectations.expected_sums, **(expected_sums or {})},
    )
    return replace(
        base,
        match_rules=MatchRules(tuple(fields)),
        expectations=expectations,
        policy=policy or base.policy,
        similarity_threshold=(
            similarity_threshold if similarity_threshold is not None else base.similarity_threshold
        ),
    )


def merge_files(
    paths: Sequence[Path],
    *,
    template_id: str,
    settings: MergeSettings,
    output: Path | None = None,
    report: bool = False,
    header_position: HeaderPosition | None = None,
    reference: Path | None = None,
    templates: TemplateLookup | None = None,
    cancel: threading.Event | None = None,
) -> MergeFilesResult:
    """Read ``paths``, merge them with ``template_id`` and optionally export the result.

    ``header_position`` defaults to the template's. A ``reference`` file is read
    with the template's canonical names and compared key by key with the merge;
    a ``Sources`` column in it counts as the number of rows each line stands for.
    """

    catalog = templates if templates is not None else load_templates()
    template = resolve_valid_template(catalog, template_id)
    position = header_position or template.header_position
    log.info(
        "Starting merge: files=%s, template=%s, output=%s",
        len(paths),
        template_id,
        output,
    )

    tables = read_tables(paths, header_position=position)
    reference_table = (
        None
        if reference is None
        else ReferenceTable(
            table=read_table(reference, header_position=position),
            count_column=SOURCES_COLUMN,
        )
    )
    result = run_merge_session(
        tables,
        templates=catalog,
        template_id=template_id,
        settings=settings,
        cancel=cancel,
        reference=reference_table,
    )
    written = export_result(result, output, report=report) if output is not None else []

    log.info(
        f"Finished merge: input_rows={result.statistics.total_input_rows}, "
        f"merged_rows={result.statistics.merged_rows}, issues={len(result.issues)}"
    )
    return MergeFilesResult(result=result, written=tuple(written))


def list_templates(template_dir: Path | None = None) -> list[HeaderTemplate]:
    catalog = load_templates(template_dir)
    return sorted(catalog, key=lambda template: template.template_id)


def show_template(template_id: str, template_dir: Path | None = None) -> str:
    catalog = load_templates(template_dir)
    return dump_template(catalog.resolve(template_id))
