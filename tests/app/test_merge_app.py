from __future__ import annotations

import json
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from listmerge.app import (
    build_merge_settings,
    list_templates,
    load_templates,
    merge_files,
    show_template,
)
from listmerge.config import MergeDefaults
from listmerge.domain.merging import (
    DEFAULT_FIELD_THRESHOLD,
    MatchField,
    MergeSettingsError,
    TemplateNotFoundError,
)
from listmerge.domain.model import ConflictPolicy, IssueCode

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

DEFAULTS = MergeDefaults(
    policy=ConflictPolicy.PREFER_MOST_FREQUENT,
    similarity_threshold=0.7,
    normalize_workers=2,
)


def _settings_file(tmp_path: Path, payload: dict[str, object]) -> Path:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_environment_defaults_apply_without_file_or_options() -> None:
    settings = build_merge_settings(keys=["email"], defaults=DEFAULTS)

    assert settings.match_rules.names == ("email",)
    assert settings.policy is ConflictPolicy.PREFER_MOST_FREQUENT
    assert settings.similarity_threshold == 0.7
    assert settings.normalize_workers == 2


def test_settings_file_overrides_environment(tmp_path: Path) -> None:
    path = _settings_file(
        tmp_path,
        {"matchKey": ["customer_id"], "policy": "preferLongest", "similarityThreshold": 0.9},
    )

    settings = build_merge_settings(settings_file=path, defaults=DEFAULTS)

    assert settings.match_rules.names == ("customer_id",)
    assert settings.policy is ConflictPolicy.PREFER_LONGEST
    assert settings.similarity_threshold == 0.9
    assert settings.normalize_workers == 2


def test_explicit_options_override_settings_file(tmp_path: Path) -> None:
    path = _settings_file(
        tmp_path,
        {"matchKey": ["customer_id"], "policy": "preferLongest", "similarityThreshold": 0.9},
    )

    settings = build_merge_settings(
        keys=["email"],
        policy=ConflictPolicy.PREFER_FIRST_SOURCE,
        similarity_threshold=0.5,
        settings_file=path,
        defaults=DEFAULTS,
    )

    assert settings.match_rules.names == ("email",)
    assert settings.policy is ConflictPolicy.PREFER_FIRST_SOURCE
    assert settings.similarity_threshold == 0.5


def test_fuzzy_upgrades_key_field_or_appends_it() -> None:
    settings = build_merge_settings(
        keys=["customer_id", "name"],
        fuzzy=[("name", None), ("company", 0.6)],
        defaults=DEFAULTS,
    )

    assert settings.match_rules.fields == (
        MatchField(name="customer_id"),
        MatchField(name="name", fuzzy=True, threshold=DEFAULT_FIELD_THRESHOLD),
        MatchField(name="company", fuzzy=True, threshold=0.6),
    )


def test_missing_match_key_is_rejected() -> None:
    with pytest.raises(MergeSettingsError, match="match key"):
        build_merge_settings(defaults=DEFAULTS)


def test_merge_files_writes_table_and_report(
    write_csv: Callable[..., Path], tmp_path: Path
) -> None:
    crm = write_csv(
        "crm.csv",
        "Customer ID,Full Name,E-mail",
        "1,Jane Doe,jane@x.com",
        "2,John Roe,john@x.com",
    )
    shop = write_csv(
        "shop.csv",
        "customerId,Contact,Mail,Tel",
        "1,Jane D.,jane@x.com,555-0100",
        "3,Ann Smith,ann@x.com,",
    )
    output = tmp_path / "merged.csv"

    outcome = merge_files(
        [crm, shop],
        template_id="contacts",
        settings=build_merge_settings(keys=["customer_id"]),
        output=output,
        report=True,
    )

    result = outcome.result
    assert outcome.written == (output, tmp_path / "merged.report.json")
    assert result.statistics.total_input_rows == 4
    assert result.statistics.merged_rows == 3
    jane = result.records[0]
    assert jane.values["name"] == "Jane Doe"
    assert jane.values["phone"] == "555-0100"
    assert [note.value for note in jane.conflicts_for("name")] == ["Jane D."]

    report = json.loads(outcome.written[1].read_text(encoding="utf-8"))
    assert [source["source_id"] for source in report["sources"]] == ["crm.csv", "shop.csv"]
    assert report["statistics"]["rows_with_conflicts"] == 1


def test_merge_files_fails_on_unknown_template_before_reading(tmp_path: Path) -> None:
    with pytest.raises(TemplateNotFoundError):
        merge_files(
            [tmp_path / "missing.csv"],
            template_id="nope",
            settings=build_merge_settings(keys=["name"]),
        )


def test_external_template_directory_is_listed(isolated_environment: Path) -> None:
    isolated_environment.mkdir(parents=True)
    (isolated_environment / "suppliers.json").write_text(
        json.dumps({"name": "suppliers", "headers": ["vendor", "iban"]}),
        encoding="utf-8",
    )

    ids = [template.template_id for template in list_templates()]

    assert ids == ["bookings", "contacts", "inventory", "suppliers"]
    assert "suppliers" in load_templates()


def test_show_template_dumps_json() -> None:
    document = json.loads(show_template("contacts"))

    assert document["name"] == "contacts"
    assert [field["name"] for field in document["fields"]] == [
        "customer_id",
        "name",
        "email",
        "phone",
        "company",
    ]


def test_explicit_expectations_extend_settings_file(tmp_path: Path) -> None:
    path = _settings_file(
        tmp_path,
        {"matchKey": ["name"], "expectedRows": 4, "expectedSums": {"amount": "1", "price": "2"}},
    )

    settings = build_merge_settings(
        settings_file=path,
        expected_rows=5,
        expected_sums={"price": Decimal("2.5")},
        defaults=DEFAULTS,
    )

    assert settings.expectations.expected_rows == 5
    assert dict(settings.expectations.expected_sums) == {
        "amount": Decimal(1),
        "price": Decimal("2.5"),
    }


@pytest.fixture
def booking_files(write_csv: Callable[..., Path]) -> list[Path]:
    return [
        write_csv("jan.csv", "Kunde;Rechnung;Betrag", "Acme;R1;10,50", "Beta;R2;4"),
        write_csv("feb.csv", "Client,Invoice No,Total", "Acme,R3,5"),
    ]


def test_merge_files_sums_amounts_and_checks_own_export(
    booking_files: list[Path], tmp_path: Path
) -> None:
    output = tmp_path / "bookings.csv"
    settings = build_merge_settings(keys=["Customer"], expected_sums={"Amount": Decimal("19.5")})

    first = merge_files(booking_files, template_id="bookings", settings=settings, output=output)
    second = merge_files(
        booking_files, template_id="bookings", settings=settings, reference=output
    )

    assert [record.values["Amount"] for record in first.result.records] == [
        Decimal("15.50"),
        Decimal(4),
    ]
    assert [issue.code for issue in first.result.issues] == [IssueCode.UNRESOLVED_CONFLICT]
    assert [issue.code for issue in second.result.issues] == [IssueCode.UNRESOLVED_CONFLICT]


def test_merge_files_reports_reference_differences(
    booking_files: list[Path], write_csv: Callable[..., Path]
) -> None:
    reference = write_csv("control.csv", "Customer;Amount;Sources", "Acme;15.50;1", "Gamma;1;1")

    outcome = merge_files(
        booking_files,
        template_id="bookings",
        settings=build_merge_settings(keys=["Customer"]),
        reference=reference,
    )

    issues = [
        issue for issue in outcome.result.issues if issue.code is not IssueCode.UNRESOLVED_CONFLICT
    ]
    assert [(issue.code, issue.source_id) for issue in issues] == [
        (IssueCode.REFERENCE_COUNT_MISMATCH, "control.csv"),
        (IssueCode.REFERENCE_MISSING_KEY, "control.csv"),
    ]


def test_merge_files_reads_header_position_from_template(
    isolated_environment: Path, write_csv: Callable[..., Path]
) -> None:
    isolated_environment.mkdir(parents=True)
    (isolated_environment / "footer.json").write_text(
        json.dumps({"name": "footer", "headers": ["vendor", "iban"], "headerPosition": "LAST"}),
        encoding="utf-8",
    )
    path = write_csv("vendors.csv", "Acme;DE01", "Beta;DE02", "vendor;iban")

    outcome = merge_files(
        [path], template_id="footer", settings=build_merge_settings(keys=["iban"])
    )

    assert [record.values["vendor"] for record in outcome.result.records] == ["Acme", "Beta"]
    assert outcome.result.report_for("vendors.csv").unmapped_columns == ()
