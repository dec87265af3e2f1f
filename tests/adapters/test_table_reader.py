from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd
import pytest

from listmerge.adapters.tables import (
    UnsupportedTableError,
    read_table,
    read_tables,
    sniff_delimiter,
    table_from_frame,
)
from listmerge.domain.model import HeaderPosition

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def test_csv_separator_is_sniffed(write_csv: Callable[..., Path]) -> None:
    path = write_csv("contacts.csv", "Full Name;Email", "Jane Doe;jane@x.com", "John;john@x.com")

    table = read_table(path)

    assert table.source_id == "contacts.csv"
    assert table.headers == ("Full Name", "Email")
    assert [dict(row) for row in table.rows] == [
        {"Full Name": "Jane Doe", "Email": "jane@x.com"},
        {"Full Name": "John", "Email": "john@x.com"},
    ]


def test_single_column_csv_keeps_whole_values(write_csv: Callable[..., Path]) -> None:
    path = write_csv("emails.csv", "email", "a@x.com", "b@x.com")

    table = read_table(path)

    assert sniff_delimiter(path) == ";"
    assert table.headers == ("email",)
    assert [row["email"] for row in table.rows] == ["a@x.com", "b@x.com"]


@pytest.mark.parametrize("delimiter", ["\t", "|", ","])
def test_other_delimiters_are_sniffed(
    write_csv: Callable[..., Path], delimiter: str
) -> None:
    lines = [["Full Name", "Email"], ["Jane Doe", "jane@x.com"], ["John", "john@x.com"]]
    path = write_csv("contacts.txt", *(delimiter.join(line) for line in lines))

    table = read_table(path)

    assert sniff_delimiter(path) == delimiter
    assert table.headers == ("Full Name", "Email")
    assert table.rows[0]["Full Name"] == "Jane Doe"


def test_spaces_and_dots_are_never_delimiters(write_csv: Callable[..., Path]) -> None:
    path = write_csv("names.csv", "Full Name", "Jane M. Doe", "John R. Roe")

    table = read_table(path)

    assert table.headers == ("Full Name",)
    assert [row["Full Name"] for row in table.rows] == ["Jane M. Doe", "John R. Roe"]


def test_cells_stay_text(write_csv: Callable[..., Path]) -> None:
    path = write_csv("ids.csv", "customerId,amount", "007,10.50", "42,NA")

    table = read_table(path)

    assert [row["customerId"] for row in table.rows] == ["007", "42"]
    assert [row["amount"] for row in table.rows] == ["10.50", "NA"]


def test_blank_rows_are_skipped(write_csv: Callable[..., Path]) -> None:
    path = write_csv("gaps.csv", "name,email", "Jane,jane@x.com", ",", "", "John,john@x.com")

    table = read_table(path)

    assert [row["name"] for row in table.rows] == ["Jane", "John"]


def test_header_row_can_be_last() -> None:
    frame = pd.DataFrame([["Jane", "jane@x.com"], ["John", "john@x.com"], ["name", "email"]])

    table = table_from_frame(frame, source_id="footer.csv", header_position=HeaderPosition.LAST)

    assert table.headers == ("name", "email")
    assert [row["name"] for row in table.rows] == ["Jane", "John"]


def test_blank_and_repeated_headers_get_unique_names() -> None:
    frame = pd.DataFrame([["Email", "", "Email"], ["a@x.com", "x", "b@x.com"]])

    table = table_from_frame(frame, source_id="dupes.csv")

    assert table.headers == ("Email", "column_2", "Email.1")
    assert table.rows[0]["Email.1"] == "b@x.com"


def test_empty_frame_gives_empty_table() -> None:
    table = table_from_frame(pd.DataFrame([["", None]]), source_id="empty.csv")

    assert table.headers == ()
    assert len(table) == 0


def test_excel_workbook_is_read(tmp_path: Path) -> None:
    path = tmp_path / "contacts.xlsx"
    pd.DataFrame([["Jane Doe", "jane@x.com"]], columns=["name", "E-mail"]).to_excel(
        path, index=False, engine="openpyxl"
    )

    table = read_table(path)

    assert table.headers == ("name", "E-mail")
    assert dict(table.rows[0]) == {"name": "Jane Doe", "E-mail": "jane@x.com"}


def test_same_file_names_get_parent_prefix(tmp_path: Path) -> None:
    paths: list[Path] = []
    for folder in ("crm", "shop"):
        (tmp_path / folder).mkdir()
        path = tmp_path / folder / "export.csv"
        path.write_text("name,email\nJane,jane@x.com\n", encoding="utf-8")
        paths.append(path)

    tables = read_tables(paths)

    assert [table.source_id for table in tables] == ["crm/export.csv", "shop/export.csv"]


def test_unsupported_suffix_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "notes.pdf"
    path.write_bytes(b"%PDF")

    with pytest.raises(UnsupportedTableError):
        read_table(path)
