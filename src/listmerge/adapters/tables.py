"""Read CSV and Excel files into raw tables.

Every cell is read as text; typing is the Schema Normalizer's job. Fully blank
rows are skipped. The header row is either the first or the last non-blank
row of the sheet, since some exports put the column titles in a footer. The
CSV delimiter is sniffed among ``;``, ``,``, tab and ``|``; a sample showing
none of them (a single-column file) is read with ``;``.
"""

from __future__ import annotations

import csv
import logging
from typing import TYPE_CHECKING

import pandas as pd

from listmerge.domain.model import HeaderPosition, RawTable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

EXCEL_SUFFIXES = frozenset({".xlsx", ".xlsm"})
CSV_SUFFIXES = frozenset({".csv", ".txt", ".tsv"})
CSV_DELIMITERS = ";,\t|"
DEFAULT_DELIMITER = ";"
SNIFF_SAMPLE_SIZE = 64 * 1024

log = logging.getLogger(__name__)


class UnsupportedTableError(ValueError):
    """Raised for files that are neither CSV nor Excel workbooks."""


def read_table(
    path: Path,
    *,
    header_position: HeaderPosition = HeaderPosition.FIRST,
    source_id: str | None = None,
    sheet_name: str | int = 0,
) -> RawTable:
    """Read ``path`` into a ``RawTable`` named after the file unless ``source_id`` is given."""

    frame = _read_frame(path, sheet_name=sheet_name)
    table = table_from_frame(
        frame,
        source_id=source_id or path.name,
        header_position=header_position,
    )
    log.info(
        "Read %s: columns=%s rows=%s (header %s)",
        path,
        len(table.headers),
        len(table),
        header_position,
    )
    return table


def read_tables(
    paths: Sequence[Path],
    *,
    header_position: HeaderPosition = HeaderPosition.FIRST,
) -> list[RawTable]:
    """Read several files; two files with the same name get their parent directory prefixed."""

    names = [path.name for path in paths]
    tables: list[RawTable] = []
    for path in paths:
        source_id = path.name if names.count(path.name) == 1 else f"{path.parent.name}/{path.name}"
        tables.append(read_table(path, header_position=header_position, source_id=source_id))
    return tables


def table_from_frame(
    frame: pd.DataFrame,
    *,
    source_id: str,
    header_position: HeaderPosition = HeaderPosition.FIRST,
) -> RawTable:
    """Turn a header-less all-text frame into a ``RawTable``."""

    rows = [
        [_cell(value) for value in row] for row in frame.itertuples(index=False, name=None)
    ]
    rows = [row for row in rows if any(cell is not None and cell.strip() for cell in row)]
    if not rows:
        log.warning("Source %s has no non-blank rows", source_id)
        return RawTable.from_rows(source_id, (), headers=())

    if header_position is HeaderPosition.FIRST:
        header_row, body = rows[0], rows[1:]
    else:
        header_row, body = rows[-1], rows[:-1]
    return RawTable.from_matrix(source_id, _header_names(header_row), body)


def _read_frame(path: Path, *, sheet_name: str | int) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        return pd.read_excel(
            path,
            sheet_name=sheet_name,
            header=None,
            dtype=str,
            keep_default_na=False,
            engine="openpyxl",
        )
    if suffix in CSV_SUFFIXES:
        return pd.read_csv(
            path,
            sep=sniff_delimiter(path),
            engine="python",
            header=None,
            dtype=str,
            keep_default_na=False,
            encoding="utf-8-sig",
            skip_blank_lines=True,
        )
    raise UnsupportedTableError(f"Unsupported table file type: {path.name}")


def sniff_delimiter(path: Path) -> str:
    with path.open(encoding="utf-8-sig", newline="") as handle:
        sample = handle.read(SNIFF_SAMPLE_SIZE)
    try:
        delimiter = csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS).delimiter
    except csv.Error:
        log.debug("No delimiter found in %s; using %r", path, DEFAULT_DELIMITER)
        return DEFAULT_DELIMITER
    log.debug("Sniffed delimiter %r in %s", delimiter, path)
    return delimiter


def _cell(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if pd.isna(value):  # pyright: ignore[reportUnknownMemberType, reportArgumentType]
        return None
    return str(value)


def _header_names(row: Sequence[str | None]) -> list[str]:
    """Header titles with blanks named by position and repeats suffixed ``.1``, ``.2``."""

    names: list[str] = []
    seen: dict[str, int] = {}
    for index, cell in enumerate(row):
        name = cell.strip() if cell is not None and cell.strip() else f"column_{index + 1}"
        count = seen.get(name, 0)
        seen[name] = count + 1
        names.append(name if count == 0 else f"{name}.{count}")
    return names


def is_table_file(path: Path) -> bool:
    return path.suffix.lower() in EXCEL_SUFFIXES | CSV_SUFFIXES
