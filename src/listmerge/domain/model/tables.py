"""Raw input tables and the normalized records derived from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping, Sequence

type FieldValue = str | Decimal | None


@dataclass(frozen=True, slots=True)
class RawTable:
    """Already-parsed table: ordered headers and rows of header -> raw text.

    Rows are frozen on construction; a table is consumed once per session.
    """

    source_id: str
    headers: tuple[str, ...]
    rows: tuple[Mapping[str, str | None], ...] = field(repr=False)

    @classmethod
    def from_rows(
        cls,
        source_id: str,
        rows: Iterable[Mapping[str, str | None]],
        *,
        headers: Sequence[str] | None = None,
    ) -> RawTable:
        """Build a table from row mappings.

        Without explicit ``headers`` the header order is taken from the keys of
        the rows, first-seen order.
        """

        frozen_rows = tuple(MappingProxyType(dict(row)) for row in rows)
        if headers is None:
            seen: dict[str, None] = {}
            for row in frozen_rows:
                for header in row:
                    seen.setdefault(header, None)
            headers = tuple(seen)
        return cls(source_id=source_id, headers=tuple(headers), rows=frozen_rows)

    @classmethod
    def from_matrix(
        cls,
        source_id: str,
        headers: Sequence[str],
        values: Iterable[Sequence[str | None]],
    ) -> RawTable:
        """Build a table from a header row and positional value rows."""

        header_tuple = tuple(headers)
        rows = (
            {
                header: (row[index] if index < len(row) else None)
                for index, header in enumerate(header_tuple)
            }
            for row in values
        )
        return cls.from_rows(source_id, rows, headers=header_tuple)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Mapping[str, str | None]]:
        return iter(self.rows)


@dataclass(frozen=True, slots=True, order=True)
class RecordRef:
    """Provenance pointer: which source (and processing position) and which row."""

    source_index: int
    row_index: int
    source_id: str = field(compare=False)

    def __str__(self) -> str:
        return f"{self.source_id}#{self.row_index}"


@dataclass(frozen=True, slots=True)
class NormalizedRecord:
    """Row keyed by canonical field names with typed values."""

    ref: RecordRef
    values: Mapping[str, FieldValue]

    def __post_init__(self) -> None:
        if not isinstance(self.values, MappingProxyType):
            object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @property
    def source_id(self) -> str:
        return self.ref.source_id

    @property
    def row_index(self) -> int:
        return self.ref.row_index

    def get(self, field_name: str) -> FieldValue:
        return self.values.get(field_name)
