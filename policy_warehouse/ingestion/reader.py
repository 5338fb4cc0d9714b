"""
Delimited text reader with header skip and null tokens.
"""

import csv
import io
from typing import BinaryIO, Iterator, NamedTuple

from policy_warehouse.config import ReaderSettings


class ParsedRow(NamedTuple):
    """
    One physical record from a delimited file.

    values maps column name to text (None for null tokens). error is set
    when the record cannot be mapped onto the schema columns.
    """

    row_number: int
    values: dict[str, str | None]
    error: str | None = None


class DelimitedReader:
    """
    Reads delimited text positionally against an ordered column list.

    Raises UnicodeDecodeError and csv.Error for unreadable files; callers
    treat those as fatal. Column-count mismatches are reported per row.
    """

    def __init__(self, settings: ReaderSettings | None = None):
        self.settings = settings or ReaderSettings()
        self.null_tokens = set(self.settings.null_tokens)

    def read_rows(self, stream: BinaryIO, columns: list[str]) -> Iterator[ParsedRow]:
        """
        Yield parsed rows from a binary stream.

        Args:
            stream: Binary file object
            columns: Schema column order

        Yields:
            ParsedRow per non-blank data record; row_number is the 1-based
            record position in the file, header lines included
        """
        text = io.TextIOWrapper(stream, encoding=self.settings.encoding, newline="")
        reader = csv.reader(text, delimiter=self.settings.delimiter, strict=True)

        for index, fields in enumerate(reader, start=1):
            if index <= self.settings.header_skip:
                continue
            if not fields or (len(fields) == 1 and not fields[0].strip()):
                continue

            values = {
                name: self._null(value)
                for name, value in zip(columns, fields)
            }
            if len(fields) != len(columns):
                for extra_index, value in enumerate(fields[len(columns):], start=1):
                    values[f"_extra_{extra_index}"] = self._null(value)
                yield ParsedRow(
                    row_number=index,
                    values=values,
                    error=f"[column_count] row: expected {len(columns)} columns, got {len(fields)}",
                )
                continue

            yield ParsedRow(row_number=index, values=values)

    def _null(self, value: str) -> str | None:
        return None if value.strip() in self.null_tokens else value
