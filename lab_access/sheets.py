"""Delimited-file adapters for the response sheet and the form's response store.

A ``DelimitedSheet`` is a CSV or tab-delimited export of one worksheet. Links
are kept apart from cell text and written as ``=HYPERLINK("url","text")``
formulas, which spreadsheet applications resolve on import.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ExternalServiceError, FormatError
from .formatters import format_timestamp, parse_timestamp

__all__ = [
    "DELIMITER_SAMPLE_SIZE",
    "SheetFormat",
    "USER_SHEET_FORMAT",
    "BASKET_SHEET_FORMAT",
    "detect_delimiter",
    "delimiter_for",
    "hyperlink_formula",
    "parse_hyperlink",
    "timestamp_sort_key",
    "DelimitedSheet",
    "ResponseFile",
]

logger = logging.getLogger(__name__)

# Number of lines to sample for delimiter detection
DELIMITER_SAMPLE_SIZE = 10

_SUFFIX_DELIMITERS = {".csv": ",", ".tsv": "\t", ".tab": "\t"}

_HYPERLINK_PATTERN = re.compile(
    r'^=HYPERLINK\(\s*"((?:[^"]|"")*)"\s*[,;]\s*"((?:[^"]|"")*)"\s*\)$', re.IGNORECASE
)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SheetFormat:
    """Presentation settings applied after each submission."""

    min_column_widths: Tuple[int, ...]
    autoresize_columns: int
    timestamp_column: int = 0
    text_columns: Tuple[int, ...] = ()
    font_family: str = "Times New Roman"
    font_size: int = 12
    font_color: str = "#000000"


USER_SHEET_FORMAT = SheetFormat(
    min_column_widths=(100, 100, 100, 100, 130, 130, 160, 100),
    autoresize_columns=8,
)

BASKET_SHEET_FORMAT = SheetFormat(
    min_column_widths=(100, 100, 130, 100, 100, 150, 150),
    autoresize_columns=9,
    # Columns B:I hold identifiers that must not be coerced to numbers
    text_columns=tuple(range(1, 9)),
)


# ---------------------------------------------------------------------------
# Cell Utilities
# ---------------------------------------------------------------------------


def detect_delimiter(lines: List[str]) -> str:
    """Attempt to detect whether the payload is comma- or tab-delimited.

    Args:
        lines: List of lines to analyze.

    Returns:
        Detected delimiter character (',' or '\\t').
    """
    if not lines:
        return ","

    sample = "\n".join(lines[:DELIMITER_SAMPLE_SIZE])
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",\t")
        return dialect.delimiter
    except csv.Error:
        first_line = lines[0]
        if first_line.count(",") >= first_line.count("\t"):
            return ","
        return "\t"


def delimiter_for(path: Path, lines: List[str]) -> str:
    """Pick the delimiter from the file suffix, sniffing unknown suffixes."""
    return _SUFFIX_DELIMITERS.get(path.suffix.lower()) or detect_delimiter(lines)


def hyperlink_formula(text: str, url: str) -> str:
    return '=HYPERLINK("{}","{}")'.format(url.replace('"', '""'), text.replace('"', '""'))


def parse_hyperlink(cell: str) -> Optional[Tuple[str, str]]:
    """Return ``(text, url)`` for a HYPERLINK formula cell, else None."""
    match = _HYPERLINK_PATTERN.match(cell.strip())
    if not match:
        return None
    url, text = (group.replace('""', '"') for group in match.groups())
    return text, url


def timestamp_sort_key(value: Any) -> Tuple[int, datetime]:
    """Sort key placing unparseable timestamps after all valid ones."""
    try:
        return 0, parse_timestamp(value)
    except FormatError:
        return 1, datetime.max


@dataclass
class _Row:
    values: List[str]
    links: Dict[int, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Sheet
# ---------------------------------------------------------------------------


class DelimitedSheet:
    """A worksheet stored as a delimited text file.

    Rows are numbered as in a spreadsheet: row 1 is the header and data
    starts at row 2. Every mutation rewrites the file.
    """

    def __init__(self, path: str, name: Optional[str] = None, delimiter: Optional[str] = None):
        self.path = Path(path)
        self.name = name or self.path.stem
        self.header: List[str] = []
        self.delimiter = delimiter or ","
        self._rows: List[_Row] = []
        self._load(delimiter)

    def _load(self, delimiter: Optional[str]) -> None:
        try:
            with open(self.path, "r", encoding="utf-8-sig", newline="") as f:
                text = f.read()
        except OSError as exc:
            raise ExternalServiceError("sheet", f"Unable to read sheet '{self.path}': {exc}") from exc

        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            raise ExternalServiceError("sheet", f"Sheet '{self.path}' has no header row")

        self.delimiter = delimiter or delimiter_for(self.path, lines)
        reader = csv.reader(io.StringIO(text), delimiter=self.delimiter)
        rows = [fields for fields in reader if any(cell.strip() for cell in fields)]
        self.header = [col.strip() for col in rows[0]]

        for fields in rows[1:]:
            fields = fields + [""] * (len(self.header) - len(fields))
            row = _Row(values=[])
            for index, cell in enumerate(fields):
                link = parse_hyperlink(cell)
                if link:
                    text_value, url = link
                    row.values.append(text_value)
                    row.links[index] = url
                else:
                    row.values.append(cell)
            self._rows.append(row)
        logger.debug(f"Loaded {len(self._rows)} rows from {self.path} (delimiter {self.delimiter!r})")

    def _save(self) -> None:
        buffer = io.StringIO()
        writer = csv.writer(buffer, delimiter=self.delimiter, lineterminator="\n")
        writer.writerow(self.header)
        for row in self._rows:
            writer.writerow(
                [
                    hyperlink_formula(value, row.links[index]) if index in row.links else value
                    for index, value in enumerate(row.values)
                ]
            )
        contents = buffer.getvalue().rstrip("\n")
        try:
            with open(self.path, "w", newline="", encoding="utf-8-sig") as f:
                f.write(contents)
        except OSError as exc:
            raise ExternalServiceError("sheet", f"Unable to write sheet '{self.path}': {exc}") from exc

    def _row(self, row_number: int) -> _Row:
        if not 2 <= row_number <= self.last_row_number():
            raise IndexError(f"Row {row_number} is outside the sheet (rows 2-{self.last_row_number()})")
        return self._rows[row_number - 2]

    # -- SheetStore ---------------------------------------------------------

    def last_row_number(self) -> int:
        return len(self._rows) + 1

    def read_row(self, row_number: int) -> List[str]:
        return list(self._row(row_number).values)

    def link_at(self, row_number: int, column: int) -> Optional[str]:
        return self._row(row_number).links.get(column)

    def write_row(self, row_number: int, values: Sequence[Any]) -> None:
        row = self._row(row_number)
        cells = ["" if value is None else str(value) for value in values]
        row.values[: len(cells)] = cells
        self._save()

    def set_link(self, row_number: int, column: int, text: str, url: str) -> None:
        row = self._row(row_number)
        row.values[column] = text
        row.links[column] = url
        self._save()

    def sort_rows(self, column: int, key: Optional[Callable[[Any], Any]] = None) -> None:
        key = key or (lambda value: value)
        self._rows.sort(key=lambda row: key(row.values[column]))
        self._save()

    def apply_format(self, sheet_format: SheetFormat) -> None:
        """Apply the parts of ``sheet_format`` a delimited file can hold.

        Timestamps are rewritten in the sheet's number format. Fonts and
        column widths have no representation and are only logged.
        """
        column = sheet_format.timestamp_column
        for row in self._rows:
            try:
                row.values[column] = format_timestamp(parse_timestamp(row.values[column]))
            except FormatError:
                logger.debug(f"Leaving unparseable timestamp {row.values[column]!r} as-is")
        logger.debug(
            f"Font {sheet_format.font_family} {sheet_format.font_size}pt {sheet_format.font_color}, "
            f"min widths {list(sheet_format.min_column_widths)} not stored in {self.path.suffix} files"
        )
        self._save()

    # -- Submissions --------------------------------------------------------

    def append_rows(self, rows: Sequence[Sequence[Any]]) -> int:
        """Append raw submission rows and return the last row number."""
        for values in rows:
            cells = ["" if value is None else str(value) for value in values]
            cells.extend([""] * (len(self.header) - len(cells)))
            self._rows.append(_Row(values=cells))
        self._save()
        return self.last_row_number()


class ResponseFile:
    """Pending form responses kept as a delimited file beside the sheet."""

    def __init__(self, path: str):
        self.path = Path(path)

    def _read(self) -> List[List[str]]:
        with open(self.path, "r", encoding="utf-8-sig", newline="") as f:
            text = f.read()
        lines = [line for line in text.splitlines() if line.strip()]
        reader = csv.reader(io.StringIO(text), delimiter=delimiter_for(self.path, lines))
        return [fields for fields in reader if any(cell.strip() for cell in fields)]

    def record(self, header: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        """Store newly submitted responses."""
        try:
            existing = self._read() if self.path.exists() else [list(header)]
            existing.extend([[str(value) for value in row] for row in rows])
            buffer = io.StringIO()
            delimiter = delimiter_for(self.path, [])
            csv.writer(buffer, delimiter=delimiter, lineterminator="\n").writerows(existing)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", newline="", encoding="utf-8-sig") as f:
                f.write(buffer.getvalue().rstrip("\n"))
        except OSError as exc:
            raise ExternalServiceError("form", f"Unable to record responses in '{self.path}': {exc}") from exc

    def delete_all_responses(self) -> int:
        """Remove every stored response, keeping the header row.

        Returns:
            The number of responses removed.
        """
        if not self.path.exists():
            logger.debug(f"No form responses stored at {self.path}")
            return 0
        try:
            rows = self._read()
            removed = max(len(rows) - 1, 0)
            buffer = io.StringIO()
            if rows:
                delimiter = delimiter_for(self.path, [])
                csv.writer(buffer, delimiter=delimiter, lineterminator="\n").writerow(rows[0])
            with open(self.path, "w", newline="", encoding="utf-8-sig") as f:
                f.write(buffer.getvalue().rstrip("\n"))
        except OSError as exc:
            raise ExternalServiceError("form", f"Unable to clear responses in '{self.path}': {exc}") from exc
        return removed
