"""
Spreadsheet parsing for bulk idea import.

Turns an uploaded ``.csv``, ``.xlsx`` or ``.xls`` file into an ordered list
of row dicts keyed by the header row.  Cell values are stringified and
stripped; rows with no values at all are dropped.
"""
from __future__ import annotations

import asyncio
import csv
import datetime as dt
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

import openpyxl
import xlrd

logger = logging.getLogger(__name__)

Row = Dict[str, str]


class SpreadsheetParseError(RuntimeError):
    """The file could not be read as a spreadsheet."""


class SpreadsheetParser:
    """Parses CSV and Excel workbooks (first sheet, first row = header)."""

    CSV_DELIMITERS = ",;\t"
    SNIFF_BYTES = 4096

    async def parse(self, file_path: str, file_type: str) -> List[Row]:
        """
        Parse *file_path* off the event loop.

        Args:
            file_path: Path to the stored upload.
            file_type: Extension with or without dot, e.g. ".csv" or "xlsx".

        Raises:
            ValueError:            Unsupported file type.
            SpreadsheetParseError: Unreadable or malformed file.
        """
        ft = file_type.lower().lstrip(".")
        if ft == "csv":
            reader = self._parse_csv
        elif ft == "xlsx":
            reader = self._parse_xlsx
        elif ft == "xls":
            reader = self._parse_xls
        else:
            raise ValueError(f"Unsupported file type: {file_type!r}")

        try:
            rows = await asyncio.to_thread(reader, file_path)
        except SpreadsheetParseError:
            raise
        except Exception as exc:
            logger.error("Failed to parse %s: %s", Path(file_path).name, exc)
            raise SpreadsheetParseError(f"Failed to parse spreadsheet: {exc}") from exc

        logger.info("Parsed %d data row(s) from %s", len(rows), Path(file_path).name)
        return rows

    # ------------------------------------------------------------------
    # Formats
    # ------------------------------------------------------------------

    def _parse_csv(self, file_path: str) -> List[Row]:
        try:
            with open(file_path, newline="", encoding="utf-8-sig") as fh:
                sample = fh.read(self.SNIFF_BYTES)
                fh.seek(0)
                try:
                    dialect = csv.Sniffer().sniff(sample, delimiters=self.CSV_DELIMITERS)
                except csv.Error:
                    dialect = csv.excel
                return self._to_rows(csv.reader(fh, dialect))
        except UnicodeDecodeError as exc:
            raise SpreadsheetParseError("CSV file is not valid UTF-8 text") from exc

    def _parse_xlsx(self, file_path: str) -> List[Row]:
        workbook = openpyxl.load_workbook(file_path, read_only=True, data_only=True)
        try:
            if not workbook.sheetnames:
                raise SpreadsheetParseError("Excel file has no sheets")
            sheet = workbook[workbook.sheetnames[0]]
            return self._to_rows(sheet.iter_rows(values_only=True))
        finally:
            workbook.close()

    def _parse_xls(self, file_path: str) -> List[Row]:
        book = xlrd.open_workbook(file_path)
        if book.nsheets == 0:
            raise SpreadsheetParseError("Excel file has no sheets")
        sheet = book.sheet_by_index(0)
        return self._to_rows(sheet.row_values(i) for i in range(sheet.nrows))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _to_rows(self, records: Iterable[Sequence[Any]]) -> List[Row]:
        iterator = iter(records)
        header_cells = next(iterator, None)
        if header_cells is None:
            return []

        headers = _dedupe_headers([_cell_to_str(c) for c in header_cells])
        rows: List[Row] = []
        for record in iterator:
            values = [_cell_to_str(c) for c in record]
            if not any(values):
                continue
            row = {
                header: (values[i] if i < len(values) else "")
                for i, header in enumerate(headers)
                if header
            }
            if any(row.values()):
                rows.append(row)
        return rows


def _cell_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    return str(value).strip()


def _dedupe_headers(headers: List[str]) -> List[str]:
    """Make repeated column names unique (``Name``, ``Name_2``); blanks stay blank."""
    seen: Dict[str, int] = {}
    result: List[str] = []
    for header in headers:
        if not header:
            result.append("")
            continue
        count = seen.get(header, 0) + 1
        seen[header] = count
        result.append(header if count == 1 else f"{header}_{count}")
    return result
