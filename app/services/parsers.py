"""Turn uploaded JSON / CSV / XLSX files into candidate user records."""

import csv
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import orjson
import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError

from ..errors import ParseError

NAME_ALIASES = ("name", "username", "user_name", "user name", "用户名")
_ALIASES = {a.casefold() for a in NAME_ALIASES}


@dataclass
class ImportRecord:
    position: int  # 1-based position of the record in the file
    name: str


def _is_name_key(key: Any) -> bool:
    return isinstance(key, str) and key.strip().casefold() in _ALIASES


def find_name_column(headers: Sequence[Any]) -> int:
    for index, header in enumerate(headers):
        if _is_name_key(header):
            return index
    raise ParseError(f"No name column found (expected one of: {', '.join(NAME_ALIASES)})")


def parse_json(path: Path) -> List[ImportRecord]:
    raw = path.read_bytes()
    if raw.startswith(b"\xef\xbb\xbf"):
        raw = raw[3:]
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON: {exc}") from exc

    if isinstance(data, dict) and isinstance(data.get("users"), list):
        items = data["users"]
    elif isinstance(data, list):
        items = data
    else:
        raise ParseError("JSON must be an array or an object with a 'users' array")

    records = []
    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ParseError(f"record {position}: expected an object")
        name = _resolve_name(item)
        if name is None:
            raise ParseError(f"record {position}: missing name field")
        records.append(ImportRecord(position=position, name=name))
    return records


def _resolve_name(item: Dict[str, Any]) -> Optional[str]:
    for key, value in item.items():
        if _is_name_key(key) and value is not None:
            return str(value)
    return None


def parse_csv(path: Path) -> List[ImportRecord]:
    records: List[ImportRecord] = []
    with open(path, encoding="utf-8-sig", newline="") as fh:
        reader = csv.reader(fh)
        name_index = None
        for row in reader:
            if not any(cell.strip() for cell in row):
                continue
            if name_index is None:
                name_index = find_name_column(row)
                continue
            name = row[name_index].strip() if name_index < len(row) else ""
            if not name:
                raise ParseError(f"line {reader.line_num}: name is empty")
            records.append(ImportRecord(position=len(records) + 1, name=name))
    if name_index is None:
        raise ParseError("CSV file has no header row")
    return records


def parse_xlsx(path: Path) -> List[ImportRecord]:
    """Read the first sheet of an OOXML workbook, or of a legacy BIFF ``.xls`` file."""
    if not zipfile.is_zipfile(path):
        return _records_from_rows(_xls_rows(path))

    try:
        workbook = load_workbook(filename=path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ParseError(f"Unreadable spreadsheet: {exc}") from exc
    try:
        return _records_from_rows(workbook.worksheets[0].iter_rows(values_only=True))
    finally:
        workbook.close()


def _xls_rows(path: Path) -> List[List[Any]]:
    try:
        book = xlrd.open_workbook(str(path), on_demand=True)
    except (xlrd.XLRDError, CompDocError, OSError) as exc:
        raise ParseError(f"Unreadable spreadsheet: {exc}") from exc
    try:
        sheet = book.sheet_by_index(0)
        return [sheet.row_values(i) for i in range(sheet.nrows)]
    finally:
        book.release_resources()


def _records_from_rows(rows: Iterable[Sequence[Any]]) -> List[ImportRecord]:
    numbered = _non_blank_rows(rows)
    header = next(numbered, None)
    if header is None:
        raise ParseError("Spreadsheet is empty")
    name_index = find_name_column(header[1])

    records = []
    for row_number, row in numbered:
        value = row[name_index] if name_index < len(row) else None
        name = str(value).strip() if value is not None else ""
        if not name:
            raise ParseError(f"row {row_number}: name is empty")
        records.append(ImportRecord(position=len(records) + 1, name=name))
    return records


def _non_blank_rows(rows: Iterable[Sequence[Any]]):
    for row_number, row in enumerate(rows, start=1):
        if any(v is not None and str(v).strip() != "" for v in row):
            yield row_number, row


PARSERS = {
    "json": parse_json,
    "csv": parse_csv,
    "xlsx": parse_xlsx,
}


def parse_records(path: str | Path, fmt: str) -> List[ImportRecord]:
    try:
        parser = PARSERS[fmt]
    except KeyError:
        raise ParseError(f"Unsupported import format: {fmt}") from None
    try:
        return parser(Path(path))
    except UnicodeDecodeError as exc:
        raise ParseError(f"File is not valid UTF-8: {exc}") from exc
    except csv.Error as exc:
        raise ParseError(f"Malformed CSV: {exc}") from exc


def count_records(path: str | Path, fmt: str) -> int:
    """Parse the whole file and return how many records it holds.

    Runs before a task is created so broken or empty files are rejected while
    the client is still waiting on the upload request.
    """
    records = parse_records(path, fmt)
    if not records:
        raise ParseError("File contains no records")
    return len(records)
