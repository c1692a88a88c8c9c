"""Writers for (headers, rows) tables and JSON envelopes.

CSV files carry a UTF-8 byte-order-mark so spreadsheet programs pick the
right encoding; XLSX files are single-sheet workbooks with a header row.
"""

import csv
import datetime
from itertools import chain
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import orjson
import xlsxwriter


def convert_value_to_text(v: Any) -> str:
    if v is None:
        return ""
    elif isinstance(v, datetime.datetime):
        return v.strftime("%Y-%m-%d %H:%M:%S")
    elif hasattr(v, "isoformat"):
        return v.isoformat()
    return str(v)


def write_json(path: Path, payload: Any) -> None:
    path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))


def write_csv(path: Path, headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    with open(path, "w", encoding="utf-8-sig", newline="") as fh:
        # numbers stay bare, every text cell is quoted with "" escaping
        writer = csv.writer(fh, quoting=csv.QUOTE_NONNUMERIC)
        writer.writerow(headers)
        for row in rows:
            writer.writerow([v if isinstance(v, (int, float)) else convert_value_to_text(v) for v in row])


def write_xlsx(
    path: Path,
    headers: Sequence[str],
    rows: Iterable[Sequence[Any]],
    column_widths: Optional[Sequence[int]] = None,
    sheet_name: str = "Sheet1",
) -> None:
    workbook = xlsxwriter.Workbook(
        str(path), {"constant_memory": True, "default_date_format": "yyyy-mm-dd hh:mm:ss"}
    )
    try:
        header_format = workbook.add_format({"bold": True})
        date_format = workbook.add_format({"num_format": "yyyy-mm-dd hh:mm:ss"})
        worksheet = workbook.add_worksheet(sheet_name)
        for x, width in enumerate(column_widths or ()):
            worksheet.set_column(x, x, width)

        for y, row in enumerate(chain((headers,), rows)):
            for x, col in enumerate(row):
                if y == 0:
                    worksheet.write_string(y, x, str(col), header_format)
                elif isinstance(col, datetime.datetime):
                    # xlsxwriter cannot handle timezones:
                    worksheet.write_datetime(y, x, col.replace(tzinfo=None), date_format)
                elif isinstance(col, (int, float)):
                    worksheet.write_number(y, x, col)
                else:
                    worksheet.write_string(y, x, convert_value_to_text(col))
    finally:
        workbook.close()
