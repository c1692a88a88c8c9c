from typing import Optional

from .errors import UnsupportedFormat

# accepted spellings -> stored format
FORMAT_ALIASES = {
    "json": "json",
    "csv": "csv",
    "xlsx": "xlsx",
    "excel": "xlsx",
}
VALID_FORMATS = ["json", "excel", "xlsx", "csv"]

MIME_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

UPLOAD_EXTENSIONS = {
    ".json": "json",
    ".csv": "csv",
    ".xlsx": "xlsx",
    ".xls": "xlsx",
}


def normalize_format(value: Optional[str]) -> str:
    key = (value or "").strip().lower()
    if key not in FORMAT_ALIASES:
        raise UnsupportedFormat(value, VALID_FORMATS)
    return FORMAT_ALIASES[key]


def format_from_filename(filename: str) -> str:
    dot = filename.rfind(".")
    ext = filename[dot:].lower() if dot != -1 else ""
    if ext not in UPLOAD_EXTENSIONS:
        raise UnsupportedFormat(ext or filename, sorted(UPLOAD_EXTENSIONS))
    return UPLOAD_EXTENSIONS[ext]


def mime_type(fmt: str) -> str:
    return MIME_TYPES.get(fmt, "application/octet-stream")
