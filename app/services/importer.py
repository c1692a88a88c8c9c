import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from ..errors import RecordStoreError, RecordStoreUnavailable, StoreError
from ..storage.records import MAX_NAME_LENGTH, UserRepository
from ..storage.repo import TaskStore
from ..storage.schema import TaskStatus
from ..utils.tabular import write_csv, write_json, write_xlsx
from .parsers import parse_records

logger = logging.getLogger(__name__)

TEMPLATE_NAMES = ["Alice Zhang", "Bob Li", "Carol Wang"]


class ImportAborted(Exception):
    pass


@dataclass
class ImportResult:
    total_records: int
    success_records: int
    failed_records: int


def validate_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ValueError("name must not be empty")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValueError(f"name is longer than {MAX_NAME_LENGTH} characters")
    return cleaned


class Importer:
    def __init__(self, tasks: TaskStore, users: UserRepository, abort_after_unavailable: int = 10):
        self.tasks = tasks
        self.users = users
        self.abort_after_unavailable = abort_after_unavailable

    def run(self, task_id: str, file_path: str | Path, fmt: str) -> Optional[ImportResult]:
        """Insert every record of the uploaded file and drive ``task_id`` to a terminal state.

        A bad record is counted and reported on the task without stopping the
        job. The uploaded file is removed afterwards whatever the outcome.
        """
        logger.info("Import task %s started (format=%s)", task_id, fmt)
        try:
            result = self._import(task_id, Path(file_path), fmt)
        except Exception as exc:
            logger.exception("Import task %s failed", task_id)
            self._mark_failed(task_id, exc)
            return None
        finally:
            self._remove_upload(Path(file_path))
        logger.info(
            "Import task %s completed: %s ok, %s failed of %s",
            task_id, result.success_records, result.failed_records, result.total_records,
        )
        return result

    def _import(self, task_id: str, path: Path, fmt: str) -> ImportResult:
        records = parse_records(path, fmt)
        total = len(records)
        self.tasks.update_task(
            task_id, status=TaskStatus.PROCESSING, total_records=total, processed_records=0
        )

        success = failed = 0
        unavailable_streak = 0
        for processed, record in enumerate(records, start=1):
            try:
                self.users.create(validate_name(record.name))
            except (ValueError, RecordStoreError) as exc:
                failed += 1
                message = f"record {record.position}: {exc}"
                logger.warning("Import task %s: %s", task_id, message)
                self.tasks.add_error(task_id, message, processed_records=processed)
                if isinstance(exc, RecordStoreUnavailable):
                    unavailable_streak += 1
                    if unavailable_streak >= self.abort_after_unavailable:
                        raise ImportAborted(
                            f"Record store unreachable for {unavailable_streak} consecutive records"
                        ) from exc
                else:
                    unavailable_streak = 0
            else:
                success += 1
                unavailable_streak = 0
                self.tasks.update_task(task_id, processed_records=processed, success_records=success)

        self.tasks.update_task(
            task_id,
            status=TaskStatus.COMPLETED,
            processed_records=total,
            success_records=success,
            failed_records=failed,
        )
        return ImportResult(total_records=total, success_records=success, failed_records=failed)

    def _mark_failed(self, task_id: str, exc: BaseException) -> None:
        try:
            self.tasks.update_task(task_id, status=TaskStatus.FAILED, error=str(exc) or exc.__class__.__name__)
        except StoreError:
            logger.exception("Could not record failure of import task %s", task_id)

    @staticmethod
    def _remove_upload(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove uploaded file %s", path, exc_info=True)


def generate_template(fmt: str, templates_dir: str | Path) -> Tuple[str, Path]:
    """Write a fresh three-row sample import file and return ``(file_name, path)``.

    The file is rebuilt under a temporary name and swapped into place, so a
    concurrent download never sees a half-written template.
    """
    writers = {
        "json": lambda p: write_json(p, {"users": [{"name": n} for n in TEMPLATE_NAMES]}),
        "csv": lambda p: write_csv(p, ["name"], [(n,) for n in TEMPLATE_NAMES]),
        "xlsx": lambda p: write_xlsx(
            p, ["name"], [(n,) for n in TEMPLATE_NAMES], column_widths=[30], sheet_name="Users"
        ),
    }
    if fmt not in writers:
        raise ValueError(f"Unsupported template format: {fmt}")

    directory = Path(templates_dir)
    directory.mkdir(parents=True, exist_ok=True)
    file_name = f"import_template.{fmt}"
    path = directory / file_name

    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".import_template-", suffix=f".{fmt}")
    os.close(fd)
    try:
        writers[fmt](Path(tmp))
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    return file_name, path
