import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..errors import StoreError
from ..storage.records import User, UserRepository
from ..storage.repo import TaskStore
from ..storage.schema import TaskStatus
from ..utils.tabular import write_csv, write_json, write_xlsx
from .progress import compute_phase_progress

logger = logging.getLogger(__name__)

EXPORT_HEADERS = ["ID", "Name", "Created At", "Updated At"]
COLUMN_WIDTHS = [10, 30, 20, 20]
SHEET_NAME = "Users"

# fetching may take the task up to 95%, the remaining steps are fixed checkpoints
FETCH_PHASE_MAX = 95
PREPARED, BUILT, WRITING = 96, 97, 98


@dataclass
class ExportResult:
    file_name: str
    file_path: str
    total_records: int


class Exporter:
    def __init__(self, tasks: TaskStore, users: UserRepository, export_dir: str | Path, batch_size: int = 1000):
        self.tasks = tasks
        self.users = users
        self.export_dir = Path(export_dir)
        self.batch_size = batch_size

    def run(self, task_id: str, fmt: str, search_name: Optional[str] = None) -> Optional[ExportResult]:
        """Export every matching user and drive ``task_id`` to a terminal state.

        Never raises: any failure is recorded on the task instead.
        """
        logger.info("Export task %s started (format=%s, name=%s)", task_id, fmt, search_name)
        try:
            result = self._export(task_id, fmt, search_name)
        except Exception as exc:
            logger.exception("Export task %s failed", task_id)
            self._mark_failed(task_id, exc)
            return None
        logger.info("Export task %s completed: %s (%s records)", task_id, result.file_name, result.total_records)
        return result

    def _export(self, task_id: str, fmt: str, search_name: Optional[str]) -> ExportResult:
        self.tasks.update_task(task_id, status=TaskStatus.PROCESSING, progress=1)

        total = self.users.count(search_name)
        self.tasks.update_task(task_id, total_records=total, processed_records=0)
        logger.info("Export task %s: %s matching records", task_id, total)

        users: List[User] = []
        for offset in range(0, total, self.batch_size):
            batch = self.users.find(search_name, offset=offset, limit=self.batch_size)
            if not batch:
                break
            users.extend(batch)
            fetched = min(len(users), total)
            self.tasks.update_task(
                task_id,
                processed_records=fetched,
                progress=compute_phase_progress(fetched, total, FETCH_PHASE_MAX),
            )

        self.tasks.update_task(task_id, progress=FETCH_PHASE_MAX)
        self.export_dir.mkdir(parents=True, exist_ok=True)
        path = self.export_dir / f"users_{task_id}.{fmt}"
        try:
            self._serialize(task_id, fmt, users, path)
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        self.tasks.update_task(
            task_id,
            status=TaskStatus.COMPLETED,
            file_name=path.name,
            file_path=str(path),
            total_records=len(users),
            processed_records=len(users),
        )
        return ExportResult(file_name=path.name, file_path=str(path), total_records=len(users))

    def _serialize(self, task_id: str, fmt: str, users: List[User], path: Path) -> None:
        if fmt == "json":
            records = [
                {
                    "id": u.id,
                    "name": u.name,
                    "createdAt": u.created_at.isoformat(),
                    "updatedAt": u.updated_at.isoformat(),
                }
                for u in users
            ]
            self.tasks.update_task(task_id, progress=PREPARED)
            payload = {
                "exportTime": datetime.now(timezone.utc).isoformat(),
                "total": len(records),
                "users": records,
            }
            self.tasks.update_task(task_id, progress=BUILT)
            self.tasks.update_task(task_id, progress=WRITING)
            write_json(path, payload)
        elif fmt in ("csv", "xlsx"):
            rows = [(u.id, u.name, u.created_at, u.updated_at) for u in users]
            self.tasks.update_task(task_id, progress=PREPARED)
            self.tasks.update_task(task_id, progress=BUILT)
            self.tasks.update_task(task_id, progress=WRITING)
            if fmt == "csv":
                write_csv(path, EXPORT_HEADERS, rows)
            else:
                write_xlsx(path, EXPORT_HEADERS, rows, column_widths=COLUMN_WIDTHS, sheet_name=SHEET_NAME)
        else:
            raise ValueError(f"Unsupported export format: {fmt}")

    def _mark_failed(self, task_id: str, exc: BaseException) -> None:
        try:
            self.tasks.update_task(task_id, status=TaskStatus.FAILED, error=str(exc) or exc.__class__.__name__)
        except StoreError:
            logger.exception("Could not record failure of export task %s", task_id)
