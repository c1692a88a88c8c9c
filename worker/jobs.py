import logging
from pathlib import Path
from typing import List

from app.dependencies import Services
from app.services.exporter import Exporter, ExportResult
from app.services.importer import Importer, ImportResult
from app.storage.schema import TaskRecord

logger = logging.getLogger(__name__)


def run_export(services: Services, task_id: str, fmt: str, search_name: str | None = None) -> ExportResult | None:
    exporter = Exporter(
        services.export_tasks,
        services.users,
        services.settings.exports_dir,
        batch_size=services.settings.export_batch_size,
    )
    return exporter.run(task_id, fmt, search_name)


def run_import(services: Services, task_id: str, file_path: str, fmt: str) -> ImportResult | None:
    importer = Importer(
        services.import_tasks,
        services.users,
        abort_after_unavailable=services.settings.import_abort_after_unavailable,
    )
    return importer.run(task_id, file_path, fmt)


def sweep_expired_tasks(services: Services) -> List[TaskRecord]:
    """Drop tasks past the retention window together with their export files."""
    swept = services.export_tasks.cleanup_expired_tasks() + services.import_tasks.cleanup_expired_tasks()
    for rec in swept:
        if rec.file_path:
            try:
                Path(rec.file_path).unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove result file of task %s", rec.task_id, exc_info=True)
    return swept
