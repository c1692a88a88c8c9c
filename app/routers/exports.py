import logging
from pathlib import Path
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import FileResponse
from ..dependencies import Services, get_services
from ..formats import mime_type, normalize_format
from ..models import ExportRequest, TaskCreatedResponse, TaskStatusResponse
from ..storage.schema import TaskRecord, TaskStatus
from worker.jobs import run_export

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/export", tags=["export"])

NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate", "Pragma": "no-cache", "Expires": "0"}


def result_file_response(rec: TaskRecord | None) -> FileResponse:
    if rec is None:
        raise HTTPException(status_code=404, detail="Unknown task")
    if rec.status is not TaskStatus.COMPLETED:
        raise HTTPException(
            status_code=400,
            detail={"error": "Task is not completed", "status": rec.status.value, "progress": rec.progress},
        )
    if not rec.file_path or not Path(rec.file_path).is_file():
        raise HTTPException(status_code=404, detail="Result file no longer exists")
    return FileResponse(rec.file_path, media_type=mime_type(rec.format), filename=rec.file_name)


@router.post("", response_model=TaskCreatedResponse)
def create_export_task(payload: ExportRequest, services: Services = Depends(get_services)):
    fmt = normalize_format(payload.format)
    search_name = (payload.name or "").strip() or None

    task_id = services.export_tasks.create_task(fmt, search_name=search_name)
    services.dispatcher.submit(run_export, services, task_id, fmt, search_name)
    if not services.dispatcher.wait_started(
        services.export_tasks, task_id, services.settings.dispatch_confirm_seconds
    ):
        logger.info("Export task %s not confirmed started yet; returning anyway", task_id)

    return TaskCreatedResponse(task_id=task_id, status=TaskStatus.PENDING.value, message="Export task created")


@router.get("/{task_id}", response_model=TaskStatusResponse)
def get_export_status(task_id: str, response: Response, services: Services = Depends(get_services)):
    rec = services.export_tasks.get_task(task_id)
    if rec is None:
        raise HTTPException(status_code=404, detail="Unknown task")
    response.headers.update(NO_CACHE)
    proj = TaskStatusResponse.from_record(rec)
    # import-only counters mean nothing for an export
    proj.success_records = proj.failed_records = proj.errors = None
    return proj


@router.get("/{task_id}/download")
def download_export(task_id: str, services: Services = Depends(get_services)):
    return result_file_response(services.export_tasks.get_task(task_id))
