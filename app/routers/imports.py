import logging
import secrets
import time
from pathlib import Path
from typing import Optional
from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from fastapi.responses import FileResponse
from ..dependencies import Services, get_services
from ..errors import ParseError
from ..formats import format_from_filename, mime_type, normalize_format
from ..models import ImportTaskCreatedResponse, TaskStatusResponse
from ..services.importer import generate_template
from ..services.parsers import count_records
from ..storage.schema import TaskStatus
from .exports import NO_CACHE
from worker.jobs import run_import

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/import", tags=["import"])

CHUNK_SIZE = 1024 * 1024


def save_upload(upload: UploadFile, uploads_dir: str, max_bytes: int) -> Path:
    directory = Path(uploads_dir)
    directory.mkdir(parents=True, exist_ok=True)
    ext = Path(upload.filename or "").suffix.lower()
    path = directory / f"import_{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"

    written = 0
    with open(path, "wb") as out:
        while chunk := upload.file.read(CHUNK_SIZE):
            written += len(chunk)
            if written > max_bytes:
                break
            out.write(chunk)
    if written > max_bytes:
        path.unlink(missing_ok=True)
        raise HTTPException(status_code=413, detail=f"File exceeds {max_bytes} bytes")
    return path


@router.post("", response_model=ImportTaskCreatedResponse)
def create_import_task(file: Optional[UploadFile] = File(None), services: Services = Depends(get_services)):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    fmt = format_from_filename(file.filename)
    path = save_upload(file, services.settings.uploads_dir, services.settings.max_upload_bytes)
    try:
        record_count = count_records(path, fmt)
        task_id = services.import_tasks.create_task(fmt, source_name=file.filename)
    except ParseError as exc:
        path.unlink(missing_ok=True)
        raise HTTPException(status_code=400, detail=f"File parsing failed: {exc}") from exc
    except Exception:
        path.unlink(missing_ok=True)
        raise
    logger.info("Import task %s created for %s (%s records)", task_id, file.filename, record_count)

    services.dispatcher.submit(run_import, services, task_id, str(path), fmt)
    if not services.dispatcher.wait_started(
        services.import_tasks, task_id, services.settings.dispatch_confirm_seconds
    ):
        logger.info("Import task %s not confirmed started yet; returning anyway", task_id)

    return ImportTaskCreatedResponse(
        task_id=task_id,
        status=TaskStatus.PENDING.value,
        message="Import task created",
        format=fmt,
        record_count=record_count,
    )


@router.get("/template/{format}")
def download_template(format: str, services: Services = Depends(get_services)):
    fmt = normalize_format(format)
    file_name, path = generate_template(fmt, services.settings.templates_dir)
    return FileResponse(path, media_type=mime_type(fmt), filename=file_name)


@router.get("/{task_id}/status", response_model=TaskStatusResponse)
def get_import_status(task_id: str, response: Response, services: Services = Depends(get_services)):
    rec = services.import_tasks.get_task(task_id)
    if rec is None:
        raise HTTPException(status_code=404, detail="Unknown task")
    response.headers.update(NO_CACHE)
    return TaskStatusResponse.from_record(rec)
