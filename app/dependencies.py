"""Service container built once at startup and handed to every route."""

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from fastapi import Request
from sqlalchemy.engine import make_url

from worker.dispatcher import Dispatcher
from .config import Settings
from .storage.records import UserRepository, make_engine
from .storage.repo import FileTaskStore, MemoryTaskStore, RedisTaskStore, TaskStore
from .storage.schema import TaskKind


@dataclass
class Services:
    settings: Settings
    export_tasks: TaskStore
    import_tasks: TaskStore
    users: UserRepository
    dispatcher: Dispatcher


def build_task_store(settings: Settings, kind: TaskKind) -> TaskStore:
    retention = timedelta(hours=settings.task_retention_hours)
    retry = {"attempts": settings.store_retry_attempts, "delay": settings.store_retry_delay}
    if settings.task_backend == "redis":
        return RedisTaskStore.from_url(settings.redis_url, kind, retention=retention, **retry)
    if settings.task_backend == "file":
        return FileTaskStore(kind, settings.tasks_dir, retention=retention, **retry)
    if settings.task_backend == "memory":
        return MemoryTaskStore(kind, retention=retention)
    raise ValueError(f"Unknown TASK_BACKEND: {settings.task_backend}")


def build_services(settings: Settings) -> Services:
    url = make_url(settings.database_url)
    if url.drivername.startswith("sqlite") and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    users = UserRepository(
        make_engine(settings.database_url),
        attempts=settings.store_retry_attempts,
        delay=settings.store_retry_delay,
    )
    users.create_schema()
    return Services(
        settings=settings,
        export_tasks=build_task_store(settings, TaskKind.EXPORT),
        import_tasks=build_task_store(settings, TaskKind.IMPORT),
        users=users,
        dispatcher=Dispatcher(max_workers=settings.job_workers),
    )


def close_services(services: Services) -> None:
    services.dispatcher.shutdown(wait=True)
    services.export_tasks.close()
    services.import_tasks.close()
    services.users.engine.dispose()


def get_services(request: Request) -> Services:
    return request.app.state.services
