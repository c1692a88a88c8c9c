from pathlib import Path
import sys
import time

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.config import Settings
from app.storage.records import UserRepository, make_engine
from app.storage.repo import MemoryTaskStore
from app.storage.schema import TaskKind


def wait_for_terminal(store, task_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        rec = store.get_task(task_id)
        if rec is not None and rec.status.terminal:
            return rec
        time.sleep(0.02)
    raise AssertionError(f"task {task_id} did not finish in {timeout}s")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        task_backend="memory",
        tasks_dir=str(tmp_path / "tasks"),
        exports_dir=str(tmp_path / "exports"),
        uploads_dir=str(tmp_path / "uploads"),
        templates_dir=str(tmp_path / "templates"),
        dispatch_confirm_seconds=0.5,
        job_workers=2,
        store_retry_attempts=2,
        store_retry_delay=0.0,
        cleanup_interval_seconds=3600,
    )


@pytest.fixture
def users():
    repo = UserRepository(make_engine("sqlite://"), attempts=1, delay=0.0)
    repo.create_schema()
    yield repo
    repo.engine.dispose()


@pytest.fixture
def export_tasks():
    return MemoryTaskStore(TaskKind.EXPORT)


@pytest.fixture
def import_tasks():
    return MemoryTaskStore(TaskKind.IMPORT)
