import threading
from datetime import timedelta

from app.dependencies import build_services
from app.errors import StoreUnavailable
from app.storage.schema import TaskStatus, utcnow
from worker.dispatcher import Dispatcher
from worker.jobs import sweep_expired_tasks


def test_wait_started_sees_the_worker_pick_up_the_task(export_tasks):
    dispatcher = Dispatcher(max_workers=1)
    task_id = export_tasks.create_task("json")
    dispatcher.submit(export_tasks.update_task, task_id, status=TaskStatus.PROCESSING)
    assert dispatcher.wait_started(export_tasks, task_id, timeout=2.0)
    dispatcher.shutdown()


def test_wait_started_gives_up_after_timeout(export_tasks):
    dispatcher = Dispatcher(max_workers=1)
    gate = threading.Event()
    dispatcher.submit(gate.wait)
    task_id = export_tasks.create_task("json")
    assert not dispatcher.wait_started(export_tasks, task_id, timeout=0.1)
    gate.set()
    dispatcher.shutdown()


def test_wait_started_tolerates_store_outage(export_tasks, monkeypatch):
    def down(task_id):
        raise StoreUnavailable("redis is down")

    monkeypatch.setattr(export_tasks, "get_task", down)
    assert not Dispatcher(max_workers=1).wait_started(export_tasks, "export_1_x", timeout=0.1)


def test_crashing_job_is_contained():
    dispatcher = Dispatcher(max_workers=1)
    future = dispatcher.submit(lambda: 1 / 0)
    dispatcher.shutdown()
    assert isinstance(future.exception(), ZeroDivisionError)


def test_sweep_removes_expired_export_files(settings, tmp_path, monkeypatch):
    services = build_services(settings)
    result = tmp_path / "users_old.json"
    result.write_text("{}", encoding="utf-8")

    task_id = services.export_tasks.create_task("json")
    services.export_tasks.update_task(task_id, status=TaskStatus.PROCESSING)
    services.export_tasks.update_task(
        task_id, status=TaskStatus.COMPLETED, file_name=result.name, file_path=str(result)
    )
    services.import_tasks.create_task("csv")

    later = utcnow() + timedelta(hours=settings.task_retention_hours + 1)
    monkeypatch.setattr("app.storage.repo.utcnow", lambda: later)
    swept = sweep_expired_tasks(services)

    assert len(swept) == 2
    assert not result.exists()
    assert services.export_tasks.get_task(task_id) is None
    services.dispatcher.shutdown()
